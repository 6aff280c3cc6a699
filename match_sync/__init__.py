"""Match Sync - buyer/property matching with CRM stage sync

Keeps three things consistent across a rate-limited record store and a CRM:

- Matches: scored buyer/property pairs, at most one per pair
- Aggregate views: buyers or properties with their matches, built with a
  constant number of queries per page and cached for a few minutes
- CRM relations: each Match's pipeline stage mirrored as a single
  contact-to-property relation under the stage's association

Architecture:
- RecordStoreAdapter and CrmClient share a retrying HTTP wrapper
- MatchingService creates Matches through DedupGuard
- StageSyncEngine updates the Match first, then swaps the CRM relation
"""

__version__ = "0.1.0"
