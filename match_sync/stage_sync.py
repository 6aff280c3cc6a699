"""
Match stage transitions and CRM relation sync.

The local Match is always updated first. The CRM side is best effort: the
relation for the previous stage is removed, a relation for the new stage is
created between the buyer's contact and the property record, and its id is
stored back on the Match. CRM problems are reported as a SyncOutcome and
never undo the local stage change.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .aggregation import AggregationCache
from .cache import CacheStore, MemoryCacheStore
from .crm_audit import log_crm_write
from .crm_client import CrmClient
from .exceptions import CrmError, DataValidationError, MatchSyncError, UpstreamUnavailable
from .models import (
    Match,
    MatchActivity,
    Stage,
    next_stage,
    relation_fields,
    stage_fields,
)
from .record_store import RecordStoreAdapter

logger = logging.getLogger(__name__)

ASSOCIATIONS_CACHE_KEY = 'crm:associations'


class SyncOutcome(Enum):
    SYNCED = 'synced'
    SKIPPED_NO_CRM = 'skipped_no_crm'
    SKIPPED_NO_MAPPING = 'skipped_no_mapping'
    SKIPPED_MISSING_CONTACT = 'skipped_missing_contact'
    SKIPPED_PROPERTY_NOT_FOUND = 'skipped_property_not_found'
    SKIPPED_CONCURRENT = 'skipped_concurrent'
    FAILED = 'failed'


@dataclass
class StageTransitionResult:
    match: Match
    relation_id: Optional[str] = None
    outcome: SyncOutcome = SyncOutcome.SKIPPED_NO_CRM
    detail: str = ''
    orphaned_relation_id: Optional[str] = None

    @property
    def synced(self) -> bool:
        return self.outcome is SyncOutcome.SYNCED

    @property
    def sync_skipped(self) -> bool:
        return self.outcome.name.startswith('SKIPPED')


def association_key(stage: Stage) -> str:
    """Slug form of a stage name, e.g. 'Closed Deal / Won' -> 'closed_deal_won'."""
    return re.sub(r'[^a-z0-9]+', '_', stage.value.lower()).strip('_')


class AssociationResolver:
    """
    Map a pipeline stage to a CRM association id.

    An explicit mapping (YAML file) wins. Otherwise the CRM's association
    list is fetched, cached, and matched on name or key.
    """

    def __init__(
        self,
        crm: Optional[CrmClient],
        mapping: Optional[dict] = None,
        cache: Optional[CacheStore] = None,
        ttl: float = 3600,
    ):
        self.crm = crm
        self.mapping = {k.lower(): v for k, v in (mapping or {}).items()}
        self.cache = cache or MemoryCacheStore()
        self.ttl = ttl

    def _associations(self) -> list[dict]:
        cached = self.cache.get(ASSOCIATIONS_CACHE_KEY)
        if cached is not None:
            return cached
        associations = [a.to_dict() for a in self.crm.get_associations()]
        self.cache.set(ASSOCIATIONS_CACHE_KEY, associations, ttl=self.ttl)
        logger.info(f"Cached {len(associations)} CRM associations")
        return associations

    def resolve(self, stage: Stage) -> Optional[str]:
        explicit = self.mapping.get(stage.value.lower()) or self.mapping.get(stage.name.lower())
        if explicit:
            return explicit
        if self.crm is None:
            return None

        slug = association_key(stage)
        for association in self._associations():
            name = (association.get('name') or '').strip().lower()
            key = (association.get('key') or '').strip().lower()
            if name == stage.value.lower() or key == slug or key.endswith(f'.{slug}'):
                return association['id']

        logger.warning(f"No CRM association for stage {stage.value!r}")
        return None

    def refresh(self) -> None:
        self.cache.invalidate(ASSOCIATIONS_CACHE_KEY)


class _Skip(Exception):
    """Internal: stop the CRM sync with a non-failure outcome."""

    def __init__(self, outcome: SyncOutcome, detail: str):
        super().__init__(detail)
        self.outcome = outcome
        self.detail = detail


class StageSyncEngine:
    """Apply stage transitions to Matches and mirror them in the CRM."""

    def __init__(
        self,
        store: RecordStoreAdapter,
        crm: Optional[CrmClient] = None,
        resolver: Optional[AssociationResolver] = None,
        aggregation: Optional[AggregationCache] = None,
        audit: Callable[..., None] = log_crm_write,
    ):
        self.store = store
        self.crm = crm
        self.resolver = resolver or AssociationResolver(crm)
        self.aggregation = aggregation
        self.audit = audit

    def transition(self, match_id: str, from_stage, to_stage) -> StageTransitionResult:
        """
        Move a Match to a new stage and sync the CRM relation.

        Args:
            match_id: Match record id
            from_stage: Stage the caller believes the Match is in (informational)
            to_stage: Target stage (Stage or stage name)

        Raises:
            DataValidationError: unknown target stage or missing Match
            RecordStoreError / UpstreamUnavailable: the local update failed
        """
        try:
            target = Stage.parse(to_stage)
        except ValueError as e:
            raise DataValidationError(str(e)) from e
        if target is None:
            raise DataValidationError('Target stage is required')

        match = self.store.get_match(match_id)
        if match is None:
            raise DataValidationError(f"Match not found: {match_id}")

        try:
            expected = Stage.parse(from_stage)
        except ValueError:
            expected = None
        if expected is not None and expected != match.stage:
            logger.warning(
                f"Match {match_id} is in {match.stage.value if match.stage else 'no stage'}, "
                f"caller expected {expected.value}"
            )

        activities = match.activities + [MatchActivity.stage_change(match.stage, target)]
        updated = self.store.update_match(match_id, stage_fields(target, activities))
        logger.info(
            f"Match {match_id}: {match.stage.value if match.stage else '(none)'} -> {target.value}"
        )

        result = StageTransitionResult(match=updated)
        try:
            if self.crm is None:
                result.outcome = SyncOutcome.SKIPPED_NO_CRM
                result.detail = 'CRM not configured'
                return result
            self._sync_relation(match, target, result)
            return result
        finally:
            if self.aggregation is not None:
                self.aggregation.invalidate()
            log = logger.info if result.outcome is not SyncOutcome.FAILED else logger.error
            log(f"Match {match_id} CRM sync: {result.outcome.value} {result.detail}".rstrip())

    def advance(self, match_id: str) -> StageTransitionResult:
        """Move a Match to the next pipeline stage."""
        match = self.store.get_match(match_id)
        if match is None:
            raise DataValidationError(f"Match not found: {match_id}")
        target = next_stage(match.stage)
        if target is None:
            raise DataValidationError(
                f"Match {match_id} has no next stage ({match.stage.value if match.stage else 'none'})"
            )
        return self.transition(match_id, match.stage, target)

    # =========================================================================
    # CRM RELATION SWAP
    # =========================================================================

    def _sync_relation(self, before: Match, target: Stage, result: StageTransitionResult) -> None:
        prior_relation = before.relation_id

        try:
            if prior_relation:
                self._delete_prior(before.id, prior_relation, result)

            association_id = self.resolver.resolve(target)
            if not association_id:
                raise _Skip(SyncOutcome.SKIPPED_NO_MAPPING, f"no association for {target.value}")

            buyer = self.store.get_buyer(before.buyer_record_id) if before.buyer_record_id else None
            if buyer is None or not buyer.contact_id:
                raise _Skip(SyncOutcome.SKIPPED_MISSING_CONTACT, 'buyer has no CRM contact id')

            prop = self.store.get_property(before.property_record_id) if before.property_record_id else None
            record = None
            if prop is not None:
                record = self.crm.find_property_record(prop.address, prop.opportunity_id)
            if record is None:
                raise _Skip(SyncOutcome.SKIPPED_PROPERTY_NOT_FOUND, 'property not found in CRM')

            relation = self._create(before.id, association_id, buyer.contact_id, record.id)

            # Compare-and-swap: a concurrent transition owns the Match now
            current = self.store.get_match(before.id)
            if current is None or current.relation_id != prior_relation or current.stage != target:
                self._delete_created(before.id, relation.id)
                raise _Skip(SyncOutcome.SKIPPED_CONCURRENT, 'match changed during sync')

            result.match = self.store.update_match(before.id, relation_fields(relation.id))
            result.relation_id = relation.id
            result.outcome = SyncOutcome.SYNCED

        except _Skip as skip:
            result.outcome = skip.outcome
            result.detail = skip.detail
        except MatchSyncError as e:
            result.outcome = SyncOutcome.FAILED
            result.detail = str(e)

        if (prior_relation and result.relation_id is None
                and result.outcome is not SyncOutcome.SKIPPED_CONCURRENT):
            self._clear_relation(result)

    def _delete_prior(self, match_id: str, relation_id: str, result: StageTransitionResult) -> None:
        try:
            self.crm.delete_relation(relation_id)
        except (CrmError, UpstreamUnavailable) as e:
            logger.warning(f"Could not delete previous relation {relation_id}: {e}")
            result.orphaned_relation_id = relation_id
            self.audit(
                operation='delete_relation', endpoint=f'associations/relations/{relation_id}',
                http_method='DELETE', match_id=match_id, relation_id=relation_id,
                success=False, error_message=str(e),
            )
            return
        self.audit(
            operation='delete_relation', endpoint=f'associations/relations/{relation_id}',
            http_method='DELETE', match_id=match_id, relation_id=relation_id, success=True,
        )

    def _create(self, match_id: str, association_id: str, contact_id: str, record_id: str):
        summary = f"contact {contact_id} -> property {record_id}"
        try:
            relation = self.crm.create_relation(association_id, contact_id, record_id)
        except (CrmError, UpstreamUnavailable) as e:
            self.audit(
                operation='create_relation', endpoint='associations/relations', http_method='POST',
                match_id=match_id, association_id=association_id, payload_summary=summary,
                success=False, error_message=str(e),
            )
            raise
        self.audit(
            operation='create_relation', endpoint='associations/relations', http_method='POST',
            match_id=match_id, relation_id=relation.id, association_id=association_id,
            payload_summary=summary, success=True,
        )
        return relation

    def _delete_created(self, match_id: str, relation_id: str) -> None:
        try:
            self.crm.delete_relation(relation_id)
            success, error = True, None
        except (CrmError, UpstreamUnavailable) as e:
            logger.error(f"Could not roll back relation {relation_id}: {e}")
            success, error = False, str(e)
        self.audit(
            operation='delete_relation', endpoint=f'associations/relations/{relation_id}',
            http_method='DELETE', match_id=match_id, relation_id=relation_id,
            payload_summary='concurrent transition', success=success, error_message=error,
        )

    def _clear_relation(self, result: StageTransitionResult) -> None:
        try:
            result.match = self.store.update_match(result.match.id, relation_fields(None))
        except MatchSyncError as e:
            logger.error(f"Could not clear relation id on match {result.match.id}: {e}")
