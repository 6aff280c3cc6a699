"""
Matching runs: score buyers against properties and persist Matches.

Existing Matches are read once per run and indexed by DedupGuard, so a run
can be repeated any number of times without creating duplicates.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Iterable, Optional

from . import formula
from .aggregation import AggregationCache
from .dedup import DedupAction, DedupGuard
from .exceptions import DataValidationError, MatchSyncError
from .models import (
    MATCH_FIELDS,
    Buyer,
    Collection,
    Property,
    match_score_fields,
    new_match_fields,
)
from .record_store import RecordStoreAdapter
from .scorer import generate_match_score

logger = logging.getLogger(__name__)


@dataclass
class MatchingStats:
    buyers_processed: int = 0
    properties_processed: int = 0
    matches_created: int = 0
    matches_updated: int = 0
    duplicates_skipped: int = 0
    within_radius: int = 0  # Scored matches in a preferred ZIP

    def to_dict(self) -> dict:
        return asdict(self)


class MatchingService:
    """Runs buyer/property matching against the record store."""

    def __init__(
        self,
        store: RecordStoreAdapter,
        aggregation: Optional[AggregationCache] = None,
        default_min_score: float = 30,
    ):
        self.store = store
        self.aggregation = aggregation
        self.default_min_score = default_min_score

    def run_matching(self, min_score: Optional[float] = None,
                     force_rematch: bool = False) -> MatchingStats:
        """Match every buyer against every property."""
        buyers = self.store.list_buyers()
        properties = self.store.list_properties()
        existing = self.store.list_matches()
        logger.info(
            f"Running full matching: {len(buyers)} buyers x {len(properties)} properties "
            f"(min_score={self._min(min_score)}, force_rematch={force_rematch})"
        )
        return self._run(buyers, properties, DedupGuard(existing), min_score, force_rematch)

    def run_for_buyer(self, contact_id: str, min_score: Optional[float] = None,
                      force_rematch: bool = False) -> MatchingStats:
        """Match one buyer (by CRM contact id) against every property."""
        buyer = self.store.find_buyer_by_contact_id(contact_id)
        if buyer is None:
            raise DataValidationError(f"Buyer not found: {contact_id}")

        properties = self.store.list_properties()
        existing = self.store.list_matches(
            filter=formula.linked_contains(MATCH_FIELDS['buyer_record_id'], buyer.record_id)
        )
        logger.info(f"Matching buyer {buyer.name or contact_id} against {len(properties)} properties")
        return self._run([buyer], properties, DedupGuard(existing), min_score, force_rematch)

    def run_for_property(self, property_code: str, min_score: Optional[float] = None,
                         force_rematch: bool = False) -> MatchingStats:
        """Match one property (by property code) against every buyer."""
        prop = self.store.find_property_by_code(property_code)
        if prop is None:
            raise DataValidationError(f"Property not found: {property_code}")

        buyers = self.store.list_buyers()
        existing = self.store.list_matches(
            filter=formula.linked_contains(MATCH_FIELDS['property_record_id'], prop.record_id)
        )
        logger.info(f"Matching property {prop.display_code} against {len(buyers)} buyers")
        return self._run(buyers, [prop], DedupGuard(existing), min_score, force_rematch)

    def clear_matches(self) -> int:
        """Delete every Match; returns the number deleted."""
        match_ids = self.store.list_ids(Collection.MATCHES)
        logger.warning(f"Clearing {len(match_ids)} matches")
        deleted = self.store.delete_many(Collection.MATCHES, match_ids)
        self._sync_cache()
        return deleted

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _min(self, min_score: Optional[float]) -> float:
        return self.default_min_score if min_score is None else min_score

    def _run(self, buyers: Iterable[Buyer], properties: list[Property], guard: DedupGuard,
             min_score: Optional[float], force_rematch: bool) -> MatchingStats:
        threshold = self._min(min_score)
        stats = MatchingStats(properties_processed=len(properties))

        for buyer in buyers:
            stats.buyers_processed += 1
            for prop in properties:
                score = generate_match_score(buyer, prop)
                if score.score < threshold:
                    continue
                if score.is_priority:
                    stats.within_radius += 1

                pair = (buyer.record_id, prop.record_id)
                action = guard.decide(pair, force_rematch)

                if action is DedupAction.SKIP:
                    stats.duplicates_skipped += 1
                    logger.debug(f"Skipping existing match {pair}")
                elif action is DedupAction.UPDATE:
                    self.store.update_match(
                        guard.match_id_for(pair),
                        match_score_fields(score.score, score.reasoning, score.is_priority),
                    )
                    stats.matches_updated += 1
                else:
                    match = self.store.create_match(new_match_fields(
                        buyer.record_id, prop.record_id, score.score,
                        score.reasoning, score.is_priority,
                    ))
                    guard.remember(pair, match.id)
                    stats.matches_created += 1

        logger.info(
            f"Matching complete: {stats.matches_created} created, {stats.matches_updated} updated, "
            f"{stats.duplicates_skipped} skipped"
        )
        self._sync_cache()
        return stats

    def _sync_cache(self) -> None:
        if self.aggregation is None:
            return
        try:
            self.aggregation.sync_all()
        except MatchSyncError as e:
            # Matches are already written; pages rebuild on their next read
            logger.error(f"Aggregate cache refresh failed: {e}")
