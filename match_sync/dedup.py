"""Duplicate-match prevention for bulk matching runs."""

import logging
from enum import Enum
from typing import Iterable, Optional

from .models import Match

logger = logging.getLogger(__name__)

Pair = tuple[str, str]


class DedupAction(Enum):
    CREATE = 'create'
    UPDATE = 'update'
    SKIP = 'skip'


def build_skip_set(existing_matches: Iterable[Match]) -> set[Pair]:
    """Set of (buyer_record_id, property_record_id) pairs that already have a Match."""
    return {m.pair for m in existing_matches if m.buyer_record_id and m.property_record_id}


def should_create(pair: Pair, skip_set: set[Pair], force_rematch: bool = False) -> bool:
    """
    Whether a new Match may be created for a pair.

    Existing pairs are never created again, even when rematching is forced;
    a forced rematch updates the existing record instead.
    """
    return pair not in skip_set


class DedupGuard:
    """
    Pair index built once per bulk run from the full existing-Match set.

    Pairs created during the run are added with ``remember`` so a second
    candidate for the same pair in the same run is treated as existing.
    """

    def __init__(self, existing_matches: Iterable[Match]):
        self._match_ids: dict[Pair, str] = {}
        for match in existing_matches:
            if match.buyer_record_id and match.property_record_id:
                self._match_ids.setdefault(match.pair, match.id)
        self.skip_set: set[Pair] = set(self._match_ids)
        logger.info(f"Dedup index built with {len(self.skip_set)} existing pairs")

    def __contains__(self, pair: Pair) -> bool:
        return pair in self.skip_set

    def __len__(self) -> int:
        return len(self.skip_set)

    def match_id_for(self, pair: Pair) -> Optional[str]:
        return self._match_ids.get(pair)

    def should_create(self, pair: Pair, force_rematch: bool = False) -> bool:
        return should_create(pair, self.skip_set, force_rematch)

    def decide(self, pair: Pair, force_rematch: bool = False) -> DedupAction:
        if pair not in self.skip_set:
            return DedupAction.CREATE
        if force_rematch and self._match_ids.get(pair):
            return DedupAction.UPDATE
        return DedupAction.SKIP

    def remember(self, pair: Pair, match_id: str) -> None:
        self.skip_set.add(pair)
        self._match_ids[pair] = match_id
