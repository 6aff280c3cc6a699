"""
Aggregated buyer/property views with their matches.

Each page is built with a constant number of record store queries no
matter how many matches it contains:

    1. one page of entities (buyers or properties)
    2. every Match linked to those entities, in one filtered list
    3. every counterpart entity referenced by those Matches, in one batch

Pages are cached for a few minutes in a CacheStore and rebuilt on demand.
"""

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Optional

from . import formula
from .cache import CacheStore, MemoryCacheStore
from .exceptions import DataValidationError, MatchSyncError
from .models import (
    BUYER_FIELDS,
    MATCH_FIELDS,
    PROPERTY_FIELDS,
    Buyer,
    Collection,
    Match,
    Property,
    Stage,
    utc_now_iso,
)
from .record_store import RecordStoreAdapter

logger = logging.getLogger(__name__)

AGGREGATE_PREFIX = 'agg:'
INDEX_KEY = 'meta:aggregate-index'
SNAPSHOT_KEY = 'meta:snapshot'

# First pages not requested for this long drop out of sync_all
INDEX_TTL = 24 * 3600

BUYERS = 'buyers'
PROPERTIES = 'properties'


@dataclass
class AggregateFilters:
    """Entity filters (city, state, search) and match filters (min_score, stage)."""
    city: Optional[str] = None
    state: Optional[str] = None
    search: Optional[str] = None
    min_score: Optional[float] = None
    stage: Optional[Stage] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data['stage'] = self.stage.value if self.stage else None
        return data

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'AggregateFilters':
        data = dict(data or {})
        data['stage'] = Stage.parse(data.get('stage'))
        return cls(**data)


@dataclass
class AggregatePage:
    """One page of entities, each carrying its matches and total_matches."""
    kind: str
    items: list[dict]
    next_cursor: Optional[str] = None
    fetched_at: str = ''
    from_cache: bool = False

    def to_dict(self) -> dict:
        return {
            'kind': self.kind,
            'items': self.items,
            'nextCursor': self.next_cursor,
            'fetchedAt': self.fetched_at,
        }

    @classmethod
    def from_dict(cls, data: dict, from_cache: bool = False) -> 'AggregatePage':
        return cls(
            kind=data['kind'],
            items=data.get('items', []),
            next_cursor=data.get('nextCursor'),
            fetched_at=data.get('fetchedAt', ''),
            from_cache=from_cache,
        )


@dataclass
class SyncStatus:
    is_stale: bool
    new_buyers_available: int = 0
    new_properties_available: int = 0
    last_synced: Optional[str] = None
    counts: dict = field(default_factory=dict)
    pages_refreshed: int = 0


@dataclass
class BuyerMatches:
    """A buyer's matches with the matched property codes."""
    buyer: Buyer
    matches: list[Match]
    property_codes: list[str]


@dataclass
class _Kind:
    """How to aggregate one side of the buyer/property relationship."""
    name: str
    collection: Collection
    entity: Any
    link_field: str
    counterpart_collection: Collection
    counterpart: Any
    counterpart_key: str
    match_attr: str
    counterpart_attr: str
    search_fields: tuple
    filter_fields: dict


KINDS = {
    BUYERS: _Kind(
        name=BUYERS,
        collection=Collection.BUYERS,
        entity=Buyer,
        link_field=MATCH_FIELDS['buyer_record_id'],
        counterpart_collection=Collection.PROPERTIES,
        counterpart=Property,
        counterpart_key='property',
        match_attr='buyer_record_id',
        counterpart_attr='property_record_id',
        search_fields=(BUYER_FIELDS['first_name'], BUYER_FIELDS['last_name'], BUYER_FIELDS['email']),
        filter_fields={'city': BUYER_FIELDS['city']},
    ),
    PROPERTIES: _Kind(
        name=PROPERTIES,
        collection=Collection.PROPERTIES,
        entity=Property,
        link_field=MATCH_FIELDS['property_record_id'],
        counterpart_collection=Collection.BUYERS,
        counterpart=Buyer,
        counterpart_key='buyer',
        match_attr='property_record_id',
        counterpart_attr='buyer_record_id',
        search_fields=(PROPERTY_FIELDS['address'], PROPERTY_FIELDS['property_code']),
        filter_fields={'city': PROPERTY_FIELDS['city'], 'state': PROPERTY_FIELDS['state']},
    ),
}


def cache_key(kind: str, filters: AggregateFilters, page_size: int, cursor: Optional[str]) -> str:
    params = json.dumps(
        {'filters': filters.to_dict(), 'pageSize': page_size, 'cursor': cursor},
        sort_keys=True,
    )
    return f"{AGGREGATE_PREFIX}{kind}:{params}"


class AggregationCache:
    """Cached aggregate views over the record store."""

    def __init__(
        self,
        store: RecordStoreAdapter,
        cache: Optional[CacheStore] = None,
        ttl: float = 300,
        index_ttl: float = INDEX_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.cache = cache or MemoryCacheStore()
        self.ttl = ttl
        self.index_ttl = index_ttl
        self.clock = clock

    # =========================================================================
    # AGGREGATE PAGES
    # =========================================================================

    def get_buyers_with_matches(self, filters: Optional[AggregateFilters] = None,
                                page_size: int = 50, cursor: Optional[str] = None) -> AggregatePage:
        """Buyers page, each buyer embedding its matches and matched properties."""
        return self._get_page(KINDS[BUYERS], filters or AggregateFilters(), page_size, cursor)

    def get_properties_with_matches(self, filters: Optional[AggregateFilters] = None,
                                    page_size: int = 50, cursor: Optional[str] = None) -> AggregatePage:
        """Properties page, each property embedding its matches and matched buyers."""
        return self._get_page(KINDS[PROPERTIES], filters or AggregateFilters(), page_size, cursor)

    def _get_page(self, kind: _Kind, filters: AggregateFilters, page_size: int,
                  cursor: Optional[str]) -> AggregatePage:
        key = cache_key(kind.name, filters, page_size, cursor)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Aggregate cache hit: {kind.name} cursor={cursor}")
            page = AggregatePage.from_dict(cached, from_cache=True)
        else:
            logger.info(f"Aggregate cache miss: building {kind.name} page (cursor={cursor})")
            page = self._build_page(kind, filters, page_size, cursor)
            self.cache.set(key, page.to_dict(), ttl=self.ttl)

        if cursor is None:
            self._index_key(key, kind.name, filters, page_size)
        return page

    def _entity_filter(self, kind: _Kind, filters: AggregateFilters) -> Optional[str]:
        clauses = []
        for name in ('city', 'state'):
            value = getattr(filters, name)
            if not value:
                continue
            if name not in kind.filter_fields:
                raise DataValidationError(f"{kind.name} cannot be filtered by {name}")
            clauses.append(formula.field_equals(kind.filter_fields[name], value))
        if filters.search:
            clauses.append(formula.or_(*(formula.search(n, filters.search) for n in kind.search_fields)))
        return formula.and_(*clauses)

    def _build_page(self, kind: _Kind, filters: AggregateFilters, page_size: int,
                    cursor: Optional[str]) -> AggregatePage:
        entity_page = self.store.list(
            kind.collection,
            filter=self._entity_filter(kind, filters),
            limit=page_size,
            cursor=cursor,
        )
        entities = [kind.entity.from_api(r) for r in entity_page.records]
        entity_ids = [e.record_id for e in entities]

        matches_by_entity: dict[str, list[Match]] = {rid: [] for rid in entity_ids}
        counterparts: dict[str, Any] = {}

        if entity_ids:
            match_filter = formula.and_(
                formula.linked_contains_any(kind.link_field, entity_ids),
                formula.field_at_least(MATCH_FIELDS['score'], filters.min_score)
                if filters.min_score is not None else None,
                formula.field_equals(MATCH_FIELDS['stage'], filters.stage.value)
                if filters.stage else None,
            )
            matches = [Match.from_api(r) for r in self.store.list_all(Collection.MATCHES, filter=match_filter)]

            for match in matches:
                owner = getattr(match, kind.match_attr)
                # FIND() is a substring test, so re-check ownership exactly
                if owner in matches_by_entity:
                    matches_by_entity[owner].append(match)

            counterpart_ids = {
                getattr(m, kind.counterpart_attr)
                for group in matches_by_entity.values() for m in group
            }
            counterparts = {
                r['id']: kind.counterpart.from_api(r)
                for r in self.store.batch_get(kind.counterpart_collection, counterpart_ids)
            }

        items = []
        for entity in entities:
            entity_matches = matches_by_entity[entity.record_id]
            item = entity.to_dict()
            item['matches'] = []
            for match in entity_matches:
                match_dict = match.to_dict()
                other = counterparts.get(getattr(match, kind.counterpart_attr))
                match_dict[kind.counterpart_key] = other.to_dict() if other else None
                item['matches'].append(match_dict)
            item['totalMatches'] = len(entity_matches)
            items.append(item)

        # sorted() is stable, so ties keep the store's order
        items = sorted(items, key=lambda i: i['totalMatches'], reverse=True)

        total = sum(i['totalMatches'] for i in items)
        logger.info(f"Built {kind.name} page: {len(items)} entities, {total} matches")
        return AggregatePage(
            kind=kind.name,
            items=items,
            next_cursor=entity_page.next_cursor,
            fetched_at=utc_now_iso(),
        )

    # =========================================================================
    # INVALIDATION / SYNC
    # =========================================================================

    def _load_index(self) -> dict:
        """First-page index entries requested within index_ttl."""
        now = self.clock()
        index = self.cache.get(INDEX_KEY) or {}
        return {
            key: params for key, params in index.items()
            if params.get('cursor') is None and now - params.get('requestedAt', 0) < self.index_ttl
        }

    def _index_key(self, key: str, kind: str, filters: AggregateFilters, page_size: int) -> None:
        """Remember a requested first page so sync_all can rebuild it."""
        now = self.clock()
        index = self._load_index()
        entry = index.get(key)
        if entry is not None and now - entry.get('requestedAt', 0) < self.ttl:
            return
        index[key] = {
            'kind': kind,
            'filters': filters.to_dict(),
            'pageSize': page_size,
            'requestedAt': now,
        }
        self.cache.set(INDEX_KEY, index)

    def invalidate(self) -> int:
        """Drop every cached aggregate page and prune stale index entries."""
        dropped = self.cache.invalidate(AGGREGATE_PREFIX)
        index = self.cache.get(INDEX_KEY)
        if index:
            kept = self._load_index()
            if len(kept) != len(index):
                self.cache.set(INDEX_KEY, kept)
                logger.debug(f"Pruned {len(index) - len(kept)} aggregate index entries")
        logger.info(f"Invalidated {dropped} aggregate cache entries")
        return dropped

    def sync_all(self) -> SyncStatus:
        """
        Refresh every aggregate first page requested recently.

        Invalidates all aggregate keys, rebuilds each indexed page and
        records a snapshot of the current table counts. A page that fails
        to rebuild is logged and dropped from the index; later pages are
        rebuilt lazily on their next read.
        """
        index = self._load_index()
        self.invalidate()

        refreshed = 0
        for key, params in list(index.items()):
            kind = KINDS.get(params.get('kind'))
            try:
                if kind is None:
                    raise ValueError(f"unknown aggregate kind {params.get('kind')!r}")
                filters = AggregateFilters.from_dict(params.get('filters'))
                page = self._build_page(kind, filters, params.get('pageSize', 50), None)
            except (MatchSyncError, ValueError) as e:
                logger.warning(f"Dropping aggregate page {key} from sync: {e}")
                index.pop(key)
                continue
            self.cache.set(key, page.to_dict(), ttl=self.ttl)
            refreshed += 1
        self.cache.set(INDEX_KEY, index)

        counts = self._current_counts()
        snapshot = dict(counts, synced_at=utc_now_iso())
        self.cache.set(SNAPSHOT_KEY, snapshot)
        logger.info(f"Synced {refreshed} aggregate pages; counts {counts}")

        return SyncStatus(
            is_stale=False,
            last_synced=snapshot['synced_at'],
            counts=counts,
            pages_refreshed=refreshed,
        )

    def _current_counts(self) -> dict:
        return {
            BUYERS: self.store.count(Collection.BUYERS),
            PROPERTIES: self.store.count(Collection.PROPERTIES),
            'matches': self.store.count(Collection.MATCHES),
        }

    def status(self) -> SyncStatus:
        """Compare current table counts with the last sync snapshot."""
        counts = self._current_counts()
        snapshot = self.cache.get(SNAPSHOT_KEY)
        if snapshot is None:
            return SyncStatus(
                is_stale=True,
                new_buyers_available=counts[BUYERS],
                new_properties_available=counts[PROPERTIES],
                counts=counts,
            )

        new_buyers = max(0, counts[BUYERS] - snapshot.get(BUYERS, 0))
        new_properties = max(0, counts[PROPERTIES] - snapshot.get(PROPERTIES, 0))
        return SyncStatus(
            is_stale=new_buyers > 0 or new_properties > 0,
            new_buyers_available=new_buyers,
            new_properties_available=new_properties,
            last_synced=snapshot.get('synced_at'),
            counts=counts,
        )

    # =========================================================================
    # SINGLE BUYER LOOKUP
    # =========================================================================

    def get_buyer_matches(self, contact_id: str) -> Optional[BuyerMatches]:
        """Matches and property codes for one buyer, by CRM contact id."""
        buyer = self.store.find_buyer_by_contact_id(contact_id)
        if buyer is None:
            logger.info(f"No buyer with contact id {contact_id}")
            return None

        matches = self.store.list_matches(
            filter=formula.linked_contains(MATCH_FIELDS['buyer_record_id'], buyer.record_id)
        )
        matches = [m for m in matches if m.buyer_record_id == buyer.record_id]

        property_ids = list(dict.fromkeys(m.property_record_id for m in matches if m.property_record_id))
        records = self.store.get_many(Collection.PROPERTIES, property_ids)
        codes = []
        for record in records:
            if record is None:
                continue
            code = Property.from_api(record).display_code
            if code:
                codes.append(code)

        logger.info(f"Buyer {contact_id}: {len(matches)} matches, {len(codes)} property codes")
        return BuyerMatches(buyer=buyer, matches=matches, property_codes=codes)
