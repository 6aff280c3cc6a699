"""Wire the record store, CRM, caches and engines from a Config."""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
import requests

from .activity import ActivityService
from .aggregation import AggregationCache
from .cache import CacheStore, FileCacheStore, MemoryCacheStore
from .config import Config, config as default_config
from .crm_client import CrmClient
from .exceptions import ConfigurationError
from .http_client import ResilientClient
from .matching import MatchingService
from .record_store import RecordStoreAdapter
from .stage_sync import AssociationResolver, StageSyncEngine
from .utils.config import load_stage_associations

logger = logging.getLogger(__name__)


@dataclass
class Services:
    config: Config
    store: RecordStoreAdapter
    cache: CacheStore
    aggregation: AggregationCache
    matching: MatchingService
    crm: Optional[CrmClient]
    resolver: AssociationResolver
    stage_sync: StageSyncEngine
    activity: ActivityService


def build_cache(cfg: Config) -> CacheStore:
    if cfg.CACHE_DIR:
        return FileCacheStore(cfg.CACHE_DIR)
    return MemoryCacheStore()


def build_services(cfg: Optional[Config] = None) -> Services:
    """
    Build every component for one invocation.

    Raises:
        ConfigurationError: record store credentials missing, or the CRM
            is half-configured
    """
    cfg = cfg or default_config
    errors = cfg.validate()
    if errors:
        raise ConfigurationError('; '.join(errors))

    store = RecordStoreAdapter(
        api_key=cfg.AIRTABLE_API_KEY,
        base_id=cfg.AIRTABLE_BASE_ID,
        api_url=cfg.AIRTABLE_API_URL,
        client=ResilientClient(
            requests.Session(),
            max_retries=cfg.MAX_RETRIES,
            timeout=cfg.REQUEST_TIMEOUT,
            name='airtable',
        ),
        fanout_batch_size=cfg.FANOUT_BATCH_SIZE,
        fanout_pause_seconds=cfg.FANOUT_PAUSE_SECONDS,
        delete_batch_size=cfg.DELETE_BATCH_SIZE,
    )

    cache = build_cache(cfg)
    aggregation = AggregationCache(store, cache=cache, ttl=cfg.AGGREGATE_CACHE_TTL)
    matching = MatchingService(store, aggregation=aggregation, default_min_score=cfg.DEFAULT_MIN_SCORE)

    crm = None
    if cfg.crm_configured():
        crm = CrmClient(
            api_key=cfg.GHL_API_KEY,
            location_id=cfg.GHL_LOCATION_ID,
            api_url=cfg.GHL_API_URL,
            api_version=cfg.GHL_API_VERSION,
            client=ResilientClient(
                httpx.Client(),
                max_retries=cfg.MAX_RETRIES,
                timeout=cfg.REQUEST_TIMEOUT,
                name='crm',
            ),
        )
    else:
        logger.info("CRM not configured; stage changes will not be synced")

    resolver = AssociationResolver(
        crm,
        mapping=load_stage_associations(cfg.STAGE_ASSOCIATIONS_FILE),
        cache=cache,
        ttl=cfg.ASSOCIATION_CACHE_TTL,
    )
    stage_sync = StageSyncEngine(store, crm=crm, resolver=resolver, aggregation=aggregation)

    return Services(
        config=cfg,
        store=store,
        cache=cache,
        aggregation=aggregation,
        matching=matching,
        crm=crm,
        resolver=resolver,
        stage_sync=stage_sync,
        activity=ActivityService(store, aggregation=aggregation),
    )
