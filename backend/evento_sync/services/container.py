from __future__ import annotations

from datetime import timedelta

from evento_sync.core.config import Settings
from evento_sync.db import SessionLocal
from evento_sync.enums import CacheBackend
from evento_sync.services.cache import CacheStore, EventoCaches, InMemoryCacheStore, SqlCacheStore
from evento_sync.services.evento_source import EventSource, HttpEventSource
from evento_sync.services.fetcher import FetchEngine
from evento_sync.services.maintenance import MaintenanceScheduler
from evento_sync.services.state import StateStore
from evento_sync.services.stats import StatsRepository


def build_cache_store(settings: Settings) -> CacheStore:
    if settings.cache_backend is CacheBackend.MEMORY:
        return InMemoryCacheStore()
    return SqlCacheStore(SessionLocal)


def build_caches(settings: Settings, store: CacheStore | None = None) -> EventoCaches:
    return EventoCaches.on_store(store or build_cache_store(settings))


def build_source(settings: Settings) -> HttpEventSource:
    return HttpEventSource(
        base_url=settings.evento_base_url,
        api_token=settings.evento_api_token,
        timeout_s=settings.request_timeout_s,
    )


def build_stats_repository(settings: Settings, caches: EventoCaches | None = None) -> StatsRepository:
    return StatsRepository((caches or build_caches(settings)).stats)


def build_engine(
    settings: Settings,
    *,
    source: EventSource | None = None,
    caches: EventoCaches | None = None,
    state_store: StateStore | None = None,
    stats_repository: StatsRepository | None = None,
) -> FetchEngine:
    caches = caches or build_caches(settings)
    stats_repository = stats_repository or build_stats_repository(settings, caches)
    return FetchEngine(
        source or build_source(settings),
        config=settings.fetcher_config(),
        response_cache=caches.api,
        event_cache=caches.events,
        state_store=state_store or StateStore(),
        on_cache_hit=stats_repository.record_cache_hit,
    )


def build_scheduler(
    settings: Settings,
    *,
    source: EventSource | None = None,
    caches: EventoCaches | None = None,
    state_store: StateStore | None = None,
) -> MaintenanceScheduler:
    config = settings.fetcher_config()
    source = source or build_source(settings)
    caches = caches or build_caches(settings)
    state_store = state_store or StateStore()
    stats_repository = build_stats_repository(settings, caches)
    engine = build_engine(
        settings,
        source=source,
        caches=caches,
        state_store=state_store,
        stats_repository=stats_repository,
    )
    return MaintenanceScheduler(
        source=source,
        engine=engine,
        caches=caches,
        state_store=state_store,
        stats_repository=stats_repository,
        config=config,
        purge_interval=timedelta(days=settings.full_purge_interval_days),
        refresh_horizon=timedelta(days=settings.refresh_horizon_days),
    )
