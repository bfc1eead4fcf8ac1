"""
Scheduled cache maintenance: periodic full purge plus a force-refresh of every active
producer's events for the coming horizon, with per-producer failure isolation.
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
import logging
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError

from evento_sync.core.config import FetcherConfig
from evento_sync.enums import CacheNamespace, ProducerRunResult
from evento_sync.errors import FetchError, detail_from_exception
from evento_sync.services.cache import NAMESPACE_TTLS, EventoCaches, utc_now
from evento_sync.services.evento_source import EventSource, Producer
from evento_sync.services.fetcher import FetchEngine, FetchStats
from evento_sync.services.state import StateStore
from evento_sync.services.stats import StatsRepository

logger = logging.getLogger(__name__)

ACTIVE_PRODUCERS_KEY = "active_producers"
DEFAULT_PURGE_INTERVAL = timedelta(days=7)
DEFAULT_REFRESH_HORIZON = timedelta(days=365)


@dataclass
class ProducerOutcome:
    producer_id: str
    name: str
    result: ProducerRunResult
    started_at: datetime
    finished_at: datetime
    record_count: int = 0
    api_calls: int = 0
    errors: int = 0
    mode: str | None = None
    error_code: str | None = None
    error_message: str | None = None

    def to_record(self) -> dict[str, Any]:
        record = asdict(self)
        record["result"] = self.result.value
        record["started_at"] = self.started_at.isoformat()
        record["finished_at"] = self.finished_at.isoformat()
        return record


@dataclass
class MaintenanceRunResult:
    started_at: datetime
    finished_at: datetime | None = None
    purged: bool = False
    from_date: datetime | None = None
    to_date: datetime | None = None
    outcomes: list[ProducerOutcome] = field(default_factory=list)
    error_code: str | None = None
    error_message: str | None = None

    @property
    def updated(self) -> list[ProducerOutcome]:
        return [o for o in self.outcomes if o.result is ProducerRunResult.UPDATED]

    @property
    def failed(self) -> list[ProducerOutcome]:
        return [o for o in self.outcomes if o.result is ProducerRunResult.ERROR]

    def to_record(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "purged": self.purged,
            "from_date": self.from_date.isoformat() if self.from_date else None,
            "to_date": self.to_date.isoformat() if self.to_date else None,
            "updated": len(self.updated),
            "failed": len(self.failed),
            "error_code": self.error_code,
            "error_message": self.error_message,
            "producers": [o.to_record() for o in self.outcomes],
        }


def should_purge(last_full_purge: datetime | None, now: datetime, interval: timedelta = DEFAULT_PURGE_INTERVAL) -> bool:
    return last_full_purge is None or now - last_full_purge > interval


def refresh_range(now: datetime, horizon: timedelta) -> tuple[datetime, datetime]:
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + horizon


class MaintenanceScheduler:
    def __init__(
        self,
        *,
        source: EventSource,
        engine: FetchEngine,
        caches: EventoCaches,
        state_store: StateStore,
        stats_repository: StatsRepository,
        config: FetcherConfig,
        purge_interval: timedelta = DEFAULT_PURGE_INTERVAL,
        refresh_horizon: timedelta = DEFAULT_REFRESH_HORIZON,
        now_fn: Callable[[], datetime] = utc_now,
    ):
        self.source = source
        self.engine = engine
        self.caches = caches
        self.state_store = state_store
        self.stats_repository = stats_repository
        self.config = config
        self.purge_interval = purge_interval
        self.refresh_horizon = refresh_horizon
        self._now = now_fn

    def run(self, *, force_purge: bool = False) -> MaintenanceRunResult:
        now = self._now()
        result = MaintenanceRunResult(started_at=now)
        logger.info("Starting scheduled cache maintenance")

        result.purged = self._maybe_purge(now, force=force_purge)

        producers = self._active_producers(result)
        if not producers:
            logger.info("No active producers found; nothing to refresh")
            result.finished_at = self._now()
            return result

        result.from_date, result.to_date = refresh_range(now, self.refresh_horizon)
        logger.info(
            f"Refreshing {len(producers)} producers for {result.from_date:%Y-%m-%d} to {result.to_date:%Y-%m-%d}"
        )

        if self.config.parallel_requests and len(producers) > 1:
            with ThreadPoolExecutor(
                max_workers=max(1, self.config.max_parallel_threads),
                thread_name_prefix="evento-refresh",
            ) as pool:
                futures = [
                    pool.submit(self._refresh_producer, producer, result.from_date, result.to_date)
                    for producer in producers
                ]
                result.outcomes = [future.result() for future in futures]
        else:
            result.outcomes = [
                self._refresh_producer(producer, result.from_date, result.to_date) for producer in producers
            ]

        result.finished_at = self._now()
        logger.info(
            f"Cache maintenance completed: {len(result.updated)} producers updated, {len(result.failed)} failed"
        )
        return result

    def _maybe_purge(self, now: datetime, *, force: bool) -> bool:
        try:
            last_full_purge = self.state_store.get_last_full_purge()
        except SQLAlchemyError as exc:
            logger.error(f"Could not read last full purge time: {exc}")
            last_full_purge = None

        if not force and not should_purge(last_full_purge, now, self.purge_interval):
            return False

        logger.info("Performing full cache purge")
        if not self.caches.purge_all():
            logger.warning("Full cache purge incomplete; will retry on next run")
            return False
        try:
            self.state_store.set_last_full_purge(now)
        except SQLAlchemyError as exc:
            logger.error(f"Could not record last full purge time: {exc}")
        return True

    def _active_producers(self, result: MaintenanceRunResult) -> list[Producer]:
        cached = self.caches.producers.get(ACTIVE_PRODUCERS_KEY)
        if isinstance(cached, list) and cached:
            return [Producer(producer_id=str(row["producer_id"]), name=str(row["name"])) for row in cached]

        try:
            producers = self.source.list_active_producers()
        except FetchError as exc:
            detail = detail_from_exception(exc)
            result.error_code = detail.get("error_code")
            result.error_message = detail.get("message")
            logger.error(f"Could not list active producers: {result.error_message}")
            return []

        producers = [p for p in producers if p.producer_id.strip()]
        if producers:
            self.caches.producers.set(
                ACTIVE_PRODUCERS_KEY,
                [asdict(p) for p in producers],
                ttl=NAMESPACE_TTLS[CacheNamespace.PRODUCERS],
            )
        return producers

    def _refresh_producer(self, producer: Producer, from_date: datetime, to_date: datetime) -> ProducerOutcome:
        started_at = self._now()
        logger.info(f"Refreshing cache for {producer.name} ({producer.producer_id})")
        try:
            records, stats = self.engine.fetch_all(producer.producer_id, from_date, to_date, force_refresh=True)
        except Exception as exc:
            detail = detail_from_exception(exc)
            logger.error(f"Error refreshing cache for {producer.name}: {detail.get('message')}")
            failed_stats = FetchStats(api_calls=int(detail.get("api_calls", 0)), errors=int(detail.get("errors", 0)))
            self._record_stats(producer, failed_stats)
            return ProducerOutcome(
                producer_id=producer.producer_id,
                name=producer.name,
                result=ProducerRunResult.ERROR,
                started_at=started_at,
                finished_at=self._now(),
                api_calls=failed_stats.api_calls,
                errors=failed_stats.errors,
                error_code=detail.get("error_code"),
                error_message=detail.get("message"),
            )

        self._record_stats(producer, stats)
        logger.info(f"Updated cache with {producer.name} ({producer.producer_id}): {len(records)} events")
        return ProducerOutcome(
            producer_id=producer.producer_id,
            name=producer.name,
            result=ProducerRunResult.UPDATED,
            started_at=started_at,
            finished_at=self._now(),
            record_count=len(records),
            api_calls=stats.api_calls,
            errors=stats.errors,
            mode=stats.mode.value,
        )

    def _record_stats(self, producer: Producer, stats: FetchStats) -> None:
        try:
            self.stats_repository.record(producer.producer_id, stats)
        except ValueError as exc:
            logger.warning(f"Stats not recorded for {producer.producer_id}: {detail_from_exception(exc).get('message')}")
