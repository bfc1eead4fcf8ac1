"""
Adaptive batched retrieval of producer events from the remote Evento source.

Strategies, in order of preference: cached result, incremental fetch past the stored
high-watermark, paginated fetch with adaptive batch sizing, and finally a date-chunked
fallback when pagination keeps failing.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
import logging
import time
from typing import Any, Callable, Iterable

from evento_sync.core.config import FetcherConfig
from evento_sync.enums import FetchMode, PageStatus
from evento_sync.errors import FatalFetchError, FetchError, RetriesExhaustedError
from evento_sync.services.cache import NamespacedCache, utc_now
from evento_sync.services.evento_source import EventSource, PageResult, Record, record_id
from evento_sync.services.state import StateStore

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK = timedelta(days=365)
DEFAULT_LOOKAHEAD = timedelta(days=730)


@dataclass
class FetchStats:
    api_calls: int = 0
    errors: int = 0
    cache_hits: int = 0
    total_records: int = 0
    execution_time_s: float = 0.0
    mode: FetchMode = FetchMode.PAGINATED

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["mode"] = self.mode.value
        return payload


@dataclass
class FetchState:
    batch_size: int
    offset: int = 0
    high_watermark: int | None = None
    retry_count: int = 0
    mode: FetchMode = FetchMode.PAGINATED
    batch_ceiling: int | None = None
    chunk_fallback_attempted: bool = False
    stats: FetchStats = field(default_factory=FetchStats)


class _RecordAccumulator:
    def __init__(self, initial: Iterable[Record] = ()):
        self.records: list[Record] = []
        self._seen: set[int] = set()
        self.extend(initial)

    def extend(self, batch: Iterable[Record]) -> int:
        added = 0
        for record in batch:
            rid = record_id(record)
            if rid is None or rid in self._seen:
                continue
            self._seen.add(rid)
            self.records.append(record)
            added += 1
        return added


def merge_records(existing: Iterable[Record], incoming: Iterable[Record]) -> list[Record]:
    merged = _RecordAccumulator(existing)
    merged.extend(incoming)
    return merged.records


def advance_watermark(current: int | None, records: Iterable[Record]) -> int | None:
    highest = max((rid for rid in map(record_id, records) if rid is not None), default=None)
    if highest is None:
        return current
    return highest if current is None else max(current, highest)


def compute_backoff_delay(attempt: int, *, base_s: float, cap_s: float) -> float:
    return min(cap_s, base_s * (2 ** max(0, attempt - 1)))


def grow_batch_size(current: int, config: FetcherConfig, ceiling: int | None = None) -> int:
    upper = config.max_batch_size if ceiling is None else config.clamp_batch_size(ceiling)
    return max(config.min_batch_size, min(upper, current * 2))


def shrink_batch_size(current: int, config: FetcherConfig) -> int:
    return config.clamp_batch_size(current // 2)


def build_cache_key(producer_id: str, from_date: datetime, to_date: datetime) -> str:
    return f"events:{producer_id}:{from_date:%Y%m%d}:{to_date:%Y%m%d}"


def event_set_key(producer_id: str) -> str:
    return f"all_events:{producer_id}"


def iter_date_chunks(from_date: datetime, to_date: datetime, chunk_days: int) -> list[tuple[datetime, datetime]]:
    # Consecutive chunks share their boundary instant; callers de-duplicate by record id.
    step = timedelta(days=chunk_days)
    chunks: list[tuple[datetime, datetime]] = []
    current = from_date
    while current < to_date:
        chunk_end = min(current + step, to_date)
        chunks.append((current, chunk_end))
        current = chunk_end
    return chunks or [(from_date, to_date)]


class FetchEngine:
    def __init__(
        self,
        source: EventSource,
        *,
        config: FetcherConfig,
        response_cache: NamespacedCache,
        event_cache: NamespacedCache,
        state_store: StateStore | None = None,
        on_cache_hit: Callable[[str], Any] | None = None,
        now_fn: Callable[[], datetime] = utc_now,
    ):
        self.source = source
        self.config = config
        self.response_cache = response_cache
        self.event_cache = event_cache
        self.state_store = state_store
        self.on_cache_hit = on_cache_hit
        self._now = now_fn

    @property
    def incremental_enabled(self) -> bool:
        return self.config.enable_incremental and self.state_store is not None

    def fetch_all(
        self,
        producer_id: str,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        *,
        force_refresh: bool = False,
    ) -> tuple[list[Record], FetchStats]:
        started_monotonic = time.monotonic()
        now = self._now()
        from_date = from_date or now - DEFAULT_LOOKBACK
        to_date = to_date or now + DEFAULT_LOOKAHEAD
        if from_date > to_date:
            raise ValueError(
                {
                    "error_code": "INVALID_DATE_RANGE",
                    "message": "from_date must not be after to_date",
                    "producer_id": producer_id,
                }
            )

        logger.info(f"Starting event fetch for producer {producer_id} ({from_date:%Y-%m-%d} to {to_date:%Y-%m-%d})")
        cache_key = build_cache_key(producer_id, from_date, to_date)

        if not force_refresh:
            cached = self.response_cache.get(cache_key)
            if cached is not None:
                stats = FetchStats(cache_hits=1, total_records=len(cached), mode=FetchMode.CACHED)
                stats.execution_time_s = time.monotonic() - started_monotonic
                logger.info(f"Using cached events for {producer_id}: found {len(cached)} events")
                if self.on_cache_hit is not None:
                    self.on_cache_hit(producer_id)
                return cached, stats

        state = FetchState(batch_size=self.config.initial_batch_size)
        records: list[Record] | None = None
        try:
            if self.incremental_enabled:
                records = self._fetch_incremental(state, producer_id, from_date, to_date)
            if records is None:
                records = self._fetch_full(state, producer_id, from_date, to_date)
        except FetchError as exc:
            if exc.args and isinstance(exc.args[0], dict):
                exc.args[0].update(api_calls=state.stats.api_calls, errors=state.stats.errors)
            raise

        self.response_cache.set(cache_key, records, ttl=self.config.cache_ttl)

        stats = state.stats
        stats.mode = state.mode
        stats.total_records = len(records)
        stats.execution_time_s = time.monotonic() - started_monotonic
        logger.info(
            f"Fetch complete for {producer_id}. Retrieved {stats.total_records} events in "
            f"{stats.execution_time_s:.2f} seconds ({stats.api_calls} API calls, {stats.errors} errors)"
        )
        return records, stats

    def _fetch_full(
        self,
        state: FetchState,
        producer_id: str,
        from_date: datetime,
        to_date: datetime,
    ) -> list[Record]:
        state.mode = FetchMode.PAGINATED
        collected = _RecordAccumulator()
        try:
            self._paginate(state, producer_id, from_date, to_date, start_offset=0, into=collected)
        except RetriesExhaustedError as exc:
            if not self.config.date_chunk_fallback or state.chunk_fallback_attempted:
                raise
            logger.error(f"Pagination strategy failed for {producer_id}, falling back to date chunking: {exc}")
            self._fetch_date_chunked(state, producer_id, from_date, to_date, into=collected)

        self._remember_event_set(state, producer_id, from_date, to_date, collected.records)
        return collected.records

    def _fetch_date_chunked(
        self,
        state: FetchState,
        producer_id: str,
        from_date: datetime,
        to_date: datetime,
        *,
        into: _RecordAccumulator,
    ) -> None:
        state.mode = FetchMode.DATE_CHUNKED
        state.chunk_fallback_attempted = True
        for chunk_from, chunk_to in iter_date_chunks(from_date, to_date, self.config.date_chunk_days):
            logger.info(f"Fetching chunk for {producer_id} from {chunk_from:%Y-%m-%d} to {chunk_to:%Y-%m-%d}")
            self._paginate(state, producer_id, chunk_from, chunk_to, start_offset=0, into=into)
        logger.info(f"Date chunking complete for {producer_id}, retrieved {len(into.records)} events")

    def _fetch_incremental(
        self,
        state: FetchState,
        producer_id: str,
        from_date: datetime,
        to_date: datetime,
    ) -> list[Record] | None:
        state_store = self.state_store
        if state_store is None:
            return None
        watermark = state_store.get_watermark(producer_id)
        if watermark is None:
            return None
        event_set = self.event_cache.get(event_set_key(producer_id))
        if not self._event_set_covers(event_set, from_date, to_date):
            logger.info(f"No stored event set for {producer_id} covering the requested range, running full fetch")
            return None

        logger.info(f"Using incremental strategy for {producer_id}, fetching events after ID {watermark}")
        state.mode = FetchMode.INCREMENTAL
        state.high_watermark = watermark
        fresh = _RecordAccumulator()
        try:
            self._paginate(state, producer_id, from_date, to_date, start_offset=watermark + 1, into=fresh)
        except RetriesExhaustedError as exc:
            logger.error(f"Incremental strategy failed for {producer_id}, falling back to full fetch: {exc}")
            state.high_watermark = None
            return None

        records = merge_records(event_set["records"], fresh.records)
        self._remember_event_set(state, producer_id, from_date, to_date, records)
        logger.info(
            f"Incremental fetch successful for {producer_id}: {len(fresh.records)} new events, {len(records)} total"
        )
        return records

    def _event_set_covers(self, event_set: Any, from_date: datetime, to_date: datetime) -> bool:
        if not isinstance(event_set, dict) or not isinstance(event_set.get("records"), list):
            return False
        return event_set.get("from_date") == f"{from_date:%Y%m%d}" and event_set.get("to_date") == f"{to_date:%Y%m%d}"

    def _remember_event_set(
        self,
        state: FetchState,
        producer_id: str,
        from_date: datetime,
        to_date: datetime,
        records: list[Record],
    ) -> None:
        state_store = self.state_store
        if not self.config.enable_incremental or state_store is None:
            return
        if state.high_watermark is not None:
            state.high_watermark = state_store.advance_watermark(producer_id, state.high_watermark)
        self.event_cache.set(
            event_set_key(producer_id),
            {"from_date": f"{from_date:%Y%m%d}", "to_date": f"{to_date:%Y%m%d}", "records": records},
        )

    def _paginate(
        self,
        state: FetchState,
        producer_id: str,
        from_date: datetime,
        to_date: datetime,
        *,
        start_offset: int,
        into: _RecordAccumulator,
    ) -> None:
        state.offset = start_offset
        while True:
            page, limit = self._request_batch(state, producer_id, from_date, to_date)
            batch = page.records
            if not batch:
                break

            into.extend(batch)
            state.high_watermark = advance_watermark(state.high_watermark, batch)
            self._adapt_after_success(state, page, limit)

            highest = max((rid for rid in map(record_id, batch) if rid is not None), default=None)
            if highest is None or highest < state.offset:
                logger.info(f"No progress made in pagination for {producer_id}, ending fetch")
                break
            state.offset = highest + 1

            if page.has_more is False:
                break
            if len(batch) < limit and page.has_more is not True:
                break

    def _adapt_after_success(self, state: FetchState, page: PageResult, limit: int) -> None:
        if not self.config.adaptive_batch_sizing:
            return

        remote_limit = page.batch_limit
        if remote_limit is None and page.has_more is True and len(page.records) < limit:
            remote_limit = len(page.records)
        if remote_limit is not None:
            state.batch_ceiling = remote_limit if state.batch_ceiling is None else min(state.batch_ceiling, remote_limit)

        if state.batch_ceiling is not None and state.batch_size > state.batch_ceiling:
            next_size = self.config.clamp_batch_size(state.batch_ceiling)
            logger.info(f"Remote batch limit is {state.batch_ceiling}, reducing batch size from {state.batch_size} to {next_size}")
        else:
            next_size = grow_batch_size(state.batch_size, self.config, state.batch_ceiling)
            if next_size != state.batch_size:
                logger.info(f"Adapting batch size from {state.batch_size} to {next_size}")
        state.batch_size = next_size

    def _request_batch(
        self,
        state: FetchState,
        producer_id: str,
        from_date: datetime,
        to_date: datetime,
    ) -> tuple[PageResult, int]:
        state.retry_count = 0
        while True:
            limit = state.batch_size
            logger.info(f"Fetching batch for {producer_id} with offset={state.offset}, batch_size={limit}")
            state.stats.api_calls += 1
            page = self.source.list_records(
                producer_id=producer_id,
                from_date=from_date,
                to_date=to_date,
                offset=state.offset,
                limit=limit,
            )
            if page.status is PageStatus.OK:
                return page, limit

            state.stats.errors += 1
            if page.status is PageStatus.FATAL:
                raise FatalFetchError.build(
                    f"Remote source rejected request for {producer_id}: {page.message}",
                    producer_id=producer_id,
                    offset=state.offset,
                    upstream_error_code=page.error_code,
                )

            state.retry_count += 1
            logger.error(
                f"Error in batch for {producer_id} (attempt {state.retry_count}/{self.config.max_api_retries}): "
                f"{page.message}"
            )
            if state.retry_count >= self.config.max_api_retries:
                raise RetriesExhaustedError.build(
                    f"Batch for {producer_id} failed after {state.retry_count} attempts: {page.message}",
                    producer_id=producer_id,
                    offset=state.offset,
                    attempts=state.retry_count,
                    mode=state.mode.value,
                )

            if self.config.adaptive_batch_sizing:
                next_size = shrink_batch_size(state.batch_size, self.config)
                if next_size != state.batch_size:
                    logger.info(f"Reducing batch size from {state.batch_size} to {next_size} after error")
                state.batch_size = next_size

            delay = compute_backoff_delay(
                state.retry_count,
                base_s=self.config.retry_delay_base_s,
                cap_s=self.config.retry_delay_cap_s,
            )
            logger.info(f"Retrying after {delay:.2f}s delay")
            time.sleep(delay)
