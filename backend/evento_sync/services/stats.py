from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
import logging
from typing import Any, Callable, Mapping

from evento_sync.services.cache import NamespacedCache, utc_now
from evento_sync.services.fetcher import FetchStats

logger = logging.getLogger(__name__)

API_STATS_KEY = "api_stats"
TOTALS_KEY = "totals"


def _parse_last_run(raw: Any) -> datetime | None:
    if isinstance(raw, datetime):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=timezone.utc)
    return None


def _as_count(raw: Any) -> int:
    return raw if isinstance(raw, int) and not isinstance(raw, bool) and raw >= 0 else 0


@dataclass(frozen=True)
class ProducerStats:
    api_calls: int = 0
    errors: int = 0
    cache_hits: int = 0
    last_run: datetime | None = None

    @classmethod
    def from_fetch(cls, stats: FetchStats, *, last_run: datetime) -> ProducerStats:
        return cls(api_calls=stats.api_calls, errors=stats.errors, cache_hits=stats.cache_hits, last_run=last_run)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> ProducerStats:
        return cls(
            api_calls=_as_count(raw.get("api_calls")),
            errors=_as_count(raw.get("errors")),
            cache_hits=_as_count(raw.get("cache_hits")),
            last_run=_parse_last_run(raw.get("last_run")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "api_calls": self.api_calls,
            "errors": self.errors,
            "cache_hits": self.cache_hits,
            "last_run": self.last_run.isoformat() if self.last_run else None,
        }

    @property
    def error_rate(self) -> float:
        return round(self.errors / self.api_calls * 100, 1) if self.api_calls > 0 else 0.0


@dataclass(frozen=True)
class StatsSnapshot:
    producers: dict[str, ProducerStats] = field(default_factory=dict)
    totals: ProducerStats = field(default_factory=ProducerStats)

    @classmethod
    def build(cls, producers: Mapping[str, ProducerStats], *, now: datetime) -> StatsSnapshot:
        entries = {k: v for k, v in producers.items() if k != TOTALS_KEY}
        return cls(producers=entries, totals=compute_totals(entries, now=now))

    @classmethod
    def from_payload(cls, payload: Any) -> StatsSnapshot:
        if not isinstance(payload, dict):
            return cls()
        producers = {
            str(key): ProducerStats.from_dict(value)
            for key, value in payload.items()
            if key != TOTALS_KEY and isinstance(value, dict)
        }
        totals_raw = payload.get(TOTALS_KEY)
        last_run = _parse_last_run(totals_raw.get("last_run")) if isinstance(totals_raw, dict) else None
        # Totals are derived data; never trust the persisted copy.
        return cls(producers=producers, totals=replace(compute_totals(producers, now=None), last_run=last_run))

    def to_payload(self) -> dict[str, Any]:
        payload = {producer_id: stats.to_dict() for producer_id, stats in sorted(self.producers.items())}
        payload[TOTALS_KEY] = self.totals.to_dict()
        return payload


def compute_totals(producers: Mapping[str, ProducerStats], *, now: datetime | None) -> ProducerStats:
    api_calls = errors = cache_hits = 0
    for producer_id, stats in producers.items():
        if producer_id == TOTALS_KEY:
            continue
        api_calls += stats.api_calls
        errors += stats.errors
        cache_hits += stats.cache_hits
    return ProducerStats(api_calls=api_calls, errors=errors, cache_hits=cache_hits, last_run=now)


def merge_producer_stats(
    snapshot: StatsSnapshot,
    producer_id: str,
    stats: ProducerStats,
    *,
    now: datetime,
) -> StatsSnapshot:
    producers = dict(snapshot.producers)
    producers[producer_id] = stats
    return StatsSnapshot.build(producers, now=now)


def _check_producer_id(producer_id: str) -> None:
    if producer_id == TOTALS_KEY:
        raise ValueError({"error_code": "RESERVED_PRODUCER_ID", "message": f"'{TOTALS_KEY}' is reserved"})


class StatsRepository:
    """
    Persists the ``api_stats`` mapping.

    Every change is applied through the store's atomic update, so repositories built
    independently (one per maintenance run) never overwrite each other's producers.
    """

    def __init__(self, cache: NamespacedCache, *, now_fn: Callable[[], datetime] = utc_now):
        self.cache = cache
        self._now = now_fn

    def load(self) -> StatsSnapshot:
        return StatsSnapshot.from_payload(self.cache.get(API_STATS_KEY))

    def record(self, producer_id: str, fetch_stats: FetchStats) -> StatsSnapshot:
        _check_producer_id(producer_id)
        now = self._now()
        stats = ProducerStats.from_fetch(fetch_stats, last_run=now)
        return self._apply(lambda snapshot: merge_producer_stats(snapshot, producer_id, stats, now=now))

    def record_cache_hit(self, producer_id: str) -> StatsSnapshot:
        """Count one cached fetch against the producer, keeping its last API figures."""
        _check_producer_id(producer_id)
        now = self._now()

        def _bump(snapshot: StatsSnapshot) -> StatsSnapshot:
            current = snapshot.producers.get(producer_id, ProducerStats())
            bumped = replace(current, cache_hits=current.cache_hits + 1, last_run=now)
            return merge_producer_stats(snapshot, producer_id, bumped, now=now)

        return self._apply(_bump)

    def recompute(self) -> StatsSnapshot:
        now = self._now()
        return self._apply(lambda snapshot: StatsSnapshot.build(snapshot.producers, now=now))

    def _apply(self, change: Callable[[StatsSnapshot], StatsSnapshot]) -> StatsSnapshot:
        payload = self.cache.update(API_STATS_KEY, lambda current: change(StatsSnapshot.from_payload(current)).to_payload())
        if payload is None:
            logger.warning("API stats could not be persisted; cache store unavailable")
            return change(self.load())
        return StatsSnapshot.from_payload(payload)
