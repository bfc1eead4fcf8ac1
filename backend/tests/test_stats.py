from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import time

import pytest

from evento_sync.db import SessionLocal
from evento_sync.enums import CacheNamespace
from evento_sync.services.cache import CacheEntry, InMemoryCacheStore, NamespacedCache, SqlCacheStore
from evento_sync.services.fetcher import FetchStats
from evento_sync.services.stats import (
    API_STATS_KEY,
    TOTALS_KEY,
    ProducerStats,
    StatsRepository,
    StatsSnapshot,
    compute_totals,
    merge_producer_stats,
)


class _SlowReadStore(InMemoryCacheStore):
    def get_entry(self, namespace: str, key: str) -> CacheEntry | None:
        entry = super().get_entry(namespace, key)
        time.sleep(0.002)
        return entry


def _repository(clock) -> StatsRepository:
    return StatsRepository(NamespacedCache(InMemoryCacheStore(), CacheNamespace.STATS, now_fn=clock), now_fn=clock)


def test_totals_ignore_reserved_entry(clock):
    producers = {
        "p1": ProducerStats(api_calls=4, errors=1, cache_hits=0),
        "p2": ProducerStats(api_calls=6, errors=0, cache_hits=2),
        TOTALS_KEY: ProducerStats(api_calls=1000, errors=1000, cache_hits=1000),
    }
    totals = compute_totals(producers, now=clock.now)
    assert (totals.api_calls, totals.errors, totals.cache_hits) == (10, 1, 2)
    assert totals.last_run == clock.now


def test_merge_replaces_producer_entry(clock):
    snapshot = StatsSnapshot.build({"p1": ProducerStats(api_calls=10, errors=5)}, now=clock.now)
    merged = merge_producer_stats(snapshot, "p1", ProducerStats(api_calls=2, errors=0), now=clock.now)
    assert merged.producers["p1"].api_calls == 2
    assert merged.totals.api_calls == 2
    assert merged.totals.errors == 0


def test_error_rate_is_zero_without_calls():
    assert ProducerStats().error_rate == 0.0
    assert ProducerStats(api_calls=3, errors=1).error_rate == 33.3


def test_persisted_totals_are_recomputed_on_load(clock):
    payload = {
        "p1": {"api_calls": 3, "errors": 1, "cache_hits": 0, "last_run": clock.now.isoformat()},
        TOTALS_KEY: {"api_calls": 999, "errors": 999, "cache_hits": 999, "last_run": clock.now.isoformat()},
    }
    snapshot = StatsSnapshot.from_payload(payload)
    assert snapshot.totals.api_calls == 3
    assert snapshot.totals.errors == 1
    assert snapshot.totals.last_run == clock.now
    assert StatsSnapshot.from_payload("garbage").producers == {}


def test_repository_record_persists_and_updates_totals(clock):
    repo = _repository(clock)
    repo.record("p1", FetchStats(api_calls=5, errors=1))
    clock.advance(minutes=5)
    snapshot = repo.record("p2", FetchStats(api_calls=2, cache_hits=1))

    assert set(snapshot.producers) == {"p1", "p2"}
    assert snapshot.totals.api_calls == 7
    assert snapshot.totals.cache_hits == 1
    assert snapshot.totals.last_run == clock.now

    stored = repo.cache.get(API_STATS_KEY)
    assert stored[TOTALS_KEY]["api_calls"] == 7
    assert stored["p1"]["errors"] == 1


def test_repository_rejects_reserved_producer_id(clock):
    with pytest.raises(ValueError):
        _repository(clock).record(TOTALS_KEY, FetchStats())


def test_recompute_resets_totals_when_empty(clock):
    repo = _repository(clock)
    snapshot = repo.recompute()
    assert snapshot.producers == {}
    assert snapshot.totals.api_calls == 0
    assert snapshot.totals.last_run == clock.now
    assert repo.cache.get(API_STATS_KEY)[TOTALS_KEY]["api_calls"] == 0


def test_concurrent_records_are_not_lost(clock):
    repo = _repository(clock)
    with ThreadPoolExecutor(max_workers=4) as pool:
        list(pool.map(lambda i: repo.record(f"p{i}", FetchStats(api_calls=1)), range(20)))

    snapshot = repo.load()
    assert len(snapshot.producers) == 20
    assert snapshot.totals.api_calls == 20


@pytest.mark.parametrize("backend", ["memory", "sql"])
def test_repositories_sharing_a_store_keep_each_others_producers(backend: str, clock):
    shared = _SlowReadStore()

    def _repo() -> StatsRepository:
        store = shared if backend == "memory" else SqlCacheStore(SessionLocal)
        return StatsRepository(NamespacedCache(store, CacheNamespace.STATS, now_fn=clock), now_fn=clock)

    run_a, run_b = _repo(), _repo()
    with ThreadPoolExecutor(max_workers=4) as pool:
        list(
            pool.map(
                lambda i: (run_a if i % 2 else run_b).record(f"p{i}", FetchStats(api_calls=1, errors=i % 2)),
                range(12),
            )
        )

    snapshot = _repo().load()
    assert set(snapshot.producers) == {f"p{i}" for i in range(12)}
    assert snapshot.totals.api_calls == 12
    assert snapshot.totals.errors == 6


def test_cache_hit_keeps_last_api_figures(clock):
    repo = _repository(clock)
    repo.record("p1", FetchStats(api_calls=4, errors=1))
    clock.advance(minutes=1)

    snapshot = repo.record_cache_hit("p1")
    p1 = snapshot.producers["p1"]
    assert (p1.api_calls, p1.errors, p1.cache_hits) == (4, 1, 1)
    assert p1.last_run == clock.now

    snapshot = repo.record_cache_hit("p9")
    assert snapshot.producers["p9"].cache_hits == 1
    assert snapshot.producers["p9"].api_calls == 0
    assert snapshot.totals.cache_hits == 2
    assert repo.load().totals.cache_hits == 2

    with pytest.raises(ValueError):
        repo.record_cache_hit(TOTALS_KEY)
