from __future__ import annotations

import pytest

from evento_sync.db import Base, SessionLocal, get_engine
from evento_sync.enums import CacheNamespace
from evento_sync.errors import CacheError
from evento_sync.services.cache import (
    CacheEntry,
    CacheStore,
    EventoCaches,
    InMemoryCacheStore,
    NamespacedCache,
    SqlCacheStore,
)


class _BrokenStore(CacheStore):
    def get_entry(self, namespace: str, key: str) -> CacheEntry | None:
        raise CacheError.build("store offline")

    def put_entry(self, entry: CacheEntry) -> None:
        raise CacheError.build("store offline")

    def delete_entry(self, namespace: str, key: str) -> None:
        raise CacheError.build("store offline")

    def clear_namespace(self, namespace: str) -> int:
        raise CacheError.build("store offline")

    def update_entry(self, namespace: str, key: str, fn) -> CacheEntry:
        raise CacheError.build("store offline")


@pytest.fixture(params=["memory", "sql"])
def store(request) -> CacheStore:
    if request.param == "memory":
        return InMemoryCacheStore()
    return SqlCacheStore(SessionLocal)


def test_value_expires_after_ttl_and_is_removed(store, clock):
    cache = NamespacedCache(store, CacheNamespace.API, now_fn=clock)
    assert cache.set("k", {"events": [1, 2, 3]}, ttl=60)

    clock.advance(seconds=60)
    assert cache.get("k") == {"events": [1, 2, 3]}

    clock.advance(seconds=1)
    assert cache.get("k") is None
    assert store.get_entry(CacheNamespace.API.value, "k") is None


def test_entry_without_ttl_never_expires(store, clock):
    cache = NamespacedCache(store, CacheNamespace.EVENTS, now_fn=clock)
    cache.set("all_events:p1", {"records": []})
    clock.advance(days=3650)
    assert cache.get("all_events:p1") == {"records": []}


def test_namespaces_are_isolated(store, clock):
    caches = EventoCaches.on_store(store, now_fn=clock)
    caches.api.set("shared", "api-value")
    caches.producers.set("shared", "producer-value")

    assert caches.api.get("shared") == "api-value"
    assert caches.producers.get("shared") == "producer-value"

    assert caches.api.purge()
    assert caches.api.get("shared") is None
    assert caches.producers.get("shared") == "producer-value"


def test_purge_all_keeps_statistics(store, clock):
    caches = EventoCaches.on_store(store, now_fn=clock)
    for cache in (caches.api, caches.producers, caches.events, caches.stats):
        cache.set("k", "v")

    assert caches.purge_all()

    assert caches.api.get("k") is None
    assert caches.producers.get("k") is None
    assert caches.events.get("k") is None
    assert caches.stats.get("k") == "v"


def test_get_or_compute_calls_producer_once(store, clock):
    cache = NamespacedCache(store, CacheNamespace.PRODUCERS, now_fn=clock)
    calls: list[int] = []

    def _compute() -> list[str]:
        calls.append(1)
        return ["p1", "p2"]

    assert cache.get_or_compute("active", _compute, ttl=86400) == ["p1", "p2"]
    assert cache.get_or_compute("active", _compute, ttl=86400) == ["p1", "p2"]
    assert len(calls) == 1


def test_bulk_get_and_set(store, clock):
    cache = NamespacedCache(store, CacheNamespace.API, now_fn=clock)
    assert cache.set_many({"a": 1, "b": 2}, ttl=10)
    assert cache.get_many(["a", "b", "missing"]) == {"a": 1, "b": 2}
    assert cache.has("a")
    assert cache.delete("a")
    assert not cache.has("a")


def test_overwrite_replaces_value_and_expiry(store, clock):
    cache = NamespacedCache(store, CacheNamespace.API, now_fn=clock)
    cache.set("k", "old", ttl=10)
    cache.set("k", "new")
    clock.advance(seconds=20)
    assert cache.get("k") == "new"


def test_unavailable_store_degrades_to_miss(clock):
    cache = NamespacedCache(_BrokenStore(), CacheNamespace.API, now_fn=clock)
    assert cache.get("k") is None
    assert cache.set("k", "v") is False
    assert cache.delete("k") is False
    assert cache.purge() is False
    assert cache.update("k", lambda current: "v") is None
    assert cache.get_or_compute("k", lambda: "computed") == "computed"


def test_sql_store_wraps_database_errors():
    store = SqlCacheStore(SessionLocal)
    Base.metadata.drop_all(bind=get_engine())
    with pytest.raises(CacheError) as exc_info:
        store.get_entry("evento_api", "k")
    assert exc_info.value.args[0]["error_code"] == "CACHE_UNAVAILABLE"


def test_update_applies_function_to_current_value(store, clock):
    cache = NamespacedCache(store, CacheNamespace.STATS, now_fn=clock)
    assert cache.update("counter", lambda current: (current or 0) + 1) == 1
    assert cache.update("counter", lambda current: (current or 0) + 1) == 2
    assert cache.get("counter") == 2


def test_update_treats_expired_value_as_missing(store, clock):
    cache = NamespacedCache(store, CacheNamespace.API, now_fn=clock)
    cache.set("k", ["stale"], ttl=10)
    clock.advance(seconds=11)

    seen: list[object] = []
    assert cache.update("k", lambda current: seen.append(current) or ["fresh"], ttl=10) == ["fresh"]
    assert seen == [None]
    clock.advance(seconds=5)
    assert cache.get("k") == ["fresh"]
