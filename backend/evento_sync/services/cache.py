"""
Namespaced TTL cache fronting the remote event source.

Each namespace is an independent logical cache sharing one backing store. Entries are
never returned once their expiry has passed; a failing store degrades to a cache miss.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
import copy
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
import threading
from typing import Any, Callable, Iterable

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from evento_sync.enums import CacheNamespace
from evento_sync.errors import CacheError
from evento_sync.models import CacheEntryRow

logger = logging.getLogger(__name__)

NowFn = Callable[[], datetime]

NAMESPACE_TTLS: dict[CacheNamespace, int | None] = {
    CacheNamespace.API: 3600,
    CacheNamespace.PRODUCERS: 86400,
    CacheNamespace.EVENTS: None,
    CacheNamespace.STATS: None,
}


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _to_naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _to_aware_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@dataclass
class CacheEntry:
    namespace: str
    key: str
    value: Any
    expires_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at


class CacheStore(ABC):
    @abstractmethod
    def get_entry(self, namespace: str, key: str) -> CacheEntry | None:
        raise NotImplementedError

    @abstractmethod
    def put_entry(self, entry: CacheEntry) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete_entry(self, namespace: str, key: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def clear_namespace(self, namespace: str) -> int:
        raise NotImplementedError

    @abstractmethod
    def update_entry(
        self,
        namespace: str,
        key: str,
        fn: Callable[[CacheEntry | None], CacheEntry],
    ) -> CacheEntry:
        """Replace the entry with ``fn(current)`` as one atomic read-modify-write."""
        raise NotImplementedError


class InMemoryCacheStore(CacheStore):
    """Process-local store; values are deep-copied in and out as if serialized."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], CacheEntry] = {}
        self._lock = threading.RLock()

    def get_entry(self, namespace: str, key: str) -> CacheEntry | None:
        with self._lock:
            entry = self._entries.get((namespace, key))
            return copy.deepcopy(entry) if entry is not None else None

    def put_entry(self, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[(entry.namespace, entry.key)] = copy.deepcopy(entry)

    def delete_entry(self, namespace: str, key: str) -> None:
        with self._lock:
            self._entries.pop((namespace, key), None)

    def clear_namespace(self, namespace: str) -> int:
        with self._lock:
            doomed = [k for k in self._entries if k[0] == namespace]
            for k in doomed:
                del self._entries[k]
            return len(doomed)

    def update_entry(
        self,
        namespace: str,
        key: str,
        fn: Callable[[CacheEntry | None], CacheEntry],
    ) -> CacheEntry:
        with self._lock:
            current = self._entries.get((namespace, key))
            entry = fn(copy.deepcopy(current) if current is not None else None)
            self._entries[(namespace, key)] = copy.deepcopy(entry)
            return copy.deepcopy(entry)


class SqlCacheStore(CacheStore):
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def _run(self, action: str, fn: Callable[[Session], Any]) -> Any:
        try:
            with self._session_factory() as db:
                result = fn(db)
                db.commit()
                return result
        except SQLAlchemyError as exc:
            raise CacheError.build(f"Cache store {action} failed: {exc}", action=action) from exc

    @staticmethod
    def _to_entry(row: CacheEntryRow) -> CacheEntry:
        return CacheEntry(
            namespace=row.namespace,
            key=row.key,
            value=row.value,
            expires_at=_to_aware_utc(row.expires_at),
            created_at=_to_aware_utc(row.created_at) or utc_now(),
        )

    @staticmethod
    def _write(db: Session, row: CacheEntryRow | None, entry: CacheEntry) -> None:
        if row is None:
            row = CacheEntryRow(namespace=entry.namespace, key=entry.key)
            db.add(row)
        row.value = entry.value
        row.expires_at = _to_naive_utc(entry.expires_at)
        row.created_at = _to_naive_utc(entry.created_at)

    def get_entry(self, namespace: str, key: str) -> CacheEntry | None:
        def _get(db: Session) -> CacheEntry | None:
            row = db.get(CacheEntryRow, (namespace, key))
            return self._to_entry(row) if row is not None else None

        return self._run("get", _get)

    def put_entry(self, entry: CacheEntry) -> None:
        self._run("set", lambda db: self._write(db, db.get(CacheEntryRow, (entry.namespace, entry.key)), entry))

    def update_entry(
        self,
        namespace: str,
        key: str,
        fn: Callable[[CacheEntry | None], CacheEntry],
    ) -> CacheEntry:
        where = (CacheEntryRow.namespace == namespace, CacheEntryRow.key == key)

        def _update(db: Session) -> CacheEntry:
            # A no-op write first takes the write lock on SQLite, where FOR UPDATE is not rendered.
            db.execute(
                update(CacheEntryRow)
                .where(*where)
                .values(created_at=CacheEntryRow.created_at)
                .execution_options(synchronize_session=False)
            )
            row = db.execute(select(CacheEntryRow).where(*where).with_for_update()).scalar_one_or_none()
            entry = fn(self._to_entry(row) if row is not None else None)
            self._write(db, row, entry)
            return entry

        return self._run("update", _update)

    def delete_entry(self, namespace: str, key: str) -> None:
        self._run(
            "delete",
            lambda db: db.execute(
                delete(CacheEntryRow).where(CacheEntryRow.namespace == namespace, CacheEntryRow.key == key)
            ),
        )

    def clear_namespace(self, namespace: str) -> int:
        def _clear(db: Session) -> int:
            keys = db.execute(select(CacheEntryRow.key).where(CacheEntryRow.namespace == namespace)).scalars().all()
            db.execute(delete(CacheEntryRow).where(CacheEntryRow.namespace == namespace))
            return len(keys)

        return self._run("purge", _clear)


class NamespacedCache:
    def __init__(self, store: CacheStore, namespace: CacheNamespace | str, *, now_fn: NowFn = utc_now):
        self.store = store
        self.namespace = namespace.value if isinstance(namespace, CacheNamespace) else str(namespace)
        self._now = now_fn

    def get(self, key: str) -> Any | None:
        try:
            entry = self.store.get_entry(self.namespace, key)
            if entry is None:
                return None
            if entry.is_expired(self._now()):
                self.store.delete_entry(self.namespace, key)
                return None
            return entry.value
        except CacheError as exc:
            logger.warning(f"CACHE UNAVAILABLE (get {self.namespace}:{key}), treating as miss: {exc}")
            return None

    def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        now = self._now()
        expires_at = now + timedelta(seconds=ttl) if ttl is not None else None
        entry = CacheEntry(namespace=self.namespace, key=key, value=value, expires_at=expires_at, created_at=now)
        try:
            self.store.put_entry(entry)
            return True
        except CacheError as exc:
            logger.warning(f"CACHE UNAVAILABLE (set {self.namespace}:{key}), value not cached: {exc}")
            return False

    def delete(self, key: str) -> bool:
        try:
            self.store.delete_entry(self.namespace, key)
            return True
        except CacheError as exc:
            logger.warning(f"CACHE UNAVAILABLE (delete {self.namespace}:{key}): {exc}")
            return False

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        found: dict[str, Any] = {}
        for key in keys:
            value = self.get(key)
            if value is not None:
                found[key] = value
        return found

    def set_many(self, items: dict[str, Any], ttl: int | None = None) -> bool:
        ok = True
        for key, value in items.items():
            ok = self.set(key, value, ttl) and ok
        return ok

    def get_or_compute(self, key: str, compute: Callable[[], Any], ttl: int | None = None) -> Any:
        value = self.get(key)
        if value is not None:
            return value
        value = compute()
        self.set(key, value, ttl)
        return value

    def update(self, key: str, fn: Callable[[Any | None], Any], ttl: int | None = None) -> Any | None:
        """Atomically store ``fn(current)``; returns the new value, or None when the store is unavailable."""
        now = self._now()
        expires_at = now + timedelta(seconds=ttl) if ttl is not None else None

        def _apply(current: CacheEntry | None) -> CacheEntry:
            value = None if current is None or current.is_expired(now) else current.value
            return CacheEntry(namespace=self.namespace, key=key, value=fn(value), expires_at=expires_at, created_at=now)

        try:
            return self.store.update_entry(self.namespace, key, _apply).value
        except CacheError as exc:
            logger.warning(f"CACHE UNAVAILABLE (update {self.namespace}:{key}), value not stored: {exc}")
            return None

    def purge(self) -> bool:
        try:
            count = self.store.clear_namespace(self.namespace)
        except CacheError as exc:
            logger.error(f"CACHE PURGE FAILED for {self.namespace}: {exc}")
            return False
        logger.info(f"Purged {count} entries from {self.namespace}")
        return True


@dataclass
class EventoCaches:
    api: NamespacedCache
    producers: NamespacedCache
    events: NamespacedCache
    stats: NamespacedCache

    @classmethod
    def on_store(cls, store: CacheStore, *, now_fn: NowFn = utc_now) -> EventoCaches:
        return cls(
            api=NamespacedCache(store, CacheNamespace.API, now_fn=now_fn),
            producers=NamespacedCache(store, CacheNamespace.PRODUCERS, now_fn=now_fn),
            events=NamespacedCache(store, CacheNamespace.EVENTS, now_fn=now_fn),
            stats=NamespacedCache(store, CacheNamespace.STATS, now_fn=now_fn),
        )

    def purge_all(self) -> bool:
        # Statistics are kept across full purges.
        results = [cache.purge() for cache in (self.api, self.producers, self.events)]
        return all(results)
