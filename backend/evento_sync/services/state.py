from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy.orm import Session

from evento_sync.db import SessionLocal
from evento_sync.models import SyncState

LAST_FULL_PURGE_KEY = "last_full_cache_purge"
WATERMARK_PREFIX = "watermark:"


def _parse_instant(raw: Any) -> datetime | None:
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=timezone.utc)


class StateStore:
    """Small persisted key/value state shared across maintenance runs."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory

    def get(self, name: str) -> Any | None:
        with self._session_factory() as db:
            row = db.get(SyncState, name)
            return row.value if row is not None else None

    def set(self, name: str, value: Any) -> None:
        with self._session_factory() as db:
            row = db.get(SyncState, name)
            if row is None:
                db.add(SyncState(name=name, value=value))
            else:
                row.value = value
            db.commit()

    def get_last_full_purge(self) -> datetime | None:
        return _parse_instant(self.get(LAST_FULL_PURGE_KEY))

    def set_last_full_purge(self, when: datetime) -> None:
        self.set(LAST_FULL_PURGE_KEY, when.isoformat())

    def get_watermark(self, producer_id: str) -> int | None:
        raw = self.get(f"{WATERMARK_PREFIX}{producer_id}")
        return raw if isinstance(raw, int) and raw > 0 else None

    def advance_watermark(self, producer_id: str, candidate: int) -> int:
        name = f"{WATERMARK_PREFIX}{producer_id}"
        with self._session_factory() as db:
            row = db.get(SyncState, name)
            current = row.value if row is not None and isinstance(row.value, int) else 0
            advanced = max(current, int(candidate))
            if row is None:
                db.add(SyncState(name=name, value=advanced))
            elif advanced != current:
                row.value = advanced
            db.commit()
            return advanced
