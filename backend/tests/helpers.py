from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from evento_sync.services.evento_source import EventSource, PageResult, Producer


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 10, 8, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def event(event_id: int, start: datetime) -> dict[str, Any]:
    return {"id": event_id, "name": f"Event {event_id}", "start": start.isoformat()}


def events_between(first_id: int, count: int, start: datetime) -> list[dict[str, Any]]:
    return [event(first_id + i, start + timedelta(hours=i)) for i in range(count)]


class ScriptedSource(EventSource):
    """In-memory Evento stand-in honouring the key cursor, the date range and an optional remote cap."""

    source_id = "SCRIPTED"

    def __init__(
        self,
        records: dict[str, list[dict[str, Any]]] | None = None,
        *,
        failures: list[PageResult] | None = None,
        fail_when: Callable[[dict[str, Any]], PageResult | None] | None = None,
        batch_limit: int | None = None,
        producers: list[Producer] | None = None,
    ):
        self.records = records or {}
        self.failures = list(failures or [])
        self.fail_when = fail_when
        self.batch_limit = batch_limit
        self.producers = producers or []
        self.calls: list[dict[str, Any]] = []
        self.producer_list_calls = 0

    def list_records(
        self,
        *,
        producer_id: str,
        from_date: datetime,
        to_date: datetime,
        offset: int,
        limit: int,
    ) -> PageResult:
        call = {
            "producer_id": producer_id,
            "from_date": from_date,
            "to_date": to_date,
            "offset": offset,
            "limit": limit,
        }
        self.calls.append(call)
        if self.failures:
            return self.failures.pop(0)
        if self.fail_when is not None:
            failure = self.fail_when(call)
            if failure is not None:
                return failure

        rows = sorted(
            (
                row
                for row in self.records.get(producer_id, [])
                if row["id"] >= offset and from_date <= datetime.fromisoformat(row["start"]) <= to_date
            ),
            key=lambda row: row["id"],
        )
        effective = min(limit, self.batch_limit) if self.batch_limit else limit
        return PageResult.ok(rows[:effective], has_more=len(rows) > effective, batch_limit=self.batch_limit)

    def list_active_producers(self) -> list[Producer]:
        self.producer_list_calls += 1
        return list(self.producers)
