from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from evento_sync.enums import TermKind


class ProducerStatsResponse(BaseModel):
    producer_id: str
    api_calls: int
    errors: int
    cache_hits: int
    error_rate: float
    last_run: datetime | None = None


class StatsTotalsResponse(BaseModel):
    api_calls: int
    errors: int
    cache_hits: int
    error_rate: float
    last_run: datetime | None = None


class SyncStatsResponse(BaseModel):
    producers: list[ProducerStatsResponse] = Field(default_factory=list)
    totals: StatsTotalsResponse


class TermCheckRequest(BaseModel):
    event_start: datetime
    now: datetime | None = None


class TermCheckItem(BaseModel):
    kind: TermKind
    window: str | None = None
    restrict_to_start: bool
    permitted: bool
    error: dict[str, Any] | None = None


class TermCheckResponse(BaseModel):
    permitted: bool
    term: TermKind | None = None
    window: str | None = None
    checked_at: datetime
    checks: list[TermCheckItem] = Field(default_factory=list)
