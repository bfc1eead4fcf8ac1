from __future__ import annotations

from fastapi import APIRouter

from evento_sync.core.config import get_settings
from evento_sync.schemas import ProducerStatsResponse, StatsTotalsResponse, SyncStatsResponse
from evento_sync.services.container import build_stats_repository

router = APIRouter(prefix="/v1/sync", tags=["sync"])


@router.get("/stats", response_model=SyncStatsResponse)
def sync_stats() -> SyncStatsResponse:
    snapshot = build_stats_repository(get_settings()).load()
    totals = snapshot.totals
    return SyncStatsResponse(
        producers=[
            ProducerStatsResponse(
                producer_id=producer_id,
                api_calls=stats.api_calls,
                errors=stats.errors,
                cache_hits=stats.cache_hits,
                error_rate=stats.error_rate,
                last_run=stats.last_run,
            )
            for producer_id, stats in sorted(snapshot.producers.items())
        ],
        totals=StatsTotalsResponse(
            api_calls=totals.api_calls,
            errors=totals.errors,
            cache_hits=totals.cache_hits,
            error_rate=totals.error_rate,
            last_run=totals.last_run,
        ),
    )
