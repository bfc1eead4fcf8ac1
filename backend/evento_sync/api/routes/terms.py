from __future__ import annotations

from fastapi import APIRouter

from evento_sync.core.config import get_settings
from evento_sync.schemas import TermCheckItem, TermCheckRequest, TermCheckResponse
from evento_sync.services.cache import utc_now
from evento_sync.services.creation_window import evaluate_creation_window

router = APIRouter(prefix="/v1", tags=["terms"])


@router.post("/terms:check", response_model=TermCheckResponse)
def check_terms(req: TermCheckRequest) -> TermCheckResponse:
    now = req.now or utc_now()
    decision = evaluate_creation_window(get_settings().term_settings(), event_start=req.event_start, now=now)
    return TermCheckResponse(
        permitted=decision.permitted,
        term=decision.term,
        window=decision.window,
        checked_at=now,
        checks=[
            TermCheckItem(
                kind=check.kind,
                window=check.window,
                restrict_to_start=check.restrict_to_start,
                permitted=check.permitted,
                error=check.error,
            )
            for check in decision.checks
        ],
    )
