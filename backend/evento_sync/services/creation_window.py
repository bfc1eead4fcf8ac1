from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
import logging
from typing import Any

from evento_sync.enums import TermKind
from evento_sync.errors import TermValidationError, detail_from_exception
from evento_sync.services.calendar import Term, TermSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TermCheck:
    kind: TermKind
    window: str | None
    restrict_to_start: bool
    permitted: bool
    error: dict[str, Any] | None = None


@dataclass(frozen=True)
class CreationWindowDecision:
    permitted: bool
    term: TermKind | None
    window: str | None
    checks: list[TermCheck] = field(default_factory=list)

    @property
    def errors(self) -> dict[str, dict[str, Any]]:
        return {check.kind.value: check.error for check in self.checks if check.error is not None}


def _check_term(
    term_settings: TermSettings,
    kind: TermKind,
    *,
    event_start: datetime,
    now: datetime,
    tz: tzinfo,
) -> TermCheck:
    try:
        term: Term = term_settings.build_term(kind, reference=now, event_time=event_start, tz=tz)
    except TermValidationError as exc:
        detail = detail_from_exception(exc)
        logger.warning(f"Invalid {kind.value} term configuration: {detail.get('message')}")
        restrict = (
            term_settings.spring_restrict_to_start if kind is TermKind.SPRING else term_settings.autumn_restrict_to_start
        )
        return TermCheck(kind=kind, window=None, restrict_to_start=restrict, permitted=False, error=detail)
    return TermCheck(
        kind=kind,
        window=str(term.window),
        restrict_to_start=term.restrict_to_start,
        permitted=term.is_valid_creation_instant(now),
    )


def evaluate_creation_window(
    term_settings: TermSettings,
    *,
    event_start: datetime,
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> CreationWindowDecision:
    checks = [
        _check_term(term_settings, kind, event_start=event_start, now=now, tz=tz)
        for kind in (TermKind.SPRING, TermKind.AUTUMN)
    ]
    for check in checks:
        if check.permitted:
            return CreationWindowDecision(permitted=True, term=check.kind, window=check.window, checks=checks)
    return CreationWindowDecision(permitted=False, term=None, window=None, checks=checks)
