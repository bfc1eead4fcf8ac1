from __future__ import annotations

from datetime import datetime, timezone

import pytest

from evento_sync.enums import TermKind
from evento_sync.errors import TermValidationError
from evento_sync.services.calendar import CalendarWindow, Term, TermSettings
from evento_sync.services.creation_window import evaluate_creation_window


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def _settings(**overrides) -> TermSettings:
    values = {
        "spring_start_day": 1,
        "spring_start_month": 2,
        "spring_end_day": 31,
        "spring_end_month": 7,
        "autumn_start_day": 1,
        "autumn_start_month": 8,
        "autumn_end_day": 31,
        "autumn_end_month": 1,
        "spring_restrict_to_start": True,
        "autumn_restrict_to_start": True,
    }
    values.update(overrides)
    return TermSettings(**values)


def _spring(reference: datetime, *, restrict: bool = False) -> Term:
    return Term.spring(
        start_day=1,
        start_month=2,
        end_day=31,
        end_month=7,
        reference=reference,
        event_time=reference,
        restrict_to_start=restrict,
    )


def test_window_within_one_year():
    window = CalendarWindow.resolve(
        start_day=1, start_month=2, end_day=31, end_month=7, reference=_utc(2026, 3, 10), event_time=_utc(2026, 4, 1)
    )
    assert window.start == _utc(2026, 2, 1)
    assert window.end == _utc(2026, 7, 31)
    assert str(window) == "2026-02-01 to 2026-07-31"


def test_wrapping_window_moves_start_back_before_it_begins():
    window = CalendarWindow.resolve(
        start_day=1, start_month=8, end_day=31, end_month=1, reference=_utc(2026, 1, 15), event_time=_utc(2026, 1, 20)
    )
    assert window.start == _utc(2025, 8, 1)
    assert window.end == _utc(2026, 1, 31)


def test_wrapping_window_moves_end_forward_once_started():
    window = CalendarWindow.resolve(
        start_day=1, start_month=8, end_day=31, end_month=1, reference=_utc(2026, 9, 1), event_time=_utc(2026, 10, 1)
    )
    assert window.start == _utc(2026, 8, 1)
    assert window.end == _utc(2027, 1, 31)


def test_year_follows_later_of_reference_and_event():
    window = CalendarWindow.resolve(
        start_day=1, start_month=2, end_day=31, end_month=7, reference=_utc(2026, 3, 10), event_time=_utc(2027, 3, 1)
    )
    assert window.start.year == 2027


def test_february_29_rolls_into_march_in_common_years():
    window = CalendarWindow.resolve(
        start_day=29, start_month=2, end_day=31, end_month=7, reference=_utc(2027, 1, 1), event_time=_utc(2027, 1, 1)
    )
    assert window.start == _utc(2027, 3, 1)


@pytest.mark.parametrize(
    ("day", "month"),
    [(30, 2), (31, 4), (0, 5), (1, 13), (32, 1)],
)
def test_invalid_anchor_is_rejected(day: int, month: int):
    with pytest.raises(TermValidationError) as exc_info:
        CalendarWindow.resolve(
            start_day=day,
            start_month=month,
            end_day=31,
            end_month=12,
            reference=_utc(2026, 1, 1),
            event_time=_utc(2026, 1, 1),
        )
    assert exc_info.value.args[0]["error_code"] == "TERM_VALIDATION_ERROR"


def test_contains_is_inclusive_and_accepts_naive_instants():
    window = _spring(_utc(2026, 3, 10)).window
    assert window.contains(_utc(2026, 2, 1))
    assert window.contains(_utc(2026, 7, 31))
    assert window.contains(datetime(2026, 5, 5, 12, 0))
    assert not window.contains(_utc(2026, 1, 31, 23, 59))


def test_overlaps():
    spring = _spring(_utc(2026, 3, 10)).window
    autumn = CalendarWindow.resolve(
        start_day=1, start_month=8, end_day=31, end_month=1, reference=_utc(2026, 9, 1), event_time=_utc(2026, 9, 1)
    )
    assert not spring.overlaps(autumn)
    assert spring.overlaps(spring)


def test_restricted_term_allows_only_first_day_grace():
    term = _spring(_utc(2026, 3, 10), restrict=True)
    assert term.is_valid_creation_instant(_utc(2026, 2, 1, 9))
    assert term.is_valid_creation_instant(_utc(2026, 2, 2))
    assert not term.is_valid_creation_instant(_utc(2026, 2, 2, 0, 0, 1))
    assert not term.is_valid_creation_instant(_utc(2026, 1, 31, 23))


def test_unrestricted_term_allows_whole_window():
    term = _spring(_utc(2026, 3, 10))
    assert term.is_valid_creation_instant(_utc(2026, 6, 15))
    assert not term.is_valid_creation_instant(_utc(2026, 8, 15))


def test_term_kind_is_validated():
    window = _spring(_utc(2026, 3, 10)).window
    assert Term(kind="SPRING", window=window).kind is TermKind.SPRING
    with pytest.raises(TermValidationError):
        Term(kind="WINTER", window=window)


def test_creation_permitted_on_first_day_of_spring():
    decision = evaluate_creation_window(_settings(), event_start=_utc(2026, 3, 15), now=_utc(2026, 2, 1, 10))
    assert decision.permitted
    assert decision.term is TermKind.SPRING
    assert decision.window == "2026-02-01 to 2026-07-31"
    assert decision.errors == {}


def test_creation_refused_after_grace_period():
    decision = evaluate_creation_window(_settings(), event_start=_utc(2026, 3, 15), now=_utc(2026, 3, 10))
    assert not decision.permitted
    assert decision.term is None
    assert [c.kind for c in decision.checks] == [TermKind.SPRING, TermKind.AUTUMN]


def test_invalid_term_is_reported_without_blocking_the_other():
    decision = evaluate_creation_window(
        _settings(autumn_start_day=31, autumn_start_month=9),
        event_start=_utc(2026, 3, 15),
        now=_utc(2026, 2, 1, 10),
    )
    assert decision.permitted
    assert decision.term is TermKind.SPRING
    assert decision.errors["AUTUMN"]["error_code"] == "TERM_VALIDATION_ERROR"


def test_september_to_january_window_evaluated_in_november():
    window = CalendarWindow.resolve(
        start_day=1, start_month=9, end_day=31, end_month=1, reference=_utc(2026, 11, 5), event_time=_utc(2026, 11, 20)
    )
    assert window.start == _utc(2026, 9, 1)
    assert window.end == _utc(2027, 1, 31)


@pytest.mark.parametrize("reference_month", [1, 4, 8, 12])
def test_resolved_start_never_after_end(reference_month: int):
    anchors = [(1, 2, 31, 7), (1, 8, 31, 1), (15, 12, 15, 1), (29, 2, 28, 2), (1, 1, 31, 12)]
    reference = _utc(2026, reference_month, 15)
    for start_day, start_month, end_day, end_month in anchors:
        window = CalendarWindow.resolve(
            start_day=start_day,
            start_month=start_month,
            end_day=end_day,
            end_month=end_month,
            reference=reference,
            event_time=reference,
        )
        assert window.start <= window.end
