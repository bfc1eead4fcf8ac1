from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo

from evento_sync.enums import TermKind
from evento_sync.errors import TermValidationError

# February is validated against 29 days whatever year the window resolves to.
DAYS_IN_MONTH = {
    1: 31,
    2: 29,
    3: 31,
    4: 30,
    5: 31,
    6: 30,
    7: 31,
    8: 31,
    9: 30,
    10: 31,
    11: 30,
    12: 31,
}
CREATION_GRACE_PERIOD = timedelta(hours=24)


def _in_zone(value: datetime, tz: tzinfo) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)


def _validate_anchor(day: int, month: int, prefix: str) -> None:
    if not isinstance(day, int) or isinstance(day, bool) or not 1 <= day <= 31:
        raise TermValidationError.build(f"Invalid {prefix} day: {day}", field=f"{prefix}_day", value=day)
    if not isinstance(month, int) or isinstance(month, bool) or not 1 <= month <= 12:
        raise TermValidationError.build(f"Invalid {prefix} month: {month}", field=f"{prefix}_month", value=month)
    max_day = DAYS_IN_MONTH[month]
    if day > max_day:
        raise TermValidationError.build(
            f"Invalid {prefix} date: {day}/{month} - month has {max_day} days",
            field=f"{prefix}_day",
            value=day,
        )


def _midnight(day: int, month: int, year: int, tz: tzinfo) -> datetime:
    try:
        return datetime(year, month, day, tzinfo=tz)
    except ValueError:
        # 29/2 in a non-leap year overflows into 1 March.
        return datetime(year, month, 1, tzinfo=tz) + timedelta(days=day - 1)


@dataclass(frozen=True)
class CalendarWindow:
    """A concrete period resolved from year-agnostic day/month anchors.

    Windows whose start anchor falls after the end anchor cross a year boundary; the
    resolution moves exactly one side by a year so that ``start <= end`` always holds.
    """

    start_day: int
    start_month: int
    end_day: int
    end_month: int
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        _validate_anchor(self.start_day, self.start_month, "start")
        _validate_anchor(self.end_day, self.end_month, "end")
        if self.start > self.end:
            raise TermValidationError.build(
                "Window start must not be after window end",
                start=self.start.isoformat(),
                end=self.end.isoformat(),
            )

    @classmethod
    def resolve(
        cls,
        *,
        start_day: int,
        start_month: int,
        end_day: int,
        end_month: int,
        reference: datetime,
        event_time: datetime,
        tz: tzinfo = timezone.utc,
    ) -> CalendarWindow:
        _validate_anchor(start_day, start_month, "start")
        _validate_anchor(end_day, end_month, "end")

        reference = _in_zone(reference, tz)
        event_time = _in_zone(event_time, tz)
        year = max(event_time.year, reference.year)

        start = _midnight(start_day, start_month, year, tz)
        end = _midnight(end_day, end_month, year, tz)
        if start > end:
            if reference < start:
                start = _midnight(start_day, start_month, year - 1, tz)
            else:
                end = _midnight(end_day, end_month, year + 1, tz)

        return cls(
            start_day=start_day,
            start_month=start_month,
            end_day=end_day,
            end_month=end_month,
            start=start,
            end=end,
        )

    def contains(self, instant: datetime) -> bool:
        instant = _in_zone(instant, self.start.tzinfo or timezone.utc)
        return self.start <= instant <= self.end

    def overlaps(self, other: CalendarWindow) -> bool:
        return self.start <= other.end and self.end >= other.start

    def __str__(self) -> str:
        return f"{self.start:%Y-%m-%d} to {self.end:%Y-%m-%d}"


@dataclass(frozen=True)
class Term:
    kind: TermKind
    window: CalendarWindow
    restrict_to_start: bool = False

    def __post_init__(self) -> None:
        try:
            kind = TermKind(self.kind)
        except ValueError as exc:
            raise TermValidationError.build(f"Invalid term kind: {self.kind}", field="kind") from exc
        object.__setattr__(self, "kind", kind)

    @classmethod
    def _create(
        cls,
        kind: TermKind,
        *,
        start_day: int,
        start_month: int,
        end_day: int,
        end_month: int,
        reference: datetime,
        event_time: datetime,
        restrict_to_start: bool,
        tz: tzinfo,
    ) -> Term:
        window = CalendarWindow.resolve(
            start_day=start_day,
            start_month=start_month,
            end_day=end_day,
            end_month=end_month,
            reference=reference,
            event_time=event_time,
            tz=tz,
        )
        return cls(kind=kind, window=window, restrict_to_start=restrict_to_start)

    @classmethod
    def spring(
        cls,
        *,
        start_day: int,
        start_month: int,
        end_day: int,
        end_month: int,
        reference: datetime,
        event_time: datetime,
        restrict_to_start: bool,
        tz: tzinfo = timezone.utc,
    ) -> Term:
        return cls._create(
            TermKind.SPRING,
            start_day=start_day,
            start_month=start_month,
            end_day=end_day,
            end_month=end_month,
            reference=reference,
            event_time=event_time,
            restrict_to_start=restrict_to_start,
            tz=tz,
        )

    @classmethod
    def autumn(
        cls,
        *,
        start_day: int,
        start_month: int,
        end_day: int,
        end_month: int,
        reference: datetime,
        event_time: datetime,
        restrict_to_start: bool,
        tz: tzinfo = timezone.utc,
    ) -> Term:
        return cls._create(
            TermKind.AUTUMN,
            start_day=start_day,
            start_month=start_month,
            end_day=end_day,
            end_month=end_month,
            reference=reference,
            event_time=event_time,
            restrict_to_start=restrict_to_start,
            tz=tz,
        )

    def is_valid_creation_instant(self, instant: datetime) -> bool:
        if not self.window.contains(instant):
            return False
        if self.restrict_to_start:
            instant = _in_zone(instant, self.window.start.tzinfo or timezone.utc)
            return self.window.start <= instant <= self.window.start + CREATION_GRACE_PERIOD
        return True


@dataclass(frozen=True)
class TermSettings:
    spring_start_day: int
    spring_start_month: int
    spring_end_day: int
    spring_end_month: int
    autumn_start_day: int
    autumn_start_month: int
    autumn_end_day: int
    autumn_end_month: int
    spring_restrict_to_start: bool = False
    autumn_restrict_to_start: bool = False

    def build_term(
        self,
        kind: TermKind,
        *,
        reference: datetime,
        event_time: datetime,
        tz: tzinfo = timezone.utc,
    ) -> Term:
        if kind is TermKind.SPRING:
            return Term.spring(
                start_day=self.spring_start_day,
                start_month=self.spring_start_month,
                end_day=self.spring_end_day,
                end_month=self.spring_end_month,
                reference=reference,
                event_time=event_time,
                restrict_to_start=self.spring_restrict_to_start,
                tz=tz,
            )
        return Term.autumn(
            start_day=self.autumn_start_day,
            start_month=self.autumn_start_month,
            end_day=self.autumn_end_day,
            end_month=self.autumn_end_month,
            reference=reference,
            event_time=event_time,
            restrict_to_start=self.autumn_restrict_to_start,
            tz=tz,
        )
