"""Local calendar-day helpers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterator, Union

DayLike = Union[date, datetime, str]


def parse_calendar_day(value: str) -> date:
    """Parse a ``YYYY-MM-DD`` key (or the date part of an ISO timestamp).

    Plain day keys are read field by field, never through a UTC instant, so the
    result does not depend on the process time zone.
    """

    text = str(value).strip()
    if len(text) == 10:
        try:
            return date.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(f"Invalid calendar day {value!r}") from exc
    return to_calendar_day(parse_instant(text))


def parse_instant(value: str) -> datetime:
    """Parse an ISO 8601 timestamp; a trailing ``Z`` is accepted."""

    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(f"Invalid timestamp {value!r}") from exc


def to_calendar_day(value: DayLike, tz: tzinfo | None = None) -> date:
    """Normalize an instant, date or string to the local calendar day.

    Naive datetimes are wall-clock local time already. Aware datetimes are
    converted to ``tz`` (or the process local zone) before taking the date.
    """

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(tz) if tz is not None else value.astimezone()
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if len(text) == 10:
            return parse_calendar_day(text)
        return to_calendar_day(parse_instant(text), tz)
    raise TypeError(f"Cannot normalize {type(value).__name__} to a calendar day")


def day_key(value: DayLike, tz: tzinfo | None = None) -> str:
    """Return the ``YYYY-MM-DD`` key of the local calendar day."""

    return to_calendar_day(value, tz).isoformat()


@dataclass(frozen=True)
class DateWindow:
    """Inclusive range of local calendar days."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"Window end {self.end} is before start {self.start}")

    @classmethod
    def of(cls, start: DayLike, end: DayLike) -> "DateWindow":
        return cls(to_calendar_day(start), to_calendar_day(end))

    def contains(self, value: DayLike, tz: tzinfo | None = None) -> bool:
        day = to_calendar_day(value, tz)
        return self.start <= day <= self.end

    def days(self) -> Iterator[date]:
        current = self.start
        while current <= self.end:
            yield current
            current += timedelta(days=1)

    def __len__(self) -> int:
        return (self.end - self.start).days + 1
