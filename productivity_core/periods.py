"""Period bucketing layered on the window aggregation."""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta, tzinfo
from math import pi

import numpy as np

from productivity_core.aggregation import WorkTime, aggregate
from productivity_core.schema import Collections
from productivity_core.timewindow import DateWindow

GRANULARITIES = ("day", "week", "month", "year")
DEFAULT_BUCKET_COUNTS = {"day": 10, "week": 12, "month": 12, "year": 5}
_MONTH_LABELS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

FILLER_BASE_MINUTES = 45.0
FILLER_AMPLITUDE = 30.0
FILLER_JITTER = 20.0


@dataclass
class Bucket:
    """One aggregated period. ``real_total`` is never mixed with the filler."""

    label: str
    window: DateWindow
    index: int
    details: WorkTime
    filler: float = 0.0
    synthetic: bool = False

    @property
    def real_total(self) -> float:
        return self.details.total

    @property
    def display_total(self) -> int:
        return int(round(max(self.real_total, self.filler)))


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def _week_number(start: date, week_start: int) -> int:
    if week_start == 0:
        return start.isocalendar()[1]
    first = date(start.year, 1, 1)
    offset = (first.weekday() - week_start) % 7
    return ((start - first).days + offset) // 7 + 1


def period_windows(granularity: str, count: int, today: date, week_start: int = 0) -> list[tuple[str, DateWindow]]:
    """Return ``count`` contiguous windows, oldest first, the last containing ``today``."""

    if granularity not in GRANULARITIES:
        raise ValueError(f"Unknown granularity '{granularity}'")
    if count < 1:
        return []

    windows: list[tuple[str, DateWindow]] = []
    for back in range(count - 1, -1, -1):
        if granularity == "day":
            day = today - timedelta(days=back)
            windows.append((day.strftime("%d/%m"), DateWindow(day, day)))
        elif granularity == "week":
            current_start = today - timedelta(days=(today.weekday() - week_start) % 7)
            start = current_start - timedelta(weeks=back)
            windows.append((f"S{_week_number(start, week_start)}", DateWindow(start, start + timedelta(days=6))))
        elif granularity == "month":
            year, month = _shift_month(today.year, today.month, -back)
            last_day = calendar.monthrange(year, month)[1]
            windows.append((_MONTH_LABELS[month - 1], DateWindow(date(year, month, 1), date(year, month, last_day))))
        else:
            year = today.year - back
            windows.append((str(year), DateWindow(date(year, 1, 1), date(year, 12, 31))))
    return windows


def filler_values(count: int, seed: int | None = None) -> np.ndarray:
    """Smooth synthetic minutes used for buckets with no meaningful data."""

    rng = np.random.default_rng(seed)
    index = np.arange(count, dtype=float)
    denominator = max(count - 1, 1)
    variation = np.sin(index * pi / denominator) * FILLER_AMPLITUDE
    jitter = (rng.random(count) - 0.5) * FILLER_JITTER
    return np.maximum(0.0, FILLER_BASE_MINUTES + variation + jitter)


def build_buckets(
    granularity: str,
    collections: Collections,
    today: date,
    count: int | None = None,
    week_start: int = 0,
    filler_threshold: float = 10.0,
    seed: int | None = None,
    tz: tzinfo | None = None,
) -> list[Bucket]:
    """Aggregate each period window; flag near-empty buckets as synthetic."""

    if count is None:
        count = DEFAULT_BUCKET_COUNTS.get(granularity, 0)
    windows = period_windows(granularity, count, today, week_start)
    fillers = filler_values(len(windows), seed)

    buckets: list[Bucket] = []
    for index, (label, window) in enumerate(windows):
        details = aggregate(window, collections, tz)
        bucket = Bucket(label=label, window=window, index=index, details=details)
        if details.total < filler_threshold:
            bucket.filler = float(fillers[index])
            bucket.synthetic = True
        buckets.append(bucket)
    return buckets
