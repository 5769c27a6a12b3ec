from datetime import date, datetime, timedelta

import pytest

from productivity_core.periods import build_buckets, filler_values, period_windows
from productivity_core.schema import Collections, Task


def completed_task(task_id, minutes, when):
    return Task(
        id=task_id,
        name=task_id,
        priority=2,
        category=None,
        deadline=None,
        estimated_time=minutes,
        created_at=datetime(2025, 1, 1, 8, 0),
        completed=True,
        completed_at=when,
    )


def test_week_windows_are_contiguous_and_end_on_current_week():
    windows = period_windows("week", 3, date(2025, 1, 15))
    assert [label for label, _ in windows] == ["S1", "S2", "S3"]
    assert windows[0][1].start == date(2024, 12, 30)
    assert windows[-1][1].end == date(2025, 1, 19)
    for (_, previous), (_, current) in zip(windows, windows[1:]):
        assert current.start == previous.end + timedelta(days=1)


def test_week_start_is_configurable():
    _, window = period_windows("week", 1, date(2025, 1, 15), week_start=6)[0]
    assert window.start == date(2025, 1, 12)
    assert window.start.weekday() == 6
    assert window.end == date(2025, 1, 18)


def test_day_windows_and_labels():
    windows = period_windows("day", 2, date(2025, 1, 15))
    assert [label for label, _ in windows] == ["14/01", "15/01"]
    assert all(len(window) == 1 for _, window in windows)


def test_month_windows_follow_calendar_months():
    windows = period_windows("month", 3, date(2025, 3, 10))
    assert [label for label, _ in windows] == ["Jan", "Feb", "Mar"]
    assert windows[1][1].end == date(2025, 2, 28)
    assert windows[2][1].end == date(2025, 3, 31)


def test_month_windows_cross_year_boundary():
    windows = period_windows("month", 2, date(2025, 1, 5))
    assert windows[0][1].start == date(2024, 12, 1)
    assert windows[0][1].end == date(2024, 12, 31)


def test_year_windows():
    windows = period_windows("year", 2, date(2025, 6, 1))
    assert [label for label, _ in windows] == ["2024", "2025"]
    assert windows[0][1].start == date(2024, 1, 1)
    assert windows[1][1].end == date(2025, 12, 31)


def test_unknown_granularity_raises():
    with pytest.raises(ValueError):
        period_windows("quarter", 4, date(2025, 1, 1))
    with pytest.raises(ValueError):
        build_buckets("quarter", Collections(), date(2025, 1, 1))


def test_default_bucket_counts():
    today = date(2025, 1, 15)
    assert len(build_buckets("day", Collections(), today, seed=1)) == 10
    assert len(build_buckets("week", Collections(), today, seed=1)) == 12
    assert len(build_buckets("month", Collections(), today, seed=1)) == 12
    assert len(build_buckets("year", Collections(), today, seed=1)) == 5


def test_filler_is_seeded_and_bounded():
    first = filler_values(12, seed=7)
    second = filler_values(12, seed=7)
    assert list(first) == list(second)
    assert all(35.0 <= value <= 85.0 for value in first)


def test_real_buckets_are_not_synthetic():
    collections = Collections(tasks=[completed_task("t1", 90, datetime(2025, 1, 15, 12, 0))])
    buckets = build_buckets("week", collections, date(2025, 1, 15), count=2, seed=3)
    current = buckets[-1]
    assert not current.synthetic
    assert current.real_total == 90
    assert current.display_total == 90
    assert buckets[0].synthetic
    assert buckets[0].real_total == 0
    assert buckets[0].display_total > 0


def test_below_threshold_bucket_keeps_real_total():
    collections = Collections(tasks=[completed_task("t1", 5, datetime(2025, 1, 15, 12, 0))])
    bucket = build_buckets("day", collections, date(2025, 1, 15), count=1, seed=11)[0]
    assert bucket.synthetic
    assert bucket.real_total == 5
    assert bucket.display_total == int(round(max(5, bucket.filler)))


def test_zero_threshold_disables_filler():
    buckets = build_buckets("day", Collections(), date(2025, 1, 15), count=3, filler_threshold=0.0)
    assert not any(bucket.synthetic for bucket in buckets)
    assert all(bucket.display_total == 0 for bucket in buckets)
