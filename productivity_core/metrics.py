"""Section statistics for tasks, agenda, OKRs and habits."""

from __future__ import annotations

from collections import Counter
from datetime import date, timedelta
from math import inf
from typing import Sequence

from productivity_core.aggregation import event_minutes
from productivity_core.periods import Bucket
from productivity_core.schema import OKR, CalendarEvent, Category, Task
from productivity_core.timewindow import day_key

DURATION_RANGES = (
    ("< 30 min", 0, 30),
    ("30-60 min", 30, 60),
    ("1-2h", 60, 120),
    ("2-4h", 120, 240),
    ("> 4h", 240, inf),
)


def category_distribution(tasks: list[Task], categories: list[Category]) -> list[dict]:
    """Task and completed-task counts per category."""

    total = Counter(task.category for task in tasks)
    done = Counter(task.category for task in tasks if task.completed)
    return [
        {
            "category": category.id,
            "name": category.name,
            "color": category.color,
            "count": total[category.id],
            "completed": done[category.id],
        }
        for category in categories
    ]


def priority_distribution(tasks: list[Task]) -> list[dict]:
    total = Counter(task.priority for task in tasks)
    done = Counter(task.priority for task in tasks if task.completed)
    return [{"priority": p, "count": total[p], "completed": done[p]} for p in range(1, 6)]


def event_duration_distribution(events: list[CalendarEvent]) -> list[dict]:
    """Count events per duration range (lower bound inclusive)."""

    durations = [event_minutes(event) for event in events]
    return [
        {"label": label, "min": low, "max": high, "count": sum(1 for d in durations if low <= d < high)}
        for label, low, high in DURATION_RANGES
    ]


def okr_summary(okrs: list[OKR]) -> dict:
    total = len(okrs)
    completed = sum(1 for okr in okrs if okr.completed)
    estimated = sum(okr.estimated_time for okr in okrs)
    return {
        "total_objectives": total,
        "completed_objectives": completed,
        "in_progress_objectives": total - completed,
        "total_estimated_time": estimated,
        "avg_time_per_objective": round(estimated / total) if total else 0,
    }


def period_summary(buckets: Sequence[Bucket]) -> dict:
    """Total, average and max of displayed bucket totals."""

    totals = [bucket.display_total for bucket in buckets]
    total = sum(totals)
    return {
        "total": total,
        "average": round(total / len(totals)) if totals else 0,
        "max": max(totals, default=0),
        "synthetic_buckets": sum(1 for bucket in buckets if bucket.synthetic),
    }


def global_stats(buckets: Sequence[Bucket]) -> dict:
    totals = [bucket.display_total for bucket in buckets]
    return {
        "today": totals[-1] if totals else 0,
        "week": sum(totals[-7:]),
        "month": sum(totals[-30:]),
        "year": sum(totals),
    }


def habit_streak(completions: dict[str, bool], today: date, horizon: int = 30) -> int:
    """Consecutive completed local days ending ``today``, looking back ``horizon`` days."""

    streak = 0
    for offset in range(horizon):
        if completions.get(day_key(today - timedelta(days=offset))):
            streak += 1
        else:
            break
    return streak


def format_minutes(minutes: float) -> str:
    minutes = int(round(minutes))
    hours, mins = divmod(minutes, 60)
    if hours == 0:
        return f"{mins}min"
    if mins == 0:
        return f"{hours}h"
    return f"{hours}h{mins}min"
