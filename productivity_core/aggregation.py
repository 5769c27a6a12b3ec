"""Minutes-of-work aggregation over a date window."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import tzinfo

from productivity_core.schema import CalendarEvent, Collections, Habit, KeyResult, Task
from productivity_core.timewindow import DateWindow


@dataclass
class HabitCompletions:
    habit: Habit
    period_completions: int


@dataclass
class WorkTime:
    """Aggregate for one window with per-kind subtotals and contributors."""

    tasks_time: float = 0.0
    events_time: float = 0.0
    habits_time: float = 0.0
    okr_time: float = 0.0
    completed_tasks: list[Task] = field(default_factory=list)
    events: list[CalendarEvent] = field(default_factory=list)
    habits: list[HabitCompletions] = field(default_factory=list)

    @property
    def total(self) -> float:
        return self.tasks_time + self.events_time + self.habits_time + self.okr_time

    @property
    def per_kind(self) -> dict[str, float]:
        return {
            "tasks": self.tasks_time,
            "events": self.events_time,
            "habits": self.habits_time,
            "okrs": self.okr_time,
        }


def event_minutes(event: CalendarEvent) -> float:
    """Duration of an event in minutes from its raw instants."""

    return (event.end - event.start).total_seconds() / 60.0


def task_in_window(task: Task, window: DateWindow, tz: tzinfo | None = None) -> bool:
    if not task.completed or task.completed_at is None:
        return False
    return window.contains(task.completed_at, tz)


def event_in_window(event: CalendarEvent, window: DateWindow, tz: tzinfo | None = None) -> bool:
    # Only the start is tested; an event running past the window still counts in full.
    return window.contains(event.start, tz)


def habit_completions_in_window(habit: Habit, window: DateWindow) -> int:
    return sum(1 for key, done in (habit.completions or {}).items() if done and window.contains(key))


def key_result_increments(key_result: KeyResult, window: DateWindow) -> float:
    """Sum of signed ledger increments dated inside the window."""

    return sum(entry.increment for entry in key_result.history if window.contains(entry.date))


def aggregate(window: DateWindow, collections: Collections, tz: tzinfo | None = None) -> WorkTime:
    """Compute minutes of work for ``window`` across tasks, events, habits and OKRs."""

    result = WorkTime()

    for task in collections.tasks:
        if task_in_window(task, window, tz):
            result.completed_tasks.append(task)
            result.tasks_time += task.estimated_time or 0

    for event in collections.events:
        if event_in_window(event, window, tz):
            result.events.append(event)
            result.events_time += event_minutes(event)

    for habit in collections.habits:
        count = habit_completions_in_window(habit, window)
        if count > 0:
            result.habits_time += count * (habit.estimated_time or 0)
            result.habits.append(HabitCompletions(habit=habit, period_completions=count))

    for okr in collections.okrs:
        for key_result in okr.key_results:
            result.okr_time += key_result_increments(key_result, window) * (key_result.estimated_time or 0)

    return result
