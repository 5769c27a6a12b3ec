"""Core data schema for productivity entities."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional


class Permission(str, Enum):
    """Role of a collaborator on a shared task."""

    RESPONSIBLE = "responsible"
    EDITOR = "editor"
    OBSERVER = "observer"


@dataclass
class Category:
    """User-defined task category."""

    id: str
    name: str
    color: str


@dataclass
class Task:
    """A to-do item. ``completed_at`` is set iff ``completed`` is true."""

    id: str
    name: str
    priority: int
    category: Optional[str]
    deadline: Optional[datetime]
    estimated_time: int
    created_at: datetime
    completed: bool = False
    completed_at: Optional[datetime] = None
    bookmarked: bool = False
    is_collaborative: bool = False
    collaborators: list[str] = field(default_factory=list)
    shared_by: Optional[str] = None
    permissions: Optional[Permission] = None
    validations: dict[str, bool] = field(default_factory=dict)


@dataclass
class TaskList:
    id: str
    name: str
    color: str
    task_ids: list[str] = field(default_factory=list)


@dataclass
class CalendarEvent:
    id: str
    title: str
    start: datetime
    end: datetime
    color: str
    task_id: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class Habit:
    """Recurring habit; ``completions`` is keyed by local YYYY-MM-DD day keys."""

    id: str
    name: str
    estimated_time: int
    completions: dict[str, bool] = field(default_factory=dict)
    streak: int = 0
    color: str = "blue"


@dataclass
class HistoryEntry:
    """One signed change of a key result's value on a given day."""

    date: date
    increment: float


@dataclass
class KeyResult:
    id: str
    title: str
    current_value: float
    target_value: float
    unit: str
    estimated_time: int
    completed: bool = False
    history: list[HistoryEntry] = field(default_factory=list)


@dataclass
class OKR:
    id: str
    title: str
    description: str
    category: str
    start_date: date
    end_date: date
    estimated_time: int
    completed: bool = False
    key_results: list[KeyResult] = field(default_factory=list)


@dataclass
class UserProfile:
    id: str
    name: str
    email: str
    avatar_url: Optional[str] = None


@dataclass
class Collections:
    """The four entity streams the aggregation layer reads."""

    tasks: list[Task] = field(default_factory=list)
    events: list[CalendarEvent] = field(default_factory=list)
    habits: list[Habit] = field(default_factory=list)
    okrs: list[OKR] = field(default_factory=list)
