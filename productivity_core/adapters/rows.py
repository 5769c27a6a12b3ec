"""Declarative mapping between domain entities and persistence rows."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Optional

from productivity_core.schema import (
    OKR,
    CalendarEvent,
    Category,
    Habit,
    HistoryEntry,
    KeyResult,
    Permission,
    Task,
    TaskList,
    UserProfile,
)
from productivity_core.timewindow import parse_calendar_day, parse_instant

LIST_TASKS_TABLE = "list_tasks"
FRIENDSHIPS_TABLE = "friendships"


def _same(value: Any) -> Any:
    return value


def _instant_out(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _instant_in(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return parse_instant(str(value))


def _day_out(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _day_in(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return parse_calendar_day(str(value))


def _permission_out(value: Optional[Permission]) -> Optional[str]:
    if value is None:
        return None
    return Permission(value).value


def _permission_in(value: Any) -> Optional[Permission]:
    return Permission(value) if value else None


def _number_in(value: Any) -> float:
    return float(value) if value is not None else 0.0


def _dict_in(value: Any) -> dict:
    return dict(value) if value else {}


def _list_in(value: Any) -> list:
    return list(value) if value else []


@dataclass(frozen=True)
class Column:
    attr: str
    name: str
    to_row: Callable[[Any], Any] = _same
    from_row: Callable[[Any], Any] = _same


def col(attr: str, name: Optional[str] = None, to_row=_same, from_row=_same) -> Column:
    return Column(attr=attr, name=name or attr, to_row=to_row, from_row=from_row)


@dataclass(frozen=True)
class TableMapping:
    """Bidirectional attribute <-> column mapping for one entity kind.

    ``nested`` attributes are persisted in their own tables and are skipped
    here.
    """

    table: str
    entity: type
    columns: tuple[Column, ...]
    nested: frozenset[str] = frozenset()

    def column_for(self, attr: str) -> Column:
        for column in self.columns:
            if column.attr == attr:
                return column
        raise ValueError(f"{self.entity.__name__} has no persisted attribute '{attr}'")

    def to_row(self, values: dict[str, Any]) -> dict[str, Any]:
        """Translate a (possibly partial) attribute mapping into a sparse row."""

        row: dict[str, Any] = {}
        for attr, value in values.items():
            if attr in self.nested:
                continue
            column = self.column_for(attr)
            row[column.name] = column.to_row(value)
        return row

    def entity_to_row(self, entity: Any, **extra: Any) -> dict[str, Any]:
        values = {f.name: getattr(entity, f.name) for f in dataclasses.fields(entity)}
        row = self.to_row(values)
        row.update(extra)
        return row

    def from_row(self, row: dict[str, Any]) -> dict[str, Any]:
        """Translate the mapped columns present in ``row`` back to attributes."""

        return {column.attr: column.from_row(row[column.name]) for column in self.columns if column.name in row}

    def build(self, row: dict[str, Any], **nested: Any) -> Any:
        values = self.from_row(row)
        values.update(nested)
        required = [
            f.name
            for f in dataclasses.fields(self.entity)
            if f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING
        ]
        missing = [name for name in required if name not in values]
        if missing:
            raise ValueError(f"{self.table} row {row.get('id')!r}: missing required fields {missing}")
        return self.entity(**values)


TASKS = TableMapping(
    table="tasks",
    entity=Task,
    columns=(
        col("id"),
        col("name"),
        col("priority"),
        col("category", "category_id"),
        col("deadline", to_row=_instant_out, from_row=_instant_in),
        col("estimated_time"),
        col("created_at", to_row=_instant_out, from_row=_instant_in),
        col("completed", from_row=bool),
        col("completed_at", to_row=_instant_out, from_row=_instant_in),
        col("bookmarked", from_row=bool),
        col("is_collaborative", from_row=bool),
        col("collaborators", from_row=_list_in),
        col("shared_by"),
        col("permissions", to_row=_permission_out, from_row=_permission_in),
        col("validations", from_row=_dict_in),
    ),
)

EVENTS = TableMapping(
    table="events",
    entity=CalendarEvent,
    columns=(
        col("id"),
        col("title"),
        col("start", "start_time", to_row=_instant_out, from_row=_instant_in),
        col("end", "end_time", to_row=_instant_out, from_row=_instant_in),
        col("color"),
        col("task_id"),
        col("notes"),
    ),
)

HABITS = TableMapping(
    table="habits",
    entity=Habit,
    columns=(
        col("id"),
        col("name"),
        col("estimated_time"),
        col("completions", from_row=_dict_in),
        col("streak"),
        col("color"),
    ),
)

OKRS = TableMapping(
    table="okrs",
    entity=OKR,
    columns=(
        col("id"),
        col("title"),
        col("description"),
        col("category"),
        col("start_date", to_row=_day_out, from_row=_day_in),
        col("end_date", to_row=_day_out, from_row=_day_in),
        col("estimated_time"),
        col("completed", from_row=bool),
    ),
    nested=frozenset({"key_results"}),
)

KEY_RESULTS = TableMapping(
    table="key_results",
    entity=KeyResult,
    columns=(
        col("id"),
        col("title"),
        col("current_value", from_row=_number_in),
        col("target_value", from_row=_number_in),
        col("unit"),
        col("estimated_time"),
        col("completed", from_row=bool),
    ),
    nested=frozenset({"history"}),
)

HISTORY = TableMapping(
    table="key_result_history",
    entity=HistoryEntry,
    columns=(
        col("date", to_row=_day_out, from_row=_day_in),
        col("increment", from_row=_number_in),
    ),
)

CATEGORIES = TableMapping(
    table="categories",
    entity=Category,
    columns=(col("id"), col("name"), col("color")),
)

LISTS = TableMapping(
    table="task_lists",
    entity=TaskList,
    columns=(col("id"), col("name"), col("color")),
    nested=frozenset({"task_ids"}),
)

PROFILES = TableMapping(
    table="profiles",
    entity=UserProfile,
    columns=(col("id"), col("name"), col("email"), col("avatar_url")),
)


def list_membership_rows(list_id: str, task_ids: list[str]) -> list[dict[str, Any]]:
    """Flatten ordered list membership into join rows."""

    return [{"list_id": list_id, "task_id": task_id, "position": i} for i, task_id in enumerate(task_ids)]


def group_membership(rows: list[dict[str, Any]]) -> dict[str, list[str]]:
    """Rebuild per-list ordered task ids from join rows."""

    grouped: dict[str, list[tuple[int, str]]] = {}
    for row in rows:
        grouped.setdefault(row["list_id"], []).append((int(row.get("position") or 0), row["task_id"]))
    return {list_id: [task_id for _, task_id in sorted(items)] for list_id, items in grouped.items()}
