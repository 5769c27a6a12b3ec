"""JSON adapter for local collection snapshots."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from productivity_core.adapters import rows
from productivity_core.schema import Category, Collections, TaskList

_SECTIONS = ("tasks", "events", "habits", "okrs", "categories", "lists")


@dataclass
class Snapshot:
    """Everything a guest session keeps locally."""

    collections: Collections = field(default_factory=Collections)
    categories: list[Category] = field(default_factory=list)
    lists: list[TaskList] = field(default_factory=list)


def _build_all(items: list, section: str, build) -> list:
    if not isinstance(items, list):
        raise ValueError(f"Section '{section}' must be a list of objects")
    parsed = []
    for index, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            raise ValueError(f"{section} item {index}: expected an object")
        try:
            parsed.append(build(item))
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"{section} item {index}: {exc}") from exc
    return parsed


def _build_okr(item: dict):
    key_results = []
    for kr_item in item.get("key_results") or []:
        history = [rows.HISTORY.build(entry) for entry in kr_item.get("history") or []]
        key_results.append(rows.KEY_RESULTS.build(kr_item, history=history))
    return rows.OKRS.build(item, key_results=key_results)


def parse(file_path: str) -> Snapshot:
    """Parse a JSON snapshot file into domain collections."""

    with open(file_path, encoding="utf-8") as handle:
        payload = json.load(handle)

    if not isinstance(payload, dict):
        raise ValueError("JSON payload must be an object keyed by collection name")

    unknown = sorted(set(payload) - set(_SECTIONS))
    if unknown:
        raise ValueError(f"Unknown sections {unknown}")

    collections = Collections(
        tasks=_build_all(payload.get("tasks", []), "tasks", rows.TASKS.build),
        events=_build_all(payload.get("events", []), "events", rows.EVENTS.build),
        habits=_build_all(payload.get("habits", []), "habits", rows.HABITS.build),
        okrs=_build_all(payload.get("okrs", []), "okrs", _build_okr),
    )
    for event in collections.events:
        if event.end < event.start:
            raise ValueError(f"events item '{event.id}': end is before start")

    return Snapshot(
        collections=collections,
        categories=_build_all(payload.get("categories", []), "categories", rows.CATEGORIES.build),
        lists=_build_all(
            payload.get("lists", []),
            "lists",
            lambda item: rows.LISTS.build(item, task_ids=list(item.get("task_ids") or [])),
        ),
    )


def to_payload(snapshot: Snapshot) -> dict:
    okrs = []
    for okr in snapshot.collections.okrs:
        okr_row = rows.OKRS.entity_to_row(okr)
        okr_row["key_results"] = [
            {
                **rows.KEY_RESULTS.entity_to_row(kr),
                "history": [rows.HISTORY.entity_to_row(entry) for entry in kr.history],
            }
            for kr in okr.key_results
        ]
        okrs.append(okr_row)

    return {
        "tasks": [rows.TASKS.entity_to_row(task) for task in snapshot.collections.tasks],
        "events": [rows.EVENTS.entity_to_row(event) for event in snapshot.collections.events],
        "habits": [rows.HABITS.entity_to_row(habit) for habit in snapshot.collections.habits],
        "okrs": okrs,
        "categories": [rows.CATEGORIES.entity_to_row(category) for category in snapshot.categories],
        "lists": [{**rows.LISTS.entity_to_row(lst), "task_ids": list(lst.task_ids)} for lst in snapshot.lists],
    }


def dump(snapshot: Snapshot, file_path: str) -> None:
    """Write a snapshot atomically (temp file + replace)."""

    path = Path(file_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    payload = json.dumps(to_payload(snapshot), indent=2, ensure_ascii=False) + "\n"
    with open(tmp, "w", encoding="utf-8") as handle:
        handle.write(payload)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp, path)
