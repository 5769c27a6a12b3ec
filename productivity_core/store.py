"""Session-scoped entity store with optimistic write-through and bulk refresh."""

from __future__ import annotations

import dataclasses
import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Optional

from productivity_core.adapters import rows
from productivity_core.config import CoreConfig
from productivity_core.errors import AuthError, AuthResult, RemoteWriteError
from productivity_core.fanout import guard, settle_all
from productivity_core.metrics import habit_streak
from productivity_core.remote import AuthClient, RemotePersistence, Session, SessionEvent, SessionEventKind
from productivity_core.schema import (
    OKR,
    CalendarEvent,
    Category,
    Collections,
    Habit,
    HistoryEntry,
    KeyResult,
    Permission,
    Task,
    TaskList,
    UserProfile,
)
from productivity_core.session import SessionMachine, SessionState
from productivity_core.timewindow import DayLike, day_key, to_calendar_day

logger = logging.getLogger(__name__)

COLLECTIONS = ("tasks", "events", "habits", "okrs", "categories", "lists", "friends")


@dataclass
class RefreshReport:
    """Outcome of a bulk refresh; ``failed`` maps collection -> reason."""

    loaded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    stale: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed and not self.stale


def _local_now() -> datetime:
    return datetime.now().astimezone()


def _reason(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class EntityStore:
    """Single source of truth for one user's collections.

    Every mutation is applied locally first and then written to the remote
    collaborator when a session is active. Remote failures are logged and
    collected in ``write_errors``; local state is never rolled back.
    """

    def __init__(
        self,
        remote: RemotePersistence,
        auth: AuthClient,
        config: Optional[CoreConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.remote = remote
        self.auth = auth
        self.config = config or CoreConfig()
        self._clock = clock or _local_now
        self.session = SessionMachine()
        self.user: Optional[UserProfile] = None
        self.write_errors: list[RemoteWriteError] = []
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._clear()

    # -- state ---------------------------------------------------------------

    def _clear(self) -> None:
        self.tasks: list[Task] = []
        self.events: list[CalendarEvent] = []
        self.habits: list[Habit] = []
        self.okrs: list[OKR] = []
        self.categories: list[Category] = []
        self.lists: list[TaskList] = []
        self.friends: list[UserProfile] = []

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def user_id(self) -> Optional[str]:
        return self.session.user_id

    @property
    def color_settings(self) -> dict[str, str]:
        return {category.id: category.name for category in self.categories}

    def today(self) -> date:
        return to_calendar_day(self._clock())

    def snapshot(self) -> Collections:
        return Collections(
            tasks=list(self.tasks),
            events=list(self.events),
            habits=list(self.habits),
            okrs=list(self.okrs),
        )

    def load_local(
        self,
        collections: Collections,
        categories: Optional[list[Category]] = None,
        lists: Optional[list[TaskList]] = None,
    ) -> None:
        """Replace collections with locally stored data (guest mode)."""

        self.tasks = list(collections.tasks)
        self.events = list(collections.events)
        self.habits = list(collections.habits)
        self.okrs = list(collections.okrs)
        if categories is not None:
            self.categories = list(categories)
        if lists is not None:
            self.lists = list(lists)

    # -- session -------------------------------------------------------------

    async def start(self) -> Optional[RefreshReport]:
        """Subscribe to auth events and pick up an existing session."""

        if self._unsubscribe is None:
            self._unsubscribe = self.auth.subscribe(self.handle_session_event)
        try:
            session = await self.auth.get_session()
        except Exception as exc:  # noqa: BLE001
            logger.warning("session lookup failed: %s", _reason(exc))
            return None
        if session is None:
            return None
        return await self.handle_session_event(SessionEvent(SessionEventKind.INITIAL_SESSION, session))

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def handle_session_event(self, event: SessionEvent) -> Optional[RefreshReport]:
        if event.kind is SessionEventKind.SIGNED_OUT:
            self._sign_out_locally()
            return None
        if not self.session.should_sync(event):
            logger.debug("skipping %s for already synced user %s", event.kind.value, event.user_id)
            return None
        return await self._establish(event.session)

    async def _establish(self, session: Session) -> RefreshReport:
        if self.session.user_id is not None and self.session.user_id != session.user_id:
            self.user = None
            self._clear()
        generation = self.session.begin(session.user_id)
        profile = await self._upsert_profile(session)
        if not self.session.is_current(generation, session.user_id):
            return RefreshReport(stale=True)
        self.user = profile
        report = await self._refresh(generation, session.user_id)
        self.session.complete(generation)
        return report

    async def _upsert_profile(self, session: Session) -> UserProfile:
        claims = session.claims or {}
        fallback = UserProfile(
            id=session.user_id,
            name=claims.get("name") or session.email.split("@")[0],
            email=session.email,
            avatar_url=claims.get("avatar_url"),
        )
        row = rows.PROFILES.entity_to_row(fallback)
        try:
            stored = await guard(
                self.remote.upsert(rows.PROFILES.table, row, on_conflict="id"),
                self.config.sync.refresh_timeout_s,
                "profile upsert",
            )
            return rows.PROFILES.build(stored or row)
        except Exception as exc:  # noqa: BLE001
            logger.warning("profile upsert failed, using session claims: %s", _reason(exc))
            return fallback

    async def login(self, email: str, password: str) -> AuthResult:
        return await self._authenticate(lambda: self.auth.sign_in(email, password))

    async def register(self, name: str, email: str, password: str) -> AuthResult:
        return await self._authenticate(lambda: self.auth.sign_up(name, email, password))

    async def _authenticate(self, attempt) -> AuthResult:
        self.session.attempt()
        try:
            session = await attempt()
        except AuthError as exc:
            self.session.fail_attempt()
            return AuthResult(ok=False, error=_reason(exc))
        except Exception as exc:  # noqa: BLE001
            self.session.fail_attempt()
            logger.warning("auth collaborator error: %s", _reason(exc))
            return AuthResult(ok=False, error=_reason(exc))

        if not (self.session.synced and self.session.user_id == session.user_id):
            await self._establish(session)
        return AuthResult(ok=True, user_id=session.user_id)

    async def logout(self) -> None:
        self._sign_out_locally()
        try:
            await self.auth.sign_out()
        except Exception as exc:  # noqa: BLE001
            logger.warning("remote sign-out failed: %s", _reason(exc))

    def _sign_out_locally(self) -> None:
        self.session.reset()
        self.user = None
        self._clear()

    # -- bulk refresh --------------------------------------------------------

    async def refresh(self) -> RefreshReport:
        """Reload every collection for the current user."""

        if self.session.user_id is None:
            return RefreshReport()
        return await self._refresh(self.session.generation, self.session.user_id)

    async def _refresh(self, generation: int, user_id: str) -> RefreshReport:
        settled = await settle_all(
            {
                "tasks": self._load_tasks(user_id),
                "events": self._load_events(user_id),
                "habits": self._load_habits(user_id),
                "okrs": self._load_okrs(user_id),
                "categories": self._load_categories(user_id),
                "lists": self._load_lists(user_id),
                "friends": self._load_friends(user_id),
            }
        )

        if not self.session.is_current(generation, user_id):
            logger.info("discarding refresh for %s: session changed", user_id)
            return RefreshReport(stale=True)

        report = RefreshReport()
        for name in COLLECTIONS:
            outcome = settled[name]
            if outcome.ok:
                setattr(self, name, outcome.value)
                report.loaded.append(name)
            else:
                report.failed[name] = _reason(outcome.error)
                logger.warning("refresh: %s not loaded (%s)", name, report.failed[name])
        return report

    async def _select(self, table: str, match: Optional[dict[str, Any]] = None) -> list[dict[str, Any]]:
        return await guard(self.remote.select(table, match), self.config.sync.refresh_timeout_s, f"select {table}")

    async def _load_tasks(self, user_id: str) -> list[Task]:
        return [rows.TASKS.build(row) for row in await self._select(rows.TASKS.table, {"user_id": user_id})]

    async def _load_events(self, user_id: str) -> list[CalendarEvent]:
        return [rows.EVENTS.build(row) for row in await self._select(rows.EVENTS.table, {"user_id": user_id})]

    async def _load_habits(self, user_id: str) -> list[Habit]:
        return [rows.HABITS.build(row) for row in await self._select(rows.HABITS.table, {"user_id": user_id})]

    async def _load_categories(self, user_id: str) -> list[Category]:
        return [rows.CATEGORIES.build(row) for row in await self._select(rows.CATEGORIES.table, {"user_id": user_id})]

    async def _load_okrs(self, user_id: str) -> list[OKR]:
        okr_rows = await self._select(rows.OKRS.table, {"user_id": user_id})
        okr_ids = [row["id"] for row in okr_rows]
        kr_rows = await self._select(rows.KEY_RESULTS.table, {"okr_id": okr_ids}) if okr_ids else []
        kr_ids = [row["id"] for row in kr_rows]
        history_rows = await self._select(rows.HISTORY.table, {"key_result_id": kr_ids}) if kr_ids else []

        history: dict[str, list[HistoryEntry]] = {}
        for row in history_rows:
            history.setdefault(row["key_result_id"], []).append(rows.HISTORY.build(row))

        key_results: dict[str, list[tuple[int, KeyResult]]] = {}
        for row in kr_rows:
            key_result = rows.KEY_RESULTS.build(row, history=history.get(row["id"], []))
            key_results.setdefault(row["okr_id"], []).append((int(row.get("position") or 0), key_result))

        okrs = []
        for row in okr_rows:
            ordered = sorted(key_results.get(row["id"], []), key=lambda item: item[0])
            okrs.append(rows.OKRS.build(row, key_results=[kr for _, kr in ordered]))
        return okrs

    async def _load_lists(self, user_id: str) -> list[TaskList]:
        list_rows = await self._select(rows.LISTS.table, {"user_id": user_id})
        list_ids = [row["id"] for row in list_rows]
        membership = rows.group_membership(
            await self._select(rows.LIST_TASKS_TABLE, {"list_id": list_ids}) if list_ids else []
        )
        return [rows.LISTS.build(row, task_ids=membership.get(row["id"], [])) for row in list_rows]

    async def _load_friends(self, user_id: str) -> list[UserProfile]:
        links = await self._select(rows.FRIENDSHIPS_TABLE, {"user_id": user_id})
        friend_ids = [row["friend_id"] for row in links]
        if not friend_ids:
            return []
        return [rows.PROFILES.build(row) for row in await self._select(rows.PROFILES.table, {"id": friend_ids})]

    # -- write protocol ------------------------------------------------------

    async def _write(self, operation: str, table: str, *args: Any) -> None:
        """Issue one remote write; failures are logged, never raised."""

        if self.session.user_id is None:
            return
        method = getattr(self.remote, operation)
        try:
            await guard(method(table, *args), self.config.sync.write_timeout_s, f"{operation} {table}")
        except Exception as exc:  # noqa: BLE001
            error = RemoteWriteError(operation, table, _reason(exc))
            self.write_errors.append(error)
            logger.warning("%s; keeping local change", error)

    def _owned(self, **extra: Any) -> dict[str, Any]:
        return {"user_id": self.session.user_id, **extra} if self.session.user_id else dict(extra)

    @staticmethod
    def _index(items: list, item_id: str, kind: str) -> int:
        for index, item in enumerate(items):
            if item.id == item_id:
                return index
        raise KeyError(f"Unknown {kind} '{item_id}'")

    # -- tasks ---------------------------------------------------------------

    async def add_task(self, task: Task) -> Task:
        if task.completed and task.completed_at is None:
            task = dataclasses.replace(task, completed_at=self._clock())
        elif not task.completed and task.completed_at is not None:
            task = dataclasses.replace(task, completed_at=None)
        self.tasks.append(task)
        await self._write("insert", rows.TASKS.table, rows.TASKS.entity_to_row(task, **self._owned()))
        return task

    def _with_completion(self, current: Task, changes: dict[str, Any]) -> dict[str, Any]:
        """Keep ``completed_at`` set iff the resulting task is completed.

        A new timestamp is taken only on an open -> completed transition; an
        already completed task keeps its original completion time.
        """

        completed = bool(changes.get("completed", current.completed))
        if not completed:
            if "completed_at" in changes or current.completed_at is not None:
                changes["completed_at"] = None
        elif changes.get("completed_at") is None and ("completed_at" in changes or not current.completed):
            changes["completed_at"] = (current.completed_at if current.completed else None) or self._clock()
        return changes

    async def update_task(self, task_id: str, updates: dict[str, Any]) -> Task:
        index = self._index(self.tasks, task_id, "task")
        changes = self._with_completion(self.tasks[index], dict(updates))
        patch = rows.TASKS.to_row(changes)

        task = dataclasses.replace(self.tasks[index], **changes)
        self.tasks[index] = task
        await self._write("update", rows.TASKS.table, {"id": task_id}, patch)
        return task

    async def toggle_complete(self, task_id: str) -> Task:
        task = self.tasks[self._index(self.tasks, task_id, "task")]
        return await self.update_task(task_id, {"completed": not task.completed})

    async def toggle_bookmark(self, task_id: str) -> Task:
        task = self.tasks[self._index(self.tasks, task_id, "task")]
        return await self.update_task(task_id, {"bookmarked": not task.bookmarked})

    async def share_task(self, task_id: str, user_id: str, permission: Permission | str) -> Task:
        task = self.tasks[self._index(self.tasks, task_id, "task")]
        collaborators = list(task.collaborators)
        if user_id not in collaborators:
            collaborators.append(user_id)
        validations = dict(task.validations)
        validations.setdefault(user_id, False)
        return await self.update_task(
            task_id,
            {
                "is_collaborative": True,
                "collaborators": collaborators,
                "permissions": Permission(permission),
                "shared_by": task.shared_by or self.session.user_id,
                "validations": validations,
            },
        )

    async def validate_task(self, task_id: str, collaborator_id: str, value: bool = True) -> Task:
        task = self.tasks[self._index(self.tasks, task_id, "task")]
        if collaborator_id not in task.collaborators:
            raise ValueError(f"'{collaborator_id}' is not a collaborator on task '{task_id}'")
        validations = dict(task.validations)
        validations[collaborator_id] = bool(value)
        return await self.update_task(task_id, {"validations": validations})

    async def delete_task(self, task_id: str) -> None:
        self.tasks = [task for task in self.tasks if task.id != task_id]
        self.lists = [
            dataclasses.replace(lst, task_ids=[tid for tid in lst.task_ids if tid != task_id]) for lst in self.lists
        ]
        await self._write("delete", rows.LIST_TASKS_TABLE, {"task_id": task_id})
        await self._write("delete", rows.TASKS.table, {"id": task_id})

    # -- lists ---------------------------------------------------------------

    async def add_list(self, task_list: TaskList) -> TaskList:
        self.lists.append(task_list)
        await self._write("insert", rows.LISTS.table, rows.LISTS.entity_to_row(task_list, **self._owned()))
        for row in rows.list_membership_rows(task_list.id, task_list.task_ids):
            await self._write("insert", rows.LIST_TASKS_TABLE, row)
        return task_list

    async def update_list(self, list_id: str, updates: dict[str, Any]) -> TaskList:
        index = self._index(self.lists, list_id, "list")
        patch = rows.LISTS.to_row(updates)
        task_list = dataclasses.replace(self.lists[index], **updates)
        self.lists[index] = task_list

        if patch:
            await self._write("update", rows.LISTS.table, {"id": list_id}, patch)
        if "task_ids" in updates:
            await self._write("delete", rows.LIST_TASKS_TABLE, {"list_id": list_id})
            for row in rows.list_membership_rows(list_id, task_list.task_ids):
                await self._write("insert", rows.LIST_TASKS_TABLE, row)
        return task_list

    async def add_task_to_list(self, task_id: str, list_id: str) -> TaskList:
        index = self._index(self.lists, list_id, "list")
        task_list = self.lists[index]
        if task_id in task_list.task_ids:
            return task_list
        task_list = dataclasses.replace(task_list, task_ids=[*task_list.task_ids, task_id])
        self.lists[index] = task_list
        await self._write(
            "insert",
            rows.LIST_TASKS_TABLE,
            {"list_id": list_id, "task_id": task_id, "position": len(task_list.task_ids) - 1},
        )
        return task_list

    async def remove_task_from_list(self, task_id: str, list_id: str) -> TaskList:
        index = self._index(self.lists, list_id, "list")
        task_list = self.lists[index]
        task_list = dataclasses.replace(task_list, task_ids=[tid for tid in task_list.task_ids if tid != task_id])
        self.lists[index] = task_list
        await self._write("delete", rows.LIST_TASKS_TABLE, {"list_id": list_id, "task_id": task_id})
        return task_list

    async def delete_list(self, list_id: str) -> None:
        self.lists = [lst for lst in self.lists if lst.id != list_id]
        await self._write("delete", rows.LIST_TASKS_TABLE, {"list_id": list_id})
        await self._write("delete", rows.LISTS.table, {"id": list_id})

    # -- events --------------------------------------------------------------

    async def add_event(self, event: CalendarEvent) -> CalendarEvent:
        if event.end < event.start:
            raise ValueError(f"Event '{event.title}' ends before it starts")
        if not event.id:
            event = dataclasses.replace(event, id=f"event_{int(time.time() * 1000)}_{secrets.token_hex(4)}")
        self.events.append(event)
        await self._write("insert", rows.EVENTS.table, rows.EVENTS.entity_to_row(event, **self._owned()))
        return event

    async def update_event(self, event_id: str, updates: dict[str, Any]) -> CalendarEvent:
        index = self._index(self.events, event_id, "event")
        patch = rows.EVENTS.to_row(updates)
        event = dataclasses.replace(self.events[index], **updates)
        if event.end < event.start:
            raise ValueError(f"Event '{event.title}' ends before it starts")
        self.events[index] = event
        await self._write("update", rows.EVENTS.table, {"id": event_id}, patch)
        return event

    async def delete_event(self, event_id: str) -> None:
        self.events = [event for event in self.events if event.id != event_id]
        await self._write("delete", rows.EVENTS.table, {"id": event_id})

    # -- habits --------------------------------------------------------------

    async def add_habit(self, habit: Habit) -> Habit:
        self.habits.append(habit)
        await self._write("insert", rows.HABITS.table, rows.HABITS.entity_to_row(habit, **self._owned()))
        return habit

    async def update_habit(self, habit_id: str, updates: dict[str, Any]) -> Habit:
        index = self._index(self.habits, habit_id, "habit")
        patch = rows.HABITS.to_row(updates)
        habit = dataclasses.replace(self.habits[index], **updates)
        self.habits[index] = habit
        await self._write("update", rows.HABITS.table, {"id": habit_id}, patch)
        return habit

    async def toggle_habit_completion(self, habit_id: str, day: Optional[DayLike] = None) -> Habit:
        habit = self.habits[self._index(self.habits, habit_id, "habit")]
        key = day_key(day if day is not None else self.today())
        completions = dict(habit.completions)
        completions[key] = not completions.get(key, False)
        streak = habit_streak(completions, self.today(), self.config.report.streak_horizon_days)
        return await self.update_habit(habit_id, {"completions": completions, "streak": streak})

    async def delete_habit(self, habit_id: str) -> None:
        self.habits = [habit for habit in self.habits if habit.id != habit_id]
        await self._write("delete", rows.HABITS.table, {"id": habit_id})

    # -- OKRs ----------------------------------------------------------------

    async def _insert_key_result(self, okr_id: str, key_result: KeyResult, position: int) -> None:
        await self._write(
            "insert",
            rows.KEY_RESULTS.table,
            rows.KEY_RESULTS.entity_to_row(key_result, okr_id=okr_id, position=position),
        )
        for entry in key_result.history:
            await self._write(
                "insert", rows.HISTORY.table, rows.HISTORY.entity_to_row(entry, key_result_id=key_result.id)
            )

    async def add_okr(self, okr: OKR) -> OKR:
        self.okrs.append(okr)
        await self._write("insert", rows.OKRS.table, rows.OKRS.entity_to_row(okr, **self._owned()))
        for position, key_result in enumerate(okr.key_results):
            await self._insert_key_result(okr.id, key_result, position)
        return okr

    async def update_okr(self, okr_id: str, updates: dict[str, Any]) -> OKR:
        if "key_results" in updates:
            raise ValueError("Key results are changed with add_key_result / update_key_result")
        index = self._index(self.okrs, okr_id, "OKR")
        patch = rows.OKRS.to_row(updates)
        okr = dataclasses.replace(self.okrs[index], **updates)
        self.okrs[index] = okr
        await self._write("update", rows.OKRS.table, {"id": okr_id}, patch)
        return okr

    async def delete_okr(self, okr_id: str) -> None:
        removed = [okr for okr in self.okrs if okr.id == okr_id]
        self.okrs = [okr for okr in self.okrs if okr.id != okr_id]
        kr_ids = [kr.id for okr in removed for kr in okr.key_results]
        if kr_ids:
            await self._write("delete", rows.HISTORY.table, {"key_result_id": kr_ids})
        await self._write("delete", rows.KEY_RESULTS.table, {"okr_id": okr_id})
        await self._write("delete", rows.OKRS.table, {"id": okr_id})

    async def add_key_result(self, okr_id: str, key_result: KeyResult) -> OKR:
        index = self._index(self.okrs, okr_id, "OKR")
        okr = self.okrs[index]
        okr = dataclasses.replace(okr, key_results=[*okr.key_results, key_result])
        self.okrs[index] = okr
        await self._insert_key_result(okr_id, key_result, len(okr.key_results) - 1)
        return okr

    def _replace_key_result(self, okr_id: str, key_result_id: str, **changes: Any) -> KeyResult:
        okr_index = self._index(self.okrs, okr_id, "OKR")
        okr = self.okrs[okr_index]
        kr_index = self._index(okr.key_results, key_result_id, "key result")
        key_result = dataclasses.replace(okr.key_results[kr_index], **changes)
        key_results = list(okr.key_results)
        key_results[kr_index] = key_result
        self.okrs[okr_index] = dataclasses.replace(okr, key_results=key_results)
        return key_result

    async def update_key_result(self, okr_id: str, key_result_id: str, updates: dict[str, Any]) -> KeyResult:
        if "history" in updates:
            raise ValueError("History is append-only; use record_progress")
        patch = rows.KEY_RESULTS.to_row(updates)
        key_result = self._replace_key_result(okr_id, key_result_id, **updates)
        await self._write("update", rows.KEY_RESULTS.table, {"id": key_result_id}, patch)
        return key_result

    async def record_progress(
        self, okr_id: str, key_result_id: str, increment: float, day: Optional[DayLike] = None
    ) -> KeyResult:
        """Append a ledger entry and move the key result's current value."""

        okr = self.okrs[self._index(self.okrs, okr_id, "OKR")]
        current = okr.key_results[self._index(okr.key_results, key_result_id, "key result")]
        entry = HistoryEntry(date=to_calendar_day(day) if day is not None else self.today(), increment=increment)
        value = current.current_value + increment
        completed = value >= current.target_value

        key_result = self._replace_key_result(
            okr_id,
            key_result_id,
            current_value=value,
            completed=completed,
            history=[*current.history, entry],
        )
        await self._write("insert", rows.HISTORY.table, rows.HISTORY.entity_to_row(entry, key_result_id=key_result_id))
        await self._write(
            "update",
            rows.KEY_RESULTS.table,
            {"id": key_result_id},
            rows.KEY_RESULTS.to_row({"current_value": value, "completed": completed}),
        )
        return key_result

    # -- categories ----------------------------------------------------------

    async def add_category(self, category: Category) -> Category:
        self.categories.append(category)
        await self._write("insert", rows.CATEGORIES.table, rows.CATEGORIES.entity_to_row(category, **self._owned()))
        return category

    async def update_category(self, category_id: str, updates: dict[str, Any]) -> Category:
        index = self._index(self.categories, category_id, "category")
        patch = rows.CATEGORIES.to_row(updates)
        category = dataclasses.replace(self.categories[index], **updates)
        self.categories[index] = category
        await self._write("update", rows.CATEGORIES.table, {"id": category_id}, patch)
        return category

    async def delete_category(self, category_id: str) -> None:
        self.categories = [category for category in self.categories if category.id != category_id]
        await self._write("delete", rows.CATEGORIES.table, {"id": category_id})
