import asyncio
import logging
from datetime import datetime

import pytest

from productivity_core.aggregation import aggregate
from productivity_core.backends.memory import InMemoryAuth, InMemoryRemote
from productivity_core.config import CoreConfig, SyncConfig
from productivity_core.errors import RemoteError
from productivity_core.remote import SessionEvent, SessionEventKind
from productivity_core.schema import OKR, CalendarEvent, HistoryEntry, KeyResult, Permission, Task
from productivity_core.session import SessionState
from productivity_core.store import EntityStore
from productivity_core.timewindow import DateWindow, parse_calendar_day

NOW = datetime(2025, 1, 15, 10, 0)


class FlakyRemote(InMemoryRemote):
    """In-memory remote that can fail or stall chosen (operation, table) calls."""

    def __init__(self, tables=None, fail=(), slow=None):
        super().__init__(tables)
        self.fail = set(fail)
        self.slow = dict(slow or {})

    async def _enter(self, operation, table):
        await super()._enter(operation, table)
        if (operation, table) in self.fail:
            raise RemoteError(f"{operation} {table} unavailable")
        delay = self.slow.get(table)
        if delay:
            await asyncio.sleep(delay)


def task_row(task_id, user_id, completed=False, completed_at=None):
    return {
        "id": task_id,
        "user_id": user_id,
        "name": f"Task {task_id}",
        "priority": 2,
        "category_id": "c1",
        "deadline": "2025-01-20T00:00:00",
        "estimated_time": 30,
        "created_at": "2025-01-10T09:00:00",
        "completed": completed,
        "completed_at": completed_at,
        "bookmarked": False,
    }


def seed_tables():
    return {
        "tasks": [
            task_row("t1", "u1"),
            task_row("t9", "u1", completed=True, completed_at="2025-01-14T18:00:00"),
            task_row("tx", "u2"),
        ],
        "events": [
            {
                "id": "e1",
                "user_id": "u1",
                "title": "Standup",
                "start_time": "2025-01-14T09:00:00",
                "end_time": "2025-01-14T09:30:00",
                "color": "blue",
            }
        ],
        "habits": [
            {
                "id": "h1",
                "user_id": "u1",
                "name": "Read",
                "estimated_time": 20,
                "completions": {"2025-01-14": True},
                "streak": 1,
                "color": "green",
            }
        ],
        "okrs": [
            {
                "id": "o1",
                "user_id": "u1",
                "title": "Ship",
                "description": "",
                "category": "work",
                "start_date": "2025-01-01",
                "end_date": "2025-03-31",
                "estimated_time": 120,
                "completed": False,
            }
        ],
        "key_results": [
            {
                "id": "k2",
                "okr_id": "o1",
                "position": 1,
                "title": "Second",
                "current_value": 0,
                "target_value": 5,
                "unit": "items",
                "estimated_time": 10,
                "completed": False,
            },
            {
                "id": "k1",
                "okr_id": "o1",
                "position": 0,
                "title": "First",
                "current_value": 1,
                "target_value": 3,
                "unit": "items",
                "estimated_time": 15,
                "completed": False,
            },
        ],
        "key_result_history": [{"id": "kh1", "key_result_id": "k1", "date": "2025-01-14", "increment": 1}],
        "categories": [{"id": "c1", "user_id": "u1", "name": "Work", "color": "#3B82F6"}],
        "task_lists": [{"id": "l1", "user_id": "u1", "name": "Today", "color": "blue"}],
        "list_tasks": [
            {"list_id": "l1", "task_id": "t9", "position": 1},
            {"list_id": "l1", "task_id": "t1", "position": 0},
        ],
        "friendships": [{"user_id": "u1", "friend_id": "u2"}],
        "profiles": [{"id": "u2", "name": "Grace", "email": "grace@example.com", "avatar_url": None}],
    }


def make_store(remote=None, config=None):
    auth = InMemoryAuth()
    auth.add_account("ada@example.com", "secret", name="Ada", user_id="u1")
    store = EntityStore(remote or FlakyRemote(seed_tables()), auth, config=config, clock=lambda: NOW)
    return store, auth


async def logged_in(remote=None, config=None):
    store, auth = make_store(remote, config)
    await store.start()
    result = await store.login("ada@example.com", "secret")
    assert result.ok
    return store, auth


def new_task(task_id, completed=False):
    return Task(
        id=task_id,
        name=f"Task {task_id}",
        priority=3,
        category=None,
        deadline=None,
        estimated_time=25,
        created_at=NOW,
        completed=completed,
    )


def remote_row(store, table, row_id):
    return next(row for row in store.remote.tables[table] if row.get("id") == row_id)


def test_login_loads_every_collection():
    async def scenario():
        store, _ = await logged_in()
        assert store.state is SessionState.SYNCED
        assert store.user_id == "u1"
        assert store.user.name == "Ada"
        assert sorted(task.id for task in store.tasks) == ["t1", "t9"]
        assert [event.id for event in store.events] == ["e1"]
        assert store.habits[0].completions == {"2025-01-14": True}
        assert [kr.id for kr in store.okrs[0].key_results] == ["k1", "k2"]
        assert store.okrs[0].key_results[0].history == [HistoryEntry(parse_calendar_day("2025-01-14"), 1.0)]
        assert store.lists[0].task_ids == ["t1", "t9"]
        assert [friend.name for friend in store.friends] == ["Grace"]
        assert store.color_settings == {"c1": "Work"}
        assert remote_row(store, "profiles", "u1")["email"] == "ada@example.com"

    asyncio.run(scenario())


def test_login_failure_returns_result():
    async def scenario():
        store, _ = make_store()
        await store.start()
        result = await store.login("ada@example.com", "wrong")
        assert not result.ok
        assert result.error == "invalid email or password"
        assert store.state is SessionState.UNAUTHENTICATED
        assert store.tasks == []

    asyncio.run(scenario())


def test_register_creates_profile_and_session():
    async def scenario():
        store, _ = make_store()
        await store.start()
        short = await store.register("Bob", "bob@example.com", "123")
        assert not short.ok
        result = await store.register("Bob", "bob@example.com", "secret1")
        assert result.ok
        assert store.state is SessionState.SYNCED
        assert store.user.name == "Bob"
        assert store.tasks == []

    asyncio.run(scenario())


def test_login_without_subscription_still_syncs():
    async def scenario():
        store, _ = make_store()
        result = await store.login("ada@example.com", "secret")
        assert result.ok
        assert store.state is SessionState.SYNCED
        assert len(store.tasks) == 2

    asyncio.run(scenario())


def test_failed_write_keeps_local_change():
    async def scenario():
        store, _ = await logged_in(FlakyRemote(seed_tables(), fail={("update", "tasks")}))
        task = await store.toggle_complete("t1")
        assert task.completed
        assert task.completed_at == NOW
        assert store.tasks[0].completed
        assert len(store.write_errors) == 1
        assert store.write_errors[0].operation == "update"
        assert store.write_errors[0].table == "tasks"
        assert remote_row(store, "tasks", "t1")["completed"] is False

    asyncio.run(scenario())


def test_guest_mode_makes_no_remote_calls():
    async def scenario():
        store, _ = make_store(InMemoryRemote())
        await store.add_task(new_task("g1", completed=True))
        await store.toggle_bookmark("g1")
        assert store.tasks[0].completed_at == NOW
        assert store.tasks[0].bookmarked
        assert store.remote.calls == []
        assert store.write_errors == []

    asyncio.run(scenario())


def test_switching_user_drops_previous_user_collections():
    async def scenario():
        store, auth = await logged_in()
        auth.add_account("grace@example.com", "secret2", name="Grace", user_id="u2")
        store.remote.fail.add(("select", "tasks"))
        await auth.sign_in("grace@example.com", "secret2")
        assert store.user_id == "u2"
        assert store.state is SessionState.SYNCED
        assert store.user.name == "Grace"
        assert store.tasks == []
        assert store.habits == [] and store.okrs == [] and store.lists == []

    asyncio.run(scenario())


def test_partial_refresh_failure_keeps_previous_value(caplog):
    async def scenario():
        store, _ = await logged_in()
        store.remote.fail.add(("select", "habits"))
        with caplog.at_level(logging.WARNING, logger="productivity_core.store"):
            report = await store.refresh()
        assert "habits" in report.failed
        assert "tasks" in report.loaded
        assert not report.ok
        assert [habit.id for habit in store.habits] == ["h1"]

    asyncio.run(scenario())
    assert any("habits not loaded" in record.getMessage() for record in caplog.records)


def test_dependent_stage_failure_fails_whole_collection():
    async def scenario():
        store, _ = await logged_in()
        before = store.okrs
        store.remote.fail.add(("select", "key_result_history"))
        report = await store.refresh()
        assert "okrs" in report.failed
        assert store.okrs is before
        assert set(report.loaded) == {"tasks", "events", "habits", "categories", "lists", "friends"}

    asyncio.run(scenario())


def test_slow_select_times_out_without_blocking_others():
    async def scenario():
        config = CoreConfig(sync=SyncConfig(refresh_timeout_s=0.02))
        store, _ = make_store(FlakyRemote(seed_tables(), slow={"events": 0.3}), config)
        await store.start()
        result = await store.login("ada@example.com", "secret")
        assert result.ok
        report = await store.refresh()
        assert "timed out" in report.failed["events"]
        assert store.events == []
        assert len(store.tasks) == 2

    asyncio.run(scenario())


def test_refresh_finishing_after_sign_out_is_discarded():
    async def scenario():
        store, auth = make_store(FlakyRemote(seed_tables(), slow={"tasks": 0.05}))
        await auth.sign_in("ada@example.com", "secret")
        pending = asyncio.create_task(store.start())
        await asyncio.sleep(0.01)
        await store.logout()
        report = await pending
        assert report.stale
        assert store.tasks == []
        assert store.user is None
        assert store.state is SessionState.UNAUTHENTICATED

    asyncio.run(scenario())


def test_repeat_initial_session_is_ignored_but_token_refresh_reloads():
    async def scenario():
        store, auth = await logged_in()
        selects = sum(1 for op, _ in store.remote.calls if op == "select")
        session = await auth.get_session()
        again = await store.handle_session_event(SessionEvent(SessionEventKind.INITIAL_SESSION, session))
        assert again is None
        assert sum(1 for op, _ in store.remote.calls if op == "select") == selects
        await auth.refresh_token()
        assert sum(1 for op, _ in store.remote.calls if op == "select") > selects
        assert store.state is SessionState.SYNCED

    asyncio.run(scenario())


def test_profile_upsert_failure_falls_back_to_claims():
    async def scenario():
        store, _ = await logged_in(FlakyRemote(seed_tables(), fail={("upsert", "profiles")}))
        assert store.user.name == "Ada"
        assert store.user.email == "ada@example.com"
        assert store.state is SessionState.SYNCED

    asyncio.run(scenario())


def test_logout_clears_state():
    async def scenario():
        store, auth = await logged_in()
        await store.logout()
        assert store.tasks == [] and store.okrs == [] and store.friends == []
        assert store.user is None
        assert store.state is SessionState.UNAUTHENTICATED
        assert await auth.get_session() is None

    asyncio.run(scenario())


def test_completion_timestamp_follows_completed_flag():
    async def scenario():
        store, _ = await logged_in()
        done = await store.update_task("t1", {"completed": True})
        assert done.completed_at == NOW
        assert remote_row(store, "tasks", "t1")["completed_at"] == NOW.isoformat()
        undone = await store.update_task("t1", {"completed": False})
        assert undone.completed_at is None
        assert remote_row(store, "tasks", "t1")["completed_at"] is None

    asyncio.run(scenario())


def test_resaving_completed_task_keeps_completion_time():
    async def scenario():
        store, _ = await logged_in()
        original = datetime(2025, 1, 14, 18, 0)
        renamed = await store.update_task("t9", {"completed": True, "name": "renamed"})
        assert renamed.completed_at == original
        assert remote_row(store, "tasks", "t9")["completed_at"] == original.isoformat()
        assert remote_row(store, "tasks", "t9")["name"] == "renamed"
        cleared = await store.update_task("t9", {"completed": True, "completed_at": None})
        assert cleared.completed_at == original

    asyncio.run(scenario())


def test_contradictory_completion_time_is_normalised():
    async def scenario():
        store, _ = await logged_in()
        stray = await store.update_task("t1", {"completed_at": datetime(2025, 1, 1, 9, 0)})
        assert not stray.completed
        assert stray.completed_at is None
        assert remote_row(store, "tasks", "t1")["completed_at"] is None
        stamped = await store.update_task("t1", {"completed": True, "completed_at": None})
        assert stamped.completed_at == NOW

    asyncio.run(scenario())


def test_toggle_restamps_only_on_reopen_then_complete():
    async def scenario():
        store, _ = await logged_in()
        reopened = await store.toggle_complete("t9")
        assert not reopened.completed and reopened.completed_at is None
        done = await store.toggle_complete("t9")
        assert done.completed and done.completed_at == NOW

    asyncio.run(scenario())


def test_update_task_rejects_unknown_fields_and_ids():
    async def scenario():
        store, _ = await logged_in()
        before = list(store.tasks)
        with pytest.raises(ValueError):
            await store.update_task("t1", {"colour": "red"})
        assert store.tasks == before
        with pytest.raises(KeyError):
            await store.update_task("missing", {"name": "x"})

    asyncio.run(scenario())


def test_share_and_validate_task():
    async def scenario():
        store, _ = await logged_in()
        shared = await store.share_task("t1", "u2", "editor")
        assert shared.is_collaborative
        assert shared.collaborators == ["u2"]
        assert shared.permissions is Permission.EDITOR
        assert shared.shared_by == "u1"
        assert remote_row(store, "tasks", "t1")["permissions"] == "editor"
        with pytest.raises(ValueError):
            await store.validate_task("t1", "u3")
        validated = await store.validate_task("t1", "u2")
        assert validated.validations == {"u2": True}

    asyncio.run(scenario())


def test_list_membership_writes():
    async def scenario():
        store, _ = await logged_in()
        await store.add_task(new_task("t3"))
        task_list = await store.add_task_to_list("t3", "l1")
        assert task_list.task_ids == ["t1", "t9", "t3"]
        unchanged = await store.add_task_to_list("t3", "l1")
        assert unchanged.task_ids == ["t1", "t9", "t3"]
        joins = [row for row in store.remote.tables["list_tasks"] if row["task_id"] == "t3"]
        assert len(joins) == 1 and joins[0]["position"] == 2

        await store.delete_task("t1")
        assert store.lists[0].task_ids == ["t9", "t3"]
        assert all(row["task_id"] != "t1" for row in store.remote.tables["list_tasks"])
        assert all(row["id"] != "t1" for row in store.remote.tables["tasks"])

    asyncio.run(scenario())


def test_update_list_replaces_membership_rows():
    async def scenario():
        store, _ = await logged_in()
        await store.update_list("l1", {"name": "Tomorrow", "task_ids": ["t9"]})
        assert remote_row(store, "task_lists", "l1")["name"] == "Tomorrow"
        joins = [row for row in store.remote.tables["list_tasks"] if row["list_id"] == "l1"]
        assert [(row["task_id"], row["position"]) for row in joins] == [("t9", 0)]

    asyncio.run(scenario())


def test_record_progress_appends_history_and_completes():
    async def scenario():
        store, _ = await logged_in()
        key_result = await store.record_progress("o1", "k1", 2, day="2025-01-15")
        assert key_result.current_value == 3
        assert key_result.completed
        assert len(key_result.history) == 2
        assert remote_row(store, "key_results", "k1")["completed"] is True
        history = [row for row in store.remote.tables["key_result_history"] if row["key_result_id"] == "k1"]
        assert len(history) == 2

        week = aggregate(DateWindow.of("2025-01-13", "2025-01-19"), store.snapshot())
        assert week.okr_time == 45

    asyncio.run(scenario())


def test_okr_structure_changes():
    async def scenario():
        store, _ = await logged_in()
        with pytest.raises(ValueError):
            await store.update_okr("o1", {"key_results": []})
        with pytest.raises(ValueError):
            await store.update_key_result("o1", "k1", {"history": []})

        key_result = KeyResult("k9", "Extra", 0, 2, "items", 5, history=[HistoryEntry(NOW.date(), 1)])
        okr = OKR("o2", "New", "", "work", NOW.date(), NOW.date(), 30, key_results=[key_result])
        await store.add_okr(okr)
        assert remote_row(store, "key_results", "k9")["okr_id"] == "o2"
        assert remote_row(store, "key_results", "k9")["position"] == 0

        await store.delete_okr("o2")
        assert [o.id for o in store.okrs] == ["o1"]
        assert all(row["id"] != "k9" for row in store.remote.tables["key_results"])
        assert all(row["key_result_id"] != "k9" for row in store.remote.tables["key_result_history"])

    asyncio.run(scenario())


def test_toggle_habit_recomputes_streak():
    async def scenario():
        store, _ = await logged_in()
        habit = await store.toggle_habit_completion("h1")
        assert habit.completions == {"2025-01-14": True, "2025-01-15": True}
        assert habit.streak == 2
        assert remote_row(store, "habits", "h1")["streak"] == 2
        habit = await store.toggle_habit_completion("h1")
        assert habit.completions["2025-01-15"] is False
        assert habit.streak == 0

    asyncio.run(scenario())


def test_add_event_generates_id_and_validates_range():
    async def scenario():
        store, _ = await logged_in()
        event = await store.add_event(CalendarEvent("", "Focus", NOW, NOW.replace(hour=11), "red"))
        assert event.id.startswith("event_")
        assert remote_row(store, "events", event.id)["user_id"] == "u1"
        with pytest.raises(ValueError):
            await store.add_event(CalendarEvent("bad", "Backwards", NOW, NOW.replace(hour=9), "red"))
        assert all(e.id != "bad" for e in store.events)

    asyncio.run(scenario())


def test_deletes_are_idempotent():
    async def scenario():
        store, _ = await logged_in()
        await store.delete_event("e1")
        await store.delete_event("e1")
        await store.delete_habit("nope")
        await store.delete_category("c1")
        assert store.events == [] and store.categories == []
        assert store.write_errors == []

    asyncio.run(scenario())
