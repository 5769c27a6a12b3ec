"""In-process persistence and auth collaborators."""

from __future__ import annotations

import asyncio
import contextlib
import copy
import inspect
import logging
import secrets
from typing import Callable, Optional

from productivity_core.errors import AuthError, RemoteError
from productivity_core.remote import Match, Row, Session, SessionEvent, SessionEventKind, SessionHandler, match_row

logger = logging.getLogger(__name__)


def new_id(prefix: str = "row") -> str:
    return f"{prefix}_{secrets.token_hex(6)}"


class InMemoryRemote:
    """Dict-of-tables backend implementing the persistence contract."""

    def __init__(self, tables: Optional[dict[str, list[Row]]] = None) -> None:
        self.tables: dict[str, list[Row]] = {name: [dict(r) for r in rows] for name, rows in (tables or {}).items()}
        self.calls: list[tuple[str, str]] = []

    def _table(self, table: str) -> list[Row]:
        return self.tables.setdefault(table, [])

    async def _enter(self, operation: str, table: str) -> None:
        self.calls.append((operation, table))
        await asyncio.sleep(0)

    async def insert(self, table: str, row: Row) -> Row:
        await self._enter("insert", table)
        stored = dict(row)
        stored.setdefault("id", new_id(table))
        rows = self._table(table)
        if any(existing.get("id") == stored["id"] for existing in rows if "id" in existing):
            raise RemoteError(f"duplicate id {stored['id']!r} in '{table}'")
        rows.append(stored)
        return dict(stored)

    async def update(self, table: str, match: Match, patch: Row) -> Optional[Row]:
        await self._enter("update", table)
        updated = None
        for row in self._table(table):
            if match_row(row, match):
                row.update(patch)
                updated = dict(row)
        return updated

    async def delete(self, table: str, match: Match) -> None:
        await self._enter("delete", table)
        self.tables[table] = [row for row in self._table(table) if not match_row(row, match)]

    async def select(self, table: str, match: Optional[Match] = None) -> list[Row]:
        await self._enter("select", table)
        return [copy.deepcopy(row) for row in self._table(table) if match_row(row, match)]

    async def upsert(self, table: str, row: Row, on_conflict: str = "id") -> Row:
        await self._enter("upsert", table)
        rows = self._table(table)
        for existing in rows:
            if existing.get(on_conflict) == row.get(on_conflict):
                existing.update(row)
                return dict(existing)
        stored = dict(row)
        rows.append(stored)
        return dict(stored)


class InMemoryAuth:
    """Email/password auth with pub/sub session events."""

    def __init__(self) -> None:
        self._accounts: dict[str, tuple[str, Session]] = {}
        self._session: Optional[Session] = None
        self._handlers: list[SessionHandler] = []

    def add_account(self, email: str, password: str, name: str = "", user_id: Optional[str] = None) -> Session:
        session = Session(
            user_id=user_id or new_id("user"),
            email=email,
            access_token=secrets.token_hex(8),
            claims={"name": name or email.split("@")[0]},
        )
        self._accounts[email.lower()] = (password, session)
        return session

    def subscribe(self, handler: SessionHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._handlers.remove(handler)

        return _unsubscribe

    async def _publish(self, event: SessionEvent) -> None:
        for handler in list(self._handlers):
            result = handler(event)
            if inspect.isawaitable(result):
                await result

    async def get_session(self) -> Optional[Session]:
        return self._session

    async def sign_in(self, email: str, password: str) -> Session:
        account = self._accounts.get(email.strip().lower())
        if account is None or account[0] != password:
            raise AuthError("invalid email or password")
        self._session = account[1]
        await self._publish(SessionEvent(SessionEventKind.SIGNED_IN, self._session))
        return self._session

    async def sign_up(self, name: str, email: str, password: str) -> Session:
        if email.strip().lower() in self._accounts:
            raise AuthError(f"an account already exists for {email}")
        if len(password) < 6:
            raise AuthError("password must be at least 6 characters")
        self.add_account(email.strip(), password, name=name)
        return await self.sign_in(email, password)

    async def refresh_token(self) -> Optional[Session]:
        if self._session is None:
            return None
        self._session.access_token = secrets.token_hex(8)
        await self._publish(SessionEvent(SessionEventKind.TOKEN_REFRESHED, self._session))
        return self._session

    async def sign_out(self) -> None:
        if self._session is None:
            return
        self._session = None
        logger.debug("session cleared")
        await self._publish(SessionEvent(SessionEventKind.SIGNED_OUT, None))
