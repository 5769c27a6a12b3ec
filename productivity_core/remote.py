"""Contracts for the remote persistence and auth collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol

Row = dict[str, Any]
Match = dict[str, Any]


class SessionEventKind(str, Enum):
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    SIGNED_OUT = "SIGNED_OUT"


@dataclass
class Session:
    """Authenticated session as reported by the auth collaborator."""

    user_id: str
    email: str = ""
    access_token: str = ""
    claims: dict[str, Any] = field(default_factory=dict)


@dataclass
class SessionEvent:
    kind: SessionEventKind
    session: Optional[Session] = None

    @property
    def user_id(self) -> Optional[str]:
        return self.session.user_id if self.session else None


SessionHandler = Callable[[SessionEvent], Optional[Awaitable[None]]]


class RemotePersistence(Protocol):
    """Row CRUD with equality / membership filters."""

    async def insert(self, table: str, row: Row) -> Row: ...

    async def update(self, table: str, match: Match, patch: Row) -> Optional[Row]: ...

    async def delete(self, table: str, match: Match) -> None: ...

    async def select(self, table: str, match: Optional[Match] = None) -> list[Row]: ...

    async def upsert(self, table: str, row: Row, on_conflict: str = "id") -> Row: ...


class AuthClient(Protocol):
    async def get_session(self) -> Optional[Session]: ...

    async def sign_in(self, email: str, password: str) -> Session: ...

    async def sign_up(self, name: str, email: str, password: str) -> Session: ...

    async def sign_out(self) -> None: ...

    def subscribe(self, handler: SessionHandler) -> Callable[[], None]: ...


def match_row(row: Row, match: Optional[Match]) -> bool:
    """Equality filter; list/tuple/set values mean membership."""

    if not match:
        return True
    for column, expected in match.items():
        value = row.get(column)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True
