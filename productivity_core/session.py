"""Session state machine driven by auth events."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from productivity_core.remote import SessionEvent, SessionEventKind

EXPLICIT_REFRESH_KINDS = frozenset({SessionEventKind.SIGNED_IN, SessionEventKind.TOKEN_REFRESHED})


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    SYNCED = "synced"


class SessionMachine:
    """Tracks the session state and a generation token for stale results.

    The generation increases whenever a new sync starts or the session ends,
    so work started under an older generation can be recognised and dropped.
    """

    def __init__(self) -> None:
        self.state = SessionState.UNAUTHENTICATED
        self.user_id: Optional[str] = None
        self.generation = 0

    @property
    def synced(self) -> bool:
        return self.state is SessionState.SYNCED

    def should_sync(self, event: SessionEvent) -> bool:
        """Re-entrancy guard for session-bearing events."""

        if event.kind is SessionEventKind.SIGNED_OUT or event.session is None:
            return False
        if event.kind in EXPLICIT_REFRESH_KINDS:
            return True
        same_user = event.user_id == self.user_id
        return not (same_user and self.state in (SessionState.AUTHENTICATING, SessionState.SYNCED))

    def attempt(self) -> None:
        """Sign-in attempt before the user is known."""

        if self.state is SessionState.UNAUTHENTICATED:
            self.state = SessionState.AUTHENTICATING

    def begin(self, user_id: str) -> int:
        if self.user_id != user_id or self.state is not SessionState.SYNCED:
            self.state = SessionState.AUTHENTICATING
        self.user_id = user_id
        self.generation += 1
        return self.generation

    def complete(self, generation: int) -> bool:
        """Mark the sync started under ``generation`` as done; False if stale."""

        if generation != self.generation or self.user_id is None:
            return False
        self.state = SessionState.SYNCED
        return True

    def is_current(self, generation: int, user_id: Optional[str]) -> bool:
        return generation == self.generation and user_id == self.user_id

    def fail_attempt(self) -> None:
        if self.state is SessionState.AUTHENTICATING and self.user_id is None:
            self.state = SessionState.UNAUTHENTICATED

    def reset(self) -> None:
        self.state = SessionState.UNAUTHENTICATED
        self.user_id = None
        self.generation += 1
