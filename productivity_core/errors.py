"""Error taxonomy for the sync core."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class ProductivityError(Exception):
    """Base class for errors raised by productivity_core."""


class RemoteError(ProductivityError):
    """A remote persistence call failed."""


class RemoteWriteError(RemoteError):
    """A write was rejected; the local mutation has already been applied."""

    def __init__(self, operation: str, table: str, reason: str) -> None:
        super().__init__(f"{operation} on '{table}' failed: {reason}")
        self.operation = operation
        self.table = table
        self.reason = reason


class RemoteReadError(RemoteError):
    """A select failed; the affected collection keeps its previous value."""


class RemoteTimeout(RemoteReadError):
    def __init__(self, label: str, timeout: float) -> None:
        super().__init__(f"{label} timed out after {timeout:g}s")
        self.label = label
        self.timeout = timeout


class AuthError(ProductivityError):
    """Sign-in, sign-up or sign-out was refused by the auth collaborator."""


@dataclass
class AuthResult:
    ok: bool
    user_id: Optional[str] = None
    error: Optional[str] = None
