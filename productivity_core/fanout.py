"""Timeout guard and settle-all fan-out for remote reads."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Optional, TypeVar

from productivity_core.errors import RemoteTimeout

T = TypeVar("T")


@dataclass
class Settled:
    """Outcome of one fan-out slot: either ``value`` or ``error``."""

    name: str
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def guard(awaitable: Awaitable[T], timeout: float, label: str) -> T:
    """Await with a timeout that detects but does not cancel the underlying call."""

    task = asyncio.ensure_future(awaitable)
    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout)
    except asyncio.TimeoutError as exc:
        task.add_done_callback(_discard_late_result)
        raise RemoteTimeout(label, timeout) from exc


def _discard_late_result(task: asyncio.Future) -> None:
    if not task.cancelled():
        task.exception()


async def settle_all(jobs: dict[str, Awaitable[Any]]) -> dict[str, Settled]:
    """Run every job concurrently and collect per-slot successes and failures."""

    names = list(jobs)
    outcomes = await asyncio.gather(*(jobs[name] for name in names), return_exceptions=True)
    settled: dict[str, Settled] = {}
    for name, outcome in zip(names, outcomes):
        if isinstance(outcome, BaseException):
            settled[name] = Settled(name=name, error=outcome)
        else:
            settled[name] = Settled(name=name, value=outcome)
    return settled
