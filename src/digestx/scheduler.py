"""Schedulers — the "run this on a later turn" capability a Scope borrows.

Scope.eval_async() is the only caller. A scheduler must never run the
callback synchronously inside schedule(); it belongs to a future turn of
whatever loop the host runs.

A process-wide default can be installed once at startup:
    digestx.set_scheduler(digestx.AsyncioScheduler())
Scopes created without an explicit scheduler pick it up.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Callable, Protocol, runtime_checkable


@runtime_checkable
class Scheduler(Protocol):
    def schedule(self, callback: Callable[[], None], delay: float = 0.0) -> None: ...


class ManualScheduler:
    """Holds callbacks until the host pumps them with run_pending().

    Deterministic, so it doubles as the fake scheduler in tests.
    """

    def __init__(self) -> None:
        self._pending: deque[tuple[float, Callable[[], None]]] = deque()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def schedule(self, callback: Callable[[], None], delay: float = 0.0) -> None:
        self._pending.append((delay, callback))

    def run_pending(self) -> int:
        """Run what is queued right now, shortest delay first.

        Callbacks scheduled while running wait for the next call. If one
        raises, the ones after it stay pending. Returns the number run.
        """
        batch = deque(sorted(self._pending, key=lambda item: item[0]))
        self._pending.clear()
        count = 0
        try:
            while batch:
                _, callback = batch.popleft()
                count += 1
                callback()
        finally:
            # A raising callback leaves the rest of the batch queued.
            self._pending.extendleft(reversed(batch))
        return count


class AsyncioScheduler:
    """Schedules onto an asyncio event loop.

    Without an explicit loop, the running loop at schedule() time is used.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def schedule(self, callback: Callable[[], None], delay: float = 0.0) -> None:
        loop = self._loop or asyncio.get_running_loop()
        if delay > 0:
            loop.call_later(delay, callback)
        else:
            loop.call_soon(callback)


# ─── Process default ─────────────────────────────────────────────────────────
_default_scheduler: Scheduler | None = None


def set_scheduler(scheduler: Scheduler | None) -> None:
    """Install the scheduler used by scopes created without one.

    Pass None to remove it. Scopes already created keep what they had.
    """
    global _default_scheduler
    _default_scheduler = scheduler


def get_scheduler() -> Scheduler | None:
    return _default_scheduler
