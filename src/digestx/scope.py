"""Scope — the watcher registry and the digest loop that settles it.

A digest polls every watcher in registration order, fires listeners for
whatever changed, and repeats until a full pass sees no change and the
async queue is empty. Passes are bounded by `ttl`; a scope that keeps
changing raises UnstableDigestError instead of spinning forever.

Usage:
    scope = Scope()
    state = {"x": 0}
    scope.watch(lambda s: state["x"], lambda new, old, s: print(new, old))
    scope.digest()                          # prints "0 0"
    scope.apply(lambda s: state.update(x=1))  # prints "1 0"

Failures inside watch functions, listeners and queued tasks are reported to
the error handler (logged by default) and never abort a digest.
"""

from __future__ import annotations

import logging
import weakref
from collections import deque
from typing import Any, Callable, Sequence

from digestx.equality import are_equal, snapshot
from digestx.errors import (
    AsyncTaskError,
    CallbackError,
    ListenerError,
    PostDigestTaskError,
    UnstableDigestError,
    WatcherEvaluationError,
)
from digestx.phase import Phase, PhaseGuard
from digestx.scheduler import Scheduler, get_scheduler
from digestx.watcher import UNSET, Deregistration, Watcher

logger = logging.getLogger("digestx.scope")

DEFAULT_TTL = 10

WatchFn = Callable[["Scope"], Any]
ListenerFn = Callable[[Any, Any, "Scope"], None]
Expr = Callable[..., Any]
ErrorHandler = Callable[[CallbackError], None]


def log_error(error: CallbackError) -> None:
    """Default error handler: log with the original traceback."""
    logger.error("%s", error, exc_info=error.original)


class _WatchGroup:
    """One internal watcher per entry, one listener call per settled pass.

    Entry listeners only record what changed and queue a flush on the async
    queue, which the digest drains right after the pass. The flush builds
    fresh current/previous lists so entries never interfere.
    """

    __slots__ = (
        "_listener_fn",
        "_latest",
        "_before",
        "_changed",
        "_pending",
        "_disposed",
        "_handles",
    )

    def __init__(self, scope: Scope, watch_fns: Sequence[WatchFn], listener_fn) -> None:
        size = len(watch_fns)
        self._listener_fn = listener_fn
        self._latest: list[Any] = [UNSET] * size
        self._before: list[Any] = [UNSET] * size
        self._changed = [False] * size
        self._pending = False
        self._disposed = False
        self._handles = [
            scope.watch(fn, self._entry_listener(index))
            for index, fn in enumerate(watch_fns)
        ]
        if not watch_fns:
            self._pending = True
            scope.eval_async(self._flush)

    def _entry_listener(self, index: int) -> ListenerFn:
        def listener(new_value, old_value, scope):
            if not self._changed[index]:
                self._before[index] = old_value
                self._changed[index] = True
            self._latest[index] = new_value
            if not self._pending:
                self._pending = True
                scope.eval_async(self._flush)

        return listener

    def _flush(self, scope: Scope) -> None:
        self._pending = False
        if self._disposed:
            return
        # Entries whose watch function has not yet succeeded read as None.
        current = [None if latest is UNSET else latest for latest in self._latest]
        previous = [
            before if changed else now
            for before, changed, now in zip(self._before, self._changed, current)
        ]
        self._changed = [False] * len(self._changed)
        try:
            self._listener_fn(current, previous, scope)
        except Exception as exc:
            scope._report(ListenerError(self, exc))

    def dispose(self) -> None:
        self._disposed = True
        for handle in self._handles:
            handle.dispose()


class Scope:
    """Watchers, queues and a phase guard, settled by digest()."""

    def __init__(
        self,
        scheduler: Scheduler | None = None,
        *,
        ttl: int = DEFAULT_TTL,
        error_handler: ErrorHandler | None = None,
    ) -> None:
        if ttl < 1:
            raise ValueError(f"ttl must be at least 1, got {ttl}")
        self._watchers: list[Watcher] = []
        self._cursor: int | None = None
        self._last_dirty_watch: weakref.ref[Watcher] | None = None
        self._async_queue: deque[Expr] = deque()
        self._post_digest_queue: deque[Callable[[], Any]] = deque()
        self._guard = PhaseGuard()
        self._scheduler = scheduler if scheduler is not None else get_scheduler()
        self._ttl = ttl
        self._error_handler = error_handler or log_error

    # --- Introspection ---

    @property
    def phase(self) -> Phase | None:
        return self._guard.current

    @property
    def ttl(self) -> int:
        return self._ttl

    @property
    def watcher_count(self) -> int:
        return len(self._watchers)

    @property
    def pending_async_count(self) -> int:
        return len(self._async_queue)

    @property
    def pending_post_digest_count(self) -> int:
        return len(self._post_digest_queue)

    # --- Registry ---

    def watch(
        self,
        watch_fn: WatchFn,
        listener_fn: ListenerFn | None = None,
        value_eq: bool = False,
    ) -> Deregistration:
        """Register a watcher. Its listener fires on the next digest.

        Returns a handle; calling it removes this watcher and no other.
        """
        watcher = Watcher(watch_fn, listener_fn, value_eq)
        self._watchers.append(watcher)
        # A never-evaluated watcher must not be skipped by the short-circuit.
        self._last_dirty_watch = None
        return Deregistration(lambda: self._remove_watcher(watcher))

    def watch_group(
        self,
        watch_fns: Sequence[WatchFn],
        listener_fn: Callable[[list, list, "Scope"], None],
    ) -> Deregistration:
        """Watch several values with one listener.

        The listener gets (current_values, previous_values, scope), both
        aligned with watch_fns, once per pass in which any of them changed.
        """
        group = _WatchGroup(self, list(watch_fns), listener_fn)
        return Deregistration(group.dispose)

    def _remove_watcher(self, watcher: Watcher) -> None:
        for index, candidate in enumerate(self._watchers):
            if candidate is watcher:
                del self._watchers[index]
                if self._cursor is not None and index < self._cursor:
                    self._cursor -= 1
                break
        if self._last_dirty() is watcher:
            self._last_dirty_watch = None

    def _last_dirty(self) -> Watcher | None:
        ref = self._last_dirty_watch
        return ref() if ref is not None else None

    # --- Digest ---

    def digest_once(self) -> bool:
        """Run every watcher once. Returns True if any of them changed."""
        dirty = False
        # Live cursor: watchers added mid-pass run in this pass, removed ones
        # shift it back (see _remove_watcher).
        self._cursor = 0
        try:
            while self._cursor < len(self._watchers):
                watcher = self._watchers[self._cursor]
                self._cursor += 1
                # User __eq__ and deepcopy can fail as well as watch_fn.
                try:
                    current = watcher.watch_fn(self)
                    previous = watcher.prev
                    changed = not are_equal(current, previous, watcher.value_eq)
                    if changed:
                        retained = snapshot(current, watcher.value_eq)
                except Exception as exc:
                    self._report(WatcherEvaluationError(watcher, exc))
                    continue

                if changed:
                    self._last_dirty_watch = weakref.ref(watcher)
                    watcher.prev = retained
                    dirty = True
                    try:
                        watcher.listener_fn(
                            current,
                            current if previous is UNSET else previous,
                            self,
                        )
                    except Exception as exc:
                        self._report(ListenerError(watcher, exc))
                elif self._last_dirty() is watcher:
                    # Back at the last change with nothing new since: settled.
                    return False
            return dirty
        finally:
            self._cursor = None

    def digest(self) -> None:
        """Run passes until nothing changes, then the post-digest tasks.

        Raises ReentrantPhaseError if a digest or apply is in progress, and
        UnstableDigestError if `ttl` passes were not enough to settle.
        """
        with self._guard.entered(Phase.DIGEST):
            self._last_dirty_watch = None
            passes = 0
            while True:
                dirty = self.digest_once()
                passes += 1
                if not dirty and not self._async_queue:
                    break
                if passes >= self._ttl:
                    logger.debug(
                        "digest unstable after %d passes (dirty=%s, %d async pending)",
                        passes, dirty, len(self._async_queue),
                    )
                    raise UnstableDigestError(self._ttl)
                self._drain_async_queue()
            logger.debug("digest settled after %d pass(es)", passes)

        self._drain_post_digest_queue()

    def _drain_async_queue(self) -> None:
        while self._async_queue:
            expr = self._async_queue.popleft()
            try:
                self.eval(expr)
            except Exception as exc:
                self._report(AsyncTaskError(expr, exc))

    def _drain_post_digest_queue(self) -> None:
        while self._post_digest_queue:
            fn = self._post_digest_queue.popleft()
            try:
                fn()
            except Exception as exc:
                self._report(PostDigestTaskError(fn, exc))

    def _report(self, error: CallbackError) -> None:
        self._error_handler(error)

    # --- Entry points ---

    def eval(self, expr: Expr, *args: Any) -> Any:
        """Call expr(scope, *args) and return the result. Nothing else."""
        return expr(self, *args)

    def apply(self, expr: Expr) -> Any:
        """Evaluate expr, then digest whether or not it raised.

        An exception from expr reaches the caller only after the digest.
        """
        self._guard.begin(Phase.APPLY)
        try:
            return self.eval(expr)
        finally:
            self._guard.clear()
            self.digest()

    def eval_async(self, expr: Expr) -> None:
        """Queue expr for the next digest.

        If the scope is idle and nothing was queued yet, ask the scheduler
        for a digest on a later turn. Further calls before that turn just
        join the queue.
        """
        should_schedule = not self._guard.active and not self._async_queue
        self._async_queue.append(expr)
        if not should_schedule:
            return
        if self._scheduler is None:
            logger.debug("no scheduler set; async task waits for the next digest")
            return
        self._scheduler.schedule(self._digest_pending_async, 0)

    def _digest_pending_async(self) -> None:
        if self._async_queue:
            self.digest()

    def post_digest(self, fn: Callable[[], Any]) -> None:
        """Run fn once, after the next digest settles."""
        self._post_digest_queue.append(fn)

    def __repr__(self) -> str:
        phase = self._guard.current.value if self._guard.current else "idle"
        return (
            f"Scope({phase}, watchers={len(self._watchers)}, "
            f"async={len(self._async_queue)}, post_digest={len(self._post_digest_queue)})"
        )
