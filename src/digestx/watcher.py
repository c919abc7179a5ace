"""Watchers and their deregistration handles.

A Watcher is a (watch_fn, listener_fn, value_eq) triple plus the last value
the digest saw. Scope.watch() returns a Deregistration bound to the exact
Watcher instance, so removing it never touches a look-alike.
"""

from __future__ import annotations

from typing import Any, Callable


class _Unset:
    """Marker for "never evaluated". Equal to nothing but itself."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "UNSET"

    def __reduce__(self):
        return "UNSET"

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


UNSET = _Unset()


def _noop(new_value: Any, old_value: Any, scope: Any) -> None:
    pass


class Watcher:
    """One tracked derivation inside a Scope."""

    __slots__ = ("watch_fn", "listener_fn", "value_eq", "prev", "__weakref__")

    def __init__(
        self,
        watch_fn: Callable[[Any], Any],
        listener_fn: Callable[[Any, Any, Any], None] | None = None,
        value_eq: bool = False,
    ) -> None:
        self.watch_fn = watch_fn
        self.listener_fn = listener_fn or _noop
        self.value_eq = bool(value_eq)
        self.prev: Any = UNSET

    def __repr__(self) -> str:
        name = getattr(self.watch_fn, "__name__", repr(self.watch_fn))
        mode = "value" if self.value_eq else "ref"
        return f"Watcher({name}, {mode}, prev={self.prev!r})"


class Deregistration:
    """Callable handle that removes what it was issued for. Idempotent."""

    __slots__ = ("_remove", "_disposed")

    def __init__(self, remove: Callable[[], None]) -> None:
        self._remove = remove
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._remove()

    __call__ = dispose

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else "active"
        return f"Deregistration({state})"
