"""Phase guard — a scope is either idle, digesting, or applying.

Starting a phase while another is active raises ReentrantPhaseError
instead of silently interleaving two cycles.
"""

from __future__ import annotations

import enum
from contextlib import contextmanager

from digestx.errors import ReentrantPhaseError


class Phase(enum.Enum):
    DIGEST = "digest"
    APPLY = "apply"


class PhaseGuard:
    """Non-reentrant phase token owned by one Scope."""

    __slots__ = ("_current",)

    def __init__(self) -> None:
        self._current: Phase | None = None

    @property
    def current(self) -> Phase | None:
        return self._current

    @property
    def active(self) -> bool:
        return self._current is not None

    def begin(self, phase: Phase) -> None:
        if self._current is not None:
            raise ReentrantPhaseError(self._current, phase)
        self._current = phase

    def clear(self) -> None:
        self._current = None

    @contextmanager
    def entered(self, phase: Phase):
        """Hold `phase` for the duration of the block.

        Usage:
            with guard.entered(Phase.DIGEST):
                ...  # guard.current is Phase.DIGEST here
            # cleared, even if the block raised
        """
        self.begin(phase)
        try:
            yield
        finally:
            self.clear()

    def __repr__(self) -> str:
        name = self._current.value if self._current else "idle"
        return f"PhaseGuard({name})"
