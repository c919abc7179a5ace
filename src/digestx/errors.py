"""Error kinds raised or reported by a Scope.

Only ReentrantPhaseError and UnstableDigestError ever propagate out of a
digest. The CallbackError family is handed to the scope's error handler and
the digest carries on.
"""

from __future__ import annotations


class DigestError(Exception):
    """Base class for every digestx error."""


class ReentrantPhaseError(DigestError):
    """A digest or apply was started while another one is in progress."""

    def __init__(self, active, requested) -> None:
        self.active = active
        self.requested = requested
        super().__init__(f"{active.value} already in progress, cannot start {requested.value}")


class UnstableDigestError(DigestError):
    """The digest ran out of passes before the watchers settled."""

    def __init__(self, ttl: int) -> None:
        self.ttl = ttl
        super().__init__(f"{ttl} digest iterations reached without stabilizing")


class CallbackError(DigestError):
    """A user callable failed inside a digest. Reported, never raised."""

    label = "callback"

    def __init__(self, subject, original: BaseException) -> None:
        self.subject = subject
        self.original = original
        self.__cause__ = original
        super().__init__(f"{self.label} failed: {original!r}")


class WatcherEvaluationError(CallbackError):
    label = "watch function"


class ListenerError(CallbackError):
    label = "listener"


class AsyncTaskError(CallbackError):
    label = "async task"


class PostDigestTaskError(CallbackError):
    label = "post-digest task"
