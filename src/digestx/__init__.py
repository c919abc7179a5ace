"""digestx: dirty-checking watchers and a digest loop for Python."""

from importlib.metadata import version as _version

__version__ = _version("digestx")

from digestx.errors import (
    DigestError,
    ReentrantPhaseError,
    UnstableDigestError,
    CallbackError,
    WatcherEvaluationError,
    ListenerError,
    AsyncTaskError,
    PostDigestTaskError,
)
from digestx.equality import are_equal, deep_equal, snapshot
from digestx.watcher import UNSET, Watcher, Deregistration
from digestx.phase import Phase, PhaseGuard
from digestx.scheduler import (
    Scheduler,
    ManualScheduler,
    AsyncioScheduler,
    set_scheduler,
    get_scheduler,
)
from digestx.scope import Scope, DEFAULT_TTL
# textual NOT auto-imported — opt-in only

__all__ = [
    "Scope",
    "DEFAULT_TTL",
    "Watcher",
    "Deregistration",
    "UNSET",
    "Phase",
    "PhaseGuard",
    "are_equal",
    "deep_equal",
    "snapshot",
    "Scheduler",
    "ManualScheduler",
    "AsyncioScheduler",
    "set_scheduler",
    "get_scheduler",
    "DigestError",
    "ReentrantPhaseError",
    "UnstableDigestError",
    "CallbackError",
    "WatcherEvaluationError",
    "ListenerError",
    "AsyncTaskError",
    "PostDigestTaskError",
]
