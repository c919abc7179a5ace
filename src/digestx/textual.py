"""Textual integration for digestx. Opt-in — requires textual.

TextualScheduler lets Scope.eval_async() self-schedule onto a Textual app's
message loop. listener() and threadsafe_apply() keep widget-touching
callbacks safe while the app is starting, paused or shutting down.
"""

import logging
import threading
from contextlib import contextmanager

from textual.css.query import NoMatches

logger = logging.getLogger("digestx.textual")

# Apps whose widget trees are being replaced, keyed by id(app).
_paused_apps: set[int] = set()


class TextualScheduler:
    """Runs callbacks on a later turn of a Textual app's message loop."""

    def __init__(self, app) -> None:
        self._app = app

    def schedule(self, callback, delay: float = 0.0) -> None:
        if delay > 0:
            self._app.set_timer(delay, callback)
        else:
            self._app.call_later(callback)


@contextmanager
def pause(app):
    """Suspend guarded listeners during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def listener(app, fn):
    """Wrap a scope listener so it only touches widgets when that is safe.

    The wrapped listener is skipped while the app is not running or is
    paused, and NoMatches from widget queries is swallowed.
    """

    def _guarded(new_value, old_value, scope):
        if not is_safe(app):
            return
        try:
            fn(new_value, old_value, scope)
        except NoMatches:
            logger.debug("listener %r found no widget to update", fn)

    return _guarded


def threadsafe_apply(app, scope):
    """Return an apply(expr) that can be called from any thread.

    Call this on the app thread. The returned function applies directly when
    called from that thread; from a worker it marshals through
    call_from_thread, which blocks until the apply returns.
    """
    _main = threading.get_ident()

    def _apply(expr):
        if threading.get_ident() == _main:
            return scope.apply(expr)
        return app.call_from_thread(scope.apply, expr)

    return _apply
