"""Textual integration for rebuildx. Opt-in, requires textual.

Guard + NoMatches + thread-marshal are enforced here, not at callsites.
Textual coupling stays in this module; the core never imports it.
_paused_apps has a single owner (this module) and an explicit API
(pause/is_safe): an app id is present only inside its pause context.
"""

import threading
from contextlib import contextmanager

from textual.css.query import NoMatches

from rebuildx.container import ReactiveContainer
from rebuildx.observers import Subscription

# Module-owned pause state, keyed by id(app) so multiple apps work in tests.
_paused_apps: set[int] = set()


@contextmanager
def pause(app):
    """Suspend guarded observers during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def observe(app, container: ReactiveContainer, callback, *, tag=None) -> Subscription:
    """Subscribe callback(container) to container on behalf of a Textual app.

    Skips notifications while the app is paused or not running, swallows
    NoMatches from widget queries, and marshals notifications raised on
    other threads via call_from_thread. The app is the observer context
    handed to on_set_state/on_rebuild_state/on_data/on_error.
    """
    _main = threading.get_ident()

    def _guarded(source):
        if not is_safe(app):
            return
        if threading.get_ident() != _main:
            app.call_from_thread(_safe, source)
        else:
            _safe(source)

    def _safe(source):
        try:
            callback(source)
        except NoMatches:
            pass

    return container.subscribe(_guarded, tag=tag, context=app)
