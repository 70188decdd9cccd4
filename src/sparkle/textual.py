"""Textual integration for Sparkle. Opt-in — requires textual.

Bridges bus notifications to a Textual app acting as the render scheduler.
Guard + NoMatches + thread-marshal are enforced here, not at callsites;
core Sparkle stays agnostic of any UI toolkit.
"""

import threading
from contextlib import contextmanager

from textual.css.query import NoMatches

from sparkle.runtime import get_runtime

# Module-owned pause state, keyed by id(app) so multiple apps work in tests.
_paused_apps: set[int] = set()


@contextmanager
def pause(app):
    """Suspend bridged callbacks during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def _bridge(app, fn):
    _main = threading.get_ident()

    def _guarded(*args):
        if not is_safe(app):
            return
        if threading.get_ident() != _main:
            app.call_from_thread(_safe, *args)
        else:
            _safe(*args)

    def _safe(*args):
        try:
            fn(*args)
        except NoMatches:
            pass

    return _guarded


def refresh_on_change(app, fn, *, runtime=None):
    """Call fn() after every cell change while the app is safe.

    Returns the unsubscribe function.

    Usage:
        unsubscribe = refresh_on_change(app, lambda: app.query_one(Status).refresh())
    """
    bus = (runtime or get_runtime()).bus
    return bus.subscribe(_bridge(app, fn))


def reaction(app, cell, effect_fn, *, fire_immediately=False):
    """Call effect_fn(result) when the cell's peeked result changes.

    ``result`` is the cell's Ready / Unready / Failed read result. The cell
    is peeked, never evaluated, so delivering an effect cannot itself
    trigger further notifications. Returns the unsubscribe function.
    """
    effect = _bridge(app, effect_fn)
    last = [cell.peek()]

    def _on_change():
        current = cell.peek()
        if current != last[0]:
            last[0] = current
            effect(current)

    if fire_immediately:
        effect(last[0])
    return cell.runtime.bus.subscribe(_on_change)
