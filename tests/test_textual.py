"""Tests for sparkle.textual — Textual integration layer."""

import threading

import pytest

pytest.importorskip("textual")

from textual.css.query import NoMatches

from sparkle import CellState, Ready, Unready, cell
from sparkle import textual as stx


class _MockApp:
    """Minimal mock matching the Textual App interface stx needs."""

    def __init__(self, *, is_running=True):
        self.is_running = is_running
        self._call_from_thread_log = []

    def call_from_thread(self, fn, *args):
        self._call_from_thread_log.append((fn, args))
        fn(*args)


class TestRefreshOnChange:
    def test_fires_when_safe(self):
        app = _MockApp()
        c = cell(1)
        refreshes = []
        stx.refresh_on_change(app, lambda: refreshes.append(c.peek()))
        c.value
        assert refreshes == [Ready(1)]

    def test_skips_when_not_running(self):
        app = _MockApp(is_running=False)
        c = cell(1)
        refreshes = []
        stx.refresh_on_change(app, lambda: refreshes.append(1))
        c.value
        assert refreshes == []

    def test_skips_during_pause(self):
        app = _MockApp()
        c = cell(1)
        refreshes = []
        stx.refresh_on_change(app, lambda: refreshes.append(1))
        with stx.pause(app):
            c.value
        assert refreshes == []

    def test_catches_nomatch(self):
        """NoMatches from widget queries are silently swallowed."""
        app = _MockApp()
        c = cell(1)

        def _raise_nomatch():
            raise NoMatches("StatusFooter")

        # Should not raise
        unsubscribe = stx.refresh_on_change(app, _raise_nomatch)
        c.value
        unsubscribe()

    def test_propagates_real_errors(self):
        """Non-NoMatches exceptions propagate normally."""
        app = _MockApp()
        c = cell(1)

        def _raise_value_error():
            raise ValueError("boom")

        stx.refresh_on_change(app, _raise_value_error)
        with pytest.raises(ValueError, match="boom"):
            c.value

    def test_unsubscribe_stops(self):
        app = _MockApp()
        c = cell(1)
        refreshes = []
        unsubscribe = stx.refresh_on_change(app, lambda: refreshes.append(1))
        c.value
        unsubscribe()
        c.update(2)
        assert refreshes == [1]

    def test_thread_marshal(self):
        """Notifications from a background thread use call_from_thread."""
        app = _MockApp()
        c = cell(1)
        refreshes = []
        stx.refresh_on_change(app, lambda: refreshes.append(1))

        t = threading.Thread(target=lambda: c.value)
        t.start()
        t.join()

        assert refreshes == [1]
        assert len(app._call_from_thread_log) == 1


class TestReaction:
    def test_no_initial_effect(self):
        app = _MockApp()
        c = cell("a")
        effects = []
        stx.reaction(app, c, effects.append)
        assert effects == []

    def test_fire_immediately(self):
        app = _MockApp()
        c = cell("a")
        effects = []
        stx.reaction(app, c, effects.append, fire_immediately=True)
        assert effects == [Unready(CellState.UNINITIALIZED)]

    def test_fires_on_change(self):
        app = _MockApp()
        c = cell("a")
        effects = []
        stx.reaction(app, c, effects.append)
        c.value
        c.update("b")
        assert effects == [Ready("a"), Ready("b")]

    def test_dedup_effect(self):
        """Effect only fires when the cell's result actually changes."""
        app = _MockApp()
        c = cell("a")
        c.value
        effects = []
        stx.reaction(app, c, effects.append)
        other = cell(1)
        other.value
        other.update(2)
        assert effects == []
        c.update("a")
        assert effects == []  # stale "a" then fulfilled "a": same result

    def test_skips_during_pause(self):
        app = _MockApp()
        c = cell("a")
        effects = []
        stx.reaction(app, c, effects.append)
        with stx.pause(app):
            c.value
        assert effects == []

    def test_unsubscribe(self):
        app = _MockApp()
        c = cell("a")
        effects = []
        unsubscribe = stx.reaction(app, c, effects.append)
        c.value
        unsubscribe()
        c.update("b")
        assert effects == [Ready("a")]


class TestPause:
    def test_pause_restores_on_exception(self):
        app = _MockApp()
        assert stx.is_safe(app)

        with pytest.raises(RuntimeError):
            with stx.pause(app):
                assert not stx.is_safe(app)
                raise RuntimeError("oops")

        # Restored despite exception
        assert stx.is_safe(app)

    def test_pause_does_not_mutate_app(self):
        """Pause state lives in the module, not on the app."""
        app = _MockApp()
        attrs_before = set(vars(app))
        with stx.pause(app):
            attrs_during = set(vars(app))
        attrs_after = set(vars(app))
        assert attrs_before == attrs_during, (
            f"pause() added attributes to app: {attrs_during - attrs_before}"
        )
        assert attrs_before == attrs_after

    def test_multiple_apps_independent(self):
        """Pausing one app does not affect another."""
        app_a = _MockApp()
        app_b = _MockApp()
        with stx.pause(app_a):
            assert not stx.is_safe(app_a)
            assert stx.is_safe(app_b)
