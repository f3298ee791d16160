"""Tests for rebuildx.textual: Textual integration layer."""

import threading

import pytest
from textual.css.query import NoMatches

import rebuildx
from rebuildx import textual as rtx


class _MockApp:
    """Minimal mock of the Textual App interface rebuildx.textual uses."""

    def __init__(self, *, is_running=True):
        self.is_running = is_running
        self._call_from_thread_log = []

    def call_from_thread(self, fn, *args):
        self._call_from_thread_log.append((fn, args))
        fn(*args)


class TestObserve:
    def test_skips_when_not_running(self):
        app = _MockApp(is_running=False)
        rm = rebuildx.create(1)
        effects = []
        rtx.observe(app, rm, lambda c: effects.append(c.state))
        rm.set_state(lambda v: 2)
        assert effects == []

    def test_skips_during_pause(self):
        app = _MockApp()
        rm = rebuildx.create(1)
        effects = []
        rtx.observe(app, rm, lambda c: effects.append(c.state))
        with rtx.pause(app):
            rm.set_state(lambda v: 2)
        assert effects == []

    def test_fires_when_safe(self):
        app = _MockApp()
        rm = rebuildx.create(1)
        effects = []
        rtx.observe(app, rm, lambda c: effects.append(c.state))
        rm.set_state(lambda v: 2)
        assert effects == [2]

    def test_respects_tags(self):
        app = _MockApp()
        rm = rebuildx.create(1)
        effects = []
        rtx.observe(app, rm, lambda c: effects.append(c.state), tag="footer")
        rm.set_state(lambda v: 2, filter_tags=["header"])
        rm.set_state(lambda v: 3, filter_tags=["footer"])
        assert effects == [3]

    def test_catches_nomatch(self):
        """NoMatches from widget queries are silently swallowed."""
        app = _MockApp()
        rm = rebuildx.create(1)

        def _raise_nomatch(container):
            raise NoMatches("StatusFooter")

        # Should not raise
        subscription = rtx.observe(app, rm, _raise_nomatch)
        rm.set_state(lambda v: 2)
        subscription.dispose()

    def test_propagates_real_errors(self):
        """Non-NoMatches exceptions propagate normally."""
        app = _MockApp()
        rm = rebuildx.create(1)

        def _raise_value_error(container):
            raise ValueError("boom")

        rtx.observe(app, rm, _raise_value_error)
        with pytest.raises(ValueError, match="boom"):
            rm.set_state(lambda v: 2)

    def test_dispose_stops_observer(self):
        app = _MockApp()
        rm = rebuildx.create(1)
        effects = []
        subscription = rtx.observe(app, rm, lambda c: effects.append(c.state))
        rm.set_state(lambda v: 2)
        assert effects == [2]
        subscription.dispose()
        rm.set_state(lambda v: 3)
        assert effects == [2]

    def test_app_is_the_context(self):
        app = _MockApp()
        rm = rebuildx.create(1)
        rtx.observe(app, rm, lambda c: None)
        seen = []
        rm.set_state(lambda v: 2, on_set_state=lambda ctx: seen.append(ctx))
        assert rm.context is app
        assert seen == [app]

    def test_thread_marshal(self):
        """Commits from a background thread use call_from_thread."""
        app = _MockApp()
        rm = rebuildx.create(1)
        effects = []
        rtx.observe(app, rm, lambda c: effects.append(c.state))

        def _bg():
            rm.set_state(lambda v: 2)

        t = threading.Thread(target=_bg)
        t.start()
        t.join()

        assert effects == [2]
        assert len(app._call_from_thread_log) == 1


class TestPause:
    def test_pause_restores_on_exception(self):
        app = _MockApp()
        assert rtx.is_safe(app)

        with pytest.raises(RuntimeError):
            with rtx.pause(app):
                assert not rtx.is_safe(app)
                raise RuntimeError("oops")

        # Restored despite exception
        assert rtx.is_safe(app)

    def test_pause_does_not_mutate_app(self):
        """Pause state lives in the module, not on the app."""
        app = _MockApp()
        attrs_before = set(vars(app))
        with rtx.pause(app):
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
        with rtx.pause(app_a):
            assert not rtx.is_safe(app_a)
            assert rtx.is_safe(app_b)

    def test_paused_app_does_not_block_other_app(self):
        app_a = _MockApp()
        app_b = _MockApp()
        rm = rebuildx.create(1)
        effects = []
        rtx.observe(app_a, rm, lambda c: effects.append("a"))
        rtx.observe(app_b, rm, lambda c: effects.append("b"))
        with rtx.pause(app_a):
            rm.set_state(lambda v: 2)
        assert effects == ["b"]
