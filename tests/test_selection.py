"""Tests for selection tracking and the headless editor surface."""

import pytest

from bifrost.core.events import EventType
from bifrost.ide.selection import SelectionTracker, selection_state


@pytest.fixture
def emitted():
    return []


@pytest.fixture
def tracker(ide, emitted):
    t = SelectionTracker(ide, emitted.append)
    yield t
    t.stop()


@pytest.fixture
def main_py(workspace):
    return workspace / "src" / "main.py"


@pytest.fixture
def util_py(workspace):
    return workspace / "src" / "util.py"


class TestHeadlessSurface:
    """Tests for offsets and positions of the headless document."""

    def test_position_is_zero_based(self, ide, main_py):
        ide.activate(main_py)
        surface = ide.active_editor()

        assert surface.position(0).to_dict() == {"line": 0, "character": 0}
        # "print('hello')\n" is 15 characters
        assert surface.position(15).to_dict() == {"line": 1, "character": 0}
        assert surface.position(20).to_dict() == {"line": 1, "character": 5}

    def test_selection_state(self, ide, main_py):
        ide.activate(main_py)
        ide.select(main_py, 15, 20)

        state = selection_state(ide.active_editor())
        assert state.text == "value"
        assert state.file_path == str(main_py)
        assert state.start.line == 1 and state.end.character == 5


class TestLifecycle:
    """Tests for start and stop."""

    def test_start_is_idempotent(self, ide, tracker):
        tracker.start()
        tracker.start()

        assert ide.events.handler_count(EventType.ACTIVE_EDITOR_CHANGED) == 1

    def test_start_tracks_focused_editor(self, ide, tracker, emitted, main_py):
        ide.activate(main_py)
        tracker.start()

        assert tracker.tracked_component is ide.active_editor()
        assert ide.active_editor().listener_count == 1
        assert len(emitted) == 1

    def test_start_without_editor(self, tracker, emitted):
        tracker.start()

        assert tracker.tracked_component is None
        assert emitted == []

    def test_stop_detaches_everything(self, ide, tracker, main_py):
        ide.activate(main_py)
        tracker.start()
        surface = ide.active_editor()

        tracker.stop()
        tracker.stop()

        assert surface.listener_count == 0
        assert tracker.tracked_component is None
        assert tracker.tracked_component_listener is None
        assert ide.events.handler_count(EventType.ACTIVE_EDITOR_CHANGED) == 0

    def test_restart_after_stop(self, ide, tracker, main_py):
        tracker.start()
        tracker.stop()
        tracker.start()
        ide.activate(main_py)

        assert ide.active_editor().listener_count == 1


class TestFocusChanges:
    """Tests for following focus between editors."""

    def test_listener_moves(self, ide, tracker, emitted, main_py, util_py):
        tracker.start()
        ide.activate(main_py)
        first = ide.active_editor()
        ide.activate(util_py)
        second = ide.active_editor()

        assert first.listener_count == 0
        assert second.listener_count == 1
        assert tracker.tracked_component is second
        assert [s.file_path for s in emitted] == [str(main_py), str(util_py)]

    def test_same_editor_is_noop(self, ide, tracker, emitted, main_py):
        ide.activate(main_py)
        tracker.start()
        tracker.track(ide.active_editor())

        assert ide.active_editor().listener_count == 1
        assert len(emitted) == 1

    def test_focus_leaving_editors_keeps_tracking(self, ide, tracker, main_py):
        tracker.start()
        ide.activate(main_py)
        surface = ide.active_editor()
        tracker._on_active_editor_changed(None)

        assert tracker.tracked_component is surface


class TestCaretEvents:
    """Tests for caret-driven notifications."""

    def test_every_caret_event_emits(self, ide, tracker, emitted, main_py):
        ide.activate(main_py)
        tracker.start()
        emitted.clear()

        ide.select(main_py, 0, 5)
        ide.select(main_py, 15, 20)

        assert [s.text for s in emitted] == ["print", "value"]
        assert emitted[-1].to_dict()["selection"]["start"] == {"line": 1, "character": 0}

    def test_old_editor_no_longer_reports(self, ide, tracker, emitted, main_py, util_py):
        tracker.start()
        ide.activate(main_py)
        ide.activate(util_py)
        emitted.clear()

        ide.select(main_py, 0, 5)

        assert emitted == []

    def test_emit_failure_swallowed(self, ide, main_py):
        def broken(state):
            raise ConnectionError("closed")

        tracker = SelectionTracker(ide, broken)
        ide.activate(main_py)
        tracker.start()
        ide.select(main_py, 0, 5)
        tracker.stop()

    def test_snapshot(self, ide, tracker, main_py):
        assert tracker.snapshot() is None

        ide.activate(main_py)
        ide.select(main_py, 0, 5)
        assert tracker.snapshot().text == "print"
