"""Selection tracking for the focused editor.

Follows focus across editors, keeps exactly one caret listener attached to
the focused surface, and reports every selection change through the
``emit`` callback (normally the session's ``selection_changed`` notifier).
"""

import threading
from typing import Callable, Optional

import structlog

from bifrost.core.events import Subscription
from bifrost.ide.backend import CaretListener, EditorSurface, IDEBackend
from bifrost.ide.protocol import SelectionState

log = structlog.get_logger()

SelectionEmitter = Callable[[SelectionState], None]


def selection_state(surface: EditorSurface) -> SelectionState:
    """Compute the selection of ``surface`` (0-based positions)."""
    start, end = surface.selection()
    path = surface.path
    return SelectionState(
        text=surface.selected_text(),
        file_path=str(path) if path else None,
        start=surface.position(start),
        end=surface.position(end),
    )


class SelectionTracker:
    """Tracks caret/selection changes of the focused editor.

    ``start``, ``stop`` and the backend callbacks are expected on the UI
    thread; a lock still guards the tracked state so ``stop`` may be called
    from teardown code elsewhere.
    """

    def __init__(self, backend: IDEBackend, emit: SelectionEmitter):
        self.backend = backend
        self._emit = emit
        self._lock = threading.RLock()
        self._subscription: Optional[Subscription] = None
        self.tracked_component: Optional[EditorSurface] = None
        self.tracked_component_listener: Optional[CaretListener] = None

    @property
    def running(self) -> bool:
        return self._subscription is not None

    def start(self):
        """Subscribe to focus changes and track the focused editor. Idempotent."""
        with self._lock:
            if self._subscription is not None:
                return
            self._subscription = self.backend.subscribe_active_editor_changed(
                self._on_active_editor_changed
            )
        log.debug("selection_tracking_started")

        surface = self.backend.active_editor()
        if surface is not None:
            self.track(surface)

    def stop(self):
        """Detach the caret listener and unsubscribe. Idempotent."""
        with self._lock:
            subscription, self._subscription = self._subscription, None
            self._detach()
        if subscription is not None:
            subscription.unsubscribe()
            log.debug("selection_tracking_stopped")

    def track(self, surface: EditorSurface):
        """Move the single caret listener to ``surface``."""
        with self._lock:
            if self._subscription is None:
                return
            if surface is self.tracked_component:
                return

            self._detach()

            def listener(changed: EditorSurface):
                self._on_caret(changed)

            surface.add_caret_listener(listener)
            self.tracked_component = surface
            self.tracked_component_listener = listener

        log.debug("selection_tracking_switched", path=str(surface.path))
        self._send(surface)

    def snapshot(self) -> Optional[SelectionState]:
        """Selection of the currently focused editor, if there is one."""
        surface = self.backend.active_editor()
        if surface is None:
            return None
        return selection_state(surface)

    def _detach(self):
        if self.tracked_component is not None and self.tracked_component_listener is not None:
            self.tracked_component.remove_caret_listener(self.tracked_component_listener)
        self.tracked_component = None
        self.tracked_component_listener = None

    def _on_active_editor_changed(self, surface: Optional[EditorSurface]):
        # Focus moving to a non-editor keeps the last editor tracked
        if surface is not None:
            self.track(surface)

    def _on_caret(self, surface: EditorSurface):
        with self._lock:
            if surface is not self.tracked_component:
                return
        self._send(surface)

    def _send(self, surface: EditorSurface):
        try:
            self._emit(selection_state(surface))
        except Exception as e:
            log.warning("selection_notification_failed", error=str(e))
