"""Event system for IDE-to-session communication."""

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Any, Optional
from enum import Enum, auto
import structlog

log = structlog.get_logger()


class EventType(Enum):
    """Types of events raised by an IDE backend."""
    ACTIVE_EDITOR_CHANGED = auto()
    WORKSPACE_ROOTS_CHANGED = auto()


@dataclass
class Event:
    """An event with type, data, and timestamp for ordering."""
    type: EventType
    data: Any
    timestamp: float = field(default_factory=time.time)


class Subscription:
    """Handle returned by ``EventBus.subscribe``; unsubscribing twice is harmless."""

    def __init__(self, bus: "EventBus", event_type: EventType, handler: Callable):
        self._bus = bus
        self.event_type = event_type
        self.handler = handler
        self.active = True

    def unsubscribe(self):
        if self.active:
            self._bus.unsubscribe(self.event_type, self.handler)
            self.active = False


class EventBus:
    """Simple pub/sub event bus for backend events.

    Handlers run synchronously on the emitting thread. The handler list is
    copied under a lock before dispatch so handlers may unsubscribe while an
    event is being delivered.
    """

    def __init__(self):
        self._handlers: dict[EventType, list[Callable]] = {}
        self._lock = threading.Lock()
        self._enabled = True

    def subscribe(self, event_type: EventType, handler: Callable) -> Subscription:
        """Subscribe a handler to an event type."""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
        log.debug("event_handler_subscribed", event_type=event_type.name)
        return Subscription(self, event_type, handler)

    def unsubscribe(self, event_type: EventType, handler: Callable):
        """Unsubscribe a handler from an event type."""
        with self._lock:
            handlers = self._handlers.get(event_type)
            if handlers is None:
                return
            try:
                handlers.remove(handler)
            except ValueError:
                return
        log.debug("event_handler_unsubscribed", event_type=event_type.name)

    def handler_count(self, event_type: EventType) -> int:
        with self._lock:
            return len(self._handlers.get(event_type, []))

    def emit(self, event: Event):
        """Emit an event to all subscribed handlers."""
        if not self._enabled:
            return

        with self._lock:
            handlers = list(self._handlers.get(event.type, []))
        log.debug("event_emitted", event_type=event.type.name, handlers=len(handlers))

        for handler in handlers:
            try:
                handler(event.data)
            except Exception as e:
                log.error("event_handler_failed",
                          event_type=event.type.name,
                          error=str(e))

    def clear(self):
        """Clear all handlers."""
        with self._lock:
            self._handlers.clear()

    def disable(self):
        """Disable event emission."""
        self._enabled = False

    def enable(self):
        """Enable event emission."""
        self._enabled = True


def emit(bus: Optional[EventBus], event_type: EventType, data: Any = None):
    """Emit on ``bus`` if there is one."""
    if bus is not None:
        bus.emit(Event(type=event_type, data=data))
