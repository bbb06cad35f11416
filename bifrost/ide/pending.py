"""Registry of deferred tool calls.

A deferred call (``openDiff``) cannot be answered when it is made: the user
has to act on the displayed diff first. The request's completion callback is
parked here under a correlation key and fired exactly once, by whichever comes
first: the UI resolving it, expiry, or session teardown.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import structlog

from bifrost.core.errors import DuplicatePendingKeyError

log = structlog.get_logger()

CompletionCallback = Callable[[Any], None]


@dataclass(frozen=True)
class Cancelled:
    """Outcome passed to callbacks that ended without a UI decision."""

    reason: str


EXPIRED = Cancelled("expired")
SESSION_CLOSED = Cancelled("session_closed")


@dataclass
class PendingAsyncEntry:
    """One outstanding deferred call."""

    key: str
    on_complete: CompletionCallback
    created_at: float = field(default_factory=time.monotonic)

    def age(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.monotonic()) - self.created_at


class PendingAsyncRegistry:
    """Thread-safe keyed table of deferred calls.

    Callbacks always run outside the lock, so a callback may register or
    resolve other entries.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._entries: dict[str, PendingAsyncEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def pending_keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def register(self, key: str, on_complete: CompletionCallback) -> PendingAsyncEntry:
        """Park a completion callback under ``key``.

        Raises:
            DuplicatePendingKeyError: if ``key`` is already pending.
        """
        with self._lock:
            if key in self._entries:
                raise DuplicatePendingKeyError(key)
            entry = PendingAsyncEntry(key=key, on_complete=on_complete, created_at=self._clock())
            self._entries[key] = entry
        log.info("pending_call_registered", key=key)
        return entry

    def unique_key(self, base: str) -> str:
        """``base`` if free, else ``base (n)`` for the first free n >= 2."""
        with self._lock:
            if base not in self._entries:
                return base
            n = 2
            while f"{base} ({n})" in self._entries:
                n += 1
            return f"{base} ({n})"

    def resolve(self, key: str, result: Any) -> bool:
        """Remove ``key`` and fire its callback with ``result``.

        Unknown or already-resolved keys are ignored so duplicate UI triggers
        (a double click on "accept") are harmless.

        Returns:
            True if a callback was fired.
        """
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None:
            log.debug("pending_call_resolve_ignored", key=key)
            return False

        log.info("pending_call_resolved", key=key, age_s=round(entry.age(self._clock()), 3))
        self._fire(entry, result)
        return True

    def discard(self, key: str) -> bool:
        """Drop ``key`` without firing its callback."""
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is not None:
            log.info("pending_call_discarded", key=key)
        return entry is not None

    def expire(self, max_age: float, result: Any) -> list[str]:
        """Resolve every entry older than ``max_age`` seconds with ``result``."""
        now = self._clock()
        with self._lock:
            stale = [e for e in self._entries.values() if e.age(now) >= max_age]
            for entry in stale:
                del self._entries[entry.key]

        for entry in stale:
            log.info("pending_call_expired", key=entry.key, age_s=round(entry.age(now), 1))
            self._fire(entry, result)
        return [entry.key for entry in stale]

    def cancel_all(self, result: Any) -> int:
        """Resolve every entry with ``result``; used on session teardown."""
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()

        for entry in entries:
            self._fire(entry, result)
        if entries:
            log.info("pending_calls_cancelled", count=len(entries))
        return len(entries)

    @staticmethod
    def _fire(entry: PendingAsyncEntry, result: Any):
        try:
            entry.on_complete(result)
        except Exception as e:
            log.error("pending_callback_failed", key=entry.key, error=str(e))
