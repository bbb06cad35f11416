"""UI thread scheduling.

Editor and document state may only be touched from the IDE's UI thread.
``UIThread`` makes that affinity explicit: a single dedicated worker runs every
marshalled call in submission order.
"""

import asyncio
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional, TypeVar

import structlog

log = structlog.get_logger()

T = TypeVar("T")


class UIThread:
    """Single-threaded task queue standing in for the host's UI thread."""

    def __init__(self, name: str = "bifrost-ui"):
        self.name = name
        self._executor: Optional[ThreadPoolExecutor] = None
        self._thread_ident: Optional[int] = None
        self._lock = threading.Lock()

    def _ensure_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=1,
                    thread_name_prefix=self.name,
                    initializer=self._remember_thread,
                )
            return self._executor

    def _remember_thread(self):
        self._thread_ident = threading.get_ident()

    def is_ui_thread(self) -> bool:
        return self._thread_ident is not None and threading.get_ident() == self._thread_ident

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> "Future[T]":
        """Schedule ``fn`` on the UI thread.

        Calls made from the UI thread itself run inline so a UI callback can
        use the same helpers without deadlocking on its own queue.
        """
        if self.is_ui_thread():
            future: Future = Future()
            try:
                future.set_result(fn(*args, **kwargs))
            except BaseException as e:
                future.set_exception(e)
            return future
        return self._ensure_executor().submit(fn, *args, **kwargs)

    async def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run ``fn`` on the UI thread and wait for its result."""
        return await asyncio.wrap_future(self.submit(fn, *args, **kwargs))

    def post(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        """Fire-and-forget; failures are logged."""
        future = self.submit(fn, *args, **kwargs)
        future.add_done_callback(self._log_failure)

    @staticmethod
    def _log_failure(future: Future):
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            log.error("ui_task_failed", error=str(error), error_type=type(error).__name__)

    def shutdown(self, wait: bool = True):
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
            self._thread_ident = None
