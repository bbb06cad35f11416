"""Diff review tools.

``openDiff`` is the only deferred tool: it shows the proposed change and the
response is sent once the user accepts or rejects it. Each session keeps a
``DiffViewRegistry`` of the views it opened, keyed by tab name; the tab name
doubles as the pending-call key.
"""

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

import aiofiles
import structlog
from pydantic import Field

from bifrost.core.errors import DuplicatePendingKeyError, ErrorKind
from bifrost.ide.backend import DiffView, TabKind
from bifrost.ide.pending import Cancelled
from bifrost.tools.base import Deferred, Tool, ToolCall, ToolOutcome, ToolParams, ToolResult

if TYPE_CHECKING:
    from bifrost.tools.base import SessionContext

log = structlog.get_logger()

FILE_SAVED = "FILE_SAVED"
DIFF_REJECTED = "DIFF_REJECTED"


def saved_result(new_contents: str) -> ToolResult:
    return ToolResult.multipart(FILE_SAVED, new_contents)


def rejected_result(tab_name: str) -> ToolResult:
    return ToolResult.multipart(DIFF_REJECTED, tab_name)


@dataclass
class TrackedDiff:
    """A diff view opened by this session."""

    tab_name: str
    view: DiffView
    new_contents: str


class DiffViewRegistry:
    """Diff views opened by one session, by tab name."""

    def __init__(self):
        self._views: dict[str, TrackedDiff] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._views)

    def __contains__(self, tab_name: str) -> bool:
        with self._lock:
            return tab_name in self._views

    def add(self, tracked: TrackedDiff):
        with self._lock:
            self._views[tracked.tab_name] = tracked

    def get(self, tab_name: str) -> Optional[TrackedDiff]:
        with self._lock:
            return self._views.get(tab_name)

    def pop(self, tab_name: str) -> Optional[TrackedDiff]:
        with self._lock:
            return self._views.pop(tab_name, None)

    def names(self) -> list[str]:
        with self._lock:
            return list(self._views)

    def clear(self) -> list[TrackedDiff]:
        """Forget every view; returns what was tracked."""
        with self._lock:
            tracked = list(self._views.values())
            self._views.clear()
        return tracked


def approve_diff(context: "SessionContext", tab_name: str, new_contents: str) -> bool:
    """Answer the pending call with ``FILE_SAVED`` and close the view. UI thread."""
    tracked = context.diff_views.pop(tab_name)
    resolved = context.pending.resolve(tab_name, saved_result(new_contents))
    if tracked is not None and tracked.view.is_open:
        tracked.view.close()
    if resolved:
        log.info("diff_approved", tab_name=tab_name)
    return resolved


def reject_diff(context: "SessionContext", tab_name: str) -> bool:
    """Answer the pending call with ``DIFF_REJECTED`` and close the view. UI thread.

    Returns:
        True if a view or a pending call was known under ``tab_name``.
    """
    tracked = context.diff_views.pop(tab_name)
    resolved = context.pending.resolve(tab_name, rejected_result(tab_name))
    if tracked is not None and tracked.view.is_open:
        tracked.view.close()
    if resolved:
        log.info("diff_rejected", tab_name=tab_name)
    return tracked is not None or resolved


class OpenDiffParams(ToolParams):
    old_file_path: Optional[str] = Field(
        default=None, description="Original file; defaults to the focused editor"
    )
    new_file_path: Optional[str] = Field(
        default=None, description="Modified file; defaults to the focused editor"
    )
    new_file_contents: Optional[str] = Field(
        default=None, description="Proposed contents of the modified file"
    )
    tab_name: Optional[str] = Field(default=None, description="Name of the diff tab")


async def _read(path: Path) -> Optional[str]:
    if not path.is_file():
        return None
    async with aiofiles.open(path, "r", encoding="utf-8") as f:
        return await f.read()


class OpenDiffTool(Tool):
    """Show a proposed change and wait for the user's decision."""

    name = "openDiff"
    description = (
        "Open a diff view comparing a file with proposed contents and wait for "
        "the user to accept or reject it"
    )
    Params = OpenDiffParams

    async def execute(self, params: OpenDiffParams, call: ToolCall) -> ToolOutcome:
        context = call.context

        editor_path: Optional[Path] = None
        editor_text: Optional[str] = None
        if params.old_file_path is None or params.new_file_path is None:

            def focused() -> tuple[Optional[Path], Optional[str]]:
                surface = call.backend.active_editor()
                if surface is None or surface.path is None:
                    return None, None
                return surface.path, surface.text()

            editor_path, editor_text = await call.ui.call(focused)
            if editor_path is None:
                return ToolResult.failure(
                    ErrorKind.ILLEGAL_STATE,
                    "No active editor found. Please specify file paths or open a file in the editor.",
                )

        old_path = self._resolve_path(params.old_file_path, call) if params.old_file_path else editor_path
        new_path = self._resolve_path(params.new_file_path, call) if params.new_file_path else editor_path

        denied = self._check_path(old_path, call, "old_file_path", allow_missing=True)
        if denied:
            return denied
        denied = self._check_path(new_path, call, "new_file_path", allow_missing=True)
        if denied:
            return denied

        # The focused editor's buffer stands in for disk on the defaulted side
        if params.old_file_path is None:
            old_contents = editor_text
        else:
            # A missing original is a file about to be created
            old_contents = await _read(old_path) or ""

        if params.new_file_contents is not None:
            new_contents = params.new_file_contents
        elif params.new_file_path is None:
            new_contents = editor_text
        else:
            new_contents = await _read(new_path)
            if new_contents is None:
                return ToolResult.failure(
                    ErrorKind.IO, f"New file does not exist: {params.new_file_path}"
                )

        if params.tab_name is not None:
            tab_name = params.tab_name
            if tab_name in context.pending:
                return ToolResult.failure(
                    ErrorKind.INVALID_ARGUMENT, f"A diff is already pending for tab: {tab_name}"
                )
        else:
            tab_name = context.pending.unique_key(f"Diff: {old_path.name} vs {new_path.name}")

        def on_cancel(reason: Cancelled) -> ToolResult:
            tracked = context.diff_views.pop(tab_name)
            if tracked is not None:
                context.ui.post(tracked.view.close)
            log.info("diff_cancelled", tab_name=tab_name, reason=reason.reason)
            return rejected_result(tab_name)

        # Registered before the view exists, so an instant decision finds it
        try:
            deferred = call.defer(tab_name, on_cancel)
        except DuplicatePendingKeyError as e:
            return ToolResult.failure(ErrorKind.INVALID_ARGUMENT, str(e))

        def render():
            view = call.backend.render_diff(old_contents, new_contents, tab_name)
            if tab_name not in context.pending:
                # Expired or torn down while rendering
                view.close()
                return
            context.diff_views.add(TrackedDiff(tab_name, view, new_contents))
            view.on_approve(lambda: approve_diff(context, tab_name, new_contents))
            view.on_reject(lambda: reject_diff(context, tab_name))

        try:
            await call.ui.call(render)
        except Exception as e:
            context.pending.discard(tab_name)
            context.diff_views.pop(tab_name)
            log.error("diff_render_failed", tab_name=tab_name, error=str(e))
            return ToolResult.failure(ErrorKind.ILLEGAL_STATE, f"Failed to open diff view: {e}")

        log.info("diff_opened", tab_name=tab_name, old=str(old_path), new=str(new_path))
        return deferred


class CloseAllDiffTabsTool(Tool):
    """Close every diff view, rejecting the pending ones."""

    name = "closeAllDiffTabs"
    description = "Close all diff viewer tabs"

    async def execute(self, params: Any, call: ToolCall) -> ToolResult:
        context = call.context

        def close_all() -> int:
            closed = 0
            for tab_name in context.diff_views.names():
                if reject_diff(context, tab_name):
                    closed += 1
            for tab in call.backend.list_open_tabs():
                if tab.kind == TabKind.DIFF:
                    call.backend.close_tab(tab)
                    closed += 1
            return closed

        count = await call.ui.call(close_all)
        log.info("diff_tabs_closed", count=count)
        return ToolResult.ok(f"CLOSED_{count}_DIFF_TABS")
