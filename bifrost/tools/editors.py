"""Workspace, editor and tab tools for Bifrost."""

import mimetypes
from typing import Any, Optional

import structlog
from pydantic import Field

from bifrost.ide.backend import OpenTab, TabKind
from bifrost.tools.base import Tool, ToolCall, ToolParams, ToolResult
from bifrost.tools.diff import reject_diff

log = structlog.get_logger()


class CloseTabParams(ToolParams):
    tab_name: str = Field(description="Display name of the tab to close")


class GetWorkspaceFoldersTool(Tool):
    """List open projects."""

    name = "getWorkspaceFolders"
    description = "Get list of workspace folders (open projects)"

    async def execute(self, params: Any, call: ToolCall) -> ToolResult:
        folders = [
            {"name": root.name, "uri": f"file://{root.path}", "path": str(root.path)}
            for root in call.backend.list_workspace_roots()
        ]
        return ToolResult.ok(folders)


class GetOpenEditorsTool(Tool):
    """List open document tabs; diff views are not documents."""

    name = "getOpenEditors"
    description = "Get list of currently open editor tabs"

    async def execute(self, params: Any, call: ToolCall) -> ToolResult:
        tabs = await call.ui.call(call.backend.list_open_tabs)
        documents = [_describe(tab) for tab in tabs if tab.kind == TabKind.EDITOR and tab.path]
        return ToolResult.ok(documents)


def _describe(tab: OpenTab) -> dict[str, Any]:
    mime_type, _ = mimetypes.guess_type(tab.path.name)
    info: dict[str, Any] = {
        "name": tab.stem,
        "path": str(tab.path),
        "extension": tab.path.suffix.lstrip("."),
        "mimeType": mime_type or "content/unknown",
    }
    if tab.project is not None:
        info["projectName"] = tab.project.name
        info["projectPath"] = str(tab.project.path)
    return info


class GetCurrentSelectionTool(Tool):
    """Selection in the focused editor."""

    name = "getCurrentSelection"
    description = "Get the current text selection in the active editor"

    async def execute(self, params: Any, call: ToolCall) -> ToolResult:
        state = await call.ui.call(call.context.selection.snapshot)
        if state is None or state.is_empty:
            return ToolResult.ok("")
        return ToolResult.ok(state.to_dict())


class CloseTabTool(Tool):
    """Close a tab by display name, falling back to the file name."""

    name = "close_tab"
    description = "Close an open editor tab"
    Params = CloseTabParams

    async def execute(self, params: CloseTabParams, call: ToolCall) -> ToolResult:
        tab_name = params.tab_name

        def close() -> bool:
            tab = _find_tab(call.backend.list_open_tabs(), tab_name)
            if tab is None:
                # A pending diff whose view is already gone still gets rejected
                return reject_diff(call.context, tab_name)
            if tab.kind == TabKind.DIFF and reject_diff(call.context, tab.name):
                return True
            call.backend.close_tab(tab)
            return True

        if await call.ui.call(close):
            log.info("tab_closed", tab_name=tab_name)
            return ToolResult.ok("TAB_CLOSED")

        log.warning("tab_not_found", tab_name=tab_name)
        return ToolResult.ok(f"Tab not currently open: {tab_name}")


def _find_tab(tabs: list[OpenTab], tab_name: str) -> Optional[OpenTab]:
    for tab in tabs:
        if tab.name == tab_name:
            return tab
    for tab in tabs:
        if tab.path is not None and tab_name in (tab.stem, tab.file_name):
            return tab
    return None
