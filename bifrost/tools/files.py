"""File and document tools for Bifrost."""

import asyncio
from pathlib import Path
from typing import Optional

import aiofiles
import structlog
from pydantic import Field

from bifrost.core.errors import ErrorKind
from bifrost.tools.base import Tool, ToolCall, ToolParams, ToolResult

log = structlog.get_logger()


class OpenFileParams(ToolParams):
    path: str = Field(description="Absolute path of the file to open")
    preview: bool = Field(default=False, description="Open in a preview tab")


class FilePathParams(ToolParams):
    file_path: str = Field(alias="filePath", description="Absolute path of the document")


class PathParams(ToolParams):
    path: str = Field(description="Path of the file or directory")


class WriteFileParams(ToolParams):
    path: str = Field(description="Path to the file to write")
    content: str = Field(description="Content to write to the file")


class OpenFileTool(Tool):
    """Open a file in the editor."""

    name = "openFile"
    description = "Opens a file in the editor"
    Params = OpenFileParams

    async def execute(self, params: OpenFileParams, call: ToolCall) -> ToolResult:
        path = self._resolve_path(params.path, call)
        denied = self._check_path(path, call, action="open")
        if denied:
            return denied
        if not path.exists():
            return ToolResult.failure(ErrorKind.IO, f"File does not exist: {params.path}")
        if not path.is_file():
            return ToolResult.failure(ErrorKind.IO, f"Not a file: {params.path}")

        await call.ui.call(call.backend.open_in_editor, path, params.preview)
        log.info("file_opened", path=str(path), preview=params.preview)
        return ToolResult.ok(f"File opened successfully: {params.path}")


class CheckDocumentDirtyTool(Tool):
    """Report whether a document has unsaved changes."""

    name = "checkDocumentDirty"
    description = "Check if a document has unsaved changes"
    Params = FilePathParams

    async def execute(self, params: FilePathParams, call: ToolCall) -> ToolResult:
        path = self._resolve_path(params.file_path, call)
        denied = self._check_path(path, call)
        if denied:
            return denied

        def inspect() -> tuple[Optional[bool], bool]:
            return call.backend.is_dirty(path), call.backend.is_open(path)

        dirty, is_open = await call.ui.call(inspect)
        if dirty is None:
            return ToolResult.ok({
                "filePath": params.file_path,
                "isDirty": False,
                "isOpen": False,
                "note": "File not found or not currently managed by the editor",
            })
        return ToolResult.ok({
            "filePath": params.file_path,
            "isDirty": dirty,
            "isOpen": is_open,
        })


class SaveDocumentTool(Tool):
    """Save a document's buffer to disk."""

    name = "saveDocument"
    description = "Save a document to disk"
    Params = FilePathParams

    async def execute(self, params: FilePathParams, call: ToolCall) -> ToolResult:
        path = self._resolve_path(params.file_path, call)
        denied = self._check_path(path, call, action="save")
        if denied:
            return denied
        if not await call.ui.call(call.backend.is_managed, path):
            return ToolResult.failure(ErrorKind.IO, f"File not found: {params.file_path}")

        # BackendError (not editable) is classified by the invoker
        await call.ui.call(call.backend.save_file, path)
        return ToolResult.ok({
            "filePath": params.file_path,
            "saved": True,
            "message": "Document saved successfully",
        })


class ReadFileTool(Tool):
    """Read contents of a file, including unsaved editor changes."""

    name = "read_file"
    description = "Read the contents of a file at the given path"
    Params = PathParams

    async def execute(self, params: PathParams, call: ToolCall) -> ToolResult:
        path = self._resolve_path(params.path, call)
        denied = self._check_path(path, call)
        if denied:
            return denied
        if not path.is_file():
            return ToolResult.failure(ErrorKind.IO, f"File not found: {params.path}")

        def buffered() -> Optional[str]:
            if call.backend.is_dirty(path):
                return call.backend.document_text(path)
            return None

        content = await call.ui.call(buffered)
        source = "buffer"
        if content is None:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                content = await f.read()
            source = "disk"

        log.info("file_read", path=str(path), size=len(content), source=source)
        return ToolResult.ok(content, path=str(path), size=len(content))


class WriteFileTool(Tool):
    """Write content to a file inside the workspace."""

    name = "write_file"
    description = (
        "Write content to a file at the given path, creating it if it doesn't exist"
    )
    Params = WriteFileParams

    async def execute(self, params: WriteFileParams, call: ToolCall) -> ToolResult:
        path = self._resolve_path(params.path, call)

        # A new file is judged by its nearest existing ancestor
        denied = self._check_path(path, call, action="write", allow_missing=True)
        if denied:
            return denied
        if path.is_dir():
            return ToolResult.failure(ErrorKind.IO, f"Is a directory: {params.path}")

        path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(params.content)

        log.info("file_written", path=str(path), size=len(params.content))
        return ToolResult.ok(
            f"Successfully wrote {len(params.content)} bytes to {params.path}",
            path=str(path),
            size=len(params.content),
        )


def directory_entries(path: Path) -> list[dict]:
    """Name-sorted entries of a directory; blocking, run it off the loop."""
    entries = []
    for entry in sorted(path.iterdir(), key=lambda p: p.name):
        is_dir = entry.is_dir()
        entries.append({
            "name": entry.name,
            "path": str(entry),
            "isDirectory": is_dir,
            "size": None if is_dir else entry.stat().st_size,
        })
    return entries


class ListFilesTool(Tool):
    """List the entries of a directory."""

    name = "list_files"
    description = "List files and directories in the given directory"
    Params = PathParams

    async def execute(self, params: PathParams, call: ToolCall) -> ToolResult:
        path = self._resolve_path(params.path, call)
        denied = self._check_path(path, call)
        if denied:
            return denied
        if not path.is_dir():
            return ToolResult.failure(ErrorKind.IO, f"Not a directory: {params.path}")

        entries = await asyncio.to_thread(directory_entries, path)
        log.info("directory_listed", path=str(path), count=len(entries))
        return ToolResult.ok(entries, path=str(path), count=len(entries))
