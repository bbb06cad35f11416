"""Diagnostics tool: editor annotations reported as compiler-style findings."""

import re
from pathlib import Path
from typing import Any, Optional

import structlog
from pydantic import Field

from bifrost.ide.backend import Annotation, IDEBackend, TabKind
from bifrost.tools.base import Tool, ToolCall, ToolParams, ToolResult

log = structlog.get_logger()

# Trailing "[CODE]" in an annotation message
CODE_PATTERN = re.compile(r"\[([^\[\]]+)\][^\[\]]*$")


class GetDiagnosticsParams(ToolParams):
    uri: Optional[str] = Field(
        default=None,
        description="File URI or path; omit for every open document",
    )


def classify_annotation(annotation_type: Optional[str]) -> tuple[str, str]:
    """Map an annotation type to ``(severity, source)``."""
    lowered = (annotation_type or "").lower()
    if "error" in lowered:
        return "error", "compiler"
    if "warn" in lowered:
        return "warning", "compiler"
    if "hint" in lowered:
        return "hint", "editor"
    return "info", "ide"


def to_diagnostic(annotation: Annotation, file_path: str) -> Optional[dict[str, Any]]:
    """Diagnostic dict for ``annotation``, or None if it carries no message."""
    message = annotation.description
    if not message or not message.strip():
        return None

    severity, source = classify_annotation(annotation.annotation_type)
    diagnostic: dict[str, Any] = {
        "message": message,
        "severity": severity,
        "source": source,
        "filePath": file_path,
        # 1-based, as compilers report it
        "line": annotation.line + 1,
        "column": 0,
    }
    match = CODE_PATTERN.search(message)
    if match:
        diagnostic["code"] = match.group(1)
    return diagnostic


def collect(backend: IDEBackend, path: Path) -> list[dict[str, Any]]:
    annotations = sorted(backend.get_annotations(path), key=lambda a: a.line)
    diagnostics = []
    for annotation in annotations:
        diagnostic = to_diagnostic(annotation, str(path))
        if diagnostic is not None:
            diagnostics.append(diagnostic)
    return diagnostics


class GetDiagnosticsTool(Tool):
    """Errors and warnings for one file or for every open document."""

    name = "getDiagnostics"
    description = "Get diagnostic information (errors, warnings) for files"
    Params = GetDiagnosticsParams

    async def execute(self, params: GetDiagnosticsParams, call: ToolCall) -> ToolResult:
        backend = call.backend

        if params.uri is not None:
            raw = params.uri[len("file://"):] if params.uri.startswith("file://") else params.uri
            path = self._resolve_path(raw, call)
            denied = self._check_path(path, call)
            if denied:
                return denied
            diagnostics = await call.ui.call(collect, backend, path)
            log.info("diagnostics_collected", path=str(path), count=len(diagnostics))
            return ToolResult.ok(diagnostics)

        def collect_open() -> list[dict[str, Any]]:
            found: list[dict[str, Any]] = []
            for tab in backend.list_open_tabs():
                if tab.kind == TabKind.EDITOR and tab.path is not None:
                    found.extend(collect(backend, tab.path))
            return found

        diagnostics = await call.ui.call(collect_open)
        log.info("diagnostics_collected", path=None, count=len(diagnostics))
        return ToolResult.ok(diagnostics)
