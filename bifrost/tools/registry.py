"""Tool registry and invoker for Bifrost."""

from typing import Any, Optional

import structlog
from pydantic import ValidationError

from bifrost.core.errors import ErrorKind, classify_error
from bifrost.tools.base import Deferred, Tool, ToolCall, ToolOutcome, ToolResult
from bifrost.tools.diagnostics import GetDiagnosticsTool
from bifrost.tools.diff import CloseAllDiffTabsTool, OpenDiffTool
from bifrost.tools.editors import (
    CloseTabTool,
    GetCurrentSelectionTool,
    GetOpenEditorsTool,
    GetWorkspaceFoldersTool,
)
from bifrost.tools.files import (
    CheckDocumentDirtyTool,
    ListFilesTool,
    OpenFileTool,
    ReadFileTool,
    SaveDocumentTool,
    WriteFileTool,
)

log = structlog.get_logger()


class ToolRegistry:
    """Manages available tools. Definitions are fixed once registered."""

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def register(self, tool: Tool):
        """Register a tool.

        Raises:
            ValueError: if a tool with the same name is already registered.
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool
        log.debug("tool_registered", name=tool.name)

    def get_tool(self, name: str) -> Optional[Tool]:
        """Get a tool by name."""
        return self._tools.get(name)

    def list_definitions(self) -> list[dict[str, Any]]:
        """``tools/list`` entries in registration order."""
        return [tool.get_schema() for tool in self._tools.values()]

    @classmethod
    def default(cls) -> "ToolRegistry":
        """Create a registry with the full IDE tool set."""
        registry = cls()
        registry.register(OpenFileTool())
        registry.register(GetWorkspaceFoldersTool())
        registry.register(GetOpenEditorsTool())
        registry.register(GetCurrentSelectionTool())
        registry.register(CloseTabTool())
        registry.register(GetDiagnosticsTool())
        registry.register(CheckDocumentDirtyTool())
        registry.register(SaveDocumentTool())
        registry.register(CloseAllDiffTabsTool())
        registry.register(OpenDiffTool())
        registry.register(ReadFileTool())
        registry.register(WriteFileTool())
        registry.register(ListFilesTool())
        return registry


def describe_validation_error(error: ValidationError) -> str:
    """One-line message for the first problem in ``error``."""
    first = error.errors()[0]
    field_name = ".".join(str(part) for part in first.get("loc", ())) or "arguments"
    if first.get("type") == "missing":
        return f"Missing required parameter: {field_name}"
    return f"Invalid parameter {field_name}: {first.get('msg', 'invalid value')}"


class ToolInvoker:
    """Validates arguments and runs tools, turning every failure into a result."""

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    async def invoke(self, name: str, arguments: Any, call: ToolCall) -> ToolOutcome:
        """Execute a tool by name.

        Args:
            name: Tool name to execute
            arguments: Raw ``arguments`` object from the request
            call: Per-call context

        Returns:
            ToolResult, or Deferred when the response will be sent later
        """
        tool = self.registry.get_tool(name)
        if tool is None:
            log.warning("tool_not_found", name=name)
            return ToolResult.failure(ErrorKind.UNKNOWN_TOOL, f"Unknown tool: {name}")

        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            return ToolResult.failure(
                ErrorKind.INVALID_ARGUMENT, "Tool arguments must be an object"
            )

        try:
            params = tool.Params.model_validate(arguments)
        except ValidationError as e:
            message = describe_validation_error(e)
            log.info("tool_arguments_rejected", name=name, error=message)
            return ToolResult.failure(ErrorKind.INVALID_ARGUMENT, message)

        log.info("tool_execute", name=name, request_id=call.request_id)
        try:
            outcome = await tool.execute(params, call)
        except Exception as e:
            classified = classify_error(e)
            log.error(
                "tool_execution_error",
                name=name,
                error=classified.message,
                kind=classified.kind.value,
            )
            return ToolResult.failure(classified.kind, classified.message)

        if isinstance(outcome, Deferred):
            log.info("tool_deferred", name=name, key=outcome.key)
        elif not outcome.success:
            log.info("tool_failed", name=name, error=outcome.error)
        return outcome
