"""Tool base class and result types."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict

from bifrost.core.errors import ErrorKind
from bifrost.ide.pending import Cancelled
from bifrost.ide.protocol import RequestId, text_content

if TYPE_CHECKING:
    from bifrost.config import BifrostConfig
    from bifrost.ide.backend import IDEBackend
    from bifrost.ide.pathguard import PathGuard
    from bifrost.ide.pending import PendingAsyncRegistry
    from bifrost.ide.selection import SelectionTracker
    from bifrost.ide.ui import UIThread
    from bifrost.tools.diff import DiffViewRegistry


@dataclass
class ToolResult:
    """Result from tool execution.

    Attributes:
        success: Whether the tool executed successfully
        output: Text, or any JSON-serializable value (dumped on the wire)
        error: Error message if failed
        error_kind: Classification of the failure
        segments: Several text parts, sent as one content item each
        metadata: Additional metadata for logging (path, size, ...)
    """

    success: bool
    output: Any = ""
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    segments: Optional[list[str]] = None
    metadata: dict = field(default_factory=dict)

    @classmethod
    def ok(cls, output: Any = "", **metadata: Any) -> "ToolResult":
        return cls(success=True, output=output, metadata=metadata)

    @classmethod
    def multipart(cls, *segments: str) -> "ToolResult":
        return cls(success=True, segments=list(segments))

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "ToolResult":
        return cls(success=False, error=message, error_kind=kind)

    def texts(self) -> list[str]:
        """Text segments as they appear in the response content."""
        if not self.success:
            return [f"Error: {self.error}"]
        if self.segments is not None:
            return list(self.segments)
        if isinstance(self.output, str):
            return [self.output]
        return [json.dumps(self.output)]

    def to_content(self) -> dict[str, Any]:
        """MCP ``tools/call`` result body."""
        return text_content(*self.texts())


@dataclass(frozen=True)
class Deferred:
    """Marker returned by a tool whose response is sent later under ``key``."""

    key: str


ToolOutcome = Union[ToolResult, Deferred]


@dataclass
class SessionContext:
    """Per-session state shared by every tool call of one connection."""

    backend: "IDEBackend"
    ui: "UIThread"
    guard: "PathGuard"
    pending: "PendingAsyncRegistry"
    selection: "SelectionTracker"
    diff_views: "DiffViewRegistry"
    config: "BifrostConfig"


@dataclass
class ToolCall:
    """One ``tools/call`` request as seen by a tool.

    ``respond`` sends the final result for this request; it is thread-safe
    and only used by deferred tools.
    """

    request_id: RequestId
    context: SessionContext
    respond: Callable[[ToolResult], None]

    @property
    def backend(self) -> "IDEBackend":
        return self.context.backend

    @property
    def ui(self) -> "UIThread":
        return self.context.ui

    def defer(self, key: str, on_cancel: Callable[[Cancelled], ToolResult]) -> Deferred:
        """Park this request under ``key`` until the pending entry resolves.

        The entry resolves with a ``ToolResult`` when the UI decides, or with
        a ``Cancelled`` marker on expiry or teardown, which ``on_cancel``
        turns into the response.

        Raises:
            DuplicatePendingKeyError: if ``key`` is already pending.
        """

        def complete(outcome: Any):
            if isinstance(outcome, Cancelled):
                outcome = on_cancel(outcome)
            self.respond(outcome)

        self.context.pending.register(key, complete)
        return Deferred(key)


class ToolParams(BaseModel):
    """Base for tool parameter models.

    Strict: a number is not accepted where a string is expected.
    """

    model_config = ConfigDict(strict=True, populate_by_name=True, extra="ignore")


class NoParams(ToolParams):
    pass


class Tool(ABC):
    """Base class for all tools."""

    name: str
    description: str
    Params: type[ToolParams] = NoParams

    @classmethod
    def input_schema(cls) -> dict[str, Any]:
        """JSON Schema of the wire parameters."""
        schema = cls.Params.model_json_schema(by_alias=True)
        schema.pop("title", None)
        for prop in schema.get("properties", {}).values():
            prop.pop("title", None)
        schema.setdefault("properties", {})
        return schema

    def get_schema(self) -> dict[str, Any]:
        """Get the ``tools/list`` entry."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema(),
        }

    @abstractmethod
    async def execute(self, params: Any, call: ToolCall) -> ToolOutcome:
        """Execute the tool with validated ``params``."""
        pass

    @staticmethod
    def _resolve_path(path: str, call: ToolCall) -> Path:
        """Expand ``~`` and anchor relative paths at the first workspace root.

        Symlinks and ``..`` are left alone; containment is ``PathGuard``'s job.
        """
        file_path = Path(path).expanduser()
        if file_path.is_absolute():
            return file_path

        roots = call.backend.list_workspace_roots()
        if roots:
            return roots[0].path / file_path
        return Path.cwd() / file_path

    @staticmethod
    def _check_path(
        path: Path,
        call: ToolCall,
        label: str = "Path",
        action: str = "access",
        allow_missing: bool = False,
    ) -> Optional[ToolResult]:
        """Failure result if ``path`` is outside the workspace."""
        denial = call.context.guard.denial(path, label, action, allow_missing)
        if denial is None:
            return None
        return ToolResult.failure(ErrorKind.SECURITY, denial)
