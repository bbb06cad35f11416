"""MCP Protocol Definitions.

JSON-RPC 2.0 based protocol between the CLI agent and the IDE:
- All messages are JSON-RPC 2.0
- Requests expect responses (possibly deferred)
- Notifications are one-way, in both directions
- Server-pushed notifications (selection changes) interleave with responses
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from bifrost.core.errors import MalformedMessageError

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"

RequestId = Union[str, int, None]


class RequestMethod(str, Enum):
    """Request methods served by the session."""

    INITIALIZE = "initialize"
    TOOLS_LIST = "tools/list"
    TOOLS_CALL = "tools/call"
    RESOURCES_LIST = "resources/list"
    RESOURCES_READ = "resources/read"
    PROMPTS_LIST = "prompts/list"


class NotificationMethod(str, Enum):
    """Notification methods emitted by the server."""

    INITIALIZED = "notifications/initialized"
    SELECTION_CHANGED = "selection_changed"


# Standard JSON-RPC error codes
class ErrorCode:
    """Standard JSON-RPC error codes."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


ERROR_MESSAGES = {
    ErrorCode.PARSE_ERROR: "Parse error",
    ErrorCode.INVALID_REQUEST: "Invalid Request",
    ErrorCode.METHOD_NOT_FOUND: "Method not found",
    ErrorCode.INVALID_PARAMS: "Invalid params",
    ErrorCode.INTERNAL_ERROR: "Internal error",
}


@dataclass
class Position:
    """Position in a text document (0-indexed)."""

    line: int
    character: int

    def to_dict(self) -> dict[str, int]:
        return {"line": self.line, "character": self.character}


@dataclass
class SelectionState:
    """Selection in the focused editor.

    Lines and characters are 0-based, for the tool result and the
    notification alike.
    """

    text: str
    file_path: Optional[str]
    start: Position
    end: Position

    @property
    def is_empty(self) -> bool:
        return not self.text

    @property
    def file_url(self) -> Optional[str]:
        return f"file://{self.file_path}" if self.file_path else None

    def to_dict(self) -> dict[str, Any]:
        """Shape used by the ``selection_changed`` notification."""
        return {
            "text": self.text,
            "filePath": self.file_path,
            "fileUrl": self.file_url,
            "selection": {
                "start": self.start.to_dict(),
                "end": self.end.to_dict(),
                "isEmpty": self.is_empty,
            },
        }


@dataclass
class Request:
    """JSON-RPC request message."""

    method: str
    params: Optional[Any] = None
    id: RequestId = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-RPC format."""
        result: dict[str, Any] = {
            "jsonrpc": JSONRPC_VERSION,
            "id": self.id,
            "method": self.method,
        }
        if self.params is not None:
            result["params"] = self.params
        return result


@dataclass
class Response:
    """JSON-RPC response message."""

    id: RequestId
    result: Optional[Any] = None
    error_data: Optional[dict[str, Any]] = None

    @property
    def is_error(self) -> bool:
        return self.error_data is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-RPC format."""
        response: dict[str, Any] = {
            "jsonrpc": JSONRPC_VERSION,
            "id": self.id,
        }
        if self.error_data is not None:
            response["error"] = self.error_data
        else:
            response["result"] = self.result
        return response

    @classmethod
    def success(cls, id: RequestId, result: Any) -> "Response":
        """Create a success response."""
        return cls(id=id, result=result)

    @classmethod
    def error(
        cls,
        id: RequestId,
        code: int,
        message: Optional[str] = None,
        data: Any = None,
    ) -> "Response":
        """Create an error response."""
        error_obj: dict[str, Any] = {
            "code": code,
            "message": message or ERROR_MESSAGES.get(code, "Server error"),
        }
        if data is not None:
            error_obj["data"] = data
        return cls(id=id, error_data=error_obj)


@dataclass
class Notification:
    """JSON-RPC notification message (no response expected)."""

    method: str
    params: Optional[Any] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-RPC format."""
        result: dict[str, Any] = {
            "jsonrpc": JSONRPC_VERSION,
            "method": self.method,
        }
        if self.params is not None:
            result["params"] = self.params
        return result


Message = Union[Request, Notification, Response]


def _recover_id(data: dict[str, Any]) -> RequestId:
    request_id = data.get("id")
    if isinstance(request_id, (str, int)) and not isinstance(request_id, bool):
        return request_id
    return None


def parse_message(data: Any) -> Message:
    """Parse a decoded JSON frame into the message union.

    Raises:
        MalformedMessageError: if the frame is not a JSON-RPC 2.0 message.
            The error carries the request id when one could be recovered.
    """
    if not isinstance(data, dict):
        raise MalformedMessageError(
            f"Expected a JSON object, got {type(data).__name__}"
        )

    request_id = _recover_id(data)

    if data.get("jsonrpc") != JSONRPC_VERSION:
        raise MalformedMessageError(
            "Missing or unsupported jsonrpc version", request_id
        )

    if "method" in data:
        method = data["method"]
        if not isinstance(method, str) or not method:
            raise MalformedMessageError("Method must be a non-empty string", request_id)
        if "id" not in data:
            return Notification(method=method, params=data.get("params"))
        if request_id is None:
            raise MalformedMessageError("Request id must be a string or integer")
        return Request(method=method, params=data.get("params"), id=request_id)

    if "id" in data and ("result" in data or "error" in data):
        return Response(
            id=request_id,
            result=data.get("result"),
            error_data=data.get("error"),
        )

    raise MalformedMessageError("Frame is neither a request, notification nor response", request_id)


@dataclass
class InitializeParams:
    """Parameters for initialize request."""

    protocol_version: Optional[str] = None
    client_info: Optional[dict[str, Any]] = None
    capabilities: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "InitializeParams":
        """Parse from dictionary.

        Raises:
            ValueError: if ``data`` or one of its known fields has the wrong shape.
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("initialize params must be an object")

        protocol_version = data.get("protocolVersion")
        if protocol_version is not None and not isinstance(protocol_version, str):
            raise ValueError("protocolVersion must be a string")
        client_info = data.get("clientInfo")
        if client_info is not None and not isinstance(client_info, dict):
            raise ValueError("clientInfo must be an object")
        capabilities = data.get("capabilities") or {}
        if not isinstance(capabilities, dict):
            raise ValueError("capabilities must be an object")

        return cls(
            protocol_version=protocol_version,
            client_info=client_info,
            capabilities=capabilities,
        )


@dataclass
class ServerCapabilities:
    """Capabilities advertised in the initialize response."""

    tools_list_changed: bool = True
    resources_subscribe: bool = True
    resources_list_changed: bool = True
    prompts_list_changed: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "tools": {"listChanged": self.tools_list_changed},
            "resources": {
                "subscribe": self.resources_subscribe,
                "listChanged": self.resources_list_changed,
            },
            "prompts": {"listChanged": self.prompts_list_changed},
        }


@dataclass
class InitializeResult:
    """Result for initialize request."""

    server_version: str
    capabilities: ServerCapabilities = field(default_factory=ServerCapabilities)
    server_name: str = "bifrost-mcp-server"
    protocol_version: str = PROTOCOL_VERSION

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "protocolVersion": self.protocol_version,
            "capabilities": self.capabilities.to_dict(),
            "serverInfo": {"name": self.server_name, "version": self.server_version},
        }


def text_content(*texts: str) -> dict[str, Any]:
    """Wrap text segments as an MCP tool result."""
    return {"content": [{"type": "text", "text": text} for text in texts]}
