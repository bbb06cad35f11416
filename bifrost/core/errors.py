"""Error classification for Bifrost.

Two families of failure exist and they never mix:

- Protocol errors are reported as JSON-RPC error objects (see
  ``bifrost.ide.protocol.ErrorCode``).
- Tool errors are reported inside a *successful* JSON-RPC response whose
  content text starts with ``"Error: "``. They carry one of the
  ``ErrorKind`` values below.

Unexpected exceptions raised while a tool runs are classified here and turned
into tool errors at the invoker boundary.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional
import structlog

log = structlog.get_logger()


class ErrorKind(Enum):
    """Kinds of tool execution failures."""

    UNKNOWN_TOOL = "unknown_tool"
    INVALID_ARGUMENT = "invalid_argument"
    SECURITY = "security"             # Path outside every workspace root
    IO = "io"                         # Missing file, read/write failure
    ILLEGAL_STATE = "illegal_state"   # Not editable, no active editor, ...
    INTERNAL = "internal"


@dataclass
class ClassifiedError:
    """A classified error with handling metadata."""

    kind: ErrorKind
    message: str
    original_exception: Optional[Exception] = None

    def __str__(self) -> str:
        return self.message


class BifrostError(Exception):
    """Base class for Bifrost exceptions."""


class MalformedMessageError(BifrostError):
    """Inbound frame is not a valid JSON-RPC message.

    ``request_id`` holds the id when it could still be recovered from the
    frame, so the error response can echo it.
    """

    def __init__(self, message: str, request_id: Any = None):
        super().__init__(message)
        self.request_id = request_id


class DuplicatePendingKeyError(BifrostError):
    """A deferred call was registered under a key that is already pending."""

    def __init__(self, key: str):
        super().__init__(f"Deferred call already pending for key: {key}")
        self.key = key


class BackendError(BifrostError):
    """The IDE refused an operation (document not editable, view gone, ...)."""


def classify_error(error: Exception, context: str = "") -> ClassifiedError:
    """Classify an exception raised during tool execution.

    Args:
        error: The exception to classify
        context: Optional context prepended to the message

    Returns:
        ClassifiedError with the matching ErrorKind
    """
    message = str(error) or type(error).__name__
    if context:
        message = f"{context}: {message}"

    if isinstance(error, PermissionError):
        kind = ErrorKind.SECURITY
    elif isinstance(error, BackendError):
        kind = ErrorKind.ILLEGAL_STATE
    elif isinstance(error, (OSError, UnicodeDecodeError)):
        kind = ErrorKind.IO
    elif isinstance(error, (ValueError, TypeError, KeyError)):
        kind = ErrorKind.INVALID_ARGUMENT
    else:
        kind = ErrorKind.INTERNAL

    log.debug(
        "error_classified",
        kind=kind.value,
        error_type=type(error).__name__,
        error=message,
    )
    return ClassifiedError(kind=kind, message=message, original_exception=error)
