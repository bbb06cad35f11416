"""Tests for JSON-RPC message types and parsing."""

import pytest

from bifrost.core.errors import MalformedMessageError
from bifrost.ide.protocol import (
    ErrorCode,
    InitializeParams,
    InitializeResult,
    Notification,
    Position,
    Request,
    Response,
    SelectionState,
    parse_message,
    text_content,
)


class TestParseMessage:
    """Tests for parse_message."""

    def test_request(self):
        """A frame with method and id is a request."""
        message = parse_message({"jsonrpc": "2.0", "id": 7, "method": "tools/list"})

        assert isinstance(message, Request)
        assert message.id == 7
        assert message.method == "tools/list"
        assert message.params is None

    def test_string_id(self):
        """String ids are echoed as-is."""
        message = parse_message({"jsonrpc": "2.0", "id": "abc", "method": "initialize", "params": {}})

        assert message.id == "abc"
        assert message.params == {}

    def test_notification(self):
        """A frame without id is a notification."""
        message = parse_message({"jsonrpc": "2.0", "method": "notifications/initialized"})

        assert isinstance(message, Notification)
        assert message.method == "notifications/initialized"

    def test_response(self):
        """A frame with id and result is a response."""
        message = parse_message({"jsonrpc": "2.0", "id": 3, "result": {"ok": True}})

        assert isinstance(message, Response)
        assert message.result == {"ok": True}
        assert not message.is_error

    def test_not_an_object(self):
        """Arrays and scalars are rejected without an id."""
        with pytest.raises(MalformedMessageError) as exc_info:
            parse_message([1, 2, 3])
        assert exc_info.value.request_id is None

    def test_missing_method_keeps_id(self):
        """The id is recovered when the method is unusable."""
        with pytest.raises(MalformedMessageError) as exc_info:
            parse_message({"jsonrpc": "2.0", "id": 12, "method": 5})
        assert exc_info.value.request_id == 12

    def test_wrong_version(self):
        """Only JSON-RPC 2.0 is accepted."""
        with pytest.raises(MalformedMessageError) as exc_info:
            parse_message({"jsonrpc": "1.0", "id": 4, "method": "initialize"})
        assert exc_info.value.request_id == 4

    def test_invalid_id_type(self):
        """A request id must be a string or an integer."""
        with pytest.raises(MalformedMessageError):
            parse_message({"jsonrpc": "2.0", "id": {"x": 1}, "method": "initialize"})

    def test_bool_id_not_recovered(self):
        """Booleans are not ids even though bool subclasses int."""
        with pytest.raises(MalformedMessageError):
            parse_message({"jsonrpc": "2.0", "id": True, "method": "initialize"})

    def test_neither_request_nor_response(self):
        """A frame with only an id is malformed."""
        with pytest.raises(MalformedMessageError):
            parse_message({"jsonrpc": "2.0", "id": 1})


class TestResponse:
    """Tests for Response serialization."""

    def test_success(self):
        """Success responses carry result and echo the id."""
        result = Response.success(5, {"tools": []}).to_dict()

        assert result == {"jsonrpc": "2.0", "id": 5, "result": {"tools": []}}

    def test_error_default_message(self):
        """Error messages default to the standard text for the code."""
        result = Response.error(1, ErrorCode.METHOD_NOT_FOUND, data="foo/bar").to_dict()

        assert result["error"] == {
            "code": -32601,
            "message": "Method not found",
            "data": "foo/bar",
        }
        assert "result" not in result

    def test_error_null_id(self):
        """An unrecoverable id is serialized as null."""
        result = Response.error(None, ErrorCode.INTERNAL_ERROR).to_dict()

        assert result["id"] is None
        assert result["error"]["message"] == "Internal error"
        assert "data" not in result["error"]


class TestSelectionState:
    """Tests for SelectionState."""

    def test_to_dict(self):
        """Notification payload uses 0-based positions and a file URL."""
        state = SelectionState(
            text="hello",
            file_path="/ws/a.py",
            start=Position(0, 7),
            end=Position(0, 12),
        )

        assert state.to_dict() == {
            "text": "hello",
            "filePath": "/ws/a.py",
            "fileUrl": "file:///ws/a.py",
            "selection": {
                "start": {"line": 0, "character": 7},
                "end": {"line": 0, "character": 12},
                "isEmpty": False,
            },
        }

    def test_empty(self):
        """No selected text means an empty selection."""
        state = SelectionState(text="", file_path=None, start=Position(2, 0), end=Position(2, 0))

        assert state.is_empty
        assert state.file_url is None


class TestInitialize:
    """Tests for initialize params and result."""

    def test_params_from_dict(self):
        params = InitializeParams.from_dict({
            "protocolVersion": "2024-11-05",
            "clientInfo": {"name": "agent", "version": "1"},
        })

        assert params.protocol_version == "2024-11-05"
        assert params.client_info["name"] == "agent"
        assert params.capabilities == {}

    def test_params_none(self):
        """Missing params are allowed."""
        assert InitializeParams.from_dict(None).protocol_version is None

    def test_params_not_object(self):
        with pytest.raises(ValueError):
            InitializeParams.from_dict(["x"])

    def test_result(self):
        """The result advertises tools, resources and prompts."""
        result = InitializeResult(server_version="1.0.0").to_dict()

        assert result["protocolVersion"] == "2024-11-05"
        assert result["capabilities"] == {
            "tools": {"listChanged": True},
            "resources": {"subscribe": True, "listChanged": True},
            "prompts": {"listChanged": True},
        }
        assert result["serverInfo"]["version"] == "1.0.0"


def test_text_content_segments():
    """Each text becomes one content item, in order."""
    assert text_content("FILE_SAVED", "body") == {
        "content": [
            {"type": "text", "text": "FILE_SAVED"},
            {"type": "text", "text": "body"},
        ]
    }
