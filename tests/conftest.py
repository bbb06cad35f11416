"""Shared test fixtures."""

import asyncio
import json
import tempfile
from pathlib import Path
from typing import Any, Callable, Optional

import pytest
import pytest_asyncio

from bifrost.config import BifrostConfig, DiffConfig, ServerConfig


@pytest.fixture
def temp_dir():
    """Temporary directory for tests."""
    with tempfile.TemporaryDirectory() as d:
        yield Path(d).resolve()


@pytest.fixture
def workspace(temp_dir):
    """A project root with a few files, plus a sibling directory outside it."""
    project = temp_dir / "project"
    (project / "src").mkdir(parents=True)
    (project / ".git").mkdir()
    (project / ".git" / "config").write_text("[core]\n")
    (project / "src" / "main.py").write_text("print('hello')\nvalue = 1\n")
    (project / "src" / "util.py").write_text("def helper():\n    return 42\n")
    (project / "README.md").write_text("# Project\n")

    outside = temp_dir / "outside"
    outside.mkdir()
    (outside / "secret.txt").write_text("top secret\n")
    return project


@pytest.fixture
def ide(workspace):
    """Headless IDE with the workspace open."""
    from bifrost.ide.headless import HeadlessIDE

    return HeadlessIDE([workspace])


@pytest.fixture
def ui():
    """UI thread, shut down after the test."""
    from bifrost.ide.ui import UIThread

    thread = UIThread(name="test-ui")
    yield thread
    thread.shutdown()


@pytest.fixture
def config(temp_dir):
    """Test configuration (no lock file, short timings)."""
    return BifrostConfig(
        data_dir=temp_dir / "data",
        server=ServerConfig(write_lockfile=False, lock_dir=temp_dir / "locks"),
        diff=DiffConfig(pending_ttl_seconds=1800.0, reap_interval_seconds=30.0),
    )


class RecordingTransport:
    """Transport that keeps every frame the session writes."""

    def __init__(self):
        self.sent: list[str] = []
        self.closed_with: Optional[int] = None

    async def send_text(self, data: str) -> None:
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code

    @property
    def messages(self) -> list[dict[str, Any]]:
        return [json.loads(frame) for frame in self.sent]

    def clear(self):
        self.sent.clear()

    def response_for(self, request_id) -> Optional[dict[str, Any]]:
        for message in self.messages:
            if message.get("id") == request_id and ("result" in message or "error" in message):
                return message
        return None

    async def wait_for(
        self, predicate: Callable[[dict[str, Any]], bool], timeout: float = 2.0
    ) -> dict[str, Any]:
        """First message matching ``predicate``, polling until ``timeout``."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            for message in self.messages:
                if predicate(message):
                    return message
            if loop.time() > deadline:
                raise AssertionError(f"No matching message in {self.messages}")
            await asyncio.sleep(0.01)

    async def wait_for_response(self, request_id, timeout: float = 2.0) -> dict[str, Any]:
        return await self.wait_for(
            lambda m: m.get("id") == request_id and ("result" in m or "error" in m),
            timeout,
        )


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest_asyncio.fixture
async def session(transport, ide, ui, config):
    """Open protocol session over a recording transport."""
    from bifrost.ide.session import ProtocolSession

    s = ProtocolSession(transport, ide, ui, config=config, session_id="test")
    await s.open()
    yield s
    await s.close()


def frame(method: str, params: Any = None, request_id: Any = None) -> str:
    """Encode a JSON-RPC request (or a notification when ``request_id`` is None)."""
    message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
    if params is not None:
        message["params"] = params
    if request_id is not None:
        message["id"] = request_id
    return json.dumps(message)


@pytest_asyncio.fixture
async def ready_session(session, transport):
    """Session that has completed the initialize handshake."""
    await session.handle_text(frame("initialize", {"protocolVersion": "2024-11-05"}, 0))
    transport.clear()
    return session


async def call_tool(session, name: str, arguments: Any = None, request_id: int = 1) -> dict:
    """Send ``tools/call`` and return the immediate response, or {} if deferred."""
    params: dict[str, Any] = {"name": name}
    if arguments is not None:
        params["arguments"] = arguments
    await session.handle_text(frame("tools/call", params, request_id))
    return session.transport.response_for(request_id) or {}


def texts(response: dict) -> list[str]:
    """Text segments of a tools/call response."""
    return [item["text"] for item in response["result"]["content"]]
