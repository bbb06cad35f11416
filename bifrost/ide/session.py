"""Protocol session.

One ``ProtocolSession`` per connected agent. It parses inbound frames,
dispatches requests, serializes outbound writes and owns the per-connection
state (``SessionContext``): pending deferred calls, the selection tracker and
the diff views opened on behalf of the agent.
"""

import asyncio
import json
import os
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Protocol

import structlog

from bifrost import __version__
from bifrost.config import BifrostConfig
from bifrost.core.errors import MalformedMessageError
from bifrost.ide.backend import IDEBackend
from bifrost.ide.pathguard import PathGuard
from bifrost.ide.pending import EXPIRED, SESSION_CLOSED, PendingAsyncRegistry
from bifrost.ide.protocol import (
    ErrorCode,
    InitializeParams,
    InitializeResult,
    Message,
    Notification,
    NotificationMethod,
    Request,
    RequestMethod,
    Response,
    SelectionState,
    parse_message,
)
from bifrost.ide.selection import SelectionTracker
from bifrost.ide.ui import UIThread
from bifrost.tools.base import Deferred, SessionContext, ToolCall, ToolResult
from bifrost.tools.diff import DiffViewRegistry
from bifrost.tools.registry import ToolInvoker, ToolRegistry

log = structlog.get_logger()

PROJECT_SCHEME = "project://"

PROMPTS = [
    {
        "name": "code_review",
        "description": "Review code in the open project",
    },
]


class Transport(Protocol):
    """Outbound side of a connection."""

    async def send_text(self, data: str) -> None:
        ...

    async def close(self, code: int = 1000) -> None:
        ...


class SessionPhase(str, Enum):
    CONNECTED = "connected"
    INITIALIZED = "initialized"
    CLOSED = "closed"


class InvalidParamsError(ValueError):
    """Request params have the wrong shape; answered with -32602."""


class ProtocolSession:
    """JSON-RPC session between one agent and the IDE.

    Frames are handled one at a time by ``handle_text``; responses to
    deferred tool calls and selection notifications may be produced on other
    threads and are marshalled onto the session's event loop.
    """

    def __init__(
        self,
        transport: Transport,
        backend: IDEBackend,
        ui: UIThread,
        registry: Optional[ToolRegistry] = None,
        config: Optional[BifrostConfig] = None,
        session_id: str = "",
    ):
        """Initialize a session.

        Args:
            transport: Connection to write frames to
            backend: IDE capabilities
            ui: UI thread shared by every session of the server
            registry: Tool set; the default set if None
            config: Configuration; defaults if None
            session_id: Label used in log events
        """
        self.transport = transport
        self.backend = backend
        self.ui = ui
        self.config = config or BifrostConfig()
        self.registry = registry or ToolRegistry.default()
        self.invoker = ToolInvoker(self.registry)
        self.session_id = session_id
        self.phase = SessionPhase.CONNECTED

        self.context = SessionContext(
            backend=backend,
            ui=ui,
            guard=PathGuard(lambda: [r.path for r in backend.list_workspace_roots()]),
            pending=PendingAsyncRegistry(),
            selection=SelectionTracker(backend, self._on_selection_changed),
            diff_views=DiffViewRegistry(),
            config=self.config,
        )

        self._send_lock = asyncio.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._reaper: Optional[asyncio.Task] = None
        self._handlers: dict[str, Callable[[Request], Awaitable[Optional[Response]]]] = {}
        self._setup_handlers()

    def _setup_handlers(self) -> None:
        """Register request handlers."""
        self._handlers = {
            RequestMethod.INITIALIZE.value: self._handle_initialize,
            RequestMethod.TOOLS_LIST.value: self._handle_tools_list,
            RequestMethod.TOOLS_CALL.value: self._handle_tools_call,
            RequestMethod.RESOURCES_LIST.value: self._handle_resources_list,
            RequestMethod.RESOURCES_READ.value: self._handle_resources_read,
            RequestMethod.PROMPTS_LIST.value: self._handle_prompts_list,
        }

    @property
    def closed(self) -> bool:
        return self.phase == SessionPhase.CLOSED

    # Lifecycle

    async def open(self) -> None:
        """Transport is open: start selection tracking and pending expiry."""
        self._loop = asyncio.get_running_loop()
        await self.ui.call(self.context.selection.start)

        ttl = self.config.diff.pending_ttl_seconds
        if ttl is not None:
            self._reaper = asyncio.create_task(self._reap_pending(ttl))
        log.info("session_opened", session=self.session_id)

    async def close(self, code: int = 1000) -> None:
        """Tear down the session. Idempotent."""
        if self.phase == SessionPhase.CLOSED:
            return
        self.phase = SessionPhase.CLOSED

        if self._reaper is not None:
            self._reaper.cancel()
            self._reaper = None

        cancelled = self.context.pending.cancel_all(SESSION_CLOSED)
        await self.ui.call(self.context.selection.stop)
        self.context.diff_views.clear()

        try:
            await self.transport.close(code)
        except Exception as e:
            log.debug("transport_close_failed", session=self.session_id, error=str(e))
        log.info("session_closed", session=self.session_id, cancelled=cancelled)

    async def _reap_pending(self, ttl: float) -> None:
        interval = self.config.diff.reap_interval_seconds
        while True:
            await asyncio.sleep(interval)
            expired = self.context.pending.expire(ttl, EXPIRED)
            if expired:
                log.info("pending_calls_expired", session=self.session_id, keys=expired)

    # Outbound

    async def send(self, message: Message) -> None:
        """Write one frame. Frames sent after close are dropped."""
        async with self._send_lock:
            await self._write(message)

    async def _write(self, message: Message) -> None:
        if self.phase == SessionPhase.CLOSED:
            log.debug("send_after_close_dropped", session=self.session_id)
            return
        try:
            await self.transport.send_text(json.dumps(message.to_dict()))
        except Exception as e:
            log.warning("send_failed", session=self.session_id, error=str(e))

    async def notify(self, method: str, params: Any = None) -> None:
        """Send a server notification once the session is initialized."""
        async with self._send_lock:
            if self.phase != SessionPhase.INITIALIZED:
                log.debug("notification_before_initialize_dropped", method=method)
                return
            await self._write(Notification(method=method, params=params))

    def send_threadsafe(self, message: Message) -> None:
        """Schedule ``send`` from any thread without waiting for it."""
        self._schedule(self.send(message))

    def notify_threadsafe(self, method: str, params: Any = None) -> None:
        """Schedule ``notify`` from any thread without waiting for it."""
        self._schedule(self.notify(method, params))

    def _schedule(self, coro: Awaitable[None]) -> None:
        loop = self._loop
        if loop is None or loop.is_closed() or self.phase == SessionPhase.CLOSED:
            coro.close()
            return
        asyncio.run_coroutine_threadsafe(coro, loop)

    def _on_selection_changed(self, state: SelectionState) -> None:
        self.notify_threadsafe(NotificationMethod.SELECTION_CHANGED.value, state.to_dict())

    # Inbound

    async def handle_text(self, text: str) -> None:
        """Handle one inbound frame; never raises."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            log.warning("json_parse_error", session=self.session_id, error=str(e))
            await self.send(Response.error(None, ErrorCode.INTERNAL_ERROR, data=f"Invalid JSON: {e}"))
            return

        try:
            message = parse_message(data)
        except MalformedMessageError as e:
            log.warning("malformed_message", session=self.session_id, error=str(e))
            await self.send(Response.error(e.request_id, ErrorCode.INTERNAL_ERROR, data=str(e)))
            return

        if isinstance(message, Notification):
            log.debug("notification_received", method=message.method)
            return
        if isinstance(message, Response):
            log.debug("response_ignored", id=message.id)
            return

        response = await self._handle_request(message)
        if response is not None:
            await self.send(response)

    async def _handle_request(self, request: Request) -> Optional[Response]:
        """Handle a request; None when the handler already answered or deferred."""
        log.debug("request_received", method=request.method, id=request.id)
        if self.phase == SessionPhase.CONNECTED and request.method != RequestMethod.INITIALIZE.value:
            log.warning("request_before_initialize", method=request.method)

        handler = self._handlers.get(request.method)
        if handler is None:
            log.warning("method_not_found", method=request.method)
            return Response.error(request.id, ErrorCode.METHOD_NOT_FOUND, data=request.method)

        try:
            return await handler(request)
        except InvalidParamsError as e:
            return Response.error(request.id, ErrorCode.INVALID_PARAMS, data=str(e))
        except Exception as e:
            log.error("request_handler_error", method=request.method, error=str(e))
            return Response.error(request.id, ErrorCode.INTERNAL_ERROR, data=str(e))

    # Handlers

    async def _handle_initialize(self, request: Request) -> None:
        try:
            params = InitializeParams.from_dict(request.params)
        except ValueError as e:
            raise InvalidParamsError(str(e)) from e

        result = InitializeResult(server_version=__version__)
        async with self._send_lock:
            await self._write(Response.success(request.id, result.to_dict()))
            if self.phase == SessionPhase.CONNECTED:
                await self._write(Notification(method=NotificationMethod.INITIALIZED.value))
                self.phase = SessionPhase.INITIALIZED

        log.info(
            "session_initialized",
            session=self.session_id,
            client=params.client_info,
            protocol_version=params.protocol_version,
        )

    async def _handle_tools_list(self, request: Request) -> Response:
        return Response.success(request.id, {"tools": self.registry.list_definitions()})

    async def _handle_tools_call(self, request: Request) -> Optional[Response]:
        params = request.params
        if not isinstance(params, dict):
            raise InvalidParamsError("tools/call params must be an object")
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise InvalidParamsError("tools/call requires a tool name")

        request_id = request.id

        def respond(result: ToolResult) -> None:
            self.send_threadsafe(Response.success(request_id, result.to_content()))

        call = ToolCall(request_id=request_id, context=self.context, respond=respond)
        outcome = await self.invoker.invoke(name, params.get("arguments"), call)
        if isinstance(outcome, Deferred):
            return None
        return Response.success(request_id, outcome.to_content())

    async def _handle_resources_list(self, request: Request) -> Response:
        resources = [
            {
                "uri": f"{PROJECT_SCHEME}{root.path}",
                "name": root.name,
                "description": f"Project: {root.name}",
                "mimeType": "application/json",
            }
            for root in self.backend.list_workspace_roots()
        ]
        return Response.success(request.id, {"resources": resources})

    async def _handle_resources_read(self, request: Request) -> Response:
        params = request.params
        uri = params.get("uri") if isinstance(params, dict) else None
        if not isinstance(uri, str) or not uri:
            raise InvalidParamsError("resources/read requires a uri")
        if not uri.startswith(PROJECT_SCHEME):
            raise InvalidParamsError(f"Unknown resource URI: {uri}")

        project_path = Path(uri[len(PROJECT_SCHEME):])
        denial = self.context.guard.denial(project_path)
        if denial:
            raise InvalidParamsError(denial)
        if not project_path.is_dir():
            raise InvalidParamsError(f"Project not found: {project_path}")

        files = await asyncio.to_thread(list_project_files, project_path)
        root = next(
            (r for r in self.backend.list_workspace_roots() if r.path == project_path),
            None,
        )
        info = {
            "path": str(project_path),
            "name": root.name if root else project_path.name,
            "files": files,
        }
        return Response.success(request.id, {
            "contents": [
                {"uri": uri, "mimeType": "application/json", "text": json.dumps(info)},
            ],
        })

    async def _handle_prompts_list(self, request: Request) -> Response:
        return Response.success(request.id, {"prompts": PROMPTS})


def list_project_files(root: Path) -> list[dict[str, Any]]:
    """Every file and folder under ``root``, skipping hidden directories."""
    files: list[dict[str, Any]] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        relative = Path(dirpath).relative_to(root)
        for name in dirnames:
            files.append({"name": name, "path": (relative / name).as_posix(), "isFolder": True})
        for name in sorted(filenames):
            files.append({"name": name, "path": (relative / name).as_posix(), "isFolder": False})
    return files
