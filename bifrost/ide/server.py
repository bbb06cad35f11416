"""Bridge server.

FastAPI WebSocket endpoint served by uvicorn. Exactly one agent session is
active at a time; a new connection supersedes the previous one.
"""

import asyncio
import socket
import uuid
from contextlib import asynccontextmanager
from itertools import count
from typing import Iterable, Optional

import structlog
import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from bifrost import __version__
from bifrost.config import BifrostConfig
from bifrost.core.events import Subscription
from bifrost.ide.backend import IDEBackend
from bifrost.ide.lockfile import LockFileManager
from bifrost.ide.protocol import ErrorCode, Response
from bifrost.ide.session import ProtocolSession
from bifrost.ide.ui import UIThread
from bifrost.tools.registry import ToolRegistry

log = structlog.get_logger()

AUTH_HEADER = "x-claude-code-ide-authorization"
POLICY_VIOLATION = 1008
SUPERSEDED = 1000


def negotiate_subprotocol(offered: Iterable[str], accepted: Iterable[str]) -> Optional[str]:
    """First offered subprotocol we accept, or None."""
    accepted = list(accepted)
    for protocol in offered:
        if protocol in accepted:
            return protocol
    return None


def find_available_port(host: str, start: int, end: int) -> int:
    """First port in ``start..end`` (inclusive) that can be bound on ``host``.

    Raises:
        OSError: if every port in the range is taken.
    """
    for port in range(start, end + 1):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind((host, port))
            except OSError:
                log.debug("port_in_use", port=port)
                continue
        return port
    raise OSError(f"No available port in range {start}-{end}")


class WebSocketTransport:
    """``Transport`` over a Starlette WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def send_text(self, data: str) -> None:
        await self.websocket.send_text(data)

    async def close(self, code: int = 1000) -> None:
        if self.websocket.application_state == WebSocketState.CONNECTED:
            await self.websocket.close(code=code)


class Bridge:
    """Application state: the backend, the UI thread and the active session."""

    def __init__(
        self,
        backend: IDEBackend,
        config: Optional[BifrostConfig] = None,
        registry: Optional[ToolRegistry] = None,
        ui: Optional[UIThread] = None,
        auth_token: Optional[str] = None,
    ):
        self.backend = backend
        self.config = config or BifrostConfig()
        self.registry = registry or ToolRegistry.default()
        self.ui = ui or UIThread()
        self.auth_token = auth_token or str(uuid.uuid4())
        self.active: Optional[ProtocolSession] = None
        self._ids = count(1)

    def authorized(self, websocket: WebSocket) -> bool:
        if not self.config.server.verify_auth_token:
            return True
        return websocket.headers.get(AUTH_HEADER) == self.auth_token

    def new_session(self, websocket: WebSocket) -> ProtocolSession:
        return ProtocolSession(
            WebSocketTransport(websocket),
            self.backend,
            self.ui,
            registry=self.registry,
            config=self.config,
            session_id=f"s{next(self._ids)}",
        )

    async def attach(self, session: ProtocolSession) -> None:
        """Make ``session`` the active one, closing its predecessor."""
        previous, self.active = self.active, session
        if previous is not None and not previous.closed:
            log.info("session_superseded", old=previous.session_id, new=session.session_id)
            await previous.close(SUPERSEDED)

    async def detach(self, session: ProtocolSession) -> None:
        if self.active is session:
            self.active = None
        await session.close()

    async def shutdown(self) -> None:
        if self.active is not None:
            await self.detach(self.active)
        self.ui.shutdown(wait=False)
        log.info("bridge_shutdown")


def create_app(bridge: Bridge) -> FastAPI:
    """Create the FastAPI application serving ``bridge``."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await bridge.shutdown()

    app = FastAPI(title="Bifrost", version=__version__, lifespan=lifespan)
    app.state.bridge = bridge
    max_bytes = bridge.config.server.max_message_bytes

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "version": __version__,
            "session": bridge.active.session_id if bridge.active else None,
        }

    @app.websocket("/")
    async def mcp_endpoint(websocket: WebSocket):
        """MCP endpoint: one JSON-RPC frame per text message."""
        if not bridge.authorized(websocket):
            log.warning("websocket_unauthorized", client=str(websocket.client))
            await websocket.close(code=POLICY_VIOLATION)
            return

        offered = websocket.scope.get("subprotocols") or []
        subprotocol = negotiate_subprotocol(offered, bridge.config.server.subprotocols)
        await websocket.accept(subprotocol=subprotocol)

        session = bridge.new_session(websocket)
        structlog.contextvars.bind_contextvars(session=session.session_id)
        log.info(
            "websocket_connected",
            session=session.session_id,
            subprotocol=subprotocol,
            client=str(websocket.client),
        )
        await bridge.attach(session)

        try:
            await session.open()
            while not session.closed:
                text = await websocket.receive_text()
                if len(text.encode("utf-8")) > max_bytes:
                    log.warning("message_too_large", session=session.session_id, size=len(text))
                    await session.send(Response.error(
                        None, ErrorCode.INTERNAL_ERROR, data=f"Message exceeds {max_bytes} bytes",
                    ))
                    continue
                await session.handle_text(text)
        except WebSocketDisconnect as e:
            log.info("websocket_disconnected", session=session.session_id, code=e.code)
        except Exception as e:
            if not session.closed:
                log.error("websocket_error", session=session.session_id, error=str(e))
        finally:
            await bridge.detach(session)
            structlog.contextvars.clear_contextvars()

    return app


class BridgeServer:
    """Runs the bridge on the first free port and keeps the lock file current."""

    def __init__(
        self,
        backend: IDEBackend,
        config: Optional[BifrostConfig] = None,
        registry: Optional[ToolRegistry] = None,
    ):
        self.config = config or BifrostConfig()
        self.bridge = Bridge(backend, self.config, registry)
        self.app = create_app(self.bridge)
        self.port: Optional[int] = None
        self.lockfile: Optional[LockFileManager] = None
        if self.config.server.write_lockfile:
            self.lockfile = LockFileManager(
                self.config.server.lock_dir, ide_name=self.config.server.ide_name
            )
        self._server: Optional[uvicorn.Server] = None
        self._roots_subscription: Optional[Subscription] = None

    def _roots(self):
        return [root.path for root in self.bridge.backend.list_workspace_roots()]

    async def serve(self) -> None:
        """Serve until ``stop()`` is called or the process is interrupted."""
        server_config = self.config.server
        self.port = find_available_port(
            server_config.host, server_config.port_start, server_config.port_end
        )
        self._server = uvicorn.Server(
            uvicorn.Config(
                self.app,
                host=server_config.host,
                port=self.port,
                log_config=None,
                log_level=self.config.log_level.lower(),
            )
        )

        if self.lockfile is not None:
            self.lockfile.create(self.port, self.bridge.auth_token, self._roots())
            self._roots_subscription = self.bridge.backend.subscribe_workspace_roots_changed(
                lambda roots: self.lockfile.update([r.path for r in roots])
            )

        log.info("bridge_server_starting", host=server_config.host, port=self.port)
        try:
            await self._server.serve()
        finally:
            if self._roots_subscription is not None:
                self._roots_subscription.unsubscribe()
            if self.lockfile is not None:
                self.lockfile.remove()
            log.info("bridge_server_stopped", port=self.port)

    def stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True

    def run(self) -> None:
        """Blocking entry point used by the CLI."""
        asyncio.run(self.serve())
