"""Bifrost IDE bridge.

MCP server that lets a CLI agent drive the IDE.

Features:
- JSON-RPC 2.0 over a WebSocket, one active agent at a time
- Editor, file, diagnostics and diff-review tools
- Live ``selection_changed`` notifications from the focused editor
- Lock file discovery under ``~/.claude/ide``

The server lives in ``bifrost.ide.server``.

Usage:
    bifrost serve --root ~/src/project
"""

from bifrost.ide.backend import IDEBackend
from bifrost.ide.headless import HeadlessIDE
from bifrost.ide.protocol import Notification, Request, Response

__all__ = [
    "IDEBackend",
    "HeadlessIDE",
    "Request",
    "Response",
    "Notification",
]
