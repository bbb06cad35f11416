"""Bifrost - IDE bridge for CLI agents.

Lets an external coding agent drive a running IDE session over MCP
(JSON-RPC 2.0 on a WebSocket): call editor tools, read open projects and
follow the user's selection as it changes.
"""

__version__ = "1.0.0"

from bifrost.config import BifrostConfig

__all__ = [
    "__version__",
    "BifrostConfig",
]
