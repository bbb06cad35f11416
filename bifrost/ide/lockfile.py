"""Discovery lock files.

CLI agents find a running IDE bridge by scanning ``~/.claude/ide/*.lock``.
Each file is named after the bridge's port and carries the connection
details.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional

import structlog

log = structlog.get_logger()

DEFAULT_LOCK_DIR = Path.home() / ".claude" / "ide"


@dataclass
class LockInfo:
    """Contents of one lock file."""

    port: int
    pid: int
    ide_name: str
    auth_token: str
    workspace_folders: list[str] = field(default_factory=list)
    transport: str = "ws"
    path: Optional[Path] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pid": self.pid,
            "ideName": self.ide_name,
            "transport": self.transport,
            "authToken": self.auth_token,
            "workspaceFolders": self.workspace_folders,
        }

    @property
    def process_alive(self) -> bool:
        if self.pid <= 0:
            return False
        try:
            os.kill(self.pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True


def _folders(roots: Iterable[Path]) -> list[str]:
    folders = [str(Path(root).absolute()) for root in roots]
    # With no project open the agent is pointed at the home directory
    return folders or [str(Path.home())]


class LockFileManager:
    """Creates, refreshes and removes this process's lock file."""

    def __init__(self, lock_dir: Path = DEFAULT_LOCK_DIR, ide_name: str = "Bifrost"):
        self.lock_dir = Path(lock_dir).expanduser()
        self.ide_name = ide_name
        self.lock_path: Optional[Path] = None
        self._info: Optional[LockInfo] = None

    def create(self, port: int, auth_token: str, roots: Iterable[Path]) -> Path:
        """Write ``<lock_dir>/<port>.lock``."""
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        self.lock_path = self.lock_dir / f"{port}.lock"
        self._info = LockInfo(
            port=port,
            pid=os.getpid(),
            ide_name=self.ide_name,
            auth_token=auth_token,
            workspace_folders=_folders(roots),
        )
        self._write()
        log.info("lock_file_created", path=str(self.lock_path), port=port)
        return self.lock_path

    def update(self, roots: Iterable[Path]) -> bool:
        """Refresh the workspace folders; no-op if the file is gone."""
        if not self.is_valid():
            return False
        self._info.workspace_folders = _folders(roots)
        self._write()
        log.debug("lock_file_updated", path=str(self.lock_path))
        return True

    def remove(self) -> bool:
        if self.lock_path is None or not self.lock_path.exists():
            return False
        try:
            self.lock_path.unlink()
        except OSError as e:
            log.warning("lock_file_remove_failed", path=str(self.lock_path), error=str(e))
            return False
        log.info("lock_file_removed", path=str(self.lock_path))
        self._info = None
        return True

    def is_valid(self) -> bool:
        """True if the lock file was created and is still readable."""
        return (
            self._info is not None
            and self.lock_path is not None
            and self.lock_path.is_file()
            and os.access(self.lock_path, os.R_OK)
        )

    def _write(self):
        tmp = self.lock_path.with_suffix(".lock.tmp")
        tmp.write_text(json.dumps(self._info.to_dict(), indent=2))
        tmp.replace(self.lock_path)


def read_lock_file(path: Path) -> Optional[LockInfo]:
    """Parse a lock file; None if it is unreadable or malformed."""
    try:
        data = json.loads(path.read_text())
        port = int(path.stem)
    except (OSError, ValueError) as e:
        log.debug("lock_file_unreadable", path=str(path), error=str(e))
        return None
    if not isinstance(data, dict):
        return None
    return LockInfo(
        port=port,
        pid=int(data.get("pid", -1)),
        ide_name=str(data.get("ideName", "")),
        auth_token=str(data.get("authToken", "")),
        workspace_folders=list(data.get("workspaceFolders") or []),
        transport=str(data.get("transport", "ws")),
        path=path,
    )


def list_lock_files(lock_dir: Path = DEFAULT_LOCK_DIR) -> list[LockInfo]:
    """Every readable lock file in ``lock_dir``, by port."""
    lock_dir = Path(lock_dir).expanduser()
    if not lock_dir.is_dir():
        return []
    found = []
    for path in sorted(lock_dir.glob("*.lock")):
        info = read_lock_file(path)
        if info is not None:
            found.append(info)
    return sorted(found, key=lambda info: info.port)
