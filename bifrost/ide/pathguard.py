"""Workspace containment check.

Every filesystem-touching operation goes through ``PathGuard`` before it
reads, writes, opens or lists anything.
"""

import os
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

import structlog

log = structlog.get_logger()

PathLike = Union[str, Path]


def _canonical(path: PathLike) -> str:
    # strict=True: a missing segment is a failure, never a guess
    resolved = Path(path).expanduser().resolve(strict=True)
    return os.path.normcase(str(resolved))


def existing_anchor(path: PathLike) -> Optional[Path]:
    """Nearest existing ancestor of a path that does not exist yet.

    Returns None when the missing part contains ``..``, which could not be
    checked without the directories it walks through.
    """
    path = Path(path).expanduser()
    for candidate in (path, *path.parents):
        if candidate.exists() or candidate.is_symlink():
            missing = path.relative_to(candidate).parts
            return None if ".." in missing else candidate
    return None


def is_within(path: PathLike, roots: Iterable[PathLike], allow_missing: bool = False) -> bool:
    """True if ``path`` canonicalizes to a root or to a path under one.

    Canonicalization resolves ``..`` and symlinks, so neither can escape a
    root. Any failure to canonicalize denies access. With ``allow_missing``
    a path that does not exist yet is judged by its nearest existing
    ancestor.
    """
    candidate = path
    if allow_missing and not (Path(path).expanduser().exists() or Path(path).is_symlink()):
        anchor = existing_anchor(path)
        if anchor is None:
            log.warning("path_check_failed", path=str(path), error="unresolvable missing path")
            return False
        candidate = anchor

    try:
        target = _canonical(candidate)
    except (OSError, ValueError, RuntimeError) as e:
        log.warning("path_check_failed", path=str(path), error=str(e))
        return False

    for root in roots:
        try:
            root_path = _canonical(root)
        except (OSError, ValueError, RuntimeError) as e:
            log.debug("workspace_root_unresolvable", root=str(root), error=str(e))
            continue

        prefix = root_path if root_path.endswith(os.sep) else root_path + os.sep
        if target == root_path or target.startswith(prefix):
            log.debug("path_within_workspace", path=str(path), root=root_path)
            return True

    log.warning("path_outside_workspace", path=str(path))
    return False


class PathGuard:
    """Workspace containment predicate bound to the live set of roots."""

    def __init__(self, roots_provider: Callable[[], Iterable[PathLike]]):
        """Initialize the guard.

        Args:
            roots_provider: Returns the currently open workspace roots. It is
                called on every check so opening or closing a project takes
                effect immediately.
        """
        self._roots_provider = roots_provider

    def roots(self) -> list[PathLike]:
        return list(self._roots_provider())

    def is_within(self, path: PathLike, allow_missing: bool = False) -> bool:
        return is_within(path, self.roots(), allow_missing=allow_missing)

    def denial(
        self,
        path: PathLike,
        label: str = "Path",
        action: str = "access",
        allow_missing: bool = False,
    ) -> Optional[str]:
        """Error message if ``path`` is outside the workspace, else None."""
        if self.is_within(path, allow_missing=allow_missing):
            return None
        return f"File {action} denied: {label} is not within any open project directory: {path}"
