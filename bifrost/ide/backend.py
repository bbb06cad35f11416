"""IDE backend interface.

Everything the protocol core needs from the host IDE goes through the
abstract classes below. The core never touches a UI toolkit type directly;
a binding for a concrete IDE implements ``IDEBackend``.

Unless stated otherwise, backend methods must be called on the UI thread
(see ``bifrost.ide.ui.UIThread``).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

from bifrost.core.events import Subscription
from bifrost.ide.protocol import Position

CaretListener = Callable[["EditorSurface"], None]


@dataclass(frozen=True)
class WorkspaceRoot:
    """An open project directory."""

    path: Path
    name: str


class TabKind(str, Enum):
    EDITOR = "editor"
    DIFF = "diff"
    OTHER = "other"


@dataclass
class OpenTab:
    """A tab currently open in the IDE."""

    name: str
    kind: TabKind
    path: Optional[Path] = None
    project: Optional[WorkspaceRoot] = None
    handle: Any = None

    @property
    def file_name(self) -> Optional[str]:
        return self.path.name if self.path else None

    @property
    def stem(self) -> Optional[str]:
        return self.path.stem if self.path else None


@dataclass(frozen=True)
class Annotation:
    """Editor annotation on a 0-based line (error stripe, hint, ...)."""

    line: int
    annotation_type: str
    description: str


class EditorSurface(ABC):
    """A focused text component showing one document."""

    @property
    @abstractmethod
    def path(self) -> Optional[Path]:
        """File backing the surface, if any."""

    @abstractmethod
    def text(self) -> str:
        """Full buffer content, including unsaved changes."""

    @abstractmethod
    def selection(self) -> tuple[int, int]:
        """Selection as ``(start, end)`` character offsets; equal when empty."""

    @abstractmethod
    def position(self, offset: int) -> Position:
        """0-based line/character of a character offset."""

    @abstractmethod
    def add_caret_listener(self, listener: CaretListener) -> None:
        ...

    @abstractmethod
    def remove_caret_listener(self, listener: CaretListener) -> None:
        ...

    def selected_text(self) -> str:
        start, end = self.selection()
        return self.text()[start:end]


class DiffView(ABC):
    """A displayed side-by-side comparison awaiting the user's decision."""

    title: str

    @abstractmethod
    def on_approve(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` on the UI thread when the user accepts the change."""

    @abstractmethod
    def on_reject(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` on the UI thread when the user dismisses the view."""

    @abstractmethod
    def close(self) -> None:
        ...

    @property
    @abstractmethod
    def is_open(self) -> bool:
        ...


class IDEBackend(ABC):
    """Capabilities consumed by the protocol core."""

    @abstractmethod
    def list_workspace_roots(self) -> list[WorkspaceRoot]:
        """Open project roots. Safe to call from any thread."""

    @abstractmethod
    def is_managed(self, path: Path) -> bool:
        """True if the editor knows the file (exists as a document)."""

    @abstractmethod
    def open_in_editor(self, path: Path, preview: bool = False) -> None:
        ...

    @abstractmethod
    def active_editor(self) -> Optional[EditorSurface]:
        ...

    @abstractmethod
    def list_open_tabs(self) -> list[OpenTab]:
        ...

    @abstractmethod
    def close_tab(self, tab: OpenTab) -> None:
        ...

    @abstractmethod
    def get_annotations(self, path: Path) -> list[Annotation]:
        ...

    @abstractmethod
    def is_dirty(self, path: Path) -> Optional[bool]:
        """Modified flag, or None if the file is not managed by the editor."""

    @abstractmethod
    def is_open(self, path: Path) -> bool:
        ...

    @abstractmethod
    def document_text(self, path: Path) -> Optional[str]:
        """Buffer content of an open document, or None if it is not open."""

    @abstractmethod
    def save_file(self, path: Path) -> None:
        """Persist the buffer.

        Raises:
            BackendError: if the document is not editable.
        """

    @abstractmethod
    def render_diff(self, old_content: str, new_content: str, title: str) -> DiffView:
        ...

    @abstractmethod
    def subscribe_active_editor_changed(
        self, callback: Callable[[Optional[EditorSurface]], None]
    ) -> Subscription:
        """Call ``callback`` on the UI thread whenever focus moves."""

    def subscribe_workspace_roots_changed(
        self, callback: Callable[[list[WorkspaceRoot]], None]
    ) -> Optional[Subscription]:
        """Call ``callback`` when projects are opened or closed, if supported."""
        return None

    def project_for(self, path: Path) -> Optional[WorkspaceRoot]:
        """Root owning ``path`` (deepest match), if any."""
        best: Optional[WorkspaceRoot] = None
        for root in self.list_workspace_roots():
            try:
                path.relative_to(root.path)
            except ValueError:
                continue
            if best is None or len(root.path.parts) > len(best.path.parts):
                best = root
        return best
