"""Headless IDE backend.

An in-memory editor over the real filesystem: documents are loaded from disk
when opened, edits live in memory until saved, and a diff view is a plain
record waiting for ``approve()`` or ``reject()``. ``bifrost serve`` runs on
it, and the test suite drives it through the simulation helpers (``select``,
``set_text``, ``add_annotation`` ...).
"""

import threading
from pathlib import Path
from typing import Callable, Iterable, Optional

import structlog

from bifrost.core.errors import BackendError
from bifrost.core.events import EventBus, EventType, Subscription, emit
from bifrost.ide.backend import (
    Annotation,
    CaretListener,
    DiffView,
    EditorSurface,
    IDEBackend,
    OpenTab,
    TabKind,
    WorkspaceRoot,
)
from bifrost.ide.protocol import Position

log = structlog.get_logger()


class HeadlessDocument(EditorSurface):
    """An open document; it is also the editor surface showing it."""

    def __init__(self, path: Path, text: str):
        self._path = path
        self._text = text
        self._selection = (0, 0)
        self.dirty = False
        self.read_only = False
        self._listeners: list[CaretListener] = []
        self._lock = threading.Lock()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def text(self) -> str:
        return self._text

    def selection(self) -> tuple[int, int]:
        return self._selection

    def position(self, offset: int) -> Position:
        offset = max(0, min(offset, len(self._text)))
        line = self._text.count("\n", 0, offset)
        line_start = self._text.rfind("\n", 0, offset) + 1
        return Position(line=line, character=offset - line_start)

    def add_caret_listener(self, listener: CaretListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_caret_listener(self, listener: CaretListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def set_selection(self, start: int, end: int):
        size = len(self._text)
        start, end = sorted((max(0, min(start, size)), max(0, min(end, size))))
        self._selection = (start, end)
        self._fire_caret()

    def set_text(self, text: str):
        self._text = text
        self.dirty = True
        start, end = self._selection
        self._selection = (min(start, len(text)), min(end, len(text)))
        self._fire_caret()

    def _fire_caret(self):
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(self)
            except Exception as e:
                log.error("caret_listener_failed", path=str(self._path), error=str(e))


class HeadlessDiffView(DiffView):
    """A rendered diff awaiting the user's decision."""

    def __init__(self, backend: "HeadlessIDE", title: str, old_content: str, new_content: str):
        self.title = title
        self.old_content = old_content
        self.new_content = new_content
        self._backend = backend
        self._approve: Optional[Callable[[], None]] = None
        self._reject: Optional[Callable[[], None]] = None
        self._open = True

    def on_approve(self, callback: Callable[[], None]) -> None:
        self._approve = callback

    def on_reject(self, callback: Callable[[], None]) -> None:
        self._reject = callback

    @property
    def is_open(self) -> bool:
        return self._open

    def close(self) -> None:
        if not self._open:
            return
        self._open = False
        self._backend._forget_diff(self)

    def approve(self):
        """Simulate the user accepting the proposed change."""
        if self._approve is not None:
            self._approve()

    def reject(self):
        """Simulate the user dismissing the view."""
        if self._reject is not None:
            self._reject()


class HeadlessIDE(IDEBackend):
    """Filesystem-backed backend with in-memory editor state."""

    def __init__(self, roots: Iterable[Path] = ()):
        self.events = EventBus()
        self._lock = threading.RLock()
        self._roots: list[WorkspaceRoot] = []
        self._documents: dict[Path, HeadlessDocument] = {}
        self._tabs: list[OpenTab] = []
        self._annotations: dict[Path, list[Annotation]] = {}
        self._read_only: set[Path] = set()
        self._active: Optional[HeadlessDocument] = None
        for root in roots:
            self.add_root(root)

    # Workspace roots

    def list_workspace_roots(self) -> list[WorkspaceRoot]:
        with self._lock:
            return list(self._roots)

    def add_root(self, path: Path, name: Optional[str] = None) -> WorkspaceRoot:
        path = Path(path).expanduser().resolve()
        root = WorkspaceRoot(path=path, name=name or path.name)
        with self._lock:
            if any(r.path == path for r in self._roots):
                return root
            self._roots.append(root)
        log.info("workspace_root_added", path=str(path))
        emit(self.events, EventType.WORKSPACE_ROOTS_CHANGED, self.list_workspace_roots())
        return root

    def remove_root(self, path: Path) -> bool:
        path = Path(path).expanduser().resolve()
        with self._lock:
            before = len(self._roots)
            self._roots = [r for r in self._roots if r.path != path]
            removed = len(self._roots) != before
        if removed:
            log.info("workspace_root_removed", path=str(path))
            emit(self.events, EventType.WORKSPACE_ROOTS_CHANGED, self.list_workspace_roots())
        return removed

    def subscribe_workspace_roots_changed(
        self, callback: Callable[[list[WorkspaceRoot]], None]
    ) -> Optional[Subscription]:
        return self.events.subscribe(EventType.WORKSPACE_ROOTS_CHANGED, callback)

    # Documents

    @staticmethod
    def _key(path: Path) -> Path:
        return Path(path).expanduser().resolve()

    def _document(self, path: Path) -> Optional[HeadlessDocument]:
        with self._lock:
            return self._documents.get(self._key(path))

    def is_managed(self, path: Path) -> bool:
        return self._document(path) is not None or self._key(path).is_file()

    def is_open(self, path: Path) -> bool:
        return self._document(path) is not None

    def is_dirty(self, path: Path) -> Optional[bool]:
        document = self._document(path)
        if document is not None:
            return document.dirty
        if not self._key(path).is_file():
            return None
        return False

    def document_text(self, path: Path) -> Optional[str]:
        document = self._document(path)
        return document.text() if document is not None else None

    def open_in_editor(self, path: Path, preview: bool = False) -> None:
        key = self._key(path)
        with self._lock:
            document = self._documents.get(key)
            if document is None:
                document = HeadlessDocument(key, key.read_text(encoding="utf-8"))
                document.read_only = key in self._read_only
                self._documents[key] = document
                self._tabs.append(
                    OpenTab(
                        name=key.name,
                        kind=TabKind.EDITOR,
                        path=key,
                        project=self.project_for(key),
                        handle=document,
                    )
                )
                log.info("document_opened", path=str(key), preview=preview)
            changed = self._active is not document
            self._active = document
        if changed:
            emit(self.events, EventType.ACTIVE_EDITOR_CHANGED, document)

    def active_editor(self) -> Optional[EditorSurface]:
        with self._lock:
            return self._active

    def save_file(self, path: Path) -> None:
        key = self._key(path)
        if key in self._read_only:
            raise BackendError(f"Document is not editable: {key}")
        document = self._document(key)
        if document is None:
            # Nothing buffered; the file on disk is already current
            return
        key.write_text(document.text(), encoding="utf-8")
        document.dirty = False
        log.info("document_saved", path=str(key))

    def get_annotations(self, path: Path) -> list[Annotation]:
        with self._lock:
            return list(self._annotations.get(self._key(path), []))

    # Tabs

    def list_open_tabs(self) -> list[OpenTab]:
        with self._lock:
            return list(self._tabs)

    def close_tab(self, tab: OpenTab) -> None:
        if tab.kind == TabKind.DIFF and isinstance(tab.handle, HeadlessDiffView):
            tab.handle.close()
            return

        focus: Optional[HeadlessDocument] = None
        with self._lock:
            if tab not in self._tabs:
                return
            self._tabs.remove(tab)
            if tab.path is not None:
                self._documents.pop(self._key(tab.path), None)
            was_active = self._active is tab.handle
            if was_active:
                editors = [t.handle for t in self._tabs if t.kind == TabKind.EDITOR]
                self._active = editors[-1] if editors else None
                focus = self._active
        log.info("tab_closed", name=tab.name)
        if was_active:
            emit(self.events, EventType.ACTIVE_EDITOR_CHANGED, focus)

    def render_diff(self, old_content: str, new_content: str, title: str) -> DiffView:
        view = HeadlessDiffView(self, title, old_content, new_content)
        with self._lock:
            self._tabs.append(OpenTab(name=title, kind=TabKind.DIFF, handle=view))
        log.info("diff_rendered", title=title)
        return view

    def _forget_diff(self, view: HeadlessDiffView):
        with self._lock:
            self._tabs = [t for t in self._tabs if t.handle is not view]

    def diff_views(self) -> list[HeadlessDiffView]:
        with self._lock:
            return [t.handle for t in self._tabs if t.kind == TabKind.DIFF]

    def subscribe_active_editor_changed(
        self, callback: Callable[[Optional[EditorSurface]], None]
    ) -> Subscription:
        return self.events.subscribe(EventType.ACTIVE_EDITOR_CHANGED, callback)

    # Simulation helpers

    def activate(self, path: Path):
        """Focus ``path``, opening it first if needed."""
        self.open_in_editor(path)

    def select(self, path: Path, start: int, end: int):
        """Set the selection of an open document by character offsets."""
        document = self._document(path)
        if document is None:
            raise BackendError(f"Document is not open: {path}")
        document.set_selection(start, end)

    def set_text(self, path: Path, text: str):
        """Replace the buffer of an open document, marking it dirty."""
        document = self._document(path)
        if document is None:
            raise BackendError(f"Document is not open: {path}")
        document.set_text(text)

    def add_annotation(self, path: Path, line: int, annotation_type: str, description: str):
        """Attach an annotation to a 0-based line of ``path``."""
        with self._lock:
            self._annotations.setdefault(self._key(path), []).append(
                Annotation(line=line, annotation_type=annotation_type, description=description)
            )

    def set_read_only(self, path: Path, read_only: bool = True):
        key = self._key(path)
        with self._lock:
            if read_only:
                self._read_only.add(key)
            else:
                self._read_only.discard(key)
            document = self._documents.get(key)
            if document is not None:
                document.read_only = read_only
