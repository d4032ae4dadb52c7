"""Project package: ties the manifest codec and the document store together.

``save`` is the one logical write transaction of the engine. Files are moved
into place first, documents written next, and manifests last, with
``project.json`` as the very last file. If moving files fails no manifest is
touched, so the previous manifests keep describing what is on disk.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from manuscript.errors import (
    DanglingReferenceError,
    ManifestError,
    StoreInconsistencyError,
    UnreadableFileError,
)
from manuscript.format.layout import PACKAGE_DIRS, PROJECT_FILE, derived_paths
from manuscript.format.manifest import DecodeResult, ManifestCodec, dumps
from manuscript.format.store import DocumentStore, atomic_write
from manuscript.project.nodes import utcnow
from manuscript.project.project import Project

if TYPE_CHECKING:
    from manuscript.snapshots.engine import SnapshotEngine

logger = logging.getLogger(__name__)


@runtime_checkable
class ProjectListener(Protocol):
    """Write-only observer of package events (notifications, recent files)."""

    def project_opened(self, root: Path, project: Project) -> None: ...

    def project_saved(self, root: Path, project: Project) -> None: ...


def is_project(path: Path) -> bool:
    return (Path(path) / PROJECT_FILE).is_file()


class ProjectPackage:
    """A project directory on disk."""

    def __init__(self, root: Path, codec: ManifestCodec | None = None) -> None:
        self.root = Path(root)
        self.codec = codec or ManifestCodec()
        self.store = DocumentStore(self.root)
        self._listeners: list[ProjectListener] = []
        self._known_ids: set[str] = set()
        self._unreadable: set[str] = set()
        # Held for a whole save and by snapshot engines made here.
        self.lock = threading.Lock()

    @classmethod
    def create(
        cls, root: Path, title: str, author: str = ""
    ) -> tuple[ProjectPackage, Project]:
        """Create a new empty project (draft/notes/research roots) at ``root``."""
        root = Path(root)
        if is_project(root):
            raise ManifestError(f"A project already exists at {root}")
        package = cls(root)
        project = Project(title=title, author=author)
        package.save(project)
        logger.info("Created project '%s' at %s", title, root)
        return package, project

    def ensure_layout(self) -> None:
        """Create the package directories. Idempotent."""
        for d in PACKAGE_DIRS:
            (self.root / d).mkdir(parents=True, exist_ok=True)

    # ── Listeners ────────────────────────────────────────────

    def add_listener(self, listener: ProjectListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ProjectListener) -> None:
        self._listeners.remove(listener)

    def _notify(self, event: str, project: Project) -> None:
        for listener in list(self._listeners):
            getattr(listener, event)(self.root, project)

    # ── Load ─────────────────────────────────────────────────

    def load(self) -> DecodeResult:
        """Best-effort load. Dangling and unreadable documents end up in ``errors``."""
        result = self.codec.decode(self._read_json, self._exists)
        self.store = DocumentStore(self.root)
        for node_id, path in result.locations.items():
            self.store.bind(node_id, path)

        self._unreadable = set()
        for node in list(result.project.tree.documents()):
            try:
                node.frontmatter, node.body = self.store.read(node.id)
            except (DanglingReferenceError, UnreadableFileError) as e:
                result.errors.append(e)
                self._unreadable.add(node.id)

        for advisory in result.advisories:
            logger.warning("%s", advisory)
        for error in result.errors:
            logger.warning("Load problem in %s: %s", self.root, error)

        self._known_ids = set(result.project.tree.nodes)
        self._notify("project_opened", result.project)
        return result

    def _read_json(self, rel: str) -> Any:
        return json.loads((self.root / rel).read_text(encoding="utf-8"))

    def _exists(self, rel: str) -> bool:
        return (self.root / rel).exists()

    # ── Save ─────────────────────────────────────────────────

    def save(self, project: Project) -> None:
        """Persist ``project``.

        Raises ``StoreInconsistencyError`` if files could not be moved or
        written; in that case no manifest has been written. Snapshot engines
        from ``snapshot_engine`` wait for the save to finish.
        """
        with self.lock:
            self._save(project)
        self._notify("project_saved", project)

    def _save(self, project: Project) -> None:
        tree = project.tree
        self.ensure_layout()
        live = set(tree.nodes)

        self.store.discard((self._known_ids | self.store.bound_ids) - live)
        moves = self.store.relocate_tree(tree)

        paths = derived_paths(tree)
        written = 0
        try:
            for node in tree.walk():
                rel = paths[node.id]
                if node.is_folder:
                    self.store.abspath(rel).mkdir(parents=True, exist_ok=True)
                    self.store.bind(node.id, rel)
                elif node.id in self._unreadable and not node.body and not node.frontmatter:
                    # Never loaded; leave the file on disk as it is.
                    self.store.bind(node.id, rel)
                elif self.store.write(node.id, node.frontmatter, node.body, rel):
                    written += 1
        except OSError as e:
            raise StoreInconsistencyError(f"Failed to write documents: {e}") from e

        project.modified = utcnow()
        payloads = self.codec.encode(project)
        project_payload = payloads.pop(PROJECT_FILE)
        try:
            for rel_path, payload in payloads.items():
                self._write_json(rel_path, payload)
            self._write_json(PROJECT_FILE, project_payload)
        except OSError as e:
            raise StoreInconsistencyError(f"Failed to write manifests: {e}") from e

        self._known_ids = live
        self._unreadable &= live
        logger.info(
            "Saved project '%s': %d document(s) written, %d moved",
            project.title, written, len(moves),
        )

    def _write_json(self, rel: str, payload: dict[str, Any]) -> None:
        path = self.root / rel
        data = dumps(payload).encode("utf-8")
        if path.is_file() and path.read_bytes() == data:
            return
        atomic_write(path, data)

    # ── Snapshots ────────────────────────────────────────────

    def snapshot_engine(self, **kwargs: Any) -> SnapshotEngine:
        """A ``SnapshotEngine`` for this project that shares the save lock."""
        from manuscript.snapshots.engine import SnapshotEngine

        return SnapshotEngine(self.root, lock=self.lock, **kwargs)
