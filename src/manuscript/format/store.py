"""Document store: markdown files with optional YAML frontmatter.

Markdown files are the source of truth for document bodies. The store keeps an
index from node id to the file (or, for folders, the directory) currently
backing that node, filled from decoded manifests and kept current by writes
and relocations.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any

import frontmatter
import yaml

from manuscript.errors import (
    DanglingReferenceError,
    NodeNotFoundError,
    StoreInconsistencyError,
    UnreadableFileError,
)
from manuscript.format.layout import STAGING_DIR, TRASH_DIR, derived_paths
from manuscript.project.tree import ProjectTree

logger = logging.getLogger(__name__)

_FRONTMATTER = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
_YAML = frontmatter.YAMLHandler()


# ── Atomic replace ───────────────────────────────────────────


def atomic_write(path: Path, data: bytes) -> None:
    """Write via a temp file in the same directory, then ``os.replace``.

    A crash mid-write leaves either the old file or the new one, never a mix.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="wb", dir=path.parent, prefix=f".{path.name}_tmp", delete=False
        ) as temp_f:
            temp_path = Path(temp_f.name)
            temp_f.write(data)
            temp_f.flush()
            os.fsync(temp_f.fileno())
        os.replace(temp_path, path)
        temp_path = None
    finally:
        if temp_path is not None and temp_path.exists():
            logger.warning("Cleaning up leftover temporary file: %s", temp_path)
            temp_path.unlink()


def atomic_write_text(path: Path, text: str) -> None:
    atomic_write(path, text.encode("utf-8"))


# ── Frontmatter parse/render ─────────────────────────────────


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple, set)):
        return ", ".join(_as_text(v) for v in value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def parse_document(text: str, source: str = "<text>") -> tuple[dict[str, str], str]:
    """Split a document into (frontmatter, body). No frontmatter → ({}, text)."""
    match = _FRONTMATTER.match(text)
    if not match:
        return {}, text
    try:
        loaded = _YAML.load(match.group(1))
    except yaml.YAMLError as e:
        raise UnreadableFileError(source, f"invalid frontmatter: {e}") from e
    if loaded is None:
        loaded = {}
    if not isinstance(loaded, dict):
        raise UnreadableFileError(source, "frontmatter is not a mapping")
    meta = {str(k): _as_text(v) for k, v in loaded.items()}
    return meta, text[match.end():]


def render_document(meta: dict[str, str], body: str) -> str:
    """Inverse of ``parse_document``: ``parse_document(render_document(m, b)) == (m, b)``."""
    if not meta:
        if _FRONTMATTER.match(body):
            # Body that itself looks like frontmatter needs an explicit empty block.
            return f"---\n\n---\n{body}"
        return body
    return f"---\n{_YAML.export(dict(meta))}\n---\n{body}"


# ── Store ────────────────────────────────────────────────────


@dataclass(frozen=True)
class Move:
    node_id: str
    source: PurePosixPath
    target: PurePosixPath


class DocumentStore:
    """Read/write access to a project's document files."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self._paths: dict[str, PurePosixPath] = {}

    # ── Index ────────────────────────────────────────────────

    def bind(self, node_id: str, path: PurePosixPath | str) -> None:
        self._paths[node_id] = PurePosixPath(path)

    def unbind(self, node_id: str) -> None:
        self._paths.pop(node_id, None)

    def path_of(self, node_id: str) -> PurePosixPath | None:
        return self._paths.get(node_id)

    @property
    def bound_ids(self) -> set[str]:
        return set(self._paths)

    def abspath(self, rel: PurePosixPath | str) -> Path:
        return self.root / PurePosixPath(rel)

    # ── Read / write ─────────────────────────────────────────

    def read(self, node_id: str) -> tuple[dict[str, str], str]:
        rel = self._paths.get(node_id)
        if rel is None:
            raise NodeNotFoundError(node_id)
        return self.read_path(rel, node_id)

    def read_path(
        self, rel: PurePosixPath | str, node_id: str | None = None
    ) -> tuple[dict[str, str], str]:
        path = self.abspath(rel)
        if not path.is_file():
            raise DanglingReferenceError(str(rel), node_id)
        try:
            text = path.read_bytes().decode("utf-8")
        except UnicodeDecodeError as e:
            raise UnreadableFileError(str(rel), str(e)) from e
        return parse_document(text, str(rel))

    def write(
        self,
        node_id: str,
        meta: dict[str, str],
        body: str,
        path: PurePosixPath | str | None = None,
    ) -> bool:
        """Atomically write a document; returns False when the file was already current."""
        rel = PurePosixPath(path) if path is not None else self._paths.get(node_id)
        if rel is None:
            raise NodeNotFoundError(node_id)
        target = self.abspath(rel)
        data = render_document(meta, body).encode("utf-8")
        self._paths[node_id] = rel
        if target.is_file() and target.read_bytes() == data:
            return False
        atomic_write(target, data)
        logger.debug("Wrote %s (%d bytes)", rel, len(data))
        return True

    # ── Relocation ───────────────────────────────────────────

    def relocate_tree(self, tree: ProjectTree) -> list[Move]:
        """Move every bound file/directory whose derived location changed.

        A node moves when its name changed or it no longer sits inside its
        parent's directory; everything else travels with its parent. Movers
        are first parked under ``.staging/<id>`` for the whole tree, then put
        at their targets top-down, so no target is still held by a node from
        another folder. On any OS error the completed renames are rolled back
        and ``StoreInconsistencyError`` is raised; the caller must not write
        manifests in that case.
        """
        targets = derived_paths(tree)
        pending = [
            Move(node.id, self._paths[node.id], targets[node.id])
            for node in tree.walk()
            if node.id in self._paths and self._misplaced(node.id, node.parent_id, targets[node.id])
        ]

        saved_index = dict(self._paths)
        journal: list[tuple[Path, Path]] = []
        try:
            for move in pending:
                parked = PurePosixPath(STAGING_DIR, move.node_id)
                if self._paths[move.node_id] != parked:
                    self._rename(move.node_id, parked, journal)
            for move in pending:
                self._rename(move.node_id, move.target, journal)
        except OSError as e:
            self._rollback(journal)
            self._paths = saved_index
            self._remove_staging()
            raise StoreInconsistencyError(f"Failed to relocate project files: {e}") from e

        self._remove_staging()
        for move in pending:
            logger.info("Moved %s -> %s", move.source, move.target)
        return pending

    def _misplaced(self, node_id: str, parent_id: str | None, target: PurePosixPath) -> bool:
        current = self._paths[node_id]
        if parent_id is None:
            return current != target
        return current.name != target.name or current.parent != self._paths.get(parent_id)

    def discard(self, node_ids: Iterable[str]) -> list[PurePosixPath]:
        """Move the files of removed nodes into ``trash/``.

        Live nodes still sitting inside a removed folder's directory are first
        moved to a staging area so that the following ``relocate_tree`` can put
        them in their new place.
        """
        removed = {nid for nid in node_ids if nid in self._paths}
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        trashed: list[PurePosixPath] = []
        journal: list[tuple[Path, Path]] = []

        for nid in sorted(removed, key=lambda n: len(self._paths[n].parts)):
            path = self._paths.get(nid)
            if path is None:
                continue  # already carried away with a removed ancestor
            try:
                self._rescue_live(path, removed, journal)
                if self.abspath(path).exists():
                    target = self._trash_target(stamp, path.name)
                    self.abspath(target).parent.mkdir(parents=True, exist_ok=True)
                    os.rename(self.abspath(path), self.abspath(target))
                    trashed.append(target)
                    logger.info("Moved %s to %s", path, target)
                else:
                    logger.debug("Nothing on disk to discard for %s (%s)", nid, path)
            except OSError as e:
                raise StoreInconsistencyError(f"Failed to move {path} to trash: {e}") from e
            for other in list(self._paths):
                other_path = self._paths[other]
                if other in removed and (other_path == path or path in other_path.parents):
                    del self._paths[other]
        return trashed

    def _rescue_live(
        self, path: PurePosixPath, removed: set[str], journal: list[tuple[Path, Path]]
    ) -> None:
        inside = sorted(
            (nid for nid, p in self._paths.items() if nid not in removed and path in p.parents),
            key=lambda n: len(self._paths[n].parts),
        )
        for nid in inside:
            current = self._paths[nid]
            if path in current.parents:
                self._rename(nid, PurePosixPath(STAGING_DIR, nid), journal)

    def _trash_target(self, stamp: str, name: str) -> PurePosixPath:
        target = PurePosixPath(TRASH_DIR, f"{stamp}-{name}")
        counter = 2
        while self.abspath(target).exists():
            target = PurePosixPath(TRASH_DIR, f"{stamp}-{counter}-{name}")
            counter += 1
        return target

    def _rename(
        self, node_id: str, target: PurePosixPath, journal: list[tuple[Path, Path]]
    ) -> None:
        source = self._paths[node_id]
        src_abs, dst_abs = self.abspath(source), self.abspath(target)
        if src_abs.exists():
            if dst_abs.exists():
                raise FileExistsError(f"Target already exists: {target}")
            dst_abs.parent.mkdir(parents=True, exist_ok=True)
            os.rename(src_abs, dst_abs)
            journal.append((src_abs, dst_abs))
        self._rebase(source, target)

    def _rebase(self, old: PurePosixPath, new: PurePosixPath) -> None:
        for nid, path in self._paths.items():
            if path == old:
                self._paths[nid] = new
            elif old in path.parents:
                self._paths[nid] = new / path.relative_to(old)

    def _rollback(self, journal: list[tuple[Path, Path]]) -> None:
        for src_abs, dst_abs in reversed(journal):
            try:
                os.rename(dst_abs, src_abs)
            except OSError as e:
                logger.error("Rollback failed for %s -> %s: %s", dst_abs, src_abs, e)

    def _remove_staging(self) -> None:
        staging = self.abspath(STAGING_DIR)
        if staging.is_dir() and not any(staging.iterdir()):
            staging.rmdir()
