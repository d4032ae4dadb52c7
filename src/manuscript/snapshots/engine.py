"""Snapshots: checksummed project states with per-file change lists.

A snapshot records the sha256 of every tracked file (``project.json`` plus
everything under ``contents/``) and the changes since the previous snapshot.
In full-copy mode file contents are also stored content-addressed under
``snapshots/objects/<sha256>`` so that any snapshot can be restored. In
checksum-only mode nothing but digests is kept; restoring then needs an
external ``blob_source`` that can supply historical contents by checksum.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from manuscript.errors import (
    ManifestError,
    OperationCancelled,
    UnreadableFileError,
    UnreconstructableSnapshotError,
)
from manuscript.format.layout import (
    CONTENTS_DIR,
    DOCUMENT_SUFFIX,
    OBJECTS_DIR,
    PROJECT_FILE,
    SNAPSHOTS_DIR,
)
from manuscript.format.manifest import format_timestamp, parse_timestamp
from manuscript.format.store import atomic_write, atomic_write_text, parse_document

logger = logging.getLogger(__name__)

SNAPSHOT_NAME_FORMAT = "%Y%m%dT%H%M%S.%fZ"

BlobSource = Callable[[str], "bytes | None"]


class SnapshotKind(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"
    MILESTONE = "milestone"


class ChangeAction(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


class StorageMode(str, Enum):
    CHECKSUM_ONLY = "checksum-only"
    FULL_COPY = "full-copy"


class EngineState(str, Enum):
    IDLE = "idle"
    COMPUTING = "computing"


@dataclass(frozen=True)
class FileChange:
    path: str
    action: ChangeAction
    checksum: str | None = None
    previous_checksum: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"path": self.path, "action": self.action.value}
        if self.checksum is not None:
            data["checksum"] = self.checksum
        if self.previous_checksum is not None:
            data["previousChecksum"] = self.previous_checksum
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileChange:
        return cls(
            path=data["path"],
            action=ChangeAction(data["action"]),
            checksum=data.get("checksum"),
            previous_checksum=data.get("previousChecksum"),
        )


@dataclass(frozen=True)
class Snapshot:
    version: int
    timestamp: datetime
    kind: SnapshotKind
    description: str | None = None
    word_count: int = 0
    document_count: int = 0
    changes: tuple[FileChange, ...] = ()
    state: Mapping[str, str] = field(default_factory=dict)
    storage: StorageMode = StorageMode.CHECKSUM_ONLY

    @property
    def name(self) -> str:
        return self.timestamp.astimezone(timezone.utc).strftime(SNAPSHOT_NAME_FORMAT)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "timestamp": format_timestamp(self.timestamp),
            "type": self.kind.value,
            "description": self.description,
            "wordCount": self.word_count,
            "documentCount": self.document_count,
            "storage": self.storage.value,
            "changes": [c.to_dict() for c in self.changes],
            "state": dict(sorted(self.state.items())),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Snapshot:
        return cls(
            version=int(data["version"]),
            timestamp=parse_timestamp(data["timestamp"]),
            kind=SnapshotKind(data["type"]),
            description=data.get("description"),
            word_count=int(data.get("wordCount", 0)),
            document_count=int(data.get("documentCount", 0)),
            changes=tuple(FileChange.from_dict(c) for c in data.get("changes", [])),
            state=dict(data.get("state", {})),
            storage=StorageMode(data.get("storage", StorageMode.CHECKSUM_ONLY.value)),
        )


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class SnapshotEngine:
    """Computes, lists and restores snapshots of one project directory.

    One computation or restore runs at a time; a second caller blocks on the
    engine lock until the first finishes. Engines made by
    ``ProjectPackage.snapshot_engine`` share the package lock, so a scan never
    sees a half-applied save.
    """

    def __init__(
        self,
        root: Path,
        storage: StorageMode = StorageMode.FULL_COPY,
        interval_seconds: float = 300,
        blob_source: BlobSource | None = None,
        lock: threading.Lock | None = None,
    ) -> None:
        self.root = Path(root)
        self.storage = storage
        self.interval = timedelta(seconds=interval_seconds)
        self.blob_source = blob_source
        self.state = EngineState.IDLE
        self._lock = lock if lock is not None else threading.Lock()

    # ── Scanning ─────────────────────────────────────────────

    def tracked_files(self) -> list[str]:
        """``project.json`` plus every file under ``contents/``, sorted."""
        paths: list[str] = []
        if (self.root / PROJECT_FILE).is_file():
            paths.append(PROJECT_FILE)
        contents = self.root / CONTENTS_DIR
        if contents.is_dir():
            for path in contents.rglob("*"):
                if path.is_file() and not path.name.startswith("."):
                    paths.append(path.relative_to(self.root).as_posix())
        return sorted(paths)

    def scan(self, cancel: threading.Event | None = None) -> dict[str, str]:
        """Path → sha256 of every tracked file."""
        state: dict[str, str] = {}
        for rel in self.tracked_files():
            _check_cancel(cancel)
            state[rel] = sha256_bytes((self.root / rel).read_bytes())
        return state

    @staticmethod
    def diff(previous: Mapping[str, str], current: Mapping[str, str]) -> list[FileChange]:
        """Added/modified/deleted paths between two state maps, ordered by path."""
        changes = []
        for path in sorted(set(previous) | set(current)):
            before, after = previous.get(path), current.get(path)
            if before is None:
                changes.append(FileChange(path, ChangeAction.ADDED, after))
            elif after is None:
                changes.append(FileChange(path, ChangeAction.DELETED, None, before))
            elif before != after:
                changes.append(FileChange(path, ChangeAction.MODIFIED, after, before))
        return changes

    # ── Computing ────────────────────────────────────────────

    def compute_snapshot(
        self,
        kind: SnapshotKind = SnapshotKind.MANUAL,
        description: str | None = None,
        cancel: threading.Event | None = None,
        now: datetime | None = None,
    ) -> Snapshot:
        """Scan, diff against the latest snapshot and persist a new one.

        Raises ``OperationCancelled`` if ``cancel`` is set between files;
        nothing is persisted in that case.
        """
        with self._lock:
            self.state = EngineState.COMPUTING
            try:
                return self._compute(kind, description, cancel, now)
            finally:
                self.state = EngineState.IDLE

    async def compute_snapshot_async(
        self,
        kind: SnapshotKind = SnapshotKind.MANUAL,
        description: str | None = None,
        cancel: threading.Event | None = None,
    ) -> Snapshot:
        return await asyncio.to_thread(self.compute_snapshot, kind, description, cancel)

    def _compute(
        self,
        kind: SnapshotKind,
        description: str | None,
        cancel: threading.Event | None,
        now: datetime | None,
    ) -> Snapshot:
        previous = self.latest()
        state: dict[str, str] = {}
        word_count = document_count = 0
        blobs: dict[str, bytes] = {}

        for rel in self.tracked_files():
            _check_cancel(cancel)
            data = (self.root / rel).read_bytes()
            checksum = sha256_bytes(data)
            state[rel] = checksum
            if self.storage is StorageMode.FULL_COPY:
                blobs[checksum] = data
            if rel.startswith(CONTENTS_DIR + "/") and rel.endswith(DOCUMENT_SUFFIX):
                document_count += 1
                word_count += _word_count(data, rel)

        _check_cancel(cancel)
        timestamp = now or datetime.now(timezone.utc)
        if previous is not None and timestamp <= previous.timestamp:
            timestamp = previous.timestamp + timedelta(microseconds=1)
        snapshot = Snapshot(
            version=(previous.version + 1) if previous else 1,
            timestamp=timestamp,
            kind=kind,
            description=description,
            word_count=word_count,
            document_count=document_count,
            changes=tuple(self.diff(previous.state if previous else {}, state)),
            state=state,
            storage=self.storage,
        )

        for checksum, data in blobs.items():
            self._store_blob(checksum, data)
        path = self.root / SNAPSHOTS_DIR / f"{snapshot.name}.json"
        atomic_write_text(path, json.dumps(snapshot.to_dict(), indent=2, ensure_ascii=False) + "\n")
        logger.info(
            "Snapshot v%d (%s): %d change(s), %d words in %d documents",
            snapshot.version, kind.value, len(snapshot.changes), word_count, document_count,
        )
        return snapshot

    def _store_blob(self, checksum: str, data: bytes) -> None:
        path = self.root / OBJECTS_DIR / checksum
        if not path.exists():
            atomic_write(path, data)

    # ── History ──────────────────────────────────────────────

    def history(self) -> list[Snapshot]:
        """All persisted snapshots, oldest first."""
        directory = self.root / SNAPSHOTS_DIR
        if not directory.is_dir():
            return []
        snapshots = []
        for path in sorted(directory.glob("*.json")):
            try:
                snapshots.append(Snapshot.from_dict(json.loads(path.read_text(encoding="utf-8"))))
            except (OSError, ValueError, KeyError, TypeError) as e:
                raise ManifestError(f"Corrupt snapshot {path.name}: {e}") from e
        snapshots.sort(key=lambda s: (s.timestamp, s.version))
        return snapshots

    def latest(self) -> Snapshot | None:
        snapshots = self.history()
        return snapshots[-1] if snapshots else None

    def is_due(self, now: datetime | None = None) -> bool:
        latest = self.latest()
        if latest is None:
            return True
        return (now or datetime.now(timezone.utc)) - latest.timestamp >= self.interval

    def auto_snapshot(self, now: datetime | None = None) -> Snapshot | None:
        """Take an AUTO snapshot if the interval has elapsed."""
        if not self.is_due(now):
            return None
        return self.compute_snapshot(SnapshotKind.AUTO, now=now)

    # ── Restore ──────────────────────────────────────────────

    def restore(self, snapshot: Snapshot, cancel: threading.Event | None = None) -> None:
        """Make the tracked files match ``snapshot.state`` exactly.

        Every blob is resolved before any file is touched: if one is missing
        ``UnreconstructableSnapshotError`` is raised and the project is left
        as it was.
        """
        with self._lock:
            self.state = EngineState.COMPUTING
            try:
                blobs: dict[str, bytes] = {}
                missing: list[str] = []
                for rel, checksum in sorted(snapshot.state.items()):
                    _check_cancel(cancel)
                    if checksum in blobs:
                        continue
                    data = self._load_blob(checksum)
                    if data is None:
                        missing.append(rel)
                    else:
                        blobs[checksum] = data
                if missing:
                    raise UnreconstructableSnapshotError(missing)

                current = self.tracked_files()
                _check_cancel(cancel)
                for rel, checksum in sorted(snapshot.state.items()):
                    path = self.root / rel
                    data = blobs[checksum]
                    if path.is_file() and path.read_bytes() == data:
                        continue
                    atomic_write(path, data)
                for rel in current:
                    if rel not in snapshot.state:
                        (self.root / rel).unlink()
                logger.info("Restored snapshot v%d (%s)", snapshot.version, snapshot.name)
            finally:
                self.state = EngineState.IDLE

    def _load_blob(self, checksum: str) -> bytes | None:
        path = self.root / OBJECTS_DIR / checksum
        if path.is_file():
            data = path.read_bytes()
            if sha256_bytes(data) == checksum:
                return data
            logger.warning("Stored object %s is corrupt", checksum)
        if self.blob_source is not None:
            data = self.blob_source(checksum)
            if data is not None and sha256_bytes(data) == checksum:
                return data
        return None


def _check_cancel(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelled("Snapshot operation cancelled")


def _word_count(data: bytes, rel: str) -> int:
    try:
        _, body = parse_document(data.decode("utf-8"), rel)
    except (UnicodeDecodeError, UnreadableFileError) as e:
        logger.debug("Not counting words in %s: %s", rel, e)
        return 0
    return len(body.split())
