from manuscript.snapshots.engine import (
    ChangeAction,
    EngineState,
    FileChange,
    Snapshot,
    SnapshotEngine,
    SnapshotKind,
    StorageMode,
)

__all__ = [
    "ChangeAction",
    "EngineState",
    "FileChange",
    "Snapshot",
    "SnapshotEngine",
    "SnapshotKind",
    "StorageMode",
]
