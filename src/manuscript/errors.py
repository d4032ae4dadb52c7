"""Classified errors and load-time advisories.

Every failure path in the engine raises (or, for dangling references, collects)
one of these. Callers can catch ``ManuscriptError`` for anything engine-related
or one of the narrower families below.
"""

from __future__ import annotations


class ManuscriptError(Exception):
    """Base class for all engine errors."""


# ── Input validation ─────────────────────────────────────────


class ValidationError(ManuscriptError):
    """Bad input file (extension, size, content). Recoverable."""


class UnreadableFileError(ValidationError):
    """File contents could not be decoded as text (or parsed as its format)."""

    def __init__(self, path: str, reason: str = "") -> None:
        self.path = path
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Failed to read file {path}{detail}")


# ── Tree structure ───────────────────────────────────────────


class StructuralError(ManuscriptError):
    """A tree mutation was rejected. The tree is left unchanged."""


class DuplicateIdError(StructuralError):
    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(f"Node id already exists: {node_id}")


class InvalidParentError(StructuralError):
    def __init__(self, node_id: str, reason: str = "not a folder") -> None:
        self.node_id = node_id
        super().__init__(f"Invalid parent {node_id}: {reason}")


class CycleError(StructuralError):
    def __init__(self, node_id: str, target_id: str) -> None:
        self.node_id = node_id
        self.target_id = target_id
        super().__init__(f"Cannot move {node_id} beneath its own descendant {target_id}")


class NodeNotFoundError(StructuralError):
    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}")


# ── Storage ──────────────────────────────────────────────────


class StoreInconsistencyError(ManuscriptError):
    """Files on disk and manifests disagree after a failed move. Aborts the save."""


class DanglingReferenceError(ManuscriptError):
    """A manifest entry points at a missing file or directory. Collected, non-fatal."""

    def __init__(self, path: str, node_id: str | None = None) -> None:
        self.path = path
        self.node_id = node_id
        who = f" (node {node_id})" if node_id else ""
        super().__init__(f"Missing backing file: {path}{who}")


class ManifestError(ManuscriptError):
    """A manifest file is not valid JSON or has the wrong shape."""


# ── Snapshots ────────────────────────────────────────────────


class UnreconstructableSnapshotError(ManuscriptError):
    """Restore needs file contents that are not stored anywhere."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        preview = ", ".join(missing[:5])
        more = f" (+{len(missing) - 5} more)" if len(missing) > 5 else ""
        super().__init__(f"No stored content for {len(missing)} file(s): {preview}{more}")


class OperationCancelled(ManuscriptError):
    """A long-running snapshot or import was cancelled cooperatively."""


# ── Configuration ────────────────────────────────────────────


class ConfigError(ManuscriptError):
    """manuscript.toml or a MANUSCRIPT_* variable holds an invalid value."""


# ── External collaborators ───────────────────────────────────


class GenerationError(ManuscriptError):
    """The text-generation service failed. Not retried by the engine."""


# ── Advisories (returned, never raised) ──────────────────────


class NewerVersionWarning(UserWarning):
    """The project was written by a newer format version than this engine knows."""


class UpgradeAvailable(UserWarning):
    """The project uses an older format version and can be upgraded on save."""
