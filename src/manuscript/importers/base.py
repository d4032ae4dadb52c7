"""Importer protocol and shared types."""

from __future__ import annotations

import codecs
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

from manuscript.errors import UnreadableFileError
from manuscript.project.nodes import ProjectNode
from manuscript.project.tree import TreeFragment

LARGE_FILE_BYTES = 10_000_000


@dataclass
class ImportOptions:
    preserve_formatting: bool = True
    create_new_project: bool = False
    import_research: bool = True
    import_trash: bool = False


@dataclass
class ValidationResult:
    is_valid: bool
    title: str | None = None
    file_size: int = 0
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @classmethod
    def invalid(cls, *errors: str) -> ValidationResult:
        return cls(is_valid=False, errors=list(errors))

    @property
    def file_size_formatted(self) -> str:
        if self.file_size < 1024:
            return f"{self.file_size} B"
        if self.file_size < 1024 * 1024:
            return f"{self.file_size // 1024} KB"
        return f"{self.file_size / (1024 * 1024):.1f} MB"


@dataclass
class ImportResult:
    """Title, the imported subtree (not yet part of any project) and notes."""

    title: str
    fragment: TreeFragment
    warnings: list[str] = field(default_factory=list)

    @property
    def document(self) -> ProjectNode | None:
        return self.fragment.document


@runtime_checkable
class Importer(Protocol):
    """Protocol that all format importers implement."""

    @property
    def name(self) -> str: ...

    @property
    def extensions(self) -> tuple[str, ...]: ...

    def validate(self, path: Path) -> ValidationResult:
        """Check a file without importing it. Never raises for bad input."""
        ...

    def import_document(self, path: Path, options: ImportOptions | None = None) -> ImportResult:
        """Read ``path`` into a detached tree fragment."""
        ...


def extension_of(path: Path) -> str:
    return Path(path).suffix.lower().lstrip(".")


def file_size(path: Path) -> int:
    return Path(path).stat().st_size


def decode_text(data: bytes, source: str) -> str:
    """UTF-8 (BOM optional) or BOM-marked UTF-16; anything else is unreadable."""
    try:
        if data.startswith(codecs.BOM_UTF8):
            return data[len(codecs.BOM_UTF8):].decode("utf-8")
        if data.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
            return data.decode("utf-16")
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise UnreadableFileError(source, f"not valid UTF-8 or UTF-16 text ({e.reason})") from e


def read_bytes(path: Path) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise UnreadableFileError(str(path), e.strerror or str(e)) from e


def size_warnings(size: int, limit: int = LARGE_FILE_BYTES) -> list[str]:
    if size > limit:
        return [f"Large file ({size // 1_000_000} MB) - import may take a while"]
    return []
