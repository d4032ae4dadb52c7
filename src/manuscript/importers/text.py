"""Plain text and Markdown import."""

from __future__ import annotations

import logging
import re
from pathlib import Path

from manuscript.errors import UnreadableFileError, ValidationError
from manuscript.importers.base import (
    ImportOptions,
    ImportResult,
    ValidationResult,
    decode_text,
    extension_of,
    file_size,
    read_bytes,
    size_warnings,
)
from manuscript.project.nodes import ProjectNode
from manuscript.project.tree import TreeFragment

logger = logging.getLogger(__name__)

MARKDOWN_EXTENSIONS = ("md", "markdown")
TEXT_EXTENSIONS = ("txt",)

# Code spans and fenced blocks are left alone when flattening.
_CODE = re.compile(r"(```.*?```|`[^`\n]*`)", re.DOTALL)

# Outermost markers first so ``***x***`` is not read as ``*`` + ``**x**`` + ``*``.
_EMPHASIS = [
    re.compile(r"(?<![\\*])\*\*\*(?=[^\s*])(.+?)(?<=[^\s*\\])\*\*\*(?!\*)"),
    re.compile(r"(?<![\\\w])___(?=[^\s_])(.+?)(?<=[^\s_\\])___(?!\w)"),
    re.compile(r"(?<![\\*])\*\*(?=[^\s*])(.+?)(?<=[^\s*\\])\*\*(?!\*)"),
    re.compile(r"(?<![\\\w])__(?=[^\s_])(.+?)(?<=[^\s_\\])__(?!\w)"),
    re.compile(r"(?<![\\*])\*(?=[^\s*])(.+?)(?<=[^\s*\\])\*(?!\*)"),
    re.compile(r"(?<![\\\w])_(?=[^\s_])(.+?)(?<=[^\s_\\])_(?!\w)"),
    re.compile(r"(?<![\\~])~~(?=[^\s~])(.+?)(?<=[^\s~\\])~~(?!~)"),
]


def flatten_markdown(text: str) -> str:
    """Strip emphasis markers, keeping the emphasized text.

    Underscores inside words (``snake_case``) and asterisks that cannot open
    or close emphasis (``2 * 3``) are left untouched.
    """
    parts = _CODE.split(text)
    for i in range(0, len(parts), 2):
        segment = parts[i]
        for pattern in _EMPHASIS:
            segment = pattern.sub(r"\1", segment)
        parts[i] = segment
    return "".join(parts)


class TextMarkdownImporter:
    """Imports ``.md``, ``.markdown`` and ``.txt`` files as single documents."""

    name = "Text & Markdown"
    extensions = MARKDOWN_EXTENSIONS + TEXT_EXTENSIONS

    def validate(self, path: Path) -> ValidationResult:
        path = Path(path)
        if not path.is_file():
            return ValidationResult.invalid(f"File does not exist at {path.name}")
        if extension_of(path) not in self.extensions:
            return ValidationResult.invalid(
                "File is not a supported text or markdown document (.md, .markdown, .txt)"
            )

        size = file_size(path)
        warnings = size_warnings(size)
        errors = []
        if size == 0:
            errors.append("File is empty")
        try:
            decode_text(read_bytes(path), str(path))
        except UnreadableFileError as e:
            errors.append(f"Could not read text content: {e.reason}")

        return ValidationResult(
            is_valid=not errors,
            title=path.stem,
            file_size=size,
            warnings=warnings,
            errors=errors,
        )

    def import_document(self, path: Path, options: ImportOptions | None = None) -> ImportResult:
        options = options or ImportOptions()
        path = Path(path)
        ext = extension_of(path)
        if ext not in self.extensions:
            raise ValidationError(f"Unsupported file type for {self.name}: {path.name}")

        text = decode_text(read_bytes(path), str(path))
        warnings = []
        if ext in TEXT_EXTENSIONS or options.preserve_formatting:
            body = text
        else:
            body = flatten_markdown(text)
        if ext in MARKDOWN_EXTENSIONS and options.preserve_formatting:
            warnings.append("Markdown syntax is preserved as editable text content.")

        title = path.stem
        logger.debug("Imported %s (%d chars)", path.name, len(body))
        return ImportResult(
            title=title,
            fragment=TreeFragment.single(ProjectNode.document(title, body)),
            warnings=warnings,
        )
