"""Word (.docx) import via python-docx."""

from __future__ import annotations

import logging
import re
import zipfile
from itertools import groupby
from pathlib import Path
from typing import Any

from manuscript.errors import UnreadableFileError, ValidationError
from manuscript.importers.base import (
    ImportOptions,
    ImportResult,
    ValidationResult,
    extension_of,
    file_size,
    size_warnings,
)
from manuscript.project.nodes import ProjectNode
from manuscript.project.tree import TreeFragment

logger = logging.getLogger(__name__)

DOCX_SIZE_WARNING = 50_000_000

_HEADING = re.compile(r"^Heading (\d)$")


class DocxImporter:
    """Imports Word documents as single Markdown documents."""

    name = "Word"
    extensions = ("docx",)

    def validate(self, path: Path) -> ValidationResult:
        path = Path(path)
        if not path.is_file():
            return ValidationResult.invalid(f"File does not exist at {path.name}")
        ext = extension_of(path)
        if ext == "doc":
            return ValidationResult.invalid(
                "Legacy Word .doc files are not supported; save the file as .docx"
            )
        if ext not in self.extensions:
            return ValidationResult.invalid("File is not a Word document (.docx)")

        size = file_size(path)
        warnings = size_warnings(size, DOCX_SIZE_WARNING)
        errors = []
        if size == 0:
            errors.append("File is empty")
        elif not zipfile.is_zipfile(path):
            errors.append("Could not read document: not a valid .docx package")

        return ValidationResult(
            is_valid=not errors,
            title=path.stem,
            file_size=size,
            warnings=warnings,
            errors=errors,
        )

    def import_document(self, path: Path, options: ImportOptions | None = None) -> ImportResult:
        from docx import Document
        from docx.opc.exceptions import PackageNotFoundError

        options = options or ImportOptions()
        path = Path(path)
        if extension_of(path) not in self.extensions:
            raise ValidationError(f"Unsupported file type for {self.name}: {path.name}")

        try:
            doc = Document(str(path))
        except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as e:
            raise UnreadableFileError(str(path), f"not a valid .docx package ({e})") from e

        warnings = []
        paragraphs = []
        for para in doc.paragraphs:
            text = self._paragraph_text(para, options.preserve_formatting)
            if text.strip():
                paragraphs.append(text)
        if doc.tables:
            warnings.append(f"{len(doc.tables)} table(s) were not imported")
        if doc.inline_shapes:
            warnings.append(f"{len(doc.inline_shapes)} image(s) were not imported")

        title = path.stem
        body = "\n\n".join(paragraphs)
        logger.debug("Imported %s: %d paragraphs", path.name, len(paragraphs))
        return ImportResult(
            title=title,
            fragment=TreeFragment.single(ProjectNode.document(title, body)),
            warnings=warnings,
        )

    def _paragraph_text(self, para: Any, preserve: bool) -> str:
        if not preserve:
            return para.text
        style = para.style.name if para.style is not None else ""
        if style == "Title":
            return f"# {para.text.strip()}"
        heading = _HEADING.match(style)
        if heading:
            return f"{'#' * int(heading.group(1))} {para.text.strip()}"

        pieces = []
        runs = ((run.text, bool(run.bold), bool(run.italic)) for run in para.runs)
        for (bold, italic), group in groupby(runs, key=lambda r: (r[1], r[2])):
            pieces.append(_emphasize("".join(text for text, _, _ in group), bold, italic))
        text = "".join(pieces)
        if style.startswith("List Bullet"):
            return f"- {text}"
        if style.startswith("List Number"):
            return f"1. {text}"
        return text


def _emphasize(text: str, bold: bool, italic: bool) -> str:
    core = text.strip()
    if not core or not (bold or italic):
        return text
    lead = text[: len(text) - len(text.lstrip())]
    trail = text[len(text.rstrip()):]
    marker = "***" if bold and italic else "**" if bold else "*"
    return f"{lead}{marker}{core}{marker}{trail}"
