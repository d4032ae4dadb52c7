"""Import normalizers: external files → detached tree fragments.

Importers are stateless, so independent files can be imported in parallel.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from pathlib import Path

from manuscript.errors import ValidationError
from manuscript.importers.base import (
    Importer,
    ImportOptions,
    ImportResult,
    ValidationResult,
    extension_of,
)
from manuscript.importers.docx import DocxImporter
from manuscript.importers.scrivener import ScrivenerImporter
from manuscript.importers.text import TextMarkdownImporter, flatten_markdown

logger = logging.getLogger(__name__)

IMPORTERS: list[Importer] = [TextMarkdownImporter(), DocxImporter(), ScrivenerImporter()]


def importer_for(path: Path) -> Importer | None:
    """Importer whose extensions include ``path``'s (case-insensitive), if any."""
    ext = extension_of(Path(path))
    return next((imp for imp in IMPORTERS if ext in imp.extensions), None)


def supported_extensions() -> list[str]:
    return sorted({ext for imp in IMPORTERS for ext in imp.extensions})


def import_file(path: Path, options: ImportOptions | None = None) -> ImportResult:
    importer = importer_for(path)
    if importer is None:
        raise ValidationError(
            f"Unsupported file type: {Path(path).name} "
            f"(supported: {', '.join('.' + e for e in supported_extensions())})"
        )
    return importer.import_document(Path(path), options)


async def import_files(
    paths: Sequence[Path], options: ImportOptions | None = None
) -> list[ImportResult | Exception]:
    """Import files concurrently on worker threads.

    Results come back in input order; a failed file yields its exception
    object in its slot instead of aborting the others.
    """
    tasks = [asyncio.to_thread(import_file, Path(p), options) for p in paths]
    results = await asyncio.gather(*tasks, return_exceptions=True)
    for path, result in zip(paths, results):
        if isinstance(result, BaseException) and not isinstance(result, Exception):
            raise result
        if isinstance(result, Exception):
            logger.warning("Import failed for %s: %s", path, result)
    return list(results)


__all__ = [
    "IMPORTERS",
    "DocxImporter",
    "ImportOptions",
    "ImportResult",
    "Importer",
    "ScrivenerImporter",
    "TextMarkdownImporter",
    "ValidationResult",
    "flatten_markdown",
    "import_file",
    "import_files",
    "importer_for",
    "supported_extensions",
]
