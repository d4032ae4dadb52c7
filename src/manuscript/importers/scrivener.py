"""Scrivener (.scriv bundle) import.

A bundle holds one ``.scrivx`` XML file describing the binder (the outline of
folders and texts, with labels, statuses and keywords) and one RTF file per
text item:

    Scrivener 3:  Files/Data/<UUID>/content.rtf, notes.rtf, synopsis.txt
    Scrivener 2:  Files/Docs/<ID>.rtf, <ID>_notes.rtf, <ID>_synopsis.txt

Any binder item may have content and children at the same time; such an item
becomes a folder whose first document carries the item's own text.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path

from manuscript.errors import UnreadableFileError, ValidationError
from manuscript.importers.base import ImportOptions, ImportResult, ValidationResult
from manuscript.importers.rtf import rtf_to_markdown
from manuscript.project.history import WritingHistory, WritingHistoryEntry
from manuscript.project.nodes import Label, NodeMetadata, ProjectNode, Status, utcnow
from manuscript.project.project import Project
from manuscript.project.tree import TreeFragment

logger = logging.getLogger(__name__)

LARGE_PROJECT_ITEMS = 500

_DATE_FORMATS = ("%Y-%m-%d %H:%M:%S %z", "%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S%z", "%Y-%m-%d")


class ScrivenerItemType(str, Enum):
    DRAFT_FOLDER = "DraftFolder"
    RESEARCH_FOLDER = "ResearchFolder"
    TRASH_FOLDER = "TrashFolder"
    FOLDER = "Folder"
    TEXT = "Text"
    PDF = "PDF"
    IMAGE = "Image"
    WEB_PAGE = "WebPage"
    ROOT = "Root"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: str | None) -> ScrivenerItemType:
        try:
            return cls(value or "")
        except ValueError:
            return cls.OTHER


MEDIA_TYPES = {ScrivenerItemType.PDF, ScrivenerItemType.IMAGE, ScrivenerItemType.WEB_PAGE}
FOLDER_TYPES = {
    ScrivenerItemType.FOLDER,
    ScrivenerItemType.DRAFT_FOLDER,
    ScrivenerItemType.RESEARCH_FOLDER,
}


@dataclass
class BinderItem:
    id: str
    type: ScrivenerItemType
    title: str
    uuid: str | None = None
    created: datetime | None = None
    modified: datetime | None = None
    synopsis: str | None = None
    label_id: int | None = None
    status_id: int | None = None
    include_in_compile: bool = True
    keyword_ids: list[int] = field(default_factory=list)
    children: list[BinderItem] = field(default_factory=list)


@dataclass
class ScrivenerProject:
    title: str
    items: list[BinderItem]
    labels: list[Label] = field(default_factory=list)
    statuses: list[Status] = field(default_factory=list)
    keywords: dict[int, str] = field(default_factory=dict)


@dataclass
class ScrivenerValidationResult(ValidationResult):
    item_count: int = 0
    version: int = 3


@dataclass
class ScrivenerProjectImport:
    project: Project
    warnings: list[str] = field(default_factory=list)
    skipped_items: int = 0
    imported_documents: int = 0
    imported_folders: int = 0


# ── .scrivx parsing ──────────────────────────────────────────


def _int(text: str | None) -> int | None:
    try:
        return int((text or "").strip())
    except ValueError:
        return None


def _float(text: str | None) -> float | None:
    try:
        return float((text or "").strip())
    except ValueError:
        return None


def parse_date(text: str | None) -> datetime | None:
    if not text:
        return None
    text = text.strip()
    for fmt in _DATE_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    return None


def color_to_hex(value: str | None) -> str:
    """Scrivener colors are ``"R G B"`` floats in 0..1."""
    parts = []
    for token in (value or "").split():
        try:
            parts.append(float(token))
        except ValueError:
            return "#808080"
    if len(parts) < 3:
        return "#808080"
    r, g, b = (max(0, min(255, round(c * 255))) for c in parts[:3])
    return f"#{r:02X}{g:02X}{b:02X}"


def _parse_item(el: ET.Element) -> BinderItem:
    meta = el.find("MetaData")
    include = "yes"
    label_id = status_id = None
    if meta is not None:
        include = (meta.findtext("IncludeInCompile") or "yes").strip().lower()
        label_id = _int(meta.findtext("LabelID"))
        status_id = _int(meta.findtext("StatusID"))
    uuid = el.get("UUID")
    synopsis = el.findtext("Synopsis")
    return BinderItem(
        id=el.get("ID") or uuid or "",
        uuid=uuid,
        type=ScrivenerItemType.parse(el.get("Type")),
        title=(el.findtext("Title") or "").strip() or "Untitled",
        created=parse_date(el.get("Created")),
        modified=parse_date(el.get("Modified")),
        synopsis=synopsis.strip() if synopsis else None,
        label_id=label_id,
        status_id=status_id,
        include_in_compile=include in ("yes", "true"),
        keyword_ids=[k for k in (_int(e.text) for e in el.iterfind("Keywords/KeywordID")) if k is not None],
        children=[_parse_item(child) for child in el.iterfind("Children/BinderItem")],
    )


def parse_scrivx(path: Path) -> ScrivenerProject:
    try:
        root = ET.parse(path).getroot()
    except (ET.ParseError, OSError) as e:
        raise UnreadableFileError(str(path), f"could not parse project file: {e}") from e

    labels = []
    for el in root.iterfind(".//LabelSettings//Label"):
        label_id = _int(el.get("ID"))
        if label_id is not None and label_id >= 0:
            labels.append(Label(f"scriv-label-{label_id}", (el.text or "").strip(), color_to_hex(el.get("Color"))))
    statuses = []
    for el in root.iterfind(".//StatusSettings//Status"):
        status_id = _int(el.get("ID"))
        if status_id is not None and status_id >= 0:
            statuses.append(Status(f"scriv-status-{status_id}", (el.text or "").strip()))
    keywords = {}
    for el in root.iterfind(".//Keyword"):
        keyword_id = _int(el.get("ID"))
        name = (el.findtext("Title") or el.text or "").strip()
        if keyword_id is not None and name:
            keywords[keyword_id] = name

    binder = root.find("Binder")
    items = [_parse_item(el) for el in binder.iterfind("BinderItem")] if binder is not None else []
    title = (root.findtext(".//ProjectTitle") or "").strip()
    return ScrivenerProject(title=title, items=items, labels=labels, statuses=statuses, keywords=keywords)


def parse_writing_history(path: Path) -> WritingHistory:
    """``Files/writing.history``: ``<Day Date="2025-01-15" WordCount="1500" .../>`` entries."""
    try:
        root = ET.parse(path).getroot()
    except (ET.ParseError, OSError) as e:
        raise UnreadableFileError(str(path), f"could not parse writing history: {e}") from e
    entries = []
    for el in root.iter("Day"):
        try:
            day = date.fromisoformat((el.get("Date") or "")[:10])
        except ValueError:
            continue
        entries.append(WritingHistoryEntry(
            day=day,
            words_written=_int(el.get("WordCount") or el.get("Words")) or 0,
            draft_word_count=_int(el.get("DraftWordCount") or el.get("TotalWords")),
            session_seconds=_float(el.get("Duration") or el.get("SessionDuration")),
        ))
    return WritingHistory(entries)


def count_items(items: list[BinderItem]) -> int:
    return sum(1 + count_items(item.children) for item in items)


def has_media(items: list[BinderItem]) -> bool:
    return any(item.type in MEDIA_TYPES or has_media(item.children) for item in items)


# ── Binder → tree ────────────────────────────────────────────


AddNode = Callable[[ProjectNode, str], ProjectNode]


class _Conversion:
    """One pass over a binder, adding nodes through ``add(node, parent_id)``."""

    def __init__(
        self,
        bundle: Path,
        version: int,
        options: ImportOptions,
        scriv: ScrivenerProject,
        add: AddNode,
    ) -> None:
        self.bundle = bundle
        self.version = version
        self.options = options
        self.add = add
        self.label_ids = {lab.id for lab in scriv.labels}
        self.status_ids = {st.id for st in scriv.statuses}
        self.keywords = scriv.keywords
        self.warnings: list[str] = []
        self.skipped = 0
        self.documents = 0
        self.folders = 0

    def fill(self, item: BinderItem, folder_id: str) -> None:
        """Put ``item``'s own text and its children into an existing folder."""
        if self._has_content(item):
            self._document(item, folder_id)
        for child in item.children:
            self.child(child, folder_id)

    def child(self, item: BinderItem, folder_id: str) -> None:
        kind = item.type
        if kind in MEDIA_TYPES:
            self.warnings.append(f"Media item skipped (not yet supported): {item.title}")
            self.skipped += 1
        elif kind is ScrivenerItemType.TRASH_FOLDER:
            if self.options.import_trash:
                self.folder(item, folder_id)
            else:
                self.skipped += count_items([item])
        elif kind is ScrivenerItemType.TEXT:
            if item.children:
                self.folder(item, folder_id)
            else:
                self._document(item, folder_id)
        elif kind in FOLDER_TYPES:
            if item.children:
                self.folder(item, folder_id)
            elif self._has_content(item):
                self._document(item, folder_id)
            else:
                self.folder(item, folder_id)
        else:
            self.folder(item, folder_id)

    def folder(self, item: BinderItem, parent_id: str) -> ProjectNode:
        created = item.created or utcnow()
        node = self.add(
            ProjectNode.folder(
                item.title,
                created=created,
                modified=item.modified or created,
                metadata=self._metadata(item, None),
                extra={"scrivenerId": item.id},
            ),
            parent_id,
        )
        self.folders += 1
        self.fill(item, node.id)
        return node

    def _files(self, item: BinderItem) -> tuple[Path, Path, Path]:
        if self.version == 3 and item.uuid:
            base = self.bundle / "Files" / "Data" / item.uuid
            return base / "content.rtf", base / "notes.rtf", base / "synopsis.txt"
        base = self.bundle / "Files" / "Docs"
        return base / f"{item.id}.rtf", base / f"{item.id}_notes.rtf", base / f"{item.id}_synopsis.txt"

    def _has_content(self, item: BinderItem) -> bool:
        return self._files(item)[0].is_file()

    def _read_rtf(self, path: Path, item: BinderItem, what: str) -> str:
        if not path.is_file():
            return ""
        try:
            return rtf_to_markdown(
                path.read_bytes(), str(path), markdown=self.options.preserve_formatting
            )
        except (OSError, UnreadableFileError) as e:
            self.warnings.append(f"Could not convert RTF {what} of '{item.title}': {e}")
            return ""

    def _document(self, item: BinderItem, folder_id: str) -> ProjectNode:
        content_path, notes_path, synopsis_path = self._files(item)
        body = self._read_rtf(content_path, item, "content")
        notes = self._read_rtf(notes_path, item, "notes")
        synopsis = item.synopsis or ""
        if synopsis_path.is_file():
            try:
                synopsis = synopsis_path.read_text(encoding="utf-8").strip()
            except (OSError, UnicodeDecodeError) as e:
                logger.debug("Using binder synopsis for %s: %s", item.title, e)

        created = item.created or utcnow()
        node = self.add(
            ProjectNode.document(
                item.title,
                body,
                created=created,
                modified=item.modified or created,
                metadata=self._metadata(item, synopsis),
                frontmatter={"notes": notes} if notes else {},
                extra={"scrivenerId": item.id},
            ),
            folder_id,
        )
        self.documents += 1
        return node

    def _metadata(self, item: BinderItem, synopsis: str | None) -> NodeMetadata:
        label = f"scriv-label-{item.label_id}" if item.label_id is not None else None
        status = f"scriv-status-{item.status_id}" if item.status_id is not None else None
        return NodeMetadata(
            label_id=label if label in self.label_ids else None,
            status_id=status if status in self.status_ids else None,
            keywords={self.keywords[k] for k in item.keyword_ids if k in self.keywords},
            synopsis=synopsis if synopsis is not None else (item.synopsis or ""),
            include_in_compile=item.include_in_compile,
        )


# ── Importer ─────────────────────────────────────────────────


class ScrivenerImporter:
    """Imports Scrivener 2 and 3 project bundles."""

    name = "Scrivener"
    extensions = ("scriv",)

    def find_scrivx(self, bundle: Path) -> Path | None:
        if not bundle.is_dir():
            return None
        return next((p for p in sorted(bundle.iterdir()) if p.suffix.lower() == ".scrivx"), None)

    def detect_version(self, bundle: Path) -> int:
        return 3 if (bundle / "Files" / "Data").is_dir() else 2

    def validate(self, path: Path) -> ScrivenerValidationResult:
        bundle = Path(path)
        if not bundle.exists():
            return ScrivenerValidationResult(False, errors=[f"File does not exist at {bundle}"])
        if not bundle.is_dir():
            return ScrivenerValidationResult(
                False, errors=["The selected file is not a Scrivener project bundle"]
            )
        scrivx = self.find_scrivx(bundle)
        if scrivx is None:
            return ScrivenerValidationResult(
                False, errors=["Missing .scrivx file - this may not be a valid Scrivener project"]
            )

        version = self.detect_version(bundle)
        warnings, errors = [], []
        if not (bundle / "Files" / "Data").is_dir() and not (bundle / "Files" / "Docs").is_dir():
            warnings.append("No content directory found - documents may be empty")

        title, item_count = "", 0
        try:
            scriv = parse_scrivx(scrivx)
        except UnreadableFileError as e:
            errors.append(f"Could not parse project file: {e.reason}")
        else:
            title = scriv.title
            item_count = count_items(scriv.items)
            if item_count > LARGE_PROJECT_ITEMS:
                warnings.append(f"Large project ({item_count} items) - import may take a while")
            if has_media(scriv.items):
                warnings.append("Some media files (images, PDFs) will be skipped")

        return ScrivenerValidationResult(
            is_valid=not errors,
            title=self._title(title, bundle),
            file_size=scrivx.stat().st_size,
            warnings=warnings,
            errors=errors,
            item_count=item_count,
            version=version,
        )

    def import_document(self, path: Path, options: ImportOptions | None = None) -> ImportResult:
        """The whole binder as one folder fragment, for adding into an existing project."""
        options = options or ImportOptions()
        bundle, scriv = self._open(Path(path))
        title = self._title(scriv.title, bundle)
        fragment = TreeFragment(root=ProjectNode.folder(title))
        conversion = _Conversion(bundle, self.detect_version(bundle), options, scriv, fragment.add)
        for item in scriv.items:
            if item.type is ScrivenerItemType.RESEARCH_FOLDER and not options.import_research:
                conversion.skipped += count_items([item])
                continue
            conversion.child(item, fragment.root.id)
        logger.info(
            "Imported Scrivener binder '%s': %d documents, %d folders, %d skipped",
            title, conversion.documents, conversion.folders, conversion.skipped,
        )
        return ImportResult(title=title, fragment=fragment, warnings=conversion.warnings)

    def import_project(
        self, path: Path, options: ImportOptions | None = None
    ) -> ScrivenerProjectImport:
        """A complete new project: draft → draft root, research → research root."""
        options = options or ImportOptions()
        bundle, scriv = self._open(Path(path))
        project = Project(title=self._title(scriv.title, bundle))
        if scriv.labels:
            project.labels = scriv.labels
        if scriv.statuses:
            project.statuses = scriv.statuses

        tree = project.tree
        conversion = _Conversion(
            bundle, self.detect_version(bundle), options, scriv,
            lambda node, parent_id: tree.insert(node, parent_id),
        )
        for item in scriv.items:
            if item.type is ScrivenerItemType.DRAFT_FOLDER:
                conversion.fill(item, project.draft.id)
            elif item.type is ScrivenerItemType.RESEARCH_FOLDER:
                if options.import_research:
                    conversion.fill(item, project.research.id)
                else:
                    conversion.skipped += count_items([item])
            elif item.type is ScrivenerItemType.TRASH_FOLDER:
                if options.import_trash:
                    conversion.folder(item, project.notes.id)
                else:
                    conversion.skipped += count_items([item])
            else:
                conversion.child(item, project.draft.id)

        history_path = bundle / "Files" / "writing.history"
        if history_path.is_file():
            try:
                project.writing_history = parse_writing_history(history_path)
            except UnreadableFileError as e:
                conversion.warnings.append(f"Could not import writing history: {e.reason}")

        logger.info(
            "Imported Scrivener project '%s': %d documents, %d folders, %d skipped",
            project.title, conversion.documents, conversion.folders, conversion.skipped,
        )
        return ScrivenerProjectImport(
            project=project,
            warnings=conversion.warnings,
            skipped_items=conversion.skipped,
            imported_documents=conversion.documents,
            imported_folders=conversion.folders,
        )

    def _open(self, bundle: Path) -> tuple[Path, ScrivenerProject]:
        if not bundle.is_dir():
            raise ValidationError(f"Not a Scrivener project bundle: {bundle}")
        scrivx = self.find_scrivx(bundle)
        if scrivx is None:
            raise ValidationError(f"Missing .scrivx file in {bundle}")
        return bundle, parse_scrivx(scrivx)

    def _title(self, title: str, bundle: Path) -> str:
        if not title or title == "Untitled Project":
            return bundle.stem
        return title
