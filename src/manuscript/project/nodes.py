"""Node-level types of the project tree: folders, documents, characters, locations."""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def new_id() -> str:
    return str(uuid.uuid4())


class NodeKind(str, Enum):
    FOLDER = "folder"
    DOCUMENT = "document"


class Gender(str, Enum):
    UNSPECIFIED = "unspecified"
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str | None) -> Gender:
        """Accept enum values as well as display names such as "Not Specified"."""
        if not value:
            return cls.UNSPECIFIED
        normalized = value.strip().lower()
        if normalized == "not specified":
            return cls.UNSPECIFIED
        try:
            return cls(normalized)
        except ValueError:
            return cls.UNSPECIFIED


@dataclass
class NodeMetadata:
    """Outline metadata shared by folders and documents."""

    label_id: str | None = None
    status_id: str | None = None
    keywords: set[str] = field(default_factory=set)
    synopsis: str = ""
    include_in_compile: bool = True

    @classmethod
    def field_names(cls) -> set[str]:
        return {f.name for f in fields(cls)}


@dataclass
class ProjectNode:
    """A folder or document in the project tree.

    Nodes live in a ``ProjectTree`` arena and refer to each other by id only:
    ``parent_id`` upwards, ``children`` (folders) downwards.
    """

    id: str
    kind: NodeKind
    title: str
    order: int = 0
    created: datetime = field(default_factory=utcnow)
    modified: datetime = field(default_factory=utcnow)
    metadata: NodeMetadata = field(default_factory=NodeMetadata)
    parent_id: str | None = None
    children: list[str] = field(default_factory=list)
    body: str = ""
    frontmatter: dict[str, str] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)
    folder_extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def folder(cls, title: str, *, id: str | None = None, **kwargs: Any) -> ProjectNode:
        return cls(id=id or new_id(), kind=NodeKind.FOLDER, title=title, **kwargs)

    @classmethod
    def document(
        cls, title: str, body: str = "", *, id: str | None = None, **kwargs: Any
    ) -> ProjectNode:
        return cls(id=id or new_id(), kind=NodeKind.DOCUMENT, title=title, body=body, **kwargs)

    @property
    def is_folder(self) -> bool:
        return self.kind is NodeKind.FOLDER

    @property
    def is_document(self) -> bool:
        return self.kind is NodeKind.DOCUMENT

    @property
    def word_count(self) -> int:
        return len(self.body.split()) if self.is_document else 0

    def touch(self) -> None:
        self.modified = utcnow()

    def clone(self) -> ProjectNode:
        return copy.deepcopy(self)


@dataclass
class Character:
    id: str
    name: str
    age: int | None = None
    gender: Gender = Gender.UNSPECIFIED
    description: str = ""
    notes: str = ""
    appears_in: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, name: str, **kwargs: Any) -> Character:
        return cls(id=new_id(), name=name, **kwargs)


@dataclass
class Location:
    id: str
    name: str
    description: str = ""
    latitude: float | None = None
    longitude: float | None = None
    appears_in: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, name: str, **kwargs: Any) -> Location:
        return cls(id=new_id(), name=name, **kwargs)


@dataclass
class Label:
    id: str
    name: str
    color: str = "#808080"


@dataclass
class Status:
    id: str
    name: str


DEFAULT_LABELS = [
    Label("label-chapter", "Chapter", "#4A90D9"),
    Label("label-scene", "Scene", "#7ED321"),
    Label("label-idea", "Idea", "#F5A623"),
    Label("label-revision", "Needs Revision", "#D0021B"),
]

DEFAULT_STATUSES = [
    Status("status-todo", "To Do"),
    Status("status-progress", "In Progress"),
    Status("status-draft", "First Draft"),
    Status("status-revised", "Revised"),
    Status("status-done", "Done"),
]
