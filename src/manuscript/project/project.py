"""Project aggregate: metadata, the node tree, characters, locations, settings."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from manuscript.project.history import WritingHistory
from manuscript.project.nodes import (
    DEFAULT_LABELS,
    DEFAULT_STATUSES,
    Character,
    Label,
    Location,
    ProjectNode,
    Status,
    utcnow,
)
from manuscript.project.tree import ProjectTree

logger = logging.getLogger(__name__)

FORMAT_VERSION = "1.0"

DEFAULT_SETTINGS: dict[str, Any] = {
    "defaultFont": "Georgia",
    "defaultFontSize": 14,
    "editorTheme": "light",
    "spellCheck": True,
    "autoSave": True,
    "autosaveInterval": 30,
    "snapshotInterval": 300,
}


def default_settings() -> dict[str, Any]:
    return dict(DEFAULT_SETTINGS)


@dataclass
class Project:
    title: str
    author: str = ""
    version: str = FORMAT_VERSION
    created: datetime = field(default_factory=utcnow)
    modified: datetime = field(default_factory=utcnow)
    tree: ProjectTree = field(default_factory=ProjectTree.new)
    characters: list[Character] = field(default_factory=list)
    locations: list[Location] = field(default_factory=list)
    labels: list[Label] = field(default_factory=lambda: copy.deepcopy(DEFAULT_LABELS))
    statuses: list[Status] = field(default_factory=lambda: copy.deepcopy(DEFAULT_STATUSES))
    settings: dict[str, Any] = field(default_factory=default_settings)
    writing_history: WritingHistory = field(default_factory=WritingHistory)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def draft(self) -> ProjectNode:
        return self.tree.root("draft")

    @property
    def notes(self) -> ProjectNode:
        return self.tree.root("notes")

    @property
    def research(self) -> ProjectNode:
        return self.tree.root("research")

    def copy(self) -> Project:
        """Point-in-time deep copy for background encode/snapshot work."""
        return copy.deepcopy(self)

    # ── Characters & locations ───────────────────────────────

    def add_character(self, character: Character) -> Character:
        self.characters.append(character)
        return character

    def add_location(self, location: Location) -> Location:
        self.locations.append(location)
        return location

    def find_character(self, character_id: str) -> Character | None:
        return next((c for c in self.characters if c.id == character_id), None)

    def find_location(self, location_id: str) -> Location | None:
        return next((loc for loc in self.locations if loc.id == location_id), None)

    def resolve_appearances(self, character_id: str) -> list[ProjectNode]:
        """Documents a character appears in.

        Ids of documents that no longer exist are dropped from the character's
        list here, at resolution time, rather than when the document is removed.
        """
        character = self.find_character(character_id)
        if character is None:
            return []
        resolved = []
        live_ids = []
        for doc_id in character.appears_in:
            node = self.tree.find(doc_id)
            if node is not None and node.is_document:
                resolved.append(node)
                live_ids.append(doc_id)
        if len(live_ids) != len(character.appears_in):
            logger.debug(
                "Pruned %d dangling appearance(s) from character %s",
                len(character.appears_in) - len(live_ids),
                character.name,
            )
            character.appears_in = live_ids
        return resolved

    def characters_in(self, document_id: str) -> list[Character]:
        return [c for c in self.characters if document_id in c.appears_in]

    # ── Stats ────────────────────────────────────────────────

    @property
    def word_count(self) -> int:
        return self.tree.word_count()

    @property
    def draft_word_count(self) -> int:
        return sum(n.word_count for n in self.tree.walk(self.draft.id) if n.is_document)
