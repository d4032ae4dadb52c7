"""Manifest codec: ``project.json`` / ``folder.json`` <-> in-memory Project.

Encoding is a pure function of the model. Decoding is best-effort: every
manifest is parsed independently, broken or dangling entries are collected as
errors and left out of the tree, and the rest of the project still loads.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Any

from manuscript.errors import (
    DanglingReferenceError,
    DuplicateIdError,
    ManifestError,
    ManuscriptError,
    NewerVersionWarning,
    UpgradeAvailable,
)
from manuscript.format.layout import (
    FOLDER_FILE,
    PROJECT_FILE,
    derived_paths,
    entry_name,
    manifest_path,
    root_dir,
)
from manuscript.project.history import WritingHistory
from manuscript.project.nodes import (
    Character,
    Gender,
    Label,
    Location,
    NodeKind,
    NodeMetadata,
    ProjectNode,
    Status,
    new_id,
    utcnow,
)
from manuscript.project.project import FORMAT_VERSION, Project, default_settings
from manuscript.project.tree import ROOT_NAMES, ROOT_TITLES, ProjectTree

logger = logging.getLogger(__name__)

PROJECT_KEYS = (
    "version", "title", "author", "created", "modified", "roots", "characters",
    "locations", "labels", "statuses", "settings", "writingHistory",
)
FOLDER_KEYS = ("id", "title", "created", "modified", "items")
ITEM_KEYS = (
    "type", "id", "title", "order", "created", "modified", "label", "status",
    "keywords", "synopsis", "includeInCompile", "file", "path",
)
CHARACTER_KEYS = ("id", "name", "age", "gender", "description", "notes", "appearsIn")
LOCATION_KEYS = ("id", "name", "description", "latitude", "longitude", "appearsIn")

ReadJson = Callable[[str], Any]
Exists = Callable[[str], bool]


@dataclass
class DecodeResult:
    """Best-effort project plus everything that went wrong on the way."""

    project: Project
    errors: list[ManuscriptError] = field(default_factory=list)
    advisories: list[Warning] = field(default_factory=list)
    locations: dict[str, PurePosixPath] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


# ── Scalars ──────────────────────────────────────────────────


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime:
    if not isinstance(value, str):
        raise ValueError(f"not a timestamp: {value!r}")
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def version_tuple(version: str) -> tuple[int, ...]:
    return tuple(int(part) for part in re.findall(r"\d+", version))


def _extra(data: dict[str, Any], known: tuple[str, ...]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if k not in known}


def dumps(payload: Any) -> str:
    """Byte-stable JSON text for a manifest payload."""
    return json.dumps(payload, indent=2, ensure_ascii=False) + "\n"


# ── Codec ────────────────────────────────────────────────────


class ManifestCodec:
    """Stateless; one instance can encode and decode any number of projects."""

    # ── Encode ───────────────────────────────────────────────

    def encode(self, project: Project) -> dict[str, dict[str, Any]]:
        """Relative path → JSON payload for project.json and every folder.json."""
        tree = project.tree
        paths = derived_paths(tree)
        payloads: dict[str, dict[str, Any]] = {PROJECT_FILE: self._encode_project(project)}
        for node in tree.walk():
            if node.is_folder:
                payloads[str(manifest_path(paths[node.id]))] = self._encode_folder(tree, node)
        return payloads

    def _encode_project(self, project: Project) -> dict[str, Any]:
        tree = project.tree
        roots = {
            name: {
                "id": root_id,
                "title": tree.get(root_id).title,
                "path": str(root_dir(name)),
            }
            for name, root_id in ((n, tree.roots[n]) for n in _root_order(tree))
        }
        data: dict[str, Any] = {
            "version": project.version,
            "title": project.title,
            "author": project.author,
            "created": format_timestamp(project.created),
            "modified": format_timestamp(project.modified),
            "roots": roots,
            "characters": [_encode_character(c) for c in project.characters],
            "locations": [_encode_location(loc) for loc in project.locations],
            "labels": [
                {"id": label.id, "name": label.name, "color": label.color}
                for label in project.labels
            ],
            "statuses": [{"id": s.id, "name": s.name} for s in project.statuses],
            "settings": dict(project.settings),
            "writingHistory": project.writing_history.to_list(),
        }
        data.update(_extra(project.extra, PROJECT_KEYS))
        return data

    def _encode_folder(self, tree: ProjectTree, folder: ProjectNode) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": folder.id,
            "title": folder.title,
            "created": format_timestamp(folder.created),
            "modified": format_timestamp(folder.modified),
            "items": [self._encode_item(child) for child in tree.children(folder.id)],
        }
        data.update(_extra(folder.folder_extra, FOLDER_KEYS))
        return data

    def _encode_item(self, node: ProjectNode) -> dict[str, Any]:
        meta = node.metadata
        data: dict[str, Any] = {
            "type": node.kind.value,
            "id": node.id,
            "title": node.title,
            "order": node.order,
            "created": format_timestamp(node.created),
            "modified": format_timestamp(node.modified),
            "label": meta.label_id,
            "status": meta.status_id,
            "keywords": sorted(meta.keywords),
            "synopsis": meta.synopsis,
            "includeInCompile": meta.include_in_compile,
        }
        data["file" if node.is_document else "path"] = entry_name(node)
        data.update(_extra(node.extra, ITEM_KEYS))
        return data

    # ── Decode ───────────────────────────────────────────────

    def decode(self, read_json: ReadJson, exists: Exists) -> DecodeResult:
        """Rebuild a project from manifests.

        ``read_json(relpath)`` returns parsed JSON (raising ``OSError`` or
        ``ValueError`` on failure); ``exists(relpath)`` checks a file or
        directory. A missing or unparsable ``project.json`` raises
        ``ManifestError``; everything below it degrades into ``errors``.
        """
        try:
            data = read_json(PROJECT_FILE)
        except (OSError, ValueError) as e:
            raise ManifestError(f"Cannot read {PROJECT_FILE}: {e}") from e
        if not isinstance(data, dict):
            raise ManifestError(f"{PROJECT_FILE} must contain a JSON object")

        result = DecodeResult(project=Project(title="", tree=ProjectTree()))
        project = self._decode_project_fields(data, result)
        result.project = project
        self._check_version(project.version, result)

        roots = data.get("roots") if isinstance(data.get("roots"), dict) else {}
        seen: set[str] = set()
        for name in [*ROOT_NAMES, *sorted(k for k in roots if k not in ROOT_NAMES)]:
            entry = roots.get(name)
            if entry is None and name not in ROOT_NAMES:
                continue
            self._decode_root(name, entry, read_json, exists, result, seen)

        logger.info(
            "Decoded project '%s': %d nodes, %d error(s)",
            project.title, len(project.tree), len(result.errors),
        )
        return result

    def _decode_project_fields(self, data: dict[str, Any], result: DecodeResult) -> Project:
        project = Project(
            title=str(data.get("title", "")),
            author=str(data.get("author", "") or ""),
            version=str(data.get("version", FORMAT_VERSION)),
            tree=ProjectTree(),
        )
        project.created = self._timestamp(data, "created", PROJECT_FILE, result)
        project.modified = self._timestamp(data, "modified", PROJECT_FILE, result)

        project.characters = self._decode_list(
            data, "characters", _decode_character, result
        )
        project.locations = self._decode_list(data, "locations", _decode_location, result)
        if "labels" in data:
            project.labels = self._decode_list(
                data, "labels",
                lambda d: Label(str(d["id"]), str(d["name"]), str(d.get("color", "#808080"))),
                result,
            )
        if "statuses" in data:
            project.statuses = self._decode_list(
                data, "statuses", lambda d: Status(str(d["id"]), str(d["name"])), result
            )

        settings = data.get("settings")
        project.settings = {**default_settings(), **(settings if isinstance(settings, dict) else {})}
        try:
            project.writing_history = WritingHistory.from_list(data.get("writingHistory"))
        except (KeyError, TypeError, ValueError) as e:
            result.errors.append(ManifestError(f"{PROJECT_FILE}: bad writingHistory: {e}"))
        project.extra = _extra(data, PROJECT_KEYS)
        return project

    def _decode_list(
        self,
        data: dict[str, Any],
        key: str,
        decode_one: Callable[[dict[str, Any]], Any],
        result: DecodeResult,
    ) -> list[Any]:
        items = data.get(key) or []
        if not isinstance(items, list):
            result.errors.append(ManifestError(f"{PROJECT_FILE}: '{key}' must be a list"))
            return []
        decoded = []
        for index, item in enumerate(items):
            try:
                if not isinstance(item, dict):
                    raise TypeError("entry is not an object")
                decoded.append(decode_one(item))
            except (KeyError, TypeError, ValueError) as e:
                result.errors.append(ManifestError(f"{PROJECT_FILE}: {key}[{index}]: {e}"))
        return decoded

    def _check_version(self, version: str, result: DecodeResult) -> None:
        found, known = version_tuple(version), version_tuple(FORMAT_VERSION)
        if found > known:
            result.advisories.append(NewerVersionWarning(
                f"Project format {version} is newer than supported {FORMAT_VERSION}"
            ))
        elif found < known:
            result.advisories.append(UpgradeAvailable(
                f"Project format {version} can be upgraded to {FORMAT_VERSION}"
            ))

    def _timestamp(
        self, data: dict[str, Any], key: str, source: str, result: DecodeResult
    ) -> datetime:
        if key not in data:
            return utcnow()
        try:
            return parse_timestamp(data[key])
        except ValueError as e:
            result.errors.append(ManifestError(f"{source}: bad '{key}': {e}"))
            return utcnow()

    def _decode_root(
        self,
        name: str,
        entry: Any,
        read_json: ReadJson,
        exists: Exists,
        result: DecodeResult,
        seen: set[str],
    ) -> None:
        tree = result.project.tree
        if not isinstance(entry, dict) or "id" not in entry:
            result.errors.append(ManifestError(f"{PROJECT_FILE}: root '{name}' is missing"))
            tree.add_root(name, ProjectNode.folder(ROOT_TITLES.get(name, name.title())))
            return

        root_id = str(entry["id"])
        if root_id in seen:
            result.errors.append(DuplicateIdError(root_id))
            root_id = new_id()
        seen.add(root_id)
        node = ProjectNode.folder(
            str(entry.get("title") or ROOT_TITLES.get(name, name.title())), id=root_id
        )
        tree.add_root(name, node)
        path = PurePosixPath(str(entry.get("path") or root_dir(name)))
        result.locations[root_id] = path
        if not exists(str(path)):
            result.errors.append(DanglingReferenceError(str(path), root_id))
            return
        self._decode_folder(node, path, read_json, exists, result, seen)

    def _decode_folder(
        self,
        folder: ProjectNode,
        folder_path: PurePosixPath,
        read_json: ReadJson,
        exists: Exists,
        result: DecodeResult,
        seen: set[str],
    ) -> None:
        source = str(folder_path / FOLDER_FILE)
        try:
            data = read_json(source)
        except (OSError, ValueError) as e:
            result.errors.append(ManifestError(f"Cannot read {source}: {e}"))
            return
        if not isinstance(data, dict):
            result.errors.append(ManifestError(f"{source} must contain a JSON object"))
            return

        if "id" in data and str(data["id"]) != folder.id:
            logger.warning("%s declares id %s, parent entry says %s", source, data["id"], folder.id)
        if folder.parent_id is None:
            folder.created = self._timestamp(data, "created", source, result)
            folder.modified = self._timestamp(data, "modified", source, result)
        folder.folder_extra = _extra(data, FOLDER_KEYS)

        items = data.get("items") or []
        if not isinstance(items, list):
            result.errors.append(ManifestError(f"{source}: 'items' must be a list"))
            return
        indexed = [(i, item) for i, item in enumerate(items)]
        indexed.sort(key=lambda pair: _order_key(pair[1], pair[0]))

        tree = result.project.tree
        for index, item in indexed:
            node = self._decode_item(item, index, source, result)
            if node is None:
                continue
            if node.id in seen:
                result.errors.append(DuplicateIdError(node.id))
                continue
            key = "file" if node.is_document else "path"
            rel = folder_path / str(item.get(key) or entry_name(node))
            if not exists(str(rel)):
                result.errors.append(DanglingReferenceError(str(rel), node.id))
                continue
            seen.add(node.id)
            tree.attach(node, folder.id)
            result.locations[node.id] = rel
            if node.is_folder:
                self._decode_folder(node, rel, read_json, exists, result, seen)

    def _decode_item(
        self, item: Any, index: int, source: str, result: DecodeResult
    ) -> ProjectNode | None:
        if not isinstance(item, dict) or "id" not in item:
            result.errors.append(ManifestError(f"{source}: items[{index}] has no id"))
            return None
        try:
            kind = NodeKind(item.get("type", NodeKind.DOCUMENT.value))
        except ValueError:
            result.errors.append(
                ManifestError(f"{source}: items[{index}] has unknown type {item.get('type')!r}")
            )
            return None

        keywords = item.get("keywords") or []
        metadata = NodeMetadata(
            label_id=item.get("label"),
            status_id=item.get("status"),
            keywords={str(k) for k in keywords} if isinstance(keywords, list) else set(),
            synopsis=str(item.get("synopsis") or ""),
            include_in_compile=bool(item.get("includeInCompile", True)),
        )
        return ProjectNode(
            id=str(item["id"]),
            kind=kind,
            title=str(item.get("title", "")),
            created=self._timestamp(item, "created", source, result),
            modified=self._timestamp(item, "modified", source, result),
            metadata=metadata,
            extra=_extra(item, ITEM_KEYS),
        )


# ── Helpers ──────────────────────────────────────────────────


def _root_order(tree: ProjectTree) -> list[str]:
    return [n for n in ROOT_NAMES if n in tree.roots] + sorted(
        n for n in tree.roots if n not in ROOT_NAMES
    )


def _order_key(item: Any, position: int) -> int:
    if isinstance(item, dict) and isinstance(item.get("order"), int):
        return item["order"]
    return position


def _encode_character(character: Character) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": character.id,
        "name": character.name,
        "age": character.age,
        "gender": character.gender.value,
        "description": character.description,
        "notes": character.notes,
        "appearsIn": list(character.appears_in),
    }
    data.update(_extra(character.extra, CHARACTER_KEYS))
    return data


def _decode_character(data: dict[str, Any]) -> Character:
    age = data.get("age")
    return Character(
        id=str(data["id"]),
        name=str(data["name"]),
        age=int(age) if age is not None else None,
        gender=Gender.parse(data.get("gender")),
        description=str(data.get("description") or ""),
        notes=str(data.get("notes") or ""),
        appears_in=[str(i) for i in data.get("appearsIn") or []],
        extra=_extra(data, CHARACTER_KEYS),
    )


def _encode_location(location: Location) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": location.id,
        "name": location.name,
        "description": location.description,
        "latitude": location.latitude,
        "longitude": location.longitude,
        "appearsIn": list(location.appears_in),
    }
    data.update(_extra(location.extra, LOCATION_KEYS))
    return data


def _decode_location(data: dict[str, Any]) -> Location:
    lat, lon = data.get("latitude"), data.get("longitude")
    return Location(
        id=str(data["id"]),
        name=str(data["name"]),
        description=str(data.get("description") or ""),
        latitude=float(lat) if lat is not None else None,
        longitude=float(lon) if lon is not None else None,
        appears_in=[str(i) for i in data.get("appearsIn") or []],
        extra=_extra(data, LOCATION_KEYS),
    )
