"""On-disk layout of a project package.

    <project>/
    ├── project.json                   # project manifest (roots, cast, settings)
    ├── contents/
    │   ├── draft/
    │   │   ├── folder.json            # ordered items of the draft root
    │   │   ├── 01-opening.md          # document: NN-slug.md
    │   │   └── 02-part-one/           # subfolder: NN-slug/
    │   │       └── folder.json
    │   ├── notes/
    │   └── research/
    ├── snapshots/
    │   ├── 20261018T101500.000000Z.json
    │   └── objects/<sha256>           # full-copy snapshot blobs
    ├── trash/
    └── assets/

All paths handed around by the engine are relative POSIX paths.
"""

from __future__ import annotations

import re
from pathlib import PurePosixPath

from manuscript.project.nodes import ProjectNode
from manuscript.project.tree import ProjectTree

PROJECT_FILE = "project.json"
FOLDER_FILE = "folder.json"
DOCUMENT_SUFFIX = ".md"
CONTENTS_DIR = "contents"
SNAPSHOTS_DIR = "snapshots"
OBJECTS_DIR = "snapshots/objects"
TRASH_DIR = "trash"
ASSETS_DIR = "assets"
STAGING_DIR = ".staging"

PACKAGE_DIRS = (CONTENTS_DIR, SNAPSHOTS_DIR, OBJECTS_DIR, TRASH_DIR, ASSETS_DIR)

_NON_WORD = re.compile(r"[\W_]+")

# Keeps NN-slug.md well inside the 255-byte file name limit.
MAX_SLUG_BYTES = 80


def slugify(title: str) -> str:
    """Lowercase, runs of non-alphanumerics to single hyphens, keep CJK.

    Long slugs are cut to ``MAX_SLUG_BYTES`` of UTF-8, at a hyphen where the
    cut would otherwise split a word.
    """
    slug = _NON_WORD.sub("-", title.lower()).strip("-")
    if len(slug.encode("utf-8")) > MAX_SLUG_BYTES:
        cut = slug.encode("utf-8")[:MAX_SLUG_BYTES].decode("utf-8", errors="ignore")
        if slug[len(cut)] != "-" and "-" in cut:
            cut = cut.rsplit("-", 1)[0]
        slug = cut.strip("-")
    return slug or "untitled"


def entry_name(node: ProjectNode) -> str:
    """File or directory name of a non-root node: ``NN-slug`` (+ ``.md``)."""
    name = f"{node.order + 1:02d}-{slugify(node.title)}"
    return name + DOCUMENT_SUFFIX if node.is_document else name


def root_dir(name: str) -> PurePosixPath:
    return PurePosixPath(CONTENTS_DIR, name)


def derived_path(tree: ProjectTree, node_id: str) -> PurePosixPath:
    node = tree.get(node_id)
    if node.parent_id is None:
        name = tree.root_name(node_id) or slugify(node.title)
        return root_dir(name)
    return derived_path(tree, node.parent_id) / entry_name(node)


def derived_paths(tree: ProjectTree) -> dict[str, PurePosixPath]:
    """Derived location of every node, computed top-down in one pass."""
    paths: dict[str, PurePosixPath] = {}
    for node in tree.walk():
        if node.parent_id is None:
            paths[node.id] = root_dir(tree.root_name(node.id) or slugify(node.title))
        else:
            paths[node.id] = paths[node.parent_id] / entry_name(node)
    return paths


def manifest_path(folder_path: PurePosixPath) -> PurePosixPath:
    return folder_path / FOLDER_FILE
