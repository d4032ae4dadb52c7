"""Project tree: an arena of nodes keyed by id.

Nodes never hold references to each other, only ids (``parent_id`` and a
folder's ordered ``children``). Every mutating operation validates first and
mutates second, so a rejected operation leaves the tree exactly as it was.
After any structural change the affected siblings are renumbered to a dense
0..n-1 sequence, which keeps serialization deterministic.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from manuscript.errors import (
    CycleError,
    DuplicateIdError,
    InvalidParentError,
    NodeNotFoundError,
    StructuralError,
)
from manuscript.project.nodes import NodeMetadata, ProjectNode

logger = logging.getLogger(__name__)

ROOT_NAMES = ("draft", "notes", "research")
ROOT_TITLES = {"draft": "Draft", "notes": "Notes", "research": "Research"}


@dataclass
class TreeFragment:
    """A detached subtree produced by an importer, ready to be grafted."""

    root: ProjectNode
    nodes: dict[str, ProjectNode] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.nodes.setdefault(self.root.id, self.root)

    @classmethod
    def single(cls, node: ProjectNode) -> TreeFragment:
        return cls(root=node)

    def add(self, node: ProjectNode, parent_id: str) -> ProjectNode:
        """Append ``node`` as the last child of ``parent_id`` inside the fragment."""
        parent = self.nodes.get(parent_id)
        if parent is None or not parent.is_folder:
            raise InvalidParentError(parent_id)
        if node.id in self.nodes:
            raise DuplicateIdError(node.id)
        node.parent_id = parent_id
        node.order = len(parent.children)
        parent.children.append(node.id)
        self.nodes[node.id] = node
        return node

    def walk(self) -> Iterator[ProjectNode]:
        stack = [self.root.id]
        while stack:
            node = self.nodes[stack.pop()]
            yield node
            stack.extend(reversed(node.children))

    @property
    def document(self) -> ProjectNode | None:
        return self.root if self.root.is_document else None

    @property
    def document_count(self) -> int:
        return sum(1 for n in self.nodes.values() if n.is_document)

    @property
    def folder_count(self) -> int:
        return sum(1 for n in self.nodes.values() if n.is_folder)


class ProjectTree:
    """Arena of project nodes with the draft/notes/research root folders."""

    def __init__(self) -> None:
        self._nodes: dict[str, ProjectNode] = {}
        self.roots: dict[str, str] = {}  # root name → node id

    @classmethod
    def new(cls) -> ProjectTree:
        tree = cls()
        for name in ROOT_NAMES:
            tree.add_root(name, ProjectNode.folder(ROOT_TITLES[name]))
        return tree

    # ── Lookup ───────────────────────────────────────────────

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def nodes(self) -> Mapping[str, ProjectNode]:
        return MappingProxyType(self._nodes)

    def find(self, node_id: str) -> ProjectNode | None:
        return self._nodes.get(node_id)

    def get(self, node_id: str) -> ProjectNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def root(self, name: str) -> ProjectNode:
        try:
            return self._nodes[self.roots[name]]
        except KeyError:
            raise NodeNotFoundError(name) from None

    def root_name(self, node_id: str) -> str | None:
        for name, root_id in self.roots.items():
            if root_id == node_id:
                return name
        return None

    def is_root(self, node_id: str) -> bool:
        return node_id in self.roots.values()

    def children(self, folder_id: str) -> list[ProjectNode]:
        return [self._nodes[cid] for cid in self._folder(folder_id).children]

    def ancestors(self, node_id: str) -> list[ProjectNode]:
        """Parent first, root folder last."""
        result = []
        node = self.get(node_id)
        while node.parent_id is not None:
            node = self._nodes[node.parent_id]
            result.append(node)
        return result

    def descendants(self, node_id: str) -> list[str]:
        result: list[str] = []
        stack = list(reversed(self.get(node_id).children))
        while stack:
            child = self._nodes[stack.pop()]
            result.append(child.id)
            stack.extend(reversed(child.children))
        return result

    def walk(self, folder_id: str | None = None) -> Iterator[ProjectNode]:
        """Pre-order traversal of one folder, or of every root in canonical order."""
        if folder_id is None:
            start = [self.roots[name] for name in self._root_order()]
        else:
            start = [self.get(folder_id).id]
        stack = list(reversed(start))
        while stack:
            node = self._nodes[stack.pop()]
            yield node
            stack.extend(reversed(node.children))

    def documents(self) -> Iterator[ProjectNode]:
        return (n for n in self.walk() if n.is_document)

    def _root_order(self) -> list[str]:
        known = [name for name in ROOT_NAMES if name in self.roots]
        return known + sorted(name for name in self.roots if name not in ROOT_NAMES)

    def _folder(self, folder_id: str) -> ProjectNode:
        node = self._nodes.get(folder_id)
        if node is None:
            raise InvalidParentError(folder_id, "does not exist")
        if not node.is_folder:
            raise InvalidParentError(folder_id)
        return node

    # ── Building (used by decoders) ──────────────────────────

    def add_root(self, name: str, node: ProjectNode) -> ProjectNode:
        if name in self.roots:
            raise StructuralError(f"Root folder '{name}' already exists")
        if node.id in self._nodes:
            raise DuplicateIdError(node.id)
        if not node.is_folder:
            raise InvalidParentError(node.id, "root must be a folder")
        node.parent_id = None
        node.order = len(self.roots)
        self._nodes[node.id] = node
        self.roots[name] = node.id
        return node

    def attach(self, node: ProjectNode, parent_id: str) -> ProjectNode:
        """Append a single node without touching timestamps.

        Low-level building block for decoders: the node's own ``children`` must
        be empty (descendants are attached one by one afterwards).
        """
        parent = self._folder(parent_id)
        if node.id in self._nodes:
            raise DuplicateIdError(node.id)
        node.parent_id = parent.id
        node.children = []
        node.order = len(parent.children)
        parent.children.append(node.id)
        self._nodes[node.id] = node
        return node

    # ── Structural operations ────────────────────────────────

    def insert(
        self, node: ProjectNode, into: str, at_order: int | None = None
    ) -> ProjectNode:
        """Insert a single node (or a folder with no children) into a folder."""
        if node.children:
            raise StructuralError(
                f"Node {node.id} has children; use graft() to insert a subtree"
            )
        return self.graft(TreeFragment.single(node), into, at_order)

    def graft(
        self, fragment: TreeFragment, into: str, at_order: int | None = None
    ) -> ProjectNode:
        """Insert a detached subtree as a child of ``into``.

        ``at_order`` is the position among the new siblings; ``None`` appends.
        """
        parent = self._folder(into)
        for node_id, node in fragment.nodes.items():
            if node_id in self._nodes:
                raise DuplicateIdError(node_id)
            missing = [cid for cid in node.children if cid not in fragment.nodes]
            if missing:
                raise StructuralError(f"Fragment node {node_id} references unknown children {missing}")

        self._nodes.update(fragment.nodes)
        for node in fragment.nodes.values():
            if node.is_folder:
                self._renumber(node)
        fragment.root.parent_id = parent.id
        self._place(parent, fragment.root.id, at_order)
        logger.debug(
            "Grafted %s (%d nodes) into %s", fragment.root.id, len(fragment.nodes), parent.id
        )
        return fragment.root

    def remove(self, node_id: str) -> list[str]:
        """Remove a node and all its descendants; returns every removed id."""
        node = self.get(node_id)
        if self.is_root(node_id):
            raise InvalidParentError(node_id, "root folders cannot be removed")
        removed = [node_id, *self.descendants(node_id)]

        parent = self._nodes[node.parent_id]
        parent.children.remove(node_id)
        self._renumber(parent)
        parent.touch()
        for rid in removed:
            del self._nodes[rid]
        logger.debug("Removed %s (%d nodes)", node_id, len(removed))
        return removed

    def move(self, node_id: str, to_folder: str, at_order: int | None = None) -> ProjectNode:
        node = self.get(node_id)
        if self.is_root(node_id):
            raise InvalidParentError(node_id, "root folders cannot be moved")
        target = self._folder(to_folder)
        if target.id == node_id or node_id in {a.id for a in self.ancestors(target.id)}:
            raise CycleError(node_id, to_folder)

        old_parent = self._nodes[node.parent_id]
        old_parent.children.remove(node_id)
        self._renumber(old_parent)
        old_parent.touch()

        node.parent_id = target.id
        self._place(target, node_id, at_order)
        node.touch()
        return node

    def rename(self, node_id: str, title: str) -> ProjectNode:
        node = self.get(node_id)
        node.title = title
        node.touch()
        return node

    def update_metadata(self, node_id: str, **changes: Any) -> ProjectNode:
        node = self.get(node_id)
        unknown = set(changes) - NodeMetadata.field_names()
        if unknown:
            raise ValueError(f"Unknown metadata fields: {sorted(unknown)}")
        for name, value in changes.items():
            if name == "keywords":
                value = set(value)
            setattr(node.metadata, name, value)
        node.touch()
        return node

    def set_body(self, node_id: str, body: str) -> ProjectNode:
        node = self.get(node_id)
        if not node.is_document:
            raise StructuralError(f"Node {node_id} is a folder and has no body")
        node.body = body
        node.touch()
        return node

    def normalize(self) -> None:
        for node in self._nodes.values():
            if node.is_folder:
                self._renumber(node)

    def _place(self, parent: ProjectNode, node_id: str, at_order: int | None) -> None:
        count = len(parent.children)
        index = count if at_order is None else max(0, min(at_order, count))
        parent.children.insert(index, node_id)
        self._renumber(parent)
        parent.touch()

    def _renumber(self, folder: ProjectNode) -> None:
        for index, child_id in enumerate(folder.children):
            self._nodes[child_id].order = index

    # ── Views ────────────────────────────────────────────────

    def copy(self) -> ProjectTree:
        """Deep structural copy; a read-consistent view for background work."""
        clone = ProjectTree()
        clone._nodes = copy.deepcopy(self._nodes)
        clone.roots = dict(self.roots)
        return clone

    def word_count(self) -> int:
        return sum(doc.word_count for doc in self.documents())
