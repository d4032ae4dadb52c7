"""In-memory project model.

Layout:
    Project
    ├── tree: ProjectTree            # arena of ProjectNode, keyed by id
    │   ├── draft/                   # root folders (always present)
    │   ├── notes/
    │   └── research/
    ├── characters, locations        # referenced by documents through id lists
    ├── labels, statuses, settings
    └── writing_history
"""

from manuscript.project.history import WritingHistory, WritingHistoryEntry
from manuscript.project.nodes import (
    Character,
    Gender,
    Label,
    Location,
    NodeKind,
    NodeMetadata,
    ProjectNode,
    Status,
)
from manuscript.project.project import FORMAT_VERSION, Project
from manuscript.project.tree import ROOT_NAMES, ProjectTree, TreeFragment

__all__ = [
    "FORMAT_VERSION",
    "ROOT_NAMES",
    "Character",
    "Gender",
    "Label",
    "Location",
    "NodeKind",
    "NodeMetadata",
    "Project",
    "ProjectNode",
    "ProjectTree",
    "Status",
    "TreeFragment",
    "WritingHistory",
    "WritingHistoryEntry",
]
