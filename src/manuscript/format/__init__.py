"""Folder-based package format: layout, document store, manifests, save/load."""

from manuscript.format.manifest import DecodeResult, ManifestCodec
from manuscript.format.package import ProjectListener, ProjectPackage, is_project
from manuscript.format.store import DocumentStore, Move

__all__ = [
    "DecodeResult",
    "DocumentStore",
    "ManifestCodec",
    "Move",
    "ProjectListener",
    "ProjectPackage",
    "is_project",
]
