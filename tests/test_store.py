"""Tests for the document store: frontmatter, atomic writes, relocation, trash."""

from __future__ import annotations

import os
from pathlib import Path, PurePosixPath
from unittest.mock import patch

import pytest

from manuscript.errors import (
    DanglingReferenceError,
    StoreInconsistencyError,
    UnreadableFileError,
)
from manuscript.format.layout import derived_paths, entry_name, slugify
from manuscript.format.store import (
    DocumentStore,
    atomic_write,
    parse_document,
    render_document,
)
from manuscript.project import Project, ProjectNode


class TestSlugify:
    def test_basic(self):
        assert slugify("The Opening Scene!") == "the-opening-scene"

    def test_collapses_runs(self):
        assert slugify("  a -- b__c  ") == "a-b-c"

    def test_keeps_cjk(self):
        assert slugify("第一章 开始") == "第一章-开始"

    def test_empty_falls_back(self):
        assert slugify("?!") == "untitled"

    def test_long_title_capped(self):
        assert slugify("x" * 300) == "x" * 80

    def test_long_title_cut_between_words(self):
        assert slugify("Chapter " * 20) == "-".join(["chapter"] * 10)

    def test_long_cjk_title_cut_on_character(self):
        slug = slugify("章" * 100)
        assert slug == "章" * 26
        assert len(slug.encode("utf-8")) <= 80

    def test_entry_name(self):
        doc = ProjectNode.document("Chapter One", order=0)
        folder = ProjectNode.folder("Part Two", order=11)
        assert entry_name(doc) == "01-chapter-one.md"
        assert entry_name(folder) == "12-part-two"


class TestFrontmatter:
    def test_no_frontmatter(self):
        assert parse_document("Just text.\n") == ({}, "Just text.\n")

    def test_split(self):
        meta, body = parse_document("---\npov: Anna\nmood: grim\n---\nIt rained.\n")
        assert meta == {"pov": "Anna", "mood": "grim"}
        assert body == "It rained.\n"

    def test_values_coerced_to_text(self):
        meta, _ = parse_document("---\ncount: 3\ntags: [a, b]\ndone: true\n---\nx")
        assert meta == {"count": "3", "tags": "a, b", "done": "true"}

    def test_invalid_yaml(self):
        with pytest.raises(UnreadableFileError):
            parse_document("---\nkey: [unclosed\n---\nbody", "doc.md")

    def test_non_mapping(self):
        with pytest.raises(UnreadableFileError):
            parse_document("---\n- a\n- b\n---\nbody")

    def test_render_round_trip(self):
        meta = {"pov": "Anna", "note": "colon: inside"}
        body = "First line.\n\nSecond *line*.\n"
        assert parse_document(render_document(meta, body)) == (meta, body)

    def test_body_only_is_verbatim(self):
        assert render_document({}, "# Title\n\nText") == "# Title\n\nText"

    def test_body_that_looks_like_frontmatter(self):
        body = "---\nnot: meta\n---\ntext"
        rendered = render_document({}, body)
        assert parse_document(rendered) == ({}, body)


class TestAtomicWrite:
    def test_writes_and_replaces(self, tmp_path: Path):
        target = tmp_path / "sub" / "file.md"
        atomic_write(target, b"one")
        atomic_write(target, b"two")
        assert target.read_bytes() == b"two"
        assert [p.name for p in target.parent.iterdir()] == ["file.md"]

    def test_failure_keeps_old_content(self, tmp_path: Path):
        target = tmp_path / "file.md"
        target.write_bytes(b"original")
        with patch("manuscript.format.store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                atomic_write(target, b"new")
        assert target.read_bytes() == b"original"
        assert [p.name for p in tmp_path.iterdir()] == ["file.md"]


@pytest.fixture
def project() -> Project:
    project = Project(title="Store Test")
    tree = project.tree
    part = tree.insert(ProjectNode.folder("Part One", id="part"), project.draft.id)
    tree.insert(ProjectNode.document("Opening", "The start.", id="a"), part.id)
    tree.insert(ProjectNode.document("Middle", "The middle.", id="b"), part.id)
    tree.insert(ProjectNode.document("Idea", "Note.", id="n"), project.notes.id)
    return project


def _write_all(store: DocumentStore, project: Project) -> None:
    paths = derived_paths(project.tree)
    for node in project.tree.walk():
        if node.is_folder:
            store.abspath(paths[node.id]).mkdir(parents=True, exist_ok=True)
            store.bind(node.id, paths[node.id])
        else:
            store.write(node.id, node.frontmatter, node.body, paths[node.id])


class TestReadWrite:
    def test_write_returns_false_when_unchanged(self, tmp_path: Path):
        store = DocumentStore(tmp_path)
        assert store.write("x", {}, "body", "contents/draft/01-x.md") is True
        assert store.write("x", {}, "body") is False
        assert store.read("x") == ({}, "body")

    def test_dangling(self, tmp_path: Path):
        store = DocumentStore(tmp_path)
        store.bind("x", "contents/draft/01-gone.md")
        with pytest.raises(DanglingReferenceError) as exc:
            store.read("x")
        assert exc.value.node_id == "x"

    def test_not_utf8(self, tmp_path: Path):
        path = tmp_path / "contents" / "bad.md"
        path.parent.mkdir(parents=True)
        path.write_bytes(b"\xff\xfe\xfa broken")
        store = DocumentStore(tmp_path)
        store.bind("x", "contents/bad.md")
        with pytest.raises(UnreadableFileError):
            store.read("x")


class TestRelocate:
    def test_rename_moves_file(self, tmp_path: Path, project: Project):
        store = DocumentStore(tmp_path)
        _write_all(store, project)
        project.tree.rename("a", "Prologue")

        moves = store.relocate_tree(project.tree)
        assert [m.node_id for m in moves] == ["a"]
        assert store.path_of("a") == PurePosixPath("contents/draft/01-part-one/01-prologue.md")
        assert (tmp_path / "contents/draft/01-part-one/01-prologue.md").read_text() == "The start."
        assert not (tmp_path / "contents/draft/01-part-one/01-opening.md").exists()

    def test_swap_order(self, tmp_path: Path, project: Project):
        store = DocumentStore(tmp_path)
        _write_all(store, project)
        project.tree.move("b", "part", at_order=0)

        store.relocate_tree(project.tree)
        folder = tmp_path / "contents/draft/01-part-one"
        assert (folder / "01-middle.md").read_text() == "The middle."
        assert (folder / "02-opening.md").read_text() == "The start."
        assert not (tmp_path / ".staging").exists()

    def test_folder_rename_rebases_children(self, tmp_path: Path, project: Project):
        store = DocumentStore(tmp_path)
        _write_all(store, project)
        project.tree.rename("part", "Act I")

        store.relocate_tree(project.tree)
        assert store.path_of("part") == PurePosixPath("contents/draft/01-act-i")
        assert store.path_of("a") == PurePosixPath("contents/draft/01-act-i/01-opening.md")
        assert store.read("b") == ({}, "The middle.")

    def test_folder_rename_with_reordered_children(self, tmp_path: Path, project: Project):
        store = DocumentStore(tmp_path)
        _write_all(store, project)
        project.tree.rename("part", "Act I")
        project.tree.move("b", "part", at_order=0)

        moves = store.relocate_tree(project.tree)
        assert [m.node_id for m in moves] == ["part", "b", "a"]
        folder = tmp_path / "contents/draft/01-act-i"
        assert (folder / "01-middle.md").read_text() == "The middle."
        assert (folder / "02-opening.md").read_text() == "The start."
        assert not (tmp_path / "contents/draft/01-part-one").exists()
        assert not (tmp_path / ".staging").exists()

    def test_child_promoted_into_vacated_name(self, tmp_path: Path, project: Project):
        store = DocumentStore(tmp_path)
        _write_all(store, project)
        project.tree.rename("b", "Opening")
        project.tree.move("a", project.notes.id, at_order=0)
        project.tree.move("b", project.draft.id, at_order=0)
        project.tree.move("n", "part", at_order=0)

        store.relocate_tree(project.tree)
        assert store.read("b") == ({}, "The middle.")
        assert store.path_of("b") == PurePosixPath("contents/draft/01-opening.md")
        assert store.path_of("a") == PurePosixPath("contents/notes/01-opening.md")
        assert store.path_of("n") == PurePosixPath("contents/draft/02-part-one/01-idea.md")
        assert store.read("n") == ({}, "Note.")

    def test_failure_rolls_back(self, tmp_path: Path, project: Project):
        store = DocumentStore(tmp_path)
        _write_all(store, project)
        project.tree.move("b", "part", at_order=0)
        before = sorted(p.relative_to(tmp_path) for p in tmp_path.rglob("*"))

        real_rename = os.rename
        calls = {"n": 0}

        def flaky(src, dst):
            calls["n"] += 1
            if calls["n"] == 3:
                raise OSError("device busy")
            real_rename(src, dst)

        with patch("manuscript.format.store.os.rename", side_effect=flaky):
            with pytest.raises(StoreInconsistencyError):
                store.relocate_tree(project.tree)

        assert sorted(p.relative_to(tmp_path) for p in tmp_path.rglob("*")) == before
        assert store.path_of("a") == PurePosixPath("contents/draft/01-part-one/01-opening.md")


class TestDiscard:
    def test_removed_document_goes_to_trash(self, tmp_path: Path, project: Project):
        store = DocumentStore(tmp_path)
        _write_all(store, project)
        project.tree.remove("n")

        trashed = store.discard(["n"])
        assert len(trashed) == 1
        assert trashed[0].parent == PurePosixPath("trash")
        assert trashed[0].name.endswith("-01-idea.md")
        assert (tmp_path / trashed[0]).read_text() == "Note."
        assert store.path_of("n") is None

    def test_removed_folder_takes_descendants(self, tmp_path: Path, project: Project):
        store = DocumentStore(tmp_path)
        _write_all(store, project)
        project.tree.remove("part")

        trashed = store.discard(["part", "a", "b"])
        assert len(trashed) == 1
        assert (tmp_path / trashed[0] / "01-opening.md").is_file()
        assert store.bound_ids == {project.draft.id, project.notes.id, project.research.id, "n"}

    def test_live_child_is_rescued(self, tmp_path: Path, project: Project):
        store = DocumentStore(tmp_path)
        _write_all(store, project)
        project.tree.move("a", project.draft.id)
        project.tree.remove("part")

        store.discard(["part", "b"])
        store.relocate_tree(project.tree)
        assert store.read("a") == ({}, "The start.")
        assert store.path_of("a") == PurePosixPath("contents/draft/01-opening.md")
        assert not (tmp_path / ".staging").exists()
