"""Tests for the command-line entry point."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from manuscript.__main__ import main
from manuscript.format import ProjectPackage


def _run(monkeypatch, *args: str) -> int:
    monkeypatch.setattr(sys, "argv", ["manuscript", *args])
    with pytest.raises(SystemExit) as exc:
        main()
    return exc.value.code


@pytest.fixture(autouse=True)
def isolated(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.delenv("MANUSCRIPT_AUTHOR", raising=False)


class TestCli:
    def test_usage(self, monkeypatch, capsys):
        assert _run(monkeypatch, "bogus") == 1
        assert "Usage" in capsys.readouterr().out

    def test_new_and_check(self, tmp_path: Path, monkeypatch, capsys):
        root = tmp_path / "novel"
        assert _run(monkeypatch, "new", str(root), "My Novel", "Me") == 0
        assert _run(monkeypatch, "check", str(root)) == 0
        assert "My Novel: 0 documents" in capsys.readouterr().out

    def test_new_twice_fails(self, tmp_path: Path, monkeypatch):
        root = tmp_path / "novel"
        _run(monkeypatch, "new", str(root), "Novel")
        assert _run(monkeypatch, "new", str(root), "Novel") == 2

    def test_import(self, tmp_path: Path, monkeypatch, capsys):
        root = tmp_path / "novel"
        _run(monkeypatch, "new", str(root), "Novel")
        chapter = tmp_path / "chapter.md"
        chapter.write_text("# Chapter 1\n\nHello")
        bad = tmp_path / "file.rtf"
        bad.write_text("x")

        assert _run(monkeypatch, "import", str(root), str(chapter), str(bad)) == 2
        out = capsys.readouterr().out
        assert "imported: chapter.md" in out
        assert "failed: file.rtf" in out

        project = ProjectPackage(root).load().project
        assert [n.title for n in project.tree.children(project.draft.id)] == ["chapter"]
        assert (root / "contents/draft/01-chapter.md").read_text() == "# Chapter 1\n\nHello"

    def test_snapshot_and_history(self, tmp_path: Path, monkeypatch, capsys):
        root = tmp_path / "novel"
        _run(monkeypatch, "new", str(root), "Novel")
        assert _run(monkeypatch, "snapshot", str(root), "milestone", "first", "draft") == 0
        assert _run(monkeypatch, "history", str(root)) == 0
        out = capsys.readouterr().out
        assert "Snapshot v1 (milestone)" in out
        assert "first draft" in out

    def test_bad_config(self, tmp_path: Path, monkeypatch, capsys):
        monkeypatch.setenv("MANUSCRIPT_SNAPSHOT_STORAGE", "everything")
        assert _run(monkeypatch, "check", str(tmp_path / "novel")) == 2
        assert "Configuration error" in capsys.readouterr().err
