"""Tests for the import normalizers."""

from __future__ import annotations

import codecs
from pathlib import Path

import pytest

from manuscript.errors import UnreadableFileError, ValidationError
from manuscript.format import ProjectPackage
from manuscript.importers import (
    DocxImporter,
    ImportOptions,
    ScrivenerImporter,
    TextMarkdownImporter,
    flatten_markdown,
    import_file,
    import_files,
    importer_for,
    supported_extensions,
)
from manuscript.importers.scrivener import color_to_hex, parse_date, parse_writing_history

FLAT = ImportOptions(preserve_formatting=False)


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


# ── Text & Markdown ──────────────────────────────────────────


class TestTextMarkdown:
    def test_markdown_verbatim(self, tmp_path: Path):
        path = _write(tmp_path / "chapter.md", "# Chapter 1\n\nHello")
        result = TextMarkdownImporter().import_document(path, ImportOptions(preserve_formatting=True))
        assert result.title == "chapter"
        assert result.document.body == "# Chapter 1\n\nHello"
        assert result.document.is_document
        assert result.warnings == ["Markdown syntax is preserved as editable text content."]

    def test_markdown_flattened(self, tmp_path: Path):
        path = _write(tmp_path / "flatten.md", "**Bold** _italic_")
        body = TextMarkdownImporter().import_document(path, FLAT).document.body
        assert "Bold" in body and "italic" in body
        assert "*" not in body and "_" not in body

    def test_plain_text_unchanged(self, tmp_path: Path):
        path = _write(tmp_path / "notes.txt", "**not** _touched_")
        result = TextMarkdownImporter().import_document(path, FLAT)
        assert result.title == "notes"
        assert result.document.body == "**not** _touched_"
        assert result.warnings == []

    def test_utf16_with_bom(self, tmp_path: Path):
        path = tmp_path / "scene.md"
        path.write_bytes(codecs.BOM_UTF16_LE + "Ünïcode scene".encode("utf-16-le"))
        assert TextMarkdownImporter().import_document(path).document.body == "Ünïcode scene"

    def test_undecodable(self, tmp_path: Path):
        path = tmp_path / "scene.md"
        path.write_bytes(b"caf\xe9 \xff\xfe")
        with pytest.raises(UnreadableFileError):
            TextMarkdownImporter().import_document(path)

    def test_wrong_extension(self, tmp_path: Path):
        path = _write(tmp_path / "file.rtf", "{\\rtf1 hi}")
        with pytest.raises(ValidationError):
            TextMarkdownImporter().import_document(path)


class TestTextValidation:
    def test_valid(self, tmp_path: Path):
        path = _write(tmp_path / "scene.md", "text")
        result = TextMarkdownImporter().validate(path)
        assert result.is_valid
        assert result.title == "scene"
        assert result.file_size == 4
        assert result.file_size_formatted == "4 B"

    def test_unsupported_extension(self, tmp_path: Path):
        result = TextMarkdownImporter().validate(_write(tmp_path / "file.rtf", "x"))
        assert not result.is_valid
        assert result.title is None
        assert result.errors

    def test_missing(self, tmp_path: Path):
        result = TextMarkdownImporter().validate(tmp_path / "ghost.md")
        assert not result.is_valid
        assert "does not exist" in result.errors[0]

    def test_empty(self, tmp_path: Path):
        result = TextMarkdownImporter().validate(_write(tmp_path / "empty.txt", ""))
        assert not result.is_valid
        assert result.errors == ["File is empty"]


class TestFlatten:
    @pytest.mark.parametrize(
        "source, expected",
        [
            ("**Bold** _italic_", "Bold italic"),
            ("***both*** and __strong__", "both and strong"),
            ("*one* ~~gone~~", "one gone"),
            ("snake_case_name stays", "snake_case_name stays"),
            ("2 * 3 * 4", "2 * 3 * 4"),
            ("keep `**code**` here", "keep `**code**` here"),
        ],
    )
    def test_flatten(self, source: str, expected: str):
        assert flatten_markdown(source) == expected


# ── Word ─────────────────────────────────────────────────────


@pytest.fixture
def docx_path(tmp_path: Path) -> Path:
    from docx import Document

    doc = Document()
    doc.add_heading("The Storm", level=0)
    doc.add_heading("Chapter One", level=1)
    para = doc.add_paragraph("It was a ")
    para.add_run("dark").bold = True
    para.add_run(" night.")
    doc.add_paragraph("First item", style="List Bullet")
    doc.add_table(rows=1, cols=2)
    path = tmp_path / "storm.docx"
    doc.save(str(path))
    return path


class TestDocx:
    def test_import_markdown(self, docx_path: Path):
        result = DocxImporter().import_document(docx_path)
        assert result.title == "storm"
        assert result.document.body == (
            "# The Storm\n\n# Chapter One\n\nIt was a **dark** night.\n\n- First item"
        )
        assert result.warnings == ["1 table(s) were not imported"]

    def test_import_plain(self, docx_path: Path):
        body = DocxImporter().import_document(docx_path, FLAT).document.body
        assert "It was a dark night." in body
        assert "*" not in body and "#" not in body

    def test_validate(self, docx_path: Path):
        result = DocxImporter().validate(docx_path)
        assert result.is_valid
        assert result.title == "storm"

    def test_legacy_doc_rejected(self, tmp_path: Path):
        result = DocxImporter().validate(_write(tmp_path / "old.doc", "binary"))
        assert not result.is_valid
        assert ".doc" in result.errors[0]

    def test_not_a_zip(self, tmp_path: Path):
        path = _write(tmp_path / "fake.docx", "not a zip")
        assert not DocxImporter().validate(path).is_valid
        with pytest.raises(UnreadableFileError):
            DocxImporter().import_document(path)


# ── RTF ──────────────────────────────────────────────────────


class TestRtf:
    def test_formatting(self):
        from manuscript.importers.rtf import rtf_to_markdown

        data = (
            rb"{\rtf1\ansi\ansicpg1252{\fonttbl\f0 Times;}{\*\generator Scrivener;}"
            rb"\f0 It was a {\b dark} and {\i stormy} night.\par "
            rb"Caf\'e9 {\b\i both} \u8212? done.}"
        )
        assert rtf_to_markdown(data) == (
            "It was a **dark** and *stormy* night.\n\nCafé ***both*** — done."
        )

    def test_plain(self):
        from manuscript.importers.rtf import rtf_to_markdown

        data = rb"{\rtf1 Hello {\b world}\line again}"
        assert rtf_to_markdown(data, markdown=False) == "Hello world\nagain"

    def test_not_rtf(self):
        from manuscript.importers.rtf import rtf_to_markdown

        assert rtf_to_markdown("plain text".encode("utf-8")) == "plain text"
        with pytest.raises(UnreadableFileError):
            rtf_to_markdown(b"\xff\xfe\xfa")

    def test_mac_roman_codepage(self):
        from manuscript.importers.rtf import rtf_to_markdown

        assert rtf_to_markdown(rb"{\rtf1\ansi\ansicpg10000 caf\'8e}") == "café"

    def test_unknown_codepage_falls_back(self):
        from manuscript.importers.rtf import codec_for, rtf_to_markdown

        assert codec_for(99999) == "cp1252"
        assert rtf_to_markdown(rb"{\rtf1\ansi\ansicpg99999 caf\'e9}") == "café"


# ── Scrivener ────────────────────────────────────────────────

SCRIVX = """<?xml version="1.0" encoding="UTF-8"?>
<ScrivenerProject Version="2.0">
  <Binder>
    <BinderItem UUID="D1" Type="DraftFolder" Created="2025-01-01 10:00:00 +0000">
      <Title>Manuscript</Title>
      <Children>
        <BinderItem UUID="T1" Type="Text" Created="2025-01-01 10:00:00 +0000" Modified="2025-01-03 09:30:00 +0000">
          <Title>Chapter One</Title>
          <MetaData>
            <LabelID>1</LabelID>
            <StatusID>-1</StatusID>
            <IncludeInCompile>Yes</IncludeInCompile>
          </MetaData>
          <Keywords><KeywordID>0</KeywordID></Keywords>
        </BinderItem>
        <BinderItem UUID="F1" Type="Folder">
          <Title>Part Two</Title>
          <Children>
            <BinderItem UUID="T2" Type="Text">
              <Title>Harbour</Title>
              <MetaData><IncludeInCompile>No</IncludeInCompile></MetaData>
            </BinderItem>
          </Children>
        </BinderItem>
      </Children>
    </BinderItem>
    <BinderItem UUID="R1" Type="ResearchFolder">
      <Title>Research</Title>
      <Children>
        <BinderItem UUID="I1" Type="Image"><Title>Map</Title></BinderItem>
        <BinderItem UUID="T3" Type="Text"><Title>Ships</Title></BinderItem>
      </Children>
    </BinderItem>
    <BinderItem UUID="X1" Type="TrashFolder">
      <Title>Trash</Title>
      <Children>
        <BinderItem UUID="T4" Type="Text"><Title>Cut Scene</Title></BinderItem>
      </Children>
    </BinderItem>
  </Binder>
  <LabelSettings>
    <Labels>
      <Label ID="-1">No Label</Label>
      <Label ID="1" Color="1.0 0.0 0.0">Scene</Label>
    </Labels>
  </LabelSettings>
  <StatusSettings>
    <StatusItems>
      <Status ID="-1">No Status</Status>
      <Status ID="1">First Draft</Status>
    </StatusItems>
  </StatusSettings>
  <Keywords>
    <Keyword ID="0"><Title>storm</Title></Keyword>
  </Keywords>
</ScrivenerProject>
"""

HISTORY = """<?xml version="1.0" encoding="UTF-8"?>
<WritingHistory>
  <Day Date="2025-01-15" WordCount="1500" DraftWordCount="20000"/>
  <Day Date="2025-01-16" WordCount="500"/>
</WritingHistory>
"""


@pytest.fixture
def bundle(tmp_path: Path) -> Path:
    bundle = tmp_path / "Novel.scriv"
    data = bundle / "Files" / "Data"
    contents = {
        "T1": rb"{\rtf1\ansi{\fonttbl\f0 Times;}\f0 It was a {\b dark} night.\par Rain fell.}",
        "T2": rb"{\rtf1 Boats {\i everywhere}.}",
        "T3": rb"{\rtf1 Brigs and sloops.}",
        "T4": rb"{\rtf1 Deleted words.}",
    }
    for uuid, rtf in contents.items():
        (data / uuid).mkdir(parents=True)
        (data / uuid / "content.rtf").write_bytes(rtf)
    (data / "T1" / "notes.rtf").write_bytes(rb"{\rtf1 Check the dates.}")
    (data / "T1" / "synopsis.txt").write_text("Opening storm\n", encoding="utf-8")
    (bundle / "Novel.scrivx").write_text(SCRIVX, encoding="utf-8")
    (bundle / "Files" / "writing.history").write_text(HISTORY, encoding="utf-8")
    return bundle


class TestScrivenerHelpers:
    def test_parse_date(self):
        parsed = parse_date("2025-01-03 09:30:00 +0100")
        assert (parsed.hour, parsed.tzinfo is not None) == (8, True)
        assert parse_date("garbage") is None

    def test_color_to_hex(self):
        assert color_to_hex("1.0 0.5 0.0") == "#FF8000"
        assert color_to_hex("bad") == "#808080"

    def test_history_with_bad_duration(self, tmp_path: Path):
        path = _write(
            tmp_path / "writing.history",
            '<WritingHistory><Day Date="2025-01-15" WordCount="10" Duration="abc"/>'
            '<Day Date="2025-01-16" WordCount="5" Duration="90.5"/></WritingHistory>',
        )
        entries = parse_writing_history(path).entries
        assert [e.session_seconds for e in entries] == [None, 90.5]
        assert entries[0].words_written == 10

    def test_mac_roman_content(self, bundle: Path):
        content = bundle / "Files" / "Data" / "T2" / "content.rtf"
        content.write_bytes(rb"{\rtf1\ansi\ansicpg10000 Boats at the caf\'8e.}")
        project = ScrivenerImporter().import_project(bundle).project
        bodies = [node.body for node in project.tree.documents()]
        assert "Boats at the café." in bodies


class TestScrivenerValidation:
    def test_valid(self, bundle: Path):
        result = ScrivenerImporter().validate(bundle)
        assert result.is_valid
        assert result.title == "Novel"
        assert result.version == 3
        assert result.item_count == 9
        assert any("media" in w for w in result.warnings)

    def test_missing_scrivx(self, tmp_path: Path):
        empty = tmp_path / "Empty.scriv"
        empty.mkdir()
        result = ScrivenerImporter().validate(empty)
        assert not result.is_valid
        assert ".scrivx" in result.errors[0]

    def test_not_a_bundle(self, tmp_path: Path):
        result = ScrivenerImporter().validate(_write(tmp_path / "x.scriv", "file"))
        assert not result.is_valid


class TestScrivenerProjectImport:
    def test_structure(self, bundle: Path):
        result = ScrivenerImporter().import_project(bundle)
        project = result.project
        tree = project.tree

        assert project.title == "Novel"
        assert [n.title for n in tree.children(project.draft.id)] == ["Chapter One", "Part Two"]
        part = tree.children(project.draft.id)[1]
        assert [n.title for n in tree.children(part.id)] == ["Harbour"]
        assert [n.title for n in tree.children(project.research.id)] == ["Ships"]
        assert tree.children(project.notes.id) == []
        assert (result.imported_documents, result.imported_folders, result.skipped_items) == (3, 1, 3)
        assert any("Map" in w for w in result.warnings)

    def test_document_content(self, bundle: Path):
        project = ScrivenerImporter().import_project(bundle).project
        chapter = project.tree.children(project.draft.id)[0]
        assert chapter.body == "It was a **dark** night.\n\nRain fell."
        assert chapter.frontmatter == {"notes": "Check the dates."}
        assert chapter.metadata.synopsis == "Opening storm"
        assert chapter.metadata.label_id == "scriv-label-1"
        assert chapter.metadata.status_id is None
        assert chapter.metadata.keywords == {"storm"}
        assert chapter.modified.day == 3
        assert chapter.extra == {"scrivenerId": "T1"}

        harbour = project.tree.children(project.tree.children(project.draft.id)[1].id)[0]
        assert harbour.metadata.include_in_compile is False

    def test_labels_and_history(self, bundle: Path):
        project = ScrivenerImporter().import_project(bundle).project
        assert [(lab.id, lab.name, lab.color) for lab in project.labels] == [
            ("scriv-label-1", "Scene", "#FF0000"),
        ]
        assert [s.name for s in project.statuses] == ["First Draft"]
        assert project.writing_history.total_words == 2000
        assert project.writing_history.entries[0].draft_word_count == 20000

    def test_plain_text_and_trash(self, bundle: Path):
        options = ImportOptions(preserve_formatting=False, import_trash=True, import_research=False)
        result = ScrivenerImporter().import_project(bundle, options)
        project = result.project
        chapter = project.tree.children(project.draft.id)[0]
        assert chapter.body == "It was a dark night.\n\nRain fell."
        assert project.tree.children(project.research.id) == []
        trash = project.tree.children(project.notes.id)
        assert [n.title for n in trash] == ["Trash"]
        assert [n.title for n in project.tree.children(trash[0].id)] == ["Cut Scene"]

    def test_saves_as_package(self, bundle: Path, tmp_path: Path):
        project = ScrivenerImporter().import_project(bundle).project
        ProjectPackage(tmp_path / "converted").save(project)

        loaded = ProjectPackage(tmp_path / "converted").load()
        assert loaded.ok, loaded.errors
        chapter = loaded.project.tree.children(loaded.project.draft.id)[0]
        assert chapter.frontmatter == {"notes": "Check the dates."}
        assert chapter.body == "It was a **dark** night.\n\nRain fell."


class TestScrivenerFragment:
    def test_import_document(self, bundle: Path):
        result = ScrivenerImporter().import_document(bundle)
        fragment = result.fragment
        assert result.title == "Novel"
        assert fragment.root.is_folder
        assert [fragment.nodes[c].title for c in fragment.root.children] == [
            "Manuscript", "Research",
        ]
        assert fragment.document_count == 3

    def test_missing_bundle(self, tmp_path: Path):
        with pytest.raises(ValidationError):
            ScrivenerImporter().import_document(tmp_path / "Nope.scriv")


# ── Registry ─────────────────────────────────────────────────


class TestRegistry:
    def test_importer_for(self):
        assert isinstance(importer_for(Path("a.MD")), TextMarkdownImporter)
        assert isinstance(importer_for(Path("a.docx")), DocxImporter)
        assert isinstance(importer_for(Path("a.scriv")), ScrivenerImporter)
        assert importer_for(Path("a.rtf")) is None

    def test_supported_extensions(self):
        assert supported_extensions() == ["docx", "markdown", "md", "scriv", "txt"]

    def test_unsupported(self, tmp_path: Path):
        with pytest.raises(ValidationError):
            import_file(_write(tmp_path / "file.rtf", "x"))

    @pytest.mark.asyncio
    async def test_import_files_parallel(self, tmp_path: Path):
        paths = [
            _write(tmp_path / "one.md", "first"),
            _write(tmp_path / "file.rtf", "x"),
            _write(tmp_path / "two.txt", "second"),
        ]
        results = await import_files(paths)
        assert len(results) == 3
        assert results[0].document.body == "first"
        assert isinstance(results[1], ValidationError)
        assert results[2].title == "two"
