"""RTF to Markdown conversion for Scrivener content files.

Handles the subset Scrivener writes: groups, destinations to skip, paragraph
and line breaks, hex and unicode escapes, and bold/italic/strikethrough
character formatting. Everything else is ignored.
"""

from __future__ import annotations

import codecs
import re
from dataclasses import dataclass, replace
from itertools import groupby

from manuscript.errors import UnreadableFileError

_TOKEN = re.compile(
    r"\\([a-zA-Z]+)(-?\d+)? ?"   # control word with optional parameter
    r"|\\'([0-9a-fA-F]{2})"      # hex-escaped byte
    r"|\\(.)"                    # control symbol
    r"|([{}])"                   # group boundary
    r"|[\r\n]+"                  # source line breaks carry no meaning
    r"|([^\\{}\r\n]+)",          # plain text
    re.DOTALL,
)

_SKIP_DESTINATIONS = {
    "fonttbl", "colortbl", "stylesheet", "info", "pict", "header", "headerl",
    "headerr", "headerf", "footer", "footerl", "footerr", "footerf", "footnote",
    "listtable", "listoverridetable", "rsidtbl", "generator", "xmlnstbl",
    "themedata", "colorschememapping", "latentstyles", "datastore", "filetbl",
    "revtbl", "object", "fldinst", "expandedcolortbl", "annotation", "nonshppict",
}

_SPECIAL_CHARS = {
    "par": "\n\n", "sect": "\n\n", "page": "\n\n", "line": "\n", "tab": "\t",
    "emdash": "\u2014", "endash": "\u2013", "bullet": "\u2022",
    "lquote": "\u2018", "rquote": "\u2019", "ldblquote": "\u201c", "rdblquote": "\u201d",
}

_SYMBOLS = {"~": "\u00a0", "_": "-", "-": "", "\\": "\\", "{": "{", "}": "}"}

# Windows code page numbers for the Mac charsets Python names differently.
_MAC_CODEPAGES = {
    10000: "mac_roman", 10006: "mac_greek", 10007: "mac_cyrillic",
    10029: "mac_latin2", 10079: "mac_iceland", 10081: "mac_turkish",
}


def codec_for(codepage: int) -> str:
    """Python codec for an RTF ``\\ansicpg`` number; cp1252 when unknown."""
    try:
        return codecs.lookup(_MAC_CODEPAGES.get(codepage, f"cp{codepage}")).name
    except LookupError:
        return "cp1252"


@dataclass(frozen=True)
class _Format:
    bold: bool = False
    italic: bool = False
    strike: bool = False


@dataclass
class _Group:
    fmt: _Format = _Format()
    skip: bool = False
    uc: int = 1


class _Parser:
    def __init__(self) -> None:
        self.stack: list[_Group] = [_Group()]
        self.runs: list[tuple[str, _Format]] = []
        self.codepage = "cp1252"
        self.pending_skip = 0
        self.first_in_group = False

    @property
    def group(self) -> _Group:
        return self.stack[-1]

    def emit(self, text: str, fmt: _Format | None = None) -> None:
        if self.group.skip or not text:
            return
        self.runs.append((text, self.group.fmt if fmt is None else fmt))

    def emit_text(self, text: str) -> None:
        if self.pending_skip:
            dropped = min(self.pending_skip, len(text))
            self.pending_skip -= dropped
            text = text[dropped:]
        self.emit(text)

    def feed(self, source: str) -> None:
        for match in _TOKEN.finditer(source):
            word, param, hex_byte, symbol, brace, text = match.groups()
            first = self.first_in_group
            self.first_in_group = False
            if word is not None:
                self.control_word(word, int(param) if param is not None else None, first)
            elif hex_byte is not None:
                if self.pending_skip:
                    self.pending_skip -= 1
                else:
                    self.emit(bytes([int(hex_byte, 16)]).decode(self.codepage, errors="replace"))
            elif symbol is not None:
                if symbol == "*":
                    self.group.skip = True
                else:
                    self.emit(_SYMBOLS.get(symbol, ""))
            elif brace == "{":
                self.stack.append(replace(self.group))
                self.first_in_group = True
            elif brace == "}":
                if len(self.stack) > 1:
                    self.stack.pop()
            elif text is not None:
                self.emit_text(text)

    def control_word(self, word: str, param: int | None, first: bool) -> None:
        group = self.group
        on = param is None or param != 0
        if first and word in _SKIP_DESTINATIONS:
            group.skip = True
        elif word in _SPECIAL_CHARS:
            self.emit(_SPECIAL_CHARS[word], _Format() if "\n" in _SPECIAL_CHARS[word] else None)
        elif word == "b":
            group.fmt = replace(group.fmt, bold=on)
        elif word == "i":
            group.fmt = replace(group.fmt, italic=on)
        elif word in ("strike", "striked"):
            group.fmt = replace(group.fmt, strike=on)
        elif word == "plain":
            group.fmt = _Format()
        elif word == "uc" and param is not None:
            group.uc = param
        elif word == "u" and param is not None:
            self.emit(chr(param + 65536 if param < 0 else param))
            self.pending_skip = group.uc
        elif word == "ansicpg" and param is not None:
            self.codepage = codec_for(param)


def _wrap(text: str, fmt: _Format, markdown: bool) -> str:
    stripped = text.strip(" \t")
    if not markdown or not stripped or "\n" in text:
        return text
    lead = text[: len(text) - len(text.lstrip(" \t"))]
    trail = text[len(text.rstrip(" \t")):]
    if fmt.strike:
        stripped = f"~~{stripped}~~"
    if fmt.bold and fmt.italic:
        stripped = f"***{stripped}***"
    elif fmt.bold:
        stripped = f"**{stripped}**"
    elif fmt.italic:
        stripped = f"*{stripped}*"
    return lead + stripped + trail


def _cleanup(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    lines = [re.sub(r" {2,}", " ", line).rstrip() for line in text.split("\n")]
    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def rtf_to_markdown(data: bytes, source: str = "<rtf>", markdown: bool = True) -> str:
    """Convert RTF bytes to Markdown (or plain text with ``markdown=False``).

    Data that is not RTF is accepted as UTF-8 plain text; anything else raises
    ``UnreadableFileError``.
    """
    if not data.lstrip().startswith(b"{\\rtf"):
        try:
            return _cleanup(data.decode("utf-8"))
        except UnicodeDecodeError as e:
            raise UnreadableFileError(source, "neither RTF nor UTF-8 text") from e

    parser = _Parser()
    parser.feed(data.decode("latin-1"))
    pieces = [
        _wrap("".join(text for text, _ in run), fmt, markdown)
        for fmt, run in groupby(parser.runs, key=lambda r: r[1])
    ]
    return _cleanup("".join(pieces))
