"""Line-oriented diff filter.

``DiffParser`` consumes the output of ``git diff --full-index --binary
--no-renames`` line by line and re-emits only the file sections that
survive a ``PathMatcher``.  Retained sections have their paths rewritten
relative to the matcher's base path so the result can be applied with
``git apply --directory=<destination>``.

The parser is a strict state machine.  A line that has no transition in
the current state raises ``DiffParseError``; there is no recovery.

States::

    unrecognized ─diff --git─▶ diffBegin ─new file mode─▶ newFileDiff
                               │         ─deleted file mode─▶ deleteFileDiff
                               │         ─index─▶ modifyFileDiff
                               │         ─old mode─▶ modifyFileModeDiff ─new mode─▶ modifyFileDiff
    {new,delete,modify}FileDiff ─+++ / GIT binary patch─▶ diffBody
    any state ─diff --git (filtered out)─▶ ignoreDiff
"""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import BaseModel

from dimgforge.core.errors import DiffParseError
from dimgforge.core.path_matcher import PathMatcher

logger = logging.getLogger(__name__)

DIFF_HEADER = "diff --git "
DEV_NULL = "/dev/null"

_C_ESCAPES = {"t": "\t", "n": "\n", '"': '"', "\\": "\\", "a": "\a", "b": "\b",
              "f": "\f", "r": "\r", "v": "\v"}
_C_QUOTES = {v: k for k, v in _C_ESCAPES.items()}


class ParserState(str, Enum):
    UNRECOGNIZED = "unrecognized"
    DIFF_BEGIN = "diffBegin"
    DIFF_BODY = "diffBody"
    NEW_FILE_DIFF = "newFileDiff"
    DELETE_FILE_DIFF = "deleteFileDiff"
    MODIFY_FILE_DIFF = "modifyFileDiff"
    MODIFY_FILE_MODE_DIFF = "modifyFileModeDiff"
    IGNORE_DIFF = "ignoreDiff"


class DiffSection(BaseModel):
    """Summary of one retained file section."""

    path: str
    new_file: bool = False
    deleted_file: bool = False
    mode_changed: bool = False
    content_changed: bool = False

    @property
    def is_mode_only(self) -> bool:
        return self.mode_changed and not self.content_changed


def unquote_c_style(quoted: str) -> str:
    """Decode a git C-style quoted path (``"a/b\\tc"`` → ``a/b<TAB>c``)."""
    body = quoted[1:-1]
    raw = bytearray()
    i = 0
    while i < len(body):
        ch = body[i]
        if ch != "\\":
            raw.extend(ch.encode("utf-8", errors="surrogateescape"))
            i += 1
            continue
        nxt = body[i + 1]
        if nxt in _C_ESCAPES:
            raw.extend(_C_ESCAPES[nxt].encode())
            i += 2
        else:
            raw.append(int(body[i + 1:i + 4], 8))
            i += 4
    return raw.decode("utf-8", errors="surrogateescape")


def quote_c_style(path: str) -> str:
    return '"' + "".join(_C_QUOTES.get(ch, ch) for ch in path) + '"'


def _scan_quoted(text: str) -> int:
    """Return the index just past the closing quote of a quoted token."""
    i = 1
    while i < len(text):
        if text[i] == "\\":
            i += 2
            continue
        if text[i] == '"':
            return i + 1
        i += 1
    raise ValueError("unterminated quoted path")


class DiffParser:
    """Filters and rewrites a diff stream for one git artifact.

    Parameters
    ----------
    matcher:
        Decides which repository paths are kept and how they are trimmed.
    artifact:
        Artifact identity reported in parse errors.
    """

    def __init__(self, matcher: PathMatcher, artifact: str = "") -> None:
        self.matcher = matcher
        self.artifact = artifact
        self.state = ParserState.UNRECOGNIZED
        self.sections: list[DiffSection] = []
        self._out: list[str] = []
        self._path = ""
        self._quoted = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def parse(self, text: str) -> str:
        """Parse a whole diff text and return the filtered diff text."""
        lines = text.split("\n")
        if lines and lines[-1] == "":
            lines.pop()
        for line in lines:
            self.feed(line)
        return self.output

    @property
    def output(self) -> str:
        return "".join(line + "\n" for line in self._out)

    @property
    def paths(self) -> list[str]:
        """Trimmed paths of every retained section, in diff order."""
        return [s.path for s in self.sections]

    def feed(self, line: str) -> None:
        """Consume a single line (without its trailing newline)."""
        if line.startswith(DIFF_HEADER):
            self._handle_diff_begin(line)
            return

        state = self.state
        if state == ParserState.IGNORE_DIFF:
            return

        if state == ParserState.DIFF_BODY:
            self._write(line)
            return

        if state == ParserState.DIFF_BEGIN:
            if line.startswith("deleted file mode "):
                self._current.deleted_file = True
                self._transition(ParserState.DELETE_FILE_DIFF, line)
                return
            if line.startswith("new file mode "):
                self._current.new_file = True
                self._transition(ParserState.NEW_FILE_DIFF, line)
                return
            if line.startswith("old mode "):
                self._current.mode_changed = True
                self._transition(ParserState.MODIFY_FILE_MODE_DIFF, line)
                return
            if line.startswith("index "):
                self._current.content_changed = True
                self._transition(ParserState.MODIFY_FILE_DIFF, line)
                return
            self._fail(line)

        if state == ParserState.MODIFY_FILE_MODE_DIFF:
            if line.startswith("new mode "):
                self._transition(ParserState.MODIFY_FILE_DIFF, line)
                return
            self._fail(line)

        if state in (
            ParserState.NEW_FILE_DIFF,
            ParserState.DELETE_FILE_DIFF,
            ParserState.MODIFY_FILE_DIFF,
        ):
            if line.startswith("index "):
                self._current.content_changed = True
                self._write(line)
                return
            if line.startswith("--- "):
                self._write("--- " + self._rewrite_side(line[4:], "a/"))
                return
            if line.startswith("+++ "):
                self._write("+++ " + self._rewrite_side(line[4:], "b/"))
                self.state = ParserState.DIFF_BODY
                return
            if line.startswith("GIT binary patch"):
                self._current.content_changed = True
                self._transition(ParserState.DIFF_BODY, line)
                return
            if line.startswith("Binary files "):
                self._current.content_changed = True
                self._transition(ParserState.DIFF_BODY, self._rewrite_binary_line(line))
                return
            self._fail(line)

        self._fail(line)

    # ------------------------------------------------------------------
    # Section headers
    # ------------------------------------------------------------------

    @property
    def _current(self) -> DiffSection:
        return self.sections[-1]

    def _handle_diff_begin(self, line: str) -> None:
        path, quoted = self._parse_header_path(line)
        if not self.matcher.matches(path):
            self.state = ParserState.IGNORE_DIFF
            return

        self._path = self.matcher.trim(path)
        self._quoted = quoted
        self.sections.append(DiffSection(path=self._path))
        self._transition(
            ParserState.DIFF_BEGIN,
            f"{DIFF_HEADER}{self._format_path('a/')} {self._format_path('b/')}",
        )

    def _parse_header_path(self, line: str) -> tuple[str, bool]:
        rest = line[len(DIFF_HEADER):]
        if rest.startswith('"'):
            try:
                end = _scan_quoted(rest)
            except ValueError:
                self._fail(line)
            a_side = unquote_c_style(rest[:end])
            if not a_side.startswith("a/"):
                self._fail(line)
            return a_side[2:], True

        # Without renames both sides name the same path: "a/<p> b/<p>".
        path_len = (len(rest) - 5) // 2
        path = rest[2:2 + path_len]
        if path_len <= 0 or rest != f"a/{path} b/{path}":
            self._fail(line)
        return path, False

    def _format_path(self, prefix: str) -> str:
        full = prefix + self._path
        return quote_c_style(full) if self._quoted else full

    def _rewrite_side(self, value: str, prefix: str) -> str:
        if value == DEV_NULL:
            return value
        return self._format_path(prefix)

    def _rewrite_binary_line(self, line: str) -> str:
        original = self.matcher.base_path
        if not original:
            return line
        for prefix in ("a/", "b/"):
            line = line.replace(
                f"{prefix}{original}/{self._path}", f"{prefix}{self._path}"
            )
        return line

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _transition(self, state: ParserState, line: str) -> None:
        self.state = state
        self._write(line)

    def _write(self, line: str) -> None:
        self._out.append(line)

    def _fail(self, line: str) -> None:
        raise DiffParseError(line, self.state.value, self.artifact)
