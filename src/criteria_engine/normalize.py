"""
Normalized text views of an artifact.

Patterns run against one of three views of an artifact's content:

- ``raw``: the content with line endings normalized to ``\\n``
- ``no_comments``: comments blanked out
- ``code``: comments and string-literal bodies blanked out

Blanking replaces every character except newlines with a space, so offsets,
line numbers and columns computed on any view refer to the raw text.
Languages without a known comment syntax are returned unchanged.

Example:
    >>> text = NormalizedText('x = 1  # TODO: fix\\n', language="python")
    >>> text.view(TextMode.NO_COMMENTS)
    'x = 1             \\n'
"""

from __future__ import annotations

import bisect
import logging
import re
from dataclasses import dataclass
from typing import Optional

from criteria_engine.models import TextMode

logger = logging.getLogger(__name__)


# =============================================================================
# Lexical tokens
# =============================================================================


@dataclass(frozen=True)
class _Token:
    """A comment or string-literal form; ``delimiter`` is kept when blanking string bodies."""

    kind: str
    pattern: str
    delimiter: int = 0


_TRIPLE_DOUBLE = _Token("string", r'"""[\s\S]*?(?:"""|\Z)', 3)
_TRIPLE_SINGLE = _Token("string", r"'''[\s\S]*?(?:'''|\Z)", 3)
_DOUBLE = _Token("string", r'"(?:\\.|[^"\\\n])*"?', 1)
_SINGLE = _Token("string", r"'(?:\\.|[^'\\\n])*'?", 1)
_BACKTICK = _Token("string", r"`(?:\\.|[^`\\])*`?", 1)
_HASH = _Token("comment", r"#[^\n]*")
_WORD_HASH = _Token("comment", r"(?:(?<=\s)|^)#[^\n]*")
_LINE = _Token("comment", r"//[^\n]*")
_BLOCK = _Token("comment", r"/\*[\s\S]*?(?:\*/|\Z)")
_DASH_DASH = _Token("comment", r"--[^\n]*")
_XML = _Token("comment", r"<!--[\s\S]*?(?:-->|\Z)")
_INI = _Token("comment", r"^[ \t]*[;#][^\n]*")

_C_FAMILY = (_BLOCK, _LINE, _DOUBLE, _SINGLE)

LANGUAGE_SYNTAX: dict[str, tuple[_Token, ...]] = {
    "python": (_TRIPLE_DOUBLE, _TRIPLE_SINGLE, _DOUBLE, _SINGLE, _HASH),
    "javascript": (_BLOCK, _LINE, _BACKTICK, _DOUBLE, _SINGLE),
    "typescript": (_BLOCK, _LINE, _BACKTICK, _DOUBLE, _SINGLE),
    "go": (_BLOCK, _LINE, _BACKTICK, _DOUBLE, _SINGLE),
    "java": _C_FAMILY,
    "kotlin": (_TRIPLE_DOUBLE,) + _C_FAMILY,
    "csharp": _C_FAMILY,
    "c": _C_FAMILY,
    "cpp": _C_FAMILY,
    "rust": (_BLOCK, _LINE, _DOUBLE),
    "php": (_BLOCK, _LINE, _HASH, _DOUBLE, _SINGLE),
    "ruby": (_HASH, _DOUBLE, _SINGLE),
    "shell": (_WORD_HASH, _DOUBLE, _SINGLE),
    "powershell": (_WORD_HASH, _DOUBLE, _SINGLE),
    "yaml": (_WORD_HASH, _DOUBLE, _SINGLE),
    "toml": (_TRIPLE_DOUBLE, _TRIPLE_SINGLE, _HASH, _DOUBLE, _SINGLE),
    "hcl": (_BLOCK, _LINE, _HASH, _DOUBLE),
    "ini": (_INI,),
    "sql": (_BLOCK, _DASH_DASH, _SINGLE, _DOUBLE),
    "xml": (_XML, _DOUBLE, _SINGLE),
    "markdown": (_XML,),
}


def _compile_syntax(tokens: tuple[_Token, ...]) -> re.Pattern[str]:
    alternatives = "|".join(f"(?P<t{i}>{token.pattern})" for i, token in enumerate(tokens))
    return re.compile(alternatives, re.MULTILINE)


_COMPILED_SYNTAX: dict[str, re.Pattern[str]] = {
    language: _compile_syntax(tokens) for language, tokens in LANGUAGE_SYNTAX.items()
}


# =============================================================================
# Normalization functions
# =============================================================================


def normalize_newlines(text: str) -> str:
    """Convert ``\\r\\n`` and lone ``\\r`` line endings to ``\\n``."""
    if "\r" not in text:
        return text
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _blank(segment: str) -> str:
    return re.sub(r"[^\n]", " ", segment)


def blank_text(text: str, language: Optional[str], mode: TextMode) -> str:
    """
    Produce the ``mode`` view of already newline-normalized text.

    Args:
        text: Newline-normalized content.
        language: Artifact language; unknown languages are returned unchanged.
        mode: Requested view.

    Returns:
        Text of the same length with comments (and, for ``code``, string
        bodies) replaced by spaces.
    """
    if mode == TextMode.RAW or not language:
        return text

    syntax = _COMPILED_SYNTAX.get(language)
    if syntax is None:
        logger.debug(f"No comment syntax known for language '{language}', view left unchanged")
        return text

    tokens = LANGUAGE_SYNTAX[language]
    pieces: list[str] = []
    last = 0
    for match in syntax.finditer(text):
        token = tokens[int(match.lastgroup[1:])]  # type: ignore[index]
        start, end = match.span()
        if token.kind == "comment":
            pieces.append(text[last:start])
            pieces.append(_blank(text[start:end]))
            last = end
        elif mode == TextMode.CODE:
            delim = token.delimiter
            body_start = start + delim
            terminated = end - start >= 2 * delim and text[end - delim : end] == text[start:body_start]
            body_end = end - delim if terminated else end
            pieces.append(text[last:body_start])
            pieces.append(_blank(text[body_start:body_end]))
            last = body_end
    pieces.append(text[last:])
    return "".join(pieces)


# =============================================================================
# NormalizedText
# =============================================================================


class NormalizedText:
    """
    Lazily computed text views of one artifact plus offset -> line/column lookup.

    One instance is built per artifact inside the worker scanning it, so the
    view cache is never shared between threads.
    """

    def __init__(self, content: str, language: Optional[str] = None):
        self.raw = normalize_newlines(content)
        self.language = language
        self._views: dict[TextMode, str] = {TextMode.RAW: self.raw}
        self._line_starts: list[int] = [0] + [m.end() for m in re.finditer(r"\n", self.raw)]

    def view(self, mode: TextMode) -> str:
        if mode not in self._views:
            self._views[mode] = blank_text(self.raw, self.language, mode)
        return self._views[mode]

    @property
    def line_count(self) -> int:
        return len(self._line_starts)

    def line_number_at_pos(self, pos: int) -> int:
        """Return 1-based line number for character position."""
        return bisect.bisect_right(self._line_starts, pos)

    def column_at_pos(self, pos: int) -> int:
        """Return 1-based column number for character position."""
        return pos - self._line_starts[self.line_number_at_pos(pos) - 1] + 1

    def line_start(self, line: int) -> int:
        """Offset of the first character of 1-based ``line`` (clamped to the text)."""
        line = min(max(line, 1), len(self._line_starts))
        return self._line_starts[line - 1]

    def line_end(self, line: int) -> int:
        """Offset just past the last character of 1-based ``line``, excluding the newline."""
        line = min(max(line, 1), len(self._line_starts))
        if line < len(self._line_starts):
            return self._line_starts[line] - 1
        return len(self.raw)

    def lines(self) -> list[str]:
        return self.raw.split("\n")

    def snippet(self, line_number: int, context_lines: int = 2, end_line: Optional[int] = None) -> str:
        """
        Extract a snippet with surrounding context.

        Lines in the reported span are marked with an arrow (>>>).

        Example:
            >>> print(text.snippet(3, context_lines=1))
                2 | with open(path) as f:
            >>> 3 |     data = f.read()
                4 | return data
        """
        lines = self.lines()
        end_line = end_line or line_number
        first = max(0, line_number - 1 - context_lines)
        last = min(len(lines), end_line + context_lines)
        width = len(str(last))

        snippet_lines = []
        for idx in range(first, last):
            current = idx + 1
            prefix = ">>>" if line_number <= current <= end_line else "   "
            snippet_lines.append(f"{prefix} {str(current).rjust(width)} | {lines[idx]}")
        return "\n".join(snippet_lines)
