"""Helpers for slicing an artifact into its markup, style and script parts."""

from __future__ import annotations

import re
from dataclasses import dataclass

_SCRIPT_RE = re.compile(r"<script\b([^>]*)>(.*?)</script\s*>", re.IGNORECASE | re.DOTALL)
_STYLE_RE = re.compile(r"<style\b[^>]*>(.*?)</style\s*>", re.IGNORECASE | re.DOTALL)
_SRC_ATTR_RE = re.compile(r"\bsrc\s*=", re.IGNORECASE)

# Strings (single, double, template) and comments, in one alternation so
# that a quote inside a comment (or // inside a string) is handled correctly.
_JS_LITERAL_RE = re.compile(
    r"""
    //[^\n]*                      # line comment
    | /\*.*?\*/                   # block comment
    | "(?:\\.|[^"\\\n])*"         # double-quoted string
    | '(?:\\.|[^'\\\n])*'         # single-quoted string
    | `(?:\\.|[^`\\])*`           # template literal
    """,
    re.DOTALL | re.VERBOSE,
)
_CSS_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)

_PAIRS = {")": "(", "]": "[", "}": "{"}

_INTERVAL_CALL_RE = re.compile(r"\bsetInterval\s*\(")
_INTEGER_ARG_RE = re.compile(r"\s*(\d+)\s*")

# One display frame at 60 Hz, in milliseconds.
FRAME_INTERVAL_MS = 16

# Lookahead: the expression just matched is not written to (assignment,
# compound assignment, increment or decrement).
NOT_ASSIGNED = r"(?!\s*(?:(?:\*\*|<<|>>>?|\?\?|&&|\|\||[-+*/%&|^])?=(?!=)|\+\+|--))"


@dataclass(frozen=True)
class Block:
    """A ``<script>`` or ``<style>`` body with its position in the artifact."""

    body: str
    start: int  # offset of the body within the artifact text
    line: int  # 1-based line of the opening tag
    inline: bool = True


def line_of(text: str, offset: int) -> int:
    return text.count("\n", 0, offset) + 1


def find_line(text: str, needle: str) -> int:
    """1-based line of the first occurrence of ``needle``; 1 when absent."""
    offset = text.find(needle)
    return line_of(text, offset) if offset >= 0 else 1


def script_blocks(text: str) -> list[Block]:
    blocks: list[Block] = []
    for match in _SCRIPT_RE.finditer(text):
        attrs, body = match.group(1), match.group(2)
        blocks.append(
            Block(
                body=body,
                start=match.start(2),
                line=line_of(text, match.start()),
                inline=not _SRC_ATTR_RE.search(attrs),
            )
        )
    return blocks


def inline_scripts(text: str) -> list[Block]:
    return [block for block in script_blocks(text) if block.inline and block.body.strip()]


def style_blocks(text: str) -> list[Block]:
    return [
        Block(body=m.group(1), start=m.start(1), line=line_of(text, m.start()))
        for m in _STYLE_RE.finditer(text)
    ]


def script_source(text: str) -> str:
    """All inline script bodies joined; the whole text when it has no script tags."""
    if not _SCRIPT_RE.search(text):
        return text
    return "\n".join(block.body for block in inline_scripts(text))


def strip_js_literals(source: str) -> str:
    """Blank out strings and comments, keeping newlines so line numbers survive."""
    return _JS_LITERAL_RE.sub(lambda m: re.sub(r"[^\n]", " ", m.group(0)), source)


def strip_css_comments(source: str) -> str:
    return _CSS_COMMENT_RE.sub(lambda m: re.sub(r"[^\n]", " ", m.group(0)), source)


def count_balance(source: str, opener: str, closer: str) -> int:
    """Opening minus closing count of one delimiter pair."""
    return source.count(opener) - source.count(closer)


def first_unbalanced(source: str) -> tuple[str, int] | None:
    """Return ``(delimiter, offset)`` of the first mismatched bracket, if any.

    ``source`` should already have literals stripped.
    """
    stack: list[tuple[str, int]] = []
    for offset, char in enumerate(source):
        if char in "([{":
            stack.append((char, offset))
        elif char in _PAIRS:
            if not stack or stack[-1][0] != _PAIRS[char]:
                return char, offset
            stack.pop()
    if stack:
        return stack[-1]
    return None


def script_segments(text: str) -> list[Block]:
    """Inline script blocks; the whole text as one block when it has no script tags."""
    if not _SCRIPT_RE.search(text):
        return [Block(body=text, start=0, line=1)]
    return inline_scripts(text)


def call_arguments(source: str, open_paren: int) -> list[tuple[int, int]] | None:
    """``(start, end)`` spans of the top-level arguments of a call.

    ``open_paren`` is the offset of the call's ``(``. Returns ``None`` when
    the call is never closed. ``source`` should already have literals
    stripped.
    """
    spans: list[tuple[int, int]] = []
    depth = 0
    start = open_paren + 1
    for offset in range(open_paren + 1, len(source)):
        char = source[offset]
        if char in "([{":
            depth += 1
        elif char in _PAIRS:
            if depth == 0:
                if char != ")":
                    return None
                if source[start:offset].strip() or spans:
                    spans.append((start, offset))
                return spans
            depth -= 1
        elif char == "," and depth == 0:
            spans.append((start, offset))
            start = offset + 1
    return None


def interval_delays(source: str) -> list[tuple[int, int, int]]:
    """``(start, end, delay)`` of every ``setInterval`` whose delay is an integer literal.

    The delay is the call's second top-level argument; ``start`` and
    ``end`` bound its digits. ``source`` should already have literals
    stripped.
    """
    delays: list[tuple[int, int, int]] = []
    for match in _INTERVAL_CALL_RE.finditer(source):
        args = call_arguments(source, match.end() - 1)
        if args is None or len(args) < 2:
            continue
        digits = _INTEGER_ARG_RE.fullmatch(source, *args[1])
        if digits is not None:
            delays.append((digits.start(1), digits.end(1), int(digits.group(1))))
    return delays
