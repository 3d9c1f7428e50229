"""
Telegram MarkdownV2 helpers: escaping and rendered-length measurement.

Telegram caps captions on the text the user *sees*, not on the markup we
send: a link shows only its anchor text, formatting markers and escape
backslashes are invisible.  ``render_plain_text`` reproduces that view for
the subset of MarkdownV2 we emit (and a little more), and
``rendered_length`` counts it in UTF-16 code units, which is how Telegram
counts.
"""

from __future__ import annotations

from typing import List

from telegram.helpers import escape_markdown as _ptb_escape_markdown

# Characters Telegram requires escaped in MarkdownV2 body text.
ESCAPE_CHARS = "_*[]()~`>#+-=|{}.!"

# Unescaped characters that only toggle formatting and render as nothing.
_FORMATTING_MARKERS = frozenset("*_~|")


def escape_markdown(text: str) -> str:
    """Escape ``text`` for MarkdownV2 body context.

    Backslashes are escaped too; Telegram would otherwise consume them.
    """
    return _ptb_escape_markdown(text, version=2)


def escape_link_url(url: str) -> str:
    """Escape a URL for the ``(...)`` part of an inline link."""
    return _ptb_escape_markdown(url, version=2, entity_type="text_link")


def escape_code(text: str) -> str:
    """Escape text placed between backticks."""
    return _ptb_escape_markdown(text, version=2, entity_type="code")


def escape_safe_cut_points(markup: str) -> List[int]:
    """Offsets at which ``markup`` can be cut without splitting an escape.

    Always includes ``0`` and ``len(markup)``.
    """
    points = [0]
    i = 0
    length = len(markup)
    while i < length:
        i += 2 if markup[i] == "\\" and i + 1 < length else 1
        points.append(i)
    return points


def _skip_code(markup: str, start: int, fence: str, out: List[str]) -> int:
    """Copy a code span or pre block to ``out``; return the index after it."""
    i = start
    if fence == "```":
        # Optional language tag on the opening line is not displayed.
        newline = markup.find("\n", i)
        closing = markup.find(fence, i)
        if newline != -1 and (closing == -1 or newline < closing):
            i = newline + 1
    length = len(markup)
    while i < length:
        if markup[i] == "\\" and i + 1 < length:
            out.append(markup[i + 1])
            i += 2
            continue
        if markup.startswith(fence, i):
            return i + len(fence)
        out.append(markup[i])
        i += 1
    return i


def _skip_link_target(markup: str, start: int) -> int:
    """Skip ``(url)`` after a link's closing bracket; return the next index."""
    if start >= len(markup) or markup[start] != "(":
        return start
    i = start + 1
    length = len(markup)
    while i < length:
        if markup[i] == "\\" and i + 1 < length:
            i += 2
            continue
        if markup[i] == ")":
            return i + 1
        i += 1
    return i


def render_plain_text(markup: str) -> str:
    """Return the text Telegram displays for MarkdownV2 ``markup``.

    Lenient: malformed markup (which Telegram would reject outright) is
    rendered best-effort rather than raising.
    """
    out: List[str] = []
    i = 0
    length = len(markup)
    line_start = True
    while i < length:
        ch = markup[i]
        if ch == "\\" and i + 1 < length:
            out.append(markup[i + 1])
            i += 2
            line_start = False
            continue
        if ch == "`":
            fence = "```" if markup.startswith("```", i) else "`"
            i = _skip_code(markup, i + len(fence), fence, out)
            line_start = False
            continue
        if ch == "]":
            i = _skip_link_target(markup, i + 1)
            continue
        if ch == "[":
            i += 1
            continue
        if ch == "!" and markup.startswith("![", i):
            # Custom emoji: only the bracketed text is shown.
            i += 1
            continue
        if ch == ">" and line_start:
            i += 1
            continue
        if ch in _FORMATTING_MARKERS:
            i += 1
            continue
        out.append(ch)
        line_start = ch == "\n"
        i += 1
    return "".join(out)


def utf16_length(text: str) -> int:
    """Length of ``text`` in UTF-16 code units."""
    return sum(2 if ord(ch) > 0xFFFF else 1 for ch in text)


def rendered_length(markup: str) -> int:
    """Rendered plain-text length of ``markup`` as Telegram measures it."""
    return utf16_length(render_plain_text(markup))
