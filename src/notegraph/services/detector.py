"""Detection of open reference spans around the cursor.

Both detectors are pure functions: every keystroke re-derives the span
from the text and cursor alone, so paste, undo and other non-local edits
can never leave stale "open span" state behind.

Offsets are Python string indexes; ``cursor`` is the number of characters
before the caret.
"""
import re
from typing import List, Optional

from notegraph.models.schema import BracketLink, Span
from notegraph.utils import slugify

OPEN_MARKER = "[["
CLOSE_MARKER = "]]"
HASH_MARKER = "#"

# Complete references: inner text may not contain brackets
_BRACKET_LINK = re.compile(r"\[\[([^\[\]]+)\]\]")
_HASHTAG = re.compile(r"(?<![A-Za-z0-9])#([A-Za-z][A-Za-z0-9_-]*)")


def _clamp_cursor(text: str, cursor: int) -> int:
    return max(0, min(cursor, len(text)))


def detect_bracket(text: str, cursor: int) -> Optional[Span]:
    """Find the open ``[[`` span the cursor is in, if any.

    Scans backward from the cursor for the nearest opener. A ``]]`` or a
    line break met first means the cursor is not inside an open span. The
    innermost opener wins, so ``[[A[[B`` yields query ``B``. If a ``]]``
    closes the span later on the same line, the reference is already
    complete and no span is reported.

    Args:
        text: The full note text.
        cursor: Caret offset; clamped into ``[0, len(text)]``.

    Returns:
        ``Span(start, end=cursor, query)`` or None.
    """
    cursor = _clamp_cursor(text, cursor)
    i = cursor - 2
    start = None
    while i >= 0:
        if text[i + 1] == "\n":
            return None
        pair = text[i:i + 2]
        if pair == CLOSE_MARKER:
            return None
        if pair == OPEN_MARKER:
            start = i
            break
        i -= 1
    if start is None:
        return None

    # Already closed ahead of the cursor on the same line
    ahead = text[cursor:]
    line_end = ahead.find("\n")
    if line_end != -1:
        ahead = ahead[:line_end]
    close = ahead.find(CLOSE_MARKER)
    if close != -1:
        reopen = ahead.find(OPEN_MARKER)
        if reopen == -1 or reopen > close:
            return None

    return Span(start=start, end=cursor, query=text[start + 2:cursor], kind="bracket")


def detect_hashtag(text: str, cursor: int) -> Optional[Span]:
    """Find the open ``#tag`` span the cursor is in, if any.

    The ``#`` must begin a word (not follow a letter or digit); whitespace
    between it and the cursor ends the span. The span extends forward to
    the next whitespace so that editing in the middle of a tag replaces
    the whole token.
    """
    cursor = _clamp_cursor(text, cursor)
    i = cursor - 1
    start = None
    while i >= 0:
        ch = text[i]
        if ch.isspace():
            return None
        if ch == HASH_MARKER:
            start = i
            break
        i -= 1
    if start is None:
        return None
    if start > 0 and text[start - 1].isalnum():
        return None

    end = cursor
    while end < len(text) and not text[end].isspace() and text[end] != HASH_MARKER:
        end += 1
    return Span(start=start, end=end, query=text[start + 1:cursor], kind="hashtag")


def detect(text: str, cursor: int) -> Optional[Span]:
    """Detect whichever reference span is active at the cursor.

    Bracket references take precedence, so ``[[#1 issue`` is a bracket
    query rather than a hashtag.
    """
    return detect_bracket(text, cursor) or detect_hashtag(text, cursor)


def extract_bracket_links(text: str) -> List[BracketLink]:
    """Extract all complete ``[[...]]`` references from text.

    Inner text is trimmed; empty references are skipped.
    """
    results: List[BracketLink] = []
    if not text:
        return results
    for match in _BRACKET_LINK.finditer(text):
        raw = match.group(1).strip()
        if not raw:
            continue
        results.append(
            BracketLink(text=raw, slug=slugify(raw), start=match.start(), end=match.end())
        )
    return results


def extract_hashtags(text: str) -> List[str]:
    """Extract ``#tag`` tokens in order of appearance, without duplicates."""
    seen = set()
    tags = []
    for match in _HASHTAG.finditer(text or ""):
        tag = match.group(1)
        if tag.lower() not in seen:
            seen.add(tag.lower())
            tags.append(tag)
    return tags


def replace_span(text: str, span: Span, title: str) -> str:
    """Complete an open span with the chosen title.

    Bracket spans become ``[[title]]``; hashtag spans become ``#title``.
    """
    if span.kind == "hashtag":
        return f"{text[:span.start]}#{title}{text[span.end:]}"
    return f"{text[:span.start]}[[{title}]]{text[span.end:]}"
