"""Utility functions for the notegraph engine."""
import re
import unicodedata
from typing import Callable

_NON_ALNUM = re.compile(r"[^a-z0-9]+")

# Slug used when a title has no ASCII alphanumeric characters at all
FALLBACK_SLUG = "note"


def slugify(text: str) -> str:
    """Normalize a title into a URL-safe slug.

    Rules:
    - Unicode NFC normalize
    - Lowercase
    - Replace any run of non-alphanumeric characters with a single hyphen
    - Trim leading/trailing hyphens

    Examples:
        "John Smith" -> "john-smith"
        "R&D Co., Inc." -> "r-d-co-inc"

    Args:
        text: The text to slugify.

    Returns:
        The slug, or an empty string for empty input.
    """
    if not text:
        return ""
    normalized = unicodedata.normalize("NFC", text).lower()
    return _NON_ALNUM.sub("-", normalized).strip("-")


def unique_slug(title: str, exists: Callable[[str], bool]) -> str:
    """Derive a slug from title that does not collide with an existing one.

    Collisions are resolved with a numeric suffix: "idea", "idea-2", "idea-3".

    Args:
        title: The note title.
        exists: Predicate telling whether a slug is already taken.

    Returns:
        A slug for which exists() is False.
    """
    base = slugify(title) or FALLBACK_SLUG
    if not exists(base):
        return base
    suffix = 2
    while exists(f"{base}-{suffix}"):
        suffix += 1
    return f"{base}-{suffix}"


def escape_like_pattern(value: str) -> str:
    """Escape SQL LIKE wildcards to treat them as literals.

    Prevents SQL LIKE pattern injection where user input containing
    '%' or '_' could match unintended patterns.

    Args:
        value: User input string that may contain LIKE wildcards

    Returns:
        String with '%', '_', and '\\' escaped for safe use in LIKE clauses

    Example:
        >>> escape_like_pattern("100% complete")
        '100\\% complete'
    """
    escape_table = str.maketrans(
        {
            "\\": "\\\\",  # Escape backslash first
            "%": "\\%",
            "_": "\\_",
        }
    )
    return value.translate(escape_table)


def excerpt(content: str, length: int = 100) -> str:
    """Return a short preview of note content."""
    if not content:
        return ""
    if len(content) <= length:
        return content
    return content[:length] + "..."
