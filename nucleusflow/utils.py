"""Utility functions for NucleusFlow.

String processing, value coercion and path helpers shared by the stages
and the configuration layer.

Key functions:
    slugify: Convert text to a URL slug.
    titleize: Convert filenames to human-readable titles.
    generate_heading_id: Anchor id for a heading.
    first_paragraph: Plain-text first paragraph of a markdown body.
    strip_tags: Remove HTML tags from a fragment.
    parse_bool / parse_duration / parse_string_set: Config value coercion.
    ensure_clean_dir: Ensure a directory exists and is empty.
"""

from __future__ import annotations

import re
import shutil
from collections.abc import Iterable
from datetime import timedelta
from pathlib import Path

_TAG_RE = re.compile(r"<[^>]+>")
_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)?\s*$", re.IGNORECASE)
_DURATION_UNITS = {
    "ms": 0.001,
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
}
_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0"}


def slugify(name: str) -> str:
    """Convert text (or a filename stem) to a slug, dropping any date prefix.

    Args:
        name: Text to convert.

    Returns:
        URL-friendly slug.

    Examples:
        >>> slugify("2024-01-15-Hello World")
        'hello-world'
    """
    cleaned = name
    if "-" in cleaned:
        parts = cleaned.split("-")
        if len(parts) >= 4 and all(p.isdigit() for p in parts[:3]):
            cleaned = "-".join(parts[3:])
    cleaned = re.sub(r"[^a-zA-Z0-9]+", "-", cleaned)
    cleaned = cleaned.strip("-").lower()
    return cleaned or "index"


def titleize(filename: str) -> str:
    """Convert a filename to a human-readable title.

    Removes date prefixes (YYYY-MM-DD), replaces hyphens and underscores
    with spaces, and capitalizes each word.

    Args:
        filename: Filename with or without extension.

    Returns:
        Human-readable title string.

    Examples:
        >>> titleize("2024-01-15-hello-world.md")
        'Hello World'
    """
    base = Path(filename).stem
    if "-" in base:
        parts = base.split("-")
        if len(parts) >= 4 and all(p.isdigit() for p in parts[:3]):
            base = "-".join(parts[3:])
    words = re.split(r"[\s\-_]+", base)
    return " ".join(word.capitalize() for word in words if word) or "Untitled"


def generate_heading_id(text: str) -> str:
    """Generate a URL-friendly anchor id from heading text.

    Args:
        text: Heading text, possibly containing inline HTML.

    Returns:
        Slug suitable for ``id`` attributes and ``#fragment`` links.
    """
    slug = strip_tags(text).lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[-\s]+", "-", slug)
    return slug.strip("-") or "section"


def strip_tags(html: str) -> str:
    """Remove HTML tags, keeping the text between them."""
    return _TAG_RE.sub("", html)


def first_paragraph(text: str, limit: int = 160) -> str:
    """Extract and clean the first paragraph from a markdown body.

    Headings, images, code fences and rules are skipped. HTML tags are
    stripped and whitespace collapsed.

    Args:
        text: Markdown text.
        limit: Maximum character length of the result.

    Returns:
        Cleaned first paragraph, truncated to ``limit`` characters.
    """
    paragraphs = [p.strip() for p in text.split("\n\n") if p.strip()]
    for para in paragraphs:
        if para.startswith(("#", "![", "```", "---", "<nav")):
            continue
        collapsed = " ".join(strip_tags(para).split())
        return collapsed[:limit]
    return ""


def parse_bool(value: object) -> bool:
    """Coerce a config value to a boolean.

    Raises:
        ValueError: If the value is not a recognised boolean spelling.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def parse_duration(value: object) -> timedelta:
    """Coerce a config value to a duration.

    Accepts timedeltas, numbers of seconds, and strings such as ``"30s"``,
    ``"5m"``, ``"1h"`` or ``"250ms"``.

    Raises:
        ValueError: If the value cannot be read as a duration.
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f"not a duration: {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    match = _DURATION_RE.match(str(value))
    if not match:
        raise ValueError(f"not a duration: {value!r}")
    amount = float(match.group(1))
    unit = (match.group(2) or "s").lower()
    return timedelta(seconds=amount * _DURATION_UNITS[unit])


def parse_string_set(value: object) -> frozenset[str]:
    """Coerce a list or comma-separated string into a set of strings."""
    if isinstance(value, str):
        items: Iterable[object] = value.split(",")
    elif isinstance(value, Iterable):
        items = value
    else:
        raise ValueError(f"not a list of strings: {value!r}")
    return frozenset(str(item).strip() for item in items if str(item).strip())


def ensure_clean_dir(path: Path) -> None:
    """Ensure a directory exists and is empty.

    Args:
        path: Directory path to clean or create.
    """
    if path.exists():
        shutil.rmtree(str(path))
    path.mkdir(parents=True, exist_ok=True)


def is_within(path: Path, root: Path) -> bool:
    """Check whether ``path`` is ``root`` or lies beneath it."""
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return True
