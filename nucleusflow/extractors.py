"""Metadata extractors for NucleusFlow.

Each extractor handles a single piece of metadata and returns a partial
dictionary; :class:`CompositeMetadataExtractor` merges their results.

Key classes:
- FrontmatterExtractor: Splits the YAML frontmatter block from the body.
- TitleExtractor: Falls back to the first level-1 heading.
- DescriptionExtractor: Falls back to the first paragraph.
- CompositeMetadataExtractor: Runs extractors in order and builds ContentMetadata.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import yaml

from .errors import ContentError
from .models import ContentMetadata
from .utils import first_paragraph, titleize

FRONTMATTER_OPEN_RE = re.compile(r"\A---[ \t]*\r?\n")
FRONTMATTER_CLOSE_RE = re.compile(r"^---[ \t]*\r?$\n?", re.MULTILINE)


def extract_frontmatter(text: str, path: Path | None = None) -> tuple[dict[str, Any], str]:
    """Split YAML frontmatter from the body.

    Text not starting with ``---`` has no frontmatter.

    Args:
        text: Raw file content.
        path: File being parsed, for error context.

    Returns:
        Tuple of (frontmatter dict, remaining body).

    Raises:
        ContentError: PROCESS if the block is unterminated, is not valid YAML,
            or is not a mapping.
    """
    opening = FRONTMATTER_OPEN_RE.match(text)
    if not opening:
        return {}, text
    closing = FRONTMATTER_CLOSE_RE.search(text, opening.end())
    if not closing:
        raise ContentError.process_error("unterminated frontmatter block", path)
    block = text[opening.end() : closing.start()]
    try:
        data = yaml.safe_load(block)
    except yaml.YAMLError as exc:
        raise ContentError.process_error(f"invalid frontmatter: {exc}", path, exc) from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ContentError.process_error("frontmatter must be a mapping", path)
    return data, text[closing.end() :]


class FrontmatterExtractor:
    """Extracts the frontmatter mapping and the body that follows it."""

    def extract(self, content: str, path: Path) -> dict[str, Any]:
        frontmatter, body = extract_frontmatter(content, path)
        return {"frontmatter": frontmatter, "body": body}


class TitleExtractor:
    """Uses the first ``# `` heading of the body, then the filename."""

    def extract(self, content: str, path: Path) -> dict[str, Any]:
        for line in content.splitlines():
            stripped = line.strip()
            if stripped.startswith("# "):
                return {"title": stripped[2:].strip()}
        return {"title": titleize(path.name)}


class DescriptionExtractor:
    """Uses the first paragraph of the body, truncated to 160 characters."""

    def extract(self, content: str, path: Path) -> dict[str, Any]:
        return {"description": first_paragraph(content)}


class CompositeMetadataExtractor:
    """Combines the frontmatter extractor with fallback extractors.

    Frontmatter values always win; fallbacks only fill fields the
    frontmatter left empty.
    """

    def __init__(self, fallbacks: list | None = None):
        """Initialize with fallback extractors.

        Args:
            fallbacks: Extractors run against the body. Defaults to title
                and description extraction.
        """
        self._frontmatter = FrontmatterExtractor()
        if fallbacks is None:
            self._fallbacks = [TitleExtractor(), DescriptionExtractor()]
        else:
            self._fallbacks = list(fallbacks)

    def extract(self, content: str, path: Path) -> tuple[ContentMetadata, str]:
        """Extract metadata and body from a content file.

        Args:
            content: Decoded file content.
            path: Path of the file.

        Returns:
            Tuple of (metadata, markdown body).

        Raises:
            ContentError: PROCESS if the frontmatter cannot be parsed.
        """
        parts = self._frontmatter.extract(content, path)
        frontmatter, body = parts["frontmatter"], parts["body"]
        derived: dict[str, Any] = {}
        for extractor in self._fallbacks:
            derived.update(extractor.extract(body, path))
        fallback = ContentMetadata(
            title=str(derived.get("title") or ""),
            description=str(derived.get("description") or ""),
        )
        return fallback.merge(ContentMetadata.from_frontmatter(frontmatter)), body
