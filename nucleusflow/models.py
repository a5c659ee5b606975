"""Data passed between the pipeline stages.

Key classes:
- ContentMetadata: Metadata extracted from a content file's frontmatter.
- Heading: A heading collected while rendering markdown, for the TOC.
- ContentSource: Raw bytes of a content file plus its path.
- ProcessedContent: Output of the content stage.
- ProcessingOptions: Per-call overrides layered over Config defaults.
- PipelineContext: Context handed to content processors.
- OutputContext: Context handed to output generators.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from markupsafe import Markup

if TYPE_CHECKING:
    from .config import Config

RESERVED_KEYS = ("title", "description", "date", "tags")


def _unique(items: Iterable[Any]) -> list[str]:
    seen: dict[str, None] = {}
    for item in items:
        text = str(item).strip()
        if text:
            seen.setdefault(text, None)
    return list(seen)


@dataclass
class ContentMetadata:
    """Metadata for one content file.

    Attributes:
        title: Page title.
        description: Short summary of the page.
        date: Publication date as read from frontmatter (date, datetime or string).
        tags: Ordered tags without duplicates.
        custom: Every other frontmatter key.
    """

    title: str = ""
    description: str = ""
    date: date | datetime | str | None = None
    tags: list[str] = field(default_factory=list)
    custom: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.tags = _unique(self.tags)

    @classmethod
    def from_frontmatter(cls, data: Mapping[str, Any]) -> ContentMetadata:
        """Build metadata from a parsed frontmatter mapping.

        Args:
            data: Parsed frontmatter.

        Returns:
            ContentMetadata with recognised keys populated and the rest in ``custom``.
        """
        tags = data.get("tags") or []
        if isinstance(tags, str):
            tags = tags.split(",")
        elif not isinstance(tags, Iterable):
            tags = [tags]
        return cls(
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            date=data.get("date"),
            tags=list(tags),
            custom={str(k): v for k, v in data.items() if k not in RESERVED_KEYS},
        )

    def to_frontmatter(self) -> str:
        """Serialize back into a ``---`` delimited YAML frontmatter block."""
        data: dict[str, Any] = {}
        if self.title:
            data["title"] = self.title
        if self.description:
            data["description"] = self.description
        if self.date is not None:
            data["date"] = self.date
        if self.tags:
            data["tags"] = list(self.tags)
        data.update(self.custom)
        if not data:
            return "---\n---\n"
        body = yaml.safe_dump(data, sort_keys=False, allow_unicode=True, default_flow_style=False)
        return f"---\n{body}---\n"

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly view used for template contexts and indexes."""
        when = self.date.isoformat() if isinstance(self.date, (date, datetime)) else self.date
        return {
            "title": self.title,
            "description": self.description,
            "date": when,
            "tags": list(self.tags),
            "custom": dict(self.custom),
        }

    def merge(self, other: ContentMetadata) -> ContentMetadata:
        """Return metadata where non-empty fields of ``other`` win."""
        return ContentMetadata(
            title=other.title or self.title,
            description=other.description or self.description,
            date=other.date if other.date is not None else self.date,
            tags=[*self.tags, *other.tags],
            custom={**self.custom, **other.custom},
        )


@dataclass(frozen=True)
class Heading:
    """A heading collected during rendering.

    Attributes:
        id: Anchor id written on the heading element.
        text: Heading text (may contain inline HTML).
        level: Heading level, 1-6.
    """

    id: str
    text: str
    level: int


@dataclass(frozen=True)
class ContentSource:
    """Raw content file handed to the content stage."""

    path: Path
    data: bytes


@dataclass
class ProcessedContent:
    """Result of the content stage for one file.

    Attributes:
        metadata: Extracted metadata.
        body_html: Rendered (and possibly sanitized) HTML body.
        toc_html: Table-of-contents fragment, empty when disabled.
        headings: Headings collected from the body.
        source_path: Content file this was produced from.
    """

    metadata: ContentMetadata
    body_html: str
    toc_html: str = ""
    headings: list[Heading] = field(default_factory=list)
    source_path: Path | None = None

    def as_template_context(self) -> dict[str, Any]:
        """Variables bound when rendering this content into a template."""
        body = Markup(self.body_html)
        return {
            "title": self.metadata.title,
            "description": self.metadata.description,
            "date": self.metadata.date,
            "tags": list(self.metadata.tags),
            "custom": dict(self.metadata.custom),
            "body": body,
            "content": body,
            "toc": Markup(self.toc_html),
            "metadata": self.metadata.to_dict(),
            "source_path": self.source_path.as_posix() if self.source_path else "",
        }


@dataclass(frozen=True)
class ProcessingOptions:
    """Per-call overrides; never mutates the Config they are layered on.

    Attributes:
        cache_enabled: Whether stage caches may be read and written.
        strict_mode: Undefined template variables fail the render.
        validate: Run pre-flight validators before transforming.
        custom: Open mapping of stage-specific options.
    """

    cache_enabled: bool = True
    strict_mode: bool = False
    validate: bool = True
    custom: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: Config, **overrides: Any) -> ProcessingOptions:
        options = cls(
            strict_mode=config.template.strict_mode,
            validate=config.content.validate,
        )
        return dataclasses.replace(options, **overrides) if overrides else options

    def with_custom(self, **values: Any) -> ProcessingOptions:
        return dataclasses.replace(self, custom={**self.custom, **values})


@dataclass(frozen=True)
class PipelineContext:
    """Context for content processors: the active config and call options."""

    config: Config
    options: ProcessingOptions = field(default_factory=ProcessingOptions)


@dataclass(frozen=True)
class OutputContext:
    """Context for output generators.

    Attributes:
        metadata: Metadata of the page being generated.
        output_path: Where to write the artifact; nothing is written when None.
        source_path: Content file the page came from.
        url: Site-relative URL of the page, used for indexes.
    """

    metadata: ContentMetadata = field(default_factory=ContentMetadata)
    output_path: Path | None = None
    source_path: Path | None = None
    url: str = ""
