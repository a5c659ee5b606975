"""Markdown content stage.

Key classes:
- ContentValidator: Pre-flight checks on raw content bytes.
- MarkdownProcessor: Frontmatter extraction, markdown conversion,
  sanitization and table-of-contents generation.

Functions:
- render_toc: Nested ``<nav>`` table of contents from collected headings.
"""

from __future__ import annotations

import hashlib
import html
import logging
import threading
from collections.abc import Iterable

from .cache import BoundedCache
from .config import ContentConfig
from .errors import ContentError, ProcessingError
from .extractors import CompositeMetadataExtractor, extract_frontmatter
from .html_utils import escape_html
from .models import ContentMetadata, ContentSource, Heading, PipelineContext, ProcessedContent
from .protocols import Shareable
from .renderers import MarkdownRenderer
from .sanitizer import HtmlSanitizer
from .utils import strip_tags, titleize

logger = logging.getLogger(__name__)


def render_toc(headings: Iterable[Heading], max_level: int = 3) -> str:
    """Render headings as a nested table of contents.

    Args:
        headings: Headings in document order.
        max_level: Deepest heading level included.

    Returns:
        ``<nav class="toc">`` markup, or an empty string when no heading
        qualifies.
    """
    entries = [h for h in headings if h.level <= max_level]
    if not entries:
        return ""

    parts = ['<nav class="toc" aria-label="Table of Contents">']
    level_stack: list[int] = []
    for heading in entries:
        level = heading.level
        while level_stack and level_stack[-1] > level:
            level_stack.pop()
            parts.append("</li></ul>")
        if level_stack and level_stack[-1] == level:
            parts.append("</li>")
        elif not level_stack or level > level_stack[-1]:
            parts.append("<ul>")
            level_stack.append(level)
        text = escape_html(html.unescape(strip_tags(heading.text)))
        parts.append(f'<li><a href="#{escape_html(heading.id)}" aria-label="{text}">{text}</a>')
    while level_stack:
        level_stack.pop()
        parts.append("</li></ul>")
    parts.append("</nav>")
    return "".join(parts)


class ContentValidator:
    """Rejects content that must not reach the markdown converter.

    Empty bodies, bodies larger than ``max_content_size`` and bytes that
    are not valid UTF-8 all fail with CONTENT_PROCESSING.
    """

    shareable = True

    def __init__(self, settings: ContentConfig):
        self.settings = settings

    def validate(self, input: ContentSource) -> None:
        if len(input.data) > self.settings.max_content_size:
            raise ProcessingError.content_processing(
                f"Content exceeds maximum size of {self.settings.max_content_size} bytes",
                path=input.path,
            )
        try:
            text = input.data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProcessingError.content_processing(
                "Content is not valid UTF-8", path=input.path, source=exc
            ) from exc
        if not text.strip():
            raise ProcessingError.content_processing("Content cannot be empty", path=input.path)


class MarkdownProcessor(Shareable):
    """Content stage turning markdown files into HTML fragments.

    Settings are read from ``context.config.content`` on every call so a
    reloaded config takes effect without rebuilding the processor.

    Processed results are cached by a SHA-256 digest of the input bytes,
    the path and the content settings.

    Attributes:
        cache: Processed-content cache.
        extractor: Metadata extractor.
    """

    def __init__(
        self,
        cache_size: int = 256,
        cache_ttl: float | None = None,
        extractor: CompositeMetadataExtractor | None = None,
    ):
        self.cache: BoundedCache[ProcessedContent] = BoundedCache(cache_size, ttl=cache_ttl)
        self.extractor = extractor or CompositeMetadataExtractor()
        self._sanitizers: dict[tuple[frozenset[str], frozenset[str]], HtmlSanitizer] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config) -> MarkdownProcessor:
        return cls(
            cache_size=config.max_cache_size,
            cache_ttl=config.template.cache_ttl.total_seconds(),
        )

    def reconfigure(self, config) -> None:
        """Resize the processed-content cache for a reloaded config."""
        self.cache = BoundedCache(
            config.max_cache_size, ttl=config.template.cache_ttl.total_seconds()
        )

    def sanitizer_for(self, settings: ContentConfig) -> HtmlSanitizer:
        key = (settings.allowed_html_tags, settings.allowed_functions)
        with self._lock:
            sanitizer = self._sanitizers.get(key)
            if sanitizer is None:
                sanitizer = HtmlSanitizer(*key)
                self._sanitizers[key] = sanitizer
            return sanitizer

    def process(self, input: ContentSource, context: PipelineContext) -> ProcessedContent:
        """Convert one content file.

        Args:
            input: Raw bytes and path of the content file.
            context: Active config and per-call options.

        Returns:
            ProcessedContent with metadata, HTML body and optional TOC.

        Raises:
            ProcessingError: CONTENT_PROCESSING wrapping a ContentError for
                frontmatter or conversion failures, or from validation.
        """
        settings = context.config.content
        options = context.options
        if options.validate:
            ContentValidator(settings).validate(input)

        key = None
        if options.cache_enabled:
            digest = hashlib.sha256(input.data).hexdigest()
            key = (digest, str(input.path), _settings_key(settings))
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        try:
            result = self._convert(input, settings)
        except ContentError as exc:
            raise exc.to_processing_error() from exc

        if key is not None:
            self.cache.put(key, result)
        return result

    def _convert(self, input: ContentSource, settings: ContentConfig) -> ProcessedContent:
        try:
            text = input.data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ContentError.process_error("content is not valid UTF-8", input.path, exc) from exc

        if settings.extract_metadata:
            metadata, body = self.extractor.extract(text, input.path)
        else:
            _, body = extract_frontmatter(text, input.path)
            metadata = ContentMetadata(title=titleize(input.path.name))

        try:
            body_html, headings = MarkdownRenderer(settings).render(body)
        except (ValueError, TypeError, AttributeError) as exc:
            raise ContentError.process_error(
                f"markdown conversion failed: {exc}", input.path, exc
            ) from exc

        # Sanitize rendered markup only; escaped markdown source is inert.
        if settings.sanitize:
            body_html = self.sanitizer_for(settings).sanitize(body_html)

        toc_html = render_toc(headings, settings.toc_max_level) if settings.toc else ""
        logger.debug("Processed %s (%d headings)", input.path, len(headings))
        return ProcessedContent(
            metadata=metadata,
            body_html=body_html,
            toc_html=toc_html,
            headings=headings,
            source_path=input.path,
        )


def _settings_key(settings: ContentConfig) -> tuple:
    return (
        settings.sanitize,
        settings.extract_metadata,
        settings.allowed_html_tags,
        settings.allowed_functions,
        settings.toc,
        settings.toc_max_level,
        settings.auto_links,
        settings.footnotes,
        settings.strikethrough,
        settings.tables,
    )
