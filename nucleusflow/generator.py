"""HTML output stage.

Key classes:
- HtmlGenerator: Assembles final pages (metadata injection, minification
  or pretty printing, validation), writes them, copies processed assets
  and gathers the tag index.
- CachedAsset: One processed asset held in the generator's cache.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .assets import AssetProcessorRegistry, create_default_registry
from .cache import BoundedCache
from .config import DEFAULT_ALLOWED_HTML_TAGS, Config, OutputConfig
from .content import write_content
from .errors import ContentError, ProcessingError
from .html_utils import (
    DOCUMENT_TAGS,
    HtmlStructureValidator,
    html_stats,
    inject_metadata,
    minify_html,
    pretty_print_html,
    strip_meta_tags,
)
from .models import ContentMetadata, OutputContext, ProcessingOptions
from .protocols import Shareable
from .utils import parse_string_set

logger = logging.getLogger(__name__)

_BOOL_OPTIONS = ("minify", "pretty_print")


@dataclass(frozen=True)
class CachedAsset:
    """A processed asset.

    Attributes:
        identifier: Path relative to the asset directory, POSIX style.
        data: Processed bytes.
        processor: Name of the processor that produced ``data``.
    """

    identifier: str
    data: bytes
    processor: str


def page_metadata(metadata: ContentMetadata) -> dict[str, Any]:
    """Flatten page metadata into the values injected as title/meta tags."""
    values: dict[str, Any] = {"title": metadata.title}
    if metadata.description:
        values["description"] = metadata.description
    if metadata.date is not None:
        values["date"] = metadata.date
    if metadata.tags:
        values["keywords"] = ", ".join(metadata.tags)
    for key, value in metadata.custom.items():
        if isinstance(value, str) and key not in values:
            values[key] = value
    return values


class HtmlGenerator(Shareable):
    """Output stage producing complete HTML documents.

    Every piece of mutable state (asset cache, page index, counters) is
    guarded by one lock, so a single generator can serve all workers.

    Attributes:
        settings: Output settings.
        output_dir: Root for copied assets; None disables asset copying
            during :meth:`generate`.
        allowed_tags: Tags accepted by :meth:`validate_content` besides
            document-level tags.
        file_permissions: Mode applied to written pages and assets.
    """

    def __init__(
        self,
        settings: OutputConfig | None = None,
        output_dir: Path | None = None,
        allowed_tags: Iterable[str] = DEFAULT_ALLOWED_HTML_TAGS,
        file_permissions: int | None = None,
        registry: AssetProcessorRegistry | None = None,
        cache_size: int = 256,
        cache_ttl: float | None = None,
    ):
        self._lock = threading.RLock()
        self._custom_registry = registry
        self._configure(settings or OutputConfig(), output_dir, allowed_tags, file_permissions)
        self._assets: BoundedCache[CachedAsset] = BoundedCache(cache_size, ttl=cache_ttl)
        self._assets_copied = False
        self._pages: dict[str, ContentMetadata] = {}
        self._stats = dict.fromkeys(
            ("pages_generated", "cache_hits", "cache_misses", "bytes_written", "assets_cached"), 0
        )

    @classmethod
    def from_config(cls, config: Config) -> HtmlGenerator:
        return cls(
            config.output,
            output_dir=config.output_dir,
            allowed_tags=config.content.allowed_html_tags,
            file_permissions=config.file_permissions,
            cache_size=config.max_cache_size,
            cache_ttl=config.template.cache_ttl.total_seconds(),
        )

    def reconfigure(self, config: Config) -> None:
        """Adopt the settings of a reloaded config.

        The asset cache is rebuilt with the new bounds and assets are copied
        again on the next :meth:`generate`; the page index is kept.
        """
        with self._lock:
            self._configure(
                config.output,
                config.output_dir,
                config.content.allowed_html_tags,
                config.file_permissions,
            )
            self._assets = BoundedCache(
                config.max_cache_size, ttl=config.template.cache_ttl.total_seconds()
            )
            self._assets_copied = False
            self._stats["assets_cached"] = 0
        logger.debug("Output stage reconfigured (minify=%s)", self.settings.minify)

    def _configure(
        self,
        settings: OutputConfig,
        output_dir: Path | None,
        allowed_tags: Iterable[str],
        file_permissions: int | None,
    ) -> None:
        self.settings = settings
        self.output_dir = Path(output_dir) if output_dir is not None else None
        extra = parse_string_set(settings.options.get("extra_tags", ()))
        self.allowed_tags = frozenset(allowed_tags) | DOCUMENT_TAGS | extra
        self.file_permissions = file_permissions
        self.registry = self._custom_registry or create_default_registry(minify=settings.minify)

    def generate(
        self,
        context: OutputContext,
        input: str,
        options: ProcessingOptions | None = None,
    ) -> str:
        """Turn rendered HTML into the final page.

        Args:
            context: Page metadata and, optionally, where to write it.
            input: HTML produced by the template stage.
            options: Per-call options; ``custom`` may carry ``minify``,
                ``pretty_print`` and ``indent_size``.

        Returns:
            The final HTML document.

        Raises:
            ProcessingError: VALIDATION for bad options or disallowed
                markup, OUTPUT_GENERATION for structural problems, size
                limits or a non-HTML output path, FILE_OPERATION when
                writing fails.
        """
        options = options or ProcessingOptions()
        minify, pretty, indent = self.resolve_options(options.custom)
        path = context.output_path
        if path is not None and Path(path).suffix != ".html":
            raise ProcessingError.output_generation(
                "Output path must have a .html extension", path=path
            )

        if options.validate:
            self.validate_content(input, context.source_path)

        html = inject_metadata(input, page_metadata(context.metadata))
        if minify:
            html = minify_html(html)
        elif pretty:
            html = pretty_print_html(html, indent)

        problems = HtmlStructureValidator().check(html)
        if problems:
            raise ProcessingError.output_generation(
                f"Generated HTML is malformed: {'; '.join(problems)}", path=context.source_path
            )
        size = len(html.encode("utf-8"))
        if size > self.settings.max_output_size:
            raise ProcessingError.output_generation(
                f"Output exceeds maximum size of {self.settings.max_output_size} bytes",
                path=context.source_path,
            )

        if path is not None:
            self._write(Path(path), html)
        if self.output_dir is not None and self.settings.asset_dir is not None:
            self._copy_assets_once()

        with self._lock:
            self._stats["pages_generated"] += 1
        stats = html_stats(html)
        logger.debug(
            "Generated %s (%d tags, %d bytes)",
            path or context.source_path, stats["tag_count"], stats["size_bytes"],
        )
        return html

    def resolve_options(self, custom: Mapping[str, Any]) -> tuple[bool, bool, int]:
        """Merge per-call options over the settings.

        Returns:
            Tuple of (minify, pretty_print, indent_size).

        Raises:
            ProcessingError: VALIDATION if an option has the wrong type.
        """
        values: dict[str, Any] = {
            "minify": self.settings.minify,
            "pretty_print": self.settings.pretty_print,
            "indent_size": self.settings.options.get("indent_size", 2),
        }
        for key in (*_BOOL_OPTIONS, "indent_size"):
            if key in custom:
                values[key] = custom[key]
        for key in _BOOL_OPTIONS:
            if not isinstance(values[key], bool):
                raise ProcessingError.validation_failed(f"'{key}' option must be a boolean")
        indent = values["indent_size"]
        if not isinstance(indent, int) or isinstance(indent, bool) or indent < 0:
            raise ProcessingError.validation_failed("'indent_size' option must be a non-negative integer")
        return values["minify"], values["pretty_print"], indent

    def validate_content(self, html: str, path: Path | None = None) -> None:
        """Check rendered HTML before it is assembled into a page.

        Tags must be properly nested and drawn from the allowed set, which
        catches markup a template injected around the sanitized body.

        Raises:
            ProcessingError: VALIDATION describing the first problems found.
        """
        checker = HtmlStructureValidator()
        problems = checker.check(html)
        disallowed = sorted({tag for tag in checker.tags if tag not in self.allowed_tags})
        if disallowed:
            problems.append(f"disallowed tags: {', '.join(disallowed)}")
        if problems:
            error = ProcessingError.validation_failed(f"Invalid HTML content: {'; '.join(problems)}")
            raise error.with_path(path) if path is not None else error

    # Asset cache

    def process_asset(self, source: Path) -> CachedAsset:
        """Return the cached processed form of an asset, processing it on a miss.

        Entries are evicted by the cache size and TTL, after which the asset
        is processed again.

        Args:
            source: Path relative to ``asset_dir``, or an absolute path inside it.

        Raises:
            ProcessingError: VALIDATION if no asset directory is configured
                or the file lies outside it; FILE_OPERATION if it cannot be
                read.
        """
        identifier = self._asset_id(source)
        source = self.settings.asset_dir / identifier
        with self._lock:
            cached = self._assets.get(identifier)
            if cached is not None:
                self._stats["cache_hits"] += 1
                return cached
            self._stats["cache_misses"] += 1
            try:
                name, data = self.registry.process(source)
            except OSError as exc:
                raise ProcessingError.from_exception(exc, path=source) from exc
            except (LookupError, ValueError) as exc:
                raise ProcessingError.output_generation(
                    f"Failed to process asset: {exc}", path=source, source=exc
                ) from exc
            cached = CachedAsset(identifier, data, name)
            self._assets.put(identifier, cached)
            self._stats["assets_cached"] = len(self._assets)
        logger.debug("Cached asset %s (%s, %d bytes)", identifier, name, len(data))
        return cached

    def copy_assets(self, output_dir: Path) -> list[Path]:
        """Write every asset to ``output_dir/<asset dir name>/``.

        Returns:
            Written paths, sorted.
        """
        asset_dir = self.settings.asset_dir
        if asset_dir is None or not asset_dir.is_dir():
            return []
        target_root = Path(output_dir) / asset_dir.name
        written = []
        for source in sorted(p for p in asset_dir.rglob("*") if p.is_file()):
            asset = self.process_asset(source.relative_to(asset_dir))
            dest = target_root / asset.identifier
            self._write(dest, asset.data)
            written.append(dest)
        logger.debug("Copied %d assets to %s", len(written), target_root)
        return written

    def is_asset_cached(self, identifier: str | Path) -> bool:
        try:
            key = self._asset_id(identifier)
        except ProcessingError:
            return False
        with self._lock:
            return key in self._assets

    def get_cached_assets(self) -> list[str]:
        with self._lock:
            return sorted(self._assets.keys())

    def clear_cache(self) -> None:
        with self._lock:
            self._assets.clear()
            self._assets_copied = False
            self._stats["assets_cached"] = 0

    def get_stats(self) -> dict[str, int]:
        with self._lock:
            return dict(self._stats)

    # Site-wide metadata

    def update_metadata(self, metadata: ContentMetadata, url: str = "") -> None:
        """Record a page's metadata for the tag index.

        Pages are keyed by URL (or title when no URL is given), so
        repeating a call replaces the entry instead of duplicating it.
        """
        key = url or metadata.title
        with self._lock:
            self._pages[key] = metadata

    def tag_index(self) -> dict[str, list[str]]:
        """Map each tag to the sorted URLs of the pages carrying it."""
        index: dict[str, set[str]] = {}
        with self._lock:
            for url, metadata in self._pages.items():
                for tag in metadata.tags:
                    index.setdefault(tag, set()).add(url)
        return {tag: sorted(urls) for tag, urls in sorted(index.items())}

    def write_index(self, output_dir: Path) -> Path | None:
        """Write ``tags.json`` into ``output_dir``; None when no page was recorded."""
        with self._lock:
            if not self._pages:
                return None
        path = Path(output_dir) / "tags.json"
        self._write(path, json.dumps(self.tag_index(), indent=2, ensure_ascii=False) + "\n")
        return path

    def refresh_file_metadata(self, path: Path, metadata: ContentMetadata) -> str:
        """Replace the meta tags of an already generated page.

        Returns:
            The rewritten document.

        Raises:
            ProcessingError: FILE_OPERATION if the file cannot be read or written.
        """
        path = Path(path)
        try:
            html = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ProcessingError.from_exception(exc, path=path) from exc
        html = inject_metadata(strip_meta_tags(html), page_metadata(metadata))
        self._write(path, html)
        return html

    def _asset_id(self, source: str | Path) -> str:
        asset_dir = self.settings.asset_dir
        if asset_dir is None:
            raise ProcessingError.validation_failed("No asset directory configured")
        source = Path(source)
        if not source.is_absolute():
            if ".." in source.parts:
                raise ProcessingError.validation_failed(f"Asset {source} is outside {asset_dir}")
            return source.as_posix()
        try:
            return source.resolve().relative_to(asset_dir.resolve()).as_posix()
        except ValueError as exc:
            raise ProcessingError.validation_failed(
                f"Asset {source} is outside {asset_dir}", source=exc
            ) from exc

    def _copy_assets_once(self) -> None:
        with self._lock:
            if self._assets_copied:
                return
            self.copy_assets(self.output_dir)
            self._assets_copied = True

    def _write(self, path: Path, data: str | bytes) -> None:
        try:
            write_content(path, data, self.file_permissions)
        except ContentError as exc:
            raise ProcessingError.file_operation(path, exc.message, source=exc) from exc
        size = len(data.encode("utf-8")) if isinstance(data, str) else len(data)
        with self._lock:
            self._stats["bytes_written"] += size
