"""Asset processors for NucleusFlow.

Each processor turns one kind of asset into the bytes written to the
output directory. The registry picks the highest-priority processor that
accepts a file.

Key classes:
- ImageProcessor: Re-encodes images with Pillow's optimizer.
- CSSProcessor: Minifies stylesheets with rcssmin.
- JSProcessor: Minifies scripts with rjsmin.
- StaticAssetProcessor: Passes any other file through unchanged.
- AssetProcessorRegistry: Selects a processor by priority.
"""

from __future__ import annotations

import io
import logging
from abc import ABC, abstractmethod
from pathlib import Path

import rcssmin
import rjsmin
from PIL import Image

logger = logging.getLogger(__name__)


class BaseAssetProcessor(ABC):
    """Base class for asset processors."""

    name = "asset"

    @property
    @abstractmethod
    def priority(self) -> int:
        """Return processor priority (higher = checked first)."""
        ...

    @abstractmethod
    def can_process(self, path: Path) -> bool:
        """Check if this processor can handle the given asset."""
        ...

    @abstractmethod
    def process(self, source: Path) -> bytes:
        """Produce the output bytes for an asset.

        Args:
            source: Source asset path.

        Returns:
            Bytes to write to the output directory.

        Raises:
            OSError: If the source cannot be read.
        """
        ...


class ImageProcessor(BaseAssetProcessor):
    """Optimizes PNG, JPEG and WebP images.

    Images Pillow cannot decode are passed through unchanged.
    """

    name = "image"
    SUPPORTED_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp"}

    @property
    def priority(self) -> int:
        return 100

    def can_process(self, path: Path) -> bool:
        return path.suffix.lower() in self.SUPPORTED_EXTENSIONS

    def process(self, source: Path) -> bytes:
        raw = source.read_bytes()
        try:
            with Image.open(io.BytesIO(raw)) as img:
                buffer = io.BytesIO()
                img.save(buffer, format=img.format, optimize=True)
        except OSError as exc:
            logger.debug("Image optimization skipped for %s: %s", source, exc)
            return raw
        optimized = buffer.getvalue()
        return optimized if len(optimized) < len(raw) else raw


class CSSProcessor(BaseAssetProcessor):
    """Minifies CSS files."""

    name = "css"

    @property
    def priority(self) -> int:
        return 90

    def can_process(self, path: Path) -> bool:
        return path.suffix.lower() == ".css"

    def process(self, source: Path) -> bytes:
        return rcssmin.cssmin(source.read_text(encoding="utf-8")).encode("utf-8")


class JSProcessor(BaseAssetProcessor):
    """Minifies JavaScript files."""

    name = "js"

    @property
    def priority(self) -> int:
        return 80

    def can_process(self, path: Path) -> bool:
        return path.suffix.lower() == ".js"

    def process(self, source: Path) -> bytes:
        return rjsmin.jsmin(source.read_text(encoding="utf-8")).encode("utf-8")


class StaticAssetProcessor(BaseAssetProcessor):
    """Fallback that copies any file unchanged."""

    name = "static"

    @property
    def priority(self) -> int:
        return 0

    def can_process(self, path: Path) -> bool:
        return True

    def process(self, source: Path) -> bytes:
        return source.read_bytes()


class AssetProcessorRegistry:
    """Registry selecting asset processors by priority."""

    def __init__(self):
        self._processors: list[BaseAssetProcessor] = []

    def register(self, processor: BaseAssetProcessor) -> None:
        """Register a processor; processors are kept sorted by priority."""
        self._processors.append(processor)
        self._processors.sort(key=lambda p: p.priority, reverse=True)

    def get_processor(self, path: Path) -> BaseAssetProcessor | None:
        for processor in self._processors:
            if processor.can_process(path):
                return processor
        return None

    def process(self, source: Path) -> tuple[str, bytes]:
        """Process an asset with the first matching processor.

        Returns:
            Tuple of (processor name, output bytes).

        Raises:
            LookupError: If no processor accepts the file.
        """
        processor = self.get_processor(source)
        if processor is None:
            raise LookupError(f"no asset processor for {source}")
        return processor.name, processor.process(source)


def create_default_registry(minify: bool = True) -> AssetProcessorRegistry:
    """Create a registry with the default processors.

    Args:
        minify: Register the CSS/JS minifiers and image optimizer; without
            them every asset is copied verbatim.
    """
    registry = AssetProcessorRegistry()
    if minify:
        registry.register(ImageProcessor())
        registry.register(CSSProcessor())
        registry.register(JSProcessor())
    registry.register(StaticAssetProcessor())
    return registry
