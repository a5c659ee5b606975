"""Content file discovery and I/O for NucleusFlow.

Key classes and functions:
- FileContentLoader: Finds content files under the content directory.
- resolve_content_path: Confines a path to the content root.
- read_content / write_content: File I/O with ContentError wrapping.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from pathlib import Path

from .errors import ContentError

logger = logging.getLogger(__name__)


class FileContentLoader:
    """Loads content files from a directory.

    Hidden (``.``) and internal (``_``) path segments are skipped. Only files
    whose extension is in ``extensions`` are returned.

    Attributes:
        content_dir: Directory containing content.
        extensions: Accepted extensions, without the leading dot.
    """

    def __init__(self, content_dir: Path, extensions: Iterable[str]):
        self.content_dir = Path(content_dir)
        self.extensions = frozenset(ext.lstrip(".").lower() for ext in extensions)

    def iter_files(self) -> list[Path]:
        """Return matching content files, sorted by path."""
        files: list[Path] = []
        for path in self.content_dir.rglob("*"):
            if path.is_dir():
                continue
            rel = path.relative_to(self.content_dir)
            if any(part.startswith((".", "_")) for part in rel.parts):
                continue
            if path.suffix.lstrip(".").lower() in self.extensions:
                files.append(path)
        files.sort()
        logger.debug("Discovered %d content files in %s", len(files), self.content_dir)
        return files


def resolve_content_path(root: Path, path: Path | str) -> Path:
    """Resolve ``path`` and confirm it stays inside ``root``.

    Parent-directory segments are rejected before the file system is
    touched; the canonical path must then lie under the canonical root.

    Args:
        root: Content root directory.
        path: Path relative to ``root`` or absolute.

    Returns:
        Canonical absolute path.

    Raises:
        ContentError: INVALID_PATH if the path escapes the root.
    """
    candidate = Path(path)
    if ".." in candidate.parts:
        raise ContentError.invalid_path(candidate, "path contains a parent directory segment")
    try:
        base = Path(root).resolve(strict=True)
        target = candidate if candidate.is_absolute() else base / candidate
        resolved = target.resolve(strict=True)
    except OSError as exc:
        raise ContentError.invalid_path(candidate, f"cannot canonicalize path: {exc}") from exc
    if resolved != base and base not in resolved.parents:
        raise ContentError.invalid_path(candidate, f"path is outside content root {base}")
    return resolved


def read_content(path: Path | str, root: Path | None = None) -> bytes:
    """Read a content file, optionally confined to ``root``.

    Raises:
        ContentError: INVALID_PATH or READ.
    """
    target = resolve_content_path(root, path) if root is not None else Path(path)
    try:
        return target.read_bytes()
    except OSError as exc:
        raise ContentError.read_error(target, exc) from exc


def write_content(path: Path, data: bytes | str, permissions: int | None = None) -> Path:
    """Write ``data`` to ``path``, creating parent directories.

    Args:
        path: Destination file.
        data: Bytes or text (UTF-8 encoded).
        permissions: Mode applied after writing, if given.

    Returns:
        The written path.

    Raises:
        ContentError: WRITE on I/O failure.
    """
    payload = data.encode("utf-8") if isinstance(data, str) else data
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)
        if permissions is not None:
            os.chmod(path, permissions)
    except OSError as exc:
        raise ContentError.write_error(path, exc) from exc
    return path
