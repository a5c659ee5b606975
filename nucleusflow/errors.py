"""Error taxonomy for NucleusFlow.

Every stage reports failures through :class:`ProcessingError`, a single
exception type whose ``kind`` selects one of a closed set of error kinds.
Stage-specific errors (:class:`ContentError` from the markdown stage and
:class:`ValidationError` from the template stage) keep their own payloads
and convert into ``ProcessingError`` without losing the original exception.

Key classes:
- ErrorKind: The closed set of error kinds.
- ProcessingError: The common error carried by every stage operation.
- ContentError: Content-stage failure (invalid path, read/write, processing).
- ValidationError: Template compilation/rendering failure with a location.
"""

from __future__ import annotations

import json
import tomllib
from enum import Enum
from pathlib import Path

import yaml


class ErrorKind(str, Enum):
    """Closed set of error kinds reported by the pipeline."""

    VALIDATION = "validation"
    CONTENT_PROCESSING = "content_processing"
    FILE_OPERATION = "file_operation"
    TEMPLATE_PROCESSING = "template_processing"
    CONFIGURATION = "configuration"
    OUTPUT_GENERATION = "output_generation"
    SERIALIZATION = "serialization"
    PLUGIN = "plugin"
    INTERNAL = "internal"
    IO = "io"


_LABELS = {
    ErrorKind.VALIDATION: "Validation failed",
    ErrorKind.CONTENT_PROCESSING: "Failed to process content",
    ErrorKind.FILE_OPERATION: "File operation failed",
    ErrorKind.TEMPLATE_PROCESSING: "Template error",
    ErrorKind.CONFIGURATION: "Configuration error",
    ErrorKind.OUTPUT_GENERATION: "Output generation failed",
    ErrorKind.SERIALIZATION: "Serialization error",
    ErrorKind.PLUGIN: "Plugin error",
    ErrorKind.INTERNAL: "Internal error",
    ErrorKind.IO: "I/O error",
}

_SERIALIZATION_ERRORS = (yaml.YAMLError, json.JSONDecodeError, tomllib.TOMLDecodeError)


class ProcessingError(Exception):
    """Error returned by every pipeline stage.

    Attributes:
        kind: Which member of the taxonomy this error is.
        details: Human-readable description.
        path: File the error relates to, when known.
        source: The original exception, also chained as ``__cause__``.
        plugin_name: Name of the failing helper/extension (PLUGIN only).
        template_name: Template being rendered (TEMPLATE_PROCESSING only).
        validation: The wrapped ValidationError (TEMPLATE_PROCESSING only).
    """

    def __init__(
        self,
        kind: ErrorKind,
        details: str,
        *,
        path: Path | None = None,
        source: BaseException | None = None,
        plugin_name: str | None = None,
        template_name: str | None = None,
        validation: ValidationError | None = None,
    ):
        self.kind = kind
        self.details = details
        self.path = Path(path) if path is not None else None
        self.source = source
        self.plugin_name = plugin_name
        self.template_name = template_name
        self.validation = validation
        super().__init__(self._render())
        if source is not None:
            self.__cause__ = source

    def _render(self) -> str:
        label = _LABELS[self.kind]
        if self.plugin_name:
            label = f"{label} for '{self.plugin_name}'"
        elif self.template_name:
            label = f"{label} in '{self.template_name}'"
        if self.path is not None:
            label = f"{label} ({self.path})"
        return f"{label}: {self.details}"

    def __repr__(self) -> str:
        return f"ProcessingError(kind={self.kind.value!r}, details={self.details!r}, path={self.path!r})"

    def with_path(self, path: Path) -> ProcessingError:
        """Fill in the path if none is recorded yet and return self."""
        if self.path is None:
            self.path = Path(path)
            self.args = (self._render(),)
        return self

    # Named constructors, one per kind

    @classmethod
    def validation_failed(cls, details: str, source: BaseException | None = None) -> ProcessingError:
        return cls(ErrorKind.VALIDATION, details, source=source)

    @classmethod
    def content_processing(
        cls, details: str, path: Path | None = None, source: BaseException | None = None
    ) -> ProcessingError:
        return cls(ErrorKind.CONTENT_PROCESSING, details, path=path, source=source)

    @classmethod
    def file_operation(
        cls, path: Path, details: str, source: BaseException | None = None
    ) -> ProcessingError:
        return cls(ErrorKind.FILE_OPERATION, details, path=path, source=source)

    @classmethod
    def template_processing(
        cls,
        details: str,
        template_name: str | None = None,
        source: BaseException | None = None,
        validation: ValidationError | None = None,
    ) -> ProcessingError:
        return cls(
            ErrorKind.TEMPLATE_PROCESSING,
            details,
            template_name=template_name,
            source=source,
            validation=validation,
        )

    @classmethod
    def configuration(
        cls, details: str, path: Path | None = None, source: BaseException | None = None
    ) -> ProcessingError:
        return cls(ErrorKind.CONFIGURATION, details, path=path, source=source)

    @classmethod
    def output_generation(
        cls, details: str, path: Path | None = None, source: BaseException | None = None
    ) -> ProcessingError:
        return cls(ErrorKind.OUTPUT_GENERATION, details, path=path, source=source)

    @classmethod
    def serialization(cls, details: str, source: BaseException | None = None) -> ProcessingError:
        return cls(ErrorKind.SERIALIZATION, details, source=source)

    @classmethod
    def plugin(
        cls, plugin_name: str, details: str, source: BaseException | None = None
    ) -> ProcessingError:
        return cls(ErrorKind.PLUGIN, details, plugin_name=plugin_name, source=source)

    @classmethod
    def internal(cls, details: str, source: BaseException | None = None) -> ProcessingError:
        return cls(ErrorKind.INTERNAL, details, source=source)

    @classmethod
    def io(cls, details: str, source: BaseException | None = None) -> ProcessingError:
        return cls(ErrorKind.IO, details, source=source)

    @classmethod
    def from_exception(cls, exc: BaseException, path: Path | None = None) -> ProcessingError:
        """Convert any exception into a ProcessingError.

        The conversion never fails; the original exception is kept as
        ``source`` so the full chain stays available for diagnostics.

        Args:
            exc: Exception raised by a stage or library.
            path: File being processed when the error occurred.

        Returns:
            A ProcessingError of the matching kind.
        """
        if isinstance(exc, ProcessingError):
            return exc.with_path(path) if path is not None else exc
        if isinstance(exc, ValidationError):
            err = exc.to_processing_error()
        elif isinstance(exc, ContentError):
            err = exc.to_processing_error()
        elif isinstance(exc, _SERIALIZATION_ERRORS):
            err = cls.serialization(str(exc), source=exc)
        elif isinstance(exc, OSError):
            filename = exc.filename or path
            if filename is not None:
                return cls.file_operation(Path(filename), exc.strerror or str(exc), source=exc)
            err = cls.io(str(exc), source=exc)
        else:
            err = cls.internal(f"{type(exc).__name__}: {exc}", source=exc)
        if path is not None:
            err.with_path(path)
        return err


class ContentErrorKind(str, Enum):
    """Failure modes of the content stage."""

    INVALID_PATH = "invalid_path"
    READ = "read"
    WRITE = "write"
    PROCESS = "process"


class ContentError(Exception):
    """Content-stage failure.

    Attributes:
        kind: Which content failure occurred.
        message: Human-readable description.
        path: Content file involved, if any.
        source: Original exception, if any.
    """

    def __init__(
        self,
        kind: ContentErrorKind,
        message: str,
        path: Path | None = None,
        source: BaseException | None = None,
    ):
        self.kind = kind
        self.message = message
        self.path = Path(path) if path is not None else None
        self.source = source
        where = f" ({self.path})" if self.path is not None else ""
        super().__init__(f"{kind.value}{where}: {message}")
        if source is not None:
            self.__cause__ = source

    @classmethod
    def invalid_path(cls, path: Path, message: str) -> ContentError:
        return cls(ContentErrorKind.INVALID_PATH, message, path)

    @classmethod
    def read_error(cls, path: Path, source: OSError) -> ContentError:
        return cls(ContentErrorKind.READ, f"failed to read file: {source}", path, source)

    @classmethod
    def write_error(cls, path: Path, source: OSError) -> ContentError:
        return cls(ContentErrorKind.WRITE, f"failed to write file: {source}", path, source)

    @classmethod
    def process_error(
        cls, message: str, path: Path | None = None, source: BaseException | None = None
    ) -> ContentError:
        return cls(ContentErrorKind.PROCESS, message, path, source)

    def to_processing_error(self) -> ProcessingError:
        return ProcessingError.content_processing(str(self), path=self.path, source=self)


class ValidationError(Exception):
    """Template compilation or rendering failure with its location.

    Attributes:
        details: What went wrong.
        line: 1-based line in the template, when known.
        column: 1-based column in the template, when known.
        source: Original engine exception, if any.
        template_name: Template that failed, if known.
    """

    def __init__(
        self,
        details: str,
        line: int | None = None,
        column: int | None = None,
        source: BaseException | None = None,
        template_name: str | None = None,
    ):
        self.details = details
        self.line = line
        self.column = column
        self.source = source
        self.template_name = template_name
        super().__init__(self._render())
        if source is not None:
            self.__cause__ = source

    def _render(self) -> str:
        where = self.template_name or "<template>"
        if self.line is not None:
            where = f"{where}:{self.line}"
            if self.column is not None:
                where = f"{where}:{self.column}"
        return f"{where}: {self.details}"

    def to_processing_error(self) -> ProcessingError:
        return ProcessingError.template_processing(
            str(self),
            template_name=self.template_name,
            source=self,
            validation=self,
        )


def format_error_chain(exc: BaseException) -> str:
    """Render an exception and its causes as ``outer -> inner -> ...``.

    Args:
        exc: Outermost exception.

    Returns:
        The chain as a single line.
    """
    parts: list[str] = []
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        parts.append(str(current) or type(current).__name__)
        current = current.__cause__ or current.__context__
    return " -> ".join(parts)
