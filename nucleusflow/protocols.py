"""Protocol definitions for NucleusFlow.

These are the capability contracts the pipeline stages implement. The
orchestrator only depends on these interfaces, so any stage can be swapped
(a different template engine, a different markup language) without touching
the orchestrator.

Every operation reports failure by raising :class:`~nucleusflow.errors.ProcessingError`.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, TypeVar, runtime_checkable

if TYPE_CHECKING:
    from .config import Config
    from .models import ContentMetadata, ProcessingOptions

InputT = TypeVar("InputT", contravariant=True)
OutputT = TypeVar("OutputT", covariant=True)
ContextT = TypeVar("ContextT", contravariant=True)


@runtime_checkable
class Processor(Protocol[InputT, OutputT, ContextT]):
    """A stage that turns input into output given a context."""

    @abstractmethod
    def process(self, input: InputT, context: ContextT) -> OutputT:
        """Process input.

        Args:
            input: Stage input.
            context: Shared context (config, options).

        Returns:
            Stage output.

        Raises:
            ProcessingError: If processing fails.
        """
        ...


@runtime_checkable
class Transform(Protocol[InputT, OutputT]):
    """A context-free mapping from input to output."""

    @abstractmethod
    def transform(self, input: InputT) -> OutputT: ...


@runtime_checkable
class Validator(Protocol[InputT]):
    """Pre-flight check run before a stage commits to a transform."""

    @abstractmethod
    def validate(self, input: InputT) -> None:
        """Check input.

        Raises:
            ProcessingError: If the input is not acceptable.
        """
        ...


@runtime_checkable
class Generator(Protocol[InputT, OutputT, ContextT]):
    """Output stage shape: needs a context and per-call options."""

    @abstractmethod
    def generate(self, context: ContextT, input: InputT, options: ProcessingOptions) -> OutputT:
        """Generate an artifact.

        Args:
            context: Output context (metadata, target path).
            input: Rendered content.
            options: Per-call options.

        Returns:
            The final artifact.
        """
        ...


@runtime_checkable
class TemplateRenderer(Protocol):
    """Renders a named template against a context mapping."""

    @abstractmethod
    def render(
        self,
        template_name: str,
        context: Mapping[str, Any],
        options: ProcessingOptions | None = None,
    ) -> str:
        """Render a template.

        Args:
            template_name: Name of the template to render.
            context: Variables available to the template.
            options: Per-call options (strict mode, caching).

        Returns:
            Rendered text.
        """
        ...


@runtime_checkable
class TemplateHelper(Protocol):
    """A named function callable from templates."""

    @abstractmethod
    def execute(self, args: Sequence[Any], context: Mapping[str, Any]) -> str: ...


@runtime_checkable
class ContentLoader(Protocol):
    """Discovers content files."""

    @abstractmethod
    def iter_files(self) -> list[Path]: ...


@runtime_checkable
class MetadataIndex(Protocol):
    """Generators that build site-wide indexes from page metadata."""

    @abstractmethod
    def update_metadata(self, metadata: ContentMetadata, url: str = "") -> None: ...

    @abstractmethod
    def write_index(self, output_dir: Path) -> Path | None: ...


@runtime_checkable
class Reconfigurable(Protocol):
    """Stages that hold settings taken from a :class:`~nucleusflow.config.Config`.

    The orchestrator calls :meth:`reconfigure` with the new config after a
    reload, before any file is processed under it.
    """

    @abstractmethod
    def reconfigure(self, config: Config) -> None: ...


class Shareable:
    """Marker for stages that are safe to call from several workers at once.

    Stages are either stateless or guard their own state. The orchestrator
    falls back to sequential processing when any stage lacks the marker.
    """

    shareable = True


def is_shareable(stage: object) -> bool:
    """Whether a stage may be used by concurrent pipeline invocations."""
    return bool(getattr(stage, "shareable", False))
