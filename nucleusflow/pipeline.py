"""Pipeline orchestration for NucleusFlow.

This module drives a full content_dir -> output_dir run. Each content
file goes through the content, template and output stages in order;
files are processed concurrently when every stage is shareable.

Key classes:
- NucleusFlow: The orchestrator owning the config handle and the stages.
- ProcessResult: Aggregate outcome of a run.
- FileFailure: One failed file with its error chain.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .concurrency import RateLimiter
from .config import Config, ConfigHandle
from .content import FileContentLoader, read_content, resolve_content_path
from .errors import ContentError, ErrorKind, ProcessingError, format_error_chain
from .generator import HtmlGenerator
from .markdown import MarkdownProcessor
from .models import ContentSource, OutputContext, PipelineContext, ProcessingOptions
from .protocols import (
    Generator,
    MetadataIndex,
    Processor,
    Reconfigurable,
    TemplateRenderer,
    is_shareable,
)
from .templates import JinjaRenderer

logger = logging.getLogger(__name__)


@dataclass
class FileFailure:
    """A content file that failed, with the error that stopped it."""

    path: Path
    error: ProcessingError

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind

    @property
    def chain(self) -> str:
        return format_error_chain(self.error)


@dataclass
class ProcessResult:
    """Outcome of :meth:`NucleusFlow.process`.

    Attributes:
        successes: Number of files that produced an artifact.
        failures: Files that failed, in path order.
        outputs: Written artifacts, in path order.
        index_path: Site index written at the end of the run, if any.
    """

    successes: int = 0
    failures: list[FileFailure] = field(default_factory=list)
    outputs: list[Path] = field(default_factory=list)
    index_path: Path | None = None

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def total(self) -> int:
        return self.successes + len(self.failures)

    def summary(self) -> str:
        text = f"{self.successes} succeeded, {len(self.failures)} failed"
        lines = [text] + [f"  {f.path}: {f.chain}" for f in self.failures]
        return "\n".join(lines)


class NucleusFlow:
    """Runs content files through the content, template and output stages.

    The orchestrator only talks to its stages through their protocols, so
    any combination of implementations can be plugged in. The config is
    reached through a :class:`ConfigHandle`; every file pipeline holds the
    handle's read lock for its whole duration.

    Attributes:
        handle: Shared handle to the active config.
        content_processor: Content stage.
        template_renderer: Template stage.
        output_generator: Output stage.
    """

    def __init__(
        self,
        config: Config | ConfigHandle,
        content_processor: Processor,
        template_renderer: TemplateRenderer,
        output_generator: Generator,
    ):
        self.handle = config if isinstance(config, ConfigHandle) else ConfigHandle(config)
        self.content_processor = content_processor
        self.template_renderer = template_renderer
        self.output_generator = output_generator
        self._stage_config = self.handle.current
        self._stage_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Config | ConfigHandle) -> NucleusFlow:
        """Create an orchestrator with the bundled markdown, Jinja and HTML stages."""
        current = config.current if isinstance(config, ConfigHandle) else config
        return cls(
            config,
            MarkdownProcessor.from_config(current),
            JinjaRenderer.from_config(current),
            HtmlGenerator.from_config(current),
        )

    @property
    def config(self) -> Config:
        return self.handle.current

    @property
    def concurrent(self) -> bool:
        """Whether every stage may be called from several workers at once."""
        stages = (self.content_processor, self.template_renderer, self.output_generator)
        return all(is_shareable(stage) for stage in stages)

    def process(self, options: ProcessingOptions | None = None) -> ProcessResult:
        """Run every content file through the pipeline.

        Args:
            options: Per-run options; derived from the config when omitted.

        Returns:
            ProcessResult listing successes and per-file failures.

        Raises:
            ProcessingError: CONFIGURATION if the config is invalid (before
                any file is read); the first failure when ``strict_mode``
                is set; any INTERNAL error.
        """
        self.handle.reload_if_needed()
        with self.handle.read() as config:
            self._sync_stages(config)
            config.validate()
            options = options or ProcessingOptions.from_config(config)
            files = FileContentLoader(config.content_dir, config.content.extensions).iter_files()
            workers = config.max_concurrent_ops if self.concurrent else 1
            limiter = RateLimiter(config.rate_limit)
            output_dir = config.output_dir
        logger.info("Processing %d content files with %d worker(s)", len(files), workers)

        result = ProcessResult()
        if workers == 1 or len(files) <= 1:
            for path in files:
                limiter.acquire()
                self._collect(result, path, self._run_one(path, options), options)
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="nucleusflow") as pool:
                futures: dict[Future, Path] = {}
                for path in files:
                    limiter.acquire()
                    futures[pool.submit(self._run_one, path, options)] = path
                for future in as_completed(futures):
                    try:
                        self._collect(result, futures[future], future.result(), options)
                    except ProcessingError:
                        pool.shutdown(wait=False, cancel_futures=True)
                        raise

        result.failures.sort(key=lambda f: f.path)
        result.outputs.sort()
        if isinstance(self.output_generator, MetadataIndex):
            result.index_path = self.output_generator.write_index(output_dir)
        logger.info("Run finished: %d succeeded, %d failed", result.successes, len(result.failures))
        return result

    def process_file(self, path: Path, options: ProcessingOptions | None = None) -> Path:
        """Run one content file through all stages.

        Args:
            path: Content file, absolute or relative to ``content_dir``.
            options: Per-call options; derived from the config when omitted.

        Returns:
            Path of the written artifact.

        Raises:
            ProcessingError: From whichever stage failed. A path escaping
                the content directory fails with CONTENT_PROCESSING
                (INVALID_PATH) before anything is read.
        """
        with self.handle.read() as config:
            self._sync_stages(config)
            options = options or ProcessingOptions.from_config(config)
            try:
                source = resolve_content_path(config.content_dir, path)
                data = read_content(source)
            except ContentError as exc:
                raise exc.to_processing_error() from exc

            rel = source.relative_to(config.content_dir.resolve()).with_suffix(".html")
            processed = self.content_processor.process(
                ContentSource(Path(path), data), PipelineContext(config, options)
            )
            template = processed.metadata.custom.get("template") or config.template.default_template
            url = "/" + rel.as_posix()
            context: dict[str, Any] = processed.as_template_context()
            context["url"] = url
            rendered = self.template_renderer.render(str(template), context, options)

            output_path = config.output_dir / rel
            self.output_generator.generate(
                OutputContext(processed.metadata, output_path, Path(path), url), rendered, options
            )
            if isinstance(self.output_generator, MetadataIndex):
                self.output_generator.update_metadata(processed.metadata, url)
        return output_path

    def _sync_stages(self, config: Config) -> None:
        """Hand a config swapped in since the last call to reconfigurable stages."""
        with self._stage_lock:
            if config is self._stage_config:
                return
            for stage in (self.content_processor, self.template_renderer, self.output_generator):
                if isinstance(stage, Reconfigurable):
                    stage.reconfigure(config)
            self._stage_config = config
        logger.debug("Stages reconfigured for profile %s", config.profile)

    def _run_one(self, path: Path, options: ProcessingOptions) -> Path | ProcessingError:
        try:
            return self.process_file(path, options)
        except Exception as exc:
            error = ProcessingError.from_exception(exc, path=path)
            if error.kind is not ErrorKind.INTERNAL:
                return error
            if error is exc:
                raise
            raise error from exc

    def _collect(
        self,
        result: ProcessResult,
        path: Path,
        outcome: Path | ProcessingError,
        options: ProcessingOptions,
    ) -> None:
        if isinstance(outcome, ProcessingError):
            if options.strict_mode:
                raise outcome
            logger.warning("Failed %s: %s", path, outcome)
            result.failures.append(FileFailure(path, outcome))
        else:
            logger.debug("Wrote %s", outcome)
            result.successes += 1
            result.outputs.append(outcome)
