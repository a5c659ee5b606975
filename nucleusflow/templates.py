"""Template rendering engine for NucleusFlow.

This module uses Jinja2 to render processed content into page templates.

Key class:
- JinjaRenderer: TemplateRenderer with helper and partial registration,
  strict-mode undefined checking and a TTL/size bounded template cache.

Templates are looked up under the template directory by trying
``<name>.html``, ``<name>.html.jinja``, ``<name>.jinja``, ``<name>.hbs``
and ``<name>``; registered partials are found by name and pulled in with
``{% include "name" %}``.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from jinja2 import (
    ChainableUndefined,
    ChoiceLoader,
    DictLoader,
    Environment,
    FileSystemLoader,
    StrictUndefined,
    Template,
    TemplateNotFound,
    TemplateSyntaxError,
    UndefinedError,
    pass_context,
)

from .cache import BoundedCache
from .config import Config, TemplateConfig
from .errors import ProcessingError, ValidationError
from .helpers import DEFAULT_HELPERS
from .models import ProcessingOptions
from .protocols import Shareable, TemplateHelper

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIXES = (".html", ".html.jinja", ".jinja", ".hbs", "")

_TEMPLATE_FRAMES = ("top-level template code", "template")
_UNDEFINED_NAME_RE = re.compile(r"'([^']+)' is undefined|has no attribute '([^']+)'")


def _template_location(exc: BaseException) -> tuple[str | None, int | None]:
    """Filename and line of the innermost template frame in a traceback."""
    filename = line = None
    tb = exc.__traceback__
    while tb is not None:
        code = tb.tb_frame.f_code
        if code.co_name in _TEMPLATE_FRAMES or code.co_name.startswith("block "):
            filename, line = code.co_filename, tb.tb_lineno
        tb = tb.tb_next
    return filename, line


class JinjaRenderer(Shareable):
    """Template stage backed by Jinja2.

    Compiled templates are cached per (name, strict) when caching is
    enabled. An entry is dropped after ``cache_ttl``, when the cache is
    over ``max_size``, or when its source file changed on disk.

    Attributes:
        template_dir: Directory containing templates.
        settings: Template stage settings.
    """

    def __init__(
        self,
        template_dir: Path,
        settings: TemplateConfig | None = None,
        cache_size: int = 256,
    ):
        """Initialize the renderer.

        Args:
            template_dir: Directory with templates.
            settings: Template settings; defaults apply when omitted.
            cache_size: Maximum number of compiled templates kept.
        """
        self.template_dir = Path(template_dir)
        self.settings = settings or TemplateConfig()
        self._partials: dict[str, str] = {}
        self._helpers: dict[str, TemplateHelper] = {}
        self._lock = threading.Lock()
        self._cache: BoundedCache[Template] = BoundedCache(
            cache_size, ttl=self.settings.cache_ttl.total_seconds()
        )
        loader = self._loader()
        self._environments = {
            strict: Environment(
                loader=loader,
                autoescape=True,
                undefined=StrictUndefined if strict else ChainableUndefined,
                cache_size=0,
            )
            for strict in (True, False)
        }
        for helper in DEFAULT_HELPERS:
            self.with_helper(helper.name, helper)

    @classmethod
    def from_config(cls, config: Config) -> JinjaRenderer:
        return cls(config.template_dir, config.template, cache_size=config.max_cache_size)

    def reconfigure(self, config: Config) -> None:
        """Point the renderer at a reloaded config.

        Registered helpers and partials are kept; compiled templates are
        dropped.
        """
        with self._lock:
            self.template_dir = Path(config.template_dir)
            self.settings = config.template
            loader = self._loader()
            for env in self._environments.values():
                env.loader = loader
            self._cache = BoundedCache(
                config.max_cache_size, ttl=config.template.cache_ttl.total_seconds()
            )
        logger.debug("Template stage reconfigured (template_dir=%s)", self.template_dir)

    def _loader(self) -> ChoiceLoader:
        return ChoiceLoader(
            [FileSystemLoader(str(self.template_dir)), DictLoader(self._partials)]
        )

    def with_helper(self, name: str, helper: TemplateHelper) -> JinjaRenderer:
        """Register a helper as a template function and filter.

        Args:
            name: Name used in templates.
            helper: Helper implementation.

        Returns:
            This renderer, for chaining.
        """

        @pass_context
        def call(context, *args):
            try:
                return helper.execute(args, context.get_all())
            except (ProcessingError, UndefinedError):
                raise
            except Exception as exc:
                raise ProcessingError.plugin(name, str(exc), source=exc) from exc

        with self._lock:
            self._helpers[name] = helper
            for env in self._environments.values():
                env.globals[name] = call
                env.filters[name] = call
        return self

    def with_partial(self, name: str, source: str) -> JinjaRenderer:
        """Register a named fragment usable with ``{% include %}``.

        Raises:
            ProcessingError: TEMPLATE_PROCESSING if the source does not compile.
        """
        try:
            self._environments[False].parse(source)
        except TemplateSyntaxError as exc:
            raise self._syntax_error(exc, name).to_processing_error() from exc
        with self._lock:
            self._partials[name] = source
        self._cache.clear()
        return self

    @property
    def helpers(self) -> list[str]:
        return sorted(self._helpers)

    @property
    def partials(self) -> list[str]:
        return sorted(self._partials)

    def clear_cache(self) -> None:
        self._cache.clear()

    def cached_templates(self) -> list[tuple[str, bool]]:
        return list(self._cache.keys())

    def render(
        self,
        template_name: str,
        context: Mapping[str, Any],
        options: ProcessingOptions | None = None,
    ) -> str:
        """Render a named template.

        Args:
            template_name: Template name, with or without suffix.
            context: Variables bound in the template.
            options: Per-call options; ``strict_mode`` and ``cache_enabled``
                fall back to the template settings when omitted.

        Returns:
            Rendered HTML.

        Raises:
            ProcessingError: TEMPLATE_PROCESSING carrying a ValidationError
                for compile and render failures; PLUGIN for helper failures.
        """
        strict = options.strict_mode if options is not None else self.settings.strict_mode
        use_cache = self.settings.cache_templates and (options is None or options.cache_enabled)
        template = self._get_template(template_name, strict, use_cache)
        return self._render(template, template_name, context, strict)

    def render_string(
        self,
        source: str,
        context: Mapping[str, Any],
        options: ProcessingOptions | None = None,
    ) -> str:
        """Render a template given as a string; nothing is cached."""
        strict = options.strict_mode if options is not None else self.settings.strict_mode
        try:
            template = self._environments[strict].from_string(source)
        except TemplateSyntaxError as exc:
            raise self._syntax_error(exc, "<string>").to_processing_error() from exc
        return self._render(template, "<string>", context, strict, source=source)

    def _get_template(self, name: str, strict: bool, use_cache: bool) -> Template:
        key = (name, strict)
        if use_cache:
            cached = self._cache.get(key)
            if cached is not None and cached.is_up_to_date:
                return cached
            if cached is not None:
                logger.debug("Template changed on disk: %s", name)
                self._cache.invalidate(key)
        template = self._compile(name, strict)
        if use_cache:
            self._cache.put(key, template)
        return template

    def _compile(self, name: str, strict: bool) -> Template:
        env = self._environments[strict]
        for suffix in TEMPLATE_SUFFIXES:
            candidate = f"{name}{suffix}"
            try:
                return env.get_template(candidate)
            except TemplateNotFound:
                continue
            except TemplateSyntaxError as exc:
                raise self._syntax_error(exc, name).to_processing_error() from exc
        raise ProcessingError.template_processing(
            f"Template not found: {name} (searched {self.template_dir})", template_name=name
        )

    def _render(
        self,
        template: Template,
        name: str,
        context: Mapping[str, Any],
        strict: bool,
        source: str | None = None,
    ) -> str:
        try:
            return template.render(**context)
        except ProcessingError:
            raise
        except TemplateSyntaxError as exc:
            raise self._syntax_error(exc, name).to_processing_error() from exc
        except Exception as exc:
            error = self._runtime_error(exc, template, name, strict, source)
            raise error.to_processing_error() from exc

    @staticmethod
    def _syntax_error(exc: TemplateSyntaxError, name: str) -> ValidationError:
        return ValidationError(exc.message or str(exc), line=exc.lineno, source=exc, template_name=exc.name or name)

    def _runtime_error(
        self,
        exc: Exception,
        template: Template,
        name: str,
        strict: bool,
        source: str | None,
    ) -> ValidationError:
        filename, line = _template_location(exc)
        column = None
        if isinstance(exc, UndefinedError) and line is not None:
            text = self._source_line(template, filename, line, source)
            match = _UNDEFINED_NAME_RE.search(str(exc))
            if text is not None and match:
                variable = match.group(1) or match.group(2)
                found = re.search(rf"\b{re.escape(variable)}\b", text)
                if found:
                    column = found.start() + 1
        details = f"Undefined variable: {exc}" if isinstance(exc, UndefinedError) else f"{type(exc).__name__}: {exc}"
        if strict and isinstance(exc, UndefinedError):
            details = f"{details} (strict mode)"
        return ValidationError(details, line=line, column=column, source=exc, template_name=template.name or name)

    def _source_line(
        self, template: Template, filename: str | None, line: int, source: str | None
    ) -> str | None:
        if source is None:
            if filename and Path(filename).is_file():
                source = Path(filename).read_text(encoding="utf-8")
            elif template.name in self._partials:
                source = self._partials[template.name]
            else:
                return None
        lines = source.splitlines()
        return lines[line - 1] if 0 < line <= len(lines) else None
