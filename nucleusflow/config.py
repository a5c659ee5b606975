"""Configuration for NucleusFlow.

A run is governed by a single validated :class:`Config`. Configs are built
by :class:`ConfigBuilder`, which layers, from lowest to highest priority:

1. Built-in defaults.
2. The overlay of the selected profile (development, staging, production,
   or a custom profile defined in the config file).
3. Values from a config file (YAML/JSON, or TOML).
4. Environment variables with a chosen prefix.
5. Explicit ``with_override`` values.

The resulting ``Config`` is frozen. Code that needs hot reload holds a
:class:`ConfigHandle`, which swaps in a freshly built ``Config`` when the
backing file changes.

Key classes:
- Profile: Named bundle of default overlays.
- ContentConfig / TemplateConfig / OutputConfig: Per-stage settings.
- Config: The validated settings for a run.
- ConfigBuilder: Immutable builder producing a Config.
- ConfigHandle: Shared, reloadable reference to the active Config.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import time
import tomllib
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, ClassVar

import yaml

from .concurrency import ReadWriteLock
from .errors import ErrorKind, ProcessingError
from .utils import parse_bool, parse_duration, parse_string_set

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_HTML_TAGS = frozenset(
    {
        "a", "abbr", "b", "blockquote", "br", "code", "dd", "del", "div", "dl",
        "dt", "em", "figcaption", "figure", "h1", "h2", "h3", "h4", "h5", "h6",
        "hr", "i", "img", "kbd", "li", "nav", "ol", "p", "pre", "section",
        "span", "strong", "sub", "sup", "table", "tbody", "td", "th", "thead",
        "tr", "ul",
    }
)
DEFAULT_EXTENSIONS = frozenset({"md", "markdown"})
DEFAULT_MAX_FILE_SIZE = 1024 * 1024
CONFIG_FILE_NAMES = ("nucleusflow.yaml", "nucleusflow.yml", "nucleusflow.toml", "nucleusflow.json")


@dataclass(frozen=True)
class Profile:
    """Operational profile selecting a default overlay.

    Use the ``DEVELOPMENT``, ``STAGING`` and ``PRODUCTION`` constants for the
    built-in profiles and :meth:`custom` for a named, file-defined profile.
    """

    name: str
    is_custom: bool = False

    DEVELOPMENT: ClassVar[Profile]
    STAGING: ClassVar[Profile]
    PRODUCTION: ClassVar[Profile]

    @classmethod
    def custom(cls, name: str) -> Profile:
        return cls(name=name, is_custom=True)

    @classmethod
    def parse(cls, value: Profile | str, custom_names: Iterator[str] | set[str] = frozenset()) -> Profile:
        """Resolve a profile name.

        Args:
            value: Profile or profile name (case-insensitive for built-ins).
            custom_names: Names of custom profiles defined in the config file.

        Returns:
            The matching Profile.

        Raises:
            ValueError: If the name is neither built in nor defined.
        """
        if isinstance(value, Profile):
            if value.is_custom and value.name not in set(custom_names):
                raise ValueError(f"unknown profile '{value}'")
            return value
        text = str(value).strip()
        builtin = _BUILTIN_PROFILES.get(text.lower())
        if builtin is not None:
            return builtin
        name = text.split(":", 1)[1] if text.lower().startswith("custom:") else text
        if name in set(custom_names):
            return cls.custom(name)
        raise ValueError(f"unknown profile '{text}'")

    def __str__(self) -> str:
        return f"custom:{self.name}" if self.is_custom else self.name


Profile.DEVELOPMENT = Profile("development")
Profile.STAGING = Profile("staging")
Profile.PRODUCTION = Profile("production")

_BUILTIN_PROFILES = {
    "development": Profile.DEVELOPMENT,
    "staging": Profile.STAGING,
    "production": Profile.PRODUCTION,
}

PROFILE_OVERLAYS: dict[str, dict[str, Any]] = {
    "development": {
        "output.minify": False,
        "output.pretty_print": True,
        "template.strict_mode": False,
        "template.cache_templates": False,
    },
    "staging": {
        "output.minify": True,
        "template.cache_templates": True,
    },
    "production": {
        "output.minify": True,
        "output.pretty_print": False,
        "template.strict_mode": True,
        "template.cache_templates": True,
        "content.sanitize": True,
    },
}


@dataclass(frozen=True)
class ContentConfig:
    """Settings for the content (markdown) stage."""

    max_content_size: int = 10 * 1024 * 1024
    sanitize: bool = True
    validate: bool = True
    extract_metadata: bool = True
    allowed_html_tags: frozenset[str] = DEFAULT_ALLOWED_HTML_TAGS
    allowed_functions: frozenset[str] = frozenset()
    extensions: frozenset[str] = DEFAULT_EXTENSIONS
    toc: bool = False
    toc_max_level: int = 3
    auto_links: bool = True
    footnotes: bool = True
    strikethrough: bool = True
    tables: bool = True
    options: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TemplateConfig:
    """Settings for the template stage."""

    cache_templates: bool = True
    cache_ttl: timedelta = timedelta(minutes=5)
    strict_mode: bool = False
    default_template: str = "default"
    options: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OutputConfig:
    """Settings for the output (HTML) stage."""

    minify: bool = False
    pretty_print: bool = False
    asset_dir: Path | None = None
    max_output_size: int = 50 * 1024 * 1024
    options: Mapping[str, Any] = field(default_factory=dict)


def _optional_path(value: object) -> Path | None:
    if value is None or value == "":
        return None
    return Path(str(value))


def _extensions(value: object) -> frozenset[str]:
    return frozenset(ext.lstrip(".").lower() for ext in parse_string_set(value))


def _file_mode(value: object) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return int(str(value), 8)


_TOP_LEVEL_FIELDS = {
    "content_dir": lambda v: Path(str(v)),
    "output_dir": lambda v: Path(str(v)),
    "template_dir": lambda v: Path(str(v)),
    "max_concurrent_ops": int,
    "max_cache_size": int,
    "rate_limit": float,
    "file_permissions": _file_mode,
}

_SECTION_FIELDS = {
    "content": {
        "max_content_size": int,
        "sanitize": parse_bool,
        "validate": parse_bool,
        "extract_metadata": parse_bool,
        "allowed_html_tags": lambda v: frozenset(t.lower() for t in parse_string_set(v)),
        "allowed_functions": parse_string_set,
        "extensions": _extensions,
        "toc": parse_bool,
        "toc_max_level": int,
        "auto_links": parse_bool,
        "footnotes": parse_bool,
        "strikethrough": parse_bool,
        "tables": parse_bool,
    },
    "template": {
        "cache_templates": parse_bool,
        "cache_ttl": parse_duration,
        "strict_mode": parse_bool,
        "default_template": str,
    },
    "output": {
        "minify": parse_bool,
        "pretty_print": parse_bool,
        "asset_dir": _optional_path,
        "max_output_size": int,
    },
}

_PATH_KEYS = {"content_dir", "output_dir", "template_dir", "output.asset_dir"}


@dataclass(frozen=True)
class Config:
    """Validated settings for a pipeline run.

    Attributes:
        content_dir: Directory containing content files.
        output_dir: Directory receiving generated artifacts.
        template_dir: Directory containing templates.
        profile: Active profile.
        content: Content stage settings.
        template: Template stage settings.
        output: Output stage settings.
        max_concurrent_ops: Maximum file pipelines run at once.
        max_cache_size: Entry bound for the stage caches.
        rate_limit: Maximum file pipelines started per second.
        file_permissions: Mode applied to written artifacts.
        custom: Open mapping of extension settings.
        source_path: Config file this config was loaded from, if any.
        source_mtime: Modification time of ``source_path`` when loaded.
    """

    content_dir: Path = Path("content")
    output_dir: Path = Path("public")
    template_dir: Path = Path("templates")
    profile: Profile = Profile.DEVELOPMENT
    content: ContentConfig = field(default_factory=ContentConfig)
    template: TemplateConfig = field(default_factory=TemplateConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    max_concurrent_ops: int = 4
    max_cache_size: int = 256
    rate_limit: float = 100.0
    file_permissions: int = 0o644
    custom: Mapping[str, Any] = field(default_factory=dict)
    source_path: Path | None = field(default=None, compare=False)
    source_mtime: float | None = field(default=None, compare=False)

    def validate(self) -> None:
        """Check directories and limits.

        Raises:
            ProcessingError: CONFIGURATION on the first problem found.
        """
        _require_readable_dir(self.content_dir, "content")
        _require_readable_dir(self.template_dir, "template")
        _require_creatable_dir(self.output_dir)
        if self.output.asset_dir is not None:
            _require_readable_dir(self.output.asset_dir, "asset")

        limits = {
            "content.max_content_size": self.content.max_content_size,
            "output.max_output_size": self.output.max_output_size,
            "template.cache_ttl": self.template.cache_ttl.total_seconds(),
            "max_concurrent_ops": self.max_concurrent_ops,
            "max_cache_size": self.max_cache_size,
            "rate_limit": self.rate_limit,
        }
        for name, value in limits.items():
            if value <= 0:
                raise ProcessingError.configuration(f"{name} must be positive, got {value}")
        if not 1 <= self.content.toc_max_level <= 6:
            raise ProcessingError.configuration(
                f"content.toc_max_level must be between 1 and 6, got {self.content.toc_max_level}"
            )
        if not self.content.extensions:
            raise ProcessingError.configuration("No content extensions specified")
        if not 0 <= self.file_permissions <= 0o777:
            raise ProcessingError.configuration(f"Invalid file_permissions: {oct(self.file_permissions)}")
        if self.profile.is_custom and not self.profile.name:
            raise ProcessingError.configuration("Custom profile requires a name")

    def get_custom(self, key: str, type_: type | None = None, default: Any = None) -> Any:
        """Read a value from the ``custom`` mapping.

        Args:
            key: Custom key.
            type_: Optional type to coerce the value to.
            default: Returned when the key is missing.

        Raises:
            ProcessingError: CONFIGURATION if the value cannot be coerced.
        """
        if key not in self.custom:
            return default
        value = self.custom[key]
        if type_ is None or (isinstance(value, type_) and not (type_ is int and isinstance(value, bool))):
            return value
        try:
            if type_ is bool:
                return parse_bool(value)
            if type_ is timedelta:
                return parse_duration(value)
            if type_ in (frozenset, set):
                return type_(parse_string_set(value))
            return type_(value)
        except (TypeError, ValueError) as exc:
            raise ProcessingError.configuration(
                f"Invalid custom config value for '{key}': {exc}", source=exc
            ) from exc

    def set_custom(self, key: str, value: Any) -> Config:
        """Return a copy of this config with ``custom[key]`` set.

        Raises:
            ProcessingError: CONFIGURATION if the value is not serializable.
        """
        try:
            yaml.safe_dump(value)
        except yaml.YAMLError as exc:
            raise ProcessingError.configuration(
                f"Invalid custom config value for '{key}': {exc}", source=exc
            ) from exc
        return dataclasses.replace(self, custom={**self.custom, key: value})

    def needs_reload(self) -> bool:
        """Whether the backing config file changed since this config was loaded."""
        if self.source_path is None or self.source_mtime is None:
            return False
        try:
            return self.source_path.stat().st_mtime > self.source_mtime
        except OSError:
            return False

    def to_dict(self) -> dict[str, Any]:
        """Serializable representation mirroring the config file layout."""

        def section(obj: Any) -> dict[str, Any]:
            data: dict[str, Any] = {}
            for f in dataclasses.fields(obj):
                value = getattr(obj, f.name)
                if f.name == "options":
                    data.update(value)
                elif isinstance(value, frozenset):
                    data[f.name] = sorted(value)
                elif isinstance(value, timedelta):
                    data[f.name] = int(value.total_seconds())
                elif isinstance(value, Path):
                    data[f.name] = value.as_posix()
                else:
                    data[f.name] = value
            return data

        data: dict[str, Any] = {
            "content_dir": self.content_dir.as_posix(),
            "output_dir": self.output_dir.as_posix(),
            "template_dir": self.template_dir.as_posix(),
            "profile": str(self.profile),
            "max_concurrent_ops": self.max_concurrent_ops,
            "max_cache_size": self.max_cache_size,
            "rate_limit": self.rate_limit,
            "file_permissions": oct(self.file_permissions)[2:],
            "content": section(self.content),
            "template": section(self.template),
            "output": section(self.output),
        }
        if self.custom:
            data["custom"] = dict(self.custom)
        return data


def _require_readable_dir(path: Path, name: str) -> None:
    if not path.exists():
        raise ProcessingError.configuration(f"{name} directory does not exist: {path}", path=path)
    if not path.is_dir():
        raise ProcessingError.configuration(f"{name} path is not a directory: {path}", path=path)
    if not os.access(path, os.R_OK | os.X_OK):
        raise ProcessingError.configuration(f"{name} directory is not readable: {path}", path=path)


def _require_creatable_dir(path: Path) -> None:
    if path.exists():
        if not path.is_dir():
            raise ProcessingError.configuration(f"output path is not a directory: {path}", path=path)
        if not os.access(path, os.W_OK | os.X_OK):
            raise ProcessingError.configuration(f"output directory is not writable: {path}", path=path)
        return
    ancestor = path.absolute().parent
    while not ancestor.exists():
        ancestor = ancestor.parent
    if not ancestor.is_dir() or not os.access(ancestor, os.W_OK | os.X_OK):
        raise ProcessingError.configuration(
            f"output directory cannot be created under {ancestor}", path=path
        )


def _assemble(values: Mapping[str, Any], profile: Profile) -> dict[str, Any]:
    """Turn flat dotted keys into keyword arguments for Config."""
    top: dict[str, Any] = {}
    sections: dict[str, dict[str, Any]] = {name: {} for name in _SECTION_FIELDS}
    options: dict[str, dict[str, Any]] = {name: {} for name in _SECTION_FIELDS}
    custom: dict[str, Any] = {}

    for key, raw in values.items():
        section, _, name = key.partition(".")
        try:
            if not name:
                if key in _TOP_LEVEL_FIELDS:
                    top[key] = _TOP_LEVEL_FIELDS[key](raw)
                else:
                    custom[key] = raw
            elif section == "custom":
                custom[name] = raw
            elif section in _SECTION_FIELDS:
                coerce = _SECTION_FIELDS[section].get(name)
                if coerce is None:
                    options[section][name] = raw
                else:
                    sections[section][name] = coerce(raw)
            else:
                raise ProcessingError.configuration(f"Unknown configuration section: {section}")
        except (TypeError, ValueError) as exc:
            raise ProcessingError.configuration(
                f"Invalid value for '{key}': {raw!r} ({exc})", source=exc
            ) from exc

    return {
        **top,
        "profile": profile,
        "content": ContentConfig(**sections["content"], options=options["content"]),
        "template": TemplateConfig(**sections["template"], options=options["template"]),
        "output": OutputConfig(**sections["output"], options=options["output"]),
        "custom": custom,
    }


def _flatten_file(data: Mapping[str, Any], base_dir: Path) -> tuple[dict[str, Any], dict[str, dict[str, Any]]]:
    """Flatten a parsed config document into dotted keys.

    Returns:
        Tuple of (flat values, custom profile overlays).
    """
    values: dict[str, Any] = {}
    profiles: dict[str, dict[str, Any]] = {}
    for key, value in data.items():
        if key == "profiles" and isinstance(value, Mapping):
            for name, overlay in value.items():
                if not isinstance(overlay, Mapping):
                    raise ProcessingError.configuration(f"Profile '{name}' must be a table")
                flat: dict[str, Any] = {}
                for okey, ovalue in overlay.items():
                    if isinstance(ovalue, Mapping) and okey in _SECTION_FIELDS:
                        flat.update({f"{okey}.{k}": v for k, v in ovalue.items()})
                    else:
                        flat[okey] = ovalue
                profiles[str(name)] = _resolve_paths(flat, base_dir)
        elif key in _SECTION_FIELDS and isinstance(value, Mapping):
            values.update({f"{key}.{k}": v for k, v in value.items()})
        elif key == "custom" and isinstance(value, Mapping):
            values.update({f"custom.{k}": v for k, v in value.items()})
        else:
            values[key] = value
    return _resolve_paths(values, base_dir), profiles


def _resolve_paths(values: dict[str, Any], base_dir: Path) -> dict[str, Any]:
    """Anchor relative path settings at the config file's directory."""
    for key in _PATH_KEYS:
        raw = values.get(key)
        if raw:
            path = Path(str(raw))
            values[key] = path if path.is_absolute() else base_dir / path
    return values


@dataclass(frozen=True)
class ConfigBuilder:
    """Immutable builder for :class:`Config`.

    Every ``with_*`` method returns a new builder, so a builder can be
    shared and extended without affecting other users.

    Example:
        >>> config = (
        ...     ConfigBuilder()
        ...     .with_file("nucleusflow.yaml")
        ...     .with_env_prefix("NUCLEUS_")
        ...     .with_profile("production")
        ...     .build()
        ... )
    """

    config_file: Path | None = None
    env_prefix: str | None = None
    profile: Profile | str | None = None
    overrides: tuple[tuple[str, Any], ...] = ()
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    auto_reload: bool = False
    reload_interval: timedelta = timedelta(seconds=2)

    def with_file(self, path: Path | str) -> ConfigBuilder:
        return dataclasses.replace(self, config_file=Path(path))

    def with_env_prefix(self, prefix: str) -> ConfigBuilder:
        return dataclasses.replace(self, env_prefix=prefix)

    def with_profile(self, profile: Profile | str) -> ConfigBuilder:
        return dataclasses.replace(self, profile=profile)

    def with_override(self, key: str, value: Any) -> ConfigBuilder:
        return dataclasses.replace(self, overrides=self.overrides + ((key, value),))

    def with_max_file_size(self, size: int) -> ConfigBuilder:
        return dataclasses.replace(self, max_file_size=size)

    def with_auto_reload(self, enabled: bool = True) -> ConfigBuilder:
        return dataclasses.replace(self, auto_reload=enabled)

    def with_reload_interval(self, interval: timedelta | float | str) -> ConfigBuilder:
        return dataclasses.replace(self, reload_interval=parse_duration(interval))

    def build(self) -> Config:
        """Build and validate a Config.

        Raises:
            ProcessingError: CONFIGURATION for invalid settings or an unknown
                profile, SERIALIZATION if the config file cannot be parsed.
        """
        file_values: dict[str, Any] = {}
        profiles: dict[str, dict[str, Any]] = {}
        source_mtime = None
        if self.config_file is not None:
            data, source_mtime = self._read_file(self.config_file)
            file_values, profiles = _flatten_file(data, self.config_file.parent)

        explicit = {**file_values, **self._env_values(), **dict(self.overrides)}
        requested = explicit.pop("profile", None)
        if self.profile is not None:
            requested = self.profile
        try:
            profile = Profile.parse(requested or Profile.DEVELOPMENT, set(profiles))
        except ValueError as exc:
            raise ProcessingError.configuration(str(exc), path=self.config_file, source=exc) from exc

        overlay = profiles[profile.name] if profile.is_custom else PROFILE_OVERLAYS[profile.name]
        config = Config(
            **_assemble({**overlay, **explicit}, profile),
            source_path=self.config_file,
            source_mtime=source_mtime,
        )
        config.validate()
        logger.debug("Built config (profile=%s, source=%s)", profile, self.config_file)
        return config

    def build_shared(self) -> ConfigHandle:
        """Build a Config and wrap it in a reloadable handle."""
        return ConfigHandle(self.build(), builder=self)

    def _read_file(self, path: Path) -> tuple[dict[str, Any], float]:
        try:
            stat = path.stat()
            if stat.st_size > self.max_file_size:
                raise ProcessingError.configuration(
                    f"Config file exceeds maximum size of {self.max_file_size} bytes", path=path
                )
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ProcessingError.configuration(
                f"Failed to read config file: {exc}", path=path, source=exc
            ) from exc
        try:
            data = tomllib.loads(text) if path.suffix.lower() == ".toml" else yaml.safe_load(text)
        except (yaml.YAMLError, tomllib.TOMLDecodeError) as exc:
            raise ProcessingError(
                ErrorKind.SERIALIZATION, f"Failed to parse config file: {exc}", path=path, source=exc
            ) from exc
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ProcessingError.configuration("Config file must contain a mapping", path=path)
        return data, stat.st_mtime

    def _env_values(self) -> dict[str, Any]:
        if not self.env_prefix:
            return {}
        values: dict[str, Any] = {}
        for name, value in os.environ.items():
            if not name.startswith(self.env_prefix):
                continue
            stripped = name[len(self.env_prefix):].lstrip("_")
            if not stripped:
                continue
            key = ".".join(part.lower() for part in stripped.split("__"))
            values[key] = value
        return values


def find_config_file(root: Path) -> Path | None:
    """Return the first conventional config file found in ``root``."""
    for name in CONFIG_FILE_NAMES:
        candidate = root / name
        if candidate.is_file():
            return candidate
    return None


class ConfigHandle:
    """Shared, reloadable reference to the active Config.

    Workers hold :meth:`read` for the whole of a file pipeline; a reload
    swaps the Config under the write lock only after a read-locked check
    confirmed the source file changed.

    Attributes:
        builder: Builder used to rebuild the config on reload, if any.
    """

    def __init__(self, config: Config, builder: ConfigBuilder | None = None, clock=time.monotonic):
        self.builder = builder
        self._config = config
        self._lock = ReadWriteLock()
        self._clock = clock
        self._last_check = clock()

    @property
    def current(self) -> Config:
        return self._config

    @contextmanager
    def read(self) -> Iterator[Config]:
        """Hold shared access to the active config."""
        with self._lock.read_locked():
            yield self._config

    def needs_reload(self) -> bool:
        with self._lock.read_locked():
            return self._config.needs_reload()

    def reload_if_needed(self, force: bool = False) -> bool:
        """Rebuild and swap the config if its source file changed.

        Without ``force`` this only looks at the file when the builder has
        auto reload enabled and the reload interval has elapsed.

        Returns:
            True if a new config was swapped in.

        Raises:
            ProcessingError: CONFIGURATION if the changed file no longer
                produces a valid config; the previous config stays active.
        """
        if self.builder is None:
            return False
        if not force:
            if not self.builder.auto_reload:
                return False
            now = self._clock()
            if now - self._last_check < self.builder.reload_interval.total_seconds():
                return False
            self._last_check = now
        if not self.needs_reload():
            return False
        with self._lock.write_locked():
            if not self._config.needs_reload():
                return False
            try:
                config = self.builder.build()
            except ProcessingError as exc:
                raise ProcessingError.configuration(
                    f"Failed to reload configuration: {exc.details}",
                    path=self._config.source_path,
                    source=exc,
                ) from exc
            self._config = config
        logger.info("Reloaded configuration from %s", config.source_path)
        return True

    def swap(self, config: Config) -> None:
        """Replace the active config after validating it."""
        config.validate()
        with self._lock.write_locked():
            self._config = config
