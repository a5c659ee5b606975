"""NucleusFlow content pipeline.

This package turns markdown content with YAML frontmatter into finished HTML
pages through three pluggable stages: content processing (markdown), template
rendering (Jinja2) and output generation (HTML assembly, minification and
asset processing).

The orchestrator (:class:`~nucleusflow.pipeline.NucleusFlow`) depends only on
the stage protocols in :mod:`nucleusflow.protocols`, so any stage can be
swapped for another implementation. Configuration is built with
:class:`~nucleusflow.config.ConfigBuilder` and every failure is reported as a
:class:`~nucleusflow.errors.ProcessingError`.
"""

from .config import Config, ConfigBuilder, ConfigHandle, Profile
from .errors import ContentError, ErrorKind, ProcessingError, ValidationError
from .generator import HtmlGenerator
from .markdown import MarkdownProcessor
from .models import ContentMetadata, ProcessingOptions
from .pipeline import NucleusFlow, ProcessResult
from .templates import JinjaRenderer

__all__ = [
    "Config",
    "ConfigBuilder",
    "ConfigHandle",
    "ContentError",
    "ContentMetadata",
    "ErrorKind",
    "HtmlGenerator",
    "JinjaRenderer",
    "MarkdownProcessor",
    "NucleusFlow",
    "ProcessResult",
    "ProcessingError",
    "ProcessingOptions",
    "Profile",
    "ValidationError",
    "__version__",
]
__version__ = "0.1.0"
