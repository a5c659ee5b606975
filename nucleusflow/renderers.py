"""Markdown rendering for NucleusFlow.

Key classes:
- HeadingRenderer: mistune HTML renderer adding heading ids and Pygments
  highlighting, collecting headings for the TOC.
- MarkdownRenderer: Converts a markdown body to an HTML fragment with the
  extensions enabled in ContentConfig.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import mistune
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

from .html_utils import escape_html
from .models import Heading
from .utils import generate_heading_id

if TYPE_CHECKING:
    from .config import ContentConfig


class HeadingRenderer(mistune.HTMLRenderer):
    """Markdown renderer with heading ids and syntax highlighting.

    Raw HTML in the source is passed through; sanitization runs on the
    rendered output.

    Attributes:
        headings: Headings in document order.
    """

    def __init__(self):
        super().__init__(escape=False)
        self.headings: list[Heading] = []
        self._heading_id_counts: dict[str, int] = {}

    def heading(self, text: str, level: int, **attrs) -> str:
        """Render a heading with a unique id and record it.

        Args:
            text: Rendered inline heading content.
            level: Heading level (1-6).
            **attrs: Additional attributes.

        Returns:
            HTML heading element.
        """
        base_id = generate_heading_id(text)
        if base_id in self._heading_id_counts:
            self._heading_id_counts[base_id] += 1
            heading_id = f"{base_id}-{self._heading_id_counts[base_id]}"
        else:
            self._heading_id_counts[base_id] = 0
            heading_id = base_id
        self.headings.append(Heading(id=heading_id, text=text, level=level))
        return f'<h{level} id="{heading_id}">{text}</h{level}>\n'

    def block_code(self, code: str, info: str | None = None) -> str:
        """Render a fenced code block, highlighted when the language is known.

        Args:
            code: The code content.
            info: Language identifier (e.g., 'python').

        Returns:
            HTML for the code block.
        """
        lang = info.split()[0] if info and info.strip() else None
        if lang:
            try:
                lexer = get_lexer_by_name(lang, stripall=True)
            except ClassNotFound:
                lexer = None
            if lexer is not None:
                return highlight(code, lexer, HtmlFormatter(cssclass="highlight"))
        lang_class = f' class="language-{escape_html(lang)}"' if lang else ""
        return f"<pre><code{lang_class}>{escape_html(code)}</code></pre>\n"


class MarkdownRenderer:
    """Converts markdown to HTML with config-gated extensions."""

    def __init__(self, settings: ContentConfig):
        self.plugins = self._plugins(settings)

    @staticmethod
    def _plugins(settings: ContentConfig) -> list[str]:
        plugins = []
        if settings.strikethrough:
            plugins.append("strikethrough")
        if settings.footnotes:
            plugins.append("footnotes")
        if settings.tables:
            plugins.append("table")
        if settings.auto_links:
            plugins.append("url")
        return plugins

    def render(self, body: str) -> tuple[str, list[Heading]]:
        """Render markdown to HTML.

        A fresh mistune renderer is built per call so headings never leak
        between documents rendered on different threads.

        Args:
            body: Markdown source.

        Returns:
            Tuple of (HTML fragment, headings in document order).
        """
        renderer = HeadingRenderer()
        markdown = mistune.create_markdown(renderer=renderer, plugins=self.plugins)
        html = markdown(body)
        return html, renderer.headings
