"""HTML utility functions for NucleusFlow.

This module provides the string-level HTML operations used by the output
stage: escaping, metadata injection, minification, pretty printing, and a
structural check of tag nesting.

Functions:
    escape_html: Escape special HTML characters in a string.
    build_meta_tags: Render ``<meta>`` tags for page metadata.
    inject_metadata: Ensure document structure and add title/meta tags.
    strip_meta_tags: Remove named ``<meta>`` tags.
    minify_html: Collapse insignificant whitespace and minify inline code.
    pretty_print_html: Re-indent block-level markup.
    html_stats: Tag, byte and line counts for a document.

Classes:
    HtmlStructureValidator: Checks that tags are properly nested and closed.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import date, datetime
from html.parser import HTMLParser
from typing import Any

import rjsmin
from rcssmin import cssmin

VOID_ELEMENTS = frozenset(
    {
        "area", "base", "br", "col", "embed", "hr", "img", "input", "link",
        "meta", "param", "source", "track", "wbr",
    }
)
OPTIONAL_TAGS = frozenset(
    {"html", "head", "body", "tbody", "thead", "tfoot", "tr", "th", "td", "li", "dt", "dd", "p"}
)
DOCUMENT_TAGS = frozenset(
    {"html", "head", "body", "title", "meta", "link", "style", "main", "header", "footer", "article", "aside"}
)
BLOCK_TAGS = frozenset(
    {
        "html", "head", "body", "title", "meta", "link", "script", "style",
        "div", "p", "ul", "ol", "li", "nav", "section", "article", "header",
        "footer", "main", "aside", "h1", "h2", "h3", "h4", "h5", "h6",
        "table", "thead", "tbody", "tfoot", "tr", "td", "th", "blockquote",
        "hr", "br", "pre", "figure", "figcaption", "dl", "dt", "dd", "form",
    }
)

_PROTECTED_RE = re.compile(
    r"<(pre|textarea|script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL
)
_PLACEHOLDER_RE = re.compile(r"\x00(\d+)\x00")
_COMMENT_RE = re.compile(r"<!--(?!\[if).*?-->", re.DOTALL)
_BLOCK_BOUNDARY_RE = re.compile(
    r"\s*(</?(?:" + "|".join(sorted(BLOCK_TAGS)) + r")\b[^>]*>|<!DOCTYPE[^>]*>|\x00\d+\x00)\s*",
    re.IGNORECASE,
)
_TOKEN_RE = re.compile(r"(<[^>]+>|\x00\d+\x00)")
_TAG_RE = re.compile(r"<(/?)([A-Za-z][A-Za-z0-9-]*)[^>]*?(/?)>")
_META_NAME_RE = re.compile(r"<meta\s+name=\"[^\"]*\"[^>]*>\s*", re.IGNORECASE)


def escape_html(text: str) -> str:
    """Escape special HTML characters in a string.

    Converts the following characters to their HTML entity equivalents:
    - & becomes &amp;
    - < becomes &lt;
    - > becomes &gt;
    - " becomes &quot;

    Args:
        text: The string to escape.

    Returns:
        The escaped string, safe for inclusion in HTML text and attributes.

    Examples:
        >>> escape_html('<script>alert("XSS")</script>')
        '&lt;script&gt;alert(&quot;XSS&quot;)&lt;/script&gt;'
    """
    return (
        str(text)
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def _meta_value(value: Any) -> str | None:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (str, int, float)):
        return str(value)
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return ", ".join(value)
    return None


def build_meta_tags(metadata: Mapping[str, Any]) -> str:
    """Render ``<meta name content>`` tags for scalar metadata values.

    ``title`` is skipped (it becomes the ``<title>`` element); nested
    values that have no sensible string form are skipped as well.

    Args:
        metadata: Flat mapping of metadata values.

    Returns:
        Concatenated meta tags, names and values escaped.
    """
    tags = []
    for name, value in metadata.items():
        if name == "title":
            continue
        text = _meta_value(value)
        if not text:
            continue
        tags.append(f'<meta name="{escape_html(name)}" content="{escape_html(text)}">')
    return "\n".join(tags)


def inject_metadata(html: str, metadata: Mapping[str, Any]) -> str:
    """Wrap a fragment in a document and add title and meta tags.

    A missing DOCTYPE, ``<html>``, ``<head>`` or ``<body>`` is added. The
    ``<title>`` is only added when the document has none, and meta tags
    whose name is already present are not duplicated.

    Args:
        html: Rendered HTML fragment or document.
        metadata: Flat metadata mapping (``title`` plus meta values).

    Returns:
        A complete HTML document.
    """
    document = html.strip()
    lower = document.lower()
    if "<html" not in lower:
        if "<head" in lower:
            document = f"<html>\n{document}\n</html>"
        else:
            document = f"<html>\n<head>\n</head>\n<body>\n{document}\n</body>\n</html>"
    elif "<head" not in lower:
        document = re.sub(r"(<html\b[^>]*>)", r"\1\n<head>\n</head>", document, count=1, flags=re.I)
    if not document.lower().startswith("<!doctype"):
        document = f"<!DOCTYPE html>\n{document}"

    head: list[str] = []
    if not re.search(r"<meta\s+charset", document, re.IGNORECASE):
        head.append('<meta charset="utf-8">')
    title = metadata.get("title")
    if title and not re.search(r"<title\b", document, re.IGNORECASE):
        head.append(f"<title>{escape_html(title)}</title>")
    pending = {
        name: value
        for name, value in metadata.items()
        if not re.search(rf'<meta\s+name="{re.escape(escape_html(name))}"', document, re.IGNORECASE)
    }
    meta = build_meta_tags(pending)
    if meta:
        head.append(meta)
    if head:
        block = "\n".join(head)
        document = re.sub(r"</head\s*>", lambda _: f"{block}\n</head>", document, count=1, flags=re.I)
    return document + "\n"


def strip_meta_tags(html: str) -> str:
    """Remove every ``<meta name=...>`` tag, keeping charset/http-equiv tags."""
    return _META_NAME_RE.sub("", html)


def _protect(html: str) -> tuple[list[str], str]:
    blocks: list[str] = []

    def stash(match: re.Match) -> str:
        blocks.append(match.group(0))
        return f"\x00{len(blocks) - 1}\x00"

    return blocks, _PROTECTED_RE.sub(stash, html)


def _restore(blocks: list[str], html: str) -> str:
    return _PLACEHOLDER_RE.sub(lambda m: blocks[int(m.group(1))], html)


def _block_tag(block: str) -> str:
    return re.match(r"<([A-Za-z]+)", block).group(1).lower()


def _minify_block(block: str) -> str:
    open_end = block.index(">") + 1
    close_start = block.lower().rindex("</")
    tag = _block_tag(block)
    body = block[open_end:close_start]
    if tag == "script" and "src=" not in block[:open_end].lower():
        body = rjsmin.jsmin(body)
    elif tag == "style":
        body = cssmin(body)
    return f"{block[:open_end]}{body}{block[close_start:]}"


def minify_html(html: str) -> str:
    """Collapse insignificant whitespace.

    Whitespace runs become one space and whitespace next to block-level
    tags is dropped. ``<pre>`` and ``<textarea>`` are left untouched;
    inline ``<script>`` and ``<style>`` bodies go through rjsmin and
    rcssmin. Comments other than conditional comments are removed.

    Args:
        html: HTML document or fragment.

    Returns:
        Minified HTML.
    """
    blocks, text = _protect(html)
    blocks = [_minify_block(b) if _block_tag(b) in ("script", "style") else b for b in blocks]
    text = _COMMENT_RE.sub("", text)
    text = re.sub(r"\s+", " ", text)
    text = _BLOCK_BOUNDARY_RE.sub(r"\1", text)
    return _restore(blocks, text.strip())


def pretty_print_html(html: str, indent_size: int = 2) -> str:
    """Put block-level tags on their own lines, indented by nesting depth.

    Inline markup and text stay on one line; ``<pre>``, ``<textarea>``,
    ``<script>`` and ``<style>`` blocks are emitted verbatim.

    Args:
        html: HTML document or fragment.
        indent_size: Spaces per nesting level.

    Returns:
        Indented HTML ending with a newline.
    """
    blocks, text = _protect(html)
    lines: list[str] = []
    depth = 0
    current = ""

    def emit(line: str) -> None:
        lines.append(" " * (depth * indent_size) + line)

    for token in _TOKEN_RE.split(text):
        if not token:
            continue
        if _PLACEHOLDER_RE.fullmatch(token):
            if current.strip():
                emit(current.strip())
            current = ""
            emit(blocks[int(token.strip("\x00"))])
            continue
        tag = _TAG_RE.match(token)
        if token.startswith("<!") or (tag and tag.group(2).lower() in BLOCK_TAGS):
            if current.strip():
                emit(current.strip())
            current = ""
            if tag and tag.group(1):
                depth = max(depth - 1, 0)
                emit(token)
            else:
                emit(token)
                if tag and tag.group(2).lower() not in VOID_ELEMENTS and not tag.group(3):
                    depth += 1
            continue
        current += re.sub(r"\s+", " ", token)
    if current.strip():
        emit(current.strip())
    return "\n".join(lines) + "\n"


def html_stats(content: str) -> dict[str, int]:
    """Tag, byte and line counts for a document."""
    return {
        "tag_count": len(re.findall(r"<[^>]+>", content)),
        "size_bytes": len(content.encode("utf-8")),
        "line_count": len(content.splitlines()),
    }


class HtmlStructureValidator(HTMLParser):
    """Checks that tags are properly nested and closed.

    Void elements never need closing; tags whose end tag is optional in
    HTML5 may be left open or closed implicitly by their parent.

    Attributes:
        errors: Problems found by the last :meth:`check` call.
        tags: Every tag name seen, in order.
    """

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.errors: list[str] = []
        self.tags: list[str] = []
        self._stack: list[str] = []

    def check(self, html: str) -> list[str]:
        """Parse ``html`` and return the nesting problems found."""
        self.reset()
        self.errors = []
        self.tags = []
        self._stack = []
        self.feed(html)
        self.close()
        unclosed = [tag for tag in self._stack if tag not in OPTIONAL_TAGS]
        if unclosed:
            self.errors.append(f"unclosed tags: {', '.join(unclosed)}")
        return self.errors

    def handle_starttag(self, tag, attrs):
        self.tags.append(tag)
        if tag not in VOID_ELEMENTS:
            self._stack.append(tag)

    def handle_startendtag(self, tag, attrs):
        self.tags.append(tag)

    def handle_endtag(self, tag):
        if tag in VOID_ELEMENTS:
            return
        if tag not in self._stack:
            self.errors.append(f"unexpected closing tag </{tag}> at line {self.getpos()[0]}")
            return
        while self._stack:
            top = self._stack.pop()
            if top == tag:
                return
            if top not in OPTIONAL_TAGS:
                self.errors.append(f"<{top}> closed implicitly by </{tag}> at line {self.getpos()[0]}")
