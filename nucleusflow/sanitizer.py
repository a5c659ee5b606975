"""HTML sanitization.

:class:`HtmlSanitizer` strips every tag outside an allow-list and every
inline event handler that calls a function outside ``allowed_functions``.
It is a Transform (``html -> html``) and is idempotent: sanitizing its own
output returns the same string.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

import bleach

GLOBAL_ATTRIBUTES = frozenset({"id", "class", "title", "aria-label", "role", "lang", "dir"})
TAG_ATTRIBUTES = {
    "a": frozenset({"href", "rel", "target"}),
    "img": frozenset({"src", "alt", "width", "height", "loading"}),
    "td": frozenset({"colspan", "rowspan", "align"}),
    "th": frozenset({"colspan", "rowspan", "align", "scope"}),
    "ol": frozenset({"start", "type"}),
    "li": frozenset({"value"}),
    "code": frozenset({"data-lang"}),
}
PROTOCOLS = frozenset({"http", "https", "mailto", "tel"})

_CALL_RE = re.compile(r"([A-Za-z_$][\w$]*(?:\.[A-Za-z_$][\w$]*)*)\s*\(")
_STATEMENT_RE = re.compile(r"^\s*[A-Za-z_$][\w$.]*\s*\((?:[^()'\"]|'[^']*'|\"[^\"]*\")*\)\s*$")


class HtmlSanitizer:
    """Allow-list sanitizer backed by bleach.

    Attributes:
        allowed_tags: Tags kept in the output; all others are stripped.
        allowed_functions: Functions that inline ``on*`` handlers may call.
    """

    shareable = True

    def __init__(self, allowed_tags: Iterable[str], allowed_functions: Iterable[str] = ()):
        self.allowed_tags = frozenset(tag.lower() for tag in allowed_tags)
        self.allowed_functions = frozenset(allowed_functions)
        self._cleaner = bleach.Cleaner(
            tags=self.allowed_tags,
            attributes=self._allow_attribute,
            protocols=PROTOCOLS,
            strip=True,
            strip_comments=True,
        )

    def _allow_attribute(self, tag: str, name: str, value: str) -> bool:
        if name in GLOBAL_ATTRIBUTES or name in TAG_ATTRIBUTES.get(tag, ()):
            return True
        if name.startswith("on"):
            return self.handler_allowed(value)
        return False

    def handler_allowed(self, code: str) -> bool:
        """Whether an inline handler only calls allowed functions.

        Each ``;`` separated statement must be a single call of an allowed
        function with literal-only arguments.
        """
        if not self.allowed_functions:
            return False
        statements = [s for s in code.split(";") if s.strip()]
        if not statements:
            return False
        for statement in statements:
            if not _STATEMENT_RE.match(statement):
                return False
            calls = _CALL_RE.findall(statement)
            if len(calls) != 1 or calls[0] not in self.allowed_functions:
                return False
        return True

    def sanitize(self, html: str) -> str:
        return self._cleaner.clean(html)

    transform = sanitize

    def disallowed_tags(self, html: str) -> list[str]:
        """Tags present in ``html`` that are not allowed, in order of appearance."""
        found: dict[str, None] = {}
        for match in re.finditer(r"<\s*([A-Za-z][A-Za-z0-9-]*)", html):
            tag = match.group(1).lower()
            if tag not in self.allowed_tags:
                found.setdefault(tag, None)
        return list(found)
