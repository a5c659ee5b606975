"""Template helpers bundled with NucleusFlow.

A helper implements ``execute(args, context) -> str``. The renderer exposes
each registered helper both as a function (``{{ uppercase(title) }}``) and
as a filter (``{{ title | uppercase }}``).
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import date, datetime
from typing import Any

from .utils import slugify


def _require_args(name: str, args: Sequence[Any], minimum: int, maximum: int) -> None:
    if not minimum <= len(args) <= maximum:
        expected = str(minimum) if minimum == maximum else f"{minimum}-{maximum}"
        raise ValueError(f"{name} expects {expected} argument(s), got {len(args)}")


class UppercaseHelper:
    """Upper-cases its single argument."""

    name = "uppercase"

    def execute(self, args: Sequence[Any], context: Mapping[str, Any]) -> str:
        _require_args(self.name, args, 1, 1)
        return str(args[0]).upper()


class SlugifyHelper:
    """Turns its argument into a URL slug."""

    name = "slugify"

    def execute(self, args: Sequence[Any], context: Mapping[str, Any]) -> str:
        _require_args(self.name, args, 1, 1)
        return slugify(str(args[0]))


class DateFormatHelper:
    """Formats a date with ``strftime``.

    Accepts dates, datetimes and ISO 8601 strings. The format defaults
    to ``%Y-%m-%d``.
    """

    name = "date_format"

    def execute(self, args: Sequence[Any], context: Mapping[str, Any]) -> str:
        _require_args(self.name, args, 1, 2)
        value = args[0]
        fmt = str(args[1]) if len(args) > 1 else "%Y-%m-%d"
        if value is None or value == "":
            return ""
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        if not isinstance(value, (date, datetime)):
            raise ValueError(f"cannot format {type(value).__name__} as a date")
        return value.strftime(fmt)


DEFAULT_HELPERS = (UppercaseHelper(), SlugifyHelper(), DateFormatHelper())
