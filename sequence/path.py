"""
Database location helpers.

Locations are stored as slash-separated paths without leading or trailing
slashes. Percent-encoded characters are left untouched: they may encode
separators that are part of a key name.
"""

import re
from typing import Any, Iterator

_LEADING_SLASHES = re.compile(r"^/+")
_TRAILING_SLASHES = re.compile(r"/+$")


def trim(value: Any = None) -> str:
    """Strip surrounding whitespace and slashes from a path segment."""
    if value is None:
        return ""

    value = str(value).strip()
    value = _LEADING_SLASHES.sub("", value)
    return _TRAILING_SLASHES.sub("", value)


def _flatten(parts) -> Iterator[Any]:
    for part in parts:
        if isinstance(part, (list, tuple)):
            yield from _flatten(part)
        else:
            yield part


def join(*parts: Any) -> str:
    """
    Join path segments.

    Segments can be given as strings or (nested) lists of strings; empty
    segments are dropped.

        >>> join("/users/", ["bob", "/profile"])
        'users/bob/profile'
    """
    return "/".join(
        segment for segment in (trim(part) for part in _flatten(parts)) if segment
    )


def split(path: Any) -> list:
    """Split a path into its non-empty segments."""
    return [segment for segment in join(path).split("/") if segment]
