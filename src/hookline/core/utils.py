"""
Utility functions for hookline.

Includes:
- Case conversion (camelCase -> dash-case slugs)
- Dotted property paths for reading and writing nested records
"""

from __future__ import annotations

import re
from typing import Any, Callable


# =============================================================================
# Case conversion utilities
# =============================================================================

_UPPER_RUN_PATTERN = re.compile(r'([A-Z])+')
_DASH_SPLIT_PATTERN = re.compile(r'(?=[A-Z])|[.\-\s_]')


def capitalize(name: str) -> str:
    """Upper-case the first character only (``add`` -> ``Add``)."""
    return name[:1].upper() + name[1:]


def to_dash_case(name: str | None) -> str:
    """
    Convert a camelCase or snake_case name into a dash-case slug.

    Examples:
        subscriptionItems -> subscription-items
        first_name -> first-name
        member.accountId -> member-account-id
    """
    if not name:
        return ""

    def collapse_upper(match: re.Match) -> str:
        lower = match.group(0).lower()
        return lower[:1].upper() + lower[1:]

    collapsed = _UPPER_RUN_PATTERN.sub(collapse_upper, name)
    parts = [part.lower() for part in _DASH_SPLIT_PATTERN.split(collapsed) if part]
    return "-".join(parts)


# =============================================================================
# Dotted path utilities
# =============================================================================

_ESCAPED_DOT = "\u200b"


def get_path_segments(path: str) -> list[str]:
    """
    Split a dotted path into segments.

    ``[`` also separates segments and ``\\.`` escapes a literal dot.

    Examples:
        invoice.companyName -> ["invoice", "companyName"]
        queries[0].get -> ["queries", "0", "get"]
        meta\\.tag.value -> ["meta.tag", "value"]
    """
    escaped = path.replace("\\.", _ESCAPED_DOT)
    segments = []
    for segment in re.split(r'[\[.]', escaped):
        segment = segment.rstrip("]").replace(_ESCAPED_DOT, ".")
        if segment.strip():
            segments.append(segment)
    return segments


def get_property(obj: Any, path: str) -> Any:
    """
    Read the value at a dotted path, or None if any step is missing.

    Numeric segments index into lists.
    """
    current = obj
    for key in get_path_segments(path):
        if isinstance(current, list):
            if not key.isdigit() or int(key) >= len(current):
                return None
            current = current[int(key)]
        elif isinstance(current, dict):
            current = current.get(key)
        else:
            return None
        if current is None:
            return None
    return current


def set_property(obj: dict, path: str, value: Any | Callable[[Any], Any]) -> dict:
    """
    Set the value at a dotted path, creating intermediate dicts as needed.

    If ``value`` is callable it receives the current value and its return
    value is stored instead.
    """
    segments = get_path_segments(path)
    current = obj

    for index, key in enumerate(segments):
        if index == len(segments) - 1:
            current[key] = value(current.get(key)) if callable(value) else value
        else:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

    return obj
