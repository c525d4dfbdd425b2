"""Helpers for lists of strings."""

import re
from collections.abc import Iterable

_INT_PATTERN = re.compile(r"[+-]?[0-9]+")
_INT_MIN = -(2**63)
_INT_MAX = 2**63 - 1


def unique(strings: Iterable[str]) -> list[str]:
    """Return the distinct non-empty strings in sorted order."""
    return sorted(set(strings) - {""})


def is_int(s: str) -> bool:
    """Tell whether the text is a signed 64-bit decimal integer."""
    return _INT_PATTERN.fullmatch(s) is not None and _INT_MIN <= int(s) <= _INT_MAX


def merge(a: Iterable[str], b: Iterable[str]) -> list[str]:
    """Return the distinct strings of both lists."""
    return list(dict.fromkeys([*a, *b]))