"""Helpers for lists of integers."""

from collections.abc import Iterable


def unique(ints: Iterable[int]) -> list[int]:
    """Return the distinct values in ascending order."""
    return sorted(set(ints))


def has_intersection(list1: Iterable[int], list2: Iterable[int]) -> bool:
    """Tell whether the two lists share at least one value."""
    return not set(list1).isdisjoint(list2)