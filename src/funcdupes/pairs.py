"""Pair-key helpers for duplicate matching."""

from __future__ import annotations


def ordered_pair_key(function_a: str, function_b: str) -> tuple[str, str]:
    """Return a stable ordered key for two function ids.

    :param str function_a: First function id.
    :param str function_b: Second function id.
    :return tuple[str, str]: Ordered id pair.
    """

    return (min(function_a, function_b), max(function_a, function_b))


def unordered_pair_key(function_a: str, function_b: str) -> frozenset[str]:
    """Return an unordered id key for two function ids.

    :param str function_a: First function id.
    :param str function_b: Second function id.
    :return frozenset[str]: Unordered id set.
    """

    return frozenset((function_a, function_b))
