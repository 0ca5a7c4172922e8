"""Phrase adjacency helpers for multi-word queries.

A query such as ``red title`` yields the pair ``(red, titl)``. A field
or a snippet window earns a bonus when the second term directly follows the
first one.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence


def adjacent_pairs(keys: Sequence[str]) -> list[tuple[str, str]]:
    """Pairs of neighbouring query keys in query order, without duplicates.

    A pair repeating the same key twice (``very very``) is kept since the
    document has to repeat the word too.
    """
    pairs: dict[tuple[str, str], None] = {}
    for first, second in zip(keys, keys[1:]):
        pairs.setdefault((first, second))
    return list(pairs)


def has_adjacent(first_positions: Iterable[int], second_positions: Iterable[int]) -> bool:
    """True when some position ``p`` of the first term has ``p + 1`` in the second."""
    following = set(second_positions)
    if not following:
        return False
    return any(position + 1 in following for position in first_positions)


def count_adjacent(keys: Sequence[str], pairs: Iterable[tuple[str, str]]) -> int:
    """Count neighbouring keys in a token stream that form one of ``pairs``."""
    wanted = set(pairs)
    if not wanted:
        return 0
    return sum(1 for pair in zip(keys, keys[1:]) if pair in wanted)
