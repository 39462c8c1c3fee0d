"""Ordered-collection move and dense renumbering helpers.

`move_elements` follows drag-and-drop list semantics: the target offset is
expressed in the coordinates of the original sequence, before removal.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TypeVar

T = TypeVar("T")


def move_elements(seq: Sequence[T], source_indices: Iterable[int], target: int) -> list[T]:
    """Return a copy of `seq` with the elements at `source_indices` moved to `target`.

    The moved elements keep their relative order and are reinserted as one
    contiguous block. The insertion point is `target` minus the number of
    moved indices that precede it, clamped to the bounds of the remaining
    list. Out-of-range indices are ignored.

    Args:
        seq: Input sequence; not modified.
        source_indices: Positions of the elements to move.
        target: Insertion offset in the original sequence's coordinates.

    Returns:
        A new list that is a permutation of `seq`.
    """
    picked = sorted({i for i in source_indices if 0 <= i < len(seq)})
    if not picked:
        return list(seq)

    picked_set = set(picked)
    moving = [seq[i] for i in picked]
    remaining = [v for i, v in enumerate(seq) if i not in picked_set]

    before = sum(1 for i in picked if i < target)
    dest = max(0, min(target - before, len(remaining)))
    return remaining[:dest] + moving + remaining[dest:]


def is_dense(indices: Iterable[int]) -> bool:
    """True when `indices` is exactly 0..N-1 with no duplicates."""
    values = sorted(indices)
    return values == list(range(len(values)))
