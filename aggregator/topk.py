"""Heap-based ranking of keyed values.

Used twice per run: once over the raw per-interval counts for the ranked
report, once over the rolling averages for alarm evaluation.  The two
rankings are independent; they just share this module.

Building the heap is O(n) (``heapq.heapify``) and each ``pop_max`` is
O(log n), so ``top_k`` costs O(n + k log n) instead of a full sort.  The
alarm evaluator drains the heap itself and usually stops early.
"""

import heapq
import math
import numbers
from collections.abc import Callable, Iterable, Mapping
from typing import Any, NamedTuple


class Entry(NamedTuple):
    key: str
    value: float


def descending(entry: Entry) -> tuple:
    """Default rank: highest value first, ties by ascending key."""
    return (-entry.value, entry.key)


def finite_value(value: Any) -> float | None:
    """``value`` as a finite float, or None for NaN, inf, non-numbers and
    ints too large for a float."""
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return None
    try:
        value = float(value)
    except (OverflowError, TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


def _entries(data: Mapping[str, float] | Iterable[tuple[str, float]]) -> Iterable[Entry]:
    items = data.items() if isinstance(data, Mapping) else data
    for key, value in items:
        # NaN/inf would poison the ordering; treat them as absent.
        value = finite_value(value)
        if value is None:
            continue
        yield Entry(key, value)


class RankedHeap:
    """Max-ordered view over a snapshot, drained one entry at a time."""

    __slots__ = ("_heap", "_sort_key")

    def __init__(
        self,
        data: Mapping[str, float] | Iterable[tuple[str, float]],
        sort_key: Callable[[Entry], Any] | None = None,
    ):
        self._sort_key = sort_key or descending
        # The index keeps tuple comparison from ever reaching the Entry
        # itself when a custom sort_key produces ties.
        self._heap = [
            (self._sort_key(entry), i, entry)
            for i, entry in enumerate(_entries(data))
        ]
        heapq.heapify(self._heap)

    def pop_max(self) -> Entry | None:
        """Remove and return the highest-ranked entry, or None when empty."""
        if not self._heap:
            return None
        return heapq.heappop(self._heap)[2]

    def peek(self) -> Entry | None:
        if not self._heap:
            return None
        return self._heap[0][2]

    def __len__(self) -> int:
        return len(self._heap)

    def __bool__(self) -> bool:
        return bool(self._heap)


def to_ranked(
    data: Mapping[str, float] | Iterable[tuple[str, float]],
    sort_key: Callable[[Entry], Any] | None = None,
) -> RankedHeap:
    """Build the full ranking for incremental draining."""
    return RankedHeap(data, sort_key)


def top_k(
    data: Mapping[str, float] | Iterable[tuple[str, float]],
    k: int,
    sort_key: Callable[[Entry], Any] | None = None,
) -> list[Entry]:
    """Return the ``min(k, n)`` highest-ranked entries, best first."""
    if k <= 0:
        return []
    heap = RankedHeap(data, sort_key)
    result = []
    while len(result) < k and heap:
        result.append(heap.pop_max())
    return result
