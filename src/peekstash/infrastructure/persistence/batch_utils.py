# Hey future me - SQLite caps the number of bound parameters per statement (999 on
# old builds, 32766 on new ones). A 5000-row upsert with 30 columns blows straight
# through that, so every bulk write goes through chunked() first.
"""Batch helpers for bulk SQLite writes."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from typing import TypeVar

T = TypeVar("T")

# Values per IN (...) list.
DEFAULT_IN_CHUNK = 500


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    for start in range(0, len(items), size):
        yield items[start : start + size]


def insert_chunk_size(column_count: int, max_params: int = 999) -> int:
    """Largest row count per multi-row INSERT that stays under ``max_params``."""
    return max(1, max_params // max(column_count, 1))


def unique(items: Iterable[T]) -> list[T]:
    """De-duplicate while keeping first-seen order."""
    seen: set[T] = set()
    result: list[T] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result
