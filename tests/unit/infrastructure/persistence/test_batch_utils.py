"""Tests for the bulk-write helpers."""

import pytest

from peekstash.infrastructure.persistence.batch_utils import chunked, insert_chunk_size, unique


class TestChunked:
    def test_last_chunk_shorter(self) -> None:
        assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]

    def test_empty(self) -> None:
        assert list(chunked([], 10)) == []

    def test_invalid_size(self) -> None:
        with pytest.raises(ValueError):
            list(chunked([1], 0))


@pytest.mark.parametrize(
    ("columns", "expected"),
    [(30, 33), (999, 1), (2000, 1), (0, 999)],
)
def test_insert_chunk_size_stays_under_parameter_cap(columns: int, expected: int) -> None:
    assert insert_chunk_size(columns) == expected


def test_unique_keeps_first_seen_order() -> None:
    assert unique(["b", "a", "b", "c", "a"]) == ["b", "a", "c"]
