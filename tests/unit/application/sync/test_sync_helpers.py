"""Tests for the sync engine's pure helpers."""

import json

import pytest

from peekstash.application.services.sync.helpers import (
    compare_timestamps,
    extract_phashes,
    format_timestamp_for_stash,
    get_most_recent_timestamp,
    max_updated_at,
    validate_entity_id,
)


class TestFormatTimestampForStash:
    """Cursor → Stash filter value."""

    # Hey future me - Stash reads filter timestamps as local time and returns whole
    # seconds. Drop the offset, pin the fraction to .999, or the last entity of every
    # pass comes back on the next one.
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("2025-12-28T09:47:03-08:00", "2025-12-28T09:47:03.999"),
            ("2025-12-28T09:47:03+02:00", "2025-12-28T09:47:03.999"),
            ("2025-12-28T09:47:03Z", "2025-12-28T09:47:03.999"),
            ("2025-12-28T09:47:03", "2025-12-28T09:47:03.999"),
            ("2025-12-28T09:47:03.123+01:00", "2025-12-28T09:47:03.999"),
        ],
    )
    def test_formats(self, raw: str, expected: str) -> None:
        assert format_timestamp_for_stash(raw) == expected


class TestTimestampComparison:
    def test_same_instant_in_different_offsets_is_equal(self) -> None:
        assert compare_timestamps("2025-01-01T10:00:00+00:00", "2025-01-01T11:00:00+01:00") == 0

    def test_orders_by_instant_not_string(self) -> None:
        # string order says a > b, the instants say a < b
        a = "2025-01-01T10:30:00+02:00"
        b = "2025-01-01T09:00:00+00:00"
        assert compare_timestamps(a, b) == -1

    def test_unparseable_falls_back_to_string_order(self) -> None:
        assert compare_timestamps("b-garbage", "a-garbage") == 1

    def test_most_recent_handles_none(self) -> None:
        assert get_most_recent_timestamp(None, "2025-01-01T00:00:00Z") == "2025-01-01T00:00:00Z"
        assert get_most_recent_timestamp("2025-01-01T00:00:00Z", None) == "2025-01-01T00:00:00Z"
        assert get_most_recent_timestamp(None, None) is None

    def test_most_recent_picks_later(self) -> None:
        older = "2025-01-01T00:00:00-08:00"
        newer = "2025-01-02T00:00:00-08:00"
        assert get_most_recent_timestamp(older, newer) == newer
        assert get_most_recent_timestamp(newer, older) == newer

    def test_max_updated_at_keeps_raw_string(self) -> None:
        items = [
            {"updated_at": "2025-03-01T10:00:00-08:00"},
            {"updated_at": None},
            {"updated_at": "2025-03-02T10:00:00-08:00"},
            {},
        ]
        assert max_updated_at(items) == "2025-03-02T10:00:00-08:00"
        assert max_updated_at([]) is None


class TestValidateEntityId:
    @pytest.mark.parametrize("value", ["1", "12345", "abc_DEF-9", "7f3e2c1a-uuid"])
    def test_accepts_stash_ids(self, value: str) -> None:
        assert validate_entity_id(value)

    @pytest.mark.parametrize("value", ["", "1; DROP TABLE", "a b", "x\0y", None, 5, "é"])
    def test_rejects_everything_else(self, value: object) -> None:
        assert not validate_entity_id(value)


class TestExtractPhashes:
    def test_no_files(self) -> None:
        assert extract_phashes(None) == (None, None)
        assert extract_phashes([]) == (None, None)

    def test_single_phash_has_no_list(self) -> None:
        files = [{"fingerprints": [{"type": "md5", "value": "x"}, {"type": "phash", "value": "p1"}]}]
        assert extract_phashes(files) == ("p1", None)

    def test_multiple_files_keep_all(self) -> None:
        files = [
            {"fingerprints": [{"type": "phash", "value": "p1"}]},
            {"fingerprints": [{"type": "phash", "value": "p2"}, {"type": "oshash", "value": "o"}]},
        ]
        primary, all_phashes = extract_phashes(files)
        assert primary == "p1"
        assert json.loads(all_phashes) == ["p1", "p2"]
