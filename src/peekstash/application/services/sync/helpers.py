"""Pure helpers used by the sync engine: cursors, id validation, fingerprints."""

import json
import re
from collections.abc import Iterable
from datetime import datetime
from typing import Any

_TZ_SUFFIX = re.compile(r"([+-]\d{2}:\d{2}|Z)$")
_FRACTION = re.compile(r"\.\d+$")
_VALID_ID = re.compile(r"^[a-zA-Z0-9_-]+$")


# Hey future me - Stash parses filter timestamps as LOCAL time and chokes on an offset, so we
# drop it. Stash also keeps sub-second precision internally but returns whole seconds, so
# "updated_at > 09:47:03" still matches the entity stamped 09:47:03.500 and we would re-sync
# it forever. Pinning the fraction to .999 skips everything inside the cursor's second.
def format_timestamp_for_stash(timestamp: str) -> str:
    """'2025-12-28T09:47:03-08:00' -> '2025-12-28T09:47:03.999'."""
    without_tz = _TZ_SUFFIX.sub("", timestamp)
    if _FRACTION.search(without_tz):
        return _FRACTION.sub(".999", without_tz)
    return f"{without_tz}.999"


def _parse_timestamp(value: str) -> datetime | None:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def compare_timestamps(a: str, b: str) -> int:
    """-1/0/1 by instant. Falls back to string order when either side does not parse."""
    parsed_a, parsed_b = _parse_timestamp(a), _parse_timestamp(b)
    if parsed_a is not None and parsed_b is not None:
        try:
            if parsed_a == parsed_b:
                return 0
            return -1 if parsed_a < parsed_b else 1
        except TypeError:
            # naive vs aware
            pass
    if a == b:
        return 0
    return -1 if a < b else 1


def get_most_recent_timestamp(a: str | None, b: str | None) -> str | None:
    """The later of two optional cursors."""
    if not a:
        return b
    if not b:
        return a
    return a if compare_timestamps(a, b) >= 0 else b


def max_updated_at(items: Iterable[dict[str, Any]]) -> str | None:
    """Largest raw ``updated_at`` string in a page, kept verbatim for the cursor."""
    result: str | None = None
    for item in items:
        value = item.get("updated_at")
        if value and (result is None or value > result):
            result = value
    return result


def validate_entity_id(entity_id: Any) -> bool:
    """Stash ids are numeric strings or uuids; anything else is dropped at the door."""
    return isinstance(entity_id, str) and bool(_VALID_ID.match(entity_id))


def extract_phashes(files: list[dict[str, Any]] | None) -> tuple[str | None, str | None]:
    """Return (first phash, JSON list of all phashes) for a scene's files.

    The list is only returned when a scene has more than one phash; single-file
    scenes store just the primary value.
    """
    all_phashes: list[str] = []
    for file in files or []:
        for fingerprint in file.get("fingerprints") or []:
            if fingerprint.get("type") == "phash" and fingerprint.get("value"):
                all_phashes.append(fingerprint["value"])

    if not all_phashes:
        return None, None
    return all_phashes[0], json.dumps(all_phashes) if len(all_phashes) > 1 else None
