"""Sync engine internals: per-kind handlers and timestamp helpers."""

from peekstash.application.services.sync.entity_handlers import (
    HANDLERS,
    BatchResult,
    EntityHandler,
    get_handler,
)
from peekstash.application.services.sync.helpers import (
    compare_timestamps,
    extract_phashes,
    format_timestamp_for_stash,
    get_most_recent_timestamp,
    max_updated_at,
    validate_entity_id,
)

__all__ = [
    "HANDLERS",
    "BatchResult",
    "EntityHandler",
    "compare_timestamps",
    "extract_phashes",
    "format_timestamp_for_stash",
    "get_handler",
    "get_most_recent_timestamp",
    "max_updated_at",
    "validate_entity_id",
]
