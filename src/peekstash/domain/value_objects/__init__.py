"""Domain value objects."""

from peekstash.domain.value_objects.entity_key import (
    GLOBAL_INSTANCE,
    KEY_SEP,
    EntityKey,
    composite_key,
    parse_filter_value,
    split_composite_key,
)
from peekstash.domain.value_objects.entity_types import (
    RANKABLE_TYPES,
    RESTRICTABLE_TYPES,
    SYNC_ORDER,
    EntityType,
    ExclusionReason,
    RestrictionMode,
    SyncAction,
    SyncType,
)

__all__ = [
    "GLOBAL_INSTANCE",
    "KEY_SEP",
    "RANKABLE_TYPES",
    "RESTRICTABLE_TYPES",
    "SYNC_ORDER",
    "EntityKey",
    "EntityType",
    "ExclusionReason",
    "RestrictionMode",
    "SyncAction",
    "SyncType",
    "composite_key",
    "parse_filter_value",
    "split_composite_key",
]
