"""Composite entity identity: (entity id, instance id).

Stash ids are only unique inside one Stash server. Performer "5" on instance A and
performer "5" on instance B are unrelated people, so any dict, join or cache that
must tell them apart keys on both halves. For in-memory dicts we join the halves with
a NUL byte: it cannot appear in a Stash id (ids are validated against
``[a-zA-Z0-9_-]``) nor in the uuid instance ids we generate.
"""

from dataclasses import dataclass

KEY_SEP = "\0"

# Empty instance id: legacy rows written before multi-instance support, and
# exclusions that deliberately apply to every instance.
GLOBAL_INSTANCE = ""


def composite_key(entity_id: str, instance_id: str | None) -> str:
    """Build the map key for an (entity, instance) pair."""
    return f"{entity_id}{KEY_SEP}{instance_id or GLOBAL_INSTANCE}"


def split_composite_key(key: str) -> tuple[str, str]:
    """Inverse of composite_key(). A key without separator maps to the global instance."""
    entity_id, sep, instance_id = key.partition(KEY_SEP)
    if not sep:
        return entity_id, GLOBAL_INSTANCE
    return entity_id, instance_id


def parse_filter_value(value: str) -> "EntityKey":
    """Parse "id" or "id:instanceId" as sent by API filter payloads."""
    entity_id, sep, instance_id = value.partition(":")
    return EntityKey(entity_id, instance_id if sep else GLOBAL_INSTANCE)


@dataclass(frozen=True, slots=True)
class EntityKey:
    """Hashable composite identity."""

    entity_id: str
    instance_id: str = GLOBAL_INSTANCE

    @property
    def is_global(self) -> bool:
        return self.instance_id == GLOBAL_INSTANCE

    def key(self) -> str:
        return composite_key(self.entity_id, self.instance_id)

    def __str__(self) -> str:
        if self.is_global:
            return self.entity_id
        return f"{self.entity_id}:{self.instance_id}"
