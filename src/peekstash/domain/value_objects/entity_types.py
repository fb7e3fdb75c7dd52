"""Entity type enums shared by sync, exclusion, query and ranking code.

Hey future me - EntityType is THE dispatch key for the whole app. Sync handlers,
cascade rules, query builders and cleanup all branch on it. Adding an eighth kind
means adding a member here and then following the type checker's complaints
(every handler table is a dict keyed by EntityType and is checked at import time).
"""

from enum import Enum


class EntityType(str, Enum):
    """The seven cached Stash entity kinds."""

    SCENE = "scene"
    PERFORMER = "performer"
    STUDIO = "studio"
    TAG = "tag"
    GROUP = "group"
    GALLERY = "gallery"
    IMAGE = "image"

    @property
    def plural(self) -> str:
        """Plural label used in log messages and Stash query names."""
        return _PLURALS[self]

    @classmethod
    def from_string(cls, value: str) -> "EntityType":
        """Parse singular or plural names ("performer", "performers", "Performer").

        Raises:
            ValueError: for unknown names
        """
        normalized = value.strip().lower()
        for member in cls:
            if normalized in (member.value, member.plural):
                return member
        raise ValueError(f"Unknown entity type: {value}")


_PLURALS: dict[EntityType, str] = {
    EntityType.SCENE: "scenes",
    EntityType.PERFORMER: "performers",
    EntityType.STUDIO: "studios",
    EntityType.TAG: "tags",
    EntityType.GROUP: "groups",
    EntityType.GALLERY: "galleries",
    EntityType.IMAGE: "images",
}

# Dependencies first: scenes reference performers, studios, tags, groups and galleries.
SYNC_ORDER: tuple[EntityType, ...] = (
    EntityType.TAG,
    EntityType.STUDIO,
    EntityType.PERFORMER,
    EntityType.GROUP,
    EntityType.GALLERY,
    EntityType.SCENE,
    EntityType.IMAGE,
)


class ExclusionReason(str, Enum):
    """Why a row exists in the per-user exclusion table."""

    RESTRICTED = "restricted"  # admin content restriction
    HIDDEN = "hidden"  # user hid it directly
    CASCADE = "cascade"  # derived from a hidden or restricted root
    EMPTY = "empty"  # nothing visible left inside it


class RestrictionMode(str, Enum):
    """Content restriction mode."""

    EXCLUDE = "EXCLUDE"
    INCLUDE = "INCLUDE"


class SyncType(str, Enum):
    """Which cursor a sync pass advances."""

    FULL = "full"
    INCREMENTAL = "incremental"


class SyncAction(str, Enum):
    """Single-entity sync actions (scan hooks, plugin webhooks)."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


# Ranked kinds and their restriction-table counterparts.
RANKABLE_TYPES: tuple[EntityType, ...] = (
    EntityType.PERFORMER,
    EntityType.STUDIO,
    EntityType.TAG,
    EntityType.SCENE,
)

RESTRICTABLE_TYPES: dict[str, EntityType] = {
    "tags": EntityType.TAG,
    "studios": EntityType.STUDIO,
    "groups": EntityType.GROUP,
    "galleries": EntityType.GALLERY,
}
