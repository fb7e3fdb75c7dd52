"""Lookup tables from EntityType to ORM models and junction descriptors.

Everything that branches on an entity type (sync, cleanup, cascade, query builders,
rankings) reads these dicts instead of switching on strings. The module fails at
import time if any EntityType is missing, so adding an eighth kind cannot silently
fall through.
"""

from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import InstrumentedAttribute

from peekstash.domain.value_objects import EntityType
from peekstash.infrastructure.persistence.models import (
    Base,
    GalleryModel,
    GalleryPerformerModel,
    GalleryRatingModel,
    GalleryTagModel,
    GroupModel,
    GroupRatingModel,
    GroupTagModel,
    ImageGalleryModel,
    ImageModel,
    ImagePerformerModel,
    ImageRatingModel,
    ImageTagModel,
    PerformerModel,
    PerformerRatingModel,
    PerformerTagModel,
    SceneGalleryModel,
    SceneGroupModel,
    SceneModel,
    ScenePerformerModel,
    SceneRatingModel,
    SceneTagModel,
    StudioModel,
    StudioRatingModel,
    StudioTagModel,
    TagModel,
    TagRatingModel,
)

ENTITY_MODELS: dict[EntityType, type[Any]] = {
    EntityType.SCENE: SceneModel,
    EntityType.PERFORMER: PerformerModel,
    EntityType.STUDIO: StudioModel,
    EntityType.TAG: TagModel,
    EntityType.GROUP: GroupModel,
    EntityType.GALLERY: GalleryModel,
    EntityType.IMAGE: ImageModel,
}


@dataclass(frozen=True)
class RatingTable:
    """A per-user rating table and the column holding the entity id."""

    model: type[Any]
    entity_column: str

    @property
    def entity_id(self) -> InstrumentedAttribute[Any]:
        return getattr(self.model, self.entity_column)


RATING_TABLES: dict[EntityType, RatingTable] = {
    EntityType.SCENE: RatingTable(SceneRatingModel, "scene_id"),
    EntityType.PERFORMER: RatingTable(PerformerRatingModel, "performer_id"),
    EntityType.STUDIO: RatingTable(StudioRatingModel, "studio_id"),
    EntityType.TAG: RatingTable(TagRatingModel, "tag_id"),
    EntityType.GROUP: RatingTable(GroupRatingModel, "group_id"),
    EntityType.GALLERY: RatingTable(GalleryRatingModel, "gallery_id"),
    EntityType.IMAGE: RatingTable(ImageRatingModel, "image_id"),
}


# Hey future me, "owner" is the side whose sync WRITES the junction row. Scene sync owns
# scene_performers, performer sync owns performer_tags, and so on. When an owner batch is
# re-synced we delete its junction rows (scoped to the owner's instance) and reinsert.
@dataclass(frozen=True)
class JunctionTable:
    """Describes one relationship table."""

    model: type[Base]
    owner: EntityType
    owner_column: str
    target: EntityType
    target_column: str

    @property
    def owner_id(self) -> InstrumentedAttribute[Any]:
        return getattr(self.model, self.owner_column)

    @property
    def owner_instance_id(self) -> InstrumentedAttribute[Any]:
        return getattr(self.model, self.owner_column.replace("_id", "_instance_id"))

    @property
    def target_id(self) -> InstrumentedAttribute[Any]:
        return getattr(self.model, self.target_column)

    @property
    def target_instance_id(self) -> InstrumentedAttribute[Any]:
        return getattr(self.model, self.target_column.replace("_id", "_instance_id"))


SCENE_PERFORMERS = JunctionTable(
    ScenePerformerModel, EntityType.SCENE, "scene_id", EntityType.PERFORMER, "performer_id"
)
SCENE_TAGS = JunctionTable(SceneTagModel, EntityType.SCENE, "scene_id", EntityType.TAG, "tag_id")
SCENE_GROUPS = JunctionTable(
    SceneGroupModel, EntityType.SCENE, "scene_id", EntityType.GROUP, "group_id"
)
SCENE_GALLERIES = JunctionTable(
    SceneGalleryModel, EntityType.SCENE, "scene_id", EntityType.GALLERY, "gallery_id"
)
IMAGE_PERFORMERS = JunctionTable(
    ImagePerformerModel, EntityType.IMAGE, "image_id", EntityType.PERFORMER, "performer_id"
)
IMAGE_TAGS = JunctionTable(ImageTagModel, EntityType.IMAGE, "image_id", EntityType.TAG, "tag_id")
IMAGE_GALLERIES = JunctionTable(
    ImageGalleryModel, EntityType.IMAGE, "image_id", EntityType.GALLERY, "gallery_id"
)
GALLERY_PERFORMERS = JunctionTable(
    GalleryPerformerModel,
    EntityType.GALLERY,
    "gallery_id",
    EntityType.PERFORMER,
    "performer_id",
)
GALLERY_TAGS = JunctionTable(
    GalleryTagModel, EntityType.GALLERY, "gallery_id", EntityType.TAG, "tag_id"
)
PERFORMER_TAGS = JunctionTable(
    PerformerTagModel, EntityType.PERFORMER, "performer_id", EntityType.TAG, "tag_id"
)
STUDIO_TAGS = JunctionTable(
    StudioTagModel, EntityType.STUDIO, "studio_id", EntityType.TAG, "tag_id"
)
GROUP_TAGS = JunctionTable(GroupTagModel, EntityType.GROUP, "group_id", EntityType.TAG, "tag_id")

ALL_JUNCTIONS: tuple[JunctionTable, ...] = (
    SCENE_PERFORMERS,
    SCENE_TAGS,
    SCENE_GROUPS,
    SCENE_GALLERIES,
    IMAGE_PERFORMERS,
    IMAGE_TAGS,
    IMAGE_GALLERIES,
    GALLERY_PERFORMERS,
    GALLERY_TAGS,
    PERFORMER_TAGS,
    STUDIO_TAGS,
    GROUP_TAGS,
)


def junctions_owned_by(entity_type: EntityType) -> tuple[JunctionTable, ...]:
    """Junction tables written by the sync of ``entity_type``."""
    return tuple(j for j in ALL_JUNCTIONS if j.owner == entity_type)


def junction_between(owner: EntityType, target: EntityType) -> JunctionTable:
    """Find the junction linking two kinds; raises KeyError when none exists."""
    for junction in ALL_JUNCTIONS:
        if junction.owner == owner and junction.target == target:
            return junction
    raise KeyError(f"No junction between {owner.value} and {target.value}")


for _table in (ENTITY_MODELS, RATING_TABLES):
    _missing = set(EntityType) - set(_table)
    if _missing:
        raise RuntimeError(f"Entity table registry incomplete: {sorted(m.value for m in _missing)}")
