"""Read-side library queries, one builder per entity kind."""

from peekstash.application.queries.base import (
    EntityQueryBuilder,
    QueryOptions,
    QueryResult,
    resolve_allowed_instance_ids,
    seeded_random_order,
)
from peekstash.application.queries.gallery_query_builder import GalleryQueryBuilder
from peekstash.application.queries.group_query_builder import GroupQueryBuilder
from peekstash.application.queries.image_query_builder import ImageQueryBuilder
from peekstash.application.queries.performer_query_builder import PerformerQueryBuilder
from peekstash.application.queries.scene_query_builder import SceneQueryBuilder
from peekstash.application.queries.studio_query_builder import StudioQueryBuilder
from peekstash.application.queries.tag_query_builder import TagQueryBuilder
from peekstash.domain.value_objects import EntityType
from peekstash.infrastructure.persistence.database import SessionScope

QUERY_BUILDERS: dict[EntityType, type[EntityQueryBuilder]] = {
    EntityType.SCENE: SceneQueryBuilder,
    EntityType.PERFORMER: PerformerQueryBuilder,
    EntityType.STUDIO: StudioQueryBuilder,
    EntityType.TAG: TagQueryBuilder,
    EntityType.GROUP: GroupQueryBuilder,
    EntityType.GALLERY: GalleryQueryBuilder,
    EntityType.IMAGE: ImageQueryBuilder,
}


def get_query_builder(entity_type: EntityType, session_scope: SessionScope) -> EntityQueryBuilder:
    return QUERY_BUILDERS[entity_type](session_scope)


__all__ = [
    "QUERY_BUILDERS",
    "EntityQueryBuilder",
    "GalleryQueryBuilder",
    "GroupQueryBuilder",
    "ImageQueryBuilder",
    "PerformerQueryBuilder",
    "QueryOptions",
    "QueryResult",
    "SceneQueryBuilder",
    "StudioQueryBuilder",
    "TagQueryBuilder",
    "get_query_builder",
    "resolve_allowed_instance_ids",
    "seeded_random_order",
]
