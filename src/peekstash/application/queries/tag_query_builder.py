"""Tag library queries.

Tag hierarchy lives in the parent_ids JSON array of each child, so "parents" filters
go through json_each and "children" filters look the other way round: a tag matches
when some live child on the same instance lists it as a parent.
"""

from typing import Any

from sqlalchemy import ColumnElement, exists, func, select
from sqlalchemy.orm import aliased

from peekstash.application.queries import sql_filters
from peekstash.application.queries.base import EntityQueryBuilder, QueryContext
from peekstash.domain.value_objects import EntityType
from peekstash.infrastructure.persistence.entity_tables import (
    PERFORMER_TAGS,
    SCENE_TAGS,
    STUDIO_TAGS,
)
from peekstash.infrastructure.persistence.models import TagModel, UserTagStatsModel


def _children_filter(criterion: Any) -> ColumnElement[bool] | None:
    keys, _ = sql_filters.parse_composite_values(sql_filters.criterion_values(criterion))
    if not keys:
        return None
    modifier = sql_filters.criterion_modifier(criterion, sql_filters.INCLUDES)
    child = aliased(TagModel)
    element = func.json_each(child.parent_ids).table_valued("value").alias("child_parent")
    has_child = exists(
        select(child.id)
        .select_from(child)
        .join(element, element.c.value == TagModel.id)
        .where(
            child.stash_instance_id == TagModel.stash_instance_id,
            child.deleted_at.is_(None),
            sql_filters.pair_match(keys, child.id, child.stash_instance_id),
        )
    )
    if modifier == sql_filters.EXCLUDES:
        return ~has_child
    return has_child


class TagQueryBuilder(EntityQueryBuilder):
    entity_type = EntityType.TAG
    stats_table = (UserTagStatsModel, "tag_id")
    search_columns = ("name", "aliases", "description")
    json_columns = ("aliases", "parent_ids", "stash_ids")

    def _kind_filters(self, ctx: QueryContext) -> list[ColumnElement[bool] | None]:
        filters = ctx.filters
        return [
            sql_filters.junction_filter(
                filters.get("performers"), PERFORMER_TAGS, EntityType.TAG, TagModel
            ),
            sql_filters.junction_filter(
                filters.get("studios"), STUDIO_TAGS, EntityType.TAG, TagModel
            ),
            sql_filters.junction_filter(
                filters.get("scenes"), SCENE_TAGS, EntityType.TAG, TagModel
            ),
            sql_filters.json_array_filter(
                filters.get("parents"), TagModel.parent_ids, TagModel.stash_instance_id
            ),
            _children_filter(filters.get("children")),
            sql_filters.text_filter(filters.get("name"), TagModel.name, TagModel.aliases),
            sql_filters.text_filter(filters.get("description"), TagModel.description),
            sql_filters.numeric_filter(filters.get("scene_count"), TagModel.scene_count),
            sql_filters.numeric_filter(
                filters.get("scene_count_via_performers"), TagModel.scene_count_via_performers
            ),
            sql_filters.numeric_filter(filters.get("image_count"), TagModel.image_count),
            sql_filters.numeric_filter(filters.get("performer_count"), TagModel.performer_count),
        ]

    def _kind_sorts(self, ctx: QueryContext) -> dict[str, Any]:
        return {
            "scene_count": TagModel.scene_count,
            "scenes_count": TagModel.scene_count,
            "scene_count_via_performers": TagModel.scene_count_via_performers,
            "image_count": TagModel.image_count,
            "gallery_count": TagModel.gallery_count,
            "performer_count": TagModel.performer_count,
            "studio_count": TagModel.studio_count,
        }
