"""Group (movie) library queries."""

from typing import Any

from sqlalchemy import ColumnElement

from peekstash.application.queries import sql_filters
from peekstash.application.queries.base import EntityQueryBuilder, QueryContext
from peekstash.domain.value_objects import EntityType
from peekstash.infrastructure.persistence.entity_tables import (
    GROUP_TAGS,
    SCENE_GROUPS,
    SCENE_PERFORMERS,
)
from peekstash.infrastructure.persistence.models import GroupModel, SceneModel


class GroupQueryBuilder(EntityQueryBuilder):
    entity_type = EntityType.GROUP
    search_columns = ("name", "director", "synopsis")
    json_columns = ("urls",)

    def _kind_filters(self, ctx: QueryContext) -> list[ColumnElement[bool] | None]:
        filters = ctx.filters
        return [
            sql_filters.junction_filter(
                filters.get("tags"), GROUP_TAGS, EntityType.GROUP, GroupModel
            ),
            sql_filters.junction_filter(
                filters.get("scenes"), SCENE_GROUPS, EntityType.GROUP, GroupModel
            ),
            sql_filters.direct_filter(
                filters.get("studios"), GroupModel.studio_id, GroupModel.stash_instance_id
            ),
            # groups containing a scene with one of the performers
            sql_filters.via_scenes_filter(
                filters.get("performers"),
                SCENE_GROUPS,
                GroupModel,
                lambda c: sql_filters.junction_filter(
                    c, SCENE_PERFORMERS, EntityType.SCENE, SceneModel
                ),
            ),
            sql_filters.text_filter(filters.get("name"), GroupModel.name),
            sql_filters.text_filter(filters.get("director"), GroupModel.director),
            sql_filters.text_filter(filters.get("synopsis"), GroupModel.synopsis),
            sql_filters.date_filter(filters.get("date"), GroupModel.date),
            sql_filters.numeric_filter(filters.get("duration"), GroupModel.duration),
            sql_filters.numeric_filter(filters.get("scene_count"), GroupModel.scene_count),
        ]

    def _kind_sorts(self, ctx: QueryContext) -> dict[str, Any]:
        return {
            "date": GroupModel.date,
            "duration": GroupModel.duration,
            "scene_count": GroupModel.scene_count,
            "scenes_count": GroupModel.scene_count,
            "performer_count": GroupModel.performer_count,
        }
