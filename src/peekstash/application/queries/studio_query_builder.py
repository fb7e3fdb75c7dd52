"""Studio library queries."""

from typing import Any

from sqlalchemy import ColumnElement

from peekstash.application.queries import sql_filters
from peekstash.application.queries.base import EntityQueryBuilder, QueryContext
from peekstash.domain.value_objects import EntityType
from peekstash.infrastructure.persistence.entity_tables import STUDIO_TAGS
from peekstash.infrastructure.persistence.models import StudioModel, UserStudioStatsModel


class StudioQueryBuilder(EntityQueryBuilder):
    entity_type = EntityType.STUDIO
    stats_table = (UserStudioStatsModel, "studio_id")
    search_columns = ("name", "details")
    json_columns = ("stash_ids",)

    def _kind_filters(self, ctx: QueryContext) -> list[ColumnElement[bool] | None]:
        filters = ctx.filters
        return [
            sql_filters.junction_filter(
                filters.get("tags"), STUDIO_TAGS, EntityType.STUDIO, StudioModel
            ),
            # parent studio lives on the same instance as the child
            sql_filters.direct_filter(
                filters.get("parents"), StudioModel.parent_id, StudioModel.stash_instance_id
            ),
            sql_filters.text_filter(filters.get("name"), StudioModel.name),
            sql_filters.text_filter(filters.get("details"), StudioModel.details),
            sql_filters.text_filter(filters.get("url"), StudioModel.url),
            sql_filters.numeric_filter(filters.get("scene_count"), StudioModel.scene_count),
            sql_filters.numeric_filter(filters.get("image_count"), StudioModel.image_count),
            sql_filters.numeric_filter(filters.get("gallery_count"), StudioModel.gallery_count),
            sql_filters.numeric_filter(
                filters.get("performer_count"), StudioModel.performer_count
            ),
        ]

    def _kind_sorts(self, ctx: QueryContext) -> dict[str, Any]:
        return {
            "scene_count": StudioModel.scene_count,
            "scenes_count": StudioModel.scene_count,
            "image_count": StudioModel.image_count,
            "gallery_count": StudioModel.gallery_count,
            "performer_count": StudioModel.performer_count,
            "group_count": StudioModel.group_count,
        }
