"""Image library queries."""

from typing import Any

from sqlalchemy import ColumnElement, collate, func

from peekstash.application.queries import sql_filters
from peekstash.application.queries.base import EntityQueryBuilder, QueryContext
from peekstash.domain.value_objects import EntityType
from peekstash.infrastructure.persistence.entity_tables import (
    IMAGE_GALLERIES,
    IMAGE_PERFORMERS,
    IMAGE_TAGS,
)
from peekstash.infrastructure.persistence.models import ImageModel


class ImageQueryBuilder(EntityQueryBuilder):
    entity_type = EntityType.IMAGE
    default_sort = "created_at"
    default_direction = "DESC"
    search_columns = ("title", "file_path", "details")
    json_columns = ("urls",)

    def _name_expr(self) -> ColumnElement[Any]:
        return func.coalesce(func.nullif(ImageModel.title, ""), ImageModel.file_path)

    def _kind_filters(self, ctx: QueryContext) -> list[ColumnElement[bool] | None]:
        filters = ctx.filters
        return [
            sql_filters.junction_filter(
                filters.get("performers"), IMAGE_PERFORMERS, EntityType.IMAGE, ImageModel
            ),
            sql_filters.junction_filter(
                filters.get("tags"), IMAGE_TAGS, EntityType.IMAGE, ImageModel
            ),
            sql_filters.junction_filter(
                filters.get("galleries"), IMAGE_GALLERIES, EntityType.IMAGE, ImageModel
            ),
            sql_filters.direct_filter(
                filters.get("studios"), ImageModel.studio_id, ImageModel.stash_instance_id
            ),
            sql_filters.text_filter(filters.get("title"), ImageModel.title, ImageModel.file_path),
            sql_filters.text_filter(filters.get("path"), ImageModel.file_path),
            sql_filters.date_filter(filters.get("date"), ImageModel.date),
            sql_filters.numeric_filter(filters.get("o_counter"), ImageModel.o_counter),
            sql_filters.numeric_filter(filters.get("resolution"), ImageModel.height),
            sql_filters.bool_filter(filters.get("organized"), ImageModel.organized),
        ]

    def _kind_sorts(self, ctx: QueryContext) -> dict[str, Any]:
        return {
            "title": collate(self._name_expr(), "NOCASE"),
            "date": ImageModel.date,
            "filesize": ImageModel.file_size,
            "path": ImageModel.file_path,
            "o_counter": ImageModel.o_counter,
        }
