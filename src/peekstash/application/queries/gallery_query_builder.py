"""Gallery library queries."""

from typing import Any

from sqlalchemy import ColumnElement, collate, func

from peekstash.application.queries import sql_filters
from peekstash.application.queries.base import EntityQueryBuilder, QueryContext
from peekstash.domain.value_objects import EntityType
from peekstash.infrastructure.persistence.entity_tables import (
    GALLERY_PERFORMERS,
    GALLERY_TAGS,
    SCENE_GALLERIES,
)
from peekstash.infrastructure.persistence.models import GalleryModel


class GalleryQueryBuilder(EntityQueryBuilder):
    entity_type = EntityType.GALLERY
    default_sort = "title"
    search_columns = ("title", "folder_path", "file_basename", "details")
    json_columns = ("urls",)

    def _name_expr(self) -> ColumnElement[Any]:
        # zip galleries have no folder, folder galleries have no basename
        return func.coalesce(
            func.nullif(GalleryModel.title, ""),
            GalleryModel.file_basename,
            GalleryModel.folder_path,
        )

    def _kind_filters(self, ctx: QueryContext) -> list[ColumnElement[bool] | None]:
        filters = ctx.filters
        return [
            sql_filters.junction_filter(
                filters.get("performers"), GALLERY_PERFORMERS, EntityType.GALLERY, GalleryModel
            ),
            sql_filters.junction_filter(
                filters.get("tags"), GALLERY_TAGS, EntityType.GALLERY, GalleryModel
            ),
            sql_filters.junction_filter(
                filters.get("scenes"), SCENE_GALLERIES, EntityType.GALLERY, GalleryModel
            ),
            sql_filters.direct_filter(
                filters.get("studios"), GalleryModel.studio_id, GalleryModel.stash_instance_id
            ),
            sql_filters.text_filter(
                filters.get("title"), GalleryModel.title, GalleryModel.file_basename
            ),
            sql_filters.text_filter(
                filters.get("path"), GalleryModel.folder_path, GalleryModel.file_basename
            ),
            sql_filters.text_filter(filters.get("photographer"), GalleryModel.photographer),
            sql_filters.date_filter(filters.get("date"), GalleryModel.date),
            sql_filters.numeric_filter(filters.get("image_count"), GalleryModel.image_count),
        ]

    def _kind_sorts(self, ctx: QueryContext) -> dict[str, Any]:
        return {
            "title": collate(self._name_expr(), "NOCASE"),
            "date": GalleryModel.date,
            "image_count": GalleryModel.image_count,
            "path": func.coalesce(GalleryModel.folder_path, GalleryModel.file_basename),
        }
