"""Performer library queries."""

from typing import Any

from sqlalchemy import ColumnElement, Integer, cast, func

from peekstash.application.queries import sql_filters
from peekstash.application.queries.base import EntityQueryBuilder, QueryContext
from peekstash.domain.value_objects import EntityType
from peekstash.infrastructure.persistence.entity_tables import (
    PERFORMER_TAGS,
    SCENE_GROUPS,
    SCENE_PERFORMERS,
)
from peekstash.infrastructure.persistence.models import (
    PerformerModel,
    SceneModel,
    UserPerformerStatsModel,
)


class PerformerQueryBuilder(EntityQueryBuilder):
    entity_type = EntityType.PERFORMER
    stats_table = (UserPerformerStatsModel, "performer_id")
    search_columns = ("name", "alias_list", "disambiguation")
    json_columns = ("alias_list", "stash_ids")

    def _kind_filters(self, ctx: QueryContext) -> list[ColumnElement[bool] | None]:
        filters = ctx.filters
        birth_year = cast(func.substr(PerformerModel.birthdate, 1, 4), Integer)
        return [
            sql_filters.enum_filter(filters.get("gender"), PerformerModel.gender),
            sql_filters.junction_filter(
                filters.get("tags"), PERFORMER_TAGS, EntityType.PERFORMER, PerformerModel
            ),
            sql_filters.junction_filter(
                filters.get("scenes"), SCENE_PERFORMERS, EntityType.PERFORMER, PerformerModel
            ),
            # performers appearing in scenes of the given studios / groups
            sql_filters.via_scenes_filter(
                filters.get("studios"),
                SCENE_PERFORMERS,
                PerformerModel,
                lambda c: sql_filters.direct_filter(
                    c, SceneModel.studio_id, SceneModel.stash_instance_id
                ),
            ),
            sql_filters.via_scenes_filter(
                filters.get("groups"),
                SCENE_PERFORMERS,
                PerformerModel,
                lambda c: sql_filters.junction_filter(
                    c, SCENE_GROUPS, EntityType.SCENE, SceneModel
                ),
            ),
            sql_filters.text_filter(
                filters.get("name"), PerformerModel.name, PerformerModel.alias_list
            ),
            sql_filters.text_filter(filters.get("country"), PerformerModel.country),
            sql_filters.text_filter(filters.get("ethnicity"), PerformerModel.ethnicity),
            sql_filters.text_filter(filters.get("hair_color"), PerformerModel.hair_color),
            sql_filters.text_filter(filters.get("eye_color"), PerformerModel.eye_color),
            sql_filters.text_filter(filters.get("tattoos"), PerformerModel.tattoos),
            sql_filters.text_filter(filters.get("piercings"), PerformerModel.piercings),
            sql_filters.numeric_filter(filters.get("height_cm"), PerformerModel.height_cm),
            sql_filters.numeric_filter(filters.get("weight"), PerformerModel.weight_kg),
            sql_filters.numeric_filter(filters.get("birth_year"), birth_year),
            sql_filters.date_filter(filters.get("birthdate"), PerformerModel.birthdate),
            sql_filters.date_filter(filters.get("death_date"), PerformerModel.death_date),
            sql_filters.numeric_filter(filters.get("scene_count"), PerformerModel.scene_count),
            sql_filters.numeric_filter(filters.get("image_count"), PerformerModel.image_count),
            sql_filters.numeric_filter(
                filters.get("gallery_count"), PerformerModel.gallery_count
            ),
        ]

    def _kind_sorts(self, ctx: QueryContext) -> dict[str, Any]:
        return {
            "birthdate": PerformerModel.birthdate,
            "height": PerformerModel.height_cm,
            "weight": PerformerModel.weight_kg,
            "scene_count": PerformerModel.scene_count,
            "scenes_count": PerformerModel.scene_count,
            "image_count": PerformerModel.image_count,
            "gallery_count": PerformerModel.gallery_count,
            "career_length": PerformerModel.career_length,
        }
