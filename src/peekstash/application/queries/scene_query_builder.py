"""Scene library queries."""

from typing import Any

from sqlalchemy import ColumnElement, Select, and_, collate, func, select, tuple_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from peekstash.application.queries import sql_filters
from peekstash.application.queries.base import (
    EntityQueryBuilder,
    QueryContext,
    load_related,
)
from peekstash.domain.value_objects import EntityType
from peekstash.infrastructure.persistence.entity_tables import (
    SCENE_GALLERIES,
    SCENE_GROUPS,
    SCENE_PERFORMERS,
    SCENE_TAGS,
)
from peekstash.infrastructure.persistence.models import (
    SceneModel,
    ScenePerformerModel,
    SceneTagModel,
    StudioModel,
    WatchHistoryModel,
)


def _performer_count() -> Any:
    return (
        select(func.count())
        .where(
            ScenePerformerModel.scene_id == SceneModel.id,
            ScenePerformerModel.scene_instance_id == SceneModel.stash_instance_id,
        )
        .scalar_subquery()
    )


def _tag_count() -> Any:
    return (
        select(func.count())
        .where(
            SceneTagModel.scene_id == SceneModel.id,
            SceneTagModel.scene_instance_id == SceneModel.stash_instance_id,
        )
        .scalar_subquery()
    )


class SceneQueryBuilder(EntityQueryBuilder):
    """Scenes with the user's watch history joined in.

    Watch history is per (user, instance, scene), so the join equates all three. Play
    and O counters in filters/sorts are the USER's counters, not the Stash ones.
    """

    entity_type = EntityType.SCENE
    default_sort = "created_at"
    default_direction = "DESC"
    search_columns = ("title", "file_path", "details", "code")
    json_columns = ("urls", "phashes", "inherited_tag_ids")

    def _context(self, options: Any) -> QueryContext:
        ctx = super()._context(options)
        ctx.joins["history"] = aliased(WatchHistoryModel)
        return ctx

    def _join(self, stmt: Select[Any], ctx: QueryContext) -> Select[Any]:
        stmt = super()._join(stmt, ctx)
        history = ctx.joins["history"]
        return stmt.outerjoin(
            history,
            and_(
                history.scene_id == SceneModel.id,
                history.instance_id == SceneModel.stash_instance_id,
                history.user_id == ctx.options.user_id,
            ),
        )

    def _extra_columns(self, ctx: QueryContext) -> list[Any]:
        history = ctx.joins["history"]
        return [
            *super()._extra_columns(ctx),
            func.coalesce(history.o_count, 0).label("user_o_counter"),
            func.coalesce(history.play_count, 0).label("user_play_count"),
            func.coalesce(history.play_duration, 0.0).label("user_play_duration"),
            history.resume_time.label("resume_time"),
            history.last_played_at.label("last_played_at"),
        ]

    def _name_expr(self) -> ColumnElement[Any]:
        return func.coalesce(func.nullif(SceneModel.title, ""), SceneModel.file_path)

    def _kind_filters(self, ctx: QueryContext) -> list[ColumnElement[bool] | None]:
        filters = ctx.filters
        history = ctx.joins["history"]
        return [
            sql_filters.junction_filter(
                filters.get("performers"), SCENE_PERFORMERS, EntityType.SCENE, SceneModel
            ),
            sql_filters.junction_filter(
                filters.get("tags"), SCENE_TAGS, EntityType.SCENE, SceneModel
            ),
            sql_filters.junction_filter(
                filters.get("groups"), SCENE_GROUPS, EntityType.SCENE, SceneModel
            ),
            sql_filters.junction_filter(
                filters.get("galleries"), SCENE_GALLERIES, EntityType.SCENE, SceneModel
            ),
            sql_filters.direct_filter(
                filters.get("studios"), SceneModel.studio_id, SceneModel.stash_instance_id
            ),
            sql_filters.text_filter(filters.get("title"), SceneModel.title, SceneModel.file_path),
            sql_filters.text_filter(filters.get("path"), SceneModel.file_path),
            sql_filters.text_filter(filters.get("details"), SceneModel.details),
            sql_filters.text_filter(filters.get("director"), SceneModel.director),
            sql_filters.date_filter(filters.get("date"), SceneModel.date),
            sql_filters.numeric_filter(filters.get("duration"), SceneModel.duration),
            sql_filters.numeric_filter(
                filters.get("o_counter"), func.coalesce(history.o_count, 0)
            ),
            sql_filters.numeric_filter(
                filters.get("play_count"), func.coalesce(history.play_count, 0)
            ),
            sql_filters.numeric_filter(
                filters.get("play_duration"), func.coalesce(history.play_duration, 0)
            ),
            sql_filters.numeric_filter(filters.get("performer_count"), _performer_count()),
            sql_filters.numeric_filter(filters.get("tag_count"), _tag_count()),
            sql_filters.numeric_filter(filters.get("resolution"), SceneModel.file_height),
            sql_filters.bool_filter(filters.get("organized"), SceneModel.organized),
        ]

    def _kind_sorts(self, ctx: QueryContext) -> dict[str, Any]:
        history = ctx.joins["history"]
        return {
            "title": collate(self._name_expr(), "NOCASE"),
            "date": SceneModel.date,
            "duration": SceneModel.duration,
            "filesize": SceneModel.file_size,
            "bitrate": SceneModel.file_bit_rate,
            "framerate": SceneModel.file_frame_rate,
            "path": SceneModel.file_path,
            "performer_count": _performer_count(),
            "tag_count": _tag_count(),
            "last_played_at": history.last_played_at,
            "play_count": func.coalesce(history.play_count, 0),
            "play_duration": func.coalesce(history.play_duration, 0),
            "o_counter": func.coalesce(history.o_count, 0),
        }

    async def _attach_relations(
        self, session: AsyncSession, items: list[dict[str, Any]]
    ) -> None:
        keys = [(item["id"], item["instance_id"]) for item in items]
        performers = await load_related(session, SCENE_PERFORMERS, keys)
        tags = await load_related(session, SCENE_TAGS, keys)

        studio_keys = {
            (item["studio_id"], item["instance_id"]) for item in items if item.get("studio_id")
        }
        studios: dict[tuple[str, str], str] = {}
        if studio_keys:
            rows = await session.execute(
                select(StudioModel.id, StudioModel.stash_instance_id, StudioModel.name).where(
                    tuple_(StudioModel.id, StudioModel.stash_instance_id).in_(list(studio_keys)),
                    StudioModel.deleted_at.is_(None),
                )
            )
            studios = {(sid, inst): name for sid, inst, name in rows}

        for item in items:
            key = (item["id"], item["instance_id"])
            item["performers"] = performers.get(key, [])
            item["tags"] = tags.get(key, [])
            studio_key = (item.get("studio_id"), item["instance_id"])
            item["studio"] = (
                {"id": item["studio_id"], "name": studios[studio_key]}
                if studio_key in studios
                else None
            )
