"""Pre-computed per-user performer, studio and tag stats derived from watch history."""

import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select, tuple_
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from peekstash.domain.value_objects import GLOBAL_INSTANCE, composite_key, split_composite_key
from peekstash.infrastructure.persistence.batch_utils import DEFAULT_IN_CHUNK, chunked
from peekstash.infrastructure.persistence.database import SessionScope
from peekstash.infrastructure.persistence.models import (
    SceneModel,
    ScenePerformerModel,
    SceneTagModel,
    UserModel,
    UserPerformerStatsModel,
    UserStudioStatsModel,
    UserTagStatsModel,
    WatchHistoryModel,
    ensure_utc_aware,
    utc_now,
)

logger = logging.getLogger(__name__)


@dataclass
class _Accumulator:
    o_counter: int = 0
    play_count: int = 0
    last_played_at: datetime | None = None
    last_o_at: datetime | None = None

    def add(
        self,
        o_count: int,
        play_count: int,
        last_played_at: datetime | None,
        last_o_at: datetime | None,
    ) -> None:
        self.o_counter += o_count
        self.play_count += play_count
        if last_played_at and (self.last_played_at is None or last_played_at > self.last_played_at):
            self.last_played_at = last_played_at
        if last_o_at and (self.last_o_at is None or last_o_at > self.last_o_at):
            self.last_o_at = last_o_at


def parse_history(value: Any) -> list[str]:
    """Watch history columns hold a JSON array of ISO timestamps.

    Older rows were written as a list by the ORM layer, newer ones as JSON text;
    accept both and treat garbage as empty.
    """
    if isinstance(value, list):
        return [str(v) for v in value]
    if not value:
        return []
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError):
        return []
    return [str(v) for v in parsed] if isinstance(parsed, list) else []


def _last_timestamp(history: list[str]) -> datetime | None:
    if not history:
        return None
    try:
        return ensure_utc_aware(datetime.fromisoformat(history[-1]))
    except ValueError:
        return None


class UserStatsService:
    """Maintains user_{performer,studio,tag}_stats.

    Hey future me - every stats row is keyed by (user, instance, entity id) and the
    instance is ALWAYS the watch history row's instance. A scene on instance A only ever
    bumps performer stats on instance A, even when instance B has a performer with the
    same id.
    """

    def __init__(self, session_scope: SessionScope) -> None:
        self._session_scope = session_scope

    # =========================================================================
    # READS
    # =========================================================================

    async def get_performer_stats(self, user_id: int) -> dict[str, dict[str, Any]]:
        """Performer stats keyed by composite_key(performer_id, instance_id)."""
        async with self._session_scope() as session:
            rows = (
                await session.execute(
                    select(UserPerformerStatsModel).where(UserPerformerStatsModel.user_id == user_id)
                )
            ).scalars().all()
            return {
                composite_key(r.performer_id, r.instance_id): {
                    "o_counter": r.o_counter,
                    "play_count": r.play_count,
                    "last_played_at": r.last_played_at.isoformat() if r.last_played_at else None,
                    "last_o_at": r.last_o_at.isoformat() if r.last_o_at else None,
                }
                for r in rows
            }

    async def get_studio_stats(self, user_id: int) -> dict[str, dict[str, Any]]:
        async with self._session_scope() as session:
            rows = (
                await session.execute(
                    select(UserStudioStatsModel).where(UserStudioStatsModel.user_id == user_id)
                )
            ).scalars().all()
            return {
                composite_key(r.studio_id, r.instance_id): {
                    "o_counter": r.o_counter,
                    "play_count": r.play_count,
                }
                for r in rows
            }

    async def get_tag_stats(self, user_id: int) -> dict[str, dict[str, Any]]:
        async with self._session_scope() as session:
            rows = (
                await session.execute(
                    select(UserTagStatsModel).where(UserTagStatsModel.user_id == user_id)
                )
            ).scalars().all()
            return {
                composite_key(r.tag_id, r.instance_id): {
                    "o_counter": r.o_counter,
                    "play_count": r.play_count,
                }
                for r in rows
            }

    # =========================================================================
    # INCREMENTAL UPDATE
    # =========================================================================

    async def update_stats_for_scene(
        self,
        user_id: int,
        scene_id: str,
        o_delta: int,
        play_delta: int,
        last_played_at: datetime | None = None,
        last_o_at: datetime | None = None,
        instance_id: str | None = None,
    ) -> None:
        """Apply a watch-history delta to the scene's performers, studio and tags.

        Called on every playback/O event. Failures are logged and swallowed: the stats
        tables are a cache and the next rebuild fixes them, while the caller is
        recording playback and must not fail because of us.
        """
        try:
            async with self._session_scope() as session:
                stmt = select(SceneModel.id, SceneModel.stash_instance_id, SceneModel.studio_id).where(
                    SceneModel.id == scene_id
                )
                if instance_id:
                    stmt = stmt.where(SceneModel.stash_instance_id == instance_id)
                scene = (await session.execute(stmt.limit(1))).first()
                if scene is None:
                    logger.warning("Scene %s not found in cache for stats update", scene_id)
                    return
                _, resolved_instance, studio_id = scene

                performer_ids = (
                    await session.execute(
                        select(ScenePerformerModel.performer_id).where(
                            ScenePerformerModel.scene_id == scene_id,
                            ScenePerformerModel.scene_instance_id == resolved_instance,
                        )
                    )
                ).scalars().all()
                tag_ids = (
                    await session.execute(
                        select(SceneTagModel.tag_id).where(
                            SceneTagModel.scene_id == scene_id,
                            SceneTagModel.scene_instance_id == resolved_instance,
                        )
                    )
                ).scalars().all()

                for performer_id in performer_ids:
                    await self._upsert_delta(
                        session,
                        UserPerformerStatsModel,
                        "performer_id",
                        user_id,
                        resolved_instance,
                        performer_id,
                        o_delta,
                        play_delta,
                        last_played_at=last_played_at,
                        last_o_at=last_o_at,
                    )
                if studio_id:
                    await self._upsert_delta(
                        session,
                        UserStudioStatsModel,
                        "studio_id",
                        user_id,
                        resolved_instance,
                        studio_id,
                        o_delta,
                        play_delta,
                    )
                for tag_id in tag_ids:
                    await self._upsert_delta(
                        session,
                        UserTagStatsModel,
                        "tag_id",
                        user_id,
                        resolved_instance,
                        tag_id,
                        o_delta,
                        play_delta,
                    )
        except Exception as e:
            logger.error(
                "Error updating stats for scene %s (user %s): %s",
                scene_id,
                user_id,
                e,
                exc_info=True,
            )

    @staticmethod
    async def _upsert_delta(
        session: AsyncSession,
        model: type[Any],
        entity_column: str,
        user_id: int,
        instance_id: str,
        entity_id: str,
        o_delta: int,
        play_delta: int,
        last_played_at: datetime | None = None,
        last_o_at: datetime | None = None,
    ) -> None:
        # new rows never start negative; existing rows take the raw delta
        values: dict[str, Any] = {
            "user_id": user_id,
            "instance_id": instance_id,
            entity_column: entity_id,
            "o_counter": max(0, o_delta),
            "play_count": max(0, play_delta),
            "updated_at": utc_now(),
        }
        stmt = sqlite_insert(model)
        updates: dict[str, Any] = {
            "o_counter": model.o_counter + o_delta,
            "play_count": model.play_count + play_delta,
            "updated_at": stmt.excluded.updated_at,
        }
        if last_played_at is not None:
            values["last_played_at"] = last_played_at
            updates["last_played_at"] = stmt.excluded.last_played_at
        if last_o_at is not None:
            values["last_o_at"] = last_o_at
            updates["last_o_at"] = stmt.excluded.last_o_at

        await session.execute(
            stmt.values(**values).on_conflict_do_update(
                index_elements=["user_id", "instance_id", entity_column], set_=updates
            )
        )

    # =========================================================================
    # FULL REBUILD
    # =========================================================================

    async def rebuild_all_stats_for_user(self, user_id: int) -> dict[str, int]:
        """Recompute the three stats tables for one user from watch history.

        Runs in one transaction: the old rows are only gone if the new ones landed.

        Returns:
            {"performers": n, "studios": n, "tags": n} rows written
        """
        logger.info("Rebuilding stats for user %s", user_id)
        async with self._session_scope() as session:
            for model in (UserPerformerStatsModel, UserStudioStatsModel, UserTagStatsModel):
                await session.execute(delete(model).where(model.user_id == user_id))

            history = (
                await session.execute(
                    select(WatchHistoryModel).where(WatchHistoryModel.user_id == user_id)
                )
            ).scalars().all()

            scene_pairs = sorted({(wh.scene_id, wh.instance_id or GLOBAL_INSTANCE) for wh in history})
            studios, performers, tags = await self._load_scene_relations(session, scene_pairs)

            performer_stats: dict[str, _Accumulator] = defaultdict(_Accumulator)
            studio_stats: dict[str, _Accumulator] = defaultdict(_Accumulator)
            tag_stats: dict[str, _Accumulator] = defaultdict(_Accumulator)

            for wh in history:
                instance_id = wh.instance_id or GLOBAL_INSTANCE
                scene_key = composite_key(wh.scene_id, instance_id)
                if scene_key not in studios:
                    # not in the cache (deleted upstream or never synced)
                    continue

                last_played_at = _last_timestamp(parse_history(wh.play_history))
                last_o_at = _last_timestamp(parse_history(wh.o_history))
                o_count = wh.o_count or 0
                play_count = wh.play_count or 0

                for performer_id in performers.get(scene_key, []):
                    performer_stats[composite_key(performer_id, instance_id)].add(
                        o_count, play_count, last_played_at, last_o_at
                    )
                studio_id = studios[scene_key]
                if studio_id:
                    studio_stats[composite_key(studio_id, instance_id)].add(
                        o_count, play_count, None, None
                    )
                for tag_id in tags.get(scene_key, []):
                    tag_stats[composite_key(tag_id, instance_id)].add(
                        o_count, play_count, None, None
                    )

            now = utc_now()
            for model, column, stats, with_dates in (
                (UserPerformerStatsModel, "performer_id", performer_stats, True),
                (UserStudioStatsModel, "studio_id", studio_stats, False),
                (UserTagStatsModel, "tag_id", tag_stats, False),
            ):
                rows = []
                for key, acc in stats.items():
                    entity_id, instance_id = split_composite_key(key)
                    row = {
                        "user_id": user_id,
                        "instance_id": instance_id,
                        column: entity_id,
                        "o_counter": acc.o_counter,
                        "play_count": acc.play_count,
                        "last_played_at": acc.last_played_at if with_dates else None,
                        "last_o_at": acc.last_o_at if with_dates else None,
                        "updated_at": now,
                    }
                    rows.append(row)
                for chunk in chunked(rows, 100):
                    await session.execute(sqlite_insert(model).values(list(chunk)))

        counts = {
            "performers": len(performer_stats),
            "studios": len(studio_stats),
            "tags": len(tag_stats),
        }
        logger.info("Stats rebuild complete for user %s: %s", user_id, counts)
        return counts

    @staticmethod
    async def _load_scene_relations(
        session: AsyncSession, scene_pairs: list[tuple[str, str]]
    ) -> tuple[dict[str, str | None], dict[str, list[str]], dict[str, list[str]]]:
        """studio / performer ids / direct tag ids per live scene, by composite key."""
        studios: dict[str, str | None] = {}
        performers: dict[str, list[str]] = defaultdict(list)
        tags: dict[str, list[str]] = defaultdict(list)

        for pairs in chunked(scene_pairs, DEFAULT_IN_CHUNK):
            rows = await session.execute(
                select(SceneModel.id, SceneModel.stash_instance_id, SceneModel.studio_id).where(
                    tuple_(SceneModel.id, SceneModel.stash_instance_id).in_(pairs),
                    SceneModel.deleted_at.is_(None),
                )
            )
            for scene_id, instance_id, studio_id in rows:
                studios[composite_key(scene_id, instance_id)] = studio_id

            rows = await session.execute(
                select(
                    ScenePerformerModel.scene_id,
                    ScenePerformerModel.scene_instance_id,
                    ScenePerformerModel.performer_id,
                ).where(
                    tuple_(ScenePerformerModel.scene_id, ScenePerformerModel.scene_instance_id).in_(
                        pairs
                    )
                )
            )
            for scene_id, instance_id, performer_id in rows:
                performers[composite_key(scene_id, instance_id)].append(performer_id)

            rows = await session.execute(
                select(SceneTagModel.scene_id, SceneTagModel.scene_instance_id, SceneTagModel.tag_id).where(
                    tuple_(SceneTagModel.scene_id, SceneTagModel.scene_instance_id).in_(pairs)
                )
            )
            for scene_id, instance_id, tag_id in rows:
                tags[composite_key(scene_id, instance_id)].append(tag_id)

        return studios, performers, tags

    async def rebuild_all_stats(self) -> dict[str, Any]:
        """Rebuild every user. One user's failure is logged and the loop continues.

        Returns:
            {"success": int, "failed": int, "errors": [{"user_id", "error"}]}
        """
        async with self._session_scope() as session:
            user_ids = list((await session.execute(select(UserModel.id))).scalars().all())

        result: dict[str, Any] = {"success": 0, "failed": 0, "errors": []}
        for user_id in user_ids:
            try:
                await self.rebuild_all_stats_for_user(user_id)
                result["success"] += 1
            except Exception as e:
                logger.error("Stats rebuild failed for user %s: %s", user_id, e, exc_info=True)
                result["failed"] += 1
                result["errors"].append({"user_id": user_id, "error": str(e)})

        logger.info("All stats rebuild complete for %d users", len(user_ids))
        return result
