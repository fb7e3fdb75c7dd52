# Hey future me - rankings answer "what does this user actually like", normalized for how
# much of the library an entity covers. A performer in 300 scenes will always collect more
# raw plays than one in 3, so we rank by engagement RATE (score / library presence) and
# turn that into a 0-100 percentile within the user's own engaged set.
"""Per-user engagement rankings for performers, studios, tags and scenes."""

import logging
import math
import time
from dataclasses import dataclass
from typing import Any

from sqlalchemy import and_, delete, exists, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from peekstash.domain.value_objects import GLOBAL_INSTANCE, RANKABLE_TYPES, EntityType
from peekstash.infrastructure.persistence.batch_utils import chunked
from peekstash.infrastructure.persistence.database import SessionScope
from peekstash.infrastructure.persistence.models import (
    SceneModel,
    ScenePerformerModel,
    SceneTagModel,
    UserEntityRankingModel,
    UserExcludedEntityModel,
    UserPerformerStatsModel,
    UserStudioStatsModel,
    UserTagStatsModel,
    WatchHistoryModel,
    utc_now,
)

logger = logging.getLogger(__name__)

O_COUNT_WEIGHT = 5
DURATION_WEIGHT = 1
PLAY_COUNT_WEIGHT = 1
DEFAULT_SCENE_DURATION = 1200.0  # seconds
TIE_EPSILON = 1e-4


@dataclass
class EntityEngagement:
    """Raw engagement numbers for one (entity, instance)."""

    entity_id: str
    instance_id: str
    play_count: float
    o_count: float
    play_duration: float
    library_presence: float


@dataclass
class ComputedRanking:
    entity_id: str
    instance_id: str
    play_count: int
    o_count: int
    play_duration: float
    library_presence: int
    engagement_score: float
    engagement_rate: float
    percentile_rank: int = 0
    rank: int = 0


def engagement_score(o_count: float, normalized_duration: float, play_count: float) -> float:
    return (
        o_count * O_COUNT_WEIGHT
        + normalized_duration * DURATION_WEIGHT
        + play_count * PLAY_COUNT_WEIGHT
    )


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _as_int(value: float | int | None) -> int:
    # SQLite SUM/AVG hand back floats like 10.0000000001; the columns are INTEGER
    return _round_half_up(float(value or 0))


def compute_percentile_ranks(
    entities: list[EntityEngagement], avg_scene_duration: float
) -> list[ComputedRanking]:
    """Score, sort by engagement rate (best first) and assign percentile + rank.

    percentile = round(100 * (n - i - 1) / max(n - 1, 1)) for position i. Neighbours
    whose rates differ by less than 1e-4 share the earlier one's percentile and rank.
    """
    if not entities:
        return []
    avg_scene_duration = avg_scene_duration or DEFAULT_SCENE_DURATION

    scored: list[ComputedRanking] = []
    for e in entities:
        play_count = _as_int(e.play_count)
        o_count = _as_int(e.o_count)
        library_presence = _as_int(e.library_presence)
        play_duration = float(e.play_duration or 0)
        score = engagement_score(o_count, play_duration / avg_scene_duration, play_count)
        scored.append(
            ComputedRanking(
                entity_id=e.entity_id,
                instance_id=e.instance_id or GLOBAL_INSTANCE,
                play_count=play_count,
                o_count=o_count,
                play_duration=play_duration,
                library_presence=library_presence,
                engagement_score=score,
                engagement_rate=score / max(library_presence, 1),
            )
        )

    # stable tie-break so recomputes do not shuffle equal entries
    scored.sort(key=lambda r: (-r.engagement_rate, r.entity_id, r.instance_id))

    n = len(scored)
    for i, ranking in enumerate(scored):
        ranking.percentile_rank = _round_half_up(100 * (n - i - 1) / max(n - 1, 1))
        ranking.rank = i + 1
    for i in range(1, n):
        if abs(scored[i].engagement_rate - scored[i - 1].engagement_rate) < TIE_EPSILON:
            scored[i].percentile_rank = scored[i - 1].percentile_rank
            scored[i].rank = scored[i - 1].rank
    return scored


def not_excluded(user_id: int, entity_type: EntityType, entity_id: Any, instance_id: Any) -> Any:
    """Row is not on the user's exclusion list, globally or for its own instance."""
    return ~exists().where(
        UserExcludedEntityModel.user_id == user_id,
        UserExcludedEntityModel.entity_type == entity_type.value,
        UserExcludedEntityModel.entity_id == entity_id,
        or_(
            UserExcludedEntityModel.instance_id == GLOBAL_INSTANCE,
            UserExcludedEntityModel.instance_id == instance_id,
        ),
    )


class RankingComputeService:
    """Computes and stores user_entity_rankings."""

    def __init__(self, session_scope: SessionScope) -> None:
        self._session_scope = session_scope

    async def recompute_all_rankings(self, user_id: int) -> dict[str, int]:
        """Recompute all four ranked kinds for one user.

        Returns:
            Number of ranked entities per kind
        """
        start = time.monotonic()
        avg_duration = await self.get_average_scene_duration()
        counts = {
            EntityType.PERFORMER.value: await self.compute_performer_rankings(user_id, avg_duration),
            EntityType.STUDIO.value: await self.compute_studio_rankings(user_id, avg_duration),
            EntityType.TAG.value: await self.compute_tag_rankings(user_id, avg_duration),
            EntityType.SCENE.value: await self.compute_scene_rankings(user_id, avg_duration),
        }
        logger.info(
            "Ranking computation complete for user %s in %dms: %s",
            user_id,
            int((time.monotonic() - start) * 1000),
            counts,
        )
        return counts

    async def get_average_scene_duration(self) -> float:
        """Mean duration of scenes with a positive duration; 1200s when there are none."""
        async with self._session_scope() as session:
            avg = await session.scalar(
                select(func.avg(SceneModel.duration)).where(
                    SceneModel.duration > 0, SceneModel.deleted_at.is_(None)
                )
            )
        return float(avg) if avg else DEFAULT_SCENE_DURATION

    # =========================================================================
    # PER-KIND COMPUTATION
    # =========================================================================

    async def compute_performer_rankings(self, user_id: int, avg_scene_duration: float) -> int:
        return await self._compute_linked(
            user_id,
            avg_scene_duration,
            EntityType.PERFORMER,
            UserPerformerStatsModel,
            UserPerformerStatsModel.performer_id,
            link_entity_id=ScenePerformerModel.performer_id,
            link_entity_instance=ScenePerformerModel.performer_instance_id,
            link_scene_id=ScenePerformerModel.scene_id,
            link_scene_instance=ScenePerformerModel.scene_instance_id,
        )

    async def compute_studio_rankings(self, user_id: int, avg_scene_duration: float) -> int:
        return await self._compute_linked(
            user_id,
            avg_scene_duration,
            EntityType.STUDIO,
            UserStudioStatsModel,
            UserStudioStatsModel.studio_id,
            link_entity_id=SceneModel.studio_id,
            link_entity_instance=SceneModel.stash_instance_id,
            link_scene_id=SceneModel.id,
            link_scene_instance=SceneModel.stash_instance_id,
            link_filter=and_(SceneModel.studio_id.is_not(None), SceneModel.deleted_at.is_(None)),
        )

    async def compute_tag_rankings(self, user_id: int, avg_scene_duration: float) -> int:
        return await self._compute_linked(
            user_id,
            avg_scene_duration,
            EntityType.TAG,
            UserTagStatsModel,
            UserTagStatsModel.tag_id,
            link_entity_id=SceneTagModel.tag_id,
            link_entity_instance=SceneTagModel.tag_instance_id,
            link_scene_id=SceneTagModel.scene_id,
            link_scene_instance=SceneTagModel.scene_instance_id,
        )

    async def compute_scene_rankings(self, user_id: int, avg_scene_duration: float) -> int:
        """Scenes are ranked on raw engagement: library presence is always 1."""
        wh = WatchHistoryModel
        stmt = select(
            wh.scene_id, wh.instance_id, wh.play_count, wh.o_count, wh.play_duration
        ).where(
            wh.user_id == user_id,
            not_excluded(user_id, EntityType.SCENE, wh.scene_id, wh.instance_id),
            or_(wh.play_count > 0, wh.o_count > 0, wh.play_duration > 0),
        )
        async with self._session_scope() as session:
            entities = [
                EntityEngagement(scene_id, inst or GLOBAL_INSTANCE, plays, o_count, duration or 0, 1)
                for scene_id, inst, plays, o_count, duration in await session.execute(stmt)
            ]
            rankings = compute_percentile_ranks(entities, avg_scene_duration)
            await self._store(session, user_id, EntityType.SCENE, rankings)
        return len(rankings)

    async def _compute_linked(
        self,
        user_id: int,
        avg_scene_duration: float,
        entity_type: EntityType,
        stats_model: type[Any],
        stats_entity_id: Any,
        *,
        link_entity_id: Any,
        link_entity_instance: Any,
        link_scene_id: Any,
        link_scene_instance: Any,
        link_filter: Any = None,
    ) -> int:
        """Rank an entity kind that reaches scenes through a link (junction or column).

        Duration sums the user's watch time over the entity's scenes and library
        presence counts the entity's scenes, both joined on (id, instance).
        """
        wh = WatchHistoryModel

        duration_q = (
            select(
                link_entity_id.label("entity_id"),
                link_entity_instance.label("instance_id"),
                func.sum(wh.play_duration).label("total"),
            )
            .join(
                wh,
                and_(
                    wh.scene_id == link_scene_id,
                    wh.instance_id == link_scene_instance,
                    wh.user_id == user_id,
                ),
            )
            .group_by(link_entity_id, link_entity_instance)
        )
        library_q = select(
            link_entity_id.label("entity_id"),
            link_entity_instance.label("instance_id"),
            func.count().label("scene_count"),
        ).group_by(link_entity_id, link_entity_instance)
        if link_filter is not None:
            duration_q = duration_q.where(link_filter)
            library_q = library_q.where(link_filter)
        duration = duration_q.subquery("dur")
        library = library_q.subquery("lib")

        stmt = (
            select(
                stats_entity_id,
                stats_model.instance_id,
                stats_model.play_count,
                stats_model.o_counter,
                func.coalesce(duration.c.total, 0),
                func.coalesce(library.c.scene_count, 1),
            )
            .outerjoin(
                duration,
                and_(
                    duration.c.entity_id == stats_entity_id,
                    duration.c.instance_id == stats_model.instance_id,
                ),
            )
            .outerjoin(
                library,
                and_(
                    library.c.entity_id == stats_entity_id,
                    library.c.instance_id == stats_model.instance_id,
                ),
            )
            .where(
                stats_model.user_id == user_id,
                not_excluded(user_id, entity_type, stats_entity_id, stats_model.instance_id),
                or_(stats_model.play_count > 0, stats_model.o_counter > 0),
            )
        )

        async with self._session_scope() as session:
            entities = [
                EntityEngagement(*row) for row in (await session.execute(stmt)).tuples().all()
            ]
            rankings = compute_percentile_ranks(entities, avg_scene_duration)
            await self._store(session, user_id, entity_type, rankings)
        return len(rankings)

    @staticmethod
    async def _store(
        session: AsyncSession,
        user_id: int,
        entity_type: EntityType,
        rankings: list[ComputedRanking],
    ) -> None:
        await session.execute(
            delete(UserEntityRankingModel).where(
                UserEntityRankingModel.user_id == user_id,
                UserEntityRankingModel.entity_type == entity_type.value,
            )
        )
        now = utc_now()
        for chunk in chunked(rankings, 500):
            session.add_all(
                UserEntityRankingModel(
                    user_id=user_id,
                    instance_id=r.instance_id,
                    entity_type=entity_type.value,
                    entity_id=r.entity_id,
                    play_count=r.play_count,
                    o_count=r.o_count,
                    play_duration=r.play_duration,
                    library_presence=r.library_presence,
                    engagement_score=r.engagement_score,
                    engagement_rate=r.engagement_rate,
                    percentile_rank=r.percentile_rank,
                    rank=r.rank,
                    computed_at=now,
                )
                for r in chunk
            )
            await session.flush()

    # =========================================================================
    # READS
    # =========================================================================

    async def get_user_rankings(
        self, user_id: int, entity_type: EntityType, limit: int | None = None
    ) -> list[dict[str, Any]]:
        """Stored rankings, best first.

        Raises:
            ValueError: for kinds that are not ranked (groups, galleries, images)
        """
        if entity_type not in RANKABLE_TYPES:
            raise ValueError(f"{entity_type.value} rankings are not computed")
        stmt = (
            select(UserEntityRankingModel)
            .where(
                UserEntityRankingModel.user_id == user_id,
                UserEntityRankingModel.entity_type == entity_type.value,
            )
            .order_by(UserEntityRankingModel.rank.asc(), UserEntityRankingModel.entity_id.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session_scope() as session:
            return [
                {
                    "entity_id": r.entity_id,
                    "instance_id": r.instance_id,
                    "play_count": r.play_count,
                    "o_count": r.o_count,
                    "play_duration": r.play_duration,
                    "library_presence": r.library_presence,
                    "engagement_score": r.engagement_score,
                    "engagement_rate": r.engagement_rate,
                    "percentile_rank": r.percentile_rank,
                    "rank": r.rank,
                }
                for r in (await session.execute(stmt)).scalars().all()
            ]
