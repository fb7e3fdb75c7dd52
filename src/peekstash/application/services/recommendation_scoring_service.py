# Hey future me - a rating belongs to ONE entity on ONE instance. Every preference set
# below is keyed by composite_key(id, instance), so favoriting performer "5" on Alpha
# never boosts an unrelated performer "5" on Beta.
"""Score scenes against what a user has favorited or rated."""

import logging
import math
import time
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select, tuple_
from sqlalchemy.ext.asyncio import AsyncSession

from peekstash.application.services.ranking_service import not_excluded
from peekstash.domain.value_objects import EntityType, composite_key
from peekstash.infrastructure.persistence.batch_utils import DEFAULT_IN_CHUNK, chunked
from peekstash.infrastructure.persistence.database import SessionScope
from peekstash.infrastructure.persistence.models import (
    PerformerRatingModel,
    SceneModel,
    ScenePerformerModel,
    SceneRatingModel,
    SceneTagModel,
    StudioRatingModel,
    TagRatingModel,
)

logger = logging.getLogger(__name__)

SCENE_WEIGHT_BASE = 0.4
SCENE_WEIGHT_FAVORITE_BONUS = 0.15
SCENE_RATING_FLOOR = 40
SCENE_FAVORITED_IMPLICIT_RATING = 85
HIGHLY_RATED = 80

PERFORMER_FAVORITE_WEIGHT = 5
PERFORMER_RATED_WEIGHT = 3
STUDIO_FAVORITE_WEIGHT = 3
STUDIO_RATED_WEIGHT = 2
TAG_SCENE_FAVORITE_WEIGHT = 1.0
TAG_SCENE_RATED_WEIGHT = 0.5

DEFAULT_LIMIT = 50


@dataclass
class SceneScoringData:
    """Composite keys of everything a scene is scored on."""

    performer_keys: list[str] = field(default_factory=list)
    studio_key: str | None = None
    tag_keys: list[str] = field(default_factory=list)


@dataclass
class EntityPreferences:
    favorite_performers: set[str] = field(default_factory=set)
    rated_performers: set[str] = field(default_factory=set)
    favorite_studios: set[str] = field(default_factory=set)
    rated_studios: set[str] = field(default_factory=set)
    favorite_tags: set[str] = field(default_factory=set)
    rated_tags: set[str] = field(default_factory=set)
    derived_performers: dict[str, float] = field(default_factory=dict)
    derived_studios: dict[str, float] = field(default_factory=dict)
    derived_tags: dict[str, float] = field(default_factory=dict)
    counts: dict[str, int] = field(default_factory=dict)

    @property
    def has_criteria(self) -> bool:
        return any(self.counts.values())


def scene_weight_multiplier(rating: int | None, favorite: bool) -> float:
    """How much a rated scene lends to its performers, studio and tags.

    A favorite without a rating counts as 85. Anything under 40 lends nothing.
    """
    effective = rating
    if effective is None and favorite:
        effective = SCENE_FAVORITED_IMPLICIT_RATING
    if effective is None or effective < SCENE_RATING_FLOOR:
        return 0.0
    multiplier = effective / 100 * SCENE_WEIGHT_BASE
    if favorite:
        multiplier += SCENE_WEIGHT_FAVORITE_BONUS
    return multiplier


def build_derived_weights(
    scene_ratings: Sequence[tuple[str, int | None, bool]],
    scoring_data: dict[str, SceneScoringData],
) -> tuple[dict[str, float], dict[str, float], dict[str, float]]:
    """Accumulate per-entity weights from (scene key, rating, favorite) rows."""
    performers: dict[str, float] = defaultdict(float)
    studios: dict[str, float] = defaultdict(float)
    tags: dict[str, float] = defaultdict(float)

    for scene_key, rating, favorite in scene_ratings:
        multiplier = scene_weight_multiplier(rating, favorite)
        data = scoring_data.get(scene_key)
        if multiplier == 0 or data is None:
            continue
        for key in data.performer_keys:
            performers[key] += multiplier
        if data.studio_key:
            studios[data.studio_key] += multiplier
        for key in data.tag_keys:
            tags[key] += multiplier

    return dict(performers), dict(studios), dict(tags)


def score_scene(data: SceneScoringData, prefs: EntityPreferences) -> float:
    """Base score of one scene. Counts are sqrt-scaled for diminishing returns."""
    score = 0.0

    favorite_count = rated_count = 0
    derived = 0.0
    for key in data.performer_keys:
        if key in prefs.favorite_performers:
            favorite_count += 1
        elif key in prefs.rated_performers:
            rated_count += 1
        derived += prefs.derived_performers.get(key, 0.0)
    if favorite_count:
        score += PERFORMER_FAVORITE_WEIGHT * math.sqrt(favorite_count)
    if rated_count:
        score += PERFORMER_RATED_WEIGHT * math.sqrt(rated_count)
    if derived > 0:
        score += PERFORMER_FAVORITE_WEIGHT * math.sqrt(derived)

    if data.studio_key:
        if data.studio_key in prefs.favorite_studios:
            score += STUDIO_FAVORITE_WEIGHT
        elif data.studio_key in prefs.rated_studios:
            score += STUDIO_RATED_WEIGHT
        derived_studio = prefs.derived_studios.get(data.studio_key, 0.0)
        if derived_studio > 0:
            score += STUDIO_FAVORITE_WEIGHT * math.sqrt(derived_studio)

    favorite_count = rated_count = 0
    derived = 0.0
    for key in data.tag_keys:
        if key in prefs.favorite_tags:
            favorite_count += 1
        elif key in prefs.rated_tags:
            rated_count += 1
        derived += prefs.derived_tags.get(key, 0.0)
    if favorite_count:
        score += TAG_SCENE_FAVORITE_WEIGHT * math.sqrt(favorite_count)
    if rated_count:
        score += TAG_SCENE_RATED_WEIGHT * math.sqrt(rated_count)
    if derived > 0:
        score += TAG_SCENE_FAVORITE_WEIGHT * math.sqrt(derived)

    return score


class RecommendationScoringService:
    """Ranks a user's library by overlap with their favorites and high ratings."""

    def __init__(self, session_scope: SessionScope) -> None:
        self._session_scope = session_scope

    async def load_preferences(self, user_id: int) -> EntityPreferences:
        async with self._session_scope() as session:
            return await self._load_preferences(session, user_id)

    async def recommend_scenes(
        self,
        user_id: int,
        allowed_instance_ids: Sequence[str] | None = None,
        limit: int = DEFAULT_LIMIT,
    ) -> dict[str, Any]:
        """Top ``limit`` unrated scenes by score, plus the criteria counts behind them."""
        start = time.monotonic()
        async with self._session_scope() as session:
            prefs = await self._load_preferences(session, user_id)
            if not prefs.has_criteria:
                return {"scenes": [], "criteria": prefs.counts}

            rated = set(
                (
                    await session.execute(
                        select(SceneRatingModel.scene_id, SceneRatingModel.instance_id).where(
                            SceneRatingModel.user_id == user_id
                        )
                    )
                ).tuples()
            )

            stmt = select(SceneModel.id, SceneModel.stash_instance_id, SceneModel.studio_id).where(
                SceneModel.deleted_at.is_(None),
                not_excluded(
                    user_id, EntityType.SCENE, SceneModel.id, SceneModel.stash_instance_id
                ),
            )
            if allowed_instance_ids is not None:
                stmt = stmt.where(SceneModel.stash_instance_id.in_(list(allowed_instance_ids)))
            candidates = [tuple(row) for row in (await session.execute(stmt)).all()]
            candidates = [row for row in candidates if (row[0], row[1]) not in rated]

            scoring_data = await self._load_scoring_data(session, candidates)

        scored = []
        for scene_id, instance_id, _ in candidates:
            score = score_scene(scoring_data[composite_key(scene_id, instance_id)], prefs)
            if score > 0:
                scored.append(
                    {"id": scene_id, "instance_id": instance_id, "score": round(score, 4)}
                )
        scored.sort(key=lambda item: (-item["score"], item["instance_id"], item["id"]))

        logger.info(
            "Scored %d candidate scenes for user %d in %dms (%d with a positive score)",
            len(candidates),
            user_id,
            int((time.monotonic() - start) * 1000),
            len(scored),
        )
        return {"scenes": scored[:limit], "criteria": prefs.counts}

    async def _load_preferences(self, session: AsyncSession, user_id: int) -> EntityPreferences:
        prefs = EntityPreferences()

        for model, id_attr, favorites, rated, name in (
            (
                PerformerRatingModel,
                "performer_id",
                prefs.favorite_performers,
                prefs.rated_performers,
                "performers",
            ),
            (
                StudioRatingModel,
                "studio_id",
                prefs.favorite_studios,
                prefs.rated_studios,
                "studios",
            ),
            (TagRatingModel, "tag_id", prefs.favorite_tags, prefs.rated_tags, "tags"),
        ):
            rows = await session.execute(
                select(
                    getattr(model, id_attr), model.instance_id, model.rating, model.favorite
                ).where(model.user_id == user_id)
            )
            for entity_id, instance_id, rating, favorite in rows:
                key = composite_key(entity_id, instance_id)
                if favorite:
                    favorites.add(key)
                elif rating is not None and rating >= HIGHLY_RATED:
                    rated.add(key)
            prefs.counts[f"favorited_{name}"] = len(favorites)
            prefs.counts[f"rated_{name}"] = len(rated)

        scene_rows = (
            await session.execute(
                select(
                    SceneRatingModel.scene_id,
                    SceneRatingModel.instance_id,
                    SceneRatingModel.rating,
                    SceneRatingModel.favorite,
                ).where(SceneRatingModel.user_id == user_id)
            )
        ).all()
        prefs.counts["favorited_scenes"] = sum(1 for row in scene_rows if row.favorite)
        prefs.counts["rated_scenes"] = sum(
            1 for row in scene_rows if row.rating is not None and row.rating >= SCENE_RATING_FLOOR
        )

        contributing = [
            row for row in scene_rows if scene_weight_multiplier(row.rating, row.favorite) > 0
        ]
        if contributing:
            studio_rows = await self._scene_studios(
                session, [(row.scene_id, row.instance_id) for row in contributing]
            )
            scoring_data = await self._load_scoring_data(session, studio_rows)
            (
                prefs.derived_performers,
                prefs.derived_studios,
                prefs.derived_tags,
            ) = build_derived_weights(
                [
                    (composite_key(row.scene_id, row.instance_id), row.rating, row.favorite)
                    for row in contributing
                ],
                scoring_data,
            )
        return prefs

    @staticmethod
    async def _scene_studios(
        session: AsyncSession, pairs: list[tuple[str, str]]
    ) -> list[tuple[str, str, str | None]]:
        result: list[tuple[str, str, str | None]] = []
        for chunk in chunked(pairs, DEFAULT_IN_CHUNK):
            rows = await session.execute(
                select(SceneModel.id, SceneModel.stash_instance_id, SceneModel.studio_id).where(
                    tuple_(SceneModel.id, SceneModel.stash_instance_id).in_(list(chunk)),
                    SceneModel.deleted_at.is_(None),
                )
            )
            result.extend(tuple(row) for row in rows.all())
        return result

    @staticmethod
    async def _load_scoring_data(
        session: AsyncSession, scenes: Sequence[tuple[str, str, str | None]]
    ) -> dict[str, SceneScoringData]:
        data = {
            composite_key(scene_id, inst): SceneScoringData(
                # studio lives on the scene's own instance
                studio_key=composite_key(studio_id, inst) if studio_id else None
            )
            for scene_id, inst, studio_id in scenes
        }
        pairs = [(scene_id, inst) for scene_id, inst, _ in scenes]
        for chunk in chunked(pairs, DEFAULT_IN_CHUNK):
            rows = await session.execute(
                select(
                    ScenePerformerModel.scene_id,
                    ScenePerformerModel.scene_instance_id,
                    ScenePerformerModel.performer_id,
                    ScenePerformerModel.performer_instance_id,
                ).where(
                    tuple_(ScenePerformerModel.scene_id, ScenePerformerModel.scene_instance_id).in_(
                        list(chunk)
                    )
                )
            )
            for scene_id, inst, performer_id, performer_inst in rows:
                data[composite_key(scene_id, inst)].performer_keys.append(
                    composite_key(performer_id, performer_inst)
                )

            rows = await session.execute(
                select(
                    SceneTagModel.scene_id,
                    SceneTagModel.scene_instance_id,
                    SceneTagModel.tag_id,
                    SceneTagModel.tag_instance_id,
                ).where(
                    tuple_(SceneTagModel.scene_id, SceneTagModel.scene_instance_id).in_(list(chunk))
                )
            )
            for scene_id, inst, tag_id, tag_inst in rows:
                data[composite_key(scene_id, inst)].tag_keys.append(composite_key(tag_id, tag_inst))
        return data
