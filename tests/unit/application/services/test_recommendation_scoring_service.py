"""Tests for RecommendationScoringService."""

import math
from typing import Any

import pytest

from peekstash.application.services import RecommendationScoringService
from peekstash.application.services.recommendation_scoring_service import (
    EntityPreferences,
    SceneScoringData,
    scene_weight_multiplier,
    score_scene,
)
from peekstash.domain.value_objects import composite_key
from peekstash.infrastructure.persistence.models import (
    PerformerModel,
    PerformerRatingModel,
    SceneModel,
    ScenePerformerModel,
    SceneRatingModel,
    SceneTagModel,
    StudioRatingModel,
    TagRatingModel,
)

A = "inst-a"
B = "inst-b"


@pytest.fixture
def service(session_scope: Any) -> RecommendationScoringService:
    return RecommendationScoringService(session_scope)


def _appears_in(scene_id: str, instance_id: str, performer_id: str) -> ScenePerformerModel:
    return ScenePerformerModel(
        scene_id=scene_id,
        scene_instance_id=instance_id,
        performer_id=performer_id,
        performer_instance_id=instance_id,
    )


def _scores(result: dict[str, Any]) -> dict[tuple[str, str], float]:
    return {(s["id"], s["instance_id"]): s["score"] for s in result["scenes"]}


class TestSceneWeightMultiplier:
    @pytest.mark.parametrize(
        ("rating", "favorite", "expected"),
        [
            (100, False, 0.4),
            (50, True, 0.35),
            (None, True, 0.49),
            (None, False, 0.0),
            (39, True, 0.0),
        ],
    )
    def test_multiplier(self, rating: int | None, favorite: bool, expected: float) -> None:
        assert scene_weight_multiplier(rating, favorite) == pytest.approx(expected)


class TestScoreScene:
    def test_favorite_beats_rated_and_counts_are_sqrt_scaled(self) -> None:
        prefs = EntityPreferences(
            favorite_performers={"p1", "p2"},
            rated_performers={"p1", "p3"},
            favorite_tags={"t1"},
        )
        data = SceneScoringData(performer_keys=["p1", "p2", "p3"], tag_keys=["t1", "t9"])

        assert score_scene(data, prefs) == pytest.approx(5 * math.sqrt(2) + 3 + 1.0)

    def test_studio_favorite_and_derived_weight(self) -> None:
        prefs = EntityPreferences(favorite_studios={"s"}, derived_studios={"s": 0.25})
        assert score_scene(SceneScoringData(studio_key="s"), prefs) == pytest.approx(3 + 1.5)

    def test_nothing_in_common_scores_zero(self) -> None:
        prefs = EntityPreferences(favorite_performers={"p1"})
        assert score_scene(SceneScoringData(performer_keys=["p2"]), prefs) == 0


class TestRecommendScenes:
    async def test_favorite_on_one_instance_does_not_boost_same_id_on_other(
        self, service: RecommendationScoringService, seed: Any, user_id: int
    ) -> None:
        await seed(
            PerformerModel(id="5", stash_instance_id=A, name="Alice"),
            PerformerModel(id="5", stash_instance_id=B, name="Bob"),
            SceneModel(id="10", stash_instance_id=A),
            SceneModel(id="10", stash_instance_id=B),
            _appears_in("10", A, "5"),
            _appears_in("10", B, "5"),
            PerformerRatingModel(user_id=user_id, instance_id=A, performer_id="5", favorite=True),
        )

        result = await service.recommend_scenes(user_id)

        assert _scores(result) == {("10", A): pytest.approx(5.0)}
        assert result["criteria"]["favorited_performers"] == 1

    async def test_rated_scene_weights_stay_on_its_instance(
        self, service: RecommendationScoringService, seed: Any, user_id: int
    ) -> None:
        await seed(
            SceneModel(id="20", stash_instance_id=A),
            SceneModel(id="21", stash_instance_id=A),
            SceneModel(id="21", stash_instance_id=B),
            _appears_in("20", A, "6"),
            _appears_in("21", A, "6"),
            _appears_in("21", B, "6"),
            SceneRatingModel(user_id=user_id, instance_id=A, scene_id="20", rating=100),
        )

        result = await service.recommend_scenes(user_id)

        # the rated scene itself is never recommended back
        assert _scores(result) == {("21", A): pytest.approx(round(5 * math.sqrt(0.4), 4))}

    async def test_studio_favorite_matches_scene_on_its_own_instance(
        self, service: RecommendationScoringService, seed: Any, user_id: int
    ) -> None:
        await seed(
            SceneModel(id="30", stash_instance_id=A, studio_id="3"),
            SceneModel(id="30", stash_instance_id=B, studio_id="3"),
            StudioRatingModel(user_id=user_id, instance_id=B, studio_id="3", favorite=True),
        )

        result = await service.recommend_scenes(user_id)

        assert _scores(result) == {("30", B): pytest.approx(3.0)}

    async def test_allowed_instances_and_limit(
        self, service: RecommendationScoringService, seed: Any, user_id: int
    ) -> None:
        await seed(
            SceneModel(id="1", stash_instance_id=A),
            SceneModel(id="2", stash_instance_id=A),
            SceneModel(id="1", stash_instance_id=B),
            SceneTagModel(scene_id="1", scene_instance_id=A, tag_id="7", tag_instance_id=A),
            SceneTagModel(scene_id="2", scene_instance_id=A, tag_id="7", tag_instance_id=A),
            SceneTagModel(scene_id="1", scene_instance_id=B, tag_id="7", tag_instance_id=B),
            TagRatingModel(user_id=user_id, instance_id=A, tag_id="7", rating=90),
            TagRatingModel(user_id=user_id, instance_id=B, tag_id="7", rating=90),
        )

        only_b = await service.recommend_scenes(user_id, allowed_instance_ids=[B])
        top_one = await service.recommend_scenes(user_id, limit=1)

        assert list(_scores(only_b)) == [("1", B)]
        assert len(top_one["scenes"]) == 1

    async def test_no_criteria_returns_nothing(
        self, service: RecommendationScoringService, seed: Any, user_id: int
    ) -> None:
        await seed(SceneModel(id="1", stash_instance_id=A))

        result = await service.recommend_scenes(user_id)

        assert result["scenes"] == []
        assert not any(result["criteria"].values())

    async def test_preferences_keyed_by_composite_key(
        self, service: RecommendationScoringService, seed: Any, user_id: int
    ) -> None:
        await seed(
            PerformerRatingModel(user_id=user_id, instance_id=A, performer_id="5", rating=80),
            PerformerRatingModel(user_id=user_id, instance_id=B, performer_id="5", rating=60),
        )

        prefs = await service.load_preferences(user_id)

        assert prefs.rated_performers == {composite_key("5", A)}
        assert prefs.favorite_performers == set()
