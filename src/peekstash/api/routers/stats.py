"""Per-user stats and engagement ranking endpoints."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query

from peekstash.api.dependencies import (
    get_allowed_instance_ids,
    get_ranking_service,
    get_recommendation_service,
    get_stats_service,
    get_user_id,
    parse_entity_type,
)
from peekstash.application.services import (
    RankingComputeService,
    RecommendationScoringService,
    UserStatsService,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
async def get_user_stats(
    user_id: int = Depends(get_user_id),
    service: UserStatsService = Depends(get_stats_service),
) -> dict[str, Any]:
    """Aggregated play/O stats keyed by composite key ("id\\0instance")."""
    return {
        "performers": await service.get_performer_stats(user_id),
        "studios": await service.get_studio_stats(user_id),
        "tags": await service.get_tag_stats(user_id),
    }


@router.post("/rebuild")
async def rebuild_user_stats(
    user_id: int = Depends(get_user_id),
    service: UserStatsService = Depends(get_stats_service),
) -> dict[str, int]:
    """Rebuild the caller's stats from watch history."""
    return await service.rebuild_all_stats_for_user(user_id)


@router.post("/rebuild-all")
async def rebuild_all_stats(
    service: UserStatsService = Depends(get_stats_service),
) -> dict[str, Any]:
    return await service.rebuild_all_stats()


@router.get("/rankings/{kind}")
async def get_rankings(
    kind: str,
    limit: int | None = Query(default=None, ge=1),
    user_id: int = Depends(get_user_id),
    service: RankingComputeService = Depends(get_ranking_service),
) -> list[dict[str, Any]]:
    return await service.get_user_rankings(user_id, parse_entity_type(kind), limit)


@router.post("/rankings/recompute")
async def recompute_rankings(
    user_id: int = Depends(get_user_id),
    service: RankingComputeService = Depends(get_ranking_service),
) -> dict[str, int]:
    return await service.recompute_all_rankings(user_id)


@router.get("/recommendations")
async def get_recommendations(
    limit: int = Query(default=50, ge=1, le=500),
    user_id: int = Depends(get_user_id),
    allowed: list[str] = Depends(get_allowed_instance_ids),
    service: RecommendationScoringService = Depends(get_recommendation_service),
) -> dict[str, Any]:
    """Unrated scenes scored against the caller's favorites and high ratings."""
    return await service.recommend_scenes(user_id, allowed_instance_ids=allowed, limit=limit)
