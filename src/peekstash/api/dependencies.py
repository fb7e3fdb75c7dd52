"""Dependency injection for API endpoints.

Hey future me - every service is built ONCE in the lifespan (see app.py) and parked on
app.state. These getters only hand them out. If one is missing the app did not finish
starting, which is a 503, not a 500.
"""

from typing import Any, cast

from fastapi import Depends, Header, HTTPException, Request

from peekstash.application.queries import resolve_allowed_instance_ids
from peekstash.application.services import (
    ExclusionComputationService,
    RankingComputeService,
    RecommendationScoringService,
    StashInstanceService,
    StashSyncService,
    UserHiddenEntityService,
    UserService,
    UserStatsService,
)
from peekstash.application.workers import SyncSchedulerWorker
from peekstash.config import Settings
from peekstash.domain.exceptions import ValidationException
from peekstash.domain.value_objects import EntityType
from peekstash.infrastructure.persistence.database import Database


def _state(request: Request, name: str) -> Any:
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=503, detail=f"{name} not initialized")
    return value


def get_database(request: Request) -> Database:
    return cast(Database, _state(request, "db"))


def get_app_settings(request: Request) -> Settings:
    return cast(Settings, _state(request, "settings"))


def get_sync_service(request: Request) -> StashSyncService:
    return cast(StashSyncService, _state(request, "sync_service"))


def get_instance_service(request: Request) -> StashInstanceService:
    return cast(StashInstanceService, _state(request, "instance_service"))


def get_exclusion_service(request: Request) -> ExclusionComputationService:
    return cast(ExclusionComputationService, _state(request, "exclusion_service"))


def get_hidden_entity_service(request: Request) -> UserHiddenEntityService:
    return cast(UserHiddenEntityService, _state(request, "hidden_entity_service"))


def get_stats_service(request: Request) -> UserStatsService:
    return cast(UserStatsService, _state(request, "stats_service"))


def get_ranking_service(request: Request) -> RankingComputeService:
    return cast(RankingComputeService, _state(request, "ranking_service"))


def get_recommendation_service(request: Request) -> RecommendationScoringService:
    return cast(RecommendationScoringService, _state(request, "recommendation_service"))


def get_user_service(request: Request) -> UserService:
    return cast(UserService, _state(request, "user_service"))


def get_scheduler(request: Request) -> SyncSchedulerWorker:
    return cast(SyncSchedulerWorker, _state(request, "scheduler"))


# Hey future me - there is no auth layer here. Whatever sits in front of the API
# (reverse proxy, the main app) resolves the user and forwards the id in X-User-Id.
def get_user_id(x_user_id: int = Header(..., alias="X-User-Id", ge=1)) -> int:
    return x_user_id


async def get_allowed_instance_ids(
    request: Request, user_id: int = Depends(get_user_id)
) -> list[str]:
    db = get_database(request)
    async with db.session_scope() as session:
        return await resolve_allowed_instance_ids(session, user_id)


def parse_entity_type(value: str) -> EntityType:
    """Path parameter → EntityType. Accepts "scene" and "scenes".

    Raises:
        ValidationException: for anything that is not one of the seven kinds
    """
    try:
        return EntityType.from_string(value)
    except ValueError as e:
        raise ValidationException(f"Unknown entity type: {value}") from e
