"""Hide/unhide, content restriction and exclusion recompute endpoints."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from peekstash.api.dependencies import (
    get_exclusion_service,
    get_hidden_entity_service,
    get_user_id,
    parse_entity_type,
)
from peekstash.application.services import (
    ExclusionComputationService,
    UserHiddenEntityService,
)
from peekstash.domain.value_objects import GLOBAL_INSTANCE, RestrictionMode

logger = logging.getLogger(__name__)

router = APIRouter()


class HideRequest(BaseModel):
    entity_type: str
    entity_id: str
    instance_id: str = Field(
        default=GLOBAL_INSTANCE,
        description='Instance to hide on; "" hides the id on every instance',
    )


class RestrictionItem(BaseModel):
    entity_type: str = Field(..., description="tags, studios, groups or galleries")
    mode: RestrictionMode = RestrictionMode.EXCLUDE
    entity_ids: list[str] = Field(default_factory=list)
    restrict_empty: bool = False


@router.post("/hidden", status_code=status.HTTP_201_CREATED)
async def hide_entity(
    body: HideRequest,
    user_id: int = Depends(get_user_id),
    service: UserHiddenEntityService = Depends(get_hidden_entity_service),
) -> dict[str, Any]:
    entity_type = parse_entity_type(body.entity_type)
    await service.hide_entity(user_id, entity_type, body.entity_id, body.instance_id)
    return {
        "hidden": True,
        "entity_type": entity_type.value,
        "entity_id": body.entity_id,
        "instance_id": body.instance_id,
    }


@router.get("/hidden")
async def list_hidden_entities(
    entity_type: str | None = None,
    user_id: int = Depends(get_user_id),
    service: UserHiddenEntityService = Depends(get_hidden_entity_service),
) -> list[dict[str, Any]]:
    kind = parse_entity_type(entity_type) if entity_type else None
    return await service.get_hidden_entities(user_id, kind)


@router.delete("/hidden/{entity_type}/{entity_id}")
async def unhide_entity(
    entity_type: str,
    entity_id: str,
    instance_id: str = GLOBAL_INSTANCE,
    user_id: int = Depends(get_user_id),
    service: UserHiddenEntityService = Depends(get_hidden_entity_service),
) -> dict[str, Any]:
    removed = await service.unhide_entity(
        user_id, parse_entity_type(entity_type), entity_id, instance_id
    )
    return {"removed": removed}


@router.delete("/hidden")
async def unhide_all(
    entity_type: str | None = None,
    user_id: int = Depends(get_user_id),
    service: UserHiddenEntityService = Depends(get_hidden_entity_service),
) -> dict[str, Any]:
    kind = parse_entity_type(entity_type) if entity_type else None
    return {"removed": await service.unhide_all(user_id, kind)}


@router.get("/excluded")
async def list_excluded_entities(
    entity_type: str | None = None,
    user_id: int = Depends(get_user_id),
    service: ExclusionComputationService = Depends(get_exclusion_service),
) -> list[dict[str, Any]]:
    kind = parse_entity_type(entity_type) if entity_type else None
    return await service.get_excluded_entities(user_id, kind)


@router.get("/visible-counts")
async def get_visible_counts(
    user_id: int = Depends(get_user_id),
    service: ExclusionComputationService = Depends(get_exclusion_service),
) -> dict[str, dict[str, int]]:
    return await service.get_visible_counts(user_id)


# Hey future me - restrictions are an ADMIN tool: they target another user by path id,
# not the caller from X-User-Id. Access control belongs to whatever fronts this API.
@router.put("/users/{target_user_id}/restrictions")
async def set_restrictions(
    target_user_id: int,
    body: list[RestrictionItem],
    service: ExclusionComputationService = Depends(get_exclusion_service),
) -> dict[str, Any]:
    await service.set_restrictions(target_user_id, [item.model_dump(mode="json") for item in body])
    return {"user_id": target_user_id, "restrictions": len(body)}


@router.post("/recompute")
async def recompute_exclusions(
    user_id: int = Depends(get_user_id),
    service: ExclusionComputationService = Depends(get_exclusion_service),
) -> dict[str, Any]:
    await service.recompute_for_user(user_id)
    return {"user_id": user_id, "recomputed": True}


@router.post("/recompute-all")
async def recompute_all_exclusions(
    service: ExclusionComputationService = Depends(get_exclusion_service),
) -> dict[str, Any]:
    return await service.recompute_all_users()
