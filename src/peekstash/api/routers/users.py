"""User provisioning endpoints."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from peekstash.api.dependencies import get_user_service
from peekstash.application.services import UserService

logger = logging.getLogger(__name__)

router = APIRouter()


class UserCreate(BaseModel):
    username: str = Field(..., min_length=1, max_length=255)


class AllowedInstances(BaseModel):
    instance_ids: list[str] = Field(
        default_factory=list, description="Empty list means every enabled instance"
    )


@router.get("")
async def list_users(service: UserService = Depends(get_user_service)) -> list[dict[str, Any]]:
    return await service.list_users()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user(
    body: UserCreate, service: UserService = Depends(get_user_service)
) -> dict[str, Any]:
    return await service.create_user(body.username)


@router.get("/{user_id}")
async def get_user(user_id: int, service: UserService = Depends(get_user_service)) -> dict[str, Any]:
    return await service.get_user(user_id)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(user_id: int, service: UserService = Depends(get_user_service)) -> None:
    await service.delete_user(user_id)


@router.get("/{user_id}/instances")
async def get_allowed_instances(
    user_id: int, service: UserService = Depends(get_user_service)
) -> dict[str, Any]:
    return {"user_id": user_id, "instance_ids": await service.get_allowed_instances(user_id)}


@router.put("/{user_id}/instances")
async def set_allowed_instances(
    user_id: int,
    body: AllowedInstances,
    service: UserService = Depends(get_user_service),
) -> dict[str, Any]:
    instance_ids = await service.set_allowed_instances(user_id, body.instance_ids)
    return {"user_id": user_id, "instance_ids": instance_ids}
