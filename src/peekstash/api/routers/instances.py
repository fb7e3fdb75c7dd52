"""Stash instance CRUD endpoints."""

import logging
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from peekstash.api.dependencies import get_instance_service
from peekstash.application.services import StashInstanceConfig, StashInstanceService

logger = logging.getLogger(__name__)

router = APIRouter()


class InstanceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    url: str = Field(..., description="Stash base URL, /graphql suffix optional")
    api_key: str = ""
    description: str | None = None
    enabled: bool = True
    priority: int | None = None


class InstanceUpdate(BaseModel):
    name: str | None = None
    url: str | None = None
    api_key: str | None = None
    description: str | None = None
    enabled: bool | None = None
    priority: int | None = None


class ConnectionTestRequest(BaseModel):
    url: str
    api_key: str = ""


# Hey future me - the api key never leaves the server. Clients only learn whether one
# is set, so the admin UI can show "configured" without echoing the secret.
def _public(config: StashInstanceConfig) -> dict[str, Any]:
    data = asdict(config)
    data["has_api_key"] = bool(data.pop("api_key"))
    return data


@router.get("")
async def list_instances(
    service: StashInstanceService = Depends(get_instance_service),
) -> list[dict[str, Any]]:
    return [_public(c) for c in await service.list_instances()]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_instance(
    body: InstanceCreate,
    service: StashInstanceService = Depends(get_instance_service),
) -> dict[str, Any]:
    return _public(await service.create_instance(**body.model_dump()))


@router.post("/test-connection")
async def test_connection(
    body: ConnectionTestRequest,
    service: StashInstanceService = Depends(get_instance_service),
) -> dict[str, Any]:
    return await service.test_connection(body.url, body.api_key)


@router.get("/{instance_id}")
async def get_instance(
    instance_id: str,
    service: StashInstanceService = Depends(get_instance_service),
) -> dict[str, Any]:
    return _public(await service.get_instance(instance_id))


@router.patch("/{instance_id}")
async def update_instance(
    instance_id: str,
    body: InstanceUpdate,
    service: StashInstanceService = Depends(get_instance_service),
) -> dict[str, Any]:
    return _public(
        await service.update_instance(instance_id, **body.model_dump(exclude_unset=True))
    )


@router.delete("/{instance_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_instance(
    instance_id: str,
    service: StashInstanceService = Depends(get_instance_service),
) -> None:
    await service.delete_instance(instance_id)
