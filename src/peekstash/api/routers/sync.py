"""Sync trigger and status endpoints."""

# Hey future me - a full sync of a big library takes minutes. By default the trigger
# endpoints answer 202 right away and the pass runs as a background task; ?wait=true
# awaits it and returns the per-type results (handy for scripts and tests). The
# "already running" check happens BEFORE scheduling so the caller still gets a 409.

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from peekstash.api.dependencies import get_scheduler, get_sync_service, parse_entity_type
from peekstash.application.services import StashSyncService, SyncResult
from peekstash.application.workers import SyncSchedulerWorker
from peekstash.domain.exceptions import SyncAbortedError, SyncInProgressError
from peekstash.domain.value_objects import SyncAction

logger = logging.getLogger(__name__)

router = APIRouter()

# strong refs so background passes are not garbage collected mid-run
_background_passes: set[asyncio.Task[Any]] = set()


class SyncTriggerRequest(BaseModel):
    instance_id: str | None = Field(default=None, description="Only this instance")
    entity_type: str | None = Field(
        default=None, description="Only this kind (full sync only)"
    )


class SingleEntitySyncRequest(BaseModel):
    entity_type: str
    entity_id: str
    action: SyncAction = SyncAction.UPDATE
    instance_id: str | None = None


class SyncSettingsUpdate(BaseModel):
    sync_interval_minutes: int | None = Field(default=None, ge=1)
    enable_scan_subscription: bool | None = None
    enable_plugin_webhook: bool | None = None


async def _run_logged(name: str, coro: Any) -> None:
    try:
        results = await coro
        logger.info(
            "Background %s sync finished",
            name,
            extra={"results": [r.to_dict() for r in results]},
        )
    except SyncAbortedError:
        logger.info("Background %s sync aborted", name)
    except Exception:
        logger.exception("Background %s sync failed", name)


async def _trigger(name: str, coro: Any, wait: bool) -> Any:
    if wait:
        results: list[SyncResult] = await coro
        return {"status": "completed", "results": [r.to_dict() for r in results]}

    task = asyncio.create_task(_run_logged(name, coro))
    _background_passes.add(task)
    task.add_done_callback(_background_passes.discard)
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED, content={"status": "started", "sync_type": name}
    )


@router.post("/full")
async def trigger_full_sync(
    request: SyncTriggerRequest | None = None,
    wait: bool = Query(default=False),
    sync_service: StashSyncService = Depends(get_sync_service),
) -> Any:
    """Full sync of every enabled instance (or one), with deletion cleanup."""
    request = request or SyncTriggerRequest()
    if sync_service.is_syncing():
        raise SyncInProgressError()
    entity_type = parse_entity_type(request.entity_type) if request.entity_type else None
    return await _trigger(
        "full", sync_service.full_sync(request.instance_id, entity_type), wait
    )


@router.post("/incremental")
async def trigger_incremental_sync(
    request: SyncTriggerRequest | None = None,
    wait: bool = Query(default=False),
    sync_service: StashSyncService = Depends(get_sync_service),
) -> Any:
    request = request or SyncTriggerRequest()
    if sync_service.is_syncing():
        raise SyncInProgressError()
    return await _trigger(
        "incremental", sync_service.incremental_sync(request.instance_id), wait
    )


@router.post("/smart")
async def trigger_smart_sync(
    request: SyncTriggerRequest | None = None,
    wait: bool = Query(default=False),
    sync_service: StashSyncService = Depends(get_sync_service),
) -> Any:
    """Incremental sync that first asks Stash which types changed at all."""
    request = request or SyncTriggerRequest()
    if sync_service.is_syncing():
        raise SyncInProgressError()
    return await _trigger(
        "smart_incremental", sync_service.smart_incremental_sync(request.instance_id), wait
    )


@router.post("/abort")
async def abort_sync(sync_service: StashSyncService = Depends(get_sync_service)) -> dict[str, Any]:
    return {"aborted": sync_service.abort()}


@router.get("/status")
async def get_sync_status(
    instance_id: str | None = None,
    sync_service: StashSyncService = Depends(get_sync_service),
) -> dict[str, Any]:
    return await sync_service.get_sync_status(instance_id)


@router.get("/scheduler")
async def get_scheduler_status(
    scheduler: SyncSchedulerWorker = Depends(get_scheduler),
) -> dict[str, Any]:
    """Background scheduler counters plus the interval it will use next."""
    return {**scheduler.get_stats(), "interval_minutes": await scheduler.get_interval_minutes()}


@router.put("/settings")
async def update_sync_settings(
    update: SyncSettingsUpdate,
    sync_service: StashSyncService = Depends(get_sync_service),
) -> dict[str, Any]:
    return await sync_service.update_sync_settings(**update.model_dump(exclude_none=True))


@router.post("/entity")
async def sync_single_entity(
    request: SingleEntitySyncRequest,
    sync_service: StashSyncService = Depends(get_sync_service),
) -> dict[str, Any]:
    """Apply one upstream change (scan hook / plugin webhook)."""
    entity_type = parse_entity_type(request.entity_type)
    changed = await sync_service.sync_single_entity(
        entity_type, request.entity_id, request.action, request.instance_id
    )
    return {"changed": changed}


@router.delete("/instances/{instance_id}/data")
async def clear_instance_data(
    instance_id: str,
    sync_service: StashSyncService = Depends(get_sync_service),
) -> dict[str, Any]:
    """Drop every cached row of one instance. The next full sync refills it."""
    if sync_service.is_syncing():
        raise SyncInProgressError()
    await sync_service.clear_instance_data(instance_id)
    return {"cleared": instance_id}
