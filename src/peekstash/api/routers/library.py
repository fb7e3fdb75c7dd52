"""Library browse endpoints: one surface for all seven kinds."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from peekstash.api.dependencies import (
    get_allowed_instance_ids,
    get_app_settings,
    get_database,
    get_instance_service,
    get_user_id,
    parse_entity_type,
)
from peekstash.application.queries import QueryOptions, QueryResult, get_query_builder
from peekstash.application.services import StashInstanceService, disambiguate_entity_names
from peekstash.config import Settings
from peekstash.domain.exceptions import EntityNotFoundException
from peekstash.domain.value_objects import EntityType
from peekstash.infrastructure.persistence.database import Database

logger = logging.getLogger(__name__)

router = APIRouter()

# kinds whose display field is "name" (the rest use title/path)
_NAMED_KINDS = (EntityType.PERFORMER, EntityType.STUDIO, EntityType.TAG, EntityType.GROUP)


class LibraryQuery(BaseModel):
    """Body of POST /library/{kind}/query. filters uses Stash's criterion shape."""

    sort: str | None = None
    sort_direction: str | None = Field(default=None, description="ASC or DESC")
    page: int = Field(default=1, ge=1)
    per_page: int | None = Field(default=None, ge=1)
    filters: dict[str, Any] = Field(default_factory=dict)
    instance_id: str | None = None
    search: str | None = None
    random_seed: int | None = None


async def _run(
    kind: str,
    body: LibraryQuery,
    user_id: int,
    allowed: list[str],
    db: Database,
    instances: StashInstanceService,
    settings: Settings,
) -> dict[str, Any]:
    entity_type = parse_entity_type(kind)
    per_page = min(body.per_page or settings.api.default_per_page, settings.api.max_per_page)
    options = QueryOptions(
        user_id=user_id,
        sort=body.sort,
        sort_direction=body.sort_direction,
        page=body.page,
        per_page=per_page,
        filters=body.filters,
        specific_instance_id=body.instance_id,
        allowed_instance_ids=allowed,
        search=body.search,
        random_seed=body.random_seed,
    )
    result: QueryResult = await get_query_builder(entity_type, db.session_scope).execute(options)

    if entity_type in _NAMED_KINDS and result.items:
        names = {c.id: c.name for c in await instances.list_instances()}
        disambiguate_entity_names(result.items, names)

    return {
        "entity_type": entity_type.value,
        "items": result.items,
        "total": result.total,
        "page": body.page,
        "per_page": per_page,
    }


@router.get("/{kind}")
async def browse(
    kind: str,
    sort: str | None = None,
    direction: str | None = None,
    page: int = Query(default=1, ge=1),
    per_page: int | None = Query(default=None, ge=1),
    search: str | None = None,
    instance_id: str | None = None,
    seed: int | None = None,
    user_id: int = Depends(get_user_id),
    allowed: list[str] = Depends(get_allowed_instance_ids),
    db: Database = Depends(get_database),
    instances: StashInstanceService = Depends(get_instance_service),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    """Simple paging/sorting/search without filters."""
    body = LibraryQuery(
        sort=sort,
        sort_direction=direction,
        page=page,
        per_page=per_page,
        search=search,
        instance_id=instance_id,
        random_seed=seed,
    )
    return await _run(kind, body, user_id, allowed, db, instances, settings)


@router.post("/{kind}/query")
async def query(
    kind: str,
    body: LibraryQuery,
    user_id: int = Depends(get_user_id),
    allowed: list[str] = Depends(get_allowed_instance_ids),
    db: Database = Depends(get_database),
    instances: StashInstanceService = Depends(get_instance_service),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    """Filtered query. Relationship filter values may be "id" or "id:instanceId"."""
    return await _run(kind, body, user_id, allowed, db, instances, settings)


@router.get("/{kind}/{entity_id}")
async def get_entity(
    kind: str,
    entity_id: str,
    instance_id: str,
    user_id: int = Depends(get_user_id),
    allowed: list[str] = Depends(get_allowed_instance_ids),
    db: Database = Depends(get_database),
) -> dict[str, Any]:
    """One visible entity by composite key. Excluded and deleted rows are 404."""
    entity_type = parse_entity_type(kind)
    if allowed and instance_id not in allowed:
        raise EntityNotFoundException(entity_type.value, entity_id)
    item = await get_query_builder(entity_type, db.session_scope).get_by_key(
        user_id, entity_id, instance_id
    )
    if item is None:
        raise EntityNotFoundException(entity_type.value, entity_id)
    return item
