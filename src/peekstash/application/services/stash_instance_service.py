"""Admin CRUD for stash_instances, plus first-run env migration."""

import logging
from collections import defaultdict
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from peekstash.application.services.stash_instance_manager import (
    StashInstanceConfig,
    StashInstanceManager,
)
from peekstash.config import Settings
from peekstash.domain.exceptions import EntityNotFoundException, ValidationException
from peekstash.infrastructure.integrations import StashApiError, StashClient
from peekstash.infrastructure.persistence.database import SessionScope
from peekstash.infrastructure.persistence.models import StashInstanceModel

logger = logging.getLogger(__name__)

_MUTABLE_FIELDS = ("name", "description", "url", "api_key", "enabled", "priority")


def _validate_url(url: str | None) -> str:
    if not url or not url.strip():
        raise ValidationException("Instance URL is required")
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        raise ValidationException(f"Instance URL must start with http:// or https://: {url}")
    return url


class StashInstanceService:
    """Create, update and delete Stash instances.

    Every mutation commits first and then reloads the registry, so the new client set
    is visible to the next sync pass. Deleting an instance does NOT purge its cached
    rows; callers that want that call StashSyncService.clear_instance_data() first.
    """

    def __init__(
        self,
        session_scope: SessionScope,
        manager: StashInstanceManager,
        timeout: float = 30.0,
    ) -> None:
        self._session_scope = session_scope
        self._manager = manager
        self._timeout = timeout

    async def _reload_manager(self) -> None:
        async with self._session_scope() as session:
            await self._manager.reload(session)

    async def list_instances(self) -> list[StashInstanceConfig]:
        """All instances, enabled or not, in priority order."""
        async with self._session_scope() as session:
            result = await session.execute(
                select(StashInstanceModel).order_by(
                    StashInstanceModel.priority.asc(), StashInstanceModel.created_at.asc()
                )
            )
            return [StashInstanceConfig.from_model(m) for m in result.scalars().all()]

    async def get_instance(self, instance_id: str) -> StashInstanceConfig:
        async with self._session_scope() as session:
            model = await session.get(StashInstanceModel, instance_id)
            if model is None:
                raise EntityNotFoundException("StashInstance", instance_id)
            return StashInstanceConfig.from_model(model)

    async def create_instance(
        self,
        name: str,
        url: str,
        api_key: str = "",
        description: str | None = None,
        enabled: bool = True,
        priority: int | None = None,
    ) -> StashInstanceConfig:
        """Insert a new instance. Without an explicit priority it goes last."""
        if not name or not name.strip():
            raise ValidationException("Instance name is required")
        url = _validate_url(url)

        async with self._session_scope() as session:
            if priority is None:
                max_priority = await session.scalar(
                    select(func.max(StashInstanceModel.priority))
                )
                priority = (max_priority + 1) if max_priority is not None else 0
            model = StashInstanceModel(
                name=name.strip(),
                url=url,
                api_key=api_key or "",
                description=description,
                enabled=enabled,
                priority=priority,
            )
            session.add(model)
            await session.flush()
            config = StashInstanceConfig.from_model(model)

        logger.info("Created Stash instance %s (%s)", config.name, config.id)
        await self._reload_manager()
        return config

    async def update_instance(self, instance_id: str, **changes: Any) -> StashInstanceConfig:
        """Apply a partial update. Unknown field names raise ValidationException."""
        unknown = set(changes) - set(_MUTABLE_FIELDS)
        if unknown:
            raise ValidationException(f"Unknown instance fields: {sorted(unknown)}")
        if "url" in changes:
            changes["url"] = _validate_url(changes["url"])
        if "name" in changes and not (changes["name"] or "").strip():
            raise ValidationException("Instance name is required")

        async with self._session_scope() as session:
            model = await session.get(StashInstanceModel, instance_id)
            if model is None:
                raise EntityNotFoundException("StashInstance", instance_id)
            for field_name, value in changes.items():
                setattr(model, field_name, value)
            await session.flush()
            config = StashInstanceConfig.from_model(model)

        logger.info("Updated Stash instance %s: %s", instance_id, sorted(changes))
        await self._reload_manager()
        return config

    async def delete_instance(self, instance_id: str) -> None:
        async with self._session_scope() as session:
            model = await session.get(StashInstanceModel, instance_id)
            if model is None:
                raise EntityNotFoundException("StashInstance", instance_id)
            await session.delete(model)

        logger.info("Deleted Stash instance %s", instance_id)
        await self._reload_manager()

    async def test_connection(self, url: str, api_key: str = "") -> dict[str, Any]:
        """Try a URL/key pair without saving it.

        Returns:
            {"success": bool, "version": str | None, "error": str | None}
        """
        url = _validate_url(url)
        client = StashClient(url, api_key, timeout=self._timeout)
        try:
            version = await client.get_version()
            return {"success": True, "version": version, "error": None}
        except StashApiError as e:
            logger.info("Connection test against %s failed: %s", url, e.message)
            return {"success": False, "version": None, "error": e.message}
        finally:
            await client.close()


# Hey future me - before multi-instance support the Stash server came from STASH__URL /
# STASH__API_KEY. On first start after upgrading, turn that into a real instance row so
# nobody has to re-enter it. Once ANY instance row exists the env values are ignored,
# even if the admin later deletes every instance.
async def migrate_env_instance(session: AsyncSession, settings: Settings) -> StashInstanceConfig | None:
    """Seed a "Default" instance from env settings when the table is empty."""
    if not settings.stash.url:
        return None
    existing = await session.scalar(select(func.count()).select_from(StashInstanceModel))
    if existing:
        return None

    model = StashInstanceModel(
        name="Default",
        description="Migrated from environment configuration",
        url=settings.stash.url,
        api_key=settings.stash.api_key or "",
        enabled=True,
        priority=0,
    )
    session.add(model)
    await session.flush()
    logger.info("Migrated env Stash configuration to instance %s", model.id)
    return StashInstanceConfig.from_model(model)


def disambiguate_entity_names(
    items: list[dict[str, Any]],
    instance_names: dict[str, str],
    name_field: str = "name",
    instance_field: str = "stash_instance_id",
) -> list[dict[str, Any]]:
    """Suffix names that occur under more than one instance with " (<instance name>)".

    Names unique across instances are left alone, as is a name repeated inside a
    single instance (that is Stash's own duplicate, not ours). Items are modified
    in place and also returned.
    """
    instances_by_name: dict[str, set[str]] = defaultdict(set)
    for item in items:
        name = item.get(name_field)
        if name:
            instances_by_name[name].add(item.get(instance_field) or "")

    for item in items:
        name = item.get(name_field)
        if name and len(instances_by_name[name]) > 1:
            instance_id = item.get(instance_field) or ""
            label = instance_names.get(instance_id)
            if label:
                item[name_field] = f"{name} ({label})"
    return items
