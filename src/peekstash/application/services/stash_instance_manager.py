"""Registry of configured Stash instances and their clients.

One StashInstanceManager lives on app.state for the lifetime of the process.
It is rebuilt through reload() whenever an admin edits the instance table.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from peekstash.domain.exceptions import EntityNotFoundException, NoInstanceConfiguredError
from peekstash.infrastructure.integrations import StashClient
from peekstash.infrastructure.persistence.models import StashInstanceModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StashInstanceConfig:
    """Detached snapshot of one stash_instances row."""

    id: str
    name: str
    url: str
    api_key: str
    enabled: bool
    priority: int
    description: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: StashInstanceModel) -> "StashInstanceConfig":
        return cls(
            id=model.id,
            name=model.name,
            url=model.url,
            api_key=model.api_key or "",
            enabled=model.enabled,
            priority=model.priority,
            description=model.description,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


def strip_graphql_suffix(url: str) -> str:
    """http://host:9999/graphql -> http://host:9999 (for image and stream URLs)."""
    base = url.rstrip("/")
    if base.endswith("/graphql"):
        base = base[: -len("/graphql")]
    return base


class StashInstanceManager:
    """Resolves instance ids to StashClient handles.

    Hey future me - initialize() makes NO network calls. A dead Stash server must not
    keep the app from starting; the sync pass will log its StashApiError per type and
    move on. Instances are kept in ascending priority order, so "default" is simply
    the first entry.
    """

    def __init__(self, timeout: float = 30.0) -> None:
        self._timeout = timeout
        self._configs: dict[str, StashInstanceConfig] = {}
        self._clients: dict[str, StashClient] = {}
        self._initialized = False

    async def initialize(self, session: AsyncSession) -> None:
        """Load enabled instances ordered by priority and build one client each."""
        if self._initialized:
            logger.warning("StashInstanceManager already initialized, skipping")
            return

        result = await session.execute(
            select(StashInstanceModel)
            .where(StashInstanceModel.enabled.is_(True))
            .order_by(StashInstanceModel.priority.asc(), StashInstanceModel.created_at.asc())
        )
        for model in result.scalars().all():
            config = StashInstanceConfig.from_model(model)
            self._configs[config.id] = config
            self._clients[config.id] = StashClient(
                config.url, config.api_key, timeout=self._timeout
            )

        self._initialized = True
        logger.info(
            "Stash instance registry initialized with %d instance(s)",
            len(self._configs),
            extra={"instance_ids": list(self._configs)},
        )

    async def reload(self, session: AsyncSession) -> None:
        """Drop all clients and re-read the instance table."""
        await self.close()
        await self.initialize(session)

    async def close(self) -> None:
        """Close every HTTP client and forget the loaded instances."""
        for instance_id, client in self._clients.items():
            try:
                await client.close()
            except Exception as e:
                logger.warning("Failed to close client for instance %s: %s", instance_id, e)
        self._clients.clear()
        self._configs.clear()
        self._initialized = False

    def is_initialized(self) -> bool:
        return self._initialized

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get_default(self) -> StashClient:
        """Client of the highest-priority enabled instance.

        Raises:
            NoInstanceConfiguredError: when no instance is enabled
        """
        return self._clients[self.get_default_config().id]

    def get_default_config(self) -> StashInstanceConfig:
        if not self._configs:
            raise NoInstanceConfiguredError()
        return next(iter(self._configs.values()))

    def get(self, instance_id: str) -> StashClient | None:
        return self._clients.get(instance_id)

    def get_config(self, instance_id: str) -> StashInstanceConfig | None:
        return self._configs.get(instance_id)

    def get_required(self, instance_id: str) -> StashClient:
        """Like get(), but unknown ids raise EntityNotFoundException."""
        client = self._clients.get(instance_id)
        if client is None:
            raise EntityNotFoundException("StashInstance", instance_id)
        return client

    def get_all(self) -> list[tuple[str, StashClient]]:
        """(instance_id, client) pairs in priority order."""
        return list(self._clients.items())

    def get_all_configs(self) -> list[StashInstanceConfig]:
        return list(self._configs.values())

    def get_all_enabled(self) -> list[StashInstanceConfig]:
        # Only enabled rows are loaded; kept separate so callers read naturally.
        return [c for c in self._configs.values() if c.enabled]

    def _resolve_config(self, instance_id: str | None) -> StashInstanceConfig:
        if instance_id is None:
            return self.get_default_config()
        config = self._configs.get(instance_id)
        if config is None:
            raise EntityNotFoundException("StashInstance", instance_id)
        return config

    def get_base_url(self, instance_id: str | None = None) -> str:
        """Server root (GraphQL URL without /graphql) of an instance or the default."""
        return strip_graphql_suffix(self._resolve_config(instance_id).url)

    def get_api_key(self, instance_id: str | None = None) -> str:
        return self._resolve_config(instance_id).api_key

    def has_instances(self) -> bool:
        return bool(self._configs)

    def get_instance_count(self) -> int:
        return len(self._configs)
