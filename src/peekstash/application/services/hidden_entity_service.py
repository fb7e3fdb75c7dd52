"""User-facing hide/unhide of cached entities."""

import logging
from collections import defaultdict
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from peekstash.application.services.exclusion_service import ExclusionComputationService
from peekstash.domain.exceptions import EntityNotFoundException
from peekstash.domain.value_objects import GLOBAL_INSTANCE, EntityType, composite_key
from peekstash.infrastructure.persistence.database import SessionScope
from peekstash.infrastructure.persistence.entity_tables import ENTITY_MODELS
from peekstash.infrastructure.persistence.models import UserHiddenEntityModel, UserModel, utc_now

logger = logging.getLogger(__name__)


def _display_name(entity: Any) -> str | None:
    return getattr(entity, "name", None) or getattr(entity, "title", None)


class UserHiddenEntityService:
    """Stores a user's hides and keeps the exclusion table in step.

    Hiding goes through the exclusion fast path (the user waits for the cascade rows).
    Unhiding always triggers a full recompute because we cannot tell which cascade rows
    were produced ONLY by the entity being unhidden.
    """

    def __init__(
        self, session_scope: SessionScope, exclusion_service: ExclusionComputationService
    ) -> None:
        self._session_scope = session_scope
        self._exclusions = exclusion_service

    async def hide_entity(
        self,
        user_id: int,
        entity_type: EntityType,
        entity_id: str,
        instance_id: str = GLOBAL_INSTANCE,
    ) -> None:
        """Hide an entity. Re-hiding refreshes hidden_at.

        Args:
            user_id: Owner of the hide
            entity_type: Kind of the hidden entity
            entity_id: Stash id
            instance_id: Scope the hide to one instance; "" hides the id everywhere

        Raises:
            EntityNotFoundException: if the user does not exist
        """
        instance_id = instance_id or GLOBAL_INSTANCE
        async with self._session_scope() as session:
            if await session.get(UserModel, user_id) is None:
                raise EntityNotFoundException("User", user_id)
            await session.execute(
                sqlite_insert(UserHiddenEntityModel)
                .values(
                    user_id=user_id,
                    entity_type=entity_type.value,
                    entity_id=entity_id,
                    instance_id=instance_id,
                    hidden_at=utc_now(),
                )
                .on_conflict_do_update(
                    index_elements=["user_id", "entity_type", "entity_id", "instance_id"],
                    set_={"hidden_at": utc_now()},
                )
            )

        await self._exclusions.add_hidden_entity(user_id, entity_type, entity_id, instance_id)

    async def unhide_entity(
        self,
        user_id: int,
        entity_type: EntityType,
        entity_id: str,
        instance_id: str = GLOBAL_INSTANCE,
    ) -> bool:
        """Remove a hide. Returns False when nothing was hidden under that key."""
        if not await self.is_hidden(user_id, entity_type, entity_id, instance_id):
            return False
        await self._exclusions.remove_hidden_entity(user_id, entity_type, entity_id, instance_id)
        return True

    async def unhide_all(self, user_id: int, entity_type: EntityType | None = None) -> int:
        """Remove every hide of the user (optionally one kind).

        Returns:
            Number of hides removed
        """
        async with self._session_scope() as session:
            stmt = delete(UserHiddenEntityModel).where(UserHiddenEntityModel.user_id == user_id)
            if entity_type is not None:
                stmt = stmt.where(UserHiddenEntityModel.entity_type == entity_type.value)
            result = await session.execute(stmt)
            removed = result.rowcount or 0

        if removed:
            logger.info("User %s unhid %d entities", user_id, removed)
            await self._exclusions.recompute_for_user(user_id)
        return removed

    async def is_hidden(
        self,
        user_id: int,
        entity_type: EntityType,
        entity_id: str,
        instance_id: str = GLOBAL_INSTANCE,
    ) -> bool:
        async with self._session_scope() as session:
            found = await session.scalar(
                select(UserHiddenEntityModel.id).where(
                    UserHiddenEntityModel.user_id == user_id,
                    UserHiddenEntityModel.entity_type == entity_type.value,
                    UserHiddenEntityModel.entity_id == entity_id,
                    UserHiddenEntityModel.instance_id == (instance_id or GLOBAL_INSTANCE),
                )
            )
            return found is not None

    async def get_hidden_entities(
        self, user_id: int, entity_type: EntityType | None = None
    ) -> list[dict[str, Any]]:
        """Hides with a display name from the cache, newest first.

        Hides whose entity no longer exists in the cache (deleted upstream, instance
        removed) are left out of the listing but kept in the table.
        """
        async with self._session_scope() as session:
            stmt = select(UserHiddenEntityModel).where(UserHiddenEntityModel.user_id == user_id)
            if entity_type is not None:
                stmt = stmt.where(UserHiddenEntityModel.entity_type == entity_type.value)
            hidden = (
                await session.execute(stmt.order_by(UserHiddenEntityModel.hidden_at.desc()))
            ).scalars().all()

            ids_by_type: dict[str, set[str]] = defaultdict(set)
            for row in hidden:
                ids_by_type[row.entity_type].add(row.entity_id)

            # keyed by (id, instance) and by bare id for global hides
            names: dict[str, dict[str, str | None]] = defaultdict(dict)
            for type_value, ids in ids_by_type.items():
                model = ENTITY_MODELS[EntityType.from_string(type_value)]
                entities = (
                    await session.execute(
                        select(model).where(model.id.in_(ids), model.deleted_at.is_(None))
                    )
                ).scalars().all()
                for entity in entities:
                    name = _display_name(entity)
                    names[type_value][composite_key(entity.id, entity.stash_instance_id)] = name
                    names[type_value].setdefault(entity.id, name)

            result: list[dict[str, Any]] = []
            for row in hidden:
                lookup = names.get(row.entity_type, {})
                key = row.entity_id if row.instance_id == GLOBAL_INSTANCE else composite_key(
                    row.entity_id, row.instance_id
                )
                if key not in lookup:
                    continue
                result.append(
                    {
                        "id": row.id,
                        "entity_type": row.entity_type,
                        "entity_id": row.entity_id,
                        "instance_id": row.instance_id,
                        "hidden_at": row.hidden_at,
                        "name": lookup[key],
                    }
                )
            return result
