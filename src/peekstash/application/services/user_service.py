"""Minimal user records and their allowed-instance sets."""

import logging
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from peekstash.domain.exceptions import (
    DuplicateEntityException,
    EntityNotFoundException,
    ValidationException,
)
from peekstash.infrastructure.persistence.database import SessionScope
from peekstash.infrastructure.persistence.models import (
    StashInstanceModel,
    UserModel,
    UserStashInstanceModel,
)

logger = logging.getLogger(__name__)


def _to_dict(user: UserModel) -> dict[str, Any]:
    return {"id": user.id, "username": user.username, "created_at": user.created_at}


# Hey future me - there is no login here. Users exist so per-user tables have something to
# reference (FKs are enforced, ondelete CASCADE). Whoever fronts this API decides who may
# create or impersonate them.
class UserService:
    """Create, list and delete users; manage which instances each may browse."""

    def __init__(self, session_scope: SessionScope) -> None:
        self._session_scope = session_scope

    async def create_user(self, username: str) -> dict[str, Any]:
        username = (username or "").strip()
        if not username:
            raise ValidationException("Username is required")
        try:
            async with self._session_scope() as session:
                user = UserModel(username=username)
                session.add(user)
                await session.flush()
                data = _to_dict(user)
        except IntegrityError as e:
            raise DuplicateEntityException("User", username) from e
        logger.info("Created user %s (%s)", username, data["id"])
        return data

    async def list_users(self) -> list[dict[str, Any]]:
        async with self._session_scope() as session:
            users = (await session.scalars(select(UserModel).order_by(UserModel.id))).all()
            return [_to_dict(u) for u in users]

    async def get_user(self, user_id: int) -> dict[str, Any]:
        async with self._session_scope() as session:
            user = await session.get(UserModel, user_id)
            if user is None:
                raise EntityNotFoundException("User", user_id)
            return _to_dict(user)

    async def delete_user(self, user_id: int) -> None:
        """Delete the user; the database cascades to every per-user row."""
        async with self._session_scope() as session:
            user = await session.get(UserModel, user_id)
            if user is None:
                raise EntityNotFoundException("User", user_id)
            await session.delete(user)
        logger.info("Deleted user %s", user_id)

    async def get_allowed_instances(self, user_id: int) -> list[str]:
        """Explicitly selected instance ids. Empty means every enabled instance."""
        async with self._session_scope() as session:
            if await session.get(UserModel, user_id) is None:
                raise EntityNotFoundException("User", user_id)
            rows = await session.scalars(
                select(UserStashInstanceModel.instance_id)
                .where(UserStashInstanceModel.user_id == user_id)
                .order_by(UserStashInstanceModel.instance_id)
            )
            return list(rows.all())

    async def set_allowed_instances(self, user_id: int, instance_ids: list[str]) -> list[str]:
        """Replace the user's instance selection.

        Raises:
            EntityNotFoundException: unknown user
            ValidationException: an instance id that does not exist
        """
        wanted = sorted(set(instance_ids))
        async with self._session_scope() as session:
            if await session.get(UserModel, user_id) is None:
                raise EntityNotFoundException("User", user_id)
            if wanted:
                known = set(
                    (
                        await session.scalars(
                            select(StashInstanceModel.id).where(StashInstanceModel.id.in_(wanted))
                        )
                    ).all()
                )
                missing = [i for i in wanted if i not in known]
                if missing:
                    raise ValidationException(f"Unknown Stash instances: {missing}")

            await session.execute(
                delete(UserStashInstanceModel).where(UserStashInstanceModel.user_id == user_id)
            )
            session.add_all(
                UserStashInstanceModel(user_id=user_id, instance_id=instance_id)
                for instance_id in wanted
            )

        logger.info("User %s may browse %s", user_id, wanted or "all enabled instances")
        return wanted
