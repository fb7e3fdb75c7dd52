"""Denormalize tags a scene inherits from its performers, studio and groups.

The result lands in stash_scenes.inherited_tag_ids (JSON array) so tag filters and
the exclusion cascade can match inherited tags without four extra joins.
"""

import json
import logging
import time
from collections import defaultdict
from collections.abc import Sequence
from typing import Any

from sqlalchemy import select, tuple_, update
from sqlalchemy.ext.asyncio import AsyncSession

from peekstash.domain.value_objects import composite_key
from peekstash.infrastructure.persistence.database import SessionScope
from peekstash.infrastructure.persistence.models import (
    GroupTagModel,
    PerformerTagModel,
    SceneGroupModel,
    SceneModel,
    ScenePerformerModel,
    SceneTagModel,
    StudioTagModel,
)

logger = logging.getLogger(__name__)

BATCH_SIZE = 500


class SceneTagInheritanceService:
    """Computes stash_scenes.inherited_tag_ids.

    Direct scene tags are never repeated in the inherited list. Every lookup is keyed
    by (id, instance), so a performer "5" on another instance never leaks its tags.
    """

    def __init__(self, session_scope: SessionScope) -> None:
        self._session_scope = session_scope

    async def compute_inherited_tags(self, instance_id: str | None = None) -> int:
        """Recompute inherited tags for every live scene (optionally one instance).

        Returns:
            Number of scenes processed
        """
        start = time.monotonic()
        async with self._session_scope() as session:
            stmt = select(SceneModel.id, SceneModel.stash_instance_id, SceneModel.studio_id).where(
                SceneModel.deleted_at.is_(None)
            )
            if instance_id is not None:
                stmt = stmt.where(SceneModel.stash_instance_id == instance_id)
            scenes = [tuple(row) for row in (await session.execute(stmt)).all()]

        for offset in range(0, len(scenes), BATCH_SIZE):
            batch = scenes[offset : offset + BATCH_SIZE]
            async with self._session_scope() as session:
                await self._process_batch(session, batch)
            processed = offset + len(batch)
            if processed % 5000 == 0:
                logger.info("Tag inheritance: %d/%d scenes", processed, len(scenes))

        logger.info(
            "Scene tag inheritance computed for %d scenes in %dms",
            len(scenes),
            int((time.monotonic() - start) * 1000),
        )
        return len(scenes)

    async def _process_batch(
        self, session: AsyncSession, scenes: Sequence[tuple[str, str, str | None]]
    ) -> None:
        scene_pairs = [(scene_id, inst) for scene_id, inst, _ in scenes]

        direct: dict[str, set[str]] = defaultdict(set)
        rows = await session.execute(
            select(SceneTagModel.scene_id, SceneTagModel.scene_instance_id, SceneTagModel.tag_id).where(
                tuple_(SceneTagModel.scene_id, SceneTagModel.scene_instance_id).in_(scene_pairs)
            )
        )
        for scene_id, inst, tag_id in rows:
            direct[composite_key(scene_id, inst)].add(tag_id)

        performers_by_scene: dict[str, list[str]] = defaultdict(list)
        performer_pairs: set[tuple[str, str]] = set()
        rows = await session.execute(
            select(
                ScenePerformerModel.scene_id,
                ScenePerformerModel.scene_instance_id,
                ScenePerformerModel.performer_id,
                ScenePerformerModel.performer_instance_id,
            ).where(
                tuple_(ScenePerformerModel.scene_id, ScenePerformerModel.scene_instance_id).in_(
                    scene_pairs
                )
            )
        )
        for scene_id, inst, performer_id, performer_inst in rows:
            performers_by_scene[composite_key(scene_id, inst)].append(
                composite_key(performer_id, performer_inst)
            )
            performer_pairs.add((performer_id, performer_inst))

        groups_by_scene: dict[str, list[str]] = defaultdict(list)
        group_pairs: set[tuple[str, str]] = set()
        rows = await session.execute(
            select(
                SceneGroupModel.scene_id,
                SceneGroupModel.scene_instance_id,
                SceneGroupModel.group_id,
                SceneGroupModel.group_instance_id,
            ).where(
                tuple_(SceneGroupModel.scene_id, SceneGroupModel.scene_instance_id).in_(scene_pairs)
            )
        )
        for scene_id, inst, group_id, group_inst in rows:
            groups_by_scene[composite_key(scene_id, inst)].append(
                composite_key(group_id, group_inst)
            )
            group_pairs.add((group_id, group_inst))

        # studio lives on the scene's own instance
        studio_pairs = {(studio_id, inst) for _, inst, studio_id in scenes if studio_id}

        tags_by_performer = await self._tags_by_owner(
            session, PerformerTagModel, "performer", performer_pairs
        )
        tags_by_group = await self._tags_by_owner(session, GroupTagModel, "group", group_pairs)
        tags_by_studio = await self._tags_by_owner(session, StudioTagModel, "studio", studio_pairs)

        for scene_id, inst, studio_id in scenes:
            key = composite_key(scene_id, inst)
            direct_tags = direct.get(key, set())
            inherited: list[str] = []
            seen: set[str] = set()

            sources: list[str] = []
            for performer_key in performers_by_scene.get(key, []):
                sources.extend(tags_by_performer.get(performer_key, []))
            if studio_id:
                sources.extend(tags_by_studio.get(composite_key(studio_id, inst), []))
            for group_key in groups_by_scene.get(key, []):
                sources.extend(tags_by_group.get(group_key, []))

            for tag_id in sources:
                if tag_id not in direct_tags and tag_id not in seen:
                    seen.add(tag_id)
                    inherited.append(tag_id)

            await session.execute(
                update(SceneModel)
                .where(SceneModel.id == scene_id, SceneModel.stash_instance_id == inst)
                .values(inherited_tag_ids=json.dumps(inherited))
            )

    @staticmethod
    async def _tags_by_owner(
        session: AsyncSession,
        model: type[Any],
        owner: str,
        pairs: set[tuple[str, str]],
    ) -> dict[str, list[str]]:
        if not pairs:
            return {}
        owner_id = getattr(model, f"{owner}_id")
        owner_inst = getattr(model, f"{owner}_instance_id")
        result: dict[str, list[str]] = defaultdict(list)
        pair_list = sorted(pairs)
        for offset in range(0, len(pair_list), BATCH_SIZE):
            chunk = pair_list[offset : offset + BATCH_SIZE]
            rows = await session.execute(
                select(owner_id, owner_inst, model.tag_id).where(
                    tuple_(owner_id, owner_inst).in_(chunk)
                )
            )
            for oid, oinst, tag_id in rows:
                result[composite_key(oid, oinst)].append(tag_id)
        return result
