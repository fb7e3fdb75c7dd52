# Hey future me - this service owns user_excluded_entities, the table every read query
# anti-joins against. Four reasons end up there:
#
#   restricted → admin content restrictions (EXCLUDE lists, or everything outside INCLUDE lists)
#   hidden     → the user hid the entity
#   cascade    → reachable from a restricted/hidden root (performer → its scenes, tag → ...)
#   empty      → an organizer with nothing visible left in it (gallery without visible images)
#
# Scoping: a root with instance_id "" is GLOBAL. It matches the id on every instance and its
# cascade rows are global too. A root with an instance id only follows junction rows on that
# instance and its cascade rows carry the TARGET's own instance. Never mix the two, or a hidden
# performer "5" on instance A hides scenes of an unrelated performer "5" on instance B.
"""Per-user exclusion computation (restrictions, hides, cascades, empty organizers)."""

import asyncio
import json
import logging
import time
from collections import defaultdict
from collections.abc import Iterable
from typing import Any, NamedTuple

from sqlalchemy import delete, exists, func, or_, select, true, tuple_
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from peekstash.domain.exceptions import ValidationException
from peekstash.domain.value_objects import (
    GLOBAL_INSTANCE,
    RESTRICTABLE_TYPES,
    EntityKey,
    EntityType,
    ExclusionReason,
    RestrictionMode,
    parse_filter_value,
)
from peekstash.infrastructure.persistence.batch_utils import DEFAULT_IN_CHUNK, chunked
from peekstash.infrastructure.persistence.database import SessionScope
from peekstash.infrastructure.persistence.entity_tables import (
    ENTITY_MODELS,
    GROUP_TAGS,
    IMAGE_GALLERIES,
    IMAGE_PERFORMERS,
    PERFORMER_TAGS,
    SCENE_GALLERIES,
    SCENE_GROUPS,
    SCENE_PERFORMERS,
    SCENE_TAGS,
    STUDIO_TAGS,
    JunctionTable,
)
from peekstash.infrastructure.persistence.models import (
    ImageModel,
    SceneModel,
    TagModel,
    UserContentRestrictionModel,
    UserEntityStatsModel,
    UserExcludedEntityModel,
    UserHiddenEntityModel,
    UserModel,
    utc_now,
)

logger = logging.getLogger(__name__)


class ExclusionRecord(NamedTuple):
    """One row destined for user_excluded_entities."""

    entity_type: EntityType
    entity_id: str
    instance_id: str
    reason: ExclusionReason

    @property
    def dedupe_key(self) -> tuple[str, str, str]:
        return (self.entity_type.value, self.entity_id, self.instance_id)


# Junction-based cascade rules: (root kind, junction, cascaded kind).
# Studio → scenes and tag → scenes-by-inherited-tag are column based and handled separately.
_JUNCTION_CASCADES: tuple[tuple[EntityType, JunctionTable, EntityType], ...] = (
    (EntityType.PERFORMER, SCENE_PERFORMERS, EntityType.SCENE),
    (EntityType.TAG, SCENE_TAGS, EntityType.SCENE),
    (EntityType.TAG, PERFORMER_TAGS, EntityType.PERFORMER),
    (EntityType.TAG, STUDIO_TAGS, EntityType.STUDIO),
    (EntityType.TAG, GROUP_TAGS, EntityType.GROUP),
    (EntityType.GROUP, SCENE_GROUPS, EntityType.SCENE),
    (EntityType.GALLERY, SCENE_GALLERIES, EntityType.SCENE),
    (EntityType.GALLERY, IMAGE_GALLERIES, EntityType.IMAGE),
)


def _sides(junction: JunctionTable, root: EntityType) -> tuple[Any, Any, Any, Any]:
    """(root id, root instance, other id, other instance) columns of a junction."""
    if junction.owner == root:
        return (
            junction.owner_id,
            junction.owner_instance_id,
            junction.target_id,
            junction.target_instance_id,
        )
    return (
        junction.target_id,
        junction.target_instance_id,
        junction.owner_id,
        junction.owner_instance_id,
    )


class _ExcludedSet:
    """In-memory view of exclusions computed so far, with global-id matching."""

    def __init__(self, records: Iterable[ExclusionRecord] = ()) -> None:
        self._keys: dict[EntityType, set[tuple[str, str]]] = defaultdict(set)
        for record in records:
            self.add(record.entity_type, record.entity_id, record.instance_id)

    def add(self, entity_type: EntityType, entity_id: str, instance_id: str) -> None:
        self._keys[entity_type].add((entity_id, instance_id))

    def contains(self, entity_type: EntityType, entity_id: str, instance_id: str) -> bool:
        keys = self._keys.get(entity_type)
        if not keys:
            return False
        return (entity_id, GLOBAL_INSTANCE) in keys or (entity_id, instance_id) in keys


class ExclusionComputationService:
    """Computes and stores the per-user exclusion set.

    recompute_for_user() is the source of truth. add_hidden_entity() is the fast path
    for a single hide so the user sees the effect immediately; the next full recompute
    (after every sync) reconciles whatever the fast path missed, e.g. empty organizers.
    """

    def __init__(self, session_scope: SessionScope) -> None:
        self._session_scope = session_scope
        self._pending: dict[int, asyncio.Task[None]] = {}

    # =========================================================================
    # FULL RECOMPUTE
    # =========================================================================

    async def recompute_for_user(self, user_id: int) -> None:
        """Rebuild every exclusion row and visible count for one user.

        Concurrent calls for the same user share one computation: the second caller
        awaits the task the first one started.
        """
        pending = self._pending.get(user_id)
        if pending is not None:
            logger.info("Exclusion recompute for user %s already running, waiting", user_id)
            await pending
            return

        task = asyncio.ensure_future(self._recompute(user_id))
        self._pending[user_id] = task
        try:
            await task
        finally:
            self._pending.pop(user_id, None)

    async def _recompute(self, user_id: int) -> None:
        start = time.monotonic()

        # Computation runs in a read-only session so the write lock is only held for
        # the final swap below. If the swap fails the previous rows stay in place.
        async with self._session_scope() as session:
            direct = await self._compute_direct_exclusions(session, user_id)
            cascade = await self._compute_cascade_exclusions(session, direct)
            empty = await self._compute_empty_exclusions(session, [*direct, *cascade])
        computed_ms = int((time.monotonic() - start) * 1000)

        records: list[ExclusionRecord] = []
        seen: set[tuple[str, str, str]] = set()
        for record in (*direct, *cascade, *empty):
            if record.dedupe_key not in seen:
                seen.add(record.dedupe_key)
                records.append(record)

        async with self._session_scope() as session:
            await session.execute(
                delete(UserExcludedEntityModel).where(UserExcludedEntityModel.user_id == user_id)
            )
            await self._insert_records(session, user_id, records)
            await self._update_entity_stats(session, user_id)

        logger.info(
            "Recomputed exclusions for user %s: %d rows "
            "(direct=%d cascade=%d empty=%d) in %dms (compute %dms)",
            user_id,
            len(records),
            len(direct),
            len(cascade),
            len(empty),
            int((time.monotonic() - start) * 1000),
            computed_ms,
        )

    async def recompute_all_users(self) -> dict[str, Any]:
        """Recompute every user; one user's failure does not stop the rest.

        Returns:
            {"success": int, "failed": int, "errors": [{"user_id", "error"}]}
        """
        async with self._session_scope() as session:
            user_ids = list((await session.execute(select(UserModel.id))).scalars().all())

        result: dict[str, Any] = {"success": 0, "failed": 0, "errors": []}
        for user_id in user_ids:
            try:
                await self.recompute_for_user(user_id)
                result["success"] += 1
            except Exception as e:
                logger.error(
                    "Failed to recompute exclusions for user %s: %s", user_id, e, exc_info=True
                )
                result["failed"] += 1
                result["errors"].append({"user_id": user_id, "error": str(e)})

        logger.info(
            "Exclusion recompute finished for %d users (%d ok, %d failed)",
            len(user_ids),
            result["success"],
            result["failed"],
        )
        return result

    # =========================================================================
    # DIRECT EXCLUSIONS
    # =========================================================================

    async def _compute_direct_exclusions(
        self, session: AsyncSession, user_id: int
    ) -> list[ExclusionRecord]:
        records: list[ExclusionRecord] = []

        restrictions = (
            await session.execute(
                select(UserContentRestrictionModel).where(
                    UserContentRestrictionModel.user_id == user_id
                )
            )
        ).scalars().all()

        for restriction in restrictions:
            entity_type = RESTRICTABLE_TYPES.get(restriction.entity_type)
            if entity_type is None:
                logger.warning(
                    "Ignoring restriction on unsupported type %s for user %s",
                    restriction.entity_type,
                    user_id,
                )
                continue
            listed = {parse_filter_value(str(v)) for v in json.loads(restriction.entity_ids or "[]")}

            if restriction.mode == RestrictionMode.EXCLUDE.value:
                for key in listed:
                    records.append(
                        ExclusionRecord(
                            entity_type, key.entity_id, key.instance_id, ExclusionReason.RESTRICTED
                        )
                    )
            elif restriction.mode == RestrictionMode.INCLUDE.value:
                # Everything live of that type not on the list. A bare id on the list
                # keeps that id on every instance.
                model = ENTITY_MODELS[entity_type]
                rows = await session.execute(
                    select(model.id, model.stash_instance_id).where(model.deleted_at.is_(None))
                )
                for entity_id, instance_id in rows:
                    if EntityKey(entity_id, instance_id) in listed:
                        continue
                    if EntityKey(entity_id, GLOBAL_INSTANCE) in listed:
                        continue
                    records.append(
                        ExclusionRecord(
                            entity_type, entity_id, instance_id, ExclusionReason.RESTRICTED
                        )
                    )

        hidden = await session.execute(
            select(
                UserHiddenEntityModel.entity_type,
                UserHiddenEntityModel.entity_id,
                UserHiddenEntityModel.instance_id,
            ).where(UserHiddenEntityModel.user_id == user_id)
        )
        for entity_type_value, entity_id, instance_id in hidden:
            try:
                entity_type = EntityType.from_string(entity_type_value)
            except ValueError:
                logger.warning("Skipping hidden entity with unknown type %s", entity_type_value)
                continue
            records.append(
                ExclusionRecord(
                    entity_type, entity_id, instance_id or GLOBAL_INSTANCE, ExclusionReason.HIDDEN
                )
            )

        return records

    # =========================================================================
    # CASCADE EXCLUSIONS
    # =========================================================================

    async def _compute_cascade_exclusions(
        self, session: AsyncSession, roots: list[ExclusionRecord]
    ) -> list[ExclusionRecord]:
        roots_by_type: dict[EntityType, list[EntityKey]] = defaultdict(list)
        for root in roots:
            roots_by_type[root.entity_type].append(EntityKey(root.entity_id, root.instance_id))

        records: list[ExclusionRecord] = []
        seen: set[tuple[str, str, str]] = set()

        def add(entity_type: EntityType, entity_id: str, instance_id: str) -> None:
            record = ExclusionRecord(entity_type, entity_id, instance_id, ExclusionReason.CASCADE)
            if record.dedupe_key not in seen:
                seen.add(record.dedupe_key)
                records.append(record)

        for root_type, junction, target_type in _JUNCTION_CASCADES:
            keys = roots_by_type.get(root_type)
            if keys:
                for entity_id, instance_id in await self._cascade_via_junction(
                    session, junction, root_type, keys
                ):
                    add(target_type, entity_id, instance_id)

        studios = roots_by_type.get(EntityType.STUDIO)
        if studios:
            for entity_id, instance_id in await self._scenes_of_studios(session, studios):
                add(EntityType.SCENE, entity_id, instance_id)

        tags = roots_by_type.get(EntityType.TAG)
        if tags:
            for entity_id, instance_id in await self._scenes_inheriting_tags(session, tags):
                add(EntityType.SCENE, entity_id, instance_id)

        return records

    @staticmethod
    def _split(keys: Iterable[EntityKey]) -> tuple[list[str], list[tuple[str, str]]]:
        global_ids = sorted({k.entity_id for k in keys if k.is_global})
        scoped = sorted({(k.entity_id, k.instance_id) for k in keys if not k.is_global})
        return global_ids, scoped

    async def _cascade_via_junction(
        self,
        session: AsyncSession,
        junction: JunctionTable,
        root_type: EntityType,
        keys: list[EntityKey],
    ) -> list[tuple[str, str]]:
        """Targets linked to the roots. Global roots yield global rows."""
        root_id, root_inst, other_id, other_inst = _sides(junction, root_type)
        global_ids, scoped = self._split(keys)
        result: list[tuple[str, str]] = []

        for chunk in chunked(global_ids, DEFAULT_IN_CHUNK):
            rows = await session.execute(select(other_id).distinct().where(root_id.in_(chunk)))
            result.extend((target_id, GLOBAL_INSTANCE) for target_id in rows.scalars())

        for pairs in chunked(scoped, DEFAULT_IN_CHUNK):
            rows = await session.execute(
                select(other_id, other_inst).distinct().where(tuple_(root_id, root_inst).in_(pairs))
            )
            result.extend((target_id, target_inst) for target_id, target_inst in rows)

        return result

    async def _scenes_of_studios(
        self, session: AsyncSession, keys: list[EntityKey]
    ) -> list[tuple[str, str]]:
        global_ids, scoped = self._split(keys)
        result: list[tuple[str, str]] = []

        for chunk in chunked(global_ids, DEFAULT_IN_CHUNK):
            rows = await session.execute(
                select(SceneModel.id).where(
                    SceneModel.studio_id.in_(chunk), SceneModel.deleted_at.is_(None)
                )
            )
            result.extend((scene_id, GLOBAL_INSTANCE) for scene_id in rows.scalars())

        for pairs in chunked(scoped, DEFAULT_IN_CHUNK):
            rows = await session.execute(
                select(SceneModel.id, SceneModel.stash_instance_id).where(
                    tuple_(SceneModel.studio_id, SceneModel.stash_instance_id).in_(pairs),
                    SceneModel.deleted_at.is_(None),
                )
            )
            result.extend((scene_id, inst) for scene_id, inst in rows)

        return result

    async def _scenes_inheriting_tags(
        self, session: AsyncSession, keys: list[EntityKey]
    ) -> list[tuple[str, str]]:
        """Live scenes whose inherited_tag_ids JSON array contains one of the tags."""
        global_ids, scoped = self._split(keys)
        result: list[tuple[str, str]] = []
        inherited = func.json_each(SceneModel.inherited_tag_ids).table_valued("value")

        def stmt(tag_ids: Iterable[str]) -> Any:
            return (
                select(SceneModel.id, SceneModel.stash_instance_id)
                .distinct()
                .select_from(SceneModel)
                .join(inherited, true())
                .where(SceneModel.deleted_at.is_(None), inherited.c.value.in_(list(tag_ids)))
            )

        for chunk in chunked(global_ids, DEFAULT_IN_CHUNK):
            rows = await session.execute(stmt(chunk))
            result.extend((scene_id, GLOBAL_INSTANCE) for scene_id, _ in rows)

        by_instance: dict[str, list[str]] = defaultdict(list)
        for tag_id, instance_id in scoped:
            by_instance[instance_id].append(tag_id)
        for instance_id, tag_ids in by_instance.items():
            for chunk in chunked(tag_ids, DEFAULT_IN_CHUNK):
                rows = await session.execute(
                    stmt(chunk).where(SceneModel.stash_instance_id == instance_id)
                )
                result.extend((scene_id, inst) for scene_id, inst in rows)

        return result

    # =========================================================================
    # EMPTY EXCLUSIONS
    # =========================================================================

    async def _compute_empty_exclusions(
        self, session: AsyncSession, prior: list[ExclusionRecord]
    ) -> list[ExclusionRecord]:
        """Organizers with nothing visible left, scoped to their own instance.

        prior holds the direct and cascade rows computed in this pass. The table still
        holds the OLD set at this point, so visibility is checked in memory.
        """
        excluded = _ExcludedSet(prior)
        records: list[ExclusionRecord] = []

        # visible contents, evaluated bottom-up
        scenes = await self._visible_rows(session, EntityType.SCENE, excluded)
        images = await self._visible_rows(session, EntityType.IMAGE, excluded)

        def empty(entity_type: EntityType, rows: set[tuple[str, str]], has_content: set) -> None:
            for entity_id, instance_id in sorted(rows - has_content):
                records.append(
                    ExclusionRecord(entity_type, entity_id, instance_id, ExclusionReason.EMPTY)
                )

        galleries = await self._visible_rows(session, EntityType.GALLERY, excluded)
        empty(
            EntityType.GALLERY,
            galleries,
            await self._containers_with(session, IMAGE_GALLERIES, EntityType.GALLERY, images),
        )

        performers = await self._visible_rows(session, EntityType.PERFORMER, excluded)
        performer_content = await self._containers_with(
            session, SCENE_PERFORMERS, EntityType.PERFORMER, scenes
        ) | await self._containers_with(session, IMAGE_PERFORMERS, EntityType.PERFORMER, images)
        empty(EntityType.PERFORMER, performers, performer_content)

        studios = await self._visible_rows(session, EntityType.STUDIO, excluded)
        studio_content = await self._studios_with(session, SceneModel, scenes) | (
            await self._studios_with(session, ImageModel, images)
        )
        empty(EntityType.STUDIO, studios, studio_content)

        groups = await self._visible_rows(session, EntityType.GROUP, excluded)
        empty(
            EntityType.GROUP,
            groups,
            await self._containers_with(session, SCENE_GROUPS, EntityType.GROUP, scenes),
        )

        # Tags use the visibility of the organizers above, minus the ones that just
        # turned empty. Parent tags stay visible for the hierarchy.
        empty_keys = {(r.entity_type, r.entity_id, r.instance_id) for r in records}
        visible_performers = {
            k for k in performers if (EntityType.PERFORMER, *k) not in empty_keys
        }
        visible_studios = {k for k in studios if (EntityType.STUDIO, *k) not in empty_keys}
        visible_groups = {k for k in groups if (EntityType.GROUP, *k) not in empty_keys}

        tags = await self._visible_rows(session, EntityType.TAG, excluded)
        tag_content = (
            await self._containers_with(session, SCENE_TAGS, EntityType.TAG, scenes)
            | await self._containers_with(session, PERFORMER_TAGS, EntityType.TAG, visible_performers)
            | await self._containers_with(session, STUDIO_TAGS, EntityType.TAG, visible_studios)
            | await self._containers_with(session, GROUP_TAGS, EntityType.TAG, visible_groups)
            | await self._parent_tags(session)
        )
        empty(EntityType.TAG, tags, tag_content)

        return records

    @staticmethod
    async def _visible_rows(
        session: AsyncSession, entity_type: EntityType, excluded: _ExcludedSet
    ) -> set[tuple[str, str]]:
        model = ENTITY_MODELS[entity_type]
        rows = await session.execute(
            select(model.id, model.stash_instance_id).where(model.deleted_at.is_(None))
        )
        return {
            (entity_id, inst)
            for entity_id, inst in rows
            if not excluded.contains(entity_type, entity_id, inst)
        }

    @staticmethod
    async def _containers_with(
        session: AsyncSession,
        junction: JunctionTable,
        container: EntityType,
        visible: set[tuple[str, str]],
    ) -> set[tuple[str, str]]:
        """Containers linked to at least one visible member through the junction."""
        if not visible:
            return set()
        container_id, container_inst, member_id, member_inst = _sides(junction, container)
        rows = await session.execute(
            select(container_id, container_inst, member_id, member_inst)
        )
        return {
            (cid, cinst) for cid, cinst, mid, minst in rows if (mid, minst) in visible
        }

    @staticmethod
    async def _studios_with(
        session: AsyncSession, model: type[Any], visible: set[tuple[str, str]]
    ) -> set[tuple[str, str]]:
        if not visible:
            return set()
        rows = await session.execute(
            select(model.id, model.stash_instance_id, model.studio_id).where(
                model.studio_id.is_not(None)
            )
        )
        return {(studio_id, inst) for item_id, inst, studio_id in rows if (item_id, inst) in visible}

    @staticmethod
    async def _parent_tags(session: AsyncSession) -> set[tuple[str, str]]:
        rows = await session.execute(
            select(TagModel.stash_instance_id, TagModel.parent_ids).where(
                TagModel.deleted_at.is_(None), TagModel.parent_ids.is_not(None)
            )
        )
        parents: set[tuple[str, str]] = set()
        for instance_id, parent_ids in rows:
            try:
                ids = json.loads(parent_ids)
            except (TypeError, ValueError):
                continue
            parents.update((str(parent_id), instance_id) for parent_id in ids or [])
        return parents

    # =========================================================================
    # WRITES
    # =========================================================================

    @staticmethod
    async def _insert_records(
        session: AsyncSession, user_id: int, records: list[ExclusionRecord]
    ) -> None:
        now = utc_now()
        rows = [
            {
                "user_id": user_id,
                "entity_type": r.entity_type.value,
                "entity_id": r.entity_id,
                "instance_id": r.instance_id,
                "reason": r.reason.value,
                "computed_at": now,
            }
            for r in records
        ]
        # 6 columns per row keeps each statement well under SQLite's parameter cap
        for chunk in chunked(rows, 150):
            await session.execute(
                sqlite_insert(UserExcludedEntityModel).values(list(chunk)).on_conflict_do_nothing()
            )

    @staticmethod
    async def _update_entity_stats(session: AsyncSession, user_id: int) -> None:
        """Store visible counts per type, per instance plus a "" total row."""
        now = utc_now()
        await session.execute(
            delete(UserEntityStatsModel).where(UserEntityStatsModel.user_id == user_id)
        )
        for entity_type, model in ENTITY_MODELS.items():
            not_excluded = ~exists().where(
                UserExcludedEntityModel.user_id == user_id,
                UserExcludedEntityModel.entity_type == entity_type.value,
                UserExcludedEntityModel.entity_id == model.id,
                or_(
                    UserExcludedEntityModel.instance_id == GLOBAL_INSTANCE,
                    UserExcludedEntityModel.instance_id == model.stash_instance_id,
                ),
            )
            rows = await session.execute(
                select(model.stash_instance_id, func.count())
                .where(model.deleted_at.is_(None), not_excluded)
                .group_by(model.stash_instance_id)
            )
            counts = dict(rows.tuples().all())
            counts[GLOBAL_INSTANCE] = sum(counts.values())
            session.add_all(
                UserEntityStatsModel(
                    user_id=user_id,
                    entity_type=entity_type.value,
                    instance_id=instance_id,
                    visible_count=count,
                    updated_at=now,
                )
                for instance_id, count in counts.items()
            )

    # =========================================================================
    # HIDE / UNHIDE FAST PATH
    # =========================================================================

    async def add_hidden_entity(
        self,
        user_id: int,
        entity_type: EntityType,
        entity_id: str,
        instance_id: str = GLOBAL_INSTANCE,
    ) -> int:
        """Write the hidden row and its cascades in one transaction.

        Returns:
            Number of cascade rows written
        """
        start = time.monotonic()
        key = EntityKey(entity_id, instance_id or GLOBAL_INSTANCE)

        async with self._session_scope() as session:
            await session.execute(
                sqlite_insert(UserExcludedEntityModel)
                .values(
                    user_id=user_id,
                    entity_type=entity_type.value,
                    entity_id=key.entity_id,
                    instance_id=key.instance_id,
                    reason=ExclusionReason.HIDDEN.value,
                    computed_at=utc_now(),
                )
                .on_conflict_do_update(
                    index_elements=["user_id", "entity_type", "entity_id", "instance_id"],
                    set_={"reason": ExclusionReason.HIDDEN.value},
                )
            )
            root = ExclusionRecord(entity_type, key.entity_id, key.instance_id, ExclusionReason.HIDDEN)
            cascades = await self._compute_cascade_exclusions(session, [root])
            await self._insert_records(session, user_id, cascades)

        logger.info(
            "User %s hid %s %s: %d cascade rows in %dms",
            user_id,
            entity_type.value,
            key,
            len(cascades),
            int((time.monotonic() - start) * 1000),
        )
        return len(cascades)

    async def remove_hidden_entity(
        self,
        user_id: int,
        entity_type: EntityType,
        entity_id: str,
        instance_id: str = GLOBAL_INSTANCE,
    ) -> None:
        """Drop the hide and recompute, so cascades only it produced go away."""
        async with self._session_scope() as session:
            await session.execute(
                delete(UserHiddenEntityModel).where(
                    UserHiddenEntityModel.user_id == user_id,
                    UserHiddenEntityModel.entity_type == entity_type.value,
                    UserHiddenEntityModel.entity_id == entity_id,
                    UserHiddenEntityModel.instance_id == (instance_id or GLOBAL_INSTANCE),
                )
            )
        logger.info("User %s unhid %s %s, recomputing", user_id, entity_type.value, entity_id)
        await self.recompute_for_user(user_id)

    # =========================================================================
    # READS
    # =========================================================================

    async def get_excluded_entities(
        self, user_id: int, entity_type: EntityType | None = None
    ) -> list[dict[str, Any]]:
        async with self._session_scope() as session:
            stmt = select(UserExcludedEntityModel).where(UserExcludedEntityModel.user_id == user_id)
            if entity_type is not None:
                stmt = stmt.where(UserExcludedEntityModel.entity_type == entity_type.value)
            stmt = stmt.order_by(
                UserExcludedEntityModel.entity_type,
                UserExcludedEntityModel.entity_id,
                UserExcludedEntityModel.instance_id,
            )
            return [
                {
                    "entity_type": row.entity_type,
                    "entity_id": row.entity_id,
                    "instance_id": row.instance_id,
                    "reason": row.reason,
                }
                for row in (await session.execute(stmt)).scalars().all()
            ]

    async def get_visible_counts(self, user_id: int) -> dict[str, dict[str, int]]:
        """{entity_type: {instance_id: visible_count}} as of the last recompute."""
        async with self._session_scope() as session:
            rows = await session.execute(
                select(
                    UserEntityStatsModel.entity_type,
                    UserEntityStatsModel.instance_id,
                    UserEntityStatsModel.visible_count,
                ).where(UserEntityStatsModel.user_id == user_id)
            )
            counts: dict[str, dict[str, int]] = defaultdict(dict)
            for entity_type, instance_id, visible in rows:
                counts[entity_type][instance_id] = visible
            return dict(counts)

    async def set_restrictions(self, user_id: int, restrictions: list[dict[str, Any]]) -> None:
        """Replace a user's content restrictions and recompute.

        Each item: {"entity_type": "tags", "mode": "EXCLUDE", "entity_ids": [...],
        "restrict_empty": False}. Ids may be "id" (every instance) or "id:instanceId".

        Raises:
            ValidationException: unknown type or mode
        """
        rows = []
        for item in restrictions:
            entity_type = item.get("entity_type")
            if entity_type not in RESTRICTABLE_TYPES:
                raise ValidationException(f"Restrictions are not supported for {entity_type!r}")
            try:
                mode = RestrictionMode(item.get("mode", RestrictionMode.EXCLUDE.value))
            except ValueError as e:
                raise ValidationException(f"Unknown restriction mode: {item.get('mode')}") from e
            rows.append(
                UserContentRestrictionModel(
                    user_id=user_id,
                    entity_type=entity_type,
                    mode=mode.value,
                    entity_ids=json.dumps([str(v) for v in item.get("entity_ids") or []]),
                    restrict_empty=bool(item.get("restrict_empty", False)),
                )
            )

        async with self._session_scope() as session:
            await session.execute(
                delete(UserContentRestrictionModel).where(
                    UserContentRestrictionModel.user_id == user_id
                )
            )
            session.add_all(rows)

        await self.recompute_for_user(user_id)
