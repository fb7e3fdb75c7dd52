# Hey future me - this is the heart of peekstash. It mirrors seven entity kinds from every
# enabled Stash instance into the local SQLite cache.
#
# Three entry points:
# - full_sync()              → fetch everything, then soft-delete what vanished upstream
# - incremental_sync()       → per type: fetch records with updated_at > cursor, then cleanup
# - smart_incremental_sync() → like incremental, but first asks Stash "how many changed?"
#                              (per_page=0) and skips types with zero changes
#
# Cursors are UPSTREAM timestamps (max updated_at Stash gave us), stored per (instance, type)
# in sync_state. A type that fails keeps its old cursor and records last_error, so the next
# pass retries from where it really left off. Only ONE pass runs per process at a time.
"""Stash sync service - mirrors Stash instances into the local cache."""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from peekstash.application.services.sync.entity_handlers import get_handler
from peekstash.application.services.sync.helpers import (
    format_timestamp_for_stash,
    get_most_recent_timestamp,
    max_updated_at,
)
from peekstash.config import SyncConfig
from peekstash.domain.exceptions import SyncAbortedError, SyncInProgressError
from peekstash.domain.value_objects import SYNC_ORDER, EntityType, SyncAction, SyncType
from peekstash.infrastructure.integrations import StashApiError, StashClient
from peekstash.infrastructure.persistence.batch_utils import DEFAULT_IN_CHUNK, chunked
from peekstash.infrastructure.persistence.database import SessionScope
from peekstash.infrastructure.persistence.entity_tables import ALL_JUNCTIONS, ENTITY_MODELS
from peekstash.infrastructure.persistence.models import (
    PerformerTagModel,
    SceneModel,
    ScenePerformerModel,
    SyncSettingsModel,
    SyncStateModel,
    TagModel,
    utc_now,
)
from peekstash.infrastructure.persistence.retry import with_db_retry

if TYPE_CHECKING:
    from peekstash.application.services.entity_image_count_service import EntityImageCountService
    from peekstash.application.services.exclusion_service import ExclusionComputationService
    from peekstash.application.services.image_gallery_inheritance_service import (
        ImageGalleryInheritanceService,
    )
    from peekstash.application.services.stash_instance_manager import StashInstanceManager
    from peekstash.application.services.tag_inheritance_service import (
        SceneTagInheritanceService,
    )
    from peekstash.application.services.user_stats_service import UserStatsService

logger = logging.getLogger(__name__)

DEFAULT_SYNC_SETTINGS: dict[str, Any] = {
    "sync_interval_minutes": 60,
    "enable_scan_subscription": True,
    "enable_plugin_webhook": False,
}


@dataclass
class SyncResult:
    """Outcome of syncing one entity type on one instance."""

    entity_type: EntityType
    instance_id: str
    synced: int = 0
    deleted: int = 0
    duration_ms: int = 0
    error: str | None = None
    max_updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["entity_type"] = self.entity_type.value
        return data


class StashSyncService:
    """Full, incremental and single-entity sync for all configured instances."""

    def __init__(
        self,
        session_scope: SessionScope,
        manager: "StashInstanceManager",
        config: SyncConfig | None = None,
        tag_inheritance: "SceneTagInheritanceService | None" = None,
        stats_service: "UserStatsService | None" = None,
        exclusion_service: "ExclusionComputationService | None" = None,
        gallery_inheritance: "ImageGalleryInheritanceService | None" = None,
        image_counts: "EntityImageCountService | None" = None,
    ) -> None:
        self._session_scope = session_scope
        self._manager = manager
        self._config = config or SyncConfig()
        self._tag_inheritance = tag_inheritance
        self._stats_service = stats_service
        self._exclusion_service = exclusion_service
        self._gallery_inheritance = gallery_inheritance
        self._image_counts = image_counts

        self._lock = asyncio.Lock()
        self._in_progress = False
        self._abort_requested = False

    # =========================================================================
    # PASS CONTROL
    # =========================================================================

    def is_syncing(self) -> bool:
        return self._in_progress

    def abort(self) -> bool:
        """Ask the running pass to stop at the next page boundary.

        Returns:
            True if a pass was running
        """
        if not self._in_progress:
            return False
        self._abort_requested = True
        logger.info("Sync abort requested")
        return True

    def _check_abort(self) -> None:
        if self._abort_requested:
            raise SyncAbortedError()

    async def _begin_pass(self) -> None:
        # Hey future me - the flag flip happens under the lock so two triggers arriving in
        # the same tick (scheduler + admin button) cannot both see "not running".
        async with self._lock:
            if self._in_progress:
                raise SyncInProgressError()
            self._in_progress = True
            self._abort_requested = False

    def _end_pass(self) -> None:
        self._in_progress = False
        self._abort_requested = False

    def _target_instances(self, instance_id: str | None) -> list[str]:
        if instance_id is not None:
            self._manager.get_required(instance_id)
            return [instance_id]
        return [config.id for config in self._manager.get_all_enabled()]

    def _client(self, instance_id: str) -> StashClient:
        return self._manager.get_required(instance_id)

    # =========================================================================
    # PUBLIC SYNC ENTRY POINTS
    # =========================================================================

    async def full_sync(
        self, instance_id: str | None = None, entity_type: EntityType | None = None
    ) -> list[SyncResult]:
        """Fetch everything from one instance (or all enabled ones) and clean up deletions.

        Raises:
            SyncInProgressError: another pass is running
            SyncAbortedError: abort() was called during the pass
            EntityNotFoundException: instance_id is not a loaded instance
        """
        await self._begin_pass()
        try:
            types = (entity_type,) if entity_type is not None else SYNC_ORDER
            results = await self._run_over_instances(
                "full", instance_id, lambda inst: self._full_sync_instance(inst, types)
            )
            await self._post_process(results, always_inherit=True)
            return results
        finally:
            self._end_pass()

    async def incremental_sync(self, instance_id: str | None = None) -> list[SyncResult]:
        """Fetch records changed since each type's cursor. Skips if a pass is running."""
        return await self._run_incremental(instance_id, smart=False)

    async def smart_incremental_sync(self, instance_id: str | None = None) -> list[SyncResult]:
        """Incremental sync that skips types Stash reports as unchanged."""
        return await self._run_incremental(instance_id, smart=True)

    async def _run_incremental(self, instance_id: str | None, smart: bool) -> list[SyncResult]:
        label = "smart incremental" if smart else "incremental"
        try:
            await self._begin_pass()
        except SyncInProgressError:
            logger.warning("Sync already in progress, skipping %s sync", label)
            return []
        try:
            results = await self._run_over_instances(
                label,
                instance_id,
                lambda inst: self._incremental_sync_instance(inst, smart=smart),
            )
            await self._post_process(results, always_inherit=False)
            return results
        finally:
            self._end_pass()

    async def _run_over_instances(
        self, label: str, instance_id: str | None, run: Any
    ) -> list[SyncResult]:
        instances = self._target_instances(instance_id)
        if not instances:
            logger.warning("No enabled Stash instances to sync")
            return []

        logger.info("Starting %s sync for %d instance(s)", label, len(instances))
        start = time.monotonic()
        results: list[SyncResult] = []
        for inst in instances:
            try:
                results.extend(await run(inst))
            except SyncAbortedError:
                logger.info("%s sync aborted", label.capitalize())
                raise
            except Exception as e:
                if instance_id is not None:
                    logger.error("%s sync failed for instance %s: %s", label, inst, e)
                    raise
                # Multi-instance pass: one broken instance must not block the others.
                logger.error(
                    "%s sync failed for instance %s, continuing with next",
                    label,
                    inst,
                    exc_info=True,
                )

        logger.info(
            "%s sync completed in %dms",
            label.capitalize(),
            int((time.monotonic() - start) * 1000),
            extra={
                "results": [
                    {"type": r.entity_type.value, "synced": r.synced, "deleted": r.deleted}
                    for r in results
                ]
            },
        )
        return results

    async def _full_sync_instance(
        self, instance_id: str, types: tuple[EntityType, ...]
    ) -> list[SyncResult]:
        results: list[SyncResult] = []
        for entity_type in types:
            self._check_abort()
            result = await self._sync_type_isolated(entity_type, instance_id, since=None)
            if result.error is None:
                result.deleted = await self.cleanup_deleted_entities(entity_type, instance_id)
            await self.save_sync_state(instance_id, SyncType.FULL, result)
            results.append(result)
        return results

    async def _incremental_sync_instance(self, instance_id: str, smart: bool) -> list[SyncResult]:
        results: list[SyncResult] = []
        for entity_type in SYNC_ORDER:
            self._check_abort()
            state = await self._get_sync_state(instance_id, entity_type)
            cursor = (
                get_most_recent_timestamp(state.last_full_sync, state.last_incremental_sync)
                if state is not None
                else None
            )

            if cursor is None:
                logger.info("%s: no previous sync, syncing all", entity_type.plural)
                result = await self._sync_type_isolated(entity_type, instance_id, since=None)
                await self.save_sync_state(instance_id, SyncType.FULL, result)
                results.append(result)
                continue

            if smart:
                change_count = await self._get_change_count(entity_type, cursor, instance_id)
                if change_count == 0:
                    logger.info("%s: no changes since %s, skipping", entity_type.plural, cursor)
                    results.append(SyncResult(entity_type, instance_id))
                    continue
                logger.info(
                    "%s: %d changes since %s, syncing", entity_type.plural, change_count, cursor
                )

            result = await self._sync_type_isolated(entity_type, instance_id, since=cursor)
            await self.save_sync_state(instance_id, SyncType.INCREMENTAL, result)
            results.append(result)

        # Deletions never show up in an updated_at filter, so every pass ends with cleanup.
        total_deleted = 0
        for result in results:
            self._check_abort()
            if result.error is not None:
                continue
            result.deleted = await self.cleanup_deleted_entities(result.entity_type, instance_id)
            total_deleted += result.deleted
        if total_deleted:
            logger.info("Cleanup complete: %d entities marked as deleted", total_deleted)
        return results

    async def _post_process(self, results: list[SyncResult], always_inherit: bool) -> None:
        """Derived data that depends on several types being in place."""
        if not results:
            return
        self._check_abort()

        scenes_changed = any(
            r.entity_type == EntityType.SCENE and r.synced > 0 for r in results
        )
        if self._tag_inheritance is not None and (always_inherit or scenes_changed):
            logger.info("Computing inherited tags for scenes...")
            await self._tag_inheritance.compute_inherited_tags()

        images_changed = any(
            r.entity_type in (EntityType.IMAGE, EntityType.GALLERY) and r.synced > 0
            for r in results
        )
        if always_inherit or images_changed:
            # inherited junction rows must exist before images are counted
            if self._gallery_inheritance is not None:
                await self._gallery_inheritance.apply_gallery_inheritance()
            if self._image_counts is not None:
                await self._image_counts.rebuild_all_image_counts()

        if self._stats_service is not None:
            logger.info("Rebuilding user stats after sync...")
            await self._stats_service.rebuild_all_stats()

        await self.compute_tag_scene_counts_via_performers()

        if self._exclusion_service is not None:
            logger.info("Recomputing user exclusions after sync...")
            await self._exclusion_service.recompute_all_users()

    # =========================================================================
    # PER-TYPE SYNC
    # =========================================================================

    async def _sync_type_isolated(
        self, entity_type: EntityType, instance_id: str, since: str | None
    ) -> SyncResult:
        """Run one type; upstream failures are recorded on the result instead of raised."""
        try:
            return await self.sync_entity_type(entity_type, instance_id, since)
        except StashApiError as e:
            logger.warning(
                "Failed to sync %s from instance %s: %s",
                entity_type.plural,
                instance_id,
                e.message,
            )
            return SyncResult(entity_type, instance_id, error=e.message)

    async def sync_entity_type(
        self, entity_type: EntityType, instance_id: str, since: str | None = None
    ) -> SyncResult:
        """Page through one type and upsert every page.

        Args:
            entity_type: Kind to sync
            instance_id: Source instance
            since: Raw cursor; None fetches everything
        """
        client = self._client(instance_id)
        handler = get_handler(entity_type)
        start = time.monotonic()
        updated_after = format_timestamp_for_stash(since) if since else None

        result = SyncResult(entity_type, instance_id)
        page = 1
        while True:
            self._check_abort()
            stash_page = await client.find_entities(
                entity_type, page=page, per_page=self._config.page_size, updated_after=updated_after
            )
            items = stash_page.items
            if not items:
                break

            batch_max = max_updated_at(items)
            if batch_max and (result.max_updated_at is None or batch_max > result.max_updated_at):
                result.max_updated_at = batch_max

            await self._write_page(entity_type, items, instance_id)
            result.synced += len(items)
            logger.debug(
                "%s: %d/%d", entity_type.plural, result.synced, stash_page.count
            )
            if result.synced >= stash_page.count:
                break
            page += 1

        result.duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "%s synced: %d in %.1fs",
            entity_type.plural.capitalize(),
            result.synced,
            result.duration_ms / 1000,
            extra={"instance_id": instance_id},
        )
        return result

    @with_db_retry(max_attempts=3)
    async def _write_page(
        self, entity_type: EntityType, items: list[dict[str, Any]], instance_id: str
    ) -> None:
        async with self._session_scope() as session:
            await get_handler(entity_type).write_batch(session, items, instance_id)

    async def _get_change_count(
        self, entity_type: EntityType, since: str, instance_id: str
    ) -> int:
        """Upstream change count; 1 when the count request fails so the type is synced anyway."""
        try:
            return await self._client(instance_id).count_changed_since(
                entity_type, format_timestamp_for_stash(since)
            )
        except Exception as e:
            logger.warning("Failed to get change count for %s: %s", entity_type.plural, e)
            return 1

    # =========================================================================
    # DELETION DETECTION
    # =========================================================================

    async def cleanup_deleted_entities(self, entity_type: EntityType, instance_id: str) -> int:
        """Soft-delete live rows of ``instance_id`` whose id Stash no longer lists.

        Best effort: any failure (including a response without a numeric count) is
        logged and reported as 0 deletions, leaving the cache untouched.
        """
        plural = entity_type.plural
        logger.info("Checking for deleted %s...", plural)
        start = time.monotonic()
        try:
            client = self._client(instance_id)
            stash_ids: set[str] = set()
            fetched = 0
            page = 1
            while True:
                self._check_abort()
                id_page = await client.find_entity_ids(
                    entity_type, page=page, per_page=self._config.cleanup_page_size
                )
                page_ids = [str(item["id"]) for item in id_page.items if item.get("id")]
                stash_ids.update(page_ids)
                fetched += len(page_ids)
                if fetched >= id_page.count or not page_ids:
                    break
                page += 1

            self._check_abort()
            model = ENTITY_MODELS[entity_type]
            async with self._session_scope() as session:
                local_ids = (
                    await session.scalars(
                        select(model.id).where(
                            model.stash_instance_id == instance_id, model.deleted_at.is_(None)
                        )
                    )
                ).all()
                to_delete = [entity_id for entity_id in local_ids if entity_id not in stash_ids]
                if not to_delete:
                    logger.info("No deleted %s found", plural)
                    return 0

                ratio = self._config.max_delete_ratio
                if ratio > 0 and len(to_delete) > ratio * len(local_ids):
                    logger.warning(
                        "Refusing to soft-delete %d of %d %s (guard ratio %.2f)",
                        len(to_delete),
                        len(local_ids),
                        plural,
                        ratio,
                    )
                    return 0

                now = utc_now()
                for id_chunk in chunked(to_delete, DEFAULT_IN_CHUNK):
                    await session.execute(
                        update(model)
                        .where(
                            model.id.in_(id_chunk),
                            model.stash_instance_id == instance_id,
                            model.deleted_at.is_(None),
                        )
                        .values(deleted_at=now)
                    )

            logger.info(
                "Marked %d %s as deleted in %.1fs",
                len(to_delete),
                plural,
                time.monotonic() - start,
            )
            return len(to_delete)
        except SyncAbortedError:
            raise
        except Exception as e:
            logger.error("Failed to cleanup deleted %s: %s", plural, e)
            return 0

    # =========================================================================
    # SINGLE ENTITY (plugin webhooks / scan hooks)
    # =========================================================================

    async def sync_single_entity(
        self,
        entity_type: EntityType,
        entity_id: str,
        action: SyncAction,
        instance_id: str | None = None,
    ) -> bool:
        """Apply one upstream change without a full pass.

        Returns:
            True if a row was written or soft-deleted
        """
        if instance_id is None:
            enabled = self._manager.get_all_enabled()
            if not enabled:
                logger.warning("Cannot sync single entity: no enabled Stash instances")
                return False
            instance_id = enabled[0].id

        logger.info(
            "Single entity sync",
            extra={
                "entity_type": entity_type.value,
                "entity_id": entity_id,
                "action": action.value,
                "instance_id": instance_id,
            },
        )
        if action == SyncAction.DELETE:
            return await self.soft_delete_entity(entity_type, entity_id, instance_id)

        items = await self._client(instance_id).find_entities_by_ids(entity_type, [entity_id])
        if not items:
            logger.info("%s %s not found upstream", entity_type.value, entity_id)
            return False
        await self._write_page(entity_type, items, instance_id)
        return True

    async def soft_delete_entity(
        self, entity_type: EntityType, entity_id: str, instance_id: str
    ) -> bool:
        model = ENTITY_MODELS[entity_type]
        async with self._session_scope() as session:
            result = await session.execute(
                update(model)
                .where(
                    model.id == entity_id,
                    model.stash_instance_id == instance_id,
                    model.deleted_at.is_(None),
                )
                .values(deleted_at=utc_now())
            )
            return (result.rowcount or 0) > 0

    # =========================================================================
    # SYNC STATE
    # =========================================================================

    async def _get_sync_state(
        self, instance_id: str, entity_type: EntityType
    ) -> SyncStateModel | None:
        async with self._session_scope() as session:
            return await session.scalar(
                select(SyncStateModel).where(
                    SyncStateModel.stash_instance_id == instance_id,
                    SyncStateModel.entity_type == entity_type.value,
                )
            )

    # Hey future me - the cursor only moves when this pass actually saw records
    # (max_updated_at). A pass that synced nothing has no trustworthy upstream timestamp,
    # and wall clock time is NOT comparable with Stash's local-time updated_at.
    # The *_actual wall-clock columns are still stamped on every successful pass, so a
    # type that is genuinely empty upstream counts as synced.
    async def save_sync_state(
        self, instance_id: str, sync_type: SyncType, result: SyncResult
    ) -> None:
        async with self._session_scope() as session:
            state = await session.scalar(
                select(SyncStateModel).where(
                    SyncStateModel.stash_instance_id == instance_id,
                    SyncStateModel.entity_type == result.entity_type.value,
                )
            )
            if state is None:
                state = SyncStateModel(
                    stash_instance_id=instance_id,
                    entity_type=result.entity_type.value,
                    total_entities=result.synced,
                )
                session.add(state)

            state.last_sync_count = result.synced
            state.last_sync_duration_ms = result.duration_ms
            state.last_error = result.error

            if result.error is not None:
                return

            now = utc_now()
            if sync_type == SyncType.FULL:
                state.last_full_sync_actual = now
                state.total_entities = result.synced
                if result.max_updated_at:
                    state.last_full_sync = result.max_updated_at
            else:
                state.last_incremental_sync_actual = now
                if result.max_updated_at:
                    state.last_incremental_sync = result.max_updated_at
                    state.total_entities = result.synced

    async def get_sync_status(self, instance_id: str | None = None) -> dict[str, Any]:
        """{states, settings, in_progress} for the admin status page."""
        async with self._session_scope() as session:
            stmt = select(SyncStateModel).order_by(
                SyncStateModel.stash_instance_id, SyncStateModel.entity_type
            )
            if instance_id is not None:
                stmt = stmt.where(SyncStateModel.stash_instance_id == instance_id)
            states = (await session.scalars(stmt)).all()
            settings_row = await session.get(SyncSettingsModel, 1)

        settings = dict(DEFAULT_SYNC_SETTINGS)
        if settings_row is not None:
            settings = {
                "sync_interval_minutes": settings_row.sync_interval_minutes,
                "enable_scan_subscription": settings_row.enable_scan_subscription,
                "enable_plugin_webhook": settings_row.enable_plugin_webhook,
            }

        return {
            "states": [
                {
                    "stash_instance_id": s.stash_instance_id,
                    "entity_type": s.entity_type,
                    "last_full_sync": s.last_full_sync,
                    "last_incremental_sync": s.last_incremental_sync,
                    "last_full_sync_actual": s.last_full_sync_actual,
                    "last_incremental_sync_actual": s.last_incremental_sync_actual,
                    "last_sync_count": s.last_sync_count,
                    "last_sync_duration_ms": s.last_sync_duration_ms,
                    "last_error": s.last_error,
                    "total_entities": s.total_entities,
                }
                for s in states
            ],
            "settings": settings,
            "in_progress": self._in_progress,
        }

    async def update_sync_settings(self, **changes: Any) -> dict[str, Any]:
        """Partial update of the singleton sync_settings row."""
        async with self._session_scope() as session:
            row = await session.get(SyncSettingsModel, 1)
            if row is None:
                row = SyncSettingsModel(id=1, **DEFAULT_SYNC_SETTINGS)
                session.add(row)
            for key, value in changes.items():
                if key not in DEFAULT_SYNC_SETTINGS:
                    raise ValueError(f"Unknown sync setting: {key}")
                if value is not None:
                    setattr(row, key, value)
            await session.flush()
            return {key: getattr(row, key) for key in DEFAULT_SYNC_SETTINGS}

    async def has_ever_synced(self) -> bool:
        """True once any type on any instance finished a sync, even an empty one."""
        async with self._session_scope() as session:
            count = await session.scalar(
                select(func.count())
                .select_from(SyncStateModel)
                .where(
                    (SyncStateModel.last_full_sync_actual.is_not(None))
                    | (SyncStateModel.last_incremental_sync_actual.is_not(None))
                )
            )
            return bool(count)

    # =========================================================================
    # DERIVED DATA & MAINTENANCE
    # =========================================================================

    async def compute_tag_scene_counts_via_performers(self, instance_id: str | None = None) -> None:
        """For each live tag: distinct live scenes featuring a performer with that tag."""
        start = time.monotonic()
        subquery = (
            select(func.count(func.distinct(ScenePerformerModel.scene_id)))
            .select_from(PerformerTagModel)
            .join(
                ScenePerformerModel,
                and_(
                    ScenePerformerModel.performer_id == PerformerTagModel.performer_id,
                    ScenePerformerModel.performer_instance_id
                    == PerformerTagModel.performer_instance_id,
                ),
            )
            .join(
                SceneModel,
                and_(
                    SceneModel.id == ScenePerformerModel.scene_id,
                    SceneModel.stash_instance_id == ScenePerformerModel.scene_instance_id,
                    SceneModel.deleted_at.is_(None),
                ),
            )
            .where(
                PerformerTagModel.tag_id == TagModel.id,
                PerformerTagModel.tag_instance_id == TagModel.stash_instance_id,
            )
            .scalar_subquery()
        )
        stmt = (
            update(TagModel)
            .where(TagModel.deleted_at.is_(None))
            .values(scene_count_via_performers=func.coalesce(subquery, 0))
        )
        if instance_id is not None:
            stmt = stmt.where(TagModel.stash_instance_id == instance_id)

        async with self._session_scope() as session:
            await session.execute(stmt)
        logger.info(
            "Tag scene counts via performers computed in %dms",
            int((time.monotonic() - start) * 1000),
        )

    async def clear_instance_data(self, instance_id: str) -> None:
        """Hard-delete every cached row and sync cursor of one instance (one transaction)."""
        logger.info("Clearing all cached data for instance %s...", instance_id)
        start = time.monotonic()
        async with self._session_scope() as session:
            await self._clear_instance_rows(session, instance_id)
        logger.info(
            "Cleared cached data for instance %s in %dms",
            instance_id,
            int((time.monotonic() - start) * 1000),
        )

    @staticmethod
    async def _clear_instance_rows(session: AsyncSession, instance_id: str) -> None:
        for junction in ALL_JUNCTIONS:
            await session.execute(
                delete(junction.model).where(junction.owner_instance_id == instance_id)
            )
        for entity_type in reversed(SYNC_ORDER):
            model = ENTITY_MODELS[entity_type]
            await session.execute(delete(model).where(model.stash_instance_id == instance_id))
        await session.execute(
            delete(SyncStateModel).where(SyncStateModel.stash_instance_id == instance_id)
        )
