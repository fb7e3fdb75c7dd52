"""Tests for StashSyncService against a real SQLite cache and a fake Stash server."""

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import func, select

from peekstash.application.services import (
    StashInstanceConfig,
    StashInstanceManager,
    StashSyncService,
)
from peekstash.application.services.sync.helpers import format_timestamp_for_stash
from peekstash.config import SyncConfig
from peekstash.domain.exceptions import (
    EntityNotFoundException,
    SyncAbortedError,
    SyncInProgressError,
)
from peekstash.domain.value_objects import EntityType, SyncAction
from peekstash.infrastructure.integrations import StashApiError, StashPage, StashResponseError
from peekstash.infrastructure.persistence.models import (
    PerformerModel,
    PerformerTagModel,
    SceneModel,
    ScenePerformerModel,
    SceneTagModel,
    SyncStateModel,
    TagModel,
)

A = "inst-a"
B = "inst-b"
T0 = "2025-01-01T10:00:00-08:00"
T1 = "2025-01-02T10:00:00-08:00"


# Hey future me - FakeStash pages and filters like the real server: count is the size of
# the FILTERED set and updated_after drops everything inside the cursor's second.
class FakeStash:
    """In-memory Stash server for one instance."""

    def __init__(self) -> None:
        self.records: dict[EntityType, list[dict[str, Any]]] = {t: [] for t in EntityType}
        self.failing: set[EntityType] = set()
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()
        self.find_entities = AsyncMock(side_effect=self._find_entities)
        self.find_entity_ids = AsyncMock(side_effect=self._find_entity_ids)
        self.count_changed_since = AsyncMock(side_effect=self._count_changed_since)
        self.find_entities_by_ids = AsyncMock(side_effect=self._find_entities_by_ids)

    @staticmethod
    def _page(items: list[dict[str, Any]], page: int, per_page: int) -> StashPage:
        start = (page - 1) * per_page
        return StashPage(count=len(items), items=items[start : start + per_page])

    def _changed(self, entity_type: EntityType, updated_after: str | None) -> list[dict[str, Any]]:
        items = self.records[entity_type]
        if updated_after:
            items = [i for i in items if i["updated_at"][:19] > updated_after[:19]]
        return items

    async def _find_entities(
        self,
        entity_type: EntityType,
        page: int = 1,
        per_page: int = 500,
        updated_after: str | None = None,
    ) -> StashPage:
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if entity_type in self.failing:
            raise StashApiError("upstream down")
        return self._page(self._changed(entity_type, updated_after), page, per_page)

    async def _find_entity_ids(
        self, entity_type: EntityType, page: int = 1, per_page: int = 5000
    ) -> StashPage:
        ids = [{"id": item["id"]} for item in self.records[entity_type]]
        return self._page(ids, page, per_page)

    async def _count_changed_since(self, entity_type: EntityType, updated_after: str) -> int:
        return len(self._changed(entity_type, updated_after))

    async def _find_entities_by_ids(
        self, entity_type: EntityType, ids: list[str]
    ) -> list[dict[str, Any]]:
        return [item for item in self.records[entity_type] if item["id"] in ids]


def tag(entity_id: str, name: str, updated: str = T0, **extra: Any) -> dict[str, Any]:
    return {"id": entity_id, "name": name, "created_at": T0, "updated_at": updated, **extra}


def performer(
    entity_id: str, name: str, tags: tuple[str, ...] = (), updated: str = T0
) -> dict[str, Any]:
    return {
        "id": entity_id,
        "name": name,
        "created_at": T0,
        "updated_at": updated,
        "tags": [{"id": t} for t in tags],
    }


def scene(
    entity_id: str,
    title: str,
    performers: tuple[str, ...] = (),
    tags: tuple[str, ...] = (),
    studio: str | None = None,
    updated: str = T0,
) -> dict[str, Any]:
    return {
        "id": entity_id,
        "title": title,
        "created_at": T0,
        "updated_at": updated,
        "studio": {"id": studio} if studio else None,
        "performers": [{"id": p} for p in performers],
        "tags": [{"id": t} for t in tags],
        "groups": [],
        "galleries": [],
        "files": [
            {
                "path": f"/media/{entity_id}.mp4",
                "duration": 600.4,
                "fingerprints": [{"type": "phash", "value": f"ph{entity_id}"}],
            }
        ],
    }


def make_manager(servers: dict[str, FakeStash]) -> MagicMock:
    manager = MagicMock(spec=StashInstanceManager)

    def get_required(instance_id: str) -> FakeStash:
        if instance_id not in servers:
            raise EntityNotFoundException("StashInstance", instance_id)
        return servers[instance_id]

    manager.get_required.side_effect = get_required
    manager.get_all_enabled.return_value = [
        StashInstanceConfig(id=inst, name=inst, url=f"http://{inst}/graphql", api_key="",
                            enabled=True, priority=n)
        for n, inst in enumerate(servers)
    ]
    return manager


async def _count(session_scope: Any, model: type[Any], *where: Any) -> int:
    async with session_scope() as session:
        return await session.scalar(select(func.count()).select_from(model).where(*where)) or 0


async def _state(session_scope: Any, instance_id: str, entity_type: EntityType) -> SyncStateModel:
    async with session_scope() as session:
        return await session.scalar(
            select(SyncStateModel).where(
                SyncStateModel.stash_instance_id == instance_id,
                SyncStateModel.entity_type == entity_type.value,
            )
        )


@pytest.fixture
def server_a() -> FakeStash:
    return FakeStash()


@pytest.fixture
def server_b() -> FakeStash:
    return FakeStash()


@pytest.fixture
def service(session_scope: Any, server_a: FakeStash, server_b: FakeStash) -> StashSyncService:
    return StashSyncService(
        session_scope,
        make_manager({A: server_a, B: server_b}),
        SyncConfig(page_size=2, cleanup_page_size=2),
    )


class TestFullSync:
    """full_sync(): everything, then deletion cleanup."""

    async def test_writes_entities_and_junctions_scoped_to_instance(
        self, service: StashSyncService, server_a: FakeStash, session_scope: Any
    ) -> None:
        server_a.records[EntityType.TAG] = [tag("1", "Outdoor")]
        server_a.records[EntityType.PERFORMER] = [performer("5", "Alice", tags=("1",))]
        server_a.records[EntityType.SCENE] = [
            scene("10", "Beach", performers=("5",), tags=("1",), studio="3")
        ]

        results = await service.full_sync(A)

        assert {r.entity_type for r in results} == set(EntityType)
        assert all(r.error is None for r in results)
        async with session_scope() as session:
            stored = await session.get(SceneModel, ("10", A))
            assert stored is not None
            assert stored.studio_id == "3"
            assert stored.duration == 600
            assert stored.phash == "ph10"
            links = (await session.execute(select(ScenePerformerModel))).scalars().all()
            assert [
                (r.scene_id, r.scene_instance_id, r.performer_id, r.performer_instance_id)
                for r in links
            ] == [("10", A, "5", A)]
        assert await _count(session_scope, PerformerTagModel) == 1
        assert await _count(session_scope, SceneTagModel) == 1

    async def test_rerun_is_idempotent(
        self, service: StashSyncService, server_a: FakeStash, session_scope: Any
    ) -> None:
        server_a.records[EntityType.TAG] = [tag("1", "One"), tag("2", "Two"), tag("3", "Three")]
        server_a.records[EntityType.SCENE] = [scene("10", "S", tags=("1", "2"))]

        await service.full_sync(A)
        await service.full_sync(A)

        assert await _count(session_scope, TagModel) == 3
        assert await _count(session_scope, SceneModel) == 1
        assert await _count(session_scope, SceneTagModel) == 2

    async def test_paginates_until_count_reached(
        self, service: StashSyncService, server_a: FakeStash, session_scope: Any
    ) -> None:
        server_a.records[EntityType.TAG] = [tag(str(i), f"Tag {i}") for i in range(1, 6)]

        await service.full_sync(A, EntityType.TAG)

        tag_calls = [
            c for c in server_a.find_entities.call_args_list if c.args[0] == EntityType.TAG
        ]
        assert [c.kwargs["page"] for c in tag_calls] == [1, 2, 3]
        assert await _count(session_scope, TagModel) == 5

    async def test_same_ids_on_two_instances_stay_separate(
        self,
        service: StashSyncService,
        server_a: FakeStash,
        server_b: FakeStash,
        session_scope: Any,
    ) -> None:
        """Performer "5" on A and performer "5" on B are different people."""
        server_a.records[EntityType.PERFORMER] = [performer("5", "Alice")]
        server_b.records[EntityType.PERFORMER] = [performer("5", "Bob")]

        await service.full_sync()

        async with session_scope() as session:
            assert (await session.get(PerformerModel, ("5", A))).name == "Alice"
            assert (await session.get(PerformerModel, ("5", B))).name == "Bob"

        # B drops its performer: only B's row is soft-deleted
        server_b.records[EntityType.PERFORMER] = []
        await service.full_sync(B)

        async with session_scope() as session:
            assert (await session.get(PerformerModel, ("5", A))).deleted_at is None
            assert (await session.get(PerformerModel, ("5", B))).deleted_at is not None

    async def test_cleanup_soft_deletes_and_upsert_revives(
        self, service: StashSyncService, server_a: FakeStash, session_scope: Any
    ) -> None:
        server_a.records[EntityType.TAG] = [tag("1", "Keep"), tag("2", "Gone")]
        await service.full_sync(A, EntityType.TAG)

        server_a.records[EntityType.TAG] = [tag("1", "Keep")]
        results = await service.full_sync(A, EntityType.TAG)
        assert results[0].deleted == 1
        async with session_scope() as session:
            assert (await session.get(TagModel, ("2", A))).deleted_at is not None

        server_a.records[EntityType.TAG] = [tag("1", "Keep"), tag("2", "Back", updated=T1)]
        await service.full_sync(A, EntityType.TAG)
        async with session_scope() as session:
            revived = await session.get(TagModel, ("2", A))
            assert revived.deleted_at is None
            assert revived.name == "Back"

    async def test_cursor_is_max_upstream_updated_at(
        self, service: StashSyncService, server_a: FakeStash, session_scope: Any
    ) -> None:
        server_a.records[EntityType.TAG] = [tag("1", "Old"), tag("2", "New", updated=T1)]

        await service.full_sync(A, EntityType.TAG)

        state = await _state(session_scope, A, EntityType.TAG)
        assert state.last_full_sync == T1
        assert state.last_error is None
        assert state.last_sync_count == 2

    async def test_failed_type_keeps_cursor_and_records_error(
        self, service: StashSyncService, server_a: FakeStash, session_scope: Any
    ) -> None:
        server_a.records[EntityType.TAG] = [tag("1", "T")]
        server_a.records[EntityType.PERFORMER] = [performer("5", "P")]
        await service.full_sync(A)

        server_a.records[EntityType.TAG] = [tag("1", "T", updated=T1)]
        server_a.records[EntityType.PERFORMER] = [performer("5", "P", updated=T1)]
        server_a.failing = {EntityType.PERFORMER}
        results = await service.full_sync(A)

        by_type = {r.entity_type: r for r in results}
        assert by_type[EntityType.PERFORMER].error == "upstream down"
        assert by_type[EntityType.TAG].error is None

        performer_state = await _state(session_scope, A, EntityType.PERFORMER)
        assert performer_state.last_full_sync == T0
        assert performer_state.last_error == "upstream down"
        assert (await _state(session_scope, A, EntityType.TAG)).last_full_sync == T1
        # no cleanup for the failed type
        assert await _count(session_scope, PerformerModel, PerformerModel.deleted_at.is_(None)) == 1

    async def test_unknown_instance_raises(self, service: StashSyncService) -> None:
        with pytest.raises(EntityNotFoundException):
            await service.full_sync("nope")
        assert not service.is_syncing()


class TestIncrementalSync:
    """incremental_sync() / smart_incremental_sync()."""

    async def test_without_state_syncs_everything(
        self, service: StashSyncService, server_a: FakeStash, session_scope: Any
    ) -> None:
        server_a.records[EntityType.TAG] = [tag("1", "T")]

        await service.incremental_sync(A)

        tag_call = next(
            c for c in server_a.find_entities.call_args_list if c.args[0] == EntityType.TAG
        )
        assert tag_call.kwargs["updated_after"] is None
        assert (await _state(session_scope, A, EntityType.TAG)).last_full_sync == T0

    async def test_fetches_only_changes_since_cursor(
        self, service: StashSyncService, server_a: FakeStash, session_scope: Any
    ) -> None:
        server_a.records[EntityType.TAG] = [tag("1", "Same"), tag("2", "Before")]
        await service.full_sync(A)
        server_a.records[EntityType.TAG] = [tag("1", "Same"), tag("2", "After", updated=T1)]
        server_a.find_entities.reset_mock()

        results = await service.incremental_sync(A)

        tag_call = next(
            c for c in server_a.find_entities.call_args_list if c.args[0] == EntityType.TAG
        )
        assert tag_call.kwargs["updated_after"] == format_timestamp_for_stash(T0)
        tag_result = next(r for r in results if r.entity_type == EntityType.TAG)
        assert tag_result.synced == 1
        state = await _state(session_scope, A, EntityType.TAG)
        assert state.last_incremental_sync == T1
        assert state.last_full_sync == T0
        async with session_scope() as session:
            assert (await session.get(TagModel, ("2", A))).name == "After"

    async def test_empty_pass_does_not_move_cursor(
        self, service: StashSyncService, server_a: FakeStash, session_scope: Any
    ) -> None:
        server_a.records[EntityType.TAG] = [tag("1", "T")]
        await service.full_sync(A)

        await service.incremental_sync(A)

        state = await _state(session_scope, A, EntityType.TAG)
        assert state.last_incremental_sync is None
        assert state.last_full_sync == T0

    async def test_incremental_still_detects_deletions(
        self, service: StashSyncService, server_a: FakeStash, session_scope: Any
    ) -> None:
        server_a.records[EntityType.TAG] = [tag("1", "T"), tag("2", "U")]
        await service.full_sync(A)
        server_a.records[EntityType.TAG] = [tag("1", "T")]

        results = await service.incremental_sync(A)

        assert next(r for r in results if r.entity_type == EntityType.TAG).deleted == 1

    async def test_smart_skips_unchanged_types(
        self, service: StashSyncService, server_a: FakeStash
    ) -> None:
        server_a.records[EntityType.TAG] = [tag("1", "T")]
        await service.full_sync(A)
        server_a.find_entities.reset_mock()

        results = await service.smart_incremental_sync(A)

        # only tags have a cursor, the empty kinds are still fetched in full
        server_a.count_changed_since.assert_awaited_once()
        fetched = {c.args[0] for c in server_a.find_entities.call_args_list}
        assert EntityType.TAG not in fetched
        assert all(r.synced == 0 for r in results)

    async def test_smart_syncs_when_count_request_fails(
        self, service: StashSyncService, server_a: FakeStash
    ) -> None:
        server_a.records[EntityType.TAG] = [tag("1", "T")]
        await service.full_sync(A)
        server_a.count_changed_since.side_effect = StashApiError("count failed")
        server_a.find_entities.reset_mock()

        await service.smart_incremental_sync(A)

        fetched = {c.args[0] for c in server_a.find_entities.call_args_list}
        assert EntityType.TAG in fetched


class TestPassControl:
    """One pass per process; abort stops at the next page boundary."""

    async def test_second_trigger_is_rejected_while_running(
        self, service: StashSyncService, server_a: FakeStash
    ) -> None:
        server_a.records[EntityType.TAG] = [tag("1", "T")]
        server_a.gate = asyncio.Event()

        running = asyncio.create_task(service.full_sync(A, EntityType.TAG))
        await server_a.entered.wait()
        try:
            assert service.is_syncing()
            with pytest.raises(SyncInProgressError):
                await service.full_sync(A)
            assert await service.incremental_sync(A) == []
            assert await service.smart_incremental_sync(A) == []
        finally:
            server_a.gate.set()
            await running
        assert not service.is_syncing()

    async def test_abort_stops_running_pass(
        self, service: StashSyncService, server_a: FakeStash, session_scope: Any
    ) -> None:
        server_a.records[EntityType.TAG] = [tag("1", "T")]
        server_a.gate = asyncio.Event()

        running = asyncio.create_task(service.full_sync(A))
        await server_a.entered.wait()
        assert service.abort() is True
        server_a.gate.set()

        with pytest.raises(SyncAbortedError):
            await running
        assert not service.is_syncing()
        assert service.abort() is False
        # the aborted pass saved no cursor
        assert await _state(session_scope, A, EntityType.TAG) is None

    def test_abort_without_pass_returns_false(self, service: StashSyncService) -> None:
        assert service.abort() is False


class TestCleanup:
    async def test_bad_id_listing_leaves_cache_untouched(
        self, service: StashSyncService, server_a: FakeStash, session_scope: Any
    ) -> None:
        server_a.records[EntityType.TAG] = [tag("1", "T"), tag("2", "U")]
        await service.full_sync(A, EntityType.TAG)
        server_a.find_entity_ids.side_effect = StashResponseError("non-numeric count")

        assert await service.cleanup_deleted_entities(EntityType.TAG, A) == 0
        assert await _count(session_scope, TagModel, TagModel.deleted_at.is_(None)) == 2

    async def test_delete_ratio_guard_refuses_mass_delete(
        self, session_scope: Any, server_a: FakeStash
    ) -> None:
        service = StashSyncService(
            session_scope,
            make_manager({A: server_a}),
            SyncConfig(page_size=10, max_delete_ratio=0.5),
        )
        server_a.records[EntityType.TAG] = [tag(str(i), f"T{i}") for i in range(1, 5)]
        await service.full_sync(A, EntityType.TAG)

        server_a.records[EntityType.TAG] = [tag("1", "T1")]
        assert await service.cleanup_deleted_entities(EntityType.TAG, A) == 0
        assert await _count(session_scope, TagModel, TagModel.deleted_at.is_(None)) == 4

    async def test_empty_listing_soft_deletes_only_that_instance(
        self,
        service: StashSyncService,
        server_a: FakeStash,
        server_b: FakeStash,
        session_scope: Any,
    ) -> None:
        server_a.records[EntityType.TAG] = [tag("1", "T"), tag("2", "U"), tag("3", "V")]
        server_b.records[EntityType.TAG] = [tag("1", "T"), tag("2", "U")]
        await service.full_sync(A, EntityType.TAG)
        await service.full_sync(B, EntityType.TAG)

        server_a.records[EntityType.TAG] = []
        deleted = await service.cleanup_deleted_entities(EntityType.TAG, A)

        assert deleted == 3
        assert await _count(
            session_scope, TagModel, TagModel.stash_instance_id == A, TagModel.deleted_at.is_(None)
        ) == 0
        assert await _count(
            session_scope, TagModel, TagModel.stash_instance_id == B, TagModel.deleted_at.is_(None)
        ) == 2


class TestSingleEntitySync:
    async def test_update_fetches_one_record(
        self, service: StashSyncService, server_a: FakeStash, session_scope: Any
    ) -> None:
        server_a.records[EntityType.PERFORMER] = [performer("5", "Alice")]

        assert await service.sync_single_entity(EntityType.PERFORMER, "5", SyncAction.UPDATE, A)
        server_a.find_entities_by_ids.assert_awaited_once_with(EntityType.PERFORMER, ["5"])
        assert await _count(session_scope, PerformerModel) == 1

    async def test_missing_upstream_returns_false(
        self, service: StashSyncService
    ) -> None:
        assert not await service.sync_single_entity(
            EntityType.PERFORMER, "404", SyncAction.CREATE, A
        )

    async def test_delete_soft_deletes_once(
        self, service: StashSyncService, server_a: FakeStash
    ) -> None:
        server_a.records[EntityType.TAG] = [tag("1", "T")]
        await service.full_sync(A, EntityType.TAG)

        assert await service.sync_single_entity(EntityType.TAG, "1", SyncAction.DELETE, A)
        assert not await service.sync_single_entity(EntityType.TAG, "1", SyncAction.DELETE, A)

    async def test_defaults_to_first_enabled_instance(
        self, service: StashSyncService, server_a: FakeStash, server_b: FakeStash
    ) -> None:
        server_a.records[EntityType.TAG] = [tag("1", "T")]

        await service.sync_single_entity(EntityType.TAG, "1", SyncAction.UPDATE)

        server_a.find_entities_by_ids.assert_awaited_once()
        server_b.find_entities_by_ids.assert_not_called()


class TestSyncStateAndSettings:
    async def test_has_ever_synced(
        self, service: StashSyncService, server_a: FakeStash
    ) -> None:
        assert await service.has_ever_synced() is False
        server_a.records[EntityType.TAG] = [tag("1", "T")]
        await service.full_sync(A, EntityType.TAG)
        assert await service.has_ever_synced() is True

    async def test_empty_instance_still_counts_as_synced(
        self, service: StashSyncService, session_scope: Any
    ) -> None:
        await service.full_sync(A, EntityType.TAG)

        state = await _state(session_scope, A, EntityType.TAG)
        assert state.last_full_sync is None
        assert state.last_full_sync_actual is not None
        assert state.total_entities == 0
        assert await service.has_ever_synced() is True

    async def test_failed_type_is_not_marked_synced(
        self, service: StashSyncService, server_a: FakeStash, session_scope: Any
    ) -> None:
        server_a.failing.add(EntityType.TAG)

        await service.full_sync(A, EntityType.TAG)

        state = await _state(session_scope, A, EntityType.TAG)
        assert state.last_error == "upstream down"
        assert state.last_full_sync_actual is None
        assert await service.has_ever_synced() is False

    async def test_update_settings_partial(self, service: StashSyncService) -> None:
        updated = await service.update_sync_settings(sync_interval_minutes=15)

        assert updated == {
            "sync_interval_minutes": 15,
            "enable_scan_subscription": True,
            "enable_plugin_webhook": False,
        }
        status = await service.get_sync_status()
        assert status["settings"]["sync_interval_minutes"] == 15
        assert status["in_progress"] is False

    async def test_update_settings_unknown_key(self, service: StashSyncService) -> None:
        with pytest.raises(ValueError, match="Unknown sync setting"):
            await service.update_sync_settings(page_size=10)

    async def test_status_lists_states_per_instance(
        self, service: StashSyncService, server_a: FakeStash
    ) -> None:
        server_a.records[EntityType.TAG] = [tag("1", "T")]
        await service.full_sync(A, EntityType.TAG)

        status = await service.get_sync_status(A)
        assert [(s["stash_instance_id"], s["entity_type"]) for s in status["states"]] == [
            (A, "tag")
        ]
        assert (await service.get_sync_status(B))["states"] == []


class TestPostProcessing:
    async def test_full_sync_runs_derived_steps_once(
        self, session_scope: Any, server_a: FakeStash
    ) -> None:
        tag_inheritance = AsyncMock()
        stats = AsyncMock()
        exclusions = AsyncMock()
        service = StashSyncService(
            session_scope,
            make_manager({A: server_a}),
            SyncConfig(),
            tag_inheritance=tag_inheritance,
            stats_service=stats,
            exclusion_service=exclusions,
        )
        server_a.records[EntityType.TAG] = [tag("1", "T")]

        await service.full_sync(A)

        tag_inheritance.compute_inherited_tags.assert_awaited_once()
        stats.rebuild_all_stats.assert_awaited_once()
        exclusions.recompute_all_users.assert_awaited_once()

    async def test_incremental_skips_inheritance_without_scene_changes(
        self, session_scope: Any, server_a: FakeStash
    ) -> None:
        tag_inheritance = AsyncMock()
        exclusions = AsyncMock()
        service = StashSyncService(
            session_scope,
            make_manager({A: server_a}),
            SyncConfig(),
            tag_inheritance=tag_inheritance,
            exclusion_service=exclusions,
        )
        server_a.records[EntityType.TAG] = [tag("1", "T")]
        await service.full_sync(A)
        tag_inheritance.reset_mock()
        exclusions.reset_mock()

        await service.incremental_sync(A)

        tag_inheritance.compute_inherited_tags.assert_not_called()
        exclusions.recompute_all_users.assert_awaited_once()

    async def test_gallery_inheritance_runs_before_image_counts(
        self, session_scope: Any, server_a: FakeStash
    ) -> None:
        calls: list[str] = []
        gallery_inheritance = AsyncMock()
        gallery_inheritance.apply_gallery_inheritance.side_effect = (
            lambda: calls.append("inherit")
        )
        image_counts = AsyncMock()
        image_counts.rebuild_all_image_counts.side_effect = lambda: calls.append("count")
        service = StashSyncService(
            session_scope,
            make_manager({A: server_a}),
            SyncConfig(),
            gallery_inheritance=gallery_inheritance,
            image_counts=image_counts,
        )
        server_a.records[EntityType.TAG] = [tag("1", "T")]

        await service.full_sync(A)

        assert calls == ["inherit", "count"]

    async def test_incremental_skips_image_steps_without_image_changes(
        self, session_scope: Any, server_a: FakeStash
    ) -> None:
        gallery_inheritance = AsyncMock()
        image_counts = AsyncMock()
        service = StashSyncService(
            session_scope,
            make_manager({A: server_a}),
            SyncConfig(),
            gallery_inheritance=gallery_inheritance,
            image_counts=image_counts,
        )
        server_a.records[EntityType.TAG] = [tag("1", "T")]
        await service.full_sync(A)
        gallery_inheritance.reset_mock()
        image_counts.reset_mock()

        await service.incremental_sync(A)

        gallery_inheritance.apply_gallery_inheritance.assert_not_called()
        image_counts.rebuild_all_image_counts.assert_not_called()


class TestDerivedData:
    async def test_tag_scene_counts_via_performers(
        self,
        service: StashSyncService,
        server_a: FakeStash,
        server_b: FakeStash,
        session_scope: Any,
    ) -> None:
        server_a.records[EntityType.TAG] = [tag("1", "Blonde")]
        server_a.records[EntityType.PERFORMER] = [performer("5", "Alice", tags=("1",))]
        server_a.records[EntityType.SCENE] = [
            scene("10", "One", performers=("5",)),
            scene("11", "Two", performers=("5",)),
            scene("12", "Three"),
        ]
        # same ids on B, but B's performer 5 has no tag
        server_b.records[EntityType.TAG] = [tag("1", "Blonde")]
        server_b.records[EntityType.PERFORMER] = [performer("5", "Bob")]
        server_b.records[EntityType.SCENE] = [scene("10", "Other", performers=("5",))]

        await service.full_sync()

        async with session_scope() as session:
            assert (await session.get(TagModel, ("1", A))).scene_count_via_performers == 2
            assert (await session.get(TagModel, ("1", B))).scene_count_via_performers == 0

    async def test_clear_instance_data_only_touches_that_instance(
        self,
        service: StashSyncService,
        server_a: FakeStash,
        server_b: FakeStash,
        session_scope: Any,
    ) -> None:
        for server in (server_a, server_b):
            server.records[EntityType.TAG] = [tag("1", "T")]
            server.records[EntityType.SCENE] = [scene("10", "S", tags=("1",))]
        await service.full_sync()

        await service.clear_instance_data(A)

        assert await _count(session_scope, SceneModel) == 1
        assert await _count(session_scope, SceneTagModel) == 1
        assert await _count(session_scope, SceneModel, SceneModel.stash_instance_id == A) == 0
        assert await _count(
            session_scope, SyncStateModel, SyncStateModel.stash_instance_id == A
        ) == 0
