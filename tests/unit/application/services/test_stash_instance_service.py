"""Tests for the instance registry and admin CRUD."""

from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from peekstash.application.services import (
    StashInstanceManager,
    StashInstanceService,
    disambiguate_entity_names,
    migrate_env_instance,
)
from peekstash.application.services.stash_instance_manager import strip_graphql_suffix
from peekstash.config import Settings
from peekstash.config.settings import StashSettings
from peekstash.domain.exceptions import (
    EntityNotFoundException,
    NoInstanceConfiguredError,
    ValidationException,
)
from peekstash.infrastructure.integrations import StashApiError


@pytest.fixture
def manager() -> StashInstanceManager:
    return StashInstanceManager()


@pytest.fixture
async def service(session_scope: Any, manager: StashInstanceManager) -> Any:
    instance_service = StashInstanceService(session_scope, manager)
    yield instance_service
    await manager.close()


class TestStashInstanceManager:
    async def test_priority_order_and_default(
        self, session_scope: Any, manager: StashInstanceManager, instances: tuple[str, str]
    ) -> None:
        a, b = instances
        async with session_scope() as session:
            await manager.initialize(session)

        assert [config.id for config in manager.get_all_configs()] == [a, b]
        assert manager.get_default_config().name == "Alpha"
        assert manager.get_default() is manager.get(a)
        assert manager.get_base_url(b) == "http://beta:9999"
        assert manager.get_instance_count() == 2
        await manager.close()

    async def test_empty_registry(self, manager: StashInstanceManager) -> None:
        assert not manager.has_instances()
        with pytest.raises(NoInstanceConfiguredError):
            manager.get_default()

    async def test_unknown_instance(self, manager: StashInstanceManager) -> None:
        assert manager.get("nope") is None
        with pytest.raises(EntityNotFoundException):
            manager.get_required("nope")

    async def test_close_forgets_instances(
        self, session_scope: Any, manager: StashInstanceManager, instances: tuple[str, str]
    ) -> None:
        async with session_scope() as session:
            await manager.initialize(session)

        await manager.close()

        assert not manager.is_initialized()
        assert manager.get_all() == []

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("http://stash:9999/graphql", "http://stash:9999"),
            ("http://stash:9999/graphql/", "http://stash:9999"),
            ("https://stash.example.com", "https://stash.example.com"),
        ],
    )
    def test_strip_graphql_suffix(self, url: str, expected: str) -> None:
        assert strip_graphql_suffix(url) == expected


class TestStashInstanceService:
    async def test_create_appends_with_next_priority(
        self, service: StashInstanceService, manager: StashInstanceManager
    ) -> None:
        first = await service.create_instance("Main", " http://main:9999/graphql ")
        second = await service.create_instance("Backup", "https://backup/graphql", api_key="k")

        assert (first.priority, second.priority) == (0, 1)
        assert first.url == "http://main:9999/graphql"
        # registry reloaded after every mutation
        assert [c.id for c in manager.get_all_configs()] == [first.id, second.id]

    @pytest.mark.parametrize("url", ["", "   ", "stash:9999/graphql", "ftp://stash/graphql"])
    async def test_create_rejects_bad_url(self, service: StashInstanceService, url: str) -> None:
        with pytest.raises(ValidationException):
            await service.create_instance("Main", url)

    async def test_create_requires_name(self, service: StashInstanceService) -> None:
        with pytest.raises(ValidationException, match="name is required"):
            await service.create_instance("  ", "http://main/graphql")

    async def test_disable_removes_from_registry(
        self, service: StashInstanceService, manager: StashInstanceManager
    ) -> None:
        created = await service.create_instance("Main", "http://main/graphql")

        updated = await service.update_instance(created.id, enabled=False)

        assert updated.enabled is False
        assert not manager.has_instances()
        assert [c.id for c in await service.list_instances()] == [created.id]

    async def test_update_rejects_unknown_fields(self, service: StashInstanceService) -> None:
        created = await service.create_instance("Main", "http://main/graphql")
        with pytest.raises(ValidationException, match="Unknown instance fields"):
            await service.update_instance(created.id, color="red")

    async def test_delete(self, service: StashInstanceService) -> None:
        created = await service.create_instance("Main", "http://main/graphql")

        await service.delete_instance(created.id)

        with pytest.raises(EntityNotFoundException):
            await service.get_instance(created.id)
        with pytest.raises(EntityNotFoundException):
            await service.delete_instance(created.id)

    async def test_connection_success(self, service: StashInstanceService) -> None:
        with patch(
            "peekstash.application.services.stash_instance_service.StashClient"
        ) as client_cls:
            client = client_cls.return_value
            client.get_version = AsyncMock(return_value="v0.27.2")
            client.close = AsyncMock()

            result = await service.test_connection("http://main/graphql", "key")

        assert result == {"success": True, "version": "v0.27.2", "error": None}
        client_cls.assert_called_once_with("http://main/graphql", "key", timeout=30.0)
        client.close.assert_awaited_once()

    async def test_connection_failure_is_reported(self, service: StashInstanceService) -> None:
        with patch(
            "peekstash.application.services.stash_instance_service.StashClient"
        ) as client_cls:
            client = client_cls.return_value
            client.get_version = AsyncMock(side_effect=StashApiError("401 Unauthorized", 401))
            client.close = AsyncMock()

            result = await service.test_connection("http://main/graphql")

        assert result == {"success": False, "version": None, "error": "401 Unauthorized"}
        client.close.assert_awaited_once()


class TestMigrateEnvInstance:
    async def test_seeds_default_from_env(self, session_scope: Any) -> None:
        settings = Settings(stash=StashSettings(url="http://legacy:9999/graphql", api_key="abc"))

        async with session_scope() as session:
            migrated = await migrate_env_instance(session, settings)

        assert migrated is not None
        assert (migrated.name, migrated.url, migrated.api_key) == (
            "Default",
            "http://legacy:9999/graphql",
            "abc",
        )

    async def test_ignored_once_instances_exist(
        self, session_scope: Any, instances: tuple[str, str]
    ) -> None:
        settings = Settings(stash=StashSettings(url="http://legacy:9999/graphql"))

        async with session_scope() as session:
            assert await migrate_env_instance(session, settings) is None

    async def test_no_env_url(self, session_scope: Any) -> None:
        async with session_scope() as session:
            assert await migrate_env_instance(session, Settings()) is None


class TestDisambiguateEntityNames:
    def test_names_shared_across_instances_get_suffix(self) -> None:
        items = [
            {"name": "Alice", "stash_instance_id": "a"},
            {"name": "Alice", "stash_instance_id": "b"},
            {"name": "Bob", "stash_instance_id": "a"},
        ]

        disambiguate_entity_names(items, {"a": "Home", "b": "Office"})

        assert [item["name"] for item in items] == ["Alice (Home)", "Alice (Office)", "Bob"]

    def test_duplicates_within_one_instance_untouched(self) -> None:
        items = [
            {"title": "Intro", "instance_id": "a"},
            {"title": "Intro", "instance_id": "a"},
        ]

        result = disambiguate_entity_names(
            items, {"a": "Home"}, name_field="title", instance_field="instance_id"
        )

        assert [item["title"] for item in result] == ["Intro", "Intro"]
