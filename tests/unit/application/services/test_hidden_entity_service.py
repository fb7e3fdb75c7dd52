"""Tests for UserHiddenEntityService."""

from typing import Any

import pytest

from peekstash.application.services import (
    ExclusionComputationService,
    UserHiddenEntityService,
)
from peekstash.domain.exceptions import EntityNotFoundException
from peekstash.domain.value_objects import EntityType
from peekstash.infrastructure.persistence.models import (
    PerformerModel,
    SceneModel,
    ScenePerformerModel,
    TagModel,
)

A = "inst-a"
B = "inst-b"


@pytest.fixture
def exclusions(session_scope: Any) -> ExclusionComputationService:
    return ExclusionComputationService(session_scope)


@pytest.fixture
def service(
    session_scope: Any, exclusions: ExclusionComputationService
) -> UserHiddenEntityService:
    return UserHiddenEntityService(session_scope, exclusions)


@pytest.fixture
async def library(seed: Any) -> None:
    await seed(
        PerformerModel(id="5", stash_instance_id=A, name="Alice"),
        PerformerModel(id="5", stash_instance_id=B, name="Bob"),
        SceneModel(id="10", stash_instance_id=A, title="Beach"),
        ScenePerformerModel(
            scene_id="10", scene_instance_id=A, performer_id="5", performer_instance_id=A
        ),
        TagModel(id="9", stash_instance_id=A, name="Noir"),
    )


class TestHideEntity:
    async def test_hide_writes_hide_and_exclusions(
        self,
        service: UserHiddenEntityService,
        exclusions: ExclusionComputationService,
        user_id: int,
        library: None,
    ) -> None:
        await service.hide_entity(user_id, EntityType.PERFORMER, "5", A)

        assert await service.is_hidden(user_id, EntityType.PERFORMER, "5", A)
        assert not await service.is_hidden(user_id, EntityType.PERFORMER, "5", B)
        excluded = await exclusions.get_excluded_entities(user_id)
        assert {(r["entity_type"], r["entity_id"], r["instance_id"]) for r in excluded} == {
            ("performer", "5", A),
            ("scene", "10", A),
        }

    async def test_hide_twice_keeps_one_row(
        self, service: UserHiddenEntityService, user_id: int, library: None
    ) -> None:
        await service.hide_entity(user_id, EntityType.PERFORMER, "5", A)
        await service.hide_entity(user_id, EntityType.PERFORMER, "5", A)

        assert len(await service.get_hidden_entities(user_id)) == 1

    async def test_unknown_user_raises(
        self, service: UserHiddenEntityService
    ) -> None:
        with pytest.raises(EntityNotFoundException):
            await service.hide_entity(999, EntityType.TAG, "1")


class TestUnhide:
    async def test_unhide_recomputes(
        self,
        service: UserHiddenEntityService,
        exclusions: ExclusionComputationService,
        user_id: int,
        library: None,
    ) -> None:
        await service.hide_entity(user_id, EntityType.PERFORMER, "5", A)

        assert await service.unhide_entity(user_id, EntityType.PERFORMER, "5", A) is True

        excluded = await exclusions.get_excluded_entities(user_id)
        assert not [r for r in excluded if r["reason"] in ("hidden", "cascade")]

    async def test_unhide_unknown_returns_false(
        self, service: UserHiddenEntityService, user_id: int
    ) -> None:
        assert await service.unhide_entity(user_id, EntityType.SCENE, "1", A) is False

    async def test_unhide_all_by_type(
        self, service: UserHiddenEntityService, user_id: int, library: None
    ) -> None:
        await service.hide_entity(user_id, EntityType.PERFORMER, "5", A)
        await service.hide_entity(user_id, EntityType.PERFORMER, "5", B)
        await service.hide_entity(user_id, EntityType.SCENE, "10", A)

        assert await service.unhide_all(user_id, EntityType.PERFORMER) == 2
        assert await service.unhide_all(user_id) == 1
        assert await service.unhide_all(user_id) == 0


class TestListing:
    async def test_names_resolved_per_instance(
        self, service: UserHiddenEntityService, user_id: int, library: None
    ) -> None:
        await service.hide_entity(user_id, EntityType.PERFORMER, "5", B)
        await service.hide_entity(user_id, EntityType.SCENE, "10")

        listed = {
            (h["entity_type"], h["instance_id"]): h["name"]
            for h in await service.get_hidden_entities(user_id)
        }
        assert listed == {("performer", B): "Bob", ("scene", ""): "Beach"}

    async def test_missing_entities_left_out(
        self, service: UserHiddenEntityService, user_id: int, library: None
    ) -> None:
        # Hey future me - the hide survives (the entity may come back with the next sync),
        # it just has nothing to show in the listing.
        await service.hide_entity(user_id, EntityType.STUDIO, "404", A)

        assert await service.get_hidden_entities(user_id) == []
        assert await service.is_hidden(user_id, EntityType.STUDIO, "404", A)

    async def test_filter_by_type(
        self, service: UserHiddenEntityService, user_id: int, library: None
    ) -> None:
        await service.hide_entity(user_id, EntityType.PERFORMER, "5", A)
        await service.hide_entity(user_id, EntityType.TAG, "9", A)

        tags = await service.get_hidden_entities(user_id, EntityType.TAG)
        assert [(h["entity_id"], h["name"]) for h in tags] == [("9", "Noir")]
