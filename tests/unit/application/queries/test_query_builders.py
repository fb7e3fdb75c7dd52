"""Tests for the library query builders against a real SQLite cache."""

from datetime import UTC, datetime
from typing import Any

import pytest

from peekstash.application.queries import (
    PerformerQueryBuilder,
    QueryOptions,
    SceneQueryBuilder,
    get_query_builder,
    resolve_allowed_instance_ids,
)
from peekstash.domain.value_objects import EntityType
from peekstash.infrastructure.persistence.models import (
    PerformerModel,
    SceneModel,
    ScenePerformerModel,
    SceneRatingModel,
    StashInstanceModel,
    StudioModel,
    UserExcludedEntityModel,
    UserPerformerStatsModel,
    UserStashInstanceModel,
)

A = "inst-a"
B = "inst-b"


def _scene(entity_id: str, instance_id: str, title: str, created: str, **extra: Any) -> SceneModel:
    return SceneModel(
        id=entity_id, stash_instance_id=instance_id, title=title, stash_created_at=created, **extra
    )


@pytest.fixture
async def library(seed: Any) -> None:
    """Five scenes on A (created 1..5 Jan), one scene "1" on B. Performer 5 on both."""
    await seed(
        *[
            _scene(str(i), A, f"Scene {i}", f"2025-01-0{i}T00:00:00Z", duration=600 * i)
            for i in range(1, 6)
        ],
        _scene("1", B, "Mirror", "2025-01-09T00:00:00Z", studio_id="3"),
        StudioModel(id="3", stash_instance_id=B, name="Bravo Studio"),
        PerformerModel(id="5", stash_instance_id=A, name="Alice"),
        PerformerModel(id="5", stash_instance_id=B, name="Bob"),
        PerformerModel(id="6", stash_instance_id=A, name="carol"),
        ScenePerformerModel(
            scene_id="1", scene_instance_id=A, performer_id="5", performer_instance_id=A
        ),
        ScenePerformerModel(
            scene_id="2", scene_instance_id=A, performer_id="5", performer_instance_id=A
        ),
        ScenePerformerModel(
            scene_id="2", scene_instance_id=A, performer_id="6", performer_instance_id=A
        ),
        ScenePerformerModel(
            scene_id="1", scene_instance_id=B, performer_id="5", performer_instance_id=B
        ),
    )


@pytest.fixture
def scenes(session_scope: Any) -> SceneQueryBuilder:
    return SceneQueryBuilder(session_scope)


def _keys(items: list[dict[str, Any]]) -> list[tuple[str, str]]:
    return [(item["id"], item["instance_id"]) for item in items]


class TestPagingAndSorting:
    async def test_default_sort_newest_first_with_total(
        self, scenes: SceneQueryBuilder, user_id: int, library: None
    ) -> None:
        result = await scenes.execute(QueryOptions(user_id=user_id, per_page=2))

        assert result.total == 6
        assert _keys(result.items) == [("1", B), ("5", A)]

    async def test_last_page(self, scenes: SceneQueryBuilder, user_id: int, library: None) -> None:
        result = await scenes.execute(QueryOptions(user_id=user_id, page=3, per_page=2))

        assert result.total == 6
        assert _keys(result.items) == [("2", A), ("1", A)]

    async def test_numeric_sort_with_direction(
        self, scenes: SceneQueryBuilder, user_id: int, library: None
    ) -> None:
        result = await scenes.execute(
            QueryOptions(user_id=user_id, sort="duration", sort_direction="DESC", per_page=2)
        )
        assert _keys(result.items) == [("5", A), ("4", A)]

    async def test_unknown_sort_raises(
        self, scenes: SceneQueryBuilder, user_id: int, library: None
    ) -> None:
        with pytest.raises(ValueError, match="Cannot sort scenes by 'bogus'"):
            await scenes.execute(QueryOptions(user_id=user_id, sort="bogus"))

    async def test_random_is_stable_per_seed(
        self, scenes: SceneQueryBuilder, user_id: int, library: None
    ) -> None:
        """Same seed, same shuffle, so paging never repeats or skips."""

        async def page(n: int, seed: int) -> list[tuple[str, str]]:
            result = await scenes.execute(
                QueryOptions(user_id=user_id, sort="random", random_seed=seed, page=n, per_page=3)
            )
            return _keys(result.items)

        first = await page(1, 42) + await page(2, 42)
        again = await page(1, 42) + await page(2, 42)

        assert first == again
        assert sorted(first) == sorted(
            [("1", A), ("2", A), ("3", A), ("4", A), ("5", A), ("1", B)]
        )

    async def test_case_insensitive_name_sort(
        self, session_scope: Any, user_id: int, library: None
    ) -> None:
        performers = PerformerQueryBuilder(session_scope)
        result = await performers.execute(QueryOptions(user_id=user_id, allowed_instance_ids=[A]))
        assert [item["name"] for item in result.items] == ["Alice", "carol"]


class TestVisibility:
    async def test_scoped_exclusion_hides_one_instance(
        self, scenes: SceneQueryBuilder, seed: Any, user_id: int, library: None
    ) -> None:
        await seed(
            UserExcludedEntityModel(
                user_id=user_id, entity_type="scene", entity_id="1", instance_id=A, reason="hidden"
            )
        )

        result = await scenes.execute(QueryOptions(user_id=user_id))

        assert result.total == 5
        assert ("1", A) not in _keys(result.items)
        assert ("1", B) in _keys(result.items)

    async def test_global_exclusion_hides_every_instance(
        self, scenes: SceneQueryBuilder, seed: Any, user_id: int, library: None
    ) -> None:
        await seed(
            UserExcludedEntityModel(
                user_id=user_id, entity_type="scene", entity_id="1", instance_id="", reason="cascade"
            )
        )

        result = await scenes.execute(QueryOptions(user_id=user_id))

        assert result.total == 4
        assert all(item["id"] != "1" for item in result.items)

    async def test_soft_deleted_rows_invisible(
        self, scenes: SceneQueryBuilder, session_scope: Any, user_id: int, library: None
    ) -> None:
        async with session_scope() as session:
            scene = await session.get(SceneModel, ("3", A))
            scene.deleted_at = datetime(2025, 6, 1, tzinfo=UTC)

        result = await scenes.execute(QueryOptions(user_id=user_id))
        assert ("3", A) not in _keys(result.items)

    async def test_specific_instance(
        self, scenes: SceneQueryBuilder, user_id: int, library: None
    ) -> None:
        result = await scenes.execute(QueryOptions(user_id=user_id, specific_instance_id=B))
        assert _keys(result.items) == [("1", B)]

    async def test_allowed_set(self, scenes: SceneQueryBuilder, user_id: int, library: None) -> None:
        result = await scenes.execute(QueryOptions(user_id=user_id, allowed_instance_ids=[A]))
        assert result.total == 5

    async def test_specific_instance_outside_allowed_set_is_empty(
        self, scenes: SceneQueryBuilder, user_id: int, library: None
    ) -> None:
        result = await scenes.execute(
            QueryOptions(user_id=user_id, specific_instance_id=B, allowed_instance_ids=[A])
        )
        assert (result.total, result.items) == (0, [])


class TestFilters:
    async def test_bare_performer_id_matches_every_instance(
        self, scenes: SceneQueryBuilder, user_id: int, library: None
    ) -> None:
        result = await scenes.execute(
            QueryOptions(user_id=user_id, filters={"performers": {"value": ["5"]}})
        )
        assert sorted(_keys(result.items)) == [("1", A), ("1", B), ("2", A)]

    async def test_composite_performer_id_pins_instance(
        self, scenes: SceneQueryBuilder, user_id: int, library: None
    ) -> None:
        result = await scenes.execute(
            QueryOptions(
                user_id=user_id,
                filters={"performers": {"value": [f"5:{B}"], "modifier": "INCLUDES"}},
            )
        )
        assert _keys(result.items) == [("1", B)]

    async def test_includes_all(self, scenes: SceneQueryBuilder, user_id: int, library: None) -> None:
        result = await scenes.execute(
            QueryOptions(
                user_id=user_id,
                filters={"performers": {"value": ["5", "6"], "modifier": "INCLUDES_ALL"}},
            )
        )
        assert _keys(result.items) == [("2", A)]

    async def test_includes_all_ignores_repeated_values(
        self, scenes: SceneQueryBuilder, user_id: int, library: None
    ) -> None:
        result = await scenes.execute(
            QueryOptions(
                user_id=user_id,
                filters={"performers": {"value": ["5", "5"], "modifier": "INCLUDES_ALL"}},
            )
        )
        assert sorted(_keys(result.items)) == [("1", A), ("1", B), ("2", A)]

    async def test_includes_all_bare_and_pinned_id_for_same_performer(
        self, scenes: SceneQueryBuilder, user_id: int, library: None
    ) -> None:
        """A bare 5 and a pinned 5:A are one performer; scene 1 on B only matches the bare 5."""
        result = await scenes.execute(
            QueryOptions(
                user_id=user_id,
                filters={"performers": {"value": ["5", f"5:{A}"], "modifier": "INCLUDES_ALL"}},
            )
        )
        assert sorted(_keys(result.items)) == [("1", A), ("2", A)]

    async def test_excludes(self, scenes: SceneQueryBuilder, user_id: int, library: None) -> None:
        result = await scenes.execute(
            QueryOptions(
                user_id=user_id,
                allowed_instance_ids=[A],
                filters={"performers": {"value": [f"5:{A}"], "modifier": "EXCLUDES"}},
            )
        )
        assert sorted(_keys(result.items)) == [("3", A), ("4", A), ("5", A)]

    async def test_studio_and_numeric_filters(
        self, scenes: SceneQueryBuilder, user_id: int, library: None
    ) -> None:
        by_studio = await scenes.execute(
            QueryOptions(user_id=user_id, filters={"studios": {"value": ["3"]}})
        )
        longer = await scenes.execute(
            QueryOptions(
                user_id=user_id,
                filters={"duration": {"value": 1800, "modifier": "GREATER_THAN"}},
            )
        )

        assert _keys(by_studio.items) == [("1", B)]
        assert sorted(_keys(longer.items)) == [("4", A), ("5", A)]

    async def test_search(self, scenes: SceneQueryBuilder, user_id: int, library: None) -> None:
        result = await scenes.execute(QueryOptions(user_id=user_id, search="mirr"))
        assert _keys(result.items) == [("1", B)]


class TestItemShape:
    async def test_get_by_key_embeds_relations_and_user_data(
        self, scenes: SceneQueryBuilder, seed: Any, user_id: int, library: None
    ) -> None:
        await seed(
            SceneRatingModel(user_id=user_id, instance_id=B, scene_id="1", rating=80, favorite=True)
        )

        item = await scenes.get_by_key(user_id, "1", B)

        assert item is not None
        assert item["title"] == "Mirror"
        assert item["instance_id"] == B
        assert (item["user_rating"], item["user_favorite"]) == (80, True)
        assert item["performers"] == [{"id": "5", "instance_id": B, "name": "Bob"}]
        assert item["studio"] == {"id": "3", "name": "Bravo Studio"}

    async def test_defaults_without_user_rows(
        self, scenes: SceneQueryBuilder, user_id: int, library: None
    ) -> None:
        item = await scenes.get_by_key(user_id, "3", A)

        assert item is not None
        assert item["user_rating"] is None
        assert item["user_favorite"] is False
        assert item["user_play_count"] == 0
        assert item["performers"] == []
        assert item["studio"] is None

    async def test_get_by_key_missing(
        self, scenes: SceneQueryBuilder, user_id: int, library: None
    ) -> None:
        assert await scenes.get_by_key(user_id, "3", B) is None

    async def test_performer_stats_joined_per_instance(
        self, session_scope: Any, seed: Any, user_id: int, library: None
    ) -> None:
        await seed(
            UserPerformerStatsModel(
                user_id=user_id, instance_id=B, performer_id="5", play_count=7, o_counter=2
            )
        )
        performers = get_query_builder(EntityType.PERFORMER, session_scope)

        on_a = await performers.get_by_key(user_id, "5", A)
        on_b = await performers.get_by_key(user_id, "5", B)

        assert on_a["user_play_count"] is None
        assert (on_b["user_play_count"], on_b["user_o_counter"]) == (7, 2)


class TestAllowedInstances:
    async def test_all_enabled_without_selection(
        self, session_scope: Any, user_id: int, instances: tuple[str, str]
    ) -> None:
        async with session_scope() as session:
            assert await resolve_allowed_instance_ids(session, user_id) == sorted(instances)

    async def test_selection_intersected_with_enabled(
        self, session_scope: Any, seed: Any, user_id: int, instances: tuple[str, str]
    ) -> None:
        a, b = instances
        await seed(
            UserStashInstanceModel(user_id=user_id, instance_id=a),
            UserStashInstanceModel(user_id=user_id, instance_id=b),
        )
        async with session_scope() as session:
            (await session.get(StashInstanceModel, b)).enabled = False

        async with session_scope() as session:
            assert await resolve_allowed_instance_ids(session, user_id) == [a]

    async def test_only_disabled_selection_falls_back_to_enabled(
        self, session_scope: Any, seed: Any, user_id: int, instances: tuple[str, str]
    ) -> None:
        a, b = instances
        await seed(UserStashInstanceModel(user_id=user_id, instance_id=b))
        async with session_scope() as session:
            (await session.get(StashInstanceModel, b)).enabled = False

        async with session_scope() as session:
            assert await resolve_allowed_instance_ids(session, user_id) == [a]
