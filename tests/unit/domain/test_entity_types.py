"""Tests for entity type enums."""

import pytest

from peekstash.domain.value_objects import (
    RESTRICTABLE_TYPES,
    SYNC_ORDER,
    EntityType,
)


class TestEntityTypeParsing:
    """EntityType.from_string accepts what the API and the database hand it."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("scene", EntityType.SCENE),
            ("scenes", EntityType.SCENE),
            ("Performer", EntityType.PERFORMER),
            (" galleries ", EntityType.GALLERY),
            ("GROUPS", EntityType.GROUP),
        ],
    )
    def test_singular_and_plural(self, value: str, expected: EntityType) -> None:
        assert EntityType.from_string(value) == expected

    def test_unknown_raises_value_error(self) -> None:
        with pytest.raises(ValueError, match="Unknown entity type"):
            EntityType.from_string("markers")

    def test_every_member_has_a_plural(self) -> None:
        for member in EntityType:
            assert member.plural.endswith("s")


class TestSyncOrder:
    """Dependencies must be synced before the scenes and images referencing them."""

    def test_covers_all_seven_kinds_once(self) -> None:
        assert sorted(SYNC_ORDER, key=lambda t: t.value) == sorted(
            EntityType, key=lambda t: t.value
        )
        assert len(SYNC_ORDER) == 7

    def test_scenes_after_their_references(self) -> None:
        scene_pos = SYNC_ORDER.index(EntityType.SCENE)
        for dependency in (
            EntityType.TAG,
            EntityType.STUDIO,
            EntityType.PERFORMER,
            EntityType.GROUP,
            EntityType.GALLERY,
        ):
            assert SYNC_ORDER.index(dependency) < scene_pos

    def test_tags_first(self) -> None:
        assert SYNC_ORDER[0] == EntityType.TAG


def test_restrictable_types_are_plural_keys() -> None:
    assert set(RESTRICTABLE_TYPES) == {"tags", "studios", "groups", "galleries"}
