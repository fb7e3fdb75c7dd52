"""Tests for ImageGalleryInheritanceService."""

from datetime import UTC, datetime
from typing import Any

import pytest
from sqlalchemy import select

from peekstash.application.services import ImageGalleryInheritanceService
from peekstash.infrastructure.persistence.models import (
    GalleryModel,
    GalleryPerformerModel,
    GalleryTagModel,
    ImageGalleryModel,
    ImageModel,
    ImagePerformerModel,
    ImageTagModel,
)

A = "inst-a"
B = "inst-b"


@pytest.fixture
def service(session_scope: Any) -> ImageGalleryInheritanceService:
    return ImageGalleryInheritanceService(session_scope)


def _in_gallery(image_id: str, gallery_id: str, instance_id: str) -> ImageGalleryModel:
    return ImageGalleryModel(
        image_id=image_id,
        image_instance_id=instance_id,
        gallery_id=gallery_id,
        gallery_instance_id=instance_id,
    )


async def _image_tags(session_scope: Any, image_id: str, instance_id: str) -> list[str]:
    async with session_scope() as session:
        rows = await session.execute(
            select(ImageTagModel.tag_id).where(
                ImageTagModel.image_id == image_id,
                ImageTagModel.image_instance_id == instance_id,
            )
        )
        return sorted(rows.scalars())


async def _image(session_scope: Any, image_id: str, instance_id: str) -> ImageModel:
    async with session_scope() as session:
        return await session.get(ImageModel, (image_id, instance_id))


@pytest.fixture
async def galleries(seed: Any) -> None:
    """Gallery 1 on A carries tag 7, performer 5, studio 3. Gallery 1 on B carries nothing."""
    await seed(
        GalleryModel(
            id="1",
            stash_instance_id=A,
            studio_id="3",
            date="2024-01-01",
            photographer="Pat",
            details="From the gallery",
        ),
        GalleryModel(id="1", stash_instance_id=B),
        GalleryTagModel(gallery_id="1", gallery_instance_id=A, tag_id="7", tag_instance_id=A),
        GalleryPerformerModel(
            gallery_id="1", gallery_instance_id=A, performer_id="5", performer_instance_id=A
        ),
        ImageModel(id="100", stash_instance_id=A),
        ImageModel(id="100", stash_instance_id=B),
        _in_gallery("100", "1", A),
        _in_gallery("100", "1", B),
    )


class TestApplyGalleryInheritance:
    async def test_gallery_tags_reach_image_on_same_instance_only(
        self, service: ImageGalleryInheritanceService, session_scope: Any, galleries: None
    ) -> None:
        await service.apply_gallery_inheritance()

        assert await _image_tags(session_scope, "100", A) == ["7"]
        assert await _image_tags(session_scope, "100", B) == []

    async def test_scalars_copied_only_on_same_instance(
        self, service: ImageGalleryInheritanceService, session_scope: Any, galleries: None
    ) -> None:
        await service.apply_gallery_inheritance()

        on_a = await _image(session_scope, "100", A)
        on_b = await _image(session_scope, "100", B)
        assert (on_a.studio_id, on_a.date, on_a.photographer, on_a.details) == (
            "3",
            "2024-01-01",
            "Pat",
            "From the gallery",
        )
        assert (on_b.studio_id, on_b.date, on_b.photographer, on_b.details) == (
            None,
            None,
            None,
            None,
        )

    async def test_performers_inherited(
        self, service: ImageGalleryInheritanceService, session_scope: Any, galleries: None
    ) -> None:
        touched = await service.apply_gallery_inheritance()

        async with session_scope() as session:
            rows = (await session.execute(select(ImagePerformerModel))).scalars().all()
        assert [(r.image_id, r.image_instance_id, r.performer_id) for r in rows] == [
            ("100", A, "5")
        ]
        assert touched["performers"] == 1

    async def test_existing_image_metadata_never_overwritten(
        self,
        service: ImageGalleryInheritanceService,
        seed: Any,
        session_scope: Any,
        galleries: None,
    ) -> None:
        await seed(
            ImageModel(id="101", stash_instance_id=A, studio_id="9", date="2020-05-05"),
            _in_gallery("101", "1", A),
            ImageTagModel(image_id="101", image_instance_id=A, tag_id="8", tag_instance_id=A),
        )

        await service.apply_gallery_inheritance()

        image = await _image(session_scope, "101", A)
        assert (image.studio_id, image.date) == ("9", "2020-05-05")
        # only the missing scalar is filled in
        assert image.photographer == "Pat"
        assert await _image_tags(session_scope, "101", A) == ["8"]

    async def test_first_gallery_by_id_wins(
        self, service: ImageGalleryInheritanceService, seed: Any, session_scope: Any
    ) -> None:
        await seed(
            GalleryModel(id="2", stash_instance_id=A, date="2022-02-02"),
            GalleryModel(id="1", stash_instance_id=A, date="2021-01-01"),
            ImageModel(id="100", stash_instance_id=A),
            _in_gallery("100", "2", A),
            _in_gallery("100", "1", A),
        )

        await service.apply_gallery_inheritance()

        assert (await _image(session_scope, "100", A)).date == "2021-01-01"

    async def test_deleted_gallery_contributes_nothing(
        self, service: ImageGalleryInheritanceService, seed: Any, session_scope: Any
    ) -> None:
        await seed(
            GalleryModel(
                id="4",
                stash_instance_id=A,
                studio_id="3",
                deleted_at=datetime(2025, 1, 1, tzinfo=UTC),
            ),
            GalleryTagModel(gallery_id="4", gallery_instance_id=A, tag_id="7", tag_instance_id=A),
            ImageModel(id="100", stash_instance_id=A),
            _in_gallery("100", "4", A),
        )

        await service.apply_gallery_inheritance()

        assert (await _image(session_scope, "100", A)).studio_id is None
        assert await _image_tags(session_scope, "100", A) == []

    async def test_instance_argument_limits_scope(
        self, service: ImageGalleryInheritanceService, session_scope: Any, galleries: None
    ) -> None:
        await service.apply_gallery_inheritance(instance_id=B)

        assert await _image_tags(session_scope, "100", A) == []
        assert (await _image(session_scope, "100", A)).studio_id is None

    async def test_second_run_is_a_no_op(
        self, service: ImageGalleryInheritanceService, galleries: None
    ) -> None:
        await service.apply_gallery_inheritance()
        touched = await service.apply_gallery_inheritance()

        assert touched == {
            "studio_id": 0,
            "date": 0,
            "photographer": 0,
            "details": 0,
            "performers": 0,
            "tags": 0,
        }
