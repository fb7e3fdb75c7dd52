# Hey future me - Stash's own image_count only knows images tagged DIRECTLY. An image in
# a gallery of performer 5 counts for performer 5 too, so after each sync we recount:
# direct links UNION gallery links, distinct images, live rows only. Every join carries
# both the id and the instance column.
"""Inherited image counts for performers, studios and tags."""

import logging
import time
from typing import Any

from sqlalchemy import and_, func, select, union, update

from peekstash.infrastructure.persistence.database import SessionScope
from peekstash.infrastructure.persistence.models import (
    GalleryModel,
    GalleryPerformerModel,
    GalleryTagModel,
    ImageGalleryModel,
    ImageModel,
    ImagePerformerModel,
    ImageTagModel,
    PerformerModel,
    StudioModel,
    TagModel,
)

logger = logging.getLogger(__name__)

_LINKED_IMAGE = (ImageGalleryModel.image_id, ImageGalleryModel.image_instance_id)


def _live_image(image_id: Any, image_instance_id: Any) -> Any:
    return and_(
        ImageModel.id == image_id,
        ImageModel.stash_instance_id == image_instance_id,
        ImageModel.deleted_at.is_(None),
    )


def _live_gallery(*extra: Any) -> Any:
    return and_(
        GalleryModel.id == ImageGalleryModel.gallery_id,
        GalleryModel.stash_instance_id == ImageGalleryModel.gallery_instance_id,
        GalleryModel.deleted_at.is_(None),
        *extra,
    )


def _via_gallery_junction(gallery_junction: type[Any], target: str) -> Any:
    """(image, owner) pairs where the owner is linked to a gallery containing the image."""
    return (
        select(
            ImageGalleryModel.image_id.label("image_id"),
            ImageGalleryModel.image_instance_id.label("image_instance_id"),
            getattr(gallery_junction, f"{target}_id").label("owner_id"),
            getattr(gallery_junction, f"{target}_instance_id").label("owner_instance_id"),
        )
        .select_from(ImageGalleryModel)
        .join(ImageModel, _live_image(*_LINKED_IMAGE))
        .join(GalleryModel, _live_gallery())
        .join(
            gallery_junction,
            and_(
                gallery_junction.gallery_id == ImageGalleryModel.gallery_id,
                gallery_junction.gallery_instance_id == ImageGalleryModel.gallery_instance_id,
            ),
        )
    )


def _direct_junction(image_junction: type[Any], target: str) -> Any:
    return (
        select(
            image_junction.image_id.label("image_id"),
            image_junction.image_instance_id.label("image_instance_id"),
            getattr(image_junction, f"{target}_id").label("owner_id"),
            getattr(image_junction, f"{target}_instance_id").label("owner_instance_id"),
        )
        .select_from(image_junction)
        .join(ImageModel, _live_image(image_junction.image_id, image_junction.image_instance_id))
    )


def _studio_pairs() -> Any:
    direct = select(
        ImageModel.id.label("image_id"),
        ImageModel.stash_instance_id.label("image_instance_id"),
        ImageModel.studio_id.label("owner_id"),
        ImageModel.stash_instance_id.label("owner_instance_id"),
    ).where(ImageModel.deleted_at.is_(None), ImageModel.studio_id.is_not(None))
    inherited = (
        select(
            ImageGalleryModel.image_id.label("image_id"),
            ImageGalleryModel.image_instance_id.label("image_instance_id"),
            GalleryModel.studio_id.label("owner_id"),
            GalleryModel.stash_instance_id.label("owner_instance_id"),
        )
        .select_from(ImageGalleryModel)
        .join(ImageModel, _live_image(*_LINKED_IMAGE))
        .join(GalleryModel, _live_gallery(GalleryModel.studio_id.is_not(None)))
    )
    return union(direct, inherited)


class EntityImageCountService:
    """Rewrites image_count on performers, studios and tags."""

    def __init__(self, session_scope: SessionScope) -> None:
        self._session_scope = session_scope

    async def rebuild_all_image_counts(self, instance_id: str | None = None) -> None:
        start = time.monotonic()
        logger.info("Rebuilding inherited image counts...")
        async with self._session_scope() as session:
            await session.execute(
                self._count_update(
                    PerformerModel,
                    union(
                        _direct_junction(ImagePerformerModel, "performer"),
                        _via_gallery_junction(GalleryPerformerModel, "performer"),
                    ),
                    instance_id,
                )
            )
            await session.execute(self._count_update(StudioModel, _studio_pairs(), instance_id))
            await session.execute(
                self._count_update(
                    TagModel,
                    union(
                        _direct_junction(ImageTagModel, "tag"),
                        _via_gallery_junction(GalleryTagModel, "tag"),
                    ),
                    instance_id,
                )
            )
        logger.info(
            "Inherited image counts rebuilt in %dms", int((time.monotonic() - start) * 1000)
        )

    @staticmethod
    def _count_update(model: type[Any], pairs: Any, instance_id: str | None) -> Any:
        combined = pairs.subquery("combined")
        count = (
            select(func.count(func.distinct(combined.c.image_id)))
            .where(
                combined.c.owner_id == model.id,
                combined.c.owner_instance_id == model.stash_instance_id,
                combined.c.image_instance_id == model.stash_instance_id,
            )
            .scalar_subquery()
        )
        stmt = (
            update(model)
            .where(model.deleted_at.is_(None))
            .values(image_count=func.coalesce(count, 0))
            .execution_options(synchronize_session=False)
        )
        if instance_id is not None:
            stmt = stmt.where(model.stash_instance_id == instance_id)
        return stmt
