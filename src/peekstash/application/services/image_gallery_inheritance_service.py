"""Copy gallery metadata down to images that have none of their own.

Runs after a sync. An image in several galleries takes each scalar from the first
live gallery (lowest gallery id) that has a value. Performers and tags are copied
only to images with no performers, respectively no tags, at all. Nothing an image
already carries is ever overwritten.
"""

import logging
import time
from typing import Any

from sqlalchemy import and_, exists, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from peekstash.infrastructure.persistence.database import SessionScope
from peekstash.infrastructure.persistence.models import (
    GalleryModel,
    GalleryPerformerModel,
    GalleryTagModel,
    ImageGalleryModel,
    ImageModel,
    ImagePerformerModel,
    ImageTagModel,
)

logger = logging.getLogger(__name__)

INHERITED_FIELDS = ("studio_id", "date", "photographer", "details")


def _gallery_of_image() -> Any:
    """Join condition: the ImageGalleryModel row's gallery, on the gallery's own instance."""
    return and_(
        GalleryModel.id == ImageGalleryModel.gallery_id,
        GalleryModel.stash_instance_id == ImageGalleryModel.gallery_instance_id,
        GalleryModel.deleted_at.is_(None),
    )


def _image_of_link() -> Any:
    return and_(
        ImageModel.id == ImageGalleryModel.image_id,
        ImageModel.stash_instance_id == ImageGalleryModel.image_instance_id,
        ImageModel.deleted_at.is_(None),
    )


class ImageGalleryInheritanceService:
    """Denormalizes gallery studio, date, photographer, details, performers and tags."""

    def __init__(self, session_scope: SessionScope) -> None:
        self._session_scope = session_scope

    async def apply_gallery_inheritance(self, instance_id: str | None = None) -> dict[str, int]:
        """Apply inheritance to every live image (optionally one instance).

        Returns:
            Rows touched per step
        """
        start = time.monotonic()
        logger.info("Applying gallery inheritance to images...")
        touched: dict[str, int] = {}
        async with self._session_scope() as session:
            for field in INHERITED_FIELDS:
                touched[field] = await self._inherit_scalar(session, field, instance_id)
            touched["performers"] = await self._inherit_junction(
                session, ImagePerformerModel, GalleryPerformerModel, "performer", instance_id
            )
            touched["tags"] = await self._inherit_junction(
                session, ImageTagModel, GalleryTagModel, "tag", instance_id
            )

        logger.info(
            "Gallery inheritance applied in %dms: %s",
            int((time.monotonic() - start) * 1000),
            touched,
        )
        return touched

    @staticmethod
    async def _inherit_scalar(
        session: AsyncSession, field: str, instance_id: str | None
    ) -> int:
        gallery_column = getattr(GalleryModel, field)
        image_column = getattr(ImageModel, field)

        gallery_value = (
            select(gallery_column)
            .select_from(ImageGalleryModel)
            .join(GalleryModel, _gallery_of_image())
            .where(
                ImageGalleryModel.image_id == ImageModel.id,
                ImageGalleryModel.image_instance_id == ImageModel.stash_instance_id,
                gallery_column.is_not(None),
            )
            .order_by(ImageGalleryModel.gallery_id)
            .limit(1)
            .scalar_subquery()
        )
        stmt = (
            update(ImageModel)
            .where(
                ImageModel.deleted_at.is_(None),
                image_column.is_(None),
                gallery_value.is_not(None),
            )
            .values({image_column: gallery_value})
            .execution_options(synchronize_session=False)
        )
        if instance_id is not None:
            stmt = stmt.where(ImageModel.stash_instance_id == instance_id)
        result = await session.execute(stmt)
        return result.rowcount or 0

    @staticmethod
    async def _inherit_junction(
        session: AsyncSession,
        image_junction: type[Any],
        gallery_junction: type[Any],
        target: str,
        instance_id: str | None,
    ) -> int:
        target_id = f"{target}_id"
        target_instance_id = f"{target}_instance_id"
        existing = aliased(image_junction)

        source = (
            select(
                ImageGalleryModel.image_id,
                ImageGalleryModel.image_instance_id,
                getattr(gallery_junction, target_id),
                getattr(gallery_junction, target_instance_id),
            )
            .distinct()
            .select_from(ImageGalleryModel)
            .join(ImageModel, _image_of_link())
            .join(GalleryModel, _gallery_of_image())
            .join(
                gallery_junction,
                and_(
                    gallery_junction.gallery_id == ImageGalleryModel.gallery_id,
                    gallery_junction.gallery_instance_id == ImageGalleryModel.gallery_instance_id,
                ),
            )
            .where(
                ~exists().where(
                    existing.image_id == ImageGalleryModel.image_id,
                    existing.image_instance_id == ImageGalleryModel.image_instance_id,
                )
            )
        )
        if instance_id is not None:
            source = source.where(ImageGalleryModel.image_instance_id == instance_id)

        stmt = (
            sqlite_insert(image_junction)
            .from_select(["image_id", "image_instance_id", target_id, target_instance_id], source)
            .on_conflict_do_nothing()
        )
        result = await session.execute(stmt)
        return result.rowcount or 0
