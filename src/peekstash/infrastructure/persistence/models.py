"""SQLAlchemy ORM models for peekstash.

Layout:
- stash_instances: upstream Stash servers
- stash_*: cached entities, one row per (id, stash_instance_id)
- junction tables: relationships, carrying BOTH sides' ids and instance ids
- sync_state / sync_settings: sync bookkeeping
- users + user_*: per-user annotations, always keyed by instance id too
"""

import uuid
from datetime import UTC, datetime

import sqlalchemy as sa
from sqlalchemy import (
    BigInteger,
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Hey future me, utc_now() ensures ALL timestamps are UTC! SQLite stores no tzinfo, so
# whatever we write comes back naive - always compare through ensure_utc_aware().
def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


def ensure_utc_aware(dt: datetime) -> datetime:
    """Ensure datetime is UTC-aware, assuming naive datetimes are UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Instances
# =============================================================================


class StashInstanceModel(Base):
    """One configured upstream Stash server.

    priority: lower wins. The registry treats the lowest-priority enabled row as
    the "default" instance for callers that don't name one.
    """

    __tablename__ = "stash_instances"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    url: Mapped[str] = mapped_column(String(1024), nullable=False)
    api_key: Mapped[str] = mapped_column(String(1024), nullable=False, default="")
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (Index("ix_stash_instances_enabled_priority", "enabled", "priority"),)


# =============================================================================
# Cached entities
# =============================================================================


# Hey future me, THE composite identity lives here: (id, stash_instance_id) is the primary
# key of every entity table. stash_created_at / stash_updated_at are the raw ISO strings Stash
# sent us (with its own timezone offset) - we keep them as text because the sync cursor is
# built from them verbatim. deleted_at NULL means live; sync never hard-deletes.
class StashEntityMixin:
    """Columns shared by all seven cached entity tables."""

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    stash_instance_id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default="", index=True
    )
    stash_created_at: Mapped[str | None] = mapped_column(String(40), nullable=True)
    stash_updated_at: Mapped[str | None] = mapped_column(String(40), nullable=True)
    synced_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    deleted_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True, index=True
    )


class SceneModel(StashEntityMixin, Base):
    """Cached Stash scene."""

    __tablename__ = "stash_scenes"

    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    code: Mapped[str | None] = mapped_column(String(255), nullable=True)
    date: Mapped[str | None] = mapped_column(String(20), nullable=True)
    studio_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rating100: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    organized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    director: Mapped[str | None] = mapped_column(String(255), nullable=True)
    urls: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_bit_rate: Mapped[int | None] = mapped_column(Integer, nullable=True)
    file_frame_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    file_width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    file_height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    file_video_codec: Mapped[str | None] = mapped_column(String(50), nullable=True)
    file_audio_codec: Mapped[str | None] = mapped_column(String(50), nullable=True)
    file_size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    path_screenshot: Mapped[str | None] = mapped_column(Text, nullable=True)
    path_preview: Mapped[str | None] = mapped_column(Text, nullable=True)
    path_sprite: Mapped[str | None] = mapped_column(Text, nullable=True)
    path_vtt: Mapped[str | None] = mapped_column(Text, nullable=True)
    path_stream: Mapped[str | None] = mapped_column(Text, nullable=True)
    o_counter: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    play_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    play_duration: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    # JSON array of tag ids inherited from performers, studio and groups
    inherited_tag_ids: Mapped[str | None] = mapped_column(Text, nullable=True)
    phash: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    phashes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_stash_scenes_studio", "studio_id", "stash_instance_id"),
        Index("ix_stash_scenes_browse_created", "deleted_at", "stash_created_at"),
        Index("ix_stash_scenes_browse_date", "deleted_at", "date"),
    )


class PerformerModel(StashEntityMixin, Base):
    """Cached Stash performer."""

    __tablename__ = "stash_performers"

    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    disambiguation: Mapped[str | None] = mapped_column(String(255), nullable=True)
    gender: Mapped[str | None] = mapped_column(String(50), nullable=True)
    birthdate: Mapped[str | None] = mapped_column(String(20), nullable=True)
    favorite: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rating100: Mapped[int | None] = mapped_column(Integer, nullable=True)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    alias_list: Mapped[str | None] = mapped_column(Text, nullable=True)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ethnicity: Mapped[str | None] = mapped_column(String(100), nullable=True)
    hair_color: Mapped[str | None] = mapped_column(String(50), nullable=True)
    eye_color: Mapped[str | None] = mapped_column(String(50), nullable=True)
    height_cm: Mapped[int | None] = mapped_column(Integer, nullable=True)
    weight_kg: Mapped[int | None] = mapped_column(Integer, nullable=True)
    measurements: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tattoos: Mapped[str | None] = mapped_column(Text, nullable=True)
    piercings: Mapped[str | None] = mapped_column(Text, nullable=True)
    career_length: Mapped[str | None] = mapped_column(String(100), nullable=True)
    death_date: Mapped[str | None] = mapped_column(String(20), nullable=True)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    stash_ids: Mapped[str | None] = mapped_column(Text, nullable=True)
    scene_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    image_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    gallery_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    group_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (Index("ix_stash_performers_name", "name"),)


class StudioModel(StashEntityMixin, Base):
    """Cached Stash studio."""

    __tablename__ = "stash_studios"

    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    parent_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    favorite: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rating100: Mapped[int | None] = mapped_column(Integer, nullable=True)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    stash_ids: Mapped[str | None] = mapped_column(Text, nullable=True)
    scene_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    image_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    gallery_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    performer_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    group_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (Index("ix_stash_studios_name", "name"),)


class TagModel(StashEntityMixin, Base):
    """Cached Stash tag. parent_ids is a JSON array of parent tag ids (same instance)."""

    __tablename__ = "stash_tags"

    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    favorite: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    aliases: Mapped[str | None] = mapped_column(Text, nullable=True)
    parent_ids: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    color: Mapped[str | None] = mapped_column(String(20), nullable=True)
    stash_ids: Mapped[str | None] = mapped_column(Text, nullable=True)
    scene_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    image_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    gallery_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    performer_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    studio_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    group_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    scene_marker_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    scene_count_via_performers: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    __table_args__ = (Index("ix_stash_tags_name", "name"),)


class GroupModel(StashEntityMixin, Base):
    """Cached Stash group (formerly "movie")."""

    __tablename__ = "stash_groups"

    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    date: Mapped[str | None] = mapped_column(String(20), nullable=True)
    studio_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rating100: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    director: Mapped[str | None] = mapped_column(String(255), nullable=True)
    synopsis: Mapped[str | None] = mapped_column(Text, nullable=True)
    urls: Mapped[str | None] = mapped_column(Text, nullable=True)
    front_image_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    back_image_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    scene_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    performer_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class GalleryModel(StashEntityMixin, Base):
    """Cached Stash gallery."""

    __tablename__ = "stash_galleries"

    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    date: Mapped[str | None] = mapped_column(String(20), nullable=True)
    studio_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rating100: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cover_image_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    image_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    code: Mapped[str | None] = mapped_column(String(255), nullable=True)
    photographer: Mapped[str | None] = mapped_column(String(255), nullable=True)
    urls: Mapped[str | None] = mapped_column(Text, nullable=True)
    folder_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_basename: Mapped[str | None] = mapped_column(Text, nullable=True)
    cover_path: Mapped[str | None] = mapped_column(Text, nullable=True)


class ImageModel(StashEntityMixin, Base):
    """Cached Stash image."""

    __tablename__ = "stash_images"

    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    code: Mapped[str | None] = mapped_column(String(255), nullable=True)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    photographer: Mapped[str | None] = mapped_column(String(255), nullable=True)
    urls: Mapped[str | None] = mapped_column(Text, nullable=True)
    date: Mapped[str | None] = mapped_column(String(20), nullable=True)
    studio_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rating100: Mapped[int | None] = mapped_column(Integer, nullable=True)
    o_counter: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    organized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    file_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    file_size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    path_thumbnail: Mapped[str | None] = mapped_column(Text, nullable=True)
    path_preview: Mapped[str | None] = mapped_column(Text, nullable=True)
    path_image: Mapped[str | None] = mapped_column(Text, nullable=True)


# =============================================================================
# Junction tables
# =============================================================================


# Listen up, every junction carries BOTH instance ids. Joining scene_performers to
# stash_performers on performer_id alone would attach instance B's performer "5" to
# instance A's scenes. Always join on (performer_id, performer_instance_id).
class ScenePerformerModel(Base):
    __tablename__ = "scene_performers"

    scene_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    scene_instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    performer_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    performer_instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)

    __table_args__ = (
        Index("ix_scene_performers_performer", "performer_id", "performer_instance_id"),
    )


class SceneTagModel(Base):
    __tablename__ = "scene_tags"

    scene_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    scene_instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tag_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tag_instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)

    __table_args__ = (Index("ix_scene_tags_tag", "tag_id", "tag_instance_id"),)


class SceneGroupModel(Base):
    __tablename__ = "scene_groups"

    scene_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    scene_instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    group_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    group_instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    scene_index: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (Index("ix_scene_groups_group", "group_id", "group_instance_id"),)


class SceneGalleryModel(Base):
    __tablename__ = "scene_galleries"

    scene_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    scene_instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    gallery_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    gallery_instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)

    __table_args__ = (
        Index("ix_scene_galleries_gallery", "gallery_id", "gallery_instance_id"),
    )


class ImagePerformerModel(Base):
    __tablename__ = "image_performers"

    image_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    image_instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    performer_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    performer_instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)

    __table_args__ = (
        Index("ix_image_performers_performer", "performer_id", "performer_instance_id"),
    )


class ImageTagModel(Base):
    __tablename__ = "image_tags"

    image_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    image_instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tag_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tag_instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)

    __table_args__ = (Index("ix_image_tags_tag", "tag_id", "tag_instance_id"),)


class ImageGalleryModel(Base):
    __tablename__ = "image_galleries"

    image_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    image_instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    gallery_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    gallery_instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)

    __table_args__ = (
        Index("ix_image_galleries_gallery", "gallery_id", "gallery_instance_id"),
    )


class GalleryPerformerModel(Base):
    __tablename__ = "gallery_performers"

    gallery_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    gallery_instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    performer_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    performer_instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)

    __table_args__ = (
        Index("ix_gallery_performers_performer", "performer_id", "performer_instance_id"),
    )


class GalleryTagModel(Base):
    __tablename__ = "gallery_tags"

    gallery_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    gallery_instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tag_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tag_instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)

    __table_args__ = (Index("ix_gallery_tags_tag", "tag_id", "tag_instance_id"),)


class PerformerTagModel(Base):
    __tablename__ = "performer_tags"

    performer_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    performer_instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tag_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tag_instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)

    __table_args__ = (Index("ix_performer_tags_tag", "tag_id", "tag_instance_id"),)


class StudioTagModel(Base):
    __tablename__ = "studio_tags"

    studio_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    studio_instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tag_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tag_instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)

    __table_args__ = (Index("ix_studio_tags_tag", "tag_id", "tag_instance_id"),)


class GroupTagModel(Base):
    __tablename__ = "group_tags"

    group_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    group_instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tag_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tag_instance_id: Mapped[str] = mapped_column(String(36), primary_key=True)

    __table_args__ = (Index("ix_group_tags_tag", "tag_id", "tag_instance_id"),)


# =============================================================================
# Sync bookkeeping
# =============================================================================


# Hey future me, last_full_sync / last_incremental_sync are UPSTREAM cursors: the max
# updated_at string Stash reported for that pass, not our wall clock. The *_actual columns
# are our wall clock, for the admin status page. Cursors are written only after a type
# synced successfully, so a failed pass retries from the old cursor next time.
class SyncStateModel(Base):
    """Per (instance, entity type) sync cursor and last-run stats."""

    __tablename__ = "sync_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stash_instance_id: Mapped[str] = mapped_column(String(36), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    last_full_sync: Mapped[str | None] = mapped_column(String(40), nullable=True)
    last_incremental_sync: Mapped[str | None] = mapped_column(String(40), nullable=True)
    last_full_sync_actual: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    last_incremental_sync_actual: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    last_sync_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_sync_duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_entities: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        sa.UniqueConstraint(
            "stash_instance_id", "entity_type", name="uq_sync_state_instance_type"
        ),
    )


class SyncSettingsModel(Base):
    """Singleton row (id=1) with admin-editable sync settings."""

    __tablename__ = "sync_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    sync_interval_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    enable_scan_subscription: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    enable_plugin_webhook: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )


# =============================================================================
# Users and per-user annotations
# =============================================================================


class UserModel(Base):
    """Minimal user record. Authentication lives outside this service."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )


class UserStashInstanceModel(Base):
    """Instances a user may browse. No rows means every enabled instance."""

    __tablename__ = "user_stash_instances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    instance_id: Mapped[str] = mapped_column(
        ForeignKey("stash_instances.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        sa.UniqueConstraint("user_id", "instance_id", name="uq_user_stash_instance"),
    )


class UserHiddenEntityModel(Base):
    """Entities a user hid directly. instance_id "" hides the id on every instance."""

    __tablename__ = "user_hidden_entities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    instance_id: Mapped[str] = mapped_column(String(36), nullable=False, default="")
    hidden_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        sa.UniqueConstraint(
            "user_id", "entity_type", "entity_id", "instance_id",
            name="uq_user_hidden_entity",
        ),
    )


# Hey future me - this table is DERIVED. Everything except reason='hidden' rows added by
# add_hidden_entity() gets wiped and rebuilt by recompute_for_user(). Read paths anti-join
# against it; they never look at user_hidden_entities or restrictions directly.
class UserExcludedEntityModel(Base):
    """Precomputed per-user exclusion set consumed by the query builders."""

    __tablename__ = "user_excluded_entities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    instance_id: Mapped[str] = mapped_column(String(36), nullable=False, default="")
    reason: Mapped[str] = mapped_column(String(20), nullable=False)
    computed_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        sa.UniqueConstraint(
            "user_id", "entity_type", "entity_id", "instance_id",
            name="uq_user_excluded_entity",
        ),
        Index("ix_user_excluded_user_type", "user_id", "entity_type"),
        Index("ix_user_excluded_type_entity", "entity_type", "entity_id"),
    )


class UserContentRestrictionModel(Base):
    """Admin-defined restriction on one plural entity type for one user.

    entity_type is plural ("tags", "studios", "groups", "galleries").
    entity_ids is a JSON array of "id" or "id:instanceId" strings.
    """

    __tablename__ = "user_content_restrictions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    mode: Mapped[str] = mapped_column(String(10), nullable=False, default="EXCLUDE")
    entity_ids: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    restrict_empty: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        sa.UniqueConstraint("user_id", "entity_type", name="uq_user_restriction_type"),
    )


class UserEntityStatsModel(Base):
    """Visible entity count per user and type, refreshed with exclusions."""

    __tablename__ = "user_entity_stats"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    instance_id: Mapped[str] = mapped_column(String(36), nullable=False, default="")
    visible_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        sa.UniqueConstraint(
            "user_id", "entity_type", "instance_id", name="uq_user_entity_stats"
        ),
    )


# ---------------------------------------------------------------------------
# Ratings: (user_id, instance_id, <entity>_id) unique per table
# ---------------------------------------------------------------------------


class RatingMixin:
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    instance_id: Mapped[str] = mapped_column(String(36), nullable=False, default="")
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    favorite: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )


class SceneRatingModel(RatingMixin, Base):
    __tablename__ = "scene_ratings"

    scene_id: Mapped[str] = mapped_column(String(64), nullable=False)

    __table_args__ = (
        sa.UniqueConstraint("user_id", "instance_id", "scene_id", name="uq_scene_rating"),
    )


class PerformerRatingModel(RatingMixin, Base):
    __tablename__ = "performer_ratings"

    performer_id: Mapped[str] = mapped_column(String(64), nullable=False)

    __table_args__ = (
        sa.UniqueConstraint(
            "user_id", "instance_id", "performer_id", name="uq_performer_rating"
        ),
    )


class StudioRatingModel(RatingMixin, Base):
    __tablename__ = "studio_ratings"

    studio_id: Mapped[str] = mapped_column(String(64), nullable=False)

    __table_args__ = (
        sa.UniqueConstraint("user_id", "instance_id", "studio_id", name="uq_studio_rating"),
    )


class TagRatingModel(RatingMixin, Base):
    __tablename__ = "tag_ratings"

    tag_id: Mapped[str] = mapped_column(String(64), nullable=False)

    __table_args__ = (
        sa.UniqueConstraint("user_id", "instance_id", "tag_id", name="uq_tag_rating"),
    )


class GroupRatingModel(RatingMixin, Base):
    __tablename__ = "group_ratings"

    group_id: Mapped[str] = mapped_column(String(64), nullable=False)

    __table_args__ = (
        sa.UniqueConstraint("user_id", "instance_id", "group_id", name="uq_group_rating"),
    )


class GalleryRatingModel(RatingMixin, Base):
    __tablename__ = "gallery_ratings"

    gallery_id: Mapped[str] = mapped_column(String(64), nullable=False)

    __table_args__ = (
        sa.UniqueConstraint(
            "user_id", "instance_id", "gallery_id", name="uq_gallery_rating"
        ),
    )


class ImageRatingModel(RatingMixin, Base):
    __tablename__ = "image_ratings"

    image_id: Mapped[str] = mapped_column(String(64), nullable=False)

    __table_args__ = (
        sa.UniqueConstraint("user_id", "instance_id", "image_id", name="uq_image_rating"),
    )


# ---------------------------------------------------------------------------
# Watch history and derived stats
# ---------------------------------------------------------------------------


class WatchHistoryModel(Base):
    """Per (user, instance, scene) playback record. Source of truth for stats.

    o_history / play_history are JSON arrays of ISO timestamps, newest last.
    """

    __tablename__ = "watch_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    instance_id: Mapped[str] = mapped_column(String(36), nullable=False, default="")
    scene_id: Mapped[str] = mapped_column(String(64), nullable=False)
    play_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    play_duration: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    o_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    o_history: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    play_history: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    resume_time: Mapped[float | None] = mapped_column(Float, nullable=True)
    last_played_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        sa.UniqueConstraint(
            "user_id", "instance_id", "scene_id", name="uq_watch_history_scene"
        ),
    )


class UserStatsMixin:
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    instance_id: Mapped[str] = mapped_column(String(36), nullable=False, default="")
    o_counter: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    play_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_played_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    last_o_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )


class UserPerformerStatsModel(UserStatsMixin, Base):
    __tablename__ = "user_performer_stats"

    performer_id: Mapped[str] = mapped_column(String(64), nullable=False)

    __table_args__ = (
        sa.UniqueConstraint(
            "user_id", "instance_id", "performer_id", name="uq_user_performer_stats"
        ),
    )


class UserStudioStatsModel(UserStatsMixin, Base):
    __tablename__ = "user_studio_stats"

    studio_id: Mapped[str] = mapped_column(String(64), nullable=False)

    __table_args__ = (
        sa.UniqueConstraint(
            "user_id", "instance_id", "studio_id", name="uq_user_studio_stats"
        ),
    )


class UserTagStatsModel(UserStatsMixin, Base):
    __tablename__ = "user_tag_stats"

    tag_id: Mapped[str] = mapped_column(String(64), nullable=False)

    __table_args__ = (
        sa.UniqueConstraint("user_id", "instance_id", "tag_id", name="uq_user_tag_stats"),
    )


class UserEntityRankingModel(Base):
    """Engagement ranking of one entity for one user."""

    __tablename__ = "user_entity_rankings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    instance_id: Mapped[str] = mapped_column(String(36), nullable=False, default="")
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    play_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    o_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    play_duration: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    library_presence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    engagement_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    engagement_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    percentile_rank: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rank: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    computed_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        sa.UniqueConstraint(
            "user_id", "instance_id", "entity_type", "entity_id",
            name="uq_user_entity_ranking",
        ),
        Index("ix_user_entity_rankings_user_type", "user_id", "entity_type"),
    )
