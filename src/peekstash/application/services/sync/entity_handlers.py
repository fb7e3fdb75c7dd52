"""Per-kind mapping from Stash GraphQL records to cache rows.

Each EntityHandler knows three things about its kind: which columns a Stash record
maps to, which junction rows it owns, and how to write a batch of both. The sync
service never branches on entity type itself; it looks the handler up in HANDLERS.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import delete
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from peekstash.application.services.sync.helpers import extract_phashes, validate_entity_id
from peekstash.domain.value_objects import EntityType
from peekstash.infrastructure.persistence.batch_utils import (
    DEFAULT_IN_CHUNK,
    chunked,
    insert_chunk_size,
)
from peekstash.infrastructure.persistence.entity_tables import (
    ENTITY_MODELS,
    GALLERY_PERFORMERS,
    GALLERY_TAGS,
    GROUP_TAGS,
    IMAGE_GALLERIES,
    IMAGE_PERFORMERS,
    IMAGE_TAGS,
    PERFORMER_TAGS,
    SCENE_GALLERIES,
    SCENE_GROUPS,
    SCENE_PERFORMERS,
    SCENE_TAGS,
    STUDIO_TAGS,
    JunctionTable,
    junctions_owned_by,
)
from peekstash.infrastructure.persistence.models import utc_now

logger = logging.getLogger(__name__)

_KEY_COLUMNS = ("id", "stash_instance_id")


def _ref_id(obj: Any) -> str | None:
    """{"id": "5"} -> "5"; anything else -> None."""
    if isinstance(obj, dict):
        value = obj.get("id")
        return str(value) if value is not None else None
    return None


def _json_list(value: Any) -> str:
    return json.dumps(list(value or []))


def _json_or_none(value: Any) -> str | None:
    return json.dumps(value) if value else None


def _rounded(value: Any) -> int | None:
    if value is None or value == 0:
        return None
    return int(round(float(value)))


def _stash_ids(value: Any) -> str | None:
    if not value:
        return None
    return json.dumps(
        [{"endpoint": s.get("endpoint"), "stash_id": s.get("stash_id")} for s in value]
    )


@dataclass
class BatchResult:
    """What write_batch() did with one page."""

    written: int = 0
    skipped: int = 0
    junction_rows: dict[str, int] = field(default_factory=dict)


class EntityHandler:
    """Base handler. Subclasses implement map_columns() and relations()."""

    entity_type: EntityType

    @property
    def model(self) -> type[Any]:
        return ENTITY_MODELS[self.entity_type]

    def map_columns(self, item: dict[str, Any]) -> dict[str, Any]:
        """Kind-specific columns. Must return the same keys for every item."""
        raise NotImplementedError

    def relations(self, item: dict[str, Any]) -> list[tuple[JunctionTable, str, dict[str, Any]]]:
        """(junction, target id, extra columns) for every relationship the item owns."""
        return []

    def build_row(self, item: dict[str, Any], instance_id: str, now: datetime) -> dict[str, Any]:
        row = {
            "id": item["id"],
            "stash_instance_id": instance_id,
            "stash_created_at": item.get("created_at"),
            "stash_updated_at": item.get("updated_at"),
            "synced_at": now,
            "deleted_at": None,
        }
        row.update(self.map_columns(item))
        return row

    async def write_batch(
        self, session: AsyncSession, items: list[dict[str, Any]], instance_id: str
    ) -> BatchResult:
        """Upsert a page of records and rewrite the junction rows they own.

        Invalid ids are skipped with a warning. Upserts reset deleted_at, so an
        entity that reappears upstream is revived. Junction rows for the batch are
        deleted (scoped to this instance) before the fresh set is inserted, which
        drops relationships removed upstream.
        """
        result = BatchResult()
        valid = [item for item in items if validate_entity_id(item.get("id"))]
        result.skipped = len(items) - len(valid)
        if result.skipped:
            logger.warning(
                "Skipping %d %s with invalid ids", result.skipped, self.entity_type.plural
            )
        if not valid:
            return result

        now = utc_now()
        rows = [self.build_row(item, instance_id, now) for item in valid]
        await self._upsert_rows(session, rows)
        result.written = len(rows)

        ids = [item["id"] for item in valid]
        owned = junctions_owned_by(self.entity_type)
        for junction in owned:
            for id_chunk in chunked(ids, DEFAULT_IN_CHUNK):
                await session.execute(
                    delete(junction.model).where(
                        junction.owner_id.in_(id_chunk),
                        junction.owner_instance_id == instance_id,
                    )
                )

        link_rows: dict[str, list[dict[str, Any]]] = {j.model.__tablename__: [] for j in owned}
        junction_by_table = {j.model.__tablename__: j for j in owned}
        for item in valid:
            for junction, target_id, extra in self.relations(item):
                if not validate_entity_id(target_id):
                    continue
                link_rows[junction.model.__tablename__].append(
                    {
                        junction.owner_column: item["id"],
                        junction.owner_column.replace("_id", "_instance_id"): instance_id,
                        junction.target_column: target_id,
                        junction.target_column.replace("_id", "_instance_id"): instance_id,
                        **extra,
                    }
                )

        for table_name, link_batch in link_rows.items():
            if not link_batch:
                continue
            junction = junction_by_table[table_name]
            size = insert_chunk_size(len(link_batch[0]))
            for chunk in chunked(link_batch, size):
                stmt = sqlite_insert(junction.model).values(list(chunk)).on_conflict_do_nothing()
                await session.execute(stmt)
            result.junction_rows[table_name] = len(link_batch)

        return result

    async def _upsert_rows(self, session: AsyncSession, rows: list[dict[str, Any]]) -> None:
        columns = list(rows[0])
        size = insert_chunk_size(len(columns))
        for chunk in chunked(rows, size):
            stmt = sqlite_insert(self.model).values(list(chunk))
            stmt = stmt.on_conflict_do_update(
                index_elements=list(_KEY_COLUMNS),
                set_={c: stmt.excluded[c] for c in columns if c not in _KEY_COLUMNS},
            )
            await session.execute(stmt)


class SceneHandler(EntityHandler):
    entity_type = EntityType.SCENE

    def map_columns(self, item: dict[str, Any]) -> dict[str, Any]:
        files = item.get("files") or []
        file = files[0] if files else {}
        paths = item.get("paths") or {}
        phash, phashes = extract_phashes(files)
        return {
            "title": item.get("title"),
            "code": item.get("code"),
            "date": item.get("date"),
            "studio_id": _ref_id(item.get("studio")),
            "rating100": item.get("rating100"),
            "duration": _rounded(file.get("duration")),
            "organized": bool(item.get("organized")),
            "details": item.get("details"),
            "director": item.get("director"),
            "urls": _json_list(item.get("urls")),
            "file_path": file.get("path"),
            "file_bit_rate": file.get("bit_rate"),
            "file_frame_rate": file.get("frame_rate"),
            "file_width": file.get("width"),
            "file_height": file.get("height"),
            "file_video_codec": file.get("video_codec"),
            "file_audio_codec": file.get("audio_codec"),
            "file_size": file.get("size"),
            "path_screenshot": paths.get("screenshot"),
            "path_preview": paths.get("preview"),
            "path_sprite": paths.get("sprite"),
            "path_vtt": paths.get("vtt"),
            "path_stream": paths.get("stream"),
            "o_counter": item.get("o_counter") or 0,
            "play_count": item.get("play_count") or 0,
            "play_duration": item.get("play_duration") or 0.0,
            "phash": phash,
            "phashes": phashes,
        }

    def relations(self, item: dict[str, Any]) -> list[tuple[JunctionTable, str, dict[str, Any]]]:
        links: list[tuple[JunctionTable, str, dict[str, Any]]] = []
        for performer in item.get("performers") or []:
            links.append((SCENE_PERFORMERS, _ref_id(performer), {}))
        for tag in item.get("tags") or []:
            links.append((SCENE_TAGS, _ref_id(tag), {}))
        for entry in item.get("groups") or []:
            # Stash returns {group: {id}, scene_index}; older servers return the group itself
            group = entry.get("group") or entry
            links.append(
                (SCENE_GROUPS, _ref_id(group), {"scene_index": entry.get("scene_index")})
            )
        for gallery in item.get("galleries") or []:
            links.append((SCENE_GALLERIES, _ref_id(gallery), {}))
        return links


class PerformerHandler(EntityHandler):
    entity_type = EntityType.PERFORMER

    def map_columns(self, item: dict[str, Any]) -> dict[str, Any]:
        urls = item.get("urls") or []
        return {
            "name": item.get("name") or "",
            "disambiguation": item.get("disambiguation"),
            "gender": item.get("gender"),
            "birthdate": item.get("birthdate"),
            "favorite": bool(item.get("favorite")),
            "rating100": item.get("rating100"),
            "details": item.get("details"),
            "alias_list": _json_list(item.get("alias_list")),
            "country": item.get("country"),
            "ethnicity": item.get("ethnicity"),
            "hair_color": item.get("hair_color"),
            "eye_color": item.get("eye_color"),
            "height_cm": item.get("height_cm"),
            "weight_kg": item.get("weight"),
            "measurements": item.get("measurements"),
            "tattoos": item.get("tattoos"),
            "piercings": item.get("piercings"),
            "career_length": item.get("career_length"),
            "death_date": item.get("death_date"),
            "url": urls[0] if urls else item.get("url"),
            "image_path": item.get("image_path"),
            "stash_ids": _stash_ids(item.get("stash_ids")),
            "scene_count": item.get("scene_count") or 0,
            "image_count": item.get("image_count") or 0,
            "gallery_count": item.get("gallery_count") or 0,
            "group_count": item.get("group_count") or 0,
        }

    def relations(self, item: dict[str, Any]) -> list[tuple[JunctionTable, str, dict[str, Any]]]:
        return [(PERFORMER_TAGS, _ref_id(tag), {}) for tag in item.get("tags") or []]


class StudioHandler(EntityHandler):
    entity_type = EntityType.STUDIO

    def map_columns(self, item: dict[str, Any]) -> dict[str, Any]:
        return {
            "name": item.get("name") or "",
            "parent_id": _ref_id(item.get("parent_studio")),
            "favorite": bool(item.get("favorite")),
            "rating100": item.get("rating100"),
            "details": item.get("details"),
            "url": item.get("url"),
            "image_path": item.get("image_path"),
            "stash_ids": _stash_ids(item.get("stash_ids")),
            "scene_count": item.get("scene_count") or 0,
            "image_count": item.get("image_count") or 0,
            "gallery_count": item.get("gallery_count") or 0,
            "performer_count": item.get("performer_count") or 0,
            "group_count": item.get("group_count") or 0,
        }

    def relations(self, item: dict[str, Any]) -> list[tuple[JunctionTable, str, dict[str, Any]]]:
        return [(STUDIO_TAGS, _ref_id(tag), {}) for tag in item.get("tags") or []]


class TagHandler(EntityHandler):
    entity_type = EntityType.TAG

    # scene_count_via_performers is derived after sync; leaving it out of the row keeps
    # the upsert from zeroing it on every pass.
    def map_columns(self, item: dict[str, Any]) -> dict[str, Any]:
        parent_ids = [pid for pid in (_ref_id(p) for p in item.get("parents") or []) if pid]
        return {
            "name": item.get("name") or "",
            "favorite": bool(item.get("favorite")),
            "description": item.get("description"),
            "aliases": _json_list(item.get("aliases")),
            "parent_ids": json.dumps(parent_ids),
            "image_path": item.get("image_path"),
            "color": item.get("color"),
            "stash_ids": _stash_ids(item.get("stash_ids")),
            "scene_count": item.get("scene_count") or 0,
            "image_count": item.get("image_count") or 0,
            "gallery_count": item.get("gallery_count") or 0,
            "performer_count": item.get("performer_count") or 0,
            "studio_count": item.get("studio_count") or 0,
            "group_count": item.get("group_count") or 0,
            "scene_marker_count": item.get("scene_marker_count") or 0,
        }


class GroupHandler(EntityHandler):
    entity_type = EntityType.GROUP

    def map_columns(self, item: dict[str, Any]) -> dict[str, Any]:
        return {
            "name": item.get("name") or "",
            "date": item.get("date"),
            "studio_id": _ref_id(item.get("studio")),
            "rating100": item.get("rating100"),
            "duration": _rounded(item.get("duration")),
            "director": item.get("director"),
            "synopsis": item.get("synopsis"),
            "urls": _json_list(item.get("urls")),
            "front_image_path": item.get("front_image_path"),
            "back_image_path": item.get("back_image_path"),
            "scene_count": item.get("scene_count") or 0,
            "performer_count": item.get("performer_count") or 0,
        }

    def relations(self, item: dict[str, Any]) -> list[tuple[JunctionTable, str, dict[str, Any]]]:
        return [(GROUP_TAGS, _ref_id(tag), {}) for tag in item.get("tags") or []]


class GalleryHandler(EntityHandler):
    entity_type = EntityType.GALLERY

    def map_columns(self, item: dict[str, Any]) -> dict[str, Any]:
        files = item.get("files") or []
        urls = item.get("urls") or []
        return {
            "title": item.get("title"),
            "date": item.get("date"),
            "studio_id": _ref_id(item.get("studio")),
            "rating100": item.get("rating100"),
            "cover_image_id": _ref_id(item.get("cover")),
            "image_count": item.get("image_count") or 0,
            "details": item.get("details"),
            "url": urls[0] if urls else item.get("url"),
            "code": item.get("code"),
            "photographer": item.get("photographer"),
            "urls": _json_or_none(urls),
            "folder_path": (item.get("folder") or {}).get("path"),
            "file_basename": files[0].get("basename") if files else None,
            "cover_path": (item.get("paths") or {}).get("cover"),
        }

    def relations(self, item: dict[str, Any]) -> list[tuple[JunctionTable, str, dict[str, Any]]]:
        links: list[tuple[JunctionTable, str, dict[str, Any]]] = []
        for performer in item.get("performers") or []:
            links.append((GALLERY_PERFORMERS, _ref_id(performer), {}))
        for tag in item.get("tags") or []:
            links.append((GALLERY_TAGS, _ref_id(tag), {}))
        return links


class ImageHandler(EntityHandler):
    entity_type = EntityType.IMAGE

    def map_columns(self, item: dict[str, Any]) -> dict[str, Any]:
        visual_files = item.get("visual_files") or item.get("files") or []
        file = visual_files[0] if visual_files else {}
        paths = item.get("paths") or {}
        return {
            "title": item.get("title"),
            "code": item.get("code"),
            "details": item.get("details"),
            "photographer": item.get("photographer"),
            "urls": _json_or_none(item.get("urls")),
            "date": item.get("date"),
            "studio_id": _ref_id(item.get("studio")),
            "rating100": item.get("rating100"),
            "o_counter": item.get("o_counter") or 0,
            "organized": bool(item.get("organized")),
            "file_path": file.get("path"),
            "width": file.get("width"),
            "height": file.get("height"),
            "file_size": file.get("size"),
            "path_thumbnail": paths.get("thumbnail"),
            "path_preview": paths.get("preview"),
            "path_image": paths.get("image"),
        }

    def relations(self, item: dict[str, Any]) -> list[tuple[JunctionTable, str, dict[str, Any]]]:
        links: list[tuple[JunctionTable, str, dict[str, Any]]] = []
        for performer in item.get("performers") or []:
            links.append((IMAGE_PERFORMERS, _ref_id(performer), {}))
        for tag in item.get("tags") or []:
            links.append((IMAGE_TAGS, _ref_id(tag), {}))
        for gallery in item.get("galleries") or []:
            links.append((IMAGE_GALLERIES, _ref_id(gallery), {}))
        return links


HANDLERS: dict[EntityType, EntityHandler] = {
    handler.entity_type: handler
    for handler in (
        SceneHandler(),
        PerformerHandler(),
        StudioHandler(),
        TagHandler(),
        GroupHandler(),
        GalleryHandler(),
        ImageHandler(),
    )
}

_missing = set(EntityType) - set(HANDLERS)
if _missing:
    raise RuntimeError(f"Sync handler registry incomplete: {sorted(m.value for m in _missing)}")


def get_handler(entity_type: EntityType) -> EntityHandler:
    return HANDLERS[entity_type]
