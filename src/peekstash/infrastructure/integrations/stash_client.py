"""Stash GraphQL client over httpx.

One StashClient per configured instance. The sync engine only needs two query shapes
per entity kind: a paginated id listing (deletion detection) and a paginated list of
full records optionally filtered by ``updated_at > cutoff`` (incremental sync).
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from peekstash.domain.exceptions import ExternalServiceError
from peekstash.domain.value_objects import EntityType

logger = logging.getLogger(__name__)


class StashApiError(ExternalServiceError):
    """Stash could not be reached, answered with an HTTP error, or returned GraphQL errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StashResponseError(StashApiError):
    """Stash answered, but the payload is missing fields we rely on (e.g. ``count``)."""

    pass


@dataclass
class StashPage:
    """One page of a find query."""

    count: int
    items: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class _QuerySpec:
    operation: str  # e.g. "findScenes"
    result_key: str  # e.g. "scenes"
    filter_arg: str  # e.g. "scene_filter"
    filter_type: str  # e.g. "SceneFilterType"
    fields: str


_ID_FIELDS = "id"

_SCENE_FIELDS = """
  id title code date details director urls rating100 organized
  o_counter play_count play_duration created_at updated_at
  files { path size duration video_codec audio_codec width height frame_rate bit_rate
          fingerprints { type value } }
  paths { screenshot preview sprite vtt stream }
  studio { id }
  performers { id }
  tags { id }
  groups { group { id } scene_index }
  galleries { id }
"""

_PERFORMER_FIELDS = """
  id name disambiguation gender birthdate favorite rating100 details alias_list
  country ethnicity hair_color eye_color height_cm weight measurements tattoos
  piercings career_length death_date urls image_path
  scene_count image_count gallery_count group_count created_at updated_at
  tags { id }
  stash_ids { endpoint stash_id }
"""

_STUDIO_FIELDS = """
  id name favorite rating100 details url image_path
  scene_count image_count gallery_count performer_count group_count
  created_at updated_at
  parent_studio { id }
  tags { id }
  stash_ids { endpoint stash_id }
"""

_TAG_FIELDS = """
  id name favorite description aliases image_path
  scene_count image_count gallery_count performer_count studio_count group_count
  scene_marker_count created_at updated_at
  parents { id }
  stash_ids { endpoint stash_id }
"""

_GROUP_FIELDS = """
  id name date duration director synopsis urls rating100
  front_image_path back_image_path scene_count performer_count created_at updated_at
  studio { id }
  tags { id }
"""

_GALLERY_FIELDS = """
  id title date details code photographer urls rating100 image_count
  created_at updated_at
  studio { id }
  folder { path }
  files { basename }
  paths { cover }
  cover { id }
  performers { id }
  tags { id }
"""

_IMAGE_FIELDS = """
  id title code details photographer urls date rating100 o_counter organized
  created_at updated_at
  studio { id }
  visual_files { ... on ImageFile { path width height size } }
  paths { thumbnail preview image }
  performers { id }
  tags { id }
  galleries { id }
"""

_QUERIES: dict[EntityType, _QuerySpec] = {
    EntityType.SCENE: _QuerySpec(
        "findScenes", "scenes", "scene_filter", "SceneFilterType", _SCENE_FIELDS
    ),
    EntityType.PERFORMER: _QuerySpec(
        "findPerformers",
        "performers",
        "performer_filter",
        "PerformerFilterType",
        _PERFORMER_FIELDS,
    ),
    EntityType.STUDIO: _QuerySpec(
        "findStudios", "studios", "studio_filter", "StudioFilterType", _STUDIO_FIELDS
    ),
    EntityType.TAG: _QuerySpec("findTags", "tags", "tag_filter", "TagFilterType", _TAG_FIELDS),
    EntityType.GROUP: _QuerySpec(
        "findGroups", "groups", "group_filter", "GroupFilterType", _GROUP_FIELDS
    ),
    EntityType.GALLERY: _QuerySpec(
        "findGalleries", "galleries", "gallery_filter", "GalleryFilterType", _GALLERY_FIELDS
    ),
    EntityType.IMAGE: _QuerySpec(
        "findImages", "images", "image_filter", "ImageFilterType", _IMAGE_FIELDS
    ),
}


def _build_find_query(query: _QuerySpec, fields: str) -> str:
    return (
        f"query Find($filter: FindFilterType, $entity_filter: {query.filter_type}, "
        f"$ids: [ID!]) {{\n"
        f"  {query.operation}(filter: $filter, {query.filter_arg}: $entity_filter, ids: $ids) {{\n"
        f"    count\n"
        f"    {query.result_key} {{ {fields} }}\n"
        f"  }}\n"
        f"}}"
    )


class StashClient:
    """Async GraphQL client for one Stash instance."""

    # Hey future me, url is the full GraphQL endpoint (http://host:9999/graphql). The API
    # key goes in the "ApiKey" header - Stash ignores Authorization: Bearer. An empty key
    # is valid for Stash servers without authentication, so we only send the header when set.
    def __init__(self, url: str, api_key: str = "", timeout: float = 30.0) -> None:
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Accept": "application/json", "Content-Type": "application/json"}
            if self.api_key:
                headers["ApiKey"] = self.api_key
            self._client = httpx.AsyncClient(headers=headers, timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def execute(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run one GraphQL operation and return its ``data`` object.

        Raises:
            StashApiError: transport failure, non-2xx status, or GraphQL errors
            StashResponseError: body is not a JSON object with ``data``
        """
        client = await self._get_client()
        try:
            response = await client.post(
                self.url, json={"query": query, "variables": variables or {}}
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise StashApiError(
                f"Stash returned HTTP {e.response.status_code} for {self.url}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise StashApiError(f"Stash request failed: {e}") from e

        try:
            payload = response.json()
        except ValueError as e:
            raise StashResponseError("Stash returned a non-JSON body") from e

        if not isinstance(payload, dict):
            raise StashResponseError("Stash returned an unexpected payload")
        if payload.get("errors"):
            messages = "; ".join(
                str(err.get("message", err)) for err in payload["errors"] if err
            )
            raise StashApiError(f"Stash GraphQL error: {messages}")
        data = payload.get("data")
        if not isinstance(data, dict):
            raise StashResponseError("Stash response has no data object")
        return data

    async def _find(
        self,
        entity_type: EntityType,
        fields: str,
        page: int,
        per_page: int,
        entity_filter: dict[str, Any] | None = None,
        ids: list[str] | None = None,
        sort: str = "updated_at",
    ) -> StashPage:
        query = _QUERIES[entity_type]
        variables: dict[str, Any] = {
            "filter": {"page": page, "per_page": per_page, "sort": sort, "direction": "ASC"},
            "entity_filter": entity_filter,
            "ids": ids,
        }
        data = await self.execute(_build_find_query(query, fields), variables)
        result = data.get(query.operation)
        if not isinstance(result, dict):
            raise StashResponseError(f"{query.operation} missing from response")

        count = result.get("count")
        # bool is an int subclass; a true/false count means a broken proxy, not a number
        if not isinstance(count, int) or isinstance(count, bool):
            raise StashResponseError(
                f"{query.operation} returned non-numeric count: {count!r}"
            )
        items = result.get(query.result_key) or []
        if not isinstance(items, list):
            raise StashResponseError(f"{query.operation}.{query.result_key} is not a list")
        return StashPage(count=count, items=items)

    async def find_entities(
        self,
        entity_type: EntityType,
        page: int = 1,
        per_page: int = 500,
        updated_after: str | None = None,
    ) -> StashPage:
        """List full records, optionally only those updated after ``updated_after``.

        ``updated_after`` must already be in Stash's filter format (see
        format_timestamp_for_stash).
        """
        entity_filter = None
        if updated_after:
            entity_filter = {
                "updated_at": {"value": updated_after, "modifier": "GREATER_THAN"}
            }
        return await self._find(
            entity_type, _QUERIES[entity_type].fields, page, per_page, entity_filter
        )

    async def find_entities_by_ids(
        self, entity_type: EntityType, ids: list[str]
    ) -> list[dict[str, Any]]:
        """Fetch full records for specific ids (single-entity sync)."""
        if not ids:
            return []
        result = await self._find(
            entity_type, _QUERIES[entity_type].fields, 1, len(ids), ids=ids
        )
        return result.items

    async def find_entity_ids(
        self, entity_type: EntityType, page: int = 1, per_page: int = 5000
    ) -> StashPage:
        """List only ids, for deletion detection.

        Sorted by id: an edit made while cleanup pages through the listing would move
        the record under an updated_at sort and could make it look deleted.
        """
        return await self._find(entity_type, _ID_FIELDS, page, per_page, sort="id")

    async def count_changed_since(self, entity_type: EntityType, updated_after: str) -> int:
        """Count records updated after the cutoff without transferring them (per_page=0)."""
        result = await self._find(
            entity_type,
            _ID_FIELDS,
            1,
            0,
            {"updated_at": {"value": updated_after, "modifier": "GREATER_THAN"}},
        )
        return result.count

    async def get_version(self) -> str | None:
        """Return the Stash server version string (used by test-connection)."""
        data = await self.execute("query Version { version { version } }")
        version = data.get("version") or {}
        return version.get("version") if isinstance(version, dict) else None
