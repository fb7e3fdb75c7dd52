"""Shared machinery for the per-kind library query builders.

A builder turns QueryOptions into ONE SELECT over the cached entity table with:
- the user's rating row outer-joined on (entity id, instance id, user)
- optional per-user stats row outer-joined the same way
- the exclusion anti-join (global "" rows match every instance)
- soft-deleted rows dropped
- instance scoping (specific instance, else the allowed set)
- kind-specific filters and sorts

The count runs over the same FROM/JOIN/WHERE so pagination totals always agree with
the items.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar

from sqlalchemy import (
    ColumnElement,
    Integer,
    Select,
    and_,
    cast,
    collate,
    exists,
    func,
    or_,
    select,
    tuple_,
)
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from peekstash.application.queries import sql_filters
from peekstash.domain.value_objects import GLOBAL_INSTANCE, EntityType
from peekstash.infrastructure.persistence.batch_utils import DEFAULT_IN_CHUNK, chunked
from peekstash.infrastructure.persistence.database import SessionScope
from peekstash.infrastructure.persistence.entity_tables import (
    ENTITY_MODELS,
    RATING_TABLES,
    JunctionTable,
)
from peekstash.infrastructure.persistence.models import (
    StashInstanceModel,
    UserExcludedEntityModel,
    UserStashInstanceModel,
)

logger = logging.getLogger(__name__)

DEFAULT_RANDOM_SEED = 12345
_PRIME = 2147483647


@dataclass
class QueryOptions:
    """Input of every library query.

    filters uses Stash's criterion shape, e.g.
    ``{"tags": {"value": ["3", "7:<instance>"], "modifier": "INCLUDES_ALL"}}``.
    """

    user_id: int
    sort: str | None = None
    sort_direction: str | None = None
    page: int = 1
    per_page: int = 40
    filters: dict[str, Any] = field(default_factory=dict)
    specific_instance_id: str | None = None
    allowed_instance_ids: list[str] | None = None
    search: str | None = None
    random_seed: int | None = None

    @property
    def descending(self) -> bool:
        return (self.sort_direction or "").upper() == "DESC"

    @property
    def offset(self) -> int:
        return (max(self.page, 1) - 1) * self.limit

    @property
    def limit(self) -> int:
        return max(self.per_page, 1)


@dataclass
class QueryResult:
    items: list[dict[str, Any]]
    total: int


@dataclass
class QueryContext:
    """Per-execution aliases handed to the builder hooks."""

    options: QueryOptions
    rating: Any
    stats: Any | None = None
    joins: dict[str, Any] = field(default_factory=dict)

    @property
    def filters(self) -> dict[str, Any]:
        return self.options.filters or {}


def seeded_random_order(id_expr: Any, seed: int) -> ColumnElement[Any]:
    """Deterministic pseudo-random ordering key for an integer id.

    The same seed gives the same order on every page, so paging through a shuffled
    library neither repeats nor skips items.
    """
    mixed = (id_expr + seed) % _PRIME
    return (
        ((mixed * mixed % _PRIME) * 52959209 % _PRIME)
        + ((id_expr + seed) * 1047483763 % _PRIME)
    ) % _PRIME


async def resolve_allowed_instance_ids(session: AsyncSession, user_id: int) -> list[str]:
    """Instances the user may read.

    The user's own selection intersected with the enabled instances. A user without a
    selection, or whose selected instances are all disabled now, sees every enabled
    instance. An empty result (nothing enabled) leaves the cache unscoped.
    """
    enabled = set(
        (
            await session.execute(
                select(StashInstanceModel.id).where(StashInstanceModel.enabled.is_(True))
            )
        ).scalars()
    )
    chosen = set(
        (
            await session.execute(
                select(UserStashInstanceModel.instance_id).where(
                    UserStashInstanceModel.user_id == user_id
                )
            )
        ).scalars()
    )
    allowed = (enabled & chosen) or enabled
    return sorted(allowed)


async def load_related(
    session: AsyncSession,
    junction: JunctionTable,
    owner_keys: list[tuple[str, str]],
) -> dict[tuple[str, str], list[dict[str, Any]]]:
    """Live targets of ``junction`` for each owner (id, instance), as {id, name} dicts."""
    target = ENTITY_MODELS[junction.target]
    name_col = target.name if hasattr(target, "name") else target.title
    related: dict[tuple[str, str], list[dict[str, Any]]] = {}
    for chunk in chunked(owner_keys, DEFAULT_IN_CHUNK):
        rows = await session.execute(
            select(
                junction.owner_id,
                junction.owner_instance_id,
                target.id,
                target.stash_instance_id,
                name_col,
            )
            .join(
                target,
                and_(
                    target.id == junction.target_id,
                    target.stash_instance_id == junction.target_instance_id,
                ),
            )
            .where(
                tuple_(junction.owner_id, junction.owner_instance_id).in_(list(chunk)),
                target.deleted_at.is_(None),
            )
            .order_by(collate(name_col, "NOCASE"))
        )
        for owner_id, owner_inst, target_id, target_inst, name in rows:
            related.setdefault((owner_id, owner_inst), []).append(
                {"id": target_id, "instance_id": target_inst, "name": name}
            )
    return related


def decode_json_text(value: Any) -> Any:
    if not isinstance(value, str) or not value:
        return value
    try:
        return json.loads(value)
    except ValueError:
        return value


class EntityQueryBuilder:
    """Base builder. Subclasses set entity_type and override the hooks they need."""

    entity_type: ClassVar[EntityType]
    # (stats model, column holding the entity id) or None
    stats_table: ClassVar[tuple[type[Any], str] | None] = None
    default_sort: ClassVar[str] = "name"
    default_direction: ClassVar[str] = "ASC"
    search_columns: ClassVar[tuple[str, ...]] = ("name",)
    json_columns: ClassVar[tuple[str, ...]] = ()

    def __init__(self, session_scope: SessionScope) -> None:
        self._session_scope = session_scope

    @property
    def model(self) -> type[Any]:
        return ENTITY_MODELS[self.entity_type]

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def execute(self, options: QueryOptions) -> QueryResult:
        """Run the page query and its count.

        Raises:
            ValueError: if options.sort names a field this kind cannot sort by
        """
        ctx = self._context(options)
        columns = [self.model, *self._extra_columns(ctx)]
        order_by = self._order_by(ctx)

        async with self._session_scope() as session:
            total = (
                await session.execute(self._statement(ctx, func.count()))
            ).scalar() or 0

            rows = (
                await session.execute(
                    self._statement(ctx, *columns)
                    .order_by(*order_by)
                    .limit(options.limit)
                    .offset(options.offset)
                )
            ).all()
            items = [self._serialize(row) for row in rows]
            if items:
                await self._attach_relations(session, items)

        logger.debug(
            "%s query returned %d of %d",
            self.entity_type.value,
            len(items),
            total,
            extra={"user_id": options.user_id, "sort": options.sort},
        )
        return QueryResult(items=items, total=total)

    async def get_by_key(
        self, user_id: int, entity_id: str, instance_id: str
    ) -> dict[str, Any] | None:
        """Single visible entity by composite key (None when missing or excluded)."""
        options = QueryOptions(
            user_id=user_id,
            per_page=1,
            specific_instance_id=instance_id,
            filters={"ids": {"value": [entity_id], "modifier": "INCLUDES"}},
        )
        result = await self.execute(options)
        return result.items[0] if result.items else None

    def _context(self, options: QueryOptions) -> QueryContext:
        rating = aliased(RATING_TABLES[self.entity_type].model)
        stats = aliased(self.stats_table[0]) if self.stats_table else None
        return QueryContext(options=options, rating=rating, stats=stats)

    def _statement(self, ctx: QueryContext, *columns: Any) -> Select[Any]:
        stmt = select(*columns).select_from(self.model)
        stmt = self._join(stmt, ctx)
        return stmt.where(sql_filters.combine(self._where(ctx)))

    # =========================================================================
    # JOINS & COLUMNS
    # =========================================================================

    def _join(self, stmt: Select[Any], ctx: QueryContext) -> Select[Any]:
        model = self.model
        rating = ctx.rating
        rating_id = getattr(rating, RATING_TABLES[self.entity_type].entity_column)
        stmt = stmt.outerjoin(
            rating,
            and_(
                rating_id == model.id,
                rating.instance_id == model.stash_instance_id,
                rating.user_id == ctx.options.user_id,
            ),
        )
        if ctx.stats is not None:
            stats_id = getattr(ctx.stats, self.stats_table[1])  # type: ignore[index]
            stmt = stmt.outerjoin(
                ctx.stats,
                and_(
                    stats_id == model.id,
                    ctx.stats.instance_id == model.stash_instance_id,
                    ctx.stats.user_id == ctx.options.user_id,
                ),
            )
        return stmt

    def _extra_columns(self, ctx: QueryContext) -> list[Any]:
        columns = [
            ctx.rating.rating.label("user_rating"),
            ctx.rating.favorite.label("user_favorite"),
        ]
        if ctx.stats is not None:
            columns += [
                ctx.stats.o_counter.label("user_o_counter"),
                ctx.stats.play_count.label("user_play_count"),
                ctx.stats.last_played_at.label("user_last_played_at"),
                ctx.stats.last_o_at.label("user_last_o_at"),
            ]
        return columns

    # =========================================================================
    # WHERE
    # =========================================================================

    def _where(self, ctx: QueryContext) -> list[ColumnElement[bool] | None]:
        model = self.model
        options = ctx.options
        filters = ctx.filters
        clauses: list[ColumnElement[bool] | None] = [
            model.deleted_at.is_(None),
            self._not_excluded(options.user_id),
            sql_filters.instance_filter(
                model, options.specific_instance_id, options.allowed_instance_ids
            ),
            self._search(options.search),
            sql_filters.ids_filter(filters.get("ids"), model),
            sql_filters.favorite_filter(filters.get("favorite"), ctx.rating.favorite),
            sql_filters.numeric_filter(
                filters.get("rating100"), func.coalesce(ctx.rating.rating, 0)
            ),
            sql_filters.date_filter(filters.get("created_at"), model.stash_created_at),
            sql_filters.date_filter(filters.get("updated_at"), model.stash_updated_at),
        ]
        if ctx.stats is not None:
            clauses += [
                sql_filters.numeric_filter(
                    filters.get("o_counter"), func.coalesce(ctx.stats.o_counter, 0)
                ),
                sql_filters.numeric_filter(
                    filters.get("play_count"), func.coalesce(ctx.stats.play_count, 0)
                ),
            ]
        clauses += self._kind_filters(ctx)
        return clauses

    def _not_excluded(self, user_id: int) -> ColumnElement[bool]:
        model = self.model
        excluded = UserExcludedEntityModel
        return ~exists().where(
            excluded.user_id == user_id,
            excluded.entity_type == self.entity_type.value,
            excluded.entity_id == model.id,
            or_(
                excluded.instance_id == GLOBAL_INSTANCE,
                excluded.instance_id == model.stash_instance_id,
            ),
        )

    def _search(self, search: str | None) -> ColumnElement[bool] | None:
        if not search or not search.strip():
            return None
        columns = [getattr(self.model, name) for name in self.search_columns]
        return sql_filters.text_filter(
            {"value": search.strip(), "modifier": sql_filters.INCLUDES}, *columns
        )

    def _kind_filters(self, ctx: QueryContext) -> list[ColumnElement[bool] | None]:
        return []

    # =========================================================================
    # ORDER BY
    # =========================================================================

    def _name_expr(self) -> ColumnElement[Any]:
        return self.model.name

    def _sort_expressions(self, ctx: QueryContext) -> dict[str, Any]:
        model = self.model
        user_rating = func.coalesce(ctx.rating.rating, 0)
        expressions: dict[str, Any] = {
            "name": collate(self._name_expr(), "NOCASE"),
            "created_at": model.stash_created_at,
            "updated_at": model.stash_updated_at,
            "rating": user_rating,
            "user_rating": user_rating,
            "rating100": user_rating,
        }
        if ctx.stats is not None:
            expressions.update(
                {
                    "o_counter": func.coalesce(ctx.stats.o_counter, 0),
                    "play_count": func.coalesce(ctx.stats.play_count, 0),
                    "last_played_at": ctx.stats.last_played_at,
                    "last_o_at": ctx.stats.last_o_at,
                }
            )
        expressions.update(self._kind_sorts(ctx))
        return expressions

    def _kind_sorts(self, ctx: QueryContext) -> dict[str, Any]:
        return {}

    def _order_by(self, ctx: QueryContext) -> list[Any]:
        options = ctx.options
        sort = (options.sort or self.default_sort).lower()
        if options.sort_direction:
            descending = options.descending
        else:
            descending = self.default_direction == "DESC"

        numeric_id = cast(self.model.id, Integer)
        if sort == "random":
            seed = options.random_seed if options.random_seed is not None else DEFAULT_RANDOM_SEED
            primary = seeded_random_order(numeric_id, seed)
        else:
            expressions = self._sort_expressions(ctx)
            if sort not in expressions:
                raise ValueError(f"Cannot sort {self.entity_type.plural} by '{sort}'")
            primary = expressions[sort]

        # stable tiebreak: same direction, then instance so pages never shuffle
        ordered = [primary, numeric_id, self.model.stash_instance_id]
        return [expr.desc() if descending else expr.asc() for expr in ordered]

    # =========================================================================
    # RESULT SHAPING
    # =========================================================================

    def _serialize(self, row: Any) -> dict[str, Any]:
        entity = row[0]
        item: dict[str, Any] = {
            attr.key: getattr(entity, attr.key)
            for attr in sa_inspect(type(entity)).column_attrs
        }
        for name in self.json_columns:
            item[name] = decode_json_text(item.get(name))
        item["instance_id"] = entity.stash_instance_id
        item.update(zip(row._fields[1:], row[1:]))
        if item.get("user_favorite") is None:
            item["user_favorite"] = False
        return item

    async def _attach_relations(
        self, session: AsyncSession, items: list[dict[str, Any]]
    ) -> None:
        """Hook for kinds that embed related entities in their page."""
        return None
