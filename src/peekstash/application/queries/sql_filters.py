"""Reusable WHERE-clause builders for the library query builders.

Every builder takes a Stash-style criterion (``{"value": ..., "value2": ...,
"modifier": ...}``) and returns a SQLAlchemy boolean expression, or None when the
criterion is empty or the modifier is not supported. Callers drop the Nones.

Relationship filters accept composite values: "12" matches id 12 on any instance,
"12:<instance uuid>" only on that instance. When no value carries an instance the
plain id match is used; in a mixed list bare ids still match any instance.
"""

from collections.abc import Callable, Sequence
from typing import Any

from sqlalchemy import (
    ColumnElement,
    and_,
    exists,
    false,
    func,
    not_,
    or_,
    select,
    true,
)

from peekstash.domain.value_objects import EntityKey, EntityType, parse_filter_value
from peekstash.infrastructure.persistence.entity_tables import JunctionTable
from peekstash.infrastructure.persistence.models import SceneModel

INCLUDES = "INCLUDES"
INCLUDES_ALL = "INCLUDES_ALL"
EXCLUDES = "EXCLUDES"
EQUALS = "EQUALS"
NOT_EQUALS = "NOT_EQUALS"
GREATER_THAN = "GREATER_THAN"
LESS_THAN = "LESS_THAN"
BETWEEN = "BETWEEN"
NOT_BETWEEN = "NOT_BETWEEN"
IS_NULL = "IS_NULL"
NOT_NULL = "NOT_NULL"


def parse_composite_values(values: Sequence[Any]) -> tuple[list[EntityKey], bool]:
    """Parse "id" / "id:instance" strings.

    Returns:
        (keys, has_instance_ids)
    """
    # dict.fromkeys drops repeated values and keeps their order
    keys = list(
        dict.fromkeys(parse_filter_value(str(v)) for v in values if v is not None and str(v) != "")
    )
    return keys, any(not k.is_global for k in keys)


def criterion_values(criterion: Any) -> list[Any]:
    if criterion is None:
        return []
    if isinstance(criterion, dict):
        value = criterion.get("value")
    else:
        value = criterion
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def criterion_modifier(criterion: Any, default: str) -> str:
    if isinstance(criterion, dict):
        return (criterion.get("modifier") or default).upper()
    return default


def pair_match(keys: list[EntityKey], id_col: Any, instance_col: Any) -> ColumnElement[bool]:
    conditions = []
    for key in keys:
        if key.is_global:
            conditions.append(id_col == key.entity_id)
        else:
            conditions.append(and_(id_col == key.entity_id, instance_col == key.instance_id))
    return or_(*conditions)


def junction_filter(
    criterion: Any,
    junction: JunctionTable,
    parent_type: EntityType,
    parent_model: type[Any],
) -> ColumnElement[bool] | None:
    """Relationship filter through a junction table (scene → performers, ...).

    The junction row must belong to the parent row: both the parent id AND the parent
    instance column are equated, so a scene on instance B never matches through a
    junction row written for instance A.
    """
    keys, has_instances = parse_composite_values(criterion_values(criterion))
    if not keys:
        return None
    modifier = criterion_modifier(criterion, INCLUDES)

    if junction.owner == parent_type:
        parent_id, parent_inst = junction.owner_id, junction.owner_instance_id
        other_id, other_inst = junction.target_id, junction.target_instance_id
    else:
        parent_id, parent_inst = junction.target_id, junction.target_instance_id
        other_id, other_inst = junction.owner_id, junction.owner_instance_id

    belongs = and_(
        parent_id == parent_model.id, parent_inst == parent_model.stash_instance_id
    )
    if has_instances:
        match = pair_match(keys, other_id, other_inst)
    else:
        match = other_id.in_([k.entity_id for k in keys])

    if modifier == INCLUDES:
        return exists().where(belongs, match)
    if modifier == EXCLUDES:
        return ~exists().where(belongs, match)
    if modifier == INCLUDES_ALL:
        # One EXISTS per requested key. A bare id is satisfied by a match on any
        # instance and must not count twice when two instances both carry it.
        return and_(
            *(exists().where(belongs, pair_match([key], other_id, other_inst)) for key in keys)
        )
    return None


def direct_filter(
    criterion: Any, id_column: Any, instance_column: Any
) -> ColumnElement[bool] | None:
    """Relationship stored as a column on the row itself (scene.studio_id, ...).

    The referenced entity always lives on the row's own instance, so the instance
    column is the row's stash_instance_id.
    """
    keys, has_instances = parse_composite_values(criterion_values(criterion))
    if not keys:
        return None
    modifier = criterion_modifier(criterion, INCLUDES)

    if has_instances:
        match = pair_match(keys, id_column, instance_column)
    else:
        match = id_column.in_([k.entity_id for k in keys])

    if modifier in (INCLUDES, INCLUDES_ALL):
        return match
    if modifier == EXCLUDES:
        return or_(id_column.is_(None), not_(match))
    return None


def numeric_filter(criterion: Any, expr: Any) -> ColumnElement[bool] | None:
    """EQUALS / NOT_EQUALS / GREATER_THAN / LESS_THAN / BETWEEN / NOT_BETWEEN."""
    if not isinstance(criterion, dict) or criterion.get("value") is None:
        return None
    value = criterion["value"]
    value2 = criterion.get("value2")
    modifier = criterion_modifier(criterion, GREATER_THAN)

    if modifier == EQUALS:
        return expr == value
    if modifier == NOT_EQUALS:
        return expr != value
    if modifier == GREATER_THAN:
        return expr > value
    if modifier == LESS_THAN:
        return expr < value
    if modifier == BETWEEN:
        if value2 is not None:
            return expr.between(value, value2)
        return expr >= value
    if modifier == NOT_BETWEEN:
        if value2 is not None:
            return or_(expr < value, expr > value2)
        return expr < value
    return None


def date_filter(criterion: Any, column: Any) -> ColumnElement[bool] | None:
    """Date comparisons on ISO strings, plus IS_NULL / NOT_NULL."""
    if not isinstance(criterion, dict):
        return None
    modifier = criterion_modifier(criterion, GREATER_THAN)
    if modifier == IS_NULL:
        return column.is_(None)
    if modifier == NOT_NULL:
        return column.is_not(None)

    value = criterion.get("value")
    value2 = criterion.get("value2")
    if not value:
        return None

    if modifier == EQUALS:
        return func.date(column) == func.date(value)
    if modifier == NOT_EQUALS:
        return or_(column.is_(None), func.date(column) != func.date(value))
    if modifier == GREATER_THAN:
        return column > value
    if modifier == LESS_THAN:
        return column < value
    if modifier == BETWEEN:
        if value2:
            return column.between(value, value2)
        return column >= value
    if modifier == NOT_BETWEEN:
        if value2:
            return or_(column.is_(None), column < value, column > value2)
        return column < value
    return None


def text_filter(criterion: Any, column: Any, *extra_columns: Any) -> ColumnElement[bool] | None:
    """Case-insensitive text match. INCLUDES/EXCLUDES also look at ``extra_columns``."""
    if not isinstance(criterion, dict):
        return None
    modifier = criterion_modifier(criterion, INCLUDES)
    if modifier == IS_NULL:
        return or_(column.is_(None), column == "")
    if modifier == NOT_NULL:
        return and_(column.is_not(None), column != "")

    value = criterion.get("value")
    if not value:
        return None
    columns = (column, *extra_columns)
    pattern = f"%{value}%"

    if modifier == INCLUDES:
        return or_(*(func.lower(c).like(func.lower(pattern)) for c in columns))
    if modifier == EXCLUDES:
        return and_(
            *(or_(c.is_(None), func.lower(c).not_like(func.lower(pattern))) for c in columns)
        )
    if modifier == EQUALS:
        return func.lower(column) == func.lower(value)
    if modifier == NOT_EQUALS:
        return or_(column.is_(None), func.lower(column) != func.lower(value))
    return None


def enum_filter(criterion: Any, column: Any) -> ColumnElement[bool] | None:
    """EQUALS / NOT_EQUALS against one value, or INCLUDES / EXCLUDES against a list."""
    values = [str(v) for v in criterion_values(criterion)]
    if not values:
        return None
    modifier = criterion_modifier(criterion, EQUALS)
    if modifier in (EQUALS, INCLUDES):
        return column.in_(values)
    if modifier in (NOT_EQUALS, EXCLUDES):
        return or_(column.is_(None), column.not_in(values))
    return None


def favorite_filter(favorite: bool | None, favorite_column: Any) -> ColumnElement[bool] | None:
    """User favorite flag from the outer-joined rating row (NULL counts as False)."""
    if favorite is None:
        return None
    if favorite:
        return favorite_column.is_(True)
    return or_(favorite_column.is_(False), favorite_column.is_(None))


def bool_filter(value: bool | None, column: Any) -> ColumnElement[bool] | None:
    if value is None:
        return None
    return column.is_(bool(value))


def ids_filter(criterion: Any, model: type[Any]) -> ColumnElement[bool] | None:
    """Restrict to specific rows; composite values pin the instance."""
    return direct_filter(criterion, model.id, model.stash_instance_id)


def instance_filter(
    model: type[Any],
    specific_instance_id: str | None,
    allowed_instance_ids: Sequence[str] | None,
) -> ColumnElement[bool] | None:
    """A specific instance wins; otherwise the allowed set when it is non-empty.

    A specific instance outside a non-empty allowed set matches nothing.
    """
    if specific_instance_id:
        if allowed_instance_ids and specific_instance_id not in allowed_instance_ids:
            return false()
        return model.stash_instance_id == specific_instance_id
    if allowed_instance_ids:
        return model.stash_instance_id.in_(list(allowed_instance_ids))
    return None


def combine(clauses: Sequence[ColumnElement[bool] | None]) -> ColumnElement[bool]:
    present = [c for c in clauses if c is not None]
    return and_(*present) if present else true()


def via_scenes_filter(
    criterion: Any,
    scene_junction: JunctionTable,
    parent_model: type[Any],
    scene_match: Callable[[dict[str, Any]], ColumnElement[bool] | None],
) -> ColumnElement[bool] | None:
    """Match rows linked to a live scene that satisfies ``scene_match``.

    Used for "performers appearing in scenes of studio X" style filters. The scene
    side of ``scene_junction`` is the owner, the filtered kind is the target.
    """
    values = criterion_values(criterion)
    if not values:
        return None
    modifier = criterion_modifier(criterion, INCLUDES)
    match = scene_match({"value": values, "modifier": INCLUDES})
    if match is None:
        return None

    linked = exists().where(
        scene_junction.target_id == parent_model.id,
        scene_junction.target_instance_id == parent_model.stash_instance_id,
        SceneModel.id == scene_junction.owner_id,
        SceneModel.stash_instance_id == scene_junction.owner_instance_id,
        SceneModel.deleted_at.is_(None),
        match,
    )
    if modifier in (INCLUDES, INCLUDES_ALL):
        return linked
    if modifier == EXCLUDES:
        return ~linked
    return None


def json_array_filter(
    criterion: Any, json_column: Any, instance_column: Any = None
) -> ColumnElement[bool] | None:
    """Match ids stored in a JSON text array column (tag parent_ids, ...).

    Ids in the array always point at the row's own instance, so a pinned value
    "3:<instance>" only matches rows on that instance when ``instance_column`` is given.
    """
    keys, _ = parse_composite_values(criterion_values(criterion))
    if not keys:
        return None
    modifier = criterion_modifier(criterion, INCLUDES)
    element = func.json_each(json_column).table_valued("value").alias("json_element")

    def holds(key: EntityKey) -> ColumnElement[bool]:
        found = exists(select(element.c.value).where(element.c.value == key.entity_id))
        if key.is_global or instance_column is None:
            return found
        return and_(found, instance_column == key.instance_id)

    matches = [holds(key) for key in keys]
    if modifier == INCLUDES_ALL:
        return and_(*matches)
    if modifier == INCLUDES:
        return or_(*matches)
    if modifier == EXCLUDES:
        return ~or_(*matches)
    return None
