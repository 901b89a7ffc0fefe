"""Group-by discovery, distinct values and grouped evaluation.

values are always attributed to rows of a *target* object. with no target (or
when the target is the field's own object) that's just a scan of the field's
object. across one relationship hop:

  - parent field, child target (payments grouped by customers.country): each
    payment picks up its customer's country
  - child field, parent target (customers grouped by payments.status): each
    customer picks up the set of its payments' statuses, so one customer with
    two paid payments still counts once for "paid"
"""

import logging
from collections import Counter
from collections.abc import Sequence
from datetime import date
from typing import Any

from reportforge.config import get_settings
from reportforge.engine.formula import compute_formula
from reportforge.models.metric import MetricFormula
from reportforge.models.query import Comparison, FormulaResult, GroupBySpec, GroupField, GroupValue
from reportforge.models.schema import FieldRef, SchemaCatalog, TimeGranularity
from reportforge.values import group_key
from reportforge.warehouse import RecordStore, Warehouse, records_for

logger = logging.getLogger(__name__)

Attributed = list[tuple[dict[str, Any], list[str]]]


def get_available_group_fields(
    selected_objects: Sequence[str], schema: SchemaCatalog
) -> list[GroupField]:
    """Categorical fields (string or enum) across all selected objects.

    id fields never qualify, even though they're strings underneath.
    """
    fields = []
    for object_name in selected_objects:
        obj = schema.find_object(object_name)
        if obj is None:
            continue
        for field in obj.fields:
            if not field.is_categorical:
                continue
            fields.append(
                GroupField(
                    object=obj.name,
                    field=field.name,
                    label=f"{obj.display_label}.{field.display_label}",
                )
            )
    return fields


def attribute_values(
    store: Warehouse | RecordStore,
    field: FieldRef,
    target: str | None = None,
    schema: SchemaCatalog | None = None,
) -> Attributed | None:
    """Pair every target row with the group values it carries.

    Returns:
        (row, values) pairs in record order, values de-duplicated per row.
        None when the target can't be related to the field's object.
    """
    if target is None or target == field.object:
        attributed = []
        for row in records_for(store, field.object):
            key = group_key(row.get(field.field))
            attributed.append((row, [key] if key is not None else []))
        return attributed

    rel = schema.relationship_between(target, field.object) if schema else None
    if rel is None or rel.via is None:
        return None

    targets = records_for(store, target)
    others = records_for(store, field.object)

    if rel.to == target:
        # field lives on the parent
        parents: dict[Any, dict[str, Any]] = {}
        for parent in others:
            parents.setdefault(parent.get("id"), parent)
        attributed = []
        for row in targets:
            parent = parents.get(row.get(rel.via))
            key = group_key(parent.get(field.field)) if parent else None
            attributed.append((row, [key] if key is not None else []))
        return attributed

    # field lives on the children
    children: dict[Any, list[str]] = {}
    for child in others:
        key = group_key(child.get(field.field))
        if key is None:
            continue
        keys = children.setdefault(child.get(rel.via), [])
        if key not in keys:
            keys.append(key)
    return [(row, children.get(row.get("id"), [])) for row in targets]


def get_group_values(
    store: Warehouse | RecordStore,
    field: FieldRef,
    limit: int | None = None,
    primary_object: str | None = None,
    schema: SchemaCatalog | None = None,
) -> list[GroupValue]:
    """Distinct values of a field ranked by how often they occur.

    Args:
        store: Warehouse or plain mapping.
        field: The group-by field.
        limit: Max entries returned. Defaults to the group_values_limit setting.
        primary_object: Count occurrences per row of this object instead of
            per row of the field's own object.
        schema: Needed for relationship traversal.

    Returns:
        Values by descending count, ties alphabetical.
    """
    limit = get_settings().group_values_limit if limit is None else limit
    if limit <= 0:
        return []

    attributed = attribute_values(store, field, primary_object, schema)
    if attributed is None:
        logger.debug(
            "no relationship between %s and %s, counting %s rows",
            primary_object,
            field.object,
            field.object,
        )
        attributed = attribute_values(store, field)

    counts = Counter(key for _, keys in attributed for key in keys)
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [GroupValue(value=value, count=count) for value, count in ranked[:limit]]


def group_records(
    store: Warehouse | RecordStore,
    field: FieldRef,
    selected_values: Sequence[str],
    target: str | None = None,
    schema: SchemaCatalog | None = None,
) -> dict[str, list[dict[str, Any]]]:
    """Partition target rows by group value.

    only selected values get a group, in selection order. stale values get an
    empty group. a parent row with children in several groups lands in each.
    """
    groups: dict[str, list[dict[str, Any]]] = {value: [] for value in selected_values}
    attributed = attribute_values(store, field, target, schema)
    if attributed is None:
        return groups
    for row, keys in attributed:
        for key in keys:
            if key in groups:
                groups[key].append(row)
    return groups


def select_group_value(
    spec: GroupBySpec, value: str, max_selections: int | None = None
) -> GroupBySpec:
    """Toggle a value in the selection.

    the cap only applies when adding - a full selection can always shrink.
    """
    if max_selections is None:
        max_selections = get_settings().max_group_selections
    selected = list(spec.selected_values)
    if value in selected:
        selected.remove(value)
    elif len(selected) >= max_selections:
        logger.debug("group selection full (%d), ignoring %s", max_selections, value)
        return spec
    else:
        selected.append(value)
    return spec.model_copy(update={"selected_values": selected})


def _restricted(
    store: Warehouse | RecordStore,
    field: FieldRef,
    value: str,
    objects: Sequence[str],
    schema: SchemaCatalog | None,
) -> Warehouse | RecordStore:
    """Derived store where each object only keeps rows attributed to `value`."""
    derived = store if isinstance(store, Warehouse) else dict(store)
    for object_name in objects:
        attributed = attribute_values(store, field, object_name, schema)
        if attributed is None:
            logger.debug("%s isn't related to %s, left ungrouped", object_name, field.object)
            continue
        rows = [row for row, keys in attributed if value in keys]
        if isinstance(derived, Warehouse):
            derived = derived.with_records(object_name, rows)
        else:
            derived[object_name] = rows
    return derived


def compute_grouped_formula(
    formula: MetricFormula,
    start: date,
    end: date,
    granularity: TimeGranularity | str,
    store: Warehouse | RecordStore,
    group_by: GroupBySpec,
    schema: SchemaCatalog | None = None,
    selected_objects: Sequence[str] = (),
    selected_fields: Sequence[FieldRef] = (),
    comparison: Comparison | str = Comparison.NONE,
) -> dict[str, FormulaResult]:
    """Evaluate a formula once per selected group value.

    every block's source object (and the primary object, for source-less
    counts) is narrowed to the rows belonging to the group.

    Returns:
        Group value -> FormulaResult, in selection order.
    """
    objects = [block.source.object for block in formula.blocks if block.source is not None]
    if selected_objects:
        objects.append(selected_objects[0])
    elif selected_fields:
        objects.append(selected_fields[0].object)
    objects = list(dict.fromkeys(objects))

    results = {}
    for value in group_by.selected_values:
        derived = _restricted(store, group_by.field, value, objects, schema)
        results[value] = compute_formula(
            formula,
            start,
            end,
            granularity,
            derived,
            schema=schema,
            selected_objects=selected_objects,
            selected_fields=selected_fields,
            comparison=comparison,
        )
    return results
