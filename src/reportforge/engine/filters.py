"""Record-level filter evaluation.

every condition is evaluated against a single record and the set's logic
(AND/OR) is applied once across all of them - never partitioned per field.
nothing in here raises on bad configuration: a condition that can't be
evaluated (type mismatch, unknown field) is simply false.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from reportforge.models.metric import FilterCondition, FilterLogic, FilterOperator, FilterSet
from reportforge.models.schema import FieldRef, FieldType, SchemaCatalog
from reportforge.values import is_blank, to_bool, to_date, to_datetime, to_number

logger = logging.getLogger(__name__)


def get_field_value(
    record: Mapping[str, Any], ref: FieldRef, object_name: str | None = None
) -> Any:
    """Look up a field's value on a record.

    the qualified key ("customers.country") wins - that's where related-object
    values get attached. the bare field name is only trusted when the record
    belongs to the ref's object, otherwise customers.name would happily read
    a payment's own "name" column.
    """
    qualified = ref.qualified
    if qualified in record:
        return record[qualified]
    if object_name is None or object_name == ref.object:
        return record.get(ref.field)
    return None


def _field_type(ref: FieldRef, schema: SchemaCatalog | None) -> FieldType | None:
    if schema is None:
        return None
    field = schema.resolve(ref)
    return field.type if field else None


def _is_date(value: Any, field_type: FieldType | None) -> bool:
    if field_type == FieldType.DATE:
        return True
    if field_type is not None or isinstance(value, (int, float)):
        return False
    return to_datetime(value) is not None


def _equal(actual: Any, expected: Any, field_type: FieldType | None) -> bool:
    if _is_date(actual, field_type):
        # dates match by calendar day, ignoring time of day
        left, right = to_date(actual), to_date(expected)
        return left is not None and left == right
    if field_type == FieldType.NUMBER or isinstance(actual, (int, float)):
        left, right = to_number(actual), to_number(expected)
        return left is not None and right is not None and left == right
    if isinstance(actual, str) and not isinstance(expected, str):
        return False  # type mismatch, e.g. 5 against a string field
    return actual == expected


def _order(actual: Any, expected: Any, field_type: FieldType | None) -> int | None:
    """Compare two values: -1/0/1, or None when they aren't comparable."""
    if _is_date(actual, field_type):
        left, right = to_datetime(actual), to_datetime(expected)
    elif field_type in (None, FieldType.NUMBER):
        left, right = to_number(actual), to_number(expected)
    else:
        return None
    if left is None or right is None:
        return None
    return (left > right) - (left < right)


def _contains(actual: Any, expected: Any) -> bool:
    if not isinstance(actual, str):
        return False
    haystack = actual.lower()
    needles = expected if isinstance(expected, (list, tuple)) else [expected]
    return any(isinstance(n, str) and n.lower() in haystack for n in needles)


def matches_condition(
    condition: FilterCondition,
    record: Mapping[str, Any],
    schema: SchemaCatalog | None = None,
    object_name: str | None = None,
) -> bool:
    """Test one condition against one record."""
    actual = get_field_value(record, condition.field, object_name)
    field_type = _field_type(condition.field, schema)
    operator = condition.operator
    expected = condition.value

    if operator == FilterOperator.IS_TRUE:
        return to_bool(actual) is True
    if operator == FilterOperator.IS_FALSE:
        return to_bool(actual) is False

    # a blank value means "field is empty" and only matches empty fields
    if is_blank(expected):
        return is_blank(actual)
    if is_blank(actual):
        return False

    # booleans are exact true/false equality no matter what operator was picked
    if field_type == FieldType.BOOLEAN or isinstance(actual, bool):
        options = expected if isinstance(expected, (list, tuple)) else [expected]
        return to_bool(actual) in {to_bool(option) for option in options} - {None}

    if operator in (FilterOperator.EQUALS, FilterOperator.IN):
        if isinstance(expected, (list, tuple)):
            return any(_equal(actual, option, field_type) for option in expected)
        return _equal(actual, expected, field_type)

    if operator == FilterOperator.NOT_EQUALS:
        if isinstance(expected, (list, tuple)):
            return not any(_equal(actual, option, field_type) for option in expected)
        return not _equal(actual, expected, field_type)

    if operator == FilterOperator.GREATER_THAN:
        return _order(actual, expected, field_type) == 1

    if operator == FilterOperator.LESS_THAN:
        return _order(actual, expected, field_type) == -1

    if operator == FilterOperator.BETWEEN:
        if not isinstance(expected, (list, tuple)) or len(expected) != 2:
            return False
        low = _order(actual, expected[0], field_type)
        high = _order(actual, expected[1], field_type)
        return low is not None and high is not None and low >= 0 and high <= 0

    if operator == FilterOperator.CONTAINS:
        return _contains(actual, expected)

    return False


def evaluate(
    conditions: Sequence[FilterCondition],
    logic: FilterLogic | str,
    record: Mapping[str, Any],
    schema: SchemaCatalog | None = None,
    object_name: str | None = None,
) -> bool:
    """Decide whether a record satisfies a condition set.

    Args:
        conditions: The conditions to test. Empty always matches.
        logic: AND requires every condition, OR at least one.
        record: The record (plus any attached related-object values).
        schema: Used to resolve field types. Without it every ref counts as resolved.
        object_name: The object the record belongs to.
    """
    if not conditions:
        return True

    logic = FilterLogic(logic)
    if logic == FilterLogic.AND:
        for condition in conditions:
            if schema is not None and schema.resolve(condition.field) is None:
                logger.debug("unresolved filter field %s", condition.field.qualified)
                return False  # unresolved ref short-circuits AND
            if not matches_condition(condition, record, schema, object_name):
                return False
        return True

    # under OR unresolved refs are just ignored
    usable = [c for c in conditions if schema is None or schema.resolve(c.field) is not None]
    if not usable:
        return True
    return any(matches_condition(c, record, schema, object_name) for c in usable)


def apply_filters(
    records: Iterable[Mapping[str, Any]],
    filters: FilterSet,
    schema: SchemaCatalog | None = None,
    object_name: str | None = None,
) -> list[Mapping[str, Any]]:
    """Filter records, keeping their original order."""
    if not filters.conditions:
        return list(records)
    return [
        r for r in records if evaluate(filters.conditions, filters.logic, r, schema, object_name)
    ]


_OPERATOR_TEXT = {
    FilterOperator.EQUALS: "is",
    FilterOperator.NOT_EQUALS: "is not",
    FilterOperator.GREATER_THAN: "is greater than",
    FilterOperator.LESS_THAN: "is less than",
    FilterOperator.BETWEEN: "is between",
    FilterOperator.CONTAINS: "contains",
    FilterOperator.IN: "is one of",
    FilterOperator.IS_TRUE: "is true",
    FilterOperator.IS_FALSE: "is false",
}


def describe_filters(filters: FilterSet, schema: SchemaCatalog | None = None) -> list[str]:
    """Short human readable descriptions, one per field.

    several conditions may target the same field; the first one is the one
    that gets described.
    """
    described: dict[FieldRef, str] = {}
    for condition in filters.conditions:
        if condition.field in described:
            continue
        field = schema.resolve(condition.field) if schema else None
        label = field.display_label if field else condition.field.qualified
        text = _OPERATOR_TEXT[condition.operator]
        value = condition.value
        if condition.operator in (FilterOperator.IS_TRUE, FilterOperator.IS_FALSE):
            described[condition.field] = f"{label} {text}"
        elif is_blank(value):
            described[condition.field] = f"{label} is empty"
        elif isinstance(value, (list, tuple)):
            joiner = " and " if condition.operator == FilterOperator.BETWEEN else ", "
            described[condition.field] = f"{label} {text} {joiner.join(str(v) for v in value)}"
        else:
            described[condition.field] = f"{label} {text} {value}"
    return list(described.values())
