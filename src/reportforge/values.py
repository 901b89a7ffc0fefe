"""Value coercion shared by the warehouse decoder and the engine.

records come in from json/yaml/csv so dates show up as iso strings or unix
seconds and numbers occasionally as strings. everything funnels through here
so the aggregation code only ever sees typed values or None.
"""

import math
from datetime import UTC, date, datetime
from typing import Any

from reportforge.models.schema import FieldType


def is_blank(value: Any) -> bool:
    """Blank means missing: None, empty string, or an empty list."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set)):
        return len(value) == 0
    return False


def to_number(value: Any) -> int | float | None:
    """Coerce to a number, or None if it isn't one.

    bools are deliberately not numbers here - True + True == 2 is a great way
    to get a nonsense sum.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        if not math.isfinite(number):
            return None
        return int(number) if number.is_integer() and "." not in text else number
    return None


def to_datetime(value: Any) -> datetime | None:
    """Coerce to a naive UTC datetime.

    accepts datetime/date objects, iso strings (with or without a trailing Z)
    and unix seconds.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        try:
            parsed = datetime.fromtimestamp(value, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(UTC).replace(tzinfo=None)
    return parsed


def to_date(value: Any) -> date | None:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    parsed = to_datetime(value)
    return parsed.date() if parsed else None


def to_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "yes", "1"):
            return True
        if text in ("false", "no", "0"):
            return False
    return None


def decode_value(value: Any, field_type: FieldType) -> Any:
    """Decode a raw value according to its declared field type.

    undecodable values become None rather than raising - a bad cell in one
    record shouldn't take down a whole report.
    """
    if is_blank(value):
        return None
    if field_type == FieldType.NUMBER:
        return to_number(value)
    if field_type == FieldType.BOOLEAN:
        return to_bool(value)
    if field_type == FieldType.DATE:
        return to_datetime(value)
    if field_type in (FieldType.STRING, FieldType.ID):
        return value if isinstance(value, str) else str(value)
    return value


def group_key(value: Any) -> str | None:
    """String form used for grouping. None for blanks."""
    if is_blank(value):
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)
