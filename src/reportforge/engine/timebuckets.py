"""Time bucketing.

buckets align to the calendar unit containing the window start (so a window
starting Jan 15 at month grain gets a Jan 1 bucket), not to the start itself.
each bucket is half-open [start, end) except the last one, which is closed so
records on window.end always land somewhere.
"""

import bisect
import calendar
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

from reportforge.config import get_settings
from reportforge.models.query import Comparison, TimeWindow
from reportforge.models.schema import SchemaCatalog, TimeGranularity
from reportforge.values import to_date


@dataclass(frozen=True)
class Bucket:
    start: date
    end: date  # exclusive, except for the final bucket of a window
    label: str


def add_months(day: date, months: int) -> date:
    """Shift by whole months, clamping the day (Jan 31 + 1 month -> Feb 28/29)."""
    year, month_index = divmod(day.month - 1 + months, 12)
    year += day.year
    month = month_index + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def _week_start(week_start: int | None) -> int:
    return get_settings().week_start_index if week_start is None else week_start


def align(day: date, granularity: TimeGranularity, week_start: int | None = None) -> date:
    """Start of the calendar unit containing `day`."""
    granularity = TimeGranularity(granularity)
    if granularity == TimeGranularity.DAY:
        return day
    if granularity == TimeGranularity.WEEK:
        offset = (day.weekday() - _week_start(week_start)) % 7
        return day - timedelta(days=offset)
    if granularity == TimeGranularity.MONTH:
        return day.replace(day=1)
    if granularity == TimeGranularity.QUARTER:
        return date(day.year, 3 * ((day.month - 1) // 3) + 1, 1)
    return date(day.year, 1, 1)


def advance(day: date, granularity: TimeGranularity) -> date:
    """Start of the next unit. `day` is expected to be aligned already."""
    granularity = TimeGranularity(granularity)
    if granularity == TimeGranularity.DAY:
        return day + timedelta(days=1)
    if granularity == TimeGranularity.WEEK:
        return day + timedelta(days=7)
    if granularity == TimeGranularity.MONTH:
        return add_months(day, 1)
    if granularity == TimeGranularity.QUARTER:
        return add_months(day, 3)
    return add_months(day, 12)


def bucket_label(day: date, granularity: TimeGranularity, week_start: int | None = None) -> str:
    """Display label for the bucket containing `day`."""
    granularity = TimeGranularity(granularity)
    start = align(day, granularity, week_start)
    if granularity in (TimeGranularity.DAY, TimeGranularity.WEEK):
        return start.isoformat()
    if granularity == TimeGranularity.MONTH:
        return f"{start.year}-{start.month:02d}"
    if granularity == TimeGranularity.QUARTER:
        return f"{start.year}-Q{(start.month - 1) // 3 + 1}"
    return str(start.year)


def bucket_range(
    day: date, granularity: TimeGranularity, week_start: int | None = None
) -> tuple[date, date]:
    """Inclusive (start, end) dates of the bucket containing `day`."""
    start = align(day, granularity, week_start)
    return start, advance(start, granularity) - timedelta(days=1)


def bucketize(window: TimeWindow, week_start: int | None = None) -> list[Bucket]:
    """Divide a window into ordered buckets."""
    if window.end < window.start:
        return []
    buckets = []
    current = align(window.start, window.granularity, week_start)
    while current <= window.end:
        following = advance(current, window.granularity)
        buckets.append(
            Bucket(
                start=current,
                end=following,
                label=bucket_label(current, window.granularity, week_start),
            )
        )
        current = following
    return buckets


def assign(
    record: Mapping[str, Any],
    timestamp_field: str,
    buckets: list[Bucket],
    window: TimeWindow | None = None,
) -> int | None:
    """Index of the bucket a record falls into, or None.

    records outside the window are excluded even if the aligned first bucket
    starts earlier than window.start.
    """
    day = to_date(record.get(timestamp_field))
    if day is None or not buckets:
        return None
    if window is not None and not window.contains(day):
        return None

    starts = [b.start for b in buckets]
    index = bisect.bisect_right(starts, day) - 1
    if index < 0:
        return None
    bucket = buckets[index]
    if day < bucket.end:
        return index
    # last bucket is closed on the right
    if index == len(buckets) - 1 and day == bucket.end:
        return index
    return None


def validate_granularity_range(
    window: TimeWindow, max_buckets: int | None = None
) -> tuple[bool, int, str | None]:
    """Check a window/granularity combo won't produce an absurd number of points.

    Returns:
        (valid, bucket_count, warning)
    """
    max_buckets = max_buckets or get_settings().max_buckets
    count = len(bucketize(window))
    if count > max_buckets:
        return (
            False,
            count,
            f"Too many data points ({count}). Maximum {max_buckets} allowed. "
            "Try a coarser granularity.",
        )
    return True, count, None


def suggest_granularity(start: date, end: date) -> TimeGranularity:
    """Pick a sensible default grain for a range."""
    days = (end - start).days
    if days <= 31:
        return TimeGranularity.DAY
    if days <= 90:
        return TimeGranularity.WEEK
    if days <= 730:  # ~2 years
        return TimeGranularity.MONTH
    if days <= 1825:  # ~5 years
        return TimeGranularity.QUARTER
    return TimeGranularity.YEAR


def pick_timestamp_field(
    object_name: str,
    schema: SchemaCatalog | None = None,
    record: Mapping[str, Any] | None = None,
    preferred: list[str] | None = None,
) -> str | None:
    """Choose which field places an object's records in time.

    preferred names win (configured, "created" by default), then the first
    date-typed field in the schema. without a schema entry we fall back to
    whichever preferred name the sample record actually has.
    """
    preferred = preferred if preferred is not None else get_settings().timestamp_fields
    obj = schema.find_object(object_name) if schema else None
    if obj is not None:
        for name in preferred:
            if obj.get_field(name) is not None:
                return name
        date_fields = obj.date_fields()
        return date_fields[0].name if date_fields else None
    if record is not None:
        for name in preferred:
            if name in record:
                return name
    return None


def shift_window(window: TimeWindow, comparison: Comparison) -> TimeWindow | None:
    """Baseline window for a comparison mode. None when the mode has no window."""
    comparison = Comparison(comparison)
    if comparison == Comparison.PREVIOUS_PERIOD:
        # same length, ending the day before the current window starts
        length = timedelta(days=window.length_days)
        return TimeWindow(
            start=window.start - length,
            end=window.start - timedelta(days=1),
            granularity=window.granularity,
        )
    if comparison == Comparison.PREVIOUS_YEAR:
        return TimeWindow(
            start=add_months(window.start, -12),
            end=add_months(window.end, -12),
            granularity=window.granularity,
        )
    return None
