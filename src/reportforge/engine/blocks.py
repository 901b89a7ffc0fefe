"""Block evaluation - one aggregation over one source field.

the basic flow:
  1. resolve the source object's records (missing -> "no data", never an error)
  2. attach values from directly related objects that the filters mention
  3. apply the block's filters (always AND)
  4. bucket what's left by timestamp
  5. aggregate per bucket, then derive the headline scalar from the block type

every step is a pure function of its inputs so results can be memoized on
(inputs, warehouse.version) by the caller.
"""

import logging
import statistics
from collections import Counter
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

from reportforge.engine.filters import evaluate
from reportforge.engine.timebuckets import assign, bucketize, pick_timestamp_field
from reportforge.engine.units import infer_unit_type
from reportforge.models.metric import (
    FilterCondition,
    FilterLogic,
    MetricBlock,
    MetricOp,
    MetricType,
)
from reportforge.models.query import BlockResult, SeriesPoint, TimeWindow
from reportforge.models.schema import SchemaCatalog
from reportforge.values import group_key, to_datetime, to_number
from reportforge.warehouse import RecordStore, Warehouse, records_for

logger = logging.getLogger(__name__)

Row = Mapping[str, Any]

# ops whose value doesn't come from a single record's field
_COUNTING_OPS = (MetricOp.COUNT, MetricOp.DISTINCT_COUNT)


def aggregate(rows: Sequence[Row], field: str | None, op: MetricOp) -> float | None:
    """Apply an aggregation op to a set of rows.

    count/distinct_count return 0 for an empty set, everything else returns
    None - "no payments" has a count of zero but no average.
    """
    op = MetricOp(op)
    if op == MetricOp.COUNT:
        return len(rows)

    if field is None:
        return None

    if op == MetricOp.DISTINCT_COUNT:
        return len({group_key(row.get(field)) for row in rows} - {None})

    values = [v for v in (to_number(row.get(field)) for row in rows) if v is not None]
    if not values:
        return None

    if op == MetricOp.SUM:
        return sum(values)
    if op == MetricOp.AVG:
        return sum(values) / len(values)
    if op == MetricOp.MEDIAN:
        return statistics.median(values)
    if op == MetricOp.MODE:
        # Counter keeps insertion order and max() returns the first maximal
        # item, so ties go to whichever value showed up first
        counts = Counter(values)
        return max(counts.items(), key=lambda item: item[1])[0]
    return None


def pick_record_value(
    rows: Sequence[Row], field: str, timestamp_field: str, latest: bool = True
) -> float | None:
    """Value of `field` from the latest (or first) record by timestamp.

    records without a value for the field are skipped - "latest known value".
    ties on timestamp go to the last record for latest and the first for first.
    """
    chosen: tuple[datetime, float] | None = None
    for row in rows:
        value = to_number(row.get(field))
        stamp = to_datetime(row.get(timestamp_field))
        if value is None or stamp is None:
            continue
        if chosen is None:
            chosen = (stamp, value)
        elif latest and stamp >= chosen[0]:
            chosen = (stamp, value)
        elif not latest and stamp < chosen[0]:
            chosen = (stamp, value)
    return chosen[1] if chosen else None


def attach_related(
    records: Sequence[Row],
    object_name: str,
    conditions: Sequence[FilterCondition],
    store: Warehouse | RecordStore,
    schema: SchemaCatalog | None,
) -> list[Row]:
    """Attach parent-object values that the filters reference.

    one hop only: for a condition on customers.country evaluated against
    payments, the payment's customer_id is looked up in customers and the
    value lands on the row as "customers.country". child-side references
    (one parent, many children) aren't attached and read as empty.
    """
    foreign = {c.field for c in conditions if c.field.object != object_name}
    if not foreign or schema is None:
        return list(records)

    lookups: dict[str, tuple[str, dict[Any, Row]]] = {}
    for other in sorted({ref.object for ref in foreign}):
        rel = schema.relationship_between(object_name, other)
        if rel is None or rel.via is None or rel.to != object_name:
            logger.debug("no parent relationship from %s to %s", object_name, other)
            continue
        index = {}
        for parent in records_for(store, other):
            index.setdefault(parent.get("id"), parent)
        lookups[other] = (rel.via, index)

    if not lookups:
        return list(records)

    rows = []
    for record in records:
        row = dict(record)
        for ref in foreign:
            if ref.object not in lookups:
                continue
            via, index = lookups[ref.object]
            parent = index.get(record.get(via))
            row[ref.qualified] = parent.get(ref.field) if parent else None
        rows.append(row)
    return rows


def _empty(block: MetricBlock, note: str, schema: SchemaCatalog | None) -> BlockResult:
    logger.debug("block %s: %s", block.id, note)
    return BlockResult(
        block_id=block.id,
        block_name=block.name,
        value=None,
        series=None,
        unit_type=infer_unit_type(block, schema),
        note=note,
    )


def evaluate_block(
    block: MetricBlock,
    window: TimeWindow,
    warehouse: Warehouse | RecordStore,
    schema: SchemaCatalog | None = None,
    primary_object: str | None = None,
) -> BlockResult:
    """Compute a block's scalar value and per-bucket series.

    Args:
        block: The block definition.
        window: Time window and granularity.
        warehouse: Warehouse (or plain object -> records mapping) to read from.
        schema: Schema used for field types, relationships and timestamp fields.
        primary_object: Object to count when a count block has no source.

    Returns:
        BlockResult. value/series are None (with a note) when there's no data.
    """
    if block.source is not None:
        object_name = block.source.object
        field = block.source.field
    else:
        object_name = primary_object
        field = None

    if object_name is None:
        return _empty(block, "Select a metric source field", schema)
    if field is None and block.op != MetricOp.COUNT:
        return _empty(block, "Select a metric source field", schema)

    if schema is not None:
        if schema.find_object(object_name) is None:
            return _empty(block, f"Unknown object: {object_name}", schema)
        # count doesn't read the field, so an unknown field doesn't matter there
        if block.op != MetricOp.COUNT and block.source and schema.resolve(block.source) is None:
            return _empty(block, f"Unknown field: {block.source.qualified}", schema)

    records = records_for(warehouse, object_name)
    if not records:
        return _empty(block, f"No data found for {object_name}", schema)

    if block.filters:
        rows = attach_related(records, object_name, block.filters, warehouse, schema)
        rows = [
            r for r in rows if evaluate(block.filters, FilterLogic.AND, r, schema, object_name)
        ]
    else:
        rows = records

    timestamp_field = block.timestamp_field or pick_timestamp_field(
        object_name, schema, records[0]
    )
    if timestamp_field is None:
        return _empty(block, f"No timestamp field for {object_name}", schema)

    buckets = bucketize(window)
    members: list[list[Row]] = [[] for _ in buckets]
    in_window: list[Row] = []
    for row in rows:
        index = assign(row, timestamp_field, buckets, window)
        if index is None:
            continue
        members[index].append(row)
        in_window.append(row)

    per_bucket = [aggregate(bucket_rows, field, block.op) for bucket_rows in members]
    block_type = MetricType(block.type)
    record_valued = field is not None and block.op not in _COUNTING_OPS

    if block_type == MetricType.SUM_OVER_PERIOD:
        value = aggregate(in_window, field, block.op)
        series_values = per_bucket
    elif block_type == MetricType.AVERAGE_OVER_PERIOD:
        present = [v for v in per_bucket if v is not None]
        value = sum(present) / len(present) if present else None
        series_values = per_bucket
    else:
        latest = block_type == MetricType.LATEST
        if record_valued:
            series_values = [
                pick_record_value(bucket_rows, field, timestamp_field, latest)
                for bucket_rows in members
            ]
            value = pick_record_value(in_window, field, timestamp_field, latest)
        else:
            # nothing to read off a record for counts - use the edge bucket instead
            series_values = per_bucket
            if not per_bucket:
                value = None
            else:
                value = per_bucket[-1] if latest else per_bucket[0]

    series = [
        SeriesPoint(date=bucket.start, label=bucket.label, value=v)
        for bucket, v in zip(buckets, series_values)
    ]

    return BlockResult(
        block_id=block.id,
        block_name=block.name,
        value=value,
        series=series,
        unit_type=infer_unit_type(block, schema),
        note=None if in_window else "No data in selection",
    )

