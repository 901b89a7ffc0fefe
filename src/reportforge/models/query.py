"""Pydantic models for computation inputs and results.

results are plain data - no formatting, no rendering hints beyond unit_type.
`None` is the "undefined" sentinel everywhere: callers render a dash for it,
which beats showing NaN or Infinity to someone looking at a dashboard.
"""

from datetime import date
from enum import Enum

from pydantic import BaseModel, Field

from reportforge.models.metric import UnitType
from reportforge.models.schema import FieldRef, TimeGranularity


class Comparison(str, Enum):
    NONE = "none"
    PREVIOUS_PERIOD = "previous_period"
    PREVIOUS_YEAR = "previous_year"
    PERIOD_START = "period_start"


class TimeWindow(BaseModel):
    """An inclusive [start, end] date range plus the bucket size.

    a reversed window isn't rejected - it just produces no buckets, which is
    friendlier while someone is dragging a date picker around.
    """

    start: date
    end: date
    granularity: TimeGranularity = TimeGranularity.MONTH

    @property
    def length_days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


class GroupBySpec(BaseModel):
    """The group-by selection. selected_values may go stale, that's tolerated."""

    field: FieldRef
    selected_values: list[str] = Field(default_factory=list)
    auto_added_field: bool = False


class SeriesPoint(BaseModel):
    date: date  # bucket start
    label: str
    value: float | None = None


class MetricResult(BaseModel):
    value: float | None = None
    series: list[SeriesPoint] | None = None
    unit_type: UnitType | None = None
    note: str | None = None  # why there's no data, when there isn't


class BlockResult(MetricResult):
    block_id: str
    block_name: str


class ComparisonResult(BaseModel):
    mode: Comparison
    baseline_window: TimeWindow | None = None  # None for period_start
    baseline_value: float | None = None
    baseline_series: list[SeriesPoint] | None = None
    delta: float | None = None
    percent_delta: float | None = None


class FormulaResult(BaseModel):
    result: MetricResult
    block_results: list[BlockResult] = Field(default_factory=list)
    exposed: list[BlockResult] = Field(default_factory=list)  # flagged via expose_blocks
    comparison: ComparisonResult | None = None


class GroupField(BaseModel):
    """A group-by candidate."""

    object: str
    field: str
    label: str

    @property
    def ref(self) -> FieldRef:
        return FieldRef(object=self.object, field=self.field)


class GroupValue(BaseModel):
    value: str
    count: int


class QueryResult(BaseModel):
    """Result of running a SQL preview against duckdb.

    returning the sql alongside data is useful for checking the preview
    actually agrees with what the engine computed.
    """

    sql: str
    columns: list[str]
    data: list[dict]
    row_count: int
    execution_time_ms: float
