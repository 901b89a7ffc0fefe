"""Pydantic models for metric formulas.

a formula is one or more blocks (each a single aggregation over a source field)
plus an optional calculation that combines two of them. blocks carry their own
filters so "paid volume / all payments" is expressible without global state.
"""

from enum import Enum
from typing import Any, Self

from pydantic import BaseModel, Field, model_validator

from reportforge.models.schema import FieldRef


class MetricOp(str, Enum):
    """How values are aggregated within a set of records."""

    SUM = "sum"
    AVG = "avg"
    COUNT = "count"
    DISTINCT_COUNT = "distinct_count"
    MEDIAN = "median"
    MODE = "mode"


class MetricType(str, Enum):
    """Temporal shape of the aggregation.

    this is what decides the headline number - sum_over_period and
    average_over_period give different scalars for the same op.
    """

    SUM_OVER_PERIOD = "sum_over_period"
    AVERAGE_OVER_PERIOD = "average_over_period"
    LATEST = "latest"
    FIRST = "first"


class FilterOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    BETWEEN = "between"
    CONTAINS = "contains"
    IN = "in"
    IS_TRUE = "is_true"
    IS_FALSE = "is_false"


class FilterLogic(str, Enum):
    AND = "AND"
    OR = "OR"


class UnitType(str, Enum):
    """What a number means, used to validate calculations and pick formatting."""

    CURRENCY = "currency"
    COUNT = "count"
    DATE = "date"
    RATE = "rate"


class CalculationOperator(str, Enum):
    ADD = "add"
    SUBTRACT = "subtract"
    MULTIPLY = "multiply"
    DIVIDE = "divide"


class FilterCondition(BaseModel):
    """A single field-scoped condition.

    value can be a scalar, a [low, high] pair for between, a list for
    multi-select, or blank - blank means "the field is empty".
    """

    field: FieldRef
    operator: FilterOperator = FilterOperator.EQUALS
    value: Any = None


class FilterSet(BaseModel):
    """Conditions plus the logic applied across all of them (not per field)."""

    conditions: list[FilterCondition] = Field(default_factory=list)
    logic: FilterLogic = FilterLogic.AND


class Calculation(BaseModel):
    """Combines two blocks by id, e.g. volume / count."""

    operator: CalculationOperator
    left_operand: str  # block id
    right_operand: str  # block id
    result_unit_type: UnitType | None = None  # inferred when not set


class MetricBlock(BaseModel):
    """One aggregation inside a formula.

    source is only optional for count, where the primary object still decides
    which records get counted. we don't enforce that here - a half-configured
    block is a normal state while someone is building a report, and the engine
    reports it as "no data" instead.
    """

    id: str
    name: str
    source: FieldRef | None = None
    op: MetricOp = MetricOp.SUM
    type: MetricType = MetricType.SUM_OVER_PERIOD
    filters: list[FilterCondition] = Field(default_factory=list)
    timestamp_field: str | None = None  # picked from the schema when not set
    unit_type: UnitType | None = None


class MetricFormula(BaseModel):
    """A full metric definition - blocks plus an optional calculation."""

    name: str | None = None
    description: str | None = None
    blocks: list[MetricBlock] = Field(default_factory=list)
    calculation: Calculation | None = None  # only meaningful with 2+ blocks
    expose_blocks: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_block_ids(self) -> Self:
        """Block ids must be unique - calculations reference blocks by id."""
        seen: set[str] = set()
        for block in self.blocks:
            if block.id in seen:
                raise ValueError(f"Duplicate block id '{block.id}'")
            seen.add(block.id)
        return self

    def get_block(self, block_id: str) -> MetricBlock | None:
        for block in self.blocks:
            if block.id == block_id:
                return block
        return None
