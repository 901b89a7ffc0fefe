"""Pydantic models for ReportForge."""

from reportforge.models.metric import (
    Calculation,
    CalculationOperator,
    FilterCondition,
    FilterLogic,
    FilterOperator,
    FilterSet,
    MetricBlock,
    MetricFormula,
    MetricOp,
    MetricType,
    UnitType,
)
from reportforge.models.query import (
    BlockResult,
    Comparison,
    ComparisonResult,
    FormulaResult,
    GroupBySpec,
    GroupField,
    GroupValue,
    MetricResult,
    QueryResult,
    SeriesPoint,
    TimeWindow,
)
from reportforge.models.schema import (
    FieldRef,
    FieldType,
    Relationship,
    RelationshipType,
    SchemaCatalog,
    SchemaField,
    SchemaObject,
    TimeGranularity,
)

__all__ = [
    "BlockResult",
    "Calculation",
    "CalculationOperator",
    "Comparison",
    "ComparisonResult",
    "FieldRef",
    "FieldType",
    "FilterCondition",
    "FilterLogic",
    "FilterOperator",
    "FilterSet",
    "FormulaResult",
    "GroupBySpec",
    "GroupField",
    "GroupValue",
    "MetricBlock",
    "MetricFormula",
    "MetricOp",
    "MetricResult",
    "MetricType",
    "QueryResult",
    "Relationship",
    "RelationshipType",
    "SchemaCatalog",
    "SchemaField",
    "SchemaObject",
    "SeriesPoint",
    "TimeGranularity",
    "TimeWindow",
    "UnitType",
]
