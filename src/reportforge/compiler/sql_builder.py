"""SQL preview for metric blocks.

renders the sql a block *would* run against a warehouse loaded into duckdb, one
row per bucket. the engine never executes this - it's for showing people what
a report is doing, and for cross-checking the engine in tests.

the basic flow:
  1. resolve the block's object, timestamp field and aggregate
  2. LEFT JOIN any parent object a filter mentions (one hop, same as the engine)
  3. WHERE the window plus the filters
  4. format with sqlglot

sqlglot does the heavy lifting for sql formatting.
"""

import logging
import re
from datetime import date, datetime, timedelta
from typing import Any

import sqlglot
from sqlglot.errors import ParseError

from reportforge.config import get_settings
from reportforge.engine.timebuckets import pick_timestamp_field
from reportforge.models.metric import (
    FilterCondition,
    FilterLogic,
    FilterOperator,
    FilterSet,
    MetricBlock,
    MetricFormula,
    MetricOp,
    MetricType,
)
from reportforge.models.query import TimeWindow
from reportforge.models.schema import SchemaCatalog, TimeGranularity
from reportforge.values import is_blank

logger = logging.getLogger(__name__)


class SQLCompiler:
    """Compiles metric blocks into SQL.

    stateless - holds a schema reference for relationships and timestamp
    fields but never modifies it.
    """

    # mapping from block ops to sql aggregate functions
    # distinct_count is special-cased in _aggregate_expr
    AGG_MAP = {
        MetricOp.SUM: "SUM",
        MetricOp.AVG: "AVG",
        MetricOp.COUNT: "COUNT",
        MetricOp.DISTINCT_COUNT: "COUNT",
        MetricOp.MEDIAN: "MEDIAN",
        MetricOp.MODE: "MODE",
    }

    def __init__(self, schema: SchemaCatalog, dialect: str = "duckdb") -> None:
        self.schema = schema
        self.dialect = dialect  # passed to sqlglot for formatting

    def compile_block(
        self, block: MetricBlock, window: TimeWindow, primary_object: str | None = None
    ) -> str:
        """Convert a block into a per-bucket SQL query.

        Raises:
            ValueError: If the block has no object to read from or the object
                has no timestamp field.
        """
        object_name = block.source.object if block.source else primary_object
        if object_name is None:
            raise ValueError(f"Block '{block.id}' has no source and no primary object")

        timestamp = block.timestamp_field or pick_timestamp_field(object_name, self.schema)
        if timestamp is None:
            raise ValueError(f"No timestamp field for {object_name}")
        ts_col = f"{object_name}.{timestamp}"

        select_exprs = [
            f"{self._bucket_expr(ts_col, window.granularity)} AS bucket",
            f"{self._aggregate_expr(block, object_name, ts_col)} AS value",
        ]
        joins, joinable = self._build_joins(object_name, block.filters)

        where = [
            f"{ts_col} >= {_literal(window.start)}",
            f"{ts_col} < {_literal(window.end + timedelta(days=1))}",
        ]
        filter_sql = self.compile_filters(
            FilterSet(conditions=block.filters), object_name, joinable
        )
        if filter_sql:
            where.append(filter_sql)

        sql = self._assemble_query(select_exprs, object_name, joins, where)
        return self._format_sql(sql)

    def compile_formula(
        self, formula: MetricFormula, window: TimeWindow, primary_object: str | None = None
    ) -> dict[str, str]:
        """One query per block, keyed by block id.

        blocks that can't be compiled map to a sql comment explaining why,
        so one bad block doesn't hide the others.
        """
        queries = {}
        for block in formula.blocks:
            try:
                queries[block.id] = self.compile_block(block, window, primary_object)
            except ValueError as e:
                logger.info("can't preview block %s: %s", block.id, e)
                queries[block.id] = f"-- {e}"
        return queries

    def compile_filters(
        self,
        filters: FilterSet,
        object_name: str,
        joinable: set[str] | None = None,
    ) -> str:
        """Render a filter set as a single WHERE expression.

        references to objects that aren't the block's own and weren't joined
        are rendered against NULL, which is how the engine reads them too.
        """
        joinable = joinable or set()
        parts = []
        for condition in filters.conditions:
            ref = condition.field
            if ref.object == object_name or ref.object in joinable:
                column = ref.qualified
            else:
                column = "NULL"
            parts.append(self._condition_sql(column, condition))

        if not parts:
            return ""
        if len(parts) == 1:
            return parts[0]
        joiner = " AND " if FilterLogic(filters.logic) == FilterLogic.AND else " OR "
        return "(" + joiner.join(parts) + ")"

    def _bucket_expr(self, ts_col: str, granularity: TimeGranularity) -> str:
        """Bucket start expression.

        duckdb weeks start on monday, so other week starts shift the timestamp
        before truncating and shift the result back.
        """
        granularity = TimeGranularity(granularity)
        if granularity == TimeGranularity.WEEK:
            offset = get_settings().week_start_index
            if offset:
                return (
                    f"DATE_TRUNC('week', {ts_col} - INTERVAL {offset} DAY)"
                    f" + INTERVAL {offset} DAY"
                )
        return f"DATE_TRUNC('{granularity.value}', {ts_col})"

    def _aggregate_expr(self, block: MetricBlock, object_name: str, ts_col: str) -> str:
        op = MetricOp(block.op)
        if op == MetricOp.COUNT or block.source is None:
            return "COUNT(*)"

        col = f"{object_name}.{block.source.field}"
        if op == MetricOp.DISTINCT_COUNT:
            return f"COUNT(DISTINCT {col})"

        block_type = MetricType(block.type)
        # latest/first read one record's value rather than aggregating
        if block_type == MetricType.LATEST:
            return f"ARG_MAX({col}, {ts_col})"
        if block_type == MetricType.FIRST:
            return f"ARG_MIN({col}, {ts_col})"
        return f"{self.AGG_MAP[op]}({col})"

    def _build_joins(
        self, object_name: str, conditions: list[FilterCondition]
    ) -> tuple[list[str], set[str]]:
        """LEFT JOINs for parent objects referenced by filters."""
        joins = []
        joined = set()
        for other in sorted({c.field.object for c in conditions} - {object_name}):
            rel = self.schema.relationship_between(object_name, other)
            if rel is None or rel.via is None or rel.to != object_name:
                continue
            joins.append(f"LEFT JOIN {other} ON {object_name}.{rel.via} = {other}.id")
            joined.add(other)
        return joins, joined

    def _condition_sql(self, column: str, condition: FilterCondition) -> str:
        operator = condition.operator
        value = condition.value

        if operator == FilterOperator.IS_TRUE:
            return f"{column} = TRUE"
        if operator == FilterOperator.IS_FALSE:
            return f"{column} = FALSE"
        if is_blank(value):
            return f"{column} IS NULL"

        values = value if isinstance(value, (list, tuple)) else [value]
        if operator in (FilterOperator.EQUALS, FilterOperator.IN):
            if len(values) == 1:
                return f"{column} = {_literal(values[0])}"
            return f"{column} IN ({', '.join(_literal(v) for v in values)})"
        if operator == FilterOperator.NOT_EQUALS:
            if len(values) == 1:
                return f"{column} <> {_literal(values[0])}"
            return f"{column} NOT IN ({', '.join(_literal(v) for v in values)})"
        if operator == FilterOperator.GREATER_THAN:
            return f"{column} > {_literal(values[0])}"
        if operator == FilterOperator.LESS_THAN:
            return f"{column} < {_literal(values[0])}"
        if operator == FilterOperator.BETWEEN:
            if len(values) != 2:
                return "FALSE"
            return f"{column} BETWEEN {_literal(values[0])} AND {_literal(values[1])}"
        if operator == FilterOperator.CONTAINS:
            likes = [f"{column} ILIKE {_literal(f'%{v}%')}" for v in values]
            return likes[0] if len(likes) == 1 else "(" + " OR ".join(likes) + ")"
        return "FALSE"

    def _assemble_query(
        self,
        select_exprs: list[str],
        from_clause: str,
        joins: list[str],
        where_conditions: list[str],
    ) -> str:
        """Assemble the final SQL query.

        just string concatenation at this point - sqlglot handles formatting.
        """
        parts = ["SELECT " + ", ".join(select_exprs), f"FROM {from_clause}"]
        parts.extend(joins)
        if where_conditions:
            parts.append("WHERE " + " AND ".join(where_conditions))
        parts.append("GROUP BY 1")
        parts.append("ORDER BY 1")
        return "\n".join(parts)

    def _format_sql(self, sql: str) -> str:
        """Format SQL using sqlglot, falling back to the raw text if it can't parse."""
        try:
            parsed = sqlglot.parse_one(sql, dialect=self.dialect)
        except ParseError:
            logger.warning("sqlglot couldn't parse generated sql, returning it unformatted")
            return sql
        return parsed.sql(dialect=self.dialect, pretty=True)


def _literal(value: Any) -> str:
    """Format a python value as a SQL literal."""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, datetime):
        return f"TIMESTAMP '{value.isoformat(sep=' ')}'"
    if isinstance(value, date):
        return f"TIMESTAMP '{value.isoformat()}'"
    text = str(value).replace("'", "''")
    if re.fullmatch(r"\d{4}-\d{2}-\d{2}", text):
        return f"TIMESTAMP '{text}'"
    return f"'{text}'"
