"""Tests for the SQL preview compiler."""

from datetime import date

import pytest

from reportforge.compiler.sql_builder import SQLCompiler, _literal
from reportforge.executor.duckdb_executor import DuckDBExecutor
from reportforge.models.metric import FilterSet, MetricBlock, MetricFormula
from reportforge.models.query import TimeWindow
from reportforge.models.schema import SchemaCatalog
from reportforge.warehouse import Warehouse


def block(**kwargs) -> MetricBlock:
    kwargs.setdefault("id", "b")
    kwargs.setdefault("name", "Block")
    return MetricBlock.model_validate(kwargs)


@pytest.fixture
def compiler(schema: SchemaCatalog) -> SQLCompiler:
    return SQLCompiler(schema)


@pytest.fixture
def executor(warehouse: Warehouse, schema: SchemaCatalog):
    """Executor with the sample warehouse loaded as tables."""
    executor = DuckDBExecutor()
    executor.load_warehouse(warehouse, schema)
    yield executor
    executor.close()


def run_total(executor: DuckDBExecutor, sql: str) -> float:
    return sum(row["value"] or 0 for row in executor.execute(sql).data)


class TestSQLCompiler:
    def test_compile_sum_block(self, compiler: SQLCompiler, q1: TimeWindow):
        """Compiles a sum block to a per-bucket aggregation."""
        sql = compiler.compile_block(block(source="payments.amount"), q1).upper()
        assert "SUM(PAYMENTS.AMOUNT)" in sql
        assert "DATE_TRUNC" in sql and "MONTH" in sql
        assert "FROM PAYMENTS" in sql
        assert "GROUP BY" in sql
        assert "2024-04-01" in sql  # exclusive upper bound, the day after the window

    def test_compile_count_and_distinct(self, compiler: SQLCompiler, q1: TimeWindow):
        count = compiler.compile_block(block(source="payments.id", op="count"), q1)
        distinct = compiler.compile_block(
            block(source="payments.customer_id", op="distinct_count"), q1
        )
        assert "COUNT(*)" in count.upper()
        assert "COUNT(DISTINCT PAYMENTS.CUSTOMER_ID)" in distinct.upper()

    def test_compile_latest(self, compiler: SQLCompiler, q1: TimeWindow):
        sql = compiler.compile_block(block(source="payments.amount", type="latest"), q1)
        assert "ARG_MAX" in sql.upper()

    def test_count_without_source_uses_primary(self, compiler: SQLCompiler, q1: TimeWindow):
        sql = compiler.compile_block(block(op="count"), q1, primary_object="payments")
        assert "FROM PAYMENTS" in sql.upper()

    def test_no_object_raises(self, compiler: SQLCompiler, q1: TimeWindow):
        with pytest.raises(ValueError, match="no source"):
            compiler.compile_block(block(op="count"), q1)

    def test_parent_filter_joins(self, compiler: SQLCompiler, q1: TimeWindow):
        """Filters on a parent object LEFT JOIN it through the relationship."""
        us = block(
            source="payments.amount",
            filters=[{"field": "customers.country", "operator": "equals", "value": "US"}],
        )
        sql = compiler.compile_block(us, q1).upper()
        assert "LEFT JOIN CUSTOMERS" in sql
        assert "PAYMENTS.CUSTOMER_ID = CUSTOMERS.ID" in sql
        assert "CUSTOMERS.COUNTRY = 'US'" in sql

    def test_compile_formula(self, compiler: SQLCompiler, q1: TimeWindow, ratio_formula):
        queries = compiler.compile_formula(ratio_formula, q1)
        assert list(queries) == ["volume", "count"]

    def test_uncompilable_block_becomes_comment(self, compiler: SQLCompiler, q1: TimeWindow):
        formula = MetricFormula(blocks=[block(id="x", op="count")])
        assert compiler.compile_formula(formula, q1)["x"].startswith("-- ")


class TestCompileFilters:
    def test_operators(self, compiler: SQLCompiler):
        filters = FilterSet(
            conditions=[
                {"field": "payments.status", "operator": "in", "value": ["paid", "pending"]},
                {"field": "payments.amount", "operator": "between", "value": [1, 5]},
                {"field": "payments.currency", "operator": "contains", "value": "us"},
                {"field": "payments.captured", "operator": "is_true"},
            ]
        )
        sql = compiler.compile_filters(filters, "payments")
        assert "payments.status IN ('paid', 'pending')" in sql
        assert "payments.amount BETWEEN 1 AND 5" in sql
        assert "payments.currency ILIKE '%us%'" in sql
        assert "payments.captured = TRUE" in sql
        assert " AND " in sql

    def test_or_logic(self, compiler: SQLCompiler):
        filters = FilterSet(
            conditions=[
                {"field": "payments.status", "value": "paid"},
                {"field": "payments.amount", "operator": "greater_than", "value": 10},
            ],
            logic="OR",
        )
        assert compiler.compile_filters(filters, "payments") == (
            "(payments.status = 'paid' OR payments.amount > 10)"
        )

    def test_blank_value_is_null_check(self, compiler: SQLCompiler):
        filters = FilterSet(conditions=[{"field": "payments.currency", "value": ""}])
        assert compiler.compile_filters(filters, "payments") == "payments.currency IS NULL"

    def test_unjoined_reference_reads_null(self, compiler: SQLCompiler):
        filters = FilterSet(conditions=[{"field": "payments.status", "value": "paid"}])
        assert compiler.compile_filters(filters, "customers") == "NULL = 'paid'"

    def test_empty(self, compiler: SQLCompiler):
        assert compiler.compile_filters(FilterSet(), "payments") == ""

    def test_literals(self):
        assert _literal(True) == "TRUE"
        assert _literal(2.5) == "2.5"
        assert _literal("it's") == "'it''s'"
        assert _literal(date(2024, 1, 1)) == "TIMESTAMP '2024-01-01'"
        assert _literal("2024-01-01") == "TIMESTAMP '2024-01-01'"


class TestAgainstDuckDB:
    """The preview should agree with the engine when run."""

    def test_sum(self, compiler: SQLCompiler, executor: DuckDBExecutor, q1: TimeWindow):
        sql = compiler.compile_block(block(source="payments.amount"), q1)
        result = executor.execute(sql)
        assert result.row_count == 3
        assert run_total(executor, sql) == 60

    def test_filtered(self, compiler: SQLCompiler, executor: DuckDBExecutor, q1: TimeWindow):
        paid = block(
            source="payments.amount",
            filters=[{"field": "payments.status", "operator": "equals", "value": "paid"}],
        )
        assert run_total(executor, compiler.compile_block(paid, q1)) == 30

    def test_parent_filter(self, compiler: SQLCompiler, executor: DuckDBExecutor, q1: TimeWindow):
        us = block(
            source="payments.amount",
            filters=[{"field": "customers.country", "operator": "equals", "value": "US"}],
        )
        assert run_total(executor, compiler.compile_block(us, q1)) == 40

    def test_window_end_is_inclusive(self, compiler: SQLCompiler, executor: DuckDBExecutor):
        window = TimeWindow(start=date(2024, 1, 1), end=date(2024, 3, 20))
        sql = compiler.compile_block(block(source="payments.id", op="count"), window)
        assert run_total(executor, sql) == 3

    def test_weekly_buckets_start_on_sunday(
        self, compiler: SQLCompiler, executor: DuckDBExecutor
    ):
        window = TimeWindow(start=date(2024, 1, 1), end=date(2024, 1, 31), granularity="week")
        sql = compiler.compile_block(block(source="payments.amount"), window)
        buckets = [row["bucket"] for row in executor.execute(sql).data]
        # 2024-01-10 falls in the week starting Sunday 2024-01-07
        assert [str(b)[:10] for b in buckets] == ["2024-01-07"]
