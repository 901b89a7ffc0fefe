"""Tests for DuckDB executor."""

from datetime import datetime
from pathlib import Path

import pytest

from reportforge.executor.duckdb_executor import DuckDBExecutor
from reportforge.models.schema import SchemaCatalog
from reportforge.warehouse import Warehouse


class TestDuckDBExecutor:
    def test_create_in_memory(self):
        """Can create in-memory executor."""
        executor = DuckDBExecutor()
        assert executor.database_path is None
        result = executor.execute("SELECT 1 AS value")
        assert result.data[0]["value"] == 1
        executor.close()

    def test_create_with_file(self, tmp_path: Path):
        """Can create file-based executor."""
        db_path = str(tmp_path / "test.duckdb")
        executor = DuckDBExecutor(db_path)
        executor.execute("CREATE TABLE test (id INTEGER)")
        executor.close()

        # Reopen and verify
        executor2 = DuckDBExecutor(db_path)
        assert executor2.table_exists("test")
        executor2.close()

    def test_execute_returns_query_result(self):
        """Execute returns QueryResult with correct fields."""
        executor = DuckDBExecutor()
        result = executor.execute("SELECT 1 AS a, 'hello' AS b")

        assert result.columns == ["a", "b"]
        assert result.data == [{"a": 1, "b": "hello"}]
        assert result.row_count == 1
        assert result.execution_time_ms >= 0
        assert "SELECT" in result.sql
        executor.close()

    def test_context_manager(self):
        """Connection is closed on exit."""
        with DuckDBExecutor() as executor:
            executor.execute("SELECT 1")
        assert executor._conn is None


class TestReadRecords:
    def test_read_csv(self, tmp_path: Path):
        """CSV columns come back typed."""
        csv_path = tmp_path / "payments.csv"
        csv_path.write_text("id,amount,created\np1,10,2024-01-10\np2,20.5,2024-02-15\n")

        with DuckDBExecutor() as executor:
            records = executor.read_records(csv_path)

        assert [r["id"] for r in records] == ["p1", "p2"]
        assert records[1]["amount"] == 20.5
        assert str(records[0]["created"]).startswith("2024-01-10")

    def test_read_parquet(self, tmp_path: Path):
        """Parquet files round-trip through duckdb."""
        target = tmp_path / "payments.parquet"
        with DuckDBExecutor() as executor:
            executor.load_records("payments", [{"id": "p1", "amount": 10.0}])
            executor.conn.execute(f"COPY payments TO '{target}' (FORMAT PARQUET)")
            records = executor.read_records(target)
        assert records == [{"id": "p1", "amount": 10.0}]

    def test_missing_file_raises(self, tmp_path: Path):
        with DuckDBExecutor() as executor, pytest.raises(FileNotFoundError):
            executor.read_records(tmp_path / "nope.csv")

    def test_unsupported_file_raises(self, tmp_path: Path):
        path = tmp_path / "data.xml"
        path.write_text("<x/>")
        with DuckDBExecutor() as executor, pytest.raises(ValueError, match="Unsupported"):
            executor.read_records(path)


class TestLoadRecords:
    def test_inferred_columns(self):
        """Column types are inferred from the first non-null value."""
        records = [
            {"id": "p1", "amount": None, "ok": True},
            {"id": "p2", "amount": 5, "ok": False, "created": datetime(2024, 1, 1)},
        ]
        with DuckDBExecutor() as executor:
            executor.load_records("payments", records)
            columns = dict(executor.get_table_schema("payments"))
            total = executor.execute("SELECT SUM(amount) AS total FROM payments").data[0]

        assert columns == {
            "id": "VARCHAR",
            "amount": "DOUBLE",
            "ok": "BOOLEAN",
            "created": "TIMESTAMP",
        }
        assert total["total"] == 5

    def test_schema_columns(self, schema: SchemaCatalog):
        """Declared fields decide the columns, even with no records."""
        with DuckDBExecutor() as executor:
            executor.load_records("customers", [], schema.find_object("customers").fields)
            assert executor.table_exists("customers")
            columns = dict(executor.get_table_schema("customers"))
        assert columns["created"] == "TIMESTAMP"
        assert columns["delinquent"] == "BOOLEAN"

    def test_no_columns_raises(self):
        with DuckDBExecutor() as executor, pytest.raises(ValueError, match="without columns"):
            executor.load_records("empty", [])

    def test_replaces_existing_table(self):
        with DuckDBExecutor() as executor:
            executor.load_records("t", [{"a": 1}, {"a": 2}])
            executor.load_records("t", [{"a": 3}])
            assert executor.execute("SELECT COUNT(*) AS n FROM t").data[0]["n"] == 1

    def test_load_warehouse(self, warehouse: Warehouse, schema: SchemaCatalog):
        """Every warehouse object becomes a table."""
        with DuckDBExecutor() as executor:
            executor.load_warehouse(warehouse, schema)
            assert executor.table_exists("customers")
            assert executor.table_exists("payments")
            result = executor.execute("SELECT SUM(amount) AS total FROM payments")
        assert result.data[0]["total"] == 60

    def test_load_warehouse_without_schema(self, sample_data: dict):
        with DuckDBExecutor() as executor:
            executor.load_warehouse(Warehouse(sample_data))
            result = executor.execute("SELECT COUNT(*) AS n FROM customers")
        assert result.data[0]["n"] == 3
