"""DuckDB executor for SQL previews and file-backed warehouses.

duckdb does two jobs here: reading csv/parquet exports into plain records for
the warehouse, and running the sql preview against the same records loaded as
tables, so the preview can be checked against what the engine computed.
"""

import logging
import time
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime
from pathlib import Path
from typing import Any

import duckdb

from reportforge.models.query import QueryResult
from reportforge.models.schema import FieldType, SchemaCatalog, SchemaField
from reportforge.warehouse import Warehouse

logger = logging.getLogger(__name__)

# declared field type -> duckdb column type
COLUMN_TYPES = {
    FieldType.STRING: "VARCHAR",
    FieldType.ID: "VARCHAR",
    FieldType.NUMBER: "DOUBLE",
    FieldType.BOOLEAN: "BOOLEAN",
    FieldType.DATE: "TIMESTAMP",
}

READERS = {
    ".csv": "read_csv_auto",
    ".parquet": "read_parquet",
}


def _infer_column_type(values: Iterable[Any]) -> str:
    """Column type from the first non-null value, for objects without a schema."""
    for value in values:
        if value is None:
            continue
        if isinstance(value, bool):
            return "BOOLEAN"
        if isinstance(value, (int, float)):
            return "DOUBLE"
        if isinstance(value, (datetime, date)):
            return "TIMESTAMP"
        return "VARCHAR"
    return "VARCHAR"


class DuckDBExecutor:
    """Thin wrapper around a duckdb connection.

    handles connection management and result formatting so the duckdb
    specific bits stay in one place.
    """

    def __init__(self, database_path: str | None = None) -> None:
        """Initialize the executor.

        Args:
            database_path: Path to a DuckDB file, or None for in-memory.
        """
        self.database_path = database_path
        self._conn: duckdb.DuckDBPyConnection | None = None  # lazy init

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        """Get or create the connection. ":memory:" is duckdb's in-memory convention."""
        if self._conn is None:
            self._conn = duckdb.connect(self.database_path or ":memory:")
        return self._conn

    def execute(self, sql: str) -> QueryResult:
        """Execute SQL and return structured, timed results."""
        start = time.perf_counter()

        result = self.conn.execute(sql)
        columns = [desc[0] for desc in result.description]
        rows = result.fetchall()

        elapsed_ms = (time.perf_counter() - start) * 1000
        data = [dict(zip(columns, row)) for row in rows]

        return QueryResult(
            sql=sql,
            columns=columns,
            data=data,
            row_count=len(data),
            execution_time_ms=round(elapsed_ms, 2),
        )

    def read_records(self, path: str | Path) -> list[dict[str, Any]]:
        """Read a CSV or Parquet file into a list of records.

        read_csv_auto works out delimiters and column types on its own, so
        dates come back as real dates rather than strings.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ValueError: For unsupported file types.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Data file not found: {path}")
        reader = READERS.get(path.suffix.lower())
        if reader is None:
            raise ValueError(f"Unsupported data file: {path.name}")

        escaped = str(path).replace("'", "''")
        result = self.conn.execute(f"SELECT * FROM {reader}('{escaped}')")
        columns = [desc[0] for desc in result.description]
        records = [dict(zip(columns, row)) for row in result.fetchall()]
        logger.debug("read %d records from %s", len(records), path)
        return records

    def load_records(
        self,
        table_name: str,
        records: Sequence[Mapping[str, Any]],
        fields: Sequence[SchemaField] | None = None,
    ) -> None:
        """Create (or replace) a table from records.

        column types come from the schema fields when given, otherwise they're
        inferred from the data. an object with schema fields but no records
        still gets an empty table so queries against it work.
        """
        if fields:
            columns = [(f.name, COLUMN_TYPES[f.type]) for f in fields]
        else:
            names = list(dict.fromkeys(key for record in records for key in record))
            columns = [
                (name, _infer_column_type(r.get(name) for r in records)) for name in names
            ]
        if not columns:
            raise ValueError(f"Cannot create table {table_name} without columns")

        col_defs = ", ".join(f'"{name}" {col_type}' for name, col_type in columns)
        self.conn.execute(f'CREATE OR REPLACE TABLE "{table_name}" ({col_defs})')

        if records:
            placeholders = ", ".join(["?"] * len(columns))
            rows = [tuple(record.get(name) for name, _ in columns) for record in records]
            self.conn.executemany(f'INSERT INTO "{table_name}" VALUES ({placeholders})', rows)

    def load_warehouse(self, warehouse: Warehouse, schema: SchemaCatalog | None = None) -> None:
        """Load every object in a warehouse (and every schema object) as a table."""
        names = list(warehouse.objects())
        if schema is not None:
            names.extend(obj.name for obj in schema.objects if obj.name not in names)

        for name in names:
            obj = schema.find_object(name) if schema else None
            records = warehouse.records(name)
            if obj is None and not records:
                continue
            self.load_records(name, records, obj.fields if obj else None)

    def table_exists(self, table_name: str) -> bool:
        """Check if a table exists via information_schema."""
        result = self.conn.execute(
            "SELECT COUNT(*) FROM information_schema.tables WHERE table_name = ?",
            [table_name],
        )
        return result.fetchone()[0] > 0

    def get_table_schema(self, table_name: str) -> list[tuple[str, str]]:
        """Get column names and types for a table."""
        result = self.conn.execute(f'DESCRIBE "{table_name}"')
        return [(row[0], row[1]) for row in result.fetchall()]

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "DuckDBExecutor":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
