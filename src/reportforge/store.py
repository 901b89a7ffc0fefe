"""Main ReportStore interface for ReportForge."""

import logging
from collections import OrderedDict
from collections.abc import Hashable, Mapping, Sequence
from datetime import date
from pathlib import Path
from typing import Any

from reportforge.compiler.sql_builder import SQLCompiler
from reportforge.config import Settings, get_settings
from reportforge.engine.comparison import compare_block
from reportforge.engine.formula import compute_formula
from reportforge.engine.grouping import (
    compute_grouped_formula,
    get_available_group_fields,
    get_group_values,
)
from reportforge.engine.timebuckets import validate_granularity_range
from reportforge.engine.units import infer_unit_type, validate_formula_units
from reportforge.executor.duckdb_executor import DuckDBExecutor
from reportforge.models.metric import MetricBlock, MetricFormula, MetricOp
from reportforge.models.query import (
    Comparison,
    ComparisonResult,
    FormulaResult,
    GroupBySpec,
    GroupField,
    GroupValue,
    QueryResult,
    TimeWindow,
)
from reportforge.models.schema import FieldRef, TimeGranularity
from reportforge.parser.loader import SchemaRegistry, load_warehouse
from reportforge.warehouse import Warehouse

logger = logging.getLogger(__name__)


class ReportStore:
    """Main interface for ReportForge.

    ties the schema, a warehouse and the engine together, and memoizes formula
    results on a key that includes the warehouse version - never the warehouse
    object itself, since records get patched in place.
    """

    def __init__(
        self,
        schema_path: str | Path,
        warehouse: Warehouse | Mapping[str, list[dict[str, Any]]] | str | Path | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the report store.

        Args:
            schema_path: Schema YAML file or directory.
            warehouse: A Warehouse, a plain {object: records} mapping, or a path
                to load one from. Empty when omitted.
            settings: Settings override, mostly for tests.
        """
        self.schema_path = Path(schema_path)
        self.settings = settings or get_settings()
        self.registry = SchemaRegistry()

        # load and validate the schema upfront - fail fast if there are problems
        self.registry.load_directory(self.schema_path)
        self.schema = self.registry.catalog

        if isinstance(warehouse, Warehouse):
            self.warehouse = warehouse
        elif isinstance(warehouse, (str, Path)):
            self.warehouse = load_warehouse(warehouse, self.schema)
        else:
            self.warehouse = Warehouse(warehouse, self.schema)

        self.compiler = SQLCompiler(self.schema)
        self._executor: DuckDBExecutor | None = None
        self._loaded_version: int | None = None

        self._cache: OrderedDict[Hashable, FormulaResult] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def compute(
        self,
        formula: MetricFormula,
        start: str | date,
        end: str | date,
        granularity: TimeGranularity | str = TimeGranularity.MONTH,
        selected_objects: Sequence[str] = (),
        selected_fields: Sequence[FieldRef] = (),
        comparison: Comparison | str = Comparison.NONE,
    ) -> FormulaResult:
        """Compute a formula, reusing a cached result when nothing changed.

        Args:
            formula: The formula to compute.
            start: Window start (inclusive), ISO string or date.
            end: Window end (inclusive), ISO string or date.
            granularity: Bucket size for the series.
            selected_objects: Objects selected in the report; the first is primary.
            selected_fields: Fields selected in the report.
            comparison: Optional comparison mode.

        Returns:
            FormulaResult. Callers must treat it as read-only since it may be
            shared with later calls.
        """
        start_date = self._parse_date(start)
        end_date = self._parse_date(end)
        granularity = TimeGranularity(granularity)
        comparison = Comparison(comparison)

        key = (
            formula.model_dump_json(),
            start_date,
            end_date,
            granularity,
            comparison,
            tuple(selected_objects),
            tuple(ref.qualified for ref in selected_fields),
            self.warehouse.version,
        )
        if key in self._cache:
            self.hits += 1
            self._cache.move_to_end(key)
            return self._cache[key]

        self.misses += 1
        result = compute_formula(
            formula,
            start_date,
            end_date,
            granularity,
            self.warehouse,
            schema=self.schema,
            selected_objects=selected_objects,
            selected_fields=selected_fields,
            comparison=comparison,
        )

        if self.settings.cache_size > 0:
            self._cache[key] = result
            while len(self._cache) > self.settings.cache_size:
                self._cache.popitem(last=False)
        return result

    def compare(
        self,
        block: MetricBlock,
        start: str | date,
        end: str | date,
        comparison: Comparison | str,
        granularity: TimeGranularity | str = TimeGranularity.MONTH,
        primary_object: str | None = None,
    ) -> ComparisonResult:
        """Compare a single block against its baseline."""
        window = TimeWindow(
            start=self._parse_date(start), end=self._parse_date(end), granularity=granularity
        )
        return compare_block(
            block, window, comparison, self.warehouse, self.schema, primary_object
        )

    def group_fields(self, selected_objects: Sequence[str]) -> list[GroupField]:
        """Group-by candidates for the selected objects."""
        return get_available_group_fields(selected_objects, self.schema)

    def group_values(
        self,
        field: FieldRef | str,
        limit: int | None = None,
        primary_object: str | None = None,
    ) -> list[GroupValue]:
        """Ranked distinct values for a group-by field."""
        if isinstance(field, str):
            field = FieldRef.parse(field)
        if limit is None:
            limit = self.settings.group_values_limit
        return get_group_values(self.warehouse, field, limit, primary_object, self.schema)

    def grouped(
        self,
        formula: MetricFormula,
        group_by: GroupBySpec,
        start: str | date,
        end: str | date,
        granularity: TimeGranularity | str = TimeGranularity.MONTH,
        selected_objects: Sequence[str] = (),
        selected_fields: Sequence[FieldRef] = (),
    ) -> dict[str, FormulaResult]:
        """Compute a formula once per selected group value."""
        return compute_grouped_formula(
            formula,
            self._parse_date(start),
            self._parse_date(end),
            granularity,
            self.warehouse,
            group_by,
            schema=self.schema,
            selected_objects=selected_objects,
            selected_fields=selected_fields,
        )

    def get_sql(
        self,
        formula: MetricFormula,
        start: str | date,
        end: str | date,
        granularity: TimeGranularity | str = TimeGranularity.MONTH,
        primary_object: str | None = None,
    ) -> dict[str, str]:
        """SQL preview for every block, keyed by block id."""
        window = TimeWindow(
            start=self._parse_date(start), end=self._parse_date(end), granularity=granularity
        )
        return self.compiler.compile_formula(formula, window, primary_object)

    def run_sql(self, sql: str) -> QueryResult:
        """Execute SQL against the warehouse loaded into duckdb.

        tables are (re)loaded lazily, and only when the warehouse version
        moved since the last load.
        """
        if self._executor is None:
            self._executor = DuckDBExecutor()
        if self._loaded_version != self.warehouse.version:
            self._executor.load_warehouse(self.warehouse, self.schema)
            self._loaded_version = self.warehouse.version
        return self._executor.execute(sql)

    def list_objects(self) -> list[dict]:
        """List all schema objects with record counts."""
        return [
            {
                "name": obj.name,
                "label": obj.display_label,
                "fields": len(obj.fields),
                "records": len(self.warehouse.records(obj.name)),
            }
            for obj in self.schema.objects
        ]

    def validate_formula(
        self,
        formula: MetricFormula,
        start: str | date | None = None,
        end: str | date | None = None,
        granularity: TimeGranularity | str = TimeGranularity.MONTH,
    ) -> list[str]:
        """Check a formula against the schema. Returns a list of problems.

        the engine would quietly return "no data" for all of these; this is
        for catching them before anyone looks at an empty chart.
        """
        errors = []
        block_ids = {block.id for block in formula.blocks}

        for block in formula.blocks:
            if block.source is None:
                if block.op != MetricOp.COUNT:
                    errors.append(f"Block '{block.id}': needs a source field")
            elif self.schema.find_object(block.source.object) is None:
                errors.append(f"Block '{block.id}': unknown object '{block.source.object}'")
            elif block.op != MetricOp.COUNT and self.schema.resolve(block.source) is None:
                errors.append(f"Block '{block.id}': unknown field '{block.source.qualified}'")
            for condition in block.filters:
                if self.schema.resolve(condition.field) is None:
                    errors.append(
                        f"Block '{block.id}': filter on unknown field "
                        f"'{condition.field.qualified}'"
                    )

        calc = formula.calculation
        if calc is not None:
            missing = [op for op in (calc.left_operand, calc.right_operand) if op not in block_ids]
            for op in missing:
                errors.append(f"Calculation references unknown block '{op}'")
            if not missing:
                left = infer_unit_type(formula.get_block(calc.left_operand), self.schema)
                right = infer_unit_type(formula.get_block(calc.right_operand), self.schema)
                unit_error = validate_formula_units(calc.operator, left, right)
                if unit_error:
                    errors.append(unit_error)

        for block_id in formula.expose_blocks:
            if block_id not in block_ids:
                errors.append(f"expose_blocks references unknown block '{block_id}'")

        if start is not None and end is not None:
            window = TimeWindow(
                start=self._parse_date(start), end=self._parse_date(end), granularity=granularity
            )
            valid, _, warning = validate_granularity_range(window, self.settings.max_buckets)
            if not valid:
                errors.append(warning)

        return errors

    def cache_info(self) -> dict[str, int]:
        return {"hits": self.hits, "misses": self.misses, "size": len(self._cache)}

    def clear_cache(self) -> None:
        self._cache.clear()

    def _parse_date(self, value: str | date) -> date:
        """Parse ISO date string or return date object as-is."""
        if isinstance(value, date):
            return value
        return date.fromisoformat(value)

    def close(self) -> None:
        """Close the duckdb connection, if one was opened."""
        if self._executor is not None:
            self._executor.close()
            self._executor = None
            self._loaded_version = None

    def __enter__(self) -> "ReportStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
