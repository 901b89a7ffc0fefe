"""Formula composition.

evaluates every block independently, then combines two of them according to
the formula's calculation. one block means the formula is just that block.

series are combined by bucket date rather than list position so blocks over
different objects still line up.
"""

import logging
from collections.abc import Sequence
from datetime import date

from reportforge.engine.blocks import evaluate_block
from reportforge.engine.comparison import compare
from reportforge.engine.units import available_result_unit_types, validate_formula_units
from reportforge.models.metric import CalculationOperator, MetricFormula, UnitType
from reportforge.models.query import (
    BlockResult,
    Comparison,
    FormulaResult,
    MetricResult,
    SeriesPoint,
    TimeWindow,
)
from reportforge.models.schema import FieldRef, SchemaCatalog, TimeGranularity
from reportforge.warehouse import RecordStore, Warehouse

logger = logging.getLogger(__name__)


def combine(
    operator: CalculationOperator, left: float | None, right: float | None
) -> float | None:
    """Apply a calculation operator. None in, or division by zero, gives None."""
    if left is None or right is None:
        return None
    operator = CalculationOperator(operator)
    if operator == CalculationOperator.ADD:
        return left + right
    if operator == CalculationOperator.SUBTRACT:
        return left - right
    if operator == CalculationOperator.MULTIPLY:
        return left * right
    if right == 0:
        return None
    return left / right


def combine_series(
    operator: CalculationOperator, left: list[SeriesPoint], right: list[SeriesPoint]
) -> list[SeriesPoint]:
    """Combine two series point by point, aligned on bucket date."""
    left_map = {p.date: p for p in left}
    right_map = {p.date: p for p in right}
    combined = []
    for day in sorted(set(left_map) | set(right_map)):
        lp, rp = left_map.get(day), right_map.get(day)
        label = (lp or rp).label
        value = combine(
            operator,
            lp.value if lp else None,
            rp.value if rp else None,
        )
        combined.append(SeriesPoint(date=day, label=label, value=value))
    return combined


def _primary_object(
    selected_objects: Sequence[str], selected_fields: Sequence[FieldRef]
) -> str | None:
    if selected_objects:
        return selected_objects[0]
    if selected_fields:
        return selected_fields[0].object
    return None


def _compose(
    formula: MetricFormula,
    window: TimeWindow,
    store: Warehouse | RecordStore,
    schema: SchemaCatalog | None,
    primary_object: str | None,
) -> tuple[MetricResult, list[BlockResult]]:
    if not formula.blocks:
        return MetricResult(note="No metric blocks defined"), []

    block_results = [
        evaluate_block(block, window, store, schema, primary_object) for block in formula.blocks
    ]

    # no calculation (or nothing to combine) - the first block is the result
    if formula.calculation is None or len(formula.blocks) == 1:
        first = block_results[0]
        return (
            MetricResult(
                value=first.value,
                series=first.series,
                unit_type=first.unit_type,
                note=first.note,
            ),
            block_results,
        )

    calc = formula.calculation
    by_id = {r.block_id: r for r in block_results}
    left, right = by_id.get(calc.left_operand), by_id.get(calc.right_operand)
    if left is None or right is None:
        missing = [
            op_id for op_id in (calc.left_operand, calc.right_operand) if op_id not in by_id
        ]
        note = f"Calculation references missing blocks: {', '.join(missing)}"
        logger.info(note)
        return MetricResult(note=note), block_results

    left_unit = left.unit_type or UnitType.COUNT
    right_unit = right.unit_type or UnitType.COUNT
    error = validate_formula_units(calc.operator, left_unit, right_unit)
    if error:
        logger.info("formula %s: %s", formula.name or "<unnamed>", error)
        return MetricResult(note=error), block_results

    if calc.result_unit_type is not None:
        unit_type = calc.result_unit_type
    else:
        unit_type = available_result_unit_types(calc.operator, left_unit, right_unit)[0]

    series = None
    if left.series is not None and right.series is not None:
        series = combine_series(calc.operator, left.series, right.series)

    return (
        MetricResult(
            value=combine(calc.operator, left.value, right.value),
            series=series,
            unit_type=unit_type,
        ),
        block_results,
    )


def compute_formula(
    formula: MetricFormula,
    start: date,
    end: date,
    granularity: TimeGranularity | str,
    store: Warehouse | RecordStore,
    schema: SchemaCatalog | None = None,
    selected_objects: Sequence[str] = (),
    selected_fields: Sequence[FieldRef] = (),
    comparison: Comparison | str = Comparison.NONE,
) -> FormulaResult:
    """Compute a formula over a window.

    Args:
        formula: Blocks plus optional calculation.
        start: Window start (inclusive).
        end: Window end (inclusive).
        granularity: Bucket size for the series.
        store: Warehouse or plain object -> records mapping.
        schema: Schema catalog.
        selected_objects: Objects picked in the report; the first is primary.
        selected_fields: Fields picked in the report. only used to find a
            primary object when no objects are selected.
        comparison: Optional comparison mode, attached to the result.

    Returns:
        FormulaResult with the combined result, one entry per block, and the
        blocks flagged in expose_blocks.
    """
    window = TimeWindow(start=start, end=end, granularity=granularity)
    primary = _primary_object(selected_objects, selected_fields)

    result, block_results = _compose(formula, window, store, schema, primary)
    exposed = [r for r in block_results if r.block_id in formula.expose_blocks]

    comparison_result = None
    if Comparison(comparison) != Comparison.NONE:
        comparison_result = compare(
            result,
            window,
            comparison,
            lambda shifted: _compose(formula, shifted, store, schema, primary)[0],
        )

    return FormulaResult(
        result=result,
        block_results=block_results,
        exposed=exposed,
        comparison=comparison_result,
    )
