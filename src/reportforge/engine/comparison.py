"""Comparison baselines and deltas.

previous_period/previous_year re-run the same evaluation over a shifted window.
period_start doesn't re-evaluate anything - it's a static snapshot of the first
bucket of the current result.
"""

import logging
from collections.abc import Callable

from reportforge.engine.blocks import evaluate_block
from reportforge.engine.timebuckets import shift_window
from reportforge.models.metric import MetricBlock
from reportforge.models.query import (
    Comparison,
    ComparisonResult,
    MetricResult,
    SeriesPoint,
    TimeWindow,
)
from reportforge.models.schema import SchemaCatalog
from reportforge.warehouse import RecordStore, Warehouse

logger = logging.getLogger(__name__)

Evaluator = Callable[[TimeWindow], MetricResult]


def compute_delta(
    current: float | None, baseline: float | None
) -> tuple[float | None, float | None]:
    """Absolute and relative change.

    percent delta is None (not inf/nan) when the baseline is zero or missing.
    """
    if current is None or baseline is None:
        return None, None
    delta = current - baseline
    percent = delta / baseline if baseline != 0 else None
    return delta, percent


def period_start_series(series: list[SeriesPoint]) -> list[SeriesPoint]:
    """Flat series at the first bucket's value."""
    if not series:
        return []
    baseline = series[0].value
    return [SeriesPoint(date=p.date, label=p.label, value=baseline) for p in series]


def compare(
    current: MetricResult,
    window: TimeWindow,
    comparison: Comparison | str,
    evaluate: Evaluator | None = None,
) -> ComparisonResult:
    """Derive a baseline for `current` and the deltas against it.

    Args:
        current: The already computed result for `window`.
        window: The current window.
        comparison: Comparison mode.
        evaluate: Re-runs the same computation for another window. Needed for
            previous_period and previous_year.
    """
    mode = Comparison(comparison)
    if mode == Comparison.NONE:
        return ComparisonResult(mode=mode)

    if mode == Comparison.PERIOD_START:
        if not current.series:
            return ComparisonResult(mode=mode)
        baseline_value = current.series[0].value
        delta, percent = compute_delta(current.value, baseline_value)
        return ComparisonResult(
            mode=mode,
            baseline_value=baseline_value,
            baseline_series=period_start_series(current.series),
            delta=delta,
            percent_delta=percent,
        )

    baseline_window = shift_window(window, mode)
    if evaluate is None or baseline_window is None:
        logger.debug("no evaluator for %s comparison", mode.value)
        return ComparisonResult(mode=mode, baseline_window=baseline_window)

    baseline = evaluate(baseline_window)
    delta, percent = compute_delta(current.value, baseline.value)
    return ComparisonResult(
        mode=mode,
        baseline_window=baseline_window,
        baseline_value=baseline.value,
        baseline_series=baseline.series,
        delta=delta,
        percent_delta=percent,
    )


def compare_block(
    block: MetricBlock,
    window: TimeWindow,
    comparison: Comparison | str,
    warehouse: Warehouse | RecordStore,
    schema: SchemaCatalog | None = None,
    primary_object: str | None = None,
) -> ComparisonResult:
    """Evaluate a block and compare it against its baseline."""
    current = evaluate_block(block, window, warehouse, schema, primary_object)
    return compare(
        current,
        window,
        comparison,
        lambda shifted: evaluate_block(block, shifted, warehouse, schema, primary_object),
    )
