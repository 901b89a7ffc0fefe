"""Unit typing for blocks and calculations.

mostly heuristics on field names - the schema says "number" for both an amount
and a quantity, and only one of those should render with a currency symbol.
"""

from reportforge.config import get_settings
from reportforge.models.metric import CalculationOperator, MetricBlock, MetricOp, UnitType
from reportforge.models.schema import FieldType, SchemaCatalog


def infer_unit_type(block: MetricBlock, schema: SchemaCatalog | None = None) -> UnitType:
    """Infer what a block's numbers mean."""
    if block.unit_type is not None:
        return block.unit_type
    if block.op in (MetricOp.COUNT, MetricOp.DISTINCT_COUNT) or block.source is None:
        return UnitType.COUNT

    if block.source.field in get_settings().currency_fields:
        return UnitType.CURRENCY

    field = schema.resolve(block.source) if schema else None
    if field is not None and field.type == FieldType.DATE:
        return UnitType.DATE

    return UnitType.COUNT


def validate_formula_units(
    operator: CalculationOperator, left: UnitType, right: UnitType
) -> str | None:
    """Return an error message when a calculation mixes incompatible units."""
    operator = CalculationOperator(operator)
    if operator in (CalculationOperator.ADD, CalculationOperator.SUBTRACT) and left != right:
        verb = "Addition" if operator == CalculationOperator.ADD else "Subtraction"
        return (
            f"{verb} requires matching unit types "
            f"(left is {left.value}, right is {right.value})"
        )
    return None


def available_result_unit_types(
    operator: CalculationOperator, left: UnitType, right: UnitType
) -> list[UnitType]:
    """Unit types a calculation result may be displayed as.

    add/subtract keep the operand type. multiply/divide can be either operand's
    type, or a rate.
    """
    operator = CalculationOperator(operator)
    if operator in (CalculationOperator.ADD, CalculationOperator.SUBTRACT):
        return [left]
    available = list(dict.fromkeys([left, right]))
    if UnitType.RATE not in available:
        available.append(UnitType.RATE)
    return available
