"""Tests for record-level filter evaluation."""

from datetime import datetime

import pytest

from reportforge.engine.filters import apply_filters, describe_filters, evaluate, matches_condition
from reportforge.models.metric import FilterCondition, FilterLogic, FilterSet
from reportforge.models.schema import FieldRef, SchemaCatalog

STATUS = FieldRef(object="payments", field="status")
AMOUNT = FieldRef(object="payments", field="amount")
CREATED = FieldRef(object="payments", field="created")
CAPTURED = FieldRef(object="payments", field="captured")
CURRENCY = FieldRef(object="payments", field="currency")


def cond(field: FieldRef, operator: str, value=None) -> FilterCondition:
    return FilterCondition(field=field, operator=operator, value=value)


@pytest.fixture
def payment() -> dict:
    return {
        "id": "p1",
        "amount": 10,
        "status": "paid",
        "currency": "usd",
        "created": datetime(2024, 1, 10, 15, 30),
        "captured": True,
    }


class TestOperators:
    def test_equals(self, payment, schema: SchemaCatalog):
        assert matches_condition(cond(STATUS, "equals", "paid"), payment, schema)
        assert not matches_condition(cond(STATUS, "equals", "failed"), payment, schema)

    def test_equals_list_is_any_of(self, payment, schema: SchemaCatalog):
        """A list value matches any option."""
        assert matches_condition(cond(STATUS, "equals", ["failed", "paid"]), payment, schema)
        assert matches_condition(cond(STATUS, "in", ["paid"]), payment, schema)

    def test_not_equals(self, payment, schema: SchemaCatalog):
        assert matches_condition(cond(STATUS, "not_equals", "failed"), payment, schema)
        both = cond(STATUS, "not_equals", ["paid", "failed"])
        assert not matches_condition(both, payment, schema)

    def test_number_comparisons(self, payment, schema: SchemaCatalog):
        assert matches_condition(cond(AMOUNT, "greater_than", 5), payment, schema)
        assert not matches_condition(cond(AMOUNT, "greater_than", 10), payment, schema)
        assert matches_condition(cond(AMOUNT, "less_than", "11"), payment, schema)
        assert matches_condition(cond(AMOUNT, "equals", "10"), payment, schema)

    def test_between_is_inclusive(self, payment, schema: SchemaCatalog):
        assert matches_condition(cond(AMOUNT, "between", [10, 20]), payment, schema)
        assert matches_condition(cond(AMOUNT, "between", [0, 10]), payment, schema)
        assert not matches_condition(cond(AMOUNT, "between", [11, 20]), payment, schema)

    def test_between_needs_a_pair(self, payment, schema: SchemaCatalog):
        """A malformed range is just false."""
        assert not matches_condition(cond(AMOUNT, "between", [1]), payment, schema)
        assert not matches_condition(cond(AMOUNT, "between", 5), payment, schema)

    def test_dates_equal_by_day(self, payment, schema: SchemaCatalog):
        """Date equality ignores the time of day."""
        assert matches_condition(cond(CREATED, "equals", "2024-01-10"), payment, schema)
        assert matches_condition(cond(CREATED, "greater_than", "2024-01-01"), payment, schema)
        assert matches_condition(
            cond(CREATED, "between", ["2024-01-01", "2024-01-31"]), payment, schema
        )

    def test_contains_is_case_insensitive(self, payment, schema: SchemaCatalog):
        assert matches_condition(cond(CURRENCY, "contains", "US"), payment, schema)
        assert matches_condition(cond(CURRENCY, "contains", ["eur", "sd"]), payment, schema)
        assert not matches_condition(cond(CURRENCY, "contains", "gbp"), payment, schema)

    def test_booleans(self, payment, schema: SchemaCatalog):
        """Boolean fields compare as exact true/false."""
        assert matches_condition(cond(CAPTURED, "is_true"), payment, schema)
        assert not matches_condition(cond(CAPTURED, "is_false"), payment, schema)
        assert matches_condition(cond(CAPTURED, "equals", "true"), payment, schema)
        assert not matches_condition(cond(CAPTURED, "equals", False), payment, schema)

    def test_type_mismatch_is_false(self, payment, schema: SchemaCatalog):
        """A number against a string field never matches."""
        assert not matches_condition(cond(STATUS, "equals", 5), payment, schema)
        assert not matches_condition(cond(STATUS, "greater_than", "a"), payment, schema)


class TestBlankValues:
    def test_blank_value_matches_only_blank_fields(self, payment, schema: SchemaCatalog):
        """An empty filter value means "field is empty"."""
        assert not matches_condition(cond(STATUS, "equals", ""), payment, schema)
        assert matches_condition(cond(STATUS, "equals", None), {"status": None}, schema)
        assert matches_condition(cond(STATUS, "equals", []), {"id": "p2"}, schema)

    def test_blank_field_fails_non_blank_value(self, schema: SchemaCatalog):
        record = {"status": ""}
        assert not matches_condition(cond(STATUS, "equals", "paid"), record, schema)
        assert not matches_condition(cond(STATUS, "not_equals", "paid"), record, schema)


class TestLogic:
    def test_empty_conditions_match(self, payment, schema: SchemaCatalog):
        assert evaluate([], FilterLogic.AND, payment, schema)
        assert evaluate([], FilterLogic.OR, payment, schema)

    def test_and_requires_all(self, payment, schema: SchemaCatalog):
        conditions = [cond(STATUS, "equals", "paid"), cond(AMOUNT, "greater_than", 50)]
        assert not evaluate(conditions, "AND", payment, schema)
        assert evaluate(conditions, "OR", payment, schema)

    def test_logic_applies_across_same_field(self, payment, schema: SchemaCatalog):
        """Two conditions on one field are not OR-ed implicitly."""
        conditions = [cond(STATUS, "equals", "paid"), cond(STATUS, "equals", "failed")]
        assert not evaluate(conditions, "AND", payment, schema)
        assert evaluate(conditions, "OR", payment, schema)

    def test_unresolved_ref_under_and_is_false(self, payment, schema: SchemaCatalog):
        nope = cond(FieldRef.parse("payments.nope"), "equals", "x")
        assert not evaluate([cond(STATUS, "equals", "paid"), nope], "AND", payment, schema)

    def test_unresolved_ref_under_or_is_ignored(self, payment, schema: SchemaCatalog):
        nope = cond(FieldRef.parse("payments.nope"), "equals", "x")
        assert evaluate([nope, cond(STATUS, "equals", "paid")], "OR", payment, schema)
        assert not evaluate([nope, cond(STATUS, "equals", "failed")], "OR", payment, schema)
        assert evaluate([nope], "OR", payment, schema)

    def test_and_result_is_subset_of_or(self, sample_data: dict, schema: SchemaCatalog):
        """Whatever passes AND also passes OR for the same conditions."""
        conditions = [cond(STATUS, "equals", "paid"), cond(AMOUNT, "less_than", 25)]
        rows = sample_data["payments"]
        and_rows = apply_filters(rows, FilterSet(conditions=conditions, logic="AND"), schema)
        or_rows = apply_filters(rows, FilterSet(conditions=conditions, logic="OR"), schema)
        assert [r["id"] for r in and_rows] == ["p1", "p2"]
        assert all(r in or_rows for r in and_rows)

    def test_apply_filters_keeps_order(self, sample_data: dict, schema: SchemaCatalog):
        rows = apply_filters(
            sample_data["payments"],
            FilterSet(conditions=[cond(AMOUNT, "greater_than", 15)]),
            schema,
        )
        assert [r["id"] for r in rows] == ["p2", "p3"]


class TestForeignRefs:
    def test_qualified_key_wins(self, schema: SchemaCatalog):
        """Related values are read from their qualified key."""
        record = {"id": "p1", "customers.country": "US"}
        country = cond(FieldRef.parse("customers.country"), "equals", "US")
        assert matches_condition(country, record, schema, object_name="payments")

    def test_bare_key_not_used_for_other_objects(self, schema: SchemaCatalog):
        """A payment's own column never stands in for a customer's."""
        record = {"id": "p1", "name": "Ada"}
        name = cond(FieldRef.parse("customers.name"), "equals", "Ada")
        assert not matches_condition(name, record, schema, object_name="payments")


class TestDescribe:
    def test_describe_filters(self, schema: SchemaCatalog):
        filters = FilterSet(
            conditions=[
                cond(STATUS, "equals", "paid"),
                cond(STATUS, "equals", "failed"),
                cond(AMOUNT, "between", [1, 5]),
                cond(CAPTURED, "is_true"),
                cond(CURRENCY, "equals", None),
            ]
        )
        assert describe_filters(filters, schema) == [
            "Status is paid",
            "Amount is between 1 and 5",
            "captured is true",
            "currency is empty",
        ]
