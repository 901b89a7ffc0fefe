"""Basic usage example for ReportForge."""

from pathlib import Path

from reportforge.models import FieldRef, GroupBySpec
from reportforge.parser.loader import load_formula
from reportforge.store import ReportStore

DATA = Path(__file__).parent.parent / "data"


def main():
    """Walk through the engine using the sample billing data."""
    store = ReportStore(DATA / "schema.yaml", DATA / "warehouse.json")
    formulas = DATA / "formulas.yaml"

    print("=" * 60)
    print("ReportForge Billing Demo")
    print("=" * 60)

    # 1. Single block
    print("\n1. Gross volume, Q1 2024:")
    result = store.compute(load_formula(formulas, "gross_volume"), "2024-01-01", "2024-03-31")
    print(f"   ${result.result.value:,.2f}")
    for point in result.result.series:
        print(f"   {point.label}: ${point.value or 0:,.2f}")

    # 2. Filtered block
    print("\n2. Paid volume:")
    result = store.compute(load_formula(formulas, "paid_volume"), "2024-01-01", "2024-03-31")
    print(f"   ${result.result.value:,.2f}")

    # 3. Two blocks combined by a calculation
    print("\n3. Average payment:")
    result = store.compute(load_formula(formulas, "average_payment"), "2024-01-01", "2024-03-31")
    print(f"   ${result.result.value:,.2f}")
    for block in result.exposed:
        print(f"   ({block.block_name}: {block.value:.0f})")

    # 4. Comparison against the previous period
    print("\n4. March vs February:")
    result = store.compute(
        load_formula(formulas, "gross_volume"),
        "2024-03-01",
        "2024-03-31",
        comparison="previous_period",
    )
    cmp = result.comparison
    print(f"   now ${result.result.value:,.2f}, before ${cmp.baseline_value:,.2f}")
    if cmp.percent_delta is not None:
        print(f"   change {cmp.percent_delta:+.1%}")

    # 5. Filter through a related object
    print("\n5. Volume from US customers:")
    result = store.compute(load_formula(formulas, "us_volume"), "2024-01-01", "2024-03-31")
    print(f"   ${result.result.value:,.2f}")

    # 6. Grouping
    print("\n6. Payment status values:")
    for value in store.group_values("payments.status"):
        print(f"   {value.value}: {value.count}")

    print("\n7. Gross volume by customer country:")
    country = FieldRef(object="customers", field="country")
    spec = GroupBySpec(
        field=country,
        selected_values=[v.value for v in store.group_values(country, primary_object="payments")],
    )
    grouped = store.grouped(
        load_formula(formulas, "gross_volume"), spec, "2024-01-01", "2024-03-31"
    )
    for value, group in grouped.items():
        print(f"   {value}: ${group.result.value or 0:,.2f}")

    # 8. SQL preview, run through duckdb
    print("\n8. SQL for paid volume:")
    queries = store.get_sql(load_formula(formulas, "paid_volume"), "2024-01-01", "2024-03-31")
    for sql in queries.values():
        print(sql)
        for row in store.run_sql(sql).data:
            print(f"   {row['bucket']}: {row['value']}")

    print("\n" + "=" * 60)
    print("Demo complete!")
    print("=" * 60)

    store.close()


if __name__ == "__main__":
    main()
