"""Generate a sample billing warehouse for ReportForge."""

import json
import random
from datetime import date, timedelta
from pathlib import Path

from reportforge.executor.duckdb_executor import DuckDBExecutor


def generate_sample_data(output_dir: Path, parquet: bool = False) -> dict[str, list[dict]]:
    """Generate customers, payments and subscriptions.

    Args:
        output_dir: Directory to write warehouse.json into.
        parquet: Also export one parquet file per object, for the
            file-backed warehouse loader.

    Returns:
        The generated {object: records} mapping.
    """
    random.seed(42)  # Reproducible data

    customers = generate_customers(200)
    data = {
        "customers": customers,
        "payments": generate_payments(1500, customers),
        "subscriptions": generate_subscriptions(customers),
    }

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    with open(output_dir / "warehouse.json", "w") as f:
        json.dump(data, f, indent=1)

    if parquet:
        export_parquet(data, output_dir / "parquet")

    return data


def _random_day(start: date, end: date) -> date:
    return start + timedelta(days=random.randint(0, (end - start).days))


def generate_customers(count: int) -> list[dict]:
    """Generate customer records."""
    countries = ["US", "US", "US", "UK", "UK", "DE", "FR", "CA", "AU"]

    customers = []
    for i in range(1, count + 1):
        customers.append(
            {
                "id": f"cus_{i}",
                "name": f"Customer {i}",
                "email": f"customer{i}@example.com",
                "country": random.choice(countries),
                "delinquent": random.random() < 0.08,
                "balance": round(random.choice([0, 0, 0, random.uniform(-50, 200)]), 2),
                "created": _random_day(date(2023, 1, 1), date(2024, 6, 30)).isoformat(),
            }
        )
    return customers


def generate_payments(count: int, customers: list[dict]) -> list[dict]:
    """Generate payment records, each after its customer was created."""
    statuses = ["paid", "paid", "paid", "paid", "paid", "failed", "pending"]
    currency_by_country = {"US": "usd", "CA": "usd", "AU": "usd", "UK": "gbp"}

    payments = []
    for i in range(1, count + 1):
        customer = random.choice(customers)
        created = _random_day(date.fromisoformat(customer["created"]), date(2024, 12, 31))
        status = random.choice(statuses)
        payments.append(
            {
                "id": f"py_{i}",
                "customer_id": customer["id"],
                "amount": round(random.uniform(10, 500), 2),
                "currency": currency_by_country.get(customer["country"], "eur"),
                "status": status,
                "captured": status == "paid",
                "created": created.isoformat(),
            }
        )
    return payments


def generate_subscriptions(customers: list[dict]) -> list[dict]:
    """Generate zero to two subscriptions per customer."""
    plans = ["starter", "starter", "growth", "enterprise"]
    statuses = ["active", "active", "active", "trialing", "canceled"]

    subscriptions = []
    for customer in customers:
        for _ in range(random.choice([0, 1, 1, 2])):
            subscriptions.append(
                {
                    "id": f"sub_{len(subscriptions) + 1}",
                    "customer_id": customer["id"],
                    "plan": random.choice(plans),
                    "status": random.choice(statuses),
                    "quantity": random.randint(1, 25),
                    "created": customer["created"],
                }
            )
    return subscriptions


def export_parquet(data: dict[str, list[dict]], output_dir: Path) -> None:
    """Write one parquet file per object via duckdb."""
    output_dir.mkdir(parents=True, exist_ok=True)
    with DuckDBExecutor() as executor:
        for object_name, records in data.items():
            executor.load_records(object_name, records)
            target = output_dir / f"{object_name}.parquet"
            executor.conn.execute(f"COPY {object_name} TO '{target}' (FORMAT PARQUET)")
    print(f"Parquet files exported to {output_dir}")


if __name__ == "__main__":
    import sys

    args = [a for a in sys.argv[1:] if not a.startswith("--")]
    output_dir = Path(args[0]) if args else Path(__file__).parent
    data = generate_sample_data(output_dir, parquet="--parquet" in sys.argv)

    for object_name, records in data.items():
        print(f"Generated {len(records)} {object_name}")

    paid = sum(p["amount"] for p in data["payments"] if p["status"] == "paid")
    print(f"Total paid volume: ${paid:,.2f}")
