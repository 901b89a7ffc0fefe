"""Pytest fixtures for ReportForge tests."""

import json
from collections.abc import Generator
from datetime import date
from pathlib import Path

import pytest

from reportforge.config import get_settings
from reportforge.models.metric import MetricBlock, MetricFormula
from reportforge.models.query import TimeWindow
from reportforge.models.schema import FieldRef, SchemaCatalog, TimeGranularity
from reportforge.parser.loader import SchemaRegistry
from reportforge.store import ReportStore
from reportforge.warehouse import Warehouse


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Generator[None, None, None]:
    """Settings are cached process-wide; env tweaks in one test mustn't leak."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def sample_schema_yaml() -> str:
    """Sample schema YAML content for testing."""
    return """
objects:
  - name: customers
    label: Customer
    fields:
      - name: id
        type: id
      - name: name
        label: Name
        type: string
      - name: email
        type: string
      - name: country
        label: Country
        type: string
      - name: created
        type: date
      - name: delinquent
        type: boolean
      - name: balance
        type: number

  - name: payments
    label: Payment
    fields:
      - name: id
        type: id
      - name: customer_id
        type: id
      - name: amount
        label: Amount
        type: number
      - name: currency
        type: string
      - name: status
        label: Status
        type: string
        enum: [paid, failed, pending]
      - name: created
        type: date
      - name: captured
        type: boolean

relationships:
  - from: customers
    to: payments
    type: one-to-many
    via: customer_id
"""


@pytest.fixture
def schema_path(tmp_path: Path, sample_schema_yaml: str) -> Path:
    """Create a temporary schema directory with sample YAML."""
    path = tmp_path / "schema"
    path.mkdir()
    (path / "schema.yaml").write_text(sample_schema_yaml)
    return path


@pytest.fixture
def schema(schema_path: Path) -> SchemaCatalog:
    registry = SchemaRegistry()
    registry.load_directory(schema_path)
    return registry.catalog


@pytest.fixture
def sample_data() -> dict[str, list[dict]]:
    """Three customers and three payments across Q1 2024."""
    return {
        "customers": [
            {"id": "cus_1", "name": "Ada", "country": "US", "created": "2023-12-01",
             "delinquent": False, "balance": 0},
            {"id": "cus_2", "name": "Brook", "country": "UK", "created": "2023-12-05",
             "delinquent": True, "balance": 12.5},
            {"id": "cus_3", "name": "Cyd", "country": "US", "created": "2024-01-02",
             "delinquent": False, "balance": 0},
        ],
        "payments": [
            {"id": "p1", "customer_id": "cus_1", "amount": 10, "currency": "usd",
             "status": "paid", "created": "2024-01-10", "captured": True},
            {"id": "p2", "customer_id": "cus_2", "amount": 20, "currency": "gbp",
             "status": "paid", "created": "2024-02-15", "captured": True},
            {"id": "p3", "customer_id": "cus_1", "amount": 30, "currency": "usd",
             "status": "failed", "created": "2024-03-20", "captured": False},
        ],
    }


@pytest.fixture
def warehouse(sample_data: dict, schema: SchemaCatalog) -> Warehouse:
    return Warehouse(sample_data, schema)


@pytest.fixture
def q1() -> TimeWindow:
    """Window covering all sample payments, monthly buckets."""
    return TimeWindow(
        start=date(2024, 1, 1), end=date(2024, 3, 31), granularity=TimeGranularity.MONTH
    )


@pytest.fixture
def amount_block() -> MetricBlock:
    return MetricBlock(
        id="volume", name="Volume", source=FieldRef(object="payments", field="amount")
    )


@pytest.fixture
def count_block() -> MetricBlock:
    return MetricBlock(
        id="count", name="Payments", source=FieldRef(object="payments", field="id"), op="count"
    )


@pytest.fixture
def ratio_formula(amount_block: MetricBlock, count_block: MetricBlock) -> MetricFormula:
    return MetricFormula(
        name="average_payment",
        blocks=[amount_block, count_block],
        calculation={"operator": "divide", "left_operand": "volume", "right_operand": "count"},
        expose_blocks=["count"],
    )


@pytest.fixture
def sample_formulas_yaml() -> str:
    return """
formulas:
  - name: gross_volume
    blocks:
      - id: volume
        name: Volume
        source: payments.amount
        op: sum

  - name: average_payment
    blocks:
      - id: volume
        name: Volume
        source: payments.amount
      - id: count
        name: Payments
        source: payments.id
        op: count
    calculation:
      operator: divide
      left_operand: volume
      right_operand: count
    expose_blocks: [count]

  - name: paid_volume
    blocks:
      - id: paid
        name: Paid volume
        source: payments.amount
        filters:
          - field: payments.status
            operator: equals
            value: paid
"""


@pytest.fixture
def formulas_path(tmp_path: Path, sample_formulas_yaml: str) -> Path:
    path = tmp_path / "formulas.yaml"
    path.write_text(sample_formulas_yaml)
    return path


@pytest.fixture
def data_path(tmp_path: Path, sample_data: dict) -> Path:
    """Sample warehouse written as JSON."""
    path = tmp_path / "warehouse.json"
    path.write_text(json.dumps(sample_data))
    return path


@pytest.fixture
def store(schema_path: Path, sample_data: dict) -> Generator[ReportStore, None, None]:
    """Create a ReportStore over the sample data."""
    report_store = ReportStore(schema_path, sample_data)
    yield report_store
    report_store.close()
