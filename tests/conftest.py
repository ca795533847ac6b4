"""Pytest fixtures for MeterForge tests."""

from collections.abc import Generator
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest
import structlog

from meterforge.compiler.sql_builder import UsageQueryCompiler
from meterforge.executor.duckdb_executor import DuckDBExecutor
from meterforge.models.usage import ExecutionContext
from meterforge.parser.loader import MeterRegistry
from meterforge.store import MeterStore

T0 = datetime(2024, 3, 1)
T1 = datetime(2024, 4, 1)


@pytest.fixture(autouse=True)
def reset_structlog() -> Generator[None, None, None]:
    """The cli reconfigures structlog per invocation, put the defaults back after."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def window() -> tuple[datetime, datetime]:
    """Billing window [T0, T1)."""
    return T0, T1


@pytest.fixture
def context() -> ExecutionContext:
    return ExecutionContext(tenant_id="tenant_1", environment_id="env_1")


@pytest.fixture
def compiler() -> UsageQueryCompiler:
    return UsageQueryCompiler()


@pytest.fixture
def duck_compiler() -> UsageQueryCompiler:
    return UsageQueryCompiler(dialect="duckdb")


@pytest.fixture
def sample_meters_yaml() -> str:
    """Sample meter YAML content for testing."""
    return """
meters:
  - name: api_calls
    description: "API calls in US regions"
    event_name: api_call
    aggregation: count
    filters:
      region: ["us-east-1", "us-west-1"]

  - name: tokens
    description: "Tokens used"
    event_name: api_call
    aggregation:
      type: sum
      field: tokens

  - name: models_used
    event_name: api_call
    aggregation:
      type: count_distinct
      field: model

  - name: calls_by_tier
    description: "API calls split by pricing tier"
    event_name: api_call
    aggregation: count
    filter_groups:
      - id: gold
        priority: 2
        filters:
          tier: ["gold"]
      - id: other
        priority: 0
        filters: {}

  - name: daily_calls
    event_name: api_call
    aggregation: count
    window_size: day
"""


@pytest.fixture
def meters_dir(tmp_path: Path, sample_meters_yaml: str) -> Path:
    """Create a temporary meters directory with sample YAML."""
    meters_path = tmp_path / "meters"
    meters_path.mkdir()
    (meters_path / "test.yaml").write_text(sample_meters_yaml)
    return meters_path


@pytest.fixture
def sample_events() -> list[dict[str, Any]]:
    """Raw api_call events for tenant_1/env_1.

    in the [T0, T1) window with region us-east-1/us-west-1 there are exactly
    three: e1, e2, e3. e4 is in eu-west-1, e5 sits exactly on T1 (excluded),
    e6 is a different event.
    """

    def event(id, ts, props, event_name="api_call", ext="cust_ext_a", cust="cust_a"):
        return {
            "id": id,
            "tenant_id": "tenant_1",
            "environment_id": "env_1",
            "event_name": event_name,
            "external_customer_id": ext,
            "customer_id": cust,
            "timestamp": ts,
            "properties": props,
        }

    return [
        event(
            "e1",
            datetime(2024, 3, 2, 10, 0),
            {"region": "us-east-1", "tier": "gold", "tokens": "100", "model": "gpt"},
        ),
        event(
            "e2",
            datetime(2024, 3, 5, 11, 30),
            {"region": "us-west-1", "tier": "silver", "tokens": "50", "model": "claude"},
        ),
        event(
            "e3",
            datetime(2024, 3, 10, 12, 0),
            {"region": "us-east-1", "tier": "gold", "tokens": "not-a-number", "model": "gpt"},
            ext="cust_ext_b",
            cust="cust_b",
        ),
        event(
            "e4",
            datetime(2024, 3, 10, 13, 0),
            {"region": "eu-west-1", "tier": "gold", "tokens": "25", "model": "gpt"},
        ),
        event(
            "e5",
            datetime(2024, 4, 1, 0, 0),
            {"region": "us-east-1", "tier": "gold", "tokens": "1000", "model": "gpt"},
        ),
        event(
            "e6",
            datetime(2024, 3, 3, 9, 0),
            {"region": "us-east-1", "tier": "gold"},
            event_name="page_view",
        ),
    ]


@pytest.fixture
def db_with_events(sample_events: list[dict]) -> Generator[DuckDBExecutor, None, None]:
    """In-memory DuckDB with the events table loaded."""
    executor = DuckDBExecutor()
    executor.create_events_table()
    executor.insert_events(sample_events)
    yield executor
    executor.close()


@pytest.fixture
def registry(meters_dir: Path) -> MeterRegistry:
    """Create a loaded MeterRegistry."""
    reg = MeterRegistry()
    reg.load_directory(meters_dir)
    return reg


@pytest.fixture
def store_with_events(
    meters_dir: Path, sample_events: list[dict]
) -> Generator[MeterStore, None, None]:
    """Create a MeterStore with events loaded."""
    store = MeterStore(meters_dir)
    store.executor.create_events_table()
    store.executor.insert_events(sample_events)
    yield store
    store.close()
