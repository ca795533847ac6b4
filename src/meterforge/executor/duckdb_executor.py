"""DuckDB query executor for MeterForge.

production usage queries run on clickhouse; this is the embedded stand-in
for local work and tests. the compiler emits the same pipeline for both,
so running it here exercises dedup, filter-group resolution and
aggregation for real instead of just string-matching sql.
"""

import json
import time
from datetime import datetime
from typing import Any

import duckdb
import structlog

from meterforge.config import DEFAULT_CONFIG, CompilerConfig
from meterforge.models.query import CompiledQuery, QueryResult
from meterforge.timeutil import to_utc_naive

logger = structlog.get_logger(__name__)


class DuckDBExecutor:
    """Execute compiled usage queries against DuckDB.

    thin wrapper that handles the connection, the events table layout and
    result formatting. binds args exactly as compiled - positional, in order.
    """

    def __init__(self, database_path: str | None = None, config: CompilerConfig | None = None) -> None:
        """Initialize DuckDB connection.

        Args:
            database_path: Path to DuckDB file, or None for in-memory.
            config: Events table layout, defaults to DEFAULT_CONFIG.
        """
        self.database_path = database_path
        self.config = config or DEFAULT_CONFIG
        self._conn: duckdb.DuckDBPyConnection | None = None  # lazy init

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        """Get or create the DuckDB connection."""
        if self._conn is None:
            self._conn = duckdb.connect(self.database_path or ":memory:")
        return self._conn

    def execute(self, compiled: CompiledQuery) -> QueryResult:
        """Execute a compiled query and return structured results."""
        if compiled.dialect != "duckdb":
            raise ValueError(
                f"Query was compiled for '{compiled.dialect}', DuckDB needs the 'duckdb' dialect"
            )

        start = time.perf_counter()

        result = self.conn.execute(compiled.sql, compiled.args)
        columns = [desc[0] for desc in result.description]
        rows = result.fetchall()

        elapsed_ms = (time.perf_counter() - start) * 1000

        # args are tenant data, only log their count
        logger.debug(
            "usage_query_executed",
            params=compiled.param_count,
            rows=len(rows),
            elapsed_ms=round(elapsed_ms, 2),
        )

        data = [dict(zip(columns, row)) for row in rows]

        return QueryResult(
            sql=compiled.sql,
            columns=columns,
            data=data,
            row_count=len(data),
            execution_time_ms=round(elapsed_ms, 2),
        )

    def execute_raw(self, sql: str, params: list[Any] | None = None) -> list[tuple[Any, ...]]:
        """Execute SQL and return raw tuples."""
        result = self.conn.execute(sql, params or [])
        return result.fetchall()

    def create_events_table(self) -> None:
        """Create the raw events table if it doesn't exist.

        mirrors the clickhouse events table closely enough for the compiled
        pipeline: properties is a json payload, timestamp has no zone.
        no primary key, duplicate deliveries must be storable.
        """
        cfg = self.config
        self.conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {cfg.events_table} (
                {cfg.id_column} VARCHAR,
                {cfg.tenant_column} VARCHAR,
                {cfg.environment_column} VARCHAR,
                {cfg.event_name_column} VARCHAR,
                {cfg.external_customer_column} VARCHAR,
                {cfg.customer_column} VARCHAR,
                {cfg.timestamp_column} TIMESTAMP,
                {cfg.properties_column} JSON
            )
        """)

    def insert_events(self, events: list[dict[str, Any]]) -> int:
        """Insert raw events. Returns the number of rows written.

        each event is a dict keyed by the default column names (id,
        tenant_id, environment_id, event_name, external_customer_id,
        customer_id, timestamp, properties). properties can be a dict and
        gets serialized to json.
        """
        if not events:
            raise ValueError("Cannot insert an empty list of events")

        cfg = self.config
        columns = [
            cfg.id_column,
            cfg.tenant_column,
            cfg.environment_column,
            cfg.event_name_column,
            cfg.external_customer_column,
            cfg.customer_column,
            cfg.timestamp_column,
            cfg.properties_column,
        ]
        rows = [self._event_row(event) for event in events]

        placeholders = ", ".join(["?"] * len(columns))
        self.conn.executemany(
            f"INSERT INTO {cfg.events_table} ({', '.join(columns)}) VALUES ({placeholders})",
            rows,
        )
        logger.debug("events_inserted", table=cfg.events_table, rows=len(rows))
        return len(rows)

    def _event_row(self, event: dict[str, Any]) -> tuple[Any, ...]:
        properties = event.get("properties") or {}
        if not isinstance(properties, str):
            properties = json.dumps(properties)

        timestamp = event["timestamp"]
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        timestamp = to_utc_naive(timestamp)

        return (
            event["id"],
            event.get("tenant_id"),
            event.get("environment_id"),
            event["event_name"],
            event.get("external_customer_id"),
            event.get("customer_id"),
            timestamp,
            properties,
        )

    def table_exists(self, table_name: str) -> bool:
        """Check if a table exists."""
        result = self.conn.execute(
            "SELECT COUNT(*) FROM information_schema.tables WHERE table_name = ?",
            [table_name],
        )
        return result.fetchone()[0] > 0

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "DuckDBExecutor":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
