"""Main MeterStore interface for MeterForge."""

from datetime import datetime
from pathlib import Path

import structlog
from pydantic import ValidationError

from meterforge.compiler.sql_builder import UsageQueryCompiler
from meterforge.config import DEFAULT_CONFIG, CompilerConfig
from meterforge.errors import QueryValidationError
from meterforge.executor.duckdb_executor import DuckDBExecutor
from meterforge.models.query import CompiledQuery, QueryResult
from meterforge.models.usage import ExecutionContext, FilterGroup, UsageQuery
from meterforge.parser.loader import MeterRegistry

logger = structlog.get_logger(__name__)


class MeterStore:
    """Main interface for MeterForge.

    ties the registry, compiler and a local duckdb executor together.
    queries that run here are compiled for duckdb; get_sql can render for
    any dialect (clickhouse by default) for handing off elsewhere.
    """

    def __init__(
        self,
        meters_path: str | Path | None = None,
        database_path: str | None = None,
        config: CompilerConfig | None = None,
    ) -> None:
        """Initialize the meter store.

        Args:
            meters_path: Directory containing meter YAML files, or None to
                start with an empty registry.
            database_path: Path to DuckDB file, or None for in-memory.
            config: Events table layout shared by compiler and executor.
        """
        self.config = config or DEFAULT_CONFIG
        self.registry = MeterRegistry()
        self.compiler = UsageQueryCompiler(self.config, dialect="duckdb")
        self.executor = DuckDBExecutor(database_path, self.config)

        # fail fast on broken meter files
        if meters_path is not None:
            self.registry.load_directory(Path(meters_path))

    def usage(
        self,
        event_name: str,
        aggregation: str = "count",
        property_name: str = "",
        start_time: str | datetime | None = None,
        end_time: str | datetime | None = None,
        external_customer_id: str | None = None,
        customer_id: str | None = None,
        filters: dict[str, list[str]] | None = None,
        filter_groups: list[FilterGroup] | None = None,
        window_size: str | None = None,
        context: ExecutionContext | None = None,
    ) -> QueryResult:
        """Run an ad-hoc usage query.

        Args:
            event_name: Event to aggregate.
            aggregation: count, sum, avg, count_distinct or max.
            property_name: Property to aggregate (not needed for count).
            start_time: Window start (inclusive), datetime or ISO string.
            end_time: Window end (exclusive), datetime or ISO string.
            external_customer_id: Restrict to one external customer id.
            customer_id: Restrict to one internal customer id.
            filters: Property -> allowed values.
            filter_groups: Buckets to attribute events to.
            window_size: Optional time bucket: minute, hour or day.
            context: Tenant/environment scope.

        Returns:
            QueryResult with one row per bucket.
        """
        query = self._build_query(
            event_name=event_name,
            aggregation=aggregation,
            property_name=property_name,
            start_time=start_time,
            end_time=end_time,
            external_customer_id=external_customer_id,
            customer_id=customer_id,
            filters=filters or {},
            window_size=window_size,
        )
        compiled = self.compiler.compile(query, filter_groups, context)
        return self.executor.execute(compiled)

    def query(
        self,
        meter: str,
        start_time: str | datetime | None = None,
        end_time: str | datetime | None = None,
        external_customer_id: str | None = None,
        customer_id: str | None = None,
        context: ExecutionContext | None = None,
    ) -> QueryResult:
        """Run a registered meter for a time window and customer."""
        compiled = self._compile_meter(
            meter, self.compiler, start_time, end_time, external_customer_id, customer_id, context
        )
        logger.info("meter_query", meter=meter, params=compiled.param_count)
        return self.executor.execute(compiled)

    def get_sql(
        self,
        meter: str,
        start_time: str | datetime | None = None,
        end_time: str | datetime | None = None,
        external_customer_id: str | None = None,
        customer_id: str | None = None,
        context: ExecutionContext | None = None,
        dialect: str = "clickhouse",
    ) -> CompiledQuery:
        """Compile a meter without executing it."""
        compiler = UsageQueryCompiler(self.config, dialect=dialect)
        return self._compile_meter(
            meter, compiler, start_time, end_time, external_customer_id, customer_id, context
        )

    def _compile_meter(
        self,
        meter_name: str,
        compiler: UsageQueryCompiler,
        start_time: str | datetime | None,
        end_time: str | datetime | None,
        external_customer_id: str | None,
        customer_id: str | None,
        context: ExecutionContext | None,
    ) -> CompiledQuery:
        meter = self.registry.get_meter(meter_name)
        try:
            query = meter.to_usage_query(
                start_time=self._parse_time(start_time),
                end_time=self._parse_time(end_time),
                external_customer_id=external_customer_id,
                customer_id=customer_id,
            )
        except ValidationError as e:
            raise QueryValidationError(str(e)) from e
        return compiler.compile(query, meter.filter_groups, context)

    def _build_query(self, **fields) -> UsageQuery:
        fields["start_time"] = self._parse_time(fields.get("start_time"))
        fields["end_time"] = self._parse_time(fields.get("end_time"))
        try:
            return UsageQuery(**fields)
        except ValidationError as e:
            # the caller gets the detail, just not pydantic's exception type
            raise QueryValidationError(str(e)) from e

    def list_meters(self) -> list[dict]:
        """List all registered meters."""
        return [
            {
                "name": m.name,
                "event_name": m.event_name,
                "aggregation": m.aggregation.type.value,
                "field": m.aggregation.field or None,
                "filter_groups": len(m.filter_groups),
                "description": m.description,
            }
            for m in self.registry.meters.values()
        ]

    def validate(self) -> list[str]:
        """Validate all meter definitions. Returns list of errors."""
        errors = []

        for meter in self.registry.meters.values():
            try:
                self.compiler.compile(meter.to_usage_query(), meter.filter_groups)
            except (QueryValidationError, ValidationError) as e:
                errors.append(f"Meter '{meter.name}': {e}")

        return errors

    def _parse_time(self, value: str | datetime | None) -> datetime | None:
        """Parse an ISO datetime string or return datetime objects as-is."""
        if value is None or isinstance(value, datetime):
            return value
        try:
            return datetime.fromisoformat(value)
        except ValueError as e:
            raise QueryValidationError(f"Invalid datetime: {value!r}") from e

    def close(self) -> None:
        """Close database connection."""
        self.executor.close()

    def __enter__(self) -> "MeterStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
