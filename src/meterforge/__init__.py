"""MeterForge - compiles usage queries into parameterized event-store SQL."""

from meterforge.compiler.sql_builder import UsageQueryCompiler
from meterforge.config import CompilerConfig, load_config
from meterforge.errors import (
    CompositionError,
    MeterForgeError,
    MeterNotFoundError,
    QueryValidationError,
)
from meterforge.models import (
    AggregationType,
    CompiledQuery,
    ExecutionContext,
    FilterGroup,
    Meter,
    UsageQuery,
    WindowSize,
)
from meterforge.store import MeterStore

__all__ = [
    "AggregationType",
    "CompiledQuery",
    "CompilerConfig",
    "CompositionError",
    "ExecutionContext",
    "FilterGroup",
    "Meter",
    "MeterForgeError",
    "MeterNotFoundError",
    "MeterStore",
    "QueryValidationError",
    "UsageQuery",
    "UsageQueryCompiler",
    "WindowSize",
    "load_config",
]
