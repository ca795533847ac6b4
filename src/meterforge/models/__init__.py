"""Pydantic models for MeterForge."""

from meterforge.models.meter import Meter, MeterAggregation
from meterforge.models.query import CompiledQuery, QueryResult
from meterforge.models.usage import (
    AggregationType,
    ExecutionContext,
    FilterGroup,
    PropertyFilters,
    UsageQuery,
    WindowSize,
)

__all__ = [
    "AggregationType",
    "CompiledQuery",
    "ExecutionContext",
    "FilterGroup",
    "Meter",
    "MeterAggregation",
    "PropertyFilters",
    "QueryResult",
    "UsageQuery",
    "WindowSize",
]
