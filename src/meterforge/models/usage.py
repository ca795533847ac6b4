"""Pydantic models for usage queries.

a usage query is what billing asks for: "sum of tokens for event llm_call,
customer X, this billing period, only region us-east-1". filter groups ride
along when the answer has to be split into buckets (e.g. one per price tier).

everything here is frozen. a query is built once per request and then only read.
"""

from collections.abc import Iterable
from datetime import datetime
from enum import Enum
from typing import Annotated, Self

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator

from meterforge.timeutil import to_utc_naive


class AggregationType(str, Enum):
    """Supported usage aggregations.

    count is the only one that doesn't need a property - everything else
    reduces over a value pulled out of the event's properties json.
    """

    COUNT = "count"
    SUM = "sum"
    AVG = "avg"
    COUNT_DISTINCT = "count_distinct"
    MAX = "max"

    @property
    def requires_property(self) -> bool:
        return self is not AggregationType.COUNT


class WindowSize(str, Enum):
    """Time buckets for windowed usage."""

    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"


def _check_filters(value: dict[str, list[str]]) -> dict[str, list[str]]:
    # property names come from tenant-configured schemas, so anything goes
    # content-wise - it's all bound as parameters. only duplicate values are
    # worth cleaning up since they'd just burn placeholders.
    cleaned: dict[str, list[str]] = {}
    for prop, values in value.items():
        cleaned[prop] = list(dict.fromkeys(values))
    return cleaned


# one value type for both query filters and filter-group filters so the
# condition compiler only has one shape to deal with.
# multiple properties are ANDed, multiple values for a property are ORed.
PropertyFilters = Annotated[dict[str, list[str]], AfterValidator(_check_filters)]


class ExecutionContext(BaseModel):
    """Tenant scope for a query.

    comes from whatever authenticated the request, never from the query body.
    either id can be missing for internal/admin tooling.
    """

    model_config = ConfigDict(frozen=True)

    tenant_id: str | None = None
    environment_id: str | None = None


class FilterGroup(BaseModel):
    """A named, prioritized set of property conditions.

    an event belongs to the highest-priority group it matches. a group with
    no filters matches everything, which is handy as a catch-all with low
    priority.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    priority: int = 0
    filters: PropertyFilters = Field(default_factory=dict)


def find_duplicate_group_ids(groups: Iterable[FilterGroup]) -> list[str]:
    """Return group ids that appear more than once, in first-seen order."""
    seen: set[str] = set()
    duplicates: list[str] = []
    for group in groups:
        if group.id in seen and group.id not in duplicates:
            duplicates.append(group.id)
        seen.add(group.id)
    return duplicates


class UsageQuery(BaseModel):
    """A request to aggregate usage for one event name.

    the time window is half-open: [start_time, end_time). either end can be
    left open. tenant and environment are deliberately not here - see
    ExecutionContext.
    """

    model_config = ConfigDict(frozen=True)

    event_name: str = Field(min_length=1)
    property_name: str = ""
    aggregation: AggregationType = AggregationType.COUNT
    start_time: datetime | None = None
    end_time: datetime | None = None
    external_customer_id: str | None = None
    customer_id: str | None = None
    filters: PropertyFilters = Field(default_factory=dict)
    window_size: WindowSize | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_bounds(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return to_utc_naive(value)

    @model_validator(mode="after")
    def check_aggregation(self) -> Self:
        """Property-based aggregations need a property to aggregate."""
        if self.aggregation.requires_property and not self.property_name:
            raise ValueError(
                f"Aggregation '{self.aggregation.value}' requires a property_name"
            )
        return self

    @model_validator(mode="after")
    def check_window(self) -> Self:
        if (
            self.start_time is not None
            and self.end_time is not None
            and self.start_time > self.end_time
        ):
            raise ValueError("start_time must not be after end_time")
        return self
