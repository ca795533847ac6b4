"""Pydantic models for meter definitions.

a meter is a saved usage query: which event to look at, how to aggregate it,
which events to keep, and optionally how to split them into filter groups.
billing configures meters once; the per-request bits (time window, customer)
get filled in when a meter is turned into a UsageQuery.
"""

from datetime import datetime
from typing import Self

from pydantic import BaseModel, Field, model_validator

from meterforge.models.usage import (
    AggregationType,
    FilterGroup,
    PropertyFilters,
    UsageQuery,
    WindowSize,
    find_duplicate_group_ids,
)


class MeterAggregation(BaseModel):
    """How a meter aggregates its events.

    `field` is the property inside the event payload - named that way
    because that's what people write in the yaml.
    """

    type: AggregationType = AggregationType.COUNT
    field: str = ""

    @model_validator(mode="after")
    def check_field(self) -> Self:
        if self.type.requires_property and not self.field:
            raise ValueError(f"Aggregation '{self.type.value}' requires a field")
        return self


class Meter(BaseModel):
    """A named usage meter."""

    name: str = Field(min_length=1)
    description: str | None = None
    event_name: str = Field(min_length=1)
    aggregation: MeterAggregation = Field(default_factory=MeterAggregation)
    filters: PropertyFilters = Field(default_factory=dict)
    filter_groups: list[FilterGroup] = Field(default_factory=list)
    window_size: WindowSize | None = None

    @model_validator(mode="after")
    def check_filter_groups(self) -> Self:
        """Group ids have to be unique or the winner per event is ambiguous."""
        duplicates = find_duplicate_group_ids(self.filter_groups)
        if duplicates:
            raise ValueError(
                f"Meter '{self.name}' has duplicate filter group ids: {', '.join(duplicates)}"
            )
        return self

    def to_usage_query(
        self,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        external_customer_id: str | None = None,
        customer_id: str | None = None,
    ) -> UsageQuery:
        """Fill in the per-request parts and build a UsageQuery."""
        return UsageQuery(
            event_name=self.event_name,
            property_name=self.aggregation.field,
            aggregation=self.aggregation.type,
            start_time=start_time,
            end_time=end_time,
            external_customer_id=external_customer_id,
            customer_id=customer_id,
            filters=self.filters,
            window_size=self.window_size,
        )
