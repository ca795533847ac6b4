"""Compiler configuration.

table and column names are the only identifiers that get interpolated into
sql text, so they're validated against a strict pattern here once, at load
time. everything a caller sends at query time goes through placeholders.
"""

import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# plain identifiers, optionally schema-qualified (db.events)
IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


class CompilerConfig(BaseModel):
    """Physical layout of the raw events table."""

    model_config = ConfigDict(frozen=True)

    events_table: str = "events"
    id_column: str = "id"
    timestamp_column: str = "timestamp"
    tenant_column: str = "tenant_id"
    environment_column: str = "environment_id"
    event_name_column: str = "event_name"
    external_customer_column: str = "external_customer_id"
    customer_column: str = "customer_id"
    properties_column: str = "properties"
    # upstream ingestion is at-least-once, rows sharing this key are one event.
    # defaults to (tenant, environment, timestamp, id) under their configured names
    dedup_key: tuple[str, ...] = Field(min_length=1)

    @model_validator(mode="before")
    @classmethod
    def default_dedup_key(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("dedup_key") is not None:
            return data
        columns = ("tenant_column", "environment_column", "timestamp_column", "id_column")
        key = tuple(data.get(name, cls.model_fields[name].default) for name in columns)
        return {**data, "dedup_key": key}

    @field_validator(
        "events_table",
        "id_column",
        "timestamp_column",
        "tenant_column",
        "environment_column",
        "event_name_column",
        "external_customer_column",
        "customer_column",
        "properties_column",
    )
    @classmethod
    def check_identifier(cls, value: str) -> str:
        if not IDENTIFIER_RE.match(value):
            raise ValueError(f"Invalid SQL identifier: {value!r}")
        return value

    @field_validator("dedup_key")
    @classmethod
    def check_dedup_key(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        for column in value:
            if not IDENTIFIER_RE.match(column):
                raise ValueError(f"Invalid SQL identifier in dedup key: {column!r}")
        if len(set(value)) != len(value):
            raise ValueError("Dedup key columns must be unique")
        return value

    def dedup_columns(self) -> str:
        return ", ".join(self.dedup_key)


DEFAULT_CONFIG = CompilerConfig()


def load_config(path: str | Path) -> CompilerConfig:
    """Load a CompilerConfig from a YAML file.

    the file can either be the bare mapping or nest it under an
    `events_table_config` key so it can live next to meter definitions.
    """
    with open(path) as f:
        data = yaml.safe_load(f)

    if data is None:
        return DEFAULT_CONFIG

    if "events_table_config" in data:
        data = data["events_table_config"]

    return CompilerConfig.model_validate(data)
