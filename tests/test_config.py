"""Tests for compiler configuration."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from meterforge.compiler.sql_builder import UsageQueryCompiler
from meterforge.config import DEFAULT_CONFIG, CompilerConfig, load_config
from meterforge.models.usage import UsageQuery


class TestCompilerConfig:
    def test_defaults(self):
        config = CompilerConfig()

        assert config.events_table == "events"
        assert config.dedup_columns() == "tenant_id, environment_id, timestamp, id"

    def test_schema_qualified_table(self):
        config = CompilerConfig(events_table="analytics.events")

        assert config.events_table == "analytics.events"

    @pytest.mark.parametrize(
        "name",
        ["events; DROP TABLE x", "1events", "events--", "a.b.c", "", "ev ents"],
    )
    def test_invalid_identifier(self, name):
        """Only plain identifiers can be interpolated."""
        with pytest.raises(ValidationError, match="Invalid SQL identifier"):
            CompilerConfig(events_table=name)

    def test_invalid_dedup_column(self):
        with pytest.raises(ValidationError, match="dedup key"):
            CompilerConfig(dedup_key=("id", "ts; --"))

    def test_duplicate_dedup_column(self):
        with pytest.raises(ValidationError, match="unique"):
            CompilerConfig(dedup_key=("id", "id"))

    def test_empty_dedup_key(self):
        with pytest.raises(ValidationError):
            CompilerConfig(dedup_key=())

    def test_dedup_key_follows_renamed_columns(self):
        """The default key is built from whatever the columns are called."""
        config = CompilerConfig(timestamp_column="ts", id_column="event_id")

        assert config.dedup_key == ("tenant_id", "environment_id", "ts", "event_id")

    def test_explicit_dedup_key_wins(self):
        config = CompilerConfig(id_column="event_id", dedup_key=("tenant_id", "event_id"))

        assert config.dedup_key == ("tenant_id", "event_id")

    def test_renamed_columns_reach_the_compiled_sql(self):
        config = CompilerConfig(tenant_column="org_id", timestamp_column="ts")
        sql = UsageQueryCompiler(config).compile(UsageQuery(event_name="api_call")).sql

        assert "DISTINCT ON (org_id, environment_id, ts, id)" in sql

    def test_frozen(self):
        with pytest.raises(ValidationError):
            DEFAULT_CONFIG.events_table = "other"


class TestLoadConfig:
    def test_bare_mapping(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("events_table: raw_events\nproperties_column: payload\n")

        config = load_config(path)

        assert config.events_table == "raw_events"
        assert config.properties_column == "payload"
        assert config.id_column == "id"

    def test_renamed_columns_without_dedup_key(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("id_column: event_id\ntenant_column: org_id\n")

        config = load_config(path)

        assert config.dedup_key == ("org_id", "environment_id", "timestamp", "event_id")

    def test_nested_mapping(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "events_table_config:\n"
            "  events_table: raw_events\n"
            "  dedup_key: [tenant_id, id]\n"
        )

        config = load_config(path)

        assert config.dedup_key == ("tenant_id", "id")

    def test_empty_file(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("")

        assert load_config(path) is DEFAULT_CONFIG

    def test_invalid_file(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("events_table: 'x; drop'\n")

        with pytest.raises(ValidationError):
            load_config(path)
