"""Tests for CLI commands."""

import csv
import io
from pathlib import Path

import pytest
from typer.testing import CliRunner

from meterforge.cli.main import app
from meterforge.executor.duckdb_executor import DuckDBExecutor

runner = CliRunner()

WINDOW = ["--start", "2024-03-01T00:00:00", "--end", "2024-04-01T00:00:00"]


@pytest.fixture
def events_db(tmp_path: Path, sample_events: list[dict]) -> str:
    """DuckDB file with the sample events loaded."""
    db_path = str(tmp_path / "events.duckdb")
    with DuckDBExecutor(db_path) as executor:
        executor.create_events_table()
        executor.insert_events(sample_events)
    return db_path


class TestCLIList:
    def test_list_meters(self, meters_dir: Path):
        """Can list meters via CLI."""
        result = runner.invoke(app, ["list", "--dir", str(meters_dir)])
        assert result.exit_code == 0
        assert "api_calls" in result.stdout
        assert "calls_by_tier" in result.stdout

    def test_list_nonexistent_directory(self, tmp_path: Path):
        """Reports error for nonexistent directory."""
        result = runner.invoke(app, ["list", "--dir", str(tmp_path / "nope")])
        assert result.exit_code == 1
        assert "error loading meters" in result.stdout.lower()


class TestCLIValidate:
    def test_validate_success(self, meters_dir: Path):
        """Validate passes for valid meters."""
        result = runner.invoke(app, ["validate", "--dir", str(meters_dir)])
        assert result.exit_code == 0
        assert "validated 5 meters" in result.stdout.lower()

    def test_validate_nonexistent_directory(self, tmp_path: Path):
        """Validate fails for nonexistent directory."""
        result = runner.invoke(app, ["validate", "--dir", str(tmp_path / "nope")])
        assert result.exit_code == 1

    def test_validate_broken_meter(self, tmp_path: Path):
        """Broken meter files fail at load time."""
        meters_path = tmp_path / "meters"
        meters_path.mkdir()
        (meters_path / "bad.yaml").write_text(
            "meters:\n  - name: bad\n    event_name: e\n    aggregation: sum\n"
        )
        result = runner.invoke(app, ["validate", "--dir", str(meters_path)])
        assert result.exit_code == 1
        assert "error" in result.stdout.lower()


class TestCLIShowSQL:
    def test_show_sql(self, meters_dir: Path):
        """Shows the statement and its arguments."""
        result = runner.invoke(app, ["show-sql", "api_calls", "--dir", str(meters_dir)])
        assert result.exit_code == 0
        assert "WITH base_events AS (" in result.stdout
        assert "Arguments (4)" in result.stdout
        assert "us-west-1" in result.stdout

    def test_show_sql_with_scope(self, meters_dir: Path):
        result = runner.invoke(
            app,
            ["show-sql", "api_calls", "--dir", str(meters_dir), "--tenant", "acme", *WINDOW],
        )
        assert result.exit_code == 0
        assert "acme" in result.stdout
        assert "Arguments (7)" in result.stdout

    def test_show_sql_duckdb(self, meters_dir: Path):
        result = runner.invoke(
            app, ["show-sql", "calls_by_tier", "--dir", str(meters_dir), "--dialect", "duckdb"]
        )
        assert result.exit_code == 0
        assert "$1" in result.stdout

    def test_show_sql_unknown_dialect(self, meters_dir: Path):
        result = runner.invoke(
            app, ["show-sql", "api_calls", "--dir", str(meters_dir), "--dialect", "oracle"]
        )
        assert result.exit_code == 1
        assert "unknown dialect" in result.stdout.lower()

    def test_show_sql_unknown_meter(self, meters_dir: Path):
        """Reports error for unknown meter."""
        result = runner.invoke(app, ["show-sql", "nonexistent", "--dir", str(meters_dir)])
        assert result.exit_code == 1
        assert "error generating sql" in result.stdout.lower()

    def test_show_sql_bad_time(self, meters_dir: Path):
        result = runner.invoke(
            app, ["show-sql", "api_calls", "--dir", str(meters_dir), "--start", "yesterday"]
        )
        assert result.exit_code == 1
        assert "invalid datetime" in result.stdout.lower()


class TestCLIQuery:
    def test_query_table_output(self, meters_dir: Path, events_db: str):
        result = runner.invoke(
            app, ["query", "api_calls", "--dir", str(meters_dir), "--db", events_db, *WINDOW]
        )
        assert result.exit_code == 0
        assert "value" in result.stdout
        assert "3" in result.stdout

    def test_query_json_output(self, meters_dir: Path, events_db: str):
        result = runner.invoke(
            app,
            [
                "query",
                "calls_by_tier",
                "--dir",
                str(meters_dir),
                "--db",
                events_db,
                "--output",
                "json",
                *WINDOW,
            ],
        )
        assert result.exit_code == 0
        assert '"filter_group_id": "gold"' in result.stdout
        assert '"value": 3' in result.stdout

    def test_query_csv_output(self, meters_dir: Path, events_db: str):
        result = runner.invoke(
            app,
            ["query", "api_calls", "--dir", str(meters_dir), "--db", events_db, "-o", "csv", *WINDOW],
        )
        assert result.exit_code == 0
        assert result.stdout.splitlines() == ["value", "3"]

    def test_query_csv_quotes_fields(self, tmp_path: Path, events_db: str):
        """Group ids with commas or brackets come out as single csv fields."""
        meters = tmp_path / "meters"
        meters.mkdir()
        (meters / "tiers.yaml").write_text(
            "meters:\n"
            "  - name: tiered\n"
            "    event_name: api_call\n"
            "    aggregation: count\n"
            "    filter_groups:\n"
            "      - id: \"us,gold\"\n"
            "        priority: 1\n"
            "        filters:\n"
            "          tier: [\"gold\"]\n"
            "      - id: \"[silver]\"\n"
            "        priority: 1\n"
            "        filters:\n"
            "          tier: [\"silver\"]\n"
        )
        result = runner.invoke(
            app,
            ["query", "tiered", "--dir", str(meters), "--db", events_db, "-o", "csv", *WINDOW],
        )
        assert result.exit_code == 0
        rows = list(csv.reader(io.StringIO(result.stdout)))
        assert rows == [["filter_group_id", "value"], ["[silver]", "1"], ["us,gold", "3"]]

    def test_query_with_show_sql(self, meters_dir: Path, events_db: str):
        """Can show SQL with query."""
        result = runner.invoke(
            app, ["query", "api_calls", "--dir", str(meters_dir), "--db", events_db, "--sql"]
        )
        assert result.exit_code == 0
        assert "base_events" in result.stdout

    def test_query_without_events_table(self, meters_dir: Path):
        """A database with no events table is a clean error."""
        result = runner.invoke(app, ["query", "api_calls", "--dir", str(meters_dir)])
        assert result.exit_code == 1
        assert "query error" in result.stdout.lower()


class TestCLIHelp:
    def test_main_help(self):
        """Main help works."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "meterforge" in result.stdout.lower()

    @pytest.mark.parametrize("command", ["list", "query", "validate", "show-sql"])
    def test_command_help(self, command):
        result = runner.invoke(app, [command, "--help"])
        assert result.exit_code == 0
