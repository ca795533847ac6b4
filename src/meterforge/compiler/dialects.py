"""SQL keyword templates per target store.

production usage lives in clickhouse. duckdb is here so the exact same
pipeline can run locally and in tests without a clickhouse server - the
shape of the query is identical, only a handful of functions differ.

templates take fragment-local placeholders (?1, ?2, ...) and column names
from CompilerConfig. they never see caller-supplied strings.
"""

from meterforge.models.usage import WindowSize


class Dialect:
    """Base templates. Subclasses override what their store spells differently."""

    name = ""
    true_literal = "true"
    # matches rendered placeholders, group 1 is the number
    placeholder_pattern = r"\?(\d+)"

    def placeholder(self, index: int) -> str:
        """Final rendering of the placeholder with the given 1-based number."""
        return f"?{index}"

    def extract_property(self, properties_column: str, name_ph: str) -> str:
        raise NotImplementedError

    def timestamp_bound(self, ph: str) -> str:
        raise NotImplementedError

    def safe_numeric(self, expr: str) -> str:
        raise NotImplementedError

    def window_start(self, size: WindowSize, timestamp_column: str) -> str:
        raise NotImplementedError

    def group_match(self, id_ph: str, priority_ph: str, condition: str) -> str:
        """One (group id, priority, matched) triple."""
        raise NotImplementedError

    def expand_matches(self, columns: str) -> str:
        """Body of matched_events: one row per (event, group triple)."""
        raise NotImplementedError

    def best_match(self) -> str:
        """Aggregate picking the winning group id per event.

        max by (priority, group id) - ties on priority go to the
        lexicographically greatest id so the result never depends on
        row or group order.
        """
        raise NotImplementedError

    def is_match(self, column: str) -> str:
        return column

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class ClickHouseDialect(Dialect):
    name = "clickhouse"
    # comparisons return UInt8 in clickhouse, so keep the catch-all the same type
    true_literal = "1"

    WINDOW_FUNCTIONS = {
        WindowSize.MINUTE: "toStartOfMinute",
        WindowSize.HOUR: "toStartOfHour",
        WindowSize.DAY: "toStartOfDay",
    }

    def extract_property(self, properties_column: str, name_ph: str) -> str:
        return f"JSONExtractString({properties_column}, {name_ph})"

    def timestamp_bound(self, ph: str) -> str:
        return f"toDateTime64({ph}, 3)"

    def safe_numeric(self, expr: str) -> str:
        # non-numeric payloads become NULL and drop out of the aggregate
        return f"toFloat64OrNull({expr})"

    def window_start(self, size: WindowSize, timestamp_column: str) -> str:
        return f"{self.WINDOW_FUNCTIONS[size]}({timestamp_column})"

    def group_match(self, id_ph: str, priority_ph: str, condition: str) -> str:
        return f"({id_ph}, {priority_ph}, ({condition}))"

    def expand_matches(self, columns: str) -> str:
        return (
            f"SELECT\n"
            f"        {columns},\n"
            f"        arrayJoin(group_matches) AS matched_group,\n"
            f"        matched_group.1 AS group_id,\n"
            f"        matched_group.2 AS group_priority,\n"
            f"        matched_group.3 AS matches\n"
            f"    FROM filter_matches"
        )

    def best_match(self) -> str:
        return "argMax(group_id, (group_priority, group_id))"

    def is_match(self, column: str) -> str:
        return f"{column} = 1"


class DuckDBDialect(Dialect):
    name = "duckdb"
    placeholder_pattern = r"\$(\d+)"

    WINDOW_UNITS = {
        WindowSize.MINUTE: "minute",
        WindowSize.HOUR: "hour",
        WindowSize.DAY: "day",
    }

    def placeholder(self, index: int) -> str:
        return f"${index}"

    def extract_property(self, properties_column: str, name_ph: str) -> str:
        # json pointer rather than jsonpath, with ~ and / escaped per rfc 6901
        # so a key is always one segment. the cast pins the parameter type.
        key = f"replace(replace(CAST({name_ph} AS VARCHAR), '~', '~0'), '/', '~1')"
        return f"json_extract_string({properties_column}, '/' || {key})"

    def timestamp_bound(self, ph: str) -> str:
        return f"CAST({ph} AS TIMESTAMP)"

    def safe_numeric(self, expr: str) -> str:
        return f"TRY_CAST({expr} AS DOUBLE)"

    def window_start(self, size: WindowSize, timestamp_column: str) -> str:
        return f"date_trunc('{self.WINDOW_UNITS[size]}', {timestamp_column})"

    def group_match(self, id_ph: str, priority_ph: str, condition: str) -> str:
        return (
            f"{{'group_id': CAST({id_ph} AS VARCHAR), "
            f"'group_priority': CAST({priority_ph} AS BIGINT), "
            f"'matches': ({condition})}}"
        )

    def expand_matches(self, columns: str) -> str:
        return (
            f"SELECT\n"
            f"        {columns},\n"
            f"        matched_group.group_id AS group_id,\n"
            f"        matched_group.group_priority AS group_priority,\n"
            f"        matched_group.matches AS matches\n"
            f"    FROM (\n"
            f"        SELECT {columns}, UNNEST(group_matches) AS matched_group\n"
            f"        FROM filter_matches\n"
            f"    ) AS expanded"
        )

    def best_match(self) -> str:
        return "first(group_id ORDER BY group_priority DESC, group_id DESC)"


DIALECTS: dict[str, Dialect] = {
    "clickhouse": ClickHouseDialect(),
    "duckdb": DuckDBDialect(),
}


def get_dialect(name: str) -> Dialect:
    """Look up a dialect by name."""
    try:
        return DIALECTS[name]
    except KeyError:
        raise ValueError(
            f"Unknown dialect: {name}. Use one of: {', '.join(sorted(DIALECTS))}"
        ) from None
