"""Models for compiled queries and their results.

CompiledQuery is the handoff point: text plus arguments, in order. whoever
executes it binds the arguments positionally and must not reorder them.
"""

from typing import Any

import sqlglot
from pydantic import BaseModel, ConfigDict
from sqlglot.errors import SqlglotError


class CompiledQuery(BaseModel):
    """Final parameterized statement.

    placeholders are numbered 1..N in text order, and args[i] is the value
    for placeholder i + 1.
    """

    model_config = ConfigDict(frozen=True)

    sql: str
    args: list[Any]
    dialect: str = "clickhouse"

    @property
    def param_count(self) -> int:
        return len(self.args)

    def pretty(self) -> str:
        """Formatted sql for humans. Never execute the output of this.

        sqlglot's pretty printer is nice for reading the cte pipeline but it
        doesn't know every clickhouse function we emit, so fall back to the
        raw text when it can't parse.
        """
        try:
            parsed = sqlglot.parse_one(self.sql, dialect=self.dialect)
            return parsed.sql(dialect=self.dialect, pretty=True)
        except SqlglotError:
            return self.sql


class QueryResult(BaseModel):
    """Result of running a compiled usage query.

    keeping the sql around makes it easy to see what actually ran; the args
    are left out on purpose since they're tenant data.
    """

    sql: str
    columns: list[str]
    data: list[dict]
    row_count: int
    execution_time_ms: float
