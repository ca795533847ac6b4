"""Condition compiler for property filters.

turns {"region": ["us-east-1", "us-west-1"], "tier": ["gold"]} into

    JSONExtractString(properties, ?1) IN (?2, ?3) AND JSONExtractString(properties, ?4) = ?5

with args ["region", "us-east-1", "us-west-1", "tier", "gold"].

the property name is a placeholder too, not just the values. property names
come out of tenant-configured meter schemas and are as untrusted as the
values. this module is the only place filter maps become sql.

numbering is local: callers pass the next free index and get the next free
index back. the assembler shifts everything into its final position.
"""

from dataclasses import dataclass, field
from typing import Any

from meterforge.compiler.dialects import Dialect
from meterforge.models.usage import PropertyFilters


def ph(index: int) -> str:
    """Fragment-local placeholder."""
    return f"?{index}"


@dataclass
class CompiledConditions:
    """Boolean conditions plus the arguments they consume, in placeholder order."""

    conditions: list[str] = field(default_factory=list)
    args: list[Any] = field(default_factory=list)
    next_index: int = 1

    def joined(self) -> str | None:
        """All conditions ANDed, or None when there aren't any."""
        if not self.conditions:
            return None
        return " AND ".join(self.conditions)


def compile_condition(
    property_name: str,
    values: list[str],
    start: int,
    dialect: Dialect,
    properties_column: str,
) -> CompiledConditions:
    """Compile a single property condition starting at placeholder `start`.

    one value -> equality, several -> IN. an empty value list yields no
    condition at all rather than an always-false IN ().
    """
    if not values:
        return CompiledConditions(next_index=start)

    extract = dialect.extract_property(properties_column, ph(start))

    if len(values) == 1:
        return CompiledConditions(
            conditions=[f"{extract} = {ph(start + 1)}"],
            args=[property_name, values[0]],
            next_index=start + 2,
        )

    value_phs = ", ".join(ph(start + 1 + i) for i in range(len(values)))
    return CompiledConditions(
        conditions=[f"{extract} IN ({value_phs})"],
        args=[property_name, *values],
        next_index=start + 1 + len(values),
    )


def compile_filters(
    filters: PropertyFilters,
    start: int,
    dialect: Dialect,
    properties_column: str,
) -> CompiledConditions:
    """Compile a whole filter map, one condition per property, in map order."""
    result = CompiledConditions(next_index=start)
    for property_name, values in filters.items():
        compiled = compile_condition(
            property_name, values, result.next_index, dialect, properties_column
        )
        result.conditions.extend(compiled.conditions)
        result.args.extend(compiled.args)
        result.next_index = compiled.next_index
    return result
