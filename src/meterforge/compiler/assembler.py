"""Stitches query fragments into one parameterized statement.

each stage builder numbers its own placeholders from ?1. the assembler walks
the fragments in order, carrying a running offset, and shifts every
fragment's placeholders up by it so the final statement reads ?1..?N with
args lined up one to one.
"""

import re
from dataclasses import dataclass, field
from typing import Any

from meterforge.compiler.dialects import Dialect
from meterforge.errors import CompositionError
from meterforge.models.query import CompiledQuery

LOCAL_PLACEHOLDER_RE = re.compile(r"\?(\d+)")


@dataclass
class QueryFragment:
    """A named piece of the final statement with its own arguments.

    ctes get wrapped as `name AS (...)`; the one non-cte fragment is the
    final select.
    """

    name: str
    template: str
    args: list[Any] = field(default_factory=list)
    is_cte: bool = True

    def placeholder_numbers(self) -> list[int]:
        return [int(m) for m in LOCAL_PLACEHOLDER_RE.findall(self.template)]


def check_fragment(fragment: QueryFragment) -> None:
    """Placeholders must read ?1..?k in order with exactly k args."""
    numbers = fragment.placeholder_numbers()
    if len(numbers) != len(fragment.args):
        raise CompositionError(
            f"Fragment '{fragment.name}' has {len(numbers)} placeholders "
            f"but {len(fragment.args)} arguments"
        )
    if numbers != list(range(1, len(numbers) + 1)):
        raise CompositionError(
            f"Fragment '{fragment.name}' placeholders are not numbered 1..{len(numbers)}"
        )


def assemble(
    ctes: list[QueryFragment], final: QueryFragment, dialect: Dialect
) -> CompiledQuery:
    """Combine cte fragments and the final select into a CompiledQuery."""
    if final.is_cte:
        raise CompositionError(f"Final fragment '{final.name}' must not be a CTE")

    offset = 0
    args: list[Any] = []
    rendered: list[str] = []

    for fragment in [*ctes, final]:
        check_fragment(fragment)
        shift = offset
        text = LOCAL_PLACEHOLDER_RE.sub(
            lambda m: dialect.placeholder(int(m.group(1)) + shift), fragment.template
        )
        if fragment.is_cte:
            text = f"{fragment.name} AS (\n    {text}\n)"
        rendered.append(text)
        args.extend(fragment.args)
        offset += len(fragment.args)

    *cte_parts, select = rendered
    sql = "WITH " + ",\n".join(cte_parts) + "\n" + select if cte_parts else select

    _check_contiguous(sql, args, dialect)
    return CompiledQuery(sql=sql, args=args, dialect=dialect.name)


def _check_contiguous(sql: str, args: list[Any], dialect: Dialect) -> None:
    # per-fragment checks can't see a template carrying an already-rendered placeholder
    numbers = [int(m) for m in re.findall(dialect.placeholder_pattern, sql)]
    if numbers != list(range(1, len(args) + 1)):
        raise CompositionError(
            f"Statement has {len(numbers)} placeholders for {len(args)} arguments "
            "or they are not numbered contiguously"
        )
