"""SQL compiler for usage queries.

turns a UsageQuery (plus optional filter groups) into one parameterized
statement against the raw events table. the output is a cte pipeline:

  base_events      dedup + tenant/time/customer/property filtering
  filter_matches   per event, one (group id, priority, matched) triple per group
  matched_events   triples expanded to one row each
  best_matches     winning group per event, max by (priority, group id)
  final select     aggregation per winning group (or over everything)

the three filter-group ctes only exist when groups are passed. with no
groups the final select reads straight from base_events.

nothing a caller sends ends up in the sql text. event names, customer ids,
property names, property values, group ids and priorities are all bound
arguments. the only interpolated identifiers come from CompilerConfig.
"""

from meterforge.compiler.assembler import QueryFragment, assemble
from meterforge.compiler.conditions import compile_filters, ph
from meterforge.compiler.dialects import get_dialect
from meterforge.config import DEFAULT_CONFIG, CompilerConfig
from meterforge.errors import QueryValidationError
from meterforge.models.query import CompiledQuery
from meterforge.models.usage import (
    AggregationType,
    ExecutionContext,
    FilterGroup,
    UsageQuery,
    find_duplicate_group_ids,
)


class UsageQueryCompiler:
    """Compiles usage queries into SQL.

    stateless - config and dialect are read-only after construction, so one
    instance can be shared across threads/requests.
    """

    # numeric reducers run over a safe cast of the extracted property.
    # count and count_distinct are special-cased in build_aggregation
    NUMERIC_AGG_MAP = {
        AggregationType.SUM: "SUM",
        AggregationType.AVG: "AVG",
        AggregationType.MAX: "MAX",
    }

    def __init__(self, config: CompilerConfig | None = None, dialect: str = "clickhouse") -> None:
        self.config = config or DEFAULT_CONFIG
        self.dialect = get_dialect(dialect)

    def compile(
        self,
        query: UsageQuery,
        filter_groups: list[FilterGroup] | None = None,
        context: ExecutionContext | None = None,
    ) -> CompiledQuery:
        """Convert a UsageQuery into a CompiledQuery.

        validation happens up front so a bad request never produces partial
        text. after that it's just: build each stage, hand them to the
        assembler for numbering.
        """
        groups = list(filter_groups or [])
        context = context or ExecutionContext()

        self.validate(query, groups)

        ctes = [self.build_base_filters(query, context)]
        if groups:
            ctes.extend(self.build_filter_groups(groups))
        final = self.build_aggregation(query, grouped=bool(groups))

        return assemble(ctes, final, self.dialect)

    def validate(self, query: UsageQuery, groups: list[FilterGroup]) -> None:
        """Reject requests that can't be compiled.

        most of this is already enforced by the pydantic models, but models
        can be built with model_construct() and skip validation entirely, so
        the compiler doesn't trust them.
        """
        if not query.event_name:
            raise QueryValidationError("event_name is required")

        try:
            aggregation = AggregationType(query.aggregation)
        except ValueError:
            raise QueryValidationError(
                f"Unknown aggregation type: {query.aggregation}"
            ) from None

        if aggregation.requires_property and not query.property_name:
            raise QueryValidationError(
                f"Aggregation '{aggregation.value}' requires a property_name"
            )

        duplicates = find_duplicate_group_ids(groups)
        if duplicates:
            raise QueryValidationError(
                f"Duplicate filter group ids: {', '.join(duplicates)}"
            )

    def build_base_filters(self, query: UsageQuery, context: ExecutionContext) -> QueryFragment:
        """Build the base_events cte.

        event name, tenant, environment and the time window narrow the scan
        before dedup - a redelivered event carries all of them unchanged, so
        duplicates survive that filter together. customer and property
        conditions run on the deduplicated rows.

        time window is [start, end): >= start, < end. either side is skipped
        when open.
        """
        cfg = self.config
        pre_dedup: list[str] = []
        post_dedup: list[str] = []
        args: list = []
        index = 1

        pre_dedup.append(f"{cfg.event_name_column} = {ph(index)}")
        args.append(query.event_name)
        index += 1

        if context.tenant_id:
            pre_dedup.append(f"{cfg.tenant_column} = {ph(index)}")
            args.append(context.tenant_id)
            index += 1

        if context.environment_id:
            pre_dedup.append(f"{cfg.environment_column} = {ph(index)}")
            args.append(context.environment_id)
            index += 1

        if query.start_time is not None:
            bound = self.dialect.timestamp_bound(ph(index))
            pre_dedup.append(f"{cfg.timestamp_column} >= {bound}")
            args.append(query.start_time)
            index += 1

        if query.end_time is not None:
            bound = self.dialect.timestamp_bound(ph(index))
            pre_dedup.append(f"{cfg.timestamp_column} < {bound}")
            args.append(query.end_time)
            index += 1

        if query.external_customer_id:
            post_dedup.append(f"{cfg.external_customer_column} = {ph(index)}")
            args.append(query.external_customer_id)
            index += 1

        if query.customer_id:
            post_dedup.append(f"{cfg.customer_column} = {ph(index)}")
            args.append(query.customer_id)
            index += 1

        compiled = compile_filters(query.filters, index, self.dialect, cfg.properties_column)
        post_dedup.extend(compiled.conditions)
        args.extend(compiled.args)

        key = cfg.dedup_columns()
        template = (
            f"SELECT * FROM (\n"
            f"        SELECT DISTINCT ON ({key}) * FROM {cfg.events_table}\n"
            f"        WHERE {' AND '.join(pre_dedup)}\n"
            f"        ORDER BY {key} DESC\n"
            f"    ) AS deduped"
        )
        if post_dedup:
            template += f"\n    WHERE {' AND '.join(post_dedup)}"

        return QueryFragment(name="base_events", template=template, args=args)

    def build_filter_groups(self, groups: list[FilterGroup]) -> list[QueryFragment]:
        """Build the filter_matches / matched_events / best_matches ctes.

        every event gets the same array of triples, one per group in the
        order given. the array is expanded, non-matches dropped, and the
        winner per event picked with max by (priority, group id). events
        that match nothing simply don't show up in best_matches.
        """
        if not groups:
            return []

        cfg = self.config
        triples: list[str] = []
        args: list = []
        index = 1

        for group in groups:
            id_ph, priority_ph = ph(index), ph(index + 1)
            args.extend([group.id, group.priority])
            index += 2

            compiled = compile_filters(group.filters, index, self.dialect, cfg.properties_column)
            # no filters means catch-all
            condition = compiled.joined() or self.dialect.true_literal
            args.extend(compiled.args)
            index = compiled.next_index

            triples.append(self.dialect.group_match(id_ph, priority_ph, condition))

        # the full dedup key rides along so distinct events stay distinct rows
        # through the expand and regroup
        columns = ", ".join(
            dict.fromkeys([*cfg.dedup_key, cfg.timestamp_column, cfg.properties_column])
        )
        triple_list = ",\n            ".join(triples)

        filter_matches = QueryFragment(
            name="filter_matches",
            template=(
                f"SELECT\n"
                f"        {columns},\n"
                f"        [\n            {triple_list}\n        ] AS group_matches\n"
                f"    FROM base_events"
            ),
            args=args,
        )

        matched_events = QueryFragment(
            name="matched_events",
            template=self.dialect.expand_matches(columns),
        )

        best_matches = QueryFragment(
            name="best_matches",
            template=(
                f"SELECT\n"
                f"        {columns},\n"
                f"        {self.dialect.best_match()} AS best_match_group\n"
                f"    FROM matched_events\n"
                f"    WHERE {self.dialect.is_match('matches')}\n"
                f"    GROUP BY {columns}"
            ),
        )

        return [filter_matches, matched_events, best_matches]

    def build_aggregation(self, query: UsageQuery, grouped: bool) -> QueryFragment:
        """Build the final select.

        grouped: one row per winning filter group, ordered by group id.
        ungrouped: a single row over all base events. window_size adds a
        window_start bucket on top of either.
        """
        cfg = self.config
        aggregation = AggregationType(query.aggregation)
        args: list = []

        if aggregation == AggregationType.COUNT:
            agg_expr = "COUNT(*)"
        else:
            extract = self.dialect.extract_property(cfg.properties_column, ph(1))
            args.append(query.property_name)
            if aggregation == AggregationType.COUNT_DISTINCT:
                agg_expr = f"COUNT(DISTINCT {extract})"
            else:
                func = self.NUMERIC_AGG_MAP[aggregation]
                agg_expr = f"{func}({self.dialect.safe_numeric(extract)})"

        select_exprs: list[str] = []
        group_by_exprs: list[str] = []
        order_by_exprs: list[str] = []

        if grouped:
            select_exprs.append("best_match_group AS filter_group_id")
            group_by_exprs.append("best_match_group")
            order_by_exprs.append("filter_group_id")

        if query.window_size is not None:
            window_expr = self.dialect.window_start(query.window_size, cfg.timestamp_column)
            select_exprs.append(f"{window_expr} AS window_start")
            group_by_exprs.append(window_expr)
            order_by_exprs.append("window_start")

        select_exprs.append(f"{agg_expr} AS value")

        parts = [f"SELECT {', '.join(select_exprs)}"]
        parts.append(f"FROM {'best_matches' if grouped else 'base_events'}")
        if group_by_exprs:
            parts.append(f"GROUP BY {', '.join(group_by_exprs)}")
        if order_by_exprs:
            parts.append(f"ORDER BY {', '.join(order_by_exprs)}")

        return QueryFragment(name="aggregation", template="\n".join(parts), args=args, is_cte=False)
