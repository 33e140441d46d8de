"""Compile filter trees into ClickHouse WHERE fragments.

Every leaf lands in one of three places:

* ``base``: a column of the table being aggregated (alias ``base_table``);
* ``aliased``: a column of a table already joined in under its own alias
  (ancestors in parent counting);
* ``remote``: a column of another related table, reached through nested
  ``IN`` subqueries along the shortest FK path.

Negation depends on that placement and on the counting mode, see
``_compile_not``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Literal, Mapping

from .errors import FilterCompilationError
from .graph import Hop, RelationshipGraph, as_graph
from .models import (
    BASE_TABLE_ALIAS,
    DEFAULT_DATABASE,
    AndFilter,
    Condition,
    Filter,
    MetricContext,
    NotFilter,
    OrFilter,
    TableMetadata,
    parse_filters,
    qualify_table_name,
)
from .validator import prune_filter, validate_condition
from .values import (
    ensure_numeric,
    equality_condition,
    format_number,
    membership_condition,
)

logger = logging.getLogger(__name__)

AliasResolver = Callable[[str | None], str | None]

_COMPARISON_SYMBOLS: dict[str, str] = {"gt": ">", "lt": "<", "gte": ">=", "lte": "<="}


@dataclass(frozen=True)
class _Placement:
    kind: Literal["base", "aliased", "remote"]
    alias: str | None = None
    table: str | None = None


@dataclass
class _CompileContext:
    base_table: str | None
    graph: RelationshipGraph | None
    alias_resolver: AliasResolver | None
    metric_context: MetricContext | None
    base_physical_table: str | None
    database: str

    @property
    def parent_mode(self) -> bool:
        return self.metric_context is not None and self.metric_context.is_parent

    def place(self, condition: Condition) -> _Placement:
        table_name = condition.table_name
        if table_name and self.alias_resolver is not None:
            alias = self.alias_resolver(table_name)
            if alias == BASE_TABLE_ALIAS:
                return _Placement("base", BASE_TABLE_ALIAS, self.base_table)
            if alias:
                return _Placement("aliased", alias, table_name)
        if not table_name or table_name == self.base_table or self.graph is None or self.base_table is None:
            return _Placement("base", BASE_TABLE_ALIAS, self.base_table)
        return _Placement("remote", None, table_name)

    def physical(self, table_name: str) -> str:
        metadata = self.graph.table(table_name) if self.graph is not None else None
        if metadata is None:
            raise FilterCompilationError(f"Unknown table: {table_name}")
        return metadata.qualified_name(self.database)


# ------------------------------------------------------------------
# Leaf rendering
# ------------------------------------------------------------------

def _ref(column: str, alias: str | None) -> str:
    return f"{alias}.{column}" if alias else column


def render_condition(condition: Condition, alias: str | None = BASE_TABLE_ALIAS) -> str:
    """Render one leaf against ``alias`` (no alias inside remote subqueries)."""
    column = _ref(condition.column, alias)
    operator = condition.operator
    value = condition.value

    if operator == "eq":
        if isinstance(value, list):
            return membership_condition(column, value)
        return equality_condition(column, value)

    if operator == "in":
        return membership_condition(column, value)

    if operator in _COMPARISON_SYMBOLS:
        return f"{column} {_COMPARISON_SYMBOLS[operator]} {format_number(ensure_numeric(value))}"

    if operator == "between":
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise FilterCompilationError("between requires exactly two values")
        low, high = (format_number(ensure_numeric(v)) for v in value)
        return f"{column} BETWEEN {low} AND {high}"

    if operator in ("temporal_before", "temporal_after", "temporal_duration", "temporal_within"):
        if not condition.temporal_reference_column:
            raise FilterCompilationError(f"{operator} requires temporal_reference_column")
        reference = _ref(condition.temporal_reference_column, alias)
        if operator == "temporal_before":
            return f"({column} IS NOT NULL AND {column} < {reference})"
        if operator == "temporal_after":
            return f"({column} IS NOT NULL AND {column} > {reference})"
        if operator == "temporal_duration":
            threshold = format_number(ensure_numeric(value))
            return (
                f"({column} IS NOT NULL AND {reference} IS NOT NULL "
                f"AND ({reference} - {column}) >= {threshold})"
            )
        window = condition.temporal_window_days if condition.temporal_window_days is not None else value
        days = format_number(ensure_numeric(window))
        return f"({column} IS NOT NULL AND {reference} IS NOT NULL AND abs({column} - {reference}) <= {days})"

    raise FilterCompilationError(f"Unsupported operator: {operator}")


def _render_unaliased(node: Filter) -> str:
    if isinstance(node, Condition):
        return render_condition(node, None)
    if isinstance(node, NotFilter):
        return f"NOT ({_render_unaliased(node.negated)})"
    children, joiner = _children(node)
    parts = [_render_unaliased(c) for c in children]
    return parts[0] if len(parts) == 1 else f"({f' {joiner} '.join(parts)})"


def _children(node: AndFilter | OrFilter) -> tuple[list[Filter], str]:
    if isinstance(node, AndFilter):
        return node.all_of, "AND"
    return node.any_of, "OR"


def _leaves(node: Filter) -> Iterable[Condition]:
    if isinstance(node, Condition):
        yield node
    elif isinstance(node, NotFilter):
        yield from _leaves(node.negated)
    else:
        for child in _children(node)[0]:
            yield from _leaves(child)


# ------------------------------------------------------------------
# Cross-table subqueries
# ------------------------------------------------------------------

def _nested_membership(
    hops: list[Hop],
    condition_sql: str,
    physical: Callable[[str], str],
    *,
    alias: str,
    negate: bool,
    null_guard: bool,
) -> str:
    last = hops[-1]
    subquery = f"SELECT {last.remote_column} FROM {physical(last.to_table)} WHERE {condition_sql}"
    for index in range(len(hops) - 2, -1, -1):
        step, following = hops[index], hops[index + 1]
        subquery = (
            f"SELECT {step.remote_column} FROM {physical(step.to_table)} "
            f"WHERE {following.local_column} IN ({subquery})"
        )
    key = f"{alias}.{hops[0].local_column}"
    if not negate:
        return f"{key} IN ({subquery})"
    if null_guard:
        return f"({key} NOT IN ({subquery}) OR {key} IS NULL)"
    return f"{key} NOT IN ({subquery})"


def build_cross_table_subquery(
    base_table: str,
    node: Filter,
    tables: RelationshipGraph | Iterable[TableMetadata],
    *,
    alias: str = BASE_TABLE_ALIAS,
    negate: bool = False,
    null_guard: bool = True,
    database: str = DEFAULT_DATABASE,
) -> str | None:
    """Filter ``base_table`` rows by a condition on one related table.

    All leaves of ``node`` must name the same ``tableName``. A top-level
    ``not`` is folded into ``negate``. Returns None when that table is not
    reachable from ``base_table``.
    """
    if isinstance(node, NotFilter):
        return build_cross_table_subquery(
            base_table, node.negated, tables,
            alias=alias, negate=not negate, null_guard=null_guard, database=database,
        )
    targets = {leaf.table_name for leaf in _leaves(node)}
    if len(targets) != 1:
        return None
    target = targets.pop()
    graph = as_graph(tables)
    hops = graph.find_path(base_table, target) if target else None
    if not hops:
        return None

    def physical(table_name: str) -> str:
        metadata = graph.table(table_name)
        if metadata is None:
            raise FilterCompilationError(f"Unknown table: {table_name}")
        return metadata.qualified_name(database)

    return _nested_membership(
        hops, _render_unaliased(node), physical,
        alias=alias, negate=negate, null_guard=null_guard,
    )


# ------------------------------------------------------------------
# Tree compilation
# ------------------------------------------------------------------

def _placements(node: Filter, ctx: _CompileContext) -> list[_Placement]:
    return [ctx.place(leaf) for leaf in _leaves(node)]


def _remote_target(placements: list[_Placement]) -> str | None:
    tables = {p.table for p in placements}
    if all(p.kind == "remote" for p in placements) and len(tables) == 1:
        return tables.pop()
    return None


def _compile(node: Filter, ctx: _CompileContext) -> str:
    if isinstance(node, NotFilter):
        return _compile_not(node.negated, ctx)

    placements = _placements(node, ctx)
    target = _remote_target(placements)
    if target is not None:
        # One subquery per remote table: leaves in it apply to the same remote row.
        return _remote_membership(ctx.base_table, BASE_TABLE_ALIAS, target, node, ctx, negate=False)

    if isinstance(node, Condition):
        return render_condition(node, placements[0].alias)

    children, joiner = _children(node)
    parts = [_compile(child, ctx) for child in children]
    return parts[0] if len(parts) == 1 else f"({f' {joiner} '.join(parts)})"


def _compile_not(inner: Filter, ctx: _CompileContext) -> str:
    if isinstance(inner, NotFilter):
        return _compile(inner.negated, ctx)

    placements = _placements(inner, ctx)
    kinds = {p.kind for p in placements}
    target = _remote_target(placements)

    if target is not None:
        if ctx.parent_mode:
            excluded = _ancestor_exclusion(target, inner, ctx)
            if excluded is not None:
                return excluded
        return _remote_membership(ctx.base_table, BASE_TABLE_ALIAS, target, inner, ctx, negate=True)

    if kinds == {"base"}:
        if ctx.parent_mode:
            excluded = _base_exclusion(inner, ctx)
            if excluded is not None:
                return excluded
        return f"NOT ({_compile(inner, ctx)})"

    if "remote" not in kinds and not (ctx.parent_mode and "base" in kinds):
        return f"NOT ({_compile(inner, ctx)})"

    # Mixed placements: push the negation down to uniform subtrees.
    children, _ = _children(inner)
    negated = [NotFilter(negated=child) for child in children]
    pushed: Filter = OrFilter(any_of=negated) if isinstance(inner, AndFilter) else AndFilter(all_of=negated)
    return _compile(pushed, ctx)


def _remote_membership(
    from_table: str | None,
    alias: str,
    target: str,
    node: Filter,
    ctx: _CompileContext,
    *,
    negate: bool,
    null_guard: bool = True,
) -> str:
    hops = ctx.graph.find_path(from_table, target) if ctx.graph is not None and from_table else None
    if not hops:
        raise FilterCompilationError(f"No relationship path from {from_table} to {target}")
    return _nested_membership(
        hops, _render_unaliased(node), ctx.physical,
        alias=alias, negate=negate, null_guard=null_guard,
    )


def _ancestor_exclusion(target: str, node: Filter, ctx: _CompileContext) -> str | None:
    """Drop counted ancestors related to any ``target`` row matching ``node``.

    Only for tables below the counted ancestor. Tables above it keep the
    NULL-guarded row-level exclusion.
    """
    metric = ctx.metric_context
    if metric is None or not metric.parent_table or not metric.parent_alias or ctx.graph is None:
        return None
    hops = ctx.graph.find_path(metric.parent_table, target)
    if not hops or hops[0].direction != "backward":
        return None
    return _remote_membership(
        metric.parent_table, metric.parent_alias, target, node, ctx,
        negate=True, null_guard=False,
    )


def _base_exclusion(node: Filter, ctx: _CompileContext) -> str | None:
    """Drop first-level ancestors owning any base row that matches ``node``."""
    metric = ctx.metric_context
    if metric is None or not metric.path_segments or not ctx.base_physical_table:
        return None
    foreign_key = metric.path_segments[0].via_column
    physical = qualify_table_name(ctx.base_physical_table, ctx.database)
    return (
        f"{BASE_TABLE_ALIAS}.{foreign_key} NOT IN "
        f"(SELECT {foreign_key} FROM {physical} WHERE {_render_unaliased(node)})"
    )


# ------------------------------------------------------------------
# Leaf validation
# ------------------------------------------------------------------

def _column_types(known_columns: Any) -> tuple[set[str] | None, Mapping[str, str]]:
    if known_columns is None:
        return None, {}
    if isinstance(known_columns, Mapping):
        return set(known_columns), known_columns
    return set(known_columns), {}


def _make_keep(ctx: _CompileContext, known_columns: Any) -> Callable[[Condition], bool]:
    base_names, base_types = _column_types(known_columns)

    def keep(condition: Condition) -> bool:
        placement = ctx.place(condition)
        display_type: str | None = None

        if placement.kind == "base":
            if base_names is not None and condition.column not in base_names:
                logger.debug("Dropping filter on unknown column %s", condition.column)
                return False
            display_type = base_types.get(condition.column)
        else:
            metadata = ctx.graph.table(placement.table) if ctx.graph is not None else None
            if placement.kind == "remote":
                if metadata is None:
                    logger.warning("Dropping filter on unknown table %s", placement.table)
                    return False
                if ctx.graph.find_path(ctx.base_table, placement.table) is None:
                    logger.warning(
                        "Dropping filter on %s: no relationship to %s", placement.table, ctx.base_table
                    )
                    return False
            if metadata is not None and metadata.columns is not None:
                if condition.column not in metadata.columns:
                    logger.debug("Dropping filter on unknown column %s.%s", placement.table, condition.column)
                    return False
                display_type = metadata.columns.get(condition.column)

        reference_table = condition.temporal_reference_table
        if reference_table and reference_table != (condition.table_name or ctx.base_table):
            logger.warning(
                "Dropping %s filter: reference table %s differs from %s",
                condition.operator, reference_table, condition.table_name or ctx.base_table,
            )
            return False
        if condition.operator == "temporal_overlaps":
            logger.warning("Dropping unsupported temporal_overlaps filter on %s", condition.column)
            return False

        try:
            validate_condition(condition, display_type)
            render_condition(condition, placement.alias)
        except FilterCompilationError as exc:
            logger.warning("Dropping filter on %s: %s", condition.column, exc)
            return False
        return True

    return keep


# ------------------------------------------------------------------
# Public entry point
# ------------------------------------------------------------------

def build_where_clause(
    filters: Any,
    known_columns: Iterable[str] | Mapping[str, str] | None = None,
    base_table: str | None = None,
    tables: RelationshipGraph | Iterable[TableMetadata] | None = None,
    alias_resolver: AliasResolver | None = None,
    metric_context: MetricContext | None = None,
    base_physical_table: str | None = None,
    *,
    database: str = DEFAULT_DATABASE,
) -> str:
    """Compile a filter forest into ``AND (<c1> AND <c2> ...)`` or ``""``.

    ``filters`` may be raw JSON (a dict or a list) or parsed ``Filter`` nodes.
    Leaves that cannot apply to this table are dropped, never raised.
    """
    nodes = parse_filters(filters)
    if not nodes:
        return ""

    if alias_resolver is None and metric_context is not None and metric_context.alias_by_table:
        alias_resolver = metric_context.alias_for

    ctx = _CompileContext(
        base_table=base_table,
        graph=as_graph(tables) if tables is not None else None,
        alias_resolver=alias_resolver,
        metric_context=metric_context,
        base_physical_table=base_physical_table,
        database=database,
    )
    keep = _make_keep(ctx, known_columns)

    parts: list[str] = []
    for node in nodes:
        pruned = prune_filter(node, keep)
        if pruned is None:
            continue
        try:
            parts.append(_compile(pruned, ctx))
        except FilterCompilationError as exc:
            logger.warning("Dropping filter that failed to compile: %s", exc)
    if not parts:
        return ""
    clause = f"AND ({' AND '.join(parts)})"
    logger.debug("Compiled WHERE fragment: %s", clause)
    return clause
