"""Resolve what an aggregation counts: rows of the base table or distinct ancestors."""
from __future__ import annotations

import logging
from typing import Iterable

from .errors import NoRelationshipPathError
from .graph import RelationshipGraph, as_graph
from .models import (
    BASE_TABLE_ALIAS,
    DEFAULT_DATABASE,
    JoinStep,
    MetricContext,
    MetricSelection,
    ParentSelection,
    TableMetadata,
)

logger = logging.getLogger(__name__)


def resolve_metric_context(
    base_table: str,
    selection: MetricSelection | None,
    tables: RelationshipGraph | Iterable[TableMetadata],
    database: str = DEFAULT_DATABASE,
) -> MetricContext:
    if not isinstance(selection, ParentSelection):
        return MetricContext(mode="rows")

    graph = as_graph(tables)
    target = selection.target_table
    segments = graph.find_ancestor_chain(base_table, target)

    joins: list[JoinStep] = []
    alias_by_table = {base_table: BASE_TABLE_ALIAS}
    previous_alias = BASE_TABLE_ALIAS
    for index, segment in enumerate(segments):
        alias = f"ancestor_{index}"
        metadata = graph.table(segment.to_table)
        if metadata is None:
            raise NoRelationshipPathError(
                f"No relationship from {base_table} to {target}: "
                f"{segment.to_table} is not a table in this dataset"
            )
        joins.append(JoinStep(
            alias=alias,
            physical_table=metadata.qualified_name(database),
            on_condition=f"{previous_alias}.{segment.via_column} = {alias}.{segment.referenced_column}",
        ))
        alias_by_table[segment.to_table] = alias
        previous_alias = alias

    last = segments[-1]
    logger.debug("Counting %s by %s over %d join(s)", base_table, target, len(joins))
    return MetricContext(
        mode="parent",
        parent_table=target,
        parent_column=last.referenced_column,
        join_chain=tuple(joins),
        ancestor_key_expression=f"{previous_alias}.{last.referenced_column}",
        path_segments=tuple(segments),
        alias_by_table=alias_by_table,
        parent_alias=previous_alias,
    )


def build_from_clause(physical_table: str, context: MetricContext | None = None) -> str:
    clause = f"{physical_table} AS {BASE_TABLE_ALIAS}"
    if context is None:
        return clause
    for join in context.join_chain:
        clause += f"\nANY LEFT JOIN {join.physical_table} AS {join.alias} ON {join.on_condition}"
    return clause


def metric_aggregation_expression(context: MetricContext | None, condition: str | None = None) -> str:
    """``count()``/``countIf`` for rows, ``uniq``/``uniqIf`` on the ancestor key otherwise."""
    if context is None or not context.is_parent:
        return f"countIf({condition})" if condition else "count()"
    key = context.ancestor_key_expression
    return f"uniqIf({key}, {condition})" if condition else f"uniq({key})"
