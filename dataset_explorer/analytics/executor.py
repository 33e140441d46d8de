"""Run the aggregation queries for a table's columns and assemble results."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Iterable

from ..config import Settings, get_settings
from .errors import InvalidColumnError, TableNotFoundError
from .graph import RelationshipGraph
from .metadata_repository import MetadataRepository
from .metric_context import build_from_clause, metric_aggregation_expression, resolve_metric_context
from .models import (
    CATEGORICAL_DISPLAY_TYPES,
    CategoryCount,
    ColumnAggregation,
    HistogramBin,
    MetricContext,
    MetricSelection,
    NumericStats,
    SurvivalCurvePoint,
    TableMetadata,
    normalize_display_type,
)
from .provenance import format_metric_path
from . import queries
from .sql_compiler import build_where_clause
from .survival import kaplan_meier
from .validator import is_safe_identifier, validate_result
from .values import normalize_category

logger = logging.getLogger(__name__)


class AggregationExecutor:
    """Resolves metric context, compiles filters, queries the store and shapes results."""

    def __init__(self, metadata_repo: MetadataRepository, settings: Settings | None = None) -> None:
        self._meta = metadata_repo
        self._settings = settings or get_settings()

    @property
    def metadata_repo(self) -> MetadataRepository:
        return self._meta

    async def get_table_aggregations(
        self,
        dataset_id: str,
        table_id: str,
        filters: Any = None,
        selection: MetricSelection | None = None,
    ) -> list[ColumnAggregation]:
        tables = await self._meta.load_dataset_tables(dataset_id)
        current = _find_table(tables, table_id)
        if current is None:
            raise TableNotFoundError(f"Table {table_id} not found in dataset {dataset_id}")

        columns = await self._meta.list_visible_columns(dataset_id, table_id)
        graph = RelationshipGraph(tables)
        context = resolve_metric_context(current.table_name, selection, graph, self._meta.database)
        physical_columns = await self._meta.get_physical_columns(current.clickhouse_table_name)

        limit = asyncio.Semaphore(max(1, self._settings.max_concurrent_columns))

        async def _one(column_name: str, display_type: str) -> ColumnAggregation:
            async with limit:
                return await self._aggregate_column(
                    current, column_name, display_type, filters, graph, context, physical_columns,
                )

        return list(await asyncio.gather(*(_one(c.column_name, c.display_type) for c in columns)))

    async def get_column_aggregation(
        self,
        dataset_id: str,
        table_id: str,
        column_name: str,
        display_type: str,
        filters: Any = None,
        table_name: str | None = None,
        tables: Iterable[TableMetadata] | None = None,
        selection: MetricSelection | None = None,
    ) -> ColumnAggregation:
        current = await self._meta.get_table(dataset_id, table_id)
        if tables is None:
            tables = await self._meta.load_dataset_tables(dataset_id)
        graph = RelationshipGraph(tables)
        registered = _find_table(graph.tables.values(), table_id)
        if registered is not None:
            current = _with_relationships(current, registered)
        if table_name:
            current = replace(current, table_name=table_name)

        context = resolve_metric_context(current.table_name, selection, graph, self._meta.database)
        physical_columns = await self._meta.get_physical_columns(current.clickhouse_table_name)
        return await self._aggregate_column(
            current, column_name, display_type, filters, graph, context, physical_columns,
        )

    async def get_survival_curve(
        self,
        dataset_id: str,
        table_id: str,
        time_column: str,
        status_column: str,
        filters: Any = None,
        selection: MetricSelection | None = None,
    ) -> list[SurvivalCurvePoint]:
        _require_identifier(time_column)
        _require_identifier(status_column)
        current = await self._meta.get_table(dataset_id, table_id)
        tables = await self._meta.load_dataset_tables(dataset_id)
        graph = RelationshipGraph(tables)
        registered = _find_table(tables, table_id)
        if registered is not None:
            current = _with_relationships(current, registered)

        context = resolve_metric_context(current.table_name, selection, graph, self._meta.database)
        physical_columns = await self._meta.get_physical_columns(current.clickhouse_table_name)
        where = self._where(current, filters, graph, context, physical_columns)
        from_clause = build_from_clause(current.qualified_name(self._meta.database), context)

        rows = await self._meta.fetch_rows(
            queries.survival_query(time_column, status_column, from_clause, where)
        )
        return kaplan_meier(rows)

    # ------------------------------------------------------------------
    # Per-column steps
    # ------------------------------------------------------------------

    def _where(
        self,
        table: TableMetadata,
        filters: Any,
        graph: RelationshipGraph,
        context: MetricContext,
        physical_columns: set[str] | None,
    ) -> str:
        known: dict[str, str | None] | None = None
        if physical_columns is not None:
            types = table.columns or {}
            known = {name: types.get(name) for name in physical_columns}
        return build_where_clause(
            filters,
            known,
            table.table_name,
            graph,
            metric_context=context,
            base_physical_table=table.clickhouse_table_name,
            database=self._meta.database,
        )

    async def _aggregate_column(
        self,
        table: TableMetadata,
        column_name: str,
        display_type: str,
        filters: Any,
        graph: RelationshipGraph,
        context: MetricContext,
        physical_columns: set[str] | None,
    ) -> ColumnAggregation:
        _require_identifier(column_name)
        where = self._where(table, filters, graph, context, physical_columns)
        from_clause = build_from_clause(table.qualified_name(self._meta.database), context)
        metric = metric_aggregation_expression(context)

        total = table.row_count or 0
        if context.is_parent or where:
            rows = await self._meta.fetch_rows(queries.filtered_count_query(metric, from_clause, where))
            total = _int(rows[0].get("filtered_count")) if rows else 0

        null_metric = metric_aggregation_expression(context, f"isNull({queries.column_ref(column_name)})")
        rows = await self._meta.fetch_rows(
            queries.basic_stats_query(null_metric, column_name, from_clause, where)
        )
        stats_row = rows[0] if rows else {}

        normalized = normalize_display_type(display_type)
        aggregation = ColumnAggregation(
            column_name=column_name,
            display_type=display_type,
            normalized_display_type=normalized,
            total_rows=total,
            null_count=_int(stats_row.get("null_count")),
            unique_count=_int(stats_row.get("unique_count")),
            metric_type=context.mode,
            metric_parent_table=context.parent_table,
            metric_parent_column=context.parent_column,
            metric_path=list(context.path_segments) if context.is_parent else None,
            metric_label=format_metric_path(context.path_segments, context.parent_table),
        )

        if normalized in CATEGORICAL_DISPLAY_TYPES:
            limit = (
                self._settings.geographic_category_limit
                if normalized == "geographic"
                else self._settings.category_limit
            )
            aggregation.categories = await self._categories(
                metric, column_name, from_clause, where, total, limit,
            )
        elif normalized == "numeric":
            aggregation.numeric_stats = await self._numeric_stats(column_name, from_clause, where)
            aggregation.histogram = await self._histogram(metric, column_name, from_clause, where, total)

        try:
            validate_result(aggregation)
        except Exception as exc:
            logger.warning("Result validation warning: %s", exc)
        return aggregation

    async def _categories(
        self,
        metric: str,
        column_name: str,
        from_clause: str,
        where: str,
        total: int,
        limit: int,
    ) -> list[CategoryCount]:
        rows = await self._meta.fetch_rows(
            queries.categorical_query(metric, column_name, from_clause, where, total, limit)
        )
        categories: list[CategoryCount] = []
        for row in rows:
            value, display_value = normalize_category(row.get("value"))
            categories.append(CategoryCount(
                value=value,
                display_value=display_value,
                count=_int(row.get("count")),
                percentage=_float(row.get("percentage")) or 0.0,
            ))
        return categories

    async def _numeric_stats(self, column_name: str, from_clause: str, where: str) -> NumericStats:
        rows = await self._meta.fetch_rows(queries.numeric_stats_query(column_name, from_clause, where))
        if not rows:
            return NumericStats()
        row = rows[0]
        return NumericStats(**{key: _float(row.get(key)) for key in NumericStats.model_fields})

    async def _histogram(
        self,
        metric: str,
        column_name: str,
        from_clause: str,
        where: str,
        total: int,
    ) -> list[HistogramBin]:
        rows = await self._meta.fetch_rows(queries.min_max_query(column_name, from_clause, where))
        if not rows:
            return []
        low, high = _float(rows[0].get("min_val")), _float(rows[0].get("max_val"))
        if low is None or high is None:
            return []
        if low == high:
            return [HistogramBin(bin_start=low, bin_end=low, count=total, percentage=100.0)]

        bins = max(1, self._settings.histogram_bins)
        width = (high - low) / bins
        rows = await self._meta.fetch_rows(
            queries.histogram_query(metric, column_name, from_clause, where, low, width, bins)
        )
        result: list[HistogramBin] = []
        for row in rows:
            count = _int(row.get("count"))
            result.append(HistogramBin(
                bin_start=_float(row.get("bin_start")) or 0.0,
                bin_end=_float(row.get("bin_end")) or 0.0,
                count=count,
                percentage=(count / total * 100) if total > 0 else 0.0,
            ))
        return result


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _find_table(tables: Iterable[TableMetadata], table_id: str) -> TableMetadata | None:
    for table in tables:
        if table.table_id == table_id:
            return table
    return None


def _with_relationships(current: TableMetadata, registered: TableMetadata) -> TableMetadata:
    """Catalog row wins for identity and row count; the dataset load adds columns and relationships."""
    return replace(
        current,
        relationships=registered.relationships,
        columns=registered.columns,
        row_count=current.row_count if current.row_count is not None else registered.row_count,
    )


def _require_identifier(column_name: str) -> None:
    if not is_safe_identifier(column_name):
        raise InvalidColumnError(f"Invalid column name: {column_name!r}")


def _int(value: Any) -> int:
    try:
        return int(value) if value is not None else 0
    except (TypeError, ValueError):
        return 0


def _float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if number != number else number
