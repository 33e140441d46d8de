"""Aggregation and filter compilation over a ClickHouse-backed dataset catalog."""
from .errors import (
    AnalyticsError,
    ErrorCode,
    FilterCompilationError,
    InvalidColumnError,
    InvalidCountByError,
    InvalidFilterError,
    NoRelationshipPathError,
    StoreQueryError,
    TableNotFoundError,
)
from .models import (
    BASE_TABLE_ALIAS,
    AndFilter,
    CategoryCount,
    ColumnAggregation,
    Condition,
    Filter,
    HistogramBin,
    JoinStep,
    MetricContext,
    MetricSelection,
    NotFilter,
    NumericStats,
    OrFilter,
    ParentSelection,
    PathSegment,
    RowsSelection,
    SurvivalCurvePoint,
    TableMetadata,
    TableRelationship,
    parse_count_by,
    parse_filters,
)
from .graph import Hop, RelationshipGraph, find_ancestor_chain, find_path
from .metric_context import build_from_clause, metric_aggregation_expression, resolve_metric_context
from .sql_compiler import build_cross_table_subquery, build_where_clause, render_condition
from .executor import AggregationExecutor
from .metadata_repository import MetadataRepository
from .provenance import format_metric_path
from .survival import kaplan_meier

__all__ = [
    "AnalyticsError",
    "ErrorCode",
    "FilterCompilationError",
    "InvalidColumnError",
    "InvalidCountByError",
    "InvalidFilterError",
    "NoRelationshipPathError",
    "StoreQueryError",
    "TableNotFoundError",
    "BASE_TABLE_ALIAS",
    "AndFilter",
    "CategoryCount",
    "ColumnAggregation",
    "Condition",
    "Filter",
    "HistogramBin",
    "JoinStep",
    "MetricContext",
    "MetricSelection",
    "NotFilter",
    "NumericStats",
    "OrFilter",
    "ParentSelection",
    "PathSegment",
    "RowsSelection",
    "SurvivalCurvePoint",
    "TableMetadata",
    "TableRelationship",
    "parse_count_by",
    "parse_filters",
    "Hop",
    "RelationshipGraph",
    "find_ancestor_chain",
    "find_path",
    "build_from_clause",
    "metric_aggregation_expression",
    "resolve_metric_context",
    "build_cross_table_subquery",
    "build_where_clause",
    "render_condition",
    "AggregationExecutor",
    "MetadataRepository",
    "format_metric_path",
    "kaplan_meier",
]
