from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import InvalidCountByError

logger = logging.getLogger(__name__)


DEFAULT_DATABASE = "biai"
BASE_TABLE_ALIAS = "base_table"

FilterOperator = Literal[
    "eq", "in", "gt", "lt", "gte", "lte", "between",
    "temporal_before", "temporal_after", "temporal_within",
    "temporal_overlaps", "temporal_duration",
]

MetricMode = Literal["rows", "parent"]
HopDirection = Literal["forward", "backward"]

RANGE_OPS: set[str] = {"gt", "lt", "gte", "lte", "between"}
TEMPORAL_OPS: set[str] = {
    "temporal_before", "temporal_after", "temporal_within",
    "temporal_overlaps", "temporal_duration",
}

CATEGORICAL_DISPLAY_TYPES: set[str] = {"categorical", "id", "geographic"}

DISPLAY_TYPE_ALIASES: dict[str, str] = {
    "survival_time": "numeric",
    "survival_status": "categorical",
}


def normalize_display_type(display_type: str) -> str:
    return DISPLAY_TYPE_ALIASES.get(display_type, display_type)


# ------------------------------------------------------------------
# Catalog metadata
# ------------------------------------------------------------------

@dataclass(frozen=True)
class TableRelationship:
    """``foreign_key`` on the owning table points at ``referenced_table.referenced_column``."""
    foreign_key: str
    referenced_table: str
    referenced_column: str
    type: str | None = None


@dataclass(frozen=True)
class TableMetadata:
    table_name: str
    clickhouse_table_name: str
    relationships: tuple[TableRelationship, ...] = ()
    columns: dict[str, str] | None = None
    table_id: str | None = None
    row_count: int | None = None

    def qualified_name(self, database: str = DEFAULT_DATABASE) -> str:
        return qualify_table_name(self.clickhouse_table_name, database)


@dataclass(frozen=True)
class DatasetColumn:
    column_name: str
    display_type: str
    is_hidden: bool = False


def qualify_table_name(physical_table: str, database: str = DEFAULT_DATABASE) -> str:
    return physical_table if "." in physical_table else f"{database}.{physical_table}"


# ------------------------------------------------------------------
# Filters
# ------------------------------------------------------------------

class Condition(BaseModel):
    """A single column predicate. ``table_name`` absent means the base table."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    column: str
    operator: FilterOperator
    value: Any = None
    table_name: str | None = Field(default=None, alias="tableName")
    count_by_key: str | None = Field(default=None, alias="countByKey")
    temporal_reference_column: str | None = Field(default=None, alias="temporalReferenceColumn")
    temporal_reference_table: str | None = Field(default=None, alias="temporalReferenceTable")
    temporal_window_days: float | None = Field(default=None, alias="temporalWindowDays")


class AndFilter(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    all_of: list["Filter"] = Field(alias="and")


class OrFilter(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    any_of: list["Filter"] = Field(alias="or")


class NotFilter(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    negated: "Filter" = Field(alias="not")

    @model_validator(mode="before")
    @classmethod
    def _unwrap_list(cls, data: Any) -> Any:
        # Clients sometimes send {"not": [x]} instead of {"not": x}.
        if isinstance(data, dict):
            inner = data.get("not")
            if isinstance(inner, list) and len(inner) == 1:
                return {**data, "not": inner[0]}
        return data


Filter = Union[Condition, AndFilter, OrFilter, NotFilter]

AndFilter.model_rebuild()
OrFilter.model_rebuild()
NotFilter.model_rebuild()


def parse_filter(raw: Any) -> Filter | None:
    """Convert one loose JSON filter node into the ``Filter`` sum type.

    Combinator keys win over leaf keys: a node carrying both ``or`` and a
    stray ``tableName`` is treated as the combinator. Malformed nodes are
    logged and return None so the caller can drop them.
    """
    if isinstance(raw, (Condition, AndFilter, OrFilter, NotFilter)):
        return raw
    if not isinstance(raw, dict):
        logger.warning("Dropping non-object filter node: %r", raw)
        return None

    if "and" in raw or "or" in raw:
        key = "and" if "and" in raw else "or"
        children = raw.get(key)
        if not isinstance(children, list):
            logger.warning("Dropping %s filter with non-list children", key)
            return None
        parsed = [child for child in (parse_filter(c) for c in children) if child is not None]
        if not parsed:
            return None
        return AndFilter(all_of=parsed) if key == "and" else OrFilter(any_of=parsed)

    if "not" in raw:
        inner_raw = raw["not"]
        if isinstance(inner_raw, list):
            inner_raw = inner_raw[0] if len(inner_raw) == 1 else {"and": inner_raw}
        inner = parse_filter(inner_raw)
        return NotFilter(negated=inner) if inner is not None else None

    try:
        return Condition.model_validate(raw)
    except ValidationError as exc:
        logger.warning("Dropping malformed filter condition %r: %s", raw, exc.errors()[0]["msg"])
        return None


def parse_filters(raw: Any) -> list[Filter]:
    """Parse a single filter object or a list of them. List items are ANDed."""
    if raw is None:
        return []
    items = raw if isinstance(raw, list) else [raw]
    parsed = (parse_filter(item) for item in items)
    return [node for node in parsed if node is not None]


# ------------------------------------------------------------------
# Metric selection and context
# ------------------------------------------------------------------

@dataclass(frozen=True)
class RowsSelection:
    pass


@dataclass(frozen=True)
class ParentSelection:
    target_table: str


MetricSelection = Union[RowsSelection, ParentSelection]


def parse_count_by(raw: str | None) -> MetricSelection:
    """Parse the ``countBy`` query value: ``rows`` or ``parent:<table>``."""
    if raw is None or raw == "" or raw == "rows":
        return RowsSelection()
    if raw.startswith("parent:"):
        target = raw[len("parent:"):].strip()
        if target:
            return ParentSelection(target_table=target)
    raise InvalidCountByError(f"Invalid countBy value: {raw!r}")


class PathSegment(BaseModel):
    model_config = ConfigDict(frozen=True)

    from_table: str
    via_column: str
    to_table: str
    referenced_column: str


@dataclass(frozen=True)
class JoinStep:
    alias: str
    physical_table: str
    on_condition: str


@dataclass(frozen=True)
class MetricContext:
    mode: MetricMode = "rows"
    parent_table: str | None = None
    parent_column: str | None = None
    join_chain: tuple[JoinStep, ...] = ()
    ancestor_key_expression: str | None = None
    path_segments: tuple[PathSegment, ...] = ()
    alias_by_table: dict[str, str] = field(default_factory=dict)
    parent_alias: str | None = None

    @property
    def is_parent(self) -> bool:
        return self.mode == "parent"

    def alias_for(self, table_name: str | None) -> str | None:
        if table_name is None:
            return None
        return self.alias_by_table.get(table_name)


# ------------------------------------------------------------------
# Response models
# ------------------------------------------------------------------

class CategoryCount(BaseModel):
    value: str
    display_value: str
    count: int
    percentage: float


class NumericStats(BaseModel):
    min: float | None = None
    max: float | None = None
    mean: float | None = None
    median: float | None = None
    stddev: float | None = None
    q25: float | None = None
    q75: float | None = None


class HistogramBin(BaseModel):
    bin_start: float
    bin_end: float
    count: int
    percentage: float


class ColumnAggregation(BaseModel):
    column_name: str
    display_type: str
    normalized_display_type: str
    total_rows: int
    null_count: int
    unique_count: int
    categories: list[CategoryCount] | None = None
    numeric_stats: NumericStats | None = None
    histogram: list[HistogramBin] | None = None
    metric_type: MetricMode = "rows"
    metric_parent_table: str | None = None
    metric_parent_column: str | None = None
    metric_path: list[PathSegment] | None = None
    metric_label: str | None = None


class SurvivalCurvePoint(BaseModel):
    time: float
    at_risk: int
    events: int
    censored: int
    survival: float
