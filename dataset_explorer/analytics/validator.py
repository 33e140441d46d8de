"""Validate filter trees against catalog metadata and sanity-check results."""
from __future__ import annotations

import logging
import re
from typing import Callable

from .errors import FilterCompilationError
from .models import (
    AndFilter,
    ColumnAggregation,
    Condition,
    Filter,
    NotFilter,
    OrFilter,
    RANGE_OPS,
    TEMPORAL_OPS,
)

logger = logging.getLogger(__name__)

_SAFE_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_MAX_IDENTIFIER_LENGTH = 128

# Display types whose stored values are text; ordering comparisons make no sense there.
_TEXT_DISPLAY_TYPES = {"categorical", "id", "geographic", "survival_status", "text"}


def is_safe_identifier(name: str | None) -> bool:
    return bool(name) and len(name) <= _MAX_IDENTIFIER_LENGTH and bool(_SAFE_IDENTIFIER.match(name))


def operator_supported(operator: str, display_type: str | None) -> bool:
    if display_type is None:
        return True
    if operator in RANGE_OPS or operator in TEMPORAL_OPS:
        return display_type not in _TEXT_DISPLAY_TYPES
    return True


def validate_condition(condition: Condition, display_type: str | None = None) -> None:
    """Raise FilterCompilationError when a leaf can never compile."""
    if not is_safe_identifier(condition.column):
        raise FilterCompilationError(f"Unsafe column name: {condition.column!r}")
    if condition.table_name is not None and not is_safe_identifier(condition.table_name):
        raise FilterCompilationError(f"Unsafe table name: {condition.table_name!r}")
    ref = condition.temporal_reference_column
    if ref is not None and not is_safe_identifier(ref):
        raise FilterCompilationError(f"Unsafe reference column: {ref!r}")
    if not operator_supported(condition.operator, display_type):
        raise FilterCompilationError(
            f"Operator '{condition.operator}' not valid for {display_type} column '{condition.column}'"
        )


def prune_filter(node: Filter, keep: Callable[[Condition], bool]) -> Filter | None:
    """Drop leaves rejected by ``keep``; collapse combinators left with one child."""
    if isinstance(node, Condition):
        return node if keep(node) else None
    if isinstance(node, NotFilter):
        inner = prune_filter(node.negated, keep)
        return NotFilter(negated=inner) if inner is not None else None
    if isinstance(node, AndFilter):
        children = [c for c in (prune_filter(ch, keep) for ch in node.all_of) if c is not None]
        if not children:
            return None
        return children[0] if len(children) == 1 else AndFilter(all_of=children)
    if isinstance(node, OrFilter):
        children = [c for c in (prune_filter(ch, keep) for ch in node.any_of) if c is not None]
        if not children:
            return None
        return children[0] if len(children) == 1 else OrFilter(any_of=children)
    return None


def validate_result(aggregation: ColumnAggregation) -> None:
    """Sanity-check a computed aggregation.

    Logs warnings rather than raising, since the result is already computed.
    """
    total = aggregation.total_rows
    if aggregation.null_count > total:
        logger.warning(
            "Null count (%s) exceeds total (%s) for column %s",
            aggregation.null_count, total, aggregation.column_name,
        )
    # An ancestor can fall into several categories, so only rows add up.
    if aggregation.categories and aggregation.metric_type == "rows":
        grouped = sum(c.count for c in aggregation.categories)
        if grouped > total:
            logger.warning(
                "Category counts (%s) exceed total (%s) for column %s",
                grouped, total, aggregation.column_name,
            )
    stats = aggregation.numeric_stats
    if stats and stats.min is not None and stats.max is not None and stats.min > stats.max:
        logger.warning("Numeric min > max for column %s", aggregation.column_name)
