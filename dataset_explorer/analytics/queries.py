"""SQL text for the per-column aggregation queries.

Every builder takes an already rendered FROM clause and WHERE fragment so the
same join chain and filters apply to each query of one column.
"""
from __future__ import annotations

from .models import BASE_TABLE_ALIAS
from .values import category_display_sql, category_value_sql, format_number

EVENT_STATUS_VALUES = (
    "1", "true", "t", "yes", "y", "dead", "deceased", "death", "died",
    "event", "progressed", "progression", "relapse",
)
CENSORED_STATUS_VALUES = (
    "0", "false", "f", "no", "n", "alive", "living", "censored", "censor",
    "none", "ongoing",
)


def column_ref(column: str, alias: str = BASE_TABLE_ALIAS) -> str:
    return f"{alias}.{column}"


def _in_list(values: tuple[str, ...]) -> str:
    return ", ".join(f"'{v}'" for v in values)


def filtered_count_query(metric: str, from_clause: str, where: str) -> str:
    return f"SELECT {metric} AS filtered_count\nFROM {from_clause}\nWHERE 1=1 {where}"


def basic_stats_query(null_metric: str, column: str, from_clause: str, where: str) -> str:
    return (
        f"SELECT {null_metric} AS null_count, uniq({column_ref(column)}) AS unique_count\n"
        f"FROM {from_clause}\nWHERE 1=1 {where}"
    )


def categorical_query(
    metric: str,
    column: str,
    from_clause: str,
    where: str,
    total: int,
    limit: int,
) -> str:
    expr = column_ref(column)
    return (
        "SELECT\n"
        f"  {category_value_sql(expr)} AS value,\n"
        f"  {category_display_sql(expr)} AS display_value,\n"
        f"  {metric} AS count,\n"
        f"  if({total} = 0, 0, {metric} * 100.0 / {total}) AS percentage\n"
        f"FROM {from_clause}\n"
        f"WHERE 1=1 {where}\n"
        "GROUP BY value, display_value\n"
        "ORDER BY count DESC\n"
        f"LIMIT {int(limit)}"
    )


def numeric_stats_query(column: str, from_clause: str, where: str) -> str:
    expr = column_ref(column)
    return (
        "SELECT\n"
        f"  min({expr}) AS min,\n"
        f"  max({expr}) AS max,\n"
        f"  avg({expr}) AS mean,\n"
        f"  median({expr}) AS median,\n"
        f"  stddevPop({expr}) AS stddev,\n"
        f"  quantile(0.25)({expr}) AS q25,\n"
        f"  quantile(0.75)({expr}) AS q75\n"
        f"FROM {from_clause}\n"
        f"WHERE {expr} IS NOT NULL {where}"
    )


def min_max_query(column: str, from_clause: str, where: str) -> str:
    expr = column_ref(column)
    return (
        f"SELECT min({expr}) AS min_val, max({expr}) AS max_val\n"
        f"FROM {from_clause}\n"
        f"WHERE {expr} IS NOT NULL {where}"
    )


def histogram_query(
    metric: str,
    column: str,
    from_clause: str,
    where: str,
    min_value: float,
    bin_width: float,
    bins: int,
) -> str:
    """The maximum value falls into the last bin, so there are at most ``bins`` rows."""
    expr = column_ref(column)
    low = format_number(min_value)
    width = repr(float(bin_width))
    index = f"least(floor(({expr} - {low}) / {width}), {int(bins) - 1})"
    return (
        "SELECT\n"
        f"  {index} AS bin_index,\n"
        f"  {low} + {index} * {width} AS bin_start,\n"
        f"  {low} + ({index} + 1) * {width} AS bin_end,\n"
        f"  {metric} AS count\n"
        f"FROM {from_clause}\n"
        f"WHERE {expr} IS NOT NULL {where}\n"
        "GROUP BY bin_index, bin_start, bin_end\n"
        "ORDER BY bin_index"
    )


def survival_event_sql(status_column: str) -> str:
    """1 for an event, 0 for censored, NULL when the status is unrecognized."""
    raw = column_ref(status_column)
    status = f"lowerUTF8(trimBoth(toString({raw})))"
    return (
        f"coalesce(toInt64OrNull(toString({raw})), multiIf("
        f"{status} IN ({_in_list(EVENT_STATUS_VALUES)}), 1, "
        f"startsWith({status}, '1') OR startsWith({status}, 'event') "
        f"OR position({status}, 'deceased') > 0 OR position({status}, 'death') > 0 "
        f"OR position({status}, 'dead') > 0, 1, "
        f"{status} IN ({_in_list(CENSORED_STATUS_VALUES)}), 0, "
        f"startsWith({status}, '0') OR position({status}, 'alive') > 0 "
        f"OR position({status}, 'living') > 0 OR position({status}, 'censor') > 0, 0, "
        "NULL))"
    )


def survival_query(time_column: str, status_column: str, from_clause: str, where: str) -> str:
    time_expr = f"toFloat64OrNull(toString({column_ref(time_column)}))"
    event_expr = survival_event_sql(status_column)
    return (
        "SELECT time_val, sum(event_flag) AS events, count() - sum(event_flag) AS censored\n"
        "FROM (\n"
        f"  SELECT {time_expr} AS time_val, {event_expr} AS event_flag\n"
        f"  FROM {from_clause}\n"
        f"  WHERE 1=1 {where}\n"
        f"    AND {time_expr} IS NOT NULL\n"
        f"    AND {event_expr} IS NOT NULL\n"
        ")\n"
        "GROUP BY time_val\n"
        "ORDER BY time_val"
    )
