"""Literal rendering and the display-vs-storage duality of empty and N/A values.

The UI shows ``(Empty)`` for blank or NULL cells and ``(N/A)`` for cells that
literally store ``N/A``. Filters echo the display labels back, so every
equality and membership test goes through this module to land on the stored
representation.
"""
from __future__ import annotations

import math
from typing import Any

from .errors import FilterCompilationError

EMPTY_LABEL = "(Empty)"
NA_LABEL = "(N/A)"
NA_STORED = "N/A"


def quote_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("'", "''")
    return f"'{escaped}'"


def format_number(value: int | float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def ensure_numeric(value: Any) -> int | float:
    """Return a finite number or raise FilterCompilationError."""
    if isinstance(value, bool):
        raise FilterCompilationError(f"Expected a number, got boolean {value!r}")
    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            number = int(text)
        except ValueError:
            try:
                number = float(text)
            except ValueError as exc:
                raise FilterCompilationError(f"Expected a number, got {value!r}") from exc
    else:
        raise FilterCompilationError(f"Expected a number, got {type(value).__name__}")
    if isinstance(number, float) and not math.isfinite(number):
        raise FilterCompilationError(f"Expected a finite number, got {value!r}")
    return number


def is_empty_marker(value: Any) -> bool:
    return value == EMPTY_LABEL or value == ""


def to_stored(value: Any) -> Any:
    """Map a display label to what the store holds. ``(Empty)`` has no single stored form."""
    if value == NA_LABEL:
        return NA_STORED
    return value


def render_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return format_number(ensure_numeric(value))
    if isinstance(value, str):
        return quote_string(value)
    raise FilterCompilationError(f"Unsupported literal type: {type(value).__name__}")


def equality_condition(column: str, value: Any) -> str:
    if value is None:
        return f"isNull({column})"
    if is_empty_marker(value):
        return f"({column} = '' OR isNull({column}))"
    return f"{column} = {render_literal(to_stored(value))}"


def membership_condition(column: str, values: Any) -> str:
    if not isinstance(values, list):
        values = [values]
    if not values:
        return "0"

    literals: list[str] = []
    include_empty = False
    include_null = False
    for item in values:
        if item is None:
            include_null = True
        elif is_empty_marker(item):
            include_empty = True
        else:
            literal = render_literal(to_stored(item))
            if literal not in literals:
                literals.append(literal)

    parts: list[str] = []
    if literals:
        parts.append(f"{column} IN ({', '.join(literals)})")
    if include_empty:
        parts.append(f"{column} = ''")
    if include_empty or include_null:
        parts.append(f"isNull({column})")
    if len(parts) == 1:
        return parts[0]
    return f"({' OR '.join(parts)})"


# ------------------------------------------------------------------
# Category normalization
# ------------------------------------------------------------------

def normalize_category(raw: Any) -> tuple[str, str]:
    """Return ``(value, display_value)`` for a raw grouped cell."""
    if raw is None:
        return "", EMPTY_LABEL
    text = str(raw).strip()
    if not text:
        return "", EMPTY_LABEL
    if text.lower() == "n/a":
        return NA_STORED, NA_LABEL
    return text, text


def category_value_sql(column: str) -> str:
    trimmed = f"trimBoth(toString({column}))"
    return (
        f"multiIf(isNull({column}) OR lengthUTF8({trimmed}) = 0, '', "
        f"lowerUTF8({trimmed}) = 'n/a', '{NA_STORED}', {trimmed})"
    )


def category_display_sql(column: str) -> str:
    trimmed = f"trimBoth(toString({column}))"
    return (
        f"multiIf(isNull({column}) OR lengthUTF8({trimmed}) = 0, '{EMPTY_LABEL}', "
        f"lowerUTF8({trimmed}) = 'n/a', '{NA_LABEL}', {trimmed})"
    )
