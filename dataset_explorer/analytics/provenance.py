"""Human-readable trail for what a parent-mode metric counts."""
from __future__ import annotations

from typing import Mapping, Sequence

from .models import PathSegment


def _label(table_name: str, display_names: Mapping[str, str] | None) -> str:
    if display_names and table_name in display_names:
        return display_names[table_name]
    return table_name.replace("_", " ").title()


def format_metric_path(
    path: Sequence[PathSegment] | None,
    parent_table: str | None = None,
    display_names: Mapping[str, str] | None = None,
) -> str | None:
    """``"Hospitals via mutations.sample_id → samples.patient_id → patients.hospital_id"``.

    Returns None when there is no path, i.e. the metric counts rows.
    """
    if not path:
        return None
    target = parent_table or path[-1].to_table
    hops = " → ".join(f"{segment.from_table}.{segment.via_column}" for segment in path)
    return f"{_label(target, display_names)} via {hops}"

