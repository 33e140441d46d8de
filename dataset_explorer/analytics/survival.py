"""Kaplan-Meier step curve over per-time event and censoring counts."""
from __future__ import annotations

from typing import Any, Iterable, Mapping

import pandas as pd

from .models import SurvivalCurvePoint


def kaplan_meier(rows: Iterable[Mapping[str, Any]]) -> list[SurvivalCurvePoint]:
    """Build the curve from rows of ``time_val``, ``events`` and ``censored``.

    Everyone observed is at risk at the first time point. Each time point
    multiplies survival by ``1 - events / at_risk`` and then removes both the
    events and the censored subjects from the risk set.
    """
    df = pd.DataFrame(list(rows), columns=["time_val", "events", "censored"])
    if df.empty:
        return []

    df["time_val"] = pd.to_numeric(df["time_val"], errors="coerce")
    df = df.dropna(subset=["time_val"]).sort_values("time_val", kind="stable")
    df["events"] = pd.to_numeric(df["events"], errors="coerce").fillna(0).astype(int)
    df["censored"] = pd.to_numeric(df["censored"], errors="coerce").fillna(0).astype(int)
    if df.empty:
        return []

    removed = df["events"] + df["censored"]
    total = int(removed.sum())
    # Risk set before each time point: total minus everyone removed earlier.
    at_risk = (total - removed.cumsum().shift(fill_value=0)).clip(lower=0)
    step = (1 - df["events"] / at_risk.where(at_risk > 0)).where(df["events"] > 0, 1.0).fillna(1.0)
    survival = step.cumprod()

    return [
        SurvivalCurvePoint(
            time=float(t),
            at_risk=int(r),
            events=int(e),
            censored=int(c),
            survival=float(s),
        )
        for t, r, e, c, s in zip(df["time_val"], at_risk, df["events"], df["censored"], survival)
    ]
