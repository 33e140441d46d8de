"""Kaplan-Meier curve tests."""
from __future__ import annotations

import pytest

from dataset_explorer.analytics.survival import kaplan_meier


class TestKaplanMeier:
    def test_empty(self):
        assert kaplan_meier([]) == []

    def test_step_curve(self):
        rows = [
            {"time_val": 1, "events": 1, "censored": 0},
            {"time_val": 2, "events": 1, "censored": 1},
            {"time_val": 3, "events": 0, "censored": 1},
        ]
        curve = kaplan_meier(rows)

        assert [p.time for p in curve] == [1.0, 2.0, 3.0]
        assert [p.at_risk for p in curve] == [4, 3, 1]
        assert [p.survival for p in curve] == pytest.approx([0.75, 0.5, 0.5])

    def test_unsorted_rows_are_ordered_by_time(self):
        rows = [
            {"time_val": 5, "events": 1, "censored": 0},
            {"time_val": 2, "events": 1, "censored": 0},
        ]
        curve = kaplan_meier(rows)
        assert [p.time for p in curve] == [2.0, 5.0]
        assert curve[-1].survival == pytest.approx(0.0)

    def test_censoring_only_keeps_survival_at_one(self):
        curve = kaplan_meier([{"time_val": 10, "events": 0, "censored": 3}])
        assert curve[0].survival == 1.0
        assert curve[0].at_risk == 3

    def test_string_counts_are_coerced(self):
        curve = kaplan_meier([{"time_val": "1.5", "events": "2", "censored": None}])
        assert curve[0].time == 1.5
        assert curve[0].events == 2
        assert curve[0].censored == 0
        assert curve[0].survival == 0.0
