"""Aggregation executor tests against the in-memory store.

Verifies that:
- Unfiltered rows-mode counts reuse the catalog row count
- Filters and parent counting issue a filtered metric count
- Categorical, numeric and histogram results are shaped and normalized
- Store failures surface as StoreQueryError
"""
from __future__ import annotations

import asyncio

import pytest

from dataset_explorer.analytics.errors import (
    InvalidColumnError,
    NoRelationshipPathError,
    StoreQueryError,
    TableNotFoundError,
)
from dataset_explorer.analytics.executor import AggregationExecutor
from dataset_explorer.analytics.models import ParentSelection
from dataset_explorer.config import get_settings

VISIBLE_COLUMNS = [
    {"column_name": "sample_type", "display_type": "categorical", "is_hidden": False},
    {"column_name": "purity", "display_type": "numeric", "is_hidden": False},
]

SAMPLE_COLUMNS = [{"name": "sample_id"}, {"name": "patient_id"}, {"name": "sample_type"}, {"name": "purity"}]


def _routes(**overrides):
    routes = {
        "is_hidden = false": VISIBLE_COLUMNS,
        "FROM system.columns": SAMPLE_COLUMNS,
        "AS filtered_count": [{"filtered_count": 40}],
        "AS null_count": [{"null_count": 2, "unique_count": 3}],
        "AS display_value": [
            {"value": "Tumor", "display_value": "Tumor", "count": 30, "percentage": 75.0},
            {"value": "", "display_value": "(Empty)", "count": 8, "percentage": 20.0},
            {"value": "N/A", "display_value": "(N/A)", "count": 2, "percentage": 5.0},
        ],
        "quantile(0.25)": [{
            "min": 0.1, "max": 0.9, "mean": 0.5, "median": 0.5, "stddev": 0.2, "q25": 0.3, "q75": 0.7,
        }],
        "AS min_val": [{"min_val": 0.0, "max_val": 1.0}],
        "AS bin_index": [
            {"bin_index": 0, "bin_start": 0.0, "bin_end": 0.05, "count": 10},
            {"bin_index": 19, "bin_start": 0.95, "bin_end": 1.0, "count": 30},
        ],
    }
    routes.update(overrides)
    return list(routes.items())


@pytest.fixture
def make_executor(fake_client_factory, repo_factory):
    def _make(**overrides):
        fail_on = overrides.pop("fail_on", None)
        client = fake_client_factory(_routes(**overrides), fail_on=fail_on)
        return AggregationExecutor(repo_factory(client), get_settings()), client
    return _make


# ============================================================================
# Table aggregations
# ============================================================================

class TestTableAggregations:
    def test_unfiltered_rows_mode_uses_catalog_count(self, make_executor):
        executor, client = make_executor()
        results = asyncio.run(executor.get_table_aggregations("ds1", "t_samples", []))

        assert [r.column_name for r in results] == ["sample_type", "purity"]
        assert all(r.total_rows == 100 for r in results)
        assert all(r.metric_type == "rows" for r in results)
        assert client.sql_containing("AS filtered_count") == []

    def test_categories_are_normalized(self, make_executor):
        executor, client = make_executor()
        categorical = asyncio.run(executor.get_table_aggregations("ds1", "t_samples"))[0]

        assert [(c.value, c.display_value, c.count) for c in categorical.categories] == [
            ("Tumor", "Tumor", 30), ("", "(Empty)", 8), ("N/A", "(N/A)", 2),
        ]
        assert categorical.null_count == 2
        assert categorical.unique_count == 3
        sql = client.sql_containing("AS display_value")[0]
        assert "GROUP BY value, display_value" in sql
        assert "LIMIT 50" in sql
        assert "FROM biai.samples_abc123 AS base_table" in sql

    def test_numeric_stats_and_histogram(self, make_executor):
        executor, client = make_executor()
        numeric = asyncio.run(executor.get_table_aggregations("ds1", "t_samples"))[1]

        assert numeric.numeric_stats.median == 0.5
        assert numeric.numeric_stats.q75 == 0.7
        assert [(b.count, b.percentage) for b in numeric.histogram] == [(10, 10.0), (30, 30.0)]
        assert numeric.categories is None
        assert "/ 0.05)" in client.sql_containing("AS bin_index")[0]

    def test_maximum_lands_in_last_bin(self, make_executor):
        executor, client = make_executor()
        asyncio.run(executor.get_column_aggregation("ds1", "t_samples", "purity", "numeric"))
        sql = client.sql_containing("AS bin_index")[0]
        assert "least(floor((base_table.purity - 0) / 0.05), 19) AS bin_index" in sql

    def test_filters_trigger_filtered_count(self, make_executor):
        executor, client = make_executor()
        filters = [{"column": "radiation_therapy", "operator": "eq", "value": "Yes", "tableName": "patients"}]
        results = asyncio.run(executor.get_table_aggregations("ds1", "t_samples", filters))

        assert all(r.total_rows == 40 for r in results)
        count_sql = client.sql_containing("AS filtered_count")[0]
        assert "SELECT count() AS filtered_count" in count_sql
        assert "base_table.patient_id IN (SELECT patient_id FROM biai.patients_abc123" in count_sql

    def test_unknown_filter_column_is_ignored(self, make_executor):
        executor, client = make_executor()
        filters = [{"column": "not_here", "operator": "eq", "value": "x"}]
        results = asyncio.run(executor.get_table_aggregations("ds1", "t_samples", filters))

        assert all(r.total_rows == 100 for r in results)
        assert client.sql_containing("not_here") == []

    def test_parent_counting(self, make_executor):
        executor, client = make_executor()
        results = asyncio.run(
            executor.get_table_aggregations("ds1", "t_samples", [], ParentSelection("patients"))
        )

        first = results[0]
        assert first.metric_type == "parent"
        assert first.metric_parent_table == "patients"
        assert first.metric_parent_column == "patient_id"
        assert [s.to_table for s in first.metric_path] == ["patients"]
        assert first.metric_label == "Patients via samples.patient_id"
        assert first.total_rows == 40
        count_sql = client.sql_containing("AS filtered_count")[0]
        assert "uniq(ancestor_0.patient_id)" in count_sql
        assert "ANY LEFT JOIN biai.patients_abc123 AS ancestor_0" in count_sql
        null_sql = client.sql_containing("AS null_count")[0]
        assert "uniqIf(ancestor_0.patient_id, isNull(base_table.sample_type))" in null_sql

    def test_parent_counting_requires_ancestor(self, make_executor):
        executor, _ = make_executor()
        with pytest.raises(NoRelationshipPathError):
            asyncio.run(executor.get_table_aggregations("ds1", "t_samples", [], ParentSelection("mutations")))

    def test_unknown_table(self, make_executor):
        executor, _ = make_executor()
        with pytest.raises(TableNotFoundError):
            asyncio.run(executor.get_table_aggregations("ds1", "t_missing"))

    def test_store_failure(self, make_executor):
        executor, _ = make_executor(fail_on="AS null_count")
        with pytest.raises(StoreQueryError, match="Table does not exist"):
            asyncio.run(executor.get_table_aggregations("ds1", "t_samples"))


# ============================================================================
# Single column
# ============================================================================

class TestColumnAggregation:
    def test_constant_column_has_single_bin(self, make_executor):
        executor, client = make_executor(**{"AS min_val": [{"min_val": 7, "max_val": 7}]})
        result = asyncio.run(executor.get_column_aggregation("ds1", "t_samples", "purity", "survival_time"))

        assert result.normalized_display_type == "numeric"
        assert len(result.histogram) == 1
        assert result.histogram[0].bin_start == 7
        assert result.histogram[0].count == 100
        assert result.histogram[0].percentage == 100.0
        assert client.sql_containing("AS bin_index") == []

    def test_all_null_column_has_no_histogram(self, make_executor):
        executor, _ = make_executor(**{"AS min_val": [{"min_val": None, "max_val": None}]})
        result = asyncio.run(executor.get_column_aggregation("ds1", "t_samples", "purity", "numeric"))
        assert result.histogram == []

    def test_geographic_limit(self, make_executor):
        executor, client = make_executor()
        asyncio.run(executor.get_column_aggregation("ds1", "t_samples", "sample_type", "geographic"))
        assert "LIMIT 100" in client.sql_containing("AS display_value")[0]

    def test_survival_status_is_categorical(self, make_executor):
        executor, _ = make_executor()
        result = asyncio.run(executor.get_column_aggregation("ds1", "t_samples", "sample_type", "survival_status"))
        assert result.normalized_display_type == "categorical"
        assert result.categories is not None

    def test_preloaded_tables_skip_catalog_load(self, make_executor, clinical_tables):
        executor, client = make_executor()
        asyncio.run(executor.get_column_aggregation(
            "ds1", "t_samples", "sample_type", "categorical",
            tables=clinical_tables, selection=ParentSelection("patients"),
        ))
        assert client.sql_containing("FROM biai.table_relationships") == []
        assert client.sql_containing("uniq(ancestor_0.patient_id)")

    def test_rejects_unsafe_column_name(self, make_executor):
        executor, client = make_executor()
        with pytest.raises(InvalidColumnError):
            asyncio.run(executor.get_column_aggregation("ds1", "t_samples", "purity) FROM x --", "numeric"))
        assert client.sql_containing("FROM x --") == []

    def test_text_column_without_chart(self, make_executor):
        executor, client = make_executor()
        result = asyncio.run(executor.get_column_aggregation("ds1", "t_samples", "notes", "text"))
        assert result.categories is None
        assert result.numeric_stats is None
        assert client.sql_containing("AS display_value") == []


# ============================================================================
# Survival curve
# ============================================================================

class TestSurvivalCurve:
    def test_curve_from_grouped_rows(self, make_executor):
        executor, client = make_executor(**{"AS time_val": [
            {"time_val": 1, "events": 1, "censored": 0},
            {"time_val": 2, "events": 1, "censored": 1},
            {"time_val": 3, "events": 0, "censored": 1},
        ]})
        curve = asyncio.run(executor.get_survival_curve("ds1", "t_patients", "os_months", "os_status"))

        assert [p.at_risk for p in curve] == [4, 3, 1]
        assert curve[-1].survival == pytest.approx(0.5)
        sql = client.sql_containing("AS time_val")[0]
        assert "GROUP BY time_val" in sql
        assert "'deceased'" in sql

    def test_rejects_unsafe_status_column(self, make_executor):
        executor, client = make_executor()
        with pytest.raises(InvalidColumnError):
            asyncio.run(executor.get_survival_curve("ds1", "t_patients", "os_months", "os_status; DROP TABLE x"))
        assert client.sql_containing("DROP TABLE") == []
