"""Shared fixtures: a four-table clinical dataset and an in-memory ClickHouse stand-in."""
from __future__ import annotations

from typing import Any

import pytest

from dataset_explorer.analytics.metadata_repository import MetadataRepository
from dataset_explorer.analytics.models import TableMetadata, TableRelationship
from dataset_explorer.integrations.clickhouse_client import ClickHouseClientError


# ============================================================================
# Dataset metadata
# ============================================================================

@pytest.fixture
def clinical_tables() -> list[TableMetadata]:
    """mutations -> samples -> patients -> hospitals, plus an unrelated table."""
    return [
        TableMetadata(
            table_name="hospitals",
            clickhouse_table_name="hospitals_abc123",
            table_id="t_hospitals",
            row_count=5,
        ),
        TableMetadata(
            table_name="patients",
            clickhouse_table_name="patients_abc123",
            relationships=(TableRelationship("hospital_id", "hospitals", "hospital_id", "many-to-one"),),
            table_id="t_patients",
            row_count=50,
        ),
        TableMetadata(
            table_name="samples",
            clickhouse_table_name="samples_abc123",
            relationships=(TableRelationship("patient_id", "patients", "patient_id", "many-to-one"),),
            table_id="t_samples",
            row_count=100,
        ),
        TableMetadata(
            table_name="mutations",
            clickhouse_table_name="mutations_abc123",
            relationships=(TableRelationship("sample_id", "samples", "sample_id", "many-to-one"),),
            table_id="t_mutations",
            row_count=400,
        ),
        TableMetadata(
            table_name="audit_log",
            clickhouse_table_name="audit_log_abc123",
            table_id="t_audit",
            row_count=3,
        ),
    ]


# ============================================================================
# Fake store
# ============================================================================

class FakeClickHouseClient:
    """Replays canned rows for the first route whose marker occurs in the SQL."""

    def __init__(self, routes: list[tuple[str, list[dict[str, Any]]]] | None = None, fail_on: str | None = None) -> None:
        self.routes = list(routes or [])
        self.fail_on = fail_on
        self.queries: list[tuple[str, dict[str, Any] | None]] = []

    def query(self, sql: str, params: dict[str, Any] | None = None, query_id: str | None = None) -> list[dict[str, Any]]:
        self.queries.append((sql, params))
        if self.fail_on and self.fail_on in sql:
            raise ClickHouseClientError("Code: 60. DB::Exception: Table does not exist")
        for marker, rows in self.routes:
            if marker in sql:
                if callable(rows):
                    rows = rows(params or {})
                return [dict(r) for r in rows]
        return []

    async def query_async(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        return self.query(sql, params)

    def sql_containing(self, marker: str) -> list[str]:
        return [sql for sql, _ in self.queries if marker in sql]


def catalog_routes(tables: list[TableMetadata]) -> list[tuple[str, list[dict[str, Any]]]]:
    """Routes answering the catalog queries for ``tables``."""
    table_rows = [
        {
            "table_id": t.table_id,
            "table_name": t.table_name,
            "clickhouse_table_name": t.clickhouse_table_name,
            "row_count": t.row_count,
        }
        for t in tables
    ]
    relationship_rows = [
        {
            "table_id": t.table_id,
            "foreign_key": r.foreign_key,
            "referenced_table": r.referenced_table,
            "referenced_column": r.referenced_column,
            "relationship_type": r.type,
        }
        for t in tables
        for r in t.relationships
    ]
    by_id = {row["table_id"]: row for row in table_rows}

    def _one_table(params):
        row = by_id.get(params.get("tableId"))
        return [row] if row else []

    return [
        ("AND table_id = {tableId:String}", _one_table),
        ("FROM biai.table_relationships", relationship_rows),
        ("FROM biai.dataset_tables", table_rows),
    ]


@pytest.fixture
def fake_client_factory(clinical_tables):
    def _make(extra_routes=None, fail_on=None, tables=None) -> FakeClickHouseClient:
        routes = list(extra_routes or []) + catalog_routes(tables or clinical_tables)
        return FakeClickHouseClient(routes, fail_on=fail_on)
    return _make


@pytest.fixture
def repo_factory():
    def _make(client: FakeClickHouseClient) -> MetadataRepository:
        return MetadataRepository(client, "biai")
    return _make
