"""Read dataset tables, relationships and columns from the store's catalog tables."""
from __future__ import annotations

import logging
from typing import Any

from ..integrations.clickhouse_client import ClickHouseClient, ClickHouseClientError
from .errors import StoreQueryError, TableNotFoundError
from .models import DEFAULT_DATABASE, DatasetColumn, TableMetadata, TableRelationship

logger = logging.getLogger(__name__)


class MetadataRepository:
    """Catalog reads for one request. Nothing is cached between calls."""

    def __init__(self, client: ClickHouseClient, database: str = DEFAULT_DATABASE) -> None:
        self._client = client
        self._database = database

    @property
    def database(self) -> str:
        return self._database

    async def fetch_rows(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        try:
            return await self._client.query_async(sql, params)
        except ClickHouseClientError as exc:
            raise StoreQueryError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Tables and relationships
    # ------------------------------------------------------------------

    async def load_dataset_tables(self, dataset_id: str) -> list[TableMetadata]:
        db = self._database
        params = {"datasetId": dataset_id}
        tables = await self.fetch_rows(
            f"SELECT table_id, table_name, clickhouse_table_name, row_count "
            f"FROM {db}.dataset_tables WHERE dataset_id = {{datasetId:String}}",
            params,
        )
        relationships = await self.fetch_rows(
            f"SELECT table_id, foreign_key, referenced_table, referenced_column, relationship_type "
            f"FROM {db}.table_relationships WHERE dataset_id = {{datasetId:String}}",
            params,
        )
        columns = await self.fetch_rows(
            f"SELECT table_id, column_name, display_type "
            f"FROM {db}.dataset_columns WHERE dataset_id = {{datasetId:String}}",
            params,
        )

        rels_by_table: dict[str, list[TableRelationship]] = {}
        for row in relationships:
            rels_by_table.setdefault(str(row["table_id"]), []).append(TableRelationship(
                foreign_key=row["foreign_key"],
                referenced_table=row["referenced_table"],
                referenced_column=row["referenced_column"],
                type=row.get("relationship_type"),
            ))
        cols_by_table: dict[str, dict[str, str]] = {}
        for row in columns:
            cols_by_table.setdefault(str(row["table_id"]), {})[row["column_name"]] = row["display_type"]

        metadata = [
            TableMetadata(
                table_name=row["table_name"],
                clickhouse_table_name=row["clickhouse_table_name"],
                relationships=tuple(rels_by_table.get(str(row["table_id"]), ())),
                columns=cols_by_table.get(str(row["table_id"])),
                table_id=str(row["table_id"]),
                row_count=_as_int(row.get("row_count")),
            )
            for row in tables
        ]
        logger.debug("Loaded %d table(s) for dataset %s", len(metadata), dataset_id)
        return metadata

    async def get_table(self, dataset_id: str, table_id: str) -> TableMetadata:
        rows = await self.fetch_rows(
            f"SELECT table_id, table_name, clickhouse_table_name, row_count "
            f"FROM {self._database}.dataset_tables "
            f"WHERE dataset_id = {{datasetId:String}} AND table_id = {{tableId:String}} LIMIT 1",
            {"datasetId": dataset_id, "tableId": table_id},
        )
        if not rows:
            raise TableNotFoundError(f"Table {table_id} not found in dataset {dataset_id}")
        row = rows[0]
        return TableMetadata(
            table_name=row["table_name"],
            clickhouse_table_name=row["clickhouse_table_name"],
            table_id=str(row["table_id"]),
            row_count=_as_int(row.get("row_count")),
        )

    # ------------------------------------------------------------------
    # Columns
    # ------------------------------------------------------------------

    async def list_visible_columns(self, dataset_id: str, table_id: str) -> list[DatasetColumn]:
        rows = await self.fetch_rows(
            f"SELECT column_name, display_type, is_hidden "
            f"FROM {self._database}.dataset_columns "
            f"WHERE dataset_id = {{datasetId:String}} AND table_id = {{tableId:String}} "
            f"AND is_hidden = false ORDER BY created_at DESC",
            {"datasetId": dataset_id, "tableId": table_id},
        )
        return [
            DatasetColumn(
                column_name=row["column_name"],
                display_type=row["display_type"],
                is_hidden=bool(row.get("is_hidden", False)),
            )
            for row in rows
        ]

    async def get_physical_columns(self, physical_table: str) -> set[str] | None:
        """Column names of a physical table, or None when the catalog has none."""
        if "." in physical_table:
            database, table = physical_table.split(".", 1)
        else:
            database, table = self._database, physical_table
        rows = await self.fetch_rows(
            "SELECT name FROM system.columns "
            "WHERE database = {database:String} AND table = {table:String}",
            {"database": database, "table": table},
        )
        if not rows:
            return None
        return {row["name"] for row in rows}


def _as_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
