"""Integrations layer for dataset-explorer."""
from .clickhouse_client import ClickHouseClient, ClickHouseClientError

__all__ = ["ClickHouseClient", "ClickHouseClientError"]
