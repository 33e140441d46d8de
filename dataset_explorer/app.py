"""
FastAPI application for the dataset explorer aggregation API.

Routes parse query strings and delegate to the aggregation executor.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Literal

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .analytics import (
    AggregationExecutor,
    AnalyticsError,
    ColumnAggregation,
    ErrorCode,
    InvalidFilterError,
    MetadataRepository,
    SurvivalCurvePoint,
    parse_count_by,
)
from .config import get_settings
from .integrations import ClickHouseClient
from .logging_config import configure_logging

logger = logging.getLogger(__name__)

app = FastAPI(title="Dataset Explorer", version="1.0.0", docs_url="/docs", redoc_url="/redoc", openapi_url="/openapi.json")
app.add_middleware(CORSMiddleware, allow_origins=list(get_settings().cors_origins), allow_credentials=True, allow_methods=["*"], allow_headers=["*"])


# ============================================================================
# Pydantic Models
# ============================================================================

class AggregationsResponse(BaseModel):
    aggregations: list[ColumnAggregation]


class ColumnAggregationResponse(BaseModel):
    aggregation: ColumnAggregation


class SurvivalCurveResponse(BaseModel):
    curve: list[SurvivalCurvePoint]


class HealthResponse(BaseModel):
    status: Literal["healthy", "degraded"]
    clickhouse: bool
    message: str
    latency_ms: int | None = None


# ============================================================================
# Service Factories
# ============================================================================

def _clickhouse_client() -> ClickHouseClient:
    s = get_settings()
    return ClickHouseClient(s.clickhouse_host, s.clickhouse_database, s.clickhouse_user, s.clickhouse_password, s.request_timeout_s)


def _metadata_repo() -> MetadataRepository:
    return MetadataRepository(_clickhouse_client(), get_settings().clickhouse_database)


def _executor() -> AggregationExecutor:
    return AggregationExecutor(_metadata_repo(), get_settings())


def _parse_filters_param(raw: str | None) -> Any:
    if raw is None or not raw.strip():
        return []
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidFilterError(f"filters is not valid JSON: {exc.msg}") from exc


def _http_error(exc: AnalyticsError) -> HTTPException:
    if exc.status_code >= 500:
        logger.error("Aggregation request failed: %s", exc)
    return HTTPException(exc.status_code, {"code": exc.code, "message": str(exc)})


@app.on_event("startup")
async def startup() -> None:
    configure_logging(get_settings().log_level)


# ============================================================================
# Aggregation Routes
# ============================================================================

@app.get("/api/datasets/{dataset_id}/tables/{table_id}/aggregations", response_model=AggregationsResponse)
async def get_table_aggregations(
    dataset_id: str,
    table_id: str,
    filters: str | None = Query(None),
    count_by: str | None = Query(None, alias="countBy"),
) -> AggregationsResponse:
    try:
        parsed = _parse_filters_param(filters)
        selection = parse_count_by(count_by)
        aggregations = await _executor().get_table_aggregations(dataset_id, table_id, parsed, selection)
    except AnalyticsError as e:
        raise _http_error(e)
    return AggregationsResponse(aggregations=aggregations)


@app.get("/api/datasets/{dataset_id}/tables/{table_id}/columns/{column_name}/aggregation", response_model=ColumnAggregationResponse)
async def get_column_aggregation(
    dataset_id: str,
    table_id: str,
    column_name: str,
    display_type: str | None = Query(None, alias="displayType"),
    filters: str | None = Query(None),
    count_by: str | None = Query(None, alias="countBy"),
) -> ColumnAggregationResponse:
    if not display_type:
        raise HTTPException(400, {"code": ErrorCode.MISSING_PARAMETER, "message": "displayType query parameter is required"})
    try:
        parsed = _parse_filters_param(filters)
        selection = parse_count_by(count_by)
        aggregation = await _executor().get_column_aggregation(
            dataset_id, table_id, column_name, display_type, parsed, selection=selection,
        )
    except AnalyticsError as e:
        raise _http_error(e)
    return ColumnAggregationResponse(aggregation=aggregation)


@app.get("/api/datasets/{dataset_id}/tables/{table_id}/survival", response_model=SurvivalCurveResponse)
async def get_survival_curve(
    dataset_id: str,
    table_id: str,
    time_column: str = Query(..., alias="timeColumn"),
    status_column: str = Query(..., alias="statusColumn"),
    filters: str | None = Query(None),
    count_by: str | None = Query(None, alias="countBy"),
) -> SurvivalCurveResponse:
    try:
        parsed = _parse_filters_param(filters)
        selection = parse_count_by(count_by)
        curve = await _executor().get_survival_curve(dataset_id, table_id, time_column, status_column, parsed, selection)
    except AnalyticsError as e:
        raise _http_error(e)
    return SurvivalCurveResponse(curve=curve)


# ============================================================================
# Health Routes
# ============================================================================

@app.get("/api/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    ok, message, latency_ms = await _clickhouse_client().check_health()
    return HealthResponse(status="healthy" if ok else "degraded", clickhouse=ok, message=message, latency_ms=latency_ms)
