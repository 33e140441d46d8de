from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any
import os

from dotenv import load_dotenv

load_dotenv()


def _getenv_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _normalize_log_level(raw: str | None) -> str:
    value = (raw or "INFO").strip().upper()
    return value if value in {"DEBUG", "INFO", "WARNING", "ERROR"} else "INFO"


def _split_origins(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ("http://localhost:5173", "http://127.0.0.1:5173")
    return tuple(o.strip() for o in raw.split(",") if o.strip())


@dataclass(frozen=True)
class Settings:
    clickhouse_host: str
    clickhouse_database: str
    clickhouse_user: str | None
    clickhouse_password: str | None
    request_timeout_s: int
    category_limit: int
    geographic_category_limit: int
    histogram_bins: int
    max_concurrent_columns: int
    log_level: str
    cors_origins: tuple[str, ...]


settings = Settings(
    clickhouse_host=os.getenv("CLICKHOUSE_HOST", "http://localhost:8123"),
    clickhouse_database=os.getenv("CLICKHOUSE_DATABASE", "biai"),
    clickhouse_user=os.getenv("CLICKHOUSE_USER"),
    clickhouse_password=os.getenv("CLICKHOUSE_PASSWORD"),
    request_timeout_s=_getenv_int("REQUEST_TIMEOUT_S", 30),
    category_limit=_getenv_int("CATEGORY_LIMIT", 50),
    geographic_category_limit=_getenv_int("GEOGRAPHIC_CATEGORY_LIMIT", 100),
    histogram_bins=_getenv_int("HISTOGRAM_BINS", 20),
    max_concurrent_columns=_getenv_int("MAX_CONCURRENT_COLUMNS", 8),
    log_level=_normalize_log_level(os.getenv("LOG_LEVEL")),
    cors_origins=_split_origins(os.getenv("CORS_ORIGINS")),
)

_RUNTIME_OVERRIDES: dict[str, Any] = {}

_INT_FIELDS = {
    "request_timeout_s",
    "category_limit",
    "geographic_category_limit",
    "histogram_bins",
    "max_concurrent_columns",
}


def get_settings() -> Settings:
    if not _RUNTIME_OVERRIDES:
        return settings
    return replace(settings, **_RUNTIME_OVERRIDES)


def update_settings(overrides: dict[str, Any]) -> Settings:
    normalized: dict[str, Any] = {}
    for key, value in overrides.items():
        if value is None:
            continue
        if key == "log_level":
            normalized[key] = _normalize_log_level(str(value))
        elif key in _INT_FIELDS:
            normalized[key] = int(value)
        elif key == "cors_origins":
            normalized[key] = tuple(value)
        else:
            normalized[key] = value
    _RUNTIME_OVERRIDES.update(normalized)
    return get_settings()


def reset_settings() -> Settings:
    _RUNTIME_OVERRIDES.clear()
    return settings
