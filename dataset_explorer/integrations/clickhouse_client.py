"""
ClickHouse HTTP interface client.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from typing import Any

import requests

logger = logging.getLogger(__name__)


class ClickHouseClientError(Exception):
    pass


class ClickHouseClient:
    """Blocking ClickHouse client over HTTP with an async wrapper.

    Queries are sent as the POST body with ``FORMAT JSONEachRow`` appended.
    Named parameters travel as ``param_<name>`` and are referenced in SQL as
    ``{name:Type}``. There is no retry.
    """

    def __init__(
        self,
        base_url: str,
        database: str = "default",
        username: str | None = None,
        password: str | None = None,
        timeout_seconds: int = 30,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._database = database
        self._username = username
        self._password = password
        self._timeout = timeout_seconds

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "text/plain; charset=utf-8"}
        if self._username:
            headers["X-ClickHouse-User"] = self._username
        if self._password:
            headers["X-ClickHouse-Key"] = self._password
        return headers

    def _params(self, params: dict[str, Any] | None, query_id: str | None) -> dict[str, Any]:
        query_params: dict[str, Any] = {
            "database": self._database,
            "output_format_json_quote_64bit_integers": 0,
            "cancel_http_readonly_queries_on_client_close": 1,
        }
        if query_id:
            query_params["query_id"] = query_id
        for name, value in (params or {}).items():
            query_params[f"param_{name}"] = value
        return query_params

    def query(self, sql: str, params: dict[str, Any] | None = None, query_id: str | None = None) -> list[dict[str, Any]]:
        body = f"{sql.rstrip().rstrip(';')}\nFORMAT JSONEachRow"
        logger.debug("ClickHouse query %s: %s", query_id or "-", sql)
        try:
            resp = requests.post(
                self._base_url,
                params=self._params(params, query_id),
                data=body.encode("utf-8"),
                headers=self._headers(),
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            logger.error("ClickHouse request failed: %s", exc)
            raise ClickHouseClientError(f"ClickHouse request failed: {exc}") from exc

        if resp.status_code != 200:
            message = resp.text.strip()[:500]
            logger.error("ClickHouse returned %s: %s", resp.status_code, message)
            raise ClickHouseClientError(f"ClickHouse returned status {resp.status_code}: {message}")

        rows: list[dict[str, Any]] = []
        for line in resp.text.splitlines():
            if not line.strip():
                continue
            try:
                rows.append(json.loads(line))
            except json.JSONDecodeError as exc:
                raise ClickHouseClientError(f"Malformed JSONEachRow line: {line[:200]!r}") from exc
        return rows

    async def query_async(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Run ``query`` in a worker thread; kill the server query if cancelled."""
        query_id = uuid.uuid4().hex
        try:
            return await asyncio.to_thread(self.query, sql, params, query_id)
        except asyncio.CancelledError:
            loop = asyncio.get_running_loop()
            kill = loop.run_in_executor(None, self.kill_query, query_id)
            kill.add_done_callback(_log_kill_failure)
            raise

    def kill_query(self, query_id: str) -> None:
        try:
            requests.post(
                self._base_url,
                params={"database": self._database},
                data=f"KILL QUERY WHERE query_id = '{query_id}' ASYNC".encode("utf-8"),
                headers=self._headers(),
                timeout=5,
            )
        except requests.RequestException as exc:
            logger.warning("Failed to cancel ClickHouse query %s: %s", query_id, exc)

    async def check_health(self) -> tuple[bool, str, int | None]:
        """Check if ClickHouse answers on /ping."""
        try:
            start = time.perf_counter()
            resp = await asyncio.to_thread(lambda: requests.get(f"{self._base_url}/ping", timeout=5))
            latency_ms = int((time.perf_counter() - start) * 1000)
            if resp.status_code == 200:
                return True, "ClickHouse is reachable", latency_ms
            return False, f"ClickHouse returned status {resp.status_code}", None
        except requests.RequestException as e:
            return False, str(e), None


def _log_kill_failure(future: asyncio.Future) -> None:
    if not future.cancelled() and future.exception() is not None:
        logger.warning("Cancelling ClickHouse query failed: %s", future.exception())
