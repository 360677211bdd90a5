"""
Async client for the remote analytic database.

The service accepts ``POST {"sql": ..., "source": ...}`` with an
``x-api-key`` header and answers with either a bare row list or an object
carrying the rows under ``data`` or ``rows``.  One client is shared by all
requests in a process; each call opens its own ``httpx.AsyncClient`` so no
connection state is shared between concurrent requests.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from chatloop.backends.base import BackendError

logger = logging.getLogger(__name__)


class AnalyticsClient:
    """
    Parameters
    ----------
    url:
        Query endpoint.
    api_key:
        Value for the ``x-api-key`` header (may be empty for local services).
    source:
        Engine name sent in the ``source`` field.
    timeout:
        HTTP timeout in seconds.  Tool-level timeouts are applied on top.
    transport:
        Optional ``httpx`` transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        url: str,
        api_key: str = "",
        source: str = "duckdb",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._source = source
        self._timeout = timeout
        self._transport = transport

    async def query(self, sql: str) -> list[dict[str, Any]]:
        """Run *sql* and return the result rows.  Raises ``BackendError``."""
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(
                    self._url,
                    json={"sql": sql, "source": self._source},
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            raise BackendError(f"Analytics request failed: {exc}", code="transport") from exc

        if resp.status_code >= 300:
            raise BackendError(_error_message(resp), code=f"http_{resp.status_code}")

        try:
            payload = resp.json()
        except ValueError as exc:
            raise BackendError("Analytics response was not JSON", code="decode") from exc

        if isinstance(payload, list):
            return payload
        if isinstance(payload, dict):
            return payload.get("data") or payload.get("rows") or []
        return []


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"HTTP {resp.status_code}"
