"""
Client for a running supervisor's API.

The CLI uses it to run jobs against nodes supervised by another process.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from ethnode.jobs import JobResult, RestartParams

from .server import API_PREFIX

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://127.0.0.1:9650"
"""Where the supervisor's API listens by default."""

DEFAULT_TIMEOUT = 120.0
"""HTTP request timeout in seconds. A restart waits for the node to get ready."""


class ApiClientError(Exception):
    """
    Error talking to the supervisor API.

    Raised for transport failures, unknown nodes and rejected requests.
    A job that ran and failed is not an error; it returns success=False.
    """


@dataclass(frozen=True, slots=True)
class ApiClient:
    """Runs jobs through a supervisor's HTTP API."""

    base_url: str = DEFAULT_API_URL
    """Base URL of the supervisor API."""

    timeout: float = DEFAULT_TIMEOUT
    """Request timeout in seconds."""

    transport: httpx.AsyncBaseTransport | None = None
    """Custom transport, e.g. httpx.ASGITransport or a mock in tests."""

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self.base_url.rstrip('/')}{API_PREFIX}{path}"
        logger.debug("%s %s", method, url)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(method, url, **kwargs)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as exc:
            raise ApiClientError(
                f"HTTP error {exc.response.status_code}: {exc.response.text[:200]}"
            ) from exc
        except httpx.RequestError as exc:
            raise ApiClientError(f"Network error while connecting to {url}: {exc}") from exc

    async def nodes(self) -> list[dict[str, Any]]:
        """Status of every supervised node."""
        return (await self._request("GET", "/nodes"))["nodes"]

    async def status(self, node: str) -> JobResult:
        return JobResult.model_validate(await self._request("GET", f"/nodes/{node}/status"))

    async def health(self, node: str) -> JobResult:
        return JobResult.model_validate(await self._request("GET", f"/nodes/{node}/health"))

    async def logs(self, node: str, tail: int | None = None) -> JobResult:
        params = {} if tail is None else {"tail": tail}
        payload = await self._request("GET", f"/nodes/{node}/logs", params=params)
        return JobResult.model_validate(payload)

    async def restart(self, node: str, params: RestartParams | None = None) -> JobResult:
        body = (params or RestartParams()).model_dump(exclude_none=True)
        payload = await self._request("POST", f"/nodes/{node}/restart", json=body)
        return JobResult.model_validate(payload)

    async def stop(self, node: str) -> JobResult:
        return JobResult.model_validate(await self._request("POST", f"/nodes/{node}/stop"))
