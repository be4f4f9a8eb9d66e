"""HTTP client for the clinic record API.

This module provides the RecordStoreClient class, the only way the
assistant's tools touch clinic records. It wraps the CRUD routes that
clinic_agent.app exposes for every resource kind:

    GET    /api/{kind}         -> list every record of that kind
    GET    /api/{kind}/{id}    -> one record (404 if absent)
    POST   /api/{kind}         -> create (server assigns id and meta)
    PUT    /api/{kind}/{id}    -> shallow update (404 if absent)
    DELETE /api/{kind}/{id}    -> delete (404 if absent)

"Not found" is a normal answer, not an error: get() and update() return
None, delete() returns False. Everything else that goes wrong (connection
refused, a 500 from the server) raises RecordStoreError.

Usage:
    client = await get_client()
    patient = await client.get(ResourceKind.PATIENTS, "pat-123")
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from clinic_agent.config import CLINIC_API_BASE_URL, REQUEST_TIMEOUT
from clinic_agent.fhir import ResourceKind

logger = logging.getLogger(__name__)


class RecordStoreError(Exception):
    """Raised when a record API request fails for a reason other than 404.

    status_code is 0 when the request never got a response.
    """

    def __init__(self, status_code: int, detail: str) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"HTTP {status_code}: {detail}")


class RecordStoreClient:
    """Async HTTP client for the clinic record API.

    Attributes:
        base_url: The clinic service URL (e.g., "http://localhost:8000").
        api_base: Full API base URL (e.g., "http://localhost:8000/api").
    """

    def __init__(
        self,
        base_url: str = CLINIC_API_BASE_URL,
        timeout: float = REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_base = f"{self.base_url}/api"

        # transport is only passed in tests (httpx.MockTransport) or when
        # the client is pointed straight at the ASGI app.
        self._http = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._http.aclose()

    # --- CRUD ---

    async def list(self, kind: ResourceKind) -> list[dict[str, Any]]:
        """Fetch every record of a kind."""
        data = await self._request("GET", f"/{kind.value}")
        if isinstance(data, list):
            return data
        # A single object is still a collection of one
        return [data] if data else []

    async def get(self, kind: ResourceKind, resource_id: str) -> dict[str, Any] | None:
        """Fetch one record, or None if it doesn't exist."""
        return await self._request("GET", _record_path(kind, resource_id), allow_404=True)

    async def create(self, kind: ResourceKind, resource: dict[str, Any]) -> dict[str, Any]:
        """Create a record. The server assigns its id and version stamp."""
        return await self._request("POST", f"/{kind.value}", json_data=resource)

    async def update(
        self,
        kind: ResourceKind,
        resource_id: str,
        updates: dict[str, Any],
    ) -> dict[str, Any] | None:
        """Shallow-update a record, or return None if it doesn't exist."""
        return await self._request(
            "PUT", _record_path(kind, resource_id), json_data=updates, allow_404=True
        )

    async def delete(self, kind: ResourceKind, resource_id: str) -> bool:
        """Delete a record. Returns False if it didn't exist."""
        data = await self._request("DELETE", _record_path(kind, resource_id), allow_404=True)
        return data is not None

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: dict[str, Any] | None = None,
        allow_404: bool = False,
    ) -> Any:
        """Send a request to the record API and decode the JSON body.

        Args:
            method: HTTP method.
            endpoint: API path relative to api_base.
            json_data: JSON body for POST/PUT.
            allow_404: Return None on 404 instead of raising.

        Raises:
            RecordStoreError: On transport failure or a non-2xx status.
        """
        url = f"{self.api_base}{endpoint}"
        logger.debug("%s %s", method, url)

        try:
            response = await self._http.request(method, url, json=json_data)
        except httpx.HTTPError as exc:
            raise RecordStoreError(
                status_code=0,
                detail=f"Request to {url} failed: {exc}",
            ) from exc

        if response.status_code == 404 and allow_404:
            return None

        if response.status_code >= 400:
            raise RecordStoreError(
                status_code=response.status_code,
                detail=_error_detail(response),
            )

        return response.json()


def _record_path(kind: ResourceKind, resource_id: str) -> str:
    # Ids come from model output; "a?b" or "Patient/x" must stay one segment
    return f"/{kind.value}/{quote(str(resource_id), safe='')}"


def _error_detail(response: httpx.Response) -> str:
    """Pull FastAPI's {"detail": ...} out of an error body if present."""
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return response.text


# --- Module-level singleton ---
# FastAPI and the orchestration loop run in a single event loop, so one
# client instance is shared. Each tool function calls get_client().

_client: RecordStoreClient | None = None


async def get_client() -> RecordStoreClient:
    """Get or create the shared RecordStoreClient singleton."""
    global _client  # noqa: PLW0603
    if _client is None:
        _client = RecordStoreClient()
    return _client
