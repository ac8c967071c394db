"""
Async Microsoft Graph client used for the test service principal lifecycle
(app registration, service principal, client secret).
"""

from __future__ import annotations

import logging
from typing import Optional

from ..arm.client import ApiError, RestClient
from ..config import GRAPH_API_VERSION, GRAPH_BASE_URL, MAX_PAGES_PER_ENDPOINT

logger = logging.getLogger("custom_role_validator.graph")


class GraphAPIError(ApiError):
    service = "Graph API"


class GraphClient(RestClient):
    """Microsoft Graph client addressed by relative endpoint."""

    error_class = GraphAPIError

    def _build_url(self, endpoint: str) -> str:
        if endpoint.startswith("http"):
            return endpoint
        return f"{GRAPH_BASE_URL}/{GRAPH_API_VERSION}/{endpoint.lstrip('/')}"

    async def _call(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> dict:
        url = self._build_url(endpoint)
        response = await self._send(method, url, params=params, json_body=json_body)

        if response.status_code == 404 and method in ("GET", "DELETE"):
            logger.debug(f"404 Not Found: {method} {endpoint}")
            return {"_not_found": True}
        if response.status_code >= 400:
            raise self._error_from(response, url)
        return self._parse_json(response)

    async def get(self, endpoint: str, params: Optional[dict] = None) -> dict:
        return await self._call("GET", endpoint, params=params)

    async def post(self, endpoint: str, body: dict) -> dict:
        return await self._call("POST", endpoint, json_body=body)

    async def delete(self, endpoint: str) -> dict:
        return await self._call("DELETE", endpoint)

    async def list_all(self, endpoint: str, params: Optional[dict] = None) -> list[dict]:
        """Fetch all pages of a collection following @odata.nextLink."""
        items: list[dict] = []
        url: Optional[str] = endpoint
        pages = 0
        while url and pages < MAX_PAGES_PER_ENDPOINT:
            data = await self._call("GET", url, params=params)
            items.extend(data.get("value", []))
            url = data.get("@odata.nextLink")
            params = None  # nextLink contains all params
            pages += 1
        return items
