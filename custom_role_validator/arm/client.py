"""
Async Azure Resource Manager client with retry, throttling, pagination,
long-running operation polling, and scope enforcement.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional

import httpx

from ..config import (
    ARM_BASE_URL,
    BACKOFF_MULTIPLIER,
    MAX_CONCURRENT_REQUESTS,
    MAX_PAGES_PER_ENDPOINT,
    RETRYABLE_STATUS_CODES,
    RetryConfig,
)
from ..safety.guardian import ScopeGuardian

logger = logging.getLogger("custom_role_validator.arm")


class ApiError(Exception):
    """Raised when a management API returns a non-recoverable error."""
    service = "API"

    def __init__(self, status_code: int, message: str, url: str, code: str = ""):
        self.status_code = status_code
        self.code = code
        self.message = message
        self.url = url
        super().__init__(
            f"{self.service} Error {status_code} ({code or 'Unknown'}) for {url}: {message}"
        )


class ArmAPIError(ApiError):
    service = "ARM"


class RestClient:
    """
    Shared request engine for the ARM and Graph clients.
    Features:
      - Scope-validated requests (guardian runs before every call)
      - Exponential backoff on 429/5xx honouring Retry-After
      - Retry on transport timeouts and connection errors
      - Concurrent request semaphore
      - Long-running operation polling (Azure-AsyncOperation / Location)
    """

    error_class: type[ApiError] = ApiError

    def __init__(
        self,
        access_token: str,
        guardian: ScopeGuardian,
        retry: Optional[RetryConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token
        self.guardian = guardian
        self.retry = retry or RetryConfig()
        self._transport = transport
        self._semaphore = asyncio.Semaphore(MAX_CONCURRENT_REQUESTS)
        self._request_count = 0
        self._throttle_count = 0
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(60.0, connect=30.0),
            limits=httpx.Limits(
                max_connections=MAX_CONCURRENT_REQUESTS * 2,
                max_keepalive_connections=MAX_CONCURRENT_REQUESTS,
            ),
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _send(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> httpx.Response:
        """Validate scope, then execute with retry under the semaphore."""
        self.guardian.validate_request(method, url, json_body)
        async with self._semaphore:
            return await self._execute_with_retry(method, url, params=params, json_body=json_body)

    async def _execute_with_retry(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> httpx.Response:
        """Execute request with exponential backoff on throttling."""
        backoff = self.retry.http_initial_backoff
        max_retries = self.retry.http_max_retries
        response: Optional[httpx.Response] = None

        for attempt in range(max_retries + 1):
            try:
                response = await self._execute_raw(method, url, params=params, json_body=json_body)
                self._request_count += 1

                if response.status_code not in RETRYABLE_STATUS_CODES or attempt == max_retries:
                    return response

                self._throttle_count += 1
                wait_time = max(self._retry_after(response, backoff), backoff)
                logger.warning(
                    f"Throttled ({response.status_code}) on {method} {url}. "
                    f"Retry {attempt + 1}/{max_retries} in {wait_time:.1f}s"
                )
                await asyncio.sleep(wait_time)
                backoff = min(backoff * BACKOFF_MULTIPLIER, self.retry.http_max_backoff)

            except httpx.TimeoutException:
                logger.warning(f"Timeout on {method} {url}, attempt {attempt + 1}/{max_retries}")
                if attempt == max_retries:
                    raise
                await asyncio.sleep(backoff)
                backoff = min(backoff * BACKOFF_MULTIPLIER, self.retry.http_max_backoff)

            except httpx.ConnectError as e:
                logger.warning(f"Connection error on {method} {url}: {e}")
                if attempt == max_retries:
                    raise
                await asyncio.sleep(backoff)
                backoff = min(backoff * BACKOFF_MULTIPLIER, self.retry.http_max_backoff)

        assert response is not None
        return response

    async def _execute_raw(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> httpx.Response:
        """Execute raw HTTP request."""
        if not self._client:
            raise RuntimeError(f"{type(self).__name__} not initialized. Use 'async with' context.")
        return await self._client.request(method, url, params=params, json=json_body)

    @staticmethod
    def _retry_after(response: httpx.Response, default: float) -> float:
        try:
            return float(response.headers.get("Retry-After", default))
        except (TypeError, ValueError):
            return default

    @staticmethod
    def _parse_json(response: httpx.Response) -> dict:
        if not response.content or not response.content.strip():
            return {}
        try:
            data = response.json()
        except ValueError:
            logger.debug(f"Non-JSON body from {response.request.url}")
            return {}
        return data if isinstance(data, dict) else {"value": data}

    def _error_from(self, response: httpx.Response, url: str) -> ApiError:
        """Build the service error from an ARM/Graph error envelope."""
        body = self._parse_json(response)
        error = body.get("error", body)
        if not isinstance(error, dict):
            error = {"message": str(error)}
        code = str(error.get("code", "") or "")
        message = str(error.get("message", "") or response.text[:300] or response.reason_phrase)
        return self.error_class(response.status_code, message, url, code=code)

    async def _wait_for_operation(self, response: httpx.Response, url: str) -> dict:
        """Poll a long-running operation until it reaches a terminal state."""
        async_url = response.headers.get("Azure-AsyncOperation")
        location = response.headers.get("Location")
        deadline = time.monotonic() + self.retry.lro_timeout
        poll_url = async_url or location

        while True:
            if time.monotonic() > deadline:
                raise self.error_class(
                    408, f"Long-running operation timed out after {self.retry.lro_timeout:.0f}s",
                    poll_url, code="OperationTimeout",
                )
            await asyncio.sleep(self._retry_after(response, self.retry.lro_poll_interval))
            response = await self._send("GET", poll_url)

            if response.status_code >= 400:
                raise self._error_from(response, poll_url)

            if async_url:
                data = self._parse_json(response)
                status = str(data.get("status", "")).lower()
                if status == "succeeded":
                    return data
                if status in ("failed", "canceled", "cancelled"):
                    error = data.get("error") or {}
                    raise self.error_class(
                        response.status_code,
                        error.get("message", f"Operation {status}"),
                        url,
                        code=error.get("code", status.title()),
                    )
                logger.debug(f"Operation on {url} still {status or 'running'}")
            elif response.status_code != 202:
                return self._parse_json(response)

    def get_stats(self) -> dict:
        """Return client statistics."""
        return {
            "total_requests": self._request_count,
            "throttle_events": self._throttle_count,
        }


class ArmClient(RestClient):
    """
    Azure Resource Manager client addressed by resource id + api-version.

    GET and DELETE return {"_not_found": True} on 404 so callers can probe
    for existence; every other 4xx/5xx raises ArmAPIError.
    """

    error_class = ArmAPIError

    def __init__(self, *args, base_url: str = ARM_BASE_URL, **kwargs):
        super().__init__(*args, **kwargs)
        self.base_url = base_url.rstrip("/")

    def _build_url(self, resource_id: str) -> str:
        if resource_id.startswith("http"):
            return resource_id
        return f"{self.base_url}/{resource_id.lstrip('/')}"

    async def call(
        self,
        method: str,
        resource_id: str,
        api_version: str,
        body: Optional[dict] = None,
        params: Optional[dict] = None,
        wait: bool = True,
    ) -> dict:
        """Execute one ARM request and return the (final) response body."""
        method = method.upper()
        url = self._build_url(resource_id)
        query = {"api-version": api_version, **(params or {})}
        response = await self._send(method, url, params=query, json_body=body)

        if response.status_code == 404 and method in ("GET", "DELETE"):
            logger.debug(f"404 Not Found: {method} {resource_id}")
            return {"_not_found": True}

        if response.status_code >= 400:
            raise self._error_from(response, url)

        is_lro = response.status_code in (201, 202) and (
            "Azure-AsyncOperation" in response.headers or "Location" in response.headers
        )
        if wait and is_lro:
            result = await self._wait_for_operation(response, url)
            if method in ("PUT", "PATCH"):
                return await self.get(resource_id, api_version)
            return result

        return self._parse_json(response)

    async def get(self, resource_id: str, api_version: str, params: Optional[dict] = None) -> dict:
        return await self.call("GET", resource_id, api_version, params=params)

    async def put(self, resource_id: str, api_version: str, body: dict, wait: bool = True) -> dict:
        return await self.call("PUT", resource_id, api_version, body=body, wait=wait)

    async def patch(self, resource_id: str, api_version: str, body: dict, wait: bool = True) -> dict:
        return await self.call("PATCH", resource_id, api_version, body=body, wait=wait)

    async def post(
        self, resource_id: str, api_version: str, body: Optional[dict] = None, wait: bool = True
    ) -> dict:
        return await self.call("POST", resource_id, api_version, body=body, wait=wait)

    async def delete(self, resource_id: str, api_version: str, wait: bool = True) -> dict:
        return await self.call("DELETE", resource_id, api_version, wait=wait)

    async def list_all(
        self, resource_id: str, api_version: str, params: Optional[dict] = None
    ) -> list[dict]:
        """Fetch every page of a collection by following nextLink."""
        items: list[dict] = []
        url: Optional[str] = self._build_url(resource_id)
        query: Optional[dict] = {"api-version": api_version, **(params or {})}
        pages = 0

        while url and pages < MAX_PAGES_PER_ENDPOINT:
            response = await self._send("GET", url, params=query)
            if response.status_code >= 400:
                raise self._error_from(response, url)
            data = self._parse_json(response)
            items.extend(data.get("value", []))
            url = data.get("nextLink")
            query = None  # nextLink carries its own query string
            pages += 1

        if pages >= MAX_PAGES_PER_ENDPOINT:
            logger.warning(
                f"Pagination safety cap reached ({MAX_PAGES_PER_ENDPOINT} pages) for {resource_id}"
            )
        return items
