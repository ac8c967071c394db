"""
Linear retries with a fixed sleep, for Azure's eventual-consistency delays.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from ..arm.client import ApiError

logger = logging.getLogger("custom_role_validator.environment.retry")

T = TypeVar("T")

# A freshly created principal is not yet visible to ARM or to Entra sign-in
PRINCIPAL_DELAY_MARKERS = (
    "principalnotfound",
    "does not exist in the directory",
    "does not exist in directory",
    "aadsts700016",
    "aadsts7000215",
    "invalid client secret",
)

# Conflicts that clear once dependent deletes/updates settle
TRANSIENT_CONFLICT_CODES = {
    "scopelocked",
    "inusesubnetcannotbedeleted",
    "inuseroutetablecannotbedeleted",
    "inusenetworksecuritygroupcannotbedeleted",
    "publicipaddresscannotbedeleted",
    "anotheroperationinprogress",
    "retryableerror",
    "conflict",
    "principalnotfound",
    "resourcegroupbeingdeleted",
}


def looks_like_principal_delay(error: Exception) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in PRINCIPAL_DELAY_MARKERS)


def looks_like_transient_conflict(error: Exception) -> bool:
    if not isinstance(error, ApiError):
        return False
    if error.status_code in (409, 429):
        return True
    return (error.code or "").lower() in TRANSIENT_CONFLICT_CODES


async def retry_fixed(
    operation: Callable[[], Awaitable[T]],
    attempts: int,
    delay: float,
    should_retry: Callable[[Exception], bool],
    label: str = "operation",
) -> T:
    """
    Run operation up to `attempts` times, sleeping `delay` seconds between
    tries while should_retry(error) holds. The last error propagates.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if attempt == attempts or not should_retry(e):
                raise
            logger.info(f"{label}: attempt {attempt}/{attempts} failed ({e}); retrying in {delay:.0f}s")
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")
