"""
Subscription, region and custom role resolution for the orchestrator.
"""

from __future__ import annotations

import logging

from ..arm.client import ArmClient
from ..config import ARM_API_VERSIONS

logger = logging.getLogger("custom_role_validator.environment.resolver")


class ConfigurationError(Exception):
    """Raised when the run cannot be resolved to one subscription/region/role."""
    pass


async def resolve_subscription(arm: ArmClient, subscription_id: str = "") -> dict:
    """
    Return the subscription record. Without an explicit id, the caller must
    have access to exactly one enabled subscription.
    """
    api_version = ARM_API_VERSIONS["subscriptions"]
    if subscription_id:
        sub = await arm.get(f"/subscriptions/{subscription_id}", api_version)
        if sub.get("_not_found"):
            raise ConfigurationError(f"Subscription {subscription_id} not found or not accessible")
        return sub

    enabled = [
        s for s in await arm.list_all("/subscriptions", api_version)
        if s.get("state") == "Enabled"
    ]
    if not enabled:
        raise ConfigurationError("No enabled subscriptions are visible to the administrator identity")
    if len(enabled) > 1:
        names = ", ".join(f"{s.get('displayName')} ({s.get('subscriptionId')})" for s in enabled[:10])
        raise ConfigurationError(
            f"{len(enabled)} subscriptions are visible; choose one with --subscription-id: {names}"
        )
    logger.info(f"Resolved subscription {enabled[0].get('subscriptionId')}")
    return enabled[0]


async def validate_region(arm: ArmClient, subscription_id: str, region: str) -> str:
    """Normalize `region` to its ARM location name, or raise if unavailable."""
    locations = await arm.list_all(
        f"/subscriptions/{subscription_id}/locations", ARM_API_VERSIONS["subscriptions"]
    )
    wanted = region.replace(" ", "").lower()
    for loc in locations:
        if wanted in (str(loc.get("name", "")).lower(), str(loc.get("displayName", "")).replace(" ", "").lower()):
            return loc["name"]
    raise ConfigurationError(f"Region '{region}' is not available in subscription {subscription_id}")


async def resolve_custom_role(arm: ArmClient, subscription_id: str, role_name: str) -> dict:
    """Find the custom role under test by display name at subscription scope."""
    roles = await arm.list_all(
        f"/subscriptions/{subscription_id}/providers/Microsoft.Authorization/roleDefinitions",
        ARM_API_VERSIONS["role_definitions"],
        params={"$filter": f"roleName eq '{role_name}'"},
    )
    if not roles:
        raise ConfigurationError(f"Role definition '{role_name}' not found in subscription {subscription_id}")
    role = roles[0]
    role_type = role.get("properties", {}).get("type", "")
    if role_type != "CustomRole":
        logger.warning(f"Role '{role_name}' is a {role_type or 'non-custom'} role; testing it anyway")
    return role
