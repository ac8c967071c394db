"""
Environment Initializer — idempotently provisions the throwaway test environment.
Every resource is probed first; existing resources are reused, missing ones
are created and recorded on the shared context.
"""

from __future__ import annotations

import hashlib
import ipaddress
import logging
import re
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from ..arm.client import ArmAPIError, ArmClient
from ..config import ARM_API_VERSIONS, BUILTIN_ROLES, EnvironmentConfig, RetryConfig
from ..graph.client import GraphClient
from .context import SuiteContext
from .retry import looks_like_principal_delay, retry_fixed

logger = logging.getLogger("custom_role_validator.environment.initializer")

PRIVATE_DNS_ZONE = "privatelink.blob.core.windows.net"
SUITE_TAGS = {"purpose": "custom-role-validation", "createdBy": "custom-role-validator"}


class EnvironmentSetupError(Exception):
    """Raised when the test environment cannot be provisioned."""
    pass


def storage_account_name(prefix: str, subscription_id: str) -> str:
    """Globally unique, deterministic storage account name (3-24 lowercase alnum)."""
    base = re.sub(r"[^a-z0-9]", "", prefix.lower())[:16]
    digest = hashlib.sha1(f"{subscription_id}/{prefix}".encode("utf-8")).hexdigest()[:8]
    return (base + digest)[:24]


def assignment_name(scope: str, principal_id: str, role_definition_id: str) -> str:
    """Deterministic role assignment GUID so re-runs address the same assignment."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{scope.lower()}|{principal_id}|{role_definition_id.lower()}"))


def subnet_prefixes(address_space: str, count: int) -> list[str]:
    """First `count` /24 subnets of an address space."""
    network = ipaddress.ip_network(address_space, strict=False)
    prefixes = []
    for subnet in network.subnets(new_prefix=24):
        prefixes.append(str(subnet))
        if len(prefixes) == count:
            break
    return prefixes


class SetupResult:
    """Standardized record of one initialization run."""

    def __init__(self):
        self.metadata: dict[str, Any] = {
            "started_at": None,
            "completed_at": None,
            "duration_seconds": 0,
            "created": [],
            "reused": [],
        }

    def add_created(self, key: str):
        self.metadata["created"].append(key)
        logger.info(f"[setup] Created {key}")

    def add_reused(self, key: str):
        self.metadata["reused"].append(key)
        logger.info(f"[setup] Reusing existing {key}")


class EnvironmentInitializer:
    """
    Provisions, in order: resource group, service principal, custom role
    assignment, NSG, route table, hub/spoke VNets, public IPs, NAT gateway,
    storage account, decoy role assignment, storage lock, private DNS zone.
    """

    def __init__(
        self,
        arm: ArmClient,
        graph: GraphClient,
        context: SuiteContext,
        env_config: EnvironmentConfig,
        retry: RetryConfig,
    ):
        self.arm = arm
        self.graph = graph
        self.context = context
        self.env = env_config
        self.retry = retry
        self.result = SetupResult()

    async def initialize(self) -> SetupResult:
        """Run every provisioning step; any failure aborts with EnvironmentSetupError."""
        self.result.metadata["started_at"] = time.time()
        steps = [
            ("resource group", self._ensure_resource_group),
            ("service principal", self._ensure_service_principal),
            ("role assignment", self._ensure_role_assignment),
            ("network security group", self._ensure_network_security_group),
            ("route table", self._ensure_route_table),
            ("virtual networks", self._ensure_virtual_networks),
            ("public IPs", self._ensure_public_ips),
            ("NAT gateway", self._ensure_nat_gateway),
            ("storage account", self._ensure_storage_account),
            ("decoy role assignment", self._ensure_decoy_assignment),
            ("storage lock", self._ensure_storage_lock),
            ("private DNS zone", self._ensure_private_dns_zone),
        ]
        for label, step in steps:
            logger.info(f"[setup] Ensuring {label}...")
            try:
                await step()
            except EnvironmentSetupError:
                raise
            except Exception as e:
                raise EnvironmentSetupError(f"Failed to provision {label}: {e}") from e

        self.result.metadata["completed_at"] = time.time()
        self.result.metadata["duration_seconds"] = round(
            self.result.metadata["completed_at"] - self.result.metadata["started_at"], 2
        )
        return self.result

    # ── Generic idempotent PUT ──────────────────────────────────────────────

    async def _ensure(self, key: str, resource_id: str, api_version: str, body: dict) -> dict:
        """GET the resource; PUT it only when absent. Records the key on the context."""
        existing = await self.arm.get(resource_id, api_version)
        if not existing.get("_not_found"):
            self.context.set_resource(key, resource_id, created=False)
            self.result.add_reused(key)
            return existing

        created = await self.arm.put(resource_id, api_version, body, wait=True)
        self.context.set_resource(key, resource_id, created=True)
        self.result.add_created(key)
        return created

    def _rg_child(self, provider_path: str) -> str:
        return f"{self.context.resource_group_id}/providers/{provider_path}"

    # ── Steps ───────────────────────────────────────────────────────────────

    async def _ensure_resource_group(self):
        await self._ensure(
            "resource_group",
            self.context.resource_group_id,
            ARM_API_VERSIONS["resource_groups"],
            {
                "location": self.context.region,
                "tags": {**SUITE_TAGS, "runId": self.context.run_id},
            },
        )

    async def _ensure_service_principal(self):
        """App registration + service principal + a fresh client secret."""
        display_name = f"{self.context.prefix}-sp"
        guardian = self.graph.guardian

        apps = await self.graph.list_all(
            "applications", params={"$filter": f"displayName eq '{display_name}'"}
        )
        if apps:
            app = apps[0]
            self.result.add_reused("application")
        else:
            app = await self.graph.post("applications", {
                "displayName": display_name,
                "signInAudience": "AzureADMyOrg",
                "notes": "Throwaway principal for custom role validation",
            })
            self.result.add_created("application")
        guardian.allow_graph_object(app["id"], app["appId"])

        sps = await self.graph.list_all(
            "servicePrincipals", params={"$filter": f"appId eq '{app['appId']}'"}
        )
        if sps:
            sp = sps[0]
            self.result.add_reused("service_principal")
        else:
            sp = await self.graph.post("servicePrincipals", {"appId": app["appId"]})
            self.result.add_created("service_principal")
        guardian.allow_graph_object(sp["id"])

        expires = datetime.now(timezone.utc) + timedelta(days=self.env.secret_lifetime_days)
        secret = await self.graph.post(f"applications/{app['id']}/addPassword", {
            "passwordCredential": {
                "displayName": f"run-{self.context.run_id}",
                "endDateTime": expires.strftime("%Y-%m-%dT%H:%M:%SZ"),
            }
        })
        if not secret.get("secretText"):
            raise EnvironmentSetupError("Graph did not return a client secret for the test principal")

        self.context.client_secret = secret["secretText"]
        self.context.service_principal = {
            "display_name": display_name,
            "app_id": app["appId"],
            "object_id": sp["id"],
            "application_object_id": app["id"],
            "secret_key_id": secret.get("keyId", ""),
        }

    async def _ensure_assignment(self, key: str, scope: str, role_definition_id: str):
        """Create a role assignment for the test principal, tolerating replication delay."""
        principal_id = self.context.service_principal["object_id"]
        name = assignment_name(scope, principal_id, role_definition_id)
        resource_id = f"{scope}/providers/Microsoft.Authorization/roleAssignments/{name}"
        api_version = ARM_API_VERSIONS["role_assignments"]
        body = {
            "properties": {
                "roleDefinitionId": role_definition_id,
                "principalId": principal_id,
                "principalType": "ServicePrincipal",
            }
        }

        try:
            await retry_fixed(
                lambda: self._ensure(key, resource_id, api_version, body),
                attempts=self.retry.principal_attempts,
                delay=self.retry.principal_delay_seconds,
                should_retry=looks_like_principal_delay,
                label=f"role assignment {key}",
            )
        except ArmAPIError as e:
            if e.code != "RoleAssignmentExists":
                raise
            # Same principal/role/scope under a different assignment name
            existing = await self.arm.list_all(
                f"{scope}/providers/Microsoft.Authorization/roleAssignments",
                api_version,
                params={"$filter": f"principalId eq '{principal_id}'"},
            )
            for assignment in existing:
                props = assignment.get("properties", {})
                if props.get("roleDefinitionId", "").lower() == role_definition_id.lower():
                    self.context.set_resource(key, assignment["id"], created=False)
                    self.result.add_reused(key)
                    return
            raise

    async def _ensure_role_assignment(self):
        if not self.context.role_definition_id:
            raise EnvironmentSetupError("Custom role definition id has not been resolved")
        await self._ensure_assignment(
            "role_assignment", self.context.resource_group_id, self.context.role_definition_id
        )

    async def _ensure_network_security_group(self):
        await self._ensure(
            "nsg",
            self._rg_child(f"Microsoft.Network/networkSecurityGroups/{self.context.prefix}-nsg"),
            ARM_API_VERSIONS["network"],
            {"location": self.context.region, "properties": {"securityRules": []}},
        )

    async def _ensure_route_table(self):
        await self._ensure(
            "route_table",
            self._rg_child(f"Microsoft.Network/routeTables/{self.context.prefix}-rt"),
            ARM_API_VERSIONS["network"],
            {
                "location": self.context.region,
                "properties": {"disableBgpRoutePropagation": False, "routes": []},
            },
        )

    async def _ensure_virtual_networks(self):
        prefix = self.context.prefix
        api_version = ARM_API_VERSIONS["network"]

        hub_default, hub_workload = subnet_prefixes(self.env.hub_address_space, 2)
        hub_id = self._rg_child(f"Microsoft.Network/virtualNetworks/{prefix}-hub-vnet")
        await self._ensure("hub_vnet", hub_id, api_version, {
            "location": self.context.region,
            "properties": {
                "addressSpace": {"addressPrefixes": [self.env.hub_address_space]},
                "subnets": [
                    {
                        "name": "default",
                        "properties": {
                            "addressPrefix": hub_default,
                            "networkSecurityGroup": {"id": self.context.resource("nsg")},
                        },
                    },
                    {
                        "name": "workload",
                        "properties": {
                            "addressPrefix": hub_workload,
                            "routeTable": {"id": self.context.resource("route_table")},
                        },
                    },
                ],
            },
        })
        hub_created = "hub_vnet" in self.context.created
        self.context.set_resource("hub_default_subnet", f"{hub_id}/subnets/default", created=hub_created)
        self.context.set_resource("hub_workload_subnet", f"{hub_id}/subnets/workload", created=hub_created)

        (spoke_default,) = subnet_prefixes(self.env.spoke_address_space, 1)
        spoke_id = self._rg_child(f"Microsoft.Network/virtualNetworks/{prefix}-spoke-vnet")
        await self._ensure("spoke_vnet", spoke_id, api_version, {
            "location": self.context.region,
            "properties": {
                "addressSpace": {"addressPrefixes": [self.env.spoke_address_space]},
                "subnets": [{"name": "default", "properties": {"addressPrefix": spoke_default}}],
            },
        })
        self.context.set_resource(
            "spoke_default_subnet", f"{spoke_id}/subnets/default",
            created="spoke_vnet" in self.context.created,
        )

    def _public_ip_body(self) -> dict:
        return {
            "location": self.context.region,
            "sku": {"name": "Standard"},
            "properties": {
                "publicIPAllocationMethod": "Static",
                "publicIPAddressVersion": "IPv4",
            },
        }

    async def _ensure_public_ips(self):
        prefix = self.context.prefix
        api_version = ARM_API_VERSIONS["network"]
        await self._ensure(
            "public_ip",
            self._rg_child(f"Microsoft.Network/publicIPAddresses/{prefix}-pip"),
            api_version,
            self._public_ip_body(),
        )
        await self._ensure(
            "nat_public_ip",
            self._rg_child(f"Microsoft.Network/publicIPAddresses/{prefix}-nat-pip"),
            api_version,
            self._public_ip_body(),
        )

    async def _ensure_nat_gateway(self):
        await self._ensure(
            "nat_gateway",
            self._rg_child(f"Microsoft.Network/natGateways/{self.context.prefix}-natgw"),
            ARM_API_VERSIONS["network"],
            {
                "location": self.context.region,
                "sku": {"name": "Standard"},
                "properties": {
                    "idleTimeoutInMinutes": 4,
                    "publicIpAddresses": [{"id": self.context.resource("nat_public_ip")}],
                },
            },
        )

    async def _ensure_storage_account(self):
        name = storage_account_name(self.context.prefix, self.context.subscription_id)
        await self._ensure(
            "storage_account",
            self._rg_child(f"Microsoft.Storage/storageAccounts/{name}"),
            ARM_API_VERSIONS["storage"],
            {
                "location": self.context.region,
                "sku": {"name": "Standard_LRS"},
                "kind": "StorageV2",
                "properties": {
                    "minimumTlsVersion": "TLS1_2",
                    "allowBlobPublicAccess": False,
                    "supportsHttpsTrafficOnly": True,
                    "networkAcls": {"defaultAction": "Deny", "bypass": "AzureServices"},
                },
            },
        )

    async def _ensure_decoy_assignment(self):
        """Reader on the storage account: the target of the delete-assignment test."""
        reader_id = (
            f"{self.context.subscription_scope}/providers/Microsoft.Authorization/"
            f"roleDefinitions/{BUILTIN_ROLES['Reader']}"
        )
        await self._ensure_assignment(
            "decoy_assignment", self.context.resource("storage_account"), reader_id
        )

    async def _ensure_storage_lock(self):
        storage_id = self.context.resource("storage_account")
        await self._ensure(
            "storage_lock",
            f"{storage_id}/providers/Microsoft.Authorization/locks/{self.context.prefix}-storage-lock",
            ARM_API_VERSIONS["locks"],
            {"properties": {"level": "CanNotDelete", "notes": "Target of the delete-lock test"}},
        )

    async def _ensure_private_dns_zone(self):
        await self._ensure(
            "private_dns_zone",
            self._rg_child(f"Microsoft.Network/privateDnsZones/{PRIVATE_DNS_ZONE}"),
            ARM_API_VERSIONS["private_dns"],
            {"location": "global", "tags": dict(SUITE_TAGS)},
        )
