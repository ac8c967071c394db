"""Shared fixtures: a populated suite context and in-memory ARM / Graph fakes.

The fakes route every write through the real ScopeGuardian so scope rules are
exercised the same way the HTTP clients exercise them.
"""

from __future__ import annotations

import re
import uuid

import pytest

from custom_role_validator.arm.client import ArmAPIError
from custom_role_validator.config import ARM_BASE_URL, GRAPH_API_VERSION, GRAPH_BASE_URL, RetryConfig
from custom_role_validator.environment.context import SuiteContext
from custom_role_validator.safety.guardian import ScopeGuardian

SUBSCRIPTION_ID = "00000000-0000-0000-0000-0000000000aa"
PREFIX = "rbactest"
RG_ID = f"/subscriptions/{SUBSCRIPTION_ID}/resourceGroups/{PREFIX}-rg"
ROLE_ID = f"/subscriptions/{SUBSCRIPTION_ID}/providers/Microsoft.Authorization/roleDefinitions/11111111-2222-3333-4444-555555555555"


def denied(resource_id: str = "") -> ArmAPIError:
    return ArmAPIError(
        403,
        "The client 'x' does not have authorization to perform action",
        resource_id,
        code="AuthorizationFailed",
    )


class FakeArm:
    """In-memory resource store answering ArmClient.call()/get()/put()/delete()/list_all()."""

    def __init__(self, guardian: ScopeGuardian, deny_writes: bool = False):
        self.guardian = guardian
        self.deny_writes = deny_writes
        self.resources: dict[str, dict] = {}
        self.collections: dict[str, list[dict]] = {}
        self.calls: list[tuple[str, str]] = []
        self._errors: list[tuple[str, str, bool, list[Exception]]] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def seed(self, resource_id: str, body: dict | None = None):
        self.resources[resource_id.lower()] = {"id": resource_id, **(body or {})}

    def fail(self, method: str, fragment: str, *errors: Exception, exact: bool = False):
        """Queue errors for requests whose id contains (or equals) `fragment`, one error per call."""
        self._errors.append((method.upper(), fragment.lower(), exact, list(errors)))

    def _queued_error(self, method: str, key: str):
        for queued_method, fragment, exact, errors in self._errors:
            matches = key == fragment if exact else fragment in key
            if queued_method == method and matches and errors:
                return errors.pop(0)
        return None

    async def call(self, method, resource_id, api_version, body=None, params=None, wait=True):
        method = method.upper()
        key = resource_id.lower()
        self.guardian.validate_request(method, f"{ARM_BASE_URL}{resource_id}", body)
        self.calls.append((method, resource_id))

        error = self._queued_error(method, key)
        if error is not None:
            raise error

        if method == "GET":
            if key in self.resources:
                return dict(self.resources[key])
            if key in self.collections:
                return {"value": list(self.collections[key])}
            return {"_not_found": True}

        if self.deny_writes:
            raise denied(resource_id)

        if method == "DELETE":
            if self.resources.pop(key, None) is None:
                return {"_not_found": True}
            return {}
        if method in ("PUT", "PATCH"):
            stored = {**(body or {}), "id": resource_id}
            self.resources[key] = stored
            return dict(stored)
        return {}

    async def get(self, resource_id, api_version, params=None):
        return await self.call("GET", resource_id, api_version, params=params)

    async def put(self, resource_id, api_version, body, wait=True):
        return await self.call("PUT", resource_id, api_version, body=body, wait=wait)

    async def delete(self, resource_id, api_version, wait=True):
        return await self.call("DELETE", resource_id, api_version, wait=wait)

    async def list_all(self, resource_id, api_version, params=None):
        key = resource_id.lower()
        self.calls.append(("LIST", resource_id))
        error = self._queued_error("LIST", key)
        if error is not None:
            raise error
        return list(self.collections.get(key, []))

    def methods(self, method: str) -> list[str]:
        return [rid for m, rid in self.calls if m == method]


class FakeGraph:
    """Applications and service principals keyed by object id."""

    def __init__(self, guardian: ScopeGuardian):
        self.guardian = guardian
        self.objects: dict[str, dict] = {}
        self.deleted: list[str] = []
        self.secrets_issued = 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def _validate(self, method: str, endpoint: str, body: dict | None = None):
        self.guardian.validate_request(method, f"{GRAPH_BASE_URL}/{GRAPH_API_VERSION}/{endpoint}", body)

    async def list_all(self, endpoint, params=None):
        field, value = re.match(r"(\w+) eq '([^']*)'", params["$filter"]).groups()
        return [
            dict(o) for o in self.objects.values()
            if o["_collection"] == endpoint and o.get(field) == value
        ]

    async def post(self, endpoint, body):
        self._validate("POST", endpoint, body)
        if endpoint.endswith("/addPassword"):
            self.secrets_issued += 1
            return {"secretText": f"placeholder-secret-{self.secrets_issued}", "keyId": str(uuid.uuid4())}
        obj = {**body, "id": str(uuid.uuid4()), "_collection": endpoint}
        if endpoint == "applications":
            obj["appId"] = str(uuid.uuid4())
        self.objects[obj["id"]] = obj
        return dict(obj)

    async def delete(self, endpoint):
        self._validate("DELETE", endpoint)
        object_id = endpoint.rsplit("/", 1)[-1]
        if self.objects.pop(object_id, None) is None:
            return {"_not_found": True}
        self.deleted.append(object_id)
        return {}


@pytest.fixture
def fast_retry() -> RetryConfig:
    return RetryConfig(
        http_max_retries=3,
        http_initial_backoff=0,
        http_max_backoff=0,
        lro_poll_interval=0,
        lro_timeout=5,
        principal_attempts=3,
        principal_delay_seconds=0,
        propagation_attempts=2,
        propagation_delay_seconds=0,
        cleanup_attempts=3,
        cleanup_delay_seconds=0,
    )


@pytest.fixture
def guardian() -> ScopeGuardian:
    return ScopeGuardian(SUBSCRIPTION_ID, f"{PREFIX}-rg", PREFIX)


@pytest.fixture
def bare_context() -> SuiteContext:
    """Resolved run, nothing provisioned yet."""
    return SuiteContext(
        run_id="20260101T000000Z_test",
        subscription_id=SUBSCRIPTION_ID,
        tenant_id="00000000-0000-0000-0000-0000000000bb",
        region="eastus",
        prefix=PREFIX,
        role_name="NetOps Operator",
        role_definition_id=ROLE_ID,
        role_definition={
            "id": ROLE_ID,
            "properties": {
                "roleName": "NetOps Operator",
                "type": "CustomRole",
                "permissions": [{"actions": ["Microsoft.Network/*/read"], "notActions": []}],
                "assignableScopes": [f"/subscriptions/{SUBSCRIPTION_ID}"],
            },
        },
    )


@pytest.fixture
def context(bare_context: SuiteContext) -> SuiteContext:
    """Context as it looks after environment setup."""
    net = f"{RG_ID}/providers/Microsoft.Network"
    storage = f"{RG_ID}/providers/Microsoft.Storage/storageAccounts/rbactestabcdef12"
    resources = {
        "resource_group": RG_ID,
        "role_assignment": f"{RG_ID}/providers/Microsoft.Authorization/roleAssignments/aaaa",
        "nsg": f"{net}/networkSecurityGroups/{PREFIX}-nsg",
        "route_table": f"{net}/routeTables/{PREFIX}-rt",
        "hub_vnet": f"{net}/virtualNetworks/{PREFIX}-hub-vnet",
        "hub_default_subnet": f"{net}/virtualNetworks/{PREFIX}-hub-vnet/subnets/default",
        "hub_workload_subnet": f"{net}/virtualNetworks/{PREFIX}-hub-vnet/subnets/workload",
        "spoke_vnet": f"{net}/virtualNetworks/{PREFIX}-spoke-vnet",
        "spoke_default_subnet": f"{net}/virtualNetworks/{PREFIX}-spoke-vnet/subnets/default",
        "public_ip": f"{net}/publicIPAddresses/{PREFIX}-pip",
        "nat_public_ip": f"{net}/publicIPAddresses/{PREFIX}-nat-pip",
        "nat_gateway": f"{net}/natGateways/{PREFIX}-natgw",
        "storage_account": storage,
        "decoy_assignment": f"{storage}/providers/Microsoft.Authorization/roleAssignments/bbbb",
        "storage_lock": f"{storage}/providers/Microsoft.Authorization/locks/{PREFIX}-storage-lock",
        "private_dns_zone": f"{net}/privateDnsZones/privatelink.blob.core.windows.net",
    }
    for key, resource_id in resources.items():
        bare_context.set_resource(key, resource_id, created=True)
    bare_context.service_principal = {
        "display_name": f"{PREFIX}-sp",
        "app_id": "00000000-0000-0000-0000-0000000000cc",
        "object_id": "00000000-0000-0000-0000-0000000000dd",
        "application_object_id": "00000000-0000-0000-0000-0000000000ee",
        "secret_key_id": "00000000-0000-0000-0000-0000000000ff",
    }
    bare_context.client_secret = "placeholder-client-secret"
    return bare_context


def seed_environment(arm: FakeArm, context: SuiteContext):
    """Make every provisioned resource and the read-baseline collections visible."""
    for resource_id in context.resources.values():
        arm.seed(resource_id, {"properties": {}})
    arm.collections[f"{RG_ID}/providers/Microsoft.Authorization/roleAssignments".lower()] = []
    arm.collections[f"{RG_ID}/providers/Microsoft.Network/virtualNetworks".lower()] = []
