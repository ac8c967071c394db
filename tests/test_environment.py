from __future__ import annotations

import json

import pytest

from conftest import RG_ID, FakeArm, FakeGraph
from custom_role_validator.arm.client import ArmAPIError
from custom_role_validator.config import EnvironmentConfig
from custom_role_validator.environment import (
    EnvironmentCleanup,
    EnvironmentInitializer,
    EnvironmentSetupError,
    SuiteContext,
    load_state,
    save_state,
)
from custom_role_validator.environment.initializer import storage_account_name, subnet_prefixes
from custom_role_validator.environment.retry import looks_like_transient_conflict, retry_fixed

PROVISIONED_KEYS = {
    "resource_group", "role_assignment", "nsg", "route_table",
    "hub_vnet", "hub_default_subnet", "hub_workload_subnet",
    "spoke_vnet", "spoke_default_subnet", "public_ip", "nat_public_ip",
    "nat_gateway", "storage_account", "decoy_assignment", "storage_lock",
    "private_dns_zone",
}


def _fresh(context: SuiteContext) -> SuiteContext:
    return SuiteContext(
        run_id="second-run",
        subscription_id=context.subscription_id,
        tenant_id=context.tenant_id,
        region=context.region,
        prefix=context.prefix,
        role_name=context.role_name,
        role_definition_id=context.role_definition_id,
        role_definition=context.role_definition,
    )


# ── Helpers ─────────────────────────────────────────────────────────────────

def test_storage_account_name_is_deterministic_and_valid() -> None:
    name = storage_account_name("rbac-Test_01", "00000000-0000-0000-0000-0000000000aa")

    assert name == storage_account_name("rbac-Test_01", "00000000-0000-0000-0000-0000000000aa")
    assert name != storage_account_name("rbac-Test_01", "00000000-0000-0000-0000-0000000000ab")
    assert 3 <= len(name) <= 24
    assert name.isalnum() and name.islower()


def test_subnet_prefixes_carve_slash_24s() -> None:
    assert subnet_prefixes("10.90.0.0/16", 3) == ["10.90.0.0/24", "10.90.1.0/24", "10.90.2.0/24"]


@pytest.mark.asyncio
async def test_retry_fixed_retries_only_matching_errors() -> None:
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ArmAPIError(409, "busy", "x", code="AnotherOperationInProgress")
        return {"ok": True}

    assert await retry_fixed(flaky, attempts=5, delay=0, should_retry=looks_like_transient_conflict) == {"ok": True}
    assert len(calls) == 3

    async def broken():
        calls.append(1)
        raise ArmAPIError(400, "bad", "x", code="InvalidTemplate")

    calls.clear()
    with pytest.raises(ArmAPIError):
        await retry_fixed(broken, attempts=5, delay=0, should_retry=looks_like_transient_conflict)
    assert len(calls) == 1


# ── Initializer ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_initializer_provisions_everything_then_reuses_it(guardian, bare_context, fast_retry) -> None:
    arm, graph = FakeArm(guardian), FakeGraph(guardian)

    first = await EnvironmentInitializer(arm, graph, bare_context, EnvironmentConfig(), fast_retry).initialize()

    assert set(bare_context.resources) == PROVISIONED_KEYS
    assert "hub_vnet" in first.metadata["created"]
    assert bare_context.client_secret.startswith("placeholder-secret")
    assert bare_context.service_principal["display_name"] == "rbactest-sp"
    assert guardian.violations == []

    puts_before = len(arm.methods("PUT"))
    second_context = _fresh(bare_context)
    second = await EnvironmentInitializer(arm, graph, second_context, EnvironmentConfig(), fast_retry).initialize()

    assert len(arm.methods("PUT")) == puts_before
    assert second.metadata["created"] == []
    assert set(second_context.reused) == PROVISIONED_KEYS
    assert second_context.service_principal["object_id"] == bare_context.service_principal["object_id"]
    assert graph.secrets_issued == 2


@pytest.mark.asyncio
async def test_initializer_waits_for_principal_replication(guardian, bare_context, fast_retry) -> None:
    arm, graph = FakeArm(guardian), FakeGraph(guardian)
    arm.fail("PUT", "/roleassignments/", ArmAPIError(
        400, "Principal does not exist in the directory", "", code="PrincipalNotFound",
    ))

    await EnvironmentInitializer(arm, graph, bare_context, EnvironmentConfig(), fast_retry).initialize()

    assert "role_assignment" in bare_context.created
    assert len([rid for rid in arm.methods("PUT") if "/roleAssignments/" in rid]) == 3


@pytest.mark.asyncio
async def test_initializer_failure_names_the_step(guardian, bare_context, fast_retry) -> None:
    arm, graph = FakeArm(guardian), FakeGraph(guardian)
    arm.fail("PUT", "networksecuritygroups/rbactest-nsg", ArmAPIError(
        400, "quota exceeded", "", code="QuotaExceeded",
    ))

    with pytest.raises(EnvironmentSetupError, match="network security group"):
        await EnvironmentInitializer(arm, graph, bare_context, EnvironmentConfig(), fast_retry).initialize()

    assert "role_assignment" in bare_context.resources
    assert "nsg" not in bare_context.resources


@pytest.mark.asyncio
async def test_initializer_requires_a_resolved_role(guardian, bare_context, fast_retry) -> None:
    bare_context.role_definition_id = ""

    with pytest.raises(EnvironmentSetupError, match="role definition"):
        await EnvironmentInitializer(
            FakeArm(guardian), FakeGraph(guardian), bare_context, EnvironmentConfig(), fast_retry,
        ).initialize()


# ── Cleanup ─────────────────────────────────────────────────────────────────

def _seed_for_cleanup(arm: FakeArm, graph: FakeGraph, context: SuiteContext) -> dict[str, str]:
    storage_lock = context.resource("storage_lock")
    ids = {
        "identity": f"{RG_ID}/providers/Microsoft.ManagedIdentity/userAssignedIdentities/rbactest-rogue-identity",
        "rogue_rg": f"{context.subscription_scope}/resourceGroups/rbactest-rogue-rg",
        "rg_lock": f"{RG_ID}/providers/Microsoft.Authorization/locks/rbactest-rogue-rg-lock",
        "storage_lock": storage_lock,
    }
    context.add_artifact(ids["identity"], "2023-01-31", "AUTH-011")
    context.add_artifact(ids["rogue_rg"], "2021-04-01", "AUTH-014")
    context.add_artifact(ids["rg_lock"], "2016-09-01", "AUTH-016")
    for resource_id in (RG_ID, ids["identity"], ids["rogue_rg"], ids["rg_lock"], storage_lock):
        arm.seed(resource_id)
    arm.collections[f"{RG_ID}/providers/Microsoft.Authorization/locks".lower()] = [{"id": storage_lock}]
    app_id = context.service_principal["application_object_id"]
    graph.objects[app_id] = {"id": app_id, "_collection": "applications"}
    return ids


@pytest.mark.asyncio
async def test_cleanup_order(guardian, context, fast_retry) -> None:
    arm, graph = FakeArm(guardian), FakeGraph(guardian)
    ids = _seed_for_cleanup(arm, graph, context)

    report = await EnvironmentCleanup(arm, graph, context, fast_retry).run()

    assert arm.methods("DELETE") == [
        ids["rg_lock"], ids["identity"], ids["storage_lock"], ids["rogue_rg"], RG_ID,
    ]
    assert graph.deleted == [context.service_principal["application_object_id"]]
    assert report.ok
    assert guardian.violations == []


@pytest.mark.asyncio
async def test_cleanup_retries_conflicts_then_continues_after_failure(guardian, context, fast_retry) -> None:
    arm, graph = FakeArm(guardian), FakeGraph(guardian)
    ids = _seed_for_cleanup(arm, graph, context)
    arm.fail("DELETE", "userassignedidentities", ArmAPIError(409, "busy", "", code="Conflict"))
    locked = ArmAPIError(409, "scope is locked", "", code="ScopeLocked")
    arm.fail("DELETE", RG_ID, *([locked] * 10), exact=True)

    report = await EnvironmentCleanup(arm, graph, context, fast_retry).run()

    statuses = {s["target"]: s["status"] for s in report.steps}
    assert statuses[ids["identity"]] == "deleted"
    assert statuses[RG_ID] == "failed"
    assert [s["target"] for s in report.failed] == [RG_ID]
    assert arm.methods("DELETE").count(RG_ID) == fast_retry.cleanup_attempts
    assert graph.deleted == [context.service_principal["application_object_id"]]


@pytest.mark.asyncio
async def test_cleanup_when_resource_group_is_already_gone(guardian, context, fast_retry) -> None:
    arm, graph = FakeArm(guardian), FakeGraph(guardian)
    context.add_artifact(f"{context.subscription_scope}/resourceGroups/rbactest-rogue-rg", "2021-04-01", "AUTH-014")

    report = await EnvironmentCleanup(arm, graph, context, fast_retry).run()

    statuses = {s["step"]: s["status"] for s in report.steps}
    assert statuses["resource group"] == "absent"
    assert statuses["artifact (AUTH-014)"] == "absent"
    assert statuses["app registration"] == "absent"
    assert RG_ID not in arm.methods("DELETE")
    assert report.ok


# ── State file ──────────────────────────────────────────────────────────────

def test_state_round_trip_omits_the_secret(tmp_path, context) -> None:
    context.add_artifact(f"{RG_ID}/providers/Microsoft.Network/virtualNetworks/rogue", "2023-09-01", "NET-001")
    path = save_state(context, tmp_path / "run" / "environment_state.json")

    assert context.client_secret not in path.read_text(encoding="utf-8")
    restored = load_state(path)
    assert restored.resources == context.resources
    assert restored.artifacts == context.artifacts
    assert restored.service_principal == context.service_principal
    assert restored.client_secret == ""


def test_state_rejects_unknown_versions(tmp_path) -> None:
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"version": 99, "context": {}}), encoding="utf-8")

    with pytest.raises(ValueError, match="Unsupported state file version"):
        load_state(path)


@pytest.mark.asyncio
async def test_cleanup_retries_a_failed_resource_group_lookup(guardian, context, fast_retry) -> None:
    arm, graph = FakeArm(guardian), FakeGraph(guardian)
    ids = _seed_for_cleanup(arm, graph, context)
    arm.fail("GET", RG_ID, ArmAPIError(500, "internal error", "", code="InternalServerError"), exact=True)

    report = await EnvironmentCleanup(arm, graph, context, fast_retry).run()

    assert arm.methods("GET").count(RG_ID) == 2
    assert arm.methods("DELETE")[-1] == RG_ID
    assert ids["rg_lock"] in arm.methods("DELETE")
    assert "resource group lookup" not in {s["step"] for s in report.steps}
    assert report.ok


@pytest.mark.asyncio
async def test_cleanup_still_deletes_when_the_lookup_keeps_failing(guardian, context, fast_retry) -> None:
    arm, graph = FakeArm(guardian), FakeGraph(guardian)
    ids = _seed_for_cleanup(arm, graph, context)
    broken = ArmAPIError(500, "internal error", "", code="InternalServerError")
    arm.fail("GET", RG_ID, *([broken] * 10), exact=True)

    report = await EnvironmentCleanup(arm, graph, context, fast_retry).run()

    statuses = {s["step"]: s["status"] for s in report.steps}
    assert statuses["resource group lookup"] == "unknown"
    assert statuses["resource group"] == "deleted"
    assert arm.methods("DELETE") == [
        ids["rg_lock"], ids["identity"], ids["storage_lock"], ids["rogue_rg"], RG_ID,
    ]
    assert report.ok
