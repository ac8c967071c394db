from __future__ import annotations

import pytest

from conftest import FakeArm, seed_environment
from custom_role_validator.arm.client import ArmAPIError
from custom_role_validator.checks import ALL_TEST_MODULES, AuthorizationTests, NetworkingTests, case_summary
from custom_role_validator.config import REQUIREMENT_CATEGORIES


def _by_id(results):
    return {r.test_id: r for r in results}


def test_catalogs_have_unique_ids_and_known_categories(context) -> None:
    seen = set()
    for cls in ALL_TEST_MODULES:
        for case in cls(None, context).build_cases():
            assert case.id not in seen
            assert case.category in REQUIREMENT_CATEGORIES
            assert case.action
            seen.add(case.id)
    assert len(seen) == 18 + 26


def test_case_summary_uses_display_names(context) -> None:
    case = AuthorizationTests(None, context).build_cases()[0]

    row = case_summary(case)

    assert row["id"] == "AUTH-001"
    assert row["category_name"] == "Role Assignment Management"
    assert row["expect"] == "deny"


@pytest.mark.asyncio
async def test_restrictive_role_passes_every_case(guardian, context) -> None:
    arm = FakeArm(guardian, deny_writes=True)
    seed_environment(arm, context)

    results = await AuthorizationTests(arm, context).execute()
    results += await NetworkingTests(arm, context).execute()

    failing = [(r.test_id, r.status, r.detail) for r in results if r.status != "PASS"]
    assert failing == []
    assert context.artifacts == []


@pytest.mark.asyncio
async def test_permissive_role_fails_and_records_artifacts(guardian, context) -> None:
    arm = FakeArm(guardian)
    seed_environment(arm, context)

    results = _by_id(await AuthorizationTests(arm, context).execute())

    assert results["AUTH-001"].status == "FAIL"
    assert results["AUTH-004"].status == "PASS"
    assert results["AUTH-007"].status == "FAIL"
    assert "target absent" in results["AUTH-007"].detail
    assert results["AUTH-012"].status == "FAIL"
    sources = [a["source"] for a in context.artifacts]
    assert sources == [
        "AUTH-001", "AUTH-002", "AUTH-005", "AUTH-008", "AUTH-009",
        "AUTH-011", "AUTH-014", "AUTH-015", "AUTH-016", "AUTH-017",
    ]
    assert context.resource("decoy_assignment") == ""
    assert context.resource("storage_lock") == ""


@pytest.mark.asyncio
async def test_out_of_scope_targets_are_registered_with_the_guardian(guardian, context) -> None:
    arm = FakeArm(guardian)
    seed_environment(arm, context)

    await AuthorizationTests(arm, context, categories=["resource_governance"]).execute()

    allowed = guardian.get_audit_record()["scope_guardian"]["explicit_allowances"]
    assert f"{context.subscription_scope}/resourcegroups/rbactest-rogue-rg".lower() in allowed
    assert guardian.violations == []


@pytest.mark.asyncio
async def test_unselected_categories_are_skipped(guardian, context) -> None:
    arm = FakeArm(guardian, deny_writes=True)
    seed_environment(arm, context)

    results = await AuthorizationTests(arm, context, categories=["locks"]).execute()

    executed = [r.test_id for r in results if r.status != "SKIPPED"]
    assert executed == ["AUTH-016", "AUTH-017", "AUTH-018"]
    assert {r.detail for r in results if r.status == "SKIPPED"} == {"Category not selected"}
    assert all(m == "GET" or "locks" in rid.lower() for m, rid in arm.calls)


@pytest.mark.asyncio
async def test_missing_prerequisites_are_skipped(guardian, context) -> None:
    context.drop_resource("storage_account")
    arm = FakeArm(guardian, deny_writes=True)
    seed_environment(arm, context)

    results = _by_id(await AuthorizationTests(arm, context).execute())

    for test_id in ("AUTH-012", "AUTH-017"):
        assert results[test_id].status == "SKIPPED"
        assert "storage_account" in results[test_id].detail


@pytest.mark.asyncio
async def test_policy_denial_is_reported_as_error(guardian, context) -> None:
    arm = FakeArm(guardian, deny_writes=True)
    seed_environment(arm, context)
    arm.fail("PUT", "rbactest-rogue-vnet", ArmAPIError(
        403, "Resource was disallowed by policy", "", code="RequestDisallowedByPolicy",
    ))

    results = _by_id(await NetworkingTests(arm, context, categories=["virtual_networks"]).execute())

    assert results["NET-001"].status == "ERROR"
    assert results["NET-001"].error_code == "RequestDisallowedByPolicy"
    assert results["NET-002"].status == "PASS"


@pytest.mark.asyncio
async def test_update_cases_read_then_write_the_current_resource(guardian, context) -> None:
    arm = FakeArm(guardian)
    seed_environment(arm, context)
    hub = context.resource("hub_vnet")
    arm.seed(hub, {"location": "eastus", "properties": {"addressSpace": {"addressPrefixes": ["10.90.0.0/16"]}}})

    results = _by_id(await NetworkingTests(arm, context, categories=["virtual_networks"]).execute())

    assert results["NET-002"].status == "FAIL"
    stored = arm.resources[hub.lower()]
    assert stored["properties"]["addressSpace"]["addressPrefixes"] == ["10.90.0.0/16", "10.93.0.0/16"]
    assert arm.calls.index(("GET", hub)) < arm.calls.index(("PUT", hub))


@pytest.mark.asyncio
async def test_update_case_errors_when_target_cannot_be_read(guardian, context) -> None:
    arm = FakeArm(guardian)
    seed_environment(arm, context)
    del arm.resources[context.resource("hub_vnet").lower()]

    results = _by_id(await NetworkingTests(arm, context, categories=["virtual_networks"]).execute())

    assert results["NET-002"].status == "ERROR"
    assert results["NET-002"].detail.startswith("PrerequisiteError")


@pytest.mark.asyncio
async def test_permitted_deletes_drop_resources_from_the_context(guardian, context) -> None:
    arm = FakeArm(guardian)
    seed_environment(arm, context)

    results = _by_id(await NetworkingTests(arm, context, categories=["virtual_networks", "subnets", "public_ips"]).execute())

    assert results["NET-020"].status == "FAIL"
    assert results["NET-023"].status == "FAIL"
    for key in ("public_ip", "spoke_vnet", "spoke_default_subnet"):
        assert context.resource(key) == ""
    assert "hub_vnet" in context.resources
