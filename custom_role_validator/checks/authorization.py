"""
Authorization Tests
Covers: role assignments, role definitions, policy, managed identities and
credentials, resource governance, management locks.
"""

from __future__ import annotations

import logging
import uuid

from ..config import (
    ALLOWED_LOCATIONS_POLICY_ID,
    ARM_API_VERSIONS,
    BUILTIN_ROLES,
    EXPECT_ALLOW,
)
from ..environment.initializer import SUITE_TAGS, assignment_name
from .base import BaseTestModule, TestCase

logger = logging.getLogger("custom_role_validator.checks.authorization")

AUTHZ = "Microsoft.Authorization"


class AuthorizationTests(BaseTestModule):
    name = "authorization"
    description = "Privilege escalation, governance and credential access attempts"

    def _builtin_role(self, role: str) -> str:
        return self.sub_child(f"{AUTHZ}/roleDefinitions/{BUILTIN_ROLES[role]}")

    def _assignment_body(self, role_definition_id: str) -> dict:
        return {
            "properties": {
                "roleDefinitionId": role_definition_id,
                "principalId": self.principal_id,
                "principalType": "ServicePrincipal",
            }
        }

    def _resubmitted_role(self) -> dict:
        """The role under test exactly as it is defined today."""
        props = self.context.role_definition.get("properties", {})
        return {
            "properties": {
                "roleName": props.get("roleName", self.context.role_name),
                "description": props.get("description", ""),
                "type": "CustomRole",
                "permissions": props.get("permissions", []),
                "assignableScopes": props.get("assignableScopes", [self.context.subscription_scope]),
            }
        }

    def build_cases(self) -> list[TestCase]:
        ctx = self.context
        rg = ctx.resource_group_id
        sub = ctx.subscription_scope
        prefix = ctx.prefix
        storage = ctx.resource("storage_account")
        owner = self._builtin_role("Owner")
        reader = self._builtin_role("Reader")
        api = ARM_API_VERSIONS
        escalation_role = str(uuid.uuid5(uuid.NAMESPACE_URL, f"{sub.lower()}|{prefix}|escalation"))
        absent_role = str(uuid.uuid5(uuid.NAMESPACE_URL, f"{sub.lower()}|{prefix}|absent"))

        return [
            # ── Role assignments ────────────────────────────────────────────
            TestCase(
                id="AUTH-001",
                category="role_assignments",
                name="Assign Owner to the test principal at resource group scope",
                action=f"{AUTHZ}/roleAssignments/write",
                target=f"{rg}/providers/{AUTHZ}/roleAssignments/{assignment_name(rg, self.principal_id, owner)}",
                api_version=api["role_assignments"],
                body=self._assignment_body(owner),
                creates=True,
            ),
            TestCase(
                id="AUTH-002",
                category="role_assignments",
                name="Assign Reader at subscription scope",
                action=f"{AUTHZ}/roleAssignments/write",
                target=f"{sub}/providers/{AUTHZ}/roleAssignments/{assignment_name(sub, self.principal_id, reader)}",
                api_version=api["role_assignments"],
                body=self._assignment_body(reader),
                creates=True,
                outside_scope=True,
            ),
            TestCase(
                id="AUTH-003",
                category="role_assignments",
                name="Delete an existing role assignment",
                action=f"{AUTHZ}/roleAssignments/delete",
                method="DELETE",
                target=ctx.resource("decoy_assignment"),
                api_version=api["role_assignments"],
                requires=("decoy_assignment",),
                removes=("decoy_assignment",),
            ),
            TestCase(
                id="AUTH-004",
                category="role_assignments",
                name="Read role assignments in the resource group",
                action=f"{AUTHZ}/roleAssignments/read",
                method="GET",
                target=f"{rg}/providers/{AUTHZ}/roleAssignments",
                api_version=api["role_assignments"],
                expect=EXPECT_ALLOW,
            ),
            # ── Role definitions ────────────────────────────────────────────
            TestCase(
                id="AUTH-005",
                category="role_definitions",
                name="Create a wildcard custom role",
                action=f"{AUTHZ}/roleDefinitions/write",
                target=f"{sub}/providers/{AUTHZ}/roleDefinitions/{escalation_role}",
                api_version=api["role_definitions"],
                body={
                    "properties": {
                        "roleName": f"{prefix}-escalation-{ctx.run_id}",
                        "description": "Created by custom role validation; must be denied",
                        "type": "CustomRole",
                        "permissions": [{"actions": ["*"], "notActions": []}],
                        "assignableScopes": [rg],
                    }
                },
                creates=True,
                outside_scope=True,
            ),
            TestCase(
                id="AUTH-006",
                category="role_definitions",
                name="Re-submit the role under test unchanged",
                action=f"{AUTHZ}/roleDefinitions/write",
                target=ctx.role_definition_id,
                api_version=api["role_definitions"],
                body=self._resubmitted_role(),
                outside_scope=True,
            ),
            TestCase(
                id="AUTH-007",
                category="role_definitions",
                name="Delete a role definition",
                action=f"{AUTHZ}/roleDefinitions/delete",
                method="DELETE",
                target=f"{sub}/providers/{AUTHZ}/roleDefinitions/{absent_role}",
                api_version=api["role_definitions"],
                outside_scope=True,
                absent_target=True,
            ),
            # ── Policy ──────────────────────────────────────────────────────
            TestCase(
                id="AUTH-008",
                category="policy",
                name="Assign the 'Allowed locations' policy at resource group scope",
                action=f"{AUTHZ}/policyAssignments/write",
                target=f"{rg}/providers/{AUTHZ}/policyAssignments/{prefix}-allowed-locations",
                api_version=api["policy_assignments"],
                body={
                    "properties": {
                        "displayName": f"{prefix} allowed locations",
                        "policyDefinitionId": ALLOWED_LOCATIONS_POLICY_ID,
                        "enforcementMode": "DoNotEnforce",
                        "parameters": {"listOfAllowedLocations": {"value": [ctx.region]}},
                    }
                },
                creates=True,
            ),
            TestCase(
                id="AUTH-009",
                category="policy",
                name="Create a policy definition at subscription scope",
                action=f"{AUTHZ}/policyDefinitions/write",
                target=f"{sub}/providers/{AUTHZ}/policyDefinitions/{prefix}-audit-public-ip",
                api_version=api["policy_definitions"],
                body={
                    "properties": {
                        "policyType": "Custom",
                        "mode": "All",
                        "displayName": f"{prefix} audit public IPs",
                        "policyRule": {
                            "if": {"field": "type", "equals": "Microsoft.Network/publicIPAddresses"},
                            "then": {"effect": "audit"},
                        },
                    }
                },
                creates=True,
                outside_scope=True,
            ),
            TestCase(
                id="AUTH-010",
                category="policy",
                name="Delete a policy assignment",
                action=f"{AUTHZ}/policyAssignments/delete",
                method="DELETE",
                target=f"{rg}/providers/{AUTHZ}/policyAssignments/{prefix}-absent-assignment",
                api_version=api["policy_assignments"],
                absent_target=True,
            ),
            # ── Identity & credentials ──────────────────────────────────────
            TestCase(
                id="AUTH-011",
                category="identity_credentials",
                name="Create a user-assigned managed identity",
                action="Microsoft.ManagedIdentity/userAssignedIdentities/write",
                target=self.rg_child(f"Microsoft.ManagedIdentity/userAssignedIdentities/{prefix}-rogue-identity"),
                api_version=api["managed_identity"],
                body={"location": ctx.region, "tags": dict(SUITE_TAGS)},
                creates=True,
            ),
            TestCase(
                id="AUTH-012",
                category="identity_credentials",
                name="List storage account access keys",
                action="Microsoft.Storage/storageAccounts/listKeys/action",
                method="POST",
                target=f"{storage}/listKeys",
                api_version=api["storage"],
                requires=("storage_account",),
            ),
            # ── Resource governance ─────────────────────────────────────────
            TestCase(
                id="AUTH-013",
                category="resource_governance",
                name="Register a resource provider",
                action="Microsoft.Network/register/action",
                method="POST",
                target=f"{sub}/providers/Microsoft.Network/register",
                api_version=api["providers"],
                outside_scope=True,
            ),
            TestCase(
                id="AUTH-014",
                category="resource_governance",
                name="Create a new resource group",
                action="Microsoft.Resources/subscriptions/resourceGroups/write",
                target=f"{sub}/resourceGroups/{prefix}-rogue-rg",
                api_version=api["resource_groups"],
                body={"location": ctx.region, "tags": dict(SUITE_TAGS)},
                creates=True,
                outside_scope=True,
            ),
            TestCase(
                id="AUTH-015",
                category="resource_governance",
                name="Create an ARM template deployment",
                action="Microsoft.Resources/deployments/write",
                target=self.rg_child(f"Microsoft.Resources/deployments/{prefix}-rogue-deployment"),
                api_version=api["deployments"],
                body={
                    "properties": {
                        "mode": "Incremental",
                        "template": {
                            "$schema": "https://schema.management.azure.com/schemas/2019-04-01/deploymentTemplate.json#",
                            "contentVersion": "1.0.0.0",
                            "resources": [],
                        },
                    }
                },
                creates=True,
            ),
            # ── Locks (last: a stray lock would block later operations) ─────
            TestCase(
                id="AUTH-016",
                category="locks",
                name="Place a CanNotDelete lock on the resource group",
                action=f"{AUTHZ}/locks/write",
                target=f"{rg}/providers/{AUTHZ}/locks/{prefix}-rogue-rg-lock",
                api_version=api["locks"],
                body={"properties": {"level": "CanNotDelete", "notes": "Must be denied"}},
                creates=True,
            ),
            TestCase(
                id="AUTH-017",
                category="locks",
                name="Place a ReadOnly lock on the storage account",
                action=f"{AUTHZ}/locks/write",
                target=f"{storage}/providers/{AUTHZ}/locks/{prefix}-rogue-readonly-lock",
                api_version=api["locks"],
                body={"properties": {"level": "ReadOnly", "notes": "Must be denied"}},
                requires=("storage_account",),
                creates=True,
            ),
            TestCase(
                id="AUTH-018",
                category="locks",
                name="Delete the storage account lock",
                action=f"{AUTHZ}/locks/delete",
                method="DELETE",
                target=ctx.resource("storage_lock"),
                api_version=api["locks"],
                requires=("storage_lock",),
                removes=("storage_lock",),
            ),
        ]
