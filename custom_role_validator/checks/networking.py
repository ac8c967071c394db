"""
Networking Tests
Covers: VNet topology, peering, subnets, routing, public IPs, NSGs, NAT,
hybrid gateways, private endpoints / DNS and storage firewalls.
Delete attempts run last so earlier cases still find their targets.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..arm.client import ArmClient
from ..config import ARM_API_VERSIONS, EXPECT_ALLOW, EnvironmentConfig
from ..environment.context import SuiteContext
from ..environment.initializer import PRIVATE_DNS_ZONE, SUITE_TAGS, subnet_prefixes
from .base import BaseTestModule, TestCase, update_operation

logger = logging.getLogger("custom_role_validator.checks.networking")

NET = "Microsoft.Network"
ROGUE_VNET_SPACE = "10.92.0.0/16"
EXTRA_HUB_SPACE = "10.93.0.0/16"


def _extend_address_space(vnet: dict, context: SuiteContext) -> dict:
    prefixes = vnet.setdefault("properties", {}).setdefault("addressSpace", {}).setdefault("addressPrefixes", [])
    if EXTRA_HUB_SPACE not in prefixes:
        prefixes.append(EXTRA_HUB_SPACE)
    return vnet


def _detach_route_table(subnet: dict, context: SuiteContext) -> dict:
    subnet.setdefault("properties", {}).pop("routeTable", None)
    return subnet


def _detach_nsg(subnet: dict, context: SuiteContext) -> dict:
    subnet.setdefault("properties", {}).pop("networkSecurityGroup", None)
    return subnet


def _attach_nat_gateway(subnet: dict, context: SuiteContext) -> dict:
    subnet.setdefault("properties", {})["natGateway"] = {"id": context.resource("nat_gateway")}
    return subnet


class NetworkingTests(BaseTestModule):
    name = "networking"
    description = "Network topology, exposure and connectivity change attempts"

    def __init__(
        self,
        arm: ArmClient,
        context: SuiteContext,
        categories: Optional[list[str]] = None,
        environment: Optional[EnvironmentConfig] = None,
    ):
        super().__init__(arm, context, categories)
        self.environment = environment or EnvironmentConfig()

    def build_cases(self) -> list[TestCase]:
        ctx = self.context
        prefix = ctx.prefix
        region = ctx.region
        api = ARM_API_VERSIONS["network"]
        dns_api = ARM_API_VERSIONS["private_dns"]
        hub = ctx.resource("hub_vnet")
        spoke = ctx.resource("spoke_vnet")
        rogue_subnet = subnet_prefixes(self.environment.hub_address_space, 3)[-1]

        return [
            # ── Virtual networks ────────────────────────────────────────────
            TestCase(
                id="NET-001",
                category="virtual_networks",
                name="Create a virtual network",
                action=f"{NET}/virtualNetworks/write",
                target=self.rg_child(f"{NET}/virtualNetworks/{prefix}-rogue-vnet"),
                api_version=api,
                body={
                    "location": region,
                    "tags": dict(SUITE_TAGS),
                    "properties": {"addressSpace": {"addressPrefixes": [ROGUE_VNET_SPACE]}},
                },
                creates=True,
            ),
            TestCase(
                id="NET-002",
                category="virtual_networks",
                name="Extend the hub VNet address space",
                action=f"{NET}/virtualNetworks/write",
                target=hub,
                api_version=api,
                requires=("hub_vnet",),
                operation=update_operation("hub_vnet", api, _extend_address_space),
            ),
            TestCase(
                id="NET-003",
                category="virtual_networks",
                name="Read virtual networks in the resource group",
                action=f"{NET}/virtualNetworks/read",
                method="GET",
                target=self.rg_child(f"{NET}/virtualNetworks"),
                api_version=api,
                expect=EXPECT_ALLOW,
            ),
            # ── Peering ─────────────────────────────────────────────────────
            TestCase(
                id="NET-004",
                category="peering",
                name="Peer the hub VNet to the spoke VNet",
                action=f"{NET}/virtualNetworks/virtualNetworkPeerings/write",
                target=f"{hub}/virtualNetworkPeerings/hub-to-spoke",
                api_version=api,
                body={
                    "properties": {
                        "remoteVirtualNetwork": {"id": spoke},
                        "allowVirtualNetworkAccess": True,
                        "allowForwardedTraffic": True,
                    }
                },
                requires=("hub_vnet", "spoke_vnet"),
                creates=True,
            ),
            TestCase(
                id="NET-005",
                category="peering",
                name="Peer the spoke VNet to the hub VNet",
                action=f"{NET}/virtualNetworks/virtualNetworkPeerings/write",
                target=f"{spoke}/virtualNetworkPeerings/spoke-to-hub",
                api_version=api,
                body={
                    "properties": {
                        "remoteVirtualNetwork": {"id": hub},
                        "allowVirtualNetworkAccess": True,
                        "allowForwardedTraffic": True,
                    }
                },
                requires=("hub_vnet", "spoke_vnet"),
                creates=True,
            ),
            # ── Subnets ─────────────────────────────────────────────────────
            TestCase(
                id="NET-006",
                category="subnets",
                name="Create a subnet in the hub VNet",
                action=f"{NET}/virtualNetworks/subnets/write",
                target=f"{hub}/subnets/rogue",
                api_version=api,
                body={"properties": {"addressPrefix": rogue_subnet}},
                requires=("hub_vnet",),
                creates=True,
            ),
            TestCase(
                id="NET-007",
                category="subnets",
                name="Detach the route table from the workload subnet",
                action=f"{NET}/virtualNetworks/subnets/write",
                target=ctx.resource("hub_workload_subnet"),
                api_version=api,
                requires=("hub_workload_subnet",),
                operation=update_operation("hub_workload_subnet", api, _detach_route_table),
            ),
            TestCase(
                id="NET-008",
                category="subnets",
                name="Detach the NSG from the hub default subnet",
                action=f"{NET}/virtualNetworks/subnets/write",
                target=ctx.resource("hub_default_subnet"),
                api_version=api,
                requires=("hub_default_subnet",),
                operation=update_operation("hub_default_subnet", api, _detach_nsg),
            ),
            # ── Routing ─────────────────────────────────────────────────────
            TestCase(
                id="NET-009",
                category="routing",
                name="Create a route table",
                action=f"{NET}/routeTables/write",
                target=self.rg_child(f"{NET}/routeTables/{prefix}-rogue-rt"),
                api_version=api,
                body={"location": region, "tags": dict(SUITE_TAGS), "properties": {"routes": []}},
                creates=True,
            ),
            TestCase(
                id="NET-010",
                category="routing",
                name="Add a 0.0.0.0/0 route to the Internet",
                action=f"{NET}/routeTables/routes/write",
                target=f"{ctx.resource('route_table')}/routes/default-to-internet",
                api_version=api,
                body={"properties": {"addressPrefix": "0.0.0.0/0", "nextHopType": "Internet"}},
                requires=("route_table",),
                creates=True,
            ),
            # ── Public IPs ──────────────────────────────────────────────────
            TestCase(
                id="NET-011",
                category="public_ips",
                name="Create a public IP address",
                action=f"{NET}/publicIPAddresses/write",
                target=self.rg_child(f"{NET}/publicIPAddresses/{prefix}-rogue-pip"),
                api_version=api,
                body={
                    "location": region,
                    "sku": {"name": "Standard"},
                    "properties": {"publicIPAllocationMethod": "Static"},
                },
                creates=True,
            ),
            TestCase(
                id="NET-012",
                category="public_ips",
                name="Create a public IP prefix",
                action=f"{NET}/publicIPPrefixes/write",
                target=self.rg_child(f"{NET}/publicIPPrefixes/{prefix}-rogue-ippre"),
                api_version=api,
                body={
                    "location": region,
                    "sku": {"name": "Standard"},
                    "properties": {"prefixLength": 31, "publicIPAddressVersion": "IPv4"},
                },
                creates=True,
            ),
            # ── Network security groups ─────────────────────────────────────
            TestCase(
                id="NET-013",
                category="network_security_groups",
                name="Create a network security group",
                action=f"{NET}/networkSecurityGroups/write",
                target=self.rg_child(f"{NET}/networkSecurityGroups/{prefix}-rogue-nsg"),
                api_version=api,
                body={"location": region, "tags": dict(SUITE_TAGS), "properties": {"securityRules": []}},
                creates=True,
            ),
            TestCase(
                id="NET-014",
                category="network_security_groups",
                name="Add an allow-any inbound rule",
                action=f"{NET}/networkSecurityGroups/securityRules/write",
                target=f"{ctx.resource('nsg')}/securityRules/allow-any-inbound",
                api_version=api,
                body={
                    "properties": {
                        "protocol": "*",
                        "sourceAddressPrefix": "*",
                        "sourcePortRange": "*",
                        "destinationAddressPrefix": "*",
                        "destinationPortRange": "*",
                        "access": "Allow",
                        "direction": "Inbound",
                        "priority": 100,
                    }
                },
                requires=("nsg",),
                creates=True,
            ),
            # ── NAT gateway ─────────────────────────────────────────────────
            TestCase(
                id="NET-015",
                category="nat_gateway",
                name="Create a NAT gateway",
                action=f"{NET}/natGateways/write",
                target=self.rg_child(f"{NET}/natGateways/{prefix}-rogue-natgw"),
                api_version=api,
                body={"location": region, "sku": {"name": "Standard"}, "properties": {}},
                creates=True,
            ),
            TestCase(
                id="NET-016",
                category="nat_gateway",
                name="Associate the NAT gateway with the workload subnet",
                action=f"{NET}/virtualNetworks/subnets/write",
                target=ctx.resource("hub_workload_subnet"),
                api_version=api,
                requires=("hub_workload_subnet", "nat_gateway"),
                operation=update_operation("hub_workload_subnet", api, _attach_nat_gateway),
            ),
            # ── Hybrid connectivity ─────────────────────────────────────────
            TestCase(
                id="NET-017",
                category="hybrid_connectivity",
                name="Create a local network gateway",
                action=f"{NET}/localNetworkGateways/write",
                target=self.rg_child(f"{NET}/localNetworkGateways/{prefix}-rogue-lng"),
                api_version=api,
                body={
                    "location": region,
                    "properties": {
                        "gatewayIpAddress": "203.0.113.10",
                        "localNetworkAddressSpace": {"addressPrefixes": ["192.168.100.0/24"]},
                    },
                },
                creates=True,
            ),
            TestCase(
                id="NET-018",
                category="hybrid_connectivity",
                name="Create a virtual network gateway",
                action=f"{NET}/virtualNetworkGateways/write",
                target=self.rg_child(f"{NET}/virtualNetworkGateways/{prefix}-rogue-vng"),
                api_version=api,
                body={
                    "location": region,
                    "properties": {
                        "gatewayType": "Vpn",
                        "vpnType": "RouteBased",
                        "sku": {"name": "VpnGw1", "tier": "VpnGw1"},
                        "ipConfigurations": [{
                            "name": "default",
                            "properties": {
                                "subnet": {"id": f"{hub}/subnets/GatewaySubnet"},
                                "publicIPAddress": {"id": ctx.resource("public_ip")},
                            },
                        }],
                    },
                },
                requires=("hub_vnet", "public_ip"),
                creates=True,
            ),
            # ── Private connectivity ────────────────────────────────────────
            TestCase(
                id="NET-019",
                category="private_connectivity",
                name="Create a private endpoint to the storage account",
                action=f"{NET}/privateEndpoints/write",
                target=self.rg_child(f"{NET}/privateEndpoints/{prefix}-rogue-pe"),
                api_version=api,
                body={
                    "location": region,
                    "properties": {
                        "subnet": {"id": ctx.resource("hub_default_subnet")},
                        "privateLinkServiceConnections": [{
                            "name": f"{prefix}-rogue-pe-blob",
                            "properties": {
                                "privateLinkServiceId": ctx.resource("storage_account"),
                                "groupIds": ["blob"],
                            },
                        }],
                    },
                },
                requires=("hub_default_subnet", "storage_account"),
                creates=True,
            ),
            TestCase(
                id="NET-024",
                category="private_connectivity",
                name="Create a private DNS zone",
                action=f"{NET}/privateDnsZones/write",
                target=self.rg_child(f"{NET}/privateDnsZones/privatelink.file.core.windows.net"),
                api_version=dns_api,
                body={"location": "global", "tags": dict(SUITE_TAGS)},
                creates=True,
            ),
            TestCase(
                id="NET-025",
                category="private_connectivity",
                name=f"Link {PRIVATE_DNS_ZONE} to the hub VNet",
                action=f"{NET}/privateDnsZones/virtualNetworkLinks/write",
                target=f"{ctx.resource('private_dns_zone')}/virtualNetworkLinks/{prefix}-hub-link",
                api_version=dns_api,
                body={
                    "location": "global",
                    "properties": {
                        "virtualNetwork": {"id": hub},
                        "registrationEnabled": False,
                    },
                },
                requires=("private_dns_zone", "hub_vnet"),
                creates=True,
            ),
            TestCase(
                id="NET-026",
                category="private_connectivity",
                name="Open the storage account firewall to all networks",
                action="Microsoft.Storage/storageAccounts/write",
                method="PATCH",
                target=ctx.resource("storage_account"),
                api_version=ARM_API_VERSIONS["storage"],
                body={"properties": {"networkAcls": {"defaultAction": "Allow"}}},
                requires=("storage_account",),
            ),
            # ── Deletes ─────────────────────────────────────────────────────
            TestCase(
                id="NET-020",
                category="public_ips",
                name="Delete a public IP address",
                action=f"{NET}/publicIPAddresses/delete",
                method="DELETE",
                target=ctx.resource("public_ip"),
                api_version=api,
                requires=("public_ip",),
                removes=("public_ip",),
            ),
            TestCase(
                id="NET-021",
                category="routing",
                name="Delete the route table",
                action=f"{NET}/routeTables/delete",
                method="DELETE",
                target=ctx.resource("route_table"),
                api_version=api,
                requires=("route_table",),
                removes=("route_table",),
            ),
            TestCase(
                id="NET-022",
                category="subnets",
                name="Delete the spoke subnet",
                action=f"{NET}/virtualNetworks/subnets/delete",
                method="DELETE",
                target=ctx.resource("spoke_default_subnet"),
                api_version=api,
                requires=("spoke_default_subnet",),
                removes=("spoke_default_subnet",),
            ),
            TestCase(
                id="NET-023",
                category="virtual_networks",
                name="Delete the spoke VNet",
                action=f"{NET}/virtualNetworks/delete",
                method="DELETE",
                target=spoke,
                api_version=api,
                requires=("spoke_vnet",),
                removes=("spoke_vnet", "spoke_default_subnet"),
            ),
        ]
