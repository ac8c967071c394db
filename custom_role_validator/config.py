"""
Configuration module for the Custom Role Validator.
Defines all tunable parameters, API endpoints, and operational settings.
"""

from __future__ import annotations

import os
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from datetime import datetime, timezone


# ─── Authentication ─────────────────────────────────────────────────────────

@dataclass
class CertificateAuth:
    """Certificate-based app-only authentication configuration."""
    tenant_id: str
    client_id: str
    certificate_path: str          # Path to base64-encoded PFX
    certificate_password: str = "" # Will be prompted if empty


@dataclass
class ClientSecretAuth:
    """Client-secret credential (CI pipelines and the test service principal)."""
    tenant_id: str
    client_id: str
    client_secret: str = ""        # Falls back to RBAC_CLIENT_SECRET


# Azure CLI's public client; pre-consented for ARM and Graph in every tenant
AZURE_CLI_CLIENT_ID = "04b07795-8ddb-461a-bbee-02f9e1bf7b46"


@dataclass
class DelegatedAuth:
    """Delegated (device code) authentication configuration."""
    tenant_id: str
    client_id: str = AZURE_CLI_CLIENT_ID


@dataclass
class AuthConfig:
    """Administrator authentication: "certificate", "secret" or "delegated"."""
    mode: str = "certificate"
    certificate: Optional[CertificateAuth] = None
    secret: Optional[ClientSecretAuth] = None
    delegated: Optional[DelegatedAuth] = None


# ─── Endpoints ───────────────────────────────────────────────────────────────

AUTHORITY_HOST = "https://login.microsoftonline.com"

ARM_BASE_URL = "https://management.azure.com"
ARM_SCOPE = "https://management.azure.com/.default"

GRAPH_BASE_URL = "https://graph.microsoft.com"
GRAPH_API_VERSION = "v1.0"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"

ARM_API_VERSIONS = {
    "subscriptions": "2022-12-01",
    "resource_groups": "2021-04-01",
    "providers": "2021-04-01",
    "deployments": "2021-04-01",
    "role_assignments": "2022-04-01",
    "role_definitions": "2022-04-01",
    "policy_assignments": "2022-06-01",
    "policy_definitions": "2021-06-01",
    "locks": "2016-09-01",
    "network": "2023-09-01",
    "storage": "2023-01-01",
    "managed_identity": "2023-01-31",
    "private_dns": "2020-06-01",
}

# Built-in role / policy definition GUIDs used by the catalog
BUILTIN_ROLES = {
    "Owner": "8e3af657-a8ff-443c-a75c-2fe8c4bcb635",
    "Reader": "acdd72a7-3374-485c-a8f0-4f2e0ed2dd3f",
}
ALLOWED_LOCATIONS_POLICY_ID = (
    "/providers/Microsoft.Authorization/policyDefinitions/"
    "e56962a6-4747-49cd-b67b-bf8b01975c4c"
)

# Rate limiting / throttling
MAX_CONCURRENT_REQUESTS = 4       # Parallel requests per client
MAX_RETRIES = 5                   # Retry count for throttled requests
INITIAL_BACKOFF_SECONDS = 2.0     # First retry delay
MAX_BACKOFF_SECONDS = 60.0        # Cap on exponential backoff
BACKOFF_MULTIPLIER = 2.0          # Exponential factor
RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)

# Pagination
MAX_PAGES_PER_ENDPOINT = 1000     # Safety cap on nextLink loops

# Long-running operations
LRO_POLL_INTERVAL_SECONDS = 5.0
LRO_TIMEOUT_SECONDS = 1800.0


# ─── Retry Settings (eventual consistency) ──────────────────────────────────

@dataclass
class RetryConfig:
    """Fixed-interval retries for replication and propagation delays."""
    http_max_retries: int = MAX_RETRIES
    http_initial_backoff: float = INITIAL_BACKOFF_SECONDS
    http_max_backoff: float = MAX_BACKOFF_SECONDS
    lro_poll_interval: float = LRO_POLL_INTERVAL_SECONDS
    lro_timeout: float = LRO_TIMEOUT_SECONDS
    principal_attempts: int = 12          # New SP visible to ARM / Entra login
    principal_delay_seconds: float = 10.0
    propagation_attempts: int = 18        # Role assignment visible to the SP
    propagation_delay_seconds: float = 10.0
    cleanup_attempts: int = 5             # Cleanup retries on conflicts
    cleanup_delay_seconds: float = 30.0


# ─── Environment Settings ───────────────────────────────────────────────────

@dataclass
class EnvironmentConfig:
    """Subscription, region and naming of the throwaway test environment."""
    subscription_id: str = ""
    tenant_id: str = ""
    region: str = "eastus"
    role_name: str = ""                   # Custom role under test
    prefix: str = "rbactest"
    hub_address_space: str = "10.90.0.0/16"
    spoke_address_space: str = "10.91.0.0/16"
    secret_lifetime_days: int = 1
    keep_environment: bool = False

    @property
    def resource_group(self) -> str:
        return f"{self.prefix}-rg"


# ─── Test Suite Settings ────────────────────────────────────────────────────

STATUS_PASS = "PASS"
STATUS_FAIL = "FAIL"
STATUS_ERROR = "ERROR"
STATUS_SKIPPED = "SKIPPED"

EXPECT_DENY = "deny"
EXPECT_ALLOW = "allow"

# Requirement categories in catalog order (key → display name)
REQUIREMENT_CATEGORIES = {
    "role_assignments": "Role Assignment Management",
    "role_definitions": "Custom Role Definition Management",
    "policy": "Policy Governance",
    "identity_credentials": "Managed Identities & Credentials",
    "resource_governance": "Resource Group & Deployment Control",
    "locks": "Resource Locks",
    "virtual_networks": "Virtual Network Topology",
    "peering": "VNet Peering",
    "subnets": "Subnet Management",
    "routing": "Route Tables & UDRs",
    "public_ips": "Public IP Exposure",
    "network_security_groups": "Network Security Groups",
    "nat_gateway": "Outbound NAT",
    "hybrid_connectivity": "Hybrid Connectivity",
    "private_connectivity": "Private Endpoints, DNS & Service Firewalls",
}

# Substrings that identify an RBAC denial in an API error (case-insensitive)
DENIAL_MARKERS = (
    "authorizationfailed",
    "linkedauthorizationfailed",
    "does not have authorization",
    "forbidden",
    "authorizationpermissionmismatch",
    "authorization_requestdenied",
    "insufficientaccountpermissions",
)

# Policy denials are not role denials; they hide the RBAC decision
POLICY_DENIAL_MARKERS = (
    "requestdisallowedbypolicy",
)


# ─── Output Configuration ───────────────────────────────────────────────────

ALL_FORMATS = ["json", "csv", "html", "text", "junit"]


@dataclass
class OutputConfig:
    """Output directory and format settings."""
    base_dir: str = ""
    timestamp: str = ""
    formats: list[str] = field(default_factory=lambda: list(ALL_FORMATS))

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        if not self.base_dir:
            self.base_dir = os.path.join(
                os.getcwd(),
                f"rbac_validation_{self.timestamp}"
            )

    @property
    def run_dir(self) -> Path:
        return Path(self.base_dir)

    @property
    def state_file(self) -> Path:
        return self.run_dir / "environment_state.json"


# ─── Master Configuration ───────────────────────────────────────────────────

@dataclass
class SuiteConfig:
    """Top-level configuration for the entire suite."""
    auth: AuthConfig = field(default_factory=AuthConfig)
    environment: EnvironmentConfig = field(default_factory=EnvironmentConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    modules: list[str] = field(default_factory=lambda: ["authorization", "networking"])
    categories: list[str] = field(default_factory=list)   # Empty = all
    verbose: bool = False

    @classmethod
    def from_file(cls, path: str) -> "SuiteConfig":
        """Load configuration from a JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        config = cls()
        if "auth" in data:
            auth_data = data["auth"]
            config.auth.mode = auth_data.get("mode", "certificate")
            if "certificate" in auth_data:
                c = auth_data["certificate"]
                config.auth.certificate = CertificateAuth(
                    tenant_id=c["tenant_id"],
                    client_id=c["client_id"],
                    certificate_path=c.get("certificate_path", "./base64.txt"),
                    certificate_password=c.get("certificate_password", ""),
                )
            if "secret" in auth_data:
                s = auth_data["secret"]
                config.auth.secret = ClientSecretAuth(
                    tenant_id=s["tenant_id"],
                    client_id=s["client_id"],
                    client_secret=s.get("client_secret", ""),
                )
            if "delegated" in auth_data:
                d = auth_data["delegated"]
                config.auth.delegated = DelegatedAuth(
                    tenant_id=d["tenant_id"],
                    client_id=d.get("client_id", AZURE_CLI_CLIENT_ID),
                )
        for section, target in (
            ("environment", config.environment),
            ("retry", config.retry),
            ("output", config.output),
        ):
            for k, v in data.get(section, {}).items():
                if hasattr(target, k):
                    setattr(target, k, v)
        config.modules = data.get("modules", config.modules)
        config.categories = data.get("categories", config.categories)
        config.verbose = data.get("verbose", False)
        return config

    @property
    def tenant_id(self) -> str:
        """Tenant of whichever admin credential is configured."""
        if self.environment.tenant_id:
            return self.environment.tenant_id
        for cred in (self.auth.certificate, self.auth.secret, self.auth.delegated):
            if cred and cred.tenant_id:
                return cred.tenant_id
        return ""


# ─── Permissions required by the administrator identity ─────────────────────

REQUIRED_PERMISSIONS = {
    # Azure RBAC at subscription scope
    "Owner (or Contributor + User Access Administrator)":
        "Create the resource group, scaffold resources, role assignments and locks",
    # Microsoft Graph
    "Application.ReadWrite.OwnedBy": "Create and delete the test app registration",
}
