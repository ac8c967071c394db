"""
Shared suite context — the single object passed between pipeline stages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class SuiteContext:
    """
    Everything the stages share: where the environment lives, which
    resources exist (logical key → ARM resource id), the test principal,
    and artifacts left behind by operations that should have been denied.
    """
    run_id: str
    subscription_id: str
    tenant_id: str
    region: str
    prefix: str
    role_name: str = ""
    role_definition_id: str = ""
    role_definition: dict[str, Any] = field(default_factory=dict)
    resources: dict[str, str] = field(default_factory=dict)
    created: list[str] = field(default_factory=list)      # keys provisioned by this run
    reused: list[str] = field(default_factory=list)       # keys found already present
    service_principal: dict[str, str] = field(default_factory=dict)
    client_secret: str = field(default="", repr=False)
    artifacts: list[dict[str, str]] = field(default_factory=list)
    propagation_confirmed: bool = False

    @property
    def resource_group(self) -> str:
        return f"{self.prefix}-rg"

    @property
    def subscription_scope(self) -> str:
        return f"/subscriptions/{self.subscription_id}"

    @property
    def resource_group_id(self) -> str:
        return f"{self.subscription_scope}/resourceGroups/{self.resource_group}"

    def resource(self, key: str, default: str = "") -> str:
        return self.resources.get(key, default)

    def set_resource(self, key: str, resource_id: str, created: bool = False):
        self.resources[key] = resource_id
        bucket = self.created if created else self.reused
        if key not in bucket:
            bucket.append(key)

    def drop_resource(self, key: str):
        self.resources.pop(key, None)

    def add_artifact(self, resource_id: str, api_version: str, source: str):
        """Track something an allowed-but-should-be-denied call created."""
        if any(a["id"].lower() == resource_id.lower() for a in self.artifacts):
            return
        self.artifacts.append({
            "id": resource_id,
            "api_version": api_version,
            "source": source,
        })

    def to_dict(self, include_secret: bool = False) -> dict:
        data = {
            "run_id": self.run_id,
            "subscription_id": self.subscription_id,
            "tenant_id": self.tenant_id,
            "region": self.region,
            "prefix": self.prefix,
            "role_name": self.role_name,
            "role_definition_id": self.role_definition_id,
            "resource_group_id": self.resource_group_id,
            "resources": dict(self.resources),
            "created": list(self.created),
            "reused": list(self.reused),
            "service_principal": dict(self.service_principal),
            "artifacts": list(self.artifacts),
            "propagation_confirmed": self.propagation_confirmed,
        }
        if include_secret:
            data["client_secret"] = self.client_secret
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "SuiteContext":
        return cls(
            run_id=data["run_id"],
            subscription_id=data["subscription_id"],
            tenant_id=data.get("tenant_id", ""),
            region=data.get("region", ""),
            prefix=data["prefix"],
            role_name=data.get("role_name", ""),
            role_definition_id=data.get("role_definition_id", ""),
            resources=dict(data.get("resources", {})),
            created=list(data.get("created", [])),
            reused=list(data.get("reused", [])),
            service_principal=dict(data.get("service_principal", {})),
            client_secret=data.get("client_secret", ""),
            artifacts=list(data.get("artifacts", [])),
            propagation_confirmed=data.get("propagation_confirmed", False),
        )
