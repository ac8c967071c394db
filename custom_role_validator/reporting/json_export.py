"""
JSON exporter — Produces the full machine-readable output of a validation run.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .. import __version__
from ..environment.context import SuiteContext
from ..summary.models import SuiteSummary


def export_json(
    summary: SuiteSummary,
    results: list,
    context: SuiteContext,
    output_dir: Path,
    run_id: str,
    audit: Optional[dict] = None,
    setup: Optional[dict] = None,
) -> Path:
    """
    Write the full run to a JSON file.

    Returns:
        Path to the created JSON file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    payload = {
        "metadata": {
            "tool": "Custom Role Validator",
            "version": __version__,
            "run_id": run_id,
            "subscription_id": context.subscription_id,
            "region": context.region,
            "role_name": context.role_name,
            "role_definition_id": context.role_definition_id,
            "generated_utc": datetime.now(timezone.utc).isoformat(),
        },
        "role_definition": _role_summary(context.role_definition),
        "environment": _environment_summary(context, setup),
        "summary": summary.to_dict(),
        "results": [r.to_dict() for r in results],
        "audit": audit or {},
    }

    filepath = output_dir / f"rbac_validation_{run_id}.json"

    with open(filepath, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, default=str, ensure_ascii=False)

    return filepath


def _role_summary(role_definition: dict) -> dict:
    props = role_definition.get("properties", {})
    return {
        "id": role_definition.get("id", ""),
        "role_name": props.get("roleName", ""),
        "type": props.get("type", ""),
        "description": props.get("description", ""),
        "permissions": props.get("permissions", []),
        "assignable_scopes": props.get("assignableScopes", []),
    }


def _environment_summary(context: SuiteContext, setup: Optional[dict]) -> dict[str, Any]:
    """Environment facts without the client secret."""
    sp = context.service_principal
    return {
        "resource_group_id": context.resource_group_id,
        "resources": dict(context.resources),
        "created": list(context.created),
        "reused": list(context.reused),
        "service_principal": {
            "display_name": sp.get("display_name", ""),
            "app_id": sp.get("app_id", ""),
            "object_id": sp.get("object_id", ""),
        },
        "artifacts": list(context.artifacts),
        "propagation_confirmed": context.propagation_confirmed,
        "setup": setup or {},
    }
