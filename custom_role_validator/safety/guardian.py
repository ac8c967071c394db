"""
Scope Guardian — Confines every mutating request to the throwaway test scope.
Validates HTTP methods and target URLs, blocks writes outside the suite's
resource group, and logs safety events.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlsplit

from ..config import ARM_BASE_URL, GRAPH_BASE_URL

logger = logging.getLogger("custom_role_validator.safety")

# ─── Methods ─────────────────────────────────────────────────────────────────

READ_METHODS = {"GET", "HEAD", "OPTIONS"}
WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

_ARM_HOST = urlsplit(ARM_BASE_URL).netloc.lower()
_GRAPH_HOST = urlsplit(GRAPH_BASE_URL).netloc.lower()


class ScopeViolation(Exception):
    """Raised when a write targets something outside the test scope."""
    pass


def _normalize(path: str) -> str:
    return "/" + path.strip("/").lower()


class ScopeGuardian:
    """
    Validates every outbound HTTP request before execution.

    ARM writes are allowed under the suite's resource group, or on resource
    ids explicitly registered with allow(). Graph writes are allowed only for
    the suite's own app registration. Maintains an audit log of all checks.
    """

    def __init__(self, subscription_id: str, resource_group: str, prefix: str):
        self.subscription_id = subscription_id
        self.resource_group = resource_group
        self.prefix = prefix
        self.violations: list[dict] = []
        self.checks_performed: int = 0
        self.writes_permitted: int = 0
        self.started_at: str = datetime.now(timezone.utc).isoformat()
        self._allowed_ids: set[str] = set()
        self._allowed_graph_objects: set[str] = set()
        self._allowed_app_ids: set[str] = set()

    @property
    def resource_group_id(self) -> str:
        return f"/subscriptions/{self.subscription_id}/resourceGroups/{self.resource_group}"

    # --- Registration ---

    def allow(self, resource_id: str):
        """Permit writes to one ARM resource id outside the resource group."""
        self._allowed_ids.add(_normalize(resource_id))

    def allow_graph_object(self, object_id: str, app_id: str = ""):
        """Permit writes to the suite's app registration (and its SP by appId)."""
        if object_id:
            self._allowed_graph_objects.add(object_id.lower())
        if app_id:
            self._allowed_app_ids.add(app_id.lower())

    # --- Validation ---

    def validate_request(self, method: str, url: str, body: Optional[dict] = None) -> bool:
        """
        Validate that a request stays inside the test scope.
        Returns True if safe, raises ScopeViolation if not.
        """
        self.checks_performed += 1
        method_upper = method.upper()

        if method_upper in READ_METHODS:
            return True

        if method_upper not in WRITE_METHODS:
            self._record_violation(method_upper, url, "Unsupported HTTP method")
            raise ScopeViolation(f"SCOPE VIOLATION: Unsupported method: {method_upper} {url}")

        parts = urlsplit(url)
        host = parts.netloc.lower()

        if host == _ARM_HOST and self._arm_write_in_scope(parts.path):
            self.writes_permitted += 1
            return True

        if host == _GRAPH_HOST and self._graph_write_in_scope(method_upper, parts.path, body):
            self.writes_permitted += 1
            return True

        self._record_violation(method_upper, url, "Write outside the test scope")
        raise ScopeViolation(
            f"SCOPE VIOLATION: Write outside the test scope blocked: {method_upper} {url}"
        )

    def _arm_write_in_scope(self, path: str) -> bool:
        path = _normalize(path)
        rg_id = _normalize(self.resource_group_id)
        if path == rg_id or path.startswith(rg_id + "/"):
            return True
        return path in self._allowed_ids

    def _graph_write_in_scope(self, method: str, path: str, body: Optional[dict]) -> bool:
        segments = [s for s in path.strip("/").split("/") if s]
        if len(segments) < 2:
            return False
        # segments[0] is the API version
        collection = segments[1].lower()
        body = body or {}

        if len(segments) == 2 and method == "POST":
            if collection == "applications":
                return str(body.get("displayName", "")).startswith(self.prefix)
            if collection == "serviceprincipals":
                return str(body.get("appId", "")).lower() in self._allowed_app_ids
            return False

        if collection in ("applications", "serviceprincipals") and len(segments) >= 3:
            return segments[2].lower() in self._allowed_graph_objects

        return False

    def _record_violation(self, method: str, url: str, reason: str):
        """Record a scope violation for audit."""
        violation = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "method": method,
            "url": url,
            "reason": reason,
        }
        self.violations.append(violation)
        logger.critical(f"SCOPE VIOLATION: {reason} — {method} {url}")

    def get_audit_record(self) -> dict:
        """Return the full scope audit record."""
        return {
            "scope_guardian": {
                "resource_group_id": self.resource_group_id,
                "started_at": self.started_at,
                "checks_performed": self.checks_performed,
                "writes_permitted": self.writes_permitted,
                "explicit_allowances": sorted(self._allowed_ids),
                "violations_detected": len(self.violations),
                "violations": self.violations,
                "status": "CLEAN" if not self.violations else "VIOLATIONS_DETECTED",
            }
        }

    def print_banner(self):
        """Print the scope warning banner."""
        # Box-drawing only on an interactive UTF-8 terminal
        enc = getattr(sys.stdout, "encoding", "") or ""
        unicode_ok = (
            sys.stdout.isatty()
            and enc.lower().replace("-", "") in ("utf8", "utf16", "utf32")
        )
        lines = [
            "CUSTOM ROLE VALIDATION — WRITES CONFINED TO THE TEST SCOPE",
            f"* Subscription:   {self.subscription_id or '(resolved at login)'}",
            f"* Resource group: {self.resource_group}",
            "* Every request is validated before execution",
            "* All provisioned resources are deleted at the end of the run",
        ]
        if unicode_ok:
            width = 75
            out = ["╔" + "═" * width + "╗"]
            out += [f"║   {line:<{width - 3}}║" for line in lines]
            out.append("╚" + "═" * width + "╝")
            try:
                print("\n".join(out))
                return
            except UnicodeEncodeError:
                pass

        print("=" * 75)
        for line in lines:
            print("  " + line.replace("—", "--"))
        print("=" * 75)
