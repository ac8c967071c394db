"""
Cleanup — tears down everything the suite provisioned or accidentally created.
Each step retries with a fixed sleep on eventual-consistency conflicts and a
failed step never stops the following ones.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable

from ..arm.client import ApiError, ArmClient
from ..config import ARM_API_VERSIONS, RetryConfig
from ..graph.client import GraphClient
from .context import SuiteContext
from .retry import looks_like_transient_conflict, retry_fixed

logger = logging.getLogger("custom_role_validator.environment.cleanup")


def _lookup_should_retry(error: Exception) -> bool:
    if isinstance(error, ApiError) and error.status_code >= 500:
        return True
    return looks_like_transient_conflict(error)


class CleanupReport:
    """Outcome of every teardown step."""

    def __init__(self):
        self.steps: list[dict[str, Any]] = []
        self.started_at = time.time()
        self.duration_seconds = 0.0

    def record(self, step: str, target: str, status: str, error: str = ""):
        self.steps.append({"step": step, "target": target, "status": status, "error": error})
        if status == "failed":
            logger.error(f"[cleanup] {step} failed for {target}: {error}")
        elif status == "unknown":
            logger.warning(f"[cleanup] {step} inconclusive for {target}: {error}")
        else:
            logger.info(f"[cleanup] {step}: {status} ({target})")

    @property
    def failed(self) -> list[dict[str, Any]]:
        return [s for s in self.steps if s["status"] == "failed"]

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {
            "steps": self.steps,
            "failed": len(self.failed),
            "duration_seconds": self.duration_seconds,
        }


class EnvironmentCleanup:
    """
    Order: artifacts inside the resource group (newest first) → every
    management lock in the resource group → subscription-scope artifacts →
    the resource group → the app registration.
    """

    def __init__(
        self,
        arm: ArmClient,
        graph: GraphClient,
        context: SuiteContext,
        retry: RetryConfig,
    ):
        self.arm = arm
        self.graph = graph
        self.context = context
        self.retry = retry
        self.report = CleanupReport()

    async def run(self) -> CleanupReport:
        self._register_allowances()
        rg_absent = await self._resource_group_absent()
        in_group, outside = self._partition_artifacts()
        if not rg_absent:
            await self._delete_artifacts(in_group)
            await self._delete_locks()
        await self._delete_artifacts(outside)
        if rg_absent:
            self.report.record("resource group", self.context.resource_group_id, "absent")
        else:
            await self._delete_resource_group()
        await self._delete_application()
        self.report.duration_seconds = round(time.time() - self.report.started_at, 2)
        return self.report

    def _register_allowances(self):
        """Artifacts outside the resource group were created by this suite; allow their deletion."""
        guardian = self.arm.guardian
        for artifact in self.context.artifacts:
            guardian.allow(artifact["id"])
        sp = self.context.service_principal
        if sp.get("application_object_id"):
            self.graph.guardian.allow_graph_object(sp["application_object_id"], sp.get("app_id", ""))

    async def _attempt(self, step: str, target: str, operation: Callable[[], Awaitable[dict]]):
        try:
            result = await retry_fixed(
                operation,
                attempts=self.retry.cleanup_attempts,
                delay=self.retry.cleanup_delay_seconds,
                should_retry=looks_like_transient_conflict,
                label=f"cleanup {step}",
            )
        except Exception as e:
            self.report.record(step, target, "failed", f"{type(e).__name__}: {e}")
            return
        status = "absent" if result.get("_not_found") else "deleted"
        self.report.record(step, target, status)

    def _partition_artifacts(self) -> tuple[list[dict], list[dict]]:
        """
        Split artifacts into those inside the resource group and those at
        subscription scope, both newest first. Locks lead so they cannot block
        the deletes that follow.
        """
        rg_prefix = self.context.resource_group_id.lower() + "/"
        newest_first = list(reversed(self.context.artifacts))
        newest_first.sort(key=lambda a: "/providers/microsoft.authorization/locks/" not in a["id"].lower())
        in_group = [a for a in newest_first if a["id"].lower().startswith(rg_prefix)]
        outside = [a for a in newest_first if not a["id"].lower().startswith(rg_prefix)]
        return in_group, outside

    async def _delete_artifacts(self, artifacts: list[dict]):
        for artifact in artifacts:
            resource_id = artifact["id"]
            api_version = artifact["api_version"]
            await self._attempt(
                f"artifact ({artifact.get('source', 'unknown')})",
                resource_id,
                lambda rid=resource_id, av=api_version: self.arm.delete(rid, av, wait=True),
            )

    async def _resource_group_absent(self) -> bool:
        """
        True only when ARM answers 404. A lookup that keeps failing is noted
        and the deletes still run; their own 404 handling covers a group that
        turns out to be gone.
        """
        rg_id = self.context.resource_group_id
        try:
            rg = await retry_fixed(
                lambda: self.arm.get(rg_id, ARM_API_VERSIONS["resource_groups"]),
                attempts=self.retry.cleanup_attempts,
                delay=self.retry.cleanup_delay_seconds,
                should_retry=_lookup_should_retry,
                label="cleanup resource group lookup",
            )
        except Exception as e:
            self.report.record("resource group lookup", rg_id, "unknown", f"{type(e).__name__}: {e}")
            return False
        return bool(rg.get("_not_found"))

    async def _delete_locks(self):
        """Every lock at or below the resource group blocks its deletion."""
        api_version = ARM_API_VERSIONS["locks"]
        try:
            locks = await self.arm.list_all(
                f"{self.context.resource_group_id}/providers/Microsoft.Authorization/locks",
                api_version,
            )
        except Exception as e:
            self.report.record("list locks", self.context.resource_group_id, "failed", str(e))
            return
        for lock in locks:
            lock_id = lock["id"]
            await self._attempt(
                "management lock",
                lock_id,
                lambda lid=lock_id: self.arm.delete(lid, api_version, wait=True),
            )

    async def _delete_resource_group(self):
        rg_id = self.context.resource_group_id
        await self._attempt(
            "resource group",
            rg_id,
            lambda: self.arm.delete(rg_id, ARM_API_VERSIONS["resource_groups"], wait=True),
        )

    async def _delete_application(self):
        app_object_id = self.context.service_principal.get("application_object_id")
        if not app_object_id:
            return
        await self._attempt(
            "app registration",
            app_object_id,
            lambda: self.graph.delete(f"applications/{app_object_id}"),
        )
