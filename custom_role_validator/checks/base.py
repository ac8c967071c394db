"""
Base test module — Abstract interface for all role validation modules.
Defines the TestCase / TestResult data model, outcome classification,
and the sequential runner contract.
"""

from __future__ import annotations

import copy
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from ..arm.client import ApiError, ArmClient
from ..config import (
    DENIAL_MARKERS,
    EXPECT_ALLOW,
    EXPECT_DENY,
    POLICY_DENIAL_MARKERS,
    REQUIREMENT_CATEGORIES,
    STATUS_ERROR,
    STATUS_FAIL,
    STATUS_PASS,
    STATUS_SKIPPED,
)
from ..environment.context import SuiteContext

logger = logging.getLogger("custom_role_validator.checks")

Operation = Callable[[ArmClient, SuiteContext], Awaitable[dict]]


class PrerequisiteError(Exception):
    """The current state of a target could not be read before modifying it."""
    pass


@dataclass
class TestCase:
    """
    One "attempt operation X" check against the role under test.
    """
    __test__ = False                     # not a pytest class

    id: str                              # Unique case ID (e.g., "NET-007")
    category: str                        # Requirement category key
    name: str                            # Human-readable description
    action: str                          # ARM permission exercised
    method: str = "PUT"
    target: str = ""                     # ARM resource id
    api_version: str = ""
    body: Optional[dict] = None
    expect: str = EXPECT_DENY            # deny, or allow for read baselines
    requires: tuple[str, ...] = ()       # Context resource keys that must exist
    creates: bool = False                # Success leaves an artifact to clean up
    removes: tuple[str, ...] = ()        # Context keys gone after a successful delete
    outside_scope: bool = False          # Target lives outside the resource group
    absent_target: bool = False          # Target deliberately missing; 404 still means authorized
    operation: Optional[Operation] = None


@dataclass
class TestResult:
    """Outcome of one executed (or skipped) test case."""
    __test__ = False

    test_id: str
    module: str
    category: str
    name: str
    action: str
    expected: str
    status: str
    detail: str = ""
    error_code: str = ""
    http_status: Optional[int] = None
    target: str = ""
    started_at: str = ""
    duration_seconds: float = 0.0

    @property
    def category_name(self) -> str:
        return REQUIREMENT_CATEGORIES.get(self.category, self.category)

    def to_dict(self) -> dict:
        return {
            "test_id": self.test_id,
            "module": self.module,
            "category": self.category,
            "category_name": self.category_name,
            "name": self.name,
            "action": self.action,
            "expected": self.expected,
            "status": self.status,
            "detail": self.detail,
            "error_code": self.error_code,
            "http_status": self.http_status,
            "target": self.target,
            "started_at": self.started_at,
            "duration_seconds": self.duration_seconds,
        }


# ─── Classification ─────────────────────────────────────────────────────────

def _matches(text: str, markers: tuple[str, ...]) -> bool:
    text = text.lower()
    return any(marker in text for marker in markers)


def is_denial(error: Exception) -> bool:
    """True when the error is an RBAC denial (HTTP 403 or a known marker)."""
    if isinstance(error, ApiError):
        if _matches(f"{error.code} {error.message}", POLICY_DENIAL_MARKERS):
            return False
        if error.status_code == 403:
            return True
        return _matches(f"{error.code} {error.message}", DENIAL_MARKERS)
    return False


def classify_outcome(
    case: TestCase,
    response: Optional[dict] = None,
    error: Optional[Exception] = None,
) -> tuple[str, str, str, Optional[int]]:
    """
    Bucket one attempt into PASS / FAIL / ERROR.
    Returns (status, detail, error_code, http_status).
    """
    expect_deny = case.expect == EXPECT_DENY

    if error is None:
        if (response or {}).get("_not_found"):
            if not case.absent_target:
                return (
                    STATUS_ERROR,
                    "Target not found; authorization could not be determined",
                    "NotFound", 404,
                )
            if expect_deny:
                return (
                    STATUS_FAIL,
                    f"Request was authorized (target absent); role permits {case.action}",
                    "NotFound", 404,
                )
            return STATUS_PASS, "Request was authorized (target absent)", "NotFound", 404
        if expect_deny:
            return STATUS_FAIL, f"Operation succeeded; role permits {case.action}", "", None
        return STATUS_PASS, "Operation permitted as expected", "", None

    if isinstance(error, ApiError):
        code = error.code or ""
        if _matches(f"{code} {error.message}", POLICY_DENIAL_MARKERS):
            return (
                STATUS_ERROR,
                f"Blocked by Azure Policy before the role was evaluated: {error.message}",
                code, error.status_code,
            )
        if is_denial(error):
            if expect_deny:
                return STATUS_PASS, f"Denied as expected ({code or error.status_code})", code, error.status_code
            return STATUS_FAIL, f"Denied but expected to be allowed: {error.message}", code, error.status_code
        return STATUS_ERROR, f"Unexpected API error: {error.message}", code, error.status_code

    return STATUS_ERROR, f"{type(error).__name__}: {error}", "", None


# ─── Update helper ──────────────────────────────────────────────────────────

def update_operation(
    resource_key: str,
    api_version: str,
    mutate: Callable[[dict, SuiteContext], dict],
) -> Operation:
    """
    Build a read-modify-write operation: GET the resource named by
    `resource_key`, apply `mutate`, PUT the result back.
    """
    async def _operation(arm: ArmClient, context: SuiteContext) -> dict:
        resource_id = context.resource(resource_key)
        try:
            current = await arm.get(resource_id, api_version)
        except ApiError as e:
            raise PrerequisiteError(f"Could not read {resource_id}: {e.message}") from e
        if current.get("_not_found"):
            raise PrerequisiteError(f"{resource_id} no longer exists")
        body = mutate(copy.deepcopy(current), context)
        return await arm.call("PUT", resource_id, api_version, body=body, wait=False)

    return _operation


# ─── Module contract ────────────────────────────────────────────────────────

class BaseTestModule(ABC):
    """
    Abstract base class for all test modules.

    Subclasses implement build_cases() with the ordered catalog.
    The base class provides:
      - Category filtering and prerequisite checks (SKIPPED)
      - Guardian allowances for out-of-scope targets
      - Artifact tracking for operations that should have been denied
      - Per-case timing and classification
    """

    name: str = "base"
    description: str = "Base test module"

    def __init__(
        self,
        arm: ArmClient,
        context: SuiteContext,
        categories: Optional[list[str]] = None,
    ):
        self.arm = arm
        self.context = context
        self.categories = set(categories or [])
        self.results: list[TestResult] = []

    @abstractmethod
    def build_cases(self) -> list[TestCase]:
        """Return the ordered test catalog for the current context."""
        raise NotImplementedError

    async def execute(self) -> list[TestResult]:
        """Run every case strictly one at a time."""
        self.results = []
        started = time.time()
        logger.info(f"[{self.name}] Starting test phase...")

        for case in self.build_cases():
            self.results.append(await self.run_case(case))

        counts: dict[str, int] = {}
        for r in self.results:
            counts[r.status] = counts.get(r.status, 0) + 1
        logger.info(
            f"[{self.name}] Completed in {time.time() - started:.1f}s — "
            + ", ".join(f"{k}={v}" for k, v in sorted(counts.items()))
        )
        return self.results

    def _result(self, case: TestCase, status: str, detail: str, **kwargs) -> TestResult:
        return TestResult(
            test_id=case.id,
            module=self.name,
            category=case.category,
            name=case.name,
            action=case.action,
            expected=case.expect,
            status=status,
            detail=detail,
            target=case.target,
            **kwargs,
        )

    async def run_case(self, case: TestCase) -> TestResult:
        """Execute and classify a single case."""
        started_at = datetime.now(timezone.utc).isoformat()

        if self.categories and case.category not in self.categories:
            return self._result(case, STATUS_SKIPPED, "Category not selected", started_at=started_at)

        missing = [key for key in case.requires if not self.context.resource(key)]
        if missing:
            result = self._result(
                case, STATUS_SKIPPED,
                f"Prerequisite resource unavailable: {', '.join(missing)}",
                started_at=started_at,
            )
            logger.info(f"[{self.name}] {case.id} SKIPPED: {result.detail}")
            return result

        if case.outside_scope:
            self.arm.guardian.allow(case.target)

        t0 = time.monotonic()
        response: Optional[dict] = None
        error: Optional[Exception] = None
        try:
            if case.operation is not None:
                response = await case.operation(self.arm, self.context)
            else:
                response = await self.arm.call(
                    case.method, case.target, case.api_version, body=case.body, wait=False
                )
        except Exception as e:
            error = e
        duration = round(time.monotonic() - t0, 3)

        status, detail, error_code, http_status = classify_outcome(case, response, error)
        if error is None and case.expect == EXPECT_DENY and not (response or {}).get("_not_found"):
            self._record_side_effects(case)

        result = self._result(
            case, status, detail,
            error_code=error_code,
            http_status=http_status,
            started_at=started_at,
            duration_seconds=duration,
        )
        log = logger.warning if status in (STATUS_FAIL, STATUS_ERROR) else logger.info
        log(f"[{self.name}] {case.id} {status}: {detail}")
        return result

    def _record_side_effects(self, case: TestCase):
        """An operation that should have been denied went through."""
        if case.creates:
            self.context.add_artifact(case.target, case.api_version, case.id)
        for key in case.removes:
            self.context.drop_resource(key)

    # ── Helpers for subclasses ──────────────────────────────────────────────

    def rg_child(self, provider_path: str) -> str:
        return f"{self.context.resource_group_id}/providers/{provider_path}"

    def sub_child(self, provider_path: str) -> str:
        return f"{self.context.subscription_scope}/providers/{provider_path}"

    @property
    def principal_id(self) -> str:
        return self.context.service_principal.get("object_id", "")


def case_summary(case: TestCase) -> dict[str, Any]:
    """Catalog row for list-tests and reports."""
    return {
        "id": case.id,
        "category": case.category,
        "category_name": REQUIREMENT_CATEGORIES.get(case.category, case.category),
        "name": case.name,
        "expect": case.expect,
        "action": case.action,
    }
