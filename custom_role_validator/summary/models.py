"""
Summary data models — Defines structured types for the summary engine output.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..config import STATUS_ERROR, STATUS_FAIL, STATUS_PASS, STATUS_SKIPPED

VERDICT_COMPLIANT = "COMPLIANT"
VERDICT_NON_COMPLIANT = "NON-COMPLIANT"
VERDICT_INCONCLUSIVE = "INCONCLUSIVE"

EXIT_OK = 0
EXIT_TEST_FAILURES = 1
EXIT_SETUP_FAILURE = 2


@dataclass
class CategorySummary:
    """Status counts for one requirement category (or one module)."""
    key: str
    display_name: str
    passed: int = 0
    failed: int = 0
    errors: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.passed + self.failed + self.errors + self.skipped

    @property
    def executed(self) -> int:
        return self.total - self.skipped

    @property
    def pass_rate(self) -> float:
        return round(100.0 * self.passed / self.executed, 1) if self.executed else 0.0

    @property
    def status(self) -> str:
        """Worst status observed: FAIL > ERROR > PASS > SKIPPED."""
        if self.failed:
            return STATUS_FAIL
        if self.errors:
            return STATUS_ERROR
        if self.passed:
            return STATUS_PASS
        return STATUS_SKIPPED

    def count(self, status: str):
        if status == STATUS_PASS:
            self.passed += 1
        elif status == STATUS_FAIL:
            self.failed += 1
        elif status == STATUS_ERROR:
            self.errors += 1
        else:
            self.skipped += 1

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "display_name": self.display_name,
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "errors": self.errors,
            "skipped": self.skipped,
            "pass_rate": self.pass_rate,
            "status": self.status,
        }


@dataclass
class SuiteSummary:
    """Complete summary of a validation run."""
    total: int = 0
    passed: int = 0
    failed: int = 0
    errors: int = 0
    skipped: int = 0
    categories: dict[str, CategorySummary] = field(default_factory=dict)
    modules: dict[str, CategorySummary] = field(default_factory=dict)
    failing_cases: list[dict] = field(default_factory=list)

    @property
    def executed(self) -> int:
        return self.total - self.skipped

    @property
    def pass_rate(self) -> float:
        return round(100.0 * self.passed / self.executed, 1) if self.executed else 0.0

    @property
    def verdict(self) -> str:
        if self.failed:
            return VERDICT_NON_COMPLIANT
        if self.errors or not self.passed:
            return VERDICT_INCONCLUSIVE
        return VERDICT_COMPLIANT

    @property
    def exit_code(self) -> int:
        return EXIT_TEST_FAILURES if (self.failed or self.errors) else EXIT_OK

    def to_dict(self) -> dict:
        return {
            "verdict": self.verdict,
            "total": self.total,
            "executed": self.executed,
            "passed": self.passed,
            "failed": self.failed,
            "errors": self.errors,
            "skipped": self.skipped,
            "pass_rate": self.pass_rate,
            "categories": {k: v.to_dict() for k, v in self.categories.items()},
            "modules": {k: v.to_dict() for k, v in self.modules.items()},
            "failing_cases": self.failing_cases,
        }
