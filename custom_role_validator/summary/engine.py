"""
Summary Engine — Aggregates test results into per-category and per-module
breakdowns and an overall verdict.

Verdict model:
  - COMPLIANT: no FAIL or ERROR and at least one PASS.
  - NON-COMPLIANT: any FAIL (the role permits something it should not).
  - INCONCLUSIVE: only ERRORs beside PASSes, or nothing executed.
"""

from __future__ import annotations

from ..checks.base import TestResult
from ..config import REQUIREMENT_CATEGORIES, STATUS_ERROR, STATUS_FAIL, STATUS_PASS
from .models import CategorySummary, SuiteSummary


def compute_summary(results: list[TestResult]) -> SuiteSummary:
    """
    Build the run summary.

    Args:
        results: TestResult objects from every module, in execution order.

    Returns:
        SuiteSummary with totals, category/module breakdowns and failing cases.
    """
    summary = SuiteSummary()

    # Categories always appear in catalog order, even when nothing ran
    used = {r.category for r in results}
    for key, display in REQUIREMENT_CATEGORIES.items():
        if key in used:
            summary.categories[key] = CategorySummary(key=key, display_name=display)

    for r in results:
        summary.total += 1
        if r.status == STATUS_PASS:
            summary.passed += 1
        elif r.status == STATUS_FAIL:
            summary.failed += 1
        elif r.status == STATUS_ERROR:
            summary.errors += 1
        else:
            summary.skipped += 1

        category = summary.categories.setdefault(
            r.category, CategorySummary(key=r.category, display_name=r.category_name)
        )
        category.count(r.status)

        module = summary.modules.setdefault(
            r.module, CategorySummary(key=r.module, display_name=r.module.title())
        )
        module.count(r.status)

        if r.status in (STATUS_FAIL, STATUS_ERROR):
            summary.failing_cases.append({
                "test_id": r.test_id,
                "name": r.name,
                "status": r.status,
                "action": r.action,
                "detail": r.detail,
            })

    return summary
