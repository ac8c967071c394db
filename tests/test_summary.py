from __future__ import annotations

from custom_role_validator.checks.base import TestResult
from custom_role_validator.summary import compute_summary
from custom_role_validator.summary.models import EXIT_OK, EXIT_TEST_FAILURES


def _result(test_id: str, status: str, category: str = "peering", module: str = "networking") -> TestResult:
    return TestResult(
        test_id=test_id,
        module=module,
        category=category,
        name=f"case {test_id}",
        action="Microsoft.Network/virtualNetworks/virtualNetworkPeerings/write",
        expected="deny",
        status=status,
        detail=f"{status} detail",
    )


def test_all_pass_is_compliant() -> None:
    summary = compute_summary([_result("NET-004", "PASS"), _result("NET-005", "PASS")])

    assert summary.verdict == "COMPLIANT"
    assert summary.exit_code == EXIT_OK
    assert summary.pass_rate == 100.0
    assert summary.failing_cases == []


def test_any_fail_is_non_compliant_and_exits_one() -> None:
    summary = compute_summary([
        _result("NET-004", "PASS"),
        _result("NET-005", "FAIL"),
        _result("NET-006", "ERROR", category="subnets"),
    ])

    assert summary.verdict == "NON-COMPLIANT"
    assert summary.exit_code == EXIT_TEST_FAILURES
    assert [c["test_id"] for c in summary.failing_cases] == ["NET-005", "NET-006"]


def test_errors_without_failures_are_inconclusive() -> None:
    summary = compute_summary([_result("NET-004", "PASS"), _result("NET-006", "ERROR")])

    assert summary.verdict == "INCONCLUSIVE"
    assert summary.exit_code == EXIT_TEST_FAILURES


def test_nothing_executed_is_inconclusive_but_exits_zero() -> None:
    summary = compute_summary([_result("NET-004", "SKIPPED")])

    assert summary.verdict == "INCONCLUSIVE"
    assert summary.exit_code == EXIT_OK
    assert summary.executed == 0
    assert summary.pass_rate == 0.0


def test_skipped_cases_do_not_count_toward_pass_rate() -> None:
    summary = compute_summary([
        _result("NET-004", "PASS"),
        _result("NET-005", "FAIL"),
        _result("NET-006", "SKIPPED"),
    ])

    assert summary.total == 3
    assert summary.executed == 2
    assert summary.pass_rate == 50.0


def test_categories_follow_catalog_order_with_worst_status() -> None:
    summary = compute_summary([
        _result("NET-010", "PASS", category="routing"),
        _result("AUTH-001", "PASS", category="role_assignments", module="authorization"),
        _result("NET-004", "PASS", category="peering"),
        _result("NET-005", "ERROR", category="peering"),
    ])

    assert list(summary.categories) == ["role_assignments", "peering", "routing"]
    assert summary.categories["peering"].status == "ERROR"
    assert summary.categories["peering"].display_name == "VNet Peering"
    assert set(summary.modules) == {"networking", "authorization"}
    assert summary.modules["networking"].errors == 1


def test_to_dict_carries_verdict_and_breakdowns() -> None:
    data = compute_summary([_result("NET-004", "FAIL")]).to_dict()

    assert data["verdict"] == "NON-COMPLIANT"
    assert data["categories"]["peering"]["failed"] == 1
    assert data["modules"]["networking"]["status"] == "FAIL"
