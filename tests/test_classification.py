from __future__ import annotations

import pytest

from custom_role_validator.arm.client import ArmAPIError
from custom_role_validator.checks.base import TestCase, classify_outcome, is_denial
from custom_role_validator.config import EXPECT_ALLOW, EXPECT_DENY


def _case(expect: str = EXPECT_DENY, absent_target: bool = False) -> TestCase:
    return TestCase(
        id="T-001",
        category="virtual_networks",
        name="Create a virtual network",
        action="Microsoft.Network/virtualNetworks/write",
        target="/subscriptions/x/resourceGroups/rg/providers/Microsoft.Network/virtualNetworks/v",
        expect=expect,
        absent_target=absent_target,
    )


def _error(status: int, code: str, message: str = "boom") -> ArmAPIError:
    return ArmAPIError(status, message, "https://management.azure.com/x", code=code)


def test_denied_write_passes_a_deny_case() -> None:
    status, detail, code, http_status = classify_outcome(_case(), error=_error(403, "AuthorizationFailed"))

    assert status == "PASS"
    assert "Denied as expected" in detail
    assert code == "AuthorizationFailed"
    assert http_status == 403


def test_successful_write_fails_a_deny_case() -> None:
    status, detail, _, http_status = classify_outcome(_case(), response={"id": "x"})

    assert status == "FAIL"
    assert "Microsoft.Network/virtualNetworks/write" in detail
    assert http_status is None


def test_read_baseline_passes_when_allowed_and_fails_when_denied() -> None:
    assert classify_outcome(_case(EXPECT_ALLOW), response={"value": []})[0] == "PASS"
    assert classify_outcome(_case(EXPECT_ALLOW), error=_error(403, "AuthorizationFailed"))[0] == "FAIL"


def test_policy_denial_is_an_error_even_with_403() -> None:
    error = _error(403, "RequestDisallowedByPolicy", "Resource was disallowed by policy")

    status, detail, code, _ = classify_outcome(_case(), error=error)

    assert status == "ERROR"
    assert "Azure Policy" in detail
    assert code == "RequestDisallowedByPolicy"


def test_non_authorization_api_error_is_an_error() -> None:
    status, detail, code, http_status = classify_outcome(_case(), error=_error(400, "InvalidRequestContent"))

    assert status == "ERROR"
    assert detail.startswith("Unexpected API error")
    assert (code, http_status) == ("InvalidRequestContent", 400)


def test_non_api_exception_is_an_error_with_type_name() -> None:
    status, detail, _, _ = classify_outcome(_case(), error=RuntimeError("socket closed"))

    assert status == "ERROR"
    assert detail == "RuntimeError: socket closed"


def test_not_found_on_a_real_target_is_an_error() -> None:
    status, _, code, http_status = classify_outcome(_case(), response={"_not_found": True})

    assert status == "ERROR"
    assert (code, http_status) == ("NotFound", 404)


def test_not_found_on_an_absent_target_means_the_request_was_authorized() -> None:
    deny = classify_outcome(_case(absent_target=True), response={"_not_found": True})
    allow = classify_outcome(_case(EXPECT_ALLOW, absent_target=True), response={"_not_found": True})

    assert deny[0] == "FAIL"
    assert allow[0] == "PASS"


@pytest.mark.parametrize(
    "status, code, message, expected",
    [
        (403, "", "", True),
        (400, "LinkedAuthorizationFailed", "linked scope", True),
        (401, "", "The client does not have authorization to perform", True),
        (403, "RequestDisallowedByPolicy", "", False),
        (409, "Conflict", "in use", False),
    ],
)
def test_is_denial(status: int, code: str, message: str, expected: bool) -> None:
    assert is_denial(_error(status, code, message)) is expected


def test_is_denial_ignores_non_api_errors() -> None:
    assert is_denial(ValueError("AuthorizationFailed")) is False
