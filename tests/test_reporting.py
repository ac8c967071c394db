from __future__ import annotations

import csv
import json
import xml.etree.ElementTree as ET

import pytest

from custom_role_validator.checks.base import TestResult
from custom_role_validator.reporting import export_csv, export_html, export_json, export_junit, export_text
from custom_role_validator.summary import compute_summary

RUN_ID = "20260101T000000Z_test"


@pytest.fixture
def results() -> list[TestResult]:
    return [
        TestResult(
            test_id="AUTH-001", module="authorization", category="role_assignments",
            name="Assign Owner <at RG>", action="Microsoft.Authorization/roleAssignments/write",
            expected="deny", status="PASS", detail="Denied as expected (AuthorizationFailed)",
            error_code="AuthorizationFailed", http_status=403, duration_seconds=0.25,
        ),
        TestResult(
            test_id="NET-001", module="networking", category="virtual_networks",
            name="Create a virtual network", action="Microsoft.Network/virtualNetworks/write",
            expected="deny", status="FAIL",
            detail="Operation succeeded; role permits Microsoft.Network/virtualNetworks/write",
            duration_seconds=1.5,
        ),
        TestResult(
            test_id="NET-011", module="networking", category="public_ips",
            name="Create a public IP", action="Microsoft.Network/publicIPAddresses/write",
            expected="deny", status="ERROR", detail="Blocked by Azure Policy before the role was evaluated",
            error_code="RequestDisallowedByPolicy", http_status=403,
        ),
        TestResult(
            test_id="NET-012", module="networking", category="public_ips",
            name="Create a public IP prefix", action="Microsoft.Network/publicIPPrefixes/write",
            expected="deny", status="SKIPPED", detail="Category not selected",
        ),
    ]


def test_json_export_contains_everything_but_the_secret(tmp_path, context, results) -> None:
    context.add_artifact(f"{context.resource_group_id}/providers/Microsoft.Network/virtualNetworks/rogue", "2023-09-01", "NET-001")
    summary = compute_summary(results)

    path = export_json(summary, results, context, tmp_path, RUN_ID, audit={"scope_guardian": {}}, setup={"created": []})

    text = path.read_text(encoding="utf-8")
    payload = json.loads(text)
    assert path.name == f"rbac_validation_{RUN_ID}.json"
    assert payload["metadata"]["role_name"] == "NetOps Operator"
    assert payload["summary"]["verdict"] == "NON-COMPLIANT"
    assert len(payload["results"]) == 4
    assert payload["environment"]["artifacts"][0]["source"] == "NET-001"
    assert payload["role_definition"]["type"] == "CustomRole"
    assert context.client_secret not in text


def test_csv_export_writes_results_and_categories(tmp_path, results) -> None:
    paths = export_csv(compute_summary(results), results, tmp_path, RUN_ID)

    assert [p.name for p in paths] == [f"results_{RUN_ID}.csv", f"category_summary_{RUN_ID}.csv"]
    with open(paths[0], encoding="utf-8-sig", newline="") as fh:
        rows = list(csv.DictReader(fh))
    assert [r["status"] for r in rows] == ["PASS", "FAIL", "ERROR", "SKIPPED"]
    assert rows[1]["http_status"] == ""
    with open(paths[1], encoding="utf-8-sig", newline="") as fh:
        categories = {r["key"]: r for r in csv.DictReader(fh)}
    assert categories["public_ips"]["status"] == "ERROR"


def test_junit_export_maps_statuses(tmp_path, results) -> None:
    path = export_junit(results, tmp_path, RUN_ID)

    root = ET.parse(path).getroot()
    assert root.tag == "testsuites"
    assert (root.get("tests"), root.get("failures"), root.get("errors"), root.get("skipped")) == ("4", "1", "1", "1")
    suites = {s.get("name"): s for s in root.findall("testsuite")}
    assert set(suites) == {"authorization", "networking"}
    networking = suites["networking"]
    assert networking.find("testcase/failure") is not None
    assert networking.find("testcase/error").get("type") == "RequestDisallowedByPolicy"
    assert networking.find("testcase/skipped") is not None


def test_html_report_escapes_case_names(tmp_path, context, results) -> None:
    path = export_html(compute_summary(results), results, context, tmp_path, RUN_ID)

    html = path.read_text(encoding="utf-8")
    assert "Assign Owner &lt;at RG&gt;" in html
    assert "NON-COMPLIANT" in html
    assert "VNet Peering" not in html


def test_text_summary_lists_failures(tmp_path, context, results) -> None:
    path = export_text(compute_summary(results), results, context, tmp_path, RUN_ID)

    text = path.read_text(encoding="utf-8")
    assert "VERDICT: NON-COMPLIANT" in text
    assert "[FAIL] NET-001 Create a virtual network" in text
    assert "Public IP Exposure" in text
