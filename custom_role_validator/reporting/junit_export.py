"""
JUnit XML exporter — one testsuite per module for CI dashboards.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from pathlib import Path

from ..config import STATUS_ERROR, STATUS_FAIL, STATUS_SKIPPED


def build_junit(results: list, run_id: str) -> ET.Element:
    """FAIL → <failure>, ERROR → <error>, SKIPPED → <skipped>."""
    root = ET.Element("testsuites", name=f"custom-role-validation-{run_id}")
    suites: dict[str, ET.Element] = {}
    totals = {"tests": 0, "failures": 0, "errors": 0, "skipped": 0}
    per_suite: dict[str, dict[str, int]] = {}
    durations: dict[str, float] = {}

    for r in results:
        suite = suites.get(r.module)
        if suite is None:
            suite = ET.SubElement(root, "testsuite", name=r.module)
            suites[r.module] = suite
            per_suite[r.module] = {"tests": 0, "failures": 0, "errors": 0, "skipped": 0}
            durations[r.module] = 0.0

        case = ET.SubElement(
            suite, "testcase",
            classname=f"{r.module}.{r.category}",
            name=f"{r.test_id} {r.name}",
            time=f"{r.duration_seconds:.3f}",
        )
        counts = per_suite[r.module]
        counts["tests"] += 1
        durations[r.module] += r.duration_seconds

        message = f"{r.detail} [{r.action}]"
        if r.status == STATUS_FAIL:
            ET.SubElement(case, "failure", message=message, type=r.error_code or "Permitted").text = r.detail
            counts["failures"] += 1
        elif r.status == STATUS_ERROR:
            ET.SubElement(case, "error", message=message, type=r.error_code or "Error").text = r.detail
            counts["errors"] += 1
        elif r.status == STATUS_SKIPPED:
            ET.SubElement(case, "skipped", message=r.detail)
            counts["skipped"] += 1

    for name, suite in suites.items():
        for key, value in per_suite[name].items():
            suite.set(key, str(value))
            totals[key] += value
        suite.set("time", f"{durations[name]:.3f}")
    for key, value in totals.items():
        root.set(key, str(value))
    return root


def export_junit(results: list, output_dir: Path, run_id: str) -> Path:
    """
    Write JUnit XML.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    filepath = output_dir / f"junit_{run_id}.xml"

    tree = ET.ElementTree(build_junit(results, run_id))
    ET.indent(tree)
    tree.write(filepath, encoding="utf-8", xml_declaration=True)

    return filepath
