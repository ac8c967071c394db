"""
CSV exporter — Produces per-case results and per-category summaries.
"""

from __future__ import annotations

import csv
from pathlib import Path

from ..summary.models import SuiteSummary

RESULT_FIELDS = [
    "test_id", "module", "category", "category_name", "name", "action",
    "expected", "status", "error_code", "http_status", "detail",
    "target", "started_at", "duration_seconds",
]

CATEGORY_FIELDS = [
    "key", "display_name", "total", "passed", "failed", "errors",
    "skipped", "pass_rate", "status",
]


def export_csv(
    summary: SuiteSummary,
    results: list,
    output_dir: Path,
    run_id: str,
) -> list[Path]:
    """
    Write CSV files for case results and category summaries.

    Returns:
        List of created CSV file paths.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    created = []

    # --- Results CSV ---
    results_path = output_dir / f"results_{run_id}.csv"
    with open(results_path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.DictWriter(fh, fieldnames=RESULT_FIELDS, extrasaction="ignore")
        writer.writeheader()
        for r in results:
            row = r.to_dict()
            if row["http_status"] is None:
                row["http_status"] = ""
            writer.writerow(row)
    created.append(results_path)

    # --- Category Summary CSV ---
    categories_path = output_dir / f"category_summary_{run_id}.csv"
    with open(categories_path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.DictWriter(fh, fieldnames=CATEGORY_FIELDS, extrasaction="ignore")
        writer.writeheader()
        for cs in summary.categories.values():
            writer.writerow(cs.to_dict())
    created.append(categories_path)

    return created
