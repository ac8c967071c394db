"""
HTML Validation Report — single-file HTML output.

Generates a self-contained HTML report with inline CSS: verdict hero,
category table, and one result table per test module.
"""

from __future__ import annotations

import html
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..checks.base import TestResult
from ..config import STATUS_ERROR, STATUS_FAIL, STATUS_PASS, STATUS_SKIPPED
from ..environment.context import SuiteContext
from ..summary.models import (
    VERDICT_COMPLIANT,
    VERDICT_NON_COMPLIANT,
    CategorySummary,
    SuiteSummary,
)


# ---------------------------------------------------------------------------
# Colour palette
# ---------------------------------------------------------------------------
_STATUS_COLOURS = {
    STATUS_PASS:    {"bg": "#16a34a", "fg": "#fff"},
    STATUS_FAIL:    {"bg": "#dc2626", "fg": "#fff"},
    STATUS_ERROR:   {"bg": "#d97706", "fg": "#fff"},
    STATUS_SKIPPED: {"bg": "#6b7280", "fg": "#fff"},
}

_VERDICT_COLOURS = {
    VERDICT_COMPLIANT: "#059669",
    VERDICT_NON_COMPLIANT: "#dc2626",
}

# ---------------------------------------------------------------------------
# Utility helpers
# ---------------------------------------------------------------------------

def _esc(val: Any) -> str:
    if val is None:
        return ""
    return html.escape(str(val))


def _status_badge(status: str) -> str:
    c = _STATUS_COLOURS.get(status, _STATUS_COLOURS[STATUS_SKIPPED])
    return (
        f'<span class="badge" style="background:{c["bg"]};color:{c["fg"]}">'
        f'{html.escape(status)}</span>'
    )


def _rate_bar(cs: CategorySummary) -> str:
    colour = _STATUS_COLOURS.get(cs.status, _STATUS_COLOURS[STATUS_SKIPPED])["bg"]
    return (
        f'<div class="bar-track"><div class="bar-fill" '
        f'style="width:{cs.pass_rate}%;background:{colour}"></div></div>'
    )


def _category_rows(summary: SuiteSummary) -> str:
    rows = []
    for cs in summary.categories.values():
        rows.append(f"""
          <tr>
            <td>{_esc(cs.display_name)}</td>
            <td class="num">{cs.passed}</td>
            <td class="num">{cs.failed}</td>
            <td class="num">{cs.errors}</td>
            <td class="num">{cs.skipped}</td>
            <td class="col-rate">{cs.pass_rate:.1f}% {_rate_bar(cs)}</td>
            <td>{_status_badge(cs.status)}</td>
          </tr>""")
    return "\n".join(rows)


def _module_section(module: str, results: list[TestResult], ms: CategorySummary | None) -> str:
    rows = []
    for r in results:
        code = f'<div class="code">{_esc(r.error_code)}</div>' if r.error_code else ""
        rows.append(f"""
          <tr class="result-row st-{r.status.lower()}">
            <td class="col-id">{_esc(r.test_id)}</td>
            <td class="col-status">{_status_badge(r.status)}</td>
            <td class="col-detail">
              <div class="case-title">{_esc(r.name)}</div>
              <div class="case-category">{_esc(r.category_name)} &middot; expected {_esc(r.expected)}</div>
              <div class="case-detail">{_esc(r.detail)}</div>
              {code}
            </td>
            <td class="col-action">{_esc(r.action)}</td>
          </tr>""")
    counts = ""
    if ms:
        counts = f'<span class="muted">{ms.passed} passed &middot; {ms.failed} failed &middot; {ms.errors} errors &middot; {ms.skipped} skipped</span>'
    return f"""
    <section class="report-section">
      <h2>{_esc(module.title())} Tests {counts}</h2>
      <table class="results-table">
        <thead><tr><th>ID</th><th>Status</th><th>Case</th><th>Action</th></tr></thead>
        <tbody>{"".join(rows)}
        </tbody>
      </table>
    </section>"""


def _artifact_section(context: SuiteContext) -> str:
    if not context.artifacts:
        return ""
    items = "".join(
        f"<li><code>{_esc(a['id'])}</code> <span class=\"muted\">({_esc(a.get('source', ''))})</span></li>"
        for a in context.artifacts
    )
    return f"""
    <section class="report-section">
      <h2>Resources Created by Permitted Operations</h2>
      <p class="muted">These were created because the role allowed an operation that should have been denied.</p>
      <ul class="artifacts">{items}</ul>
    </section>"""


def _render_html(
    summary: SuiteSummary,
    results: list[TestResult],
    context: SuiteContext,
    run_id: str,
    generated_at: str,
) -> str:
    """Build the full HTML string."""
    verdict = summary.verdict
    verdict_colour = _VERDICT_COLOURS.get(verdict, "#d97706")

    by_module: dict[str, list[TestResult]] = {}
    for r in results:
        by_module.setdefault(r.module, []).append(r)
    module_html = "\n".join(
        _module_section(name, rs, summary.modules.get(name)) for name, rs in by_module.items()
    )

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>Custom Role Validation — {_esc(context.role_name)}</title>
<style>
*, *::before, *::after {{ box-sizing: border-box; margin: 0; padding: 0; }}
html {{ font-size: 15px; }}
body {{
  font-family: "Segoe UI", -apple-system, BlinkMacSystemFont, Roboto, "Helvetica Neue", sans-serif;
  background: #f8fafc; color: #1e293b; line-height: 1.55;
}}
.page {{ max-width: 1100px; margin: 0 auto; padding: 2rem 1.5rem; }}
.report-header {{
  background: linear-gradient(135deg, #0f172a 0%, #1e3a5f 100%);
  color: #f1f5f9; padding: 2rem 2.5rem; border-radius: 12px;
  margin-bottom: 2rem; display: flex; justify-content: space-between; align-items: center; flex-wrap: wrap; gap: 1rem;
}}
.report-header h1 {{ font-size: 1.6rem; font-weight: 700; margin-bottom: .3rem; }}
.report-header .subtitle {{ font-size: .85rem; opacity: .75; }}
.run-meta {{ font-size: .78rem; opacity: .65; line-height: 1.7; text-align: right; }}
.hero {{
  display: flex; align-items: center; gap: 2rem; background: #fff;
  border-radius: 12px; padding: 1.8rem 2rem; box-shadow: 0 1px 3px rgba(0,0,0,.08);
  margin-bottom: 2rem;
}}
.verdict {{
  font-size: 1.4rem; font-weight: 800; color: #fff; padding: .8rem 1.4rem; border-radius: 10px;
}}
.stat-row {{ display: flex; gap: 1.5rem; margin-top: .6rem; font-size: .9rem; flex-wrap: wrap; }}
.report-section {{ margin-bottom: 2rem; }}
.report-section h2 {{
  font-size: 1.15rem; font-weight: 700; margin-bottom: 1rem;
  padding-bottom: .5rem; border-bottom: 2px solid #e2e8f0;
}}
.report-section h2 .muted {{ font-size: .8rem; font-weight: 400; margin-left: .6rem; }}
table {{ width: 100%; border-collapse: separate; border-spacing: 0; background: #fff; border-radius: 8px; }}
th {{
  text-align: left; font-size: .75rem; text-transform: uppercase;
  letter-spacing: .04em; color: #64748b; padding: .6rem .8rem;
  background: #f8fafc; border-bottom: 2px solid #e2e8f0;
}}
td {{ padding: .7rem .8rem; vertical-align: top; border-bottom: 1px solid #f1f5f9; }}
.num {{ text-align: right; font-variant-numeric: tabular-nums; }}
.col-rate {{ width: 170px; font-size: .82rem; }}
.bar-track {{ height: 5px; background: #e2e8f0; border-radius: 3px; margin-top: .3rem; overflow: hidden; }}
.bar-fill {{ height: 100%; border-radius: 3px; }}
.col-id {{ width: 90px; font-family: "Cascadia Code", "Consolas", monospace; font-size: .82rem; color: #64748b; }}
.col-status {{ width: 95px; }}
.col-action {{ width: 300px; font-family: "Cascadia Code", "Consolas", monospace; font-size: .75rem; color: #475569; word-break: break-all; }}
.result-row:hover {{ background: #f8fafc; }}
.st-fail {{ background: #fef2f2; }}
.st-error {{ background: #fffbeb; }}
.case-title {{ font-weight: 600; font-size: .93rem; }}
.case-category {{ font-size: .76rem; color: #64748b; margin-bottom: .3rem; }}
.case-detail {{ font-size: .84rem; color: #334155; }}
.code {{ font-family: "Cascadia Code", "Consolas", monospace; font-size: .74rem; color: #94a3b8; margin-top: .2rem; }}
.badge {{
  display: inline-block; font-size: .7rem; font-weight: 700; letter-spacing: .03em;
  padding: 3px 8px; border-radius: 4px; text-transform: uppercase;
}}
.muted {{ color: #64748b; font-size: .85rem; }}
.artifacts {{ margin-left: 1.2rem; font-size: .82rem; }}
.footer {{ text-align: center; font-size: .75rem; color: #94a3b8; margin-top: 3rem; }}
</style>
</head>
<body>
<div class="page">
  <header class="report-header">
    <div>
      <h1>Custom Role Validation Report</h1>
      <div class="subtitle">Role <strong>{_esc(context.role_name)}</strong> &middot; subscription {_esc(context.subscription_id)}</div>
    </div>
    <div class="run-meta">
      Run ID: {_esc(run_id)}<br>
      Region: {_esc(context.region)}<br>
      Generated: {_esc(generated_at)}
    </div>
  </header>

  <div class="hero">
    <div class="verdict" style="background:{verdict_colour}">{_esc(verdict)}</div>
    <div>
      <div><strong>{summary.pass_rate:.1f}%</strong> of {summary.executed} executed cases passed</div>
      <div class="stat-row">
        <span>{_status_badge(STATUS_PASS)} {summary.passed}</span>
        <span>{_status_badge(STATUS_FAIL)} {summary.failed}</span>
        <span>{_status_badge(STATUS_ERROR)} {summary.errors}</span>
        <span>{_status_badge(STATUS_SKIPPED)} {summary.skipped}</span>
      </div>
    </div>
  </div>

  <section class="report-section">
    <h2>Requirement Categories</h2>
    <table>
      <thead><tr><th>Category</th><th>Pass</th><th>Fail</th><th>Error</th><th>Skipped</th><th>Pass rate</th><th>Status</th></tr></thead>
      <tbody>{_category_rows(summary)}
      </tbody>
    </table>
  </section>

  {module_html}
  {_artifact_section(context)}

  <div class="footer">Custom Role Validator &middot; resource group {_esc(context.resource_group)}</div>
</div>
</body>
</html>
"""


def export_html(
    summary: SuiteSummary,
    results: list[TestResult],
    context: SuiteContext,
    output_dir: Path,
    run_id: str,
) -> Path:
    """
    Generate a self-contained HTML validation report.

    Returns the Path to the written file.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    generated_at = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")

    html_content = _render_html(
        summary=summary,
        results=results,
        context=context,
        run_id=run_id,
        generated_at=generated_at,
    )

    filepath = output_dir / f"rbac_validation_{run_id}.html"
    filepath.write_text(html_content, encoding="utf-8")

    return filepath
