"""
Text summary — plain-text run summary rendered from a Jinja2 template.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from ..environment.context import SuiteContext
from ..summary.models import SuiteSummary

TEMPLATE_DIR = Path(__file__).parent / "templates"


def _environment() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=select_autoescape([]),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )


def render_text(
    summary: SuiteSummary,
    results: list,
    context: SuiteContext,
    run_id: str,
) -> str:
    template = _environment().get_template("summary.txt.j2")
    return template.render(
        run_id=run_id,
        generated_utc=datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC"),
        context=context,
        summary=summary,
        results=results,
    )


def export_text(
    summary: SuiteSummary,
    results: list,
    context: SuiteContext,
    output_dir: Path,
    run_id: str,
) -> Path:
    """
    Write the plain-text summary.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    filepath = output_dir / f"rbac_validation_{run_id}.txt"

    with open(filepath, "w", encoding="utf-8") as fh:
        fh.write(render_text(summary, results, context, run_id))

    return filepath
