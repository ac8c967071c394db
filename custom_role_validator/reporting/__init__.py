"""Reporting package — multi-format output generation."""

from .json_export import export_json
from .csv_export import export_csv
from .html_report import export_html
from .text_report import export_text
from .junit_export import export_junit

__all__ = [
    "export_json",
    "export_csv",
    "export_html",
    "export_text",
    "export_junit",
]
