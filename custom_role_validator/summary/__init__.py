"""Summary package — result aggregation and verdict."""

from .engine import compute_summary
from .models import CategorySummary, SuiteSummary

__all__ = [
    "compute_summary",
    "CategorySummary",
    "SuiteSummary",
]
