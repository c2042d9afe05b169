"""
Reconciliation of calculated results against benchmark payout files.
"""

from .comparison import ReconciliationSettings, build_findings, classify_delta, delta_percent, is_false_green
from .depth import assess_comparison_depth
from .engine import ReconciliationEngine, compare, filter_rows_by_period

__all__ = [
    "ReconciliationEngine",
    "ReconciliationSettings",
    "compare",
    "classify_delta",
    "delta_percent",
    "is_false_green",
    "build_findings",
    "filter_rows_by_period",
    "assess_comparison_depth",
]
