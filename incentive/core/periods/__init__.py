"""
Period detection from field-mapped sheets.
"""

from .detector import (
    PeriodDetector,
    find_period_columns,
    infer_frequency,
    parse_month,
    parse_period_value,
    parse_row_period,
    parse_year,
    resolve_period_values,
)

__all__ = [
    "PeriodDetector",
    "find_period_columns",
    "parse_row_period",
    "resolve_period_values",
    "parse_period_value",
    "parse_year",
    "parse_month",
    "infer_frequency",
]
