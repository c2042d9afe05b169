"""
Metric derivations and default semantic aggregation.

Derivations turn an entity's committed rows into named metrics
(sum, count, ratio, delta). They run in declaration order so a ratio can
reference sums declared before it.
"""

import re
from typing import Iterable

from incentive.core.metrics.resolver import (
    AMOUNT,
    ATTAINMENT,
    GOAL,
    QUANTITY,
    infer_semantic_type,
)
from incentive.core.models import CommittedDataRow, MetricDerivation, MetricFilter
from incentive.observability.logger import get_logger
from incentive.utils.validation import to_number

logger = get_logger(__name__)

# Row fields that identify rather than measure, and "_" bookkeeping keys; never aggregated.
NON_METRIC_FIELDS = re.compile(
    r"(^_)|((^|_)(id|code|codigo|no|num)$)"
    r"|(^(year|month|period|period_key|date|fecha|store|storeid|tienda|num_tienda|no_tienda)$)",
    re.IGNORECASE,
)

# Attainment cells below this are ratios (0.95 is 95%).
RATIO_ATTAINMENT_LIMIT = 5


def _matches_filter(row: CommittedDataRow, flt: MetricFilter) -> bool:
    actual = row.get(flt.field)
    expected = flt.value

    if flt.operator == "contains":
        return actual is not None and str(expected).lower() in str(actual).lower()

    if flt.operator in ("eq", "neq"):
        left_num, right_num = to_number(actual), to_number(expected)
        if left_num is not None and right_num is not None:
            equal = left_num == right_num
        else:
            equal = str(actual).strip().lower() == str(expected).strip().lower()
        return equal if flt.operator == "eq" else not equal

    left, right = to_number(actual), to_number(expected)
    if left is None or right is None:
        return False
    if flt.operator == "gt":
        return left > right
    if flt.operator == "gte":
        return left >= right
    if flt.operator == "lt":
        return left < right
    return left <= right


def select_rows(
    rows: Iterable[CommittedDataRow],
    source_pattern: str,
    filters: list[MetricFilter],
) -> list[CommittedDataRow]:
    """
    Rows whose data_type matches the source pattern and all filters.

    An empty pattern matches every row.
    """
    pattern = re.compile(source_pattern, re.IGNORECASE) if source_pattern else None
    selected = []
    for row in rows:
        if pattern and not pattern.search(row.data_type):
            continue
        if all(_matches_filter(row, f) for f in filters):
            selected.append(row)
    return selected


def _sum_field(rows: list[CommittedDataRow], field: str) -> float:
    total = 0.0
    for row in rows:
        value = to_number(row.get(field))
        if value is not None:
            total += value
    return total


def safe_ratio(numerator: float | None, denominator: float | None, scale: float = 1.0) -> float:
    """numerator / denominator * scale, 0 when the denominator is missing or zero."""
    if numerator is None or not denominator:
        return 0.0
    return numerator / denominator * scale


def apply_metric_derivations(
    rows: list[CommittedDataRow],
    derivations: list[MetricDerivation],
    prior_rows: list[CommittedDataRow] | None = None,
) -> dict[str, float]:
    """
    Evaluate metric derivations for one entity.

    Args:
        rows: The entity's rows for the period (including joined store rows)
        derivations: Derivations in declaration order
        prior_rows: The entity's rows for the prior period (delta derivations)

    Returns:
        {metric_name: value}
    """
    derived: dict[str, float] = {}
    prior_rows = prior_rows or []

    for derivation in derivations:
        if derivation.operation == "ratio":
            numerator = derived.get(derivation.numerator_metric)
            denominator = derived.get(derivation.denominator_metric)
            if numerator is None or denominator is None:
                logger.debug(
                    f"Ratio derivation '{derivation.metric}' references missing metrics",
                    extra={
                        "numerator_metric": derivation.numerator_metric,
                        "denominator_metric": derivation.denominator_metric,
                    },
                )
            derived[derivation.metric] = safe_ratio(numerator, denominator, derivation.scale_factor)
            continue

        matching = select_rows(rows, derivation.source_pattern, derivation.filters)

        if derivation.operation == "count":
            derived[derivation.metric] = float(len(matching))
        elif derivation.operation == "sum":
            if matching:
                derived[derivation.metric] = _sum_field(matching, derivation.source_field)
        elif derivation.operation == "delta":
            prior = select_rows(prior_rows, derivation.source_pattern, derivation.filters)
            if matching or prior:
                derived[derivation.metric] = (
                    _sum_field(matching, derivation.source_field)
                    - _sum_field(prior, derivation.source_field)
                )

    return derived


def attainment_points(raw) -> float | None:
    """
    Read an attainment cell in percent points, so 95 means 95%.

    "95%" strings, 0.95 ratios and plain 95 all read as 95.0.
    """
    value = to_number(raw)
    if value is None:
        return None
    if isinstance(raw, str) and "%" in raw:
        return value * 100
    if 0 < value < RATIO_ATTAINMENT_LIMIT:
        return value * 100
    return value


def aggregate_semantic_values(rows: Iterable[CommittedDataRow]) -> dict[str, float | None]:
    """
    Aggregate an entity's rows into {attainment, amount, goal, quantity}.

    Each numeric row field is classified by name with the metric resolver's
    patterns. Amounts, goals and quantities are summed; attainment values
    are averaged across rows in percent points (see attainment_points).
    When no attainment column exists but amount and a positive goal do,
    attainment is amount / goal * 100.

    Returns:
        Semantic values, None where no row supplied one
    """
    sums: dict[str, float] = {}
    attainment_values: list[float] = []

    for row in rows:
        for field, raw in row.row_data.items():
            if NON_METRIC_FIELDS.search(str(field)):
                continue
            semantic_type = infer_semantic_type(str(field))
            if semantic_type == ATTAINMENT:
                points = attainment_points(raw)
                if points is not None:
                    attainment_values.append(points)
            elif semantic_type in (AMOUNT, GOAL, QUANTITY):
                value = to_number(raw)
                if value is not None:
                    sums[semantic_type] = sums.get(semantic_type, 0.0) + value

    values: dict[str, float | None] = {
        ATTAINMENT: None,
        AMOUNT: sums.get(AMOUNT),
        GOAL: sums.get(GOAL),
        QUANTITY: sums.get(QUANTITY),
    }

    if attainment_values:
        values[ATTAINMENT] = sum(attainment_values) / len(attainment_values)
    elif values[AMOUNT] is not None and values[GOAL]:
        values[ATTAINMENT] = values[AMOUNT] / values[GOAL] * 100

    return values
