"""
Semantic metric resolution.

Plan authors name metrics freely ("sales_attainment", "new_customers_quota",
"Venta Optica"). The resolver maps each name to a semantic type using an
ordered list of pattern groups and republishes an entity's aggregated
semantic values under the plan's own names, so evaluators read values by
plan-declared name.
"""

import re
from typing import Any

from pydantic import BaseModel, Field

from incentive.core.models.rule_set import (
    ConditionalPercentageComponent,
    MatrixLookupComponent,
    PercentageComponent,
    RatioComponent,
    TierLookupComponent,
)
from incentive.observability.logger import get_logger
from incentive.observability.metrics import increment_counter, metric_fallbacks_total

logger = get_logger(__name__)

ATTAINMENT = "attainment"
GOAL = "goal"
QUANTITY = "quantity"
AMOUNT = "amount"
UNKNOWN = "unknown"

SEMANTIC_TYPES = (ATTAINMENT, AMOUNT, GOAL, QUANTITY)

# Checked in this order. "sales_attainment" must resolve to attainment even
# though "sales" is an amount pattern.
SEMANTIC_PATTERNS: list[tuple[str, list[re.Pattern]]] = [
    (ATTAINMENT, [
        re.compile(p, re.IGNORECASE) for p in (
            r"attainment", r"rate", r"ratio", r"percentage", r"percent",
            r"achievement", r"completion", r"fulfillment", r"cumplimiento",
        )
    ]),
    (GOAL, [
        re.compile(p, re.IGNORECASE) for p in (
            r"goal", r"target", r"quota", r"budget", r"objective", r"meta",
        )
    ]),
    (QUANTITY, [
        re.compile(p, re.IGNORECASE) for p in (
            r"count", r"quantity", r"number", r"units", r"customers", r"clients", r"items",
        )
    ]),
    (AMOUNT, [
        re.compile(p, re.IGNORECASE) for p in (
            r"sales", r"revenue", r"volume", r"amount", r"premium", r"total",
            r"income", r"value", r"disbursement", r"monto", r"venta",
        )
    ]),
]


def infer_semantic_type(metric_name: str | None) -> str:
    """
    Infer the semantic type of a plan metric name.

    Args:
        metric_name: Free-text metric name from the plan

    Returns:
        "attainment", "goal", "quantity", "amount" or "unknown"

    Examples:
        >>> infer_semantic_type("sales_attainment")
        'attainment'
        >>> infer_semantic_type("new_customers_quota")
        'goal'
        >>> infer_semantic_type("store_code")
        'unknown'
    """
    if not metric_name:
        return UNKNOWN
    for semantic_type, patterns in SEMANTIC_PATTERNS:
        if any(p.search(metric_name) for p in patterns):
            return semantic_type
    return UNKNOWN


def component_metric_names(component: Any) -> list[str]:
    """Every metric name a component reads, in declaration order, deduplicated."""
    names: list[str] = []
    if isinstance(component, MatrixLookupComponent):
        names = [component.matrix_config.row_metric, component.matrix_config.column_metric]
    elif isinstance(component, TierLookupComponent):
        names = [component.tier_config.metric]
    elif isinstance(component, PercentageComponent):
        names = [component.percentage_config.applied_to]
    elif isinstance(component, ConditionalPercentageComponent):
        names = [component.conditional_config.applied_to]
        names.extend(c.metric for c in component.conditional_config.conditions)
    elif isinstance(component, RatioComponent):
        names = [component.ratio_config.numerator_metric, component.ratio_config.denominator_metric]
    return list(dict.fromkeys(n for n in names if n))


def resolve_component_metrics(component: Any) -> dict[str, str]:
    """
    Map every metric name referenced by a component to its semantic type.

    Args:
        component: Plan component

    Returns:
        {metric_name: semantic_type}
    """
    return {name: infer_semantic_type(name) for name in component_metric_names(component)}


def extract_metric_config(component: Any) -> dict[str, str | None]:
    """
    Primary metric names of a component by role.

    Returns a dict with "metric" (the value compared against bands or
    conditions), "row_metric"/"column_metric" for matrices and
    "applied_to" for base-amount components.
    """
    if isinstance(component, MatrixLookupComponent):
        return {
            "metric": component.matrix_config.row_metric,
            "row_metric": component.matrix_config.row_metric,
            "column_metric": component.matrix_config.column_metric,
            "applied_to": None,
        }
    if isinstance(component, TierLookupComponent):
        return {"metric": component.tier_config.metric, "applied_to": None}
    if isinstance(component, PercentageComponent):
        return {"metric": None, "applied_to": component.percentage_config.applied_to}
    if isinstance(component, ConditionalPercentageComponent):
        conditions = component.conditional_config.conditions
        return {
            "metric": conditions[0].metric if conditions else None,
            "applied_to": component.conditional_config.applied_to,
        }
    if isinstance(component, RatioComponent):
        return {
            "metric": component.ratio_config.numerator_metric,
            "applied_to": component.ratio_config.denominator_metric,
        }
    return {"metric": None, "applied_to": None}


class MetricResolution(BaseModel):
    """
    Metric values for one component under plan-declared names.

    Attributes:
        metrics: {plan_metric_name: value or None when no data}
        sources: {plan_metric_name: "derived" | semantic type used}
        fallbacks: Names that could not be classified and read the amount value
        warnings: Human readable warnings, also logged
    """

    metrics: dict[str, float | None] = Field(default_factory=dict)
    sources: dict[str, str] = Field(default_factory=dict)
    fallbacks: list[dict[str, str]] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    def get(self, name: str) -> float | None:
        return self.metrics.get(name)


def build_component_metrics(
    component: Any,
    sheet_metrics: dict[str, float | None],
    derived_metrics: dict[str, float] | None = None,
) -> MetricResolution:
    """
    Republish an entity's semantic values under a component's metric names.

    Derived metrics (from metric_derivations) are matched by exact name and
    take precedence. Otherwise the name's semantic type selects the value.
    A tier lookup only accepts an attainment value for its metric, so an
    amount is never read as an attainment percentage and an unclassifiable
    name gets no data. Elsewhere unclassifiable names fall back to the
    amount value, with a warning and a fallback trace.

    Args:
        component: Plan component
        sheet_metrics: {attainment, amount, goal, quantity} for one entity
        derived_metrics: {metric_name: value} from metric derivations

    Returns:
        MetricResolution
    """
    derived_metrics = derived_metrics or {}
    resolution = MetricResolution()

    for name, semantic_type in resolve_component_metrics(component).items():
        if name in derived_metrics:
            resolution.metrics[name] = derived_metrics[name]
            resolution.sources[name] = "derived"
            continue

        if isinstance(component, TierLookupComponent) and semantic_type != ATTAINMENT:
            resolution.metrics[name] = None
            resolution.sources[name] = semantic_type
            resolution.warnings.append(
                f"Tier lookup metric '{name}' resolved to {semantic_type}; only attainment is accepted"
            )
            continue

        if semantic_type == UNKNOWN:
            message = (
                f"Metric '{name}' in component '{component.id}' matches no semantic pattern; "
                f"falling back to amount"
            )
            logger.warning(
                message,
                extra={"component_id": component.id, "metric": name, "fallback_source": AMOUNT},
            )
            increment_counter(metric_fallbacks_total, component_type=component.component_type)
            resolution.fallbacks.append({"metric": name, "fallback_source": AMOUNT})
            resolution.warnings.append(message)
            semantic_type = AMOUNT

        resolution.metrics[name] = sheet_metrics.get(semantic_type)
        resolution.sources[name] = semantic_type

    return resolution
