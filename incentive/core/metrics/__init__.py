"""
Semantic metric resolution and metric derivations.
"""

from .derivations import (
    aggregate_semantic_values,
    apply_metric_derivations,
    safe_ratio,
    select_rows,
)
from .resolver import (
    MetricResolution,
    build_component_metrics,
    component_metric_names,
    extract_metric_config,
    infer_semantic_type,
    resolve_component_metrics,
)

__all__ = [
    "infer_semantic_type",
    "resolve_component_metrics",
    "build_component_metrics",
    "extract_metric_config",
    "component_metric_names",
    "MetricResolution",
    "apply_metric_derivations",
    "aggregate_semantic_values",
    "select_rows",
    "safe_ratio",
]
