"""
TierLookupEvaluator - pays the value of the tier an attainment falls in.
"""

from incentive.core.models import ComponentResult

from .base_evaluator import BaseEvaluator, find_band


class TierLookupEvaluator(BaseEvaluator):
    """
    Pays a fixed amount by attainment tier.

    Config:
    - metric: Plan metric name compared against the tiers
    - tiers: [{min, max, value, label}], inclusive lower / exclusive upper
    """

    def evaluate(self, metrics: dict[str, float | None]) -> ComponentResult:
        config = self.component.tier_config
        missing = self._missing(metrics, [config.metric])
        if missing:
            return self._no_data(metrics, missing)

        value = metrics[config.metric]
        match = find_band(config.tiers, value)
        if match is None:
            return self._result(0.0, metrics, outcome="no_band", metric_value=value)

        idx, tier = match
        return self._result(
            tier.value,
            metrics,
            outcome="matched",
            metric_value=value,
            matched_tier=tier.describe(),
            tier_index=idx,
        )

    @property
    def component_type(self) -> str:
        return "tier_lookup"
