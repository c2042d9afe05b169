"""
ConditionalPercentageEvaluator - picks a rate by threshold, then pays it on a base.
"""

from incentive.core.models import ComponentResult

from .base_evaluator import BaseEvaluator


class ConditionalPercentageEvaluator(BaseEvaluator):
    """
    Pays base * rate of the first condition whose band contains its metric.

    Config:
    - applied_to: Plan metric name of the base amount
    - conditions: [{metric, min, max, rate}], checked in order,
      inclusive lower / exclusive upper
    """

    def evaluate(self, metrics: dict[str, float | None]) -> ComponentResult:
        config = self.component.conditional_config
        condition_metrics = list(dict.fromkeys(c.metric for c in config.conditions))
        missing = self._missing(metrics, [config.applied_to, *condition_metrics])
        if missing:
            return self._no_data(metrics, missing)

        base = metrics[config.applied_to]
        for idx, condition in enumerate(config.conditions):
            value = metrics[condition.metric]
            band = condition.as_band()
            if band.contains(value):
                return self._result(
                    base * condition.rate,
                    metrics,
                    outcome="matched",
                    base_value=base,
                    condition_index=idx,
                    condition_metric=condition.metric,
                    condition_value=value,
                    matched_condition=band.describe(),
                    rate=condition.rate,
                )

        return self._result(0.0, metrics, outcome="no_band", base_value=base)

    @property
    def component_type(self) -> str:
        return "conditional_percentage"
