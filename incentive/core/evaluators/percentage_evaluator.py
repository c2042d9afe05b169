"""
PercentageEvaluator - pays a rate on a base amount.
"""

from incentive.core.models import ComponentResult

from .base_evaluator import BaseEvaluator


class PercentageEvaluator(BaseEvaluator):
    """
    Pays base * rate.

    Config:
    - applied_to: Plan metric name of the base amount
    - rate: Decimal rate (0.05 is 5%)
    - min_threshold: Base below this pays nothing (optional)
    - max_payout: Cap on the payout (optional)
    """

    def evaluate(self, metrics: dict[str, float | None]) -> ComponentResult:
        config = self.component.percentage_config
        missing = self._missing(metrics, [config.applied_to])
        if missing:
            return self._no_data(metrics, missing)

        base = metrics[config.applied_to]
        if config.min_threshold is not None and base < config.min_threshold:
            return self._result(
                0.0,
                metrics,
                outcome="below_threshold",
                base_value=base,
                min_threshold=config.min_threshold,
                rate=config.rate,
            )

        payout = base * config.rate
        capped = config.max_payout is not None and payout > config.max_payout
        if capped:
            payout = config.max_payout

        return self._result(
            payout,
            metrics,
            outcome="matched",
            base_value=base,
            rate=config.rate,
            capped=capped,
        )

    @property
    def component_type(self) -> str:
        return "percentage"
