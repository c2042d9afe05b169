"""
RatioEvaluator - divides one metric by another.
"""

from incentive.core.metrics.derivations import safe_ratio
from incentive.core.models import ComponentResult

from .base_evaluator import BaseEvaluator


class RatioEvaluator(BaseEvaluator):
    """
    Pays numerator / denominator * scale * rate.

    A zero denominator pays 0 and is traced; it never raises or yields NaN.

    Config:
    - numerator_metric / denominator_metric: Plan metric names
    - scale: Multiplier on the ratio (default 1)
    - rate: Multiplier turning the scaled ratio into a payout (default 1)
    """

    def evaluate(self, metrics: dict[str, float | None]) -> ComponentResult:
        config = self.component.ratio_config
        missing = self._missing(metrics, [config.numerator_metric, config.denominator_metric])
        if missing:
            return self._no_data(metrics, missing)

        numerator = metrics[config.numerator_metric]
        denominator = metrics[config.denominator_metric]
        if denominator == 0:
            return self._result(
                0.0,
                metrics,
                outcome="zero_denominator",
                numerator=numerator,
                denominator=denominator,
            )

        ratio = safe_ratio(numerator, denominator, config.scale)
        return self._result(
            ratio * config.rate,
            metrics,
            outcome="matched",
            numerator=numerator,
            denominator=denominator,
            ratio=ratio,
            rate=config.rate,
        )

    @property
    def component_type(self) -> str:
        return "ratio"
