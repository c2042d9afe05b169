"""
Base evaluator interface for plan components.

All evaluators inherit from BaseEvaluator and implement evaluate(). An
evaluator is a pure function of the component config and the resolved
metric values: no I/O, no shared state.
"""

from abc import ABC, abstractmethod
from typing import Any, Sequence

from incentive.core.models import Band, ComponentResult


class EvaluationError(Exception):
    """Raised when a component config cannot be evaluated."""

    def __init__(self, component_id: str, message: str):
        self.component_id = component_id
        self.message = message
        super().__init__(f"[{component_id}] {message}")


def find_band(bands: Sequence[Band], value: float) -> tuple[int, Band] | None:
    """
    Select the band containing a value.

    Bands are scanned in ascending order of their lower bound; the first
    band whose upper bound exceeds the value wins, provided the value
    reaches its (inclusive) lower bound. With bands [0, 60000),
    [60000, 100000), [100000, inf) a value of exactly 60000 lands in the
    second band.

    Args:
        bands: Bands in any order
        value: Value to place

    Returns:
        (index of the band in the original sequence, band) or None when the
        value falls below the first band or into a gap
    """
    ordered = sorted(range(len(bands)), key=lambda i: bands[i].lower)
    for idx in ordered:
        band = bands[idx]
        if value < band.upper:
            return (idx, band) if value >= band.lower else None
    return None


class BaseEvaluator(ABC):
    """
    Abstract base class for component evaluators.

    Each evaluator implements one component type (tier_lookup,
    matrix_lookup, percentage, conditional_percentage, ratio).
    """

    def __init__(self, component: Any):
        """
        Initialize evaluator.

        Args:
            component: The plan component this evaluator prices
        """
        if component.component_type != self.component_type:
            raise EvaluationError(
                component.id,
                f"{self.__class__.__name__} cannot evaluate component type '{component.component_type}'",
            )
        self.component = component

    @abstractmethod
    def evaluate(self, metrics: dict[str, float | None]) -> ComponentResult:
        """
        Price the component.

        Args:
            metrics: Resolved metric values keyed by the plan's metric names;
                     None means no data was bound

        Returns:
            ComponentResult with payout and trace
        """
        pass

    @property
    @abstractmethod
    def component_type(self) -> str:
        """Return the component type identifier."""
        pass

    def _result(self, payout: float, metrics: dict[str, float | None], **trace) -> ComponentResult:
        return ComponentResult(
            component_id=self.component.id,
            component_name=self.component.name,
            component_type=self.component_type,
            payout=round(payout, 2),
            metrics=metrics,
            trace=trace,
        )

    def _no_data(self, metrics: dict[str, float | None], missing: list[str]) -> ComponentResult:
        return self._result(0.0, metrics, outcome="no_data", missing_metrics=missing)

    @staticmethod
    def _missing(metrics: dict[str, float | None], names: list[str]) -> list[str]:
        return [name for name in names if metrics.get(name) is None]

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(component={self.component.id})"
