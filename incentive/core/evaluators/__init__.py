"""
Component evaluator implementations.

Provides evaluators for tier lookups, tier matrices, percentages,
conditional percentages and ratios.
"""

from .base_evaluator import BaseEvaluator, EvaluationError, find_band
from .conditional_evaluator import ConditionalPercentageEvaluator
from .matrix_evaluator import MatrixLookupEvaluator
from .percentage_evaluator import PercentageEvaluator
from .ratio_evaluator import RatioEvaluator
from .tier_evaluator import TierLookupEvaluator

__all__ = [
    "BaseEvaluator",
    "EvaluationError",
    "find_band",
    "TierLookupEvaluator",
    "MatrixLookupEvaluator",
    "PercentageEvaluator",
    "ConditionalPercentageEvaluator",
    "RatioEvaluator",
]
