"""
Calculation runs and the batch lifecycle.
"""

from .engine import CalculationEngine, RowIndex
from .lifecycle import (
    TRANSITION_SIDE_EFFECTS,
    VALID_TRANSITIONS,
    BatchLifecycle,
    can_transition,
    plan_supersession,
    plan_transition,
)

__all__ = [
    "CalculationEngine",
    "RowIndex",
    "BatchLifecycle",
    "VALID_TRANSITIONS",
    "TRANSITION_SIDE_EFFECTS",
    "can_transition",
    "plan_transition",
    "plan_supersession",
]
