"""
Plan evaluation engine and plan configuration management.
"""

from .plan_config import PlanConfigBuilder, PlanConfigLoader, parse_rule_set
from .plan_engine import EntityEvaluation, PlanEngine

__all__ = [
    "PlanEngine",
    "EntityEvaluation",
    "PlanConfigLoader",
    "PlanConfigBuilder",
    "parse_rule_set",
]
