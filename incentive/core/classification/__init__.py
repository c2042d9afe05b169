"""
Content classification of uploaded tabs.

Profiles tabs, scores them with four agents, negotiates FULL or PARTIAL
claims and executes confirmed proposals.
"""

from .agents import (
    AGENT_REGISTRY,
    BaseAgent,
    EntityAgent,
    PlanAgent,
    TargetAgent,
    TransactionAgent,
    get_agent,
    requires_human_review,
    score_content_unit,
)
from .negotiation import ContentClaim, NegotiationResult, negotiate
from .profile import detect_field_type, generate_content_profile, header_contains, profile_field
from .proposal import analyze, execute, normalize_data_type

__all__ = [
    "generate_content_profile",
    "profile_field",
    "detect_field_type",
    "header_contains",
    "BaseAgent",
    "PlanAgent",
    "EntityAgent",
    "TargetAgent",
    "TransactionAgent",
    "AGENT_REGISTRY",
    "get_agent",
    "score_content_unit",
    "requires_human_review",
    "negotiate",
    "NegotiationResult",
    "ContentClaim",
    "analyze",
    "execute",
    "normalize_data_type",
]
