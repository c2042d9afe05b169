"""
Classification agents.

Four specialist agents (plan, entity, target, transaction) score a
ContentProfile from weighted structural signals and propose a semantic
role for each field. Agents only read the profile; arbitration between
them lives in the negotiation module.
"""

from abc import ABC, abstractmethod
from typing import Callable, NamedTuple

from incentive.core.models import (
    AgentScore,
    AgentSignal,
    ContentProfile,
    FieldProfile,
    SemanticBinding,
)

from .profile import LICENSE_SIGNALS

HUMAN_REVIEW_CONFIDENCE = 0.50
HUMAN_REVIEW_GAP = 0.10


class WeightRule(NamedTuple):
    signal: str
    weight: float
    test: Callable[[ContentProfile], bool]
    evidence: Callable[[ContentProfile], str]


class RoleAssignment(NamedTuple):
    role: str
    context: str
    confidence: float


def _rows(category: str) -> Callable[[ContentProfile], str]:
    return lambda p: f"{p.row_count} rows ({category})"


def _sparsity(p: ContentProfile) -> str:
    return f"sparsity {p.sparsity * 100:.0f}% > 30%"


def _is_categorical(field: FieldProfile) -> bool:
    return field.data_type == "text" and 0 < field.distinct_count < 20


class BaseAgent(ABC):
    """
    Abstract base class for classification agents.

    Subclasses declare their weight table and how they read individual
    fields; scoring is shared.
    """

    weights: list[WeightRule] = []

    @property
    @abstractmethod
    def agent_type(self) -> str:
        """Return the agent identifier."""
        pass

    @abstractmethod
    def assign_role(self, field: FieldProfile) -> RoleAssignment:
        """Propose a semantic role for one field."""
        pass

    def score(self, profile: ContentProfile) -> AgentScore:
        """
        Score a profile against this agent's weight table.

        The raw sum of matching weights is clamped to [0, 1]; the reasoning
        quotes the three strongest positive signals.
        """
        signals = [
            AgentSignal(signal=rule.signal, weight=rule.weight, evidence=rule.evidence(profile))
            for rule in self.weights
            if rule.test(profile)
        ]
        raw = sum(s.weight for s in signals)
        confidence = max(0.0, min(1.0, round(raw, 4)))

        top = sorted((s for s in signals if s.weight > 0), key=lambda s: -s.weight)[:3]
        if top:
            reasoning = f"{self.agent_type} agent: " + "; ".join(s.evidence for s in top)
        else:
            reasoning = f"{self.agent_type} agent: no positive signals"

        return AgentScore(
            agent=self.agent_type, confidence=confidence, signals=signals, reasoning=reasoning
        )

    def bind_fields(
        self, profile: ContentProfile, only: set[str] | None = None
    ) -> list[SemanticBinding]:
        """
        Bind fields of a profile to semantic roles.

        Args:
            profile: Profiled content unit
            only: Restrict bindings to these field names (partial claims)
        """
        bindings = []
        for field in profile.fields:
            if only is not None and field.field_name not in only:
                continue
            assignment = self.assign_role(field)
            bindings.append(
                SemanticBinding(
                    source_field=field.field_name,
                    semantic_role=assignment.role,
                    confidence=assignment.confidence,
                    claimed_by=self.agent_type,
                    platform_type=field.data_type,
                    display_context=assignment.context,
                )
            )
        return bindings

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(signals={len(self.weights)})"


class PlanAgent(BaseAgent):
    """Recognizes rule definitions: sparse, labelled, percentage-heavy, few rows."""

    weights = [
        WeightRule("auto_generated_headers", 0.25, lambda p: p.header_quality == "auto_generated",
                   lambda p: "headers contain __EMPTY pattern"),
        WeightRule("high_sparsity", 0.20, lambda p: p.sparsity > 0.30, _sparsity),
        WeightRule("percentage_values", 0.15, lambda p: p.has_percentage_values,
                   lambda p: "percentage values detected"),
        WeightRule("descriptive_labels", 0.15, lambda p: p.has_descriptive_labels,
                   lambda p: "low-cardinality descriptive text columns"),
        WeightRule("low_row_count", 0.10, lambda p: p.row_count_category == "reference",
                   _rows("reference")),
        WeightRule("no_entity_id", 0.05, lambda p: not p.has_entity_identifier,
                   lambda p: "no entity identifier column"),
        WeightRule("has_currency", -0.03, lambda p: p.currency_columns > 0,
                   lambda p: f"{p.currency_columns} currency columns"),
        WeightRule("has_date", -0.10, lambda p: p.has_date_column,
                   lambda p: "date column present"),
        WeightRule("high_row_count", -0.15, lambda p: p.row_count_category == "transactional",
                   _rows("transactional")),
        WeightRule("has_entity_id", -0.10, lambda p: p.has_entity_identifier,
                   lambda p: "entity identifier column present"),
    ]

    @property
    def agent_type(self) -> str:
        return "plan"

    def assign_role(self, field: FieldProfile) -> RoleAssignment:
        if field.data_type == "percentage" or field.name_signals.looks_like_rate:
            return RoleAssignment("rate_value", "Rule definition, rate/threshold value", 0.80)
        if field.data_type == "currency" or field.name_signals.looks_like_amount:
            return RoleAssignment("payout_amount", "Rule definition, reward amount", 0.75)
        if field.data_type == "text":
            return RoleAssignment("descriptive_label", "Rule definition, descriptive text", 0.70)
        if field.data_type in ("integer", "decimal"):
            return RoleAssignment("tier_boundary", "Rule definition, threshold value", 0.65)
        return RoleAssignment("unknown", "Rule definition, unclassified field", 0.30)


class EntityAgent(BaseAgent):
    """Recognizes rosters: one row per participant with id and name."""

    weights = [
        WeightRule("has_entity_id", 0.25, lambda p: p.has_entity_identifier,
                   lambda p: "entity identifier column present"),
        WeightRule("has_name_field", 0.20, lambda p: p.has_name_field,
                   lambda p: "name field detected"),
        WeightRule("moderate_rows", 0.15, lambda p: p.row_count_category == "moderate",
                   _rows("moderate")),
        WeightRule("categorical_attributes", 0.10, lambda p: p.categorical_text_fields >= 2,
                   lambda p: "2+ categorical text fields"),
        WeightRule("has_license_field", 0.10, lambda p: p.has_license_field,
                   lambda p: "license/product field detected"),
        WeightRule("no_date", 0.05, lambda p: not p.has_date_column,
                   lambda p: "no date column"),
        WeightRule("high_currency", -0.10, lambda p: p.currency_columns > 2,
                   lambda p: f"{p.currency_columns} currency columns (>2)"),
        WeightRule("transactional_rows", -0.15, lambda p: p.row_count_category == "transactional",
                   _rows("transactional")),
        WeightRule("auto_generated_headers", -0.20, lambda p: p.header_quality == "auto_generated",
                   lambda p: "auto-generated headers"),
    ]

    @property
    def agent_type(self) -> str:
        return "entity"

    def assign_role(self, field: FieldProfile) -> RoleAssignment:
        name = field.field_name
        lower = name.lower()
        if field.name_signals.looks_like_id:
            return RoleAssignment("entity_identifier", f"{name}: unique identifier", 0.90)
        if field.name_signals.looks_like_name:
            return RoleAssignment("entity_name", f"{name}: display name", 0.85)
        if any(s in lower for s in LICENSE_SIGNALS):
            return RoleAssignment("entity_license", f"{name}: access permission", 0.80)
        if any(s in lower for s in ("manager", "parent", "reports")):
            return RoleAssignment("entity_relationship", f"{name}: hierarchical link", 0.75)
        if _is_categorical(field):
            return RoleAssignment("entity_attribute", f"{name}: categorical property", 0.70)
        return RoleAssignment("entity_attribute", f"{name}: entity property", 0.50)


class TargetAgent(BaseAgent):
    """Recognizes goal sheets: per-entity targets with few rows and no dates."""

    weights = [
        WeightRule("has_entity_id", 0.20, lambda p: p.has_entity_identifier,
                   lambda p: "entity identifier column present"),
        WeightRule("has_target_field", 0.25, lambda p: p.has_target_field,
                   lambda p: "target/goal field detected"),
        WeightRule("reference_rows", 0.15, lambda p: p.row_count_category == "reference",
                   _rows("reference")),
        WeightRule("has_currency", 0.10, lambda p: 0 < p.currency_columns <= 3,
                   lambda p: f"{p.currency_columns} currency columns (1-3)"),
        WeightRule("no_date", 0.10, lambda p: not p.has_date_column,
                   lambda p: "no date column"),
        WeightRule("clean_headers", 0.05, lambda p: p.header_quality == "clean",
                   lambda p: "clean headers"),
        WeightRule("no_entity_id", -0.25, lambda p: not p.has_entity_identifier,
                   lambda p: "no entity identifier"),
        WeightRule("transactional_rows", -0.15, lambda p: p.row_count_category == "transactional",
                   _rows("transactional")),
        WeightRule("auto_generated_headers", -0.15, lambda p: p.header_quality == "auto_generated",
                   lambda p: "auto-generated headers"),
        WeightRule("high_sparsity", -0.10, lambda p: p.sparsity > 0.30, _sparsity),
    ]

    @property
    def agent_type(self) -> str:
        return "target"

    def assign_role(self, field: FieldProfile) -> RoleAssignment:
        name = field.field_name
        signals = field.name_signals
        if signals.looks_like_id:
            return RoleAssignment("entity_identifier", f"{name}: links target to entity", 0.90)
        if signals.looks_like_target:
            return RoleAssignment("performance_target", f"{name}: goal/benchmark value", 0.90)
        if field.data_type == "currency" or signals.looks_like_amount:
            return RoleAssignment("baseline_value", f"{name}: baseline for comparison", 0.70)
        if _is_categorical(field):
            return RoleAssignment("category_code", f"{name}: grouping category", 0.65)
        if field.data_type == "text":
            return RoleAssignment("entity_attribute", f"{name}: entity property", 0.50)
        return RoleAssignment("unknown", f"{name}: unclassified target field", 0.30)


class TransactionAgent(BaseAgent):
    """Recognizes event data: dated, monetary, many rows."""

    weights = [
        WeightRule("has_date", 0.25, lambda p: p.has_date_column,
                   lambda p: "date column present"),
        WeightRule("has_entity_id", 0.15, lambda p: p.has_entity_identifier,
                   lambda p: "entity identifier present"),
        WeightRule("has_currency", 0.15, lambda p: p.currency_columns > 0,
                   lambda p: f"{p.currency_columns} currency columns"),
        WeightRule("transactional_rows", 0.20, lambda p: p.row_count_category == "transactional",
                   _rows("transactional")),
        WeightRule("moderate_rows", 0.05, lambda p: p.row_count_category == "moderate",
                   _rows("moderate")),
        WeightRule("clean_headers", 0.05, lambda p: p.header_quality == "clean",
                   lambda p: "clean headers"),
        WeightRule("no_date", -0.25, lambda p: not p.has_date_column,
                   lambda p: "no date column"),
        WeightRule("reference_rows", -0.10, lambda p: p.row_count_category == "reference",
                   _rows("reference")),
        WeightRule("auto_generated_headers", -0.15, lambda p: p.header_quality == "auto_generated",
                   lambda p: "auto-generated headers"),
        WeightRule("high_sparsity", -0.10, lambda p: p.sparsity > 0.30, _sparsity),
    ]

    @property
    def agent_type(self) -> str:
        return "transaction"

    def assign_role(self, field: FieldProfile) -> RoleAssignment:
        name = field.field_name
        signals = field.name_signals
        if signals.looks_like_id:
            return RoleAssignment("entity_identifier", f"{name}: links event to entity", 0.85)
        if signals.looks_like_date or field.data_type == "date":
            return RoleAssignment("transaction_date", f"{name}: event timestamp", 0.90)
        if field.data_type == "currency" or signals.looks_like_amount:
            return RoleAssignment("transaction_amount", f"{name}: monetary value", 0.85)
        if field.data_type == "integer":
            return RoleAssignment("transaction_count", f"{name}: event count", 0.60)
        if _is_categorical(field):
            return RoleAssignment("category_code", f"{name}: classification", 0.70)
        if field.data_type == "text":
            return RoleAssignment("category_code", f"{name}: classification", 0.50)
        return RoleAssignment("unknown", f"{name}: unclassified event field", 0.30)


AGENT_REGISTRY: dict[str, BaseAgent] = {
    agent.agent_type: agent
    for agent in (PlanAgent(), EntityAgent(), TargetAgent(), TransactionAgent())
}


def get_agent(agent_type: str) -> BaseAgent:
    """Look up an agent by type."""
    try:
        return AGENT_REGISTRY[agent_type]
    except KeyError:
        raise ValueError(f"Unknown agent type: {agent_type}") from None


def score_content_unit(profile: ContentProfile) -> list[AgentScore]:
    """
    Score a profile with every agent.

    Returns:
        Scores sorted by confidence, highest first
    """
    scores = [agent.score(profile) for agent in AGENT_REGISTRY.values()]
    return sorted(scores, key=lambda s: s.confidence, reverse=True)


def requires_human_review(scores: list[AgentScore]) -> bool:
    """A classification needs a human when the winner is weak or the race is close."""
    if len(scores) < 2:
        return False
    gap = scores[0].confidence - scores[1].confidence
    return scores[0].confidence < HUMAN_REVIEW_CONFIDENCE or gap < HUMAN_REVIEW_GAP
