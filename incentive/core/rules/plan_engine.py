"""
Plan engine for evaluating a rule set's components for one entity.

The plan engine builds one evaluator per component, selects the variant
that applies to an entity's role, resolves metric values and collects
per-component results.
"""

from typing import Any

from pydantic import BaseModel, Field

from incentive.core.errors import StructuralError
from incentive.core.evaluators import (
    BaseEvaluator,
    ConditionalPercentageEvaluator,
    EvaluationError,
    MatrixLookupEvaluator,
    PercentageEvaluator,
    RatioEvaluator,
    TierLookupEvaluator,
)
from incentive.core.metrics import build_component_metrics
from incentive.core.models import ComponentResult, PlanVariant, RuleSet
from incentive.observability.logger import get_logger
from incentive.observability.metrics import component_evaluations_total, increment_counter

logger = get_logger(__name__)


class EntityEvaluation(BaseModel):
    """Everything the plan engine produced for one entity."""

    variant_name: str
    components: list[ComponentResult] = Field(default_factory=list)
    total_payout: float = 0.0
    metrics: dict[str, float | None] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)


class PlanEngine:
    """
    Evaluates a rule set's components.

    Builds evaluators from the plan once and applies them to any number of
    entities. Evaluation is side-effect free, so one engine can be shared
    across worker threads.
    """

    EVALUATOR_REGISTRY: dict[str, type[BaseEvaluator]] = {
        "tier_lookup": TierLookupEvaluator,
        "matrix_lookup": MatrixLookupEvaluator,
        "percentage": PercentageEvaluator,
        "conditional_percentage": ConditionalPercentageEvaluator,
        "ratio": RatioEvaluator,
    }

    def __init__(self, rule_set: RuleSet):
        """
        Initialize the plan engine.

        Args:
            rule_set: Validated rule set

        Raises:
            StructuralError: If the plan has no components or an evaluator cannot be built
        """
        self.rule_set = rule_set
        self.evaluators: dict[str, list[tuple[Any, BaseEvaluator | None]]] = {}
        self._build_evaluators()

    def _build_evaluators(self) -> None:
        """Build evaluator instances for every variant."""
        if not self.rule_set.variants or self.rule_set.component_count() == 0:
            raise StructuralError("Rule set has no components", plan_id=self.rule_set.id)

        for variant in self.rule_set.variants:
            built: list[tuple[Any, BaseEvaluator | None]] = []
            for component in variant.components:
                # Disabled components still appear in results with zero payout
                if not component.enabled:
                    built.append((component, None))
                    continue

                evaluator_class = self.EVALUATOR_REGISTRY.get(component.component_type)
                if not evaluator_class:
                    raise StructuralError(
                        f"Unknown component type: {component.component_type}",
                        plan_id=self.rule_set.id,
                        component_id=component.id,
                    )

                try:
                    built.append((component, evaluator_class(component)))
                except EvaluationError as e:
                    raise StructuralError(
                        e.message, plan_id=self.rule_set.id, component_id=component.id
                    ) from e

            self.evaluators[variant.variant_id] = built

    def select_variant(self, role: str | None) -> PlanVariant:
        """
        Pick the variant for an entity role.

        An exact (case-insensitive) name match wins; otherwise the longest
        variant name contained in the role (or containing it); otherwise the
        first variant.

        Args:
            role: Entity role, may be None

        Returns:
            The selected PlanVariant
        """
        variants = self.rule_set.variants
        if len(variants) == 1 or not role:
            return variants[0]

        normalized_role = role.strip().lower()
        for variant in variants:
            if variant.variant_name.strip().lower() == normalized_role:
                return variant

        by_length = sorted(variants, key=lambda v: len(v.variant_name), reverse=True)
        for variant in by_length:
            name = variant.variant_name.strip().lower()
            if name and (name in normalized_role or normalized_role in name):
                return variant

        logger.debug(
            "No variant matches role, using first variant",
            extra={"role": role, "plan_id": self.rule_set.id},
        )
        return variants[0]

    def evaluate_entity(
        self,
        sheet_metrics: dict[str, float | None],
        derived_metrics: dict[str, float] | None = None,
        role: str | None = None,
    ) -> EntityEvaluation:
        """
        Evaluate every component of the entity's variant.

        Args:
            sheet_metrics: Semantic values {attainment, amount, goal, quantity}
            derived_metrics: Values from metric derivations, by plan metric name
            role: Entity role used for variant selection

        Returns:
            EntityEvaluation with per-component results and the total payout
        """
        variant = self.select_variant(role)
        evaluation = EntityEvaluation(variant_name=variant.variant_name)

        for component, evaluator in self.evaluators[variant.variant_id]:
            if evaluator is None:
                result = ComponentResult(
                    component_id=component.id,
                    component_name=component.name,
                    component_type=component.component_type,
                    payout=0.0,
                    trace={"outcome": "disabled", "note": "component disabled"},
                )
            else:
                resolution = build_component_metrics(component, sheet_metrics, derived_metrics)
                result = evaluator.evaluate(resolution.metrics)
                result.trace["metric_sources"] = resolution.sources
                if resolution.fallbacks:
                    result.trace["fallbacks"] = resolution.fallbacks
                evaluation.warnings.extend(resolution.warnings)
                evaluation.metrics.update(resolution.metrics)

            increment_counter(
                component_evaluations_total,
                component_type=component.component_type,
                outcome=result.trace.get("outcome", "matched"),
            )
            evaluation.components.append(result)

        evaluation.total_payout = round(sum(c.payout for c in evaluation.components), 2)
        return evaluation

    def get_plan_summary(self) -> dict[str, Any]:
        """
        Get summary of the loaded plan.

        Returns:
            Dictionary with variant and component counts by type
        """
        counts: dict[str, int] = {}
        for variant in self.rule_set.variants:
            for component in variant.components:
                counts[component.component_type] = counts.get(component.component_type, 0) + 1
        return {
            "rule_set_id": self.rule_set.id,
            "rule_set_name": self.rule_set.name,
            "variants": [v.variant_name for v in self.rule_set.variants],
            "components_by_type": counts,
            "component_count": self.rule_set.component_count(),
        }
