"""
Plan configuration management.

Loads compensation plans from YAML files or raw JSON payloads and
provides a fluent builder for tests and programmatic plans. All entry
points validate through the RuleSet model, so a malformed plan surfaces
as a StructuralError before any calculation starts.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from incentive.core.errors import StructuralError
from incentive.core.models import RuleSet
from incentive.utils.validation import snake_case_keys


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"])
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def parse_rule_set(payload: dict[str, Any], tenant_id: str | None = None) -> RuleSet:
    """
    Validate a plan payload into a RuleSet.

    camelCase keys ("tierConfig", "appliedTo") are accepted and normalized.

    Args:
        payload: Plan as stored (JSON/YAML mapping)
        tenant_id: Tenant to assign when the payload has none

    Returns:
        Validated RuleSet

    Raises:
        StructuralError: If the payload does not describe a valid plan
    """
    if not isinstance(payload, dict):
        raise StructuralError("Plan payload must be a mapping")

    data = snake_case_keys(payload)
    if tenant_id and not data.get("tenant_id"):
        data["tenant_id"] = tenant_id

    try:
        return RuleSet.model_validate(data)
    except ValidationError as e:
        raise StructuralError(
            f"Malformed plan: {_format_validation_error(e)}",
            plan_id=data.get("id"),
        ) from e


class PlanConfigLoader:
    """
    Loads a compensation plan from a YAML configuration file.

    Expected YAML format:
    ```yaml
    plan:
      id: retail-2024
      name: Retail 2024
      variants:
        - variant_name: Senior Rep
          components:
            - id: sales-bonus
              name: Sales bonus
              component_type: tier_lookup
              tier_config:
                metric: sales_attainment
                tiers:
                  - {min: 0, max: 80, value: 0}
                  - {min: 80, max: 100, value: 500}
                  - {min: 100, value: 1000}
      input_bindings:
        metric_derivations:
          - metric: sales_attainment
            operation: ratio
            numerator_metric: sales_actual
            denominator_metric: sales_goal
            scale_factor: 100
    ```
    """

    def __init__(self, config_path: str | Path):
        """
        Initialize the plan config loader.

        Args:
            config_path: Path to the YAML configuration file
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(f"Plan configuration file not found: {config_path}")

    def load_rule_set(self, tenant_id: str | None = None) -> RuleSet:
        """
        Load and validate the plan.

        Args:
            tenant_id: Tenant to assign when the file has none

        Returns:
            Validated RuleSet

        Raises:
            StructuralError: If YAML is invalid or the plan is malformed
        """
        with open(self.config_path) as f:
            try:
                config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise StructuralError(f"Invalid plan YAML: {e}") from e

        if not config or "plan" not in config:
            raise StructuralError("Configuration file must contain 'plan' section")

        return parse_rule_set(config["plan"], tenant_id=tenant_id)


class PlanConfigBuilder:
    """
    Programmatically build plans (for testing or dynamic plans).

    Usage:
        rule_set = PlanConfigBuilder("acme", "Retail") \\
            .add_tier_lookup("bonus", "sales_attainment", [(0, 100, 0), (100, None, 500)]) \\
            .add_percentage("commission", "sales_amount", rate=0.02) \\
            .build()
    """

    def __init__(self, tenant_id: str, name: str, rule_set_id: str | None = None):
        """Initialize an empty plan with a default variant."""
        self.plan: dict[str, Any] = {
            "tenant_id": tenant_id,
            "name": name,
            "variants": [{"variant_name": "default", "components": []}],
            "input_bindings": {"metric_derivations": []},
        }
        if rule_set_id:
            self.plan["id"] = rule_set_id
        self._variant_started = False

    @property
    def _components(self) -> list[dict[str, Any]]:
        return self.plan["variants"][-1]["components"]

    def variant(self, variant_name: str) -> "PlanConfigBuilder":
        """Start a new variant; following components are added to it."""
        new_variant = {"variant_name": variant_name, "components": []}
        if not self._variant_started and not self._components:
            self.plan["variants"][-1] = new_variant
        else:
            self.plan["variants"].append(new_variant)
        self._variant_started = True
        return self

    def add_tier_lookup(
        self,
        component_id: str,
        metric: str,
        tiers: list[tuple[float | None, float | None, float]],
        name: str | None = None,
        enabled: bool = True,
    ) -> "PlanConfigBuilder":
        """Add a tier lookup; tiers are (min, max, value) tuples."""
        self._components.append({
            "id": component_id,
            "name": name or component_id,
            "enabled": enabled,
            "component_type": "tier_lookup",
            "tier_config": {
                "metric": metric,
                "tiers": [{"min": lo, "max": hi, "value": value} for lo, hi, value in tiers],
            },
        })
        return self

    def add_matrix(
        self,
        component_id: str,
        row_metric: str,
        column_metric: str,
        row_bands: list[tuple[float | None, float | None]],
        column_bands: list[tuple[float | None, float | None]],
        values: list[list[float]],
        name: str | None = None,
    ) -> "PlanConfigBuilder":
        """Add a tier matrix; bands are (min, max) tuples."""
        self._components.append({
            "id": component_id,
            "name": name or component_id,
            "component_type": "matrix_lookup",
            "matrix_config": {
                "row_metric": row_metric,
                "column_metric": column_metric,
                "row_bands": [{"min": lo, "max": hi} for lo, hi in row_bands],
                "column_bands": [{"min": lo, "max": hi} for lo, hi in column_bands],
                "values": values,
            },
        })
        return self

    def add_percentage(
        self,
        component_id: str,
        applied_to: str,
        rate: float,
        min_threshold: float | None = None,
        max_payout: float | None = None,
        name: str | None = None,
    ) -> "PlanConfigBuilder":
        """Add a percentage component."""
        self._components.append({
            "id": component_id,
            "name": name or component_id,
            "component_type": "percentage",
            "percentage_config": {
                "applied_to": applied_to,
                "rate": rate,
                "min_threshold": min_threshold,
                "max_payout": max_payout,
            },
        })
        return self

    def add_conditional(
        self,
        component_id: str,
        applied_to: str,
        conditions: list[tuple[str, float | None, float | None, float]],
        name: str | None = None,
    ) -> "PlanConfigBuilder":
        """Add a conditional percentage; conditions are (metric, min, max, rate) tuples."""
        self._components.append({
            "id": component_id,
            "name": name or component_id,
            "component_type": "conditional_percentage",
            "conditional_config": {
                "applied_to": applied_to,
                "conditions": [
                    {"metric": metric, "min": lo, "max": hi, "rate": rate}
                    for metric, lo, hi, rate in conditions
                ],
            },
        })
        return self

    def add_ratio(
        self,
        component_id: str,
        numerator_metric: str,
        denominator_metric: str,
        scale: float = 1.0,
        rate: float = 1.0,
        name: str | None = None,
    ) -> "PlanConfigBuilder":
        """Add a ratio component."""
        self._components.append({
            "id": component_id,
            "name": name or component_id,
            "component_type": "ratio",
            "ratio_config": {
                "numerator_metric": numerator_metric,
                "denominator_metric": denominator_metric,
                "scale": scale,
                "rate": rate,
            },
        })
        return self

    def add_derivation(
        self,
        metric: str,
        operation: str,
        source_pattern: str = "",
        source_field: str | None = None,
        filters: list[dict[str, Any]] | None = None,
        numerator_metric: str | None = None,
        denominator_metric: str | None = None,
        scale_factor: float = 1.0,
    ) -> "PlanConfigBuilder":
        """Add a metric derivation to the plan's input bindings."""
        self.plan["input_bindings"]["metric_derivations"].append({
            "metric": metric,
            "operation": operation,
            "source_pattern": source_pattern,
            "source_field": source_field,
            "filters": filters or [],
            "numerator_metric": numerator_metric,
            "denominator_metric": denominator_metric,
            "scale_factor": scale_factor,
        })
        return self

    def build_payload(self) -> dict[str, Any]:
        """Return the raw plan payload."""
        return self.plan

    def build(self) -> RuleSet:
        """Validate and return the plan."""
        return parse_rule_set(self.plan)
