"""
RuleSet (compensation plan) models.

Components are a tagged union discriminated by ``component_type`` so that a
malformed plan fails validation at the store boundary instead of deep
inside an evaluator.
"""

import uuid
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, model_validator


class Band(BaseModel):
    """
    A numeric band, inclusive lower bound and exclusive upper bound.

    A missing lower bound means -infinity, a missing upper bound +infinity.
    """

    min: float | None = None
    max: float | None = None
    label: str | None = None

    @property
    def lower(self) -> float:
        return float("-inf") if self.min is None else self.min

    @property
    def upper(self) -> float:
        return float("inf") if self.max is None else self.max

    def contains(self, value: float) -> bool:
        return self.lower <= value < self.upper

    def describe(self) -> str:
        if self.label:
            return self.label
        upper = "inf" if self.max is None else f"{self.max:g}"
        lower = "-inf" if self.min is None else f"{self.min:g}"
        return f"[{lower}, {upper})"


class Tier(Band):
    """A band with the payout it grants."""

    value: float = 0.0


class Condition(BaseModel):
    """One branch of a conditional percentage component."""

    metric: str
    min: float | None = None
    max: float | None = None
    rate: float
    metric_label: str | None = None

    def as_band(self) -> Band:
        return Band(min=self.min, max=self.max, label=self.metric_label)


class TierConfig(BaseModel):
    metric: str = Field(..., min_length=1)
    metric_label: str | None = None
    tiers: list[Tier] = Field(..., min_length=1)


class MatrixConfig(BaseModel):
    row_metric: str = Field(..., min_length=1)
    column_metric: str = Field(..., min_length=1)
    row_metric_label: str | None = None
    column_metric_label: str | None = None
    row_bands: list[Band] = Field(..., min_length=1)
    column_bands: list[Band] = Field(..., min_length=1)
    values: list[list[float]]

    @model_validator(mode="after")
    def check_dimensions(self) -> "MatrixConfig":
        if len(self.values) != len(self.row_bands):
            raise ValueError(
                f"matrix has {len(self.values)} value rows but {len(self.row_bands)} row bands"
            )
        for idx, row in enumerate(self.values):
            if len(row) != len(self.column_bands):
                raise ValueError(
                    f"matrix row {idx} has {len(row)} values but {len(self.column_bands)} column bands"
                )
        return self


class PercentageConfig(BaseModel):
    applied_to: str = Field(..., min_length=1)
    applied_to_label: str | None = None
    rate: float
    min_threshold: float | None = None
    max_payout: float | None = None


class ConditionalConfig(BaseModel):
    applied_to: str = Field(..., min_length=1)
    applied_to_label: str | None = None
    conditions: list[Condition] = Field(..., min_length=1)


class RatioConfig(BaseModel):
    numerator_metric: str = Field(..., min_length=1)
    denominator_metric: str = Field(..., min_length=1)
    scale: float = 1.0
    rate: float = 1.0


class ComponentBase(BaseModel):
    """
    Fields shared by every plan component.

    Attributes:
        id: Component identifier, unique within the plan
        name: Display name
        enabled: Disabled components evaluate to zero
        description: Free text
    """

    id: str = Field(..., min_length=1)
    name: str
    enabled: bool = True
    description: str | None = None


class TierLookupComponent(ComponentBase):
    component_type: Literal["tier_lookup"] = "tier_lookup"
    tier_config: TierConfig


class MatrixLookupComponent(ComponentBase):
    component_type: Literal["matrix_lookup"] = "matrix_lookup"
    matrix_config: MatrixConfig


class PercentageComponent(ComponentBase):
    component_type: Literal["percentage"] = "percentage"
    percentage_config: PercentageConfig


class ConditionalPercentageComponent(ComponentBase):
    component_type: Literal["conditional_percentage"] = "conditional_percentage"
    conditional_config: ConditionalConfig


class RatioComponent(ComponentBase):
    component_type: Literal["ratio"] = "ratio"
    ratio_config: RatioConfig


PlanComponent = Annotated[
    Union[
        TierLookupComponent,
        MatrixLookupComponent,
        PercentageComponent,
        ConditionalPercentageComponent,
        RatioComponent,
    ],
    Field(discriminator="component_type"),
]


class MetricFilter(BaseModel):
    """Row filter applied before a derivation aggregates."""

    field: str
    operator: Literal["eq", "neq", "gt", "gte", "lt", "lte", "contains"] = "eq"
    value: Any = None


class MetricDerivation(BaseModel):
    """
    Recipe turning committed rows into a named metric.

    Attributes:
        metric: Name the result is published under (the plan's vocabulary)
        operation: sum, count, ratio or delta
        source_pattern: Case-insensitive regex matched against row data_type
        source_field: Field to aggregate (sum and delta)
        filters: Row filters, all must match
        numerator_metric: Earlier derived metric used as numerator (ratio)
        denominator_metric: Earlier derived metric used as denominator (ratio)
        scale_factor: Multiplier applied to a ratio (100 turns 0.95 into 95)
    """

    metric: str = Field(..., min_length=1)
    operation: Literal["sum", "count", "ratio", "delta"]
    source_pattern: str = ""
    source_field: str | None = None
    filters: list[MetricFilter] = Field(default_factory=list)
    numerator_metric: str | None = None
    denominator_metric: str | None = None
    scale_factor: float = 1.0

    @model_validator(mode="after")
    def check_operation_inputs(self) -> "MetricDerivation":
        if self.operation == "ratio":
            if not self.numerator_metric or not self.denominator_metric:
                raise ValueError(
                    f"ratio derivation '{self.metric}' needs numerator_metric and denominator_metric"
                )
        elif self.operation in ("sum", "delta") and not self.source_field:
            raise ValueError(f"{self.operation} derivation '{self.metric}' needs source_field")
        return self


class InputBindings(BaseModel):
    metric_derivations: list[MetricDerivation] = Field(default_factory=list)


class PlanVariant(BaseModel):
    """A set of components that applies to entities of one role."""

    variant_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    variant_name: str = "default"
    description: str | None = None
    components: list[PlanComponent] = Field(default_factory=list)


class RuleSet(BaseModel):
    """
    A declarative compensation plan.

    Attributes:
        id: Rule set identifier
        tenant_id: Owning tenant
        name: Plan name
        status: draft, active or archived
        version: Plan revision
        variants: Component sets by entity role (at least one)
        input_bindings: Metric derivations feeding the components
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: str
    name: str
    status: Literal["draft", "active", "archived"] = "active"
    version: int = 1
    variants: list[PlanVariant] = Field(default_factory=list)
    input_bindings: InputBindings = Field(default_factory=InputBindings)

    class Config:
        json_schema_extra = {
            "example": {
                "id": "plan-2024",
                "tenant_id": "acme",
                "name": "Retail 2024",
                "variants": [
                    {
                        "variant_name": "default",
                        "components": [
                            {
                                "id": "sales-bonus",
                                "name": "Sales bonus",
                                "component_type": "tier_lookup",
                                "tier_config": {
                                    "metric": "sales_attainment",
                                    "tiers": [
                                        {"min": 0, "max": 80, "value": 0},
                                        {"min": 80, "max": 100, "value": 500},
                                        {"min": 100, "max": None, "value": 1000},
                                    ],
                                },
                            }
                        ],
                    }
                ],
            }
        }

    @model_validator(mode="before")
    @classmethod
    def normalize_variants(cls, data: Any) -> Any:
        """Accept a bare component list or a {"variants": [...]} components payload."""
        if not isinstance(data, dict):
            return data
        components = data.get("components")
        if components is None or data.get("variants"):
            return data
        data = {k: v for k, v in data.items() if k != "components"}
        if isinstance(components, dict) and "variants" in components:
            data["variants"] = components["variants"]
        else:
            data["variants"] = [{"variant_name": "default", "components": components}]
        return data

    @model_validator(mode="after")
    def check_component_ids(self) -> "RuleSet":
        for variant in self.variants:
            seen: set[str] = set()
            for component in variant.components:
                if component.id in seen:
                    raise ValueError(
                        f"duplicate component id '{component.id}' in variant '{variant.variant_name}'"
                    )
                seen.add(component.id)
        return self

    def component_count(self) -> int:
        return max((len(v.components) for v in self.variants), default=0)

    def has_delta_derivations(self) -> bool:
        return any(d.operation == "delta" for d in self.input_bindings.metric_derivations)
