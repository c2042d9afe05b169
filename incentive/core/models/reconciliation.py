"""
Reconciliation models: comparisons, findings and depth assessment.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field

DeltaFlag = Literal["exact", "tolerance", "amber", "red"]
Population = Literal["matched", "file_only", "vl_only"]
FindingType = Literal["false_green", "mismatch", "file_only", "vl_only"]
ComparisonLayer = Literal["aggregate", "entity", "component", "metric", "store"]
LayerStatus = Literal["available", "partial", "unavailable"]


class ColumnMapping(BaseModel):
    """
    Maps a benchmark file column to something the comparison understands.

    ``mapped_to`` is "entity_id", "total", "store_id", "period" or
    "component:<component_id>".
    """

    source_column: str
    mapped_to: str
    mapped_to_label: str | None = None

    @property
    def component_id(self) -> str | None:
        if self.mapped_to.startswith("component:"):
            return self.mapped_to[len("component:"):]
        return None


class ComponentComparison(BaseModel):
    component_id: str
    component_name: str
    file_value: float
    vl_value: float
    delta: float
    delta_percent: float
    flag: DeltaFlag


class EntityComparison(BaseModel):
    """Benchmark vs calculated totals for one entity."""

    entity_id: str
    entity_name: str
    population: Population
    file_total: float = 0.0
    vl_total: float = 0.0
    total_delta: float = 0.0
    total_delta_percent: float = 0.0
    total_flag: DeltaFlag = "red"
    components: list[ComponentComparison] = Field(default_factory=list)
    store_id: str | None = None


class ComparisonSummary(BaseModel):
    total_entities: int = 0
    matched: int = 0
    file_only: int = 0
    vl_only: int = 0
    exact_matches: int = 0
    tolerance_matches: int = 0
    amber_flags: int = 0
    red_flags: int = 0
    false_greens: int = 0
    file_total_amount: float = 0.0
    vl_total_amount: float = 0.0
    total_delta: float = 0.0


class ReconciliationFinding(BaseModel):
    """
    One reconciliation finding.

    Attributes:
        type: false_green, mismatch, file_only or vl_only
        entity_id: Normalized entity external id
        entity_name: Display name when known
        priority: 1 is most urgent (false greens)
        delta: Benchmark total minus calculated total
        delta_percent: delta relative to the calculated total
        flag: Total-level delta flag
        reason: Human readable explanation
        component_flags: Components that diverge (false greens and mismatches)
    """

    type: FindingType
    entity_id: str
    entity_name: str | None = None
    priority: int
    delta: float
    delta_percent: float
    flag: DeltaFlag
    reason: str
    component_flags: list[ComponentComparison] = Field(default_factory=list)


class AggregateComparison(BaseModel):
    file_total: float
    vl_total: float
    delta: float
    delta_percent: float
    flag: DeltaFlag
    entity_count_file: int
    entity_count_vl: int


class StoreComparison(BaseModel):
    store_id: str
    file_total: float
    vl_total: float
    delta: float
    delta_percent: float
    flag: DeltaFlag
    entity_count: int
    file_entity_count: int
    vl_entity_count: int


class LayerAssessment(BaseModel):
    layer: ComparisonLayer
    status: LayerStatus
    depth: int = Field(0, ge=0, le=100)
    field_count: int = 0
    coverage_percent: int = 0
    notes: list[str] = Field(default_factory=list)


class DataQuality(BaseModel):
    vl_record_count: int
    file_record_count: int
    matchable_records: int
    unmatched_vl: int
    unmatched_file: int


class DepthAssessment(BaseModel):
    max_depth: ComparisonLayer
    layers: list[LayerAssessment]
    recommendations: list[str]
    false_green_risk: Literal["low", "medium", "high"]
    data_quality: DataQuality

    def layer(self, name: str) -> LayerAssessment | None:
        for layer in self.layers:
            if layer.layer == name:
                return layer
        return None


class ComparisonResult(BaseModel):
    """
    Full output of one comparison request.

    Findings are ordered false_green first, then mismatches by absolute
    delta, then file_only and vl_only.
    """

    summary: ComparisonSummary
    findings: list[ReconciliationFinding] = Field(default_factory=list)
    false_green_count: int = 0
    depth_achieved: ComparisonLayer = "aggregate"
    compared_layers: list[ComparisonLayer] = Field(default_factory=list)
    aggregate: AggregateComparison | None = None
    entities: list[EntityComparison] = Field(default_factory=list)
    store_comparisons: list[StoreComparison] = Field(default_factory=list)
    depth: DepthAssessment | None = None
    rows_filtered_out: int = 0

    def to_response(self) -> dict[str, Any]:
        """Shape returned by the compare operation."""
        return {
            "summary": self.summary.model_dump(mode="json"),
            "findings": [f.model_dump(mode="json") for f in self.findings],
            "falseGreenCount": self.false_green_count,
            "depthAchieved": self.depth_achieved,
            "comparedLayers": list(self.compared_layers),
            "aggregate": self.aggregate.model_dump(mode="json") if self.aggregate else None,
            "storeComparisons": [s.model_dump(mode="json") for s in self.store_comparisons],
            "depth": self.depth.model_dump(mode="json") if self.depth else None,
            "rowsFilteredOut": self.rows_filtered_out,
        }
