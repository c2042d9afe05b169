"""
Core data models for the incentive pipeline.

All models use Pydantic for runtime validation and type safety.
"""

from .calculation import (
    CalculationBatch,
    CalculationResult,
    CalculationRunResult,
    ComponentResult,
    LifecycleAuditEntry,
    LifecycleState,
)
from .classification import (
    AgentScore,
    AgentSignal,
    ContentProfile,
    ContentUnitExecution,
    ContentUnitProposal,
    ContentUnitResult,
    ExecutionRequest,
    ExecutionResult,
    FieldAffinity,
    FieldProfile,
    NameSignals,
    NegotiationLogEntry,
    SCIProposal,
    SemanticBinding,
    UploadedFile,
    UploadedSheet,
)
from .committed_data import CommittedDataRow
from .entity import STORE_FIELDS, Entity, RuleSetAssignment
from .period import DetectedPeriod, Period, PeriodDetectionResult, SheetInput
from .reconciliation import (
    AggregateComparison,
    ColumnMapping,
    ComparisonResult,
    ComparisonSummary,
    ComponentComparison,
    DataQuality,
    DepthAssessment,
    EntityComparison,
    LayerAssessment,
    ReconciliationFinding,
    StoreComparison,
)
from .rule_set import (
    Band,
    Condition,
    ConditionalPercentageComponent,
    MatrixLookupComponent,
    MetricDerivation,
    MetricFilter,
    PercentageComponent,
    PlanVariant,
    RatioComponent,
    RuleSet,
    Tier,
    TierLookupComponent,
)
from .tenant import TenantContext

__all__ = [
    "TenantContext",
    "CommittedDataRow",
    "Entity",
    "STORE_FIELDS",
    "RuleSetAssignment",
    "Period",
    "DetectedPeriod",
    "PeriodDetectionResult",
    "SheetInput",
    "Band",
    "Tier",
    "Condition",
    "TierLookupComponent",
    "MatrixLookupComponent",
    "PercentageComponent",
    "ConditionalPercentageComponent",
    "RatioComponent",
    "MetricDerivation",
    "MetricFilter",
    "PlanVariant",
    "RuleSet",
    "ComponentResult",
    "CalculationResult",
    "CalculationBatch",
    "CalculationRunResult",
    "LifecycleAuditEntry",
    "LifecycleState",
    "ColumnMapping",
    "ComponentComparison",
    "DataQuality",
    "EntityComparison",
    "ComparisonSummary",
    "ReconciliationFinding",
    "AggregateComparison",
    "StoreComparison",
    "LayerAssessment",
    "DepthAssessment",
    "ComparisonResult",
    "NameSignals",
    "FieldProfile",
    "ContentProfile",
    "AgentSignal",
    "AgentScore",
    "SemanticBinding",
    "UploadedFile",
    "UploadedSheet",
    "FieldAffinity",
    "NegotiationLogEntry",
    "ContentUnitProposal",
    "SCIProposal",
    "ContentUnitExecution",
    "ExecutionRequest",
    "ContentUnitResult",
    "ExecutionResult",
]
