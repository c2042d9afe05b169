"""
Calculation models: per-entity results, batches and their lifecycle state.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class LifecycleState(str, Enum):
    """States a calculation batch moves through."""

    DRAFT = "DRAFT"
    PREVIEW = "PREVIEW"
    RECONCILE = "RECONCILE"
    OFFICIAL = "OFFICIAL"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    POSTED = "POSTED"
    CLOSED = "CLOSED"
    PAID = "PAID"
    PUBLISHED = "PUBLISHED"
    SUPERSEDED = "SUPERSEDED"


class ComponentResult(BaseModel):
    """
    Payout of one plan component for one entity.

    Attributes:
        component_id: Plan component id
        component_name: Plan component name
        component_type: Discriminant of the component
        payout: Amount paid by this component
        metrics: Resolved metric values under the plan's metric names
        trace: Structured execution trace (matched band, rate, fallbacks, ...)
    """

    component_id: str
    component_name: str
    component_type: str
    payout: float = 0.0
    metrics: dict[str, float | None] = Field(default_factory=dict)
    trace: dict[str, Any] = Field(default_factory=dict)


class CalculationResult(BaseModel):
    """
    Calculation output for one entity in one period under one rule set.

    At most one live result exists per (tenant_id, entity_id, period_id,
    rule_set_id); a rerun deletes and recomputes.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: str
    entity_id: str
    external_id: str | None = None
    entity_name: str | None = None
    store_id: str | None = None
    period_id: str
    rule_set_id: str
    batch_id: str
    total_payout: float = 0.0
    components: list[ComponentResult] = Field(default_factory=list)
    metrics: dict[str, float | None] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)

    class Config:
        json_schema_extra = {
            "example": {
                "tenant_id": "acme",
                "entity_id": "ent-1001",
                "external_id": "1001",
                "period_id": "per-2024-01",
                "rule_set_id": "plan-2024",
                "batch_id": "b6f0...",
                "total_payout": 1500.0,
                "components": [
                    {
                        "component_id": "sales-bonus",
                        "component_name": "Sales bonus",
                        "component_type": "tier_lookup",
                        "payout": 1000.0,
                        "metrics": {"sales_attainment": 104.2},
                        "trace": {"matched_tier": "[100, inf)", "outcome": "matched"},
                    }
                ],
            }
        }

    def component(self, component_id: str) -> ComponentResult | None:
        for component in self.components:
            if component.component_id == component_id:
                return component
        return None


class LifecycleAuditEntry(BaseModel):
    """One accepted lifecycle transition."""

    from_state: LifecycleState
    to_state: LifecycleState
    actor: str | None = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    details: dict[str, Any] = Field(default_factory=dict)


class CalculationBatch(BaseModel):
    """
    Groups all results of one calculation run.

    Attributes:
        id: Batch identifier
        tenant_id: Owning tenant
        period_id: Period calculated
        rule_set_id: Plan applied
        lifecycle_state: Current lifecycle state
        entity_count: Entities evaluated
        summary: total_payout, entity_count, component_count, rule_set_name
        recalculating: Set while results are being replaced; blocks transitions
        submitted_by: Actor that moved the batch to PENDING_APPROVAL
        superseded_by: Batch that replaced this one
        audit_trail: Accepted transitions, oldest first
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: str
    period_id: str
    rule_set_id: str
    lifecycle_state: LifecycleState = LifecycleState.DRAFT
    entity_count: int = 0
    summary: dict[str, Any] = Field(default_factory=dict)
    recalculating: bool = False
    submitted_by: str | None = None
    superseded_by: str | None = None
    audit_trail: list[LifecycleAuditEntry] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class CalculationRunResult(BaseModel):
    """Response of one calculation run."""

    batch_id: str | None = None
    entity_count: int = 0
    result_count: int = 0
    total_payout: float = 0.0
    results: list[CalculationResult] = Field(default_factory=list)
    log: list[str] = Field(default_factory=list)
