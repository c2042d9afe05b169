"""
Content classification models: profiles, agent scores, proposals and
execution requests for uploaded tabs.
"""

import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

AgentType = Literal["plan", "entity", "target", "transaction"]
ClaimType = Literal["FULL", "PARTIAL"]
FieldDataType = Literal[
    "integer", "decimal", "currency", "percentage", "date", "text", "boolean", "mixed"
]
SemanticRole = Literal[
    "entity_identifier",
    "entity_name",
    "entity_attribute",
    "entity_relationship",
    "entity_license",
    "performance_target",
    "baseline_value",
    "transaction_amount",
    "transaction_count",
    "transaction_date",
    "category_code",
    "rate_value",
    "tier_boundary",
    "payout_amount",
    "descriptive_label",
    "unknown",
]


class NameSignals(BaseModel):
    """Header-name hints for a field."""

    looks_like_id: bool = False
    looks_like_name: bool = False
    looks_like_target: bool = False
    looks_like_date: bool = False
    looks_like_amount: bool = False
    looks_like_rate: bool = False


class FieldProfile(BaseModel):
    field_name: str
    field_index: int
    data_type: FieldDataType
    null_rate: float = 0.0
    distinct_count: int = 0
    sample_values: list[Any] = Field(default_factory=list)
    name_signals: NameSignals = Field(default_factory=NameSignals)
    is_sequential: bool = False


class ContentProfile(BaseModel):
    """
    Structural fingerprint of one tab.

    Attributes:
        content_unit_id: "file::tab::index"
        sparsity: Share of null cells (0-1)
        header_quality: clean, auto_generated or missing
        row_count_category: reference (<50), moderate (<=500) or transactional
        currency_columns: Number of currency-typed fields
    """

    content_unit_id: str
    source_file: str
    tab_name: str
    tab_index: int
    row_count: int
    column_count: int
    fields: list[FieldProfile] = Field(default_factory=list)
    sparsity: float = 0.0
    header_quality: Literal["clean", "auto_generated", "missing"] = "clean"
    row_count_category: Literal["reference", "moderate", "transactional"] = "reference"
    has_entity_identifier: bool = False
    has_date_column: bool = False
    currency_columns: int = 0
    has_percentage_values: bool = False
    has_descriptive_labels: bool = False
    has_name_field: bool = False
    has_target_field: bool = False
    has_license_field: bool = False
    categorical_text_fields: int = 0

    def field(self, name: str) -> FieldProfile | None:
        for f in self.fields:
            if f.field_name == name:
                return f
        return None


class AgentSignal(BaseModel):
    signal: str
    weight: float
    evidence: str = ""


class AgentScore(BaseModel):
    agent: AgentType
    confidence: float = Field(..., ge=0.0, le=1.0)
    signals: list[AgentSignal] = Field(default_factory=list)
    reasoning: str = ""


class SemanticBinding(BaseModel):
    source_field: str
    semantic_role: SemanticRole
    confidence: float = Field(..., ge=0.0, le=1.0)
    claimed_by: AgentType
    platform_type: FieldDataType | None = None
    display_context: str = ""


class FieldAffinity(BaseModel):
    field_name: str
    affinities: dict[str, float]
    winner: AgentType
    is_shared: bool = False


class NegotiationLogEntry(BaseModel):
    stage: Literal["round1", "absence_boost", "field_analysis", "split_decision", "round2"]
    message: str
    agent: AgentType | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class ContentUnitProposal(BaseModel):
    """Classification proposed for one content unit (a tab or half of a split tab)."""

    content_unit_id: str
    source_file: str
    tab_name: str
    classification: AgentType
    confidence: float
    reasoning: str
    action: str
    field_bindings: list[SemanticBinding] = Field(default_factory=list)
    all_scores: list[AgentScore] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    claim_type: ClaimType = "FULL"
    owned_fields: list[str] = Field(default_factory=list)
    shared_fields: list[str] = Field(default_factory=list)
    partner_content_unit_id: str | None = None
    negotiation_log: list[NegotiationLogEntry] = Field(default_factory=list)
    requires_human_review: bool = False


class SCIProposal(BaseModel):
    """Proposal returned by analyze, confirmed by a human before execute."""

    proposal_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: str
    source_files: list[str] = Field(default_factory=list)
    content_units: list[ContentUnitProposal] = Field(default_factory=list)
    processing_order: list[str] = Field(default_factory=list)
    overall_confidence: float = 0.0
    requires_human_review: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ContentUnitExecution(BaseModel):
    """A content unit with its human-confirmed classification and data."""

    content_unit_id: str
    confirmed_classification: AgentType
    confirmed_bindings: list[SemanticBinding] = Field(default_factory=list)
    raw_data: list[dict[str, Any]] = Field(default_factory=list)
    owned_fields: list[str] | None = None
    shared_fields: list[str] | None = None
    source_file: str | None = None
    tab_name: str | None = None


class ExecutionRequest(BaseModel):
    proposal_id: str
    tenant_id: str
    content_units: list[ContentUnitExecution]


class ContentUnitResult(BaseModel):
    content_unit_id: str
    classification: AgentType
    success: bool
    rows_processed: int = 0
    pipeline: str
    error: str | None = None


class ExecutionResult(BaseModel):
    proposal_id: str
    results: list[ContentUnitResult] = Field(default_factory=list)

    @property
    def overall_success(self) -> bool:
        return all(r.success for r in self.results)


class UploadedSheet(BaseModel):
    """One tab of an uploaded workbook."""

    name: str
    rows: list[dict[str, Any]] = Field(default_factory=list)


class UploadedFile(BaseModel):
    file_name: str
    sheets: list[UploadedSheet] = Field(default_factory=list)
