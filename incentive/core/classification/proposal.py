"""
Classification proposals and their execution.

analyze() profiles every uploaded tab, negotiates a classification and
returns a proposal for a human to confirm. execute() takes the confirmed
units and routes each one through the pipeline of its classification:
rosters become entities, target and transaction tabs become committed
data rows, plan tabs are recorded for later interpretation.
"""

import re
import uuid
from typing import Any, Iterable

from incentive.core.errors import TenantScopeError
from incentive.core.models import (
    STORE_FIELDS,
    CommittedDataRow,
    ContentProfile,
    ContentUnitExecution,
    ContentUnitProposal,
    ContentUnitResult,
    Entity,
    ExecutionRequest,
    ExecutionResult,
    Period,
    SCIProposal,
    SemanticBinding,
    TenantContext,
    UploadedFile,
)
from incentive.core.periods.detector import (
    MONTH_TARGETS,
    PERIOD_TARGETS,
    YEAR_TARGETS,
    find_period_columns,
    parse_row_period,
)
from incentive.observability.logger import get_logger, log_operation
from incentive.observability.metrics import (
    content_units_classified_total,
    human_review_required_total,
    increment_counter,
)
from incentive.warehouse.store import DataStore

from .agents import requires_human_review
from .negotiation import ContentClaim, NegotiationResult, negotiate
from .profile import generate_content_profile

logger = get_logger(__name__)

PROCESSING_ORDER = ("plan", "entity", "target", "transaction")

ACTIONS = {
    "plan": "import_plan",
    "entity": "import_entities",
    "target": "import_targets",
    "transaction": "import_transactions",
}

LOW_CONFIDENCE_WARNING = 0.60

ROLE_TARGETS = ("role", "position", "puesto", "title", "cargo")
GENERIC_TABS = {"Sheet1", "Hoja1"}

_EXTENSION_RE = re.compile(r"\.[^.]+$")
_PREFIX_RE = re.compile(r"^[A-Z]{2,5}_")
_MONTH_SUFFIX_RE = re.compile(r"_?(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)\d{4}$", re.IGNORECASE)
_QUARTER_SUFFIX_RE = re.compile(r"_?Q[1-4]_?\d{4}$", re.IGNORECASE)
_YEAR_MONTH_SUFFIX_RE = re.compile(r"_?\d{4}[-_]\d{2}$")
_YEAR_SUFFIX_RE = re.compile(r"_?\d{4}$")
_SEPARATORS_RE = re.compile(r"[\s\-]+")


def _snake(text: str) -> str:
    return _SEPARATORS_RE.sub("_", text.lower())


def normalize_data_type(file_name: str) -> str:
    """
    Turn an upload file name into a data_type label.

    Strips the extension, a short upper-case prefix and trailing period
    markers, so "ACME_Ventas_Jan2024.xlsx" becomes "ventas".
    """
    stem = _EXTENSION_RE.sub("", file_name)
    stem = _PREFIX_RE.sub("", stem)
    for pattern in (_MONTH_SUFFIX_RE, _QUARTER_SUFFIX_RE, _YEAR_MONTH_SUFFIX_RE, _YEAR_SUFFIX_RE):
        stem = pattern.sub("", stem)
    return _snake(stem.rstrip("_"))


def resolve_data_type(file_name: str, tab_name: str, include_tab: bool) -> str:
    normalized = normalize_data_type(file_name)
    tab = _snake(tab_name)
    if len(normalized) <= 2:
        return normalized or tab
    if include_tab and tab_name not in GENERIC_TABS:
        return f"{normalized}__{tab}"
    return normalized


# =======================
# ANALYZE
# =======================


def _warnings(profile: ContentProfile, claim: ContentClaim, result: NegotiationResult) -> list[str]:
    warnings = []
    if profile.row_count == 0:
        warnings.append("Tab has no data rows")
    if claim.confidence < LOW_CONFIDENCE_WARNING:
        warnings.append("Low confidence: manual classification review recommended")
    scores = result.round2_scores
    if claim.claim_type == "FULL" and len(scores) > 1 and requires_human_review(scores):
        warnings.append(f"Close call between {scores[0].agent} and {scores[1].agent}")
    return warnings


def build_unit_proposals(profile: ContentProfile, result: NegotiationResult) -> list[ContentUnitProposal]:
    """One proposal per claim: one for a FULL claim, two for a split tab."""
    review = requires_human_review(result.round2_scores)
    proposals = []
    for claim in result.claims:
        proposals.append(
            ContentUnitProposal(
                content_unit_id=claim.content_unit_id,
                source_file=profile.source_file,
                tab_name=profile.tab_name,
                classification=claim.agent,
                confidence=claim.confidence,
                reasoning=claim.reasoning,
                action=ACTIONS[claim.agent],
                field_bindings=claim.semantic_bindings,
                all_scores=result.round2_scores,
                warnings=_warnings(profile, claim, result),
                claim_type=claim.claim_type,
                owned_fields=claim.fields,
                shared_fields=claim.shared_fields,
                partner_content_unit_id=claim.partner_content_unit_id,
                negotiation_log=result.log,
                requires_human_review=review,
            )
        )
        increment_counter(
            content_units_classified_total,
            classification=claim.agent,
            claim_type=claim.claim_type,
        )
        if review:
            increment_counter(human_review_required_total)
    return proposals


def order_for_processing(units: Iterable[ContentUnitProposal]) -> list[str]:
    """Content unit ids ordered plan, entity, target, transaction; upload order within a class."""
    ordered = sorted(
        enumerate(units), key=lambda item: (PROCESSING_ORDER.index(item[1].classification), item[0])
    )
    return [unit.content_unit_id for _, unit in ordered]


def analyze(context: TenantContext, files: list[UploadedFile]) -> SCIProposal:
    """
    Classify every tab of the uploaded files.

    Args:
        context: Tenant scope of the request
        files: Uploaded workbooks

    Returns:
        SCIProposal awaiting human confirmation
    """
    units: list[ContentUnitProposal] = []
    with log_operation("content analysis", logger=logger, **context.log_fields()):
        for upload in files:
            for index, sheet in enumerate(upload.sheets):
                profile = generate_content_profile(sheet.name, index, upload.file_name, sheet.rows)
                result = negotiate(profile)
                units.extend(build_unit_proposals(profile, result))

    overall = round(sum(u.confidence for u in units) / len(units), 4) if units else 0.0
    proposal = SCIProposal(
        tenant_id=context.tenant_id,
        source_files=[f.file_name for f in files],
        content_units=units,
        processing_order=order_for_processing(units),
        overall_confidence=overall,
        requires_human_review=any(u.requires_human_review for u in units),
    )
    logger.info(
        f"Proposal {proposal.proposal_id}: {len(units)} content units, "
        f"overall confidence {overall:.2f}",
        extra=context.log_fields(),
    )
    return proposal


# =======================
# EXECUTE
# =======================


def filter_partial_unit(unit: ContentUnitExecution) -> ContentUnitExecution:
    """
    Restrict a split unit to its owned and shared fields.

    Keys starting with "_" (sheet name, row index) are always kept.
    Units without owned/shared field lists are returned unchanged.
    """
    if unit.owned_fields is None or unit.shared_fields is None:
        return unit
    allowed = set(unit.owned_fields) | set(unit.shared_fields)
    rows = [
        {k: v for k, v in row.items() if k in allowed or k.startswith("_")}
        for row in unit.raw_data
    ]
    bindings = [b for b in unit.confirmed_bindings if b.source_field in allowed]
    return unit.model_copy(update={"raw_data": rows, "confirmed_bindings": bindings})


def _binding(bindings: list[SemanticBinding], role: str) -> SemanticBinding | None:
    for binding in bindings:
        if binding.semantic_role == role:
            return binding
    return None


def _clean_id(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def _source(unit: ContentUnitExecution) -> tuple[str, str]:
    parts = unit.content_unit_id.split("::")
    file_name = unit.source_file or (parts[0] if parts and parts[0] else "unknown")
    tab_name = unit.tab_name or (parts[1] if len(parts) > 1 and parts[1] else "Sheet1")
    return file_name, tab_name


def _store_field(columns: Iterable[str]) -> str | None:
    lowered = {c.lower(): c for c in columns}
    for candidate in STORE_FIELDS:
        if candidate.lower() in lowered:
            return lowered[candidate.lower()]
    return None


def _is_role_field(field_name: str) -> bool:
    compact = re.sub(r"[\s_\-]+", "", field_name.lower())
    return any(target in compact for target in ROLE_TARGETS)


def _entity_pipeline(context: TenantContext, unit: ContentUnitExecution, store: DataStore) -> ContentUnitResult:
    rows = unit.raw_data
    if not rows:
        return ContentUnitResult(
            content_unit_id=unit.content_unit_id, classification="entity",
            success=True, rows_processed=0, pipeline="entity",
        )

    id_binding = _binding(unit.confirmed_bindings, "entity_identifier")
    if id_binding is None:
        return ContentUnitResult(
            content_unit_id=unit.content_unit_id, classification="entity", success=False,
            rows_processed=0, pipeline="entity", error="No entity_identifier binding found",
        )
    name_binding = _binding(unit.confirmed_bindings, "entity_name")
    license_binding = _binding(unit.confirmed_bindings, "entity_license")
    role_fields = [
        b.source_field
        for b in unit.confirmed_bindings
        if b.semantic_role == "entity_attribute" and _is_role_field(b.source_field)
    ]
    store_field = _store_field(rows[0].keys())

    entities: dict[str, Entity] = {}
    for row in rows:
        external_id = _clean_id(row.get(id_binding.source_field))
        if external_id is None or external_id in entities:
            continue
        name = _clean_id(row.get(name_binding.source_field)) if name_binding else None
        metadata: dict[str, Any] = {}
        role = None
        for field in role_fields:
            role = _clean_id(row.get(field)) or role
        if license_binding:
            licenses = _clean_id(row.get(license_binding.source_field))
            if licenses:
                metadata["product_licenses"] = licenses
        entities[external_id] = Entity(
            tenant_id=context.tenant_id,
            external_id=external_id,
            display_name=name or external_id,
            role=role,
            store_id=_clean_id(row.get(store_field)) if store_field else None,
            metadata=metadata,
        )

    stored = store.save_entities(entities.values())
    logger.info(
        f"Entity pipeline: {len(stored)} entities upserted from {len(rows)} rows",
        extra={"content_unit_id": unit.content_unit_id, **context.log_fields()},
    )
    return ContentUnitResult(
        content_unit_id=unit.content_unit_id, classification="entity",
        success=True, rows_processed=len(rows), pipeline="entity",
    )


def _period_mappings(unit: ContentUnitExecution) -> dict[str, str]:
    mappings: dict[str, str] = {}
    for binding in unit.confirmed_bindings:
        if binding.semantic_role == "transaction_date":
            mappings[binding.source_field] = "date"
    columns = unit.raw_data[0].keys() if unit.raw_data else []
    for column in columns:
        lowered = column.strip().lower()
        if lowered in YEAR_TARGETS | MONTH_TARGETS | PERIOD_TARGETS:
            mappings.setdefault(column, lowered)
    return mappings


def _data_pipeline(
    context: TenantContext,
    proposal_id: str,
    unit: ContentUnitExecution,
    store: DataStore,
) -> ContentUnitResult:
    classification = unit.confirmed_classification
    rows = unit.raw_data
    if not rows:
        return ContentUnitResult(
            content_unit_id=unit.content_unit_id, classification=classification,
            success=True, rows_processed=0, pipeline=classification,
        )

    file_name, tab_name = _source(unit)
    data_type = resolve_data_type(file_name, tab_name, include_tab=classification == "target")

    id_binding = _binding(unit.confirmed_bindings, "entity_identifier")
    entity_ids: dict[str, str] = {}
    if id_binding is not None:
        external_ids = {_clean_id(row.get(id_binding.source_field)) for row in rows} - {None}
        found = store.find_entities_by_external_id(context.tenant_id, external_ids)
        entity_ids = {eid: entity.id for eid, entity in found.items()}

    year_col, month_col, period_col = find_period_columns(_period_mappings(unit))
    period_ids: dict[tuple[int, int], str] = {}

    metadata: dict[str, Any] = {
        "source": "sci",
        "proposal_id": proposal_id,
        "content_unit_id": unit.content_unit_id,
        "resolved_data_type": data_type,
    }
    if classification == "target":
        metadata["semantic_roles"] = {
            b.source_field: {
                "role": b.semantic_role,
                "confidence": b.confidence,
                "claimed_by": b.claimed_by,
            }
            for b in unit.confirmed_bindings
        }

    import_batch_id = str(uuid.uuid4())
    committed = []
    unresolved_periods = 0
    for index, row in enumerate(rows):
        entity_id = None
        if id_binding is not None:
            entity_id = entity_ids.get(_clean_id(row.get(id_binding.source_field)))

        period_id = None
        year_month = parse_row_period(row, year_col, month_col, period_col)
        if year_month is not None:
            if year_month not in period_ids:
                period = store.save_period(Period.for_month(context.tenant_id, *year_month))
                period_ids[year_month] = period.id
            period_id = period_ids[year_month]
        else:
            unresolved_periods += 1

        committed.append(
            CommittedDataRow(
                tenant_id=context.tenant_id,
                entity_id=entity_id,
                period_id=period_id,
                data_type=data_type,
                row_data={**row, "_sheetName": tab_name, "_rowIndex": index},
                metadata=metadata,
                import_batch_id=import_batch_id,
            )
        )

    inserted = store.insert_committed_data(committed)
    logger.info(
        f"{classification.capitalize()} pipeline: {inserted} rows committed, data_type={data_type}",
        extra={
            "content_unit_id": unit.content_unit_id,
            "periods_resolved": len(period_ids),
            "rows_without_period": unresolved_periods,
            **context.log_fields(),
        },
    )
    return ContentUnitResult(
        content_unit_id=unit.content_unit_id, classification=classification,
        success=True, rows_processed=inserted, pipeline=classification,
    )


def _plan_pipeline(context: TenantContext, unit: ContentUnitExecution) -> ContentUnitResult:
    logger.info(
        f"Plan content unit {unit.content_unit_id} recorded, interpretation pending",
        extra=context.log_fields(),
    )
    return ContentUnitResult(
        content_unit_id=unit.content_unit_id, classification="plan",
        success=True, rows_processed=0, pipeline="plan-deferred",
    )


def execute_unit(
    context: TenantContext,
    proposal_id: str,
    unit: ContentUnitExecution,
    store: DataStore,
) -> ContentUnitResult:
    """Route one confirmed unit to the pipeline of its classification."""
    unit = filter_partial_unit(unit)
    if unit.confirmed_classification == "entity":
        return _entity_pipeline(context, unit, store)
    if unit.confirmed_classification in ("target", "transaction"):
        return _data_pipeline(context, proposal_id, unit, store)
    return _plan_pipeline(context, unit)


def execute(context: TenantContext, request: ExecutionRequest, store: DataStore) -> ExecutionResult:
    """
    Commit confirmed content units in processing order.

    A failing unit is reported with success=False and does not stop the
    remaining units.

    Raises:
        TenantScopeError: If the request belongs to another tenant
    """
    if request.tenant_id != context.tenant_id:
        raise TenantScopeError(context.tenant_id, request.tenant_id, "ExecutionRequest")

    units = sorted(
        request.content_units,
        key=lambda u: PROCESSING_ORDER.index(u.confirmed_classification),
    )
    results = []
    with log_operation("content execution", logger=logger, proposal_id=request.proposal_id,
                       **context.log_fields()):
        for unit in units:
            try:
                result = execute_unit(context, request.proposal_id, unit, store)
            except Exception as e:
                logger.error(
                    f"Content unit {unit.content_unit_id} failed: {e}",
                    extra=context.log_fields(),
                )
                result = ContentUnitResult(
                    content_unit_id=unit.content_unit_id,
                    classification=unit.confirmed_classification,
                    success=False,
                    rows_processed=0,
                    pipeline=unit.confirmed_classification,
                    error=str(e),
                )
            results.append(result)

    return ExecutionResult(proposal_id=request.proposal_id, results=results)
