"""
Request/response operations over the pipeline.

Every operation takes a JSON-style request dict (camelCase or snake_case
keys) and returns a JSON-able dict with camelCase top-level keys. Nested
objects are the models' own JSON. Row payloads (file rows, raw data) are
passed through untouched.

Operations never raise for a bad request: failures come back as
``{"success": False, "error": ...}``.
"""
from typing import Any

from incentive.calculation import BatchLifecycle, CalculationEngine
from incentive.core.classification import analyze as analyze_files
from incentive.core.classification import execute as execute_units
from incentive.core.errors import LifecycleError, StructuralError
from incentive.core.models import (
    CalculationResult,
    ColumnMapping,
    ContentUnitExecution,
    ExecutionRequest,
    SheetInput,
    TenantContext,
    UploadedFile,
    UploadedSheet,
)
from incentive.core.periods import PeriodDetector
from incentive.observability.logger import get_logger
from incentive.reconciliation import ReconciliationEngine, ReconciliationSettings
from incentive.utils.validation import InputValidationError, camel_to_snake, validate_identifier
from incentive.warehouse.store import DataStore

logger = get_logger(__name__)


def _fields(payload: Any, name: str = "request") -> dict[str, Any]:
    """snake_case the keys of one object level; nested values are left as they are."""
    if not isinstance(payload, dict):
        raise InputValidationError(f"{name} must be an object")
    return {camel_to_snake(k) if isinstance(k, str) else k: v for k, v in payload.items()}


def _context(req: dict[str, Any]) -> TenantContext:
    return TenantContext(
        tenant_id=validate_identifier(req.get("tenant_id"), "tenantId"),
        actor=req.get("actor"),
    )


def _failure(error: Exception, **extra) -> dict[str, Any]:
    response = {"success": False, "error": str(error), **extra}
    if isinstance(error, (StructuralError, LifecycleError)):
        response["errorDetail"] = error.to_dict()
    return response


def result_json(result: CalculationResult) -> dict[str, Any]:
    """One calculation result in response shape."""
    return {
        "entityId": result.entity_id,
        "externalId": result.external_id,
        "entityName": result.entity_name,
        "storeId": result.store_id,
        "totalPayout": result.total_payout,
        "components": [c.model_dump(mode="json") for c in result.components],
        "metrics": result.metrics,
        "metadata": result.metadata,
    }


def run_calculation(
    request: dict[str, Any],
    store: DataStore,
    max_workers: int | None = None,
) -> dict[str, Any]:
    """
    Calculate one period under one rule set.

    Request: {tenantId, periodId, ruleSetId, actor?}
    Response: {success, batchId, entityCount, resultCount, totalPayout,
    results[], log[]}; on failure {success: false, error, log}.
    """
    run_log: list[str] = []
    try:
        req = _fields(request)
        context = _context(req)
        period_id = validate_identifier(req.get("period_id"), "periodId")
        rule_set_id = validate_identifier(req.get("rule_set_id"), "ruleSetId")

        outcome = CalculationEngine(store, max_workers=max_workers).run(
            context, period_id, rule_set_id, run_log=run_log
        )
    except Exception as e:
        logger.error(f"Calculation failed: {e}", exc_info=True)
        run_log.append(f"Error: {e}")
        return _failure(e, log=run_log)

    return {
        "success": True,
        "batchId": outcome.batch_id,
        "entityCount": outcome.entity_count,
        "resultCount": outcome.result_count,
        "totalPayout": outcome.total_payout,
        "results": [result_json(r) for r in outcome.results],
        "log": outcome.log,
    }


def transition_batch(request: dict[str, Any], store: DataStore) -> dict[str, Any]:
    """
    Move a batch through its lifecycle.

    Request: {tenantId, batchId, targetState, actor?, details?}
    Response: {success, batchId, fromState, toState}; a rejected
    transition reports the attempted from/to pair with the error.
    """
    try:
        req = _fields(request)
        context = _context(req)
        batch_id = validate_identifier(req.get("batch_id"), "batchId")
        target_state = req.get("target_state")
        if not target_state:
            raise InputValidationError("targetState is required")

        previous, batch = BatchLifecycle(store).transition(
            context, batch_id, target_state, details=req.get("details")
        )
    except LifecycleError as e:
        return _failure(e, fromState=e.from_state, toState=e.to_state)
    except Exception as e:
        logger.error(f"Transition failed: {e}", exc_info=True)
        return _failure(e)

    return {
        "success": True,
        "batchId": batch.id,
        "fromState": previous.value,
        "toState": batch.lifecycle_state.value,
    }


def compare(
    request: dict[str, Any],
    store: DataStore,
    settings: ReconciliationSettings | None = None,
) -> dict[str, Any]:
    """
    Reconcile a benchmark file against the results of one batch.

    Request: {tenantId, batchId, fileRows[], mappings[{sourceColumn,
    mappedTo, mappedToLabel?}], entityIdField, totalAmountField,
    periodColumns?, targetPeriods?}
    Response: {success, summary, findings[], falseGreenCount,
    depthAchieved, comparedLayers, aggregate, storeComparisons, depth,
    rowsFilteredOut}
    """
    try:
        req = _fields(request)
        context = _context(req)
        batch_id = validate_identifier(req.get("batch_id"), "batchId")
        entity_id_field = req.get("entity_id_field")
        total_amount_field = req.get("total_amount_field")
        if not entity_id_field or not total_amount_field:
            raise InputValidationError("entityIdField and totalAmountField are required")

        batch = store.get_batch(context.tenant_id, batch_id)
        if batch is None:
            raise InputValidationError(f"Batch {batch_id} not found")

        mappings = [ColumnMapping(**_fields(m, "mapping")) for m in req.get("mappings") or []]
        result = ReconciliationEngine(settings).compare(
            context,
            store.list_results(context.tenant_id, batch_id=batch.id),
            list(req.get("file_rows") or []),
            mappings,
            entity_id_field,
            total_amount_field,
            period_columns=req.get("period_columns"),
            target_periods=req.get("target_periods"),
        )
    except Exception as e:
        logger.error(f"Comparison failed: {e}", exc_info=True)
        return _failure(e)

    return {"success": True, **result.to_response()}


def analyze(request: dict[str, Any]) -> dict[str, Any]:
    """
    Classify the tabs of uploaded files into a proposal for human review.

    Request: {tenantId, files[{fileName, sheets[{name, rows[]}]}]}
    Response: the proposal with camelCase top-level keys.
    """
    try:
        req = _fields(request)
        context = _context(req)
        files = []
        for raw_file in req.get("files") or []:
            file_fields = _fields(raw_file, "file")
            sheets = [UploadedSheet(**_fields(s, "sheet")) for s in file_fields.get("sheets") or []]
            files.append(UploadedFile(file_name=file_fields.get("file_name"), sheets=sheets))

        proposal = analyze_files(context, files)
    except Exception as e:
        logger.error(f"Analysis failed: {e}", exc_info=True)
        return _failure(e)

    return {
        "success": True,
        "proposalId": proposal.proposal_id,
        "tenantId": proposal.tenant_id,
        "sourceFiles": proposal.source_files,
        "contentUnits": [u.model_dump(mode="json") for u in proposal.content_units],
        "processingOrder": proposal.processing_order,
        "overallConfidence": proposal.overall_confidence,
        "requiresHumanReview": proposal.requires_human_review,
    }


def execute(request: dict[str, Any], store: DataStore) -> dict[str, Any]:
    """
    Import confirmed content units.

    Request: {tenantId, proposalId, contentUnits[{contentUnitId,
    confirmedClassification, confirmedBindings[], rawData[],
    ownedFields?, sharedFields?, sourceFile?, tabName?}]}
    Response: {proposalId, results[], overallSuccess}
    """
    try:
        req = _fields(request)
        context = _context(req)
        units = []
        for raw_unit in req.get("content_units") or []:
            unit = _fields(raw_unit, "content unit")
            unit["confirmed_bindings"] = [
                _fields(b, "binding") for b in unit.get("confirmed_bindings") or []
            ]
            units.append(ContentUnitExecution(**unit))

        execution = execute_units(
            context,
            ExecutionRequest(
                proposal_id=req.get("proposal_id"),
                tenant_id=context.tenant_id,
                content_units=units,
            ),
            store,
        )
    except Exception as e:
        logger.error(f"Execution failed: {e}", exc_info=True)
        return _failure(e)

    return {
        "success": execution.overall_success,
        "proposalId": execution.proposal_id,
        "results": [r.model_dump(mode="json") for r in execution.results],
        "overallSuccess": execution.overall_success,
    }


def detect_periods(request: dict[str, Any]) -> dict[str, Any]:
    """
    Detect the periods present in field-mapped sheets.

    Request: {sheets[{sheetName, rows[], fieldMappings{}, classification?}]}
    Response: {periods[], frequency, confidence, rowsExamined, rowsMatched}
    """
    try:
        req = _fields(request)
        sheets = [SheetInput(**_fields(s, "sheet")) for s in req.get("sheets") or []]
        detection = PeriodDetector().detect(sheets)
    except Exception as e:
        logger.error(f"Period detection failed: {e}", exc_info=True)
        return _failure(e)

    return {
        "success": True,
        "periods": [p.model_dump(mode="json") for p in detection.periods],
        "frequency": detection.frequency,
        "confidence": detection.confidence,
        "rowsExamined": detection.rows_examined,
        "rowsMatched": detection.rows_matched,
        "sheetsSkipped": detection.sheets_skipped,
    }
