"""
Calculation run orchestration.

Flow for one (tenant, period, rule set):
1. Load the period and the rule set
2. Select the entities in scope
3. Group the period's committed rows by entity and by store
4. Evaluate every entity against its plan variant
5. Replace the previous results under the key's critical section and
   move the new batch to PREVIEW
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Any

from incentive.core.errors import StructuralError
from incentive.core.evaluators import EvaluationError
from incentive.core.metrics import aggregate_semantic_values, apply_metric_derivations
from incentive.core.models import (
    STORE_FIELDS,
    CalculationBatch,
    CalculationResult,
    CalculationRunResult,
    CommittedDataRow,
    Entity,
    LifecycleState,
    Period,
    RuleSet,
    TenantContext,
)
from incentive.core.rules import PlanEngine
from incentive.observability.logger import get_logger, log_operation
from incentive.observability.metrics import (
    batch_total_payout,
    calculation_duration_seconds,
    calculation_runs_total,
    entities_evaluated_total,
    increment_counter,
    set_gauge,
    track_duration,
)
from incentive.warehouse.store import DataStore

from .lifecycle import plan_supersession, plan_transition, record_accepted

logger = get_logger(__name__)


def _store_value(data: dict[str, Any]) -> str | None:
    for field in STORE_FIELDS:
        value = data.get(field)
        if value is None:
            continue
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        text = str(value).strip()
        if text:
            return text
    return None


class RowIndex:
    """
    A period's committed rows, grouped for entity evaluation.

    Rows carrying an entity id belong to that entity. Rows without one
    but with a store field are store-level rows, joined to every entity
    of that store.
    """

    def __init__(self, rows: list[CommittedDataRow]):
        self.by_entity: dict[str, list[CommittedDataRow]] = {}
        self.by_store: dict[str, list[CommittedDataRow]] = {}
        self.unassigned = 0
        for row in rows:
            if row.entity_id:
                self.by_entity.setdefault(row.entity_id, []).append(row)
                continue
            store = _store_value(row.row_data)
            if store is None:
                self.unassigned += 1
            else:
                self.by_store.setdefault(store, []).append(row)

    def store_of(self, entity: Entity) -> str | None:
        if entity.store_id:
            return entity.store_id
        store = _store_value(entity.metadata)
        if store:
            return store
        for row in self.by_entity.get(entity.id, []):
            store = _store_value(row.row_data)
            if store:
                return store
        return None

    def own_rows(self, entity: Entity) -> list[CommittedDataRow]:
        return self.by_entity.get(entity.id, [])

    def rows_for(self, entity: Entity) -> list[CommittedDataRow]:
        """Entity rows followed by the rows of its store."""
        store = self.store_of(entity)
        return self.own_rows(entity) + (self.by_store.get(store, []) if store else [])


class CalculationEngine:
    """
    Runs a rule set over the entities of a tenant for one period.

    Args:
        store: Tenant-scoped data store
        max_workers: Evaluate entities on a thread pool of this size;
            None or 1 evaluates sequentially
    """

    def __init__(self, store: DataStore, max_workers: int | None = None):
        self.store = store
        self.max_workers = max_workers

    def run(
        self,
        context: TenantContext,
        period_id: str,
        rule_set_id: str,
        run_log: list[str] | None = None,
    ) -> CalculationRunResult:
        """
        Calculate and persist results for one period under one rule set.

        Args:
            context: Tenant scope
            period_id: Period to calculate
            rule_set_id: Plan to apply
            run_log: List receiving human readable progress lines; also
                filled when the run fails

        Returns:
            CalculationRunResult

        Raises:
            StructuralError: Missing period or rule set, or a malformed plan.
                Raised before any result is deleted.
            LifecycleError: A previous batch for the key is past OFFICIAL
        """
        run_log = run_log if run_log is not None else []
        tenant_id = context.tenant_id

        try:
            with track_duration(calculation_duration_seconds, tenant_id=tenant_id), \
                    log_operation("calculation run", logger=logger, period_id=period_id,
                                  rule_set_id=rule_set_id, **context.log_fields()):
                result = self._run(context, period_id, rule_set_id, run_log)
        except Exception:
            increment_counter(calculation_runs_total, tenant_id=tenant_id, status="error")
            raise

        status = "success" if result.entity_count else "empty"
        increment_counter(calculation_runs_total, tenant_id=tenant_id, status=status)
        return result

    def _run(
        self,
        context: TenantContext,
        period_id: str,
        rule_set_id: str,
        run_log: list[str],
    ) -> CalculationRunResult:
        tenant_id = context.tenant_id

        # Step 1: Load period and rule set
        period = self.store.get_period(tenant_id, period_id)
        if period is None:
            raise StructuralError(f"Period {period_id} not found", plan_id=rule_set_id)
        rule_set = self.store.get_rule_set(tenant_id, rule_set_id)
        if rule_set is None:
            raise StructuralError(f"Rule set {rule_set_id} not found", plan_id=rule_set_id)

        plan_engine = PlanEngine(rule_set)
        run_log.append(
            f"Rule set '{rule_set.name}': {len(rule_set.variants)} variant(s), "
            f"{rule_set.component_count()} component(s)"
        )

        # Step 2: Entities in scope
        entities = self._entities_in_scope(tenant_id, rule_set_id)
        run_log.append(f"{len(entities)} entities in scope")
        if not entities:
            logger.info("No entities in scope, nothing to calculate", extra=context.log_fields())
            return CalculationRunResult(entity_count=0, log=list(run_log))

        # Step 3: Committed rows
        index = RowIndex(self.store.list_committed_data(tenant_id, period.id))
        run_log.append(
            f"Period {period.canonical_key}: {len(index.by_entity)} entities with rows, "
            f"{len(index.by_store)} stores with store-level rows"
        )
        if index.unassigned:
            run_log.append(f"{index.unassigned} rows without entity or store ignored")

        prior_index = None
        if rule_set.has_delta_derivations():
            prior = self._prior_period(tenant_id, period)
            if prior is not None:
                prior_index = RowIndex(self.store.list_committed_data(tenant_id, prior.id))
                run_log.append(f"Prior period {prior.canonical_key} loaded for delta metrics")
            else:
                run_log.append("No prior period; delta metrics use zero as baseline")

        # Step 4: Evaluate
        batch = CalculationBatch(
            tenant_id=tenant_id,
            period_id=period.id,
            rule_set_id=rule_set.id,
            lifecycle_state=LifecycleState.DRAFT,
            entity_count=len(entities),
            recalculating=True,
        )

        def evaluate(entity: Entity) -> CalculationResult:
            return self._evaluate_entity(plan_engine, rule_set, period, batch.id, entity, index, prior_index)

        try:
            if self.max_workers and self.max_workers > 1:
                with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                    results = list(executor.map(evaluate, entities))
            else:
                results = [evaluate(entity) for entity in entities]
        except EvaluationError as e:
            raise StructuralError(e.message, plan_id=rule_set.id, component_id=e.component_id) from e

        results.sort(key=lambda r: (r.external_id or "", r.entity_id))
        increment_counter(entities_evaluated_total, len(results), tenant_id=tenant_id)

        total_payout = round(sum(r.total_payout for r in results), 2)
        run_log.append(f"Evaluated {len(results)} entities, total payout {total_payout:.2f}")

        # Step 5: Persist
        summary = {
            "total_payout": total_payout,
            "entity_count": len(results),
            "component_count": rule_set.component_count(),
            "rule_set_name": rule_set.name,
        }
        batch = self._persist(context, batch, results, summary, run_log)
        set_gauge(
            batch_total_payout, total_payout,
            tenant_id=tenant_id, rule_set_id=rule_set.id, period_id=period.id,
        )

        return CalculationRunResult(
            batch_id=batch.id,
            entity_count=len(entities),
            result_count=len(results),
            total_payout=total_payout,
            results=results,
            log=list(run_log),
        )

    def _entities_in_scope(self, tenant_id: str, rule_set_id: str) -> list[Entity]:
        """Active tenant entities, restricted to assigned ones when the rule set has assignments."""
        entities = [e for e in self.store.list_entities(tenant_id) if e.status == "active"]
        assignments = self.store.list_assignments(tenant_id, rule_set_id)
        if assignments:
            assigned = {a.entity_id for a in assignments}
            entities = [e for e in entities if e.id in assigned]
        return entities

    def _prior_period(self, tenant_id: str, period: Period) -> Period | None:
        earlier = [p for p in self.store.list_periods(tenant_id) if p.canonical_key < period.canonical_key]
        return earlier[-1] if earlier else None

    def _evaluate_entity(
        self,
        plan_engine: PlanEngine,
        rule_set: RuleSet,
        period: Period,
        batch_id: str,
        entity: Entity,
        index: RowIndex,
        prior_index: RowIndex | None,
    ) -> CalculationResult:
        own_rows = index.own_rows(entity)
        rows = index.rows_for(entity)
        prior_rows = prior_index.rows_for(entity) if prior_index else None

        derived = apply_metric_derivations(
            rows, rule_set.input_bindings.metric_derivations, prior_rows
        )
        sheet_metrics = aggregate_semantic_values(own_rows)
        evaluation = plan_engine.evaluate_entity(sheet_metrics, derived, role=entity.role)

        metadata: dict[str, Any] = {
            "variant": evaluation.variant_name,
            "period_key": period.canonical_key,
            "row_count": len(rows),
        }
        if evaluation.warnings:
            metadata["warnings"] = evaluation.warnings

        return CalculationResult(
            tenant_id=entity.tenant_id,
            entity_id=entity.id,
            external_id=entity.external_id,
            entity_name=entity.display_name,
            store_id=index.store_of(entity),
            period_id=period.id,
            rule_set_id=rule_set.id,
            batch_id=batch_id,
            total_payout=evaluation.total_payout,
            components=evaluation.components,
            metrics={**sheet_metrics, **derived, **evaluation.metrics},
            metadata=metadata,
        )

    def _persist(
        self,
        context: TenantContext,
        batch: CalculationBatch,
        results: list[CalculationResult],
        summary: dict[str, Any],
        run_log: list[str],
    ) -> CalculationBatch:
        """
        Replace the key's results and publish the new batch as PREVIEW.

        Prior live batches are superseded before anything is deleted, so a
        batch that may no longer be replaced aborts the run untouched.
        """
        with self.store.calculation_scope(batch.tenant_id, batch.period_id, batch.rule_set_id) as uow:
            superseded = [plan_supersession(prior, batch.id) for prior in uow.find_live_batches(batch.id)]

            uow.save_batch(batch)
            deleted = uow.delete_results()
            inserted = uow.insert_results(results)

            for prior, entry in superseded:
                uow.record_transition(prior, entry)
                record_accepted(entry, prior.id, context)

            ready = batch.model_copy(update={"recalculating": False, "summary": summary})
            preview, entry = plan_transition(ready, LifecycleState.PREVIEW, actor=context.actor)
            uow.record_transition(preview, entry)
            record_accepted(entry, preview.id, context)

        run_log.append(
            f"Batch {preview.id}: replaced {deleted} prior results with {inserted}, "
            f"superseded {len(superseded)} batch(es), state {preview.lifecycle_state.value}"
        )
        return preview
