"""
Benchmark reconciliation.

Compares an externally supplied payout file against the calculated
results of one batch:
1. Optionally keep only the rows of the target periods
2. Compare totals across all rows (aggregate layer)
3. Compare per entity and, where component columns are mapped, per component
4. Group entity comparisons by store
5. Assess how deep the comparison could go and how likely false greens are

Reconciliation reads results; it never changes them.
"""
from typing import Any, Iterable

from incentive.core.models import (
    AggregateComparison,
    CalculationResult,
    ColumnMapping,
    ComparisonResult,
    EntityComparison,
    StoreComparison,
    TenantContext,
)
from incentive.core.models.period import canonical_key_for
from incentive.core.periods import parse_period_value, resolve_period_values
from incentive.observability.logger import get_logger, log_operation
from incentive.observability.metrics import (
    increment_counter,
    reconciliation_duration_seconds,
    reconciliation_findings_total,
    track_duration,
)

from .comparison import (
    ReconciliationSettings,
    build_findings,
    build_summary,
    cell_number,
    classify_delta,
    compare_entities,
    delta_percent,
    index_file_rows,
    index_results,
)
from .depth import assess_comparison_depth

logger = get_logger(__name__)


def _period_key(value: Any) -> str | None:
    parsed = parse_period_value(value)
    return canonical_key_for(*parsed) if parsed else None


def filter_rows_by_period(
    rows: list[dict[str, Any]],
    period_columns: list[str] | None,
    target_periods: Iterable[Any] | None,
) -> tuple[list[dict[str, Any]], int]:
    """
    Keep the rows whose period falls in one of the target periods.

    A row's period combines all of its period columns the way the
    period detector reads them: a year from one column and a month from
    another, or a single full period value. Rows without a parseable
    period are dropped when target periods are given and kept otherwise.

    Args:
        rows: Benchmark rows
        period_columns: Columns that may hold the row's period
        target_periods: Canonical "YYYY-MM" keys, or any value
            parse_period_value understands

    Returns:
        (kept rows, number of rows filtered out)
    """
    if not period_columns:
        return rows, 0

    targets = {key for key in (_period_key(t) for t in (target_periods or [])) if key}
    if not targets:
        return rows, 0

    kept = []
    for row in rows:
        parsed = resolve_period_values(row.get(column) for column in period_columns)
        if parsed and canonical_key_for(*parsed) in targets:
            kept.append(row)
    return kept, len(rows) - len(kept)


def compare_aggregate(
    rows: list[dict[str, Any]],
    results: list[CalculationResult],
    total_amount_field: str,
    settings: ReconciliationSettings,
) -> AggregateComparison:
    file_total = sum(cell_number(row, total_amount_field) for row in rows)
    vl_total = sum(r.total_payout for r in results)
    pct = delta_percent(file_total, vl_total)
    return AggregateComparison(
        file_total=file_total,
        vl_total=vl_total,
        delta=file_total - vl_total,
        delta_percent=pct,
        flag=classify_delta(pct, settings),
        entity_count_file=len(rows),
        entity_count_vl=len(results),
    )


def compare_stores(
    comparisons: list[EntityComparison],
    settings: ReconciliationSettings,
) -> list[StoreComparison]:
    """
    Group entity comparisons by the store of their calculated result.

    File-only entities have no known store and are left out. Stores are
    sorted by absolute delta, largest first.
    """
    groups: dict[str, list[EntityComparison]] = {}
    for comparison in comparisons:
        if comparison.store_id:
            groups.setdefault(comparison.store_id, []).append(comparison)

    stores = []
    for store_id, members in groups.items():
        file_total = sum(c.file_total for c in members)
        vl_total = sum(c.vl_total for c in members)
        pct = delta_percent(file_total, vl_total)
        stores.append(
            StoreComparison(
                store_id=store_id,
                file_total=file_total,
                vl_total=vl_total,
                delta=file_total - vl_total,
                delta_percent=pct,
                flag=classify_delta(pct, settings),
                entity_count=len(members),
                file_entity_count=sum(1 for c in members if c.population == "matched"),
                vl_entity_count=len(members),
            )
        )
    stores.sort(key=lambda s: abs(s.delta), reverse=True)
    return stores


class ReconciliationEngine:
    """
    Compares benchmark payout files with calculated results.

    Args:
        settings: Delta thresholds; RECON_TOLERANCE / RECON_AMBER when omitted
    """

    def __init__(self, settings: ReconciliationSettings | None = None):
        self.settings = settings or ReconciliationSettings.from_env()

    def compare(
        self,
        context: TenantContext,
        calculation_results: list[CalculationResult],
        external_rows: list[dict[str, Any]],
        mappings: list[ColumnMapping],
        entity_id_field: str,
        total_amount_field: str,
        period_columns: list[str] | None = None,
        target_periods: list[Any] | None = None,
    ) -> ComparisonResult:
        """
        Reconcile a benchmark file against calculated results.

        Args:
            context: Tenant scope
            calculation_results: Results of the batch under review
            external_rows: Benchmark file rows
            mappings: Benchmark column mappings; "component:<id>" targets
                enable component comparison
            entity_id_field: Benchmark column holding the entity id
            total_amount_field: Benchmark column holding the total payout
            period_columns: Benchmark columns holding a row's period
            target_periods: Periods to keep (canonical keys)

        Returns:
            ComparisonResult
        """
        tenant_id = context.tenant_id
        with track_duration(reconciliation_duration_seconds, tenant_id=tenant_id), \
                log_operation("benchmark comparison", logger=logger,
                              file_rows=len(external_rows), results=len(calculation_results),
                              **context.log_fields()):
            rows, filtered_out = filter_rows_by_period(external_rows, period_columns, target_periods)
            if filtered_out:
                logger.info(
                    f"Period filter removed {filtered_out} of {len(external_rows)} rows",
                    extra={"rows_filtered_out": filtered_out, **context.log_fields()},
                )

            file_by_entity = index_file_rows(rows, entity_id_field, total_amount_field, mappings)
            vl_by_entity = index_results(calculation_results)

            entities = compare_entities(
                file_by_entity, vl_by_entity, total_amount_field, mappings, self.settings
            )
            findings = build_findings(entities)
            stores = compare_stores(entities, self.settings)
            depth = assess_comparison_depth(
                calculation_results, rows, mappings, entity_id_field, total_amount_field
            )

            compared_layers = ["aggregate"]
            if any(e.population == "matched" for e in entities):
                compared_layers.append("entity")
            if any(e.components for e in entities):
                compared_layers.append("component")
            if stores:
                compared_layers.append("store")

            result = ComparisonResult(
                summary=build_summary(entities),
                findings=findings,
                false_green_count=sum(1 for f in findings if f.type == "false_green"),
                depth_achieved=depth.max_depth,
                compared_layers=compared_layers,
                aggregate=compare_aggregate(rows, calculation_results, total_amount_field, self.settings),
                entities=entities,
                store_comparisons=stores,
                depth=depth,
                rows_filtered_out=filtered_out,
            )

        for finding in findings:
            increment_counter(reconciliation_findings_total, tenant_id=tenant_id, finding_type=finding.type)

        if result.false_green_count:
            logger.warning(
                f"{result.false_green_count} false green(s): totals match while components diverge",
                extra={"false_green_risk": depth.false_green_risk, **context.log_fields()},
            )
        logger.info(
            f"Compared {result.summary.total_entities} entities: "
            f"{result.summary.matched} matched, {len(findings)} findings, depth {depth.max_depth}",
            extra=context.log_fields(),
        )
        return result


def compare(
    context: TenantContext,
    calculation_results: list[CalculationResult],
    external_rows: list[dict[str, Any]],
    mappings: list[ColumnMapping],
    entity_id_field: str,
    total_amount_field: str,
    period_columns: list[str] | None = None,
    target_periods: list[Any] | None = None,
    settings: ReconciliationSettings | None = None,
) -> ComparisonResult:
    """Compare with a one-off ReconciliationEngine."""
    return ReconciliationEngine(settings).compare(
        context,
        calculation_results,
        external_rows,
        mappings,
        entity_id_field,
        total_amount_field,
        period_columns,
        target_periods,
    )
