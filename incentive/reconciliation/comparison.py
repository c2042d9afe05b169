"""
Entity and component comparison between a benchmark file and calculated results.

Three populations:
- matched: the entity is in both the file and the calculated results
- file_only: only in the benchmark file
- vl_only: only in the calculated results

Delta flags, on delta / calculated value:
- exact: no difference
- tolerance: within 5% (green)
- amber: within 15%
- red: anything larger
"""
import os
from typing import Any, Iterable

from pydantic import BaseModel, Field, field_validator

from incentive.core.models import (
    CalculationResult,
    ColumnMapping,
    ComparisonSummary,
    ComponentComparison,
    EntityComparison,
    ReconciliationFinding,
)
from incentive.core.models.reconciliation import DeltaFlag
from incentive.utils.validation import normalize_entity_id, to_number

TOLERANCE_THRESHOLD = 0.05
AMBER_THRESHOLD = 0.15

GREEN_FLAGS = ("exact", "tolerance")

FINDING_PRIORITY = {"false_green": 1, "mismatch": 2, "file_only": 3, "vl_only": 3}


class ReconciliationSettings(BaseModel):
    """
    Delta thresholds used to flag differences.

    Attributes:
        tolerance: Largest relative delta still flagged green
        amber: Largest relative delta flagged amber; above it is red
    """

    tolerance: float = Field(TOLERANCE_THRESHOLD, ge=0.0)
    amber: float = Field(AMBER_THRESHOLD, ge=0.0)

    @field_validator("amber")
    @classmethod
    def check_amber_above_tolerance(cls, v, info):
        """Validate that the amber band starts where tolerance ends."""
        tolerance = info.data.get("tolerance")
        if tolerance is not None and v < tolerance:
            raise ValueError(f"amber threshold {v} is below tolerance {tolerance}")
        return v

    class Config:
        frozen = True
        json_schema_extra = {"example": {"tolerance": 0.05, "amber": 0.15}}

    @classmethod
    def from_env(cls) -> "ReconciliationSettings":
        """Read RECON_TOLERANCE and RECON_AMBER, falling back to 5% and 15%."""
        return cls(
            tolerance=float(os.getenv("RECON_TOLERANCE", str(TOLERANCE_THRESHOLD))),
            amber=float(os.getenv("RECON_AMBER", str(AMBER_THRESHOLD))),
        )


DEFAULT_SETTINGS = ReconciliationSettings()


def delta_percent(file_value: float, vl_value: float) -> float:
    """
    Relative delta of the file value against the calculated value.

    A calculated zero against a non-zero file value counts as 100%.
    """
    if vl_value != 0:
        return (file_value - vl_value) / vl_value
    return 1.0 if file_value != 0 else 0.0


def classify_delta(pct: float, settings: ReconciliationSettings = DEFAULT_SETTINGS) -> DeltaFlag:
    """Classify a relative delta into exact, tolerance, amber or red."""
    magnitude = abs(pct)
    if magnitude == 0:
        return "exact"
    if magnitude <= settings.tolerance:
        return "tolerance"
    if magnitude <= settings.amber:
        return "amber"
    return "red"


def cell_number(row: dict[str, Any], column: str | None) -> float:
    if not column:
        return 0.0
    value = to_number(row.get(column))
    return value if value is not None else 0.0


def result_key(result: CalculationResult) -> str:
    """Normalized external id of a calculated result (internal id when missing)."""
    return normalize_entity_id(result.external_id or result.entity_id)


def component_mappings(mappings: Iterable[ColumnMapping]) -> list[ColumnMapping]:
    return [m for m in mappings if m.component_id]


def index_file_rows(
    rows: Iterable[dict[str, Any]],
    entity_id_field: str,
    total_amount_field: str,
    mappings: list[ColumnMapping],
) -> dict[str, dict[str, Any]]:
    """
    Group benchmark rows by normalized entity id.

    Several rows for one entity (one per month, say) are folded into one
    by summing the total column and every mapped component column. Rows
    without an id are dropped.
    """
    summed_columns = [total_amount_field] + [m.source_column for m in component_mappings(mappings)]
    by_entity: dict[str, dict[str, Any]] = {}
    for row in rows:
        key = normalize_entity_id(row.get(entity_id_field))
        if not key:
            continue
        existing = by_entity.get(key)
        if existing is None:
            by_entity[key] = dict(row)
            continue
        for column in summed_columns:
            existing[column] = cell_number(existing, column) + cell_number(row, column)
    return by_entity


def index_results(results: Iterable[CalculationResult]) -> dict[str, CalculationResult]:
    indexed: dict[str, CalculationResult] = {}
    for result in results:
        key = result_key(result)
        if key:
            indexed[key] = result
    return indexed


def compare_components(
    row: dict[str, Any],
    result: CalculationResult,
    mappings: list[ColumnMapping],
    settings: ReconciliationSettings = DEFAULT_SETTINGS,
) -> list[ComponentComparison]:
    """Compare each mapped component column with the calculated component payout."""
    if not mappings or not result.components:
        return []

    payouts = {c.component_id: c for c in result.components}
    comparisons = []
    for mapping in mappings:
        component_id = mapping.component_id
        calculated = payouts.get(component_id)
        file_value = cell_number(row, mapping.source_column)
        vl_value = calculated.payout if calculated else 0.0
        pct = delta_percent(file_value, vl_value)
        comparisons.append(
            ComponentComparison(
                component_id=component_id,
                component_name=mapping.mapped_to_label or (calculated.component_name if calculated else component_id),
                file_value=file_value,
                vl_value=vl_value,
                delta=file_value - vl_value,
                delta_percent=pct,
                flag=classify_delta(pct, settings),
            )
        )
    return comparisons


def compare_entities(
    file_by_entity: dict[str, dict[str, Any]],
    vl_by_entity: dict[str, CalculationResult],
    total_amount_field: str,
    mappings: list[ColumnMapping],
    settings: ReconciliationSettings = DEFAULT_SETTINGS,
) -> list[EntityComparison]:
    """Build one comparison per entity id seen on either side, sorted by id."""
    comparisons = []
    components = component_mappings(mappings)

    for key in sorted(set(file_by_entity) | set(vl_by_entity)):
        row = file_by_entity.get(key)
        result = vl_by_entity.get(key)
        name = (result.entity_name if result else None) or key

        if row is not None and result is not None:
            file_total = cell_number(row, total_amount_field)
            vl_total = result.total_payout or 0.0
            pct = delta_percent(file_total, vl_total)
            comparisons.append(
                EntityComparison(
                    entity_id=key,
                    entity_name=name,
                    population="matched",
                    file_total=file_total,
                    vl_total=vl_total,
                    total_delta=file_total - vl_total,
                    total_delta_percent=pct,
                    total_flag=classify_delta(pct, settings),
                    components=compare_components(row, result, components, settings),
                    store_id=result.store_id,
                )
            )
        elif row is not None:
            file_total = cell_number(row, total_amount_field)
            comparisons.append(
                EntityComparison(
                    entity_id=key,
                    entity_name=name,
                    population="file_only",
                    file_total=file_total,
                    total_delta=file_total,
                    total_delta_percent=1.0,
                    total_flag="red",
                )
            )
        else:
            vl_total = result.total_payout or 0.0
            comparisons.append(
                EntityComparison(
                    entity_id=key,
                    entity_name=name,
                    population="vl_only",
                    vl_total=vl_total,
                    total_delta=-vl_total,
                    total_delta_percent=-1.0,
                    total_flag="red",
                    store_id=result.store_id,
                )
            )
    return comparisons


def is_false_green(comparison: EntityComparison) -> bool:
    """Total looks green while at least one component is amber or red."""
    return (
        comparison.population == "matched"
        and comparison.total_flag in GREEN_FLAGS
        and any(c.flag not in GREEN_FLAGS for c in comparison.components)
    )


def build_summary(comparisons: list[EntityComparison]) -> ComparisonSummary:
    matched = [c for c in comparisons if c.population == "matched"]
    return ComparisonSummary(
        total_entities=len(comparisons),
        matched=len(matched),
        file_only=sum(1 for c in comparisons if c.population == "file_only"),
        vl_only=sum(1 for c in comparisons if c.population == "vl_only"),
        exact_matches=sum(1 for c in matched if c.total_flag == "exact"),
        tolerance_matches=sum(1 for c in matched if c.total_flag == "tolerance"),
        amber_flags=sum(1 for c in matched if c.total_flag == "amber"),
        red_flags=sum(1 for c in matched if c.total_flag == "red"),
        false_greens=sum(1 for c in matched if is_false_green(c)),
        file_total_amount=sum(c.file_total for c in comparisons),
        vl_total_amount=sum(c.vl_total for c in comparisons),
        total_delta=sum(c.total_delta for c in comparisons),
    )


def _finding(comparison: EntityComparison, finding_type: str, reason: str, component_flags=None):
    return ReconciliationFinding(
        type=finding_type,
        entity_id=comparison.entity_id,
        entity_name=comparison.entity_name,
        priority=FINDING_PRIORITY[finding_type],
        delta=comparison.total_delta,
        delta_percent=comparison.total_delta_percent,
        flag=comparison.total_flag,
        reason=reason,
        component_flags=component_flags or [],
    )


def build_findings(comparisons: list[EntityComparison]) -> list[ReconciliationFinding]:
    """
    Turn entity comparisons into ordered findings.

    False greens come first (most divergent components first), then total
    mismatches by absolute delta, then file-only and calculated-only
    entities. Green entities without component issues produce no finding.
    """
    false_greens = []
    mismatches = []
    file_only = []
    vl_only = []

    for comparison in comparisons:
        if comparison.population == "file_only":
            file_only.append(_finding(
                comparison, "file_only",
                "Entity present in the benchmark file but has no calculated result",
            ))
        elif comparison.population == "vl_only":
            vl_only.append(_finding(
                comparison, "vl_only",
                "Entity has a calculated result but is missing from the benchmark file",
            ))
        elif is_false_green(comparison):
            diverging = [c for c in comparison.components if c.flag not in GREEN_FLAGS]
            false_greens.append(_finding(
                comparison, "false_green",
                f"Total within tolerance ({abs(comparison.total_delta_percent) * 100:.1f}%) but "
                f"{len(diverging)} component(s) have significant differences. "
                "Offsetting errors may be masking real discrepancies.",
                diverging,
            ))
        elif comparison.total_flag not in GREEN_FLAGS:
            diverging = [c for c in comparison.components if c.flag not in GREEN_FLAGS]
            mismatches.append(_finding(
                comparison, "mismatch",
                f"Total differs by {comparison.total_delta:.2f} "
                f"({comparison.total_delta_percent * 100:.1f}%, {comparison.total_flag})",
                diverging,
            ))

    false_greens.sort(key=lambda f: len(f.component_flags), reverse=True)
    mismatches.sort(key=lambda f: abs(f.delta), reverse=True)
    return false_greens + mismatches + file_only + vl_only
