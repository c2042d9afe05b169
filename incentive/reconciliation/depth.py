"""
Comparison depth assessment.

Decides how deep a benchmark comparison can go: aggregate totals, per
entity, per component, per metric and per store. Each layer is
available, partial or unavailable. The assessment also estimates the risk
that matching totals hide offsetting component errors ("false greens").
"""
from typing import Any

from incentive.core.models import CalculationResult, ColumnMapping, DataQuality, DepthAssessment, LayerAssessment
from incentive.utils.validation import normalize_entity_id

from .comparison import cell_number, component_mappings, result_key

STORE_MAPPING_TARGETS = {"store_id", "store", "location"}
FILE_STORE_COLUMNS = ("store", "store_id", "storeId", "location", "tienda")

# Deepest first; max_depth is the deepest layer that is genuinely usable
DEEPEST_FIRST = ("metric", "store", "component", "entity", "aggregate")

USABLE_DEPTH = 50
AVAILABLE_MATCH_RATE = 70
LOW_MATCH_RATE = 50
HIGH_MATCH_RATE = 90
UNMATCHED_RATIO = 0.2


class _Sides:
    """Facts about both sides of a comparison shared by the layer checks."""

    def __init__(
        self,
        results: list[CalculationResult],
        rows: list[dict[str, Any]],
        mappings: list[ColumnMapping],
        entity_id_field: str,
        total_amount_field: str,
    ):
        self.results = results
        self.rows = rows
        self.mappings = mappings
        self.component_mappings = component_mappings(mappings)

        self.vl_ids = {result_key(r) for r in results} - {""}
        self.file_ids = {normalize_entity_id(row.get(entity_id_field)) for row in rows} - {""}
        self.matchable = len(self.vl_ids & self.file_ids)

        self.row_totals = [cell_number(row, total_amount_field) for row in rows]
        self.vl_total = sum(r.total_payout for r in results)
        self.file_total = sum(self.row_totals)


def _aggregate_layer(sides: _Sides) -> LayerAssessment:
    has_vl = bool(sides.results) and sides.vl_total > 0
    has_file = bool(sides.rows)
    has_file_total = sides.file_total > 0

    notes = []
    if has_vl:
        notes.append(f"VL total: {len(sides.results)} entities")
    if has_file:
        notes.append(f"File: {len(sides.rows)} rows")
    if has_file_total:
        notes.append("File total amount field detected")

    if has_vl and has_file_total:
        status, depth = "available", 100
    elif has_vl or has_file_total:
        status, depth = "partial", 50
    else:
        status, depth = "unavailable", 0

    return LayerAssessment(
        layer="aggregate",
        status=status,
        depth=depth,
        field_count=int(has_vl) + int(has_file_total),
        coverage_percent=100,
        notes=notes,
    )


def _entity_layer(sides: _Sides) -> LayerAssessment:
    file_has_ids = bool(sides.file_ids)
    vl_has_ids = bool(sides.vl_ids)
    file_has_totals = any(total > 0 for total in sides.row_totals)

    larger_side = max(len(sides.results), len(sides.rows))
    match_rate = sides.matchable / larger_side * 100 if larger_side else 0.0

    notes = [f"Match rate: {sides.matchable}/{larger_side} ({match_rate:.0f}%)"]
    if match_rate < LOW_MATCH_RATE:
        notes.append("Low match rate: check ID format")
    elif match_rate >= HIGH_MATCH_RATE:
        notes.append("High match rate: entity comparison reliable")

    if file_has_ids and vl_has_ids and file_has_totals and sides.matchable > 0:
        status = "available" if match_rate >= AVAILABLE_MATCH_RATE else "partial"
    elif file_has_ids and vl_has_ids:
        status = "partial"
    else:
        status = "unavailable"

    return LayerAssessment(
        layer="entity",
        status=status,
        depth=round(match_rate),
        field_count=int(file_has_ids) + int(file_has_totals),
        coverage_percent=round(match_rate),
        notes=notes,
    )


def _component_layer(sides: _Sides) -> LayerAssessment:
    vl_components = {c.component_id for r in sides.results for c in r.components}
    mapped = {m.component_id for m in sides.component_mappings}

    notes = []
    if vl_components:
        notes.append(f"VL has {len(vl_components)} unique components")
    if mapped:
        notes.append(f"File has {len(mapped)} component columns mapped")

    if vl_components and mapped and sides.matchable > 0:
        overlap = len(vl_components & mapped)
        depth = round(overlap / len(vl_components) * 100)
        status = "available"
        notes.append(f"{overlap}/{len(vl_components)} components mappable")
    elif vl_components or mapped:
        status, depth = "partial", 30
        notes.append("Only one side has component data")
    else:
        status, depth = "unavailable", 0

    return LayerAssessment(
        layer="component",
        status=status,
        depth=depth,
        field_count=len(sides.component_mappings),
        coverage_percent=depth,
        notes=notes,
    )


def _metric_layer(sides: _Sides) -> LayerAssessment:
    metric_names = {
        name
        for r in sides.results
        for c in r.components
        for name in c.metrics
    }
    if metric_names:
        return LayerAssessment(
            layer="metric",
            status="partial",
            depth=20,
            notes=[
                f"VL has {len(metric_names)} unique metrics across components",
                "Metric-level comparison requires ground-truth metric data",
            ],
        )
    return LayerAssessment(
        layer="metric",
        status="unavailable",
        notes=["VL results do not include metric-level detail"],
    )


def _store_layer(sides: _Sides) -> LayerAssessment:
    vl_stores = {r.store_id for r in sides.results if r.store_id}
    store_mappings = [m for m in sides.mappings if m.mapped_to in STORE_MAPPING_TARGETS]
    file_has_stores = bool(store_mappings) or any(
        row.get(column) not in (None, "")
        for row in sides.rows
        for column in FILE_STORE_COLUMNS
    )

    notes = []
    if vl_stores:
        notes.append(f"VL has {len(vl_stores)} unique stores")
    if file_has_stores:
        notes.append("File has store-level data")

    if vl_stores and file_has_stores:
        status, depth = "available", 80
        notes.append("Store-level grouping and comparison available")
    elif vl_stores or file_has_stores:
        status, depth = "partial", 30
        notes.append("Only one side has store data")
    else:
        status, depth = "unavailable", 0

    return LayerAssessment(
        layer="store",
        status=status,
        depth=depth,
        field_count=len(store_mappings),
        coverage_percent=depth,
        notes=notes,
    )


def false_green_risk(sides: _Sides) -> str:
    """
    Likelihood that matching totals mask offsetting component errors.

    High when totals agree closely but components cannot be compared.
    """
    vl_has_components = any(len(r.components) > 1 for r in sides.results)
    file_has_components = bool(sides.component_mappings)

    if not vl_has_components or not file_has_components:
        if sides.vl_total > 0 and sides.file_total > 0:
            diff = abs(sides.vl_total - sides.file_total) / max(sides.vl_total, sides.file_total)
            if diff < 0.05:
                return "high"
        return "medium"

    return "low" if sides.matchable > 0 else "medium"


def _recommendations(
    layers: dict[str, LayerAssessment], quality: DataQuality, risk: str
) -> list[str]:
    recommendations = []

    if quality.unmatched_file > quality.matchable_records * UNMATCHED_RATIO:
        recommendations.append(
            f"{quality.unmatched_file} file records could not be matched to calculated entities. "
            "Check ID format consistency."
        )
    if quality.unmatched_vl > quality.matchable_records * UNMATCHED_RATIO:
        recommendations.append(
            f"{quality.unmatched_vl} calculated entities have no matching file record. "
            "Ensure the file covers all entities in the calculation."
        )

    if risk == "high":
        recommendations.append(
            "WARNING: Totals appear to match but no component-level comparison is possible. "
            "Map individual component columns to verify the breakdown matches."
        )
    elif risk == "medium":
        recommendations.append(
            "Component-level data is limited. Consider mapping additional component columns "
            "to ensure totals are not masking offsetting errors."
        )

    component_status = layers["component"].status
    if component_status == "unavailable":
        recommendations.append(
            "No component-level comparison available. "
            "Map file columns to plan components for deeper reconciliation."
        )
    elif component_status == "partial":
        recommendations.append(
            "Partial component mapping. Additional columns may be mappable to calculated components."
        )

    if layers["store"].status == "available":
        recommendations.append(
            "Store-level grouping is available. Review per-store totals for location-specific discrepancies."
        )

    if not recommendations:
        recommendations.append("Full-depth comparison available across all layers.")
    return recommendations


def _max_depth(layers: dict[str, LayerAssessment]) -> str:
    for name in DEEPEST_FIRST:
        layer = layers[name]
        if layer.status == "available" and layer.depth >= USABLE_DEPTH:
            return name
    for name in reversed(DEEPEST_FIRST):
        if layers[name].status != "unavailable":
            return name
    return "aggregate"


def assess_comparison_depth(
    results: list[CalculationResult],
    rows: list[dict[str, Any]],
    mappings: list[ColumnMapping],
    entity_id_field: str,
    total_amount_field: str,
) -> DepthAssessment:
    """
    Assess every comparison layer for a benchmark file against calculated results.

    Args:
        results: Calculated results of the batch being reconciled
        rows: Benchmark rows, after any period filtering
        mappings: Column mappings of the benchmark file
        entity_id_field: Benchmark column holding the entity id
        total_amount_field: Benchmark column holding the total payout

    Returns:
        DepthAssessment with layers in aggregate, entity, component,
        metric, store order
    """
    sides = _Sides(results, rows, mappings, entity_id_field, total_amount_field)

    ordered = [
        _aggregate_layer(sides),
        _entity_layer(sides),
        _component_layer(sides),
        _metric_layer(sides),
        _store_layer(sides),
    ]
    layers = {layer.layer: layer for layer in ordered}

    quality = DataQuality(
        vl_record_count=len(results),
        file_record_count=len(rows),
        matchable_records=sides.matchable,
        unmatched_vl=len(sides.vl_ids) - sides.matchable,
        unmatched_file=len(sides.file_ids) - sides.matchable,
    )
    risk = false_green_risk(sides)

    return DepthAssessment(
        max_depth=_max_depth(layers),
        layers=ordered,
        recommendations=_recommendations(layers, quality, risk),
        false_green_risk=risk,
        data_quality=quality,
    )
