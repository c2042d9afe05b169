"""
Unit tests for ReconciliationEngine and period filtering.
"""

import pytest

from incentive.reconciliation import (
    ReconciliationEngine,
    ReconciliationSettings,
    compare,
    filter_rows_by_period,
)


@pytest.fixture
def engine() -> ReconciliationEngine:
    return ReconciliationEngine(ReconciliationSettings())


class TestFilterRowsByPeriod:
    """Tests for filter_rows_by_period"""

    ROWS = [
        {"Employee": "1", "Mes": "2024-01"},
        {"Employee": "2", "Mes": "2024-02"},
        {"Employee": "3", "Mes": "n/a", "Fecha": "2024-01-15"},
        {"Employee": "4", "Mes": None},
    ]

    def test_keeps_target_periods(self):
        """Test a full period value in any period column decides a row's period"""
        kept, filtered_out = filter_rows_by_period(self.ROWS, ["Mes", "Fecha"], ["2024-01"])

        assert [r["Employee"] for r in kept] == ["1", "3"]
        assert filtered_out == 2

    def test_targets_in_other_formats(self):
        """Test target periods are parsed like cell values"""
        kept, _ = filter_rows_by_period(self.ROWS, ["Mes"], ["February 2024"])

        assert [r["Employee"] for r in kept] == ["2"]

    @pytest.mark.parametrize("target,expected", [
        ("2024-01", ["1"]),
        ("2024-03", ["3"]),
        ("2023-01", []),
    ])
    def test_year_and_month_columns_combined(self, target, expected):
        """Test a year column and a month column are read together"""
        rows = [{"Employee": str(m), "Year": 2024, "Month": m} for m in (1, 2, 3)]

        kept, filtered_out = filter_rows_by_period(rows, ["Year", "Month"], [target])

        assert [r["Employee"] for r in kept] == expected
        assert filtered_out == 3 - len(expected)

    def test_month_name_before_year_column(self):
        """Test column order does not matter and month names are understood"""
        rows = [
            {"Employee": "1", "Mes": "marzo", "Anio": "2024"},
            {"Employee": "2", "Mes": "abril", "Anio": "2024"},
        ]

        kept, _ = filter_rows_by_period(rows, ["Mes", "Anio"], ["2024-03"])

        assert [r["Employee"] for r in kept] == ["1"]

    @pytest.mark.parametrize("columns,targets", [
        (None, ["2024-01"]),
        ([], ["2024-01"]),
        (["Mes"], None),
        (["Mes"], ["not a period"]),
    ])
    def test_filter_needs_columns_and_targets(self, columns, targets):
        """Test rows pass through unless both columns and targets are given"""
        kept, filtered_out = filter_rows_by_period(self.ROWS, columns, targets)

        assert kept == self.ROWS
        assert filtered_out == 0


class TestReconciliationEngine:
    """Tests for ReconciliationEngine.compare"""

    def test_full_comparison(self, engine, tenant_context, calculated_results, benchmark_rows, benchmark_mappings):
        """Test summary, findings, layers and depth of one comparison"""
        result = engine.compare(
            tenant_context, calculated_results, benchmark_rows, benchmark_mappings, "Employee", "Total"
        )

        assert result.summary.matched == 3
        assert result.false_green_count == 1
        assert [f.type for f in result.findings] == ["false_green", "mismatch", "file_only", "vl_only"]
        assert result.compared_layers == ["aggregate", "entity", "component", "store"]
        assert result.depth_achieved == "component"
        assert result.depth.false_green_risk == "low"
        assert result.rows_filtered_out == 0

    def test_aggregate(self, engine, tenant_context, calculated_results, benchmark_rows, benchmark_mappings):
        """Test totals are compared across all rows and results"""
        result = engine.compare(
            tenant_context, calculated_results, benchmark_rows, benchmark_mappings, "Employee", "Total"
        )

        aggregate = result.aggregate
        assert (aggregate.file_total, aggregate.vl_total, aggregate.delta) == (6050, 6100, -50)
        assert aggregate.flag == "tolerance"
        assert (aggregate.entity_count_file, aggregate.entity_count_vl) == (4, 4)

    def test_store_comparisons(self, engine, tenant_context, calculated_results, benchmark_rows, benchmark_mappings):
        """Test entities are grouped by calculated store, largest delta first"""
        result = engine.compare(
            tenant_context, calculated_results, benchmark_rows, benchmark_mappings, "Employee", "Total"
        )

        store_14, store_12 = result.store_comparisons
        assert store_14.store_id == "14"
        assert (store_14.file_total, store_14.vl_total, store_14.delta) == (1000, 1400, -400)
        assert store_14.flag == "red"
        assert (store_14.entity_count, store_14.file_entity_count, store_14.vl_entity_count) == (2, 1, 2)
        assert store_12.store_id == "12"
        assert store_12.delta == 100
        assert store_12.flag == "tolerance"

    def test_period_filter(self, engine, tenant_context, calculated_results):
        """Test rows outside the target periods are left out of every layer"""
        rows = [
            {"Employee": "1001", "Total": 1500, "Mes": "2024-01"},
            {"Employee": "1001", "Total": 1400, "Mes": "2023-12"},
        ]

        result = engine.compare(
            tenant_context, calculated_results[:1], rows, [], "Employee", "Total",
            period_columns=["Mes"], target_periods=["2024-01"],
        )

        assert result.rows_filtered_out == 1
        assert result.aggregate.file_total == 1500
        assert result.summary.exact_matches == 1
        assert result.findings == []

    def test_monthly_rows_folded(self, engine, tenant_context, calculated_results):
        """Test several rows of one entity compare as one total"""
        rows = [
            {"Employee": "1001", "Total": 700},
            {"Employee": "1001", "Total": 800},
        ]

        result = engine.compare(tenant_context, calculated_results[:1], rows, [], "Employee", "Total")

        assert result.entities[0].file_total == 1500
        assert result.entities[0].total_flag == "exact"

    def test_no_matches(self, engine, tenant_context, calculated_results):
        """Test only layers actually compared are reported"""
        result = engine.compare(
            tenant_context, calculated_results, [{"Employee": "9", "Total": 5}], [], "Employee", "Total"
        )

        assert "entity" not in result.compared_layers
        assert "component" not in result.compared_layers
        assert result.compared_layers[0] == "aggregate"

    def test_results_untouched(self, engine, tenant_context, calculated_results, benchmark_rows, benchmark_mappings):
        """Test reconciliation never modifies the calculated results"""
        before = [r.model_dump() for r in calculated_results]

        engine.compare(tenant_context, calculated_results, benchmark_rows, benchmark_mappings, "Employee", "Total")

        assert [r.model_dump() for r in calculated_results] == before

    def test_custom_thresholds(self, tenant_context, calculated_results):
        """Test the engine applies its settings to every flag"""
        rows = [{"Employee": "1001", "Total": 1600}]
        strict = ReconciliationEngine(ReconciliationSettings(tolerance=0.01, amber=0.05))

        entity = strict.compare(tenant_context, calculated_results[:1], rows, [], "Employee", "Total").entities[0]

        assert entity.total_flag == "red"

    def test_to_response(self, engine, tenant_context, calculated_results, benchmark_rows, benchmark_mappings):
        """Test the response shape uses camelCase top-level keys"""
        response = engine.compare(
            tenant_context, calculated_results, benchmark_rows, benchmark_mappings, "Employee", "Total"
        ).to_response()

        assert set(response) == {
            "summary", "findings", "falseGreenCount", "depthAchieved", "comparedLayers",
            "aggregate", "storeComparisons", "depth", "rowsFilteredOut",
        }
        assert response["findings"][0]["component_flags"][0]["component_id"] == "sales-bonus"
        assert response["depth"]["max_depth"] == "component"

    def test_module_compare(self, tenant_context, calculated_results, benchmark_rows, benchmark_mappings):
        """Test the one-off compare helper"""
        result = compare(
            tenant_context, calculated_results, benchmark_rows, benchmark_mappings, "Employee", "Total",
            settings=ReconciliationSettings(),
        )

        assert result.false_green_count == 1
