"""
Unit tests for classification proposals and their execution.
"""

import pytest

from incentive.core.classification import analyze, execute, normalize_data_type
from incentive.core.classification.proposal import (
    filter_partial_unit,
    resolve_data_type,
)
from incentive.core.errors import TenantScopeError
from incentive.core.models import (
    ContentUnitExecution,
    ExecutionRequest,
    SemanticBinding,
    UploadedFile,
    UploadedSheet,
)


def _execution(proposal, store, context, raw_rows: dict[str, list[dict]]):
    """Confirm every proposed unit as proposed and execute it"""
    units = [
        ContentUnitExecution(
            content_unit_id=unit.content_unit_id,
            confirmed_classification=unit.classification,
            confirmed_bindings=unit.field_bindings,
            raw_data=raw_rows[unit.tab_name],
            owned_fields=unit.owned_fields if unit.claim_type == "PARTIAL" else None,
            shared_fields=unit.shared_fields if unit.claim_type == "PARTIAL" else None,
            source_file=unit.source_file,
            tab_name=unit.tab_name,
        )
        for unit in proposal.content_units
    ]
    request = ExecutionRequest(
        proposal_id=proposal.proposal_id, tenant_id=context.tenant_id, content_units=units
    )
    return execute(context, request, store)


class TestNormalizeDataType:
    """Tests for normalize_data_type and resolve_data_type"""

    @pytest.mark.parametrize("file_name,expected", [
        ("ACME_Ventas_Jan2024.xlsx", "ventas"),
        ("Datos_Cobranza_Q1_2024.csv", "datos_cobranza"),
        ("metas_2024-03.xlsx", "metas"),
        ("Roster.xlsx", "roster"),
    ])
    def test_normalize(self, file_name, expected):
        """Test prefixes, period suffixes and separators are stripped"""
        assert normalize_data_type(file_name) == expected

    def test_target_tabs_keep_tab_name(self):
        """Test target data is qualified by its tab unless the tab is generic"""
        assert resolve_data_type("Metas.xlsx", "Optica", include_tab=True) == "metas__optica"
        assert resolve_data_type("Metas.xlsx", "Sheet1", include_tab=True) == "metas"
        assert resolve_data_type("Metas.xlsx", "Optica", include_tab=False) == "metas"

    def test_short_names_fall_back_to_tab(self):
        """Test a file name with nothing left uses the tab name"""
        assert resolve_data_type("2024.xlsx", "Ventas Tienda", include_tab=False) == "ventas_tienda"


class TestAnalyze:
    """Tests for analyze"""

    def test_workbook_proposal(self, tenant_context, roster_rows, transaction_rows, plan_rows):
        """Test every tab is classified and ordered plan, entity, target, transaction"""
        files = [
            UploadedFile(
                file_name="ACME_Ventas_Jan2024.xlsx",
                sheets=[UploadedSheet(name="Ventas", rows=transaction_rows)],
            ),
            UploadedFile(
                file_name="Plantilla.xlsx",
                sheets=[
                    UploadedSheet(name="Equipo", rows=roster_rows),
                    UploadedSheet(name="Reglas", rows=plan_rows),
                ],
            ),
        ]

        proposal = analyze(tenant_context, files)

        assert proposal.tenant_id == "acme"
        assert proposal.source_files == ["ACME_Ventas_Jan2024.xlsx", "Plantilla.xlsx"]
        by_tab = {u.tab_name: u for u in proposal.content_units}
        assert by_tab["Ventas"].classification == "transaction"
        assert by_tab["Ventas"].action == "import_transactions"
        assert by_tab["Equipo"].classification == "entity"
        assert by_tab["Reglas"].classification == "plan"
        assert proposal.processing_order == [
            "Plantilla.xlsx::Reglas::1",
            "Plantilla.xlsx::Equipo::0",
            "ACME_Ventas_Jan2024.xlsx::Ventas::0",
        ]
        assert proposal.overall_confidence == pytest.approx((0.90 + 0.95 + 1.0) / 3, abs=1e-4)
        assert not proposal.requires_human_review
        assert all(u.warnings == [] for u in proposal.content_units)

    def test_split_tab_yields_two_units(self, tenant_context, team_goal_rows):
        """Test a mixed tab is proposed as two linked PARTIAL units"""
        files = [UploadedFile(file_name="metas.xlsx", sheets=[UploadedSheet(name="Equipo", rows=team_goal_rows)])]

        proposal = analyze(tenant_context, files)

        target, entity = proposal.content_units
        assert (target.claim_type, entity.claim_type) == ("PARTIAL", "PARTIAL")
        assert target.partner_content_unit_id == entity.content_unit_id
        assert proposal.processing_order == [entity.content_unit_id, target.content_unit_id]
        assert "Low confidence: manual classification review recommended" in target.warnings

    def test_empty_tab_warning(self, tenant_context):
        """Test an empty tab is still proposed, with a warning"""
        files = [UploadedFile(file_name="f.xlsx", sheets=[UploadedSheet(name="Vacia", rows=[])])]

        proposal = analyze(tenant_context, files)

        assert "Tab has no data rows" in proposal.content_units[0].warnings
        assert proposal.requires_human_review

    def test_no_files(self, tenant_context):
        """Test an empty upload yields an empty proposal"""
        proposal = analyze(tenant_context, [])

        assert proposal.content_units == []
        assert proposal.overall_confidence == 0.0


class TestFilterPartialUnit:
    """Tests for filter_partial_unit"""

    def test_keeps_owned_shared_and_bookkeeping_keys(self):
        """Test rows and bindings are restricted to the unit's fields"""
        unit = ContentUnitExecution(
            content_unit_id="f::t::0",
            confirmed_classification="target",
            confirmed_bindings=[
                SemanticBinding(source_field="employee_id", semantic_role="entity_identifier",
                                confidence=0.9, claimed_by="target"),
                SemanticBinding(source_field="name", semantic_role="entity_name",
                                confidence=0.9, claimed_by="entity"),
            ],
            raw_data=[{"employee_id": 1, "name": "A", "sales_goal": 10, "_rowIndex": 0}],
            owned_fields=["sales_goal"],
            shared_fields=["employee_id"],
        )

        filtered = filter_partial_unit(unit)

        assert filtered.raw_data == [{"employee_id": 1, "sales_goal": 10, "_rowIndex": 0}]
        assert [b.source_field for b in filtered.confirmed_bindings] == ["employee_id"]
        assert unit.raw_data[0]["name"] == "A"

    def test_full_unit_unchanged(self):
        """Test a unit without field lists passes through"""
        unit = ContentUnitExecution(
            content_unit_id="f::t::0", confirmed_classification="plan", raw_data=[{"a": 1}]
        )

        assert filter_partial_unit(unit) is unit


class TestExecute:
    """Tests for execute"""

    def test_roster_then_transactions(self, tenant_context, memory_store, roster_rows, transaction_rows):
        """Test entities are created first and transactions resolve entities and periods"""
        files = [
            UploadedFile(file_name="ACME_Ventas_Jan2024.xlsx",
                         sheets=[UploadedSheet(name="Ventas", rows=transaction_rows)]),
            UploadedFile(file_name="Plantilla.xlsx", sheets=[UploadedSheet(name="Equipo", rows=roster_rows)]),
        ]
        proposal = analyze(tenant_context, files)

        result = _execution(
            proposal, memory_store, tenant_context,
            {"Ventas": transaction_rows, "Equipo": roster_rows},
        )

        assert result.overall_success
        assert [r.pipeline for r in result.results] == ["entity", "transaction"]
        assert result.results[1].rows_processed == 600

        entities = memory_store.list_entities("acme")
        assert len(entities) == 60
        first = entities[0]
        assert first.external_id == "1001"
        assert first.display_name == "Employee 00"
        assert first.role == "Sales Rep"
        assert first.metadata == {"product_licenses": "optical"}

        assert [p.canonical_key for p in memory_store.list_periods("acme")] == ["2024-01", "2024-02"]
        january = memory_store.get_period_by_key("acme", "2024-01")
        rows = memory_store.list_committed_data("acme", january.id)
        assert len(rows) == 300
        assert {r.data_type for r in rows} == {"ventas"}
        assert all(r.entity_id is not None for r in rows)
        assert rows[0].row_data["_sheetName"] == "Ventas"
        assert rows[0].metadata["proposal_id"] == proposal.proposal_id
        assert len({r.import_batch_id for r in rows}) == 1

    def test_split_units_execute_both_halves(self, tenant_context, memory_store, team_goal_rows):
        """Test the entity half creates entities and the target half keeps only goal columns"""
        rows = team_goal_rows
        files = [UploadedFile(file_name="metas.xlsx", sheets=[UploadedSheet(name="Equipo", rows=rows)])]
        proposal = analyze(tenant_context, files)

        result = _execution(proposal, memory_store, tenant_context, {"Equipo": rows})

        assert result.overall_success
        assert [r.classification for r in result.results] == ["entity", "target"]
        assert len(memory_store.list_entities("acme")) == 10

        committed = memory_store.list_committed_data("acme", None)
        assert len(committed) == 10
        assert committed[0].data_type == "metas__equipo"
        assert set(committed[0].row_data) == {
            "employee_id", "sales_goal", "new_customers_goal", "_sheetName", "_rowIndex",
        }
        assert committed[0].metadata["semantic_roles"]["sales_goal"]["role"] == "performance_target"
        assert all(r.entity_id for r in committed)

    def test_plan_units_are_deferred(self, tenant_context, memory_store):
        """Test plan units are recorded without committing rows"""
        request = ExecutionRequest(
            proposal_id="p1",
            tenant_id="acme",
            content_units=[
                ContentUnitExecution(content_unit_id="plan.xlsx::Reglas::0",
                                     confirmed_classification="plan", raw_data=[{"a": 1}]),
            ],
        )

        result = execute(tenant_context, request, memory_store)

        assert result.results[0].pipeline == "plan-deferred"
        assert result.results[0].rows_processed == 0

    def test_missing_identifier_binding_fails_unit_only(self, tenant_context, memory_store, target_rows):
        """Test a roster without identifier binding fails while other units proceed"""
        request = ExecutionRequest(
            proposal_id="p1",
            tenant_id="acme",
            content_units=[
                ContentUnitExecution(content_unit_id="t.xlsx::Metas::0", confirmed_classification="target",
                                     raw_data=target_rows),
                ContentUnitExecution(content_unit_id="r.xlsx::Equipo::0", confirmed_classification="entity",
                                     raw_data=[{"name": "A"}]),
            ],
        )

        result = execute(tenant_context, request, memory_store)

        assert not result.overall_success
        entity_result, target_result = result.results
        assert entity_result.error == "No entity_identifier binding found"
        assert target_result.success
        assert target_result.rows_processed == 3

    def test_other_tenant_rejected(self, tenant_context, memory_store):
        """Test a request for another tenant is refused"""
        request = ExecutionRequest(proposal_id="p1", tenant_id="globex", content_units=[])

        with pytest.raises(TenantScopeError):
            execute(tenant_context, request, memory_store)
