"""
End-to-end tests for the incentive pipeline.

Tests the complete flow: workbook upload → classification → commit →
calculation → lifecycle → reconciliation against a benchmark file
"""

import pytest

from incentive import service
from incentive.core.rules import PlanConfigBuilder
from incentive.reconciliation import ReconciliationSettings


@pytest.fixture(params=[
    "memory_store",
    pytest.param("pg_store", marks=pytest.mark.integration),
])
def store(request):
    """Run the pipeline once per data store implementation"""
    return request.getfixturevalue(request.param)


def _expected_commission(transaction_rows, employee_id: int, month: str) -> float:
    sales = sum(
        row["sales_amount"] for row in transaction_rows
        if row["employee_id"] == employee_id and row["date"][5:7] == month
    )
    return round(sales * 0.02, 2)


def _upload(store, roster_rows, transaction_rows) -> dict:
    """Analyze the workbook and execute the proposal unchanged"""
    rows_by_tab = {"Equipo": roster_rows, "Ventas": transaction_rows}
    proposal = service.analyze({
        "tenantId": "acme",
        "files": [
            {"fileName": "ACME_Ventas_Jan2024.xlsx", "sheets": [{"name": "Ventas", "rows": transaction_rows}]},
            {"fileName": "Plantilla.xlsx", "sheets": [{"name": "Equipo", "rows": roster_rows}]},
        ],
    })
    assert proposal["success"]

    return service.execute(
        {
            "tenantId": "acme",
            "proposalId": proposal["proposalId"],
            "contentUnits": [
                {
                    "contentUnitId": unit["content_unit_id"],
                    "confirmedClassification": unit["classification"],
                    "confirmedBindings": unit["field_bindings"],
                    "rawData": rows_by_tab[unit["tab_name"]],
                    "sourceFile": unit["source_file"],
                    "tabName": unit["tab_name"],
                }
                for unit in proposal["contentUnits"]
            ],
        },
        store,
    )


@pytest.mark.e2e
def test_upload_calculate_approve_reconcile(store, roster_rows, transaction_rows):
    """
    Test the complete incentive workflow.

    Scenario:
    1. Upload a roster and a dated sales sheet
    2. Calculate January under a 2% commission plan
    3. Move the batch to OFFICIAL and submit it for approval
    4. Reconcile against a benchmark file with one amber difference
    5. Approve as another user and verify reruns are blocked
    """
    # Step 1: upload
    execution = _upload(store, roster_rows, transaction_rows)

    assert execution["overallSuccess"]
    assert [r["pipeline"] for r in execution["results"]] == ["entity", "transaction"]
    assert [p.canonical_key for p in store.list_periods("acme")] == ["2024-01", "2024-02"]

    detection = service.detect_periods({
        "sheets": [{"sheetName": "Ventas", "rows": transaction_rows, "fieldMappings": {"date": "date"}}],
    })
    assert [p["canonical_key"] for p in detection["periods"]] == ["2024-01", "2024-02"]

    # Step 2: calculate
    store.save_rule_set(
        PlanConfigBuilder("acme", "Commission 2024", rule_set_id="commission-2024")
        .add_percentage("commission", "sales_amount", rate=0.02, name="Commission")
        .build()
    )
    january = store.get_period_by_key("acme", "2024-01")

    calculated = service.run_calculation(
        {"tenantId": "acme", "periodId": january.id, "ruleSetId": "commission-2024", "actor": "analyst@acme"},
        store,
    )

    assert calculated["success"], calculated.get("error")
    assert calculated["entityCount"] == 60
    payouts = {r["externalId"]: r["totalPayout"] for r in calculated["results"]}
    expected = {str(e): _expected_commission(transaction_rows, e, "01") for e in (1001, 1002, 1003)}
    for external_id, amount in expected.items():
        assert payouts[external_id] == pytest.approx(amount)
    assert payouts["1004"] == 0.0
    assert calculated["totalPayout"] == pytest.approx(sum(expected.values()))

    # Step 3: lifecycle
    batch_id = calculated["batchId"]
    for target in ("OFFICIAL", "PENDING_APPROVAL"):
        response = service.transition_batch(
            {"tenantId": "acme", "batchId": batch_id, "targetState": target, "actor": "analyst@acme"}, store
        )
        assert response["success"], response.get("error")

    # Step 4: reconcile
    file_rows = [{"Empleado": external_id, "Pago": amount} for external_id, amount in payouts.items()]
    file_rows[1]["Pago"] = 700
    file_rows.append({"Empleado": "9999", "Pago": 120})

    comparison = service.compare(
        {
            "tenantId": "acme",
            "batchId": batch_id,
            "fileRows": file_rows,
            "mappings": [
                {"sourceColumn": "Empleado", "mappedTo": "entity_id"},
                {"sourceColumn": "Pago", "mappedTo": "total"},
            ],
            "entityIdField": "Empleado",
            "totalAmountField": "Pago",
        },
        store,
        settings=ReconciliationSettings(),
    )

    assert comparison["success"], comparison.get("error")
    summary = comparison["summary"]
    assert (summary["matched"], summary["file_only"], summary["vl_only"]) == (60, 1, 0)
    assert summary["exact_matches"] == 59
    assert summary["amber_flags"] == 1
    findings = comparison["findings"]
    assert [(f["type"], f["entity_id"]) for f in findings] == [("mismatch", "1002"), ("file_only", "9999")]
    assert findings[0]["flag"] == "amber"

    # Step 5: approve, then a rerun must not replace approved results
    self_approval = service.transition_batch(
        {"tenantId": "acme", "batchId": batch_id, "targetState": "APPROVED", "actor": "analyst@acme"}, store
    )
    assert not self_approval["success"]

    approval = service.transition_batch(
        {"tenantId": "acme", "batchId": batch_id, "targetState": "APPROVED", "actor": "manager@acme"}, store
    )
    assert approval["fromState"] == "PENDING_APPROVAL"
    assert approval["toState"] == "APPROVED"

    rerun = service.run_calculation(
        {"tenantId": "acme", "periodId": january.id, "ruleSetId": "commission-2024"}, store
    )

    assert not rerun["success"]
    assert rerun["errorDetail"]["type"] == "lifecycle"
    assert {r.batch_id for r in store.list_results("acme", period_id=january.id)} == {batch_id}


@pytest.mark.e2e
def test_february_rerun_is_independent(store, roster_rows, transaction_rows):
    """Test each period keeps its own batch and reruns only supersede their own key"""
    _upload(store, roster_rows, transaction_rows)
    store.save_rule_set(
        PlanConfigBuilder("acme", "Commission 2024", rule_set_id="commission-2024")
        .add_percentage("commission", "sales_amount", rate=0.02)
        .build()
    )
    january = store.get_period_by_key("acme", "2024-01")
    february = store.get_period_by_key("acme", "2024-02")

    def run(period_id: str) -> dict:
        return service.run_calculation(
            {"tenantId": "acme", "periodId": period_id, "ruleSetId": "commission-2024"}, store
        )

    first_january = run(january.id)
    first_february = run(february.id)
    second_february = run(february.id)

    assert second_february["totalPayout"] == pytest.approx(first_february["totalPayout"])
    assert first_february["results"][0]["totalPayout"] == pytest.approx(
        _expected_commission(transaction_rows, 1001, "02")
    )
    states = {b.id: b.lifecycle_state.value for b in store.list_batches("acme")}
    assert states == {
        first_january["batchId"]: "PREVIEW",
        first_february["batchId"]: "SUPERSEDED",
        second_february["batchId"]: "PREVIEW",
    }
