"""
Integration tests for PostgresDataStore and the lifecycle audit log

Runs the calculation engine against a PostgreSQL testcontainer.
"""
import threading
from concurrent.futures import ThreadPoolExecutor

import psycopg
import pytest

from incentive.calculation import BatchLifecycle, CalculationEngine
from incentive.core.errors import LifecycleError
from incentive.core.models import (
    CalculationResult,
    CommittedDataRow,
    Entity,
    LifecycleState,
    Period,
    RuleSetAssignment,
    TenantContext,
)
from incentive.warehouse.audit import get_audit_summary, query_batch_audit
from incentive.warehouse.postgres_store import _PostgresUnitOfWork


@pytest.mark.integration
class TestPostgresDataStore:
    """Round trips through the database"""

    def test_period_deduplicated(self, pg_store, january_period):
        """Test a second period with the same key returns the stored one"""
        first = pg_store.save_period(january_period)
        second = pg_store.save_period(Period.for_month("acme", 2024, 1))

        assert second.id == first.id == january_period.id
        assert [p.canonical_key for p in pg_store.list_periods("acme")] == ["2024-01"]

    def test_rule_set_round_trip(self, pg_store, retail_rule_set):
        """Test a plan comes back with its components and configs"""
        pg_store.save_rule_set(retail_rule_set)

        loaded = pg_store.get_rule_set("acme", "retail-2024")

        assert loaded == retail_rule_set
        assert pg_store.get_rule_set("globex", "retail-2024") is None

    def test_entity_upsert(self, pg_store, retail_entities):
        """Test entities are upserted by external id"""
        pg_store.save_entities(retail_entities)
        stored = pg_store.save_entities([
            Entity(tenant_id="acme", external_id="1001", display_name="Ana L.", store_id="12"),
        ])

        assert stored[0].id == "ent-1001"
        entities = pg_store.list_entities("acme")
        assert [e.external_id for e in entities] == ["1001", "1002", "1003"]
        assert entities[0].display_name == "Ana L."
        assert list(pg_store.find_entities_by_external_id("acme", ["1003", "9"])) == ["1003"]

    def test_committed_data_round_trip(self, pg_seeded_store, january_period):
        """Test committed rows keep their payload and links"""
        rows = pg_seeded_store.list_committed_data("acme", january_period.id)

        by_entity = {r.entity_id: r for r in rows}
        assert set(by_entity) == {"ent-1001", "ent-1002"}
        assert by_entity["ent-1001"].row_data["sales_amount"] == 64250
        assert pg_seeded_store.list_committed_data("globex", january_period.id) == []

    def test_assignments(self, pg_seeded_store):
        """Test assignments are stored per rule set"""
        assignment = RuleSetAssignment(tenant_id="acme", rule_set_id="retail-2024", entity_id="ent-1002")
        pg_seeded_store.save_assignment(assignment)
        pg_seeded_store.save_assignment(assignment)

        assert pg_seeded_store.list_assignments("acme", "retail-2024") == [assignment]


@pytest.mark.integration
class TestCalculationOnPostgres:
    """Calculation runs, reruns and lifecycle against the database"""

    def test_run(self, pg_seeded_store, db_pool, tenant_context, january_period):
        """Test results, batch state and the audit log of one run"""
        outcome = CalculationEngine(pg_seeded_store).run(tenant_context, january_period.id, "retail-2024")

        assert outcome.total_payout == 4985.0
        stored = pg_seeded_store.list_results("acme", batch_id=outcome.batch_id)
        assert [(r.external_id, r.total_payout) for r in stored] == [
            ("1001", 1785.0), ("1002", 3200.0), ("1003", 0.0),
        ]
        assert stored[0].component("commission").payout == 1285.0

        batch = pg_seeded_store.get_batch("acme", outcome.batch_id)
        assert batch.lifecycle_state == LifecycleState.PREVIEW
        assert batch.summary["total_payout"] == 4985.0

        audit = query_batch_audit(db_pool, "acme", outcome.batch_id)
        assert [(a["from_state"], a["to_state"]) for a in audit] == [("DRAFT", "PREVIEW")]
        assert audit[0]["actor"] == "analyst@acme"

    def test_rerun_supersedes(self, pg_seeded_store, db_pool, tenant_context, january_period):
        """Test a rerun replaces results and supersedes the earlier batch"""
        engine = CalculationEngine(pg_seeded_store)
        first = engine.run(tenant_context, january_period.id, "retail-2024")
        second = engine.run(tenant_context, january_period.id, "retail-2024")

        results = pg_seeded_store.list_results("acme", period_id=january_period.id)
        assert {r.batch_id for r in results} == {second.batch_id}
        assert len(results) == 3

        old = pg_seeded_store.get_batch("acme", first.batch_id)
        assert old.lifecycle_state == LifecycleState.SUPERSEDED
        assert old.superseded_by == second.batch_id
        supersession = query_batch_audit(db_pool, "acme", first.batch_id)[-1]
        assert supersession["actor"] == "system:recalculation"
        assert supersession["details"]["superseded_by"] == second.batch_id

        summary = get_audit_summary(db_pool, "acme")
        assert summary["total_transitions"] == 3
        assert summary["batches_touched"] == 2
        assert summary["transitions_by_state"] == {"PREVIEW": 2, "SUPERSEDED": 1}

    def test_approved_batch_blocks_rerun(self, pg_seeded_store, tenant_context, january_period):
        """Test a rerun over an approved batch fails and changes nothing"""
        engine = CalculationEngine(pg_seeded_store)
        first = engine.run(tenant_context, january_period.id, "retail-2024")
        lifecycle = BatchLifecycle(pg_seeded_store)
        lifecycle.transition(tenant_context, first.batch_id, "OFFICIAL")
        lifecycle.transition(tenant_context, first.batch_id, "APPROVED")

        with pytest.raises(LifecycleError):
            engine.run(tenant_context, january_period.id, "retail-2024")

        assert len(pg_seeded_store.list_batches("acme")) == 1
        assert {r.batch_id for r in pg_seeded_store.list_results("acme")} == {first.batch_id}

    def test_unique_live_result(self, pg_seeded_store, tenant_context, january_period):
        """Test the database refuses a second live result for an entity"""
        outcome = CalculationEngine(pg_seeded_store).run(tenant_context, january_period.id, "retail-2024")
        duplicate = CalculationResult(
            tenant_id="acme", entity_id="ent-1001", period_id=january_period.id,
            rule_set_id="retail-2024", batch_id=outcome.batch_id,
        )

        with pytest.raises(psycopg.errors.UniqueViolation):
            with pg_seeded_store.calculation_scope("acme", january_period.id, "retail-2024") as uow:
                uow.insert_results([duplicate])

        assert len(pg_seeded_store.list_results("acme")) == 3

    def test_lifecycle_persisted(self, pg_seeded_store, db_pool, tenant_context, january_period):
        """Test transitions update the batch and append to the audit log together"""
        outcome = CalculationEngine(pg_seeded_store).run(tenant_context, january_period.id, "retail-2024")
        lifecycle = BatchLifecycle(pg_seeded_store)

        lifecycle.transition(tenant_context, outcome.batch_id, "OFFICIAL")
        lifecycle.transition(tenant_context, outcome.batch_id, "PENDING_APPROVAL")
        with pytest.raises(LifecycleError, match="submitter cannot approve"):
            lifecycle.transition(tenant_context, outcome.batch_id, "APPROVED")

        batch = pg_seeded_store.get_batch("acme", outcome.batch_id)
        assert batch.lifecycle_state == LifecycleState.PENDING_APPROVAL
        assert batch.submitted_by == "analyst@acme"
        assert len(batch.audit_trail) == 3
        assert len(query_batch_audit(db_pool, "acme", outcome.batch_id)) == 3

    def test_store_level_rows(self, pg_seeded_store, tenant_context, january_period):
        """Test rows without an entity are stored and joined by store"""
        pg_seeded_store.insert_committed_data([
            CommittedDataRow(tenant_id="acme", period_id=january_period.id, data_type="optical_sales",
                             row_data={"store_id": "14", "amount": 5000}),
        ])

        outcome = CalculationEngine(pg_seeded_store).run(tenant_context, january_period.id, "retail-2024")

        marta = outcome.results[2]
        assert marta.metadata["row_count"] == 1

    def test_transition_waits_for_advisory_lock(
        self, monkeypatch, pg_seeded_store, db_pool, tenant_context, january_period
    ):
        """Test an approval racing a rerun waits and is then rejected"""
        engine = CalculationEngine(pg_seeded_store)
        first = engine.run(tenant_context, january_period.id, "retail-2024")
        lifecycle = BatchLifecycle(pg_seeded_store)
        lifecycle.transition(tenant_context, first.batch_id, "OFFICIAL")
        approver = TenantContext(tenant_id="acme", actor="manager@acme")
        outcome = {}

        def approve():
            try:
                lifecycle.transition(approver, first.batch_id, "APPROVED")
                outcome["approval"] = "accepted"
            except LifecycleError as e:
                outcome["approval"] = e

        delete_results = _PostgresUnitOfWork.delete_results

        def delete_while_approving(uow):
            approval = threading.Thread(target=approve)
            approval.start()
            approval.join(timeout=0.5)
            outcome["waited"] = approval.is_alive()
            outcome["thread"] = approval
            return delete_results(uow)

        monkeypatch.setattr(_PostgresUnitOfWork, "delete_results", delete_while_approving)
        second = engine.run(tenant_context, january_period.id, "retail-2024")
        outcome["thread"].join(timeout=10)

        assert outcome["waited"]
        assert isinstance(outcome["approval"], LifecycleError)
        prior = pg_seeded_store.get_batch("acme", first.batch_id)
        assert prior.lifecycle_state == LifecycleState.SUPERSEDED
        assert prior.superseded_by == second.batch_id
        audit = query_batch_audit(db_pool, "acme", first.batch_id)
        assert [(a["from_state"], a["to_state"]) for a in audit] == [
            ("DRAFT", "PREVIEW"), ("PREVIEW", "OFFICIAL"), ("OFFICIAL", "SUPERSEDED"),
        ]

    @pytest.mark.slow
    def test_concurrent_runs(self, pg_seeded_store, january_period):
        """Test concurrent runs for one key leave one live batch"""
        def run(i: int):
            context = TenantContext(tenant_id="acme", actor=f"user{i}@acme")
            return CalculationEngine(pg_seeded_store).run(context, january_period.id, "retail-2024")

        with ThreadPoolExecutor(max_workers=3) as executor:
            list(executor.map(run, range(3)))

        states = [b.lifecycle_state for b in pg_seeded_store.list_batches("acme")]
        assert states.count(LifecycleState.PREVIEW) == 1
        assert states.count(LifecycleState.SUPERSEDED) == 2
        assert len(pg_seeded_store.list_results("acme")) == 3
