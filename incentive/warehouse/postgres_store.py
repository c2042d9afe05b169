"""
PostgreSQL implementation of the DataStore.

Writes use INSERT ... ON CONFLICT UPDATE so that imports and transitions
can be replayed. Calculation results are the exception: they are plain
inserts after a delete, with the UNIQUE (tenant_id, entity_id, period_id,
rule_set_id) constraint as the backstop against duplicate live results.
Result replacement runs in one transaction under
pg_advisory_xact_lock(hashtext(key)).
"""

import json
from contextlib import contextmanager
from typing import Any, Iterable, Iterator

import psycopg

from incentive.core.errors import TenantScopeError
from incentive.core.models import (
    CalculationBatch,
    CalculationResult,
    CommittedDataRow,
    Entity,
    LifecycleAuditEntry,
    LifecycleState,
    Period,
    RuleSet,
    RuleSetAssignment,
)
from incentive.core.rules.plan_config import parse_rule_set
from incentive.observability.logger import get_logger
from incentive.observability.metrics import (
    increment_counter,
    results_deleted_total,
    results_written_total,
)

from .audit import insert_lifecycle_audit
from .connection import DatabaseConnectionPool
from .store import CalculationUnitOfWork, DataStore, calculation_key, check_tenant

logger = get_logger(__name__)

UPSERT_BATCH_SQL = """
    INSERT INTO calculation_batch (
        id, tenant_id, period_id, rule_set_id, lifecycle_state, entity_count,
        summary, recalculating, submitted_by, superseded_by, audit_trail,
        created_at, updated_at
    )
    VALUES (
        %(id)s, %(tenant_id)s, %(period_id)s, %(rule_set_id)s, %(lifecycle_state)s,
        %(entity_count)s, %(summary)s, %(recalculating)s, %(submitted_by)s,
        %(superseded_by)s, %(audit_trail)s, %(created_at)s, %(updated_at)s
    )
    ON CONFLICT (id) DO UPDATE SET
        lifecycle_state = EXCLUDED.lifecycle_state,
        entity_count = EXCLUDED.entity_count,
        summary = EXCLUDED.summary,
        recalculating = EXCLUDED.recalculating,
        submitted_by = EXCLUDED.submitted_by,
        superseded_by = EXCLUDED.superseded_by,
        audit_trail = EXCLUDED.audit_trail,
        updated_at = EXCLUDED.updated_at
    WHERE calculation_batch.tenant_id = EXCLUDED.tenant_id
"""

INSERT_RESULT_SQL = """
    INSERT INTO calculation_result (
        id, tenant_id, entity_id, period_id, rule_set_id, batch_id, external_id,
        entity_name, store_id, total_payout, components, metrics, metadata
    )
    VALUES (
        %(id)s, %(tenant_id)s, %(entity_id)s, %(period_id)s, %(rule_set_id)s,
        %(batch_id)s, %(external_id)s, %(entity_name)s, %(store_id)s,
        %(total_payout)s, %(components)s, %(metrics)s, %(metadata)s
    )
"""


def _json(value: Any) -> str:
    return json.dumps(value, default=str)


def _batch_params(batch: CalculationBatch) -> dict[str, Any]:
    return {
        "id": batch.id,
        "tenant_id": batch.tenant_id,
        "period_id": batch.period_id,
        "rule_set_id": batch.rule_set_id,
        "lifecycle_state": batch.lifecycle_state.value,
        "entity_count": batch.entity_count,
        "summary": _json(batch.summary),
        "recalculating": batch.recalculating,
        "submitted_by": batch.submitted_by,
        "superseded_by": batch.superseded_by,
        "audit_trail": _json([e.model_dump(mode="json") for e in batch.audit_trail]),
        "created_at": batch.created_at,
        "updated_at": batch.updated_at,
    }


def _result_params(result: CalculationResult) -> dict[str, Any]:
    return {
        "id": result.id,
        "tenant_id": result.tenant_id,
        "entity_id": result.entity_id,
        "period_id": result.period_id,
        "rule_set_id": result.rule_set_id,
        "batch_id": result.batch_id,
        "external_id": result.external_id,
        "entity_name": result.entity_name,
        "store_id": result.store_id,
        "total_payout": result.total_payout,
        "components": _json([c.model_dump(mode="json") for c in result.components]),
        "metrics": _json(result.metrics),
        "metadata": _json(result.metadata),
    }


def _write_batch(conn: psycopg.Connection, batch: CalculationBatch) -> None:
    with conn.cursor() as cur:
        cur.execute(UPSERT_BATCH_SQL, _batch_params(batch))
        if cur.rowcount == 0:
            raise TenantScopeError(batch.tenant_id, "another tenant", "CalculationBatch")


def _period(row: dict[str, Any]) -> Period:
    return Period.model_validate(row)


def _batch(row: dict[str, Any]) -> CalculationBatch:
    return CalculationBatch.model_validate(row)


def _result(row: dict[str, Any]) -> CalculationResult:
    return CalculationResult.model_validate(row)


class _PostgresUnitOfWork(CalculationUnitOfWork):
    """Unit of work bound to one open transaction."""

    def __init__(self, conn: psycopg.Connection, tenant_id: str, period_id: str, rule_set_id: str):
        super().__init__(tenant_id, period_id, rule_set_id)
        self.conn = conn

    @property
    def _key_params(self) -> dict[str, str]:
        return {
            "tenant_id": self.tenant_id,
            "period_id": self.period_id,
            "rule_set_id": self.rule_set_id,
        }

    def get_batch(self, batch_id: str) -> CalculationBatch | None:
        with self.conn.cursor() as cur:
            cur.execute(
                "SELECT * FROM calculation_batch WHERE tenant_id = %s AND id = %s FOR UPDATE",
                (self.tenant_id, batch_id),
            )
            row = cur.fetchone()
        return _batch(row) if row else None

    def find_live_batches(self, exclude_batch_id: str | None = None) -> list[CalculationBatch]:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT * FROM calculation_batch
                WHERE tenant_id = %(tenant_id)s
                  AND period_id = %(period_id)s
                  AND rule_set_id = %(rule_set_id)s
                  AND lifecycle_state NOT IN (%(superseded)s, %(rejected)s)
                  AND id IS DISTINCT FROM %(exclude)s
                ORDER BY created_at
                """,
                {
                    **self._key_params,
                    "superseded": LifecycleState.SUPERSEDED.value,
                    "rejected": LifecycleState.REJECTED.value,
                    "exclude": exclude_batch_id,
                },
            )
            return [_batch(row) for row in cur.fetchall()]

    def save_batch(self, batch: CalculationBatch) -> None:
        check_tenant(self.tenant_id, batch, "CalculationBatch")
        _write_batch(self.conn, batch)

    def record_transition(self, batch: CalculationBatch, entry: LifecycleAuditEntry) -> None:
        self.save_batch(batch)
        insert_lifecycle_audit(self.conn, batch.tenant_id, batch.id, entry)

    def delete_results(self) -> int:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                DELETE FROM calculation_result
                WHERE tenant_id = %(tenant_id)s
                  AND period_id = %(period_id)s
                  AND rule_set_id = %(rule_set_id)s
                """,
                self._key_params,
            )
            deleted = cur.rowcount
        increment_counter(results_deleted_total, deleted, store="postgres")
        return deleted

    def insert_results(self, results: list[CalculationResult]) -> int:
        if not results:
            return 0
        for result in results:
            check_tenant(self.tenant_id, result, "CalculationResult")
        with self.conn.cursor() as cur:
            cur.executemany(INSERT_RESULT_SQL, [_result_params(r) for r in results])
        increment_counter(results_written_total, len(results), store="postgres")
        return len(results)


class PostgresDataStore(DataStore):
    """
    DataStore backed by PostgreSQL through the shared connection pool.

    Every query filters by tenant_id.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Initialize the store.

        Args:
            pool: Open database connection pool
        """
        self.pool = pool

    # Periods

    def save_period(self, period: Period) -> Period:
        self.pool.execute_command(
            """
            INSERT INTO period (id, tenant_id, canonical_key, label, start_date, end_date, status)
            VALUES (%(id)s, %(tenant_id)s, %(canonical_key)s, %(label)s,
                    %(start_date)s, %(end_date)s, %(status)s)
            ON CONFLICT (tenant_id, canonical_key) DO NOTHING
            """,
            period.model_dump(),
        )
        return self.get_period_by_key(period.tenant_id, period.canonical_key)

    def get_period(self, tenant_id: str, period_id: str) -> Period | None:
        rows = self.pool.execute_query(
            "SELECT * FROM period WHERE tenant_id = %s AND id = %s", (tenant_id, period_id)
        )
        return _period(rows[0]) if rows else None

    def get_period_by_key(self, tenant_id: str, canonical_key: str) -> Period | None:
        rows = self.pool.execute_query(
            "SELECT * FROM period WHERE tenant_id = %s AND canonical_key = %s",
            (tenant_id, canonical_key),
        )
        return _period(rows[0]) if rows else None

    def list_periods(self, tenant_id: str) -> list[Period]:
        rows = self.pool.execute_query(
            "SELECT * FROM period WHERE tenant_id = %s ORDER BY canonical_key", (tenant_id,)
        )
        return [_period(row) for row in rows]

    # Rule sets

    def save_rule_set(self, rule_set: RuleSet) -> None:
        updated = self.pool.execute_command(
            """
            INSERT INTO rule_set (id, tenant_id, name, status, version, definition)
            VALUES (%(id)s, %(tenant_id)s, %(name)s, %(status)s, %(version)s, %(definition)s)
            ON CONFLICT (id) DO UPDATE SET
                name = EXCLUDED.name,
                status = EXCLUDED.status,
                version = EXCLUDED.version,
                definition = EXCLUDED.definition
            WHERE rule_set.tenant_id = EXCLUDED.tenant_id
            """,
            {
                "id": rule_set.id,
                "tenant_id": rule_set.tenant_id,
                "name": rule_set.name,
                "status": rule_set.status,
                "version": rule_set.version,
                "definition": _json(rule_set.model_dump(mode="json")),
            },
        )
        if updated == 0:
            raise TenantScopeError(rule_set.tenant_id, "another tenant", "RuleSet")

    def get_rule_set(self, tenant_id: str, rule_set_id: str) -> RuleSet | None:
        rows = self.pool.execute_query(
            "SELECT definition FROM rule_set WHERE tenant_id = %s AND id = %s",
            (tenant_id, rule_set_id),
        )
        return parse_rule_set(rows[0]["definition"]) if rows else None

    def list_rule_sets(self, tenant_id: str, status: str | None = None) -> list[RuleSet]:
        rows = self.pool.execute_query(
            """
            SELECT definition FROM rule_set
            WHERE tenant_id = %(tenant_id)s
              AND (%(status)s::text IS NULL OR status = %(status)s)
            ORDER BY name
            """,
            {"tenant_id": tenant_id, "status": status},
        )
        return [parse_rule_set(row["definition"]) for row in rows]

    # Entities

    def save_entities(self, entities: Iterable[Entity]) -> list[Entity]:
        stored = []
        with self.pool.transaction() as conn:
            with conn.cursor() as cur:
                for entity in entities:
                    cur.execute(
                        """
                        INSERT INTO entity (
                            id, tenant_id, external_id, display_name, role, store_id,
                            status, metadata
                        )
                        VALUES (%(id)s, %(tenant_id)s, %(external_id)s, %(display_name)s,
                                %(role)s, %(store_id)s, %(status)s, %(metadata)s)
                        ON CONFLICT (tenant_id, external_id) DO UPDATE SET
                            display_name = EXCLUDED.display_name,
                            role = EXCLUDED.role,
                            store_id = EXCLUDED.store_id,
                            status = EXCLUDED.status,
                            metadata = EXCLUDED.metadata
                        RETURNING *
                        """,
                        {**entity.model_dump(), "metadata": _json(entity.metadata)},
                    )
                    stored.append(Entity.model_validate(cur.fetchone()))
        logger.debug(f"Upserted {len(stored)} entities")
        return stored

    def list_entities(self, tenant_id: str) -> list[Entity]:
        rows = self.pool.execute_query(
            "SELECT * FROM entity WHERE tenant_id = %s ORDER BY external_id", (tenant_id,)
        )
        return [Entity.model_validate(row) for row in rows]

    def find_entities_by_external_id(
        self, tenant_id: str, external_ids: Iterable[str]
    ) -> dict[str, Entity]:
        ids = list(external_ids)
        if not ids:
            return {}
        rows = self.pool.execute_query(
            "SELECT * FROM entity WHERE tenant_id = %s AND external_id = ANY(%s)",
            (tenant_id, ids),
        )
        return {row["external_id"]: Entity.model_validate(row) for row in rows}

    def save_assignment(self, assignment: RuleSetAssignment) -> None:
        self.pool.execute_command(
            """
            INSERT INTO rule_set_assignment (tenant_id, rule_set_id, entity_id)
            VALUES (%(tenant_id)s, %(rule_set_id)s, %(entity_id)s)
            ON CONFLICT DO NOTHING
            """,
            assignment.model_dump(),
        )

    def list_assignments(self, tenant_id: str, rule_set_id: str) -> list[RuleSetAssignment]:
        rows = self.pool.execute_query(
            "SELECT * FROM rule_set_assignment WHERE tenant_id = %s AND rule_set_id = %s",
            (tenant_id, rule_set_id),
        )
        return [RuleSetAssignment.model_validate(row) for row in rows]

    # Committed data

    def insert_committed_data(self, rows: Iterable[CommittedDataRow]) -> int:
        params = [
            {
                **row.model_dump(),
                "row_data": _json(row.row_data),
                "metadata": _json(row.metadata),
            }
            for row in rows
        ]
        self.pool.execute_batch(
            """
            INSERT INTO committed_data (
                id, tenant_id, entity_id, period_id, data_type, row_data, metadata,
                import_batch_id, created_at
            )
            VALUES (%(id)s, %(tenant_id)s, %(entity_id)s, %(period_id)s, %(data_type)s,
                    %(row_data)s, %(metadata)s, %(import_batch_id)s, %(created_at)s)
            ON CONFLICT (id) DO NOTHING
            """,
            params,
        )
        return len(params)

    def list_committed_data(self, tenant_id: str, period_id: str) -> list[CommittedDataRow]:
        rows = self.pool.execute_query(
            "SELECT * FROM committed_data WHERE tenant_id = %s AND period_id = %s ORDER BY created_at, id",
            (tenant_id, period_id),
        )
        return [CommittedDataRow.model_validate(row) for row in rows]

    # Batches and results

    def get_batch(self, tenant_id: str, batch_id: str) -> CalculationBatch | None:
        rows = self.pool.execute_query(
            "SELECT * FROM calculation_batch WHERE tenant_id = %s AND id = %s",
            (tenant_id, batch_id),
        )
        return _batch(rows[0]) if rows else None

    def list_batches(
        self,
        tenant_id: str,
        period_id: str | None = None,
        rule_set_id: str | None = None,
    ) -> list[CalculationBatch]:
        rows = self.pool.execute_query(
            """
            SELECT * FROM calculation_batch
            WHERE tenant_id = %(tenant_id)s
              AND (%(period_id)s::text IS NULL OR period_id = %(period_id)s)
              AND (%(rule_set_id)s::text IS NULL OR rule_set_id = %(rule_set_id)s)
            ORDER BY created_at
            """,
            {"tenant_id": tenant_id, "period_id": period_id, "rule_set_id": rule_set_id},
        )
        return [_batch(row) for row in rows]

    def list_results(
        self,
        tenant_id: str,
        batch_id: str | None = None,
        period_id: str | None = None,
        rule_set_id: str | None = None,
    ) -> list[CalculationResult]:
        rows = self.pool.execute_query(
            """
            SELECT * FROM calculation_result
            WHERE tenant_id = %(tenant_id)s
              AND (%(batch_id)s::text IS NULL OR batch_id = %(batch_id)s)
              AND (%(period_id)s::text IS NULL OR period_id = %(period_id)s)
              AND (%(rule_set_id)s::text IS NULL OR rule_set_id = %(rule_set_id)s)
            ORDER BY external_id, entity_id
            """,
            {
                "tenant_id": tenant_id,
                "batch_id": batch_id,
                "period_id": period_id,
                "rule_set_id": rule_set_id,
            },
        )
        return [_result(row) for row in rows]

    @contextmanager
    def calculation_scope(
        self, tenant_id: str, period_id: str, rule_set_id: str
    ) -> Iterator[CalculationUnitOfWork]:
        key = calculation_key(tenant_id, period_id, rule_set_id)
        with self.pool.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (key,))
            logger.debug("Acquired advisory lock", extra={"lock_key": key})
            yield _PostgresUnitOfWork(conn, tenant_id, period_id, rule_set_id)
