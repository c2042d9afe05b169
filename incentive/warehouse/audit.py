"""
Lifecycle audit log operations.

Every accepted batch transition is written to batch_audit_log in the same
transaction as the batch update, so the log never disagrees with the
batch state.
"""

import json
from typing import Any

import psycopg

from incentive.core.models import LifecycleAuditEntry
from incentive.observability.logger import get_logger
from incentive.warehouse.connection import DatabaseConnectionPool

logger = get_logger(__name__)


def insert_lifecycle_audit(
    conn: psycopg.Connection,
    tenant_id: str,
    batch_id: str,
    entry: LifecycleAuditEntry,
) -> int:
    """
    Insert one audit entry on an open connection.

    The caller owns the transaction; nothing is committed here.

    Args:
        conn: Connection inside the caller's transaction
        tenant_id: Owning tenant
        batch_id: Batch that transitioned
        entry: Accepted transition

    Returns:
        log_id: Generated log ID

    Raises:
        psycopg.DatabaseError: If insert fails
    """
    insert_sql = """
        INSERT INTO batch_audit_log (
            tenant_id,
            batch_id,
            from_state,
            to_state,
            actor,
            details,
            created_at
        ) VALUES (
            %(tenant_id)s,
            %(batch_id)s,
            %(from_state)s,
            %(to_state)s,
            %(actor)s,
            %(details)s,
            %(created_at)s
        ) RETURNING log_id;
    """

    try:
        with conn.cursor() as cur:
            cur.execute(
                insert_sql,
                {
                    "tenant_id": tenant_id,
                    "batch_id": batch_id,
                    "from_state": entry.from_state.value,
                    "to_state": entry.to_state.value,
                    "actor": entry.actor,
                    "details": json.dumps(entry.details, default=str),
                    "created_at": entry.timestamp,
                },
            )
            row = cur.fetchone()
    except psycopg.DatabaseError as e:
        logger.error(f"Failed to insert lifecycle audit entry: {e}")
        raise

    log_id = row["log_id"] if row else None
    logger.debug(
        f"Inserted lifecycle audit entry: log_id={log_id}, batch_id={batch_id}, "
        f"{entry.from_state.value} -> {entry.to_state.value}"
    )
    return log_id


def query_batch_audit(
    pool: DatabaseConnectionPool,
    tenant_id: str,
    batch_id: str,
    limit: int = 100,
) -> list[dict[str, Any]]:
    """
    Audit entries of one batch, oldest first.

    Args:
        pool: Database connection pool
        tenant_id: Owning tenant
        batch_id: Batch to trace
        limit: Maximum number of entries to return

    Raises:
        psycopg.DatabaseError: If query fails
    """
    query_sql = """
        SELECT log_id, batch_id, from_state, to_state, actor, details, created_at
        FROM batch_audit_log
        WHERE tenant_id = %(tenant_id)s AND batch_id = %(batch_id)s
        ORDER BY created_at, log_id
        LIMIT %(limit)s;
    """

    try:
        return pool.execute_query(
            query_sql, {"tenant_id": tenant_id, "batch_id": batch_id, "limit": limit}
        )
    except psycopg.DatabaseError as e:
        logger.error(f"Failed to query batch audit log: {e}")
        raise


def get_audit_summary(pool: DatabaseConnectionPool, tenant_id: str) -> dict[str, Any]:
    """
    Transition counts for a tenant.

    Returns:
        {"total_transitions", "batches_touched", "transitions_by_state"}
    """
    query_sql = """
        SELECT to_state, COUNT(*) AS transitions
        FROM batch_audit_log
        WHERE tenant_id = %(tenant_id)s
        GROUP BY to_state
        ORDER BY transitions DESC;
    """

    try:
        rows = pool.execute_query(query_sql, {"tenant_id": tenant_id})
        touched = pool.execute_query(
            "SELECT COUNT(DISTINCT batch_id) AS batches FROM batch_audit_log "
            "WHERE tenant_id = %(tenant_id)s",
            {"tenant_id": tenant_id},
        )
    except psycopg.DatabaseError as e:
        logger.error(f"Failed to build audit summary: {e}")
        raise

    return {
        "total_transitions": sum(r["transitions"] for r in rows),
        "batches_touched": touched[0]["batches"] if touched else 0,
        "transitions_by_state": {r["to_state"]: r["transitions"] for r in rows},
    }
