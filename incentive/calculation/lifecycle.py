"""
Calculation batch lifecycle.

A batch moves DRAFT -> PREVIEW -> (RECONCILE) -> OFFICIAL ->
PENDING_APPROVAL -> APPROVED -> POSTED -> CLOSED -> PAID -> PUBLISHED.
Only the transitions listed in VALID_TRANSITIONS are accepted. A rejected
transition leaves the batch and its audit trail untouched.
"""

from datetime import datetime
from typing import Any

from incentive.core.errors import LifecycleError, NotFoundError
from incentive.core.models import CalculationBatch, LifecycleAuditEntry, LifecycleState, TenantContext
from incentive.observability.logger import get_logger
from incentive.observability.metrics import increment_counter, lifecycle_transitions_total
from incentive.warehouse.store import DataStore

logger = get_logger(__name__)

S = LifecycleState

VALID_TRANSITIONS: dict[LifecycleState, set[LifecycleState]] = {
    S.DRAFT: {S.PREVIEW, S.REJECTED},
    S.PREVIEW: {S.DRAFT, S.RECONCILE, S.OFFICIAL, S.REJECTED},
    S.RECONCILE: {S.PREVIEW, S.OFFICIAL, S.REJECTED},
    S.OFFICIAL: {S.PREVIEW, S.PENDING_APPROVAL, S.APPROVED, S.REJECTED, S.SUPERSEDED},
    S.PENDING_APPROVAL: {S.APPROVED, S.REJECTED},
    S.APPROVED: {S.POSTED},
    S.REJECTED: {S.DRAFT},
    S.POSTED: {S.CLOSED},
    S.CLOSED: {S.PAID},
    S.PAID: {S.PUBLISHED},
    S.SUPERSEDED: set(),
    S.PUBLISHED: set(),
}

# States a recalculation may replace; later states can only be superseded explicitly
REPLACEABLE_STATES = {S.DRAFT, S.PREVIEW, S.RECONCILE, S.OFFICIAL}

TRANSITION_SIDE_EFFECTS: dict[tuple[LifecycleState, LifecycleState], str] = {
    (S.DRAFT, S.PREVIEW): "Results available for review",
    (S.DRAFT, S.REJECTED): "Draft discarded",
    (S.PREVIEW, S.DRAFT): "Results returned to draft for rework",
    (S.PREVIEW, S.RECONCILE): "Results opened for reconciliation against a benchmark",
    (S.PREVIEW, S.OFFICIAL): "Results locked; changes require a superseding batch",
    (S.PREVIEW, S.REJECTED): "Preview rejected",
    (S.RECONCILE, S.PREVIEW): "Reconciliation closed, results back in preview",
    (S.RECONCILE, S.OFFICIAL): "Results locked after reconciliation",
    (S.RECONCILE, S.REJECTED): "Results rejected during reconciliation",
    (S.OFFICIAL, S.PREVIEW): "Results unlocked for review",
    (S.OFFICIAL, S.PENDING_APPROVAL): "Approval request queued",
    (S.OFFICIAL, S.APPROVED): "Approval recorded",
    (S.OFFICIAL, S.REJECTED): "Official results rejected",
    (S.OFFICIAL, S.SUPERSEDED): "Batch superseded; a new batch replaces it",
    (S.PENDING_APPROVAL, S.APPROVED): "Approval recorded; results can be posted",
    (S.PENDING_APPROVAL, S.REJECTED): "Rejection recorded with reason",
    (S.APPROVED, S.POSTED): "Results visible to all roles",
    (S.REJECTED, S.DRAFT): "Rejected batch reopened as draft",
    (S.POSTED, S.CLOSED): "Period locked against further changes",
    (S.CLOSED, S.PAID): "Payment recorded",
    (S.PAID, S.PUBLISHED): "Audit trail sealed; period complete",
}

RECALCULATION_ACTOR = "system:recalculation"
RECALCULATION_SIDE_EFFECT = "Results replaced by a recalculation of the same period and rule set"


def can_transition(from_state: LifecycleState, to_state: LifecycleState) -> bool:
    return to_state in VALID_TRANSITIONS.get(from_state, set())


def get_side_effect(from_state: LifecycleState, to_state: LifecycleState) -> str | None:
    return TRANSITION_SIDE_EFFECTS.get((from_state, to_state))


def _parse_state(value: LifecycleState | str) -> LifecycleState:
    if isinstance(value, LifecycleState):
        return value
    try:
        return LifecycleState(str(value).strip().upper())
    except ValueError:
        raise LifecycleError("?", str(value), f"unknown lifecycle state '{value}'") from None


def _record_rejection(from_state: LifecycleState, to_state: LifecycleState, reason: str) -> LifecycleError:
    increment_counter(
        lifecycle_transitions_total,
        from_state=from_state.value,
        to_state=to_state.value,
        status="rejected",
    )
    logger.warning(
        f"Rejected transition {from_state.value} -> {to_state.value}: {reason}",
        extra={"from_state": from_state.value, "to_state": to_state.value},
    )
    return LifecycleError(from_state.value, to_state.value, reason)


def plan_transition(
    batch: CalculationBatch,
    target_state: LifecycleState | str,
    actor: str | None = None,
    details: dict[str, Any] | None = None,
) -> tuple[CalculationBatch, LifecycleAuditEntry]:
    """
    Validate a transition and build the resulting batch and audit entry.

    Nothing is persisted; the input batch is not modified.

    Args:
        batch: Batch in its current state
        target_state: Requested state
        actor: User performing the transition
        details: Free-form details stored in the audit entry

    Returns:
        (updated batch, audit entry)

    Raises:
        LifecycleError: If the transition is not allowed
    """
    to_state = _parse_state(target_state)
    from_state = batch.lifecycle_state

    if batch.recalculating:
        raise _record_rejection(from_state, to_state, "batch is being recalculated")
    if not can_transition(from_state, to_state):
        raise _record_rejection(from_state, to_state, "transition not allowed")
    if (
        to_state == S.APPROVED
        and from_state == S.PENDING_APPROVAL
        and batch.submitted_by
        and actor == batch.submitted_by
    ):
        raise _record_rejection(from_state, to_state, "submitter cannot approve their own batch")

    now = datetime.utcnow()
    entry = LifecycleAuditEntry(
        from_state=from_state,
        to_state=to_state,
        actor=actor,
        timestamp=now,
        details={**(details or {}), "side_effect": get_side_effect(from_state, to_state)},
    )
    update: dict[str, Any] = {
        "lifecycle_state": to_state,
        "updated_at": now,
        "audit_trail": [*batch.audit_trail, entry],
    }
    if to_state == S.PENDING_APPROVAL:
        update["submitted_by"] = actor
    return batch.model_copy(update=update), entry


def plan_supersession(
    batch: CalculationBatch, superseded_by: str
) -> tuple[CalculationBatch, LifecycleAuditEntry]:
    """
    Build the SUPERSEDED version of a batch replaced by a recalculation.

    Raises:
        LifecycleError: If the batch is past OFFICIAL and may not be replaced
    """
    from_state = batch.lifecycle_state
    if from_state not in REPLACEABLE_STATES:
        raise _record_rejection(
            from_state, S.SUPERSEDED, f"batch {batch.id} is {from_state.value} and cannot be recalculated"
        )
    now = datetime.utcnow()
    entry = LifecycleAuditEntry(
        from_state=from_state,
        to_state=S.SUPERSEDED,
        actor=RECALCULATION_ACTOR,
        timestamp=now,
        details={"superseded_by": superseded_by, "side_effect": RECALCULATION_SIDE_EFFECT},
    )
    updated = batch.model_copy(
        update={
            "lifecycle_state": S.SUPERSEDED,
            "superseded_by": superseded_by,
            "updated_at": now,
            "audit_trail": [*batch.audit_trail, entry],
        }
    )
    return updated, entry


def record_accepted(entry: LifecycleAuditEntry, batch_id: str, context: TenantContext | None = None) -> None:
    increment_counter(
        lifecycle_transitions_total,
        from_state=entry.from_state.value,
        to_state=entry.to_state.value,
        status="accepted",
    )
    logger.info(
        f"Batch {batch_id}: {entry.from_state.value} -> {entry.to_state.value}",
        extra={
            "batch_id": batch_id,
            "actor": entry.actor,
            "side_effect": entry.details.get("side_effect"),
            **(context.log_fields() if context else {}),
        },
    )


class BatchLifecycle:
    """Applies lifecycle transitions to stored batches."""

    def __init__(self, store: DataStore):
        self.store = store

    def transition(
        self,
        context: TenantContext,
        batch_id: str,
        target_state: LifecycleState | str,
        details: dict[str, Any] | None = None,
    ) -> tuple[LifecycleState, CalculationBatch]:
        """
        Move a batch to a new state.

        The transition holds the lock of the batch's calculation key, so it
        waits for a running recalculation and is then checked against the
        batch as the recalculation left it. The batch update and its audit
        entry are persisted together.

        Args:
            context: Tenant scope; context.actor is recorded as the actor
            batch_id: Batch to move
            target_state: Requested state
            details: Free-form audit details (reason, payment reference, ...)

        Returns:
            (previous state, updated batch)

        Raises:
            NotFoundError: If the batch does not exist for this tenant
            LifecycleError: If the transition is rejected
        """
        batch = self.store.get_batch(context.tenant_id, batch_id)
        if batch is None:
            raise NotFoundError("CalculationBatch", batch_id)

        with self.store.calculation_scope(batch.tenant_id, batch.period_id, batch.rule_set_id) as uow:
            current = uow.get_batch(batch_id)
            if current is None:
                raise NotFoundError("CalculationBatch", batch_id)
            updated, entry = plan_transition(current, target_state, context.actor, details)
            uow.record_transition(updated, entry)

        record_accepted(entry, batch.id, context)
        return current.lifecycle_state, updated
