"""
Tenant-scoped data stores.

DataStore is the persistence seam of the pipeline. Every read takes the
tenant id and filters by it; every write checks the tenant of what it
writes. Result replacement for one (tenant, period, rule set) key happens
inside calculation_scope(), which serializes concurrent runs for that key.

InMemoryDataStore backs tests and local runs; PostgresDataStore (in
postgres_store) is the database implementation.
"""

import threading
from abc import ABC, abstractmethod
from contextlib import AbstractContextManager, contextmanager
from typing import Iterable, Iterator

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
from incentive.observability.logger import get_logger
from incentive.observability.metrics import (
    increment_counter,
    results_deleted_total,
    results_written_total,
)

logger = get_logger(__name__)

LIVE_EXCLUDED_STATES = {LifecycleState.SUPERSEDED, LifecycleState.REJECTED}


def calculation_key(tenant_id: str, period_id: str, rule_set_id: str) -> str:
    """Key of the critical section guarding result replacement."""
    return f"calc:{tenant_id}:{period_id}:{rule_set_id}"


def check_tenant(tenant_id: str, obj, kind: str) -> None:
    """Raise TenantScopeError when obj does not belong to tenant_id."""
    if obj.tenant_id != tenant_id:
        raise TenantScopeError(tenant_id, obj.tenant_id, kind)


class CalculationUnitOfWork(ABC):
    """
    Operations allowed while holding the lock of one calculation key.

    Everything done through a unit of work is committed together when the
    scope exits normally.
    """

    def __init__(self, tenant_id: str, period_id: str, rule_set_id: str):
        self.tenant_id = tenant_id
        self.period_id = period_id
        self.rule_set_id = rule_set_id

    @abstractmethod
    def get_batch(self, batch_id: str) -> CalculationBatch | None:
        """Re-read a batch of this tenant while the key is held."""
        pass

    @abstractmethod
    def find_live_batches(self, exclude_batch_id: str | None = None) -> list[CalculationBatch]:
        """Batches of this key that are neither superseded nor rejected."""
        pass

    @abstractmethod
    def save_batch(self, batch: CalculationBatch) -> None:
        pass

    @abstractmethod
    def record_transition(self, batch: CalculationBatch, entry: LifecycleAuditEntry) -> None:
        """Persist a batch after a lifecycle transition together with its audit entry."""
        pass

    @abstractmethod
    def delete_results(self) -> int:
        """Delete every result of this key; returns the number deleted."""
        pass

    @abstractmethod
    def insert_results(self, results: list[CalculationResult]) -> int:
        pass


class DataStore(ABC):
    """Abstract tenant-scoped persistence for the pipeline."""

    # Periods

    @abstractmethod
    def save_period(self, period: Period) -> Period:
        """Insert a period or return the stored one with the same canonical key."""
        pass

    @abstractmethod
    def get_period(self, tenant_id: str, period_id: str) -> Period | None:
        pass

    @abstractmethod
    def get_period_by_key(self, tenant_id: str, canonical_key: str) -> Period | None:
        pass

    @abstractmethod
    def list_periods(self, tenant_id: str) -> list[Period]:
        """Periods ordered by canonical key."""
        pass

    # Rule sets

    @abstractmethod
    def save_rule_set(self, rule_set: RuleSet) -> None:
        pass

    @abstractmethod
    def get_rule_set(self, tenant_id: str, rule_set_id: str) -> RuleSet | None:
        pass

    @abstractmethod
    def list_rule_sets(self, tenant_id: str, status: str | None = None) -> list[RuleSet]:
        pass

    # Entities

    @abstractmethod
    def save_entities(self, entities: Iterable[Entity]) -> list[Entity]:
        """
        Upsert entities by (tenant_id, external_id).

        An existing entity keeps its id; its other attributes are replaced.

        Returns:
            The stored entities, in input order
        """
        pass

    @abstractmethod
    def list_entities(self, tenant_id: str) -> list[Entity]:
        pass

    @abstractmethod
    def find_entities_by_external_id(
        self, tenant_id: str, external_ids: Iterable[str]
    ) -> dict[str, Entity]:
        pass

    @abstractmethod
    def save_assignment(self, assignment: RuleSetAssignment) -> None:
        pass

    @abstractmethod
    def list_assignments(self, tenant_id: str, rule_set_id: str) -> list[RuleSetAssignment]:
        pass

    # Committed data

    @abstractmethod
    def insert_committed_data(self, rows: Iterable[CommittedDataRow]) -> int:
        pass

    @abstractmethod
    def list_committed_data(self, tenant_id: str, period_id: str) -> list[CommittedDataRow]:
        pass

    # Batches and results

    @abstractmethod
    def get_batch(self, tenant_id: str, batch_id: str) -> CalculationBatch | None:
        pass

    @abstractmethod
    def list_batches(
        self,
        tenant_id: str,
        period_id: str | None = None,
        rule_set_id: str | None = None,
    ) -> list[CalculationBatch]:
        """Batches ordered by creation time."""
        pass

    @abstractmethod
    def list_results(
        self,
        tenant_id: str,
        batch_id: str | None = None,
        period_id: str | None = None,
        rule_set_id: str | None = None,
    ) -> list[CalculationResult]:
        """Results ordered by external id."""
        pass

    @abstractmethod
    def calculation_scope(
        self, tenant_id: str, period_id: str, rule_set_id: str
    ) -> AbstractContextManager[CalculationUnitOfWork]:
        """
        Enter the critical section of one calculation key.

        Yields:
            CalculationUnitOfWork bound to the key
        """
        pass


class _InMemoryUnitOfWork(CalculationUnitOfWork):
    def __init__(self, store: "InMemoryDataStore", tenant_id: str, period_id: str, rule_set_id: str):
        super().__init__(tenant_id, period_id, rule_set_id)
        self.store = store

    def _matches(self, item) -> bool:
        return (
            item.tenant_id == self.tenant_id
            and item.period_id == self.period_id
            and item.rule_set_id == self.rule_set_id
        )

    def get_batch(self, batch_id: str) -> CalculationBatch | None:
        return self.store.get_batch(self.tenant_id, batch_id)

    def find_live_batches(self, exclude_batch_id: str | None = None) -> list[CalculationBatch]:
        with self.store._lock:
            return [
                b.model_copy(deep=True)
                for b in self.store._batches.values()
                if self._matches(b)
                and b.id != exclude_batch_id
                and b.lifecycle_state not in LIVE_EXCLUDED_STATES
            ]

    def save_batch(self, batch: CalculationBatch) -> None:
        check_tenant(self.tenant_id, batch, "CalculationBatch")
        with self.store._lock:
            self.store._batches[batch.id] = batch.model_copy(deep=True)

    def record_transition(self, batch: CalculationBatch, entry: LifecycleAuditEntry) -> None:
        self.save_batch(batch)
        with self.store._lock:
            self.store._audit.append((batch.tenant_id, batch.id, entry.model_copy()))

    def delete_results(self) -> int:
        with self.store._lock:
            doomed = [rid for rid, r in self.store._results.items() if self._matches(r)]
            for rid in doomed:
                del self.store._results[rid]
        increment_counter(results_deleted_total, len(doomed), store="memory")
        return len(doomed)

    def insert_results(self, results: list[CalculationResult]) -> int:
        with self.store._lock:
            taken = {
                (r.entity_id, r.period_id, r.rule_set_id)
                for r in self.store._results.values()
                if r.tenant_id == self.tenant_id
            }
            for result in results:
                check_tenant(self.tenant_id, result, "CalculationResult")
                key = (result.entity_id, result.period_id, result.rule_set_id)
                if key in taken:
                    raise ValueError(
                        f"Duplicate live result for entity {result.entity_id} "
                        f"in period {result.period_id} under rule set {result.rule_set_id}"
                    )
                taken.add(key)
                self.store._results[result.id] = result.model_copy(deep=True)
        increment_counter(results_written_total, len(results), store="memory")
        return len(results)


class InMemoryDataStore(DataStore):
    """
    Dictionary-backed DataStore.

    Thread safe: one re-entrant lock guards the dictionaries and each
    calculation key gets its own lock. Objects are copied in and out so
    callers never share state with the store.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._key_locks: dict[str, threading.Lock] = {}
        self._periods: dict[str, Period] = {}
        self._rule_sets: dict[str, RuleSet] = {}
        self._entities: dict[str, Entity] = {}
        self._assignments: list[RuleSetAssignment] = []
        self._rows: list[CommittedDataRow] = []
        self._batches: dict[str, CalculationBatch] = {}
        self._results: dict[str, CalculationResult] = {}
        self._audit: list[tuple[str, str, LifecycleAuditEntry]] = []

    def save_period(self, period: Period) -> Period:
        with self._lock:
            existing = self.get_period_by_key(period.tenant_id, period.canonical_key)
            if existing:
                return existing
            self._periods[period.id] = period.model_copy()
            return period.model_copy()

    def get_period(self, tenant_id: str, period_id: str) -> Period | None:
        with self._lock:
            period = self._periods.get(period_id)
            if period is None or period.tenant_id != tenant_id:
                return None
            return period.model_copy()

    def get_period_by_key(self, tenant_id: str, canonical_key: str) -> Period | None:
        with self._lock:
            for period in self._periods.values():
                if period.tenant_id == tenant_id and period.canonical_key == canonical_key:
                    return period.model_copy()
        return None

    def list_periods(self, tenant_id: str) -> list[Period]:
        with self._lock:
            periods = [p.model_copy() for p in self._periods.values() if p.tenant_id == tenant_id]
        return sorted(periods, key=lambda p: p.canonical_key)

    def save_rule_set(self, rule_set: RuleSet) -> None:
        with self._lock:
            existing = self._rule_sets.get(rule_set.id)
            if existing is not None:
                check_tenant(existing.tenant_id, rule_set, "RuleSet")
            self._rule_sets[rule_set.id] = rule_set.model_copy(deep=True)

    def get_rule_set(self, tenant_id: str, rule_set_id: str) -> RuleSet | None:
        with self._lock:
            rule_set = self._rule_sets.get(rule_set_id)
            if rule_set is None or rule_set.tenant_id != tenant_id:
                return None
            return rule_set.model_copy(deep=True)

    def list_rule_sets(self, tenant_id: str, status: str | None = None) -> list[RuleSet]:
        with self._lock:
            return [
                rs.model_copy(deep=True)
                for rs in self._rule_sets.values()
                if rs.tenant_id == tenant_id and (status is None or rs.status == status)
            ]

    def save_entities(self, entities: Iterable[Entity]) -> list[Entity]:
        stored = []
        with self._lock:
            for entity in entities:
                existing = self._find_entity(entity.tenant_id, entity.external_id)
                if existing is not None:
                    entity = entity.model_copy(update={"id": existing.id})
                self._entities[entity.id] = entity.model_copy(deep=True)
                stored.append(entity.model_copy(deep=True))
        return stored

    def _find_entity(self, tenant_id: str, external_id: str) -> Entity | None:
        for entity in self._entities.values():
            if entity.tenant_id == tenant_id and entity.external_id == external_id:
                return entity
        return None

    def list_entities(self, tenant_id: str) -> list[Entity]:
        with self._lock:
            entities = [e.model_copy(deep=True) for e in self._entities.values() if e.tenant_id == tenant_id]
        return sorted(entities, key=lambda e: e.external_id)

    def find_entities_by_external_id(
        self, tenant_id: str, external_ids: Iterable[str]
    ) -> dict[str, Entity]:
        wanted = set(external_ids)
        with self._lock:
            return {
                e.external_id: e.model_copy(deep=True)
                for e in self._entities.values()
                if e.tenant_id == tenant_id and e.external_id in wanted
            }

    def save_assignment(self, assignment: RuleSetAssignment) -> None:
        with self._lock:
            if assignment not in self._assignments:
                self._assignments.append(assignment.model_copy())

    def list_assignments(self, tenant_id: str, rule_set_id: str) -> list[RuleSetAssignment]:
        with self._lock:
            return [
                a.model_copy()
                for a in self._assignments
                if a.tenant_id == tenant_id and a.rule_set_id == rule_set_id
            ]

    def insert_committed_data(self, rows: Iterable[CommittedDataRow]) -> int:
        rows = list(rows)
        with self._lock:
            self._rows.extend(rows)
        return len(rows)

    def list_committed_data(self, tenant_id: str, period_id: str) -> list[CommittedDataRow]:
        with self._lock:
            return [r for r in self._rows if r.tenant_id == tenant_id and r.period_id == period_id]

    def get_batch(self, tenant_id: str, batch_id: str) -> CalculationBatch | None:
        with self._lock:
            batch = self._batches.get(batch_id)
            if batch is None or batch.tenant_id != tenant_id:
                return None
            return batch.model_copy(deep=True)

    def list_batches(
        self,
        tenant_id: str,
        period_id: str | None = None,
        rule_set_id: str | None = None,
    ) -> list[CalculationBatch]:
        with self._lock:
            batches = [
                b.model_copy(deep=True)
                for b in self._batches.values()
                if b.tenant_id == tenant_id
                and (period_id is None or b.period_id == period_id)
                and (rule_set_id is None or b.rule_set_id == rule_set_id)
            ]
        return sorted(batches, key=lambda b: b.created_at)

    def audit_entries(self, tenant_id: str, batch_id: str) -> list[LifecycleAuditEntry]:
        """Audit entries written through record_transition, oldest first."""
        with self._lock:
            return [e for t, b, e in self._audit if t == tenant_id and b == batch_id]

    def list_results(
        self,
        tenant_id: str,
        batch_id: str | None = None,
        period_id: str | None = None,
        rule_set_id: str | None = None,
    ) -> list[CalculationResult]:
        with self._lock:
            results = [
                r.model_copy(deep=True)
                for r in self._results.values()
                if r.tenant_id == tenant_id
                and (batch_id is None or r.batch_id == batch_id)
                and (period_id is None or r.period_id == period_id)
                and (rule_set_id is None or r.rule_set_id == rule_set_id)
            ]
        return sorted(results, key=lambda r: (r.external_id or "", r.entity_id))

    @contextmanager
    def calculation_scope(
        self, tenant_id: str, period_id: str, rule_set_id: str
    ) -> Iterator[CalculationUnitOfWork]:
        key = calculation_key(tenant_id, period_id, rule_set_id)
        with self._lock:
            key_lock = self._key_locks.setdefault(key, threading.Lock())

        with key_lock:
            logger.debug("Acquired calculation lock", extra={"lock_key": key})
            yield _InMemoryUnitOfWork(self, tenant_id, period_id, rule_set_id)
