"""
Plan store contract.

The store persists plan snapshots and owns the system-wide "one active
migration" invariant.  That invariant cannot be a read-then-insert in the
caller, so every implementation provides three atomic primitives:

* :meth:`PlanStore.insert_exclusive`: reserve the migration slot and insert
  a new plan in one step; :class:`ConflictError` if the slot is taken.
* :meth:`PlanStore.transition`: load, mutate and persist one plan under a
  lock scoped to its id.
* :meth:`PlanStore.delete`: reject active plans and delete otherwise, in
  one step.

Slot semantics:
    A plan holds the slot from creation until it reaches a terminal status
    or is deleted.  Entering ``RUNNING``/``ROLLING_BACK`` re-verifies that the
    plan is the holder.  ``has_active_migration()`` reports plans that are
    actually running or rolling back.

The query methods have default implementations over :meth:`find_all`;
backends override the ones they can answer more cheaply.

Tags:
    repository, store, mutual-exclusion, atomic, migration-spine

Doc-Types:
    - API Reference
    - Architecture Decision Record
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Callable
from datetime import datetime

from migration_spine.core.errors import NotFoundError
from migration_spine.domain.enums import PlanStatus, Strategy
from migration_spine.domain.plan import MigrationPlan

type PlanAction = Callable[[MigrationPlan], object]


class PlanStore(ABC):
    """Persistence contract for :class:`MigrationPlan` snapshots.

    Every method returns copies; mutating a returned plan never changes
    stored state without a subsequent :meth:`save` or :meth:`transition`.
    """

    # ------------------------------------------------------------------ #
    # Atomic primitives
    # ------------------------------------------------------------------ #

    @abstractmethod
    def insert_exclusive(self, plan: MigrationPlan) -> MigrationPlan:
        """Reserve the migration slot for *plan* and insert it.

        Raises:
            ConflictError: Another plan holds the slot.
        """

    @abstractmethod
    def transition(self, plan_id: str, action: PlanAction) -> MigrationPlan:
        """Apply ``action(plan)`` and persist the result atomically.

        If *action* raises, nothing is persisted and the exception propagates.

        Raises:
            NotFoundError: Unknown *plan_id*.
            ConflictError: The action made the plan active while another
                plan holds the slot.
        """

    @abstractmethod
    def save(self, plan: MigrationPlan) -> MigrationPlan:
        """Persist a snapshot; releases the slot when *plan* is terminal.

        A plan not yet stored is inserted through the same reservation as
        :meth:`insert_exclusive` unless it is already terminal.
        """

    @abstractmethod
    def delete(self, plan_id: str) -> None:
        """Delete a plan.

        Raises:
            NotFoundError: Unknown *plan_id*.
            ConflictError: The plan is running or rolling back.
        """

    @abstractmethod
    def find_by_id(self, plan_id: str) -> MigrationPlan | None: ...

    @abstractmethod
    def find_all(self) -> list[MigrationPlan]:
        """Every stored plan, oldest first."""

    @abstractmethod
    def slot_holder(self) -> str | None:
        """Id of the plan currently holding the migration slot."""

    # ------------------------------------------------------------------ #
    # Derived queries
    # ------------------------------------------------------------------ #

    def get(self, plan_id: str) -> MigrationPlan:
        plan = self.find_by_id(plan_id)
        if plan is None:
            raise NotFoundError(f"plan '{plan_id}' not found", plan_id=plan_id)
        return plan

    def exists(self, plan_id: str) -> bool:
        return self.find_by_id(plan_id) is not None

    def find_by_status(self, status: PlanStatus) -> list[MigrationPlan]:
        return [p for p in self.find_all() if p.status == status]

    def find_by_strategy(self, strategy: Strategy) -> list[MigrationPlan]:
        return [p for p in self.find_all() if p.strategy == strategy]

    def find_active(self) -> list[MigrationPlan]:
        return [p for p in self.find_all() if p.status.is_active]

    def find_ready_to_execute(self) -> list[MigrationPlan]:
        return self.find_by_status(PlanStatus.PLANNED)

    def find_failed_older_than(self, cutoff: datetime) -> list[MigrationPlan]:
        """Failed plans whose run ended before *cutoff* (retry candidates)."""
        return [
            p
            for p in self.find_by_status(PlanStatus.FAILED)
            if (p.completed_at or p.created_at) < cutoff
        ]

    def find_created_between(self, start: datetime, end: datetime) -> list[MigrationPlan]:
        return [p for p in self.find_all() if start <= p.created_at <= end]

    def find_completed_between(self, start: datetime, end: datetime) -> list[MigrationPlan]:
        return [
            p
            for p in self.find_all()
            if p.completed_at is not None and start <= p.completed_at <= end
        ]

    def find_by_name_containing(self, fragment: str) -> list[MigrationPlan]:
        needle = fragment.lower()
        return [p for p in self.find_all() if needle in p.name.lower()]

    def find_last_completed(self) -> MigrationPlan | None:
        completed = [
            p for p in self.find_by_status(PlanStatus.COMPLETED) if p.completed_at is not None
        ]
        return max(completed, key=lambda p: p.completed_at, default=None)

    def has_active_migration(self) -> bool:
        return bool(self.find_active())

    def count(self) -> int:
        return len(self.find_all())

    def count_by_status(self) -> dict[PlanStatus, int]:
        counts = Counter(p.status for p in self.find_all())
        return {status: counts.get(status, 0) for status in PlanStatus}

    def count_by_strategy(self) -> dict[Strategy, int]:
        counts = Counter(p.strategy for p in self.find_all())
        return {strategy: counts.get(strategy, 0) for strategy in Strategy}

    def status_statistics(self) -> dict[str, object]:
        """Totals used by the stats endpoint."""
        by_status = self.count_by_status()
        return {
            "total_plans": sum(by_status.values()),
            "active_plans": sum(n for s, n in by_status.items() if s.is_active),
            "status_breakdown": {s.value: n for s, n in by_status.items()},
            "strategy_breakdown": {s.value: n for s, n in self.count_by_strategy().items()},
        }
