"""In-memory plan store.

Id-keyed map of copy-on-write snapshots.  A store-wide lock guards the map
and the migration slot. Transitions and saves of one plan are serialised by a
per-plan lock, so a step save never lands in the middle of a transition and a
slow action on one plan never blocks reads of another.
"""

from __future__ import annotations

import threading
from collections import defaultdict

from migration_spine.core.errors import ConflictError, NotFoundError
from migration_spine.core.logging import get_logger
from migration_spine.domain.plan import MigrationPlan
from migration_spine.store.base import PlanAction, PlanStore

logger = get_logger(__name__)


class InMemoryPlanStore(PlanStore):
    """Process-local :class:`PlanStore` for tests, the CLI and single-node API use."""

    def __init__(self) -> None:
        self._plans: dict[str, MigrationPlan] = {}
        self._slot: str | None = None
        self._lock = threading.RLock()
        self._plan_locks: defaultdict[str, threading.Lock] = defaultdict(threading.Lock)

    # -- slot --------------------------------------------------------------

    def slot_holder(self) -> str | None:
        with self._lock:
            return self._slot

    def _reserve(self, plan: MigrationPlan) -> None:
        if self._slot is not None and self._slot != plan.id:
            raise ConflictError(
                f"cannot reserve migration slot for '{plan.name}': "
                f"plan {self._slot} is still open"
            ).with_context(plan_id=plan.id, plan_name=plan.name, holder=self._slot)
        self._slot = plan.id

    def _sync_slot(self, plan: MigrationPlan) -> None:
        if plan.status.is_terminal:
            if self._slot == plan.id:
                self._slot = None
                logger.debug("store.slot_released", plan_id=plan.id)
        elif plan.status.is_active:
            self._reserve(plan)

    # -- primitives --------------------------------------------------------

    def insert_exclusive(self, plan: MigrationPlan) -> MigrationPlan:
        with self._lock:
            if plan.id in self._plans:
                raise ConflictError(f"plan '{plan.id}' already exists").with_context(
                    plan_id=plan.id
                )
            self._reserve(plan)
            self._plans[plan.id] = plan.copy()
            logger.debug("store.slot_reserved", plan_id=plan.id)
            return plan.copy()

    def _plan_lock(self, plan_id: str) -> threading.Lock:
        with self._lock:
            return self._plan_locks[plan_id]

    def transition(self, plan_id: str, action: PlanAction) -> MigrationPlan:
        with self._plan_lock(plan_id):
            with self._lock:
                current = self._plans.get(plan_id)
                if current is None:
                    raise NotFoundError(f"plan '{plan_id}' not found", plan_id=plan_id)
                working = current.copy()
            action(working)
            with self._lock:
                if plan_id not in self._plans:
                    raise NotFoundError(f"plan '{plan_id}' was deleted", plan_id=plan_id)
                self._sync_slot(working)
                self._plans[plan_id] = working.copy()
            return working

    def save(self, plan: MigrationPlan) -> MigrationPlan:
        with self._plan_lock(plan.id), self._lock:
            if plan.id not in self._plans and not plan.status.is_terminal:
                self._reserve(plan)
            else:
                self._sync_slot(plan)
            self._plans[plan.id] = plan.copy()
            return plan.copy()

    def delete(self, plan_id: str) -> None:
        with self._plan_lock(plan_id), self._lock:
            plan = self._plans.get(plan_id)
            if plan is None:
                raise NotFoundError(f"plan '{plan_id}' not found", plan_id=plan_id)
            if plan.is_active:
                raise ConflictError(
                    f"cannot delete plan '{plan.name}' while it is {plan.status.value}"
                ).with_context(plan_id=plan_id, plan_name=plan.name)
            del self._plans[plan_id]
            self._plan_locks.pop(plan_id, None)
            if self._slot == plan_id:
                self._slot = None

    # -- reads -------------------------------------------------------------

    def find_by_id(self, plan_id: str) -> MigrationPlan | None:
        with self._lock:
            plan = self._plans.get(plan_id)
            return plan.copy() if plan is not None else None

    def find_all(self) -> list[MigrationPlan]:
        with self._lock:
            plans = [p.copy() for p in self._plans.values()]
        return sorted(plans, key=lambda p: (p.created_at, p.id))

    def clear(self) -> None:
        """Drop every plan and release the slot."""
        with self._lock:
            self._plans.clear()
            self._plan_locks.clear()
            self._slot = None
