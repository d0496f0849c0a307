"""SQLAlchemy-backed plan store.

Tables
------
* ``migration_plans``: one row per plan.  Lifecycle columns are stored
  natively so status queries run in SQL; the step definitions, step runs
  and lifecycle events live in the ``payload`` JSON column.
* ``migration_slot``: a single row whose ``plan_id`` names the plan holding
  the system-wide migration slot.  It is claimed with a compare-and-swap
  ``UPDATE ... WHERE plan_id IS NULL`` inside the inserting transaction, so
  the one-open-plan invariant holds across processes sharing the database.

Tags:
    store, sqlalchemy, orm, mutual-exclusion, migration-spine

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

import datetime
import re
import threading
from collections import defaultdict
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, Text, delete, event, func, or_, select, update
from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from migration_spine.core.errors import ConflictError, MigrationError, NotFoundError, StoreError
from migration_spine.core.logging import get_logger
from migration_spine.core.timestamps import ensure_utc, utc_now
from migration_spine.domain.enums import ACTIVE_STATUSES, PlanStatus, Strategy
from migration_spine.domain.events import PlanEvent
from migration_spine.domain.plan import MigrationPlan, StepRun
from migration_spine.domain.steps import step_from_dict
from migration_spine.store.base import PlanAction, PlanStore

logger = get_logger(__name__)

_SLOT_ROW = 1

# LIKE wildcards and the escape character itself.
_LIKE_SPECIALS = re.compile(r"[\\%_]")


class StoreBase(DeclarativeBase):
    type_annotation_map = {
        str: Text,
        int: Integer,
        bool: Integer,  # SQLite compat: 0/1
        datetime.datetime: DateTime(timezone=True),
        dict: JSON,
    }


class PlanTable(StoreBase):
    __tablename__ = "migration_plans"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    strategy: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    created_at: Mapped[datetime.datetime] = mapped_column(nullable=False)
    started_at: Mapped[datetime.datetime | None]
    completed_at: Mapped[datetime.datetime | None]
    failure_reason: Mapped[str | None]
    dry_run: Mapped[bool] = mapped_column(default=False, nullable=False)
    continue_on_errors: Mapped[bool] = mapped_column(default=False, nullable=False)
    payload: Mapped[dict] = mapped_column(nullable=False)


class SlotTable(StoreBase):
    __tablename__ = "migration_slot"

    id: Mapped[int] = mapped_column(primary_key=True)
    plan_id: Mapped[str | None]
    reserved_at: Mapped[datetime.datetime | None]


def create_store_engine(url: str = "sqlite:///migration_spine.db", *, echo: bool = False) -> Engine:
    """Create an engine with SQLite tweaks (WAL, shared in-memory pool)."""
    if not url.startswith("sqlite"):
        return _sa_create_engine(url, echo=echo)

    kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    engine = _sa_create_engine(url, echo=echo, **kwargs)

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    return engine


class SqlPlanStore(PlanStore):
    """:class:`PlanStore` on any SQLAlchemy-supported database."""

    def __init__(self, engine: Engine | str) -> None:
        self._engine = create_store_engine(engine) if isinstance(engine, str) else engine
        self._sessions = sessionmaker(bind=self._engine, expire_on_commit=False)
        self._plan_locks: defaultdict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()
        self.initialize()

    @property
    def engine(self) -> Engine:
        return self._engine

    def initialize(self) -> None:
        """Create tables and the slot row if missing."""
        with self._errors("initialize"):
            StoreBase.metadata.create_all(self._engine)
            with self._sessions.begin() as session:
                if session.get(SlotTable, _SLOT_ROW) is None:
                    session.add(SlotTable(id=_SLOT_ROW, plan_id=None))

    @contextmanager
    def _errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except MigrationError:
            raise
        except SQLAlchemyError as exc:
            logger.error("store.failed", operation=operation, error=str(exc))
            raise StoreError(f"plan store {operation} failed: {exc}", cause=exc) from exc

    # -- row mapping ---------------------------------------------------------

    @staticmethod
    def _to_row(plan: MigrationPlan, row: PlanTable | None = None) -> PlanTable:
        row = row or PlanTable(id=plan.id)
        row.name = plan.name
        row.description = plan.description
        row.strategy = plan.strategy.value
        row.status = plan.status.value
        row.created_at = plan.created_at
        row.started_at = plan.started_at
        row.completed_at = plan.completed_at
        row.failure_reason = plan.failure_reason
        row.dry_run = plan.dry_run
        row.continue_on_errors = plan.continue_on_errors
        row.payload = {
            "steps": [s.to_dict() for s in plan.steps],
            "step_runs": [r.to_dict() for r in plan.step_runs],
            "events": [e.to_dict() for e in plan.events],
        }
        return row

    @staticmethod
    def _from_row(row: PlanTable) -> MigrationPlan:
        steps = tuple(step_from_dict(s) for s in row.payload.get("steps", []))
        runs = [StepRun.from_dict(r) for r in row.payload.get("step_runs", [])]
        return MigrationPlan(
            id=row.id,
            name=row.name,
            description=row.description,
            strategy=Strategy(row.strategy),
            steps=steps,
            status=PlanStatus(row.status),
            created_at=ensure_utc(row.created_at),
            started_at=ensure_utc(row.started_at),
            completed_at=ensure_utc(row.completed_at),
            failure_reason=row.failure_reason,
            step_runs=runs or [StepRun.for_step(s) for s in steps],
            dry_run=bool(row.dry_run),
            continue_on_errors=bool(row.continue_on_errors),
            events=[PlanEvent.from_dict(e) for e in row.payload.get("events", [])],
        )

    # -- slot ----------------------------------------------------------------

    def _claim_slot(self, session: Session, plan: MigrationPlan) -> None:
        result = session.execute(
            update(SlotTable)
            .where(SlotTable.id == _SLOT_ROW)
            .where(or_(SlotTable.plan_id.is_(None), SlotTable.plan_id == plan.id))
            .values(plan_id=plan.id, reserved_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            holder = session.scalar(select(SlotTable.plan_id).where(SlotTable.id == _SLOT_ROW))
            raise ConflictError(
                f"cannot reserve migration slot for '{plan.name}': plan {holder} is still open"
            ).with_context(plan_id=plan.id, plan_name=plan.name, holder=holder)

    def _release_slot(self, session: Session, plan_id: str) -> None:
        session.execute(
            update(SlotTable)
            .where(SlotTable.id == _SLOT_ROW, SlotTable.plan_id == plan_id)
            .values(plan_id=None, reserved_at=None)
            .execution_options(synchronize_session=False)
        )

    def _sync_slot(self, session: Session, plan: MigrationPlan) -> None:
        if plan.status.is_terminal:
            self._release_slot(session, plan.id)
        elif plan.status.is_active:
            self._claim_slot(session, plan)

    def slot_holder(self) -> str | None:
        with self._errors("slot_holder"), self._sessions() as session:
            return session.scalar(select(SlotTable.plan_id).where(SlotTable.id == _SLOT_ROW))

    def _plan_lock(self, plan_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._plan_locks[plan_id]

    # -- primitives ----------------------------------------------------------

    def insert_exclusive(self, plan: MigrationPlan) -> MigrationPlan:
        with self._errors("insert_exclusive"), self._sessions.begin() as session:
            self._claim_slot(session, plan)
            if session.get(PlanTable, plan.id) is not None:
                raise ConflictError(f"plan '{plan.id}' already exists").with_context(
                    plan_id=plan.id
                )
            session.add(self._to_row(plan))
        return plan.copy()

    def transition(self, plan_id: str, action: PlanAction) -> MigrationPlan:
        with self._plan_lock(plan_id), self._errors("transition"):
            with self._sessions.begin() as session:
                row = session.scalar(
                    select(PlanTable).where(PlanTable.id == plan_id).with_for_update()
                )
                if row is None:
                    raise NotFoundError(f"plan '{plan_id}' not found", plan_id=plan_id)
                plan = self._from_row(row)
                action(plan)
                self._sync_slot(session, plan)
                self._to_row(plan, row)
            return plan

    def save(self, plan: MigrationPlan) -> MigrationPlan:
        with self._plan_lock(plan.id), self._errors("save"):
            with self._sessions.begin() as session:
                row = session.get(PlanTable, plan.id)
                if row is None:
                    if not plan.status.is_terminal:
                        self._claim_slot(session, plan)
                    session.add(self._to_row(plan))
                else:
                    self._sync_slot(session, plan)
                    self._to_row(plan, row)
        return plan.copy()

    def delete(self, plan_id: str) -> None:
        with self._plan_lock(plan_id), self._errors("delete"):
            with self._sessions.begin() as session:
                row = session.scalar(
                    select(PlanTable).where(PlanTable.id == plan_id).with_for_update()
                )
                if row is None:
                    raise NotFoundError(f"plan '{plan_id}' not found", plan_id=plan_id)
                if PlanStatus(row.status).is_active:
                    raise ConflictError(
                        f"cannot delete plan '{row.name}' while it is {row.status}"
                    ).with_context(plan_id=plan_id, plan_name=row.name)
                session.execute(delete(PlanTable).where(PlanTable.id == plan_id))
                self._release_slot(session, plan_id)

    # -- reads ---------------------------------------------------------------

    def _select(self, *criteria: Any) -> list[MigrationPlan]:
        stmt = select(PlanTable).where(*criteria).order_by(PlanTable.created_at, PlanTable.id)
        with self._errors("query"), self._sessions() as session:
            return [self._from_row(row) for row in session.scalars(stmt)]

    def find_by_id(self, plan_id: str) -> MigrationPlan | None:
        with self._errors("find_by_id"), self._sessions() as session:
            row = session.get(PlanTable, plan_id)
            return self._from_row(row) if row is not None else None

    def find_all(self) -> list[MigrationPlan]:
        return self._select()

    def find_by_status(self, status: PlanStatus) -> list[MigrationPlan]:
        return self._select(PlanTable.status == PlanStatus(status).value)

    def find_by_strategy(self, strategy: Strategy) -> list[MigrationPlan]:
        return self._select(PlanTable.strategy == Strategy(strategy).value)

    def find_active(self) -> list[MigrationPlan]:
        return self._select(PlanTable.status.in_([s.value for s in ACTIVE_STATUSES]))

    def find_by_name_containing(self, fragment: str) -> list[MigrationPlan]:
        pattern = _LIKE_SPECIALS.sub(r"\\\g<0>", fragment)
        return self._select(PlanTable.name.ilike(f"%{pattern}%", escape="\\"))

    def has_active_migration(self) -> bool:
        stmt = select(func.count()).select_from(PlanTable).where(
            PlanTable.status.in_([s.value for s in ACTIVE_STATUSES])
        )
        with self._errors("has_active_migration"), self._sessions() as session:
            return bool(session.scalar(stmt))

    def count(self) -> int:
        with self._errors("count"), self._sessions() as session:
            return int(session.scalar(select(func.count()).select_from(PlanTable)) or 0)

    def count_by_status(self) -> dict[PlanStatus, int]:
        stmt = select(PlanTable.status, func.count()).group_by(PlanTable.status)
        with self._errors("count_by_status"), self._sessions() as session:
            rows = dict(session.execute(stmt).all())
        return {status: int(rows.get(status.value, 0)) for status in PlanStatus}

    def dispose(self) -> None:
        self._engine.dispose()
