"""Plan Events: append-only lifecycle history of a migration plan.

``status`` only says where a plan is now.  Every lifecycle transition also
appends a :class:`PlanEvent` to ``MigrationPlan.events``, so a finished
plan still shows when it started, whether it rolled back and why it
failed.

::

    PlanEvent
      ├── event_id    ─ ULID, sorts in recording order
      ├── plan_id     ─ which plan
      ├── event_type  ─ started / completed / failed / rollback_started
      ├── timestamp   ─ when (UTC)
      └── data        ─ payload (run flags, failure reason, record counts)

Events are never updated or removed; they are stored with the plan.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from migration_spine.core.timestamps import from_iso8601, generate_ulid, to_iso8601, utc_now
from migration_spine.domain.enums import PlanEventType


@dataclass(frozen=True)
class PlanEvent:
    """One lifecycle transition of a plan.

    Example:
        >>> event = PlanEvent.record("01J...", PlanEventType.FAILED, reason="step 'copy' failed")
        >>> event.to_dict()["event_type"]
        'failed'
    """

    event_id: str
    plan_id: str
    event_type: PlanEventType
    timestamp: datetime
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def record(cls, plan_id: str, event_type: PlanEventType, **data: Any) -> PlanEvent:
        return cls(
            event_id=generate_ulid(),
            plan_id=plan_id,
            event_type=event_type,
            timestamp=utc_now(),
            data=data,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "plan_id": self.plan_id,
            "event_type": self.event_type.value,
            "timestamp": to_iso8601(self.timestamp),
            "data": dict(self.data),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PlanEvent:
        return cls(
            event_id=data["event_id"],
            plan_id=data["plan_id"],
            event_type=PlanEventType(data["event_type"]),
            timestamp=from_iso8601(data.get("timestamp")) or utc_now(),
            data=dict(data.get("data") or {}),
        )
