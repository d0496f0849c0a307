"""Domain model: plans, steps, validation rules and their lifecycle enums."""

from migration_spine.domain.enums import (
    ACTIVE_STATUSES,
    PlanEventType,
    PlanStatus,
    RuleType,
    StepKind,
    StepStatus,
    Strategy,
)
from migration_spine.domain.events import PlanEvent
from migration_spine.domain.loader import PlanDefinition, load_plan_file, parse_plan_yaml
from migration_spine.domain.plan import MigrationPlan, StepRun
from migration_spine.domain.rules import ValidationRule
from migration_spine.domain.steps import (
    CleanupStep,
    DataMigrationStep,
    SchemaUpdateStep,
    Step,
    ValidationStep,
    step_from_dict,
)

__all__ = [
    "ACTIVE_STATUSES",
    "PlanEventType",
    "PlanStatus",
    "RuleType",
    "StepKind",
    "StepStatus",
    "Strategy",
    "PlanEvent",
    "PlanDefinition",
    "load_plan_file",
    "parse_plan_yaml",
    "MigrationPlan",
    "StepRun",
    "ValidationRule",
    "CleanupStep",
    "DataMigrationStep",
    "SchemaUpdateStep",
    "Step",
    "ValidationStep",
    "step_from_dict",
]
