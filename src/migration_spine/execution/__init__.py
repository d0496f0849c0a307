"""Plan execution: collaborator ports, dry-run recorder, validator, executor, metrics."""

from migration_spine.execution.dry_run import DryRunScriptRunner, RecordedCall
from migration_spine.execution.executor import ExecutionHandle, PlanExecutor
from migration_spine.execution.metrics import ExecutionSummary, MetricsReporter, StepMetrics
from migration_spine.execution.ports import RuleEvaluator, RuleOutcome, ScriptResult, ScriptRunner
from migration_spine.execution.validator import PlanValidator

__all__ = [
    "DryRunScriptRunner",
    "RecordedCall",
    "ExecutionHandle",
    "PlanExecutor",
    "ExecutionSummary",
    "MetricsReporter",
    "StepMetrics",
    "RuleEvaluator",
    "RuleOutcome",
    "ScriptResult",
    "ScriptRunner",
    "PlanValidator",
]
