"""Tests for ``migration_spine.execution.dry_run``."""

from __future__ import annotations

from conftest import RecordingTarget, cleanup_step, data_step, schema_step
from migration_spine.execution.dry_run import DryRunScriptRunner


class TestDryRunScriptRunner:
    def test_records_instead_of_applying(self, recording_target):
        runner = DryRunScriptRunner(recording_target)
        result = runner.run_transformation(data_step("copy", 1))
        runner.run_schema_update(schema_step("ddl", 2))
        runner.purge_table(cleanup_step("purge", 3))

        assert result.dry_run is True
        assert result.affected_records == recording_target.records
        assert recording_target.mutating_calls() == []
        assert [c.operation for c in runner.calls] == [
            "run_transformation",
            "run_schema_update",
            "purge_table",
        ]
        assert runner.calls[2].script is None
        assert runner.calls[0].target_table == "users_v2"

    def test_rollback_is_recorded(self):
        runner = DryRunScriptRunner()
        runner.run_rollback(data_step("copy", 1, rollback="DELETE FROM users_v2"))
        (call,) = runner.calls
        assert call.operation == "run_rollback"
        assert call.script == "DELETE FROM users_v2"
        assert call.estimated_records == 0

    def test_estimates_come_from_delegate(self):
        runner = DryRunScriptRunner(RecordingTarget(records=42))
        assert runner.estimate_records(data_step()) == 42
