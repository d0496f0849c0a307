"""Tests for ``migration_spine.core.errors``."""

from __future__ import annotations

import pytest

from migration_spine.core.errors import (
    ConflictError,
    ErrorCategory,
    ExecutionError,
    IllegalStateError,
    MigrationError,
    NotFoundError,
    StoreError,
    ValidationError,
    error_code,
    is_retryable,
)


class TestErrorCodes:
    @pytest.mark.parametrize(
        ("error", "code", "category"),
        [
            (ValidationError("bad"), "VALIDATION_FAILED", ErrorCategory.VALIDATION),
            (ConflictError("busy"), "CONFLICT", ErrorCategory.CONFLICT),
            (NotFoundError("gone"), "NOT_FOUND", ErrorCategory.NOT_FOUND),
            (IllegalStateError("nope"), "ILLEGAL_STATE", ErrorCategory.STATE),
            (ExecutionError("boom"), "EXECUTION_FAILED", ErrorCategory.EXECUTION),
            (StoreError("down"), "UNAVAILABLE", ErrorCategory.STORAGE),
        ],
    )
    def test_defaults(self, error, code, category):
        assert error.code == code
        assert error.category == category
        assert error_code(error) == code

    def test_foreign_exception_is_internal(self):
        assert error_code(RuntimeError("x")) == "INTERNAL"
        assert is_retryable(RuntimeError("x")) is False

    def test_only_store_errors_retry_by_default(self):
        assert is_retryable(StoreError("db locked")) is True
        assert is_retryable(ConflictError("busy")) is False

    def test_retryable_override(self):
        assert ConflictError("busy", retryable=True).retryable is True


class TestValidationError:
    def test_violations_default_to_message(self):
        assert ValidationError("name is blank").violations == ["name is blank"]

    def test_violations_listed(self):
        err = ValidationError("plan rejected", violations=["a", "b"])
        assert err.violations == ["a", "b"]
        assert err.to_dict()["violations"] == ["a", "b"]


class TestContext:
    def test_with_context_sets_known_fields(self):
        err = ExecutionError("failed", step_name="copy").with_context(plan_id="p1", plan_name="n")
        assert err.context.plan_id == "p1"
        assert err.context.plan_name == "n"
        assert err.context.step_name == "copy"

    def test_unknown_keys_go_to_metadata(self):
        err = ConflictError("busy").with_context(holder="p0")
        assert err.context.metadata == {"holder": "p0"}
        assert err.to_dict()["context"] == {"holder": "p0"}

    def test_not_found_carries_plan_id(self):
        assert NotFoundError("missing", plan_id="p9").context.plan_id == "p9"

    def test_cause_is_chained(self):
        cause = ValueError("root")
        err = MigrationError("wrapped", cause=cause)
        assert err.__cause__ is cause
        assert err.to_dict()["cause"] == "root"

    def test_repr(self):
        assert repr(NotFoundError("missing")) == "NotFoundError('missing', code=NOT_FOUND)"
