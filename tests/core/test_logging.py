"""Tests for ``migration_spine.core.logging``."""

from __future__ import annotations

import logging

import pytest
import structlog

from migration_spine.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)


@pytest.fixture(autouse=True)
def _restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestLogContext:
    def teardown_method(self):
        clear_context()

    def test_binds_and_unbinds(self):
        with LogContext(plan_id="p1"):
            assert structlog.contextvars.get_contextvars()["plan_id"] == "p1"
        assert "plan_id" not in structlog.contextvars.get_contextvars()

    def test_keeps_outer_context(self):
        bind_context(request_id="r1")
        with LogContext(plan_id="p1"):
            pass
        assert structlog.contextvars.get_contextvars() == {"request_id": "r1"}

    def test_nested_scope_restores_shadowed_value(self):
        with LogContext(request_id="outer", path="/plans"):
            with LogContext(request_id="inner", operation="create_plan"):
                assert structlog.contextvars.get_contextvars()["request_id"] == "inner"
            assert structlog.contextvars.get_contextvars() == {
                "request_id": "outer",
                "path": "/plans",
            }
        assert structlog.contextvars.get_contextvars() == {}


class TestConfigureLogging:
    def test_json_output(self, capsys):
        configure_logging(level="INFO", json_format=True, service="test-service")
        get_logger("tests.logging").info("test.event", answer=42)
        err = capsys.readouterr().err
        assert '"event": "test.event"' in err
        assert '"answer": 42' in err
        assert '"service.name": "test-service"' in err

    def test_level_filters(self, capsys):
        configure_logging(level="WARNING", json_format=True)
        get_logger("tests.logging.filtered").info("test.hidden")
        assert "test.hidden" not in capsys.readouterr().err
