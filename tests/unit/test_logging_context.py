"""Tests for structured logging helpers."""

import logging

import structlog

from specvital_collector.logging_config import (
    LogContext,
    clear_context,
    configure_logging,
    set_context,
)


def test_log_context_binds_and_restores():
    set_context(service="worker")
    try:
        with LogContext(task_id="t1", attempt=2):
            context = structlog.contextvars.get_contextvars()
            assert context == {"service": "worker", "task_id": "t1", "attempt": 2}
        assert structlog.contextvars.get_contextvars() == {"service": "worker"}
    finally:
        clear_context()


def test_nested_context_restores_outer_value():
    with LogContext(tick=1):
        with LogContext(tick=2):
            assert structlog.contextvars.get_contextvars()["tick"] == 2
        assert structlog.contextvars.get_contextvars()["tick"] == 1
    assert "tick" not in structlog.contextvars.get_contextvars()


def test_configure_logging_sets_level():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    try:
        configure_logging(level="warning", json_output=False)
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
        assert logging.getLogger("kombu").level == logging.WARNING
    finally:
        root.handlers[:] = handlers
        root.setLevel(level)

