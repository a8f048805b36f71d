"""Tests for parley.core.logging module."""

from __future__ import annotations

import json
import logging

import pytest

from parley.core.logging import (
    JSONFormatter,
    StandardFormatter,
    configure_logging,
    correlation_context,
    generate_correlation_id,
    get_correlation_id,
    get_instance,
    get_logger,
    instance_context,
    set_correlation_id,
    short_id,
)


@pytest.fixture
def package_logger():
    logger = logging.getLogger("parley")
    handlers, level, propagate = logger.handlers[:], logger.level, logger.propagate
    yield logger
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


def _record(msg: str = "hello", level: int = logging.INFO) -> logging.LogRecord:
    return logging.LogRecord(
        name="parley.test",
        level=level,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )


# ============================================================================
# Correlation ID Tests
# ============================================================================


class TestCorrelationId:
    def test_default_none(self):
        set_correlation_id(None)
        assert get_correlation_id() is None

    def test_set_and_get(self):
        set_correlation_id("test-correlation-123")
        assert get_correlation_id() == "test-correlation-123"
        set_correlation_id(None)

    def test_generate_unique(self):
        id1 = generate_correlation_id()
        id2 = generate_correlation_id()
        assert id1 != id2
        assert len(id1) == 36

    def test_context_generates_and_restores(self):
        set_correlation_id(None)
        with correlation_context() as cid:
            assert get_correlation_id() == cid
        assert get_correlation_id() is None

    def test_context_uses_given_id(self):
        with correlation_context("fixed-id") as cid:
            assert cid == "fixed-id"
            with correlation_context() as inner:
                assert get_correlation_id() == inner
            assert get_correlation_id() == "fixed-id"


class TestInstanceContext:
    def test_scoped(self):
        assert get_instance() is None
        with instance_context("alice"):
            assert get_instance() == "alice"
            with instance_context("bob"):
                assert get_instance() == "bob"
            assert get_instance() == "alice"
        assert get_instance() is None


class TestShortId:
    def test_truncates(self):
        assert short_id("0123456789abcdef") == "01234567"

    def test_none(self):
        assert short_id(None) == "none"


# ============================================================================
# Formatter Tests
# ============================================================================


class TestJSONFormatter:
    def test_basic_fields(self):
        data = json.loads(JSONFormatter().format(_record()))
        assert data["level"] == "INFO"
        assert data["logger"] == "parley.test"
        assert data["message"] == "hello"
        assert "source" not in data

    def test_includes_correlation_id(self):
        with correlation_context("cid-1"):
            data = json.loads(JSONFormatter().format(_record()))
        assert data["correlation_id"] == "cid-1"

    def test_includes_instance(self):
        with instance_context("alice"):
            data = json.loads(JSONFormatter().format(_record()))
        assert data["instance"] == "alice"
        assert "correlation_id" not in data

    def test_source_for_warnings(self):
        data = json.loads(JSONFormatter().format(_record(level=logging.WARNING)))
        assert data["source"]["line"] == 10


class TestStandardFormatter:
    def test_prefixes_short_correlation_id(self):
        formatter = StandardFormatter(use_colors=False)
        with correlation_context("abcdef0123456789"):
            output = formatter.format(_record())
        assert "[abcdef01] hello" in output

    def test_prefixes_instance_and_correlation_id(self):
        formatter = StandardFormatter(use_colors=False)
        with instance_context("bob"), correlation_context("abcdef0123456789"):
            output = formatter.format(_record())
        assert "[bob abcdef01] hello" in output

    def test_no_prefix_without_context(self):
        set_correlation_id(None)
        assert " - INFO - hello" in StandardFormatter(use_colors=False).format(_record())

    def test_does_not_mutate_record(self):
        record = _record()
        with correlation_context("abcdef0123456789"):
            StandardFormatter(use_colors=False).format(record)
        assert record.msg == "hello"


# ============================================================================
# configure_logging Tests
# ============================================================================


class TestConfigureLogging:
    def test_json_handler(self, clean_env, package_logger):
        configure_logging(level="DEBUG", json_format=True)

        assert package_logger.level == logging.DEBUG
        assert len(package_logger.handlers) == 1
        assert isinstance(package_logger.handlers[0].formatter, JSONFormatter)

    def test_level_from_env(self, clean_env, monkeypatch, package_logger):
        monkeypatch.setenv("PARLEY_LOG_LEVEL", "WARNING")

        configure_logging(json_format=False)

        assert package_logger.level == logging.WARNING
        assert isinstance(package_logger.handlers[0].formatter, StandardFormatter)

    def test_log_file_uses_json(self, clean_env, tmp_path, package_logger):
        log_file = tmp_path / "parley.log"

        configure_logging(json_format=False, log_file=str(log_file))
        get_logger("parley.test").warning("to file")
        for handler in package_logger.handlers:
            handler.flush()

        line = log_file.read_text().strip().splitlines()[-1]
        assert json.loads(line)["message"] == "to file"

    def test_leaves_root_logger_alone(self, clean_env, package_logger):
        root_handlers = logging.getLogger().handlers[:]

        returned = configure_logging(json_format=True)

        assert returned is package_logger
        assert logging.getLogger().handlers == root_handlers
        assert package_logger.propagate is False

    def test_reconfigure_replaces_handlers(self, clean_env, package_logger):
        configure_logging(json_format=True)
        configure_logging(json_format=False)

        assert len(package_logger.handlers) == 1
        assert isinstance(package_logger.handlers[0].formatter, StandardFormatter)
