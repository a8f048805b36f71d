# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Parley Contributors

"""Structured logging for Parley.

Log lines carry two pieces of context when set:

- a correlation id grouping everything done for one replication event or
  one provisioning call;
- the name of the instance doing the work, so that several stores in one
  process (replication tests, simulations) can be told apart.

``configure_logging`` attaches handlers to the ``parley`` logger only and
leaves the root logger to the embedding application.
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

PACKAGE_LOGGER = "parley"

_correlation_id: ContextVar[str | None] = ContextVar("parley_correlation_id", default=None)
_instance: ContextVar[str | None] = ContextVar("parley_instance", default=None)


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    _correlation_id.set(correlation_id)


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_instance() -> str | None:
    return _instance.get()


@contextmanager
def correlation_context(correlation_id: str | None = None) -> Generator[str, None, None]:
    """Scope a correlation id; a new one is generated when none is given.

    Example:
        with correlation_context() as cid:
            logger.info("Processing received group")  # tagged with cid
    """
    cid = correlation_id or generate_correlation_id()
    token = _correlation_id.set(cid)
    try:
        yield cid
    finally:
        _correlation_id.reset(token)


@contextmanager
def instance_context(name: str | None) -> Generator[None, None, None]:
    """Tag log lines emitted inside the block with an instance name."""
    token = _instance.set(name)
    try:
        yield
    finally:
        _instance.reset(token)


def short_id(value: Any) -> str:
    """First 8 characters of a hash or identifier, for log messages."""
    if value is None:
        return "none"
    return str(value)[:8]


def _context_fields() -> dict[str, str]:
    fields = {}
    if (cid := get_correlation_id()) is not None:
        fields["correlation_id"] = cid
    if (instance := get_instance()) is not None:
        fields["instance"] = instance
    return fields


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context_fields(),
        }
        if record.levelno >= logging.WARNING:
            log_data["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        if hasattr(record, "extra_data"):
            log_data["extra"] = record.extra_data
        return json.dumps(log_data)


class StandardFormatter(logging.Formatter):
    """Human-readable lines, coloured on a terminal.

    Context is rendered as a prefix: ``[instance cid] message``.
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    CONTEXT_COLOR = "\033[90m"

    def __init__(self, use_colors: bool = True):
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self.use_colors = use_colors and sys.stderr.isatty()

    def _prefix(self) -> str:
        fields = _context_fields()
        parts = [fields["instance"]] if "instance" in fields else []
        if "correlation_id" in fields:
            parts.append(short_id(fields["correlation_id"]))
        if not parts:
            return ""
        prefix = f"[{' '.join(parts)}]"
        if self.use_colors:
            prefix = f"{self.CONTEXT_COLOR}{prefix}{self.RESET}"
        return prefix + " "

    def format(self, record: logging.LogRecord) -> str:
        # Other handlers must see the untouched record
        record = logging.makeLogRecord(record.__dict__)
        record.msg = self._prefix() + str(record.msg)
        if self.use_colors:
            record.levelname = f"{self.COLORS.get(record.levelname, '')}{record.levelname}{self.RESET}"
        return super().format(record)


def _use_json(log_format: str) -> bool:
    log_format = log_format.lower()
    if log_format in ("json", "text"):
        return log_format == "json"
    # Unset: JSON unless a person is watching
    return not sys.stderr.isatty()


def configure_logging(
    level: str | int | None = None,
    json_format: bool | None = None,
    log_file: str | None = None,
) -> logging.Logger:
    """Attach handlers to the ``parley`` logger.

    Arguments left as None come from ``PARLEY_LOG_LEVEL``,
    ``PARLEY_LOG_FORMAT`` ("json", "text" or unset for auto-detect) and
    ``PARLEY_LOG_FILE``. The log file always receives JSON.

    Returns:
        The configured package logger.
    """
    from .config import get_config

    config = get_config()
    level = config.log_level if level is None else level
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    if json_format is None:
        json_format = _use_json(config.log_format)
    log_file = config.log_file if log_file is None else log_file

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level)
    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(JSONFormatter() if json_format else StandardFormatter())
    package_logger.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        package_logger.addHandler(file_handler)

    package_logger.propagate = False
    return package_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name (typically __name__)."""
    return logging.getLogger(name)
