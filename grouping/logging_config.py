"""
Centralized logging configuration for the grouping engine.

Every process that drives the engine (CLI, admin action handler, tests)
logs in one format:
    2026-01-06T14:05:52Z [source] LEVEL message

Environment Variables:
    LOG_LEVEL: "TRACE", "DEBUG" or "INFO" (default)
               - INFO: run summaries, moves, violation lifecycle
               - DEBUG: per-cluster placement decisions
               - TRACE: store queries and batch payload sizes

Usage:
    from grouping.logging_config import configure_logging, get_logger

    configure_logging(source="grouping")
    logger = get_logger(__name__)
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import UTC, datetime
from typing import TextIO

# Custom TRACE level below DEBUG
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

# Loggers of HTTP libraries used by the PocketBase SDK
NOISY_LOGGERS = ("httpx", "httpcore", "urllib3")


def _trace(self: logging.Logger, message: object, *args: object, **kw: object) -> None:
    """Log a message at TRACE level (5)."""
    if self.isEnabledFor(TRACE):
        self._log(TRACE, message, args, **kw)  # type: ignore[arg-type]


logging.Logger.trace = _trace  # type: ignore[attr-defined]


class ISO8601Formatter(logging.Formatter):
    """Formatter producing UTC ISO8601 timestamps and a bracketed source tag."""

    def __init__(self, source: str = "grouping"):
        self.source = source
        super().__init__()

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
        message = record.getMessage()

        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"

        return f"{timestamp} [{self.source}] {record.levelname} {message}"


def resolve_level(level: int | None = None, debug: bool | None = None) -> int:
    """Pick the effective level: explicit level, then debug flag, then LOG_LEVEL."""
    if level is not None:
        return level
    if debug:
        return logging.DEBUG

    log_level_env = os.getenv("LOG_LEVEL", "").upper()
    if log_level_env == "TRACE":
        return TRACE
    if log_level_env == "DEBUG":
        return logging.DEBUG
    return logging.INFO


def configure_logging(
    source: str = "grouping",
    level: int | None = None,
    debug: bool | None = None,
    stream: TextIO | None = None,
) -> logging.Logger:
    """Configure the root logger for a grouping process.

    Args:
        source: Identifier shown in brackets (e.g., "grouping", "cli")
        level: Logging level (defaults to LOG_LEVEL env var, else INFO)
        debug: Force DEBUG when no explicit level is given
        stream: Output stream (defaults to stdout)

    Returns:
        Configured root logger
    """
    level = resolve_level(level, debug)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(ISO8601Formatter(source=source))
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
