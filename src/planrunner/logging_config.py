"""
Centralized logging configuration for planrunner.

Supports traditional text logging and structured JSON logging. While a plan
runs, the scheduling loop sets ``correlation_id_var`` to the plan identity so
every JSON record can be tied back to the plan that produced it.

Default log directory: <workspace>/.planning/logs/

Usage:
    from planrunner.logging_config import configure_logging

    configure_logging(run_id="run-7", workspace=Path("."))

Environment Variables:
    PLANRUNNER_LOG_DIR - Override default log directory
    PLANRUNNER_LOG_LEVEL - Set log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
"""

from __future__ import annotations

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime
from pathlib import Path
from typing import Optional

LOGGER_NAME = "planrunner"

# Context var for correlation ID (plan identity while a plan runs)
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

_STANDARD_ATTRS = {
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "thread",
    "threadName",
    "exc_info",
    "exc_text",
    "stack_info",
    "message",
    "taskName",
}


class StructuredFormatter(logging.Formatter):
    """JSON formatter carrying the current correlation ID.

    Each log entry includes timestamp, level, logger name, message, correlation
    ID, and any extra fields added to the log record.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": correlation_id_var.get(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def get_default_log_dir(workspace: Optional[Path] = None, planning_dir: str = ".planning") -> Path:
    """
    Get the default log directory.

    Args:
        workspace: Workspace root (defaults to current working directory)
        planning_dir: Planning directory name inside the workspace

    Returns:
        Default log directory path
    """
    if "PLANRUNNER_LOG_DIR" in os.environ:
        return Path(os.environ["PLANRUNNER_LOG_DIR"])

    if workspace is None:
        workspace = Path.cwd()
    return workspace / planning_dir / "logs"


def configure_logging(
    run_id: Optional[str] = None,
    workspace: Optional[Path] = None,
    log_dir: Optional[Path] = None,
    log_level: Optional[str] = None,
    log_to_console: bool = True,
    log_to_file: bool = True,
    log_filename: Optional[str] = None,
    structured: bool = False,
    planning_dir: str = ".planning",
) -> logging.Logger:
    """
    Configure the ``planrunner`` logger.

    Args:
        run_id: Run identifier (used in log filename if not specified)
        workspace: Workspace root (defaults to current working directory)
        log_dir: Log directory (overrides default)
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_to_console: Whether to log to console
        log_to_file: Whether to log to file
        log_filename: Custom log filename (overrides run_id-based naming)
        structured: Emit JSON records with correlation IDs instead of text
        planning_dir: Planning directory name, used for the default log directory

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)

    # Clear existing handlers to avoid duplicates
    logger.handlers.clear()

    if log_level is None:
        log_level = os.environ.get("PLANRUNNER_LOG_LEVEL", "INFO")
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    if structured:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    if log_to_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_to_file:
        if log_dir is None:
            log_dir = get_default_log_dir(workspace, planning_dir)

        log_dir.mkdir(parents=True, exist_ok=True)

        if log_filename is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            log_filename = f"{run_id or 'planrunner'}_{timestamp}.log"

        log_path = log_dir / log_filename

        file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

        logger.info(f"Logging to: {log_path}")

    return logger
