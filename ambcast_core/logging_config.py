#!/usr/bin/env python3
"""
Logging Configuration Module

This module provides standardized logging configuration for ambcast. The
service logger is configured once at startup; every other module logs
through a child logger (``ambcast.session``, ``ambcast.control``, ...) so
all records end up in the same handlers.
"""

import os
import sys
import json
import logging
import logging.handlers
from typing import Dict, Optional

from ambcast_core import config

SERVICE_NAME = "ambcast"

# Format strings
DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
SIMPLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
JSON_FORMAT = {
    "timestamp": "%(asctime)s",
    "name": "%(name)s",
    "level": "%(levelname)s",
    "file": "%(filename)s",
    "line": "%(lineno)d",
    "message": "%(message)s"
}


class JsonFormatter(logging.Formatter):
    """Custom formatter that outputs log records as JSON objects."""

    def __init__(self, fmt_dict: Optional[Dict] = None):
        """
        Initialize the JSON formatter.

        Args:
            fmt_dict: Format dictionary (keys are output keys, values are log record attributes)
        """
        self.fmt_dict = fmt_dict or JSON_FORMAT
        super().__init__()

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the log record as JSON.

        Args:
            record: The log record to format

        Returns:
            str: JSON-formatted log record
        """
        record_dict = {}

        record.asctime = self.formatTime(record)
        record.message = record.getMessage()

        for key, fmt in self.fmt_dict.items():
            try:
                record_dict[key] = fmt % record.__dict__
            except (KeyError, TypeError, ValueError):
                record_dict[key] = fmt

        if record.exc_info:
            record_dict["exception"] = self.formatException(record.exc_info)

        return json.dumps(record_dict)


def _build_formatter(formatter: str) -> logging.Formatter:
    if formatter == "json":
        return JsonFormatter()
    if formatter == "detailed":
        return logging.Formatter(DETAILED_FORMAT)
    return logging.Formatter(SIMPLE_FORMAT)


def get_rotating_file_handler(
    log_file: str,
    level: str = config.FILE_LOG_LEVEL,
    max_bytes: int = 10485760,  # 10MB
    backup_count: int = 10,
    formatter: str = "detailed"
) -> logging.Handler:
    """
    Create a rotating file handler.

    Args:
        log_file: Path to the log file
        level: Logging level
        max_bytes: Maximum file size before rotation
        backup_count: Number of backup files to keep
        formatter: Formatter to use

    Returns:
        logging.Handler: Configured handler
    """
    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count
    )
    handler.setLevel(level)
    handler.setFormatter(_build_formatter(formatter))
    return handler


def get_console_handler(
    level: str = config.CONSOLE_LOG_LEVEL,
    formatter: str = "simple"
) -> logging.Handler:
    """Create a console handler writing to stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(_build_formatter(formatter))
    return handler


def configure_logging(
    service_name: str = SERVICE_NAME,
    console_level: str = config.CONSOLE_LOG_LEVEL,
    file_level: str = config.FILE_LOG_LEVEL,
    log_dir: str = config.LOG_DIR,
    enable_console: bool = True,
    enable_file: bool = config.LOG_TO_FILE,
    log_format: str = "simple",
    json_logs: bool = config.JSON_LOGS
) -> logging.Logger:
    """
    Configure logging for a service.

    Args:
        service_name: Name of the service (root of the module logger tree)
        console_level: Console logging level
        file_level: File logging level
        log_dir: Directory for log files
        enable_console: Enable console logging
        enable_file: Enable file logging
        log_format: Format for console logs ("simple", "detailed")
        json_logs: Whether to format logs as JSON

    Returns:
        logging.Logger: Configured logger
    """
    logger = logging.getLogger(service_name)
    logger.setLevel(logging.DEBUG)  # Set to lowest level, handlers will filter

    # Remove any existing handlers
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    if json_logs:
        log_format = "json"

    if enable_console:
        logger.addHandler(get_console_handler(console_level, log_format))

    if enable_file:
        os.makedirs(log_dir, exist_ok=True)
        log_file = os.path.join(log_dir, f"{service_name}.log")
        file_format = "json" if json_logs else "detailed"
        logger.addHandler(get_rotating_file_handler(log_file, file_level, formatter=file_format))

    # Don't propagate to root logger
    logger.propagate = False

    logger.info(f"Logging configured for {service_name}")
    return logger


def get_logger(component: str) -> logging.Logger:
    """Return the child logger for one ambcast component."""
    return logging.getLogger(f"{SERVICE_NAME}.{component}")
