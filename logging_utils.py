"""
Centralized logging configuration for the SMC Backtester.

Modules log through ``logging.getLogger(__name__)``; entry points call
``configure_logging`` once to attach handlers to the root logger.
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

DEFAULT_LOG_FORMAT = "%(asctime)s - [%(levelname)s] - %(name)s - %(message)s"

# Handlers installed by configure_logging, keyed by target
_log_handlers = {}


def configure_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    console: bool = True,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB
    backup_count: int = 5,
    log_format: str = DEFAULT_LOG_FORMAT,
) -> logging.Logger:
    """
    Configure the root logger for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path of a rotating log file
        console: Whether to log to stderr
        max_bytes: Maximum log file size before rotation
        backup_count: Number of backup log files to keep
        log_format: Format string for log messages

    Returns:
        The configured root logger
    """
    root = logging.getLogger()
    root.setLevel(LOG_LEVELS.get(level.upper(), logging.INFO))

    formatter = logging.Formatter(log_format)

    if console and "console" not in _log_handlers:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)
        _log_handlers["console"] = console_handler

    if log_file and log_file not in _log_handlers:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        _log_handlers[log_file] = file_handler

    return root


def reset_logging() -> None:
    """Remove handlers installed by configure_logging."""
    root = logging.getLogger()
    for handler in _log_handlers.values():
        root.removeHandler(handler)
        handler.close()
    _log_handlers.clear()
