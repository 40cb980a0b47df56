"""
Logging configuration for Slack Import.

Every module logs through ``logging.getLogger(__name__)``; this module wires
the root logger once using dictConfig so that the CLI, the API and the tests
all share the same format.

Environment Variables:
    LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Defaults to INFO if not set or invalid.
    SLACK_IMPORT_LOG_FILE: Optional path of a rotating log file. Useful for
               long imports, where the per-record warnings are worth keeping.

Usage:
    from slack_import.logger_config import setup_logging
    setup_logging()  # Uses LOG_LEVEL env var, defaults to INFO

    # Or override explicitly:
    setup_logging(level=logging.DEBUG, log_file="import.log")
"""

import logging
import logging.config
import os
from typing import Optional

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Per-record decisions are logged at DEBUG by the ETL modules; keep the
# sqlite/http noise of dependencies at WARNING unless explicitly asked for.
_QUIET_LOGGERS = ("httpx", "uvicorn.access")


def get_log_level() -> int:
    """
    Get log level from LOG_LEVEL environment variable.

    Supports: DEBUG, INFO, WARNING, ERROR, CRITICAL (case-insensitive).
    Defaults to INFO if not set or invalid.

    Returns:
        Logging level constant (e.g., logging.INFO).
    """
    level_name = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(level_name)

    if not isinstance(level, int):
        return logging.INFO

    return level


def setup_logging(
    level: Optional[int] = None,
    format_string: Optional[str] = None,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure logging for the importer using dictConfig.

    Safe to call more than once; each call replaces the previous handlers.

    Args:
        level: Logging level. If None, reads from LOG_LEVEL env var (default: INFO).
        format_string: Optional custom format string.
        log_file: Optional file path to write logs to (with rotation). Falls back
            to the SLACK_IMPORT_LOG_FILE env var.
    """
    if level is None:
        level = get_log_level()

    if format_string is None:
        format_string = DEFAULT_FORMAT

    if log_file is None:
        log_file = os.getenv("SLACK_IMPORT_LOG_FILE") or None

    config: dict = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": format_string,
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "standard",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            name: {"level": max(level, logging.WARNING)} for name in _QUIET_LOGGERS
        },
        "root": {
            "level": level,
            "handlers": ["console"],
        },
    }

    if log_file:
        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": level,
            "formatter": "standard",
            "filename": log_file,
            "maxBytes": 10_485_760,  # 10 MB
            "backupCount": 5,
            "encoding": "utf-8",
        }
        config["root"]["handlers"].append("file")

    logging.config.dictConfig(config)
