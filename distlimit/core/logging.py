"""Structured logging configuration for the rate limiter.

This module provides a structured logging setup using Python's standard
logging module with JSON formatting for production environments.
"""

import json
import logging
import logging.config
import sys
import traceback
from datetime import datetime
from typing import Any, Dict, Optional

from distlimit.core.config import settings


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Outputs log records as JSON objects for consumption by log aggregation
    systems like ELK Stack or Grafana Loki.

    Attributes:
        fields: List of fields to include in JSON output
    """

    # Standard fields always included
    STANDARD_FIELDS = ["name", "levelname", "message", "timestamp"]

    # Contextual fields for rate limit decisions
    CONTEXT_FIELDS = [
        "identifier",    # Limited subject (user, IP, API key)
        "region",        # Region name in multi-region mode
        "reason",        # Decision reason (ratelimit, blacklist, timeout)
        "prefix",        # Key prefix of the limiter
        "duration_ms",   # Decision latency in milliseconds
    ]

    _RESERVED = (
        "name", "msg", "args", "levelname", "levelno", "pathname",
        "filename", "module", "exc_info", "exc_text", "stack_info",
        "lineno", "funcName", "created", "msecs", "relativeCreated",
        "thread", "threadName", "processName", "process", "message",
        "asctime", "timestamp", "logger", "level", "source", "taskName",
    )

    def __init__(
        self,
        fields: Optional[list] = None,
        datefmt: Optional[str] = None,
    ):
        super().__init__(datefmt=datefmt)
        self.fields = fields or (self.STANDARD_FIELDS + self.CONTEXT_FIELDS)

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON string representation of the log record
        """
        log_data: Dict[str, Any] = {}

        record.message = record.getMessage()

        log_data["timestamp"] = datetime.now().astimezone().isoformat()
        log_data["level"] = record.levelname
        log_data["logger"] = record.name
        log_data["message"] = record.message

        log_data["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        for field in self.CONTEXT_FIELDS:
            if hasattr(record, field):
                value = getattr(record, field)
                if value is not None and value != "-":
                    log_data[field] = value

        for key, value in record.__dict__.items():
            if key in self._RESERVED or key in self.CONTEXT_FIELDS:
                continue
            log_data.setdefault("extra", {})[key] = value

        if record.exc_info and record.exc_info != (None, None, None):
            log_data["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Logging filter that adds contextual fields to log records.

    Adds default values for identifier, region and the other rate limit
    fields if not already present in the log record.
    """

    CONTEXT_DEFAULTS = {
        "identifier": None,
        "region": None,
        "reason": None,
        "prefix": None,
        "duration_ms": None,
    }

    def filter(self, record: logging.LogRecord) -> bool:
        for field, default in self.CONTEXT_DEFAULTS.items():
            if not hasattr(record, field):
                setattr(record, field, default)
        return True


def get_logging_config() -> Dict[str, Any]:
    """Get logging configuration dictionary.

    Returns:
        Logging configuration dict compatible with logging.config.dictConfig
    """
    log_format = getattr(settings, "log_format", "text").lower()
    log_level = getattr(settings, "log_level", "INFO").upper()

    formatters = {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        },
        "structured": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s - identifier=%(identifier)s - region=%(region)s - reason=%(reason)s"
        },
    }

    if log_format == "json":
        formatters["json"] = {
            "()": "distlimit.core.logging.JSONFormatter",
        }
        default_formatter = "json"
    else:
        default_formatter = "structured" if log_format == "structured" else "standard"

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": default_formatter,
            "stream": sys.stdout,
            "filters": ["context"],
        },
        "error_console": {
            "class": "logging.StreamHandler",
            "level": "ERROR",
            "formatter": default_formatter,
            "stream": sys.stderr,
            "filters": ["context"],
        },
    }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": {
            "context": {
                "()": "distlimit.core.logging.ContextFilter",
            },
        },
        "handlers": handlers,
        "loggers": {
            "distlimit": {
                "level": log_level,
                "handlers": ["console", "error_console"],
                "propagate": False,
            },
        },
    }


def setup_logging() -> None:
    """Configure logging for the rate limiter.

    Libraries embedding distlimit usually configure logging themselves; call
    this from scripts and services that want the package defaults.
    """
    logging.config.dictConfig(get_logging_config())
    logging.getLogger("redis").setLevel(logging.WARNING)


def get_logger(name: str = "distlimit") -> logging.Logger:
    """Get a logger instance with the specified name."""
    return logging.getLogger(name)


def get_log_context(
    identifier: Optional[str] = None,
    region: Optional[str] = None,
    reason: Optional[str] = None,
    prefix: Optional[str] = None,
    **extra
) -> Dict[str, Any]:
    """Create a log context dictionary for use with extra parameter.

    Example:
        >>> logger.warning(
        ...     "Region failed",
        ...     extra=get_log_context(identifier="user-1", region="eu-west")
        ... )
    """
    context = {
        "identifier": identifier,
        "region": region,
        "reason": reason,
        "prefix": prefix,
    }
    context.update(extra)
    return {k: v for k, v in context.items() if v is not None}
