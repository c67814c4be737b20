"""Logging setup for the storefront.

Plain text by default; ``LOG_FORMAT=structured`` appends the rate limit
context to each line and ``LOG_FORMAT=json`` emits one JSON object per
record for log aggregation.
"""

import json
import logging
import logging.config
import sys
import traceback
from datetime import datetime
from typing import Any, Dict, Optional

from storefront.app.core.config import settings

# Attributes attached to rate limit log records via extra=
CONTEXT_FIELDS = (
    "identifier",
    "policy",
    "path",
    "method",
    "status_code",
    "retry_after",
)

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
STRUCTURED_FORMAT = (
    TEXT_FORMAT + " - identifier=%(identifier)s - policy=%(policy)s - path=%(path)s"
)


class JSONFormatter(logging.Formatter):
    """Render a record as a single JSON object.

    Context fields are emitted at the top level when set; any other
    attribute passed through ``extra`` lands under ``"extra"``.
    """

    # LogRecord attributes that never go into "extra"
    RESERVED_ATTRS = frozenset((
        "name", "msg", "args", "levelname", "levelno", "pathname",
        "filename", "module", "exc_info", "exc_text", "stack_info",
        "lineno", "funcName", "created", "msecs", "relativeCreated",
        "thread", "threadName", "processName", "process", "message",
        "asctime", "taskName",
    ))

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        log_data: Dict[str, Any] = {
            "timestamp": datetime.now().astimezone().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        for key, value in record.__dict__.items():
            if key in self.RESERVED_ATTRS:
                continue
            if key in CONTEXT_FIELDS:
                if value is not None:
                    log_data[key] = value
            else:
                log_data.setdefault("extra", {})[key] = value

        if record.exc_info and record.exc_info != (None, None, None):
            log_data["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Default missing context fields to None so format strings never fail."""

    def filter(self, record: logging.LogRecord) -> bool:
        for field in CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, None)
        return True


def get_logging_config() -> Dict[str, Any]:
    """Build the dictConfig for the configured log format and level."""
    log_format = settings.log_format.lower()
    log_level = settings.log_level.upper()

    formatters: Dict[str, Any] = {
        "standard": {"format": TEXT_FORMAT},
        "structured": {"format": STRUCTURED_FORMAT},
    }
    if log_format == "json":
        formatters["json"] = {"()": "storefront.app.core.logging.JSONFormatter"}
        formatter = "json"
    elif log_format == "structured":
        formatter = "structured"
    else:
        formatter = "standard"

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": {
            "context": {"()": "storefront.app.core.logging.ContextFilter"},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": formatter,
                "stream": sys.stdout,
                "filters": ["context"],
            },
        },
        "loggers": {
            "storefront": {"level": log_level, "handlers": ["console"], "propagate": False},
            "uvicorn": {"level": log_level, "handlers": ["console"], "propagate": False},
        },
        "root": {"level": log_level, "handlers": ["console"]},
    }


def setup_logging() -> None:
    """Configure logging for the application."""
    logging.config.dictConfig(get_logging_config())
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str = "storefront") -> logging.Logger:
    return logging.getLogger(name)


def get_log_context(
    identifier: Optional[str] = None,
    policy: Optional[str] = None,
    path: Optional[str] = None,
    method: Optional[str] = None,
    **extra
) -> Dict[str, Any]:
    """Build an ``extra=`` dict for a log call, dropping None values.

    Example:
        >>> logger.warning(
        ...     "Rate limit exceeded",
        ...     extra=get_log_context(identifier="ip_10.0.0.1_1mo", policy="auth")
        ... )
    """
    context = {
        "identifier": identifier,
        "policy": policy,
        "path": path,
        "method": method,
    }
    context.update(extra)
    return {k: v for k, v in context.items() if v is not None}
