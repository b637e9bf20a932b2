"""Logging setup for the dashboard.

Standard library logging wired through ``dictConfig``. Three output
formats are available (``LOG_FORMAT``):

- ``text``: one human readable line per record
- ``structured``: text plus request id and rate limit context
- ``json``: one JSON object per line for log shippers

The request id set by ``RequestIdMiddleware`` is stored in a context
variable so that log lines emitted deep inside the limiter still carry it.
"""

import json
import logging
import logging.config
import sys
import traceback
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Dict, Optional

from dashboard.app.core.config import settings

_request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Attributes every LogRecord has; anything else came in through ``extra=``
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime"}

# Context attributes promoted to top-level JSON keys
CONTEXT_FIELDS = (
    "request_id",
    "client_ip",
    "identifier",
    "limit_name",
    "path",
    "method",
    "status_code",
    "duration_ms",
)

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
STRUCTURED_FORMAT = (
    TEXT_FORMAT
    + " - request_id=%(request_id)s limit_name=%(limit_name)s identifier=%(identifier)s"
)


def set_request_id(request_id: Optional[str]) -> None:
    """Bind a request ID to the current execution context."""
    _request_id_var.set(request_id)


def get_current_request_id() -> Optional[str]:
    return _request_id_var.get()


class JSONFormatter(logging.Formatter):
    """Render each record as a single JSON object.

    Context fields become top-level keys, other ``extra=`` values are
    grouped under ``"extra"``.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        payload: Dict[str, Any] = {
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

        extra: Dict[str, Any] = {}
        for key, value in vars(record).items():
            if key in CONTEXT_FIELDS:
                if value is not None:
                    payload[key] = value
            elif key not in _RECORD_ATTRS:
                extra[key] = value
        if extra:
            payload["extra"] = extra

        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Make every context field present on the record.

    ``request_id`` falls back to the value bound by the request middleware;
    the other fields default to None so format strings never fail.
    """

    CONTEXT_DEFAULTS: Dict[str, Any] = dict.fromkeys(CONTEXT_FIELDS)

    def filter(self, record: logging.LogRecord) -> bool:
        for field, default in self.CONTEXT_DEFAULTS.items():
            if not hasattr(record, field):
                setattr(record, field, default)
        if record.request_id is None:
            record.request_id = get_current_request_id()
        return True


def _stream_handler(level: str, formatter: str, stream) -> Dict[str, Any]:
    return {
        "class": "logging.StreamHandler",
        "level": level,
        "formatter": formatter,
        "stream": stream,
        "filters": ["context"],
    }


def get_logging_config() -> Dict[str, Any]:
    """Build the ``dictConfig`` dictionary from settings.

    Records at ERROR and above are also written to stderr.
    """
    log_format = getattr(settings, "log_format", "text").lower()
    log_level = getattr(settings, "log_level", "INFO").upper()

    formatters: Dict[str, Any] = {
        "standard": {"format": TEXT_FORMAT},
        "structured": {"format": STRUCTURED_FORMAT},
    }
    if log_format == "json":
        formatters["json"] = {"()": "dashboard.app.core.logging.JSONFormatter"}
        formatter = "json"
    elif log_format == "structured":
        formatter = "structured"
    else:
        formatter = "standard"

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": {"context": {"()": "dashboard.app.core.logging.ContextFilter"}},
        "handlers": {
            "console": _stream_handler(log_level, formatter, sys.stdout),
            "error_console": _stream_handler("ERROR", formatter, sys.stderr),
        },
        "loggers": {
            "dashboard": {
                "level": log_level,
                "handlers": ["console", "error_console"],
                "propagate": False,
            },
            "uvicorn": {"level": log_level, "handlers": ["console"], "propagate": False},
        },
        "root": {"level": log_level, "handlers": ["console"]},
    }


def setup_logging() -> None:
    logging.config.dictConfig(get_logging_config())

    # Connection pool chatter is not useful at INFO
    logging.getLogger("redis").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str = "dashboard") -> logging.Logger:
    return logging.getLogger(name)


def get_log_context(
    request_id: Optional[str] = None,
    identifier: Optional[str] = None,
    limit_name: Optional[str] = None,
    **extra
) -> Dict[str, Any]:
    """Collect non-None context values for a logging ``extra=`` argument.

    Example:
        >>> logger.warning(
        ...     "Rate limit exceeded",
        ...     extra=get_log_context(identifier="10.0.0.1", limit_name="mutation:ip")
        ... )
    """
    context = {"request_id": request_id, "identifier": identifier, "limit_name": limit_name}
    context.update(extra)
    return {key: value for key, value in context.items() if value is not None}
