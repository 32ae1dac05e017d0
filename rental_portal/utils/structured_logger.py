"""
Structured logging for the portal process.

- JSONFormatter for machine-readable output, PlainFormatter for development
- Request ID and account email carried in contextvars (async-safe) and
  stamped onto every record

Usage:
    from rental_portal.utils.structured_logger import setup_structured_logging, set_request_id

    setup_structured_logging(level="INFO", json_output=False)
    set_request_id("abc-123")
    logging.getLogger(__name__).info("Login submitted")
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

DEFAULT_SERVICE_NAME = "rental-portal"

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
account_email_var: ContextVar[Optional[str]] = ContextVar('account_email', default=None)


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def clear_request_id() -> None:
    request_id_var.set(None)


def set_account_email(email: str) -> None:
    """Tag subsequent log records in this context with the account being acted on."""
    account_email_var.set(email)


def get_account_email() -> Optional[str]:
    return account_email_var.get()


def clear_account_email() -> None:
    account_email_var.set(None)


# LogRecord attributes that are not user-supplied extras
_STANDARD_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'message', 'taskName'
}


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    {
        "timestamp": "2024-01-21T15:30:00.123456Z",
        "level": "WARNING",
        "logger": "rental_portal.services.security_store",
        "message": "Account locked: a@b.com",
        "request_id": "abc-123",
        "account": "a@b.com",
        "service": "rental-portal",
        "extra": {...}
    }
    """

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": get_request_id(),
            "account": get_account_email(),
            "service": self.service_name,
            "source": {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        extra_fields = {}
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith('_'):
                continue
            try:
                json.dumps(value)
                extra_fields[key] = value
            except (TypeError, ValueError):
                extra_fields[key] = str(value)

        if extra_fields:
            log_data["extra"] = extra_fields

        return json.dumps(log_data, default=str)


class PlainFormatter(logging.Formatter):
    """timestamp - logger - level - [request_id] message"""

    def format(self, record: logging.LogRecord) -> str:
        request_id = get_request_id()
        prefix = f"[{request_id}] " if request_id else ""

        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')
        line = f"{timestamp} - {record.name} - {record.levelname} - {prefix}{record.getMessage()}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)

        return line


def setup_structured_logging(
    level: str = "INFO",
    json_output: bool = True,
    service_name: str = DEFAULT_SERVICE_NAME
) -> None:
    """Configure the root logger. Call once at startup.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: JSON lines when True, plain text otherwise
        service_name: Value of the "service" field in JSON output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JSONFormatter(service_name=service_name))
    else:
        handler.setFormatter(PlainFormatter())

    root_logger.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
