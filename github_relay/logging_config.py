"""Logging for the relay.

Every record carries the request it belongs to (request id, method, relay
path and, once resolved, the target host) plus the relay event fields a
call passes as ``extra``. Only those named fields reach the output, so a
header dict or credential handed to a logger by mistake is never written.

Environment:
    LOG_LEVEL   DEBUG, INFO, WARNING or ERROR (default INFO)
    LOG_FORMAT  json or text (default json)

Usage:
    setup_logging()
    install_request_logging(app)

    logger.info("Following redirect", extra={"event": "redirect", "hop": 2})
    # {"timestamp": "...", "level": "INFO", "logger": "github_relay.forwarder",
    #  "message": "Following redirect", "request_id": "...", "method": "GET",
    #  "path": "/github.com/o/r", "target_host": "github.com",
    #  "event": "redirect", "hop": 2}
"""

import json
import logging
import os
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Optional

REQUEST_ID_HEADER = "X-Request-ID"

# Bound once per request by the middleware and the gateway.
REQUEST_FIELDS = ("request_id", "method", "path", "target_host")

# Attached to individual records through ``extra``.
EVENT_FIELDS = (
    "event",
    "hop",
    "redirect_host",
    "upstream_status",
    "status_code",
    "duration_ms",
)

_bound: ContextVar[dict] = ContextVar("relay_request_fields", default={})


def bind_request(**fields: Any) -> None:
    """Attach ``fields`` to every record logged for the current request."""
    unknown = set(fields) - set(REQUEST_FIELDS)
    if unknown:
        raise ValueError(f"Not a request field: {', '.join(sorted(unknown))}")
    _bound.set({**_bound.get(), **fields})


def unbind_request() -> None:
    _bound.set({})


def record_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Request and event fields for ``record``, in output order."""
    fields = {name: value for name, value in _bound.get().items() if value is not None}
    for name in EVENT_FIELDS:
        value = getattr(record, name, None)
        if value is not None:
            fields[name] = value
    return fields


def _timestamp(record: logging.LogRecord) -> str:
    return (
        time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(record.created))
        + f".{int(record.msecs):03d}Z"
    )


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": _timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(record_fields(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """``<timestamp> <LEVEL> [<logger>] [<request_id>] <message> key=value...``

    Method and path are left out; the access messages already spell them.
    """

    def format(self, record: logging.LogRecord) -> str:
        fields = record_fields(record)
        fields.pop("method", None)
        fields.pop("path", None)

        parts = [_timestamp(record), record.levelname, f"[{record.name}]"]
        request_id = fields.pop("request_id", None)
        if request_id:
            parts.append(f"[{request_id}]")
        parts.append(record.getMessage())
        parts.extend(f"{name}={value}" for name, value in fields.items())

        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: Optional[str] = None, format_type: Optional[str] = None) -> None:
    """Send all records to stderr in the chosen format.

    Args:
        level: Log level name. Defaults to LOG_LEVEL, then INFO.
        format_type: "json" or "text". Defaults to LOG_FORMAT, then "json".
    """
    level = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    format_type = (format_type or os.environ.get("LOG_FORMAT") or "json").lower()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(TextFormatter() if format_type == "text" else JSONFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level, logging.INFO))
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # urllib3 logs every pooled connection at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def install_request_logging(app) -> None:
    """Bind request fields, log each relay request once, echo X-Request-ID.

    Args:
        app: Flask application instance.
    """
    from flask import g, request

    logger = logging.getLogger("github_relay.http")

    @app.before_request
    def bind_request_fields():
        g.request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        g.request_started = time.monotonic()
        bind_request(request_id=g.request_id, method=request.method, path=request.path)

    @app.after_request
    def log_request(response):
        duration_ms = round((time.monotonic() - g.request_started) * 1000, 1)
        logger.info(
            f"{request.method} {request.path} -> {response.status_code}",
            extra={
                "event": "request_complete",
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        response.headers[REQUEST_ID_HEADER] = g.request_id
        return response

    @app.teardown_request
    def unbind_request_fields(exception=None):
        if exception is not None:
            logger.error(f"Request failed: {exception}", exc_info=exception)
        unbind_request()
