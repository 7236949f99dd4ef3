"""Structured logging utilities for the relay Lambda.

JSON-formatted log lines with request context, suitable for CloudWatch
Logs Insights queries.

SECURITY NOTES:
- Form submissions carry PII. Use mask_pii() for any field value that
  ends up in a log line.
- Never log the mailer API key or full request bodies.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import traceback
from contextvars import ContextVar
from datetime import datetime
from datetime import timezone
from typing import Any
from typing import MutableMapping
from typing import Optional


def mask_pii(value: str, visible_chars: int = 4) -> str:
    """Mask a free-text value, keeping only its first few characters."""
    if not value:
        return "***"
    if len(value) <= visible_chars:
        return value[0] + "***"
    return value[:visible_chars] + "***"


def preview_text(value: str | bytes, limit: int = 200) -> str:
    """Return a bounded preview of a response body for diagnostics."""
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    return value[:limit]


request_id: ContextVar[str] = ContextVar("request_id", default="")
correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


class StructuredLogFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        req_id = request_id.get()
        if req_id:
            log_data["request_id"] = req_id

        corr_id = correlation_id.get()
        if corr_id:
            log_data["correlation_id"] = corr_id

        if record.levelno == logging.DEBUG or record.levelno >= logging.ERROR:
            log_data["source"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info),
            }

        context = getattr(record, "context", None)
        if isinstance(context, dict) and context:
            log_data["context"] = context

        return json.dumps(log_data, default=str)


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that folds adapter context and call extras together.

    Everything passed through ``extra=`` ends up under the ``context``
    key of the JSON line rather than as loose record attributes.
    """

    def process(
        self,
        msg: str,
        kwargs: MutableMapping[str, Any],
    ) -> tuple[str, MutableMapping[str, Any]]:
        context: dict[str, Any] = {}
        if self.extra:
            context.update(self.extra)
        context.update(kwargs.pop("extra", None) or {})
        kwargs["extra"] = {"context": context}
        return msg, kwargs


def configure_logging(level: Optional[str] = None, debug: bool = False) -> None:
    """Configure structured logging for Lambda execution.

    Args:
        level: Log level name. Defaults to DEBUG when ``debug`` is set,
            otherwise the LOG_LEVEL environment variable or INFO.
        debug: Whether relay diagnostics are enabled.
    """
    log_level: str = level or ("DEBUG" if debug else None) or os.getenv("LOG_LEVEL") or "INFO"

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredLogFormatter())
    root_logger.addHandler(handler)

    # Reduce noise from libraries
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("python_multipart").setLevel(logging.WARNING)


def get_logger(name: str, **extra: Any) -> ContextLogger:
    """Get a context-aware logger."""
    logger = logging.getLogger(name)
    return ContextLogger(logger, extra)


def set_request_context(
    req_id: Optional[str] = None,
    corr_id: Optional[str] = None,
) -> None:
    """Set request context for logging.

    Call this at the start of each invocation; every log line of the
    request then carries the ids.
    """
    if req_id:
        request_id.set(req_id)
    if corr_id:
        correlation_id.set(corr_id)


def clear_request_context() -> None:
    """Clear request context after the invocation."""
    request_id.set("")
    correlation_id.set("")


def log_lambda_event(
    logger: ContextLogger,
    event: dict[str, Any],
    content_type: str,
) -> None:
    """Log the shape of an inbound event at DEBUG level (never the body)."""
    body = event.get("body") or ""
    logger.debug(
        "Lambda event received",
        extra={
            "http_method": event.get("httpMethod"),
            "path": event.get("path"),
            "content_type": content_type,
            "is_base64_encoded": bool(event.get("isBase64Encoded")),
            "body_length": len(body),
        },
    )


def log_response(
    logger: ContextLogger,
    status_code: int,
    duration_ms: Optional[float] = None,
) -> None:
    """Log the status of the response returned to the caller."""
    log_data: dict[str, Any] = {"status_code": status_code}
    if duration_ms is not None:
        log_data["duration_ms"] = round(duration_ms, 2)

    level = logging.INFO if status_code < 400 else logging.WARNING
    logger.log(level, "Lambda response", extra=log_data)


def enable_debug(enabled: bool, name: str = "mailer_relay") -> None:
    """Turn relay diagnostics on or off for the package loggers.

    Warm Lambda containers are reused across invocations, so the level
    is reset explicitly when debugging is off.
    """
    logging.getLogger(name).setLevel(logging.DEBUG if enabled else logging.NOTSET)
