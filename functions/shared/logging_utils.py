"""
JSON log lines for CloudWatch Logs Insights.

Every line carries the invocation request id so a webhook delivery or an
API call can be traced across the billing and shared modules.
"""

import json
import logging
import os
import uuid
from contextvars import ContextVar
from typing import Optional

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Attributes every LogRecord carries; anything else arrived through `extra=`.
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, with `extra=` fields lifted to the top level."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": request_id_var.get(""),
            "function_name": os.environ.get("AWS_LAMBDA_FUNCTION_NAME", ""),
        }

        log_entry.update(
            (key, value) for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        )

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def configure_structured_logging(level: Optional[int] = None) -> logging.Logger:
    """
    Route the root logger through a single JSON handler.

    Each handler calls this at the start of an invocation; without an
    explicit level the LOG_LEVEL environment variable decides (INFO when unset).
    """
    if level is None:
        level = logging.getLevelName(os.environ.get("LOG_LEVEL", "INFO").upper())
        if not isinstance(level, int):
            level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(handler)

    return root_logger


def set_request_id(event: dict) -> str:
    """Bind the API Gateway request id (or x-request-id, or a fresh uuid) to this invocation."""
    headers = event.get("headers") or {}
    request_id = (
        (event.get("requestContext") or {}).get("requestId")
        or headers.get("x-request-id")
        or headers.get("X-Request-Id")
        or str(uuid.uuid4())
    )

    request_id_var.set(request_id)
    return request_id


def mask_email(email: Optional[str]) -> str:
    """Mask the local part of an email for logging (jane@x.com -> j***@x.com)."""
    if not email or "@" not in email:
        return "unknown"
    local, domain = email.split("@", 1)
    return f"{local[:1]}***@{domain}"


def log_api_request(
    logger: logging.Logger,
    method: str,
    path: str,
    status_code: int,
    latency_ms: float,
    user_id: Optional[str] = None,
) -> None:
    """One INFO line per entitlement API call (method, path, status, latency, caller)."""
    logger.info(
        f"{method} {path} -> {status_code}",
        extra={
            "http_method": method,
            "path": path,
            "status_code": status_code,
            "latency_ms": latency_ms,
            "user_id": user_id or "anonymous",
        }
    )
