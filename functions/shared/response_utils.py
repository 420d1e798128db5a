"""
API Gateway proxy responses.

Every handler returns JSON through `_respond`; errors share one envelope
(`{"error": {"code", "message", "details"?}}`) so dashboard and provider
callers can branch on `code` without parsing prose.
"""

import json
import os
from decimal import Decimal
from typing import Any, Dict, List, Optional

from shared.types import LambdaResponse

ALLOWED_ORIGINS: List[str] = ["https://nemurium.com", "https://app.nemurium.com"]
if os.environ.get("ALLOW_DEV_CORS") == "true":
    ALLOWED_ORIGINS.append("http://localhost:3000")

_CORS_BASE = {
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Access-Control-Allow-Credentials": "true",
}


def get_cors_headers(origin: Optional[str]) -> Dict[str, str]:
    """CORS headers for a dashboard origin; nothing for anyone else (webhooks included)."""
    if not origin or origin not in ALLOWED_ORIGINS:
        return {}
    return {"Access-Control-Allow-Origin": origin, **_CORS_BASE}


def get_origin(event: dict) -> Optional[str]:
    headers = event.get("headers") or {}
    return headers.get("origin") or headers.get("Origin")


def decimal_default(obj: Any) -> Any:
    """json.dumps hook: DynamoDB numbers come back as Decimal."""
    if isinstance(obj, Decimal):
        return int(obj) if obj == obj.to_integral_value() else float(obj)
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def _respond(
    status_code: int,
    payload: Any,
    origin: Optional[str],
    extra_headers: Optional[Dict[str, str]],
) -> LambdaResponse:
    headers = {"Content-Type": "application/json", **get_cors_headers(origin)}
    headers.update(extra_headers or {})
    return {
        "statusCode": status_code,
        "headers": headers,
        "body": json.dumps(payload, default=decimal_default),
    }


def error_response(
    status_code: int,
    code: str,
    message: str,
    headers: Optional[Dict[str, str]] = None,
    details: Optional[Dict[str, Any]] = None,
    retry_after: Optional[int] = None,
    origin: Optional[str] = None,
) -> LambdaResponse:
    """
    Build an error response.

    `code` is the machine-readable snake_case identifier. A `retry_after`
    (seconds) is sent as the Retry-After header so providers back off before
    redelivering.
    """
    error: Dict[str, Any] = {"code": code, "message": message}
    if details:
        error["details"] = details

    extra = dict(headers or {})
    if retry_after is not None:
        extra["Retry-After"] = str(retry_after)

    return _respond(status_code, {"error": error}, origin, extra)


def api_error_response(error, origin: Optional[str] = None) -> LambdaResponse:
    """Render an APIError raised by the entitlement or webhook layers."""
    return error_response(
        error.status_code,
        error.code,
        error.message,
        details=error.details or None,
        origin=origin,
    )


def success_response(
    data: Any,
    status_code: int = 200,
    headers: Optional[Dict[str, str]] = None,
    origin: Optional[str] = None,
) -> LambdaResponse:
    return _respond(status_code, data, origin, headers)
