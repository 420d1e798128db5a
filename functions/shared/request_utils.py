"""Shared request utilities for API handlers."""

import base64
import json
import logging
from typing import Optional
from urllib.parse import parse_qsl

from shared.errors import ValidationError
from shared.types import APIGatewayEvent

logger = logging.getLogger(__name__)


def get_user_id(event: APIGatewayEvent) -> Optional[str]:
    """Extract the authenticated user id set by the API Gateway authorizer.

    SECURITY: Only trust requestContext.authorizer, which API Gateway fills
    after the authorizer runs. Never read identity from headers or the body.
    """
    authorizer = (event.get("requestContext") or {}).get("authorizer") or {}
    claims = authorizer.get("claims") or {}
    return authorizer.get("user_id") or claims.get("sub") or authorizer.get("principalId") or None


def get_raw_body(event: APIGatewayEvent) -> str:
    """Return the request body as text, decoding base64 if API Gateway encoded it."""
    body = event.get("body") or ""
    if event.get("isBase64Encoded") and body:
        body = base64.b64decode(body).decode("utf-8")
    return body


def parse_json_body(event: APIGatewayEvent) -> dict:
    """Parse a JSON object body. Empty bodies parse to {}."""
    raw = get_raw_body(event)
    if not raw:
        return {}
    try:
        body = json.loads(raw)
    except json.JSONDecodeError:
        raise ValidationError("Request body must be valid JSON") from None
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def parse_form_or_json_body(event: APIGatewayEvent) -> dict:
    """Parse an application/x-www-form-urlencoded or JSON body."""
    headers = {k.lower(): v for k, v in (event.get("headers") or {}).items()}
    content_type = headers.get("content-type", "")
    if "application/x-www-form-urlencoded" in content_type:
        return dict(parse_qsl(get_raw_body(event), keep_blank_values=True))
    return parse_json_body(event)


def get_query_param(event: APIGatewayEvent, name: str) -> Optional[str]:
    return (event.get("queryStringParameters") or {}).get(name)
