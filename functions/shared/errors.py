"""
Standardized errors for the entitlement API and webhook endpoints.

Every error maps onto an HTTP status so provider retry semantics are
respected: 4xx means "do not retry", 5xx means "retry later".
"""

import json
from typing import Optional


class APIError(Exception):
    """Base class for API errors."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        details: Optional[dict] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> dict:
        """Convert to API Gateway response format."""
        body = {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }
        if self.details:
            body["error"]["details"] = self.details

        return {
            "statusCode": self.status_code,
            "headers": {"Content-Type": "application/json"},
            "body": json.dumps(body),
        }


class ValidationError(APIError):
    """Raised when a webhook body does not match the provider schema."""

    def __init__(self, message: str = "Invalid webhook payload", details: Optional[dict] = None):
        super().__init__(
            code="invalid_payload",
            message=message,
            status_code=400,
            details=details,
        )


class MappingError(APIError):
    """Raised when a provider product/price id has no internal tier."""

    def __init__(self, provider: str, external_id: str):
        super().__init__(
            code="unmapped_product",
            message=f"Unknown {provider} product: {external_id}",
            status_code=400,
        )
        self.provider = provider
        self.external_id = external_id


class AuthError(APIError):
    """Raised when the caller identity is missing or invalid."""

    def __init__(self, message: str = "Must be logged in"):
        super().__init__(
            code="unauthorized",
            message=message,
            status_code=401,
        )


class LimitExceeded(APIError):
    """Raised when an entitlement check denies a content request."""

    def __init__(self, message: str, reason: str = "limit_reached"):
        super().__init__(
            code="forbidden",
            message=message,
            status_code=403,
            details={"reason": reason},
        )
        self.reason = reason


class BadRequestError(APIError):
    """Raised for invalid tier transitions and oversized uploads."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            code="bad_request",
            message=message,
            status_code=400,
            details=details,
        )


class UnknownTierError(APIError):
    """Raised when a tier id is not in the catalog."""

    def __init__(self, tier_id: str):
        super().__init__(
            code="unknown_tier",
            message=f"Unknown tier: {tier_id}",
            status_code=400,
        )
        self.tier_id = tier_id


class TransientError(APIError):
    """Raised when storage conflicts persist past the retry budget."""

    def __init__(self, message: str = "Temporary error, please retry"):
        super().__init__(
            code="temporary_error",
            message=message,
            status_code=503,
        )


class StaleEvent(Exception):
    """Event is not newer than the last applied event for its provider.

    Informational only; the ingestor acknowledges it without changing state.
    """

    def __init__(self, occurred_at, last_applied):
        super().__init__(f"{occurred_at.isoformat()} <= {last_applied.isoformat()}")
        self.occurred_at = occurred_at
        self.last_applied = last_applied


class InvalidTransition(Exception):
    """Event is not legal for the record's current subscription status."""

    def __init__(self, status: str, event_type: str):
        super().__init__(f"{event_type} not allowed from {status}")
        self.status = status
        self.event_type = event_type
