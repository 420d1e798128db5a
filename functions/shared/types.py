"""
Shared Type Definitions for Lambda Handlers.

Provides TypedDict definitions for API Gateway events and the
entitlement API response bodies.
"""

from typing import TypedDict, Optional, Any


class APIGatewayEvent(TypedDict, total=False):
    """API Gateway proxy event structure."""

    httpMethod: str
    headers: dict[str, str]
    pathParameters: Optional[dict[str, str]]
    queryStringParameters: Optional[dict[str, str]]
    body: Optional[str]
    requestContext: dict[str, Any]
    resource: str
    path: str
    isBase64Encoded: bool


class LambdaResponse(TypedDict):
    """Standard Lambda response structure."""

    statusCode: int
    headers: dict[str, str]
    body: str


class SubscriptionSummary(TypedDict, total=False):
    """Body returned by getCurrentSubscription."""

    tier: str
    tierName: str
    status: str
    isActive: bool
    remainingSlots: int
    isTrialActive: bool
    daysUntilBilling: int
    canUpgrade: bool
    hasLifetimeAccess: bool
    planEndDate: Optional[str]
    trialEndDate: Optional[str]


class UpgradeResult(TypedDict):
    """Body returned by upgradeSubscription."""

    success: bool
    newTier: str
    prorationAmount: int
    prorationFormatted: str


class CreateContentResult(TypedDict):
    """Body returned by createContent."""

    success: bool
    contentId: str
    remainingSlots: int


class ContentStats(TypedDict):
    """Body returned by getContentStats."""

    totalContent: int
    usedSlots: int
    remainingSlots: int
    contentLimit: int
    allowedContentTypes: list[str]
    maxFileSize: int
