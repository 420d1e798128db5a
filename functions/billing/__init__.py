# Subscription entitlement and webhook reconciliation
from .manager import SubscriptionManager
from .models import EventType, SubscriptionRecord, SubscriptionStatus, WebhookEvent
from .tiers import DEFAULT_CATALOG, Tier, TierCatalog

__all__ = [
    "DEFAULT_CATALOG",
    "EventType",
    "SubscriptionManager",
    "SubscriptionRecord",
    "SubscriptionStatus",
    "Tier",
    "TierCatalog",
    "WebhookEvent",
]
