"""
Core data model: the per-user subscription record and the canonical
webhook event both provider pipelines normalize into.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

SUBSCRIPTION_SK = "SUBSCRIPTION"


def subscription_ref_attribute(provider: str) -> str:
    """Top-level item attribute (and GSI hash key) holding a provider's subscription id."""
    return f"{provider}_subscription_id"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def parse_iso(value) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass through a datetime), forcing UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def from_epoch(value) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class SubscriptionStatus(str, Enum):
    NONE = "NONE"
    TRIALING = "TRIALING"
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELLED = "CANCELLED"


class EventType(str, Enum):
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    TRIAL_WILL_END = "trial_will_end"


@dataclass(frozen=True)
class SubscriptionRecord:
    """Canonical subscription state for one user.

    Records are values: every mutation produces a new record through
    `bump()`, which also advances `version`. Callers commit the result with
    the repository's compare-and-set against the version they read.
    """

    user_id: str
    tier: str
    content_limit: int
    email: Optional[str] = None
    is_active: bool = True
    status: SubscriptionStatus = SubscriptionStatus.NONE
    plan_start_date: Optional[datetime] = None
    plan_end_date: Optional[datetime] = None
    trial_end_date: Optional[datetime] = None
    has_lifetime_access: bool = False
    used_content_slots: int = 0
    external_refs: dict = field(default_factory=dict)
    last_applied_event_timestamp: dict = field(default_factory=dict)
    payment_failures: int = 0
    payment_ref: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    version: int = 0

    @classmethod
    def new(cls, user_id: str, free_tier, now: datetime, email: Optional[str] = None) -> "SubscriptionRecord":
        return cls(
            user_id=user_id,
            email=email,
            tier=free_tier.tier_id,
            content_limit=free_tier.content_limit,
            plan_start_date=now,
        )

    @property
    def remaining_slots(self) -> int:
        return max(0, self.content_limit - self.used_content_slots)

    def bump(self, **changes) -> "SubscriptionRecord":
        """Return a copy with `changes` applied and the version advanced."""
        return replace(self, version=self.version + 1, **changes)

    def to_item(self) -> dict:
        """Convert to a DynamoDB item (None values omitted)."""
        item = {
            "pk": self.user_id,
            "sk": SUBSCRIPTION_SK,
            "email": self.email,
            "tier": self.tier,
            "is_active": self.is_active,
            "status": self.status.value,
            "plan_start_date": to_iso(self.plan_start_date),
            "plan_end_date": to_iso(self.plan_end_date),
            "trial_end_date": to_iso(self.trial_end_date),
            "has_lifetime_access": self.has_lifetime_access,
            "content_limit": self.content_limit,
            "used_content_slots": self.used_content_slots,
            "external_refs": dict(self.external_refs),
            "last_applied_event_timestamp": {
                provider: to_iso(ts) for provider, ts in self.last_applied_event_timestamp.items()
            },
            "payment_failures": self.payment_failures,
            "payment_ref": self.payment_ref,
            "cancellation_reason": self.cancellation_reason,
            "cancelled_at": to_iso(self.cancelled_at),
            "version": self.version,
        }
        for provider, ref in self.external_refs.items():
            if ref:
                item[subscription_ref_attribute(provider)] = ref
        return {k: v for k, v in item.items() if v is not None}

    @classmethod
    def from_item(cls, item: dict) -> "SubscriptionRecord":
        return cls(
            user_id=item["pk"],
            email=item.get("email"),
            tier=item["tier"],
            is_active=bool(item.get("is_active", True)),
            status=SubscriptionStatus(item.get("status", SubscriptionStatus.NONE.value)),
            plan_start_date=parse_iso(item.get("plan_start_date")),
            plan_end_date=parse_iso(item.get("plan_end_date")),
            trial_end_date=parse_iso(item.get("trial_end_date")),
            has_lifetime_access=bool(item.get("has_lifetime_access", False)),
            content_limit=int(item["content_limit"]),
            used_content_slots=int(item.get("used_content_slots", 0)),
            external_refs=dict(item.get("external_refs") or {}),
            last_applied_event_timestamp={
                provider: parse_iso(ts)
                for provider, ts in (item.get("last_applied_event_timestamp") or {}).items()
            },
            payment_failures=int(item.get("payment_failures", 0)),
            payment_ref=item.get("payment_ref"),
            cancellation_reason=item.get("cancellation_reason"),
            cancelled_at=parse_iso(item.get("cancelled_at")),
            version=int(item.get("version", 0)),
        )


class WebhookEvent(BaseModel):
    """Provider-independent event produced by normalization."""

    model_config = ConfigDict(frozen=True)

    provider: str
    external_event_id: str
    external_subscription_id: Optional[str] = None
    # Absent on Stripe subscription events whose customer is an unexpanded id
    customer_email: Optional[str] = None
    event_type: EventType
    mapped_tier: Optional[str] = None
    period_end: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    occurred_at: datetime

    @field_validator("customer_email")
    @classmethod
    def _normalize_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip().lower()
        if "@" not in value:
            raise ValueError("customer_email must be an email address")
        return value

    @field_validator("occurred_at", "period_end", "trial_end")
    @classmethod
    def _force_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return parse_iso(value)

    @property
    def ledger_key(self) -> tuple[str, str]:
        return self.provider, self.external_event_id
