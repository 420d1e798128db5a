"""
Subscription business rules.

Every operation here is synchronous and deterministic given the injected
clock. Mutating operations return a new SubscriptionRecord (version already
advanced) and never write; callers commit through the repository's
compare-and-set.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from shared.constants import BILLING_PERIOD_DAYS
from shared.errors import BadRequestError, InvalidTransition, ValidationError

from billing.models import EventType, SubscriptionRecord, SubscriptionStatus, WebhookEvent, utc_now
from billing.proration import calculate_proration, days_remaining
from billing.tiers import DEFAULT_CATALOG, Tier, TierCatalog

logger = logging.getLogger(__name__)

BILLING_PERIOD = timedelta(days=BILLING_PERIOD_DAYS)

_LIVE = frozenset({SubscriptionStatus.TRIALING, SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE})
_ANY = frozenset(SubscriptionStatus)

# Statuses from which each event type may be applied. Subscription
# created/updated are accepted from anywhere: the provider is authoritative.
ALLOWED_FROM = {
    EventType.SUBSCRIPTION_CREATED: _ANY,
    EventType.SUBSCRIPTION_UPDATED: _ANY,
    EventType.SUBSCRIPTION_CANCELLED: _LIVE,
    EventType.PAYMENT_SUCCEEDED: _LIVE,
    EventType.PAYMENT_FAILED: _LIVE,
    EventType.TRIAL_WILL_END: frozenset({SubscriptionStatus.TRIALING, SubscriptionStatus.ACTIVE}),
}


class DenyReason(str, Enum):
    CONTENT_TYPE_NOT_ALLOWED = "content_type_not_allowed"
    LIMIT_REACHED = "limit_reached"
    SUBSCRIPTION_INACTIVE = "subscription_inactive"
    FILE_TOO_LARGE = "file_too_large"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[DenyReason] = None
    message: str = ""

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def deny(reason: DenyReason, message: str) -> Decision:
    return Decision(False, reason, message)


class SubscriptionManager:
    """Access checks, upgrade validation, and record transitions."""

    def __init__(self, catalog: TierCatalog = DEFAULT_CATALOG, clock: Callable[[], datetime] = utc_now):
        self.catalog = catalog
        self.clock = clock

    def new_record(self, user_id: str, email: Optional[str] = None) -> SubscriptionRecord:
        return SubscriptionRecord.new(user_id, self.catalog.free, self.clock(), email=email)

    # ===========================================
    # Reads
    # ===========================================

    def has_access(self, user_tier: str, required_tier: str) -> bool:
        return self.catalog.get(user_tier).priority >= self.catalog.get(required_tier).priority

    def can_create_content(self, record: SubscriptionRecord, content_type: str, file_size: int = 0) -> Decision:
        """Decide whether `record` may create one item. Pure read."""
        tier = self.catalog.get(record.tier)

        if not tier.allows(content_type):
            return deny(
                DenyReason.CONTENT_TYPE_NOT_ALLOWED,
                f"Content type '{content_type}' not allowed for {tier.name} tier. Please upgrade your subscription.",
            )
        if record.used_content_slots >= record.content_limit:
            return deny(DenyReason.LIMIT_REACHED, f"Content limit of {record.content_limit} reached")
        if not record.is_active and record.tier != self.catalog.free_tier_id:
            return deny(DenyReason.SUBSCRIPTION_INACTIVE, "Subscription is not active")
        if (file_size or 0) > tier.max_file_size:
            return deny(
                DenyReason.FILE_TOO_LARGE,
                f"File size exceeds {tier.max_file_size // (1024 * 1024)}MB limit for your tier",
            )
        return ALLOW

    def validate_upgrade(self, current_tier: str, new_tier: str) -> None:
        """Raise BadRequestError unless `new_tier` ranks strictly above `current_tier`."""
        current = self.catalog.get(current_tier)
        target = self.catalog.get(new_tier)
        if target.priority > current.priority:
            return
        if target.tier_id == current.tier_id:
            raise BadRequestError(f"You are already on the {target.name} plan.", details={"reason": "same_tier"})
        raise BadRequestError(
            "Cannot downgrade or invalid tier change",
            details={"reason": "downgrade_not_allowed"},
        )

    def is_trial_active(self, record: SubscriptionRecord) -> bool:
        return record.trial_end_date is not None and self.clock() < record.trial_end_date

    def days_until_billing(self, record: SubscriptionRecord) -> int:
        return days_remaining(record.plan_end_date, self.clock())

    def remaining_slots(self, record: SubscriptionRecord) -> int:
        return record.remaining_slots

    def can_upgrade(self, record: SubscriptionRecord) -> bool:
        return bool(self.catalog.higher_tiers(record.tier))

    def proration_for(self, record: SubscriptionRecord, new_tier: str) -> int:
        return calculate_proration(
            self.catalog.get(record.tier),
            self.catalog.get(new_tier),
            self.days_until_billing(record),
        )

    # ===========================================
    # Transitions
    # ===========================================

    def apply_upgrade(self, record: SubscriptionRecord, new_tier: str, payment_ref: Optional[str]) -> SubscriptionRecord:
        tier = self.catalog.get(new_tier)
        now = self.clock()
        return self.with_tier(record, tier).bump(
            is_active=True,
            status=SubscriptionStatus.ACTIVE,
            plan_end_date=None if tier.has_lifetime_access else now + BILLING_PERIOD,
            payment_ref=payment_ref or record.payment_ref,
        )

    def apply_cancellation(
        self,
        record: SubscriptionRecord,
        immediate: bool,
        reason: Optional[str] = None,
    ) -> SubscriptionRecord:
        """Cancel now (reset to free) or at period end (deactivate, keep tier).

        Deferred cancellations are downgraded later by `reconcile_expiry`.
        """
        now = self.clock()
        if not immediate:
            return record.bump(
                is_active=False,
                cancellation_reason=reason,
                cancelled_at=now,
            )
        return self.with_tier(record, self.catalog.free).bump(
            is_active=False,
            status=SubscriptionStatus.CANCELLED,
            plan_end_date=now,
            cancellation_reason=reason if reason is not None else record.cancellation_reason,
            cancelled_at=now,
        )

    def reset_monthly_usage(self, record: SubscriptionRecord) -> SubscriptionRecord:
        return record.bump(used_content_slots=0)

    def reconcile_expiry(self, record: SubscriptionRecord) -> Optional[SubscriptionRecord]:
        """Downgrade a record whose paid period or trial has run out.

        Returns the cancelled record, or None when nothing is due.
        """
        now = self.clock()
        if record.tier == self.catalog.free_tier_id or record.has_lifetime_access:
            return None

        period_over = record.plan_end_date is not None and record.plan_end_date <= now
        if not record.is_active and period_over:
            return self.apply_cancellation(record, immediate=True)

        trial_over = record.trial_end_date is not None and record.trial_end_date <= now
        if record.status == SubscriptionStatus.TRIALING and trial_over and (record.plan_end_date is None or period_over):
            return self.apply_cancellation(record, immediate=True, reason="trial_expired")
        return None

    def with_tier(self, record: SubscriptionRecord, tier: Tier) -> SubscriptionRecord:
        """Copy of `record` on `tier` (version unchanged), slots clamped to the new limit."""
        return replace(
            record,
            tier=tier.tier_id,
            content_limit=tier.content_limit,
            used_content_slots=min(record.used_content_slots, tier.content_limit),
            has_lifetime_access=tier.has_lifetime_access,
        )

    def apply_event(self, record: SubscriptionRecord, event: WebhookEvent) -> SubscriptionRecord:
        """Apply a canonical webhook event to `record`.

        Raises:
            InvalidTransition: event not legal from the record's status
            ValidationError: tier-changing event without a mapped tier
        """
        if record.status not in ALLOWED_FROM[event.event_type]:
            raise InvalidTransition(record.status.value, event.event_type.value)

        now = self.clock()
        external_refs = dict(record.external_refs)
        if event.external_subscription_id:
            external_refs[event.provider] = event.external_subscription_id
        timestamps = {**record.last_applied_event_timestamp, event.provider: event.occurred_at}
        common = {
            "external_refs": external_refs,
            "last_applied_event_timestamp": timestamps,
            "email": record.email or event.customer_email,
        }

        if event.event_type in (EventType.SUBSCRIPTION_CREATED, EventType.SUBSCRIPTION_UPDATED):
            if not event.mapped_tier:
                raise ValidationError(f"{event.event_type.value} event has no tier")
            tier = self.catalog.get(event.mapped_tier)
            trialing = event.trial_end is not None and event.trial_end > now
            changes = {
                "is_active": True,
                "status": SubscriptionStatus.TRIALING if trialing else SubscriptionStatus.ACTIVE,
                "plan_end_date": None if tier.has_lifetime_access else event.period_end,
                "trial_end_date": event.trial_end or record.trial_end_date,
            }
            if event.event_type == EventType.SUBSCRIPTION_CREATED:
                changes.update(
                    plan_start_date=now,
                    payment_failures=0,
                    cancellation_reason=None,
                    cancelled_at=None,
                )
            return self.with_tier(record, tier).bump(**common, **changes)

        if event.event_type == EventType.SUBSCRIPTION_CANCELLED:
            cancelled = self.apply_cancellation(record, immediate=True)
            return replace(cancelled, **common)

        if event.event_type == EventType.PAYMENT_SUCCEEDED:
            if record.has_lifetime_access:
                plan_end = None
            elif event.period_end is not None:
                plan_end = event.period_end
            else:
                base = max(record.plan_end_date, now) if record.plan_end_date else now
                plan_end = base + BILLING_PERIOD
            return record.bump(
                **common,
                is_active=True,
                status=SubscriptionStatus.ACTIVE,
                payment_failures=0,
                plan_end_date=plan_end,
            )

        if event.event_type == EventType.PAYMENT_FAILED:
            # Grace period: no deactivation here, see reconcile sweep
            return record.bump(
                **common,
                status=SubscriptionStatus.PAST_DUE,
                payment_failures=record.payment_failures + 1,
            )

        # TRIAL_WILL_END
        return record.bump(**common, trial_end_date=event.trial_end or record.trial_end_date)
