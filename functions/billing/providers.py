"""
Provider webhook schemas and their normalization into WebhookEvent.

Each provider payload is validated into its own pydantic model; the two
models form a tagged union on `provider`. Normalization happens right after
validation, so nothing downstream branches on provider.
"""

import logging
import os
from datetime import datetime, timedelta
from typing import Annotated, Literal, Optional, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from shared.constants import BILLING_PERIOD_DAYS, PROVIDER_GUMROAD, PROVIDER_STRIPE
from shared.errors import MappingError, ValidationError

from billing.models import EventType, WebhookEvent, from_epoch
from billing.tiers import DEFAULT_CATALOG

logger = logging.getLogger(__name__)

# Tier mapping from Stripe price IDs (configured via environment)
# Use `or` to handle empty string env vars
STRIPE_PRICE_TO_TIER = {
    (os.environ.get("STRIPE_PRICE_SUPPORTER") or "price_supporter_monthly"): "SUPPORTER",
    (os.environ.get("STRIPE_PRICE_FOUNDING_CREATOR") or "price_founding_creator_monthly"): "FOUNDING_CREATOR",
    (os.environ.get("STRIPE_PRICE_INNER_CIRCLE") or "price_inner_circle_monthly"): "INNER_CIRCLE",
    (os.environ.get("STRIPE_PRICE_LIFETIME") or "price_lifetime_onetime"): "LIFETIME",
}

# Gumroad product permalinks (last path segment)
GUMROAD_PRODUCT_TO_TIER = {
    (os.environ.get("GUMROAD_PRODUCT_SUPPORTER") or "supporter-monthly"): "SUPPORTER",
    (os.environ.get("GUMROAD_PRODUCT_FOUNDING_CREATOR") or "founding-creator-monthly"): "FOUNDING_CREATOR",
    (os.environ.get("GUMROAD_PRODUCT_INNER_CIRCLE") or "inner-circle-monthly"): "INNER_CIRCLE",
    (os.environ.get("GUMROAD_PRODUCT_LIFETIME") or "lifetime-access"): "LIFETIME",
}

STRIPE_EVENT_TYPES = {
    "customer.subscription.created": EventType.SUBSCRIPTION_CREATED,
    "customer.subscription.updated": EventType.SUBSCRIPTION_UPDATED,
    "customer.subscription.deleted": EventType.SUBSCRIPTION_CANCELLED,
    "customer.subscription.trial_will_end": EventType.TRIAL_WILL_END,
    "invoice.payment_succeeded": EventType.PAYMENT_SUCCEEDED,
    "invoice.payment_failed": EventType.PAYMENT_FAILED,
}


def _validation_error(exc: pydantic.ValidationError) -> ValidationError:
    # Field locations only; never echo input values back to the provider
    fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
    return ValidationError(details={"fields": fields})


def _map_tier(provider: str, external_id: Optional[str], tier_map: dict) -> str:
    tier = tier_map.get(external_id) if external_id else None
    if tier is None:
        logger.error(f"Unmapped {provider} product id: {external_id}")
        raise MappingError(provider, str(external_id))
    return tier


def _email_from_customer(customer) -> Optional[str]:
    if isinstance(customer, dict):
        return customer.get("email")
    return None


# ===========================================
# Stripe
# ===========================================


class StripePrice(BaseModel):
    id: str


class StripeSubscriptionItem(BaseModel):
    price: StripePrice
    current_period_end: Optional[int] = None


class StripeSubscriptionItems(BaseModel):
    data: list[StripeSubscriptionItem] = Field(default_factory=list)


class StripeSubscription(BaseModel):
    id: str
    customer: Union[str, dict, None] = None
    customer_email: Optional[str] = None
    metadata: dict = Field(default_factory=dict)
    items: StripeSubscriptionItems = Field(default_factory=StripeSubscriptionItems)
    status: Optional[str] = None
    current_period_end: Optional[int] = None
    trial_end: Optional[int] = None

    @property
    def email(self) -> Optional[str]:
        return self.customer_email or _email_from_customer(self.customer) or self.metadata.get("email")

    @property
    def price_id(self) -> Optional[str]:
        return self.items.data[0].price.id if self.items.data else None

    @property
    def period_end(self) -> Optional[int]:
        # Newer API versions moved the period onto the subscription item
        if self.current_period_end is not None:
            return self.current_period_end
        return self.items.data[0].current_period_end if self.items.data else None


class StripeInvoicePeriod(BaseModel):
    end: Optional[int] = None


class StripeInvoiceLine(BaseModel):
    period: Optional[StripeInvoicePeriod] = None


class StripeInvoiceLines(BaseModel):
    data: list[StripeInvoiceLine] = Field(default_factory=list)


class StripeInvoice(BaseModel):
    id: str
    subscription: Optional[str] = None
    customer: Union[str, dict, None] = None
    customer_email: Optional[str] = None
    period_end: Optional[int] = None
    lines: StripeInvoiceLines = Field(default_factory=StripeInvoiceLines)

    @property
    def email(self) -> Optional[str]:
        return self.customer_email or _email_from_customer(self.customer)

    @property
    def service_period_end(self) -> Optional[int]:
        # invoice.period_end covers the previous period; line items carry the new one
        for line in self.lines.data:
            if line.period and line.period.end:
                return line.period.end
        return self.period_end


class StripeEventData(BaseModel):
    object: dict


class StripeEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    provider: Literal["stripe"] = PROVIDER_STRIPE
    id: str
    object: Literal["event"] = "event"
    type: str
    created: int
    livemode: bool = False
    data: StripeEventData

    def to_webhook_event(self, tier_map: Optional[dict] = None) -> Optional[WebhookEvent]:
        """Normalize; returns None for event types this service does not track."""
        event_type = STRIPE_EVENT_TYPES.get(self.type)
        if event_type is None:
            return None
        tier_map = STRIPE_PRICE_TO_TIER if tier_map is None else tier_map

        try:
            if self.type.startswith("invoice."):
                invoice = StripeInvoice.model_validate(self.data.object)
                fields = {
                    "external_subscription_id": invoice.subscription,
                    "customer_email": invoice.email,
                    "period_end": from_epoch(invoice.service_period_end),
                }
            else:
                subscription = StripeSubscription.model_validate(self.data.object)
                tier = _map_tier(PROVIDER_STRIPE, subscription.price_id, tier_map)
                fields = {
                    "external_subscription_id": subscription.id,
                    "customer_email": subscription.email,
                    "period_end": from_epoch(subscription.period_end),
                    "trial_end": from_epoch(subscription.trial_end),
                }
                if event_type in (EventType.SUBSCRIPTION_CREATED, EventType.SUBSCRIPTION_UPDATED):
                    fields["mapped_tier"] = tier
        except pydantic.ValidationError as e:
            raise _validation_error(e) from None

        # Only a new subscription has to carry an email; later events can resolve by subscription id
        if not fields["customer_email"] and (
            event_type == EventType.SUBSCRIPTION_CREATED or not fields["external_subscription_id"]
        ):
            raise ValidationError("Stripe event has no customer email", details={"fields": ["customer_email"]})

        return _build_event(
            provider=PROVIDER_STRIPE,
            external_event_id=self.id,
            event_type=event_type,
            occurred_at=from_epoch(self.created),
            **fields,
        )


# ===========================================
# Gumroad
# ===========================================


class GumroadEvent(BaseModel):
    """Gumroad sale/subscription ping. Form posts arrive as strings; lax mode coerces them."""

    model_config = ConfigDict(extra="ignore")

    provider: Literal["gumroad"] = PROVIDER_GUMROAD
    sale_id: str
    sale_timestamp: datetime
    email: str
    product_permalink: str
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    price: Optional[int] = None
    currency: Optional[str] = None
    subscription_id: Optional[str] = None
    subscription_cancelled_at: Optional[datetime] = None
    subscription_failed_at: Optional[datetime] = None
    is_recurring_charge: bool = False
    test: bool = False

    @property
    def product_key(self) -> str:
        return self.product_permalink.rstrip("/").split("/")[-1]

    def event_kind(self) -> tuple[EventType, datetime]:
        if self.subscription_cancelled_at:
            return EventType.SUBSCRIPTION_CANCELLED, self.subscription_cancelled_at
        if self.subscription_failed_at:
            return EventType.PAYMENT_FAILED, self.subscription_failed_at
        if self.is_recurring_charge:
            return EventType.PAYMENT_SUCCEEDED, self.sale_timestamp
        return EventType.SUBSCRIPTION_CREATED, self.sale_timestamp

    def to_webhook_event(self, tier_map: Optional[dict] = None) -> Optional[WebhookEvent]:
        tier_map = GUMROAD_PRODUCT_TO_TIER if tier_map is None else tier_map
        tier_id = _map_tier(PROVIDER_GUMROAD, self.product_key, tier_map)
        event_type, occurred_at = self.event_kind()

        lifetime = DEFAULT_CATALOG.get(tier_id).has_lifetime_access if tier_id in DEFAULT_CATALOG else False
        period_end = None
        if event_type in (EventType.SUBSCRIPTION_CREATED, EventType.PAYMENT_SUCCEEDED) and not lifetime:
            period_end = occurred_at + timedelta(days=BILLING_PERIOD_DAYS)

        return _build_event(
            provider=PROVIDER_GUMROAD,
            # Gumroad reuses sale_id across the purchase/cancel/failure pings of one sale
            external_event_id=f"{self.sale_id}:{event_type.value}",
            external_subscription_id=self.subscription_id or self.sale_id,
            customer_email=self.email,
            event_type=event_type,
            mapped_tier=tier_id if event_type == EventType.SUBSCRIPTION_CREATED else None,
            period_end=period_end,
            occurred_at=occurred_at,
        )


def _build_event(**fields) -> WebhookEvent:
    try:
        return WebhookEvent(**fields)
    except pydantic.ValidationError as e:
        raise _validation_error(e) from None


ProviderEvent = Annotated[Union[StripeEvent, GumroadEvent], Field(discriminator="provider")]

_provider_event_adapter = TypeAdapter(ProviderEvent)


def parse_provider_event(provider: str, payload) -> Union[StripeEvent, GumroadEvent]:
    """Validate a raw provider payload into its tagged model.

    Raises:
        ValidationError: payload is not a JSON object or fails the schema
    """
    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be a JSON object")
    try:
        return _provider_event_adapter.validate_python({**payload, "provider": provider})
    except pydantic.ValidationError as e:
        raise _validation_error(e) from None


def normalize(event: Union[StripeEvent, GumroadEvent], tier_map: Optional[dict] = None) -> Optional[WebhookEvent]:
    return event.to_webhook_event(tier_map)
