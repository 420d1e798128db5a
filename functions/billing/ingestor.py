"""
Webhook ingestion pipeline, shared by every provider.

    parse -> map -> idempotency check -> resolve record -> stale check
          -> transition -> compare-and-set (retry) -> ledger append

The ledger entry is written only after the record commit succeeds. If the
process dies between the two, a redelivery is caught by the stale check,
since the committed record already carries the event's timestamp.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from shared.constants import WEBHOOK_MAX_RETRIES
from shared.errors import InvalidTransition, StaleEvent, TransientError, ValidationError
from shared.logging_utils import mask_email

from billing.ledger import IdempotencyLedger
from billing.manager import SubscriptionManager
from billing.models import EventType, SubscriptionRecord, WebhookEvent
from billing.providers import normalize, parse_provider_event
from billing.repository import SubscriptionRepository, user_id_for_email

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    IGNORED = "ignored"
    UNHANDLED = "unhandled"


@dataclass(frozen=True)
class IngestResult:
    outcome: Outcome
    event: Optional[WebhookEvent] = None
    record: Optional[SubscriptionRecord] = None

    def to_body(self) -> dict:
        body = {"received": True, "outcome": self.outcome.value}
        if self.outcome == Outcome.DUPLICATE:
            body["duplicate"] = True
        return body


class WebhookIngestor:

    def __init__(
        self,
        repository: SubscriptionRepository,
        ledger: IdempotencyLedger,
        manager: Optional[SubscriptionManager] = None,
        max_retries: int = WEBHOOK_MAX_RETRIES,
        notifier=None,
        tier_maps: Optional[dict] = None,
    ):
        self.repository = repository
        self.ledger = ledger
        self.manager = manager or SubscriptionManager()
        self.max_retries = max_retries
        self.notifier = notifier
        # provider -> {external product id: tier id}; missing providers use the env-configured maps
        self.tier_maps = tier_maps or {}

    def ingest(self, provider: str, payload) -> IngestResult:
        """Process one verified webhook body.

        Raises:
            ValidationError: payload fails the provider schema
            MappingError: product/price id has no tier
            TransientError: version conflicts outlasted the retry budget
        """
        provider_event = parse_provider_event(provider, payload)
        event = normalize(provider_event, self.tier_maps.get(provider))
        if event is None:
            logger.info(f"Unhandled {provider} event type: {getattr(provider_event, 'type', 'unknown')}")
            return IngestResult(Outcome.UNHANDLED)
        return self.apply(event)

    def apply(self, event: WebhookEvent) -> IngestResult:
        provider, event_id = event.ledger_key
        if self.ledger.has_applied(provider, event_id):
            logger.info(f"Skipping duplicate {provider} event {event_id}")
            return IngestResult(Outcome.DUPLICATE, event)

        for attempt in range(1, self.max_retries + 1):
            record = self._resolve_record(event)

            try:
                _check_fresh(record, event)
                updated = self.manager.apply_event(record, event)
            except StaleEvent as e:
                logger.info(f"Stale {provider} event {event_id} ({e})", extra={"user_id": record.user_id})
                return IngestResult(Outcome.STALE, event, record)
            except InvalidTransition as e:
                logger.warning(f"Ignoring {provider} event {event_id}: {e}", extra={"user_id": record.user_id})
                self.ledger.record(provider, event_id, event.event_type.value, self.manager.clock())
                return IngestResult(Outcome.IGNORED, event, record)

            if self.repository.compare_and_set(updated, record.version):
                self.ledger.record(provider, event_id, event.event_type.value, self.manager.clock())
                logger.info(
                    f"Applied {provider} {event.event_type.value} for {mask_email(event.customer_email)}",
                    extra={"user_id": updated.user_id, "tier": updated.tier, "version": updated.version},
                )
                self._after_commit(event, updated)
                return IngestResult(Outcome.APPLIED, event, updated)

            logger.info(f"Version conflict applying {provider} event {event_id} (attempt {attempt}/{self.max_retries})")

        logger.error(f"Giving up on {provider} event {event_id} after {self.max_retries} conflicts")
        raise TransientError()

    def _resolve_record(self, event: WebhookEvent) -> SubscriptionRecord:
        """Find the record an event applies to, creating it for a known email.

        New subscriptions are keyed on email. Later events look up the
        provider subscription id first, since Stripe only sends the customer
        id on those.

        Raises:
            ValidationError: no email and no record linked to the subscription id
        """
        if event.event_type != EventType.SUBSCRIPTION_CREATED and event.external_subscription_id:
            record = self.repository.find_by_external_ref(event.provider, event.external_subscription_id)
            if record is not None:
                return record

        email = event.customer_email
        if not email:
            logger.warning(
                f"No record for {event.provider} subscription {event.external_subscription_id} and no email"
            )
            raise ValidationError(
                f"Unknown {event.provider} subscription: {event.external_subscription_id}",
                details={"fields": ["customer_email"]},
            )

        record = self.repository.find_by_email(email)
        if record is not None:
            return record
        return self.repository.upsert(self.manager.new_record(user_id_for_email(email), email))

    def _after_commit(self, event: WebhookEvent, record: SubscriptionRecord) -> None:
        if event.event_type == EventType.TRIAL_WILL_END and self.notifier is not None:
            self.notifier.trial_ending(record)


def _check_fresh(record: SubscriptionRecord, event: WebhookEvent) -> None:
    """Raise StaleEvent unless `event` is strictly newer than the provider's last applied one."""
    last_applied = record.last_applied_event_timestamp.get(event.provider)
    if last_applied is not None and event.occurred_at <= last_applied:
        raise StaleEvent(event.occurred_at, last_applied)
