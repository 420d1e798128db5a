"""
Tests for the webhook ingestion pipeline.

Covers idempotency, stale/out-of-order delivery, illegal transitions, product
mapping, optimistic-concurrency retries, and concurrent redelivery.
"""

import concurrent.futures
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from billing.ingestor import Outcome, WebhookIngestor, _check_fresh
from billing.models import SubscriptionStatus
from billing.repository import InMemorySubscriptionRepository, user_id_for_email
from billing.providers import normalize, parse_provider_event
from shared.errors import MappingError, StaleEvent, TransientError, ValidationError

from conftest import gumroad_ping, stripe_invoice_event, stripe_subscription_event

T0 = 1768478400  # 2026-01-15T12:00:00Z
EMAIL = "creator@example.com"


@pytest.fixture
def ingestor(memory_repo, memory_ledger, manager):
    return WebhookIngestor(memory_repo, memory_ledger, manager)


def stored(repo):
    return repo.find(user_id_for_email(EMAIL))


class TestApply:
    """Tests for the happy path."""

    def test_first_event_creates_record(self, ingestor, memory_repo, memory_ledger):
        result = ingestor.ingest("stripe", stripe_subscription_event())

        assert result.outcome == Outcome.APPLIED
        record = stored(memory_repo)
        assert record.user_id == user_id_for_email(EMAIL)
        assert record.email == EMAIL
        assert record.tier == "SUPPORTER"
        assert record.content_limit == 25
        assert record.status == SubscriptionStatus.ACTIVE
        assert record.external_refs == {"stripe": "sub_1"}
        assert record.version == 1
        assert memory_ledger.has_applied("stripe", "evt_1")

    def test_result_body(self, ingestor):
        body = ingestor.ingest("stripe", stripe_subscription_event()).to_body()
        assert body == {"received": True, "outcome": "applied"}

    def test_user_id_is_deterministic(self):
        assert user_id_for_email("Creator@Example.com ") == user_id_for_email(EMAIL)
        assert user_id_for_email(EMAIL).startswith("user_")
        assert len(user_id_for_email(EMAIL)) == len("user_") + 16

    def test_lifecycle(self, ingestor, memory_repo):
        ingestor.ingest("stripe", stripe_subscription_event(created=T0))
        ingestor.ingest("stripe", stripe_invoice_event(event_id="evt_2", event_type="invoice.payment_failed", created=T0 + 10))
        assert stored(memory_repo).status == SubscriptionStatus.PAST_DUE

        ingestor.ingest("stripe", stripe_invoice_event(event_id="evt_3", created=T0 + 20))
        assert stored(memory_repo).status == SubscriptionStatus.ACTIVE
        assert stored(memory_repo).payment_failures == 0

        ingestor.ingest("stripe", stripe_subscription_event(event_id="evt_4", event_type="customer.subscription.deleted", created=T0 + 30))
        record = stored(memory_repo)
        assert record.status == SubscriptionStatus.CANCELLED
        assert record.tier == "FREE"
        assert record.is_active is False
        assert record.version == 4

    def test_unhandled_stripe_type_acknowledged(self, ingestor, memory_repo):
        result = ingestor.ingest("stripe", stripe_subscription_event(event_type="customer.created"))
        assert result.outcome == Outcome.UNHANDLED
        assert list(memory_repo.scan()) == []


class TestIdempotency:
    """Tests for duplicate delivery."""

    def test_duplicate_is_noop(self, ingestor, memory_repo):
        ingestor.ingest("stripe", stripe_subscription_event())
        before = stored(memory_repo)

        result = ingestor.ingest("stripe", stripe_subscription_event())

        assert result.outcome == Outcome.DUPLICATE
        assert result.to_body()["duplicate"] is True
        assert stored(memory_repo) == before

    def test_redelivery_after_lost_ledger_write_is_stale(self, memory_repo, manager):
        from billing.ledger import InMemoryIdempotencyLedger

        first = WebhookIngestor(memory_repo, InMemoryIdempotencyLedger(), manager)
        first.ingest("stripe", stripe_subscription_event())

        # Fresh ledger simulates a crash between commit and ledger append
        second = WebhookIngestor(memory_repo, InMemoryIdempotencyLedger(), manager)
        result = second.ingest("stripe", stripe_subscription_event())

        assert result.outcome == Outcome.STALE
        assert stored(memory_repo).version == 1

    def test_concurrent_redelivery_applies_once(self, memory_repo, memory_ledger, manager):
        ingestor = WebhookIngestor(memory_repo, memory_ledger, manager, max_retries=20)
        payload = stripe_subscription_event()

        with concurrent.futures.ThreadPoolExecutor(max_workers=8) as executor:
            outcomes = list(executor.map(lambda _: ingestor.ingest("stripe", payload).outcome, range(16)))

        assert outcomes.count(Outcome.APPLIED) == 1
        assert set(outcomes) <= {Outcome.APPLIED, Outcome.DUPLICATE, Outcome.STALE}
        assert stored(memory_repo).version == 1


class TestOrdering:
    """Tests for out-of-order delivery."""

    def test_older_update_is_stale(self, ingestor, memory_repo):
        ingestor.ingest("stripe", stripe_subscription_event(created=T0))
        ingestor.ingest(
            "stripe",
            stripe_subscription_event(
                event_id="evt_new", event_type="customer.subscription.updated",
                created=T0 + 300, price_id="price_inner_circle_monthly",
            ),
        )

        result = ingestor.ingest(
            "stripe",
            stripe_subscription_event(
                event_id="evt_old", event_type="customer.subscription.updated",
                created=T0 + 100, price_id="price_founding_creator_monthly",
            ),
        )

        assert result.outcome == Outcome.STALE
        assert stored(memory_repo).tier == "INNER_CIRCLE"

    def test_same_timestamp_is_stale(self, ingestor, memory_repo):
        ingestor.ingest("stripe", stripe_subscription_event(created=T0))
        result = ingestor.ingest("stripe", stripe_subscription_event(event_id="evt_2", created=T0))
        assert result.outcome == Outcome.STALE

    def test_stale_is_not_recorded(self, ingestor, memory_ledger):
        ingestor.ingest("stripe", stripe_subscription_event(created=T0 + 10))
        ingestor.ingest("stripe", stripe_subscription_event(event_id="evt_old", created=T0))
        assert not memory_ledger.has_applied("stripe", "evt_old")

    def test_stale_check_raises_stale_event(self, ingestor, memory_repo):
        result = ingestor.ingest("stripe", stripe_subscription_event(created=T0 + 10))
        older = normalize(parse_provider_event("stripe", stripe_subscription_event(event_id="evt_old", created=T0)))

        with pytest.raises(StaleEvent) as exc_info:
            _check_fresh(result.record, older)

        assert exc_info.value.last_applied == result.record.last_applied_event_timestamp["stripe"]
        assert exc_info.value.occurred_at == older.occurred_at

    def test_providers_are_ordered_independently(self, ingestor, memory_repo):
        ingestor.ingest("stripe", stripe_subscription_event(created=T0 + 1000))
        # Gumroad ping timestamped before the Stripe event still applies
        result = ingestor.ingest("gumroad", gumroad_ping(sale_timestamp="2026-01-15T12:05:00Z"))

        assert result.outcome == Outcome.APPLIED
        record = stored(memory_repo)
        assert record.tier == "FOUNDING_CREATOR"
        assert set(record.external_refs) == {"stripe", "gumroad"}
        assert set(record.last_applied_event_timestamp) == {"stripe", "gumroad"}


class TestInvalidTransitions:
    """Tests for events that are illegal from the current status."""

    def test_payment_before_subscription_is_ignored(self, ingestor, memory_repo, memory_ledger):
        result = ingestor.ingest("stripe", stripe_invoice_event(created=T0))

        assert result.outcome == Outcome.IGNORED
        record = stored(memory_repo)
        assert record.tier == "FREE"
        assert record.status == SubscriptionStatus.NONE
        assert record.last_applied_event_timestamp == {}
        assert memory_ledger.has_applied("stripe", "evt_inv_1")

    def test_ignored_event_does_not_block_earlier_created(self, ingestor, memory_repo):
        ingestor.ingest("stripe", stripe_invoice_event(created=T0 + 60))
        result = ingestor.ingest("stripe", stripe_subscription_event(created=T0))

        assert result.outcome == Outcome.APPLIED
        assert stored(memory_repo).tier == "SUPPORTER"


def without_email(payload):
    payload["data"]["object"]["customer"] = "cus_1"
    payload["data"]["object"].pop("customer_email", None)
    return payload


class TestSubscriptionIdLookup:
    """Events that carry only the customer id resolve through the subscription id."""

    def test_cancellation_without_email_downgrades(self, ingestor, memory_repo):
        ingestor.ingest("stripe", stripe_subscription_event(created=T0))

        result = ingestor.ingest(
            "stripe",
            without_email(stripe_subscription_event(
                event_id="evt_del", event_type="customer.subscription.deleted", created=T0 + 30,
            )),
        )

        assert result.outcome == Outcome.APPLIED
        record = stored(memory_repo)
        assert record.status == SubscriptionStatus.CANCELLED
        assert record.tier == "FREE"
        assert len(list(memory_repo.scan())) == 1

    def test_upgrade_without_email(self, ingestor, memory_repo):
        ingestor.ingest("stripe", stripe_subscription_event(created=T0))

        ingestor.ingest(
            "stripe",
            without_email(stripe_subscription_event(
                event_id="evt_up", event_type="customer.subscription.updated",
                created=T0 + 30, price_id="price_inner_circle_monthly",
            )),
        )

        assert stored(memory_repo).tier == "INNER_CIRCLE"

    def test_invoice_without_email(self, ingestor, memory_repo):
        ingestor.ingest("stripe", stripe_subscription_event(created=T0))

        ingestor.ingest(
            "stripe",
            stripe_invoice_event(event_id="evt_2", event_type="invoice.payment_failed", created=T0 + 10, email=None),
        )

        assert stored(memory_repo).status == SubscriptionStatus.PAST_DUE

    def test_unknown_subscription_without_email_rejected(self, ingestor, memory_repo, memory_ledger):
        payload = without_email(stripe_subscription_event(
            event_id="evt_del", event_type="customer.subscription.deleted", subscription_id="sub_unknown",
        ))

        with pytest.raises(ValidationError) as exc_info:
            ingestor.ingest("stripe", payload)

        assert exc_info.value.status_code == 400
        assert list(memory_repo.scan()) == []
        assert not memory_ledger.has_applied("stripe", "evt_del")


class TestRejections:
    """Tests for payloads that must be refused without state changes."""

    def test_unmapped_product_creates_nothing(self, ingestor, memory_repo, memory_ledger):
        with pytest.raises(MappingError):
            ingestor.ingest("stripe", stripe_subscription_event(price_id="price_rogue"))
        assert list(memory_repo.scan()) == []
        assert not memory_ledger.has_applied("stripe", "evt_1")

    def test_malformed_payload(self, ingestor, memory_repo):
        with pytest.raises(ValidationError):
            ingestor.ingest("gumroad", {"email": EMAIL})
        assert list(memory_repo.scan()) == []


class ConflictingRepository(InMemorySubscriptionRepository):
    """Repository whose compare-and-set always loses."""

    def __init__(self):
        super().__init__()
        self.attempts = 0

    def compare_and_set(self, record, expected_version):
        self.attempts += 1
        return False


class TestConflicts:
    """Tests for optimistic-concurrency retries."""

    def test_gives_up_after_max_retries(self, memory_ledger, manager):
        repo = ConflictingRepository()
        ingestor = WebhookIngestor(repo, memory_ledger, manager, max_retries=3)

        with pytest.raises(TransientError) as exc_info:
            ingestor.ingest("stripe", stripe_subscription_event())

        assert exc_info.value.status_code == 503
        assert repo.attempts == 3
        assert not memory_ledger.has_applied("stripe", "evt_1")

    def test_retries_after_a_lost_race(self, memory_repo, memory_ledger, manager):
        ingestor = WebhookIngestor(memory_repo, memory_ledger, manager)
        ingestor.ingest("stripe", stripe_subscription_event(created=T0))

        original_cas = memory_repo.compare_and_set
        calls = {"n": 0}

        def racing_cas(record, expected_version):
            calls["n"] += 1
            if calls["n"] == 1:
                # A concurrent slot grant lands first
                memory_repo.consume_slot(record.user_id, expected_version)
                return original_cas(record, expected_version)
            return original_cas(record, expected_version)

        memory_repo.compare_and_set = racing_cas
        result = ingestor.ingest(
            "stripe", stripe_invoice_event(event_id="evt_2", event_type="invoice.payment_failed", created=T0 + 5)
        )

        assert result.outcome == Outcome.APPLIED
        assert calls["n"] == 2
        record = stored(memory_repo)
        assert record.status == SubscriptionStatus.PAST_DUE
        assert record.used_content_slots == 1


class TestNotifications:
    """Tests for post-commit notifications."""

    def test_trial_will_end_notifies_after_commit(self, memory_repo, memory_ledger, manager, clock):
        notifier = MagicMock()
        ingestor = WebhookIngestor(memory_repo, memory_ledger, manager, notifier=notifier)
        trial_end = int((clock() + timedelta(days=10)).timestamp())

        ingestor.ingest("stripe", stripe_subscription_event(created=T0, trial_end=trial_end))
        notifier.trial_ending.assert_not_called()

        ingestor.ingest(
            "stripe",
            stripe_subscription_event(
                event_id="evt_trial", event_type="customer.subscription.trial_will_end",
                created=T0 + 60, trial_end=trial_end,
            ),
        )

        notifier.trial_ending.assert_called_once()
        assert notifier.trial_ending.call_args[0][0].status == SubscriptionStatus.TRIALING

    def test_duplicate_does_not_notify(self, memory_repo, memory_ledger, manager, clock):
        notifier = MagicMock()
        ingestor = WebhookIngestor(memory_repo, memory_ledger, manager, notifier=notifier)
        trial_end = int((clock() + timedelta(days=10)).timestamp())
        ingestor.ingest("stripe", stripe_subscription_event(created=T0, trial_end=trial_end))
        payload = stripe_subscription_event(
            event_id="evt_trial", event_type="customer.subscription.trial_will_end",
            created=T0 + 60, trial_end=trial_end,
        )

        ingestor.ingest("stripe", payload)
        ingestor.ingest("stripe", payload)

        assert notifier.trial_ending.call_count == 1
