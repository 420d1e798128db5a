"""
Shared pytest fixtures for Nemurium entitlement tests.
"""

import os
import sys
from datetime import datetime, timedelta, timezone

import boto3
import pytest
from moto import mock_aws

# Add functions directory to Python path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "functions"))


def pytest_configure(config):
    """Set AWS credentials before test collection.

    This runs before test collection starts, ensuring boto3 resource
    creation during imports doesn't fail with NoRegionError.
    """
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
    os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
    os.environ.setdefault("AWS_REGION", "us-east-1")


@pytest.fixture(autouse=True)
def aws_credentials():
    """Set fake AWS credentials for all tests."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
    os.environ["AWS_REGION"] = "us-east-1"


@pytest.fixture(autouse=True)
def reset_aws_clients():
    """Reset shared AWS client and service singletons between tests."""
    yield
    from billing.factory import reset_services
    from shared.aws_clients import reset_clients
    from shared.secrets import clear_secret_cache

    reset_clients()
    reset_services()
    clear_secret_cache()


def create_dynamodb_tables(dynamodb):
    """Create the subscriptions, billing events, and content tables."""
    # Subscriptions table with email and provider subscription id lookups
    dynamodb.create_table(
        TableName="nemurium-subscriptions",
        KeySchema=[
            {"AttributeName": "pk", "KeyType": "HASH"},   # user_id
            {"AttributeName": "sk", "KeyType": "RANGE"},  # SUBSCRIPTION
        ],
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
            {"AttributeName": "email", "AttributeType": "S"},
            {"AttributeName": "stripe_subscription_id", "AttributeType": "S"},
            {"AttributeName": "gumroad_subscription_id", "AttributeType": "S"},
        ],
        GlobalSecondaryIndexes=[
            {
                "IndexName": index_name,
                "KeySchema": [{"AttributeName": attribute, "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            }
            for index_name, attribute in [
                ("email-index", "email"),
                ("stripe-subscription-index", "stripe_subscription_id"),
                ("gumroad-subscription-index", "gumroad_subscription_id"),
            ]
        ],
        BillingMode="PAY_PER_REQUEST",
    )

    # Idempotency ledger of applied webhook events
    dynamodb.create_table(
        TableName="nemurium-billing-events",
        KeySchema=[
            {"AttributeName": "pk", "KeyType": "HASH"},   # provider#event_id
            {"AttributeName": "sk", "KeyType": "RANGE"},  # APPLIED
        ],
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )

    # Content items
    dynamodb.create_table(
        TableName="nemurium-content",
        KeySchema=[
            {"AttributeName": "pk", "KeyType": "HASH"},   # user_id
            {"AttributeName": "sk", "KeyType": "RANGE"},  # content_id
        ],
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )


@pytest.fixture
def mock_dynamodb():
    """Provide mocked DynamoDB with tables."""
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
        create_dynamodb_tables(dynamodb)
        yield dynamodb


class FakeClock:
    """Controllable clock for the injected `clock` dependency."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def manager(clock):
    from billing.manager import SubscriptionManager

    return SubscriptionManager(clock=clock)


@pytest.fixture
def memory_repo():
    from billing.repository import InMemorySubscriptionRepository

    return InMemorySubscriptionRepository()


@pytest.fixture
def memory_ledger():
    from billing.ledger import InMemoryIdempotencyLedger

    return InMemoryIdempotencyLedger()


@pytest.fixture
def api_gateway_event():
    """Base API Gateway event for Lambda handler tests."""
    return {
        "httpMethod": "GET",
        "headers": {},
        "pathParameters": {},
        "queryStringParameters": {},
        "body": None,
        "requestContext": {
            "requestId": "req-test-123",
            "identity": {"sourceIp": "127.0.0.1"},
        },
    }


@pytest.fixture
def authed_event(api_gateway_event):
    """API Gateway event carrying an authorizer-supplied user id."""
    api_gateway_event["requestContext"]["authorizer"] = {"user_id": "user_test123"}
    return api_gateway_event


def stripe_subscription_event(
    event_id="evt_1",
    event_type="customer.subscription.created",
    created=1768478400,  # 2026-01-15T12:00:00Z
    price_id="price_supporter_monthly",
    email="creator@example.com",
    subscription_id="sub_1",
    period_end=1771156800,  # 2026-02-15T12:00:00Z
    trial_end=None,
):
    """Build a Stripe subscription event payload."""
    subscription = {
        "id": subscription_id,
        "object": "subscription",
        "customer": {"id": "cus_1", "email": email},
        "status": "trialing" if trial_end else "active",
        "current_period_end": period_end,
        "trial_end": trial_end,
        "items": {"data": [{"price": {"id": price_id}}]},
    }
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": created,
        "livemode": False,
        "data": {"object": subscription},
    }


def stripe_invoice_event(
    event_id="evt_inv_1",
    event_type="invoice.payment_succeeded",
    created=1768478400,
    email="creator@example.com",
    subscription_id="sub_1",
    period_end=1771156800,
):
    """Build a Stripe invoice event payload."""
    invoice = {
        "id": "in_1",
        "object": "invoice",
        "subscription": subscription_id,
        "customer": "cus_1",
        "customer_email": email,
        "period_end": created,
        "lines": {"data": [{"period": {"start": created, "end": period_end}}]},
    }
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": created,
        "data": {"object": invoice},
    }


def gumroad_ping(**overrides):
    """Build a Gumroad ping as it arrives from a form post (all strings)."""
    ping = {
        "sale_id": "sale_1",
        "sale_timestamp": "2026-01-15T12:00:00Z",
        "email": "creator@example.com",
        "product_id": "prod_1",
        "product_permalink": "https://nemurium.gumroad.com/l/founding-creator-monthly",
        "product_name": "Founding Creator",
        "price": "2500",
        "currency": "usd",
        "subscription_id": "gsub_1",
        "is_recurring_charge": "false",
        "test": "false",
    }
    ping.update(overrides)
    return ping
