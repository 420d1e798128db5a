"""
Stripe Webhook Endpoint - POST /webhooks/stripe

Verifies the Stripe signature, then hands the event to the shared
ingestion pipeline. Uses Stripe signature verification instead of auth.
"""

import json
import logging
import os

import stripe

from shared.constants import PROVIDER_STRIPE
from shared.logging_utils import configure_structured_logging, set_request_id
from shared.metrics import emit_webhook_metric
from shared.request_utils import get_raw_body
from shared.response_utils import error_response
from shared.secrets import get_secret

from billing.webhooks import process_webhook

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

# Seconds of clock skew accepted on the signature timestamp
SIGNATURE_TOLERANCE = 300


def get_webhook_secret():
    """Stripe signing secret from Secrets Manager (cached with TTL)."""
    return get_secret(os.environ.get("STRIPE_WEBHOOK_SECRET_ARN"), "secret")


def handler(event, context):
    """
    Lambda handler for Stripe webhooks.

    Handles:
    - customer.subscription.created/updated/deleted/trial_will_end
    - invoice.payment_succeeded / invoice.payment_failed
    Other event types are acknowledged and ignored.
    """
    configure_structured_logging()
    set_request_id(event)

    webhook_secret = get_webhook_secret()
    if not webhook_secret:
        logger.error("Stripe webhook secret not configured")
        return error_response(500, "stripe_not_configured", "Stripe not configured")

    payload = get_raw_body(event)
    headers = event.get("headers") or {}
    sig_header = headers.get("stripe-signature") or headers.get("Stripe-Signature")

    if not sig_header:
        logger.warning("Missing Stripe signature")
        emit_webhook_metric(PROVIDER_STRIPE, "rejected")
        return error_response(400, "missing_signature", "Missing Stripe signature")

    try:
        stripe.WebhookSignature.verify_header(payload, sig_header, webhook_secret, SIGNATURE_TOLERANCE)
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Invalid Stripe signature: {e}")
        emit_webhook_metric(PROVIDER_STRIPE, "rejected")
        return error_response(400, "invalid_signature", "Invalid signature")

    try:
        body = json.loads(payload)
    except json.JSONDecodeError:
        emit_webhook_metric(PROVIDER_STRIPE, "rejected")
        return error_response(400, "invalid_payload", "Invalid webhook payload")

    logger.info(f"Processing Stripe event: {body.get('type') if isinstance(body, dict) else 'unknown'}")
    return process_webhook(PROVIDER_STRIPE, body)
