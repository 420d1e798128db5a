"""
Gumroad Webhook Endpoint - POST /webhooks/gumroad

Gumroad pings are unsigned form posts. When GUMROAD_WEBHOOK_TOKEN_ARN is
configured, the ping URL must carry the shared token as `?token=`.
"""

import hmac
import logging
import os

from shared.constants import PROVIDER_GUMROAD
from shared.errors import ValidationError
from shared.logging_utils import configure_structured_logging, set_request_id
from shared.metrics import emit_webhook_metric
from shared.request_utils import get_query_param, parse_form_or_json_body
from shared.response_utils import error_response
from shared.secrets import get_secret

from billing.webhooks import process_webhook

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


def handler(event, context):
    """Lambda handler for Gumroad sale and subscription pings."""
    configure_structured_logging()
    set_request_id(event)

    token_arn = os.environ.get("GUMROAD_WEBHOOK_TOKEN_ARN")
    if token_arn:
        expected = get_secret(token_arn, "token")
        if not expected:
            logger.error("Gumroad webhook token could not be loaded")
            return error_response(500, "gumroad_not_configured", "Gumroad not configured")
        provided = get_query_param(event, "token") or ""
        if not hmac.compare_digest(provided.encode(), expected.encode()):
            logger.warning("Invalid Gumroad webhook token")
            emit_webhook_metric(PROVIDER_GUMROAD, "rejected")
            return error_response(401, "unauthorized", "Invalid webhook token")

    try:
        payload = parse_form_or_json_body(event)
    except ValidationError as e:
        emit_webhook_metric(PROVIDER_GUMROAD, "rejected")
        return error_response(e.status_code, e.code, e.message)

    return process_webhook(PROVIDER_GUMROAD, payload)
