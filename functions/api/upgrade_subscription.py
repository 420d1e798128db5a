"""
Upgrade Endpoint - POST /subscription/upgrade

Body: {"newTier": "FOUNDING_CREATOR", "paymentRef": "pi_..."}

Moves the caller to a strictly higher tier and returns the prorated charge
in cents for the rest of the current billing period.
"""

import logging
import time

from botocore.exceptions import ClientError

from shared.errors import APIError, BadRequestError
from shared.logging_utils import configure_structured_logging, log_api_request, set_request_id
from shared.request_utils import get_user_id, parse_json_body
from shared.response_utils import api_error_response, error_response, get_origin, success_response

from billing.factory import get_service

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


def handler(event, context):
    configure_structured_logging()
    set_request_id(event)
    start = time.time()
    origin = get_origin(event)
    user_id = get_user_id(event)

    try:
        body = parse_json_body(event)
        new_tier = body.get("newTier")
        if not new_tier or not isinstance(new_tier, str):
            raise BadRequestError("newTier is required")
        result = get_service().upgrade_subscription(user_id, new_tier.upper(), body.get("paymentRef"))
        response = success_response(result, origin=origin)
    except APIError as e:
        response = api_error_response(e, origin)
    except ClientError as e:
        logger.error(f"DynamoDB error upgrading subscription: {e}")
        response = error_response(500, "temporary_error", "Temporary error, please retry", origin=origin)

    log_api_request(
        logger, "POST", "/subscription/upgrade", response["statusCode"], (time.time() - start) * 1000, user_id
    )
    return response
