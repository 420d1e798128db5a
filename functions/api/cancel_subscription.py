"""
Cancel Endpoint - POST /subscription/cancel

Body: {"immediate": false, "reason": "too expensive"}

Deferred cancellation keeps the paid tier until the period ends; the
subscription sweep downgrades it afterwards.
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

MAX_REASON_LENGTH = 500


def handler(event, context):
    configure_structured_logging()
    set_request_id(event)
    start = time.time()
    origin = get_origin(event)
    user_id = get_user_id(event)

    try:
        body = parse_json_body(event)
        immediate = body.get("immediate", False)
        if not isinstance(immediate, bool):
            raise BadRequestError("immediate must be a boolean")
        reason = body.get("reason")
        if reason is not None and (not isinstance(reason, str) or len(reason) > MAX_REASON_LENGTH):
            raise BadRequestError(f"reason must be a string of at most {MAX_REASON_LENGTH} characters")

        result = get_service().cancel_subscription(user_id, immediate=immediate, reason=reason)
        response = success_response(result, origin=origin)
    except APIError as e:
        response = api_error_response(e, origin)
    except ClientError as e:
        logger.error(f"DynamoDB error cancelling subscription: {e}")
        response = error_response(500, "temporary_error", "Temporary error, please retry", origin=origin)

    log_api_request(
        logger, "POST", "/subscription/cancel", response["statusCode"], (time.time() - start) * 1000, user_id
    )
    return response
