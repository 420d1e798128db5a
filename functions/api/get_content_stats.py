"""
Content Stats Endpoint - GET /content/stats

Returns slot usage and the content types and file size the caller's tier allows.
"""

import logging
import time

from botocore.exceptions import ClientError

from shared.errors import APIError
from shared.logging_utils import configure_structured_logging, log_api_request, set_request_id
from shared.request_utils import get_user_id
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
        response = success_response(get_service().get_content_stats(user_id), origin=origin)
    except APIError as e:
        response = api_error_response(e, origin)
    except ClientError as e:
        logger.error(f"DynamoDB error reading content stats: {e}")
        response = error_response(500, "temporary_error", "Temporary error, please retry", origin=origin)

    log_api_request(logger, "GET", "/content/stats", response["statusCode"], (time.time() - start) * 1000, user_id)
    return response
