"""
Create Content Endpoint - POST /content

Body: {"contentType": "video", "fileSize": 1048576, "title": "...", "description": "...", "tags": [...]}

Consumes one content slot atomically before storing the item.
"""

import logging
import time

from botocore.exceptions import ClientError

from shared.errors import APIError, BadRequestError
from shared.logging_utils import configure_structured_logging, log_api_request, set_request_id
from shared.metrics import emit_entitlement_metric
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
    content_type = None

    try:
        body = parse_json_body(event)
        content_type = body.get("contentType")
        if not content_type or not isinstance(content_type, str):
            raise BadRequestError("contentType is required")
        file_size = body.get("fileSize", 0)
        if not isinstance(file_size, int) or isinstance(file_size, bool):
            raise BadRequestError("fileSize must be an integer")

        metadata = {key: body[key] for key in ("title", "description", "tags") if key in body}
        result = get_service().create_content(user_id, content_type, file_size, metadata)
        emit_entitlement_metric("granted", content_type)
        response = success_response(result, status_code=201, origin=origin)
    except APIError as e:
        if e.details.get("reason"):
            emit_entitlement_metric(e.details["reason"], content_type)
        response = api_error_response(e, origin)
    except ClientError as e:
        logger.error(f"DynamoDB error creating content: {e}")
        response = error_response(500, "temporary_error", "Temporary error, please retry", origin=origin)

    log_api_request(logger, "POST", "/content", response["statusCode"], (time.time() - start) * 1000, user_id)
    return response
