"""
HTTP mapping for webhook ingestion, shared by the provider endpoints.

Status codes follow provider retry semantics: 200 acknowledges (including
duplicates, stale and ignored events), 4xx tells the provider not to retry,
5xx asks it to retry later.
"""

import json
import logging
from typing import Optional

from botocore.exceptions import ClientError

from shared.constants import THROTTLING_ERRORS
from shared.errors import MappingError, TransientError, ValidationError
from shared.metrics import emit_webhook_metric
from shared.response_utils import error_response
from shared.types import LambdaResponse

from billing.factory import get_ingestor
from billing.ingestor import WebhookIngestor

logger = logging.getLogger(__name__)


def _ack(body: dict) -> LambdaResponse:
    return {
        "statusCode": 200,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body),
    }


def process_webhook(provider: str, payload, ingestor: Optional[WebhookIngestor] = None) -> LambdaResponse:
    """Run a verified webhook body through the ingestor and build the Lambda response."""
    ingestor = ingestor or get_ingestor()
    try:
        result = ingestor.ingest(provider, payload)

    except (ValidationError, MappingError) as e:
        # Permanent - the provider should not retry
        logger.error(f"Rejected {provider} webhook: {e.message}", extra={"details": e.details})
        emit_webhook_metric(provider, "rejected")
        return error_response(e.status_code, e.code, e.message, details=e.details or None)

    except TransientError as e:
        emit_webhook_metric(provider, "failed")
        return error_response(e.status_code, e.code, e.message, retry_after=1)

    except ClientError as e:
        # Storage errors are transient; never leak table details
        error_code = e.response.get("Error", {}).get("Code", "")
        logger.error(f"Storage error handling {provider} webhook: {error_code}")
        emit_webhook_metric(provider, "failed")
        if error_code in THROTTLING_ERRORS:
            return error_response(503, "temporary_error", "Temporary error, please retry", retry_after=5)
        return error_response(500, "temporary_error", "Temporary error, please retry")

    except Exception as e:
        logger.error(f"Unexpected error handling {provider} webhook: {e}", exc_info=True)
        emit_webhook_metric(provider, "failed")
        return error_response(500, "processing_failed", "Processing failed")

    emit_webhook_metric(provider, result.outcome.value)
    return _ack(result.to_body())
