"""
Secrets Manager lookups with a short in-process TTL cache.
"""

import json
import logging
import time
from typing import Optional

from botocore.exceptions import ClientError

from shared.aws_clients import get_secretsmanager

logger = logging.getLogger(__name__)

SECRET_CACHE_TTL = 300  # 5 minutes

# arn -> (value, fetched_at)
_secret_cache: dict[str, tuple[str, float]] = {}


def get_secret(arn: Optional[str], json_key: str) -> Optional[str]:
    """
    Fetch a secret string, cached per ARN.

    Secrets may be stored raw or as JSON; for JSON the value under
    `json_key` is returned. Returns None when `arn` is unset or the lookup
    fails, so callers decide how to fail closed.
    """
    if not arn:
        return None

    cached = _secret_cache.get(arn)
    if cached and (time.time() - cached[1]) < SECRET_CACHE_TTL:
        return cached[0]

    try:
        response = get_secretsmanager().get_secret_value(SecretId=arn)
    except ClientError as e:
        logger.error(f"Failed to retrieve secret {arn}: {e}")
        return None

    secret_value = response.get("SecretString", "")
    try:
        secret_json = json.loads(secret_value)
        value = secret_json.get(json_key) if isinstance(secret_json, dict) else None
        value = value or secret_value
    except json.JSONDecodeError:
        value = secret_value

    if value:
        _secret_cache[arn] = (value, time.time())
    return value or None


def clear_secret_cache():
    """Drop cached secrets. Used in tests for clean state."""
    _secret_cache.clear()
