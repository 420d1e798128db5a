# Shared utilities package
from .constants import TIER_CONFIG
from .errors import APIError
from .response_utils import error_response, success_response

__all__ = [
    "TIER_CONFIG",
    "error_response",
    "success_response",
    "APIError",
]
