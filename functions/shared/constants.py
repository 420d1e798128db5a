"""
Shared constants for Nemurium entitlements.
"""

import os

MB = 1024 * 1024

# Tier configuration (prices in cents)
TIER_CONFIG = {
    "FREE": {
        "name": "Free",
        "price": 0,
        "content_limit": 5,
        "features": ["Basic world creation", "Community access", "Public gallery"],
        "allowed_content_types": ["text", "image"],
        "max_file_size": 5 * MB,
        "priority": 0,
    },
    "SUPPORTER": {
        "name": "Supporter",
        "price": 500,
        "content_limit": 25,
        "features": ["Enhanced world creation", "Audio support", "Early access"],
        "allowed_content_types": ["text", "image", "audio"],
        "max_file_size": 25 * MB,
        "priority": 1,
    },
    "FOUNDING_CREATOR": {
        "name": "Founding Creator",
        "price": 2500,
        "content_limit": 100,
        "features": ["Video support", "Beta access", "Creator badge", "Priority support"],
        "allowed_content_types": ["text", "image", "audio", "video"],
        "max_file_size": 100 * MB,
        "priority": 2,
    },
    "INNER_CIRCLE": {
        "name": "Inner Circle",
        "price": 7500,
        "content_limit": 1000,
        "features": ["VR/AR/NFT support", "Unlimited uploads", "Direct founder access", "Revenue sharing"],
        "allowed_content_types": ["text", "image", "audio", "video", "vr", "ar", "nft"],
        "max_file_size": 500 * MB,
        "priority": 3,
    },
    "LIFETIME": {
        "name": "Lifetime",
        "price": 99900,
        "content_limit": 1000,
        "features": ["All Inner Circle features", "Lifetime access", "Special NFT badge"],
        "allowed_content_types": ["text", "image", "audio", "video", "vr", "ar", "nft"],
        "max_file_size": 500 * MB,
        "priority": 4,
        "lifetime": True,
    },
}

FREE_TIER = "FREE"

CONTENT_TYPES = ["text", "image", "audio", "video", "vr", "ar", "nft"]

# Billing
BILLING_PERIOD_DAYS = 30
IDEMPOTENCY_TTL_DAYS = int(os.environ.get("IDEMPOTENCY_TTL_DAYS", "90"))

# Optimistic concurrency retry budgets
WEBHOOK_MAX_RETRIES = int(os.environ.get("WEBHOOK_MAX_RETRIES", "5"))
SLOT_MAX_RETRIES = int(os.environ.get("SLOT_MAX_RETRIES", "5"))

# Webhook providers
PROVIDER_STRIPE = "stripe"
PROVIDER_GUMROAD = "gumroad"

# Content metadata limits
MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 1000
MAX_TAGS = 10

# DynamoDB throttling error codes that should trigger retry
THROTTLING_ERRORS = (
    "ProvisionedThroughputExceededException",
    "RequestLimitExceeded",
    "ThrottlingException",
    "InternalServerError",
)
