"""
Subscription Expiry Sweep - Scheduled Lambda

Triggered by EventBridge daily. Downgrades records whose deferred
cancellation period or trial has elapsed, via the manager's
`reconcile_expiry`. Payment failures are not acted on here.
"""

import logging

from shared.constants import WEBHOOK_MAX_RETRIES
from shared.logging_utils import configure_structured_logging

from billing.factory import get_repository
from billing.manager import SubscriptionManager
from billing.repository import SubscriptionRepository

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


def sweep(repository: SubscriptionRepository, manager: SubscriptionManager, max_retries: int = WEBHOOK_MAX_RETRIES) -> dict:
    stats = {"scanned": 0, "downgraded": 0, "conflicts": 0}

    for record in repository.scan():
        stats["scanned"] += 1
        for _ in range(max_retries):
            updated = manager.reconcile_expiry(record)
            if updated is None:
                break
            if repository.compare_and_set(updated, record.version):
                stats["downgraded"] += 1
                logger.info(
                    f"Downgraded expired {record.tier} subscription for {record.user_id}",
                    extra={"user_id": record.user_id, "reason": updated.cancellation_reason},
                )
                break
            record = repository.find(record.user_id)
        else:
            stats["conflicts"] += 1
            logger.warning(f"Could not reconcile {record.user_id} after {max_retries} conflicts")

    return stats


def handler(event, context):
    """Downgrade expired subscriptions."""
    configure_structured_logging()
    logger.info("Starting subscription expiry sweep")

    stats = sweep(get_repository(), SubscriptionManager())

    logger.info(f"Subscription sweep finished: {stats['downgraded']} downgraded", extra=stats)
    return stats
