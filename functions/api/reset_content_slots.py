"""
Monthly Content Slot Reset - Scheduled Lambda

Triggered by EventBridge on the 1st of each month at midnight UTC.
Sets used_content_slots back to zero for every subscription record.

Each reset is a compare-and-set against the version that was scanned, so a
concurrent slot grant or webhook is never overwritten; the record is re-read
and retried instead.
"""

import logging
from typing import Optional

from shared.constants import SLOT_MAX_RETRIES
from shared.logging_utils import configure_structured_logging

from billing.factory import get_repository
from billing.manager import SubscriptionManager
from billing.models import SubscriptionRecord
from billing.repository import SubscriptionRepository

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

# Stop early when the Lambda is about to time out; the next run picks up the rest
MIN_REMAINING_MS = 10_000


def reset_record(
    repository: SubscriptionRepository,
    manager: SubscriptionManager,
    record: SubscriptionRecord,
    max_retries: int = SLOT_MAX_RETRIES,
) -> Optional[bool]:
    """Reset one record. Returns True if reset, None if nothing to do, False if conflicts persisted."""
    for _ in range(max_retries):
        if record is None or record.used_content_slots == 0:
            return None
        if repository.compare_and_set(manager.reset_monthly_usage(record), record.version):
            return True
        record = repository.find(record.user_id)
    return False


def run_reset(repository: SubscriptionRepository, manager: SubscriptionManager, context=None) -> dict:
    stats = {"processed": 0, "reset": 0, "conflicts": 0, "complete": True}

    for record in repository.scan():
        if context is not None and context.get_remaining_time_in_millis() < MIN_REMAINING_MS:
            logger.warning(f"Approaching timeout after {stats['processed']} records, stopping early")
            stats["complete"] = False
            break

        stats["processed"] += 1
        outcome = reset_record(repository, manager, record)
        if outcome is True:
            stats["reset"] += 1
        elif outcome is False:
            stats["conflicts"] += 1
            logger.warning(f"Could not reset slots for {record.user_id} after repeated conflicts")

    return stats


def handler(event, context):
    """Reset all users' content slots for the new month."""
    configure_structured_logging()
    logger.info("Starting monthly content slot reset")

    stats = run_reset(get_repository(), SubscriptionManager(), context)

    logger.info(
        f"Content slot reset finished: {stats['reset']} reset of {stats['processed']} records",
        extra=stats,
    )
    return stats
