"""
Entitlement gate: atomically check-and-consume one content slot.

The read, the policy check and the write are tied together by the
repository's conditional `consume_slot`, so N concurrent callers against a
record with L free slots produce exactly min(N, L) grants.

Losing a race to another slot grant does not count against the retry
budget: the limit check on the next pass still bounds the loop by the number
of free slots. Only conflicts with other writers (tier changes, webhooks,
resets) spend an attempt.
"""

import logging
from dataclasses import dataclass
from typing import Union

from shared.constants import SLOT_MAX_RETRIES

from billing.manager import DenyReason, SubscriptionManager
from billing.models import SubscriptionRecord
from billing.repository import SubscriptionRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Granted:
    record: SubscriptionRecord


@dataclass(frozen=True)
class Denied:
    reason: DenyReason
    message: str


class EntitlementGate:

    def __init__(
        self,
        repository: SubscriptionRepository,
        manager: SubscriptionManager,
        max_retries: int = SLOT_MAX_RETRIES,
    ):
        self.repository = repository
        self.manager = manager
        self.max_retries = max_retries

    def try_consume_slot(self, user_id: str, content_type: str, file_size: int = 0) -> Union[Granted, Denied]:
        record = self._load(user_id)
        attempts = 0
        while attempts < self.max_retries:
            decision = self.manager.can_create_content(record, content_type, file_size)
            if not decision:
                return Denied(decision.reason, decision.message)

            updated = self.repository.consume_slot(user_id, record.version)
            if updated is not None:
                return Granted(updated)

            current = self._load(user_id)
            if not _lost_to_slot_grant(record, current):
                attempts += 1
                logger.debug(f"Slot race for {user_id} (attempt {attempts}/{self.max_retries})")
            record = current

        # Persistent contention; the caller may retry
        logger.warning(f"Slot consumption for {user_id} exhausted {self.max_retries} attempts")
        return Denied(DenyReason.LIMIT_REACHED, "limit reached")

    def _load(self, user_id: str) -> SubscriptionRecord:
        record = self.repository.find(user_id)
        if record is None:
            record = self.repository.upsert(self.manager.new_record(user_id))
        return record


def _entitlement_fields(record: SubscriptionRecord) -> tuple:
    return (
        record.tier,
        record.content_limit,
        record.is_active,
        record.status,
        record.has_lifetime_access,
        record.plan_end_date,
        record.trial_end_date,
    )


def _lost_to_slot_grant(before: SubscriptionRecord, after: SubscriptionRecord) -> bool:
    """True when the only change since `before` is more slots in use."""
    return (
        after.used_content_slots > before.used_content_slots
        and _entitlement_fields(after) == _entitlement_fields(before)
    )
