"""
Idempotency ledger of applied webhook events.

An entry for (provider, external_event_id) means the event's transition has
been committed. Entries carry a TTL covering provider retry windows.
"""

import logging
import os
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Optional

from botocore.exceptions import ClientError

from shared.aws_clients import get_dynamodb
from shared.constants import IDEMPOTENCY_TTL_DAYS

logger = logging.getLogger(__name__)

BILLING_EVENTS_TABLE = os.environ.get("BILLING_EVENTS_TABLE", "nemurium-billing-events")
LEDGER_SK = "APPLIED"


def ledger_pk(provider: str, external_event_id: str) -> str:
    return f"{provider}#{external_event_id}"


class IdempotencyLedger(ABC):

    @abstractmethod
    def has_applied(self, provider: str, external_event_id: str) -> bool:
        """True if the event was already committed."""

    @abstractmethod
    def record(self, provider: str, external_event_id: str, event_type: str, applied_at: datetime) -> bool:
        """Append an entry. Returns False if one already existed."""


class DynamoIdempotencyLedger(IdempotencyLedger):

    def __init__(self, table=None, ttl_days: int = IDEMPOTENCY_TTL_DAYS):
        self._table = table
        self.ttl_days = ttl_days

    @property
    def table(self):
        if self._table is None:
            self._table = get_dynamodb().Table(BILLING_EVENTS_TABLE)
        return self._table

    def has_applied(self, provider, external_event_id):
        response = self.table.get_item(
            Key={"pk": ledger_pk(provider, external_event_id), "sk": LEDGER_SK},
            ConsistentRead=True,
        )
        return "Item" in response

    def record(self, provider, external_event_id, event_type, applied_at):
        try:
            self.table.put_item(
                Item={
                    "pk": ledger_pk(provider, external_event_id),
                    "sk": LEDGER_SK,
                    "provider": provider,
                    "event_type": event_type,
                    "applied_at": applied_at.isoformat(),
                    "ttl": int((applied_at + timedelta(days=self.ttl_days)).timestamp()),
                },
                ConditionExpression="attribute_not_exists(pk)",
            )
            return True
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                logger.info(f"Ledger entry already present for {provider} event {external_event_id}")
                return False
            raise


class InMemoryIdempotencyLedger(IdempotencyLedger):

    def __init__(self, ttl_days: int = IDEMPOTENCY_TTL_DAYS):
        self.ttl_days = ttl_days
        self._entries: dict[tuple[str, str], datetime] = {}
        self._lock = threading.Lock()

    def has_applied(self, provider, external_event_id):
        with self._lock:
            return (provider, external_event_id) in self._entries

    def record(self, provider, external_event_id, event_type, applied_at):
        with self._lock:
            key = (provider, external_event_id)
            if key in self._entries:
                return False
            self._entries[key] = applied_at
            return True

    def applied_at(self, provider: str, external_event_id: str) -> Optional[datetime]:
        with self._lock:
            return self._entries.get((provider, external_event_id))

    def purge_expired(self, now: datetime) -> int:
        """Drop entries older than the retention window. Returns the count removed."""
        cutoff = now - timedelta(days=self.ttl_days)
        with self._lock:
            expired = [key for key, applied in self._entries.items() if applied < cutoff]
            for key in expired:
                del self._entries[key]
        return len(expired)
