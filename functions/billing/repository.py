"""
Subscription record store.

`SubscriptionRepository` is the storage contract the business logic depends
on: lookup, create-if-absent upsert, and optimistic compare-and-set keyed on
the record's `version`. `DynamoSubscriptionRepository` is the production
implementation; `InMemorySubscriptionRepository` backs local runs and tests.
"""

import hashlib
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Iterator, Optional

from billing.models import SubscriptionRecord


def normalize_email(email: str) -> str:
    return email.strip().lower()


def user_id_for_email(email: str) -> str:
    """Deterministic user id so concurrent find-or-create calls converge."""
    return f"user_{hashlib.sha256(normalize_email(email).encode()).hexdigest()[:16]}"


class SubscriptionRepository(ABC):

    @abstractmethod
    def find(self, user_id: str) -> Optional[SubscriptionRecord]:
        """Return the stored record or None."""

    @abstractmethod
    def find_by_email(self, email: str) -> Optional[SubscriptionRecord]:
        """Return the record registered for `email` or None."""

    @abstractmethod
    def find_by_external_ref(self, provider: str, external_subscription_id: str) -> Optional[SubscriptionRecord]:
        """Return the record linked to a provider subscription id or None."""

    @abstractmethod
    def upsert(self, record: SubscriptionRecord) -> SubscriptionRecord:
        """Store `record` if no record exists for its user; return the stored one.

        Never overwrites an existing record, so concurrent callers all end up
        with the same winner.
        """

    @abstractmethod
    def compare_and_set(self, record: SubscriptionRecord, expected_version: int) -> bool:
        """Replace the stored record if its version still equals `expected_version`.

        Returns False on a version conflict.
        """

    @abstractmethod
    def consume_slot(self, user_id: str, expected_version: int) -> Optional[SubscriptionRecord]:
        """Increment used_content_slots by one.

        Applies only while the version is unchanged and used < limit. Returns
        the updated record, or None if the condition failed.
        """

    @abstractmethod
    def release_slot(self, user_id: str) -> Optional[SubscriptionRecord]:
        """Decrement used_content_slots by one if it is above zero."""

    @abstractmethod
    def scan(self) -> Iterator[SubscriptionRecord]:
        """Iterate over every stored record."""

    def find_or_create(self, default: SubscriptionRecord) -> SubscriptionRecord:
        existing = self.find(default.user_id)
        if existing is not None:
            return existing
        return self.upsert(default)

    @staticmethod
    def _check_version(record: SubscriptionRecord, expected_version: int) -> None:
        if record.version != expected_version + 1:
            raise ValueError(
                f"Record version {record.version} must be expected_version + 1 ({expected_version + 1})"
            )


class InMemorySubscriptionRepository(SubscriptionRepository):
    """Lock-protected dict store with the same atomicity as the DynamoDB one."""

    def __init__(self):
        self._records: dict[str, SubscriptionRecord] = {}
        self._emails: dict[str, str] = {}
        self._refs: dict[tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def find(self, user_id):
        with self._lock:
            return self._records.get(user_id)

    def find_by_email(self, email):
        with self._lock:
            user_id = self._emails.get(normalize_email(email))
            return self._records.get(user_id) if user_id else None

    def find_by_external_ref(self, provider, external_subscription_id):
        with self._lock:
            user_id = self._refs.get((provider, external_subscription_id))
            return self._records.get(user_id) if user_id else None

    def upsert(self, record):
        with self._lock:
            existing = self._records.get(record.user_id)
            if existing is not None:
                return existing
            self._store(record)
            return record

    def compare_and_set(self, record, expected_version):
        self._check_version(record, expected_version)
        with self._lock:
            current = self._records.get(record.user_id)
            if current is None or current.version != expected_version:
                return False
            self._store(record)
            return True

    def consume_slot(self, user_id, expected_version):
        with self._lock:
            current = self._records.get(user_id)
            if (
                current is None
                or current.version != expected_version
                or current.used_content_slots >= current.content_limit
            ):
                return None
            updated = current.bump(used_content_slots=current.used_content_slots + 1)
            self._store(updated)
            return updated

    def release_slot(self, user_id):
        with self._lock:
            current = self._records.get(user_id)
            if current is None or current.used_content_slots <= 0:
                return None
            updated = current.bump(used_content_slots=current.used_content_slots - 1)
            self._store(updated)
            return updated

    def scan(self):
        with self._lock:
            records = list(self._records.values())
        yield from records

    def put(self, record: SubscriptionRecord) -> None:
        """Unconditional write. Test seeding only."""
        with self._lock:
            self._store(replace(record))

    def _store(self, record):
        self._records[record.user_id] = record
        if record.email:
            self._emails[normalize_email(record.email)] = record.user_id
        for provider, ref in record.external_refs.items():
            self._refs[(provider, ref)] = record.user_id
