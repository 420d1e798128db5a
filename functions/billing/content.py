"""
Content repository collaborator: create, read, and count a user's content.
"""

import os
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from boto3.dynamodb.conditions import Key

from shared.aws_clients import get_dynamodb

CONTENT_TABLE = os.environ.get("CONTENT_TABLE", "nemurium-content")


def new_content_item(user_id: str, content_type: str, file_size: int, metadata: dict, now: datetime) -> dict:
    item = {
        "pk": user_id,
        "sk": f"content_{uuid.uuid4().hex}",
        "content_type": content_type,
        "file_size": file_size,
        "created_at": now.isoformat(),
        **metadata,
    }
    # DynamoDB rejects empty strings in some attribute positions
    return {k: v for k, v in item.items() if v is not None and v != ""}


class ContentRepository(ABC):

    @abstractmethod
    def create(self, user_id: str, content_type: str, file_size: int, metadata: dict, now: datetime) -> dict:
        """Persist a content item and return it (its id is in `sk`)."""

    @abstractmethod
    def get(self, user_id: str, content_id: str) -> Optional[dict]:
        """Return one content item or None."""

    @abstractmethod
    def count(self, user_id: str) -> int:
        """Number of content items owned by `user_id`."""


class DynamoContentRepository(ContentRepository):

    def __init__(self, table=None):
        self._table = table

    @property
    def table(self):
        if self._table is None:
            self._table = get_dynamodb().Table(CONTENT_TABLE)
        return self._table

    def create(self, user_id, content_type, file_size, metadata, now):
        item = new_content_item(user_id, content_type, file_size, metadata, now)
        self.table.put_item(Item=item)
        return item

    def get(self, user_id, content_id):
        response = self.table.get_item(Key={"pk": user_id, "sk": content_id})
        return response.get("Item")

    def count(self, user_id):
        total = 0
        kwargs = {
            "KeyConditionExpression": Key("pk").eq(user_id),
            "Select": "COUNT",
        }
        while True:
            response = self.table.query(**kwargs)
            total += response.get("Count", 0)
            if "LastEvaluatedKey" not in response:
                return total
            kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]


class InMemoryContentRepository(ContentRepository):

    def __init__(self):
        self._items: dict[str, dict[str, dict]] = {}
        self._lock = threading.Lock()

    def create(self, user_id, content_type, file_size, metadata, now):
        item = new_content_item(user_id, content_type, file_size, metadata, now)
        with self._lock:
            self._items.setdefault(user_id, {})[item["sk"]] = item
        return item

    def get(self, user_id, content_id):
        with self._lock:
            return self._items.get(user_id, {}).get(content_id)

    def count(self, user_id):
        with self._lock:
            return len(self._items.get(user_id, {}))
