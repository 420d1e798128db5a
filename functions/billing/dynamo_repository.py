"""
DynamoDB-backed subscription repository.

Optimistic concurrency is enforced with conditional writes on the `version`
attribute; there are no locks. A failed condition is a normal outcome and is
reported to the caller, any other ClientError propagates.
"""

import logging
import os
from typing import Optional

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from shared.aws_clients import get_dynamodb

from billing.models import SUBSCRIPTION_SK, SubscriptionRecord, subscription_ref_attribute
from billing.repository import SubscriptionRepository, normalize_email

logger = logging.getLogger(__name__)

SUBSCRIPTIONS_TABLE = os.environ.get("SUBSCRIPTIONS_TABLE", "nemurium-subscriptions")


def _is_condition_failure(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


class DynamoSubscriptionRepository(SubscriptionRepository):

    def __init__(self, table=None):
        self._table = table

    @property
    def table(self):
        if self._table is None:
            self._table = get_dynamodb().Table(SUBSCRIPTIONS_TABLE)
        return self._table

    def find(self, user_id: str) -> Optional[SubscriptionRecord]:
        response = self.table.get_item(
            Key={"pk": user_id, "sk": SUBSCRIPTION_SK},
            ConsistentRead=True,
        )
        item = response.get("Item")
        return SubscriptionRecord.from_item(item) if item else None

    def find_by_email(self, email: str) -> Optional[SubscriptionRecord]:
        response = self.table.query(
            IndexName="email-index",
            KeyConditionExpression=Key("email").eq(normalize_email(email)),
        )
        for item in response.get("Items", []):
            if item.get("sk") == SUBSCRIPTION_SK:
                # GSI reads are eventually consistent - re-read by key for the current version
                return self.find(item["pk"])
        return None

    def find_by_external_ref(self, provider: str, external_subscription_id: str) -> Optional[SubscriptionRecord]:
        attribute = subscription_ref_attribute(provider)
        response = self.table.query(
            IndexName=f"{provider}-subscription-index",
            KeyConditionExpression=Key(attribute).eq(external_subscription_id),
        )
        for item in response.get("Items", []):
            if item.get("sk") == SUBSCRIPTION_SK:
                return self.find(item["pk"])
        return None

    def upsert(self, record: SubscriptionRecord) -> SubscriptionRecord:
        try:
            self.table.put_item(
                Item=record.to_item(),
                ConditionExpression="attribute_not_exists(pk)",
            )
            logger.info(f"Created subscription record for {record.user_id}")
            return record
        except ClientError as e:
            if not _is_condition_failure(e):
                raise
        existing = self.find(record.user_id)
        if existing is None:
            # Only reachable if the record was deleted between the two calls
            raise RuntimeError(f"Subscription record {record.user_id} vanished during upsert")
        return existing

    def compare_and_set(self, record: SubscriptionRecord, expected_version: int) -> bool:
        self._check_version(record, expected_version)
        try:
            self.table.put_item(
                Item=record.to_item(),
                ConditionExpression="version = :expected",
                ExpressionAttributeValues={":expected": expected_version},
            )
            return True
        except ClientError as e:
            if _is_condition_failure(e):
                logger.info(
                    f"Version conflict for {record.user_id} (expected v{expected_version})"
                )
                return False
            raise

    def consume_slot(self, user_id: str, expected_version: int) -> Optional[SubscriptionRecord]:
        try:
            response = self.table.update_item(
                Key={"pk": user_id, "sk": SUBSCRIPTION_SK},
                UpdateExpression="SET used_content_slots = used_content_slots + :one, version = version + :one",
                ConditionExpression="version = :expected AND used_content_slots < content_limit",
                ExpressionAttributeValues={":one": 1, ":expected": expected_version},
                ReturnValues="ALL_NEW",
            )
        except ClientError as e:
            if _is_condition_failure(e):
                return None
            raise
        return SubscriptionRecord.from_item(response["Attributes"])

    def release_slot(self, user_id: str) -> Optional[SubscriptionRecord]:
        try:
            response = self.table.update_item(
                Key={"pk": user_id, "sk": SUBSCRIPTION_SK},
                UpdateExpression="SET used_content_slots = used_content_slots - :one, version = version + :one",
                ConditionExpression="used_content_slots > :zero",
                ExpressionAttributeValues={":one": 1, ":zero": 0},
                ReturnValues="ALL_NEW",
            )
        except ClientError as e:
            if _is_condition_failure(e):
                return None
            raise
        return SubscriptionRecord.from_item(response["Attributes"])

    def scan(self):
        kwargs = {"FilterExpression": Attr("sk").eq(SUBSCRIPTION_SK)}
        while True:
            response = self.table.scan(**kwargs)
            for item in response.get("Items", []):
                yield SubscriptionRecord.from_item(item)
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                break
            kwargs["ExclusiveStartKey"] = last_key
