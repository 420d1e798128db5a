"""
Entitlement service facade used by the internal API handlers.

Each operation takes the authenticated user id first; a missing id is an
AuthError. Record mutations commit through compare-and-set and retry on
version conflicts.
"""

import logging
from typing import Optional

from shared.constants import CONTENT_TYPES, MAX_DESCRIPTION_LENGTH, MAX_TAGS, MAX_TITLE_LENGTH, SLOT_MAX_RETRIES
from shared.errors import AuthError, BadRequestError, LimitExceeded, TransientError
from shared.logging_utils import mask_email
from shared.types import ContentStats, CreateContentResult, SubscriptionSummary, UpgradeResult

from billing.content import ContentRepository
from billing.gate import Denied, EntitlementGate
from billing.manager import DenyReason, SubscriptionManager
from billing.models import SubscriptionRecord, to_iso
from billing.proration import format_amount
from billing.repository import SubscriptionRepository

logger = logging.getLogger(__name__)


def _require_user(user_id: Optional[str]) -> str:
    if not user_id:
        raise AuthError()
    return user_id


def validate_content_metadata(metadata: Optional[dict]) -> dict:
    """Check user-supplied content metadata. Returns the cleaned dict."""
    metadata = dict(metadata or {})

    title = metadata.get("title")
    if title is not None:
        if not isinstance(title, str):
            raise BadRequestError("title must be a string")
        if len(title) > MAX_TITLE_LENGTH:
            raise BadRequestError(f"title exceeds {MAX_TITLE_LENGTH} characters")

    description = metadata.get("description")
    if description is not None:
        if not isinstance(description, str):
            raise BadRequestError("description must be a string")
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise BadRequestError(f"description exceeds {MAX_DESCRIPTION_LENGTH} characters")

    tags = metadata.get("tags")
    if tags is not None:
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise BadRequestError("tags must be a list of strings")
        if len(tags) > MAX_TAGS:
            raise BadRequestError(f"At most {MAX_TAGS} tags allowed")

    # Reserved keys belong to the content item itself
    for key in ("pk", "sk", "content_type", "file_size", "created_at"):
        metadata.pop(key, None)
    return metadata


class EntitlementService:

    def __init__(
        self,
        repository: SubscriptionRepository,
        content_repository: ContentRepository,
        manager: Optional[SubscriptionManager] = None,
        gate: Optional[EntitlementGate] = None,
        max_retries: int = SLOT_MAX_RETRIES,
    ):
        self.repository = repository
        self.content_repository = content_repository
        self.manager = manager or SubscriptionManager()
        self.gate = gate or EntitlementGate(repository, self.manager, max_retries=max_retries)
        self.max_retries = max_retries

    def _load(self, user_id: str) -> SubscriptionRecord:
        return self.repository.find_or_create(self.manager.new_record(user_id))

    def get_current_subscription(self, user_id: Optional[str]) -> SubscriptionSummary:
        record = self._load(_require_user(user_id))
        tier = self.manager.catalog.get(record.tier)
        return {
            "tier": record.tier,
            "tierName": tier.name,
            "status": record.status.value,
            "isActive": record.is_active,
            "remainingSlots": self.manager.remaining_slots(record),
            "isTrialActive": self.manager.is_trial_active(record),
            "daysUntilBilling": self.manager.days_until_billing(record),
            "canUpgrade": self.manager.can_upgrade(record),
            "hasLifetimeAccess": record.has_lifetime_access,
            "planEndDate": to_iso(record.plan_end_date),
            "trialEndDate": to_iso(record.trial_end_date),
        }

    def upgrade_subscription(self, user_id: Optional[str], new_tier: str, payment_ref: Optional[str] = None) -> UpgradeResult:
        """Move the user to a strictly higher tier.

        Proration is computed against the record that was committed, so a
        concurrent change re-prices the upgrade on retry.

        Raises:
            AuthError: no user id
            UnknownTierError: `new_tier` is not in the catalog
            BadRequestError: same tier or downgrade
            TransientError: version conflicts outlasted the retry budget
        """
        user_id = _require_user(user_id)
        self.manager.catalog.get(new_tier)

        for attempt in range(1, self.max_retries + 1):
            record = self._load(user_id)
            self.manager.validate_upgrade(record.tier, new_tier)
            amount = self.manager.proration_for(record, new_tier)
            updated = self.manager.apply_upgrade(record, new_tier, payment_ref)

            if self.repository.compare_and_set(updated, record.version):
                logger.info(
                    f"Upgraded {user_id} from {record.tier} to {new_tier} (proration {amount})",
                    extra={"user_id": user_id, "email": mask_email(record.email)},
                )
                return {
                    "success": True,
                    "newTier": new_tier,
                    "prorationAmount": amount,
                    "prorationFormatted": format_amount(amount),
                }
            logger.info(f"Version conflict upgrading {user_id} (attempt {attempt}/{self.max_retries})")

        raise TransientError()

    def cancel_subscription(self, user_id: Optional[str], immediate: bool = False, reason: Optional[str] = None) -> dict:
        user_id = _require_user(user_id)

        for attempt in range(1, self.max_retries + 1):
            record = self._load(user_id)
            updated = self.manager.apply_cancellation(record, immediate, reason)
            if self.repository.compare_and_set(updated, record.version):
                logger.info(
                    f"Cancelled subscription for {user_id} (immediate={immediate})",
                    extra={"user_id": user_id, "reason": reason},
                )
                return {
                    "success": True,
                    "immediate": immediate,
                    "tier": updated.tier,
                    "planEndDate": to_iso(updated.plan_end_date),
                }
            logger.info(f"Version conflict cancelling {user_id} (attempt {attempt}/{self.max_retries})")

        raise TransientError()

    def create_content(
        self,
        user_id: Optional[str],
        content_type: str,
        file_size: int = 0,
        metadata: Optional[dict] = None,
    ) -> CreateContentResult:
        """Consume one slot and store the content item.

        Raises:
            AuthError: no user id
            BadRequestError: unknown content type, bad metadata, or file too large
            LimitExceeded: entitlement denied
        """
        user_id = _require_user(user_id)
        if content_type not in CONTENT_TYPES:
            raise BadRequestError(f"Unknown content type: {content_type}", details={"allowed": CONTENT_TYPES})
        if file_size is None or file_size < 0:
            raise BadRequestError("file_size must be a non-negative integer")
        metadata = validate_content_metadata(metadata)

        result = self.gate.try_consume_slot(user_id, content_type, file_size)
        if isinstance(result, Denied):
            logger.info(f"Content denied for {user_id}: {result.reason.value}", extra={"user_id": user_id})
            if result.reason == DenyReason.FILE_TOO_LARGE:
                raise BadRequestError(result.message, details={"reason": result.reason.value})
            raise LimitExceeded(result.message, reason=result.reason.value)

        try:
            item = self.content_repository.create(user_id, content_type, file_size, metadata, self.manager.clock())
        except Exception:
            # Give the slot back so a storage failure doesn't burn quota
            logger.error(f"Content write failed for {user_id}, releasing slot", exc_info=True)
            self.repository.release_slot(user_id)
            raise

        return {
            "success": True,
            "contentId": item["sk"],
            "remainingSlots": result.record.remaining_slots,
        }

    def get_content_stats(self, user_id: Optional[str]) -> ContentStats:
        user_id = _require_user(user_id)
        record = self._load(user_id)
        tier = self.manager.catalog.get(record.tier)
        return {
            "totalContent": self.content_repository.count(user_id),
            "usedSlots": record.used_content_slots,
            "remainingSlots": record.remaining_slots,
            "contentLimit": record.content_limit,
            "allowedContentTypes": sorted(tier.allowed_content_types, key=CONTENT_TYPES.index),
            "maxFileSize": tier.max_file_size,
        }
