"""
Post-commit notifications for subscription events.
"""

import logging
import os
from typing import Optional

from shared.aws_clients import get_sns
from shared.logging_utils import mask_email

from billing.models import SubscriptionRecord

logger = logging.getLogger(__name__)


class TrialNotifier:
    """Publishes trial-ending notices to SNS. Best-effort: failures are logged, never raised."""

    def __init__(self, topic_arn: Optional[str] = None):
        self.topic_arn = topic_arn if topic_arn is not None else os.environ.get("TRIAL_NOTIFICATIONS_TOPIC_ARN")

    def trial_ending(self, record: SubscriptionRecord) -> bool:
        if not self.topic_arn:
            logger.debug("TRIAL_NOTIFICATIONS_TOPIC_ARN not configured, skipping trial notification")
            return False

        trial_end = record.trial_end_date.date().isoformat() if record.trial_end_date else "soon"
        try:
            get_sns().publish(
                TopicArn=self.topic_arn,
                Subject="Nemurium: Your trial is ending",
                Message=(
                    f"Your {record.tier} trial ends on {trial_end}.\n\n"
                    f"User ID: {record.user_id}\n"
                    f"Email: {record.email or 'unknown'}\n"
                ),
                MessageAttributes={
                    "user_id": {"DataType": "String", "StringValue": record.user_id},
                },
            )
            logger.info(f"Trial ending notification sent for {mask_email(record.email)}")
            return True
        except Exception as e:
            # Don't let SNS failures affect webhook processing
            logger.error(f"Failed to send trial notification: {e}")
            return False
