"""
CloudWatch Metrics Helper

Best-effort custom metrics for webhook and entitlement outcomes. A metric
that cannot be published is logged and dropped; it never changes the
response a provider or dashboard sees.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Dict, Optional

from shared.aws_clients import get_cloudwatch

logger = logging.getLogger(__name__)

NAMESPACE = os.environ.get("CLOUDWATCH_NAMESPACE", "Nemurium")


def emit_metric(
    metric_name: str,
    value: float = 1.0,
    unit: str = "Count",
    dimensions: Optional[Dict[str, str]] = None,
) -> None:
    """Publish one datapoint under NAMESPACE, e.g. emit_metric("WebhookProcessed", dimensions={"Provider": "stripe"})."""
    datum = {
        "MetricName": metric_name,
        "Value": value,
        "Unit": unit,
        "Timestamp": datetime.now(timezone.utc),
    }
    if dimensions:
        datum["Dimensions"] = [{"Name": name, "Value": dim} for name, dim in dimensions.items()]

    try:
        get_cloudwatch().put_metric_data(Namespace=NAMESPACE, MetricData=[datum])
    except Exception as exc:
        logger.warning(
            f"Failed to emit metric {metric_name}: {exc}",
            extra={"metric_name": metric_name, "dimensions": dimensions},
        )


def emit_webhook_metric(provider: str, outcome: str) -> None:
    """Emit a WebhookProcessed count for one provider/outcome pair."""
    emit_metric(
        "WebhookProcessed",
        dimensions={"Provider": provider, "Outcome": outcome},
    )


def emit_entitlement_metric(outcome: str, content_type: Optional[str] = None) -> None:
    """ContentSlotDecision count; `outcome` is "granted" or the denial reason."""
    dimensions = {"Outcome": outcome}
    if content_type:
        dimensions["ContentType"] = content_type

    emit_metric("ContentSlotDecision", dimensions=dimensions)
