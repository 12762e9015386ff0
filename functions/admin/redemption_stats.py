"""Report redemption statistics and publish them as CloudWatch metrics.

Invoked directly (console, CLI or a daily EventBridge rule):

    {"campaign": "goldenticket_2025"}   # optional filter
"""

import logging

from shared.code_validator import get_statistics
from shared.metrics import emit_batch_metrics

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


def handler(event, context):
    """Return get_statistics() for the requested campaign and emit totals."""
    campaign = (event or {}).get("campaign") or None

    stats = get_statistics(campaign=campaign)
    logger.info(f"Redemption statistics: {stats}", extra={"campaign": campaign or ""})

    if stats["degraded"]:
        logger.error("Redemption store degraded, statistics may be incomplete")

    metrics = [
        {
            "metric_name": "RedemptionsTotal",
            "value": count,
            "dimensions": {"Campaign": name},
        }
        for name, count in stats["by_campaign"].items()
    ]
    metrics.append(
        {
            "metric_name": "UniqueParticipants",
            "value": stats["unique_emails"],
            "dimensions": {"Campaign": campaign or "all"},
        }
    )
    emit_batch_metrics(metrics)

    return {"statusCode": 200, "campaign": campaign, "stats": stats}
