"""
CloudWatch custom metrics for the redemption backend.

Metrics are operational signals only. Every helper here logs and swallows
CloudWatch failures so a metrics outage never changes a request's outcome.

Emitted metrics:

- Redemptions (Campaign)           one per accepted ticket code
- RedemptionStoreDegraded (Backend) storage could not be read
- Errors (ErrorType, Service, Handler)
- RedemptionsTotal (Campaign), UniqueParticipants from the stats Lambda
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from shared.aws_clients import get_cloudwatch

logger = logging.getLogger(__name__)

NAMESPACE = os.environ.get("CLOUDWATCH_NAMESPACE", "GoldenTicket")

# put_metric_data accepts at most this many datums per call
MAX_METRICS_PER_REQUEST = 20


def _datum(
    metric_name: str,
    value: float = 1.0,
    unit: str = "Count",
    dimensions: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    datum = {
        "MetricName": metric_name,
        "Value": value,
        "Unit": unit,
        "Timestamp": datetime.now(timezone.utc),
    }
    if dimensions:
        datum["Dimensions"] = [{"Name": name, "Value": val} for name, val in dimensions.items()]
    return datum


def emit_metric(
    metric_name: str,
    value: float = 1.0,
    unit: str = "Count",
    dimensions: Optional[Dict[str, str]] = None,
) -> None:
    """
    Put a single datum into the GoldenTicket namespace.

    Usage:
        emit_metric("Redemptions", dimensions={"Campaign": campaign})
    """
    try:
        get_cloudwatch().put_metric_data(
            Namespace=NAMESPACE,
            MetricData=[_datum(metric_name, value, unit, dimensions)],
        )
    except Exception as e:
        logger.warning(f"Could not record metric {metric_name}: {e}")
        return

    logger.debug(f"Metric {metric_name}={value} {unit}", extra={"dimensions": dimensions})


def emit_batch_metrics(metrics: List[Dict[str, Any]]) -> None:
    """
    Put several datums, chunked to the CloudWatch per-request limit.

    Each entry takes the keyword arguments of emit_metric, e.g.
    {"metric_name": "RedemptionsTotal", "value": 120, "dimensions": {"Campaign": "all"}}.
    """
    try:
        data = [
            _datum(m["metric_name"], m.get("value", 1.0), m.get("unit", "Count"), m.get("dimensions"))
            for m in metrics
        ]
        for start in range(0, len(data), MAX_METRICS_PER_REQUEST):
            get_cloudwatch().put_metric_data(
                Namespace=NAMESPACE,
                MetricData=data[start : start + MAX_METRICS_PER_REQUEST],
            )
    except Exception as e:
        logger.warning(f"Could not record {len(metrics)} batched metrics: {e}")
        return

    logger.debug(f"Recorded {len(data)} metrics")


def emit_error_metric(
    error_type: str,
    service: Optional[str] = None,
    handler: Optional[str] = None,
) -> None:
    """Count an Errors datum; service and handler become dimensions when given."""
    dimensions = {"ErrorType": error_type}
    if service:
        dimensions["Service"] = service
    if handler:
        dimensions["Handler"] = handler

    emit_metric("Errors", dimensions=dimensions)
