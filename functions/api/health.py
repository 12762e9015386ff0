"""
Health Check Endpoint - GET /health

Reports service status and the configured redemption store backend.
"""

import json
import logging
import time
from datetime import datetime, timezone

from shared.logging_utils import configure_structured_logging, set_request_id, log_api_request
from shared.redemption_store import get_redemption_store

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def handler(event, context):
    """
    Lambda handler for health check.

    Does not read the store; a scan per health probe would be too costly.
    """
    configure_structured_logging()
    start_time = time.time()
    set_request_id(event)

    body = {
        "status": "healthy",
        "version": VERSION,
        "store_backend": get_redemption_store().backend,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    log_api_request(logger, "GET", "/health", 200, (time.time() - start_time) * 1000)
    return {
        "statusCode": 200,
        "headers": {
            "Content-Type": "application/json",
            "Cache-Control": "no-cache",
        },
        "body": json.dumps(body),
    }
