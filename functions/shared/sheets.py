"""
Google Sheets export of golden ticket submissions.

Rows are posted to a Google Apps Script web app which appends them to the
participant sheet. Column keys are German because the sheet is maintained
by the marketing team.
"""

import logging
import os
import time
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

import httpx

from shared.constants import DEFAULT_COUNTRY, DEFAULT_SOURCE, SHEETS_TIMEOUT, SHEETS_TIMEZONE
from shared.logging_utils import log_external_call

logger = logging.getLogger(__name__)


def build_sheet_row(data: dict, now: Optional[datetime] = None) -> dict:
    """Flatten a submission into the sheet's column layout."""
    now = now or datetime.now(timezone.utc)
    local = now.astimezone(ZoneInfo(SHEETS_TIMEZONE))

    return {
        "datum": local.strftime("%d.%m.%Y"),
        "uhrzeit": local.strftime("%H:%M:%S"),
        "ticket_code": data.get("ticketCode") or "",
        "vorname": data.get("firstName") or "",
        "nachname": data.get("lastName") or "",
        "email": data.get("email") or "",
        "handynummer": data.get("phone") or "",
        "strasse": data.get("street") or "",
        "plz": data.get("postalCode") or "",
        "stadt": data.get("city") or "",
        "land": data.get("country") or DEFAULT_COUNTRY,
        "quelle": data.get("source") or DEFAULT_SOURCE,
        "utm_source": data.get("utm_source") or "",
        "utm_medium": data.get("utm_medium") or "",
        "utm_campaign": data.get("utm_campaign") or "",
        "einwilligung": "Ja" if data.get("consent") else "Nein",
        "einwilligung_zeit": data.get("consentTs") or now.isoformat(),
    }


def log_submission(data: dict) -> bool:
    """
    Append a submission to the sheet.

    Best-effort: failures are logged and reported as False.
    """
    url = os.environ.get("GOOGLE_SHEETS_WEB_APP_URL")
    if not url:
        logger.debug("GOOGLE_SHEETS_WEB_APP_URL not set, skipping sheet export")
        return False

    row = build_sheet_row(data)
    start = time.time()
    try:
        # Apps Script answers with a redirect to the script's output
        with httpx.Client(timeout=SHEETS_TIMEOUT, follow_redirects=True) as client:
            response = client.post(url, json=row)
    except httpx.RequestError as e:
        log_external_call(logger, "google_sheets", "append_row", False, (time.time() - start) * 1000, str(e))
        return False

    latency_ms = (time.time() - start) * 1000
    if not response.is_success:
        log_external_call(
            logger, "google_sheets", "append_row", False, latency_ms, f"HTTP {response.status_code}"
        )
        return False

    log_external_call(logger, "google_sheets", "append_row", True, latency_ms)
    return True
