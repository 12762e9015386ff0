"""Phone number normalization to the E.164-like form the CRM expects."""

import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_COUNTRY_PREFIX = "+49"
MIN_E164_LENGTH = 11  # "+" plus at least 10 digits

_SEPARATORS = re.compile(r"[\s\-()]")
_E164 = re.compile(r"^\+\d+$")


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize a German-centric phone number.

    "0171 234-5678" -> "+491712345678", "49 171 ..." -> "+49171...",
    numbers without a country code get +49. Returns None if the result does
    not look like a valid number, so callers can skip the field.
    """
    if not phone or not phone.strip():
        return None

    cleaned = _SEPARATORS.sub("", phone).strip()

    if not cleaned.startswith("+"):
        if cleaned.startswith("0"):
            cleaned = DEFAULT_COUNTRY_PREFIX + cleaned[1:]
        elif cleaned.startswith("49"):
            cleaned = "+" + cleaned
        else:
            cleaned = DEFAULT_COUNTRY_PREFIX + cleaned

    if len(cleaned) >= MIN_E164_LENGTH and _E164.match(cleaned):
        return cleaned

    logger.warning(f"Phone number rejected after normalization ({len(cleaned)} chars)")
    return None
