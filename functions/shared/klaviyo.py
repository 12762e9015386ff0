"""
Klaviyo CRM integration.

Creates or updates the participant's profile, tracks the redemption event
and starts the newsletter subscription (Klaviyo sends the double-opt-in
email itself when the list requires it).

API docs: https://developers.klaviyo.com/en/reference/api_overview
"""

import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from shared.constants import (
    DEFAULT_WEBSITE,
    KLAVIYO_API_BASE,
    KLAVIYO_REVISION,
    KLAVIYO_TIMEOUT,
    SUBSCRIPTION_SOURCE,
)
from shared.credentials import get_api_key
from shared.logging_utils import log_external_call, mask_email
from shared.phone import normalize_phone

logger = logging.getLogger(__name__)

SERVICE = "klaviyo"


class KlaviyoError(Exception):
    """Raised when Klaviyo rejects a profile write."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


def get_klaviyo_api_key() -> Optional[str]:
    return get_api_key("KLAVIYO_SECRET_ARN", "KLAVIYO_API_KEY")


def is_configured() -> bool:
    return bool(get_klaviyo_api_key())


def _headers(api_key: str) -> dict:
    return {
        "Authorization": f"Klaviyo-API-Key {api_key}",
        "revision": KLAVIYO_REVISION,
        "Content-Type": "application/json",
        "Accept": "application/json",
    }


def build_profile_attributes(data: dict) -> dict:
    """
    Build Klaviyo profile attributes from a golden ticket submission.

    The phone number is only sent when it normalizes to E.164; the address
    becomes a Klaviyo location object when any part of it is present.
    """
    attributes: dict[str, Any] = {
        "email": data["email"].strip().lower(),
        "first_name": data.get("firstName") or "",
        "last_name": data.get("lastName") or "",
    }

    phone_number = normalize_phone(data.get("phone"))
    if phone_number:
        attributes["phone_number"] = phone_number

    street, city, postal_code = data.get("street"), data.get("city"), data.get("postalCode")
    if street or city or postal_code:
        location = {}
        if street:
            location["address1"] = street
        if city:
            location["city"] = city
        if postal_code:
            location["zip"] = postal_code
        location["country"] = data.get("country") or "DE"
        attributes["location"] = location

    attributes["properties"] = {
        "ticket_code": data.get("ticketCode"),
        "golden_ticket_redeemed": True,
        "golden_ticket_redeemed_at": datetime.now(timezone.utc).isoformat(),
        "website": data.get("website") or DEFAULT_WEBSITE,
        "newsletter_consent": bool(data.get("newsletterConsent")),
    }
    return attributes


def create_or_update_profile(client: httpx.Client, data: dict) -> dict:
    """
    Create the participant's profile, updating it if it already exists.

    Klaviyo answers 409 for an existing email and names the existing
    profile in errors[0].meta.duplicate_profile_id; that profile is PATCHed.

    Returns:
        The profile resource ("data" object with "id")

    Raises:
        KlaviyoError: Klaviyo is not configured or rejected the write
    """
    api_key = get_klaviyo_api_key()
    if not api_key:
        raise KlaviyoError("Klaviyo API key not configured")

    payload = {"data": {"type": "profile", "attributes": build_profile_attributes(data)}}
    email = mask_email(data.get("email"))

    start = time.time()
    try:
        response = client.post(f"{KLAVIYO_API_BASE}/profiles/", headers=_headers(api_key), json=payload)
    except httpx.RequestError as e:
        log_external_call(logger, SERVICE, "create_profile", False, (time.time() - start) * 1000, str(e))
        raise KlaviyoError(f"Klaviyo request failed: {e}") from e

    if response.status_code == 409:
        profile_id = _duplicate_profile_id(response)
        if profile_id:
            logger.info(f"Klaviyo profile exists for {email}, updating {profile_id}")
            payload["data"]["id"] = profile_id
            return _update_profile(client, api_key, profile_id, payload)

    if not response.is_success:
        log_external_call(
            logger, SERVICE, "create_profile", False, (time.time() - start) * 1000,
            f"{response.status_code}: {response.text[:200]}",
        )
        raise KlaviyoError(
            f"Klaviyo profile could not be created: {response.status_code}",
            status_code=response.status_code,
        )

    log_external_call(logger, SERVICE, "create_profile", True, (time.time() - start) * 1000)
    return response.json().get("data", {})


def _duplicate_profile_id(response: httpx.Response) -> Optional[str]:
    try:
        errors = response.json().get("errors") or []
        return errors[0].get("meta", {}).get("duplicate_profile_id")
    except (ValueError, IndexError, AttributeError) as e:
        logger.error(f"Could not extract duplicate_profile_id from Klaviyo 409: {e}")
        return None


def _update_profile(client: httpx.Client, api_key: str, profile_id: str, payload: dict) -> dict:
    start = time.time()
    try:
        response = client.patch(
            f"{KLAVIYO_API_BASE}/profiles/{profile_id}/", headers=_headers(api_key), json=payload
        )
    except httpx.RequestError as e:
        log_external_call(logger, SERVICE, "update_profile", False, (time.time() - start) * 1000, str(e))
        raise KlaviyoError(f"Klaviyo request failed: {e}") from e

    if not response.is_success:
        log_external_call(
            logger, SERVICE, "update_profile", False, (time.time() - start) * 1000,
            f"{response.status_code}: {response.text[:200]}",
        )
        raise KlaviyoError(
            f"Klaviyo profile could not be updated: {response.status_code}",
            status_code=response.status_code,
        )

    log_external_call(logger, SERVICE, "update_profile", True, (time.time() - start) * 1000)
    return response.json().get("data", {})


def track_event(
    client: httpx.Client, profile_id: str, event_name: str, properties: dict
) -> Optional[dict]:
    """
    Track an event for a profile.

    Returns:
        {"accepted": True} for 202, the response body otherwise, None on failure
    """
    api_key = get_klaviyo_api_key()
    if not api_key:
        return None

    payload = {
        "data": {
            "type": "event",
            "attributes": {
                "profile": {"data": {"type": "profile", "id": profile_id}},
                "metric": {"data": {"type": "metric", "attributes": {"name": event_name}}},
                "properties": properties,
                "time": datetime.now(timezone.utc).isoformat(),
            },
        }
    }

    start = time.time()
    try:
        response = client.post(f"{KLAVIYO_API_BASE}/events/", headers=_headers(api_key), json=payload)
    except httpx.RequestError as e:
        log_external_call(logger, SERVICE, "track_event", False, (time.time() - start) * 1000, str(e))
        return None

    latency_ms = (time.time() - start) * 1000
    if not response.is_success:
        log_external_call(
            logger, SERVICE, "track_event", False, latency_ms,
            f"{response.status_code}: {response.text[:200]}",
        )
        return None

    log_external_call(logger, SERVICE, "track_event", True, latency_ms)

    # The events API answers 202 Accepted without a body
    if response.status_code == 202 or not response.content:
        return {"accepted": True}
    try:
        return response.json()
    except ValueError:
        return {"accepted": True}


def subscribe_to_list(client: httpx.Client, profile_id: str, email: str) -> bool:
    """
    Subscribe a profile to the main newsletter list.

    Uses a profile subscription bulk job; Klaviyo handles double opt-in for
    lists that require it.

    Returns:
        True if the job was accepted
    """
    api_key = get_klaviyo_api_key()
    list_id = os.environ.get("KLAVIYO_MAIN_LIST_ID")
    if not api_key or not list_id:
        logger.warning("Klaviyo list subscription not configured, skipping")
        return False

    payload = {
        "data": {
            "type": "profile-subscription-bulk-create-job",
            "attributes": {
                "custom_source": SUBSCRIPTION_SOURCE,
                "profiles": {
                    "data": [
                        {
                            "type": "profile",
                            "id": profile_id,
                            "attributes": {
                                "email": email.strip().lower(),
                                "subscriptions": {
                                    "email": {"marketing": {"consent": "SUBSCRIBED"}}
                                },
                            },
                        }
                    ]
                },
            },
            "relationships": {"list": {"data": {"type": "list", "id": list_id}}},
        }
    }

    start = time.time()
    try:
        response = client.post(
            f"{KLAVIYO_API_BASE}/profile-subscription-bulk-create-jobs/",
            headers=_headers(api_key),
            json=payload,
        )
    except httpx.RequestError as e:
        log_external_call(logger, SERVICE, "subscribe", False, (time.time() - start) * 1000, str(e))
        return False

    latency_ms = (time.time() - start) * 1000
    if not response.is_success:
        log_external_call(
            logger, SERVICE, "subscribe", False, latency_ms,
            f"{response.status_code}: {response.text[:200]}",
        )
        return False

    log_external_call(logger, SERVICE, "subscribe", True, latency_ms)
    logger.info(f"Newsletter subscription started for {mask_email(email)}")
    return True


def new_client() -> httpx.Client:
    """HTTP client for Klaviyo calls within one request."""
    return httpx.Client(timeout=KLAVIYO_TIMEOUT)
