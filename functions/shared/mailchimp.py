"""
Mailchimp newsletter integration.

Members are upserted by subscriber hash (MD5 of the lowercased email) so a
repeat signup updates the existing contact instead of failing.
"""

import hashlib
import logging
import re
import time
from typing import Optional

import httpx

from shared.constants import MAILCHIMP_API_TEMPLATE, MAILCHIMP_TIMEOUT
from shared.credentials import get_api_key
from shared.logging_utils import log_external_call, mask_email

logger = logging.getLogger(__name__)

SERVICE = "mailchimp"

# Statuses Mailchimp refuses to set directly; retried as double opt-in
_RETRY_AS_PENDING = ("compliance", "resubscribe", "pending")

HERO_OFFER_SOURCES = ("hero_dubai_offer", "hero_offer")


class MailchimpError(Exception):
    """Raised when Mailchimp rejects a member upsert."""

    def __init__(self, message: str, status_code: Optional[int] = None, detail: Optional[dict] = None):
        self.status_code = status_code
        self.detail = detail or {}
        super().__init__(message)

    @property
    def is_auth_error(self) -> bool:
        text = str(self.detail.get("detail", "")).lower()
        return self.status_code == 401 or "api key" in text


def get_mailchimp_api_key() -> Optional[str]:
    return get_api_key("MAILCHIMP_SECRET_ARN", "MAILCHIMP_API_KEY")


def subscriber_hash(email: str) -> str:
    return hashlib.md5(email.strip().lower().encode("utf-8")).hexdigest()


def api_base(api_key: str) -> str:
    """Mailchimp keys end in the datacenter, e.g. "abc123-us21"."""
    datacenter = api_key.rsplit("-", 1)[-1] if "-" in api_key else "us1"
    return MAILCHIMP_API_TEMPLATE.format(datacenter=datacenter)


def build_merge_fields(data: dict) -> dict:
    merge_fields = {
        "FNAME": data.get("firstName") or "",
        "LNAME": data.get("lastName") or "",
        "MMERGE7": data.get("phone") or "",
        "MMERGE8": data.get("ticketCode") or "",
        "MMERGE9": data.get("offer") or "Standard",
        "MMERGE10": data.get("source") or "standard",
    }

    if data.get("utm_source"):
        merge_fields["MMERGE11"] = data["utm_source"]
    if data.get("utm_medium"):
        merge_fields["MMERGE12"] = data["utm_medium"]
    if data.get("utm_campaign"):
        merge_fields["MMERGE13"] = data["utm_campaign"]

    # Address goes into the text field MMERGE14, not the structured ADDRESS
    if has_address(data):
        parts = [data.get(key) for key in ("street", "postalCode", "city") if data.get(key)]
        country = data.get("country")
        if country and country != "DE":
            parts.append(country)
        merge_fields["MMERGE14"] = ", ".join(parts)

    return merge_fields


def has_address(data: dict) -> bool:
    return bool(data.get("street") or data.get("city") or data.get("postalCode"))


def build_tags(data: dict) -> list[str]:
    source = data.get("source") or "standard"
    tags = ["website-signup", source]

    if source == "golden_ticket":
        tags.extend(["golden-ticket-gewinnspiel", "newsletter-opt-in"])
        if data.get("ticketCode"):
            tags.append("ticket-code-provided")

    if source in HERO_OFFER_SOURCES:
        tags.append("dubai_chocolate")

    if data.get("offer"):
        tags.append(re.sub(r"\s+", "_", str(data["offer"]).lower()))

    if has_address(data):
        tags.append("address_provided")

    if data.get("utm_source"):
        tags.append(f"utm_source_{data['utm_source']}")
    if data.get("utm_campaign"):
        tags.append(f"utm_campaign_{data['utm_campaign']}")

    return tags


def _member_url(api_key: str, list_id: str, email: str) -> str:
    return f"{api_base(api_key)}/lists/{list_id}/members/{subscriber_hash(email)}"


def _parse_body(response: httpx.Response) -> dict:
    try:
        body = response.json() if response.content else {}
    except ValueError:
        return {"detail": response.text[:500]}
    return body if isinstance(body, dict) else {}


def _put_member(
    client: httpx.Client, url: str, api_key: str, email: str, status: str, merge_fields: dict
) -> httpx.Response:
    # status as well as status_if_new, so archived contacts are reactivated
    return client.put(
        url,
        auth=("anystring", api_key),
        json={
            "email_address": email,
            "status_if_new": status,
            "status": status,
            "merge_fields": merge_fields,
        },
    )


def upsert_member(
    client: httpx.Client,
    api_key: str,
    list_id: str,
    data: dict,
    status: str = "pending",
) -> dict:
    """
    Create or update an audience member.

    Retries once with status "pending" when Mailchimp refuses the status for
    compliance or resubscribe reasons.

    Returns:
        Mailchimp member resource

    Raises:
        MailchimpError: the upsert (and any retry) failed
    """
    email = data["email"].strip()
    url = _member_url(api_key, list_id, email)
    merge_fields = build_merge_fields(data)

    start = time.time()
    try:
        response = _put_member(client, url, api_key, email, status, merge_fields)
    except httpx.RequestError as e:
        log_external_call(logger, SERVICE, "upsert_member", False, (time.time() - start) * 1000, str(e))
        raise MailchimpError(f"Mailchimp request failed: {e}") from e

    body = _parse_body(response)
    if response.is_success:
        log_external_call(logger, SERVICE, "upsert_member", True, (time.time() - start) * 1000)
        return body

    log_external_call(
        logger, SERVICE, "upsert_member", False, (time.time() - start) * 1000,
        f"{response.status_code}: {body.get('title') or body.get('detail')}",
    )
    error = MailchimpError(
        body.get("title") or "Subscription failed", status_code=response.status_code, detail=body
    )
    if error.is_auth_error:
        raise error

    detail = str(body.get("detail", "")).lower()
    if not any(reason in detail for reason in _RETRY_AS_PENDING):
        raise error

    logger.info(f"Retrying Mailchimp upsert for {mask_email(email)} as pending")
    start = time.time()
    try:
        retry = _put_member(client, url, api_key, email, "pending", merge_fields)
    except httpx.RequestError as e:
        log_external_call(logger, SERVICE, "upsert_member_retry", False, (time.time() - start) * 1000, str(e))
        raise MailchimpError(f"Mailchimp request failed: {e}") from e

    retry_body = _parse_body(retry)
    if not retry.is_success:
        log_external_call(
            logger, SERVICE, "upsert_member_retry", False, (time.time() - start) * 1000,
            f"{retry.status_code}: {retry_body.get('title')}",
        )
        raise MailchimpError(
            retry_body.get("title") or "Subscription failed",
            status_code=retry.status_code,
            detail=retry_body,
        )

    log_external_call(logger, SERVICE, "upsert_member_retry", True, (time.time() - start) * 1000)
    return retry_body


def add_tags(
    client: httpx.Client, api_key: str, list_id: str, email: str, tags: list[str]
) -> Optional[dict]:
    """
    Activate tags on a member.

    Returns:
        None on success, otherwise a warning dict for the response body
    """
    url = f"{_member_url(api_key, list_id, email)}/tags"
    start = time.time()
    try:
        response = client.post(
            url,
            auth=("anystring", api_key),
            json={"tags": [{"name": name, "status": "active"} for name in tags]},
        )
    except httpx.RequestError as e:
        log_external_call(logger, SERVICE, "add_tags", False, (time.time() - start) * 1000, str(e))
        return {"error": f"Tag request failed: {e}"}

    if response.is_success:
        log_external_call(logger, SERVICE, "add_tags", True, (time.time() - start) * 1000)
        return None

    log_external_call(
        logger, SERVICE, "add_tags", False, (time.time() - start) * 1000, str(response.status_code)
    )
    try:
        return response.json()
    except ValueError:
        return {"error": "Failed to parse tags response"}


def new_client() -> httpx.Client:
    return httpx.Client(timeout=MAILCHIMP_TIMEOUT)
