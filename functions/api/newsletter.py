"""
Newsletter Endpoint - POST /newsletter

Signs a visitor up to the Mailchimp audience (double opt-in by default)
and tags the member by source, offer and campaign.
"""

import logging
import os
import time

from shared import mailchimp
from shared.code_validator import is_valid_email_format
from shared.errors import APIError
from shared.logging_utils import configure_structured_logging, log_api_request, mask_email, set_request_id
from shared.metrics import emit_error_metric
from shared.request_utils import get_origin, parse_json_body
from shared.response_utils import error_response, preflight_response, success_response

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Successfully subscribed!"


def handler(event, context):
    """
    Lambda handler for POST /newsletter.

    Request body:
    {
        "email": "user@example.com",
        "firstName": "...", "lastName": "...",
        "source": "golden_ticket",
        "statusIfNew": "pending"
    }
    """
    configure_structured_logging()
    set_request_id(event)
    start_time = time.time()
    origin = get_origin(event)
    method = event.get("httpMethod") or "POST"

    if method == "OPTIONS":
        return preflight_response(origin)

    try:
        response = _subscribe(parse_json_body(event), origin)
    except APIError as e:
        response = e.to_response(origin)

    log_api_request(logger, method, "/newsletter", response["statusCode"], (time.time() - start_time) * 1000)
    return response


def _subscribe(body: dict, origin) -> dict:
    email = body.get("email")
    if not is_valid_email_format(email):
        return error_response(400, "invalid_email", "Valid email is required", origin=origin)
    email = email.strip()

    api_key = mailchimp.get_mailchimp_api_key()
    list_id = os.environ.get("MAILCHIMP_AUDIENCE_ID")
    if not api_key or not list_id:
        logger.error("Mailchimp API key or audience id not configured")
        return error_response(500, "not_configured", "Newsletter signup is not available", origin=origin)

    data = dict(body)
    data["email"] = email
    data["source"] = body.get("source") or "standard"
    if not data.get("offer") and data["source"] == "hero_dubai_offer":
        data["offer"] = "Dubai Schokolade"
    status = body.get("statusIfNew") or "pending"

    with mailchimp.new_client() as client:
        try:
            mailchimp.upsert_member(client, api_key, list_id, data, status=status)
        except mailchimp.MailchimpError as e:
            emit_error_metric("rejected", service="mailchimp", handler="newsletter")
            if e.is_auth_error:
                logger.error(f"Mailchimp authentication failed: {e}")
                return error_response(
                    400, "mailchimp_auth", "Mailchimp auth failed (API key/datacenter)", origin=origin
                )
            logger.warning(f"Mailchimp signup failed for {mask_email(email)}: {e}")
            return error_response(400, "subscription_failed", str(e), origin=origin)

        tags = mailchimp.build_tags(data)
        tags_warning = mailchimp.add_tags(client, api_key, list_id, email, tags)

    logger.info(
        f"Newsletter signup stored for {mask_email(email)}",
        extra={"source": data["source"], "tags": tags},
    )

    response = {
        "message": SUCCESS_MESSAGE,
        "email": email,
        "status": status,
        "address_provided": mailchimp.has_address(data),
    }
    if tags_warning:
        response["tags_warning"] = tags_warning
    return success_response(response, origin=origin)
