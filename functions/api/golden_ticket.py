"""
Golden Ticket Endpoint - POST /golden-ticket

Registers a sweepstakes participation: validates the form, records the
participant in Klaviyo, redeems the ticket code and then runs the
best-effort follow-ups (Klaviyo event, newsletter, sheet export, email).

A code is only reported as registered once the redemption is durably
recorded.
"""

import hashlib
import logging
import time

from shared import klaviyo
from shared.code_validator import (
    ALREADY_REDEEMED,
    DUPLICATE_PARTICIPATION,
    PERSISTENCE_ERROR,
    ValidationResult,
    is_valid_code_format,
    is_valid_email_format,
    normalize_code,
    normalize_email,
    redeem_code,
    validate_submission,
)
from shared.constants import (
    DEFAULT_CAMPAIGN,
    DEFAULT_COUNTRY,
    DEFAULT_SOURCE,
    DEFAULT_WEBSITE,
    REDEMPTION_EVENT_NAME,
    REQUIRED_SUBMISSION_FIELDS,
)
from shared.emails import send_confirmation_email
from shared.errors import APIError, ConflictError, IntegrationError, InternalError, InvalidRequestError
from shared.logging_utils import (
    configure_structured_logging,
    log_api_request,
    mask_email,
    set_request_id,
)
from shared.metrics import emit_error_metric, emit_metric
from shared.redemption_store import get_redemption_store
from shared.request_utils import get_origin, parse_json_body
from shared.response_utils import preflight_response, success_response
from shared.sheets import log_submission

logger = logging.getLogger(__name__)

HANDLER_NAME = "golden_ticket"

# Submission fields stored with the redemption record
RECORD_METADATA_FIELDS = (
    "firstName",
    "lastName",
    "phone",
    "street",
    "postalCode",
    "city",
    "country",
    "source",
    "newsletterConsent",
    "consentTs",
    "utm_source",
    "utm_medium",
    "utm_campaign",
)

SUCCESS_MESSAGE = "Teilnahme erfolgreich registriert!"


def handler(event, context):
    """
    Lambda handler for POST /golden-ticket.

    Request body:
    {
        "ticketCode": "AB12CD34",
        "email": "user@example.com",
        "firstName": "...", "lastName": "...", "phone": "...",
        "street": "...", "postalCode": "...", "city": "...",
        "consent": true,
        "newsletterConsent": false
    }
    """
    configure_structured_logging()
    set_request_id(event)
    start_time = time.time()
    origin = get_origin(event)
    method = event.get("httpMethod") or "POST"

    if method == "OPTIONS":
        return preflight_response(origin)

    # Campaign is fixed per deployment; a client-supplied value is ignored
    campaign = DEFAULT_CAMPAIGN
    try:
        body = parse_json_body(event)
        response = _register(body, campaign, origin)
    except APIError as e:
        response = e.to_response(origin)

    log_api_request(
        logger, method, "/golden-ticket", response["statusCode"],
        (time.time() - start_time) * 1000, campaign=campaign,
    )
    return response


def _register(body: dict, campaign: str, origin) -> dict:
    submission = _validate_form(body)
    code = submission["ticketCode"]
    email = submission["email"]

    store = get_redemption_store()

    # Cheap pre-check so the CRM is not touched for codes that are already gone
    _raise_for_result(validate_submission(code, email, campaign, store=store))

    extra = {key: submission.get(key) for key in RECORD_METADATA_FIELDS}
    extra["website"] = submission.get("website") or DEFAULT_WEBSITE

    with klaviyo.new_client() as client:
        profile_id = _sync_crm_profile(client, submission)

        result = redeem_code(code, email, extra=extra, campaign=campaign, store=store)
        _raise_for_result(result)
        emit_metric("Redemptions", dimensions={"Campaign": campaign})

        newsletter_subscribed = False
        if profile_id:
            klaviyo.track_event(
                client,
                profile_id,
                REDEMPTION_EVENT_NAME,
                {
                    "ticket_code": code,
                    "campaign": campaign,
                    "website": submission.get("website") or DEFAULT_WEBSITE,
                    "source": submission["source"],
                    "utm_source": submission.get("utm_source") or "",
                    "utm_medium": submission.get("utm_medium") or "",
                    "utm_campaign": submission.get("utm_campaign") or "",
                },
            )
            if submission["newsletterConsent"]:
                newsletter_subscribed = klaviyo.subscribe_to_list(client, profile_id, email)

    log_submission(submission)
    email_sent = send_confirmation_email(email, submission["firstName"], code)

    logger.info(
        f"Golden ticket {code} registered for {mask_email(email)}",
        extra={"campaign": campaign, "crm_synced": bool(profile_id)},
    )

    return success_response(
        {
            "success": True,
            "message": SUCCESS_MESSAGE,
            "ticketCode": code,
            "email": email,
            "participantId": generate_participant_id(code, email),
            "crm_profile_id": profile_id,
            "newsletter_subscribed": newsletter_subscribed,
            "email_sent": email_sent,
        },
        origin=origin,
    )


def _validate_form(body: dict) -> dict:
    """Check the submitted form and return it with normalized code and email."""
    email = body.get("email")
    if not is_valid_email_format(email):
        raise InvalidRequestError("Please provide a valid email address", code="invalid_email")

    ticket_code = body.get("ticketCode")
    if not is_valid_code_format(ticket_code):
        raise InvalidRequestError(
            "Ticket code must be exactly 8 characters (A-Z, 0-9)", code="invalid_code"
        )

    if not body.get("consent"):
        raise InvalidRequestError(
            "Consent to the privacy policy is required", code="consent_required"
        )

    missing = [name for name in REQUIRED_SUBMISSION_FIELDS if not str(body.get(name) or "").strip()]
    if missing:
        raise InvalidRequestError(
            f"The following fields are required: {', '.join(missing)}",
            code="missing_fields",
            details={"missing_fields": missing},
        )

    submission = dict(body)
    submission["ticketCode"] = normalize_code(ticket_code)
    submission["email"] = normalize_email(email)
    submission["country"] = body.get("country") or DEFAULT_COUNTRY
    submission["source"] = body.get("source") or DEFAULT_SOURCE
    submission["newsletterConsent"] = bool(body.get("newsletterConsent"))
    return submission


def _raise_for_result(result: ValidationResult) -> None:
    if result.valid:
        return

    if result.error == ALREADY_REDEEMED:
        details = dict(result.details)
        # Never disclose another participant's address
        details["used_by"] = mask_email(details.get("used_by"))
        raise ConflictError("code_already_redeemed", result.message, details=details)

    if result.error == DUPLICATE_PARTICIPATION:
        raise ConflictError(DUPLICATE_PARTICIPATION, result.message, details=result.details)

    if result.error == PERSISTENCE_ERROR:
        emit_error_metric("persistence", handler=HANDLER_NAME)
        raise InternalError(
            "Your participation could not be recorded, please try again",
            code="redemption_not_recorded",
        )

    # Format errors were rejected by _validate_form already
    raise InvalidRequestError(result.message, code="invalid_request")


def _sync_crm_profile(client, submission: dict):
    """Create or update the Klaviyo profile; returns its id or None if Klaviyo is off."""
    if not klaviyo.is_configured():
        logger.warning("Klaviyo not configured, registering without CRM profile")
        return None

    try:
        profile = klaviyo.create_or_update_profile(client, submission)
    except klaviyo.KlaviyoError as e:
        logger.error(f"Klaviyo profile sync failed for {mask_email(submission['email'])}: {e}")
        emit_error_metric("rejected", service="klaviyo", handler=HANDLER_NAME)
        raise IntegrationError("klaviyo", "Participant could not be registered, please try again")

    return profile.get("id")


def generate_participant_id(code: str, email: str) -> str:
    """12 upper-case hex characters identifying this registration."""
    digest = hashlib.sha256(f"{code}{email}{time.time()}".encode("utf-8")).hexdigest()
    return digest[:12].upper()
