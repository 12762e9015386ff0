"""
Validate Code Endpoint - POST /validate-code

Read-only check used by the form's first step. Nothing is recorded; the
code is only redeemed by POST /golden-ticket.
"""

import logging
import time

from shared.code_validator import (
    ALREADY_REDEEMED,
    DUPLICATE_PARTICIPATION,
    INVALID_EMAIL_FORMAT,
    normalize_code,
    validate_code,
    validate_submission,
)
from shared.constants import DEFAULT_CAMPAIGN
from shared.errors import APIError
from shared.logging_utils import configure_structured_logging, log_api_request, mask_email, set_request_id
from shared.redemption_store import get_redemption_store
from shared.request_utils import get_origin, parse_json_body
from shared.response_utils import error_response, preflight_response, success_response

logger = logging.getLogger(__name__)

# Validator error -> (HTTP status, API error code)
_ERROR_STATUS = {
    ALREADY_REDEEMED: (409, "code_already_redeemed"),
    DUPLICATE_PARTICIPATION: (409, DUPLICATE_PARTICIPATION),
    INVALID_EMAIL_FORMAT: (400, "invalid_email"),
}


def handler(event, context):
    """
    Lambda handler for POST /validate-code.

    Request body:
    {
        "code": "AB12CD34",
        "email": "user@example.com"   (optional)
    }

    Returns:
        200 {"valid": true, "code": "AB12CD34"}, 400 for malformed input,
        409 if the code or email was already used
    """
    configure_structured_logging()
    set_request_id(event)
    start_time = time.time()
    origin = get_origin(event)
    method = event.get("httpMethod") or "POST"

    if method == "OPTIONS":
        return preflight_response(origin)

    try:
        body = parse_json_body(event)
    except APIError as e:
        response = e.to_response(origin)
        log_api_request(logger, method, "/validate-code", 400, (time.time() - start_time) * 1000)
        return response

    code = body.get("code")
    email = body.get("email")
    campaign = DEFAULT_CAMPAIGN
    store = get_redemption_store()

    if email:
        result = validate_submission(code, email, campaign, store=store)
    else:
        result = validate_code(code, campaign, store=store)

    if result.valid:
        response = success_response({"valid": True, "code": normalize_code(code)}, origin=origin)
    else:
        status_code, error_code = _ERROR_STATUS.get(result.error, (400, "invalid_code"))
        details = dict(result.details)
        if "used_by" in details:
            details["used_by"] = mask_email(details["used_by"])
        response = error_response(status_code, error_code, result.message, details=details, origin=origin)

    log_api_request(
        logger, method, "/validate-code", response["statusCode"],
        (time.time() - start_time) * 1000, campaign=campaign,
    )
    return response
