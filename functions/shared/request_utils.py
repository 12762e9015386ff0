"""Shared request utilities for API handlers."""

import json
from typing import Optional

from .errors import InvalidRequestError


def get_origin(event: dict) -> Optional[str]:
    """Extract Origin header from request (case-insensitive)."""
    headers = event.get("headers") or {}
    # API Gateway may lowercase headers
    return headers.get("origin") or headers.get("Origin")


def parse_json_body(event: dict) -> dict:
    """
    Parse the JSON request body of an API Gateway event.

    A missing body parses as an empty object.

    Raises:
        InvalidRequestError: body is not valid JSON or not a JSON object
    """
    # Use `or "{}"` to handle explicit None
    try:
        body = json.loads(event.get("body") or "{}")
    except json.JSONDecodeError:
        raise InvalidRequestError("Request body must be valid JSON", code="invalid_json")

    if not isinstance(body, dict):
        raise InvalidRequestError("Request body must be a JSON object", code="invalid_json")
    return body
