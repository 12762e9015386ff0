"""
Response utilities for Lambda handlers.

Provides consistent response formatting for success and error responses.
"""

import json
import os
from decimal import Decimal
from typing import Optional, Any, Dict, List

# CORS configuration
_PROD_ORIGINS = [
    "https://goldenticket.sweetsausallerwelt.de",
    "https://www.sweetsausallerwelt.de",
]
_DEV_ORIGINS = [
    "http://localhost:3000",  # Next.js dev server
]


def _allowed_origins() -> List[str]:
    if os.environ.get("ALLOW_DEV_CORS") == "true":
        return _PROD_ORIGINS + _DEV_ORIGINS
    return _PROD_ORIGINS


def get_cors_headers(origin: Optional[str]) -> Dict[str, str]:
    """
    Get CORS headers if origin is allowed.

    Args:
        origin: The Origin header from the request

    Returns:
        Dict with CORS headers if origin is allowed, empty dict otherwise
    """
    if origin and origin in _allowed_origins():
        return {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Methods": "POST, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type",
        }
    return {}


def decimal_default(obj: Any) -> Any:
    """JSON serializer for Decimal types from DynamoDB."""
    if isinstance(obj, Decimal):
        if obj % 1 == 0:
            return int(obj)
        return float(obj)
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def error_response(
    status_code: int,
    code: str,
    message: str,
    headers: Optional[Dict[str, str]] = None,
    details: Optional[Dict[str, Any]] = None,
    origin: Optional[str] = None,
) -> dict:
    """
    Create an error response.

    Args:
        status_code: HTTP status code
        code: Machine-readable error code (snake_case)
        message: Human-readable error message
        headers: Additional response headers
        details: Optional additional error details
        origin: Request Origin header for CORS

    Returns:
        Lambda response dict
    """
    response_headers = {"Content-Type": "application/json"}
    response_headers.update(get_cors_headers(origin))
    if headers:
        response_headers.update(headers)

    body = {
        "error": {
            "code": code,
            "message": message,
        }
    }
    if details:
        body["error"]["details"] = details

    return {
        "statusCode": status_code,
        "headers": response_headers,
        "body": json.dumps(body, default=decimal_default),
    }


def success_response(
    data: Any,
    status_code: int = 200,
    headers: Optional[Dict[str, str]] = None,
    origin: Optional[str] = None,
) -> dict:
    """
    Create a success response.

    Args:
        data: Response body data
        status_code: HTTP status code (default 200)
        headers: Additional response headers
        origin: Request Origin header for CORS

    Returns:
        Lambda response dict
    """
    response_headers = {"Content-Type": "application/json"}
    response_headers.update(get_cors_headers(origin))
    if headers:
        response_headers.update(headers)

    return {
        "statusCode": status_code,
        "headers": response_headers,
        "body": json.dumps(data, default=decimal_default),
    }


def preflight_response(origin: Optional[str] = None) -> dict:
    """Answer a CORS preflight (OPTIONS) request from the form."""
    response_headers = get_cors_headers(origin)
    if response_headers:
        response_headers["Access-Control-Max-Age"] = "600"
    return {
        "statusCode": 204,
        "headers": response_headers,
        "body": "",
    }
