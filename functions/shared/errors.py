"""
Standardized error responses for the API.
"""

from typing import Optional

from .response_utils import error_response


class APIError(Exception):
    """Base class for API errors."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        details: Optional[dict] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    def to_response(self, origin: Optional[str] = None) -> dict:
        """Convert to API Gateway response format."""
        return error_response(
            self.status_code,
            self.code,
            self.message,
            details=self.details,
            origin=origin,
        )


class InvalidRequestError(APIError):
    """Raised when the submitted form data is malformed or incomplete."""

    def __init__(
        self,
        message: str,
        code: str = "invalid_request",
        details: Optional[dict] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=400,
            details=details,
        )


class ConflictError(APIError):
    """Raised when a code or participant has already been used."""

    def __init__(self, code: str, message: str, details: Optional[dict] = None):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details,
        )


class IntegrationError(APIError):
    """Raised when a required upstream platform rejects the submission."""

    def __init__(self, service: str, message: str, code: str = "crm_error"):
        super().__init__(
            code=code,
            message=message,
            status_code=502,
            details={"service": service},
        )


class InternalError(APIError):
    """Raised for internal server errors."""

    def __init__(
        self,
        message: str = "An internal error occurred",
        code: str = "internal_error",
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=500,
        )
