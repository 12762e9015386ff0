# Shared utilities package
from .code_validator import ValidationResult, get_statistics, redeem_code, validate_submission
from .errors import APIError
from .redemption_store import PersistenceError, RedemptionStore, get_redemption_store
from .response_utils import error_response, success_response

__all__ = [
    "ValidationResult",
    "validate_submission",
    "redeem_code",
    "get_statistics",
    "RedemptionStore",
    "PersistenceError",
    "get_redemption_store",
    "error_response",
    "success_response",
    "APIError",
]
