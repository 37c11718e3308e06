"""
Standardized error response utilities for the rewards API.

Provides consistent error response format across all endpoints:
{
    "success": false,
    "error": {
        "message": "User-friendly error message",
        "code": "ERROR_CODE"
    }
}

Usage:
    from rewards_engine.utils.errors import error_response, ErrorCode

    return error_response("Account not found", ErrorCode.ACCOUNT_NOT_FOUND, 404)
"""
import logging
from enum import Enum
from flask import jsonify
from typing import Optional

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # Authentication (401)
    AUTH_REQUIRED = "AUTH_REQUIRED"

    # Validation Errors (400)
    INVALID_REQUEST = "INVALID_REQUEST"
    MISSING_FIELD = "MISSING_FIELD"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_SOURCE_CONFIG = "INVALID_SOURCE_CONFIG"

    # Not Found (404)
    NOT_FOUND = "NOT_FOUND"
    ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"
    TRANSACTION_NOT_FOUND = "TRANSACTION_NOT_FOUND"
    VIP_MEMBERSHIP_NOT_FOUND = "VIP_MEMBERSHIP_NOT_FOUND"
    RECEIPT_NOT_FOUND = "RECEIPT_NOT_FOUND"

    # Conflict (409) - idempotency guards
    ALREADY_CLAIMED = "ALREADY_CLAIMED"
    ALREADY_USED = "ALREADY_USED"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    ALREADY_APPLIED = "ALREADY_APPLIED"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"

    # Business Logic Errors (422)
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    INSUFFICIENT_POINTS = "INSUFFICIENT_POINTS"
    BELOW_MINIMUM_WITHDRAWAL = "BELOW_MINIMUM_WITHDRAWAL"
    DAILY_CAP_REACHED = "DAILY_CAP_REACHED"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"
    WALLET_INACTIVE = "WALLET_INACTIVE"

    # Server Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    CONSISTENCY_FAILURE = "CONSISTENCY_FAILURE"


# Engine error code -> HTTP status
STATUS_BY_CODE = {
    ErrorCode.INVALID_REQUEST: 400,
    ErrorCode.MISSING_FIELD: 400,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.INVALID_AMOUNT: 400,
    ErrorCode.INVALID_SOURCE_CONFIG: 400,
    ErrorCode.AUTH_REQUIRED: 401,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.ACCOUNT_NOT_FOUND: 404,
    ErrorCode.TRANSACTION_NOT_FOUND: 404,
    ErrorCode.VIP_MEMBERSHIP_NOT_FOUND: 404,
    ErrorCode.RECEIPT_NOT_FOUND: 404,
    ErrorCode.ALREADY_CLAIMED: 409,
    ErrorCode.ALREADY_USED: 409,
    ErrorCode.ALREADY_PROCESSED: 409,
    ErrorCode.ALREADY_APPLIED: 409,
    ErrorCode.INVALID_STATUS_TRANSITION: 409,
    ErrorCode.INSUFFICIENT_FUNDS: 422,
    ErrorCode.INSUFFICIENT_POINTS: 422,
    ErrorCode.BELOW_MINIMUM_WITHDRAWAL: 422,
    ErrorCode.DAILY_CAP_REACHED: 422,
    ErrorCode.NOT_ELIGIBLE: 403,
    ErrorCode.WALLET_INACTIVE: 422,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.CONSISTENCY_FAILURE: 500,
}


def error_response(
    message: str,
    code: ErrorCode = ErrorCode.INTERNAL_ERROR,
    status_code: int = 500,
    log_error: bool = True,
    details: Optional[dict] = None
) -> tuple:
    """
    Create a standardized error response.

    Args:
        message: User-friendly error message
        code: Error code from ErrorCode enum
        status_code: HTTP status code
        log_error: Whether to log the error (default True for 500s)
        details: Optional additional details (only logged, not returned to user)

    Returns:
        Tuple of (response, status_code) for Flask
    """
    if log_error and status_code >= 500:
        logger.error(f"API Error [{code}]: {message}", extra={"details": details})
    elif log_error and status_code >= 400:
        logger.warning(f"API Error [{code}]: {message}", extra={"details": details})

    response = {
        "success": False,
        "error": {
            "message": message,
            "code": code.value if isinstance(code, ErrorCode) else code
        }
    }

    return jsonify(response), status_code


def result_error_response(result: dict) -> tuple:
    """
    Map a failed engine result dict ({'success': False, 'error', 'code'}) to a response.

    Unknown codes fall back to 400 so a new business rule never leaks as a 500.
    """
    code = result.get('code') or ErrorCode.VALIDATION_ERROR.value
    try:
        error_code = ErrorCode(code)
    except ValueError:
        return error_response(result.get('error', 'Request failed'), code, 400, log_error=False)

    status_code = STATUS_BY_CODE.get(error_code, 400)
    return error_response(
        result.get('error', 'Request failed'),
        error_code,
        status_code,
        log_error=status_code >= 500,
    )


# Convenience functions for common error types
def bad_request(message: str, code: ErrorCode = ErrorCode.INVALID_REQUEST) -> tuple:
    """400 Bad Request error."""
    return error_response(message, code, 400, log_error=False)


def unauthorized(message: str = "Authentication required", code: ErrorCode = ErrorCode.AUTH_REQUIRED) -> tuple:
    """401 Unauthorized error."""
    return error_response(message, code, 401, log_error=False)


def not_found(message: str, code: ErrorCode = ErrorCode.NOT_FOUND) -> tuple:
    """404 Not Found error."""
    return error_response(message, code, 404, log_error=False)


def internal_error(message: str = "An unexpected error occurred", details: Optional[dict] = None) -> tuple:
    """500 Internal Server Error."""
    return error_response(message, ErrorCode.INTERNAL_ERROR, 500, log_error=True, details=details)
