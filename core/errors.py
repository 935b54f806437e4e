"""
Error Code Definitions and Classification.

Centralized error code management with retry logic and consistent
error responses across all endpoints.

Key Features:
    - Explicit error codes for all orchestration failure modes
    - Retry classification (PERMANENT, TRANSIENT, THROTTLING)
    - Exception -> error code -> HTTP status mapping used by the triggers

Exports:
    ErrorCode: Standardized error codes enum
    ErrorClassification: Error category enum
    is_retryable: Helper to check if error should be retried
    get_http_status_code: HTTP status for an error code
    error_code_for_exception: Map an exception to its error code
    create_error_response: Standard error body
"""

from enum import Enum
from typing import Dict, Any

from exceptions import (
    ConfigurationError,
    ContractViolationError,
    ExternalServiceError,
    LockConflictError,
    ResourceNotFoundError,
    RunInProgressError,
    StaleRunError,
    ValidationError,
)


class ErrorCode(str, Enum):
    """
    Standardized error codes for all application errors.

    Returned in API responses and recorded with failures to provide
    explicit classification for logging, monitoring, and retry logic.
    """

    # ========================================================================
    # CLIENT ERRORS (HTTP 400/404/409)
    # ========================================================================

    JOB_NOT_FOUND = "JOB_NOT_FOUND"  # No job record under jobs/
    RUN_NOT_FOUND = "RUN_NOT_FOUND"  # No (active) run for the scope
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"  # Generic resource not found

    VALIDATION_ERROR = "VALIDATION_ERROR"  # Generic validation failed
    INVALID_PARAMETER = "INVALID_PARAMETER"  # Specific parameter invalid
    MISSING_PARAMETER = "MISSING_PARAMETER"  # Required parameter missing

    LOCK_CONFLICT = "LOCK_CONFLICT"  # Sync lock held by another operation
    RUN_IN_PROGRESS = "RUN_IN_PROGRESS"  # Pipeline run already active
    STALE_RUN = "STALE_RUN"  # Work for a superseded or finished run

    # ========================================================================
    # SERVICE ERRORS (HTTP 500/502/503)
    # ========================================================================

    CONFIG_ERROR = "CONFIG_ERROR"  # Missing credentials/targets
    STORAGE_ERROR = "STORAGE_ERROR"  # Blob storage call failed
    QUERY_ERROR = "QUERY_ERROR"  # Athena submission/status failed
    QUEUE_ERROR = "QUEUE_ERROR"  # Service Bus dispatch failed
    THROTTLED = "THROTTLED"  # Rate limited by a provider

    # ========================================================================
    # GENERIC ERRORS
    # ========================================================================

    CONTRACT_VIOLATION = "CONTRACT_VIOLATION"  # Programming bug
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"  # Unexpected exception


class ErrorClassification(str, Enum):
    """
    Error classification for retry logic.
    """

    PERMANENT = "PERMANENT"  # Never retry (client error, won't fix itself)
    TRANSIENT = "TRANSIENT"  # Retry with backoff (temporary issue)
    THROTTLING = "THROTTLING"  # Retry with longer delay (rate limiting)


_ERROR_CLASSIFICATION: Dict[ErrorCode, ErrorClassification] = {
    # PERMANENT - caller must change the request
    ErrorCode.JOB_NOT_FOUND: ErrorClassification.PERMANENT,
    ErrorCode.RUN_NOT_FOUND: ErrorClassification.PERMANENT,
    ErrorCode.RESOURCE_NOT_FOUND: ErrorClassification.PERMANENT,
    ErrorCode.VALIDATION_ERROR: ErrorClassification.PERMANENT,
    ErrorCode.INVALID_PARAMETER: ErrorClassification.PERMANENT,
    ErrorCode.MISSING_PARAMETER: ErrorClassification.PERMANENT,
    ErrorCode.CONFIG_ERROR: ErrorClassification.PERMANENT,
    ErrorCode.CONTRACT_VIOLATION: ErrorClassification.PERMANENT,
    ErrorCode.STALE_RUN: ErrorClassification.PERMANENT,

    # TRANSIENT - retry later (lock holder may finish, service may recover)
    ErrorCode.LOCK_CONFLICT: ErrorClassification.TRANSIENT,
    ErrorCode.RUN_IN_PROGRESS: ErrorClassification.TRANSIENT,
    ErrorCode.STORAGE_ERROR: ErrorClassification.TRANSIENT,
    ErrorCode.QUERY_ERROR: ErrorClassification.TRANSIENT,
    ErrorCode.QUEUE_ERROR: ErrorClassification.TRANSIENT,
    ErrorCode.UNEXPECTED_ERROR: ErrorClassification.TRANSIENT,

    # THROTTLING
    ErrorCode.THROTTLED: ErrorClassification.THROTTLING,
}


def is_retryable(error_code: ErrorCode) -> bool:
    """
    Determine if an error code should trigger a retry.

    Example:
        >>> is_retryable(ErrorCode.JOB_NOT_FOUND)
        False
        >>> is_retryable(ErrorCode.LOCK_CONFLICT)
        True
    """
    classification = _ERROR_CLASSIFICATION.get(error_code, ErrorClassification.TRANSIENT)
    return classification != ErrorClassification.PERMANENT


def get_error_classification(error_code: ErrorCode) -> ErrorClassification:
    """Get the classification for an error code."""
    return _ERROR_CLASSIFICATION.get(error_code, ErrorClassification.TRANSIENT)


def get_http_status_code(error_code: ErrorCode) -> int:
    """
    Get the appropriate HTTP status code for an error code.

    Example:
        >>> get_http_status_code(ErrorCode.LOCK_CONFLICT)
        409
        >>> get_http_status_code(ErrorCode.QUERY_ERROR)
        502
    """
    if error_code in {ErrorCode.JOB_NOT_FOUND, ErrorCode.RUN_NOT_FOUND, ErrorCode.RESOURCE_NOT_FOUND}:
        return 404

    if error_code in {
        ErrorCode.VALIDATION_ERROR,
        ErrorCode.INVALID_PARAMETER,
        ErrorCode.MISSING_PARAMETER,
    }:
        return 400

    if error_code in {ErrorCode.LOCK_CONFLICT, ErrorCode.RUN_IN_PROGRESS, ErrorCode.STALE_RUN}:
        return 409

    if error_code in {ErrorCode.STORAGE_ERROR, ErrorCode.QUERY_ERROR}:
        return 502

    if error_code in {ErrorCode.QUEUE_ERROR, ErrorCode.THROTTLED}:
        return 503

    return 500


def error_code_for_exception(error: BaseException) -> ErrorCode:
    """
    Map an exception raised by the orchestration layers to an ErrorCode.

    Order matters: RunInProgressError is a LockConflictError.
    """
    if isinstance(error, RunInProgressError):
        return ErrorCode.RUN_IN_PROGRESS
    if isinstance(error, LockConflictError):
        return ErrorCode.LOCK_CONFLICT
    if isinstance(error, ResourceNotFoundError):
        return ErrorCode.RESOURCE_NOT_FOUND
    if isinstance(error, (ValidationError, ValueError)):
        return ErrorCode.VALIDATION_ERROR
    if isinstance(error, StaleRunError):
        return ErrorCode.STALE_RUN
    if isinstance(error, ExternalServiceError):
        if error.service == "servicebus":
            return ErrorCode.QUEUE_ERROR
        if error.service == "athena":
            return ErrorCode.QUERY_ERROR
        return ErrorCode.STORAGE_ERROR
    if isinstance(error, ConfigurationError):
        return ErrorCode.CONFIG_ERROR
    if isinstance(error, ContractViolationError):
        return ErrorCode.CONTRACT_VIOLATION
    return ErrorCode.UNEXPECTED_ERROR


def create_error_response(
    error_code: ErrorCode,
    message: str,
    **kwargs: Any
) -> Dict[str, Any]:
    """
    Create a standardized error response dictionary.

    Example:
        >>> create_error_response(
        ...     ErrorCode.LOCK_CONFLICT,
        ...     "Sync already in progress for job abc",
        ...     error_type="LockConflictError",
        ...     job_id="abc"
        ... )
        {
            "success": False,
            "error": "LOCK_CONFLICT",
            "error_type": "LockConflictError",
            "message": "Sync already in progress for job abc",
            "retryable": True,
            "http_status": 409,
            "job_id": "abc"
        }
    """
    response = {
        "success": False,
        "error": error_code.value,
        "error_type": kwargs.pop("error_type", "ValidationError"),
        "message": message,
        "retryable": is_retryable(error_code),
        "http_status": get_http_status_code(error_code),
        **kwargs
    }

    return response
