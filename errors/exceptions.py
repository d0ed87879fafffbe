"""
Exception classes for the telemetry ingestion backend.

This module provides the IngestionError class and convenience factory
functions for creating pipeline exceptions with proper error codes.
"""

from typing import Any, Optional

from errors.codes import ErrorCode, get_log_level


class IngestionError(Exception):
    """
    Base exception class for all application-specific errors.

    This exception provides structured error information including:
    - error_code: A standardized error code from the ErrorCode enum
    - message: A human-readable error message
    - log_level: The level the error is recorded at
    - details: Optional additional context (e.g., field-level errors)

    Example:
        raise IngestionError(
            error_code=ErrorCode.PERSISTENCE_FAILURE,
            message="Failed to insert measurement",
            details={"device_id": 7}
        )
    """

    def __init__(
        self,
        error_code: ErrorCode,
        message: str,
        log_level: Optional[int] = None,
        details: Optional[dict[str, Any]] = None
    ):
        """
        Initialize an IngestionError.

        Args:
            error_code: The error code from the ErrorCode enum
            message: A human-readable error message
            log_level: The logging level (defaults to the error code's level)
            details: Optional dictionary with additional error context
        """
        self.error_code = error_code
        self.message = message
        self.log_level = log_level or get_log_level(error_code)
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the exception to a dictionary for structured logging.

        Returns:
            Dictionary containing error_code, message, and details
        """
        result = {
            "error_code": self.error_code.value,
            "message": self.message,
        }
        if self.details is not None:
            result["details"] = self.details
        return result

    def __repr__(self) -> str:
        return (
            f"IngestionError(error_code={self.error_code.value!r}, "
            f"message={self.message!r}, details={self.details!r})"
        )


class TransportError(IngestionError):
    """Raised when the broker connection is refused or lost."""

    def __init__(
        self,
        message: str = "Broker connection lost",
        details: Optional[dict[str, Any]] = None
    ):
        super().__init__(
            error_code=ErrorCode.TRANSPORT_FAILURE,
            message=message,
            details=details
        )


class CacheUnavailableError(IngestionError):
    """Raised by cache stores when the backend cannot be reached."""

    def __init__(
        self,
        message: str = "Cache backend unavailable",
        details: Optional[dict[str, Any]] = None
    ):
        super().__init__(
            error_code=ErrorCode.CACHE_UNAVAILABLE,
            message=message,
            details=details
        )


# Convenience factory functions for common error types

def malformed_message(
    message: str,
    details: Optional[dict[str, Any]] = None
) -> IngestionError:
    """Create a malformed message exception."""
    return IngestionError(
        error_code=ErrorCode.MALFORMED_MESSAGE,
        message=message,
        details=details
    )


def missing_required_fields(
    message: str,
    details: Optional[dict[str, Any]] = None
) -> IngestionError:
    """Create a missing required fields exception."""
    return IngestionError(
        error_code=ErrorCode.MISSING_REQUIRED_FIELDS,
        message=message,
        details=details
    )


def validation_failed(
    message: str,
    details: Optional[dict[str, Any]] = None
) -> IngestionError:
    """Create a validation failed exception."""
    return IngestionError(
        error_code=ErrorCode.VALIDATION_FAILED,
        message=message,
        details=details
    )


def rate_limited(
    message: str = "Too many messages",
    details: Optional[dict[str, Any]] = None
) -> IngestionError:
    """Create a rate limited exception."""
    return IngestionError(
        error_code=ErrorCode.RATE_LIMITED,
        message=message,
        details=details
    )


def persistence_failure(
    message: str = "Database write failed",
    details: Optional[dict[str, Any]] = None
) -> IngestionError:
    """Create a persistence failure exception."""
    return IngestionError(
        error_code=ErrorCode.PERSISTENCE_FAILURE,
        message=message,
        details=details
    )


def internal_error(
    message: str = "An unexpected error occurred",
    details: Optional[dict[str, Any]] = None
) -> IngestionError:
    """Create an internal error exception."""
    return IngestionError(
        error_code=ErrorCode.INTERNAL_ERROR,
        message=message,
        details=details
    )
