"""
Error code catalog for the telemetry ingestion backend.

This module defines every outcome the ingestion pipeline can report for a
rejected or anomalous message, together with the log level each outcome is
recorded at.
"""

import logging
from enum import Enum


class ErrorCode(str, Enum):
    """
    Enumeration of all error codes used in the application.

    Codes fall into four groups:
    - Message errors: the payload could not be accepted
    - Admission errors: the payload was valid but throttled
    - Business outcomes: device lookups and offline anomalies
    - Infrastructure errors: database, cache and broker failures
    """

    # Message errors
    MALFORMED_MESSAGE = "MALFORMED_MESSAGE"
    """Payload is not a decodable JSON object"""

    MISSING_REQUIRED_FIELDS = "MISSING_REQUIRED_FIELDS"
    """Identifier, latitude or longitude is absent"""

    VALIDATION_FAILED = "VALIDATION_FAILED"
    """Fields are present but semantically invalid"""

    # Admission errors
    RATE_LIMITED = "RATE_LIMITED"
    """Spacing gate or per-minute quota rejected the message"""

    # Business outcomes
    DEVICE_NOT_FOUND = "DEVICE_NOT_FOUND"
    """Identifier is not registered in the device catalog"""

    OFFLINE_DURATION_EXCEEDED = "OFFLINE_DURATION_EXCEEDED"
    """Device reported after its maximum allowed offline time"""

    # Infrastructure errors
    PERSISTENCE_FAILURE = "PERSISTENCE_FAILURE"
    """Durable write to the relational store failed"""

    CACHE_UNAVAILABLE = "CACHE_UNAVAILABLE"
    """Redis or the configured cache backend is unreachable"""

    TRANSPORT_FAILURE = "TRANSPORT_FAILURE"
    """Connection to the MQTT broker was lost or refused"""

    INTERNAL_ERROR = "INTERNAL_ERROR"
    """Unexpected error while handling a message"""


# Mapping of error codes to the level they are logged at
ERROR_CODE_LOG_LEVEL_MAP: dict[ErrorCode, int] = {
    ErrorCode.MALFORMED_MESSAGE: logging.ERROR,
    ErrorCode.MISSING_REQUIRED_FIELDS: logging.WARNING,
    ErrorCode.VALIDATION_FAILED: logging.WARNING,
    ErrorCode.RATE_LIMITED: logging.WARNING,
    ErrorCode.DEVICE_NOT_FOUND: logging.ERROR,
    ErrorCode.OFFLINE_DURATION_EXCEEDED: logging.WARNING,
    ErrorCode.PERSISTENCE_FAILURE: logging.ERROR,
    ErrorCode.CACHE_UNAVAILABLE: logging.WARNING,
    ErrorCode.TRANSPORT_FAILURE: logging.ERROR,
    ErrorCode.INTERNAL_ERROR: logging.ERROR,
}


def get_log_level(error_code: ErrorCode) -> int:
    """
    Get the log level for an error code.

    Args:
        error_code: The error code to look up

    Returns:
        The logging level used when recording the error code
    """
    return ERROR_CODE_LOG_LEVEL_MAP.get(error_code, logging.ERROR)
