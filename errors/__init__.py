"""
Error handling module for the telemetry ingestion backend.

This module provides structured error handling with:
- ErrorCode enum for standardized error codes
- IngestionError class for application-specific exceptions
- Factory functions for the common failure kinds
"""

from errors.codes import ErrorCode, get_log_level
from errors.exceptions import (
    CacheUnavailableError,
    IngestionError,
    TransportError,
)

__all__ = [
    "ErrorCode",
    "get_log_level",
    "IngestionError",
    "CacheUnavailableError",
    "TransportError",
]
