"""
Validation module for inbound telemetry payloads.

This module provides:
- TelemetryValidator for full, non-short-circuiting validation and sanitization
- FieldError describing a single problem
- TelemetryReport, the typed record handed to the ingestion service
"""

from validation.models import SENSOR_FIELDS, TelemetryReport
from validation.validator import (
    IDENTIFIER_FIELD,
    LATITUDE_FIELD,
    LONGITUDE_FIELD,
    FieldError,
    TelemetryValidator,
    is_numeric,
)

__all__ = [
    "SENSOR_FIELDS",
    "TelemetryReport",
    "IDENTIFIER_FIELD",
    "LATITUDE_FIELD",
    "LONGITUDE_FIELD",
    "FieldError",
    "TelemetryValidator",
    "is_numeric",
]
