"""
Observability module for structured logging and metrics.

This module provides:
- JSONFormatter for structured JSON log output
- ObservabilityService for centralized logging, rotating files and metrics
- Per-message correlation ids bound through a context variable
"""

from observability.service import (
    INVALID_REQUESTS_LOGGER,
    JSONFormatter,
    ObservabilityService,
    get_message_id,
    get_observability_service,
    initialize_observability,
    message_context,
)

__all__ = [
    "INVALID_REQUESTS_LOGGER",
    "JSONFormatter",
    "ObservabilityService",
    "get_message_id",
    "get_observability_service",
    "initialize_observability",
    "message_context",
]
