"""
Telemetry ingestion module.

This module provides the IngestionService, which turns validated reports
into persisted measurements, and the TelemetryMessageHandler that runs the
validation and rate limiting pipeline in front of it.
"""

from ingestion.service import IngestionResult, IngestionService
from ingestion.handler import TelemetryMessageHandler

__all__ = [
    "IngestionResult",
    "IngestionService",
    "TelemetryMessageHandler",
]
