"""
Resilience patterns for the telemetry ingestion daemon.

This package provides retry logic with exponential backoff, used for broker
reconnects and startup dependencies.
"""

from resilience.retry import (
    RetryConfig,
    RetryExhaustedException,
    calculate_delay,
    retry_async,
)

__all__ = [
    "RetryConfig",
    "RetryExhaustedException",
    "calculate_delay",
    "retry_async",
]
