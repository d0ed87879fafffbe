"""
Health check module for the telemetry ingestion daemon.

This module provides health check services for the database, the cache
store and the broker connection.
"""

from health.service import (
    HealthCheckService,
    HealthStatus,
    DependencyHealth,
)

__all__ = [
    "HealthCheckService",
    "HealthStatus",
    "DependencyHealth",
]
