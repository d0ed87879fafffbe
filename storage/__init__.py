"""
Storage module: relational models, the device repository and the
immutable DeviceSnapshot shared with the cache.
"""

from storage.snapshot import (
    DeviceSnapshot,
    format_time_span,
    parse_time_span,
    utcnow,
)
from storage.models import Base, Device, ErrorRecord, Measurement, TimeSpan
from storage.repository import DeviceRepository, SqlDeviceRepository

__all__ = [
    "DeviceSnapshot",
    "format_time_span",
    "parse_time_span",
    "utcnow",
    "Base",
    "Device",
    "ErrorRecord",
    "Measurement",
    "TimeSpan",
    "DeviceRepository",
    "SqlDeviceRepository",
]
