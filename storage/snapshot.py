"""
Immutable device state shared by the cache and the repository.

A DeviceSnapshot is read once at the start of an ingestion and carries the
pre-update state of the device through the rest of the pipeline, so the
offline check and distance calculation never see values written later in
the same call.
"""

from dataclasses import dataclass, replace
from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, Optional, Union

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

TimeSpanLike = Union[timedelta, time, str, int, float, None]


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_time_span(value: TimeSpanLike) -> timedelta:
    """
    Convert a stored offline allowance into a timedelta.

    Accepts a timedelta, a datetime.time, an "HH:MM:SS" string (hours may
    exceed 23) or a number of seconds. None and empty strings mean zero.

    Raises:
        ValueError: If a string is not in HH:MM:SS form
    """
    if value is None:
        return timedelta(0)
    if isinstance(value, timedelta):
        return value
    if isinstance(value, time):
        return timedelta(hours=value.hour, minutes=value.minute, seconds=value.second)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return timedelta(seconds=value)

    text = str(value).strip()
    if not text:
        return timedelta(0)
    parts = text.split(":")
    if len(parts) != 3:
        raise ValueError(f"Invalid time span '{value}', expected HH:MM:SS")
    hours, minutes, seconds = (int(part) for part in parts)
    return timedelta(hours=hours, minutes=minutes, seconds=seconds)


def format_time_span(span: timedelta) -> str:
    """Render a timedelta as "HH:MM:SS"."""
    total = int(span.total_seconds())
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def _optional_float(value: Optional[str]) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


@dataclass(frozen=True)
class DeviceSnapshot:
    """
    Point-in-time view of a device.

    Attributes:
        id: Primary key of the device row
        identifier: External device identifier
        name: Display name
        last_seen: Time of the previous report (naive UTC)
        max_offline_duration: Allowed silence before a warning is raised
        latitude: Last known latitude, None before the first report
        longitude: Last known longitude, None before the first report
    """

    id: int
    identifier: str
    name: str = ""
    last_seen: Optional[datetime] = None
    max_offline_duration: timedelta = timedelta(0)
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def has_position(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def without_position(self) -> "DeviceSnapshot":
        """Copy of the snapshot with coordinates cleared."""
        return replace(self, latitude=None, longitude=None)

    def to_cache_fields(self) -> Dict[str, str]:
        """Flatten the snapshot into the string mapping stored in the cache."""
        return {
            "id": str(self.id),
            "identifier": self.identifier,
            "name": self.name or "",
            "last_seen": self.last_seen.strftime(TIMESTAMP_FORMAT) if self.last_seen else "",
            "max_offline_duration": format_time_span(self.max_offline_duration),
            "latitude": "" if self.latitude is None else repr(float(self.latitude)),
            "longitude": "" if self.longitude is None else repr(float(self.longitude)),
        }

    @classmethod
    def from_cache_fields(cls, fields: Dict[str, Any]) -> "DeviceSnapshot":
        """
        Rebuild a snapshot from a cached mapping.

        Raises:
            KeyError: If id or identifier is missing
            ValueError: If a field cannot be parsed
        """
        last_seen = fields.get("last_seen") or None
        return cls(
            id=int(fields["id"]),
            identifier=str(fields["identifier"]),
            name=fields.get("name") or "",
            last_seen=datetime.strptime(last_seen, TIMESTAMP_FORMAT) if last_seen else None,
            max_offline_duration=parse_time_span(fields.get("max_offline_duration")),
            latitude=_optional_float(fields.get("latitude")),
            longitude=_optional_float(fields.get("longitude")),
        )
