"""
Database models using SQLAlchemy ORM.

Tables:
- devices: the device catalog, provisioned out of band
- measurements: one row per accepted telemetry report
- device_errors: append-only audit trail of rejections and warnings

Timestamps are stored as naive UTC.
"""

from datetime import timedelta

from sqlalchemy import (
    Column, DateTime, Float, ForeignKey, Integer, String, Text
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator

from storage.snapshot import DeviceSnapshot, format_time_span, parse_time_span, utcnow

Base = declarative_base()


class TimeSpan(TypeDecorator):
    """
    A duration stored as an "HH:MM:SS" string and loaded as a timedelta.

    Hours are not capped at 23 so spans longer than a day round-trip.
    """

    impl = String(16)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return format_time_span(parse_time_span(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return parse_time_span(value)


class Device(Base):
    """
    Device catalog entry.

    Coordinates stay null until the first accepted report.
    """
    __tablename__ = "devices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    identifier = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False, default="")
    last_seen = Column(DateTime, nullable=False, default=utcnow)
    max_offline_duration = Column(TimeSpan, nullable=False, default=timedelta(0))
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    # Relationships
    measurements = relationship(
        "Measurement", back_populates="device",
        cascade="all, delete-orphan", passive_deletes=True
    )
    errors = relationship("ErrorRecord", back_populates="device", passive_deletes=True)

    def to_snapshot(self) -> DeviceSnapshot:
        return DeviceSnapshot(
            id=self.id,
            identifier=self.identifier,
            name=self.name or "",
            last_seen=self.last_seen,
            max_offline_duration=self.max_offline_duration or timedelta(0),
            latitude=self.latitude,
            longitude=self.longitude,
        )


class Measurement(Base):
    """
    One accepted report. Never updated after insert.
    """
    __tablename__ = "measurements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    device_id = Column(
        Integer, ForeignKey("devices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    recorded_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    distance = Column(Float, nullable=False, default=0.0)
    sensor_1 = Column(Float, nullable=True)
    sensor_2 = Column(Float, nullable=True)
    sensor_3 = Column(Float, nullable=True)
    sensor_4 = Column(Float, nullable=True)
    sensor_5 = Column(Float, nullable=True)

    device = relationship("Device", back_populates="measurements")


class ErrorRecord(Base):
    """
    Audit row for an unknown device, an invalid payload or an offline warning.

    device_id is null when the identifier did not resolve to a device.
    """
    __tablename__ = "device_errors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    device_id = Column(
        Integer, ForeignKey("devices.id", ondelete="SET NULL"), nullable=True, index=True
    )
    identifier = Column(String(255), nullable=False, index=True)
    recorded_at = Column(DateTime, nullable=False, default=utcnow)
    description = Column(Text, nullable=False)

    device = relationship("Device", back_populates="errors")
