"""
Telemetry ingestion service.

This module provides the IngestionService class that turns a validated
telemetry report into a persisted measurement. For every report it:
- resolves the device (cache first, repository on a miss)
- checks how long the device was silent against its allowance
- computes the distance travelled since the last known position
- persists the measurement, which is the only fatal step
- refreshes the cached projection and the durable last-seen time
- records offline warnings in the error trail

Writes after the measurement insert are best effort: their failures are
logged and never undo an accepted report.
"""

import logging
from datetime import datetime
from typing import Any, Callable, List, Optional, Sequence, Union

from pydantic import BaseModel, Field

from cache.device_cache import DeviceCache
from errors.codes import ErrorCode
from errors.exceptions import IngestionError
from geo.calculator import GeoCalculator
from observability.service import ObservabilityService, get_observability_service
from storage.repository import DeviceRepository
from storage.snapshot import DeviceSnapshot, utcnow
from validation.models import TelemetryReport
from validation.validator import FieldError

logger = logging.getLogger(__name__)

DEVICE_NOT_FOUND_DESCRIPTION = "device not found"

OFFLINE_WARNING_TEMPLATE = "device was offline {elapsed} seconds (max allowed {allowed} seconds)"


class IngestionResult(BaseModel):
    """
    Outcome of processing one telemetry report.

    Attributes:
        success: Whether a measurement was persisted
        identifier: Device identifier of the report
        code: Error code for a rejected report
        message: Human-readable outcome
        measurement_id: Id of the persisted measurement
        distance: Meters travelled since the previous known position
        warnings: Non-fatal anomalies, such as an exceeded offline allowance
    """

    success: bool
    identifier: str
    code: Optional[ErrorCode] = None
    message: Optional[str] = None
    measurement_id: Optional[int] = None
    distance: Optional[float] = None
    warnings: List[str] = Field(default_factory=list)


class IngestionService:
    """
    Orchestrates the ingestion of a single telemetry report.

    Attributes:
        cache: Device projection cache
        repository: Durable device repository
        geo: Distance calculator
        observability: Service for audit events and metrics
    """

    def __init__(
        self,
        cache: DeviceCache,
        repository: DeviceRepository,
        geo: Optional[GeoCalculator] = None,
        observability: Optional[ObservabilityService] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the ingestion service.

        Args:
            cache: Device cache
            repository: Device repository
            geo: Geo calculator (default Earth radius when omitted)
            observability: Optional observability service (uses global if not provided)
            clock: Source of the current naive UTC time
        """
        self.cache = cache
        self.repository = repository
        self.geo = geo or GeoCalculator()
        self.observability = observability or get_observability_service()
        self._clock = clock

    async def resolve_device(self, identifier: str) -> Optional[DeviceSnapshot]:
        """
        Find a device, filling the cache on a repository hit.

        A device loaded from the repository enters the cache without
        coordinates, so the first report after a cache miss measures a
        distance of zero.

        Raises:
            IngestionError: PERSISTENCE_FAILURE if the repository query fails
        """
        snapshot = await self.cache.get(identifier)
        if snapshot is not None:
            logger.debug("Device found in cache", extra={
                "extra_data": {"identifier": identifier}
            })
            return snapshot

        logger.info("Device not cached, querying repository", extra={
            "extra_data": {"identifier": identifier}
        })
        stored = await self.repository.find_by_identifier(identifier)
        if stored is None:
            return None

        snapshot = stored.without_position()
        await self.cache.put(identifier, snapshot)
        return snapshot

    def check_offline(self, snapshot: DeviceSnapshot, now: datetime) -> List[str]:
        """
        Compare the silence since the last report with the device allowance.

        Returns:
            A single warning when the allowance was exceeded, otherwise empty
        """
        if snapshot.last_seen is None:
            return []

        elapsed = max(0, int((now - snapshot.last_seen).total_seconds()))
        allowed = int(snapshot.max_offline_duration.total_seconds())
        if elapsed <= allowed:
            return []

        logger.warning("Offline allowance exceeded", extra={
            "extra_data": {
                "identifier": snapshot.identifier,
                "elapsed_seconds": elapsed,
                "max_seconds": allowed,
            }
        })
        return [OFFLINE_WARNING_TEMPLATE.format(elapsed=elapsed, allowed=allowed)]

    def compute_distance(self, snapshot: DeviceSnapshot, latitude: float, longitude: float) -> float:
        """Meters from the snapshot position to the new one; 0 without a previous position."""
        if not snapshot.has_position:
            return 0.0
        return self.geo.distance(snapshot.latitude, snapshot.longitude, latitude, longitude)

    async def process_telemetry(self, report: TelemetryReport) -> IngestionResult:
        """
        Ingest one validated report.

        Args:
            report: Sanitized telemetry report

        Returns:
            IngestionResult; an unknown device yields success=False with
            code DEVICE_NOT_FOUND

        Raises:
            IngestionError: PERSISTENCE_FAILURE if the device lookup or the
                measurement insert fails
        """
        start_time = self._clock()
        identifier = report.identifier

        device = await self.resolve_device(identifier)
        if device is None:
            await self._record_device_not_found(identifier)
            return IngestionResult(
                success=False,
                identifier=identifier,
                code=ErrorCode.DEVICE_NOT_FOUND,
                message=f"Device '{identifier}' not found",
            )

        now = self._clock()
        latitude, longitude = GeoCalculator.format_coordinates(report.latitude, report.longitude)

        # Both read the snapshot taken before any write below
        warnings = self.check_offline(device, now)
        distance = self.compute_distance(device, latitude, longitude)

        try:
            measurement_id = await self.repository.insert_measurement(
                device.id,
                latitude,
                longitude,
                distance,
                sensors=report.sensors,
                recorded_at=now,
            )
        except IngestionError as e:
            logger.error(f"Failed to persist measurement for {identifier}: {e.message}", extra={
                "extra_data": {
                    "identifier": identifier,
                    "device_id": device.id,
                    "latitude": latitude,
                    "longitude": longitude,
                    "distance": distance,
                    **(e.details or {}),
                }
            })
            raise

        await self.cache.put(identifier, DeviceSnapshot(
            id=device.id,
            identifier=identifier,
            name=device.name,
            last_seen=now,
            max_offline_duration=device.max_offline_duration,
            latitude=latitude,
            longitude=longitude,
        ))

        try:
            await self.repository.touch_last_seen(device.id, now, latitude, longitude)
        except IngestionError as e:
            logger.warning(f"Failed to update last seen for {identifier}: {e.message}", extra={
                "extra_data": {"identifier": identifier, "device_id": device.id}
            })

        if warnings:
            await self._record_offline_warning(device, warnings)

        duration_ms = (self._clock() - start_time).total_seconds() * 1000
        if self.observability:
            self.observability.record_metric(
                "telemetry_ingest_duration_ms",
                duration_ms,
                tags={"identifier": identifier}
            )

        logger.info(f"Telemetry processed for device {identifier}", extra={
            "extra_data": {
                "identifier": identifier,
                "measurement_id": measurement_id,
                "distance": distance,
                "warnings": len(warnings),
                "duration_ms": duration_ms,
            }
        })

        return IngestionResult(
            success=True,
            identifier=identifier,
            message="Telemetry processed successfully",
            measurement_id=measurement_id,
            distance=distance,
            warnings=warnings,
        )

    async def record_validation_errors(
        self,
        identifier: str,
        errors: Sequence[Union[str, FieldError]]
    ) -> Optional[int]:
        """
        Write one audit row describing every problem of a rejected payload.

        Best effort: a failed insert is logged and None is returned.
        """
        description = "; ".join(str(error) for error in errors)
        return await self._insert_error_quietly(None, identifier, description, "validation_failed")

    async def _record_device_not_found(self, identifier: str) -> None:
        logger.error(f"Device not found: {identifier}", extra={
            "extra_data": {"identifier": identifier}
        })
        await self._insert_error_quietly(
            None, identifier, DEVICE_NOT_FOUND_DESCRIPTION, "device_not_found"
        )

    async def _record_offline_warning(self, device: DeviceSnapshot, warnings: List[str]) -> None:
        await self._insert_error_quietly(
            device.id, device.identifier, "; ".join(warnings), "offline_duration_exceeded"
        )

    async def _insert_error_quietly(
        self,
        device_id: Optional[int],
        identifier: str,
        description: str,
        event_type: str,
    ) -> Optional[int]:
        try:
            record_id = await self.repository.insert_error(
                device_id, identifier, description, recorded_at=self._clock()
            )
        except IngestionError as e:
            logger.error(f"Failed to record {event_type} for {identifier}: {e.message}", extra={
                "extra_data": {"identifier": identifier, "description": description}
            })
            return None

        if self.observability:
            self.observability.log_audit_event(
                event_type=event_type,
                identifier=identifier,
                action="record",
                details={"error_record_id": record_id, "description": description}
            )
        return record_id


def describe_result(result: IngestionResult) -> dict[str, Any]:
    """Flatten a result for structured logs."""
    return result.model_dump(mode="json", exclude_none=True)
