"""
Unit tests for the IngestionService.

These tests drive the service with a real DeviceCache on the in-memory store
and a mocked repository, and verify:
- Device resolution through the cache and the repository
- Offline allowance warnings and their audit rows
- Distance calculation from the pre-update snapshot
- Which failures are fatal and which are best effort
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from cache.device_cache import DeviceCache
from errors.codes import ErrorCode
from errors.exceptions import CacheUnavailableError, IngestionError, persistence_failure
from ingestion.service import (
    DEVICE_NOT_FOUND_DESCRIPTION,
    IngestionResult,
    IngestionService,
    describe_result,
)
from storage.repository import DeviceRepository
from storage.snapshot import DeviceSnapshot
from validation.models import TelemetryReport
from validation.validator import FieldError

NOW = datetime(2024, 1, 15, 10, 30, 0)


@pytest.fixture
def repository():
    repo = AsyncMock(spec=DeviceRepository)
    repo.find_by_identifier.return_value = None
    repo.insert_measurement.return_value = 101
    repo.insert_error.return_value = 501
    return repo


@pytest.fixture
def observability():
    return MagicMock()


@pytest.fixture
def service(device_cache, repository, observability):
    return IngestionService(
        cache=device_cache,
        repository=repository,
        observability=observability,
        clock=lambda: NOW,
    )


@pytest.fixture
def report():
    return TelemetryReport.from_record({
        "Identificador": "GPS-001",
        "Latitud": -34.605123,
        "Longitud": -58.383456,
        "Sensor_1": 21.5,
    })


class TestResolveDevice:
    """Tests for cache-first device resolution."""

    @pytest.mark.asyncio
    async def test_cache_hit_skips_repository(self, service, device_cache, repository, sample_snapshot):
        await device_cache.put("GPS-001", sample_snapshot)

        assert await service.resolve_device("GPS-001") == sample_snapshot
        repository.find_by_identifier.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cache_miss_fills_cache_without_position(
        self, service, device_cache, repository, sample_snapshot
    ):
        repository.find_by_identifier.return_value = sample_snapshot

        resolved = await service.resolve_device("GPS-001")

        assert resolved.has_position is False
        assert (await device_cache.get("GPS-001")) == sample_snapshot.without_position()

    @pytest.mark.asyncio
    async def test_unknown_device(self, service):
        assert await service.resolve_device("GPS-404") is None

    @pytest.mark.asyncio
    async def test_repository_failure_propagates(self, service, repository):
        repository.find_by_identifier.side_effect = persistence_failure("Device lookup failed")

        with pytest.raises(IngestionError) as exc_info:
            await service.resolve_device("GPS-001")

        assert exc_info.value.error_code == ErrorCode.PERSISTENCE_FAILURE


class TestCheckOffline:
    """Tests for the offline allowance check."""

    def test_within_allowance(self, service, sample_snapshot):
        assert service.check_offline(sample_snapshot, NOW) == []

    def test_allowance_exceeded(self, service):
        snapshot = DeviceSnapshot(
            id=7, identifier="GPS-001",
            last_seen=NOW - timedelta(hours=2),
            max_offline_duration=timedelta(minutes=30),
        )

        assert service.check_offline(snapshot, NOW) == [
            "device was offline 7200 seconds (max allowed 1800 seconds)"
        ]

    def test_exactly_at_allowance_is_not_a_warning(self, service):
        snapshot = DeviceSnapshot(
            id=7, identifier="GPS-001",
            last_seen=NOW - timedelta(minutes=30),
            max_offline_duration=timedelta(minutes=30),
        )

        assert service.check_offline(snapshot, NOW) == []

    def test_zero_allowance_warns_on_any_silence(self, service):
        snapshot = DeviceSnapshot(
            id=7, identifier="GPS-001",
            last_seen=NOW - timedelta(seconds=3),
            max_offline_duration=timedelta(0),
        )

        assert service.check_offline(snapshot, NOW) == [
            "device was offline 3 seconds (max allowed 0 seconds)"
        ]

    def test_last_seen_in_the_future_counts_as_zero(self, service):
        snapshot = DeviceSnapshot(
            id=7, identifier="GPS-001",
            last_seen=NOW + timedelta(minutes=1),
            max_offline_duration=timedelta(0),
        )

        assert service.check_offline(snapshot, NOW) == []


class TestProcessTelemetry:
    """Tests for the full ingestion of one report."""

    @pytest.mark.asyncio
    async def test_known_device_with_position(
        self, service, device_cache, repository, sample_snapshot, report
    ):
        await device_cache.put("GPS-001", sample_snapshot)

        result = await service.process_telemetry(report)

        assert result.success is True
        assert result.measurement_id == 101
        assert 230.5 < result.distance < 231.5
        assert result.warnings == []
        repository.insert_measurement.assert_awaited_once_with(
            7, -34.605123, -58.383456, result.distance,
            sensors=[21.5, None, None, None, None],
            recorded_at=NOW,
        )
        repository.touch_last_seen.assert_awaited_once_with(7, NOW, -34.605123, -58.383456)

    @pytest.mark.asyncio
    async def test_cache_reflects_the_new_report(self, service, device_cache, sample_snapshot, report):
        await device_cache.put("GPS-001", sample_snapshot)

        await service.process_telemetry(report)

        cached = await device_cache.get("GPS-001")
        assert cached.last_seen == NOW
        assert (cached.latitude, cached.longitude) == (-34.605123, -58.383456)
        assert cached.max_offline_duration == sample_snapshot.max_offline_duration

    @pytest.mark.asyncio
    async def test_first_report_after_cache_miss_has_zero_distance(
        self, service, repository, sample_snapshot, report
    ):
        repository.find_by_identifier.return_value = sample_snapshot

        result = await service.process_telemetry(report)

        assert result.success is True
        assert result.distance == 0.0

    @pytest.mark.asyncio
    async def test_coordinates_are_rounded_before_storage(
        self, service, device_cache, repository, sample_snapshot
    ):
        await device_cache.put("GPS-001", sample_snapshot)
        report = TelemetryReport.from_record({
            "Identificador": "GPS-001", "Latitud": -34.60512349, "Longitud": -58.38345651,
        })

        await service.process_telemetry(report)

        args = repository.insert_measurement.await_args.args
        assert args[1:3] == (-34.605123, -58.383457)

    @pytest.mark.asyncio
    async def test_unknown_device_writes_one_audit_row(self, service, repository, report):
        result = await service.process_telemetry(report)

        assert result.success is False
        assert result.code == ErrorCode.DEVICE_NOT_FOUND
        repository.insert_error.assert_awaited_once_with(
            None, "GPS-001", DEVICE_NOT_FOUND_DESCRIPTION, recorded_at=NOW
        )
        repository.insert_measurement.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_offline_warning_is_recorded(
        self, service, device_cache, repository, sample_snapshot, report, observability
    ):
        stale = DeviceSnapshot(
            id=7, identifier="GPS-001",
            last_seen=NOW - timedelta(hours=1),
            max_offline_duration=timedelta(minutes=10),
            latitude=sample_snapshot.latitude,
            longitude=sample_snapshot.longitude,
        )
        await device_cache.put("GPS-001", stale)

        result = await service.process_telemetry(report)

        assert result.success is True
        assert result.warnings == ["device was offline 3600 seconds (max allowed 600 seconds)"]
        repository.insert_error.assert_awaited_once_with(
            7, "GPS-001", result.warnings[0], recorded_at=NOW
        )
        observability.log_audit_event.assert_called_once()

    @pytest.mark.asyncio
    async def test_measurement_failure_is_fatal(
        self, service, device_cache, repository, sample_snapshot, report
    ):
        await device_cache.put("GPS-001", sample_snapshot)
        repository.insert_measurement.side_effect = persistence_failure(
            "Failed to insert measurement", details={"device_id": 7}
        )

        with pytest.raises(IngestionError) as exc_info:
            await service.process_telemetry(report)

        assert exc_info.value.error_code == ErrorCode.PERSISTENCE_FAILURE
        # The cached projection is left as it was
        assert await device_cache.get("GPS-001") == sample_snapshot
        repository.touch_last_seen.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_last_seen_failure_is_not_fatal(
        self, service, device_cache, repository, sample_snapshot, report
    ):
        await device_cache.put("GPS-001", sample_snapshot)
        repository.touch_last_seen.side_effect = persistence_failure("Failed to update device last seen")

        result = await service.process_telemetry(report)

        assert result.success is True

    @pytest.mark.asyncio
    async def test_audit_failure_is_not_fatal(self, service, repository, report):
        repository.insert_error.side_effect = persistence_failure("Failed to insert error record")

        result = await service.process_telemetry(report)

        assert result.code == ErrorCode.DEVICE_NOT_FOUND

    @pytest.mark.asyncio
    async def test_duration_metric_is_recorded(
        self, service, device_cache, sample_snapshot, report, observability
    ):
        await device_cache.put("GPS-001", sample_snapshot)

        await service.process_telemetry(report)

        name, value = observability.record_metric.call_args.args
        assert name == "telemetry_ingest_duration_ms"
        assert value == 0

    @pytest.mark.asyncio
    async def test_works_without_cache_backend(self, repository, sample_snapshot, report):
        broken_store = AsyncMock()
        broken_store.get_hash.side_effect = CacheUnavailableError("down")
        broken_store.set_hash.side_effect = CacheUnavailableError("down")
        repository.find_by_identifier.return_value = sample_snapshot
        service = IngestionService(DeviceCache(broken_store), repository, clock=lambda: NOW)

        result = await service.process_telemetry(report)

        assert result.success is True
        assert result.distance == 0.0


class TestValidationAudit:
    """Tests for record_validation_errors and describe_result."""

    @pytest.mark.asyncio
    async def test_errors_are_joined_into_one_row(self, service, repository):
        errors = [
            FieldError(field="Latitud", message="Latitud must be numeric"),
            "Field 'Sensor_1' must be numeric",
        ]

        record_id = await service.record_validation_errors("GPS-001", errors)

        assert record_id == 501
        repository.insert_error.assert_awaited_once_with(
            None, "GPS-001",
            "Latitud must be numeric; Field 'Sensor_1' must be numeric",
            recorded_at=NOW,
        )

    @pytest.mark.asyncio
    async def test_failed_audit_returns_none(self, service, repository):
        repository.insert_error.side_effect = persistence_failure()

        assert await service.record_validation_errors("GPS-001", ["bad"]) is None

    def test_describe_result_drops_empty_fields(self):
        result = IngestionResult(
            success=False, identifier="GPS-404", code=ErrorCode.DEVICE_NOT_FOUND
        )

        assert describe_result(result) == {
            "success": False,
            "identifier": "GPS-404",
            "code": "DEVICE_NOT_FOUND",
            "warnings": [],
        }
