"""
Unit tests for the TelemetryMessageHandler.

The handler runs with a real validator and rate limiter (in-memory store,
fake clock) and a mocked IngestionService. Tests verify:
- Each rejection kind maps to its error code
- Which rejections write an audit row
- Rate limiting and the post-success delay
- Nothing escapes the handler boundary
"""

import json
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from errors.codes import ErrorCode
from errors.exceptions import persistence_failure
from ingestion.handler import PAYLOAD_LOG_LIMIT, TelemetryMessageHandler, truncate_payload
from ingestion.service import IngestionResult
from observability.service import INVALID_REQUESTS_LOGGER
from ratelimit.limiter import RateLimiter
from validation.validator import FieldError, TelemetryValidator

TOPIC = "telemetry/GPS-001"


def encode(record) -> bytes:
    return json.dumps(record).encode("utf-8")


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def rate_limiter(memory_store, fake_clock, sleep):
    return RateLimiter(memory_store, delay_ms=100, max_per_minute=60, clock=fake_clock, sleep=sleep)


@pytest.fixture
def service():
    service = MagicMock()
    service.process_telemetry = AsyncMock(side_effect=lambda report: IngestionResult(
        success=True,
        identifier=report.identifier,
        measurement_id=1,
        distance=0.0,
    ))
    service.record_validation_errors = AsyncMock(return_value=1)
    return service


@pytest.fixture
def handler(rate_limiter, service):
    return TelemetryMessageHandler(TelemetryValidator(), rate_limiter, service)


class TestRejections:
    """Tests for payloads rejected before ingestion."""

    @pytest.mark.asyncio
    async def test_invalid_json_is_malformed(self, handler, service):
        result = await handler(TOPIC, b"{not json")

        assert result.success is False
        assert result.code == ErrorCode.MALFORMED_MESSAGE
        service.record_validation_errors.assert_not_awaited()
        service.process_telemetry.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_utf8_is_malformed(self, handler):
        result = await handler(TOPIC, b"\xff\xfe\x00")

        assert result.code == ErrorCode.MALFORMED_MESSAGE

    @pytest.mark.asyncio
    async def test_json_array_is_malformed(self, handler):
        result = await handler(TOPIC, b"[1, 2, 3]")

        assert result.code == ErrorCode.MALFORMED_MESSAGE
        assert "got list" in result.message

    @pytest.mark.asyncio
    async def test_missing_coordinate_is_audited(self, handler, service):
        result = await handler(TOPIC, encode({"Identificador": "GPS-001", "Longitud": -58.4}))

        assert result.code == ErrorCode.MISSING_REQUIRED_FIELDS
        assert result.identifier == "GPS-001"
        service.record_validation_errors.assert_awaited_once_with(
            "GPS-001", ["Field 'Latitud' is required"]
        )

    @pytest.mark.asyncio
    async def test_missing_identifier_is_not_audited(self, handler, service):
        result = await handler(TOPIC, encode({"Latitud": 1.0, "Longitud": 2.0}))

        assert result.code == ErrorCode.MISSING_REQUIRED_FIELDS
        assert result.identifier == ""
        service.record_validation_errors.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_values_are_audited_together(self, handler, service):
        result = await handler(TOPIC, encode({
            "Identificador": "GPS-001", "Latitud": 95, "Longitud": -58.4, "Sensor_1": "hot",
        }))

        assert result.code == ErrorCode.VALIDATION_FAILED
        assert result.message == (
            "Latitud must be between -90 and 90 degrees; Field 'Sensor_1' must be numeric"
        )
        identifier, errors = service.record_validation_errors.await_args.args
        assert identifier == "GPS-001"
        assert all(isinstance(error, FieldError) for error in errors)
        service.process_telemetry.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_numeric_identifier_is_audited_as_string(self, handler, service):
        await handler(TOPIC, encode({"Identificador": 42.0, "Longitud": 1}))

        assert service.record_validation_errors.await_args.args[0] == "42"

    @pytest.mark.asyncio
    async def test_integer_beyond_float_range_fails_validation(self, handler, service):
        payload = b'{"Identificador": "GPS-001", "Latitud": 1' + b"0" * 400 + b', "Longitud": 1}'

        result = await handler(TOPIC, payload)

        assert result.code == ErrorCode.VALIDATION_FAILED
        assert result.message == "Latitud must be numeric"
        identifier, errors = service.record_validation_errors.await_args.args
        assert identifier == "GPS-001"
        assert [error.field for error in errors] == ["Latitud"]
        service.process_telemetry.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["Identificador", "Latitud", "Longitud"])
    async def test_missing_minimum_field_skips_full_validation(self, rate_limiter, service, field):
        validator = TelemetryValidator()
        validator.validate = MagicMock(wraps=validator.validate)
        handler = TelemetryMessageHandler(validator, rate_limiter, service)
        record = {"Identificador": "GPS-001", "Latitud": -34.6, "Longitud": -58.4}
        del record[field]

        result = await handler(TOPIC, encode(record))

        assert result.code == ErrorCode.MISSING_REQUIRED_FIELDS
        validator.validate.assert_not_called()
        service.process_telemetry.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejections_go_to_the_invalid_requests_log(self, handler, caplog):
        payload = b"x" * (PAYLOAD_LOG_LIMIT + 100)

        with caplog.at_level(logging.DEBUG, logger=INVALID_REQUESTS_LOGGER):
            await handler(TOPIC, payload)

        records = [r for r in caplog.records if r.name == INVALID_REQUESTS_LOGGER]
        assert len(records) == 1
        assert records[0].levelno == logging.ERROR
        assert len(records[0].extra_data["payload"]) == PAYLOAD_LOG_LIMIT
        assert records[0].extra_data["error_code"] == "MALFORMED_MESSAGE"


class TestRateLimiting:
    """Tests for admission control inside the handler."""

    @pytest.mark.asyncio
    async def test_second_message_within_delay_is_rate_limited(
        self, handler, service, sample_payload
    ):
        first = await handler(TOPIC, encode(sample_payload))
        second = await handler(TOPIC, encode(sample_payload))

        assert first.success is True
        assert second.code == ErrorCode.RATE_LIMITED
        assert second.identifier == "GPS-001"
        assert service.process_telemetry.await_count == 1

    @pytest.mark.asyncio
    async def test_message_after_delay_is_accepted(
        self, handler, fake_clock, sample_payload
    ):
        await handler(TOPIC, encode(sample_payload))
        fake_clock.advance(0.5)

        assert (await handler(TOPIC, encode(sample_payload))).success is True

    @pytest.mark.asyncio
    async def test_quota_exhaustion(self, memory_store, fake_clock, service, sample_payload):
        limiter = RateLimiter(memory_store, delay_ms=0, max_per_minute=2, clock=fake_clock)
        handler = TelemetryMessageHandler(TelemetryValidator(), limiter, service)

        results = [await handler(TOPIC, encode(sample_payload)) for _ in range(3)]

        assert [r.success for r in results] == [True, True, False]
        assert results[2].code == ErrorCode.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_invalid_payload_does_not_consume_quota(
        self, handler, memory_store, sample_payload
    ):
        sample_payload["Latitud"] = 500

        await handler(TOPIC, encode(sample_payload))

        assert memory_store.keys() == []


class TestIngestionOutcomes:
    """Tests for what happens after admission."""

    @pytest.mark.asyncio
    async def test_success_applies_delay(self, handler, service, sleep, sample_payload):
        result = await handler(TOPIC, encode(sample_payload))

        assert result.success is True
        report = service.process_telemetry.await_args.args[0]
        assert report.identifier == "GPS-001"
        assert report.sensors == [21.5, 3.25, None, None, None]
        sleep.assert_awaited_once_with(0.1)

    @pytest.mark.asyncio
    async def test_unknown_fields_are_stripped(self, handler, service, sample_payload):
        sample_payload["Firmware"] = "2.1"

        assert (await handler(TOPIC, encode(sample_payload))).success is True

    @pytest.mark.asyncio
    async def test_string_payload_is_accepted(self, handler, sample_payload):
        result = await handler(TOPIC, json.dumps(sample_payload))

        assert result.success is True

    @pytest.mark.asyncio
    async def test_unsuccessful_result_skips_delay(self, handler, service, sleep, sample_payload):
        service.process_telemetry.side_effect = None
        service.process_telemetry.return_value = IngestionResult(
            success=False, identifier="GPS-001", code=ErrorCode.DEVICE_NOT_FOUND
        )

        result = await handler(TOPIC, encode(sample_payload))

        assert result.code == ErrorCode.DEVICE_NOT_FOUND
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_persistence_failure_becomes_a_result(self, handler, service, sample_payload):
        service.process_telemetry.side_effect = persistence_failure(
            "Failed to insert measurement", details={"identifier": "GPS-001"}
        )

        result = await handler(TOPIC, encode(sample_payload))

        assert result.success is False
        assert result.code == ErrorCode.PERSISTENCE_FAILURE
        assert result.identifier == "GPS-001"

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_internal_error(
        self, handler, service, sample_payload
    ):
        service.process_telemetry.side_effect = RuntimeError("boom")

        result = await handler(TOPIC, encode(sample_payload))

        assert result.success is False
        assert result.code == ErrorCode.INTERNAL_ERROR
        assert "boom" in result.message


class TestTruncatePayload:
    """Tests for the payload log helper."""

    def test_bytes_are_decoded_with_replacement(self):
        assert truncate_payload(b"ab\xffcd") == "ab\ufffdcd"

    def test_custom_limit(self):
        assert truncate_payload("abcdef", limit=3) == "abc"
