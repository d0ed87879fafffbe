"""
Unit tests for error codes and the IngestionError hierarchy.
"""

import logging

import pytest

from errors.codes import ERROR_CODE_LOG_LEVEL_MAP, ErrorCode, get_log_level
from errors.exceptions import (
    CacheUnavailableError,
    IngestionError,
    TransportError,
    internal_error,
    malformed_message,
    missing_required_fields,
    persistence_failure,
    rate_limited,
    validation_failed,
)


class TestErrorCodes:
    """Tests for the error code catalog."""

    def test_every_code_has_a_log_level(self):
        assert set(ERROR_CODE_LOG_LEVEL_MAP) == set(ErrorCode)

    @pytest.mark.parametrize("code,level", [
        (ErrorCode.MALFORMED_MESSAGE, logging.ERROR),
        (ErrorCode.MISSING_REQUIRED_FIELDS, logging.WARNING),
        (ErrorCode.RATE_LIMITED, logging.WARNING),
        (ErrorCode.DEVICE_NOT_FOUND, logging.ERROR),
        (ErrorCode.CACHE_UNAVAILABLE, logging.WARNING),
    ])
    def test_log_levels(self, code, level):
        assert get_log_level(code) == level

    def test_codes_are_strings(self):
        assert ErrorCode.PERSISTENCE_FAILURE == "PERSISTENCE_FAILURE"


class TestIngestionError:
    """Tests for IngestionError and its factories."""

    def test_to_dict_without_details(self):
        error = IngestionError(ErrorCode.INTERNAL_ERROR, "boom")

        assert error.to_dict() == {"error_code": "INTERNAL_ERROR", "message": "boom"}

    def test_to_dict_with_details(self):
        error = persistence_failure("Failed to insert measurement", details={"device_id": 7})

        assert error.to_dict() == {
            "error_code": "PERSISTENCE_FAILURE",
            "message": "Failed to insert measurement",
            "details": {"device_id": 7},
        }

    def test_explicit_log_level_wins(self):
        error = IngestionError(ErrorCode.RATE_LIMITED, "slow down", log_level=logging.INFO)

        assert error.log_level == logging.INFO

    @pytest.mark.parametrize("factory,code", [
        (malformed_message, ErrorCode.MALFORMED_MESSAGE),
        (missing_required_fields, ErrorCode.MISSING_REQUIRED_FIELDS),
        (validation_failed, ErrorCode.VALIDATION_FAILED),
        (rate_limited, ErrorCode.RATE_LIMITED),
        (persistence_failure, ErrorCode.PERSISTENCE_FAILURE),
        (internal_error, ErrorCode.INTERNAL_ERROR),
    ])
    def test_factories(self, factory, code):
        error = factory("message")

        assert isinstance(error, IngestionError)
        assert error.error_code == code
        assert error.log_level == get_log_level(code)

    def test_infrastructure_errors(self):
        assert TransportError().error_code == ErrorCode.TRANSPORT_FAILURE
        assert CacheUnavailableError().error_code == ErrorCode.CACHE_UNAVAILABLE
        assert isinstance(TransportError(), IngestionError)

    def test_repr(self):
        error = rate_limited(details={"identifier": "GPS-001"})

        assert repr(error) == (
            "IngestionError(error_code='RATE_LIMITED', message='Too many messages', "
            "details={'identifier': 'GPS-001'})"
        )
