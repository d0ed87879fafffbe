"""
Message handler bridging the consumer and the ingestion service.

For every inbound message the handler decodes the JSON payload, checks the
minimum fields, validates and sanitizes the record, applies rate limiting,
and hands the resulting report to the IngestionService. Every rejection is
raised internally as an IngestionError and converted into a failed
IngestionResult at the handler boundary, so nothing escapes to the consumer.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from errors.codes import ErrorCode
from errors.exceptions import (
    IngestionError,
    internal_error,
    malformed_message,
    missing_required_fields,
    rate_limited,
    validation_failed,
)
from ingestion.service import IngestionResult, IngestionService, describe_result
from observability.service import INVALID_REQUESTS_LOGGER, message_context
from ratelimit.limiter import RateLimiter
from validation.models import TelemetryReport
from validation.validator import IDENTIFIER_FIELD, TelemetryValidator, is_blank

logger = logging.getLogger(__name__)
invalid_logger = logging.getLogger(INVALID_REQUESTS_LOGGER)

# Raw payloads are truncated to this many characters in logs
PAYLOAD_LOG_LIMIT = 500

# Codes logged to the invalid requests log instead of the main log
INVALID_REQUEST_CODES = frozenset({
    ErrorCode.MALFORMED_MESSAGE,
    ErrorCode.MISSING_REQUIRED_FIELDS,
    ErrorCode.VALIDATION_FAILED,
})


def truncate_payload(payload: Union[bytes, str], limit: int = PAYLOAD_LOG_LIMIT) -> str:
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")
    return payload[:limit]


class TelemetryMessageHandler:
    """
    Callable handler invoked by the MessageConsumer for each message.

    Attributes:
        validator: Payload validator
        rate_limiter: Per-device admission control
        service: Ingestion service
        max_identifier_length: Length identifiers are clipped to in audit rows
    """

    def __init__(
        self,
        validator: TelemetryValidator,
        rate_limiter: RateLimiter,
        service: IngestionService,
    ):
        self.validator = validator
        self.rate_limiter = rate_limiter
        self.service = service
        self.max_identifier_length = validator.max_identifier_length

    async def __call__(self, topic: str, payload: Union[bytes, str]) -> IngestionResult:
        """
        Handle one message.

        Args:
            topic: Topic the message arrived on
            payload: Raw message body

        Returns:
            The ingestion result; rejected messages yield success=False with
            the rejection code
        """
        with message_context():
            try:
                return await self.handle(topic, payload)
            except IngestionError as e:
                self._log_rejection(topic, payload, e)
                return IngestionResult(
                    success=False,
                    identifier=str((e.details or {}).get("identifier") or ""),
                    code=e.error_code,
                    message=e.message,
                )
            except Exception as e:
                error = internal_error(f"Unhandled error while processing message: {e}")
                logger.exception(error.message, extra={
                    "extra_data": {"topic": topic, "payload": truncate_payload(payload)}
                })
                return IngestionResult(
                    success=False,
                    identifier="",
                    code=error.error_code,
                    message=error.message,
                )

    async def handle(self, topic: str, payload: Union[bytes, str]) -> IngestionResult:
        """
        Run the pipeline for one message.

        Raises:
            IngestionError: For any rejection, and PERSISTENCE_FAILURE when
                the measurement cannot be stored
        """
        record = self.decode(payload)
        identifier = self._audit_identifier(record)

        if not self.validator.has_minimum_required_fields(record):
            missing = self.validator.missing_fields(record)
            messages = [f"Field '{field}' is required" for field in missing]
            if identifier:
                await self.service.record_validation_errors(identifier, messages)
            raise missing_required_fields(
                f"Missing required fields: {', '.join(missing)}",
                details={"identifier": identifier, "missing_fields": missing}
            )

        errors = self.validator.validate(record)
        if errors:
            if identifier:
                await self.service.record_validation_errors(identifier, errors)
            raise validation_failed(
                "; ".join(str(error) for error in errors),
                details={
                    "identifier": identifier,
                    "errors": [error.model_dump() for error in errors],
                }
            )

        report = self._build_report(record, identifier)

        key = report.identifier
        if not await self.rate_limiter.allow(key) or not await self.rate_limiter.check_quota(key):
            raise rate_limited(
                f"Too many messages from device {key}",
                details={
                    "identifier": key,
                    "retry_after_ms": await self.rate_limiter.time_until_next(key),
                }
            )

        result = await self.service.process_telemetry(report)
        if result.success:
            await self.rate_limiter.apply_delay()
        else:
            logger.warning(f"Telemetry rejected for device {key}: {result.message}", extra={
                "extra_data": {"topic": topic, **describe_result(result)}
            })
        return result

    def decode(self, payload: Union[bytes, str]) -> Dict[str, Any]:
        """
        Decode a payload into a JSON object.

        Raises:
            IngestionError: MALFORMED_MESSAGE if the payload is not a JSON object
        """
        try:
            text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
            record = json.loads(text)
        except (UnicodeDecodeError, ValueError) as e:
            raise malformed_message(f"Payload is not valid JSON: {e}") from e

        if not isinstance(record, dict):
            raise malformed_message(
                f"Payload must be a JSON object, got {type(record).__name__}"
            )
        return record

    def _audit_identifier(self, record: Dict[str, Any]) -> Optional[str]:
        value = record.get(IDENTIFIER_FIELD)
        if is_blank(value) or isinstance(value, (dict, list, bool)):
            return None
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        return str(value).strip()[:self.max_identifier_length]

    def _build_report(self, record: Dict[str, Any], identifier: Optional[str]) -> TelemetryReport:
        try:
            return TelemetryReport.from_record(self.validator.sanitize(record))
        except ValidationError as e:
            raise validation_failed(
                f"Record could not be converted: {e.error_count()} error(s)",
                details={"identifier": identifier, "errors": _pydantic_errors(e)}
            ) from e

    def _log_rejection(
        self,
        topic: str,
        payload: Union[bytes, str],
        error: IngestionError
    ) -> None:
        target = invalid_logger if error.error_code in INVALID_REQUEST_CODES else logger
        target.log(error.log_level, f"Message rejected: {error.message}", extra={
            "extra_data": {
                "topic": topic,
                "payload": truncate_payload(payload),
                **error.to_dict(),
            }
        })


def _pydantic_errors(error: ValidationError) -> List[Dict[str, Any]]:
    return [
        {"field": ".".join(str(part) for part in item["loc"]), "message": item["msg"]}
        for item in error.errors()
    ]
