"""
Observability service for structured logging.

This module provides structured JSON logging with per-message correlation,
optional rotating log files, and lightweight metric and audit records written
through the same logging pipeline.
"""

import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

# Correlation id of the inbound message currently being handled
message_id_var: ContextVar[str] = ContextVar("message_id", default="")

# Logger receiving every rejected payload, mirrored to invalid_requests.log
INVALID_REQUESTS_LOGGER = "ingestion.invalid"

DEFAULT_LOG_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_LOG_BACKUP_COUNT = 5

# LogRecord attribute -> output key, written only when set
_LOCATION_FIELDS = (("module", "module"), ("funcName", "function"), ("lineno", "line"))


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line.

    Always present: timestamp (UTC, "Z" suffix), level, message, logger and
    message_id (empty outside a message_context). The record's extra_data
    mapping is merged at the top level, so call sites log with
    extra={"extra_data": {...}}.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z",
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "message_id": message_id_var.get(""),
        }

        for attribute, key in _LOCATION_FIELDS:
            value = getattr(record, attribute, None)
            if value and value != "<module>":
                entry[key] = value

        entry.update(getattr(record, "extra_data", None) or {})

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            entry["stack_trace"] = record.stack_info

        return json.dumps(entry, default=str, ensure_ascii=False)


def _replace_handlers(logger: logging.Logger, *handlers: logging.Handler) -> None:
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        logger.addHandler(handler)


class ObservabilityService:
    """
    Centralized logging and metrics for the ingestion daemon.

    Configures the root logger with a JSON stdout handler and, when a log
    directory is configured, size-rotated files:
    - system.log: every record at the configured level
    - errors.log: ERROR and above
    - invalid_requests.log: payloads rejected before ingestion
    """

    def __init__(self, settings: Optional[Any] = None):
        """
        Initialize the observability service.

        Args:
            settings: Object with log_level, log_dir, log_max_bytes and
                log_backup_count; missing or None values use the defaults
        """
        self.settings = settings
        self._logger: Optional[logging.Logger] = None
        self._setup_logging()

    def _setting(self, name: str, default: Any) -> Any:
        if self.settings is None:
            return default
        value = getattr(self.settings, name, None)
        return default if value is None else value

    def _setup_logging(self) -> None:
        level_name = str(self._setting("log_level", "INFO")).upper()
        level = logging.getLevelName(level_name)
        if not isinstance(level, int):
            level = logging.INFO
        formatter = JSONFormatter()

        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setLevel(level)
        stdout_handler.setFormatter(formatter)

        root = logging.getLogger()
        root.setLevel(level)
        # Replaces handlers from earlier setups so records are not duplicated
        _replace_handlers(root, stdout_handler)

        log_dir = self._setting("log_dir", None)
        if log_dir:
            self._setup_file_handlers(Path(log_dir), level, formatter)

        self._logger = logging.getLogger("observability")
        self._logger.info("Observability service initialized", extra={
            "extra_data": {"log_level": level_name, "log_dir": log_dir}
        })

    def _setup_file_handlers(
        self,
        log_dir: Path,
        log_level: int,
        formatter: logging.Formatter
    ) -> None:
        log_dir.mkdir(parents=True, exist_ok=True)
        max_bytes = self._setting("log_max_bytes", DEFAULT_LOG_MAX_BYTES)
        backup_count = self._setting("log_backup_count", DEFAULT_LOG_BACKUP_COUNT)

        def rotating(filename: str, level: int) -> RotatingFileHandler:
            handler = RotatingFileHandler(
                log_dir / filename,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
            handler.setLevel(level)
            handler.setFormatter(formatter)
            return handler

        root = logging.getLogger()
        root.addHandler(rotating("system.log", log_level))
        root.addHandler(rotating("errors.log", logging.ERROR))
        _replace_handlers(
            logging.getLogger(INVALID_REQUESTS_LOGGER),
            rotating("invalid_requests.log", logging.DEBUG),
        )

    def log_audit_event(
        self,
        event_type: str,
        identifier: Optional[str],
        action: str,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Log an audit event mirroring a row written to the error trail.

        Args:
            event_type: e.g. "device_not_found", "validation_failed"
            identifier: Device identifier the event refers to
            action: What was done about it, e.g. "record"
            details: Extra context such as the error record id
        """
        event: Dict[str, Any] = {
            "audit_event": True,
            "event_type": event_type,
            "identifier": identifier,
            "action": action,
        }
        if details:
            event["details"] = details

        self._logger.info(f"Audit: {event_type} - {action}", extra={"extra_data": event})

    def record_metric(
        self,
        name: str,
        value: float,
        tags: Optional[Dict[str, str]] = None
    ) -> None:
        """Emit a metric sample as a DEBUG record; tags become a nested mapping."""
        sample: Dict[str, Any] = {"metric_name": name, "metric_value": value}
        if tags:
            sample["tags"] = tags

        self._logger.debug(f"Metric: {name}={value}", extra={"extra_data": sample})


# Global observability service instance
_observability_service: Optional[ObservabilityService] = None


def get_observability_service() -> Optional[ObservabilityService]:
    """
    Get the global observability service instance.

    Returns:
        The observability service instance, or None if not initialized
    """
    return _observability_service


def initialize_observability(settings: Optional[Any] = None) -> ObservabilityService:
    """
    Initialize the global observability service.

    Args:
        settings: Application settings for configuration

    Returns:
        The initialized observability service
    """
    global _observability_service
    _observability_service = ObservabilityService(settings)
    return _observability_service


@contextmanager
def message_context(message_id: Optional[str] = None) -> Iterator[str]:
    """
    Bind a correlation id to every log record emitted while handling a message.

    Args:
        message_id: Explicit id to use; a new UUID is generated when omitted

    Yields:
        The bound message id
    """
    message_id = message_id or str(uuid.uuid4())
    token = message_id_var.set(message_id)
    try:
        yield message_id
    finally:
        message_id_var.reset(token)


def get_message_id() -> str:
    """
    Get the current message ID from context.

    Returns:
        The current message ID, or empty string if not set
    """
    return message_id_var.get("")
