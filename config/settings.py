"""
Configuration management for the telemetry ingestion backend.

This module provides centralized configuration loading and validation using
Pydantic settings. All secrets are loaded from environment variables or .env
files, with environment-specific overrides for development, staging and
production.
"""

import os
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_REQUIRED_FIELDS = "Identificador,Latitud,Longitud"
DEFAULT_OPTIONAL_FIELDS = "Distancia,Sensor_1,Sensor_2,Sensor_3,Sensor_4,Sensor_5"


class Environment(str, Enum):
    """Supported deployment environments."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


def _detect_environment() -> Environment:
    """ENVIRONMENT variable as an Environment; unknown or unset values mean development."""
    value = os.environ.get("ENVIRONMENT", Environment.DEVELOPMENT.value).lower().strip()
    try:
        return Environment(value)
    except ValueError:
        return Environment.DEVELOPMENT


def _get_env_files(environment: Environment) -> Tuple[str, ...]:
    """Base .env first, then .env.<environment> overriding it."""
    return (".env", f".env.{environment.value}")


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    The ENVIRONMENT variable determines which environment-specific .env file
    is layered over the base .env file. Outside development a Redis URL is
    mandatory; in development the in-memory cache store is used when it is
    absent.
    """

    # Environment
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Deployment environment (development, staging, production)"
    )
    # Relational store
    database_url: str = Field(
        default="sqlite+aiosqlite:///./telemetry.db",
        description="SQLAlchemy async database URL"
    )
    database_echo: bool = Field(
        default=False,
        description="Log every SQL statement issued by the engine"
    )

    # Cache store
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis connection URL for the device cache and rate state"
    )
    cache_prefix: str = Field(
        default="telemetry:",
        description="Namespace prefix prepended to every cache key"
    )
    cache_ttl_seconds: int = Field(
        default=86400,
        ge=1,
        description="Default time-to-live of cached device projections"
    )
    cache_timeout_seconds: float = Field(
        default=2.5,
        gt=0,
        description="Socket timeout for cache operations"
    )

    # Rate limiting
    rate_limit_enabled: bool = Field(
        default=True,
        description="Global switch for the spacing gate and per-minute quota"
    )
    rate_limit_delay_ms: int = Field(
        default=100,
        ge=0,
        le=60000,
        description="Minimum spacing between messages of one device, in milliseconds"
    )
    rate_limit_max_per_minute: int = Field(
        default=60,
        ge=1,
        le=100000,
        description="Maximum accepted messages per device per minute"
    )

    # Validation
    validation_required_fields: str = Field(
        default=DEFAULT_REQUIRED_FIELDS,
        description="Comma separated list of mandatory payload fields"
    )
    validation_optional_fields: str = Field(
        default=DEFAULT_OPTIONAL_FIELDS,
        description="Comma separated list of optional numeric payload fields"
    )
    max_identifier_length: int = Field(
        default=255,
        ge=1,
        le=255,
        description="Maximum length of a device identifier"
    )

    # Geo
    earth_radius_meters: float = Field(
        default=6371000.0,
        gt=0,
        description="Earth radius used by the Haversine formula"
    )

    # MQTT
    mqtt_broker_host: str = Field(
        default="localhost",
        description="MQTT broker host name"
    )
    mqtt_broker_port: int = Field(
        default=1883,
        ge=1,
        le=65535,
        description="MQTT broker port"
    )
    mqtt_client_id: Optional[str] = Field(
        default=None,
        description="MQTT client id; a random one is generated when absent"
    )
    mqtt_username: Optional[str] = Field(
        default=None,
        description="MQTT username"
    )
    mqtt_password: Optional[str] = Field(
        default=None,
        description="MQTT password"
    )
    mqtt_topics: str = Field(
        default="telemetry/#",
        description="Comma separated list of topics to subscribe to"
    )
    mqtt_qos: int = Field(
        default=1,
        ge=0,
        le=2,
        description="Subscription quality of service"
    )
    mqtt_clean_session: bool = Field(
        default=True,
        description="Start every broker session without stored state"
    )
    mqtt_keepalive: int = Field(
        default=60,
        ge=5,
        description="Keep-alive interval in seconds"
    )
    mqtt_queue_size: int = Field(
        default=10000,
        ge=1,
        description="Capacity of the hand-off queue between paho and the consumer"
    )

    # Reconnection
    reconnect_max_attempts: int = Field(
        default=10,
        ge=1,
        description="Reconnect attempts before the consumer gives up"
    )
    reconnect_initial_delay_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Backoff before the first reconnect attempt"
    )
    reconnect_max_delay_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound of the reconnect backoff"
    )

    # Observability
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_dir: Optional[str] = Field(
        default=None,
        description="Directory for rotating log files; stdout only when unset"
    )
    log_max_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=1024,
        description="Size at which a log file is rotated"
    )
    log_backup_count: int = Field(
        default=5,
        ge=0,
        description="Rotated log files kept per log"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate that database_url is not empty and names a driver."""
        if not v or not v.strip():
            raise ValueError("database_url cannot be empty")
        v = v.strip()
        if "://" not in v:
            raise ValueError("database_url must be a SQLAlchemy URL such as mysql+aiomysql://...")
        return v

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate the Redis URL scheme when one is provided."""
        if v is None or not v.strip():
            return None
        v = v.strip()
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("redis_url must start with redis://, rediss:// or unix://")
        return v

    @field_validator("cache_prefix")
    @classmethod
    def validate_cache_prefix(cls, v: str) -> str:
        """Ensure the cache prefix ends with a separator."""
        v = v.strip()
        if v and not v.endswith(":"):
            v = f"{v}:"
        return v

    @field_validator("mqtt_topics", "validation_required_fields")
    @classmethod
    def validate_not_empty_list(cls, v: str) -> str:
        """Validate that a comma separated list holds at least one entry."""
        if not _split_csv(v):
            raise ValueError("at least one entry is required")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that log_level is a valid logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v = v.strip().upper()
        if v not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(sorted(valid_levels))}")
        return v

    @model_validator(mode="after")
    def validate_cache_config(self) -> "Settings":
        """Require a Redis URL outside development."""
        if not self.redis_url and self.environment != Environment.DEVELOPMENT:
            raise ValueError(
                "redis_url is required in non-development environments"
            )
        return self

    @model_validator(mode="after")
    def validate_reconnect_delays(self) -> "Settings":
        """Validate that the backoff cap is not below the initial delay."""
        if self.reconnect_max_delay_seconds < self.reconnect_initial_delay_seconds:
            raise ValueError(
                "reconnect_max_delay_seconds must be >= reconnect_initial_delay_seconds"
            )
        return self

    @property
    def topic_list(self) -> List[str]:
        """Topics to subscribe to, in configuration order."""
        return _split_csv(self.mqtt_topics)

    @property
    def required_field_list(self) -> List[str]:
        return _split_csv(self.validation_required_fields)

    @property
    def optional_field_list(self) -> List[str]:
        return _split_csv(self.validation_optional_fields)

    @property
    def cache_ttl(self) -> timedelta:
        return timedelta(seconds=self.cache_ttl_seconds)


class ConfigurationError(Exception):
    """Exception raised when configuration validation fails."""

    def __init__(self, message: str, missing_fields: Optional[List[str]] = None,
                 invalid_fields: Optional[dict] = None):
        self.message = message
        self.missing_fields = missing_fields or []
        self.invalid_fields = invalid_fields or {}
        super().__init__(self.format_error_message())

    def format_error_message(self) -> str:
        """Format a descriptive error message listing all issues."""
        parts = [self.message]

        if self.missing_fields:
            parts.append(f"\nMissing required fields: {', '.join(self.missing_fields)}")

        if self.invalid_fields:
            invalid_parts = [f"  - {field}: {error}" for field, error in self.invalid_fields.items()]
            parts.append("\nInvalid field values:\n" + "\n".join(invalid_parts))

        return "".join(parts)


def _collect_errors(error: ValidationError) -> Tuple[List[str], Dict[str, str]]:
    missing: List[str] = []
    invalid: Dict[str, str] = {}
    for item in error.errors():
        name = ".".join(str(part) for part in item.get("loc", ())) or "settings"
        if item.get("type") == "missing":
            missing.append(name)
        else:
            invalid[name] = item.get("msg", str(item))
    return missing, invalid


def create_settings_for_environment(environment: Optional[Environment] = None) -> Settings:
    """
    Load settings from the environment and the .env files of one environment.

    Args:
        environment: Environment whose .env.<environment> file is layered over
            .env; detected from ENVIRONMENT when omitted

    Raises:
        ConfigurationError: If a field is missing or fails validation
    """
    environment = environment or _detect_environment()
    env_files = tuple(f for f in _get_env_files(environment) if Path(f).exists())

    class EnvironmentSettings(Settings):
        model_config = SettingsConfigDict(
            env_file=env_files or None,
            env_file_encoding="utf-8",
            case_sensitive=False,
            extra="ignore"
        )

    try:
        return EnvironmentSettings()
    except ValidationError as e:
        missing, invalid = _collect_errors(e)
        raise ConfigurationError(
            f"Failed to load configuration for environment '{environment.value}'",
            missing_fields=missing,
            invalid_fields=invalid
        ) from e


_settings_cache: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Settings of the detected environment, loaded once per process.

    Raises:
        ConfigurationError: If settings are missing or invalid
    """
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = create_settings_for_environment()
    return _settings_cache


def clear_settings_cache() -> None:
    """Forget the loaded settings so the next get_settings() reloads them."""
    global _settings_cache
    _settings_cache = None


def validate_startup() -> None:
    """
    Validate all required settings before the daemon connects anywhere.

    Raises:
        ConfigurationError: If any required settings are missing or invalid.
    """
    settings = get_settings()
    validation_errors = {}

    if settings.log_dir:
        log_dir = Path(settings.log_dir)
        if log_dir.exists() and not log_dir.is_dir():
            validation_errors["log_dir"] = f"Not a directory: {settings.log_dir}"

    required = settings.required_field_list
    for field in required:
        if field in settings.optional_field_list:
            validation_errors["validation_optional_fields"] = (
                f"Field '{field}' cannot be both required and optional"
            )

    if settings.mqtt_password and not settings.mqtt_username:
        validation_errors["mqtt_password"] = "mqtt_password requires mqtt_username"

    if settings.environment == Environment.PRODUCTION and settings.database_url.startswith("sqlite"):
        validation_errors["database_url"] = (
            "SQLite is not supported in production. Configure the MySQL database URL."
        )

    if validation_errors:
        raise ConfigurationError(
            "Configuration validation failed during startup",
            invalid_fields=validation_errors
        )
