"""
Entry point of the telemetry ingestion daemon.

Loads and validates configuration, wires the cache, repository, rate
limiter, ingestion service and MQTT consumer together, and consumes until
SIGINT, SIGTERM or SIGHUP. Exits with status 1 when configuration is
invalid or the broker stays unreachable.
"""

import asyncio
import logging
import signal
import sys
from dataclasses import dataclass
from typing import Optional

from cache.device_cache import DeviceCache
from cache.memory_store import InMemoryCacheStore
from cache.redis_store import RedisCacheStore
from cache.store import CacheStore
from config.settings import ConfigurationError, Settings, get_settings, validate_startup
from errors.exceptions import IngestionError, TransportError
from geo.calculator import GeoCalculator
from health.service import HealthCheckService
from ingestion.handler import TelemetryMessageHandler
from ingestion.service import IngestionService
from messaging.consumer import MessageConsumer
from messaging.mqtt_transport import MqttTransport
from observability.service import initialize_observability
from ratelimit.limiter import RateLimiter
from resilience.retry import RetryConfig, RetryExhaustedException, retry_async
from storage.repository import SqlDeviceRepository
from validation.validator import TelemetryValidator

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)

# The database may still be starting when the daemon comes up
SCHEMA_RETRY = RetryConfig(
    max_attempts=5,
    initial_delay=1.0,
    max_delay=10.0,
    retryable_exceptions=(IngestionError,),
)


@dataclass
class Daemon:
    """Wired components of a running daemon."""
    settings: Settings
    cache_store: CacheStore
    repository: SqlDeviceRepository
    transport: MqttTransport
    consumer: MessageConsumer
    health: HealthCheckService


def build_cache_store(settings: Settings) -> CacheStore:
    """Redis when a URL is configured, otherwise the in-process store."""
    if settings.redis_url:
        return RedisCacheStore(
            settings.redis_url,
            prefix=settings.cache_prefix,
            timeout=settings.cache_timeout_seconds,
        )
    logger.warning("No REDIS_URL configured, using the in-memory cache store")
    return InMemoryCacheStore(prefix=settings.cache_prefix)


async def build_daemon(settings: Settings) -> Daemon:
    """
    Create and connect every component.

    A cache that cannot be reached at startup is not fatal: the stores
    raise CacheUnavailableError per call, which the cache and the rate
    limiter tolerate.

    Raises:
        RetryExhaustedException: If the schema cannot be created
    """
    cache_store = build_cache_store(settings)
    try:
        await cache_store.connect()
    except IngestionError as e:
        logger.error(f"Cache unavailable at startup: {e.message}", extra={
            "extra_data": e.to_dict()
        })

    repository = SqlDeviceRepository.from_settings(settings)
    await retry_async(
        repository.create_schema,
        config=SCHEMA_RETRY,
        operation_name="create_schema",
    )

    service = IngestionService(
        cache=DeviceCache(cache_store, ttl=settings.cache_ttl),
        repository=repository,
        geo=GeoCalculator(settings.earth_radius_meters),
    )
    handler = TelemetryMessageHandler(
        validator=TelemetryValidator.from_settings(settings),
        rate_limiter=RateLimiter.from_settings(cache_store, settings),
        service=service,
    )

    transport = MqttTransport.from_settings(settings)
    consumer = MessageConsumer.from_settings(transport, handler, settings)
    health = HealthCheckService(repository, cache_store=cache_store, transport=transport)

    return Daemon(
        settings=settings,
        cache_store=cache_store,
        repository=repository,
        transport=transport,
        consumer=consumer,
        health=health,
    )


def install_signal_handlers(consumer: MessageConsumer) -> None:
    loop = asyncio.get_running_loop()
    for sig in SHUTDOWN_SIGNALS:
        try:
            loop.add_signal_handler(sig, consumer.stop)
        except (NotImplementedError, RuntimeError):
            # Not available on this platform (e.g. Windows event loops)
            logger.debug(f"Signal handler for {sig.name} not installed")


async def shutdown(daemon: Daemon) -> None:
    await daemon.cache_store.disconnect()
    await daemon.repository.dispose()
    logger.info("Telemetry ingestion daemon stopped")


async def run(settings: Optional[Settings] = None) -> int:
    """
    Run the daemon until stopped.

    Returns:
        Process exit status
    """
    settings = settings or get_settings()
    try:
        daemon = await build_daemon(settings)
    except RetryExhaustedException as e:
        logger.critical(f"Startup failed: {e}", extra={
            "extra_data": {"last_error": str(e.last_exception)}
        })
        return 1
    install_signal_handlers(daemon.consumer)

    logger.info("Starting telemetry ingestion daemon", extra={
        "extra_data": {
            "environment": settings.environment.value,
            "broker": f"{settings.mqtt_broker_host}:{settings.mqtt_broker_port}",
            "topics": settings.topic_list,
        }
    })

    try:
        try:
            await daemon.consumer.connect()
            await daemon.consumer.subscribe()
        except TransportError as e:
            logger.critical(f"Broker connection failed at startup: {e.message}", extra={
                "extra_data": e.to_dict()
            })
            return 1

        readiness = await daemon.health.check_readiness()
        logger.info(f"Readiness: {readiness.status}", extra={"extra_data": readiness.to_dict()})

        await daemon.consumer.loop()
    except RetryExhaustedException as e:
        logger.critical(f"Broker unreachable, exiting: {e}", extra={
            "extra_data": {"attempts": e.attempts, "last_error": str(e.last_exception)}
        })
        return 1
    finally:
        await daemon.consumer.close()
        await shutdown(daemon)

    return 0


def main() -> None:
    try:
        settings = get_settings()
        initialize_observability(settings)
        validate_startup()
    except ConfigurationError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.critical(f"Invalid configuration: {e}")
        sys.exit(1)

    sys.exit(asyncio.run(run(settings)))


if __name__ == "__main__":
    main()
