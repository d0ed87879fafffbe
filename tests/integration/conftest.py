"""
Integration test configuration and fixtures.

Integration tests run the real SQLAlchemy repository against a throwaway
SQLite database (aiosqlite) and the in-memory cache store, so they need no
external services.
"""
from datetime import datetime, timedelta
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from cache.device_cache import DeviceCache
from geo.calculator import GeoCalculator
from ingestion.handler import TelemetryMessageHandler
from ingestion.service import IngestionService
from ratelimit.limiter import RateLimiter
from storage.repository import SqlDeviceRepository
from validation.validator import TelemetryValidator


class FakeUtcClock:
    """Manually advanced naive UTC clock for the ingestion service."""

    def __init__(self, start: datetime = datetime(2024, 1, 15, 10, 30, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest_asyncio.fixture
async def repository(tmp_path) -> AsyncGenerator[SqlDeviceRepository, None]:
    """Repository backed by a fresh SQLite file with the schema created."""
    repo = SqlDeviceRepository(f"sqlite+aiosqlite:///{tmp_path}/telemetry.db")
    await repo.create_schema()
    yield repo
    await repo.dispose()


@pytest.fixture
def utc_clock() -> FakeUtcClock:
    return FakeUtcClock()


@pytest.fixture
def observability() -> MagicMock:
    return MagicMock()


@pytest.fixture
def ingestion_service(repository, memory_store, utc_clock, observability) -> IngestionService:
    return IngestionService(
        cache=DeviceCache(memory_store),
        repository=repository,
        geo=GeoCalculator(),
        observability=observability,
        clock=utc_clock,
    )


@pytest.fixture
def handler(ingestion_service, memory_store, fake_clock) -> TelemetryMessageHandler:
    """Handler wired to SQLite and the in-memory store; delays are not slept."""
    limiter = RateLimiter(
        memory_store,
        delay_ms=100,
        max_per_minute=60,
        clock=fake_clock,
        sleep=AsyncMock(),
    )
    return TelemetryMessageHandler(
        validator=TelemetryValidator(),
        rate_limiter=limiter,
        service=ingestion_service,
    )
