"""
Shared pytest fixtures and configuration for all tests.
"""
import os
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

# Hypothesis configuration for property-based testing
from hypothesis import settings, Verbosity, Phase

from cache.device_cache import DeviceCache
from cache.memory_store import InMemoryCacheStore
from storage.snapshot import DeviceSnapshot

# Configure Hypothesis profiles for different environments
# Default profile: balanced for local development
settings.register_profile(
    "default",
    max_examples=100,
    verbosity=Verbosity.normal,
    deadline=None,  # Disable deadline for async tests
    print_blob=True,  # Print failing examples for debugging
)

# CI profile: more thorough testing for continuous integration
settings.register_profile(
    "ci",
    max_examples=200,
    verbosity=Verbosity.verbose,
    deadline=None,
    print_blob=True,
    derandomize=True,  # Reproducible results in CI
)

# Debug profile: minimal examples for quick debugging
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
    print_blob=True,
    phases=[Phase.explicit, Phase.reuse, Phase.generate],  # Skip shrinking for speed
)

# Fast profile: quick smoke tests
settings.register_profile(
    "fast",
    max_examples=20,
    verbosity=Verbosity.normal,
    deadline=None,
)

# Load profile from environment variable HYPOTHESIS_PROFILE, default to "default"
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "default"))


NOW = datetime(2024, 1, 15, 10, 30, 0)


class FakeClock:
    """Manually advanced clock returning seconds, usable as time.time or time.monotonic."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store(fake_clock) -> InMemoryCacheStore:
    """In-memory cache store driven by the fake clock."""
    return InMemoryCacheStore(prefix="telemetry:", clock=fake_clock)


@pytest.fixture
def device_cache(memory_store) -> DeviceCache:
    return DeviceCache(memory_store)


@pytest.fixture
def mock_redis() -> MagicMock:
    """Create a mock Redis client for unit tests."""
    mock = MagicMock()
    mock.get = AsyncMock(return_value=None)
    mock.set = AsyncMock(return_value=True)
    mock.setex = AsyncMock(return_value=True)
    mock.delete = AsyncMock(return_value=1)
    mock.incr = AsyncMock(return_value=1)
    mock.hgetall = AsyncMock(return_value={})
    mock.hset = AsyncMock(return_value=1)
    mock.exists = AsyncMock(return_value=0)
    mock.eval = AsyncMock(return_value=0)
    mock.ping = AsyncMock(return_value=True)
    mock.aclose = AsyncMock()
    return mock


@pytest.fixture
def sample_snapshot() -> DeviceSnapshot:
    """A provisioned device that last reported five minutes before NOW."""
    return DeviceSnapshot(
        id=7,
        identifier="GPS-001",
        name="Truck 7",
        last_seen=NOW - timedelta(minutes=5),
        max_offline_duration=timedelta(minutes=30),
        latitude=-34.603722,
        longitude=-58.381592,
    )


@pytest.fixture
def sample_payload() -> dict:
    """Sample telemetry payload as published by the devices."""
    return {
        "Identificador": "GPS-001",
        "Latitud": -34.605123,
        "Longitud": -58.383456,
        "Sensor_1": 21.5,
        "Sensor_2": "3.25",
    }
