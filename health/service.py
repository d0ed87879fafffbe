"""
Readiness and liveness of the ingestion daemon.

The database and the broker are critical: without them no measurement can
be stored or received. The cache is not; ingestion falls back to the
repository and rate limiting fails open, so a cache outage only degrades
the service.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Union

from storage.snapshot import utcnow

logger = logging.getLogger(__name__)

Probe = Callable[[], Union[bool, Awaitable[bool]]]

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"

CRITICAL_DEPENDENCIES = frozenset({"database", "broker"})


@dataclass
class DependencyHealth:
    """Outcome of one probe."""
    name: str
    healthy: bool
    response_time_ms: float
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        result = {
            "name": self.name,
            "healthy": self.healthy,
            "response_time_ms": round(self.response_time_ms, 2),
        }
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass
class HealthStatus:
    """
    Aggregated readiness report.

    Attributes:
        status: healthy, degraded (only the cache is down) or unhealthy
        timestamp: Naive UTC time of the check
        dependencies: One entry per probed dependency, in probe order
    """
    status: str
    timestamp: datetime
    dependencies: List[DependencyHealth] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": self.timestamp.isoformat() + "Z",
            "dependencies": [dep.to_dict() for dep in self.dependencies],
        }


class HealthCheckService:
    """
    Probes the database, the cache store and the broker transport.

    Attributes:
        repository: Object with an async health_check()
        cache_store: Optional object with an async health_check()
        transport: Optional object with an is_connected property
        check_timeout: Seconds allowed per probe
    """

    def __init__(
        self,
        repository: Any,
        cache_store: Optional[Any] = None,
        transport: Optional[Any] = None,
        check_timeout: float = 5.0
    ):
        self.repository = repository
        self.cache_store = cache_store
        self.transport = transport
        self.check_timeout = check_timeout

    def _probes(self) -> List[Tuple[str, Probe]]:
        probes: List[Tuple[str, Probe]] = [("database", self.repository.health_check)]
        if self.cache_store is not None:
            probes.append(("cache", self.cache_store.health_check))
        if self.transport is not None:
            probes.append(("broker", lambda: self.transport.is_connected))
        return probes

    async def check_readiness(self) -> HealthStatus:
        """
        Run every probe concurrently, each bounded by check_timeout.

        Probe failures are reported in the result, never raised.
        """
        dependencies = list(await asyncio.gather(
            *(self._check_dependency(name, probe) for name, probe in self._probes())
        ))
        return HealthStatus(
            status=self._determine_overall_status(dependencies),
            timestamp=utcnow(),
            dependencies=dependencies,
        )

    async def check_liveness(self) -> dict[str, Any]:
        """The process is running and its event loop responds."""
        return {"status": "alive", "timestamp": utcnow().isoformat() + "Z"}

    async def _check_dependency(self, name: str, probe: Probe) -> DependencyHealth:
        started = time.perf_counter()
        error: Optional[str] = None
        healthy = False

        try:
            healthy = await asyncio.wait_for(self._run_probe(probe), timeout=self.check_timeout)
            if not healthy:
                error = f"{name} health check returned False"
        except asyncio.TimeoutError:
            error = f"{name} health check timed out after {self.check_timeout} seconds"
        except Exception as e:
            error = f"{name} health check failed: {e}"

        elapsed_ms = (time.perf_counter() - started) * 1000
        if error:
            log = logger.error if name in CRITICAL_DEPENDENCIES else logger.warning
            log(error, extra={"extra_data": {"dependency": name, "response_time_ms": elapsed_ms}})
        else:
            logger.debug(f"{name} health check passed in {elapsed_ms:.2f}ms")

        return DependencyHealth(
            name=name, healthy=healthy, response_time_ms=elapsed_ms, error=error
        )

    @staticmethod
    async def _run_probe(probe: Probe) -> bool:
        result = probe()
        if inspect.isawaitable(result):
            result = await result
        return bool(result)

    @staticmethod
    def _determine_overall_status(dependencies: List[DependencyHealth]) -> str:
        failed = {dep.name for dep in dependencies if not dep.healthy}
        if not failed:
            return HEALTHY
        if failed & CRITICAL_DEPENDENCIES:
            return UNHEALTHY
        return DEGRADED
