"""
Exponential backoff for broker reconnects and startup dependencies.

The consumer uses calculate_delay() directly because it owns its reconnect
loop (it must stay interruptible by stop()). Startup steps such as schema
creation go through retry_async().
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class RetryConfig:
    """
    Backoff policy.

    Attributes:
        max_attempts: Attempts before giving up (not retries; 1 means no retry)
        initial_delay: Seconds to wait after the first failure
        exponential_base: Growth factor between consecutive delays
        max_delay: Cap on a single delay, None for no cap
        retryable_exceptions: Failures that trigger another attempt; anything
            else propagates immediately
    """
    max_attempts: int = 3
    initial_delay: float = 1.0
    exponential_base: float = 2.0
    max_delay: Optional[float] = None
    retryable_exceptions: Tuple[Type[Exception], ...] = field(
        default_factory=lambda: (Exception,)
    )

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given 0-indexed failed attempt."""
        return calculate_delay(attempt, self.initial_delay, self.exponential_base, self.max_delay)


class RetryExhaustedException(Exception):
    """
    Raised when every attempt allowed by a RetryConfig has failed.

    Attributes:
        attempts: Number of attempts made
        last_exception: Failure of the final attempt
        operation_name: Name of the operation, e.g. "mqtt_reconnect"
    """

    def __init__(
        self,
        message: str,
        attempts: int,
        last_exception: Exception,
        operation_name: Optional[str] = None
    ):
        self.attempts = attempts
        self.last_exception = last_exception
        self.operation_name = operation_name
        super().__init__(message)


def calculate_delay(
    attempt: int,
    initial_delay: float,
    exponential_base: float,
    max_delay: Optional[float] = None
) -> float:
    """
    Delay after a failed attempt: initial_delay * exponential_base ** attempt, capped.

    With the reconnect policy (2.0, 2.0, cap 30.0) attempts 0..4 wait
    2, 4, 8, 16 and 30 seconds, and every later attempt 30 seconds.
    """
    delay = initial_delay * (exponential_base ** attempt)
    if max_delay is not None and delay > max_delay:
        return max_delay
    return delay


def _exhausted(op_name: str, attempts: int, last: Optional[Exception]) -> RetryExhaustedException:
    return RetryExhaustedException(
        f"Operation '{op_name}' failed after {attempts} attempts",
        attempts=attempts,
        last_exception=last or Exception("No attempts made"),
        operation_name=op_name,
    )


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: Optional[RetryConfig] = None,
    operation_name: Optional[str] = None,
    sleep: Sleep = asyncio.sleep,
    **kwargs: Any
) -> T:
    """
    Await func(*args, **kwargs), retrying retryable failures with backoff.

    Args:
        func: Coroutine function to call
        config: Backoff policy (RetryConfig() when omitted)
        operation_name: Name used in logs and in the exhaustion error;
            defaults to func.__name__
        sleep: Coroutine used to wait between attempts

    Returns:
        The first successful result

    Raises:
        RetryExhaustedException: When the final attempt fails
    """
    policy = config or RetryConfig()
    op_name = operation_name or func.__name__
    last_exception: Optional[Exception] = None

    for attempt in range(policy.max_attempts):
        try:
            return await func(*args, **kwargs)
        except policy.retryable_exceptions as e:
            last_exception = e
            remaining = policy.max_attempts - attempt - 1
            if remaining == 0:
                break

            delay = policy.delay_for(attempt)
            logger.warning(
                f"{op_name} failed ({type(e).__name__}: {e}), "
                f"retrying in {delay:.2f}s ({remaining} attempts left)",
                extra={"extra_data": {
                    "operation": op_name,
                    "attempt": attempt + 1,
                    "max_attempts": policy.max_attempts,
                    "delay_seconds": delay,
                }}
            )
            await sleep(delay)

    logger.error(f"{op_name} gave up after {policy.max_attempts} attempts", extra={
        "extra_data": {
            "operation": op_name,
            "attempts": policy.max_attempts,
            "last_error": str(last_exception) if last_exception else None,
        }
    })
    raise _exhausted(op_name, policy.max_attempts, last_exception) from last_exception
