"""
Message consumer owning the subscription lifecycle.

The consumer connects to the broker, subscribes, and dispatches one message
at a time to its handler, awaiting the full pipeline before receiving the
next. A lost connection is retried with exponential backoff (2s doubling
to a 30s cap, at most 10 attempts by default); running out of attempts
raises RetryExhaustedException out of loop().
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Union

from errors.exceptions import TransportError
from messaging.transport import InboundMessage, MessageTransport
from resilience.retry import RetryConfig, RetryExhaustedException, calculate_delay

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, Union[bytes, str]], Awaitable[Any]]

DEFAULT_RECONNECT = RetryConfig(
    max_attempts=10,
    initial_delay=2.0,
    exponential_base=2.0,
    max_delay=30.0,
    retryable_exceptions=(TransportError,),
)


class ConsumerStatus(str, Enum):
    """Lifecycle states of a MessageConsumer."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    CONSUMING = "consuming"
    RECONNECTING = "reconnecting"
    STOPPING = "stopping"


@dataclass
class ConsumerState:
    """
    Mutable state owned by one consumer.

    Attributes:
        status: Current lifecycle state
        topics: Topics the consumer subscribes to
        qos: Subscription quality of service
        messages_received: Messages taken off the transport
        messages_failed: Messages whose handler raised
        reconnect_attempts: Attempts made in the current reconnect cycle
        last_error: Description of the most recent transport failure
        connected_at: Wall-clock time of the last successful connect
    """
    status: ConsumerStatus = ConsumerStatus.DISCONNECTED
    topics: List[str] = field(default_factory=list)
    qos: int = 1
    messages_received: int = 0
    messages_failed: int = 0
    reconnect_attempts: int = 0
    last_error: Optional[str] = None
    connected_at: Optional[float] = None


class MessageConsumer:
    """
    Subscription lifecycle and dispatch loop.

    Attributes:
        transport: Broker transport
        handler: Coroutine called with (topic, payload) for each message
        reconnect_config: Backoff policy for reconnects
        receive_timeout: Seconds to wait for a message before re-checking
            the stop flag
        state: Consumer state
    """

    def __init__(
        self,
        transport: MessageTransport,
        handler: MessageHandler,
        topics: Optional[Sequence[str]] = None,
        qos: int = 1,
        reconnect_config: Optional[RetryConfig] = None,
        receive_timeout: float = 1.0,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        """
        Initialize the consumer.

        Args:
            transport: Broker transport
            handler: Message handler coroutine
            topics: Topics to subscribe to
            qos: Subscription QoS
            reconnect_config: Backoff policy (2s doubling to 30s, 10 attempts by default)
            receive_timeout: Poll interval for the stop flag
            sleep: Backoff sleep; defaults to a sleep that ends early on stop()
        """
        self.transport = transport
        self.handler = handler
        self.reconnect_config = reconnect_config or DEFAULT_RECONNECT
        self.receive_timeout = receive_timeout
        self.state = ConsumerState(topics=list(topics or []), qos=qos)
        self._sleep = sleep or self._interruptible_sleep
        self._stop_event = asyncio.Event()

    @classmethod
    def from_settings(
        cls,
        transport: MessageTransport,
        handler: MessageHandler,
        settings: Any
    ) -> "MessageConsumer":
        return cls(
            transport,
            handler,
            topics=settings.topic_list,
            qos=settings.mqtt_qos,
            reconnect_config=RetryConfig(
                max_attempts=settings.reconnect_max_attempts,
                initial_delay=settings.reconnect_initial_delay_seconds,
                exponential_base=2.0,
                max_delay=settings.reconnect_max_delay_seconds,
                retryable_exceptions=(TransportError,),
            ),
        )

    @property
    def status(self) -> ConsumerStatus:
        return self.state.status

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def _set_status(self, status: ConsumerStatus) -> None:
        if self.state.status != status:
            logger.debug(f"Consumer {self.state.status.value} -> {status.value}")
        self.state.status = status

    async def connect(self) -> None:
        """
        Connect the transport.

        Raises:
            TransportError: If the broker cannot be reached
        """
        self._set_status(ConsumerStatus.CONNECTING)
        try:
            await self.transport.connect()
        except TransportError as e:
            self.state.last_error = e.message
            self._set_status(ConsumerStatus.DISCONNECTED)
            raise
        self.state.connected_at = time.time()

    async def subscribe(self, topics: Optional[Sequence[str]] = None, qos: Optional[int] = None) -> None:
        """
        Subscribe to topics, remembering them for reconnects.

        Raises:
            TransportError: If the subscription is refused
        """
        if topics is not None:
            self.state.topics = list(topics)
        if qos is not None:
            self.state.qos = qos
        await self.transport.subscribe(self.state.topics, self.state.qos)
        self._set_status(ConsumerStatus.SUBSCRIBED)

    async def loop(self) -> None:
        """
        Receive and dispatch messages until stop() is called.

        Raises:
            RetryExhaustedException: If the connection cannot be restored
        """
        self._set_status(ConsumerStatus.CONSUMING)
        while not self.stopping:
            try:
                message = await self.transport.receive(self.receive_timeout)
            except TransportError as e:
                if self.stopping:
                    break
                await self.reconnect(e)
                continue

            if message is None:
                continue
            await self.dispatch(message)

    async def dispatch(self, message: InboundMessage) -> None:
        """Hand one message to the handler; exceptions are logged, never raised."""
        self.state.messages_received += 1
        try:
            await self.handler(message.topic, message.payload)
        except Exception as e:
            self.state.messages_failed += 1
            logger.exception(f"Handler failed for message on {message.topic}: {e}", extra={
                "extra_data": {"topic": message.topic}
            })

    async def reconnect(self, cause: Optional[Exception] = None) -> None:
        """
        Restore the connection and subscriptions with exponential backoff.

        Sleeps before every attempt. Returns early without connecting if
        stop() is called meanwhile.

        Raises:
            RetryExhaustedException: After the configured number of attempts
        """
        config = self.reconnect_config
        self._set_status(ConsumerStatus.RECONNECTING)
        last_exception: Exception = cause or TransportError()
        self.state.last_error = str(last_exception)

        for attempt in range(config.max_attempts):
            self.state.reconnect_attempts = attempt + 1
            delay = calculate_delay(
                attempt, config.initial_delay, config.exponential_base, config.max_delay
            )
            logger.warning(
                f"Reconnecting in {delay:.1f}s (attempt {attempt + 1}/{config.max_attempts})",
                extra={"extra_data": {
                    "attempt": attempt + 1,
                    "max_attempts": config.max_attempts,
                    "delay_seconds": delay,
                    "error": self.state.last_error,
                }}
            )
            await self._sleep(delay)
            if self.stopping:
                return

            try:
                await self.transport.connect()
                await self.transport.subscribe(self.state.topics, self.state.qos)
            except config.retryable_exceptions as e:
                last_exception = e
                self.state.last_error = str(e)
                continue

            logger.info(f"Reconnected after {attempt + 1} attempt(s)")
            self.state.connected_at = time.time()
            self.state.reconnect_attempts = 0
            self._set_status(ConsumerStatus.CONSUMING)
            return

        logger.critical(f"Giving up reconnecting after {config.max_attempts} attempts", extra={
            "extra_data": {"error": self.state.last_error}
        })
        raise RetryExhaustedException(
            message=f"Broker unreachable after {config.max_attempts} reconnect attempts",
            attempts=config.max_attempts,
            last_exception=last_exception,
            operation_name="mqtt_reconnect",
        )

    def stop(self) -> None:
        """
        Request a cooperative stop.

        Safe to call from a signal handler. The in-flight message is
        finished before loop() returns.
        """
        if not self.stopping:
            logger.info("Stop requested")
        self._stop_event.set()
        self._set_status(ConsumerStatus.STOPPING)

    async def close(self) -> None:
        """Unsubscribe and disconnect; failures are logged."""
        if self.transport.is_connected and self.state.topics:
            try:
                await self.transport.unsubscribe(self.state.topics)
            except TransportError as e:
                logger.warning(f"Unsubscribe failed during shutdown: {e.message}")
        await self.transport.disconnect()
        self._set_status(ConsumerStatus.DISCONNECTED)

    async def _interruptible_sleep(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
