"""
MQTT transport built on paho-mqtt.

paho runs its network loop on a background thread. Callbacks never touch
application state directly: they hand messages and connection events to
the asyncio loop with call_soon_threadsafe, where inbound messages are
buffered in a bounded queue. When the queue is full new messages are
dropped with a warning.

Automatic reconnection inside paho is disabled; reconnecting with backoff
is the consumer's job.
"""

import asyncio
import logging
import uuid
from typing import Any, Optional, Sequence, Union

import paho.mqtt.client as mqtt

from errors.exceptions import TransportError
from messaging.transport import InboundMessage, MessageTransport

logger = logging.getLogger(__name__)

# Pushed into the queue to wake up receive() when the connection drops
_CONNECTION_LOST = object()


def default_client_id() -> str:
    return f"telemetry-ingest-{uuid.uuid4().hex[:12]}"


class MqttTransport(MessageTransport):
    """
    paho-mqtt backed transport.

    Attributes:
        host: Broker host name
        port: Broker port
        client_id: MQTT client identifier
        keepalive: Keep-alive interval in seconds
        clean_session: Whether the broker discards session state on connect
        queue_size: Capacity of the inbound message buffer
        connect_timeout: Seconds to wait for the broker's CONNACK
    """

    def __init__(
        self,
        host: str,
        port: int = 1883,
        client_id: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        keepalive: int = 60,
        clean_session: bool = True,
        queue_size: int = 10000,
        connect_timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.client_id = client_id or default_client_id()
        self.username = username
        self.password = password
        self.keepalive = keepalive
        self.clean_session = clean_session
        self.queue_size = queue_size
        self.connect_timeout = connect_timeout

        self._client: Optional[mqtt.Client] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._connack: Optional[asyncio.Future] = None
        self._connected = False
        self._closing = False
        self._lost_reason: Optional[str] = None
        self.dropped_messages = 0

    @classmethod
    def from_settings(cls, settings: Any) -> "MqttTransport":
        return cls(
            host=settings.mqtt_broker_host,
            port=settings.mqtt_broker_port,
            client_id=settings.mqtt_client_id,
            username=settings.mqtt_username,
            password=settings.mqtt_password,
            keepalive=settings.mqtt_keepalive,
            clean_session=settings.mqtt_clean_session,
            queue_size=settings.mqtt_queue_size,
        )

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _build_client(self) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            clean_session=self.clean_session,
            protocol=mqtt.MQTTv311,
            reconnect_on_failure=False,
        )
        if self.username:
            client.username_pw_set(self.username, self.password)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        return client

    async def connect(self) -> None:
        """
        Connect to the broker and wait for the CONNACK.

        Raises:
            TransportError: If the broker is unreachable, refuses the
                session, or does not answer in time
        """
        self._loop = asyncio.get_running_loop()
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.queue_size)
        await self._teardown_client()

        self._closing = False
        self._lost_reason = None
        self._connack = self._loop.create_future()
        self._client = self._build_client()

        try:
            await self._loop.run_in_executor(
                None, self._client.connect, self.host, self.port, self.keepalive
            )
        except (OSError, ValueError) as e:
            raise TransportError(
                f"Cannot reach MQTT broker {self.host}:{self.port}: {e}",
                details={"host": self.host, "port": self.port}
            ) from e

        self._client.loop_start()
        try:
            await asyncio.wait_for(self._connack, timeout=self.connect_timeout)
        except asyncio.TimeoutError as e:
            await self._teardown_client()
            raise TransportError(
                f"No CONNACK from {self.host}:{self.port} within {self.connect_timeout}s",
                details={"host": self.host, "port": self.port}
            ) from e
        except TransportError:
            await self._teardown_client()
            raise

        self._connected = True
        logger.info(f"Connected to MQTT broker {self.host}:{self.port}", extra={
            "extra_data": {"client_id": self.client_id, "clean_session": self.clean_session}
        })

    async def subscribe(self, topics: Sequence[str], qos: int = 1) -> None:
        client = self._require_client()
        result, _ = client.subscribe([(topic, qos) for topic in topics])
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(
                f"Subscribe failed: {mqtt.error_string(result)}",
                details={"topics": list(topics), "qos": qos}
            )
        logger.info(f"Subscribed to {', '.join(topics)}", extra={
            "extra_data": {"topics": list(topics), "qos": qos}
        })

    async def unsubscribe(self, topics: Sequence[str]) -> None:
        client = self._require_client()
        result, _ = client.unsubscribe(list(topics))
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(
                f"Unsubscribe failed: {mqtt.error_string(result)}",
                details={"topics": list(topics)}
            )

    async def receive(self, timeout: float = 1.0) -> Optional[InboundMessage]:
        if self._queue is None:
            raise TransportError("MQTT transport not connected. Call connect() first.")
        if self._lost_reason is not None and self._queue.empty():
            raise TransportError(f"Connection lost: {self._lost_reason}")

        try:
            item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

        if item is _CONNECTION_LOST:
            if self._lost_reason is None:
                # Stale marker from a session that has since been re-established
                return None
            raise TransportError(f"Connection lost: {self._lost_reason}")
        return item

    async def publish(
        self,
        topic: str,
        payload: Union[bytes, str],
        qos: int = 0,
        retain: bool = False
    ) -> None:
        client = self._require_client()
        info = client.publish(topic, payload, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(
                f"Publish failed: {mqtt.error_string(info.rc)}",
                details={"topic": topic}
            )

    async def disconnect(self) -> None:
        if self._client is None:
            return
        self._closing = True
        await self._teardown_client()
        logger.info("Disconnected from MQTT broker")

    async def _teardown_client(self) -> None:
        client, self._client = self._client, None
        self._connected = False
        if client is None:
            return
        # loop_stop joins the network thread
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, client.disconnect)
        await loop.run_in_executor(None, client.loop_stop)

    def _require_client(self) -> mqtt.Client:
        if self._client is None or not self._connected:
            raise TransportError("MQTT transport not connected. Call connect() first.")
        return self._client

    # paho callbacks, run on the network thread

    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        self._loop.call_soon_threadsafe(self._resolve_connack, reason_code)

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties) -> None:
        if not self._closing:
            self._loop.call_soon_threadsafe(self._mark_lost, str(reason_code))

    def _on_message(self, client, userdata, message) -> None:
        inbound = InboundMessage(
            topic=message.topic,
            payload=bytes(message.payload),
            qos=message.qos,
        )
        self._loop.call_soon_threadsafe(self._enqueue, inbound)

    # loop-side handlers

    def _resolve_connack(self, reason_code) -> None:
        if self._connack is None or self._connack.done():
            return
        if reason_code.is_failure:
            self._connack.set_exception(TransportError(
                f"Broker refused connection: {reason_code}",
                details={"host": self.host, "port": self.port}
            ))
        else:
            self._connack.set_result(True)

    def _mark_lost(self, reason: str) -> None:
        if self._closing:
            return
        self._connected = False
        self._lost_reason = reason
        if self._connack is not None and not self._connack.done():
            self._connack.set_exception(TransportError(f"Connection closed before CONNACK: {reason}"))
        logger.warning(f"MQTT connection lost: {reason}", extra={
            "extra_data": {"host": self.host, "port": self.port}
        })
        try:
            self._queue.put_nowait(_CONNECTION_LOST)
        except asyncio.QueueFull:
            # receive() sees the lost flag once the backlog is drained
            pass

    def _enqueue(self, message: InboundMessage) -> None:
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            self.dropped_messages += 1
            logger.warning("Inbound queue full, dropping message", extra={
                "extra_data": {"topic": message.topic, "dropped_total": self.dropped_messages}
            })
