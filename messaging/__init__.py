"""
Messaging module: broker transports and the message consumer.
"""

from messaging.transport import InboundMessage, MessageTransport
from messaging.mqtt_transport import MqttTransport
from messaging.consumer import (
    DEFAULT_RECONNECT,
    ConsumerState,
    ConsumerStatus,
    MessageConsumer,
)

__all__ = [
    "InboundMessage",
    "MessageTransport",
    "MqttTransport",
    "DEFAULT_RECONNECT",
    "ConsumerState",
    "ConsumerStatus",
    "MessageConsumer",
]
