"""Transport events consumed by the engines and application events they publish."""

from dataclasses import dataclass, field
from typing import Any, Hashable, Optional, Tuple

from pubsub import pub

from gatttime import publishingThread
from gatttime.config import logger
from gatttime.errors import ErrorHandler
from gatttime.gatt import ConnectionStatus, Status

# Application topics (PyPubSub). Every message also carries `engine=`.
TOPIC_DEVICE_CONNECTED = "gatttime.server.deviceConnected"
TOPIC_DEVICE_DISCONNECTED = "gatttime.server.deviceDisconnected"
TOPIC_TIME_OFFSET_UPDATED = "gatttime.server.timeOffsetUpdated"
TOPIC_TIME_VALUE_CHANGED = "gatttime.client.timeValueChanged"
TOPIC_TIME_OFFSET_CHANGED = "gatttime.client.timeOffsetChanged"


# Inbound transport events. Engines route these through `dispatch()`.


@dataclass(frozen=True)
class ConnectionStateChanged:
    device: Hashable
    status: Status
    new_state: ConnectionStatus


@dataclass(frozen=True)
class ReadRequest:
    device: Hashable
    request_id: int
    characteristic_id: str
    offset: int = 0


@dataclass(frozen=True)
class WriteRequest:
    device: Hashable
    request_id: int
    characteristic_id: str
    response_needed: bool
    payload: bytes
    prepared_write: bool = False
    offset: int = 0


@dataclass(frozen=True)
class ServicesDiscovered:
    status: Status
    services: Tuple[Any, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class CharacteristicRead:
    characteristic_id: str
    status: Status
    value: Optional[bytes] = None


@dataclass(frozen=True)
class CharacteristicChanged:
    characteristic_id: str
    value: Optional[bytes] = None


class EventPublisher:
    """
    Deliver application events on a single execution context.

    Each event is queued on `delivery` (any object with `queueWork(callable)`,
    the package-wide `publishingThread` by default) and, once there, published
    with `pub.sendMessage` and forwarded to the optional listener object.
    """

    def __init__(self, engine: Any, listener: Any = None, delivery: Any = None):
        self.engine = engine
        self.listener = listener
        self.delivery = delivery if delivery is not None else publishingThread
        self.error_handler = ErrorHandler()

    def post(self, topic: str, callback_name: str, **payload: Any) -> None:
        """
        Queue an event for delivery.

        Parameters:
            topic (str): PyPubSub topic name.
            callback_name (str): Listener method to invoke with `payload` as keyword arguments.
            **payload: Event data.
        """
        self.delivery.queueWork(lambda: self._deliver(topic, callback_name, payload))

    def _deliver(self, topic: str, callback_name: str, payload: dict) -> None:
        logger.debug("Publishing %s %s", topic, payload)
        self.error_handler.safe_execute(
            lambda: pub.sendMessage(topic, engine=self.engine, **payload),
            error_msg=f"Error publishing {topic}",
        )
        callback = getattr(self.listener, callback_name, None)
        if callback is not None:
            self.error_handler.safe_execute(
                lambda: callback(**payload),
                error_msg=f"Listener {callback_name} failed",
            )


__all__ = [
    "CharacteristicChanged",
    "CharacteristicRead",
    "ConnectionStateChanged",
    "EventPublisher",
    "ReadRequest",
    "ServicesDiscovered",
    "TOPIC_DEVICE_CONNECTED",
    "TOPIC_DEVICE_DISCONNECTED",
    "TOPIC_TIME_OFFSET_CHANGED",
    "TOPIC_TIME_OFFSET_UPDATED",
    "TOPIC_TIME_VALUE_CHANGED",
    "WriteRequest",
]
