"""GATT client side of the Timer protocol."""

from threading import RLock
from typing import Any, Callable, Dict, Iterable, Optional, Set

from gatttime.codec import ValueCodec
from gatttime.config import TimerConfig, logger
from gatttime.errors import CodecError, ErrorHandler
from gatttime.events import (
    TOPIC_TIME_OFFSET_CHANGED,
    TOPIC_TIME_VALUE_CHANGED,
    CharacteristicChanged,
    CharacteristicRead,
    ConnectionStateChanged,
    EventPublisher,
    ServicesDiscovered,
)
from gatttime.gatt import (
    ELAPSED_UUID,
    OFFSET_UUID,
    SERVICE_UUID,
    ConnectionStatus,
    Status,
    describe_state,
    describe_status,
    normalize_uuid,
)
from gatttime.state import ClientState, ClientStateManager
from gatttime.transport import ClientTransport


class ClientProtocolEngine:
    """
    Central-side state machine for the Timer service.

    DISCONNECTED → CONNECTING → CONNECTED → SERVICE_DISCOVERY → SUBSCRIBED.
    After the link comes up the engine discovers services, reads the elapsed
    characteristic and subscribes to its notifications. Values are delivered
    to the application on a single execution context:

        - `on_time_value_changed(value)` / ``gatttime.client.timeValueChanged``
        - `on_time_offset_changed(offset)` / ``gatttime.client.timeOffsetChanged``
          (milliseconds; the wire carries seconds)

    Transport failures are logged and leave the engine DISCONNECTED; retrying
    is left to the application.
    """

    def __init__(
        self,
        transport: ClientTransport,
        listener: Any = None,
        *,
        delivery: Any = None,
    ) -> None:
        self.transport = transport
        self.error_handler = ErrorHandler()
        self._state_manager = ClientStateManager()
        self._state_lock = self._state_manager.lock
        self._subscriptions: Set[str] = set()
        self._subscription_lock = RLock()
        self._publisher = EventPublisher(self, listener, delivery)

        self._read_handlers: Dict[str, Callable[[int], None]] = {
            ELAPSED_UUID: self._on_elapsed_read,
            OFFSET_UUID: self._on_offset_read,
        }
        self._dispatch_table: Dict[type, Callable[[Any], None]] = {
            ConnectionStateChanged: lambda e: self.handle_connection_state_change(
                e.status, e.new_state
            ),
            ServicesDiscovered: lambda e: self.handle_services_discovered(
                e.status, e.services
            ),
            CharacteristicRead: lambda e: self.handle_characteristic_read(
                e.characteristic_id, e.status, e.value
            ),
            CharacteristicChanged: lambda e: self.handle_characteristic_changed(
                e.characteristic_id, e.value
            ),
        }

    def __repr__(self):
        return f"ClientProtocolEngine(state={self.state.value})"

    @property
    def state(self) -> ClientState:
        return self._state_manager.state

    @property
    def is_subscribed(self) -> bool:
        with self._subscription_lock:
            return ELAPSED_UUID in self._subscriptions

    def _ignored_when_closed(self, what: str) -> bool:
        if self._state_manager.is_closed:
            logger.debug("Ignoring %s on closed client", what)
            return True
        return False

    def _ignored_when_link_down(self, what: str, uuid: str) -> bool:
        # results can race the disconnect callback on the transport thread
        if not self._state_manager.is_connected:
            logger.debug("Ignoring %s %s while %s", what, uuid, self.state.value)
            return True
        return False

    # ------------------------------------------------------------------
    # Application-facing operations
    # ------------------------------------------------------------------

    def connect(self) -> bool:
        """
        Ask the transport to connect.

        Returns:
            bool: `True` if a connection attempt was started, `False` if the engine is closed or already connected/connecting.
        """
        if self._ignored_when_closed("connect"):
            return False
        if not self._state_manager.transition_from(
            ClientState.DISCONNECTED, ClientState.CONNECTING
        ):
            logger.debug("Connect ignored in state %s", self.state.value)
            return False
        logger.info("Timer client connecting")
        if not self._transport_call(
            lambda: self.transport.connect(self), "Timer client connect failed"
        ):
            self._to_disconnected()
            return False
        return True

    def disconnect(self) -> None:
        if self._ignored_when_closed("disconnect"):
            return
        self.error_handler.safe_execute(
            self.transport.disconnect, error_msg="Timer client disconnect failed"
        )

    def read_elapsed(self) -> bool:
        return self._read(ELAPSED_UUID)

    def read_offset(self) -> bool:
        """Request the server's offset; the result arrives as TimeOffsetChanged."""
        return self._read(OFFSET_UUID)

    def write_offset(self, seconds: int) -> bool:
        """
        Write a new offset (in seconds) to the server.

        Returns:
            bool: `True` if the write was handed to the transport.
        """
        if self._ignored_when_closed("offset write"):
            return False
        if not self._state_manager.is_connected:
            logger.warning("Cannot write offset while %s", self.state.value)
            return False
        payload = ValueCodec.encode(seconds)
        return self._transport_call(
            lambda: self.transport.write_characteristic(OFFSET_UUID, payload, True),
            "Offset write failed",
        )

    def close(self) -> None:
        """Move to CLOSED and release the transport. Idempotent."""
        with self._state_lock:
            if self._state_manager.is_closed:
                return
            self._state_manager.transition_to(ClientState.CLOSED)
        with self._subscription_lock:
            self._subscriptions.clear()
        self.error_handler.safe_cleanup(self.transport.close, "client transport close")
        logger.info("Timer client closed")

    def __enter__(self):
        return self

    def __exit__(self, _type, _value, _traceback):
        self.close()

    def _read(self, uuid: str) -> bool:
        if self._ignored_when_closed("read"):
            return False
        if not self._state_manager.is_connected:
            logger.warning("Cannot read %s while %s", uuid, self.state.value)
            return False
        return self._transport_call(
            lambda: self.transport.read_characteristic(uuid), f"Read of {uuid} failed"
        )

    def _transport_call(self, func: Callable[[], object], error_msg: str) -> bool:
        """Run a transport operation, absorbing failures; `True` if it did not raise."""

        def _run() -> bool:
            func()
            return True

        return self.error_handler.safe_execute(
            _run, default_return=False, error_msg=error_msg
        )

    # ------------------------------------------------------------------
    # Transport-facing handlers
    # ------------------------------------------------------------------

    def dispatch(self, event: Any) -> None:
        """Route a transport event to its handler."""
        handler = self._dispatch_table.get(type(event))
        if handler is None:
            logger.warning("Client engine cannot handle event %r", event)
            return
        handler(event)

    def handle_connection_state_change(
        self, status: Any, new_state: ConnectionStatus
    ) -> None:
        if self._ignored_when_closed("connection state change"):
            return
        logger.debug(
            "Client connection state change: %s %s",
            describe_status(status),
            describe_state(new_state),
        )
        if Status.from_code(status) is not Status.SUCCESS:
            logger.warning(
                "Timer client connection failed: %s", describe_status(status)
            )
            self._to_disconnected()
            return
        if new_state == ConnectionStatus.CONNECTED:
            with self._state_lock:
                if not self._state_manager.transition_to(ClientState.CONNECTED):
                    return
                with self._subscription_lock:
                    self._subscriptions.clear()
                self._state_manager.transition_to(ClientState.SERVICE_DISCOVERY)
            logger.info("Timer client connected; discovering services")
            if not self._transport_call(
                self.transport.discover_services, "Service discovery request failed"
            ):
                self._abandon_connection()
        elif new_state == ConnectionStatus.DISCONNECTED:
            logger.info("Timer client disconnected")
            self._to_disconnected()

    def _to_disconnected(self) -> None:
        with self._state_lock:
            if self.state != ClientState.DISCONNECTED:
                self._state_manager.transition_to(ClientState.DISCONNECTED)
        with self._subscription_lock:
            self._subscriptions.clear()

    def handle_services_discovered(self, status: Any, services: Iterable[Any]) -> None:
        """
        Continue the handshake once discovery completes.

        Parameters:
            status: Discovery result code; anything but success abandons the connection.
            services: Discovered services (UUIDs or objects with a `uuid` attribute).
        """
        if self._ignored_when_closed("service discovery"):
            return
        if Status.from_code(status) is not Status.SUCCESS:
            logger.warning("Service discovery failed: %s", describe_status(status))
            self._abandon_connection()
            return
        uuids = [normalize_uuid(service) for service in services or ()]
        for uuid in uuids:
            logger.debug("Service: %s", uuid)
        if SERVICE_UUID not in uuids:
            logger.warning("Timer service %s not found on peer", SERVICE_UUID)
            self._abandon_connection()
            return
        self.read_elapsed()

    def _abandon_connection(self) -> None:
        self._to_disconnected()
        self.error_handler.safe_cleanup(self.transport.disconnect, "client disconnect")

    def handle_characteristic_read(
        self, characteristic_id: Any, status: Any, value: Optional[bytes]
    ) -> None:
        if self._ignored_when_closed("read response"):
            return
        uuid = normalize_uuid(characteristic_id)
        if self._ignored_when_link_down("read response for", uuid):
            return
        if Status.from_code(status) is not Status.SUCCESS:
            logger.warning("Read of %s failed: %s", uuid, describe_status(status))
            return
        handler = self._read_handlers.get(uuid)
        if handler is None:
            logger.debug("Ignoring read response for %s", uuid)
            return
        decoded = self._decode(uuid, value)
        if decoded is not None:
            handler(decoded)

    def handle_characteristic_changed(
        self, characteristic_id: Any, value: Optional[bytes]
    ) -> None:
        if self._ignored_when_closed("notification"):
            return
        uuid = normalize_uuid(characteristic_id)
        if self._ignored_when_link_down("notification for", uuid):
            return
        if uuid != ELAPSED_UUID:
            logger.debug("Ignoring notification for %s", uuid)
            return
        logger.debug("Notification of time characteristic changed on server")
        decoded = self._decode(uuid, value)
        if decoded is not None:
            self._publish_time_value(decoded)

    # ------------------------------------------------------------------
    # Value handling
    # ------------------------------------------------------------------

    def _decode(self, uuid: str, value: Optional[bytes]) -> Optional[int]:
        try:
            return ValueCodec.decode(value)
        except CodecError as e:
            logger.warning("Malformed value for %s: %s", uuid, e)
            return None

    def _publish_time_value(self, value: int) -> None:
        self._publisher.post(TOPIC_TIME_VALUE_CHANGED, "on_time_value_changed", value=value)

    def _on_elapsed_read(self, value: int) -> None:
        self._publish_time_value(value)
        self._enable_notifications_once(ELAPSED_UUID)

    def _on_offset_read(self, value: int) -> None:
        logger.debug("Current time offset: %d", value)
        self._publisher.post(
            TOPIC_TIME_OFFSET_CHANGED,
            "on_time_offset_changed",
            offset=value * TimerConfig.OFFSET_UNIT_MILLIS,
        )

    def _enable_notifications_once(self, uuid: str) -> None:
        with self._subscription_lock:
            if uuid in self._subscriptions:
                return
            self._subscriptions.add(uuid)
        enabled = self._transport_call(
            lambda: self.transport.enable_notifications(uuid),
            f"Enabling notifications for {uuid} failed",
        )
        if not enabled:
            with self._subscription_lock:
                self._subscriptions.discard(uuid)
            return
        self._state_manager.transition_from(
            ClientState.SERVICE_DISCOVERY, ClientState.SUBSCRIBED
        )
        logger.info("Subscribed to %s notifications", uuid)


__all__ = ["ClientProtocolEngine"]
