"""GATT server side of the Timer protocol."""

from enum import Enum
from threading import RLock
from typing import Any, Callable, Dict, Hashable, Optional

from gatttime.clock import ClockSource, UptimeClock, elapsed_value
from gatttime.codec import ValueCodec
from gatttime.config import TimerConfig, logger
from gatttime.errors import CodecError, EngineClosedError, ErrorHandler
from gatttime.events import (
    TOPIC_DEVICE_CONNECTED,
    TOPIC_DEVICE_DISCONNECTED,
    TOPIC_TIME_OFFSET_UPDATED,
    ConnectionStateChanged,
    EventPublisher,
    ReadRequest,
    WriteRequest,
)
from gatttime.gatt import (
    ELAPSED_UUID,
    OFFSET_UUID,
    TIMER_PROFILE,
    ConnectionStatus,
    Profile,
    Status,
    describe_state,
    describe_status,
    normalize_uuid,
)
from gatttime.offset import OffsetStore
from gatttime.registry import ConnectionRegistry
from gatttime.scheduler import NotificationScheduler
from gatttime.transport import ServerTransport


class ServerState(Enum):
    """Lifecycle of a server engine."""

    IDLE = "idle"
    RUNNING = "running"
    CLOSED = "closed"


class ServerProtocolEngine:
    """
    Peripheral-side state machine for the Timer service.

    Transport callbacks may arrive on any thread, concurrently with each other;
    every handler here is safe under that model. The engine owns the
    connection registry, the offset store and the notification scheduler.

    Read requests get exactly one response each: SUCCESS with the matching
    characteristic's value, or FAILURE when nothing matches.

    Application events are delivered through `EventPublisher` on a single
    execution context (see `gatttime.publishingThread`):

        - `on_device_connected(device)` / ``gatttime.server.deviceConnected``
        - `on_device_disconnected(device)` / ``gatttime.server.deviceDisconnected``
        - `on_time_offset_updated()` / ``gatttime.server.timeOffsetUpdated``
    """

    def __init__(
        self,
        transport: ServerTransport,
        listener: Any = None,
        *,
        clock: Optional[ClockSource] = None,
        delivery: Any = None,
        notify_interval: float = TimerConfig.NOTIFY_INTERVAL,
        profile: Profile = TIMER_PROFILE,
    ) -> None:
        self.transport = transport
        self.profile = profile
        self.clock: ClockSource = clock or UptimeClock()
        self.error_handler = ErrorHandler()

        self._lifecycle_lock = RLock()
        self._state = ServerState.IDLE
        self._handle: Any = None

        self._offset = OffsetStore()
        self._registry = ConnectionRegistry()
        self._scheduler = NotificationScheduler(
            self.notify_connected_devices,
            notify_interval,
            name="TimerNotify",
            error_handler=self.error_handler,
        )
        self._publisher = EventPublisher(self, listener, delivery)

        # First match wins; anything else is answered with FAILURE.
        self._read_handlers: Dict[str, Callable[[], bytes]] = {
            ELAPSED_UUID: self._elapsed_payload,
            OFFSET_UUID: self._offset_payload,
        }
        self._dispatch_table: Dict[type, Callable[[Any], None]] = {
            ConnectionStateChanged: lambda e: self.handle_connection_state_change(
                e.device, e.status, e.new_state
            ),
            ReadRequest: lambda e: self.handle_read_request(
                e.device, e.request_id, e.characteristic_id, e.offset
            ),
            WriteRequest: lambda e: self.handle_write_request(
                e.device,
                e.request_id,
                e.characteristic_id,
                e.response_needed,
                e.payload,
                prepared_write=e.prepared_write,
                offset=e.offset,
            ),
        }

    def __repr__(self):
        return (
            f"ServerProtocolEngine(state={self.state.value}, "
            f"devices={len(self._registry)}, offset={self._offset.get()})"
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> ServerState:
        with self._lifecycle_lock:
            return self._state

    @property
    def is_closed(self) -> bool:
        return self.state == ServerState.CLOSED

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def scheduler(self) -> NotificationScheduler:
        return self._scheduler

    def open(self) -> Any:
        """
        Publish the Timer profile through the transport.

        Returns:
            The transport's server handle. Calling `open()` again while running returns the same handle.

        Raises:
            EngineClosedError: If the engine was already shut down.
        """
        with self._lifecycle_lock:
            if self._state == ServerState.CLOSED:
                raise EngineClosedError("Cannot open a server engine after shutdown")
            if self._state == ServerState.RUNNING:
                return self._handle
            self._handle = self.transport.open_server(self.profile, self)
            self._state = ServerState.RUNNING
            logger.info("Timer GATT server open")
            return self._handle

    def shutdown(self) -> None:
        """
        Stop notifications, forget connected devices and close the transport server.

        Idempotent; handlers invoked afterwards are ignored.
        """
        with self._lifecycle_lock:
            if self._state == ServerState.CLOSED:
                return
            self._state = ServerState.CLOSED
            handle, self._handle = self._handle, None

        with self._registry.lock:
            self._scheduler.cancel()
            self._registry.clear()
        self._scheduler.join()

        if handle is not None:
            self.error_handler.safe_cleanup(
                lambda: self.transport.close_server(handle), "GATT server close"
            )
        logger.info("Timer GATT server shut down")

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, _type, _value, _traceback):
        self.shutdown()

    def _ignored_after_shutdown(self, what: str) -> bool:
        if self.is_closed:
            logger.debug("Ignoring %s after shutdown", what)
            return True
        return False

    # ------------------------------------------------------------------
    # Offset / elapsed values
    # ------------------------------------------------------------------

    @property
    def time_offset(self) -> int:
        return self._offset.get()

    def elapsed_value(self) -> int:
        """Current elapsed value: base clock plus offset, wrapped to 32 bits."""
        return elapsed_value(self.clock, self._offset.get())

    def set_time_offset(self, value: int) -> None:
        """
        Change the offset locally, as if a client had written it.

        Publishes TimeOffsetUpdated and pushes the new elapsed value to every
        connected device.
        """
        if self._ignored_after_shutdown("local offset change"):
            return
        new_offset = ValueCodec.wrap(value)
        self._offset.set(new_offset)
        self._announce_offset_change(new_offset, "local")

    def _announce_offset_change(self, value: int, source: Any) -> None:
        logger.info("Time offset set to %d by %s", value, source)
        self._publisher.post(TOPIC_TIME_OFFSET_UPDATED, "on_time_offset_updated")
        self.notify_connected_devices()

    def _elapsed_payload(self) -> bytes:
        return ValueCodec.encode(self.elapsed_value())

    def _offset_payload(self) -> bytes:
        return ValueCodec.encode(self._offset.get())

    # ------------------------------------------------------------------
    # Transport-facing handlers
    # ------------------------------------------------------------------

    def dispatch(self, event: Any) -> None:
        """Route a transport event to its handler."""
        handler = self._dispatch_table.get(type(event))
        if handler is None:
            logger.warning("Server engine cannot handle event %r", event)
            return
        handler(event)

    def handle_connection_state_change(
        self, device: Hashable, status: Any, new_state: ConnectionStatus
    ) -> None:
        if self._ignored_after_shutdown("connection state change"):
            return
        logger.info(
            "Connection state change for %s: %s %s",
            device,
            describe_status(status),
            describe_state(new_state),
        )
        if new_state == ConnectionStatus.CONNECTED:
            self._device_connected(device)
        elif new_state == ConnectionStatus.DISCONNECTED:
            self._device_disconnected(device)

    def _device_connected(self, device: Hashable) -> None:
        with self._registry.lock:
            if self.is_closed or not self._registry.add(device):
                return
            if len(self._registry) == 1:
                self._scheduler.start()
        self._publisher.post(TOPIC_DEVICE_CONNECTED, "on_device_connected", device=device)

    def _device_disconnected(self, device: Hashable) -> None:
        with self._registry.lock:
            if not self._registry.remove(device):
                return
            if self._registry.is_empty:
                self._scheduler.cancel()
        self._publisher.post(
            TOPIC_DEVICE_DISCONNECTED, "on_device_disconnected", device=device
        )

    def handle_read_request(
        self,
        device: Hashable,
        request_id: int,
        characteristic_id: Any,
        offset: int = 0,
    ) -> None:
        """
        Answer a characteristic read with exactly one response.

        Parameters:
            device: Requesting device.
            request_id (int): Transport request token echoed in the response.
            characteristic_id: UUID of the characteristic being read.
            offset (int): Byte offset for long reads; an offset past the end of the value is answered with FAILURE.
        """
        if self._ignored_after_shutdown("read request"):
            return
        uuid = normalize_uuid(characteristic_id)
        logger.debug("Read request %s from %s for %s", request_id, device, uuid)

        status, payload = Status.FAILURE, None
        characteristic = self.profile.get_characteristic(uuid)
        read_value = self._read_handlers.get(uuid)
        if characteristic is not None and characteristic.readable and read_value is not None:
            value = read_value()
            if 0 <= offset <= len(value):
                status, payload = Status.SUCCESS, value[offset:]
            else:
                logger.debug("Read offset %d out of range for %s", offset, uuid)
        else:
            logger.debug("Read request for unknown or unreadable characteristic %s", uuid)

        self.error_handler.safe_execute(
            lambda: self.transport.send_read_response(
                device, request_id, status, payload
            ),
            error_msg=f"Read response {request_id} to {device} failed",
        )

    def handle_write_request(
        self,
        device: Hashable,
        request_id: int,
        characteristic_id: Any,
        response_needed: bool,
        payload: Optional[bytes],
        *,
        prepared_write: bool = False,
        offset: int = 0,
    ) -> None:
        """
        Apply a characteristic write.

        Only the offset characteristic is writable. A decodable value is stored,
        acknowledged (echoing `payload`) when `response_needed`, announced as
        TimeOffsetUpdated and pushed to every connected device. Writes to other
        characteristics are ignored without a response.
        """
        if self._ignored_after_shutdown("write request"):
            return
        uuid = normalize_uuid(characteristic_id)
        logger.debug(
            "Write request %s from %s for %s (prepared=%s, offset=%d)",
            request_id,
            device,
            uuid,
            prepared_write,
            offset,
        )
        characteristic = self.profile.get_characteristic(uuid)
        if uuid != OFFSET_UUID or characteristic is None or not characteristic.writable:
            logger.debug("Ignoring write to non-writable characteristic %s", uuid)
            return

        try:
            new_offset = ValueCodec.decode(payload)
        except CodecError as e:
            logger.warning("Rejecting offset write from %s: %s", device, e)
            if response_needed:
                self._send_write_response(device, request_id, Status.FAILURE, None)
            return

        self._offset.set(new_offset)
        if response_needed:
            self._send_write_response(device, request_id, Status.SUCCESS, payload)
        self._announce_offset_change(new_offset, device)

    def _send_write_response(
        self, device: Hashable, request_id: int, status: Status, payload
    ) -> None:
        self.error_handler.safe_execute(
            lambda: self.transport.send_write_response(
                device, request_id, status, payload
            ),
            error_msg=f"Write response {request_id} to {device} failed",
        )

    # ------------------------------------------------------------------
    # Notification fan-out
    # ------------------------------------------------------------------

    def notify_connected_devices(self) -> int:
        """
        Push the current elapsed value to every connected device.

        The value is computed once and shared by the whole fan-out; devices are
        taken from a registry snapshot, so concurrent disconnects are safe. A
        failed send is logged and the remaining devices are still notified.

        Returns:
            int: Number of devices the notification was handed to.
        """
        if self.is_closed:
            return 0
        devices = self._registry.snapshot()
        if not devices:
            return 0
        payload = self._elapsed_payload()
        delivered = 0
        for device in devices:
            if self.error_handler.safe_execute(
                lambda device=device: self._notify(device, payload),
                default_return=False,
                error_msg=f"Notification to {device} failed",
            ):
                delivered += 1
        return delivered

    def _notify(self, device: Hashable, payload: bytes) -> bool:
        self.transport.notify_characteristic_changed(device, ELAPSED_UUID, payload)
        return True


__all__ = ["ServerProtocolEngine", "ServerState"]
