"""BLE central transport built on bleak."""

import asyncio
from threading import RLock
from typing import TYPE_CHECKING, Any, Callable, Optional

from bleak import BleakClient as BleakRootClient
from bleak import BleakScanner
from bleak.exc import BleakError

from gatttime.config import TimerConfig
from gatttime.errors import ErrorHandler
from gatttime.events import (
    CharacteristicChanged,
    CharacteristicRead,
    ConnectionStateChanged,
    ServicesDiscovered,
)
from gatttime.gatt import SERVICE_UUID, ConnectionStatus, Status, normalize_uuid
from gatttime.interfaces.ble.constants import (
    BLE_SCAN_TIMEOUT,
    BLEAK_VERSION,
    ERROR_NO_SERVER_FOUND,
    logger,
)
from gatttime.interfaces.ble.exceptions import BLEError
from gatttime.interfaces.ble.loop import EventLoopThread
from gatttime.transport import ClientTransport

if TYPE_CHECKING:
    from gatttime.client import ClientProtocolEngine

# Failures a bleak call can surface once it has been marshalled to our loop.
GATT_ERRORS = (BleakError, BLEError, OSError, asyncio.TimeoutError)


class BLEClient:
    """
    Client wrapper for managing BLE device connections with thread-safe async operations.

    This class provides a synchronous interface to Bleak's async operations by running
    an internal event loop in a dedicated thread.
    """

    BLEError = BLEError

    def __init__(self, address=None, *, log_if_no_address: bool = True, **kwargs) -> None:
        """
        Create the event loop thread and, when `address` is given, the Bleak client.

        Parameters:
            address (Optional[str]): BLE device address. If None, the instance can only scan.
            log_if_no_address (bool): Emit a debug message when running scan-only.
            **kwargs: Forwarded to the Bleak client constructor (for example `disconnected_callback`).
        """
        self.error_handler = ErrorHandler()
        self._loop = EventLoopThread(name="BLEClient")

        self.bleak_client: Optional[BleakRootClient] = None
        if not address:
            if log_if_no_address:
                logger.debug("No address provided - only discover method will work.")
            return

        logger.debug("Creating bleak %s client for %s", BLEAK_VERSION, address)
        self.bleak_client = BleakRootClient(address, **kwargs)

    def _require_client(self, action: str) -> BleakRootClient:
        if self.bleak_client is None:
            raise self.BLEError(f"Cannot {action}: BLE client not initialized")
        return self.bleak_client

    def discover(self, **kwargs):
        """
        Discover nearby BLE devices.

        Keyword arguments are forwarded to BleakScanner.discover (for example, `timeout` or `service_uuids`).

        Returns:
            A list of discovered Bleak `BLEDevice` objects.
        """
        return self.async_await(BleakScanner.discover(**kwargs))

    def connect(self, *, await_timeout: Optional[float] = None, **kwargs):
        """
        Establish a connection to the remote BLE device.

        Parameters:
            await_timeout (float | None): Maximum seconds to wait for the connect operation to complete; `None` to wait indefinitely.
            **kwargs: Forwarded to the underlying Bleak client's `connect` call.
        """
        client = self._require_client("connect")
        return self.async_await(client.connect(**kwargs), timeout=await_timeout)

    def is_connected(self) -> bool:
        bleak_client = self.bleak_client
        if bleak_client is None:
            return False
        return self.error_handler.safe_execute(
            lambda: bool(bleak_client.is_connected),
            default_return=False,
            error_msg="Unable to read bleak connection state",
        )

    def disconnect(self, *, await_timeout: Optional[float] = None, **kwargs):
        client = self._require_client("disconnect")
        self.async_await(client.disconnect(**kwargs), timeout=await_timeout)

    def read_gatt_char(self, *args, timeout: Optional[float] = None, **kwargs):
        """
        Read a GATT characteristic from the connected BLE device.

        Returns:
            bytearray: Raw bytes read from the characteristic.
        """
        client = self._require_client("read")
        return self.async_await(client.read_gatt_char(*args, **kwargs), timeout=timeout)

    def write_gatt_char(self, *args, timeout: Optional[float] = None, **kwargs):
        client = self._require_client("write")
        self.async_await(client.write_gatt_char(*args, **kwargs), timeout=timeout)

    def start_notify(self, *args, timeout: Optional[float] = None, **kwargs):
        """
        Subscribe to notifications for a characteristic.

        The callback passed through `args` runs on the client's event loop thread.
        """
        client = self._require_client("start notify")
        self.async_await(client.start_notify(*args, **kwargs), timeout=timeout)

    @property
    def services(self):
        """The GATT services resolved while connecting."""
        return self._require_client("get services").services

    def close(self):
        """Shut down the client's event loop and its background thread."""
        self._loop.stop()

    def __enter__(self):
        return self

    def __exit__(self, _type, _value, _traceback):
        self.close()

    def async_await(self, coro, timeout=None):
        """
        Wait for `coro` to complete on the client's event loop and return its result.

        Raises:
            BLEClient.BLEError: If the wait times out. Bleak exceptions propagate unchanged.
        """
        return self._loop.run_and_wait(coro, timeout)


class BleakClientTransport(ClientTransport):
    """
    `ClientTransport` for one remote Timer server, driven through `BLEClient`.

    Operations block the calling thread until bleak finishes and then report
    their outcome to the engine as events. Notifications and unexpected
    disconnects arrive on the client's event loop thread.
    """

    def __init__(
        self,
        address: str,
        *,
        connection_timeout: float = TimerConfig.CONNECTION_TIMEOUT,
        io_timeout: float = TimerConfig.GATT_IO_TIMEOUT,
        notification_timeout: float = TimerConfig.NOTIFICATION_START_TIMEOUT,
        client_factory: Callable[..., BLEClient] = BLEClient,
    ) -> None:
        self.address = address
        self.connection_timeout = connection_timeout
        self.io_timeout = io_timeout
        self.notification_timeout = notification_timeout
        self.error_handler = ErrorHandler()
        self._client_factory = client_factory
        self._client: Optional[BLEClient] = None
        self._engine: Optional["ClientProtocolEngine"] = None
        self._lock = RLock()

    def __repr__(self):
        return f"BleakClientTransport(address={self.address!r})"

    @staticmethod
    def find_server(timeout: float = BLE_SCAN_TIMEOUT) -> str:
        """
        Scan for a peripheral advertising the Timer service.

        Returns:
            str: Address of the first matching device.

        Raises:
            BLEError: If nothing advertising the service was seen within `timeout`.
        """
        with BLEClient(log_if_no_address=False) as scanner:
            devices = scanner.discover(timeout=timeout, service_uuids=[SERVICE_UUID])
        if not devices:
            raise BLEError(ERROR_NO_SERVER_FOUND.format(SERVICE_UUID))
        device = devices[0]
        logger.info("Found Timer server %s (%s)", device.address, device.name)
        return device.address

    @property
    def client(self) -> Optional[BLEClient]:
        with self._lock:
            return self._client

    def _require_client(self) -> BLEClient:
        client = self.client
        if client is None:
            raise BLEError("Not connected")
        return client

    def _dispatch(self, event: Any) -> None:
        engine = self._engine
        if engine is None:
            logger.debug("No engine attached; dropping %r", event)
            return
        engine.dispatch(event)

    # ------------------------------------------------------------------
    # ClientTransport
    # ------------------------------------------------------------------

    def connect(self, engine: "ClientProtocolEngine") -> None:
        with self._lock:
            self._engine = engine
            if self._client is None:
                self._client = self._client_factory(
                    self.address, disconnected_callback=self._on_disconnected
                )
            client = self._client

        logger.debug("Connecting to %s", self.address)
        try:
            client.connect(await_timeout=self.connection_timeout)
        except GATT_ERRORS as e:
            logger.warning("Connection to %s failed: %s", self.address, e)
            self._dispatch(
                ConnectionStateChanged(
                    self.address, Status.FAILURE, ConnectionStatus.DISCONNECTED
                )
            )
            return
        self._dispatch(
            ConnectionStateChanged(self.address, Status.SUCCESS, ConnectionStatus.CONNECTED)
        )

    def disconnect(self) -> None:
        client = self.client
        if client is None:
            return
        try:
            client.disconnect(await_timeout=self.io_timeout)
        except GATT_ERRORS as e:
            raise BLEError(f"Disconnect from {self.address} failed: {e}") from e

    def discover_services(self) -> None:
        # bleak resolves services while connecting; this only reports them.
        try:
            services = tuple(
                normalize_uuid(service) for service in self._require_client().services
            )
        except GATT_ERRORS as e:
            logger.warning("Service discovery on %s failed: %s", self.address, e)
            self._dispatch(ServicesDiscovered(Status.FAILURE))
            return
        self._dispatch(ServicesDiscovered(Status.SUCCESS, services))

    def read_characteristic(self, characteristic_id: str) -> None:
        try:
            value = self._require_client().read_gatt_char(
                characteristic_id, timeout=self.io_timeout
            )
        except GATT_ERRORS as e:
            logger.warning("Read of %s failed: %s", characteristic_id, e)
            self._dispatch(CharacteristicRead(characteristic_id, Status.FAILURE))
            return
        self._dispatch(CharacteristicRead(characteristic_id, Status.SUCCESS, bytes(value)))

    def write_characteristic(
        self, characteristic_id: str, payload: bytes, response: bool = True
    ) -> None:
        try:
            self._require_client().write_gatt_char(
                characteristic_id, payload, response=response, timeout=self.io_timeout
            )
        except GATT_ERRORS as e:
            raise BLEError(f"Write to {characteristic_id} failed: {e}") from e

    def enable_notifications(self, characteristic_id: str) -> None:
        try:
            self._require_client().start_notify(
                characteristic_id,
                self._on_notification,
                timeout=self.notification_timeout,
            )
        except GATT_ERRORS as e:
            raise BLEError(
                f"Enabling notifications for {characteristic_id} failed: {e}"
            ) from e

    def close(self) -> None:
        with self._lock:
            client, self._client = self._client, None
            self._engine = None
        if client is None:
            return
        if client.is_connected():
            self.error_handler.safe_cleanup(
                lambda: client.disconnect(await_timeout=self.io_timeout),
                "BLE disconnect",
            )
        self.error_handler.safe_cleanup(client.close, "BLE client close")

    # ------------------------------------------------------------------
    # bleak callbacks (event loop thread)
    # ------------------------------------------------------------------

    def _on_disconnected(self, _bleak_client: Any) -> None:
        logger.debug("Disconnected from %s", self.address)
        self._dispatch(
            ConnectionStateChanged(
                self.address, Status.SUCCESS, ConnectionStatus.DISCONNECTED
            )
        )

    def _on_notification(self, sender: Any, data: Any) -> None:
        self._dispatch(CharacteristicChanged(normalize_uuid(sender), bytes(data)))


__all__ = ["BLEClient", "BleakClientTransport", "GATT_ERRORS"]
