"""BLE peripheral transport built on bless."""

import asyncio
import itertools
from threading import Lock
from typing import TYPE_CHECKING, Any, Dict, Hashable, Optional, Tuple

from bleak.exc import BleakError
from bless import (
    BlessGATTCharacteristic,
    BlessServer,
    GATTAttributePermissions,
    GATTCharacteristicProperties,
)

from gatttime.config import TimerConfig
from gatttime.errors import ErrorHandler
from gatttime.events import ConnectionStateChanged, ReadRequest, WriteRequest
from gatttime.gatt import (
    Characteristic,
    ConnectionStatus,
    Permission,
    Profile,
    Property,
    Status,
    normalize_uuid,
)
from gatttime.interfaces.ble.constants import logger
from gatttime.interfaces.ble.exceptions import BLEError
from gatttime.interfaces.ble.loop import EventLoopThread
from gatttime.transport import ServerTransport

if TYPE_CHECKING:
    from gatttime.server import ServerProtocolEngine

# bless does not tell peers apart, so every central is reported as this one device.
CENTRAL_DEVICE = "central"

_PROPERTY_MAP = (
    (Property.READ, GATTCharacteristicProperties.read),
    (Property.WRITE, GATTCharacteristicProperties.write),
    (Property.NOTIFY, GATTCharacteristicProperties.notify),
)
_PERMISSION_MAP = (
    (Permission.READ, GATTAttributePermissions.readable),
    (Permission.WRITE, GATTAttributePermissions.writeable),
)


def bless_properties(characteristic: Characteristic) -> GATTCharacteristicProperties:
    """Translate our property flags into bless's."""
    result = GATTCharacteristicProperties(0)
    for ours, theirs in _PROPERTY_MAP:
        if characteristic.properties & ours:
            result |= theirs
    return result


def bless_permissions(characteristic: Characteristic) -> GATTAttributePermissions:
    """Translate our permission flags into bless's."""
    result = GATTAttributePermissions(0)
    for ours, theirs in _PERMISSION_MAP:
        if characteristic.permissions & ours:
            result |= theirs
    return result


class BlessServerTransport(ServerTransport):
    """
    `ServerTransport` that advertises the profile with bless.

    bless answers reads from the value its read callback returns, so each read
    is routed through the engine synchronously and the engine's single response
    is collected from a per-request slot. A FAILURE response becomes an empty
    value since bless has no way to carry a GATT error back to the peer.

    Connection presence is polled with `BlessServer.is_connected()`.
    """

    def __init__(
        self,
        name: str = "Timer",
        *,
        poll_interval: float = TimerConfig.CONNECTION_POLL_INTERVAL,
        start_timeout: float = TimerConfig.SERVER_START_TIMEOUT,
    ) -> None:
        self.name = name
        self.poll_interval = poll_interval
        self.start_timeout = start_timeout
        self.error_handler = ErrorHandler()

        self._loop: Optional[EventLoopThread] = None
        self._server: Optional[BlessServer] = None
        self._engine: Optional["ServerProtocolEngine"] = None
        self._profile: Optional[Profile] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._central_connected = False

        self._request_ids = itertools.count(1)
        self._responses: Dict[int, Tuple[Status, Optional[bytes]]] = {}
        self._responses_lock = Lock()

    def __repr__(self):
        return f"BlessServerTransport(name={self.name!r})"

    # ------------------------------------------------------------------
    # ServerTransport
    # ------------------------------------------------------------------

    def open_server(self, profile: Profile, engine: "ServerProtocolEngine") -> Any:
        if self._server is not None:
            raise BLEError("GATT server already open")
        self._engine = engine
        self._profile = profile
        self._loop = EventLoopThread(name="BlessServer")
        try:
            self._loop.run_and_wait(self._start(profile), timeout=self.start_timeout)
        except Exception:
            self._loop.stop()
            self._loop = None
            raise
        logger.info("Advertising %s as %r", [s.uuid for s in profile.services], self.name)
        return self._server

    def close_server(self, handle: Any) -> None:
        loop = self._loop
        if loop is None:
            return
        try:
            loop.run_and_wait(self._stop(), timeout=self.start_timeout)
        finally:
            loop.stop()
            self._loop = None
            self._server = None
            self._engine = None

    def send_read_response(
        self,
        device: Hashable,
        request_id: int,
        status: Status,
        payload: Optional[bytes],
    ) -> None:
        self._store_response(request_id, status, payload)

    def send_write_response(
        self,
        device: Hashable,
        request_id: int,
        status: Status,
        payload: Optional[bytes],
    ) -> None:
        self._store_response(request_id, status, payload)

    def notify_characteristic_changed(
        self, device: Hashable, characteristic_id: str, payload: bytes
    ) -> None:
        loop = self._loop
        if loop is None or self._server is None:
            raise BLEError("GATT server is not running")
        service_uuid = self._service_for(characteristic_id)
        loop.call_soon(self._push_value, service_uuid, characteristic_id, payload)

    # ------------------------------------------------------------------
    # Loop-side helpers
    # ------------------------------------------------------------------

    async def _start(self, profile: Profile) -> None:
        server = BlessServer(name=self.name, loop=asyncio.get_running_loop())
        server.read_request_func = self._on_read
        server.write_request_func = self._on_write
        for service in profile.services:
            if not service.primary:
                raise BLEError(f"bless only publishes primary services, not {service.uuid}")
            await server.add_new_service(service.uuid)
            for characteristic in service.characteristics:
                await server.add_new_characteristic(
                    service.uuid,
                    characteristic.uuid,
                    bless_properties(characteristic),
                    None,
                    bless_permissions(characteristic),
                )
        await server.start()
        self._server = server
        self._watch_task = asyncio.get_running_loop().create_task(
            self._watch_connection()
        )

    async def _stop(self) -> None:
        if self._watch_task is not None:
            self._watch_task.cancel()
            self._watch_task = None
        if self._central_connected:
            self._central_connected = False
            self._dispatch(
                ConnectionStateChanged(
                    CENTRAL_DEVICE, Status.SUCCESS, ConnectionStatus.DISCONNECTED
                )
            )
        if self._server is not None:
            await self._server.stop()

    async def _watch_connection(self) -> None:
        while True:
            try:
                connected = bool(await self._server.is_connected())
            except (BleakError, OSError) as e:
                logger.debug("Unable to read bless connection state: %s", e)
            else:
                if connected != self._central_connected:
                    self._central_connected = connected
                    new_state = (
                        ConnectionStatus.CONNECTED
                        if connected
                        else ConnectionStatus.DISCONNECTED
                    )
                    self._dispatch(
                        ConnectionStateChanged(CENTRAL_DEVICE, Status.SUCCESS, new_state)
                    )
            await asyncio.sleep(self.poll_interval)

    def _push_value(self, service_uuid: str, characteristic_id: str, payload: bytes) -> None:
        server = self._server
        if server is None:
            return
        characteristic = server.get_characteristic(characteristic_id)
        if characteristic is None:
            logger.warning("Cannot notify unknown characteristic %s", characteristic_id)
            return
        characteristic.value = bytearray(payload)
        server.update_value(service_uuid, characteristic_id)

    # ------------------------------------------------------------------
    # bless callbacks (event loop thread)
    # ------------------------------------------------------------------

    def _on_read(self, characteristic: BlessGATTCharacteristic, **kwargs) -> bytearray:
        request_id = next(self._request_ids)
        self._dispatch(
            ReadRequest(
                CENTRAL_DEVICE,
                request_id,
                normalize_uuid(characteristic),
                kwargs.get("offset", 0),
            )
        )
        status, payload = self._take_response(request_id)
        if status is not Status.SUCCESS or payload is None:
            logger.warning("Read of %s failed; answering with an empty value", characteristic.uuid)
            return bytearray()
        return bytearray(payload)

    def _on_write(self, characteristic: BlessGATTCharacteristic, value: Any, **kwargs) -> None:
        request_id = next(self._request_ids)
        payload = bytes(value) if value is not None else None
        self._dispatch(
            WriteRequest(
                CENTRAL_DEVICE,
                request_id,
                normalize_uuid(characteristic),
                True,
                payload,
                offset=kwargs.get("offset", 0),
            )
        )
        status, _ = self._take_response(request_id)
        if status is not Status.SUCCESS:
            logger.warning("Write to %s was rejected", characteristic.uuid)
            return
        characteristic.value = bytearray(payload)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _dispatch(self, event: Any) -> None:
        engine = self._engine
        if engine is None:
            logger.debug("No engine attached; dropping %r", event)
            return
        engine.dispatch(event)

    def _store_response(self, request_id: int, status: Status, payload: Optional[bytes]) -> None:
        with self._responses_lock:
            self._responses[request_id] = (status, payload)

    def _take_response(self, request_id: int) -> Tuple[Status, Optional[bytes]]:
        with self._responses_lock:
            return self._responses.pop(request_id, (Status.FAILURE, None))

    def _service_for(self, characteristic_id: str) -> str:
        wanted = normalize_uuid(characteristic_id)
        for service, characteristic in self._profile.characteristics():
            if characteristic.uuid == wanted:
                return service.uuid
        raise BLEError(f"Characteristic {wanted} is not part of the profile")


__all__ = [
    "BlessServerTransport",
    "CENTRAL_DEVICE",
    "bless_permissions",
    "bless_properties",
]
