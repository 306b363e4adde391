"""Transport interfaces the engines drive.

A transport wraps the host's BLE stack. Outbound calls below are made by the
engines; inbound traffic is delivered by calling the engine's `dispatch()`
with one of the event types in `gatttime.events`, from any thread.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Hashable, Optional

from gatttime.gatt import Profile, Status

if TYPE_CHECKING:
    from gatttime.client import ClientProtocolEngine
    from gatttime.server import ServerProtocolEngine


class ServerTransport(ABC):
    """Peripheral-role transport used by `ServerProtocolEngine`."""

    @abstractmethod
    def open_server(self, profile: Profile, engine: "ServerProtocolEngine") -> Any:
        """Publish `profile` and start routing requests to `engine`; return a server handle."""

    @abstractmethod
    def close_server(self, handle: Any) -> None:
        """Tear down the server opened by `open_server`."""

    @abstractmethod
    def send_read_response(
        self,
        device: Hashable,
        request_id: int,
        status: Status,
        payload: Optional[bytes],
    ) -> None:
        """Answer a read request."""

    @abstractmethod
    def send_write_response(
        self,
        device: Hashable,
        request_id: int,
        status: Status,
        payload: Optional[bytes],
    ) -> None:
        """Answer a write request that asked for a response."""

    @abstractmethod
    def notify_characteristic_changed(
        self, device: Hashable, characteristic_id: str, payload: bytes
    ) -> None:
        """Push a notification of `payload` for `characteristic_id` to `device`."""


class ClientTransport(ABC):
    """Central-role transport used by `ClientProtocolEngine`."""

    @abstractmethod
    def connect(self, engine: "ClientProtocolEngine") -> None:
        """Start connecting; report the outcome with a `ConnectionStateChanged` event."""

    @abstractmethod
    def disconnect(self) -> None:
        """Drop the link; report it with a `ConnectionStateChanged` event."""

    @abstractmethod
    def discover_services(self) -> None:
        """Run discovery; report it with a `ServicesDiscovered` event."""

    @abstractmethod
    def read_characteristic(self, characteristic_id: str) -> None:
        """Issue a read; report it with a `CharacteristicRead` event."""

    @abstractmethod
    def write_characteristic(
        self, characteristic_id: str, payload: bytes, response: bool = True
    ) -> None:
        """Issue a write."""

    @abstractmethod
    def enable_notifications(self, characteristic_id: str) -> None:
        """Subscribe; later values arrive as `CharacteristicChanged` events."""

    def close(self) -> None:
        """Release transport resources. Optional."""


__all__ = ["ClientTransport", "ServerTransport"]
