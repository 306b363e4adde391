"""Timer GATT profile: UUIDs, properties, permissions and result codes."""

import uuid
from dataclasses import dataclass, field
from enum import Enum, IntEnum, IntFlag
from typing import Any, Iterable, Optional, Tuple

SERVICE_UUID = "1706bbc0-88ab-4b8b-a903-39e77a7a3a62"
ELAPSED_UUID = "275348fb-c14e-4be1-9e1b-e2ae4a2bce7c"
OFFSET_UUID = "8a2bd2e2-6c8b-4d1e-8b7e-5f4f3c5a1f0b"


class Status(IntEnum):
    """Two-valued result carried by every GATT response."""

    SUCCESS = 0
    FAILURE = 257

    @classmethod
    def from_code(cls, code: Any) -> "Status":
        """
        Map a transport status code onto SUCCESS or FAILURE.

        Parameters:
            code: Transport-specific status (int, bool, Status or None).

        Returns:
            Status: SUCCESS for 0 / True / SUCCESS, FAILURE for anything else.
        """
        if isinstance(code, Status):
            return code
        if isinstance(code, bool):
            return cls.SUCCESS if code else cls.FAILURE
        if code == 0:
            return cls.SUCCESS
        return cls.FAILURE


class ConnectionStatus(Enum):
    """Link state reported by a transport for a remote device."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


class Property(IntFlag):
    """Characteristic properties (bit values match the GATT declaration)."""

    READ = 0x02
    WRITE = 0x08
    NOTIFY = 0x10


class Permission(IntFlag):
    """Attribute permissions."""

    READ = 0x01
    WRITE = 0x10


def normalize_uuid(value: Any) -> str:
    """
    Return the canonical lower-case string form of a UUID-like value.

    Accepts `uuid.UUID`, strings in any case, and objects exposing a `uuid`
    attribute (bleak and bless characteristic/service objects).
    """
    value = getattr(value, "uuid", value)
    if isinstance(value, uuid.UUID):
        return str(value)
    return str(value).strip().lower()


@dataclass(frozen=True)
class Characteristic:
    """A characteristic declaration within a service."""

    uuid: str
    properties: Property
    permissions: Permission

    @property
    def readable(self) -> bool:
        return bool(self.properties & Property.READ)

    @property
    def writable(self) -> bool:
        return bool(self.properties & Property.WRITE)

    @property
    def notifies(self) -> bool:
        return bool(self.properties & Property.NOTIFY)


@dataclass(frozen=True)
class Service:
    """A primary service and its characteristics."""

    uuid: str
    characteristics: Tuple[Characteristic, ...] = field(default_factory=tuple)
    primary: bool = True

    def get_characteristic(self, specifier: Any) -> Optional[Characteristic]:
        wanted = normalize_uuid(specifier)
        for characteristic in self.characteristics:
            if characteristic.uuid == wanted:
                return characteristic
        return None


@dataclass(frozen=True)
class Profile:
    """The set of services a server publishes."""

    services: Tuple[Service, ...]

    def get_service(self, specifier: Any) -> Optional[Service]:
        wanted = normalize_uuid(specifier)
        for service in self.services:
            if service.uuid == wanted:
                return service
        return None

    def characteristics(self) -> Iterable[Tuple[Service, Characteristic]]:
        for service in self.services:
            for characteristic in service.characteristics:
                yield service, characteristic

    def get_characteristic(self, specifier: Any) -> Optional[Characteristic]:
        """Find a characteristic in any service of the profile."""
        wanted = normalize_uuid(specifier)
        for _, characteristic in self.characteristics():
            if characteristic.uuid == wanted:
                return characteristic
        return None


ELAPSED_CHARACTERISTIC = Characteristic(
    ELAPSED_UUID,
    Property.READ | Property.NOTIFY,
    Permission.READ,
)
OFFSET_CHARACTERISTIC = Characteristic(
    OFFSET_UUID,
    Property.READ | Property.WRITE,
    Permission.READ | Permission.WRITE,
)
TIMER_SERVICE = Service(SERVICE_UUID, (ELAPSED_CHARACTERISTIC, OFFSET_CHARACTERISTIC))
TIMER_PROFILE = Profile((TIMER_SERVICE,))


def describe_status(status: Any) -> str:
    """Human-readable form of a transport status for log lines."""
    resolved = Status.from_code(status)
    if resolved is Status.SUCCESS:
        return "SUCCESS"
    return f"FAILURE({status})"


def describe_state(state: Any) -> str:
    """Human-readable form of a connection state for log lines."""
    if isinstance(state, ConnectionStatus):
        return state.value.upper()
    return f"UNKNOWN({state})"


__all__ = [
    "Characteristic",
    "ConnectionStatus",
    "ELAPSED_CHARACTERISTIC",
    "ELAPSED_UUID",
    "OFFSET_CHARACTERISTIC",
    "OFFSET_UUID",
    "Permission",
    "Profile",
    "Property",
    "SERVICE_UUID",
    "Service",
    "Status",
    "TIMER_PROFILE",
    "TIMER_SERVICE",
    "describe_state",
    "describe_status",
    "normalize_uuid",
]
