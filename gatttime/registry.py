"""Registry of remote devices connected to the Timer server."""

from threading import RLock
from typing import Hashable, Set, Tuple

from gatttime.config import logger


class ConnectionRegistry:
    """Thread-safe set of connected devices.

    Devices are opaque handles owned by the transport; the registry only keeps
    a reference for as long as the device is reported connected. Callers that
    need to couple a membership change with another decision (starting or
    stopping notifications) hold `lock` across both.
    """

    def __init__(self):
        self._lock = RLock()
        self._devices: Set[Hashable] = set()

    @property
    def lock(self) -> RLock:
        """Expose the reentrant lock serializing membership changes."""
        return self._lock

    def add(self, device: Hashable) -> bool:
        """
        Record a device as connected.

        Returns:
            bool: `True` if the device was not already present, `False` for a duplicate report.
        """
        with self._lock:
            if device in self._devices:
                logger.debug("Device %s already registered", device)
                return False
            self._devices.add(device)
            return True

    def remove(self, device: Hashable) -> bool:
        """
        Forget a device.

        Returns:
            bool: `True` if the device was present, `False` if it was unknown.
        """
        with self._lock:
            if device not in self._devices:
                logger.debug("Device %s was not registered", device)
                return False
            self._devices.discard(device)
            return True

    def snapshot(self) -> Tuple[Hashable, ...]:
        """Return a consistent copy of the current members for iteration."""
        with self._lock:
            return tuple(self._devices)

    def clear(self) -> None:
        with self._lock:
            self._devices.clear()

    @property
    def is_empty(self) -> bool:
        with self._lock:
            return not self._devices

    def __contains__(self, device) -> bool:
        with self._lock:
            return device in self._devices

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)


__all__ = ["ConnectionRegistry"]
