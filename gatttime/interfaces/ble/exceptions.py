"""Exceptions raised by the BLE transports."""

from gatttime.errors import TransportError


class BLEError(TransportError):
    """An exception class for BLE errors."""


__all__ = ["BLEError"]
