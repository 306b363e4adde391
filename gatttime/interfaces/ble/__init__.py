"""bleak/bless transports for the Timer engines.

The bless server transport lives in `gatttime.interfaces.ble.server` and is
imported from there, so central-only hosts never load bless.
"""

from gatttime.interfaces.ble.client import BLEClient, BleakClientTransport
from gatttime.interfaces.ble.constants import BLEAK_VERSION, logger
from gatttime.interfaces.ble.exceptions import BLEError
from gatttime.interfaces.ble.loop import EventLoopThread

__all__ = [
    "BLEAK_VERSION",
    "BLEClient",
    "BLEError",
    "BleakClientTransport",
    "EventLoopThread",
    "logger",
]
