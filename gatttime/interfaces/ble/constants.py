"""Constants shared by the bleak and bless transports."""

import importlib.metadata
import logging

logger = logging.getLogger("gatttime.ble")

# Get bleak version using importlib.metadata (reliable method)
BLEAK_VERSION = importlib.metadata.version("bleak")

BLE_SCAN_TIMEOUT = 10.0
BLECLIENT_EVENT_THREAD_JOIN_TIMEOUT = 2.0

ERROR_NO_SERVER_FOUND = "No Timer GATT server advertising {0} found"
BLECLIENT_ERROR_ASYNC_TIMEOUT = "Async operation timed out"

__all__ = [
    "BLEAK_VERSION",
    "BLECLIENT_ERROR_ASYNC_TIMEOUT",
    "BLECLIENT_EVENT_THREAD_JOIN_TIMEOUT",
    "BLE_SCAN_TIMEOUT",
    "ERROR_NO_SERVER_FOUND",
    "logger",
]
