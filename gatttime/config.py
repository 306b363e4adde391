"""Shared configuration constants for the Timer GATT engines."""

import logging

logger = logging.getLogger("gatttime")


class TimerConfig:
    """Configuration constants for Timer server/client operations."""

    NOTIFY_INTERVAL = 2.0
    SCHEDULER_JOIN_TIMEOUT = 2.0
    DELIVERY_FLUSH_TIMEOUT = 2.0
    CONNECTION_TIMEOUT = 60.0
    GATT_IO_TIMEOUT = 10.0
    NOTIFICATION_START_TIMEOUT = 10.0
    SERVER_START_TIMEOUT = 30.0
    CONNECTION_POLL_INTERVAL = 1.0
    # Offset travels in seconds; the application sees milliseconds.
    OFFSET_UNIT_MILLIS = 1000


NOTIFY_INTERVAL = TimerConfig.NOTIFY_INTERVAL
SCHEDULER_JOIN_TIMEOUT = TimerConfig.SCHEDULER_JOIN_TIMEOUT
OFFSET_UNIT_MILLIS = TimerConfig.OFFSET_UNIT_MILLIS

__all__ = [
    "NOTIFY_INTERVAL",
    "OFFSET_UNIT_MILLIS",
    "SCHEDULER_JOIN_TIMEOUT",
    "TimerConfig",
    "logger",
]
