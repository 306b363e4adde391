"""Base clock for the elapsed-time characteristic."""

import time
from typing import Protocol, runtime_checkable

from gatttime.codec import ValueCodec


@runtime_checkable
class ClockSource(Protocol):
    """Anything that yields whole seconds from a fixed, arbitrary epoch."""

    def now(self) -> int:
        ...


class UptimeClock:
    """Production clock: whole seconds of ``time.monotonic()``.

    The epoch is arbitrary (system uptime on most platforms); only differences
    between readings are meaningful, and the value never moves backwards.
    """

    def now(self) -> int:
        return int(time.monotonic())


def elapsed_value(clock: ClockSource, offset: int) -> int:
    """Shift the clock by ``offset`` seconds, wrapped to 32 bits."""
    return ValueCodec.wrap(clock.now() + offset)


__all__ = ["ClockSource", "UptimeClock", "elapsed_value"]
