"""Thread-safe storage for the time offset."""

from threading import Lock

from gatttime.codec import ValueCodec


class OffsetStore:
    """Single uint32 value guarded by a lock.

    Transport callbacks arrive on arbitrary threads, so every read and write
    goes through the lock; callers never see the raw attribute.
    """

    def __init__(self, initial: int = 0):
        self._lock = Lock()
        self._value = ValueCodec.wrap(initial)

    def get(self) -> int:
        """Return the last stored offset (0 until first set)."""
        with self._lock:
            return self._value

    def set(self, value: int) -> None:
        """Store a new offset; out-of-range values wrap to 32 bits."""
        wrapped = ValueCodec.wrap(value)
        with self._lock:
            self._value = wrapped

    def __repr__(self):
        return f"OffsetStore({self.get()})"


__all__ = ["OffsetStore"]
