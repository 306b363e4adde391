"""Periodic notification fan-out for connected devices."""

from enum import Enum
from threading import Event, RLock, Thread, current_thread
from typing import Callable, Optional

from gatttime.config import TimerConfig, logger
from gatttime.errors import ErrorHandler


class SchedulerState(Enum):
    """Lifecycle of the notification ticker."""

    IDLE = "idle"
    ACTIVE = "active"


class NotificationScheduler:
    """
    Cancellable periodic task that runs a fan-out callback.

    `start()` fires the callback immediately on a dedicated daemon thread and
    then once per `interval` seconds until `cancel()` is called. The ticker is
    single-flight: a `start()` while active is absorbed into the running
    cadence, and any stale ticker is cancelled before a new one is armed.
    Exceptions raised by the callback are logged and never stop the ticker.
    """

    def __init__(
        self,
        fan_out: Callable[[], object],
        interval: float = TimerConfig.NOTIFY_INTERVAL,
        *,
        name: str = "TimerNotify",
        error_handler: Optional[ErrorHandler] = None,
    ):
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval}")
        self._fan_out = fan_out
        self.interval = interval
        self.name = name
        self.error_handler = error_handler or ErrorHandler()
        self._lock = RLock()
        self._thread: Optional[Thread] = None
        self._stop_event: Optional[Event] = None
        self._last_thread: Optional[Thread] = None
        self._tick_count = 0

    @property
    def state(self) -> SchedulerState:
        with self._lock:
            if self._stop_event is not None and not self._stop_event.is_set():
                return SchedulerState.ACTIVE
            return SchedulerState.IDLE

    @property
    def is_active(self) -> bool:
        return self.state == SchedulerState.ACTIVE

    @property
    def tick_count(self) -> int:
        """Number of fan-outs performed since construction."""
        with self._lock:
            return self._tick_count

    def start(self) -> bool:
        """
        Transition Idle -> Active.

        Returns:
            bool: `True` if a new ticker was armed, `False` if one was already running.
        """
        with self._lock:
            if self.is_active:
                logger.debug("Notification ticker already active; start absorbed")
                return False
            self._cancel_locked()
            stop_event = Event()
            thread = Thread(
                target=self._run, args=(stop_event,), name=self.name, daemon=True
            )
            self._stop_event = stop_event
            self._thread = thread
            thread.start()
            logger.debug("Notification ticker started (interval %.1fs)", self.interval)
            return True

    def cancel(self) -> bool:
        """
        Transition Active -> Idle.

        Does not wait for an in-flight fan-out; use `join()` for that.

        Returns:
            bool: `True` if a ticker was cancelled, `False` if none was armed.
        """
        with self._lock:
            return self._cancel_locked()

    def join(self, timeout: Optional[float] = TimerConfig.SCHEDULER_JOIN_TIMEOUT) -> None:
        """Wait for the most recently cancelled ticker thread to exit."""
        with self._lock:
            thread = self._last_thread
        if thread is not None and thread.is_alive() and thread is not current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(
                    "Notification ticker did not exit within %.1fs", timeout or 0.0
                )

    def _cancel_locked(self) -> bool:
        if self._stop_event is None:
            return False
        self._stop_event.set()
        self._last_thread = self._thread
        self._stop_event = None
        self._thread = None
        logger.debug("Notification ticker cancelled")
        return True

    def _run(self, stop_event: Event) -> None:
        while not stop_event.is_set():
            self._tick()
            if stop_event.wait(self.interval):
                break

    def _tick(self) -> None:
        with self._lock:
            self._tick_count += 1
        self.error_handler.safe_execute(
            self._fan_out, error_msg="Notification fan-out failed"
        )


__all__ = ["NotificationScheduler", "SchedulerState"]
