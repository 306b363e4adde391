"""Utility helpers shared by the Timer engines."""

import logging
import queue
import threading
from typing import Callable, Optional

from gatttime.config import TimerConfig

logger = logging.getLogger("gatttime")


class DeferredExecution:
    """A thread that accepts closures to run, and runs them as they are received.

    Every closure queued on one instance runs on the same worker thread in
    FIFO order, which makes an instance a well-defined execution context for
    application callbacks regardless of which thread queued them.
    """

    def __init__(self, name: Optional[str] = None):
        self.queue: "queue.Queue[Callable[[], object]]" = queue.Queue()
        self.thread = threading.Thread(
            target=self._run, args=(), name=name, daemon=True
        )
        self.thread.start()

    def queueWork(self, runnable: Callable[[], object]) -> None:  # pylint: disable=C0103
        """Queue a zero-argument callable for execution on the worker thread."""
        self.queue.put(runnable)

    def flush(self, timeout: Optional[float] = TimerConfig.DELIVERY_FLUSH_TIMEOUT) -> bool:
        """
        Wait until everything queued before this call has run.

        Returns:
            bool: `True` if the queue drained before `timeout`, `False` otherwise.
        """
        if threading.current_thread() is self.thread:
            return True
        drained = threading.Event()
        self.queueWork(drained.set)
        return drained.wait(timeout)

    def _run(self) -> None:
        while True:
            runnable = self.queue.get()
            try:
                runnable()
            except Exception:  # keep the worker alive for later closures
                logger.exception("Unexpected error in deferred execution")


__all__ = ["DeferredExecution"]
