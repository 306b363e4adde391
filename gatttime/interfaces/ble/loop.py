"""A private asyncio event loop running on a daemon thread."""

import asyncio
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from threading import Thread, current_thread
from typing import Any, Callable, Optional

from gatttime.errors import ErrorHandler
from gatttime.interfaces.ble.constants import (
    BLECLIENT_ERROR_ASYNC_TIMEOUT,
    BLECLIENT_EVENT_THREAD_JOIN_TIMEOUT,
    logger,
)
from gatttime.interfaces.ble.exceptions import BLEError


class EventLoopThread:
    """
    Synchronous front for a dedicated asyncio loop.

    bleak and bless are asyncio libraries while the engines are thread based;
    each transport owns one of these and funnels every coroutine through it.
    """

    def __init__(self, name: str = "BLEEventLoop") -> None:
        self.error_handler = ErrorHandler()
        self.loop = asyncio.new_event_loop()
        self._thread = Thread(target=self._run_event_loop, name=name, daemon=True)
        try:
            self._thread.start()
        except RuntimeError:
            self.loop.close()
            raise

    def in_loop_thread(self) -> bool:
        return current_thread() is self._thread

    def run(self, coro) -> Future:
        """Schedule `coro` on the loop; return a concurrent.futures.Future."""
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def run_and_wait(self, coro, timeout: Optional[float] = None) -> Any:
        """
        Run `coro` on the loop and block until it finishes.

        Parameters:
            coro: The coroutine to run.
            timeout (float | None): Maximum seconds to wait; `None` waits indefinitely.

        Returns:
            The coroutine's result.

        Raises:
            BLEError: If the wait times out or the loop is gone. Exceptions raised by
                the coroutine itself propagate unchanged.
        """
        future = self.run(coro)
        try:
            return future.result(timeout)
        except (FutureTimeoutError, RuntimeError) as e:
            future.cancel()
            # Consume any late exceptions to avoid "Task exception was never retrieved"
            future.add_done_callback(
                lambda f: f.exception() if not f.cancelled() else None
            )
            raise BLEError(BLECLIENT_ERROR_ASYNC_TIMEOUT) from e

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> None:
        """Run a plain callable on the loop thread."""
        self.loop.call_soon_threadsafe(callback, *args)

    def stop(self, timeout: float = BLECLIENT_EVENT_THREAD_JOIN_TIMEOUT) -> None:
        """Stop the loop and wait for its thread to exit."""
        if self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self.loop.stop)
        if self.in_loop_thread():
            return
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning(
                "BLE event thread did not exit within %.1fs",
                timeout,
            )

    def _run_event_loop(self) -> None:
        self.error_handler.safe_execute(
            self.loop.run_forever, error_msg="Error in event loop"
        )
        self.loop.close()


__all__ = ["EventLoopThread"]
