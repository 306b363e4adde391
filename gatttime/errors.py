"""Exceptions and error handling helpers for Timer engines."""

from concurrent.futures import TimeoutError as FutureTimeoutError

from bleak.exc import BleakDBusError, BleakError

from gatttime.config import logger


class TimerError(Exception):
    """Base class for errors raised by the Timer engines."""


class CodecError(TimerError, ValueError):
    """Raised when a wire payload cannot be decoded."""


class TransportError(TimerError):
    """Raised by transports when a GATT operation fails."""


class EngineClosedError(TimerError):
    """Raised when an operation needs an engine that has been shut down."""


class ErrorHandler:
    """Helper class for consistent error handling in engine and transport code.

    Centralizes the absorb-and-log policy: failures that are part of normal
    radio life (a device vanishing mid-notification, a timed out GATT call)
    are logged at debug level, anything else is logged with its traceback.
    """

    EXPECTED_ERRORS = (
        TransportError,
        CodecError,
        BleakError,
        BleakDBusError,
        FutureTimeoutError,
    )

    @staticmethod
    def safe_execute(
        func,
        default_return=None,
        log_error: bool = True,
        error_msg: str = "Error in operation",
        reraise: bool = False,
    ):
        """
        Execute a zero-argument callable and return its result, falling back to a provided default on failure.

        Parameters:
            func (callable): A zero-argument callable to execute.
            default_return: Value to return if execution fails.
            log_error (bool): If True, log caught exceptions.
            error_msg (str): Message prefix used when logging errors.
            reraise (bool): If True, re-raise any caught exception instead of returning default_return.

        Returns:
            The value returned by `func()` on success, or `default_return` if execution failed.
        """
        try:
            return func()
        except ErrorHandler.EXPECTED_ERRORS as e:
            if log_error:
                logger.debug("%s: %s", error_msg, e)
            if reraise:
                raise
            return default_return
        except Exception:
            if log_error:
                logger.exception("%s", error_msg)
            if reraise:
                raise
            return default_return

    @staticmethod
    def safe_cleanup(func, cleanup_name: str = "cleanup operation"):
        """Run a cleanup callable; log and drop anything it raises."""
        try:
            func()
        except Exception as e:  # noqa: BLE001 - cleanup paths must not raise
            logger.debug("Error during %s: %s", cleanup_name, e)


__all__ = [
    "CodecError",
    "EngineClosedError",
    "ErrorHandler",
    "TimerError",
    "TransportError",
]
