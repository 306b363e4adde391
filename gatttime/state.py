"""Client connection state management."""

from enum import Enum
from threading import RLock

from gatttime.config import logger


class ClientState(Enum):
    """Enum for the Timer client protocol states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SERVICE_DISCOVERY = "service_discovery"
    SUBSCRIBED = "subscribed"
    CLOSED = "closed"


_VALID_TRANSITIONS = {
    ClientState.DISCONNECTED: {
        ClientState.CONNECTING,
        # transports may report an incoming link we never asked for
        ClientState.CONNECTED,
        ClientState.CLOSED,
    },
    ClientState.CONNECTING: {
        ClientState.CONNECTED,
        ClientState.DISCONNECTED,
        ClientState.CLOSED,
    },
    ClientState.CONNECTED: {
        ClientState.SERVICE_DISCOVERY,
        ClientState.DISCONNECTED,
        ClientState.CLOSED,
    },
    ClientState.SERVICE_DISCOVERY: {
        ClientState.SUBSCRIBED,
        ClientState.DISCONNECTED,
        ClientState.CLOSED,
    },
    ClientState.SUBSCRIBED: {
        ClientState.DISCONNECTED,
        ClientState.CLOSED,
    },
    ClientState.CLOSED: set(),
}


class ClientStateManager:
    """Thread-safe state machine for the Timer client.

    A single reentrant lock guards the current state so transitions requested
    from transport threads and from the application never interleave.
    """

    def __init__(self):
        self._state_lock = RLock()
        self._state = ClientState.DISCONNECTED

    @property
    def lock(self) -> RLock:
        """Expose the reentrant lock controlling state transitions."""
        return self._state_lock

    @property
    def state(self) -> ClientState:
        with self._state_lock:
            return self._state

    @property
    def is_connected(self) -> bool:
        """True once the link is up, through discovery and subscription."""
        return self.state in (
            ClientState.CONNECTED,
            ClientState.SERVICE_DISCOVERY,
            ClientState.SUBSCRIBED,
        )

    @property
    def is_closed(self) -> bool:
        return self.state == ClientState.CLOSED

    @property
    def can_connect(self) -> bool:
        return self.state == ClientState.DISCONNECTED

    def transition_to(self, new_state: ClientState) -> bool:
        """Thread-safe state transition with validation.

        Args:
        ----
            new_state: Target state to transition to

        Returns:
        -------
            True if transition was valid and applied, False otherwise

        """
        with self._state_lock:
            if new_state in _VALID_TRANSITIONS.get(self._state, set()):
                old_state = self._state
                self._state = new_state
                logger.debug(
                    "Client state transition: %s → %s", old_state.value, new_state.value
                )
                return True
            logger.warning(
                "Invalid client state transition: %s → %s",
                self._state.value,
                new_state.value,
            )
            return False

    def transition_from(self, expected: ClientState, new_state: ClientState) -> bool:
        """Transition only if the machine is currently in `expected`."""
        with self._state_lock:
            if self._state != expected:
                return False
            return self.transition_to(new_state)


__all__ = ["ClientState", "ClientStateManager"]
