"""BLE GATT Timer service: time-synchronization server and client engines.

The server (peripheral) exposes an elapsed-time characteristic (read/notify)
and a time-offset characteristic (read/write); the client (central) discovers
the service, reads both values and subscribes to elapsed-time notifications.

Application events are published with PyPubSub on `publishingThread`, a single
worker thread shared by all engines unless another delivery context is given.
"""

from gatttime.util import DeferredExecution

# Must exist before the engine modules import it.
publishingThread = DeferredExecution("publishing")

from gatttime.client import ClientProtocolEngine  # noqa: E402
from gatttime.codec import ValueCodec  # noqa: E402
from gatttime.config import TimerConfig  # noqa: E402
from gatttime.errors import (  # noqa: E402
    CodecError,
    EngineClosedError,
    TimerError,
    TransportError,
)
from gatttime.gatt import (  # noqa: E402
    ELAPSED_UUID,
    OFFSET_UUID,
    SERVICE_UUID,
    TIMER_PROFILE,
    ConnectionStatus,
    Status,
)
from gatttime.offset import OffsetStore  # noqa: E402
from gatttime.registry import ConnectionRegistry  # noqa: E402
from gatttime.scheduler import NotificationScheduler  # noqa: E402
from gatttime.server import ServerProtocolEngine  # noqa: E402
from gatttime.state import ClientState  # noqa: E402

__version__ = "0.1.0"

__all__ = [
    "ClientProtocolEngine",
    "ClientState",
    "CodecError",
    "ConnectionRegistry",
    "ConnectionStatus",
    "DeferredExecution",
    "ELAPSED_UUID",
    "EngineClosedError",
    "NotificationScheduler",
    "OFFSET_UUID",
    "OffsetStore",
    "SERVICE_UUID",
    "ServerProtocolEngine",
    "Status",
    "TIMER_PROFILE",
    "TimerConfig",
    "TimerError",
    "TransportError",
    "ValueCodec",
    "publishingThread",
]
