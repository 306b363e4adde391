"""
Example running the Timer GATT server on this host's Bluetooth adapter.

The server advertises the Timer service, notifies connected centrals of the
elapsed value every two seconds and logs offset writes as they arrive.
"""

import argparse
import logging
import time

from pubsub import pub

from gatttime import ServerProtocolEngine
from gatttime.interfaces.ble.server import BlessServerTransport

logger = logging.getLogger(__name__)


def on_connected(device, engine):
    logger.info("Central %s connected (elapsed=%d)", device, engine.elapsed_value())


def on_disconnected(device, engine):  # pylint: disable=W0613
    logger.info("Central %s disconnected", device)


def on_offset_updated(engine):
    logger.info("Offset is now %d s", engine.time_offset)


def main():
    """Parse arguments, open the server and run until Ctrl+C."""
    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser(description="Timer GATT server example.")
    parser.add_argument("--name", default="Timer", help="Advertised local name.")
    parser.add_argument(
        "--offset", type=int, default=0, help="Initial time offset in seconds."
    )
    parser.add_argument(
        "--interval", type=float, default=2.0, help="Notification period in seconds."
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    args = parser.parse_args()
    if args.debug:
        logging.getLogger("gatttime").setLevel(logging.DEBUG)

    pub.subscribe(on_connected, "gatttime.server.deviceConnected")
    pub.subscribe(on_disconnected, "gatttime.server.deviceDisconnected")
    pub.subscribe(on_offset_updated, "gatttime.server.timeOffsetUpdated")

    engine = ServerProtocolEngine(
        BlessServerTransport(args.name), notify_interval=args.interval
    )
    try:
        with engine:
            if args.offset:
                engine.set_time_offset(args.offset)
            logger.info("Server running; press Ctrl+C to stop")
            while True:
                time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Exiting...")
    except Exception:
        logger.exception("Server failed")


if __name__ == "__main__":
    main()
