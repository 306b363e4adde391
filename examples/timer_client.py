"""
Example connecting to a Timer GATT server and printing its elapsed value.

Without an address the first peripheral advertising the Timer service is used.
With `--set-offset` the client writes a new offset once subscribed, then reads
it back.
"""

import argparse
import logging
import time

from pubsub import pub

from gatttime import ClientProtocolEngine
from gatttime.interfaces.ble import BleakClientTransport, BLEError

logger = logging.getLogger(__name__)


def on_time_value(value, engine):  # pylint: disable=W0613
    logger.info("Elapsed: %d", value)


def on_time_offset(offset, engine):  # pylint: disable=W0613
    logger.info("Server offset: %d ms", offset)


def main():
    """Parse arguments, connect and print notifications until Ctrl+C."""
    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser(description="Timer GATT client example.")
    parser.add_argument("address", nargs="?", help="BLE address of the Timer server.")
    parser.add_argument(
        "--set-offset", type=int, help="Write this offset (seconds) after connecting."
    )
    args = parser.parse_args()

    pub.subscribe(on_time_value, "gatttime.client.timeValueChanged")
    pub.subscribe(on_time_offset, "gatttime.client.timeOffsetChanged")

    try:
        address = args.address or BleakClientTransport.find_server()
        with ClientProtocolEngine(BleakClientTransport(address)) as engine:
            if not engine.connect() or not engine.is_subscribed:
                logger.error("Could not subscribe to %s (state %s)", address, engine.state.value)
                return
            if args.set_offset is not None:
                engine.write_offset(args.set_offset)
            engine.read_offset()
            while True:
                time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Exiting...")
    except BLEError:
        logger.exception("Scan failed")


if __name__ == "__main__":
    main()
