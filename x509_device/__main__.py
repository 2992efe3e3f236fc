#!/usr/bin/env python3
"""Provision a simulated X.509 device with DPS and stream telemetry until Ctrl-C."""
import argparse, asyncio, logging, signal, sys

from .config import get_settings
from .device import SimulatedDevice
from .errors import ConfigError
from .log import setup_logging
from .provisioning import TRANSPORTS

logger = logging.getLogger("x509_device")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="x509-device",
        description="Simulated IoT device that provisions with an X.509 certificate "
                    "and sends telemetry to its assigned IoT hub.")
    parser.add_argument("--bundle", dest="bundle_path", help="PFX certificate bundle")
    parser.add_argument("--password", dest="bundle_password", help="PFX bundle password")
    parser.add_argument("--id-scope", dest="id_scope", help="DPS ID scope")
    parser.add_argument("--endpoint", help="DPS global device endpoint")
    parser.add_argument("--transport", choices=sorted(TRANSPORTS), help="DPS transport")
    parser.add_argument("--ca-certs", dest="ca_certs", help="CA bundle for server verification")
    parser.add_argument("--interval", dest="send_interval", type=float,
                        help="seconds between messages on each loop")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser, parser.parse_args(argv)


async def serve(device):
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop.set)
        except NotImplementedError:
            # No loop signal handlers on Windows; Ctrl-C raises KeyboardInterrupt instead.
            pass
    return await device.run(stop)


def main(argv=None) -> int:
    parser, args = parse_args(argv)
    setup_logging(args.verbose)

    overrides = vars(args).copy()
    overrides.pop("verbose")
    try:
        settings = get_settings(**overrides)
    except ConfigError as e:
        parser.error(str(e))

    try:
        return asyncio.run(serve(SimulatedDevice(settings)))
    except KeyboardInterrupt:
        logger.info("User initiated exit. Exiting")
        return 0


if __name__ == "__main__":
    sys.exit(main())
