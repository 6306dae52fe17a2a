"""Device monitor entry point.

Connects to the usbmux daemon and prints the device roster every time
it changes.

Usage:
    python -m usbmux [options]

    Options:
        --socket PATH       Local-domain socket of the daemon
        --tcp HOST:PORT     Use the loopback TCP endpoint instead
        --log-level LEVEL   Logging level (default: USBMUX_LOG_LEVEL or INFO)
        --once              Print the roster after one short wait and exit

Logging goes to stderr; the roster goes to stdout.
"""

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from usbmux.config import Endpoint, UsbmuxSettings
from usbmux.mux import MuxError, USBMux

logger = logging.getLogger(__name__)

# Initial wait used to collect the devices the daemon reports on listen
INITIAL_WAIT_SECONDS = 0.1


def setup_logging(log_level: str) -> None:
    """Configure root logging to stderr."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def parse_tcp_endpoint(value: str) -> tuple[str, int]:
    """Parse HOST:PORT for --tcp."""
    host, sep, port = value.rpartition(":")
    if not sep or not host:
        raise argparse.ArgumentTypeError(f"expected HOST:PORT, got {value!r}")
    try:
        return host, int(port)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port in {value!r}") from None


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="usbmux",
        description="Monitor devices attached to the usbmux daemon",
    )
    target = parser.add_mutually_exclusive_group()
    target.add_argument("--socket", type=Path, help="Local-domain socket of the daemon")
    target.add_argument(
        "--tcp",
        type=parse_tcp_endpoint,
        metavar="HOST:PORT",
        help="Loopback TCP endpoint of the daemon",
    )
    parser.add_argument("--log-level", default=None, help="Logging level")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Print the current roster and exit",
    )
    return parser.parse_args(argv)


def print_roster(mux: USBMux) -> None:
    print("Devices:")
    for device in mux.devices.values():
        print(f"  {device}")
    sys.stdout.flush()


def monitor(mux: USBMux, once: bool = False) -> None:
    """Print the roster, then again after every change."""
    print("Waiting for devices...")
    if not mux.devices:
        mux.process(INITIAL_WAIT_SECONDS)

    print_roster(mux)
    if once:
        return

    while True:
        if mux.process():
            print_roster(mux)


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = parse_arguments(argv)
    settings = UsbmuxSettings()
    setup_logging(args.log_level or settings.log_level)

    endpoint: Endpoint | None = args.socket or args.tcp

    try:
        with USBMux(endpoint, settings=settings) as mux:
            logger.info(f"Connected to usbmuxd (protocol version {mux.version})")
            monitor(mux, once=args.once)
    except MuxError as e:
        sys.stderr.write(f"ERROR: {e}\n")
        return 1
    except KeyboardInterrupt:
        return 0

    return 0


if __name__ == "__main__":
    sys.exit(main())
