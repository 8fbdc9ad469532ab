"""Bench tool: toggle a single relay pin each time Enter is pressed."""
import argparse
import sys
from typing import List, Optional, TextIO

from errors import ThermaboxError
from logger import configure, get_logger
from relay import Relay


def main(argv: Optional[List[str]] = None, stream: Optional[TextIO] = None) -> int:
    parser = argparse.ArgumentParser(prog="relay-control", description="Relay control")
    parser.add_argument("pin", nargs="?", type=int, default=24, help="BCM pin to control")
    parser.add_argument("--active-high", action="store_true", help="Relay board is active-high")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    args = parser.parse_args(argv)

    configure(verbose=args.verbose)
    logger = get_logger(__name__)
    logger.info("Testing pin: %s", args.pin)

    try:
        relay = Relay(args.active_high, [args.pin])
    except ThermaboxError as exc:
        logger.error("Error in new relay: %s", exc)
        return 1

    stream = stream or sys.stdin
    try:
        for _ in stream:
            relay.toggle(1)
            logger.info("GPIO %s is now %s", args.pin, "on" if relay.is_on(1) else "off")
    except KeyboardInterrupt:
        pass
    except ThermaboxError as exc:
        logger.error("Relay error: %s", exc)
        return 1
    finally:
        relay.cleanup()
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
