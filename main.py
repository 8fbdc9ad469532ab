"""Thermabox entry point."""
import argparse
import signal
import threading
from typing import Any, Dict, List, Optional

from config_loader import build_thermabox, load_config
from errors import ConfigError, ThermaboxError
from logger import configure, get_logger
from server import ThermaboxServer

PRIMARY_PROBE_NAME = "thermabox-probe"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="thermabox", description="Temperature controller")
    parser.add_argument("conf", help="Configuration file (JSON)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    parser.add_argument(
        "-S", "--sensor",
        help="Override the configured probe: dht22:<pin>, an http(s):// URL or a ws(s):// URL",
    )
    parser.add_argument("-t", "--temperature", type=float, help="Override conf temperature")
    parser.add_argument("-T", "--threshold", type=float, help="Override conf threshold")
    parser.add_argument("--log-dir", help="Also write a rotating log file into this directory")
    return parser.parse_args(argv)


def sensor_config(source: str) -> Dict[str, Any]:
    """Translate the --sensor flag into a probe config mapping."""
    if source.startswith(("http://", "https://")):
        return {"type": "http", "name": PRIMARY_PROBE_NAME, "url": source}
    if source.startswith(("ws://", "wss://")):
        return {"type": "ws", "name": PRIMARY_PROBE_NAME, "url": source}
    kind, _, pin = source.partition(":")
    if kind.lower() == "dht22":
        try:
            return {"type": "dht22", "name": PRIMARY_PROBE_NAME, "pin": int(pin)}
        except ValueError:
            raise ConfigError(f"Invalid DHT22 pin in sensor source: {source}") from None
    raise ConfigError(f"Unsupported sensor source: {source}")


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure(verbose=args.verbose, log_dir=args.log_dir)
    logger = get_logger(__name__)
    stop_event = threading.Event()

    try:
        config = load_config(args.conf)
        if args.sensor:
            config.probes.primary = sensor_config(args.sensor)
        if config.probes.primary is None:
            raise ConfigError("No temperature probe configured (set 'probe' or pass --sensor)")
        tbox = build_thermabox(config, stop_event)
    except ThermaboxError as exc:
        logger.error("Startup failed: %s", exc)
        return 1

    temperature, threshold = tbox.get_limits()
    if args.temperature is not None:
        temperature = args.temperature
    if args.threshold is not None:
        threshold = args.threshold
    try:
        tbox.set_limits(temperature, threshold)
    except ValueError as exc:
        logger.error("Invalid limits: %s", exc)
        tbox.close()
        return 1

    server = None
    if config.webserver is not None:
        server = ThermaboxServer(tbox, config.webserver)
        server.start()

    def handle_signal(sig, frame):
        logger.info("Received signal %s, stopping", sig)
        tbox.stop()
    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    try:
        tbox.run()
    except ThermaboxError as exc:
        logger.error("Fatal: %s", exc)
        return 1
    finally:
        if server is not None:
            server.publisher.stop()
        tbox.close()

    logger.info('Shutting down')
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
