"""
Module: probes.py
Purpose: Temperature sources for the thermabox controller.
Provides:
- Probe: capability set (initialize, get_temperature, get_name, close).
- DHT22Probe: local sensor read through adafruit_dht, no retry.
- HTTPProbe: polls a URL answering with a plain numeric body.
- WSProbe: persistent websocket; sends "temp" and waits for the reply frame.
- build_probe(): construct a probe from a config mapping with a "type" key.
Behavior:
- Network probes retry up to `attempts` times, `retry_delay` seconds apart,
  and raise ProbeReadError carrying the last failure.
"""

import math
import threading
from typing import Any, Callable, Dict, Optional

import requests
import websocket

from errors import ConfigError, ConnectError, ProbeReadError
from logger import get_logger

try:
    import board
    import adafruit_dht
except Exception:  # pragma: no cover - hardware not present
    board = None
    adafruit_dht = None


def parse_temperature(body: Any) -> float:
    """Parse a plain-text numeric reading."""
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    text = str(body).strip()
    try:
        value = float(text)
    except ValueError:
        raise ProbeReadError(f"unparseable reading: {text!r}") from None
    if not math.isfinite(value):
        raise ProbeReadError(f"non-finite reading: {text!r}")
    return value


class Probe:
    """Base class for temperature sources."""

    def __init__(self, name: str, cancel_event: Optional[threading.Event] = None) -> None:
        self.name = name
        self.logger = get_logger(__name__)
        self._cancel = cancel_event or threading.Event()

    def initialize(self) -> None:
        pass

    def get_temperature(self) -> float:
        raise NotImplementedError

    def get_name(self) -> str:
        return self.name

    def close(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name})"


class RetryingProbe(Probe):
    """Probe whose reads are retried a bounded number of times."""

    def __init__(
        self,
        name: str,
        url: str,
        attempts: int = 5,
        retry_delay: float = 0.1,
        timeout: float = 1.0,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        super().__init__(name, cancel_event)
        if not url:
            raise ConfigError(f"Probe '{name}' requires a url")
        self.url = url
        self.attempts = max(1, int(attempts))
        self.retry_delay = retry_delay
        self.timeout = timeout

    def _retry(self, read_once: Callable[[], float]) -> float:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.attempts + 1):
            try:
                return read_once()
            except ProbeReadError as exc:
                last_error = exc
                self.logger.debug("%s: attempt %s/%s failed: %s", self.name, attempt, self.attempts, exc)
            if attempt < self.attempts and self._cancel.wait(self.retry_delay):
                break
        raise ProbeReadError(f"{self.name}: failed to get temperature: {last_error}") from last_error


class HTTPProbe(RetryingProbe):
    """Probe polled with HTTP GET."""

    def __init__(self, name: str, url: str, **kwargs: Any) -> None:
        super().__init__(name, url, **kwargs)
        self._session: Optional[requests.Session] = None

    def initialize(self) -> None:
        self._session = requests.Session()
        self.logger.info("HTTP probe %s polling %s", self.name, self.url)

    def _read_once(self) -> float:
        try:
            resp = self._session.get(self.url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise ProbeReadError(f"request failed: {exc}") from exc
        if resp.status_code != 200:
            raise ProbeReadError(f"received response code: {resp.status_code}")
        return parse_temperature(resp.text)

    def get_temperature(self) -> float:
        if self._session is None:
            raise ProbeReadError(f"{self.name}: probe not initialized")
        return self._retry(self._read_once)

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None


class WSProbe(RetryingProbe):
    """Probe behind a persistent websocket session."""

    REQUEST = "temp"

    def __init__(self, name: str, url: str, **kwargs: Any) -> None:
        super().__init__(name, url, **kwargs)
        self._conn = None
        self._initialized = False

    def _connect(self) -> None:
        try:
            self._conn = websocket.create_connection(self.url, timeout=self.timeout)
        except (websocket.WebSocketException, OSError) as exc:
            raise ConnectError(f"{self.name}: failed to connect to {self.url}: {exc}") from exc

    def initialize(self) -> None:
        self._connect()
        self._initialized = True
        self.logger.info("Websocket probe %s connected to %s", self.name, self.url)

    def _drop(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            except (websocket.WebSocketException, OSError) as exc:
                self.logger.debug("%s: error closing websocket: %s", self.name, exc)
            self._conn = None

    def _read_once(self) -> float:
        if self._conn is None:
            try:
                self._connect()
            except ConnectError as exc:
                raise ProbeReadError(str(exc)) from exc
        try:
            self._conn.send(self.REQUEST)
            body = self._conn.recv()
        except (websocket.WebSocketException, OSError) as exc:
            self._drop()
            raise ProbeReadError(f"websocket exchange failed: {exc}") from exc
        return parse_temperature(body)

    def get_temperature(self) -> float:
        if not self._initialized:
            raise ProbeReadError(f"{self.name}: probe not initialized")
        return self._retry(self._read_once)

    def close(self) -> None:
        self._drop()
        self._initialized = False


class DHT22Probe(Probe):
    """DHT22 sensor wired to a local GPIO."""

    def __init__(self, name: str, pin: int, cancel_event: Optional[threading.Event] = None) -> None:
        super().__init__(name, cancel_event)
        if isinstance(pin, bool) or not isinstance(pin, int):
            raise ConfigError(f"Probe '{name}' requires an integer pin, got: {pin!r}")
        self.pin = pin
        self._device = None

    def initialize(self) -> None:
        if adafruit_dht is None or board is None:
            raise ConnectError(f"{self.name}: adafruit_dht is not available on this system")
        board_pin = getattr(board, f"D{self.pin}", None)
        if board_pin is None:
            raise ConnectError(f"{self.name}: no board pin D{self.pin}")
        try:
            self._device = adafruit_dht.DHT22(board_pin)
        except Exception as exc:
            raise ConnectError(f"{self.name}: failed to initialize DHT22 on D{self.pin}: {exc}") from exc
        self.logger.info("DHT22 probe %s initialized on D%s", self.name, self.pin)

    def get_temperature(self) -> float:
        if self._device is None:
            raise ProbeReadError(f"{self.name}: probe not initialized")
        try:
            temp = self._device.temperature
        except RuntimeError as exc:
            # checksum and timing errors are routine on DHT sensors
            raise ProbeReadError(f"{self.name}: {exc}") from exc
        if temp is None:
            raise ProbeReadError(f"{self.name}: sensor returned no reading")
        return float(temp)

    def close(self) -> None:
        if self._device is not None:
            self._device.exit()
            self._device = None


PROBE_TYPES = {
    "dht22": DHT22Probe,
    "http": HTTPProbe,
    "ws": WSProbe,
}


def build_probe(config: Dict[str, Any], cancel_event: Optional[threading.Event] = None) -> Probe:
    """
    Create a probe instance from config.

    Config format:
        {"type": "http", "name": "box", "url": "http://probe.local/temp"}
    Every key other than 'type' is passed to the probe's constructor.
    """
    if not isinstance(config, dict):
        raise ConfigError(f"Probe config must be a mapping, got: {config!r}")
    probe_type = config.get("type")
    if not probe_type:
        raise ConfigError(f"Probe config missing 'type' field: {config!r}")
    probe_class = PROBE_TYPES.get(str(probe_type).lower())
    if probe_class is None:
        raise ConfigError(f"Unknown probe type: {probe_type}")
    kwargs = {k: v for k, v in config.items() if k != "type"}
    kwargs.setdefault("name", f"{probe_type}-probe")
    try:
        return probe_class(cancel_event=cancel_event, **kwargs)
    except TypeError as exc:
        raise ConfigError(f"Invalid {probe_type} probe config: {exc}") from exc
