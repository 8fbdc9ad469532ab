"""
Module: config_loader.py
Purpose: Load and validate the thermabox configuration and build the controller from it.
Consumes: JSON configuration file (default config/config.json).
Provides:
- load_document(): parse the file into a plain mapping.
- ThermaboxConfig: validated, typed view of the mapping with documented defaults.
- build_thermabox(): construct relays, elements, probes and the Thermabox.
Failure Mode: ConfigError for a missing file or malformed values; relay and
probe construction may add HardwareError / ConnectError.
"""

import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from element import Element
from errors import ConfigError, ThermaboxError
from logger import get_logger
from probes import Probe, build_probe
from relay import Relay
from thermabox import Thermabox

DEFAULT_CONFIG_PATH = "config/config.json"

logger = get_logger(__name__)


@dataclass
class RelayConfig:
    pins: List[int]
    active_high: bool = False


@dataclass
class ElementConfig:
    relay: Optional[RelayConfig] = None
    switch: int = 1
    toggle_delay_sec: float = 0.0


@dataclass
class WebserverConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    forward: str = ""
    publish: str = ""
    api_key: Optional[str] = None


@dataclass
class ProbeConfigs:
    primary: Optional[Dict[str, Any]] = None
    extras: List[Dict[str, Any]] = field(default_factory=list)


def load_document(path) -> Dict[str, Any]:
    """Read the configuration file into a plain mapping."""
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Config file not found at: {path}")
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config root must be an object: {path}")
    return data


class ThermaboxConfig:
    """Validated configuration. Missing optional keys take their defaults."""

    def __init__(self, document: Dict[str, Any]) -> None:
        if not isinstance(document, dict):
            raise ConfigError(f"Config must be a mapping, got: {type(document).__name__}")
        self._doc = document
        self._bind_all()

    def _bind_all(self) -> None:
        doc = self._doc

        # --- LIMITS ---
        self.temperature = self._get_float(doc, "temperature", 0.0)
        self.threshold = self._get_float(doc, "threshold", 0.0)
        if self.threshold < 0:
            raise ConfigError(f"threshold must be non-negative, got {self.threshold}")
        self.cutoff_temperature = self._get_float(doc, "cutoff_temperature", 0.0)
        self.cutoff_at_threshold = self._get_bool(doc, "cutoff_at_threshold", False)
        self.cutoff_precision = self._get_int(doc, "cutoff_precision", 1)
        if self.cutoff_precision < 0:
            raise ConfigError(f"cutoff_precision must be non-negative, got {self.cutoff_precision}")
        self.disabled = self._get_bool(doc, "disabled", False)

        # --- LOOP ---
        self.loop_interval = self._get_float(doc, "loop_interval", 0.5)
        self.probe_grace_sec = self._get_float(doc, "probe_grace_sec", 10.0)
        if self.loop_interval <= 0:
            raise ConfigError(f"loop_interval must be positive, got {self.loop_interval}")

        # --- ELEMENTS ---
        self.shared_relay = self._get_relay(doc, "relay") if "relay" in doc else None
        self.heating_element = self._get_element("heating_element")
        self.cooling_element = self._get_element("cooling_element")
        if self._pin_of(self.heating_element) == self._pin_of(self.cooling_element):
            raise ConfigError("heating_element and cooling_element resolve to the same GPIO pin")

        # --- PROBES ---
        primary = doc.get("probe")
        if primary is not None and not isinstance(primary, dict):
            raise ConfigError("probe must be an object")
        extras = doc.get("extra_probes", [])
        if not isinstance(extras, list) or not all(isinstance(p, dict) for p in extras):
            raise ConfigError("extra_probes must be a list of objects")
        self.probes = ProbeConfigs(primary=primary, extras=list(extras))

        # --- WEBSERVER ---
        self.webserver = self._get_webserver(doc.get("webserver"))

    # Internal retrieval methods
    def _get_float(self, section: Dict[str, Any], key: str, default: float) -> float:
        value = section.get(key, default)
        if isinstance(value, bool):
            raise ConfigError(f"Failed while parsing {key}: {value!r}")
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ConfigError(f"Failed while parsing {key}: {value!r}") from None

    def _get_int(self, section: Dict[str, Any], key: str, default: int) -> int:
        value = section.get(key, default)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"Failed while parsing {key}: expected integer, got {value!r}")
        return value

    def _get_bool(self, section: Dict[str, Any], key: str, default: bool) -> bool:
        value = section.get(key, default)
        if not isinstance(value, bool):
            raise ConfigError(f"Failed while parsing {key}: expected true/false, got {value!r}")
        return value

    def _get_relay(self, section: Dict[str, Any], key: str) -> RelayConfig:
        data = section.get(key)
        if not isinstance(data, dict):
            raise ConfigError(f"{key} must be an object with 'pins'")
        pins = data.get("pins")
        if not isinstance(pins, list) or not pins:
            raise ConfigError(f"{key}.pins must be a non-empty list")
        for pin in pins:
            if isinstance(pin, bool) or not isinstance(pin, int) or pin < 0:
                raise ConfigError(f"{key}.pins contains an invalid GPIO pin: {pin!r}")
        return RelayConfig(pins=list(pins), active_high=self._get_bool(data, "active_high", False))

    def _get_element(self, key: str) -> ElementConfig:
        data = self._doc.get(key)
        if not isinstance(data, dict):
            raise ConfigError(f"Missing or invalid '{key}' section")
        relay = self._get_relay(data, "relay") if "relay" in data else None
        if relay is None and self.shared_relay is None:
            raise ConfigError(f"{key} has no 'relay' and no shared top-level relay is configured")
        switch = self._get_int(data, "switch", 1)
        pins = (relay or self.shared_relay).pins
        if not 1 <= switch <= len(pins):
            raise ConfigError(f"{key}.switch {switch} out of range 1..{len(pins)}")
        toggle_delay = self._get_float(data, "toggle_delay_sec", 0.0)
        if toggle_delay < 0:
            raise ConfigError(f"{key}.toggle_delay_sec must be non-negative")
        return ElementConfig(relay=relay, switch=switch, toggle_delay_sec=toggle_delay)

    def _pin_of(self, element: ElementConfig) -> int:
        relay = element.relay or self.shared_relay
        return relay.pins[element.switch - 1]

    def _get_webserver(self, data: Any) -> Optional[WebserverConfig]:
        if data is None:
            return None
        if not isinstance(data, dict):
            raise ConfigError("webserver must be an object")
        port = self._get_int(data, "port", 8080)
        if not 0 < port < 65536:
            raise ConfigError(f"webserver.port out of range: {port}")
        api_key = data.get("api_key")
        return WebserverConfig(
            host=str(data.get("host", "0.0.0.0")),
            port=port,
            forward=str(data.get("forward") or ""),
            publish=str(data.get("publish") or ""),
            api_key=str(api_key) if api_key else None,
        )


def load_config(path=DEFAULT_CONFIG_PATH) -> ThermaboxConfig:
    return ThermaboxConfig(load_document(path))


def build_thermabox(config: ThermaboxConfig, stop_event: Optional[threading.Event] = None) -> Thermabox:
    """
    Construct and wire every component described by `config`.

    On failure, relays already set up are cleaned up and initialized probes
    closed before the error propagates.
    """
    stop_event = stop_event or threading.Event()
    relays: List[Relay] = []
    probes: List[Probe] = []
    shared: List[Relay] = []

    def relay_for(element: ElementConfig) -> Relay:
        if element.relay is not None:
            relay = Relay(element.relay.active_high, element.relay.pins, cancel_event=stop_event)
            relays.append(relay)
            return relay
        if not shared:
            shared.append(Relay(config.shared_relay.active_high, config.shared_relay.pins,
                                cancel_event=stop_event))
            relays.append(shared[0])
        return shared[0]

    def start_probe(probe_config: Dict[str, Any]) -> Probe:
        probe = build_probe(probe_config, cancel_event=stop_event)
        probe.initialize()
        probes.append(probe)
        return probe

    try:
        heating = Element(relay_for(config.heating_element), config.heating_element.switch,
                          config.heating_element.toggle_delay_sec, name="heating")
        cooling = Element(relay_for(config.cooling_element), config.cooling_element.switch,
                          config.cooling_element.toggle_delay_sec, name="cooling")

        probe = None
        if config.probes.primary is not None:
            probe = start_probe(config.probes.primary)
        extra_probes = []
        for probe_config in config.probes.extras:
            extra = start_probe(probe_config)
            extra_probes.append(extra)
            logger.info("Added extra probe: %s", extra.get_name())
    except ThermaboxError:
        for started in probes:
            started.close()
        for relay in relays:
            relay.cleanup()
        raise

    return Thermabox(
        heating,
        cooling,
        probe=probe,
        temperature=config.temperature,
        threshold=config.threshold,
        cutoff_temperature=config.cutoff_temperature,
        cutoff_at_threshold=config.cutoff_at_threshold,
        cutoff_precision=config.cutoff_precision,
        disabled=config.disabled,
        extra_probes=extra_probes,
        loop_interval=config.loop_interval,
        probe_grace_sec=config.probe_grace_sec,
        stop_event=stop_event,
    )
