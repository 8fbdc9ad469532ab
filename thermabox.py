"""
Module: thermabox.py
Purpose: Keep an enclosure inside a temperature band by switching heating and
         cooling elements from a primary probe's readings.
Consumes:
- Element instances for heating and cooling.
- A primary Probe (drives control) and optional extra probes (reported only).
Provides:
- Thermabox.step(): one control cycle; Thermabox.run(): the periodic loop.
- Limit/state accessors used by the status server.
- Snapshot fan-out to registered listener queues.
Behavior:
- UNKNOWN/STABLE move to HEATING_UP below target - threshold and to
  COOLING_DOWN above target + threshold.
- HEATING_UP/COOLING_DOWN return to STABLE either on re-entering the band
  (cutoff_at_threshold) or on reaching the target at cutoff_precision places.
- Exceeding cutoff_temperature, or no reading for longer than
  probe_grace_sec, de-energizes both elements and ends the loop.
"""

import math
import threading
import time
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from element import Element
from errors import OverTemperatureError, ProbeReadError, ThermaboxError, ToggleDelayError
from interfaces import State, ThermaboxState
from logger import get_logger
from probes import Probe

MAX_PENDING_DELIVERIES = 16


def round_half_up(value: float, places: int = 1) -> float:
    """Round to `places` decimals, halves away from zero."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


class Thermabox:
    """On/off hysteresis controller for one enclosure."""

    NAME = "thermabox"

    def __init__(
        self,
        heating_element: Element,
        cooling_element: Element,
        probe: Optional[Probe] = None,
        temperature: float = 0.0,
        threshold: float = 0.0,
        cutoff_temperature: float = 0.0,
        cutoff_at_threshold: bool = False,
        cutoff_precision: int = 1,
        disabled: bool = False,
        extra_probes: Optional[List[Probe]] = None,
        loop_interval: float = 0.5,
        probe_grace_sec: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        self.logger = get_logger(__name__)
        self.heating_element = heating_element
        self.cooling_element = cooling_element
        self.cutoff_temperature = float(cutoff_temperature or 0.0)
        self.cutoff_at_threshold = bool(cutoff_at_threshold)
        self.cutoff_precision = int(cutoff_precision)
        self.loop_interval = loop_interval
        self.probe_grace_sec = probe_grace_sec
        self._clock = clock
        self._stop = stop_event or threading.Event()

        # _lock guards state, limits, the disabled flag and the listener registry
        self._lock = threading.Lock()
        self._actuation_lock = threading.Lock()
        self._probe_lock = threading.Lock()

        self._probe = probe
        self._extra_probes: List[Probe] = list(extra_probes or [])
        self._temperature = float(temperature)
        self._threshold = float(threshold)
        self._disabled = bool(disabled)
        self._state = State.UNKNOWN
        self._listeners: Dict[str, Any] = {}
        self._pending: Dict[str, int] = {}
        self._last_reading_at = clock()

    # ---------- Configuration and status accessors ----------

    def get_name(self) -> str:
        return self.NAME

    def set_limits(self, temperature: float, threshold: float) -> None:
        temperature = float(temperature)
        threshold = float(threshold)
        if threshold < 0:
            raise ValueError(f"Threshold must be non-negative, got {threshold}")
        with self._lock:
            self._temperature = temperature
            self._threshold = threshold
        self.logger.info("Limits set to %.2f (+/- %.2f)", temperature, threshold)

    def get_limits(self) -> Tuple[float, float]:
        with self._lock:
            return self._temperature, self._threshold

    def set_probe(self, probe: Probe) -> None:
        with self._lock:
            self._probe = probe
        self.logger.info("Primary probe set to %s", probe.get_name())

    def add_extra_probe(self, probe: Probe) -> None:
        with self._lock:
            self._extra_probes.append(probe)
        self.logger.info("Added extra probe: %s", probe.get_name())

    def get_state(self) -> str:
        with self._lock:
            return self._state.value

    def is_disabled(self) -> bool:
        with self._lock:
            return self._disabled

    def last_reading_age(self) -> float:
        """Seconds since the primary probe last produced a reading."""
        return self._clock() - self._last_reading_at

    def register_channel(self, channel: Any, name: str) -> None:
        """Register a queue-like listener (anything with put()) under `name`."""
        with self._lock:
            if name in self._listeners:
                self.logger.warning("Replacing channel already registered as %s", name)
            self._listeners[name] = channel
            self._pending.setdefault(name, 0)
        self.logger.info("Registered channel: %s", name)

    def unregister_channel(self, name: str) -> None:
        with self._lock:
            self._listeners.pop(name, None)
        self.logger.info("Unregistered channel: %s", name)

    def enable_thermabox(self) -> None:
        with self._lock:
            self._state = State.UNKNOWN
            self._disabled = False
        self.logger.info("Thermabox enabled")

    def disable_thermabox(self) -> None:
        """Suspend actuation and de-energize both elements."""
        with self._actuation_lock:
            with self._lock:
                self._disabled = True
            self.logger.info("Thermabox disabled")
            self._force_off()

    # ---------- Probe reads ----------

    def _read(self, probe: Probe) -> float:
        with self._probe_lock:
            temp = probe.get_temperature()
        if temp is None or not math.isfinite(temp):
            raise ProbeReadError(f"{probe.get_name()}: invalid reading {temp!r}")
        return temp

    def get_temperature(self) -> float:
        with self._lock:
            probe = self._probe
        if probe is None:
            raise ProbeReadError("No temperature probe configured")
        return self._read(probe)

    def _probe_entry(self, probe: Probe) -> Dict[str, Any]:
        try:
            return {"temp": self._read(probe)}
        except ProbeReadError as exc:
            msg = f"Failed to get temperature from probe: {probe.get_name()}: {exc}"
            self.logger.error(msg)
            return {"error": msg}

    def _collect(self, primary_entry: Optional[Dict[str, Any]] = None) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            primary = self._probe
            extras = list(self._extra_probes)
        result = {}
        if primary is not None:
            result[primary.get_name()] = primary_entry if primary_entry is not None else self._probe_entry(primary)
        for probe in extras:
            result[probe.get_name()] = self._probe_entry(probe)
        return result

    def get_all_temperatures(self) -> Dict[str, Dict[str, Any]]:
        """Fresh reading (or error string) from the primary and every extra probe."""
        return self._collect()

    # ---------- Control loop ----------

    def _cutoff_reached(self, temp: float, lower: float, upper: float) -> bool:
        if self.cutoff_at_threshold:
            return lower <= temp <= upper
        value = round_half_up(temp, self.cutoff_precision)
        expected = round_half_up(self._temperature, self.cutoff_precision)
        if self._state == State.HEATING_UP:
            return value >= expected
        if self._state == State.COOLING_DOWN:
            return value <= expected
        return False

    def _transition(self, temp: float) -> List[Tuple[Element, str]]:
        """Advance the state machine. Caller holds _lock."""
        lower = self._temperature - self._threshold
        upper = self._temperature + self._threshold
        if self._state in (State.STABLE, State.UNKNOWN):
            if temp < lower:
                self._state = State.HEATING_UP
                return [(self.cooling_element, "off"), (self.heating_element, "on")]
            if temp > upper:
                self._state = State.COOLING_DOWN
                return [(self.heating_element, "off"), (self.cooling_element, "on")]
            self._state = State.STABLE
            return []
        if self._cutoff_reached(temp, lower, upper):
            self._state = State.STABLE
            return [(self.heating_element, "off"), (self.cooling_element, "off")]
        return []

    def _resume(self, state: State) -> List[Tuple[Element, str]]:
        """Re-issue the active element's on() when an earlier command was refused."""
        if state == State.HEATING_UP:
            active, opposing = self.heating_element, self.cooling_element
        elif state == State.COOLING_DOWN:
            active, opposing = self.cooling_element, self.heating_element
        else:
            return []
        try:
            if active.is_on():
                return []
        except ThermaboxError as exc:
            self.logger.error("Failed to read %s: %s", active.name, exc)
            return []
        return [(opposing, "off"), (active, "on")]

    def _command(self, element: Element, action: str) -> None:
        try:
            getattr(element, action)()
        except ToggleDelayError as exc:
            self.logger.debug("%s", exc)
        except ThermaboxError as exc:
            self.logger.error("Failed to turn %s %s: %s", action, element.name, exc)

    def _force_off(self) -> None:
        for element in (self.heating_element, self.cooling_element):
            try:
                element.off()
            except ThermaboxError as exc:
                self.logger.error("Failed to turn off %s: %s", element.name, exc)

    def _shutdown(self, reason: str) -> None:
        self.logger.critical("Shutting down (%s): turning off all elements", reason)
        with self._actuation_lock:
            self._force_off()

    def step(self) -> Optional[ThermaboxState]:
        """Run one control cycle; return the published snapshot, or None if the read failed."""
        now = self._clock()
        timestamp = int(time.time() * 1000)
        try:
            temp = self.get_temperature()
        except ProbeReadError as exc:
            outage = now - self._last_reading_at
            if outage > self.probe_grace_sec:
                self.logger.error("Failed to get temperature for %.1fs: %s", outage, exc)
                self._shutdown("probe failure")
                raise ProbeReadError(f"No temperature reading for {outage:.1f}s: {exc}") from exc
            self.logger.warning("Failed to get temperature: %s", exc)
            return None
        self._last_reading_at = now

        if self.cutoff_temperature and temp > self.cutoff_temperature:
            self.logger.error("Temperature > cutoff temperature: %.2f > %.2f", temp, self.cutoff_temperature)
            self._shutdown("over-temperature")
            raise OverTemperatureError(
                f"Temperature {temp:.2f} exceeded cutoff {self.cutoff_temperature:.2f}"
            )

        with self._actuation_lock:
            with self._lock:
                previous = self._state
                commands = [] if self._disabled else self._transition(temp)
                state = self._state
                disabled = self._disabled
                target, threshold = self._temperature, self._threshold
            if state != previous:
                self.logger.info("temp=%.2f target=%.2f threshold=%.2f -> %s", temp, target, threshold, state)
            elif not commands and not disabled:
                commands = self._resume(state)
            for element, action in commands:
                self._command(element, action)

        snapshot = ThermaboxState(temp, timestamp, state, self._collect({"temp": temp}))
        self._publish(snapshot)
        self.logger.debug("temp=%s", temp)
        return snapshot

    # ---------- Listener fan-out ----------

    def _publish(self, snapshot: ThermaboxState) -> None:
        with self._lock:
            listeners = []
            for name, channel in self._listeners.items():
                if self._pending.get(name, 0) >= MAX_PENDING_DELIVERIES:
                    self.logger.warning("Channel %s is not draining; dropping state", name)
                    continue
                self._pending[name] = self._pending.get(name, 0) + 1
                listeners.append((name, channel))
        for name, channel in listeners:
            threading.Thread(
                target=self._deliver,
                args=(name, channel, snapshot.copy()),
                name=f"thermabox-deliver-{name}",
                daemon=True,
            ).start()

    def _deliver(self, name: str, channel: Any, snapshot: ThermaboxState) -> None:
        try:
            channel.put(snapshot)
        except Exception as exc:
            self.logger.error("Failed to deliver state to channel %s: %s", name, exc)
        finally:
            with self._lock:
                if name in self._pending:
                    self._pending[name] -= 1

    # ---------- Lifecycle ----------

    def stop(self) -> None:
        self._stop.set()

    def close(self) -> None:
        """Close every probe and release the elements' GPIO pins."""
        with self._lock:
            probes = ([self._probe] if self._probe is not None else []) + list(self._extra_probes)
        for probe in probes:
            probe.close()
        relays = []
        for element in (self.heating_element, self.cooling_element):
            if element.relay not in relays:
                relays.append(element.relay)
        for relay in relays:
            relay.cleanup()

    def run(self) -> None:
        """
        Run the control loop until stop() is called.

        Raises OverTemperatureError or ProbeReadError on a fatal condition,
        after both elements have been turned off.
        """
        with self._lock:
            self._state = State.UNKNOWN
            target, threshold = self._temperature, self._threshold
        self._last_reading_at = self._clock()
        self.logger.info(
            "Thermabox running: target=%.2f threshold=%.2f cutoff=%.2f",
            target, threshold, self.cutoff_temperature,
        )
        try:
            while not self._stop.is_set():
                started = self._clock()
                self.step()
                remaining = self.loop_interval - (self._clock() - started)
                if remaining > 0:
                    self._stop.wait(remaining)
        except ThermaboxError as exc:
            self.logger.critical("Control loop terminated at %s: %s", time.strftime("%Y-%m-%d %H:%M:%S"), exc)
            raise
        self.logger.info("Control loop stopped")
        with self._actuation_lock:
            self._force_off()
