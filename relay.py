"""
Module: relay.py
Purpose: Confirmed, polarity-aware control of relay boards wired to Raspberry Pi GPIOs.
Provides: Relay, mapping logical switch numbers (1..N) to BCM output pins.
Behavior:
- Pins are set to output mode at construction; no initial level is forced.
- on()/off() write the level and poll the read-back until it matches, since
  electromechanical contacts may need time to settle.
- Unknown switch IDs raise UnknownSwitchError before any GPIO access.
"""

import threading
from typing import Dict, List, Optional

from errors import ConfigError, HardwareError, RelayConfirmError, UnknownSwitchError
from logger import get_logger

try:
    import RPi.GPIO as GPIO
except Exception:  # pragma: no cover - hardware not present
    GPIO = None


class Relay:
    """A bank of relay switches sharing one polarity."""

    def __init__(
        self,
        active_high: bool,
        pins: List[int],
        poll_interval: float = 0.5,
        max_attempts: int = 20,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.logger = get_logger(__name__)
        self._active_high = bool(active_high)
        self.poll_interval = poll_interval
        self.max_attempts = max(1, int(max_attempts))
        self._cancel = cancel_event or threading.Event()
        self._switch_map = self._build_switch_map(pins)

    def _build_switch_map(self, pins: List[int]) -> Dict[int, int]:
        if not isinstance(pins, (list, tuple)) or not pins:
            raise ConfigError(f"Relay pins must be a non-empty list, got: {pins!r}")
        switch_map = {}
        for idx, pin in enumerate(pins, start=1):
            if isinstance(pin, bool) or not isinstance(pin, int) or pin < 0:
                raise ConfigError(f"Invalid GPIO pin in relay pin list: {pin!r}")
            switch_map[idx] = pin

        if GPIO is None:
            raise HardwareError("RPi.GPIO is not available on this system")
        try:
            GPIO.setwarnings(False)
            GPIO.setmode(GPIO.BCM)
            for pin in switch_map.values():
                GPIO.setup(pin, GPIO.OUT)
        except Exception as exc:
            raise HardwareError(f"Failed GPIO setup for pins {list(switch_map.values())}: {exc}") from exc
        self.logger.info(
            "Relay ready (active_%s): %s",
            "high" if self._active_high else "low",
            switch_map,
        )
        return switch_map

    @property
    def active_high(self) -> bool:
        return self._active_high

    def get_switch_map(self) -> Dict[int, int]:
        """Return the logical switch -> BCM pin mapping."""
        return dict(self._switch_map)

    def _pin(self, switch: int) -> int:
        try:
            return self._switch_map[switch]
        except (KeyError, TypeError):
            raise UnknownSwitchError(switch) from None

    def _on_level(self):
        return GPIO.HIGH if self._active_high else GPIO.LOW

    def _off_level(self):
        return GPIO.LOW if self._active_high else GPIO.HIGH

    def _write(self, pin: int, level) -> None:
        try:
            GPIO.output(pin, level)
        except Exception as exc:
            raise HardwareError(f"Failed to write GPIO {pin}: {exc}") from exc

    def _read(self, pin: int):
        try:
            return GPIO.input(pin)
        except Exception as exc:
            raise HardwareError(f"Failed to read GPIO {pin}: {exc}") from exc

    def toggle(self, switch: int) -> None:
        """Flip the pin level without confirmation."""
        pin = self._pin(switch)
        level = self._read(pin)
        self._write(pin, GPIO.LOW if level == GPIO.HIGH else GPIO.HIGH)

    def is_on(self, switch: int) -> bool:
        pin = self._pin(switch)
        return self._read(pin) == self._on_level()

    def on(self, switch: int) -> None:
        self._confirm(switch, True)

    def off(self, switch: int) -> None:
        self._confirm(switch, False)

    def _confirm(self, switch: int, want_on: bool) -> None:
        pin = self._pin(switch)
        level = self._on_level() if want_on else self._off_level()
        label = "on" if want_on else "off"
        for attempt in range(1, self.max_attempts + 1):
            self._write(pin, level)
            if self.is_on(switch) == want_on:
                return
            self.logger.warning(
                "Relay switch %s (GPIO %s) not %s yet, retrying (%s/%s)",
                switch, pin, label, attempt, self.max_attempts,
            )
            if attempt < self.max_attempts and self._cancel.wait(self.poll_interval):
                raise RelayConfirmError(f"Cancelled while turning switch {switch} {label}")
        raise RelayConfirmError(
            f"Switch {switch} (GPIO {pin}) did not turn {label} after {self.max_attempts} attempts"
        )

    def cleanup(self) -> None:
        """Release the relay's pins."""
        if GPIO is None:
            return
        self.logger.info("Cleaning up GPIO %s", list(self._switch_map.values()))
        try:
            GPIO.cleanup(list(self._switch_map.values()))
        except Exception as exc:  # pragma: no cover - hardware not present
            self.logger.exception("GPIO cleanup failed: %s", exc)
