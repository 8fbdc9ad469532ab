"""Debounced heating/cooling element driven through one relay switch."""

import time
from typing import Callable, Optional

from errors import ToggleDelayError
from logger import get_logger
from relay import Relay


class Element:
    """Relay-backed actuator with a minimum idle time between activations."""

    def __init__(
        self,
        relay: Relay,
        switch: int = 1,
        toggle_delay: float = 0.0,
        name: str = "element",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.logger = get_logger(__name__)
        self.relay = relay
        self.switch = switch
        self.toggle_delay = float(toggle_delay)
        self.name = name
        self._clock = clock
        self._last_off: Optional[float] = None

    def on(self) -> None:
        """Activate unless the toggle delay since the last off() is still running."""
        if self.toggle_delay > 0 and self._last_off is not None:
            idle = self._clock() - self._last_off
            if idle < self.toggle_delay:
                raise ToggleDelayError(
                    f"{self.name}: minimum delay not elapsed ({idle:.1f}s < {self.toggle_delay:.1f}s)"
                )
        self.relay.on(self.switch)

    def off(self) -> None:
        self._last_off = self._clock()
        self.relay.off(self.switch)

    def toggle(self) -> None:
        if self.relay.is_on(self.switch):
            self.off()
        else:
            self.on()

    def is_on(self) -> bool:
        return self.relay.is_on(self.switch)

    def __repr__(self) -> str:
        return (f"Element(name={self.name}, switch={self.switch}, "
                f"toggle_delay={self.toggle_delay}s)")
