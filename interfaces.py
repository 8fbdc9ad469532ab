"""Shared thermabox types: controller state and published snapshots."""

import copy
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict


class State(str, Enum):
    UNKNOWN = "unknown"
    HEATING_UP = "heating_up"
    COOLING_DOWN = "cooling_down"
    STABLE = "stable"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ThermaboxState:
    """Snapshot of one control cycle, handed to every registered listener."""

    temperature: float
    timestamp: int
    state: State
    extras: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def copy(self) -> "ThermaboxState":
        """Return an independent copy; extras are never shared."""
        return replace(self, extras=copy.deepcopy(self.extras))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "temperature": self.temperature,
            "timestamp": self.timestamp,
            "state": self.state.value,
            "extras": copy.deepcopy(self.extras),
        }
