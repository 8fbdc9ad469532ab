"""Thermabox exceptions."""


class ThermaboxError(Exception):
    """Base thermabox error."""
    pass


class ConfigError(ThermaboxError):
    """Malformed configuration. Fatal at startup."""
    pass


class HardwareError(ThermaboxError):
    """GPIO subsystem unavailable or a pin read/write failed."""
    pass


class RelayConfirmError(HardwareError):
    """Relay never reported the requested level."""
    pass


class UnknownSwitchError(ThermaboxError):
    """Switch ID not present in the relay's switch map."""

    def __init__(self, switch):
        super().__init__(f"Switch {switch} not initialized in relay")
        self.switch = switch


class ToggleDelayError(ThermaboxError):
    """Element re-activated before its toggle delay elapsed."""
    pass


class ConnectError(ThermaboxError):
    """Probe could not be initialized."""
    pass


class ProbeReadError(ThermaboxError):
    """Probe failed to produce a temperature."""
    pass


class OverTemperatureError(ThermaboxError):
    """Reading exceeded the absolute cutoff temperature."""
    pass
