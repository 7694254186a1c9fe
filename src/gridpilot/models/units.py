"""Physical quantities used throughout the controller.

Each quantity is a distinct type so a voltage can never be passed where a
power is expected. Values are whole numbers in SI base units.
"""

from dataclasses import dataclass


@dataclass(frozen=True, order=True)
class Power:
    """Active power in watts. Positive means consumption/import."""

    watts: int

    def __str__(self) -> str:
        return f"{self.watts} W"


@dataclass(frozen=True, order=True)
class Voltage:
    """RMS voltage in volts."""

    volts: int

    def __post_init__(self):
        if self.volts < 0:
            raise ValueError(f"Voltage cannot be negative: {self.volts}")

    def __str__(self) -> str:
        return f"{self.volts} V"


@dataclass(frozen=True, order=True)
class Current:
    """Current in amperes."""

    amps: int

    def __post_init__(self):
        if self.amps < 0:
            raise ValueError(f"Current cannot be negative: {self.amps}")

    def __str__(self) -> str:
        return f"{self.amps} A"


@dataclass(frozen=True, order=True)
class Energy:
    """Energy in watt-hours."""

    watt_hours: int

    def __post_init__(self):
        if self.watt_hours < 0:
            raise ValueError(f"Energy cannot be negative: {self.watt_hours}")

    def __str__(self) -> str:
        return f"{self.watt_hours} Wh"
