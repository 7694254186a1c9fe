"""
Configuration for the energy manager.

Configuration is a flat key/value mapping of strings. Values are merged from
built-in defaults, an optional JSON options file and command-line flags (in
increasing precedence), then validated into frozen dataclasses.
"""

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .exceptions import ConfigurationError
from .models import Current, Mode

logger = logging.getLogger(__name__)

UNCONFIGURED_HOST = "0.0.0.0"

DEFAULTS = {
    "maxcurrent": "32",
    "mincurrent": "6",
    "interval": "5",
    "mode": "auto",
}

# device kind -> configuration key holding its host
DEVICE_KEYS = {
    "grid": "gridmeter",
    "charger": "charger",
    "heat_pump": "heatpump",
    "solar": "solar",
    "battery": "battery",
}

REQUIRED_DEVICES = ("grid", "charger", "heat_pump")
OPTIONAL_DEVICES = ("solar", "battery")


@dataclass(frozen=True)
class DeviceConfig:
    kind: str
    host: str
    type_name: Optional[str] = None


@dataclass(frozen=True)
class EnergyManagerSettings:
    """Control-loop parameters."""

    min_current: Current = Current(6)
    max_current: Current = Current(32)
    interval: float = 5.0
    mode: Mode = Mode.AUTO
    manual_current: Optional[Current] = None

    def __post_init__(self):
        if self.min_current > self.max_current:
            raise ConfigurationError(
                f"mincurrent ({self.min_current}) exceeds maxcurrent ({self.max_current})"
            )
        if self.interval <= 0:
            raise ConfigurationError(f"interval must be positive, got {self.interval}")
        if self.manual_current is not None and not self.accepts(self.manual_current):
            raise ConfigurationError(
                f"manualcurrent must be 0 or within "
                f"[{self.min_current.amps}, {self.max_current.amps}] A, got {self.manual_current}"
            )

    def accepts(self, current: Current) -> bool:
        """True if ``current`` may be held in MANUAL mode."""
        return current.amps == 0 or self.min_current <= current <= self.max_current


@dataclass(frozen=True)
class Settings:
    devices: dict[str, DeviceConfig] = field(default_factory=dict)
    energy_manager: EnergyManagerSettings = field(default_factory=EnergyManagerSettings)

    @classmethod
    def from_mapping(cls, config: Mapping[str, str]) -> "Settings":
        """
        Validate a key/value mapping.

        Missing hosts of required devices default to ``0.0.0.0``; a missing
        solar or battery host means that device is not installed.

        Raises:
            ConfigurationError: for malformed numbers or an unknown mode
        """
        values = {**DEFAULTS, **{k: v for k, v in config.items() if v is not None}}

        devices = {}
        for kind, key in DEVICE_KEYS.items():
            host = values.get(key)
            if not host:
                if kind in OPTIONAL_DEVICES:
                    continue
                host = UNCONFIGURED_HOST
            devices[kind] = DeviceConfig(kind, host, values.get(f"{key}.type"))

        manual = values.get("manualcurrent")
        energy_manager = EnergyManagerSettings(
            min_current=_current(values, "mincurrent"),
            max_current=_current(values, "maxcurrent"),
            interval=_number(values, "interval"),
            mode=_mode(values["mode"]),
            manual_current=_current(values, "manualcurrent") if manual not in (None, "") else None,
        )
        return cls(devices=devices, energy_manager=energy_manager)


def _number(values: Mapping[str, str], key: str) -> float:
    try:
        return float(values[key])
    except (TypeError, ValueError):
        raise ConfigurationError(f"{key} must be a number, got {values[key]!r}") from None


def _current(values: Mapping[str, str], key: str) -> Current:
    try:
        return Current(int(values[key]))
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"{key} must be a non-negative whole number of amps, got {values[key]!r}"
        ) from None


def _mode(value: str) -> Mode:
    try:
        return Mode(str(value).lower())
    except ValueError:
        raise ConfigurationError(f"mode must be 'auto' or 'manual', got {value!r}") from None


def load_options(path: str | Path) -> dict[str, str]:
    """
    Read a JSON options file into the key/value mapping.

    The file holds one flat JSON object; device types use dotted keys such as
    ``"charger.type"``. Scalar values are converted to strings.
    """
    try:
        with open(path) as f:
            options: Any = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Failed to load {path}: {e}") from e

    if not isinstance(options, dict):
        raise ConfigurationError(f"{path} must contain a JSON object")

    result = {}
    for key, value in options.items():
        if isinstance(value, (dict, list)):
            raise ConfigurationError(f"{path}: value of {key!r} must be a scalar")
        if value is None:
            continue
        result[key] = str(value).lower() if isinstance(value, bool) else str(value)
    logger.info(f"Loaded configuration from {path}")
    return result


def merge_sources(*sources: Mapping[str, Optional[str]]) -> dict[str, str]:
    """Merge mappings left to right; later non-None values win."""
    merged: dict[str, str] = {}
    for source in sources:
        merged.update({k: v for k, v in source.items() if v is not None})
    return merged
