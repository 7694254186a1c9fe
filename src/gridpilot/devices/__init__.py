"""
Device adapters.

The set of supported devices is closed: each kind maps to a fixed set of
types, the first of which is the default.
"""

from ..exceptions import ConfigurationError
from .base import Device, RegisterDevice
from .battery import BatteryState, SmaBattery
from .charger import ChargerState, WebastoCharger
from .grid import GridState, P1GridMeter, P1MeterClient
from .heatpump import DaikinHeatPump, HeatPumpState
from .modbus import ResilientRegisterClient
from .solar import SmaSolar, SolarState

DEVICE_TYPES: dict[str, dict[str, type[Device]]] = {
    "grid": {"p1": P1GridMeter},
    "charger": {"webasto": WebastoCharger},
    "heat_pump": {"daikin": DaikinHeatPump},
    "solar": {"sma": SmaSolar},
    "battery": {"sma": SmaBattery},
}


def create_device(kind: str, host: str, type_name: str | None = None) -> Device:
    """
    Instantiate the adapter for a device kind.

    Args:
        kind: One of ``DEVICE_TYPES``
        host: Device address
        type_name: Variant within the kind; defaults to the kind's first type

    Raises:
        ConfigurationError: if the kind or type is not supported
    """
    types = DEVICE_TYPES.get(kind)
    if types is None:
        raise ConfigurationError(f"Unknown device kind: {kind!r}")

    if type_name is None:
        type_name = next(iter(types))
    cls = types.get(type_name.lower())
    if cls is None:
        supported = ", ".join(types)
        raise ConfigurationError(
            f"Unknown {kind} type {type_name!r} (supported: {supported})"
        )
    return cls(host)


__all__ = [
    "BatteryState",
    "ChargerState",
    "DEVICE_TYPES",
    "DaikinHeatPump",
    "Device",
    "GridState",
    "HeatPumpState",
    "P1GridMeter",
    "P1MeterClient",
    "RegisterDevice",
    "ResilientRegisterClient",
    "SmaBattery",
    "SmaSolar",
    "SolarState",
    "WebastoCharger",
    "create_device",
]
