from .domain import (
    ChargePointSession,
    CombinedState,
    ConnectorState,
    DeviceUpdate,
    MeterValue,
    Mode,
    Transaction,
)
from .units import Current, Energy, Power, Voltage

__all__ = [
    "ChargePointSession",
    "CombinedState",
    "ConnectorState",
    "Current",
    "DeviceUpdate",
    "Energy",
    "MeterValue",
    "Mode",
    "Power",
    "Transaction",
    "Voltage",
]
