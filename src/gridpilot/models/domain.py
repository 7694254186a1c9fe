"""Domain models for the energy manager and the OCPP central system."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from ocpp.v16.enums import ChargePointErrorCode, ChargePointStatus, RegistrationStatus

from .units import Power, Voltage

T = TypeVar("T")


def utc_now() -> datetime:
    return datetime.now(UTC)


class Mode(str, Enum):
    """How the charger setpoint is chosen each cycle."""

    AUTO = "auto"
    MANUAL = "manual"


@dataclass(frozen=True)
class DeviceUpdate(Generic[T]):
    """A reading together with the moment it was taken."""

    timestamp: datetime
    reading: T


@dataclass(frozen=True)
class CombinedState:
    """
    Snapshot of all device readings from one control cycle.

    Every field is independently optional: ``None`` means the poll of that
    device failed (or the device is not installed) in this cycle.
    """

    grid_power: Optional[Power] = None
    grid_voltage: Optional[Voltage] = None
    charger_power: Optional[Power] = None
    heat_pump_power: Optional[Power] = None
    solar_power: Optional[Power] = None
    battery_power: Optional[Power] = None
    battery_charge: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        """Plain values for JSON consumers."""
        return {
            "grid_power_w": self.grid_power.watts if self.grid_power else None,
            "grid_voltage_v": self.grid_voltage.volts if self.grid_voltage else None,
            "charger_power_w": self.charger_power.watts if self.charger_power else None,
            "heat_pump_power_w": self.heat_pump_power.watts if self.heat_pump_power else None,
            "solar_power_w": self.solar_power.watts if self.solar_power else None,
            "battery_power_w": self.battery_power.watts if self.battery_power else None,
            "battery_charge_pct": self.battery_charge,
        }


@dataclass
class ConnectorState:
    """Latest reported state of one connector on a charge point."""

    connector_id: int
    status: ChargePointStatus = ChargePointStatus("Available")
    error_code: ChargePointErrorCode = ChargePointErrorCode("NoError")
    last_status_update: datetime = field(default_factory=utc_now)
    current_transaction_id: Optional[int] = None


@dataclass
class Transaction:
    """A charging transaction, open until StopTransaction arrives."""

    transaction_id: int
    connector_id: int
    id_tag: str
    start_time: datetime
    meter_start: int
    meter_stop: Optional[int] = None
    stop_time: Optional[datetime] = None
    stop_reason: Optional[str] = None

    @property
    def energy_delivered(self) -> Optional[int]:
        """Wh delivered, once the transaction has been stopped."""
        if self.meter_stop is None:
            return None
        return self.meter_stop - self.meter_start


@dataclass
class MeterValue:
    """One sampled value from a MeterValues or StopTransaction message."""

    cp_id: str
    connector_id: int
    timestamp: Optional[datetime]
    # SampledValue.value is a string; SignedData samples are not numeric
    value: str
    transaction_id: Optional[int] = None
    measurand: str = "Energy.Active.Import.Register"
    unit: str = "Wh"
    context: str = "Sample.Periodic"
    location: str = "Outlet"
    phase: str = ""
    format: str = "Raw"


@dataclass
class ChargePointSession:
    """State of one connected charge point, alive for the WebSocket's lifetime."""

    charge_point_id: str
    connection: Any
    connected_at: datetime = field(default_factory=utc_now)
    last_heartbeat: datetime = field(default_factory=utc_now)
    boot_notification_received: bool = False
    registration_status: RegistrationStatus = RegistrationStatus("Pending")
    connectors: dict[int, ConnectorState] = field(default_factory=dict)
    transactions: dict[int, Transaction] = field(default_factory=dict)
    configuration: dict[str, str] = field(default_factory=dict)
    # unique id -> action of outbound CALLs not yet answered
    pending_calls: dict[str, str] = field(default_factory=dict)

    def connector(self, connector_id: int) -> ConnectorState:
        """Return the connector, creating it on first reference."""
        if connector_id not in self.connectors:
            self.connectors[connector_id] = ConnectorState(connector_id)
        return self.connectors[connector_id]
