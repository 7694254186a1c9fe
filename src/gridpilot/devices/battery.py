"""SMA battery inverter over Modbus TCP."""

import logging
from dataclasses import dataclass

from ..logging_utils import log_device_event
from ..models import Energy, Power
from .base import RegisterDevice
from .modbus import decode_uint32, decode_uint64, encode_int32

logger = logging.getLogger(__name__)

REGISTER_STATE_OF_CHARGE = 30845  # input, uint32, %
REGISTER_CHARGE_POWER = 31393  # input, uint32, W
REGISTER_DISCHARGE_POWER = 31395  # input, uint32, W
REGISTER_LIFETIME_CHARGE = 31397  # input, uint64, Wh
REGISTER_CONTROL = 40151  # holding, uint32
REGISTER_SETPOINT = 40149  # holding, int32, W

CONTROL_EXTERNAL = 802

# SMA marks unavailable uint32 values with 0xFFFFFFFF
NAN_UINT32 = 0xFFFFFFFF


def _value(registers: list[int]) -> int:
    raw = decode_uint32(registers)
    return 0 if raw == NAN_UINT32 else raw


@dataclass(frozen=True)
class BatteryState:
    state_of_charge: int
    charge_power: Power
    discharge_power: Power
    lifetime_charge: Energy

    @property
    def power(self) -> Power:
        """Net battery power: positive while charging, negative while discharging."""
        return Power(self.charge_power.watts - self.discharge_power.watts)


class SmaBattery(RegisterDevice[BatteryState]):
    kind = "battery"
    device_id = 3

    async def update(self) -> None:
        soc = await self.client.read_input_registers(
            REGISTER_STATE_OF_CHARGE, 2, device_id=self.device_id
        )
        charge = await self.client.read_input_registers(
            REGISTER_CHARGE_POWER, 2, device_id=self.device_id
        )
        discharge = await self.client.read_input_registers(
            REGISTER_DISCHARGE_POWER, 2, device_id=self.device_id
        )
        lifetime = await self.client.read_input_registers(
            REGISTER_LIFETIME_CHARGE, 4, device_id=self.device_id
        )
        self._store(
            BatteryState(
                state_of_charge=_value(soc),
                charge_power=Power(_value(charge)),
                discharge_power=Power(_value(discharge)),
                lifetime_charge=Energy(decode_uint64(lifetime)),
            )
        )

    async def set_charging_power(self, power: Power) -> None:
        """
        Command the battery to charge (positive) or discharge (negative).

        Puts the inverter under external control before writing the setpoint.
        """
        await self.client.write_registers(
            REGISTER_CONTROL, encode_int32(CONTROL_EXTERNAL), device_id=self.device_id
        )
        await self.client.write_registers(
            REGISTER_SETPOINT, encode_int32(power.watts), device_id=self.device_id
        )
        log_device_event(logger, "charging_power", self.kind, self.host, watts=power.watts)
