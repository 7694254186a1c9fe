"""Daikin heat pump, read through the Daikin Home Hub's Modbus TCP interface."""

from dataclasses import dataclass

from ..models import Power
from .base import RegisterDevice
from .modbus import decode_int16

REGISTER_TOTAL_POWER = 50  # input, int16, tens of watts


@dataclass(frozen=True)
class HeatPumpState:
    power: Power


class DaikinHeatPump(RegisterDevice[HeatPumpState]):
    kind = "heat_pump"
    device_id = 1

    async def update(self) -> None:
        registers = await self.client.read_input_registers(
            REGISTER_TOTAL_POWER, 1, device_id=self.device_id
        )
        self._store(HeatPumpState(Power(decode_int16(registers) * 10)))
