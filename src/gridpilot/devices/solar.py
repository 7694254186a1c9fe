"""SMA solar inverter over Modbus TCP."""

from dataclasses import dataclass

from ..models import Power
from .base import RegisterDevice
from .modbus import decode_int32

REGISTER_TOTAL_POWER = 30775  # input, int32, W


@dataclass(frozen=True)
class SolarState:
    power: Power


class SmaSolar(RegisterDevice[SolarState]):
    kind = "solar"
    device_id = 3

    async def update(self) -> None:
        registers = await self.client.read_input_registers(
            REGISTER_TOTAL_POWER, 2, device_id=self.device_id
        )
        watts = decode_int32(registers)
        # SMA reports 0x80000000 (NaN) at night
        self._store(SolarState(Power(max(watts, 0))))
