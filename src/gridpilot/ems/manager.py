"""Energy-balancing control loop for the EV charger."""

import asyncio
import logging
import math
from typing import Optional

from ..config import EnergyManagerSettings
from ..devices import Device, P1GridMeter, WebastoCharger
from ..logging_utils import log_error
from ..metrics import GridPilotMetrics
from ..models import CombinedState, Current, Mode
from .publisher import StatePublisher

logger = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def compute_setpoint(state: CombinedState, min_current: Current, max_current: Current) -> Current:
    """
    Charging current for the charger in AUTO mode.

    The power available to the charger is what it draws now plus whatever is
    being exported (negative grid power). Without grid power, grid voltage and
    charger power the setpoint is 0, asking the charger for no current.
    """
    if state.grid_power is None or state.grid_voltage is None or state.charger_power is None:
        return Current(0)
    if state.grid_voltage.volts == 0:
        return Current(0)

    available = state.charger_power.watts - state.grid_power.watts
    if available <= 0:
        return min_current

    amps = available / state.grid_voltage.volts
    return Current(round_half_up(max(min(amps, max_current.amps), min_current.amps)))


class EnergyManager:
    """
    Polls every device once per cycle and writes the charger setpoint.

    A failed poll only blanks that device's field in the cycle's
    CombinedState; the loop itself never stops on a device error.
    """

    def __init__(
        self,
        settings: EnergyManagerSettings,
        grid: P1GridMeter,
        charger: WebastoCharger,
        heat_pump: Device,
        solar: Optional[Device] = None,
        battery: Optional[Device] = None,
        publisher: Optional[StatePublisher[CombinedState]] = None,
    ):
        self.settings = settings
        self.grid = grid
        self.charger = charger
        self.heat_pump = heat_pump
        self.solar = solar
        self.battery = battery
        self.publisher = publisher or StatePublisher(CombinedState())
        self.mode = settings.mode
        self.current_max_amps = Current(0)
        if self.mode is Mode.MANUAL and settings.manual_current is not None:
            self.current_max_amps = settings.manual_current
        self._metrics = GridPilotMetrics()

    @property
    def state(self) -> CombinedState:
        return self.publisher.value

    def set_manual(self, current: Current) -> None:
        """Hold ``current`` until switched back to AUTO."""
        if not self.settings.accepts(current):
            raise ValueError(
                f"Manual current must be 0 or within [{self.settings.min_current.amps}, "
                f"{self.settings.max_current.amps}] A, got {current}"
            )
        self.mode = Mode.MANUAL
        self.current_max_amps = current
        logger.info(f"Switched to MANUAL mode at {current}")

    def set_auto(self) -> None:
        self.mode = Mode.AUTO
        logger.info("Switched to AUTO mode")

    async def _poll(self, device: Optional[Device]):
        if device is None:
            return None
        try:
            await device.update()
        except Exception as e:
            self._metrics.device_error(device.kind, "poll")
            log_error(
                logger,
                "device_poll_error",
                f"Polling {device.kind} at {device.host} failed: {e}",
                device=device.kind,
                host=device.host,
            )
            return None
        return device.reading

    async def poll(self) -> CombinedState:
        """Poll all devices in turn and combine their readings."""
        grid = await self._poll(self.grid)
        charger = await self._poll(self.charger)
        heat_pump = await self._poll(self.heat_pump)
        solar = await self._poll(self.solar)
        battery = await self._poll(self.battery)

        return CombinedState(
            grid_power=grid.power if grid else None,
            grid_voltage=grid.voltage if grid else None,
            charger_power=charger.power if charger else None,
            heat_pump_power=heat_pump.power if heat_pump else None,
            solar_power=solar.power if solar else None,
            battery_power=battery.power if battery else None,
            battery_charge=battery.state_of_charge if battery else None,
        )

    async def run_cycle(self) -> CombinedState:
        """Run one control cycle and return the state it was based on."""
        state = await self.poll()

        if self.mode is Mode.AUTO:
            self.current_max_amps = compute_setpoint(
                state, self.settings.min_current, self.settings.max_current
            )

        logger.info(
            f"{self.mode.name} mode, setting charger to {self.current_max_amps}",
            extra={
                "event_type": "ems_cycle",
                "event_data": {
                    "mode": self.mode.value,
                    "setpoint_amps": self.current_max_amps.amps,
                    **state.to_dict(),
                },
            },
        )

        try:
            await self.charger.set_max_current(self.current_max_amps)
        except Exception as e:
            self._metrics.device_error(self.charger.kind, "set_max_current")
            log_error(
                logger,
                "device_write_error",
                f"Setting charger current at {self.charger.host} failed: {e}",
                device=self.charger.kind,
                host=self.charger.host,
            )

        self.publisher.publish(state)
        self._metrics.cycle_completed(state, self.current_max_amps, self.mode)
        return state

    async def run(self) -> None:
        """Run cycles every ``interval`` seconds until cancelled."""
        self.charger.start_keep_alive()
        try:
            while True:
                await self.run_cycle()
                await asyncio.sleep(self.settings.interval)
        finally:
            await self.charger.stop_keep_alive()

    async def close(self) -> None:
        for device in (self.grid, self.charger, self.heat_pump, self.solar, self.battery):
            if device is not None:
                await device.close()
