"""Webasto EV charger over Modbus TCP."""

import asyncio
import logging
from dataclasses import dataclass

from ..logging_utils import log_device_event, log_error
from ..metrics import GridPilotMetrics
from ..models import Current, Power
from .base import RegisterDevice
from .modbus import decode_int32

logger = logging.getLogger(__name__)

REGISTER_TOTAL_POWER = 1020  # input, int32, W
REGISTER_MAX_CURRENT = 5004  # holding, A
REGISTER_KEEP_ALIVE = 6000  # holding, write 1

KEEP_ALIVE_INTERVAL_SECONDS = 10.0


@dataclass(frozen=True)
class ChargerState:
    power: Power


class WebastoCharger(RegisterDevice[ChargerState]):
    """
    Webasto charger controlled through its Modbus TCP interface.

    The charger falls back to its minimum charging rate unless the keep-alive
    register is written periodically, so a background task does that on its
    own schedule, independent of the control loop.
    """

    kind = "charger"
    device_id = 1

    def __init__(self, host, client=None, keep_alive_interval: float = KEEP_ALIVE_INTERVAL_SECONDS):
        super().__init__(host, client)
        self.keep_alive_interval = keep_alive_interval
        self._keep_alive_task: asyncio.Task | None = None
        self._metrics = GridPilotMetrics()

    async def update(self) -> None:
        registers = await self.client.read_input_registers(
            REGISTER_TOTAL_POWER, 2, device_id=self.device_id
        )
        self._store(ChargerState(Power(decode_int32(registers))))

    async def set_max_current(self, current: Current) -> None:
        """Write the maximum charging current."""
        await self.client.write_register(REGISTER_MAX_CURRENT, current.amps, device_id=self.device_id)
        log_device_event(logger, "max_current", self.kind, self.host, level=logging.DEBUG, amps=current.amps)

    async def keep_alive(self) -> None:
        """Write the keep-alive register once."""
        await self.client.write_register(REGISTER_KEEP_ALIVE, 1, device_id=self.device_id)

    def start_keep_alive(self) -> asyncio.Task:
        """Start the keep-alive task if it is not already running."""
        if self._keep_alive_task is None or self._keep_alive_task.done():
            self._keep_alive_task = asyncio.create_task(
                self._keep_alive_loop(), name=f"keep-alive-{self.host}"
            )
        return self._keep_alive_task

    async def stop_keep_alive(self) -> None:
        task, self._keep_alive_task = self._keep_alive_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _keep_alive_loop(self) -> None:
        log_device_event(
            logger, "keep_alive_started", self.kind, self.host, interval=self.keep_alive_interval
        )
        while True:
            try:
                await self.keep_alive()
            except Exception as e:
                self._metrics.device_error(self.kind, "keep_alive")
                log_error(
                    logger,
                    "keep_alive_error",
                    f"Keep-alive write to {self.host} failed: {e}",
                    host=self.host,
                )
            await asyncio.sleep(self.keep_alive_interval)

    async def close(self) -> None:
        await self.stop_keep_alive()
        await super().close()
