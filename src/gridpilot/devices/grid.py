"""HomeWizard P1 grid meter, read over its local HTTP API."""

import logging
from dataclasses import dataclass

import aiohttp

from ..exceptions import MeterUnavailableError
from ..logging_utils import log_device_event
from ..metrics import GridPilotMetrics
from ..models import Power, Voltage
from .base import Device

logger = logging.getLogger(__name__)

DATA_PATH = "/api/v1/data"
TIMEOUT_SECONDS = 10


@dataclass(frozen=True)
class GridState:
    power: Power
    voltage: Voltage


class P1MeterClient:
    """HTTP client for the meter's ``/api/v1/data`` endpoint."""

    def __init__(self, host: str, timeout: float = TIMEOUT_SECONDS):
        self.host = host
        self.url = f"http://{host}{DATA_PATH}"
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def fetch(self) -> GridState:
        """
        Fetch the current grid power and L1 voltage.

        Raises:
            MeterUnavailableError: on transport errors, timeouts, non-2xx
                responses, a body that is not JSON or one without the
                expected fields
        """
        session = self._get_session()
        try:
            async with session.get(self.url) as resp:
                if not resp.ok:
                    raise MeterUnavailableError(f"GET {self.url} returned {resp.status}")
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            raise MeterUnavailableError(f"GET {self.url} failed: {e}") from e

        try:
            return GridState(
                power=Power(int(data["active_power_w"])),
                voltage=Voltage(int(data["active_voltage_l1_v"])),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MeterUnavailableError(f"Unexpected response from {self.url}: {e}") from e

    async def reset(self) -> None:
        """Close the current session; the next fetch opens a fresh one."""
        await self.close()

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None


class P1GridMeter(Device[GridState]):
    """
    Grid connection point measured by a P1 meter.

    A failed fetch is not raised: the meter's state becomes None and the HTTP
    session is recreated for the next poll.
    """

    kind = "grid"

    def __init__(self, host: str, client: P1MeterClient | None = None):
        super().__init__(host)
        self.client = client or P1MeterClient(host)
        self._metrics = GridPilotMetrics()

    async def update(self) -> None:
        try:
            self._store(await self.client.fetch())
        except MeterUnavailableError as e:
            self._state = None
            self._metrics.device_error(self.kind, "poll")
            log_device_event(
                logger, "unavailable", self.kind, self.host, level=logging.WARNING, error=str(e)
            )
            await self.client.reset()

    async def close(self) -> None:
        await self.client.close()
