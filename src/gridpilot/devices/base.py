"""Capability interface shared by every device adapter."""

import logging
from abc import ABC, abstractmethod
from typing import Generic, Optional, TypeVar

from ..models import DeviceUpdate
from ..models.domain import utc_now
from .modbus import ResilientRegisterClient

logger = logging.getLogger(__name__)

R = TypeVar("R")


class Device(ABC, Generic[R]):
    """
    A polled device.

    ``update()`` performs one round of polling and caches the reading;
    ``state`` returns the last successful reading without blocking, or None
    if no poll has succeeded yet.
    """

    kind: str = "device"

    def __init__(self, host: str):
        self.host = host
        self._state: Optional[DeviceUpdate[R]] = None

    @property
    def state(self) -> Optional[DeviceUpdate[R]]:
        return self._state

    @property
    def reading(self) -> Optional[R]:
        """Shortcut for the cached reading itself."""
        return self._state.reading if self._state else None

    def _store(self, reading: R) -> DeviceUpdate[R]:
        self._state = DeviceUpdate(utc_now(), reading)
        return self._state

    @abstractmethod
    async def update(self) -> None:
        """Poll the device and refresh the cached state."""

    async def close(self) -> None:
        """Release connections held by the adapter."""


class RegisterDevice(Device[R]):
    """A device reached through a ResilientRegisterClient."""

    #: Modbus unit / device id
    device_id: int = 1

    def __init__(self, host: str, client: ResilientRegisterClient | None = None):
        super().__init__(host)
        self.client = client or ResilientRegisterClient(host)

    async def close(self) -> None:
        await self.client.close()
