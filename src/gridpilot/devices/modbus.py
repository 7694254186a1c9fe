"""Modbus TCP client that hides transient connection failures from callers."""

import asyncio
import logging
import struct
from collections.abc import Awaitable, Callable
from typing import TypeVar

from pymodbus.client import AsyncModbusTcpClient

from ..exceptions import DeviceCommunicationError
from ..logging_utils import log_device_event
from ..metrics import GridPilotMetrics

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PORT = 502
TIMEOUT_SECONDS = 10.0


class ResilientRegisterClient:
    """
    One long-lived Modbus TCP connection to a device.

    Every operation runs under a lock because register devices cannot
    multiplex requests on a single session. A failed operation discards the
    connection, opens a fresh one and is retried exactly once; if the retry
    fails too, the original error is raised as DeviceCommunicationError.
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        timeout: float = TIMEOUT_SECONDS,
        client_factory: Callable[..., AsyncModbusTcpClient] = AsyncModbusTcpClient,
    ):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.reconnects = 0
        self._client_factory = client_factory
        self._client: AsyncModbusTcpClient | None = None
        self._lock = asyncio.Lock()
        self._metrics = GridPilotMetrics()

    @property
    def connected(self) -> bool:
        return self._client is not None and self._client.connected

    async def execute(self, operation: Callable[[AsyncModbusTcpClient], Awaitable[T]]) -> T:
        """Run ``operation`` against the live connection, reconnecting once on failure."""
        async with self._lock:
            try:
                return await self._attempt(operation)
            except Exception as first_error:
                log_device_event(
                    logger,
                    "reconnect",
                    "modbus",
                    self.host,
                    level=logging.WARNING,
                    error=str(first_error),
                )
                self._discard()
                self.reconnects += 1
                self._metrics.register_reconnect(self.host)
                try:
                    return await self._attempt(operation)
                except Exception as retry_error:
                    logger.debug(f"Retry against {self.host} failed: {retry_error}")
                    if isinstance(first_error, DeviceCommunicationError):
                        raise first_error from retry_error
                    raise DeviceCommunicationError(self.host, str(first_error)) from first_error

    async def _attempt(self, operation: Callable[[AsyncModbusTcpClient], Awaitable[T]]) -> T:
        client = await self._ensure_connected()
        return await operation(client)

    async def _ensure_connected(self) -> AsyncModbusTcpClient:
        if self._client is None:
            self._client = self._client_factory(self.host, port=self.port, timeout=self.timeout)
        if not self._client.connected:
            if not await self._client.connect():
                raise DeviceCommunicationError(
                    self.host, f"connection to port {self.port} failed"
                )
            log_device_event(logger, "connected", "modbus", self.host, port=self.port)
        return self._client

    def _discard(self):
        if self._client is not None:
            try:
                self._client.close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing {self.host}: {e}")
            self._client = None

    async def close(self):
        """Close the underlying connection."""
        async with self._lock:
            self._discard()

    # Register operations

    async def read_input_registers(self, address: int, count: int, device_id: int) -> list[int]:
        async def operation(client):
            result = await client.read_input_registers(address, count=count, device_id=device_id)
            return self._registers(result, "read input", address)

        return await self.execute(operation)

    async def read_holding_registers(self, address: int, count: int, device_id: int) -> list[int]:
        async def operation(client):
            result = await client.read_holding_registers(address, count=count, device_id=device_id)
            return self._registers(result, "read holding", address)

        return await self.execute(operation)

    async def write_register(self, address: int, value: int, device_id: int) -> None:
        async def operation(client):
            result = await client.write_register(address, value, device_id=device_id)
            self._check(result, "write single", address)

        await self.execute(operation)

    async def write_registers(self, address: int, values: list[int], device_id: int) -> None:
        async def operation(client):
            result = await client.write_registers(address, values, device_id=device_id)
            self._check(result, "write multiple", address)

        await self.execute(operation)

    def _check(self, result, operation: str, address: int):
        if result is None or result.isError():
            raise DeviceCommunicationError(
                self.host, f"{operation} at register {address} failed: {result}"
            )

    def _registers(self, result, operation: str, address: int) -> list[int]:
        self._check(result, operation, address)
        return list(result.registers)


# Big-endian register decoding


def decode_int16(registers: list[int]) -> int:
    return struct.unpack(">h", struct.pack(">H", registers[0]))[0]


def decode_int32(registers: list[int]) -> int:
    return struct.unpack(">i", struct.pack(">HH", registers[0], registers[1]))[0]


def decode_uint32(registers: list[int]) -> int:
    return struct.unpack(">I", struct.pack(">HH", registers[0], registers[1]))[0]


def decode_uint64(registers: list[int]) -> int:
    return struct.unpack(">Q", struct.pack(">HHHH", *registers[:4]))[0]


def encode_int32(value: int) -> list[int]:
    return list(struct.unpack(">HH", struct.pack(">i", value)))
