"""Storage port for completed transactions and meter values."""

import logging
from typing import Optional, Protocol

import aiosqlite

from ..models import MeterValue, Transaction
from .meter_value import MeterValueRepository
from .transaction import TransactionRepository

logger = logging.getLogger(__name__)


class TransactionStore(Protocol):
    """Receives transaction history as a side effect of OCPP handling."""

    async def persist_transaction(self, cp_id: str, transaction: Transaction) -> None: ...

    async def persist_meter_values(
        self,
        cp_id: str,
        connector_id: int,
        transaction_id: Optional[int],
        meter_values: list[MeterValue],
    ) -> None: ...


class DiscardingStore:
    """Drops everything; the session manager keeps only active transactions."""

    async def persist_transaction(self, cp_id: str, transaction: Transaction) -> None:
        logger.debug(f"Discarding completed transaction {transaction.transaction_id} from {cp_id}")

    async def persist_meter_values(self, cp_id, connector_id, transaction_id, meter_values) -> None:
        logger.debug(f"Discarding {len(meter_values)} meter values from {cp_id}/{connector_id}")


class SqliteTransactionStore:
    """Writes completed transactions and meter values to SQLite."""

    def __init__(self, connection: aiosqlite.Connection):
        self.tx_repo = TransactionRepository(connection)
        self.meter_repo = MeterValueRepository(connection)

    async def persist_transaction(self, cp_id: str, transaction: Transaction) -> None:
        await self.tx_repo.create(cp_id, transaction)

    async def persist_meter_values(self, cp_id, connector_id, transaction_id, meter_values) -> None:
        if meter_values:
            await self.meter_repo.create_batch(meter_values)
