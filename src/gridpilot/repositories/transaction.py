"""Repository for completed transactions."""

from ..models import Transaction
from .base import BaseRepository


class TransactionRepository(BaseRepository):
    """Handles database operations for transactions."""

    async def create(self, cp_id: str, tx: Transaction) -> None:
        """Insert a completed transaction."""
        query = """
            INSERT INTO tx (
                tx_id, cp_id, conn_id, id_tag, start_time, stop_time,
                meter_start, meter_stop, energy_delivered, stop_reason
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        await self._execute_and_commit(
            query,
            (
                tx.transaction_id,
                cp_id,
                tx.connector_id,
                tx.id_tag,
                tx.start_time,
                tx.stop_time,
                tx.meter_start,
                tx.meter_stop,
                tx.energy_delivered,
                tx.stop_reason,
            ),
        )

    async def get_by_ocpp_tx_id(self, cp_id: str, ocpp_tx_id: int) -> Transaction | None:
        """Most recent transaction stored under an OCPP transaction ID."""
        row = await self._fetchone(
            "SELECT * FROM tx WHERE cp_id = ? AND tx_id = ? ORDER BY id DESC LIMIT 1",
            (cp_id, ocpp_tx_id),
        )
        if row:
            return self._row_to_model(row)
        return None

    async def get_all_for_cp(self, cp_id: str, limit: int = 100) -> list[Transaction]:
        """Get transactions for a charge point, newest first."""
        rows = await self._fetchall(
            """
            SELECT * FROM tx
            WHERE cp_id = ?
            ORDER BY start_time DESC
            LIMIT ?
            """,
            (cp_id, limit),
        )
        return [self._row_to_model(row) for row in rows]

    def _row_to_model(self, row) -> Transaction:
        return Transaction(
            transaction_id=row["tx_id"],
            connector_id=row["conn_id"],
            id_tag=row["id_tag"],
            start_time=row["start_time"],
            meter_start=row["meter_start"],
            meter_stop=row["meter_stop"],
            stop_time=row["stop_time"],
            stop_reason=row["stop_reason"],
        )
