"""Repository for meter value operations."""

from ..models import MeterValue
from .base import BaseRepository


class MeterValueRepository(BaseRepository):
    """Handles database operations for meter values."""

    async def create_batch(self, meter_values: list[MeterValue]):
        """Create multiple meter value records efficiently."""
        query = """
            INSERT INTO meter_val (
                tx_id, cp_id, conn_id, timestamp, measurand, value,
                unit, context, location, phase, format
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """

        params = [
            (
                mv.transaction_id,
                mv.cp_id,
                mv.connector_id,
                mv.timestamp,
                mv.measurand,
                mv.value,
                mv.unit,
                mv.context,
                mv.location,
                mv.phase,
                mv.format,
            )
            for mv in meter_values
        ]

        await self.conn.executemany(query, params)
        await self.conn.commit()

    async def get_for_transaction(self, tx_id: int, limit: int = 1000) -> list[MeterValue]:
        """Get meter values for a transaction, oldest first."""
        rows = await self._fetchall(
            """
            SELECT * FROM meter_val
            WHERE tx_id = ?
            ORDER BY timestamp ASC, id ASC
            LIMIT ?
            """,
            (tx_id, limit),
        )
        return [self._row_to_model(row) for row in rows]

    def _row_to_model(self, row) -> MeterValue:
        """Convert database row to MeterValue model."""
        return MeterValue(
            cp_id=row["cp_id"],
            connector_id=row["conn_id"],
            timestamp=row["timestamp"],
            value=row["value"],
            transaction_id=row["tx_id"],
            measurand=row["measurand"],
            unit=row["unit"],
            context=row["context"],
            location=row["location"],
            phase=row["phase"],
            format=row["format"],
        )
