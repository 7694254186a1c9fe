"""Database connection management."""

import logging
import sqlite3
from datetime import datetime

import aiosqlite

# Register datetime adapters to avoid the Python 3.12+ default adapter deprecation


def _adapt_datetime(val: datetime) -> str:
    """Convert datetime to ISO format string for SQLite storage."""
    return val.isoformat()


def _convert_datetime(val: bytes) -> datetime:
    """Convert ISO format string from SQLite to datetime."""
    return datetime.fromisoformat(val.decode())


sqlite3.register_adapter(datetime, _adapt_datetime)
sqlite3.register_converter("datetime", _convert_datetime)
sqlite3.register_converter("DATETIME", _convert_datetime)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS tx (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tx_id INTEGER NOT NULL,
    cp_id TEXT NOT NULL,
    conn_id INTEGER NOT NULL,
    id_tag TEXT NOT NULL,
    start_time DATETIME NOT NULL,
    stop_time DATETIME,
    meter_start INTEGER NOT NULL,
    meter_stop INTEGER,
    energy_delivered INTEGER,
    stop_reason TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_tx_cp ON tx (cp_id, start_time);

CREATE TABLE IF NOT EXISTS meter_val (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tx_id INTEGER,
    cp_id TEXT NOT NULL,
    conn_id INTEGER NOT NULL,
    timestamp DATETIME,
    measurand TEXT NOT NULL DEFAULT 'Energy.Active.Import.Register',
    value TEXT NOT NULL,
    unit TEXT NOT NULL DEFAULT 'Wh',
    context TEXT NOT NULL DEFAULT 'Sample.Periodic',
    location TEXT NOT NULL DEFAULT 'Outlet',
    phase TEXT NOT NULL DEFAULT '',
    format TEXT NOT NULL DEFAULT 'Raw',
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_meter_val_tx ON meter_val (tx_id, timestamp);
"""


class Database:
    """Manages the SQLite connection and schema for transaction history."""

    def __init__(self, db_path: str = "gridpilot.db"):
        self.db_path = db_path
        self.connection: aiosqlite.Connection | None = None

    async def connect(self) -> aiosqlite.Connection:
        """Establish database connection with optimized pragmas."""
        if self.connection is None:
            # PARSE_DECLTYPES enables the datetime converters above
            self.connection = await aiosqlite.connect(
                self.db_path, detect_types=sqlite3.PARSE_DECLTYPES
            )
            self.connection.row_factory = aiosqlite.Row

            await self.connection.execute("PRAGMA journal_mode=WAL")
            await self.connection.execute("PRAGMA synchronous=NORMAL")
            await self.connection.execute("PRAGMA temp_store=MEMORY")
        return self.connection

    async def disconnect(self):
        """Close database connection."""
        if self.connection:
            await self.connection.close()
            self.connection = None

    async def initialize_schema(self):
        """Create tables and indexes that do not exist yet."""
        conn = await self.connect()
        await conn.executescript(SCHEMA)
        await conn.commit()
        logger.debug(f"Database schema ready at {self.db_path}")

    async def __aenter__(self):
        """Async context manager entry."""
        return await self.connect()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.disconnect()
