"""Pytest configuration and fixtures."""

import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from gridpilot.database import Database
from gridpilot.handlers import OcppMessageRouter, OcppSessionManager


@pytest.fixture
async def temp_db():
    """Create a temporary SQLite database for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as tmp:
        db_path = tmp.name

    db = Database(db_path)
    await db.initialize_schema()

    yield db

    await db.disconnect()
    Path(db_path).unlink(missing_ok=True)


@pytest.fixture
async def db_connection(temp_db):
    """Provide a database connection for testing."""
    conn = await temp_db.connect()
    yield conn


@pytest.fixture
def mock_connection():
    """Stand-in for a WebSocket connection with an async ``send``."""
    connection = MagicMock()
    connection.send = AsyncMock()
    return connection


@pytest.fixture
def session_manager():
    return OcppSessionManager()


@pytest.fixture
def router(session_manager):
    return OcppMessageRouter(session_manager)


@pytest.fixture
def sample_boot_notification():
    """Sample BootNotification message payload."""
    return {
        "chargePointVendor": "TestVendor",
        "chargePointModel": "TestModel",
        "chargePointSerialNumber": "TEST-001",
        "firmwareVersion": "1.0.0",
    }
