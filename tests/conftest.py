"""Shared test fixtures for fundwatch."""

from decimal import Decimal

import pytest
import pytest_asyncio

from fundwatch.config import AppSettings, CollectorSettings, DatabaseSettings
from fundwatch.data.database import SampleDatabase
from fundwatch.data.store import SampleStore
from fundwatch.instruments import InstrumentRegistry

# A multiple of 5 minutes (2023-11-14T22:10:00Z)
BASE_MS = 1_699_999_800_000


@pytest.fixture
def registry() -> InstrumentRegistry:
    """Small three-instrument registry."""
    return InstrumentRegistry.from_symbols(["BTC/USD", "ETH/USD", "SOL/USD"])


@pytest.fixture
def mock_settings(tmp_path) -> AppSettings:
    """AppSettings with a temporary database and the collector disabled."""
    return AppSettings(
        log_level="DEBUG",
        database=DatabaseSettings(path=str(tmp_path / "fundwatch.db"), pool_size=2),
        collector=CollectorSettings(enabled=False),
    )


@pytest_asyncio.fixture
async def database(tmp_path):
    """Connected SampleDatabase on a fresh SQLite file."""
    db = SampleDatabase(str(tmp_path / "samples.db"), pool_size=3, acquire_timeout=1.0)
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
def store(database: SampleDatabase) -> SampleStore:
    return SampleStore(database)


def rates(*values: str | None) -> list[tuple[int, Decimal | None]]:
    """Build (instrument_id, rate) rows numbered from 1."""
    return [
        (i, Decimal(v) if v is not None else None) for i, v in enumerate(values, 1)
    ]
