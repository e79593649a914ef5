"""Async SQLite connection pool for the sample store.

Uses aiosqlite connections in autocommit mode with WAL journaling, so each
reader sees the last committed state while the collector writes. Transactions
are opened explicitly with BEGIN IMMEDIATE by the store.
"""

import asyncio
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Self

import aiosqlite

from fundwatch.exceptions import StorageError
from fundwatch.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS samples (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp_ms INTEGER NOT NULL,
    reference_value TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT unique_sample_timestamp UNIQUE (timestamp_ms)
);

CREATE TABLE IF NOT EXISTS rate_observations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    sample_id INTEGER NOT NULL,
    instrument_id INTEGER NOT NULL,
    rate TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT fk_sample
        FOREIGN KEY (sample_id)
        REFERENCES samples (id)
        ON DELETE CASCADE,
    CONSTRAINT unique_sample_instrument
        UNIQUE (sample_id, instrument_id)
);
"""

_CREATE_INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_samples_timestamp
    ON samples(timestamp_ms DESC);

CREATE INDEX IF NOT EXISTS idx_rate_observations_instrument
    ON rate_observations(instrument_id);

CREATE INDEX IF NOT EXISTS idx_rate_observations_sample
    ON rate_observations(sample_id);
"""

# LEFT JOIN so a sample whose instruments were all omitted still shows up
_CREATE_VIEWS_SQL = """
CREATE VIEW IF NOT EXISTS latest_sample_observations AS
SELECT
    s.id AS sample_id,
    s.timestamp_ms,
    s.reference_value,
    o.instrument_id,
    o.rate
FROM samples s
LEFT JOIN rate_observations o ON o.sample_id = s.id
WHERE s.id = (
    SELECT id FROM samples
    ORDER BY timestamp_ms DESC
    LIMIT 1
);
"""


class SampleDatabase:
    """Fixed-size pool of aiosqlite connections on one SQLite file.

    Manages database lifecycle including schema creation, pragma
    configuration, connection lending and clean resource cleanup.

    Usage:
        # Context manager (recommended)
        async with SampleDatabase("data/fundwatch.db") as db:
            async with db.acquire() as conn:
                await conn.execute("SELECT ...")

        # Manual lifecycle
        db = SampleDatabase("data/fundwatch.db")
        await db.connect()
        try:
            async with db.transaction() as conn:
                await conn.execute("INSERT ...")
        finally:
            await db.close()
    """

    def __init__(
        self,
        db_path: str = "data/fundwatch.db",
        pool_size: int = 5,
        acquire_timeout: float = 5.0,
        busy_timeout_ms: int = 5000,
    ) -> None:
        if pool_size < 1:
            raise ValueError("pool_size must be at least 1")
        self._db_path = db_path
        # Every ":memory:" connection is a separate database
        self._pool_size = 1 if db_path == ":memory:" else pool_size
        self._acquire_timeout = acquire_timeout
        self._busy_timeout_ms = busy_timeout_ms
        self._connections: list[aiosqlite.Connection] = []
        self._pool: asyncio.Queue[aiosqlite.Connection] | None = None
        self._resets: set[asyncio.Future[None]] = set()

    @property
    def db_path(self) -> str:
        return self._db_path

    @property
    def pool_size(self) -> int:
        return self._pool_size

    @property
    def connected(self) -> bool:
        return self._pool is not None

    async def connect(self) -> None:
        """Open the pooled connections, configure pragmas, and create schema.

        Creates the parent directory if it does not exist.
        """
        if self._pool is not None:
            return

        db_dir = os.path.dirname(self._db_path)
        if db_dir and self._db_path != ":memory:":
            os.makedirs(db_dir, exist_ok=True)

        pool: asyncio.Queue[aiosqlite.Connection] = asyncio.Queue()
        try:
            for _ in range(self._pool_size):
                connection = await self._open_connection()
                self._connections.append(connection)
                pool.put_nowait(connection)

            await self._create_schema(self._connections[0])
            await self._ensure_schema_version(self._connections[0])
        except aiosqlite.Error as exc:
            await self._close_connections()
            raise StorageError(f"Failed to open database {self._db_path}: {exc}") from exc

        self._pool = pool
        logger.info(
            "sample_db_connected",
            db_path=self._db_path,
            pool_size=self._pool_size,
        )

    async def close(self) -> None:
        """Close every pooled connection."""
        if self._pool is None and not self._connections:
            return
        self._pool = None
        if self._resets:
            await asyncio.gather(*self._resets, return_exceptions=True)
        await self._close_connections()
        logger.info("sample_db_closed", db_path=self._db_path)

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[aiosqlite.Connection]:
        """Lend one pooled connection for the duration of the block.

        A connection that comes back with an open transaction, or from a
        block that raised, is rolled back before it is pooled again.

        Raises StorageError if the pool is closed or no connection becomes
        free within acquire_timeout seconds.
        """
        pool = self._pool
        if pool is None:
            raise StorageError("Database not connected. Call connect() first.")
        try:
            connection = await asyncio.wait_for(pool.get(), timeout=self._acquire_timeout)
        except asyncio.TimeoutError as exc:
            logger.warning(
                "connection_pool_exhausted",
                pool_size=self._pool_size,
                timeout=self._acquire_timeout,
            )
            raise StorageError(
                f"No database connection available after {self._acquire_timeout}s"
            ) from exc
        clean = False
        try:
            yield connection
            clean = not connection.in_transaction
        finally:
            if clean:
                pool.put_nowait(connection)
            else:
                # Shielded so a second cancellation cannot return the
                # connection with a transaction still open.
                reset = asyncio.ensure_future(self._reset(pool, connection))
                self._resets.add(reset)
                reset.add_done_callback(self._resets.discard)
                await asyncio.shield(reset)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Lend a connection inside BEGIN IMMEDIATE ... COMMIT.

        Any exception raised in the block, or while beginning or committing
        (including cancellation), leaves the transaction open; acquire()
        rolls it back before the connection returns to the pool.
        """
        async with self.acquire() as connection:
            await connection.execute("BEGIN IMMEDIATE")
            yield connection
            await connection.execute("COMMIT")

    async def _reset(
        self, pool: asyncio.Queue[aiosqlite.Connection], connection: aiosqlite.Connection
    ) -> None:
        """Roll back whatever the borrower left open, then return the connection.

        The rollback is queued on the connection's worker thread behind any
        statement a cancelled borrower left running (such as a BEGIN still
        waiting on the write lock), so it always runs after that statement.
        """
        try:
            await connection.rollback()
        except aiosqlite.Error as exc:
            logger.error("connection_reset_failed", error=str(exc))
        finally:
            pool.put_nowait(connection)

    async def _open_connection(self) -> aiosqlite.Connection:
        connection = await aiosqlite.connect(self._db_path, isolation_level=None)
        await connection.execute("PRAGMA journal_mode=WAL")
        await connection.execute("PRAGMA synchronous=NORMAL")
        await connection.execute("PRAGMA foreign_keys=ON")
        await connection.execute(f"PRAGMA busy_timeout={int(self._busy_timeout_ms)}")
        return connection

    async def _close_connections(self) -> None:
        connections, self._connections = self._connections, []
        for connection in connections:
            await connection.close()

    async def _create_schema(self, connection: aiosqlite.Connection) -> None:
        """Create all tables, indexes and views if they do not exist."""
        await connection.executescript(_CREATE_TABLES_SQL)
        await connection.executescript(_CREATE_INDEXES_SQL)
        await connection.executescript(_CREATE_VIEWS_SQL)

    async def _ensure_schema_version(self, connection: aiosqlite.Connection) -> None:
        """Insert schema version if not already set."""
        cursor = await connection.execute("SELECT version FROM schema_version LIMIT 1")
        row = await cursor.fetchone()
        if row is None:
            await connection.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            logger.info("schema_version_set", version=SCHEMA_VERSION)

    async def __aenter__(self) -> Self:
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        """Async context manager exit."""
        await self.close()
