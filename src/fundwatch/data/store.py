"""Typed SQLite read/write abstraction for collected samples.

Provides SampleStore with typed methods for inserting one sample atomically
and for range, latest and statistics reads. All SQL is isolated behind this
interface.

CRITICAL: All prices and rates stored as TEXT in SQLite, restored as Decimal
on read. Averages are computed in Python over Decimal values, never with
SQLite's floating point AVG().
"""

from collections import defaultdict
from collections.abc import Iterable, Sequence
from decimal import Decimal

import aiosqlite

from fundwatch.data.database import SampleDatabase
from fundwatch.data.models import (
    InstrumentPoint,
    InstrumentRateStats,
    RateObservation,
    ReferenceValueStats,
    Sample,
)
from fundwatch.exceptions import DuplicateTimestampError, NotFoundError, StorageError, ValidationError
from fundwatch.logging import get_logger

logger = get_logger(__name__)

_SAMPLE_TIMESTAMP_CONSTRAINT = "samples.timestamp_ms"


def _to_decimal(raw: str | None) -> Decimal | None:
    return Decimal(raw) if raw is not None else None


def _to_text(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


def _mean(values: Sequence[Decimal]) -> Decimal:
    """True arithmetic mean over Decimal values."""
    return sum(values, Decimal("0")) / Decimal(len(values))


def _check_range(start_ms: int, end_ms: int) -> None:
    if start_ms > end_ms:
        raise ValidationError(f"startTime {start_ms} is after endTime {end_ms}")


def _group_samples(rows: Iterable[tuple]) -> list[Sample]:
    """Fold (id, timestamp, reference, instrument_id, rate) rows into Samples.

    Rows must already be ordered by sample then instrument id; the order of
    first appearance of each sample is preserved.
    """
    samples: dict[int, Sample] = {}
    for sample_id, timestamp_ms, reference_value, instrument_id, rate in rows:
        sample = samples.get(sample_id)
        if sample is None:
            sample = Sample(
                id=sample_id,
                timestamp_ms=timestamp_ms,
                reference_value=Decimal(reference_value),
            )
            samples[sample_id] = sample
        if instrument_id is not None:
            sample.observations.append(
                RateObservation(instrument_id=instrument_id, rate=_to_decimal(rate))
            )
    return list(samples.values())


class SampleStore:
    """Async SQLite store for samples and their rate observations.

    Wraps SampleDatabase with typed read/write methods. Every call borrows
    its own pooled connection, so a read never sees a half-written sample.

    Usage:
        async with SampleDatabase("data/fundwatch.db") as database:
            store = SampleStore(database)
            sample_id = await store.insert_sample(ts, Decimal("1.02"), rates)
    """

    def __init__(self, database: SampleDatabase) -> None:
        self._database = database

    # ──────────────────────────────────────────────
    # Write methods
    # ──────────────────────────────────────────────

    async def insert_sample(
        self,
        timestamp_ms: int,
        reference_value: Decimal,
        rates: Sequence[tuple[int, Decimal | None]],
    ) -> int:
        """Insert one sample and all its rate observations in one transaction.

        rates holds (instrument_id, rate) pairs; a None rate records the
        instrument as not measured. Returns the new sample id.

        Raises DuplicateTimestampError if a sample already exists for
        timestamp_ms, StorageError for any other failure. Nothing is
        committed in either case.
        """
        try:
            async with self._database.transaction() as conn:
                cursor = await conn.execute(
                    "INSERT INTO samples (timestamp_ms, reference_value) VALUES (?, ?)",
                    (timestamp_ms, str(reference_value)),
                )
                sample_id = cursor.lastrowid
                if rates:
                    await conn.executemany(
                        "INSERT INTO rate_observations (sample_id, instrument_id, rate) "
                        "VALUES (?, ?, ?)",
                        [
                            (sample_id, instrument_id, _to_text(rate))
                            for instrument_id, rate in rates
                        ],
                    )
        except aiosqlite.IntegrityError as exc:
            if _SAMPLE_TIMESTAMP_CONSTRAINT in str(exc):
                raise DuplicateTimestampError(timestamp_ms) from exc
            raise StorageError(f"Constraint violation storing sample {timestamp_ms}: {exc}") from exc
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to store sample {timestamp_ms}: {exc}") from exc

        logger.debug(
            "inserted_sample",
            sample_id=sample_id,
            timestamp_ms=timestamp_ms,
            observations=len(rates),
        )
        return sample_id

    async def delete_sample(self, timestamp_ms: int) -> bool:
        """Delete the sample at timestamp_ms; its observations cascade.

        Returns True if a sample was removed.
        """
        try:
            async with self._database.transaction() as conn:
                cursor = await conn.execute(
                    "DELETE FROM samples WHERE timestamp_ms = ?", (timestamp_ms,)
                )
                deleted = cursor.rowcount > 0
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to delete sample {timestamp_ms}: {exc}") from exc
        if deleted:
            logger.info("sample_deleted", timestamp_ms=timestamp_ms)
        return deleted

    # ──────────────────────────────────────────────
    # Read methods
    # ──────────────────────────────────────────────

    async def latest_sample(self) -> Sample:
        """Return the most recent sample with observations ascending by id.

        Raises NotFoundError when no sample has been stored yet.
        """
        rows = await self._fetchall(
            "SELECT sample_id, timestamp_ms, reference_value, instrument_id, rate "
            "FROM latest_sample_observations ORDER BY instrument_id ASC"
        )
        samples = _group_samples(rows)
        if not samples:
            raise NotFoundError("No samples stored yet")
        return samples[0]

    async def range_query(self, start_ms: int, end_ms: int) -> list[Sample]:
        """Samples with start_ms <= timestamp <= end_ms, newest first."""
        _check_range(start_ms, end_ms)
        rows = await self._fetchall(
            "SELECT s.id, s.timestamp_ms, s.reference_value, o.instrument_id, o.rate "
            "FROM samples s "
            "LEFT JOIN rate_observations o ON o.sample_id = s.id "
            "WHERE s.timestamp_ms BETWEEN ? AND ? "
            "ORDER BY s.timestamp_ms DESC, o.instrument_id ASC",
            (start_ms, end_ms),
        )
        return _group_samples(rows)

    async def range_query_for_instrument(
        self,
        instrument_id: int,
        start_ms: int,
        end_ms: int,
    ) -> list[InstrumentPoint]:
        """History rows for one instrument within the range, oldest first."""
        _check_range(start_ms, end_ms)
        rows = await self._fetchall(
            "SELECT s.timestamp_ms, o.rate, s.reference_value "
            "FROM samples s "
            "JOIN rate_observations o ON o.sample_id = s.id "
            "WHERE s.timestamp_ms BETWEEN ? AND ? AND o.instrument_id = ? "
            "ORDER BY s.timestamp_ms ASC",
            (start_ms, end_ms, instrument_id),
        )
        return [
            InstrumentPoint(
                timestamp_ms=row[0],
                rate=_to_decimal(row[1]),
                reference_value=Decimal(row[2]),
            )
            for row in rows
        ]

    async def reference_value_stats(self, start_ms: int, end_ms: int) -> ReferenceValueStats:
        """Average, min, max and count of the reference value in range."""
        _check_range(start_ms, end_ms)
        rows = await self._fetchall(
            "SELECT reference_value FROM samples WHERE timestamp_ms BETWEEN ? AND ?",
            (start_ms, end_ms),
        )
        values = [Decimal(row[0]) for row in rows]
        if not values:
            return ReferenceValueStats(avg=None, min=None, max=None, count=0)
        return ReferenceValueStats(
            avg=_mean(values),
            min=min(values),
            max=max(values),
            count=len(values),
        )

    async def rate_stats_by_instrument(
        self, start_ms: int, end_ms: int
    ) -> list[InstrumentRateStats]:
        """Per-instrument rate statistics for every instrument measured in range.

        Observations recorded without a rate are left out of the statistics.
        """
        _check_range(start_ms, end_ms)
        rows = await self._fetchall(
            "SELECT o.instrument_id, o.rate "
            "FROM rate_observations o "
            "JOIN samples s ON s.id = o.sample_id "
            "WHERE s.timestamp_ms BETWEEN ? AND ? AND o.rate IS NOT NULL "
            "ORDER BY o.instrument_id ASC",
            (start_ms, end_ms),
        )
        by_instrument: dict[int, list[Decimal]] = defaultdict(list)
        for instrument_id, rate in rows:
            by_instrument[instrument_id].append(Decimal(rate))

        return [
            InstrumentRateStats(
                instrument_id=instrument_id,
                avg_rate=_mean(rates),
                min_rate=min(rates),
                max_rate=max(rates),
                count=len(rates),
            )
            for instrument_id, rates in sorted(by_instrument.items())
        ]

    async def sample_count(self) -> int:
        """Total number of stored samples."""
        rows = await self._fetchall("SELECT COUNT(*) FROM samples")
        return rows[0][0]

    async def _fetchall(self, sql: str, params: Sequence = ()) -> list[tuple]:
        try:
            async with self._database.acquire() as conn:
                cursor = await conn.execute(sql, params)
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StorageError(f"Query failed: {exc}") from exc
        return [tuple(row) for row in rows]
