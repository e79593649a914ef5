"""Query façade -- validates read requests and shapes their responses.

Every public method accepts raw caller values (ints or strings straight from
a request), validates them through fundwatch.query.params, dispatches to the
store or the aggregator, and returns JSON-ready dicts. Decimals are rendered
as strings; a rate recorded as not measured is rendered as None.
"""

import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from fundwatch.aggregation import Aggregator, Bucket, Granularity
from fundwatch.data.models import InstrumentPoint, Sample
from fundwatch.data.store import SampleStore
from fundwatch.instruments import InstrumentRegistry
from fundwatch.logging import get_logger
from fundwatch.query.params import (
    parse_duration,
    parse_granularity,
    parse_instrument_id,
    parse_time_range,
)

logger = get_logger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _decimal_str(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _iso(timestamp_ms: int) -> str:
    return (_EPOCH + timedelta(milliseconds=timestamp_ms)).isoformat()


class QueryService:
    """Read-side entry point shared by every transport.

    Args:
        store: Sample store for raw and statistics reads.
        aggregator: Bucketing engine for granular history.
        registry: Instrument table for id validation and symbols.
        clock: Returns the current time in ms (injectable for tests).
    """

    def __init__(
        self,
        store: SampleStore,
        aggregator: Aggregator,
        registry: InstrumentRegistry,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._store = store
        self._aggregator = aggregator
        self._registry = registry
        self._clock = clock

    # ──────────────────────────────────────────────
    # Samples
    # ──────────────────────────────────────────────

    async def get_latest(self) -> dict:
        """Latest sample with symbols and the instruments it lacks a rate for.

        Raises NotFoundError when nothing has been collected yet.
        """
        sample = await self._store.latest_sample()
        measured = sample.measured_ids()
        result = self._sample_to_dict(sample)
        result["total_instruments"] = len(self._registry)
        result["measured_instruments"] = len(measured)
        result["missing_instruments"] = [
            instrument_id for instrument_id in self._registry.ids() if instrument_id not in measured
        ]
        return result

    async def get_range(self, start: int | str | None, end: int | str | None) -> list[dict]:
        """All samples in [start, end], newest first."""
        start_ms, end_ms = parse_time_range(start, end)
        samples = await self._store.range_query(start_ms, end_ms)
        return [self._sample_to_dict(sample) for sample in samples]

    # ──────────────────────────────────────────────
    # Statistics
    # ──────────────────────────────────────────────

    async def get_rate_stats_by_instrument(
        self, start: int | str | None, end: int | str | None
    ) -> list[dict]:
        start_ms, end_ms = parse_time_range(start, end)
        stats = await self._store.rate_stats_by_instrument(start_ms, end_ms)
        return [
            {
                "instrument_id": s.instrument_id,
                "symbol": self._registry.symbol(s.instrument_id)
                if self._registry.contains(s.instrument_id)
                else None,
                "avg_rate": str(s.avg_rate),
                "min_rate": str(s.min_rate),
                "max_rate": str(s.max_rate),
                "data_points": s.count,
            }
            for s in stats
        ]

    async def get_reference_value_stats(
        self, start: int | str | None, end: int | str | None
    ) -> dict:
        start_ms, end_ms = parse_time_range(start, end)
        stats = await self._store.reference_value_stats(start_ms, end_ms)
        return {
            "avg_reference_value": _decimal_str(stats.avg),
            "min_reference_value": _decimal_str(stats.min),
            "max_reference_value": _decimal_str(stats.max),
            "data_points": stats.count,
        }

    # ──────────────────────────────────────────────
    # Instrument history
    # ──────────────────────────────────────────────

    async def get_instrument_history(
        self,
        instrument_id: int | str | None,
        start: int | str | None,
        end: int | str | None = None,
        granularity: str | None = None,
    ) -> dict:
        """History of one instrument; end defaults to now.

        Without a granularity the raw per-sample rows are returned, otherwise
        epoch-aligned buckets.
        """
        instrument = parse_instrument_id(instrument_id, self._registry)
        if end is None or end == "":
            end = self._clock()
        start_ms, end_ms = parse_time_range(start, end)
        bucket = parse_granularity(granularity)
        return await self._history(instrument, start_ms, end_ms, bucket)

    async def get_instrument_history_by_duration(
        self,
        instrument_id: int | str | None,
        duration: str | None,
        granularity: str | None = None,
    ) -> dict:
        """History of one instrument over the trailing duration ("30d", "4w", ...)."""
        instrument = parse_instrument_id(instrument_id, self._registry)
        bucket = parse_granularity(granularity)
        start_ms, end_ms = parse_duration(duration, self._clock())
        return await self._history(instrument, start_ms, end_ms, bucket)

    async def _history(
        self,
        instrument_id: int,
        start_ms: int,
        end_ms: int,
        granularity: Granularity | None,
    ) -> dict:
        if granularity is None:
            points = await self._store.range_query_for_instrument(instrument_id, start_ms, end_ms)
            history = [self._point_to_dict(point) for point in points]
        else:
            buckets = await self._aggregator.bucketed_query(
                instrument_id, start_ms, end_ms, granularity
            )
            history = [self._bucket_to_dict(bucket) for bucket in buckets]

        return {
            "instrument": {
                "id": instrument_id,
                "symbol": self._registry.symbol(instrument_id),
            },
            "time_range": {
                "start": start_ms,
                "end": end_ms,
                "start_iso": _iso(start_ms),
                "end_iso": _iso(end_ms),
            },
            "granularity": granularity.token if granularity else None,
            "data_points": len(history),
            "history": history,
        }

    # ──────────────────────────────────────────────
    # Registry
    # ──────────────────────────────────────────────

    def list_instruments(self) -> list[dict]:
        return [{"id": i, "symbol": symbol} for i, symbol in self._registry.items()]

    # ──────────────────────────────────────────────
    # Shaping
    # ──────────────────────────────────────────────

    def _sample_to_dict(self, sample: Sample) -> dict:
        return {
            "id": sample.id,
            "timestamp": sample.timestamp_ms,
            "reference_value": str(sample.reference_value),
            "rates": [
                {
                    "instrument_id": o.instrument_id,
                    "symbol": self._registry.symbol(o.instrument_id)
                    if self._registry.contains(o.instrument_id)
                    else None,
                    "rate": _decimal_str(o.rate),
                }
                for o in sample.observations
            ],
        }

    @staticmethod
    def _point_to_dict(point: InstrumentPoint) -> dict:
        return {
            "timestamp": point.timestamp_ms,
            "rate": _decimal_str(point.rate),
            "reference_value": str(point.reference_value),
        }

    @staticmethod
    def _bucket_to_dict(bucket: Bucket) -> dict:
        return {
            "bucket_start": bucket.bucket_start_ms,
            "avg_rate": str(bucket.avg_rate),
            "avg_reference_value": str(bucket.avg_reference_value),
            "sample_count": bucket.sample_count,
        }
