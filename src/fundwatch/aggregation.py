"""Time-bucketed aggregation of one instrument's raw history.

Buckets are epoch-aligned: a point belongs to the bucket starting at
timestamp_ms - timestamp_ms % width, independent of the query's start time.
Empty buckets are omitted, never zero-filled.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from fundwatch.data.models import InstrumentPoint
from fundwatch.data.store import SampleStore
from fundwatch.logging import get_logger

logger = get_logger(__name__)

_MINUTE_MS = 60 * 1000
_HOUR_MS = 60 * _MINUTE_MS


class Granularity(Enum):
    """Supported bucket widths, keyed by their query token."""

    ONE_MINUTE = "1m"
    FIVE_MINUTES = "5m"
    FIFTEEN_MINUTES = "15m"
    THIRTY_MINUTES = "30m"
    ONE_HOUR = "1h"
    FOUR_HOURS = "4h"
    EIGHT_HOURS = "8h"
    ONE_DAY = "24h"

    @property
    def ms(self) -> int:
        """Bucket width in milliseconds."""
        return _WIDTHS_MS[self]

    @property
    def token(self) -> str:
        return self.value


_WIDTHS_MS: dict[Granularity, int] = {
    Granularity.ONE_MINUTE: _MINUTE_MS,
    Granularity.FIVE_MINUTES: 5 * _MINUTE_MS,
    Granularity.FIFTEEN_MINUTES: 15 * _MINUTE_MS,
    Granularity.THIRTY_MINUTES: 30 * _MINUTE_MS,
    Granularity.ONE_HOUR: _HOUR_MS,
    Granularity.FOUR_HOURS: 4 * _HOUR_MS,
    Granularity.EIGHT_HOURS: 8 * _HOUR_MS,
    Granularity.ONE_DAY: 24 * _HOUR_MS,
}


@dataclass
class Bucket:
    """Aggregate of all measured points falling in one time window."""

    bucket_start_ms: int
    avg_rate: Decimal
    avg_reference_value: Decimal
    sample_count: int


def bucket_start(timestamp_ms: int, granularity: Granularity) -> int:
    """Truncate a timestamp down to the start of its epoch-aligned bucket."""
    return timestamp_ms - timestamp_ms % granularity.ms


def bucket_points(
    points: Iterable[InstrumentPoint], granularity: Granularity
) -> list[Bucket]:
    """Group points into buckets and average rate and reference value.

    Points recorded without a rate do not contribute; a bucket holding only
    such points is dropped. Output is ascending by bucket start.
    """
    grouped: dict[int, list[InstrumentPoint]] = {}
    for point in points:
        if point.rate is None:
            continue
        grouped.setdefault(bucket_start(point.timestamp_ms, granularity), []).append(point)

    buckets = []
    for start in sorted(grouped):
        members = grouped[start]
        count = Decimal(len(members))
        buckets.append(
            Bucket(
                bucket_start_ms=start,
                avg_rate=sum((p.rate for p in members), Decimal("0")) / count,  # type: ignore[misc]
                avg_reference_value=sum(
                    (p.reference_value for p in members), Decimal("0")
                ) / count,
                sample_count=len(members),
            )
        )
    return buckets


class Aggregator:
    """Runs bucketed history queries against the sample store."""

    def __init__(self, store: SampleStore) -> None:
        self._store = store

    async def bucketed_query(
        self,
        instrument_id: int,
        start_ms: int,
        end_ms: int,
        granularity: Granularity,
    ) -> list[Bucket]:
        points = await self._store.range_query_for_instrument(instrument_id, start_ms, end_ms)
        buckets = bucket_points(points, granularity)
        logger.debug(
            "bucketed_query",
            instrument_id=instrument_id,
            granularity=granularity.token,
            points=len(points),
            buckets=len(buckets),
        )
        return buckets
