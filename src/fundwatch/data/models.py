"""Data models for stored samples and the read shapes derived from them.

CRITICAL: All prices and rates use Decimal. Never use float for them.
A rate of None means the instrument was recorded as not measured in that
cycle; it is never the same thing as Decimal("0").
"""

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass
class RateObservation:
    """One instrument's funding rate within a sample."""

    instrument_id: int
    rate: Decimal | None

    @property
    def measured(self) -> bool:
        return self.rate is not None


@dataclass
class Sample:
    """One collection cycle: reference value plus per-instrument rates.

    Stored in SQLite with decimal columns as TEXT to preserve precision.
    Observations are kept ascending by instrument_id.
    """

    id: int
    timestamp_ms: int
    reference_value: Decimal
    observations: list[RateObservation] = field(default_factory=list)

    def measured_ids(self) -> set[int]:
        """Instrument ids holding an actual rate in this sample."""
        return {o.instrument_id for o in self.observations if o.measured}


@dataclass
class InstrumentPoint:
    """A single raw history row for one instrument."""

    timestamp_ms: int
    rate: Decimal | None
    reference_value: Decimal


@dataclass
class ReferenceValueStats:
    """Aggregate statistics of the reference value over a time range."""

    avg: Decimal | None
    min: Decimal | None
    max: Decimal | None
    count: int


@dataclass
class InstrumentRateStats:
    """Aggregate statistics of one instrument's measured rates over a range."""

    instrument_id: int
    avg_rate: Decimal
    min_rate: Decimal
    max_rate: Decimal
    count: int
