"""Snapshot types returned by snapshot fetchers.

All prices and rates use Decimal. Never use float for them.
"""

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass
class InstrumentReading:
    """One instrument's result within a snapshot.

    ok is False when the upstream call for this instrument failed; rate is
    then None and must not be read as a measured value.
    """

    instrument_id: int
    rate: Decimal | None
    ok: bool = True
    error: str | None = None


@dataclass
class Snapshot:
    """Reference value plus per-instrument readings taken at one instant."""

    timestamp_ms: int
    reference_value: Decimal
    readings: list[InstrumentReading] = field(default_factory=list)

    def failed_ids(self) -> list[int]:
        return [r.instrument_id for r in self.readings if not r.ok]

    def measured(self) -> list[InstrumentReading]:
        return [r for r in self.readings if r.ok and r.rate is not None]
