"""Sample persistence layer.

Provides data models, the pooled SQLite database and the typed sample store.
"""

from fundwatch.data.database import SampleDatabase
from fundwatch.data.models import (
    InstrumentPoint,
    InstrumentRateStats,
    RateObservation,
    ReferenceValueStats,
    Sample,
)
from fundwatch.data.store import SampleStore

__all__ = [
    "InstrumentPoint",
    "InstrumentRateStats",
    "RateObservation",
    "ReferenceValueStats",
    "Sample",
    "SampleDatabase",
    "SampleStore",
]
