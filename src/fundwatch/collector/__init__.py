"""Periodic collection -- the single-flight fetch -> store scheduler."""

from fundwatch.collector.scheduler import (
    CollectionScheduler,
    CollectorState,
    CycleOutcome,
    CycleResult,
)

__all__ = ["CollectionScheduler", "CollectorState", "CycleOutcome", "CycleResult"]
