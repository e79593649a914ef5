"""Collection scheduler -- samples every instrument on a fixed period.

Fires one cycle immediately on start, then one per interval. Each cycle
fetches a full snapshot, resolves per-instrument failures according to the
configured missing rate policy, and commits the sample atomically.

Single-flight: a tick that arrives while a cycle is still collecting is
dropped, never queued. The upstream fetch runs under a deadline, so a hung
upstream call holds the scheduler for at most cycle_timeout_seconds. The
write is not cut by that deadline; the database bounds it through its
acquire and busy timeouts, so a committed sample is never reported as lost.

No cycle failure stops the scheduler; every outcome is reported through
logging and the optional on_cycle callback.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from enum import Enum

import structlog

from fundwatch.config import CollectorSettings
from fundwatch.data.store import SampleStore
from fundwatch.exceptions import DuplicateTimestampError, StorageError
from fundwatch.fetcher.base import SnapshotFetcher
from fundwatch.fetcher.types import Snapshot
from fundwatch.instruments import InstrumentRegistry
from fundwatch.logging import get_logger

logger = get_logger(__name__)


class CollectorState(Enum):
    IDLE = "idle"
    COLLECTING = "collecting"


class CycleOutcome(Enum):
    COMMITTED = "committed"
    DUPLICATE = "duplicate"
    FETCH_FAILED = "fetch_failed"
    STORAGE_FAILED = "storage_failed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass
class CycleResult:
    """What one collection cycle did."""

    cycle: int
    outcome: CycleOutcome
    started_at_ms: int
    duration_seconds: float = 0.0
    timestamp_ms: int | None = None
    sample_id: int | None = None
    missing_instruments: list[int] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["outcome"] = self.outcome.value
        return data


CycleCallback = Callable[[CycleResult], Awaitable[None]]


class CollectionScheduler:
    """Drives the fetch -> store cycle on a fixed period.

    Args:
        fetcher: Upstream snapshot source.
        store: Sample store receiving one sample per successful cycle.
        registry: Instruments requested every cycle.
        settings: Interval, cycle deadline and missing rate policy.
        on_cycle: Optional async callback receiving every CycleResult.
    """

    def __init__(
        self,
        fetcher: SnapshotFetcher,
        store: SampleStore,
        registry: InstrumentRegistry,
        settings: CollectorSettings,
        on_cycle: CycleCallback | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._store = store
        self._registry = registry
        self._settings = settings
        self._on_cycle = on_cycle
        self._state = CollectorState.IDLE
        self._running = False
        self._tick_task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._cycle_task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._cycle_count = 0
        self._skipped_ticks = 0
        self._outcome_counts: dict[str, int] = {o.value: 0 for o in CycleOutcome}
        self._last_result: CycleResult | None = None

    @property
    def state(self) -> CollectorState:
        return self._state

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_result(self) -> CycleResult | None:
        return self._last_result

    # ──────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────

    async def start(self) -> None:
        """Begin collecting in the background; the first tick fires immediately."""
        if self._running:
            logger.warning("collector_already_running")
            return
        self._running = True
        self._tick_task = asyncio.create_task(self._tick_loop())
        logger.info(
            "collector_started",
            interval_seconds=self._settings.interval_seconds,
            cycle_timeout_seconds=self._settings.cycle_timeout_seconds,
            instruments=len(self._registry),
            missing_rate_policy=self._settings.missing_rate_policy,
        )

    async def stop(self) -> None:
        """Stop ticking and cancel any in-flight cycle."""
        self._running = False
        for task in (self._tick_task, self._cycle_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._tick_task = None
        self._cycle_task = None
        logger.info("collector_stopped")

    async def _tick_loop(self) -> None:
        while self._running:
            self.trigger()
            await asyncio.sleep(self._settings.interval_seconds)

    def trigger(self) -> bool:
        """Handle one timer edge. Returns False if the tick was dropped."""
        if self._state is CollectorState.COLLECTING:
            self._record_skip()
            return False
        self._cycle_task = asyncio.create_task(self.run_cycle())
        return True

    def _record_skip(self) -> None:
        self._skipped_ticks += 1
        logger.warning(
            "collection_tick_skipped",
            reason="cycle_in_progress",
            skipped_total=self._skipped_ticks,
        )

    # ──────────────────────────────────────────────
    # Cycle
    # ──────────────────────────────────────────────

    async def run_cycle(self) -> CycleResult | None:
        """Run one collection cycle now.

        Returns None without doing anything if another cycle is collecting.
        """
        if self._state is CollectorState.COLLECTING:
            self._record_skip()
            return None

        self._state = CollectorState.COLLECTING
        self._cycle_count += 1
        cycle = self._cycle_count
        started = time.monotonic()
        started_at_ms = int(time.time() * 1000)

        try:
            with structlog.contextvars.bound_contextvars(cycle=cycle):
                try:
                    result = await self._collect(cycle, started_at_ms)
                except Exception as e:
                    logger.error("collection_cycle_failed", error=str(e), exc_info=True)
                    result = CycleResult(
                        cycle=cycle,
                        outcome=CycleOutcome.FAILED,
                        started_at_ms=started_at_ms,
                        error=str(e),
                    )

                result.duration_seconds = round(time.monotonic() - started, 3)
                self._last_result = result
                self._outcome_counts[result.outcome.value] += 1
                await self._report(result)
        finally:
            self._state = CollectorState.IDLE

        return result

    async def _collect(self, cycle: int, started_at_ms: int) -> CycleResult:
        instrument_ids = self._registry.ids()

        # 1. FETCH: timeout or wholesale failure aborts the cycle with no write
        timeout = self._settings.cycle_timeout_seconds
        try:
            snapshot = await asyncio.wait_for(
                self._fetcher.fetch(instrument_ids), timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.error("collection_cycle_timed_out", timeout=timeout)
            return CycleResult(
                cycle=cycle,
                outcome=CycleOutcome.TIMED_OUT,
                started_at_ms=started_at_ms,
                error=f"snapshot fetch exceeded {timeout}s",
            )
        except Exception as e:
            logger.error("snapshot_fetch_failed", error=str(e))
            return CycleResult(
                cycle=cycle,
                outcome=CycleOutcome.FETCH_FAILED,
                started_at_ms=started_at_ms,
                error=str(e),
            )

        # 2. RESOLVE: per-instrument failures per policy, never retried
        rates, missing = self._resolve_rates(snapshot, instrument_ids)

        # 3. STORE
        try:
            sample_id = await self._store.insert_sample(
                snapshot.timestamp_ms, snapshot.reference_value, rates
            )
        except DuplicateTimestampError:
            logger.warning("duplicate_sample_discarded", timestamp_ms=snapshot.timestamp_ms)
            return CycleResult(
                cycle=cycle,
                outcome=CycleOutcome.DUPLICATE,
                started_at_ms=started_at_ms,
                timestamp_ms=snapshot.timestamp_ms,
                missing_instruments=missing,
            )
        except StorageError as e:
            logger.error("sample_store_failed", timestamp_ms=snapshot.timestamp_ms, error=str(e))
            return CycleResult(
                cycle=cycle,
                outcome=CycleOutcome.STORAGE_FAILED,
                started_at_ms=started_at_ms,
                timestamp_ms=snapshot.timestamp_ms,
                missing_instruments=missing,
                error=str(e),
            )

        logger.info(
            "sample_committed",
            sample_id=sample_id,
            timestamp_ms=snapshot.timestamp_ms,
            reference_value=str(snapshot.reference_value),
            measured=len(instrument_ids) - len(missing),
        )
        # 4. REPORT: which instruments have no measured rate in this sample
        if missing:
            logger.warning(
                "instruments_missing",
                instrument_ids=missing,
                upstream_failed=snapshot.failed_ids(),
                policy=self._settings.missing_rate_policy,
            )

        return CycleResult(
            cycle=cycle,
            outcome=CycleOutcome.COMMITTED,
            started_at_ms=started_at_ms,
            timestamp_ms=snapshot.timestamp_ms,
            sample_id=sample_id,
            missing_instruments=missing,
        )

    def _resolve_rates(
        self, snapshot: Snapshot, instrument_ids: list[int]
    ) -> tuple[list[tuple[int, Decimal | None]], list[int]]:
        """Build the rows to store and the list of unmeasured instruments.

        Readings for ids outside the registry are dropped. Registry ids the
        fetcher returned nothing for count as failed.
        """
        requested = set(instrument_ids)
        unexpected = sorted({r.instrument_id for r in snapshot.readings} - requested)
        if unexpected:
            logger.warning("unexpected_instrument_readings", instrument_ids=unexpected)

        rates: list[tuple[int, Decimal | None]] = [
            (reading.instrument_id, reading.rate)
            for reading in snapshot.measured()
            if reading.instrument_id in requested
        ]

        missing = sorted(requested - {instrument_id for instrument_id, _ in rates})
        if self._settings.missing_rate_policy == "flag":
            rates.extend((instrument_id, None) for instrument_id in missing)
        rates.sort(key=lambda row: row[0])

        return rates, missing

    async def _report(self, result: CycleResult) -> None:
        if self._on_cycle is None:
            return
        try:
            await self._on_cycle(result)
        except Exception as e:
            logger.warning("cycle_callback_failed", error=str(e), exc_info=True)

    # ──────────────────────────────────────────────
    # Status
    # ──────────────────────────────────────────────

    def status(self) -> dict:
        """Collector state and counters for the status endpoint."""
        return {
            "state": self._state.value,
            "running": self._running,
            "interval_seconds": self._settings.interval_seconds,
            "missing_rate_policy": self._settings.missing_rate_policy,
            "cycles": self._cycle_count,
            "skipped_ticks": self._skipped_ticks,
            "outcomes": dict(self._outcome_counts),
            "last_result": self._last_result.to_dict() if self._last_result else None,
        }
