"""Tests for QueryService against a real store.

Tests verify:
- Latest sample shaping, symbols and missing instrument reporting
- Range boundaries are inclusive and malformed bounds are rejected
- Instrument history dispatches raw vs bucketed paths
- Duration lookbacks resolve against the injected clock
"""

from decimal import Decimal

import pytest
from conftest import BASE_MS, rates

from fundwatch.aggregation import Aggregator
from fundwatch.data.store import SampleStore
from fundwatch.exceptions import NotFoundError, ValidationError
from fundwatch.instruments import InstrumentRegistry
from fundwatch.query.params import MAX_TIMESTAMP_MS
from fundwatch.query.service import QueryService

MINUTE = 60_000
HOUR = 60 * MINUTE


@pytest.fixture
def clock_ms() -> int:
    return BASE_MS + 2 * HOUR


@pytest.fixture
def service(store: SampleStore, registry: InstrumentRegistry, clock_ms: int) -> QueryService:
    return QueryService(store, Aggregator(store), registry, clock=lambda: clock_ms)


class TestLatest:

    @pytest.mark.asyncio
    async def test_empty_store_raises_not_found(self, service: QueryService) -> None:
        with pytest.raises(NotFoundError):
            await service.get_latest()

    @pytest.mark.asyncio
    async def test_latest_shape(self, service: QueryService, store: SampleStore) -> None:
        await store.insert_sample(BASE_MS, Decimal("1.0001"), rates("0.0001", None, "0"))

        latest = await service.get_latest()

        assert latest["timestamp"] == BASE_MS
        assert latest["reference_value"] == "1.0001"
        assert latest["rates"] == [
            {"instrument_id": 1, "symbol": "BTC/USD", "rate": "0.0001"},
            {"instrument_id": 2, "symbol": "ETH/USD", "rate": None},
            {"instrument_id": 3, "symbol": "SOL/USD", "rate": "0"},
        ]
        assert latest["total_instruments"] == 3
        assert latest["measured_instruments"] == 2
        assert latest["missing_instruments"] == [2]

    @pytest.mark.asyncio
    async def test_omitted_instruments_reported_missing(
        self, service: QueryService, store: SampleStore
    ) -> None:
        await store.insert_sample(BASE_MS, Decimal("1"), [(2, Decimal("0.2"))])
        latest = await service.get_latest()
        assert latest["missing_instruments"] == [1, 3]
        assert latest["total_instruments"] == 3
        assert latest["measured_instruments"] == 1


class TestRange:

    @pytest.mark.asyncio
    async def test_bounds_inclusive(self, service: QueryService, store: SampleStore) -> None:
        for offset in (0, MINUTE, 2 * MINUTE, 3 * MINUTE):
            await store.insert_sample(BASE_MS + offset, Decimal("1"), rates("0.1"))

        result = await service.get_range(str(BASE_MS + MINUTE), str(BASE_MS + 3 * MINUTE))

        assert [s["timestamp"] for s in result] == [
            BASE_MS + 3 * MINUTE,
            BASE_MS + 2 * MINUTE,
            BASE_MS + MINUTE,
        ]

    @pytest.mark.asyncio
    async def test_rejects_unparseable_bounds(self, service: QueryService) -> None:
        with pytest.raises(ValidationError):
            await service.get_range("yesterday", str(BASE_MS))
        with pytest.raises(ValidationError):
            await service.get_range(str(BASE_MS), None)

    @pytest.mark.asyncio
    async def test_rejects_inverted_bounds(self, service: QueryService) -> None:
        with pytest.raises(ValidationError):
            await service.get_range(BASE_MS + 1, BASE_MS)

    @pytest.mark.asyncio
    async def test_rejects_bound_too_large_for_storage(self, service: QueryService) -> None:
        with pytest.raises(ValidationError):
            await service.get_range("0", "99999999999999999999")
        with pytest.raises(ValidationError):
            await service.get_reference_value_stats("0", "99999999999999999999")


class TestStats:

    @pytest.mark.asyncio
    async def test_rate_stats_shape(self, service: QueryService, store: SampleStore) -> None:
        await store.insert_sample(BASE_MS, Decimal("1"), rates("0.1", None))
        await store.insert_sample(BASE_MS + 1, Decimal("1"), rates("0.3", None))

        stats = await service.get_rate_stats_by_instrument(BASE_MS, BASE_MS + 1)

        assert stats == [
            {
                "instrument_id": 1,
                "symbol": "BTC/USD",
                "avg_rate": "0.2",
                "min_rate": "0.1",
                "max_rate": "0.3",
                "data_points": 2,
            }
        ]

    @pytest.mark.asyncio
    async def test_reference_stats_empty(self, service: QueryService) -> None:
        stats = await service.get_reference_value_stats(BASE_MS, BASE_MS + 1)
        assert stats == {
            "avg_reference_value": None,
            "min_reference_value": None,
            "max_reference_value": None,
            "data_points": 0,
        }


class TestInstrumentHistory:

    @pytest.mark.asyncio
    async def test_raw_rows_ascending(self, service: QueryService, store: SampleStore) -> None:
        await store.insert_sample(BASE_MS + MINUTE, Decimal("1.1"), rates("0.2"))
        await store.insert_sample(BASE_MS, Decimal("1.0"), rates("0.1"))

        result = await service.get_instrument_history("1", str(BASE_MS), str(BASE_MS + HOUR))

        assert result["instrument"] == {"id": 1, "symbol": "BTC/USD"}
        assert result["granularity"] is None
        assert result["data_points"] == 2
        assert result["history"] == [
            {"timestamp": BASE_MS, "rate": "0.1", "reference_value": "1.0"},
            {"timestamp": BASE_MS + MINUTE, "rate": "0.2", "reference_value": "1.1"},
        ]
        assert result["time_range"]["start"] == BASE_MS

    @pytest.mark.asyncio
    async def test_bucketed_rows(self, service: QueryService, store: SampleStore) -> None:
        for offset, value in ((0, "10"), (MINUTE, "20"), (2 * MINUTE, "30")):
            await store.insert_sample(BASE_MS + offset, Decimal("1"), rates(value))

        result = await service.get_instrument_history(
            1, BASE_MS, BASE_MS + HOUR, granularity="5m"
        )

        assert result["granularity"] == "5m"
        assert result["history"] == [
            {
                "bucket_start": BASE_MS,
                "avg_rate": "20",
                "avg_reference_value": "1",
                "sample_count": 3,
            }
        ]

    @pytest.mark.asyncio
    async def test_end_defaults_to_now(
        self, service: QueryService, store: SampleStore, clock_ms: int
    ) -> None:
        await store.insert_sample(clock_ms, Decimal("1"), rates("0.1"))
        await store.insert_sample(clock_ms + 1, Decimal("1"), rates("0.2"))

        result = await service.get_instrument_history(1, BASE_MS)

        assert result["time_range"]["end"] == clock_ms
        assert [p["timestamp"] for p in result["history"]] == [clock_ms]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("instrument_id", [0, 4, "abc", None])
    async def test_rejects_unknown_instrument(
        self, service: QueryService, instrument_id
    ) -> None:
        with pytest.raises(ValidationError):
            await service.get_instrument_history(instrument_id, BASE_MS, BASE_MS + 1)

    @pytest.mark.asyncio
    async def test_rejects_unknown_granularity(self, service: QueryService) -> None:
        with pytest.raises(ValidationError):
            await service.get_instrument_history(1, BASE_MS, BASE_MS + 1, granularity="7m")

    @pytest.mark.asyncio
    async def test_rejects_end_past_year_9999(self, service: QueryService) -> None:
        with pytest.raises(ValidationError):
            await service.get_instrument_history("1", "0", "999999999999999999")

    @pytest.mark.asyncio
    async def test_accepts_last_representable_end(self, service: QueryService) -> None:
        result = await service.get_instrument_history(1, 0, MAX_TIMESTAMP_MS)
        assert result["time_range"]["start_iso"] == "1970-01-01T00:00:00+00:00"
        assert result["time_range"]["end_iso"] == "9999-12-31T23:59:59.999000+00:00"


class TestHistoryByDuration:

    @pytest.mark.asyncio
    async def test_lookback_window(
        self, service: QueryService, store: SampleStore, clock_ms: int
    ) -> None:
        await store.insert_sample(clock_ms - 2 * HOUR, Decimal("1"), rates("0.1"))
        await store.insert_sample(clock_ms - HOUR, Decimal("1"), rates("0.2"))
        await store.insert_sample(clock_ms - MINUTE, Decimal("1"), rates("0.3"))

        result = await service.get_instrument_history_by_duration(1, "1h")

        assert result["time_range"] == {
            "start": clock_ms - HOUR,
            "end": clock_ms,
            "start_iso": result["time_range"]["start_iso"],
            "end_iso": result["time_range"]["end_iso"],
        }
        assert [p["rate"] for p in result["history"]] == ["0.2", "0.3"]

    @pytest.mark.asyncio
    async def test_lookback_with_granularity(
        self, service: QueryService, store: SampleStore, clock_ms: int
    ) -> None:
        await store.insert_sample(clock_ms - 30 * MINUTE, Decimal("1"), rates("0.1"))
        result = await service.get_instrument_history_by_duration("1", "1d", "1h")
        assert result["granularity"] == "1h"
        assert result["data_points"] == 1

    @pytest.mark.asyncio
    async def test_rejects_unknown_unit(self, service: QueryService) -> None:
        with pytest.raises(ValidationError):
            await service.get_instrument_history_by_duration(1, "2x")

    @pytest.mark.asyncio
    async def test_rejects_lookback_before_epoch(self, service: QueryService) -> None:
        with pytest.raises(ValidationError):
            await service.get_instrument_history_by_duration("1", "99999999w")


class TestListInstruments:

    def test_lists_registry(self, service: QueryService) -> None:
        assert service.list_instruments()[0] == {"id": 1, "symbol": "BTC/USD"}
        assert len(service.list_instruments()) == 3
