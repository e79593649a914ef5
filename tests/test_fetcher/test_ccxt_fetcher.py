"""Tests for CcxtSnapshotFetcher.

All tests use mocked ccxt exchange objects to avoid real API calls.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from fundwatch.config import UpstreamSettings
from fundwatch.exceptions import UpstreamFetchError
from fundwatch.fetcher.ccxt_fetcher import CcxtSnapshotFetcher
from fundwatch.instruments import InstrumentRegistry


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

MOCK_MARKETS = {
    "BTC/USDT:USDT": {"symbol": "BTC/USDT:USDT", "type": "swap", "linear": True},
    "ETH/USDT:USDT": {"symbol": "ETH/USDT:USDT", "type": "swap", "linear": True},
    "USDC/USDT": {"symbol": "USDC/USDT", "type": "spot"},
}

FUNDING = {
    "BTC/USDT:USDT": {"symbol": "BTC/USDT:USDT", "fundingRate": 0.0001},
    "ETH/USDT:USDT": {"symbol": "ETH/USDT:USDT", "fundingRate": -0.000025},
}


@pytest.fixture
def mock_exchange() -> MagicMock:
    exchange = MagicMock()
    exchange.load_markets = AsyncMock(return_value=MOCK_MARKETS)
    exchange.fetch_ticker = AsyncMock(return_value={"symbol": "USDC/USDT", "last": 1.0003})
    exchange.fetch_funding_rate = AsyncMock(side_effect=lambda symbol: FUNDING[symbol])
    exchange.close = AsyncMock()
    return exchange


@pytest.fixture
def fetcher(mock_exchange: MagicMock, registry: InstrumentRegistry) -> CcxtSnapshotFetcher:
    return CcxtSnapshotFetcher(UpstreamSettings(), registry, exchange=mock_exchange)


# ---------------------------------------------------------------------------
# Symbol mapping and lifecycle
# ---------------------------------------------------------------------------


class TestSymbolMapping:

    def test_maps_registry_symbol_to_linear_perpetual(self, fetcher: CcxtSnapshotFetcher) -> None:
        assert fetcher.exchange_symbol(1) == "BTC/USDT:USDT"
        assert fetcher.exchange_symbol(3) == "SOL/USDT:USDT"

    def test_quote_and_settle_configurable(
        self, mock_exchange: MagicMock, registry: InstrumentRegistry
    ) -> None:
        fetcher = CcxtSnapshotFetcher(
            UpstreamSettings(quote="USDC", settle="USDC"), registry, exchange=mock_exchange
        )
        assert fetcher.exchange_symbol(2) == "ETH/USDC:USDC"


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_connect_loads_markets(
        self, fetcher: CcxtSnapshotFetcher, mock_exchange: MagicMock
    ) -> None:
        await fetcher.connect()
        mock_exchange.load_markets.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connect_failure_raises_upstream_error(
        self, fetcher: CcxtSnapshotFetcher, mock_exchange: MagicMock
    ) -> None:
        mock_exchange.load_markets.side_effect = Exception("Network error")
        with pytest.raises(UpstreamFetchError, match="Failed to load markets"):
            await fetcher.connect()

    @pytest.mark.asyncio
    async def test_close(self, fetcher: CcxtSnapshotFetcher, mock_exchange: MagicMock) -> None:
        await fetcher.close()
        mock_exchange.close.assert_awaited_once()

    def test_builds_exchange_from_settings(self, registry: InstrumentRegistry) -> None:
        with patch("fundwatch.fetcher.ccxt_fetcher.ccxt_async") as mock_ccxt:
            CcxtSnapshotFetcher(UpstreamSettings(exchange_id="okx"), registry)

        config = mock_ccxt.okx.call_args.args[0]
        assert config["enableRateLimit"] is True
        assert config["options"] == {"defaultType": "swap"}


# ---------------------------------------------------------------------------
# Snapshot fetch
# ---------------------------------------------------------------------------


class TestFetch:

    @pytest.mark.asyncio
    async def test_snapshot_values_are_decimal(
        self, fetcher: CcxtSnapshotFetcher, mock_exchange: MagicMock
    ) -> None:
        await fetcher.connect()

        snapshot = await fetcher.fetch([1, 2])

        mock_exchange.fetch_ticker.assert_awaited_once_with("USDC/USDT")
        assert snapshot.reference_value == Decimal("1.0003")
        assert [(r.instrument_id, r.rate, r.ok) for r in snapshot.readings] == [
            (1, Decimal("0.0001"), True),
            (2, Decimal("-0.000025"), True),
        ]
        assert snapshot.timestamp_ms > 0

    @pytest.mark.asyncio
    async def test_unlisted_instrument_fails_without_call(
        self, fetcher: CcxtSnapshotFetcher, mock_exchange: MagicMock
    ) -> None:
        await fetcher.connect()

        snapshot = await fetcher.fetch([1, 3])

        assert snapshot.failed_ids() == [3]
        assert snapshot.readings[1].error == "unlisted"
        assert snapshot.readings[1].rate is None
        called = [c.args[0] for c in mock_exchange.fetch_funding_rate.await_args_list]
        assert called == ["BTC/USDT:USDT"]

    @pytest.mark.asyncio
    async def test_instrument_error_marks_reading_failed(
        self, fetcher: CcxtSnapshotFetcher, mock_exchange: MagicMock
    ) -> None:
        def flaky(symbol: str) -> dict:
            if symbol == "ETH/USDT:USDT":
                raise Exception("execution reverted")
            return FUNDING[symbol]

        mock_exchange.fetch_funding_rate.side_effect = flaky
        await fetcher.connect()

        snapshot = await fetcher.fetch([1, 2])

        assert [r.instrument_id for r in snapshot.measured()] == [1]
        assert snapshot.failed_ids() == [2]
        assert "reverted" in snapshot.readings[1].error

    @pytest.mark.asyncio
    async def test_missing_funding_rate_is_not_zero(
        self, fetcher: CcxtSnapshotFetcher, mock_exchange: MagicMock
    ) -> None:
        mock_exchange.fetch_funding_rate.side_effect = lambda symbol: {"fundingRate": None}

        snapshot = await fetcher.fetch([1])

        (reading,) = snapshot.readings
        assert reading.ok is False
        assert reading.rate is None

    @pytest.mark.asyncio
    async def test_reference_value_failure_aborts_snapshot(
        self, fetcher: CcxtSnapshotFetcher, mock_exchange: MagicMock
    ) -> None:
        mock_exchange.fetch_ticker.side_effect = Exception("timeout")
        with pytest.raises(UpstreamFetchError, match="USDC/USDT"):
            await fetcher.fetch([1, 2])
        mock_exchange.fetch_funding_rate.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("last", [None, 0, -1.0, "garbage"])
    async def test_invalid_reference_value_rejected(
        self, fetcher: CcxtSnapshotFetcher, mock_exchange: MagicMock, last
    ) -> None:
        mock_exchange.fetch_ticker.return_value = {"symbol": "USDC/USDT", "last": last}
        with pytest.raises(UpstreamFetchError, match="Invalid reference value"):
            await fetcher.fetch([1])
