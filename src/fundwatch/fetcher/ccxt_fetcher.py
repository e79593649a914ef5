"""Snapshot fetcher backed by a ccxt async exchange.

The reference value is the last traded price of a configured reference
symbol. Each registry symbol ("BTC/USD") is mapped to the exchange's linear
perpetual ("BTC/USDT:USDT") and its current funding rate fetched. The
per-instrument calls run concurrently; ccxt's built-in rate limiter paces
them.
"""

import asyncio
import time
from decimal import Decimal, InvalidOperation

import ccxt.async_support as ccxt_async

from fundwatch.config import UpstreamSettings
from fundwatch.exceptions import UpstreamFetchError
from fundwatch.fetcher.base import SnapshotFetcher
from fundwatch.fetcher.types import InstrumentReading, Snapshot
from fundwatch.instruments import InstrumentRegistry
from fundwatch.logging import get_logger

logger = get_logger(__name__)


def _to_decimal(raw: object) -> Decimal | None:
    if raw is None:
        return None
    try:
        return Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return None


class CcxtSnapshotFetcher(SnapshotFetcher):
    """Concrete fetcher using ccxt funding rate and ticker endpoints."""

    def __init__(
        self,
        settings: UpstreamSettings,
        registry: InstrumentRegistry,
        exchange: ccxt_async.Exchange | None = None,
    ) -> None:
        self._settings = settings
        self._registry = registry
        if exchange is None:
            exchange_class = getattr(ccxt_async, settings.exchange_id)
            exchange = exchange_class(
                {
                    "apiKey": settings.api_key.get_secret_value(),
                    "secret": settings.api_secret.get_secret_value(),
                    "enableRateLimit": True,
                    "options": {"defaultType": "swap"},
                }
            )
        self._exchange = exchange
        self._markets: dict = {}

    def exchange_symbol(self, instrument_id: int) -> str:
        """Map a registry id to the exchange's perpetual symbol."""
        base = self._registry.symbol(instrument_id).split("/")[0]
        return f"{base}/{self._settings.quote}:{self._settings.settle}"

    async def connect(self) -> None:
        logger.info("connecting_to_upstream", exchange=self._settings.exchange_id)
        try:
            self._markets = await self._exchange.load_markets()
        except Exception as exc:
            raise UpstreamFetchError(f"Failed to load markets: {exc}") from exc
        logger.info(
            "upstream_connected",
            exchange=self._settings.exchange_id,
            market_count=len(self._markets),
        )

    async def close(self) -> None:
        """Clean up ccxt async resources. Must be called to avoid session leaks."""
        await self._exchange.close()
        logger.info("upstream_connection_closed", exchange=self._settings.exchange_id)

    async def fetch(self, instrument_ids: list[int]) -> Snapshot:
        timestamp_ms = int(time.time() * 1000)

        try:
            ticker = await self._exchange.fetch_ticker(self._settings.reference_symbol)
        except Exception as exc:
            raise UpstreamFetchError(
                f"Failed to fetch reference value {self._settings.reference_symbol}: {exc}"
            ) from exc

        reference_value = _to_decimal(ticker.get("last"))
        if reference_value is None or reference_value <= 0:
            raise UpstreamFetchError(
                f"Invalid reference value for {self._settings.reference_symbol}: "
                f"{ticker.get('last')!r}"
            )

        readings = await asyncio.gather(
            *(self._fetch_rate(instrument_id) for instrument_id in instrument_ids)
        )
        return Snapshot(
            timestamp_ms=timestamp_ms,
            reference_value=reference_value,
            readings=list(readings),
        )

    async def _fetch_rate(self, instrument_id: int) -> InstrumentReading:
        symbol = self.exchange_symbol(instrument_id)
        if self._markets and symbol not in self._markets:
            return InstrumentReading(instrument_id, None, ok=False, error="unlisted")

        try:
            result = await self._exchange.fetch_funding_rate(symbol)
        except Exception as exc:
            logger.debug("instrument_fetch_failed", instrument_id=instrument_id, symbol=symbol, error=str(exc))
            return InstrumentReading(instrument_id, None, ok=False, error=str(exc))

        rate = _to_decimal(result.get("fundingRate"))
        if rate is None:
            return InstrumentReading(instrument_id, None, ok=False, error="missing fundingRate")
        return InstrumentReading(instrument_id, rate)
