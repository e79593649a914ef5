"""Upstream snapshot fetchers -- the abstract contract and a ccxt implementation."""

from fundwatch.fetcher.base import SnapshotFetcher
from fundwatch.fetcher.ccxt_fetcher import CcxtSnapshotFetcher
from fundwatch.fetcher.types import InstrumentReading, Snapshot

__all__ = ["CcxtSnapshotFetcher", "InstrumentReading", "Snapshot", "SnapshotFetcher"]
