"""Custom exceptions for fundwatch.

The ingestion path (collector, store) and the read path (query service,
HTTP routes) share this taxonomy so each layer can decide what to surface.
"""


class FundwatchError(Exception):
    """Base exception for all fundwatch errors."""


class ValidationError(FundwatchError):
    """Raised when caller input is malformed or out of range."""


class NotFoundError(FundwatchError):
    """Raised when a requested record does not exist."""


class UpstreamFetchError(FundwatchError):
    """Raised when the snapshot fetcher fails as a whole."""


class StorageError(FundwatchError):
    """Raised on connectivity, pool or transaction failures in the store."""


class DuplicateTimestampError(StorageError):
    """Raised when a sample with the same timestamp already exists."""

    def __init__(self, timestamp_ms: int) -> None:
        super().__init__(f"Sample already stored for timestamp {timestamp_ms}")
        self.timestamp_ms = timestamp_ms
