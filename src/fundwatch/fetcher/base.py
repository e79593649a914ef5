"""Abstract snapshot fetcher interface.

The collector depends only on this contract, keeping upstream specifics
(exchange APIs, symbol conventions) in the concrete implementation.
"""

from abc import ABC, abstractmethod

from fundwatch.fetcher.types import Snapshot


class SnapshotFetcher(ABC):
    """Abstract base class for upstream market snapshot sources."""

    @abstractmethod
    async def connect(self) -> None:
        """Initialize the upstream connection."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release upstream resources."""
        ...

    @abstractmethod
    async def fetch(self, instrument_ids: list[int]) -> Snapshot:
        """Fetch the reference value and one reading per instrument id.

        Individual instrument failures are reported as readings with
        ok=False. A failure of the call as a whole (transport, protocol,
        or the reference value itself) raises UpstreamFetchError.
        """
        ...
