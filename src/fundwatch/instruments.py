"""Instrument registry: the fixed id -> symbol table sampled every cycle.

The registry is built once at startup and handed to every component that
needs symbol resolution. It is immutable for the lifetime of the process.
"""

from collections.abc import Mapping
from types import MappingProxyType

DEFAULT_SYMBOLS: tuple[str, ...] = (
    "BTC/USD", "ETH/USD", "FTM/USD", "SOL/USD", "DOGE/USD",
    "AVAX/USD", "BNB/USD", "ADA/USD", "LINK/USD", "ATOM/USD",
    "NEAR/USD", "ARB/USD", "OP/USD", "LTC/USD", "GMX/USD",
    "EUR/USD", "GBP/USD", "INJ/USD", "TIA/USD", "AERO/USD",
    "MERL/USD", "SAFE/USD", "OMNI/USD", "REZ/USD", "ETHFI/USD",
    "BOME/USD", "ORDI/USD", "DYM/USD", "TAO/USD", "WLD/USD",
    "POPCAT/USD", "ZRO/USD", "RUNE/USD", "MEW/USD", "BEAM/USD",
    "STRK/USD", "AAVE/USD", "XRP/USD", "TON/USD", "NOT/USD",
    "RLB/USD", "ALICE/USD", "APE/USD", "APT/USD", "AVAIL/USD",
    "DEGEN/USD", "RDNT/USD", "SUI/USD", "PEPE/USD", "EIGEN/USD",
    "XAU/USD", "XAG/USD", "GMCI30/USD", "GMCL2/USD", "GMMEME/USD",
    "QQQ/USD", "SPY/USD",
)


class InstrumentRegistry:
    """Immutable mapping of instrument id (1..N) to symbol.

    Usage:
        registry = InstrumentRegistry.default()
        registry.symbol(1)   # "BTC/USD"
        registry.ids()       # [1, 2, ..., 57]
    """

    def __init__(self, symbols: Mapping[int, str]) -> None:
        if not symbols:
            raise ValueError("Instrument registry cannot be empty")
        expected = list(range(1, len(symbols) + 1))
        if sorted(symbols) != expected:
            raise ValueError("Instrument ids must be contiguous starting at 1")
        self._symbols: Mapping[int, str] = MappingProxyType(dict(sorted(symbols.items())))

    @classmethod
    def from_symbols(cls, symbols: list[str] | tuple[str, ...]) -> "InstrumentRegistry":
        """Build a registry numbering the given symbols from 1."""
        return cls({i: symbol for i, symbol in enumerate(symbols, 1)})

    @classmethod
    def default(cls) -> "InstrumentRegistry":
        """The 57-instrument table of the reference deployment."""
        return cls.from_symbols(DEFAULT_SYMBOLS)

    @property
    def max_id(self) -> int:
        return len(self._symbols)

    def ids(self) -> list[int]:
        return list(self._symbols)

    def contains(self, instrument_id: int) -> bool:
        return instrument_id in self._symbols

    def symbol(self, instrument_id: int) -> str:
        """Return the symbol for an id. Raises KeyError for unknown ids."""
        return self._symbols[instrument_id]

    def items(self) -> list[tuple[int, str]]:
        return list(self._symbols.items())

    def __len__(self) -> int:
        return len(self._symbols)
