"""
Copy Engine - Reference Data.

============================================================
PURPOSE
============================================================
Symbol reference data used by the trade filter:
- sector classification
- market capitalization (billions of USD)

The filter only depends on ReferenceDataProvider, so a live
data feed can replace the static table without touching
filter logic.

============================================================
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Optional


# ============================================================
# PROVIDER INTERFACE
# ============================================================

class ReferenceDataProvider(ABC):
    """Lookup capability for symbol reference data."""

    @abstractmethod
    def lookup_sector(self, symbol: str) -> Optional[str]:
        """Sector name, or None if the symbol is unknown."""
        pass

    @abstractmethod
    def lookup_market_cap(self, symbol: str) -> Optional[Decimal]:
        """Market cap in billions, or None if the symbol is unknown."""
        pass


# ============================================================
# STATIC TABLES
# ============================================================

DEFAULT_SECTORS: Dict[str, str] = {
    "AAPL": "Technology",
    "MSFT": "Technology",
    "GOOGL": "Technology",
    "AMZN": "Consumer Cyclical",
    "TSLA": "Consumer Cyclical",
    "JPM": "Financial Services",
    "BAC": "Financial Services",
    "XOM": "Energy",
    "CVX": "Energy",
    "JNJ": "Healthcare",
    "PFE": "Healthcare",
}

DEFAULT_MARKET_CAPS: Dict[str, Decimal] = {
    "AAPL": Decimal("2800.0"),
    "MSFT": Decimal("2500.0"),
    "GOOGL": Decimal("1700.0"),
    "AMZN": Decimal("1400.0"),
    "TSLA": Decimal("800.0"),
    "JPM": Decimal("450.0"),
}


class StaticReferenceData(ReferenceDataProvider):
    """
    In-process lookup tables.

    Defaults to a small table of large caps; pass your own
    mappings to extend or replace it.
    """

    def __init__(
        self,
        sectors: Optional[Dict[str, str]] = None,
        market_caps: Optional[Dict[str, Decimal]] = None,
    ):
        self._sectors = dict(DEFAULT_SECTORS if sectors is None else sectors)
        self._market_caps = dict(DEFAULT_MARKET_CAPS if market_caps is None else market_caps)

    def lookup_sector(self, symbol: str) -> Optional[str]:
        return self._sectors.get(symbol)

    def lookup_market_cap(self, symbol: str) -> Optional[Decimal]:
        return self._market_caps.get(symbol)


__all__ = [
    "ReferenceDataProvider",
    "StaticReferenceData",
    "DEFAULT_SECTORS",
    "DEFAULT_MARKET_CAPS",
]
