"""
Copy Engine - Broker Gateway Base.

============================================================
PURPOSE
============================================================
Abstract interface for the brokerage gateway.

OPERATIONS:
- search_symbols: resolve tickers to broker symbol ids
- get_stock_quote: current price for a ticker
- check_trade_impact: pre-check an order, returns a trade ticket
- place_order: execute a trade ticket
- cancel_order: cancel a working order
- get_account_positions: raw positions of an account

Trade tickets from check_trade_impact are short-lived
(about five minutes) and must be placed promptly.

============================================================
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..types import TradeAction


# ============================================================
# GATEWAY TYPES
# ============================================================

@dataclass(frozen=True)
class SymbolMatch:
    """One symbol search result."""

    symbol_id: str
    """Broker's universal symbol id."""

    symbol: str
    description: Optional[str] = None


@dataclass(frozen=True)
class Quote:
    """Current price snapshot."""

    symbol: str
    price: Decimal
    bid_price: Decimal = Decimal("0")
    ask_price: Decimal = Decimal("0")
    last_price: Decimal = Decimal("0")
    symbol_id: Optional[str] = None


@dataclass(frozen=True)
class ImpactTrade:
    """Trade ticket returned by the impact check."""

    id: str
    price: Optional[Decimal] = None
    units: Optional[Decimal] = None
    action: Optional[str] = None


@dataclass
class TradeImpact:
    """Outcome of a trade-impact pre-check."""

    trade: Optional[ImpactTrade] = None
    trade_impacts: List[Dict[str, Any]] = field(default_factory=list)
    """Per-account effects (remaining_cash, estimated_commissions, ...)."""


@dataclass(frozen=True)
class OrderResult:
    """Broker response to a placed order."""

    order_id: Optional[str]
    executed_price: Optional[Decimal] = None
    status: Optional[str] = None
    filled_units: Optional[Decimal] = None


# ============================================================
# GATEWAY INTERFACE
# ============================================================

class BrokerGateway(ABC):
    """
    Abstract brokerage gateway.

    Implementations raise core.exceptions.BrokerError subclasses.
    """

    @property
    @abstractmethod
    def gateway_id(self) -> str:
        """Gateway identifier for logs."""
        pass

    async def connect(self) -> None:
        """Open network resources."""
        return None

    async def disconnect(self) -> None:
        """Release network resources."""
        return None

    async def __aenter__(self) -> "BrokerGateway":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    @abstractmethod
    async def search_symbols(self, query: str) -> List[SymbolMatch]:
        """Search symbols by ticker substring. No user auth."""
        pass

    @abstractmethod
    async def get_stock_quote(
        self,
        user_id: str,
        user_secret: str,
        account_id: str,
        symbol: str,
    ) -> Quote:
        """Get the current price of a ticker."""
        pass

    @abstractmethod
    async def check_trade_impact(
        self,
        user_id: str,
        user_secret: str,
        account_id: str,
        action: TradeAction,
        symbol_id: str,
        order_type: str,
        quantity: int,
        price: Optional[Decimal] = None,
    ) -> TradeImpact:
        """Pre-check an order and obtain a trade ticket."""
        pass

    @abstractmethod
    async def place_order(
        self,
        user_id: str,
        user_secret: str,
        trade_id: str,
        wait_to_confirm: bool = True,
    ) -> OrderResult:
        """Place the order behind a trade ticket."""
        pass

    @abstractmethod
    async def cancel_order(
        self,
        user_id: str,
        user_secret: str,
        account_id: str,
        order_id: str,
    ) -> bool:
        """Cancel a working order."""
        pass

    @abstractmethod
    async def get_account_positions(
        self,
        user_id: str,
        user_secret: str,
        account_id: str,
    ) -> List[Dict[str, Any]]:
        """Raw position payloads for an account."""
        pass


__all__ = [
    "SymbolMatch",
    "Quote",
    "ImpactTrade",
    "TradeImpact",
    "OrderResult",
    "BrokerGateway",
]
