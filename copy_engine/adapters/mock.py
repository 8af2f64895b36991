"""
Copy Engine - Mock Broker Gateway.

============================================================
PURPOSE
============================================================
In-process broker gateway for dry runs and tests.

FEATURES:
- Symbol table with per-symbol prices
- Trade tickets and immediate fills
- Per-account raw positions
- Error injection per operation
- Call recording

============================================================
"""

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from core.exceptions import BrokerConnectionError, BrokerError

from ..types import TradeAction
from .base import (
    BrokerGateway,
    ImpactTrade,
    OrderResult,
    Quote,
    SymbolMatch,
    TradeImpact,
)


logger = logging.getLogger(__name__)


# ============================================================
# MOCK CONFIGURATION
# ============================================================

@dataclass
class MockGatewayConfig:
    """Configuration for the mock gateway."""

    prices: Dict[str, Decimal] = field(default_factory=lambda: {
        "AAPL": Decimal("190.00"),
        "MSFT": Decimal("410.00"),
        "TSLA": Decimal("250.00"),
        "SPY": Decimal("500.00"),
    })
    """Known tickers and their prices."""

    default_price: Decimal = Decimal("100.00")
    """Price used for tickers added without one."""


@dataclass
class MockTicket:
    """Outstanding trade ticket."""

    trade_id: str
    account_id: str
    action: TradeAction
    symbol: str
    units: int
    price: Decimal


# ============================================================
# MOCK BROKER GATEWAY
# ============================================================

class MockBrokerGateway(BrokerGateway):
    """
    Mock broker gateway.

    Error injection:
        fail_next(operation, error, times) makes the next `times`
        calls of an operation raise `error`.
        return_no_trade() makes impact checks return no ticket.
    """

    def __init__(self, config: Optional[MockGatewayConfig] = None):
        self._config = config or MockGatewayConfig()
        self._prices: Dict[str, Decimal] = dict(self._config.prices)
        self._symbol_ids: Dict[str, str] = {s: f"sym-{s.lower()}" for s in self._prices}
        self._tickets: Dict[str, MockTicket] = {}
        self._positions: Dict[str, List[Dict[str, Any]]] = {}
        self._failures: Dict[str, List[Exception]] = {}
        self._no_trade = False
        self._fill_price_override: Optional[Decimal] = None
        self._report_fill_price = True

        self.calls: List[str] = []
        self.orders: List[OrderResult] = []
        self.cancelled: List[str] = []

    @property
    def gateway_id(self) -> str:
        return "mock"

    # --------------------------------------------------------
    # TEST HELPERS
    # --------------------------------------------------------

    def set_price(self, symbol: str, price: Decimal) -> None:
        symbol = symbol.upper()
        self._prices[symbol] = price
        self._symbol_ids.setdefault(symbol, f"sym-{symbol.lower()}")

    def remove_symbol(self, symbol: str) -> None:
        self._prices.pop(symbol.upper(), None)
        self._symbol_ids.pop(symbol.upper(), None)

    def set_positions(self, account_id: str, positions: List[Dict[str, Any]]) -> None:
        self._positions[account_id] = positions

    def set_fill_price(self, price: Optional[Decimal]) -> None:
        """Force executed prices (None reports no executed price)."""
        self._fill_price_override = price
        self._report_fill_price = price is not None

    def fail_next(self, operation: str, error: Optional[Exception] = None, times: int = 1) -> None:
        error = error or BrokerConnectionError(f"Injected {operation} failure", operation=operation)
        self._failures.setdefault(operation, []).extend([error] * times)

    def return_no_trade(self, enabled: bool = True) -> None:
        self._no_trade = enabled

    def call_count(self, operation: str) -> int:
        return self.calls.count(operation)

    def _record(self, operation: str) -> None:
        self.calls.append(operation)
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    # --------------------------------------------------------
    # GATEWAY OPERATIONS
    # --------------------------------------------------------

    async def search_symbols(self, query: str) -> List[SymbolMatch]:
        self._record("search_symbols")
        query = query.upper()
        return [
            SymbolMatch(symbol_id=self._symbol_ids[s], symbol=s, description=f"{s} Inc.")
            for s in sorted(self._symbol_ids)
            if query in s
        ]

    async def get_stock_quote(
        self,
        user_id: str,
        user_secret: str,
        account_id: str,
        symbol: str,
    ) -> Quote:
        self._record("get_stock_quote")
        symbol = symbol.upper()
        if symbol not in self._prices:
            raise BrokerError(f"No quote for {symbol}", operation="get_stock_quote")
        price = self._prices[symbol]
        return Quote(
            symbol=symbol,
            price=price,
            bid_price=price,
            ask_price=price,
            last_price=price,
            symbol_id=self._symbol_ids.get(symbol),
        )

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
        self._record("check_trade_impact")
        if self._no_trade:
            return TradeImpact(trade=None)

        symbol = next((s for s, i in self._symbol_ids.items() if i == symbol_id), None)
        if symbol is None:
            raise BrokerError(f"Unknown symbol id {symbol_id}", operation="check_trade_impact")

        fill_price = price or self._prices.get(symbol, self._config.default_price)
        ticket = MockTicket(
            trade_id=str(uuid.uuid4()),
            account_id=account_id,
            action=action,
            symbol=symbol,
            units=quantity,
            price=fill_price,
        )
        self._tickets[ticket.trade_id] = ticket

        return TradeImpact(
            trade=ImpactTrade(
                id=ticket.trade_id,
                price=fill_price,
                units=Decimal(quantity),
                action=action.value.upper(),
            ),
            trade_impacts=[{
                "account": account_id,
                "remaining_cash": None,
                "estimated_commissions": 0,
            }],
        )

    async def place_order(
        self,
        user_id: str,
        user_secret: str,
        trade_id: str,
        wait_to_confirm: bool = True,
    ) -> OrderResult:
        self._record("place_order")
        ticket = self._tickets.pop(trade_id, None)
        if ticket is None:
            raise BrokerError(f"Trade {trade_id} expired or unknown", operation="place_order")

        executed_price = ticket.price
        if not self._report_fill_price:
            executed_price = None
        elif self._fill_price_override is not None:
            executed_price = self._fill_price_override

        result = OrderResult(
            order_id=f"order-{len(self.orders) + 1}",
            executed_price=executed_price,
            status="EXECUTED",
            filled_units=Decimal(ticket.units),
        )
        self.orders.append(result)
        logger.debug(f"Mock filled {ticket.action.value} {ticket.units} {ticket.symbol}")
        return result

    async def cancel_order(
        self,
        user_id: str,
        user_secret: str,
        account_id: str,
        order_id: str,
    ) -> bool:
        self._record("cancel_order")
        self.cancelled.append(order_id)
        return True

    async def get_account_positions(
        self,
        user_id: str,
        user_secret: str,
        account_id: str,
    ) -> List[Dict[str, Any]]:
        self._record("get_account_positions")
        return list(self._positions.get(account_id, []))


__all__ = ["MockBrokerGateway", "MockGatewayConfig"]
