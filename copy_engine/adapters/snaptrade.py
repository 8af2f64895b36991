"""
Copy Engine - SnapTrade Gateway.

============================================================
PURPOSE
============================================================
Production broker gateway for the SnapTrade REST API.

SAFETY FEATURES:
- Request signing (HMAC-SHA256 over path, query and body)
- Error mapping to BrokerError subclasses
- Bounded timeouts per request
- Connection management

============================================================
"""

import asyncio
import base64
import hashlib
import hmac
import json
import logging
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode, urlparse

import aiohttp

from core.exceptions import (
    BrokerConnectionError,
    BrokerError,
    BrokerRequestError,
    MissingConfigError,
    SymbolResolutionError,
)

from ..config import BrokerConfig
from ..types import TradeAction, to_decimal
from .base import (
    BrokerGateway,
    ImpactTrade,
    OrderResult,
    Quote,
    SymbolMatch,
    TradeImpact,
)


logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def sign_request(
    consumer_key: str,
    path: str,
    query: str,
    content: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Compute the request signature.

    The signed message is the compact, key-sorted JSON of
    {content, path, query}; the digest is base64 encoded.
    """
    message = json.dumps(
        {"content": content, "path": path, "query": query},
        separators=(",", ":"),
        sort_keys=True,
    )
    digest = hmac.new(consumer_key.encode(), message.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def _parse_symbol(item: Dict[str, Any]) -> Optional[SymbolMatch]:
    # Search results either nest the universal symbol or are the symbol
    data = item.get("symbol") if isinstance(item.get("symbol"), dict) else item
    symbol_id = data.get("id")
    ticker = data.get("symbol")
    if not symbol_id or not ticker:
        return None
    return SymbolMatch(
        symbol_id=str(symbol_id),
        symbol=str(ticker),
        description=data.get("description"),
    )


def _decimal_or_none(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return to_decimal(value)


# ============================================================
# SNAPTRADE GATEWAY
# ============================================================

class SnapTradeGateway(BrokerGateway):
    """
    SnapTrade REST gateway.

    Implements the BrokerGateway interface over aiohttp.
    """

    def __init__(
        self,
        config: Optional[BrokerConfig] = None,
        client_id: Optional[str] = None,
        consumer_key: Optional[str] = None,
    ):
        """
        Initialize the gateway.

        Args:
            config: Broker configuration
            client_id: Partner client id (defaults to the environment)
            consumer_key: Signing key (defaults to the environment)
        """
        self._config = config or BrokerConfig()
        self._client_id = client_id or self._config.client_id or ""
        self._consumer_key = consumer_key or self._config.consumer_key or ""

        self._base_url = self._config.base_url.rstrip("/")
        self._base_path = urlparse(self._base_url).path

        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def gateway_id(self) -> str:
        return "snaptrade"

    @property
    def is_connected(self) -> bool:
        return self._session is not None

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def connect(self) -> None:
        """Open the HTTP session."""
        if not self._client_id:
            raise MissingConfigError(self._config.client_id_env)
        if not self._consumer_key:
            raise MissingConfigError(self._config.consumer_key_env)

        if self._session is not None:
            await self.disconnect()

        timeout = aiohttp.ClientTimeout(
            connect=self._config.connection_timeout_seconds,
            total=self._config.read_timeout_seconds,
        )
        self._session = aiohttp.ClientSession(timeout=timeout)
        logger.info(f"Connected to SnapTrade at {self._base_url}")

    async def disconnect(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None
            logger.info("Disconnected from SnapTrade")

    # --------------------------------------------------------
    # REFERENCE DATA
    # --------------------------------------------------------

    async def search_symbols(self, query: str) -> List[SymbolMatch]:
        data = await self._request(
            "POST",
            "/symbols",
            body={"substring": query},
            operation="search_symbols",
        )
        matches = []
        for item in data or []:
            match = _parse_symbol(item)
            if match:
                matches.append(match)
        return matches

    async def get_stock_quote(
        self,
        user_id: str,
        user_secret: str,
        account_id: str,
        symbol: str,
    ) -> Quote:
        """
        Price a ticker through a one-unit market impact check.

        The API has no plain quote endpoint for every brokerage,
        so the impact ticket's price is used.
        """
        matches = await self.search_symbols(symbol)
        if not matches:
            raise SymbolResolutionError(symbol)

        target = symbol.upper()
        match = next((m for m in matches if m.symbol.upper() == target), matches[0])

        data = await self._impact_request(
            user_id,
            user_secret,
            account_id,
            TradeAction.BUY,
            match.symbol_id,
            "Market",
            1,
        )
        trade = (data or {}).get("trade") or {}

        return Quote(
            symbol=target,
            price=_decimal_or_none(trade.get("price")) or ZERO,
            bid_price=_decimal_or_none(trade.get("bid_price", trade.get("bidPrice"))) or ZERO,
            ask_price=_decimal_or_none(trade.get("ask_price", trade.get("askPrice"))) or ZERO,
            last_price=_decimal_or_none(trade.get("last_trade_price", trade.get("lastTradePrice"))) or ZERO,
            symbol_id=match.symbol_id,
        )

    # --------------------------------------------------------
    # TRADING
    # --------------------------------------------------------

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
        data = await self._impact_request(
            user_id, user_secret, account_id, action, symbol_id, order_type, quantity, price
        )
        data = data or {}

        trade = None
        raw_trade = data.get("trade")
        if raw_trade and raw_trade.get("id"):
            trade = ImpactTrade(
                id=str(raw_trade["id"]),
                price=_decimal_or_none(raw_trade.get("price")),
                units=_decimal_or_none(raw_trade.get("units")),
                action=raw_trade.get("action"),
            )

        return TradeImpact(trade=trade, trade_impacts=list(data.get("trade_impacts") or []))

    async def place_order(
        self,
        user_id: str,
        user_secret: str,
        trade_id: str,
        wait_to_confirm: bool = True,
    ) -> OrderResult:
        data = await self._request(
            "POST",
            f"/trade/{trade_id}",
            user_id=user_id,
            user_secret=user_secret,
            body={"wait_to_confirm": wait_to_confirm},
            operation="place_order",
        )
        data = data or {}

        order_id = data.get("brokerage_order_id") or data.get("order_id")
        return OrderResult(
            order_id=str(order_id) if order_id is not None else None,
            executed_price=_decimal_or_none(data.get("execution_price", data.get("executed_price"))),
            status=data.get("status"),
            filled_units=_decimal_or_none(data.get("filled_quantity", data.get("filled_units"))),
        )

    async def cancel_order(
        self,
        user_id: str,
        user_secret: str,
        account_id: str,
        order_id: str,
    ) -> bool:
        await self._request(
            "POST",
            f"/accounts/{account_id}/orders/cancel",
            user_id=user_id,
            user_secret=user_secret,
            body={"brokerage_order_id": order_id},
            operation="cancel_order",
        )
        logger.info(f"Cancelled order {order_id} on account {account_id}")
        return True

    # --------------------------------------------------------
    # ACCOUNT
    # --------------------------------------------------------

    async def get_account_positions(
        self,
        user_id: str,
        user_secret: str,
        account_id: str,
    ) -> List[Dict[str, Any]]:
        data = await self._request(
            "GET",
            f"/accounts/{account_id}/positions",
            user_id=user_id,
            user_secret=user_secret,
            operation="get_account_positions",
        )
        return list(data or [])

    # --------------------------------------------------------
    # HTTP
    # --------------------------------------------------------

    async def _impact_request(
        self,
        user_id: str,
        user_secret: str,
        account_id: str,
        action: TradeAction,
        symbol_id: str,
        order_type: str,
        quantity: int,
        price: Optional[Decimal] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "account_id": account_id,
            "action": action.value.upper(),
            "universal_symbol_id": symbol_id,
            "order_type": order_type,
            "time_in_force": "Day",
            "units": quantity,
        }
        if price and order_type.lower() == "limit":
            body["price"] = float(price)

        return await self._request(
            "POST",
            "/trade/impact",
            user_id=user_id,
            user_secret=user_secret,
            body=body,
            operation="check_trade_impact",
        )

    async def _request(
        self,
        method: str,
        path: str,
        user_id: Optional[str] = None,
        user_secret: Optional[str] = None,
        body: Optional[Dict[str, Any]] = None,
        operation: Optional[str] = None,
    ) -> Any:
        """Make a signed API request."""
        if not self._session:
            raise BrokerError("Not connected", operation=operation)

        params = {
            "clientId": self._client_id,
            "timestamp": str(int(time.time())),
        }
        if user_id:
            params["userId"] = user_id
        if user_secret:
            params["userSecret"] = user_secret

        query = urlencode(params)
        headers = {
            "Signature": sign_request(self._consumer_key, f"{self._base_path}{path}", query, body),
            "Content-Type": "application/json",
        }
        url = f"{self._base_url}{path}?{query}"

        try:
            async with self._session.request(method, url, json=body, headers=headers) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise BrokerRequestError(
                        f"SnapTrade {operation or path} failed ({response.status}): {text[:200]}",
                        status_code=response.status,
                        operation=operation,
                    )
                if response.status == 204:
                    return None
                return await response.json(content_type=None)

        except aiohttp.ClientError as e:
            raise BrokerConnectionError(f"Network error: {e}", operation=operation, cause=e)
        except asyncio.TimeoutError as e:
            raise BrokerConnectionError("Request timeout", operation=operation, cause=e)


__all__ = ["SnapTradeGateway", "sign_request"]
