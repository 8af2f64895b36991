"""
Copy Engine - Trade Filter & Exposure Engine.

============================================================
PURPOSE
============================================================
Decides whether a leader trade should be copied for a follower.

STAGE 1 - ATTRIBUTE FILTERS (first match wins):
1. Penny stocks
2. Options
3. 0DTE options
4. Crypto
5. Market-cap bounds
6. Price bounds
7. Sector allow/block lists

STAGE 2 - EXPOSURE LIMITS (only when enabled):
1. Max open positions
2. Max position concentration
3. Max sector concentration
4. Max daily trades
5. Max daily volume

Stage 1 always runs before stage 2. A rejection carries a
human-readable reason with the numbers that triggered it.

PURE:
    Reads only its arguments, reference data and the clock.

============================================================
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from core.clock import ClockProtocol, SystemClock, parse_date

from .config import ExposureConfig
from .reference_data import ReferenceDataProvider, StaticReferenceData
from .types import (
    AssetType,
    CopyRelationship,
    ExposureLimits,
    FilterResult,
    LeaderTrade,
    PositionData,
    TradeFilters,
    ZERO,
    to_decimal,
)


logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


def _plain(value: Any) -> Decimal:
    """Render-friendly Decimal: integral values lose their fraction."""
    number = to_decimal(value)
    if number == number.to_integral_value():
        return number.quantize(Decimal(1))
    return number.normalize()


# ============================================================
# TRADE FILTER SERVICE
# ============================================================

class TradeFilterService:
    """
    Trade filter and exposure-limit evaluator.

    Holds only collaborators (reference data, clock) and
    constants; a single instance may be shared freely.
    """

    def __init__(
        self,
        reference_data: Optional[ReferenceDataProvider] = None,
        clock: Optional[ClockProtocol] = None,
        config: Optional[ExposureConfig] = None,
    ):
        self._reference_data = reference_data or StaticReferenceData()
        self._clock = clock or SystemClock()
        self._config = config or ExposureConfig()

    def should_copy_trade(
        self,
        trade: LeaderTrade,
        relationship: CopyRelationship,
        account_balance: Decimal,
        current_positions: Dict[str, PositionData],
        today_trade_count: int,
        today_volume: Decimal,
    ) -> FilterResult:
        """
        Evaluate a trade against a relationship's filters and limits.

        Args:
            trade: Candidate leader trade
            relationship: Follower's copy relationship
            account_balance: Follower's cash balance
            current_positions: Open positions by symbol
            today_trade_count: Successful executions today
            today_volume: Executed dollar volume today

        Returns:
            FilterResult (reason set on rejection)
        """
        result = self._check_trade_filters(trade, relationship.filters)
        if not result.should_copy:
            return result

        result = self._check_exposure_limits(
            trade,
            relationship.limits,
            to_decimal(account_balance) or ZERO,
            current_positions,
            today_trade_count,
            to_decimal(today_volume) or ZERO,
        )
        if not result.should_copy:
            return result

        return FilterResult.accept()

    # --------------------------------------------------------
    # STAGE 1: ATTRIBUTE FILTERS
    # --------------------------------------------------------

    def _check_trade_filters(self, trade: LeaderTrade, filters: TradeFilters) -> FilterResult:
        price = trade.price

        if filters.skip_penny_stocks:
            threshold = self._config.penny_stock_threshold
            if price and price < threshold:
                return FilterResult.reject(f"Penny stock (${price:.2f} < ${threshold:.2f})")

        if filters.skip_options and trade.asset_type == AssetType.OPTION:
            return FilterResult.reject("Options trades disabled")

        if filters.skip_0dte_options and trade.asset_type == AssetType.OPTION:
            if self._expires_today(trade.expiration_date):
                return FilterResult.reject("0DTE options disabled")

        if filters.skip_crypto and trade.asset_type == AssetType.CRYPTO:
            return FilterResult.reject("Crypto trades disabled")

        if filters.filter_by_market_cap:
            market_cap = self._reference_data.lookup_market_cap(trade.symbol)
            if market_cap:
                min_cap = filters.min_market_cap
                max_cap = filters.max_market_cap
                if min_cap and market_cap < min_cap:
                    return FilterResult.reject(
                        f"Market cap ${market_cap:.1f}B < min ${to_decimal(min_cap):.1f}B"
                    )
                if max_cap and market_cap > max_cap:
                    return FilterResult.reject(
                        f"Market cap ${market_cap:.1f}B > max ${to_decimal(max_cap):.1f}B"
                    )

        if filters.filter_by_price and price:
            min_price = filters.min_stock_price
            max_price = filters.max_stock_price
            if min_price and price < min_price:
                return FilterResult.reject(
                    f"Price ${price:.2f} < min ${to_decimal(min_price):.2f}"
                )
            if max_price and price > max_price:
                return FilterResult.reject(
                    f"Price ${price:.2f} > max ${to_decimal(max_price):.2f}"
                )

        if filters.filter_by_sector:
            sector = self._reference_data.lookup_sector(trade.symbol)
            if sector:
                if filters.allowed_sectors and sector not in filters.allowed_sectors:
                    return FilterResult.reject(f"Sector '{sector}' not in allowed list")
                if filters.blocked_sectors and sector in filters.blocked_sectors:
                    return FilterResult.reject(f"Sector '{sector}' is blocked")

        return FilterResult.accept()

    def _expires_today(self, expiration_date: Optional[str]) -> bool:
        if not expiration_date:
            return False
        try:
            expires = parse_date(expiration_date)
        except (TypeError, ValueError):
            # Malformed expirations are not grounds for rejection
            logger.debug(f"Ignoring unparseable expiration date {expiration_date!r}")
            return False
        return (expires - self._clock.today()).days == 0

    # --------------------------------------------------------
    # STAGE 2: EXPOSURE LIMITS
    # --------------------------------------------------------

    def _check_exposure_limits(
        self,
        trade: LeaderTrade,
        limits: ExposureLimits,
        account_balance: Decimal,
        current_positions: Dict[str, PositionData],
        today_trade_count: int,
        today_volume: Decimal,
    ) -> FilterResult:
        if not limits.enabled:
            return FilterResult.accept()

        balance = account_balance if account_balance > 0 else self._config.fallback_balance
        trade_value = self._estimate_trade_value(trade)

        if limits.max_open_positions:
            if len(current_positions) >= limits.max_open_positions:
                return FilterResult.reject(
                    f"Max open positions reached ({limits.max_open_positions})"
                )

        if limits.max_position_concentration:
            max_concentration = to_decimal(limits.max_position_concentration)
            existing = current_positions.get(trade.symbol)
            existing_value = existing.value if existing else ZERO
            concentration = (existing_value + trade_value) / balance * HUNDRED
            if concentration > max_concentration:
                return FilterResult.reject(
                    f"Position concentration {concentration:.1f}% > max {max_concentration:.1f}%"
                )

        if limits.max_sector_concentration:
            sector = self._reference_data.lookup_sector(trade.symbol)
            if sector:
                max_sector = to_decimal(limits.max_sector_concentration)
                sector_value = self._sector_value(sector, current_positions)
                concentration = (sector_value + trade_value) / balance * HUNDRED
                if concentration > max_sector:
                    return FilterResult.reject(
                        f"Sector '{sector}' concentration {concentration:.1f}% > max {max_sector:.1f}%"
                    )

        if limits.max_daily_trades:
            if today_trade_count >= limits.max_daily_trades:
                return FilterResult.reject(
                    f"Daily trade limit reached ({limits.max_daily_trades})"
                )

        if limits.max_daily_volume:
            max_volume = to_decimal(limits.max_daily_volume)
            projected = today_volume + trade_value
            if projected > max_volume:
                return FilterResult.reject(
                    f"Daily volume limit would be exceeded (${projected:.2f} > ${max_volume:.2f})"
                )

        return FilterResult.accept()

    def _estimate_trade_value(self, trade: LeaderTrade) -> Decimal:
        """Trade value at its price, or at the fallback price when unknown."""
        return to_decimal(trade.quantity) * (trade.price or self._config.fallback_price)

    def _sector_value(self, sector: str, current_positions: Dict[str, PositionData]) -> Decimal:
        total = ZERO
        for symbol, position in current_positions.items():
            if self._reference_data.lookup_sector(symbol) == sector:
                total += position.value
        return total

    # --------------------------------------------------------
    # SUMMARY
    # --------------------------------------------------------

    def get_filter_summary(self, relationship: CopyRelationship) -> Dict[str, Any]:
        """
        Describe a relationship's active filters and limits.

        Returns:
            Dict with active_filters, active_limits and total_protections
        """
        filters = relationship.filters
        limits = relationship.limits
        active_filters: List[str] = []
        active_limits: List[str] = []

        if filters.skip_penny_stocks:
            active_filters.append(f"Skip penny stocks (<${_plain(self._config.penny_stock_threshold)})")
        if filters.skip_options:
            active_filters.append("Skip all options")
        if filters.skip_0dte_options:
            active_filters.append("Skip 0DTE options")
        if filters.skip_crypto:
            active_filters.append("Skip crypto")

        if filters.filter_by_market_cap:
            if filters.min_market_cap:
                active_filters.append(f"Min market cap: ${_plain(filters.min_market_cap)}B")
            if filters.max_market_cap:
                active_filters.append(f"Max market cap: ${_plain(filters.max_market_cap)}B")

        if filters.filter_by_price:
            if filters.min_stock_price:
                active_filters.append(f"Min price: ${_plain(filters.min_stock_price)}")
            if filters.max_stock_price:
                active_filters.append(f"Max price: ${_plain(filters.max_stock_price)}")

        if filters.filter_by_sector:
            if filters.allowed_sectors:
                active_filters.append(f"Allowed sectors: {', '.join(filters.allowed_sectors)}")
            if filters.blocked_sectors:
                active_filters.append(f"Blocked sectors: {', '.join(filters.blocked_sectors)}")

        if limits.enabled:
            if limits.max_position_concentration:
                active_limits.append(f"Max position: {_plain(limits.max_position_concentration)}%")
            if limits.max_sector_concentration:
                active_limits.append(f"Max sector: {_plain(limits.max_sector_concentration)}%")
            if limits.max_open_positions:
                active_limits.append(f"Max positions: {limits.max_open_positions}")
            if limits.max_daily_trades:
                active_limits.append(f"Max daily trades: {limits.max_daily_trades}")
            if limits.max_daily_volume:
                active_limits.append(f"Max daily volume: ${_plain(limits.max_daily_volume):,}")

        return {
            "active_filters": active_filters,
            "active_limits": active_limits,
            "total_protections": len(active_filters) + len(active_limits),
        }


__all__ = ["TradeFilterService"]
