"""
Copy Engine - Position Sizing Calculator.

============================================================
PURPOSE
============================================================
Decides how many shares a follower buys or sells when copying
a leader's trade.

METHODS:
- proportional:  allocation% of the follower's balance
- fixed_dollar:  a fixed dollar amount per trade
- fixed_shares:  a fixed share count per trade
- risk_based:    (risk% of balance) / stop-loss% x 100
- multiplier:    leader quantity x multiplier, at least 1 share

Every method then applies the relationship's max_position_size cap.

PURE:
    No I/O, no state. A misconfigured relationship yields a
    zero-quantity result with method_used="error" instead of raising.

============================================================
"""

import logging
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from typing import Optional, Union

from .config import SizingConfig
from .types import (
    CopyRelationship,
    PositionSizeResult,
    SizingMethod,
    TradeAction,
    to_decimal,
)


logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def _floor_shares(amount: Decimal, price: Decimal) -> int:
    """Whole shares purchasable for amount at price."""
    if price <= 0:
        return 0
    return int((amount / price).to_integral_value(rounding=ROUND_FLOOR))


def _is_buy(action: Union[TradeAction, str]) -> bool:
    if isinstance(action, TradeAction):
        return action == TradeAction.BUY
    return action.upper() == "BUY"


# ============================================================
# POSITION SIZING CALCULATOR
# ============================================================

class PositionSizingCalculator:
    """
    Calculates follower position sizes.

    Stateless beyond its defaults; safe to share between tasks.
    """

    def __init__(self, config: Optional[SizingConfig] = None):
        self._config = config or SizingConfig()

    def calculate_position_size(
        self,
        relationship: CopyRelationship,
        leader_quantity: Decimal,
        leader_price: Optional[Decimal],
        follower_balance: Decimal,
        current_price: Decimal,
    ) -> PositionSizeResult:
        """
        Calculate the follower's position size.

        Args:
            relationship: Copy relationship (its sizing settings are read)
            leader_quantity: Leader's trade quantity
            leader_price: Leader's execution price, if known
            follower_balance: Follower's account balance
            current_price: Current market price of the symbol

        Returns:
            PositionSizeResult
        """
        settings = relationship.sizing
        leader_quantity = to_decimal(leader_quantity)
        follower_balance = to_decimal(follower_balance)
        price = to_decimal(leader_price) or to_decimal(current_price)
        cap = to_decimal(settings.max_position_size)

        if settings.method == SizingMethod.PROPORTIONAL:
            allocation = to_decimal(settings.allocation_percent)
            if not allocation or allocation <= 0:
                allocation = self._config.default_allocation_percent
            dollar_amount = (allocation / HUNDRED) * follower_balance
            return self._size_from_dollars(dollar_amount, price, cap, SizingMethod.PROPORTIONAL)

        if settings.method == SizingMethod.FIXED_DOLLAR:
            amount = to_decimal(settings.fixed_dollar_amount)
            if not amount or amount <= 0:
                logger.error(f"Relationship {relationship.id}: fixed dollar amount not set")
                return PositionSizeResult.error()
            return self._size_from_dollars(amount, price, cap, SizingMethod.FIXED_DOLLAR)

        if settings.method == SizingMethod.FIXED_SHARES:
            shares = settings.fixed_shares_amount
            if not shares or shares <= 0:
                logger.error(f"Relationship {relationship.id}: fixed shares amount not set")
                return PositionSizeResult.error()
            quantity = int(to_decimal(shares).to_integral_value(rounding=ROUND_FLOOR))
            return self._cap_shares(quantity, price, cap, SizingMethod.FIXED_SHARES)

        if settings.method == SizingMethod.RISK_BASED:
            risk_percent = to_decimal(settings.risk_percent)
            if not risk_percent or risk_percent <= 0:
                logger.error(f"Relationship {relationship.id}: risk percent not set")
                return PositionSizeResult.error()

            stop_loss_percent = to_decimal(settings.auto_stop_loss_percent)
            if not stop_loss_percent or stop_loss_percent <= 0:
                logger.warning(
                    f"Relationship {relationship.id}: stop-loss percent not set, "
                    f"defaulting to {self._config.default_stop_loss_percent}%"
                )
                stop_loss_percent = self._config.default_stop_loss_percent

            max_risk_dollars = (risk_percent / HUNDRED) * follower_balance
            dollar_amount = (max_risk_dollars / stop_loss_percent) * HUNDRED
            return self._size_from_dollars(dollar_amount, price, cap, SizingMethod.RISK_BASED)

        if settings.method == SizingMethod.MULTIPLIER:
            multiplier = to_decimal(settings.multiplier)
            if not multiplier or multiplier <= 0:
                logger.error(f"Relationship {relationship.id}: multiplier not set")
                return PositionSizeResult.error()
            quantity = int((leader_quantity * multiplier).to_integral_value(rounding=ROUND_FLOOR))
            # Copy at least one share
            quantity = max(quantity, 1)
            return self._cap_shares(quantity, price, cap, SizingMethod.MULTIPLIER)

        logger.error(f"Relationship {relationship.id}: unknown sizing method {settings.method}")
        return PositionSizeResult.error()

    # --------------------------------------------------------
    # SIZING HELPERS
    # --------------------------------------------------------

    def _size_from_dollars(
        self,
        dollar_amount: Decimal,
        price: Decimal,
        cap: Optional[Decimal],
        method: SizingMethod,
    ) -> PositionSizeResult:
        """Dollar-target methods: cap the dollars, then floor to shares."""
        capped = False
        if cap and dollar_amount > cap:
            dollar_amount = cap
            capped = True

        quantity = _floor_shares(dollar_amount, price)

        # Never starve an allocation that affords a share; capping always floors
        if quantity == 0 and not capped and price > 0 and dollar_amount >= price:
            quantity = 1

        return PositionSizeResult(
            quantity=quantity,
            estimated_cost=Decimal(quantity) * price,
            method_used=method.value,
            capped=capped,
        )

    def _cap_shares(
        self,
        quantity: int,
        price: Decimal,
        cap: Optional[Decimal],
        method: SizingMethod,
    ) -> PositionSizeResult:
        """Share-count methods: reduce the quantity to fit the cap."""
        estimated_cost = Decimal(quantity) * price
        capped = False
        if cap and estimated_cost > cap:
            quantity = _floor_shares(cap, price)
            estimated_cost = Decimal(quantity) * price
            capped = True

        return PositionSizeResult(
            quantity=quantity,
            estimated_cost=estimated_cost,
            method_used=method.value,
            capped=capped,
        )

    # --------------------------------------------------------
    # PROTECTIVE PRICES
    # --------------------------------------------------------

    def calculate_stop_loss_price(
        self,
        entry_price: Decimal,
        stop_loss_percent: Decimal,
        action: Union[TradeAction, str],
    ) -> Decimal:
        """
        Stop-loss price, rounded to cents.

        Below entry for buys, above entry for sells.
        """
        if _is_buy(action):
            stop_price = entry_price * (1 - stop_loss_percent / HUNDRED)
        else:
            stop_price = entry_price * (1 + stop_loss_percent / HUNDRED)
        return stop_price.quantize(CENT, rounding=ROUND_HALF_UP)

    def calculate_take_profit_price(
        self,
        entry_price: Decimal,
        take_profit_percent: Decimal,
        action: Union[TradeAction, str],
    ) -> Decimal:
        """
        Take-profit price, rounded to cents.

        Above entry for buys, below entry for sells.
        """
        if _is_buy(action):
            take_profit = entry_price * (1 + take_profit_percent / HUNDRED)
        else:
            take_profit = entry_price * (1 - take_profit_percent / HUNDRED)
        return take_profit.quantize(CENT, rounding=ROUND_HALF_UP)


__all__ = ["PositionSizingCalculator"]
