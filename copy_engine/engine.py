"""
Copy Engine - Copy Trade Engine.

============================================================
PURPOSE
============================================================
Fans one leader trade out to every active follower and, per
follower, runs filter -> size -> price-check -> execute -> persist.

STATE MACHINE (per trade/follower pair):
    pending -> skipped   no brokerage account / follower missing
    pending -> skipped   filter or exposure limit rejects
    pending -> failed    symbol not resolvable
    pending -> skipped   sized quantity is 0
    pending -> failed    trade impact returned no ticket
    pending -> failed    order placement failed after retries
    pending -> failed    any unexpected error
    pending -> success   order placed

LEDGER:
    Every terminal branch inserts exactly one CopyExecution.
    The status is final before the insert; rows are never updated.

ISOLATION:
    Errors are contained per follower. A follower's failure is
    recorded, never propagated to its siblings.

============================================================
"""

import asyncio
import logging
from decimal import Decimal
from typing import Dict, List, Optional

from core.clock import ClockProtocol, SystemClock

from .adapters.base import BrokerGateway
from .config import EngineConfig
from .filters import TradeFilterService
from .notifications import (
    NotificationSink,
    NullNotificationSink,
    create_trade_executed_event,
    create_trade_failed_event,
)
from .retry import RetryPolicy
from .sizing import PositionSizingCalculator
from .store.base import RecordStore
from .types import (
    BrokerageAccount,
    CopyExecution,
    CopyRelationship,
    DailyStats,
    ExecutionResult,
    ExecutionStatus,
    Follower,
    LeaderTrade,
    NotificationEvent,
    PositionData,
    TradeAction,
    ZERO,
    to_decimal,
)


logger = logging.getLogger(__name__)

NO_ACCOUNT = "none"


# ============================================================
# COPY TRADE ENGINE
# ============================================================

class CopyTradeEngine:
    """
    Copy trade orchestrator.

    Holds no mutable state of its own; every collaborator is
    injected so one engine can serve a whole batch or a test.
    """

    def __init__(
        self,
        gateway: BrokerGateway,
        store: RecordStore,
        sizing: Optional[PositionSizingCalculator] = None,
        filters: Optional[TradeFilterService] = None,
        retry: Optional[RetryPolicy] = None,
        notifications: Optional[NotificationSink] = None,
        clock: Optional[ClockProtocol] = None,
        config: Optional[EngineConfig] = None,
    ):
        """
        Initialize engine.

        Args:
            gateway: Broker gateway
            store: Record store
            sizing: Position sizing calculator
            filters: Trade filter service
            retry: Retry policy for order placement
            notifications: Notification output port
            clock: Time source
            config: Engine configuration
        """
        self._gateway = gateway
        self._store = store
        self._clock = clock or SystemClock()
        self._sizing = sizing or PositionSizingCalculator()
        self._filters = filters or TradeFilterService(clock=self._clock)
        self._retry = retry or RetryPolicy()
        self._notifications = notifications or NullNotificationSink()
        self._config = config or EngineConfig()

    # --------------------------------------------------------
    # STATE RECONSTRUCTION
    # --------------------------------------------------------

    async def get_current_positions(self, relationship_id: str) -> Dict[str, PositionData]:
        """
        Rebuild open positions from a relationship's successful executions.

        Buys add quantity and value, sells subtract; symbols at or
        below zero quantity are dropped.
        """
        executions = await self._store.get_successful_executions(relationship_id)

        positions: Dict[str, PositionData] = {}
        for execution in executions:
            position = positions.setdefault(execution.symbol, PositionData())
            quantity = Decimal(execution.quantity)
            value = quantity * (execution.executed_price or ZERO)

            if execution.action == TradeAction.BUY:
                position.quantity += quantity
                position.value += value
            else:
                position.quantity -= quantity
                position.value -= value

        return {symbol: p for symbol, p in positions.items() if p.quantity > 0}

    async def get_today_stats(self, relationship_id: str) -> DailyStats:
        """Count and dollar volume of successful executions since midnight."""
        executions = await self._store.get_successful_executions(
            relationship_id,
            since=self._clock.start_of_day(),
        )
        volume = sum((e.notional for e in executions), ZERO)
        return DailyStats(count=len(executions), volume=volume)

    # --------------------------------------------------------
    # BROKER LOOKUPS
    # --------------------------------------------------------

    async def resolve_symbol_id(self, symbol: str) -> Optional[str]:
        """
        Resolve a ticker to the broker's symbol id.

        Prefers an exact case-insensitive match, else the first result.
        Lookup errors resolve to None.
        """
        try:
            matches = await self._gateway.search_symbols(symbol)
        except Exception as e:
            logger.error(f"Symbol search failed for {symbol}: {e}")
            return None

        if not matches:
            return None

        target = symbol.upper()
        for match in matches:
            if match.symbol.upper() == target:
                return match.symbol_id
        return matches[0].symbol_id

    async def get_current_price(
        self,
        trade: LeaderTrade,
        follower: Follower,
        account: BrokerageAccount,
    ) -> Decimal:
        """Leader's price if known, else a live quote, else the fallback price."""
        if trade.price:
            return trade.price

        try:
            quote = await self._gateway.get_stock_quote(
                follower.broker_user_id,
                follower.broker_user_secret,
                account.account_id,
                trade.symbol,
            )
            if quote.price:
                return quote.price
            logger.warning(f"Quote for {trade.symbol} returned no price, using fallback")
        except Exception as e:
            logger.warning(f"Quote for {trade.symbol} failed ({e}), using fallback")

        return self._config.fallback_quote_price

    # --------------------------------------------------------
    # PER-FOLLOWER EXECUTION
    # --------------------------------------------------------

    async def execute_copy_trade(
        self,
        trade: LeaderTrade,
        relationship: CopyRelationship,
        follower: Follower,
        account: BrokerageAccount,
    ) -> ExecutionResult:
        """
        Replicate a trade for one follower.

        Never raises; every outcome is persisted as one execution.
        """
        execution = CopyExecution.for_trade(trade, relationship, account.account_id)

        try:
            positions, today = await asyncio.gather(
                self.get_current_positions(relationship.id),
                self.get_today_stats(relationship.id),
            )

            # Step 1: Filters and exposure limits
            decision = self._filters.should_copy_trade(
                trade,
                relationship,
                account.balance,
                positions,
                today.count,
                today.volume,
            )
            if not decision.should_copy:
                execution.mark_skipped(f"Filtered: {decision.skip_reason}")
                logger.info(f"Trade {trade.id} skipped for follower {follower.id}: {decision.skip_reason}")
                return await self._finish(execution, error=decision.skip_reason)

            # Step 2: Symbol resolution
            symbol_id = await self.resolve_symbol_id(trade.symbol)
            if not symbol_id:
                execution.mark_failed(f"Symbol not found: {trade.symbol}")
                logger.error(f"Trade {trade.id} failed for follower {follower.id}: {execution.error_message}")
                return await self._finish(execution)

            # Step 3: Price and size
            current_price = await self.get_current_price(trade, follower, account)
            size = self._sizing.calculate_position_size(
                relationship,
                trade.quantity,
                trade.price,
                account.balance,
                current_price,
            )
            execution.quantity = size.quantity
            logger.info(
                f"Position sizing: method={size.method_used}, quantity={size.quantity}, "
                f"cost=${size.estimated_cost:.2f}, capped={size.capped}"
            )

            if size.quantity == 0:
                execution.mark_skipped("Position size calculated as 0")
                return await self._finish(execution)

            # Step 4: Trade impact pre-check
            impact = await self._gateway.check_trade_impact(
                follower.broker_user_id,
                follower.broker_user_secret,
                account.account_id,
                trade.action,
                symbol_id,
                self._config.order_type,
                size.quantity,
            )
            if impact is None or impact.trade is None:
                execution.mark_failed("Trade impact validation failed")
                logger.error(f"Trade {trade.id} failed for follower {follower.id}: no trade ticket")
                return await self._finish(execution)

            # Step 5: Place order (the only retried step)
            ticket_id = impact.trade.id
            order = await self._retry.execute_with_retry(
                lambda: self._gateway.place_order(
                    follower.broker_user_id,
                    follower.broker_user_secret,
                    ticket_id,
                    self._config.wait_to_confirm,
                ),
                f"place order for {trade.symbol}",
            )

        except Exception as e:
            logger.exception(f"Error executing copy trade {trade.id} for follower {follower.id}: {e}")
            execution.mark_failed(str(e) or type(e).__name__)
            await self._persist(execution)
            self._emit(create_trade_failed_event(trade, execution))
            return ExecutionResult(execution=execution, success=False, error=execution.error_message)

        # The order is live from here on; nothing below may turn it into a failure
        execution.status = ExecutionStatus.SUCCESS
        execution.order_id = order.order_id
        execution.executed_at = self._clock.now()
        execution.executed_price = order.executed_price or current_price

        logger.info(
            f"Copy trade executed: follower={follower.id}, symbol={trade.symbol}, "
            f"action={trade.action.value}, quantity={size.quantity}, "
            f"price=${execution.executed_price}"
        )

        # Step 6: Protective prices; Step 7: counter, ledger, notification
        self._apply_protective_prices(execution, relationship)
        await self._increment_trades_copied(relationship)
        await self._persist(execution)
        self._emit(create_trade_executed_event(trade, execution))

        return ExecutionResult(execution=execution, success=True)

    def _apply_protective_prices(self, execution: CopyExecution, relationship: CopyRelationship) -> None:
        """Stop-loss / take-profit prices (computed, not placed)."""
        try:
            self._calculate_protective_prices(execution, relationship)
        except Exception as e:
            logger.error(f"Error calculating protective prices for execution of {execution.trade_id}: {e}")

    def _calculate_protective_prices(self, execution: CopyExecution, relationship: CopyRelationship) -> None:
        settings = relationship.sizing
        entry = execution.executed_price

        if settings.auto_stop_loss_enabled and settings.auto_stop_loss_percent:
            execution.stop_loss_price = self._sizing.calculate_stop_loss_price(
                entry, to_decimal(settings.auto_stop_loss_percent), execution.action
            )
            logger.info(f"Stop-loss calculated: price=${execution.stop_loss_price:.2f}")

        if settings.auto_take_profit_enabled and settings.auto_take_profit_percent:
            execution.take_profit_price = self._sizing.calculate_take_profit_price(
                entry, to_decimal(settings.auto_take_profit_percent), execution.action
            )
            logger.info(f"Take-profit calculated: price=${execution.take_profit_price:.2f}")

    # --------------------------------------------------------
    # PER-TRADE FAN-OUT
    # --------------------------------------------------------

    async def process_trade(self, trade: LeaderTrade) -> List[ExecutionResult]:
        """
        Execute a leader trade for all of the leader's active followers.

        Raises:
            RecordStoreError: If the followers cannot be loaded
        """
        relationships = await self._store.get_active_relationships(trade.leader_id)
        logger.info(f"Processing trade {trade.id} for {len(relationships)} followers")

        concurrency = max(self._config.follower_concurrency, 1)
        if concurrency == 1 or len(relationships) <= 1:
            results = []
            for relationship in relationships:
                results.append(await self._process_relationship(trade, relationship))
            return results

        semaphore = asyncio.Semaphore(concurrency)

        async def bounded(relationship: CopyRelationship) -> ExecutionResult:
            async with semaphore:
                return await self._process_relationship(trade, relationship)

        return list(await asyncio.gather(*(bounded(r) for r in relationships)))

    async def _process_relationship(
        self,
        trade: LeaderTrade,
        relationship: CopyRelationship,
    ) -> ExecutionResult:
        try:
            follower = await self._store.get_follower(relationship.follower_id)
            if follower is None:
                logger.warning(f"Follower {relationship.follower_id} not found")
                execution = CopyExecution.for_trade(trade, relationship, NO_ACCOUNT)
                return await self._finish(execution.mark_skipped("Follower not found"))

            account = await self._store.get_active_account(follower.id)
            if account is None:
                logger.warning(f"No account found for follower {follower.id}")
                execution = CopyExecution.for_trade(trade, relationship, NO_ACCOUNT)
                return await self._finish(execution.mark_skipped("No brokerage account connected"))

        except Exception as e:
            logger.error(f"Could not load follower {relationship.follower_id}: {e}")
            execution = CopyExecution.for_trade(trade, relationship, NO_ACCOUNT)
            return await self._finish(execution.mark_failed(str(e) or type(e).__name__))

        return await self.execute_copy_trade(trade, relationship, follower, account)

    # --------------------------------------------------------
    # SIDE EFFECTS
    # --------------------------------------------------------

    async def _finish(self, execution: CopyExecution, error: Optional[str] = None) -> ExecutionResult:
        await self._persist(execution)
        return ExecutionResult(
            execution=execution,
            success=execution.status == ExecutionStatus.SUCCESS,
            error=error or execution.error_message,
        )

    async def _persist(self, execution: CopyExecution) -> None:
        try:
            await self._store.insert_execution(execution)
        except Exception as e:
            logger.error(
                f"Error saving {execution.status.value} execution of trade {execution.trade_id} "
                f"for relationship {execution.relationship_id}: {e}"
            )

    async def _increment_trades_copied(self, relationship: CopyRelationship) -> None:
        try:
            await self._store.increment_trades_copied(relationship.id)
        except Exception as e:
            logger.error(f"Error updating trade count for relationship {relationship.id}: {e}")

    def _emit(self, event: NotificationEvent) -> None:
        try:
            self._notifications.emit(event)
        except Exception as e:
            logger.error(f"Error emitting notification '{event.title}' for {event.user_id}: {e}")


__all__ = ["CopyTradeEngine"]
