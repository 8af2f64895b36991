"""
Copy Trade Engine Tests.

============================================================
PURPOSE
============================================================
Tests for CopyTradeEngine against the mock broker gateway
and the in-memory record store.

TEST CATEGORIES:
- Successful replication
- Skip and failure branches
- Order placement retry
- Follower isolation and fan-out
- Ledger-derived state (positions, daily stats)

============================================================
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from copy_engine.config import EngineConfig
from copy_engine.engine import CopyTradeEngine
from copy_engine.filters import TradeFilterService
from copy_engine.retry import RetryPolicy
from copy_engine.types import (
    BrokerageAccount,
    CopyExecution,
    ExecutionStatus,
    ExposureLimits,
    NotificationType,
    RelationshipStatus,
    SizingMethod,
    SizingSettings,
    TradeAction,
    TradeFilters,
)
from core.exceptions import BrokerConnectionError, RecordStoreError

from conftest import NOW, make_follower, make_relationship, make_trade, seed_follower


async def run_single(engine, store, trade=None, relationship=None):
    relationship = relationship or seed_follower(store)
    trade = trade or make_trade()
    follower = store.users[relationship.follower_id]
    account = await store.get_active_account(follower.id)
    return await engine.execute_copy_trade(trade, relationship, follower, account)


# ============================================================
# SUCCESS PATH
# ============================================================

class TestSuccessfulCopy:
    """Tests for the happy path of execute_copy_trade."""

    @pytest.mark.asyncio
    async def test_places_order_and_records_success(self, engine, store, gateway, clock):
        """Test 10% of $10,000 at the leader's $150 places a 6 share order."""
        result = await run_single(engine, store)

        assert result.success is True
        assert result.status == ExecutionStatus.SUCCESS
        execution = result.execution
        assert execution.quantity == 6
        assert execution.order_id == "order-1"
        assert execution.executed_price == Decimal("190.00")
        assert execution.executed_at == clock.now()
        assert execution.account_id == "acct-follower-1"
        assert gateway.calls == ["search_symbols", "check_trade_impact", "place_order"]

    @pytest.mark.asyncio
    async def test_persists_exactly_one_execution(self, engine, store):
        result = await run_single(engine, store)

        assert len(store.executions) == 1
        stored = store.executions[0]
        assert stored.id == result.execution.id
        assert stored.status == ExecutionStatus.SUCCESS
        assert stored.created_at == NOW

    @pytest.mark.asyncio
    async def test_increments_trades_copied(self, engine, store):
        relationship = seed_follower(store)

        await run_single(engine, store, relationship=relationship)

        assert store.relationships[relationship.id].total_trades_copied == 1

    @pytest.mark.asyncio
    async def test_emits_trade_executed_notification(self, engine, store, notifications):
        await run_single(engine, store)

        assert len(notifications.events) == 1
        event = notifications.events[0]
        assert event.notification_type == NotificationType.TRADE_EXECUTED
        assert event.user_id == "follower-1"
        assert event.title == "Trade Executed"
        assert event.message == "Copied buy 6 AAPL at $190.00"
        assert event.metadata["trade_id"] == "trade-1"

    @pytest.mark.asyncio
    async def test_missing_fill_price_uses_current_price(self, engine, store, gateway):
        """Test the sizing price is recorded when the broker reports no fill price."""
        gateway.set_fill_price(None)

        result = await run_single(engine, store)

        assert result.execution.executed_price == Decimal("150.00")

    @pytest.mark.asyncio
    async def test_unknown_trade_price_uses_quote(self, engine, store, gateway):
        """Test $1,000 at the $190 quote sizes 5 shares."""
        result = await run_single(engine, store, trade=make_trade(price=None))

        assert result.execution.quantity == 5
        assert "get_stock_quote" in gateway.calls

    @pytest.mark.asyncio
    async def test_quote_failure_uses_fallback_price(self, engine, store, gateway):
        """Test a failed quote sizes at $100."""
        gateway.fail_next("get_stock_quote")

        result = await run_single(engine, store, trade=make_trade(price=None))

        assert result.success is True
        assert result.execution.quantity == 10

    @pytest.mark.asyncio
    async def test_protective_prices_are_computed(self, engine, store):
        """Test stop-loss and take-profit are derived from the fill price."""
        relationship = seed_follower(store, relationship=make_relationship(
            relationship_id="rel-follower-1",
            sizing=SizingSettings(
                method=SizingMethod.PROPORTIONAL,
                allocation_percent=Decimal("10"),
                auto_stop_loss_enabled=True,
                auto_stop_loss_percent=Decimal("5"),
                auto_take_profit_enabled=True,
                auto_take_profit_percent=Decimal("10"),
            ),
        ))

        result = await run_single(engine, store, relationship=relationship)

        assert result.execution.stop_loss_price == Decimal("180.50")
        assert result.execution.take_profit_price == Decimal("209.00")

    @pytest.mark.asyncio
    async def test_sell_protective_prices_are_inverted(self, engine, store):
        relationship = seed_follower(store, relationship=make_relationship(
            relationship_id="rel-follower-1",
            sizing=SizingSettings(
                method=SizingMethod.FIXED_SHARES,
                fixed_shares_amount=Decimal("2"),
                auto_stop_loss_enabled=True,
                auto_stop_loss_percent=Decimal("5"),
            ),
        ))

        result = await run_single(
            engine, store, trade=make_trade(action=TradeAction.SELL), relationship=relationship
        )

        assert result.execution.stop_loss_price == Decimal("199.50")
        assert result.execution.take_profit_price is None


# ============================================================
# SKIP AND FAILURE BRANCHES
# ============================================================

class TestSkipBranches:
    """Tests for skipped executions."""

    @pytest.mark.asyncio
    async def test_filtered_trade_is_skipped(self, engine, store, gateway, notifications):
        relationship = seed_follower(store, relationship=make_relationship(
            relationship_id="rel-follower-1",
            filters=TradeFilters(skip_penny_stocks=True),
        ))

        result = await run_single(engine, store, trade=make_trade(price="3.00"), relationship=relationship)

        assert result.success is False
        assert result.status == ExecutionStatus.SKIPPED
        assert result.execution.error_message == "Filtered: Penny stock ($3.00 < $5.00)"
        assert result.error == "Penny stock ($3.00 < $5.00)"
        assert gateway.calls == []
        assert notifications.events == []
        assert len(store.executions) == 1

    @pytest.mark.asyncio
    async def test_zero_quantity_is_skipped(self, engine, store, gateway):
        relationship = seed_follower(store, relationship=make_relationship(
            relationship_id="rel-follower-1",
            sizing=SizingSettings(method=SizingMethod.FIXED_DOLLAR, fixed_dollar_amount=Decimal("100")),
        ))

        result = await run_single(engine, store, relationship=relationship)

        assert result.status == ExecutionStatus.SKIPPED
        assert result.execution.error_message == "Position size calculated as 0"
        assert result.execution.quantity == 0
        assert gateway.call_count("check_trade_impact") == 0

    @pytest.mark.asyncio
    async def test_misconfigured_sizing_is_skipped(self, engine, store):
        """Test a sizing error surfaces as a zero-quantity skip, not a crash."""
        relationship = seed_follower(store, relationship=make_relationship(
            relationship_id="rel-follower-1",
            sizing=SizingSettings(method=SizingMethod.MULTIPLIER),
        ))

        result = await run_single(engine, store, relationship=relationship)

        assert result.status == ExecutionStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_daily_limit_uses_todays_ledger(self, engine, store):
        """Test the second trade of the day hits a one-trade daily limit."""
        relationship = seed_follower(store, relationship=make_relationship(
            relationship_id="rel-follower-1",
            limits=ExposureLimits(enabled=True, max_daily_trades=1),
        ))

        first = await run_single(engine, store, make_trade("trade-1"), relationship)
        second = await run_single(engine, store, make_trade("trade-2"), relationship)

        assert first.status == ExecutionStatus.SUCCESS
        assert second.status == ExecutionStatus.SKIPPED
        assert second.execution.error_message == "Filtered: Daily trade limit reached (1)"


class TestFailureBranches:
    """Tests for failed executions."""

    @pytest.mark.asyncio
    async def test_unknown_symbol_fails(self, engine, store, gateway, notifications):
        gateway.remove_symbol("AAPL")

        result = await run_single(engine, store)

        assert result.status == ExecutionStatus.FAILED
        assert result.execution.error_message == "Symbol not found: AAPL"
        assert gateway.call_count("check_trade_impact") == 0
        assert notifications.events == []

    @pytest.mark.asyncio
    async def test_symbol_search_error_fails_as_not_found(self, engine, store, gateway):
        gateway.fail_next("search_symbols")

        result = await run_single(engine, store)

        assert result.execution.error_message == "Symbol not found: AAPL"

    @pytest.mark.asyncio
    async def test_missing_trade_ticket_fails(self, engine, store, gateway):
        gateway.return_no_trade()

        result = await run_single(engine, store)

        assert result.status == ExecutionStatus.FAILED
        assert result.execution.error_message == "Trade impact validation failed"
        assert gateway.call_count("place_order") == 0

    @pytest.mark.asyncio
    async def test_impact_error_is_caught(self, engine, store, gateway, notifications):
        """Test unexpected broker errors become a failed execution plus a notification."""
        gateway.fail_next("check_trade_impact")

        result = await run_single(engine, store)

        assert result.success is False
        assert result.status == ExecutionStatus.FAILED
        assert result.error == "Injected check_trade_impact failure"
        assert len(store.executions) == 1
        assert notifications.of_type(NotificationType.TRADE_FAILED)[0].title == "Trade Failed"

    @pytest.mark.asyncio
    async def test_ledger_read_failure_fails_closed(self, engine, store, gateway):
        """Test exposure state that cannot be read blocks the order."""
        store.fail_on("get_successful_executions")

        result = await run_single(engine, store)

        assert result.status == ExecutionStatus.FAILED
        assert gateway.calls == []


# ============================================================
# RETRY TESTS
# ============================================================

class TestOrderRetry:
    """Tests for retried order placement."""

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, engine, store, gateway, sleeper):
        gateway.fail_next("place_order", times=2)

        result = await run_single(engine, store)

        assert result.success is True
        assert gateway.call_count("place_order") == 3
        assert gateway.call_count("check_trade_impact") == 1
        assert sleeper.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail(self, engine, store, gateway, notifications, sleeper):
        """Test the last attempt's error is the one recorded."""
        relationship = seed_follower(store)
        for attempt in (1, 2, 3):
            gateway.fail_next("place_order", BrokerConnectionError(f"gateway timeout (attempt {attempt})"))

        result = await run_single(engine, store, relationship=relationship)

        assert result.status == ExecutionStatus.FAILED
        assert result.execution.error_message == "gateway timeout (attempt 3)"
        assert gateway.call_count("place_order") == 3
        assert sleeper.delays == [1.0, 2.0]
        assert store.relationships[relationship.id].total_trades_copied == 0
        event = notifications.events[0]
        assert event.notification_type == NotificationType.TRADE_FAILED
        assert event.message == "Failed to copy buy AAPL: gateway timeout (attempt 3)"


# ============================================================
# AFTER PLACEMENT
# ============================================================

class TestAfterOrderPlaced:
    """Tests for side effects that run once the order is live."""

    @pytest.mark.asyncio
    async def test_counter_error_keeps_success(self, engine, store, gateway, notifications):
        store.increment_trades_copied = AsyncMock(side_effect=RuntimeError("connection reset"))

        result = await run_single(engine, store)

        assert result.success is True
        assert result.status == ExecutionStatus.SUCCESS
        assert gateway.call_count("place_order") == 1
        assert [e.status for e in store.executions] == [ExecutionStatus.SUCCESS]
        assert notifications.events[0].notification_type == NotificationType.TRADE_EXECUTED

    @pytest.mark.asyncio
    async def test_ledger_error_is_not_recorded_as_failure(self, engine, store, notifications):
        store.insert_execution = AsyncMock(side_effect=RuntimeError("disk full"))
        relationship = seed_follower(store)

        result = await run_single(engine, store, relationship=relationship)

        assert result.success is True
        assert result.execution.order_id == "order-1"
        # One insert attempt, no second "failed" row
        assert store.insert_execution.await_count == 1
        assert store.relationships[relationship.id].total_trades_copied == 1
        assert [e.notification_type for e in notifications.events] == [NotificationType.TRADE_EXECUTED]


# ============================================================
# FAN-OUT TESTS
# ============================================================

class TestProcessTrade:
    """Tests for process_trade across followers."""

    @pytest.mark.asyncio
    async def test_one_execution_per_follower(self, engine, store):
        for name in ("follower-1", "follower-2", "follower-3"):
            seed_follower(store, name)

        results = await engine.process_trade(make_trade())

        assert len(results) == 3
        assert all(r.success for r in results)
        assert {e.follower_id for e in store.executions_for("trade-1")} == {
            "follower-1", "follower-2", "follower-3",
        }

    @pytest.mark.asyncio
    async def test_follower_without_account_is_skipped(self, engine, store, gateway):
        seed_follower(store, with_account=False)

        results = await engine.process_trade(make_trade())

        execution = results[0].execution
        assert execution.status == ExecutionStatus.SKIPPED
        assert execution.error_message == "No brokerage account connected"
        assert execution.account_id == "none"
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_missing_follower_is_skipped(self, engine, store):
        store.add_relationship(make_relationship(follower_id="ghost"))

        results = await engine.process_trade(make_trade())

        assert results[0].status == ExecutionStatus.SKIPPED
        assert results[0].execution.error_message == "Follower not found"
        assert len(store.executions) == 1

    @pytest.mark.asyncio
    async def test_follower_failures_are_isolated(self, engine, store):
        """Test one follower's problems never stop the others."""
        seed_follower(store, "follower-1")
        seed_follower(store, "follower-2", with_account=False)
        seed_follower(store, "follower-3", relationship=make_relationship(
            relationship_id="rel-follower-3",
            follower_id="follower-3",
            sizing=SizingSettings(method=SizingMethod.FIXED_DOLLAR),
        ))
        seed_follower(store, "follower-4")

        results = await engine.process_trade(make_trade())

        statuses = {r.execution.follower_id: r.status for r in results}
        assert statuses == {
            "follower-1": ExecutionStatus.SUCCESS,
            "follower-2": ExecutionStatus.SKIPPED,
            "follower-3": ExecutionStatus.SKIPPED,
            "follower-4": ExecutionStatus.SUCCESS,
        }
        assert len(store.executions) == 4

    @pytest.mark.asyncio
    async def test_persist_failure_does_not_abort_siblings(self, engine, store):
        seed_follower(store, "follower-1")
        seed_follower(store, "follower-2")
        store.fail_on("insert_execution")

        results = await engine.process_trade(make_trade())

        assert [r.success for r in results] == [True, True]
        assert len(store.executions) == 1

    @pytest.mark.asyncio
    async def test_inactive_relationships_are_ignored(self, engine, store):
        relationship = seed_follower(store)
        relationship.status = RelationshipStatus.PAUSED

        results = await engine.process_trade(make_trade())

        assert results == []

    @pytest.mark.asyncio
    async def test_relationship_read_failure_propagates(self, engine, store):
        seed_follower(store)
        store.fail_on("get_active_relationships")

        with pytest.raises(RecordStoreError):
            await engine.process_trade(make_trade())

    @pytest.mark.asyncio
    async def test_bounded_concurrent_fan_out(self, gateway, store, notifications, clock, sleeper):
        engine = CopyTradeEngine(
            gateway=gateway,
            store=store,
            filters=TradeFilterService(clock=clock),
            retry=RetryPolicy(sleep=sleeper),
            notifications=notifications,
            clock=clock,
            config=EngineConfig(follower_concurrency=3),
        )
        for index in range(5):
            seed_follower(store, f"follower-{index}")

        results = await engine.process_trade(make_trade())

        assert len(results) == 5
        assert all(r.success for r in results)
        assert len(gateway.orders) == 5
        assert len(notifications.events) == 5


# ============================================================
# LEDGER STATE TESTS
# ============================================================

def ledger_entry(symbol, action, quantity, price, created_at=NOW, status=ExecutionStatus.SUCCESS):
    return CopyExecution(
        trade_id="old-trade",
        relationship_id="rel-1",
        follower_id="follower-1",
        symbol=symbol,
        action=action,
        account_id="acct-follower-1",
        quantity=quantity,
        status=status,
        executed_price=Decimal(price),
        created_at=created_at,
    )


class TestLedgerState:
    """Tests for positions and stats rebuilt from the execution ledger."""

    @pytest.mark.asyncio
    async def test_positions_net_buys_and_sells(self, engine, store):
        for entry in (
            ledger_entry("AAPL", TradeAction.BUY, 10, "100"),
            ledger_entry("AAPL", TradeAction.SELL, 4, "110"),
            ledger_entry("MSFT", TradeAction.BUY, 5, "400"),
            ledger_entry("MSFT", TradeAction.SELL, 5, "410"),
            ledger_entry("TSLA", TradeAction.BUY, 3, "250", status=ExecutionStatus.FAILED),
        ):
            await store.insert_execution(entry)

        positions = await engine.get_current_positions("rel-1")

        assert list(positions) == ["AAPL"]
        assert positions["AAPL"].quantity == Decimal("6")
        assert positions["AAPL"].value == Decimal("560")

    @pytest.mark.asyncio
    async def test_today_stats_exclude_earlier_days(self, engine, store):
        await store.insert_execution(ledger_entry("AAPL", TradeAction.BUY, 10, "100"))
        await store.insert_execution(ledger_entry("MSFT", TradeAction.BUY, 2, "400"))
        await store.insert_execution(
            ledger_entry("TSLA", TradeAction.BUY, 1, "250", created_at=NOW - timedelta(days=1))
        )

        stats = await engine.get_today_stats("rel-1")

        assert stats.count == 2
        assert stats.volume == Decimal("1800")


class TestSymbolResolution:
    """Tests for resolve_symbol_id."""

    @pytest.mark.asyncio
    async def test_prefers_exact_match(self, engine, gateway):
        gateway.set_price("ASPY", Decimal("20"))

        assert await engine.resolve_symbol_id("SPY") == "sym-spy"

    @pytest.mark.asyncio
    async def test_falls_back_to_first_match(self, engine, gateway):
        gateway.set_price("ASPY", Decimal("20"))

        assert await engine.resolve_symbol_id("SP") == "sym-aspy"

    @pytest.mark.asyncio
    async def test_no_match_returns_none(self, engine):
        assert await engine.resolve_symbol_id("ZZZZ") is None


class TestAccountBalance:
    """Tests for balance-driven sizing."""

    @pytest.mark.asyncio
    async def test_balance_drives_proportional_size(self, engine, store):
        store.add_user(make_follower("follower-9"))
        store.add_account(BrokerageAccount(user_id="follower-9", account_id="acct-9", balance=Decimal("30000")))
        relationship = store.add_relationship(make_relationship("rel-9", follower_id="follower-9"))

        result = await run_single(engine, store, relationship=relationship)

        assert result.execution.quantity == 20
