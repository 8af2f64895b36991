"""
Shared fixtures for copy engine tests.

Builders seed an InMemoryRecordStore with one leader and any
number of followers; the engine runs against MockBrokerGateway,
a MockClock and a sleeper that records instead of waiting.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

import pytest

from core.clock import MockClock
from copy_engine.adapters.mock import MockBrokerGateway
from copy_engine.config import EngineConfig
from copy_engine.engine import CopyTradeEngine
from copy_engine.filters import TradeFilterService
from copy_engine.notifications import RecordingNotificationSink
from copy_engine.retry import RetryPolicy
from copy_engine.store.memory import InMemoryRecordStore
from copy_engine.types import (
    AssetType,
    BrokerageAccount,
    CopyRelationship,
    ExposureLimits,
    Follower,
    LeaderTrade,
    OptionDetails,
    SizingMethod,
    SizingSettings,
    TradeAction,
    TradeFilters,
)


NOW = datetime(2026, 3, 10, 15, 30, tzinfo=timezone.utc)


# ============================================================
# BUILDERS
# ============================================================

def make_trade(
    trade_id: str = "trade-1",
    symbol: str = "AAPL",
    action: TradeAction = TradeAction.BUY,
    quantity: str = "10",
    price: Optional[str] = "150.00",
    leader_id: str = "leader-1",
    asset_type: AssetType = AssetType.STOCK,
    expiration_date: Optional[str] = None,
) -> LeaderTrade:
    option = OptionDetails(option_type="CALL", expiration_date=expiration_date) if expiration_date else None
    return LeaderTrade(
        id=trade_id,
        leader_id=leader_id,
        account_id="leader-account",
        symbol=symbol,
        action=action,
        quantity=Decimal(quantity),
        price=Decimal(price) if price is not None else None,
        asset_type=asset_type,
        option=option,
    )


def make_relationship(
    relationship_id: str = "rel-1",
    follower_id: str = "follower-1",
    leader_id: str = "leader-1",
    sizing: Optional[SizingSettings] = None,
    filters: Optional[TradeFilters] = None,
    limits: Optional[ExposureLimits] = None,
) -> CopyRelationship:
    return CopyRelationship(
        id=relationship_id,
        leader_id=leader_id,
        follower_id=follower_id,
        sizing=sizing or SizingSettings(
            method=SizingMethod.PROPORTIONAL,
            allocation_percent=Decimal("10"),
        ),
        filters=filters or TradeFilters(),
        limits=limits or ExposureLimits(),
    )


def make_follower(follower_id: str = "follower-1", role: str = "follower") -> Follower:
    return Follower(
        id=follower_id,
        broker_user_id=f"snap-{follower_id}",
        broker_user_secret=f"secret-{follower_id}",
        full_name=follower_id.title(),
        role=role,
    )


def seed_follower(
    store: InMemoryRecordStore,
    follower_id: str = "follower-1",
    balance: str = "10000",
    relationship: Optional[CopyRelationship] = None,
    with_account: bool = True,
) -> CopyRelationship:
    """Add a follower, their account and their relationship to the store."""
    store.add_user(make_follower(follower_id))
    if with_account:
        store.add_account(BrokerageAccount(
            user_id=follower_id,
            account_id=f"acct-{follower_id}",
            balance=Decimal(balance),
        ))
    relationship = relationship or make_relationship(
        relationship_id=f"rel-{follower_id}",
        follower_id=follower_id,
    )
    return store.add_relationship(relationship)


class BlockingGateway(MockBrokerGateway):
    """Mock gateway whose symbol search waits until the test releases it."""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def search_symbols(self, query: str):
        self.entered.set()
        await self.release.wait()
        return await super().search_symbols(query)


class RecordingSleeper:
    """Async sleep stand-in that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def clock() -> MockClock:
    return MockClock(NOW)


@pytest.fixture
def store(clock) -> InMemoryRecordStore:
    return InMemoryRecordStore(clock=clock)


@pytest.fixture
def gateway() -> MockBrokerGateway:
    return MockBrokerGateway()


@pytest.fixture
def notifications() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def sleeper() -> RecordingSleeper:
    return RecordingSleeper()


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def engine(gateway, store, notifications, clock, sleeper, engine_config) -> CopyTradeEngine:
    return CopyTradeEngine(
        gateway=gateway,
        store=store,
        filters=TradeFilterService(clock=clock),
        retry=RetryPolicy(sleep=sleeper),
        notifications=notifications,
        clock=clock,
        config=engine_config,
    )
