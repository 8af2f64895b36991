"""
Copy Engine - In-Memory Record Store.

============================================================
PURPOSE
============================================================
Dict-backed RecordStore for dry runs and tests.

Mirrors the SQL store's semantics: executions are append-only,
created_at is stamped from the injected clock, and pending
trades come back oldest first.

============================================================
"""

import copy
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from core.clock import ClockProtocol, SystemClock
from core.exceptions import RecordNotFoundError, RecordStoreError

from ..types import (
    BrokerageAccount,
    CopyExecution,
    CopyRelationship,
    ExecutionStatus,
    Follower,
    LeaderTrade,
    NotificationEvent,
)
from .base import RecordStore


logger = logging.getLogger(__name__)


class InMemoryRecordStore(RecordStore):
    """
    In-memory record store.

    Seed it with add_* helpers. fail_on(operation) makes the next
    call of a store operation raise RecordStoreError.
    """

    def __init__(self, clock: Optional[ClockProtocol] = None):
        self._clock = clock or SystemClock()

        self.users: Dict[str, Follower] = {}
        self.accounts: List[BrokerageAccount] = []
        self.relationships: Dict[str, CopyRelationship] = {}
        self.trades: Dict[str, LeaderTrade] = {}
        self.executions: List[CopyExecution] = []
        self.notifications: List[NotificationEvent] = []
        self.snapshots: Dict[tuple, Dict[str, Decimal]] = {}

        self._failures: Dict[str, RecordStoreError] = {}

    # --------------------------------------------------------
    # SEEDING / INJECTION
    # --------------------------------------------------------

    def add_user(self, user: Follower) -> Follower:
        self.users[user.id] = user
        return user

    def add_account(self, account: BrokerageAccount) -> BrokerageAccount:
        if account.id is None:
            account.id = str(uuid.uuid4())
        self.accounts.append(account)
        return account

    def add_relationship(self, relationship: CopyRelationship) -> CopyRelationship:
        self.relationships[relationship.id] = relationship
        return relationship

    def add_trade(self, trade: LeaderTrade) -> LeaderTrade:
        if trade.detected_at is None:
            trade.detected_at = self._clock.now()
        self.trades[trade.id] = trade
        return trade

    def fail_on(self, operation: str, message: str = "store unavailable") -> None:
        self._failures[operation] = RecordStoreError(message, operation=operation)

    def _check(self, operation: str) -> None:
        error = self._failures.pop(operation, None)
        if error:
            raise error

    def executions_for(self, trade_id: str) -> List[CopyExecution]:
        return [e for e in self.executions if e.trade_id == trade_id]

    # --------------------------------------------------------
    # LEADER TRADES
    # --------------------------------------------------------

    async def get_pending_trades(self) -> List[LeaderTrade]:
        self._check("get_pending_trades")
        pending = [t for t in self.trades.values() if not t.processed]
        return sorted(pending, key=lambda t: t.detected_at or datetime.min)

    async def mark_trade_processed(self, trade_id: str) -> None:
        self._check("mark_trade_processed")
        trade = self.trades.get(trade_id)
        if trade is None:
            raise RecordNotFoundError(f"Trade {trade_id} not found", operation="mark_trade_processed")
        trade.processed = True

    async def insert_leader_trades(self, trades: List[LeaderTrade]) -> None:
        self._check("insert_leader_trades")
        for trade in trades:
            self.add_trade(trade)

    # --------------------------------------------------------
    # RELATIONSHIPS / USERS / ACCOUNTS
    # --------------------------------------------------------

    async def get_active_relationships(self, leader_id: str) -> List[CopyRelationship]:
        self._check("get_active_relationships")
        return [r for r in self.relationships.values() if r.leader_id == leader_id and r.is_active]

    async def get_follower(self, follower_id: str) -> Optional[Follower]:
        self._check("get_follower")
        return self.users.get(follower_id)

    async def get_active_account(self, user_id: str) -> Optional[BrokerageAccount]:
        self._check("get_active_account")
        accounts = await self.get_active_accounts(user_id)
        return accounts[0] if accounts else None

    async def get_active_accounts(self, user_id: str) -> List[BrokerageAccount]:
        return [a for a in self.accounts if a.user_id == user_id and a.status == "active"]

    async def get_leaders(self) -> List[Follower]:
        self._check("get_leaders")
        return [
            u for u in self.users.values()
            if u.role in ("leader", "both") and u.broker_user_id
        ]

    async def increment_trades_copied(self, relationship_id: str) -> None:
        self._check("increment_trades_copied")
        relationship = self.relationships.get(relationship_id)
        if relationship is None:
            raise RecordNotFoundError(
                f"Relationship {relationship_id} not found",
                operation="increment_trades_copied",
            )
        relationship.total_trades_copied += 1

    # --------------------------------------------------------
    # EXECUTIONS
    # --------------------------------------------------------

    async def get_successful_executions(
        self,
        relationship_id: str,
        since: Optional[datetime] = None,
    ) -> List[CopyExecution]:
        self._check("get_successful_executions")
        return [
            e for e in self.executions
            if e.relationship_id == relationship_id
            and e.status == ExecutionStatus.SUCCESS
            and (since is None or (e.created_at is not None and e.created_at >= since))
        ]

    async def insert_execution(self, execution: CopyExecution) -> CopyExecution:
        self._check("insert_execution")
        stored = copy.copy(execution)
        stored.id = stored.id or str(uuid.uuid4())
        stored.created_at = stored.created_at or self._clock.now()
        self.executions.append(stored)
        execution.id = stored.id
        execution.created_at = stored.created_at
        return stored

    # --------------------------------------------------------
    # NOTIFICATIONS / SNAPSHOTS
    # --------------------------------------------------------

    async def insert_notification(self, event: NotificationEvent) -> None:
        self._check("insert_notification")
        event.created_at = event.created_at or self._clock.now()
        self.notifications.append(event)

    async def get_last_snapshot(self, user_id: str, account_id: str) -> Optional[Dict[str, Decimal]]:
        snapshot = self.snapshots.get((user_id, account_id))
        return dict(snapshot) if snapshot is not None else None

    async def save_snapshot(self, user_id: str, account_id: str, positions: Dict[str, Decimal]) -> None:
        self._check("save_snapshot")
        self.snapshots[(user_id, account_id)] = dict(positions)

    async def record_detected_trades(
        self,
        user_id: str,
        account_id: str,
        trades: List[LeaderTrade],
        positions: Dict[str, Decimal],
    ) -> None:
        # Checks run before any write
        if trades:
            self._check("insert_leader_trades")
        self._check("save_snapshot")
        for trade in trades:
            self.add_trade(trade)
        self.snapshots[(user_id, account_id)] = dict(positions)


__all__ = ["InMemoryRecordStore"]
