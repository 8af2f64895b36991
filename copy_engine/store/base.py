"""
Copy Engine - Record Store Interface.

============================================================
PURPOSE
============================================================
Read/write operations the copy engine needs from persistence.

READS:
- Pending leader trades (oldest first)
- Active relationships of a leader
- Follower user records and active brokerage accounts
- Successful executions of a relationship (optionally since a time)
- Leaders and position snapshots (trade detection)

WRITES:
- Execution insert (write-once, never updated)
- Atomic increment of total_trades_copied
- Processed flag on leader trades
- Notifications, snapshots, new leader trades
- Detected trades together with their snapshot (one write)

Implementations raise core.exceptions.RecordStoreError.

============================================================
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from ..types import (
    BrokerageAccount,
    CopyExecution,
    CopyRelationship,
    Follower,
    LeaderTrade,
    NotificationEvent,
)


class RecordStore(ABC):
    """Abstract record store."""

    # --------------------------------------------------------
    # LEADER TRADES
    # --------------------------------------------------------

    @abstractmethod
    async def get_pending_trades(self) -> List[LeaderTrade]:
        """Unprocessed trades ordered by detected_at ascending."""
        pass

    @abstractmethod
    async def mark_trade_processed(self, trade_id: str) -> None:
        pass

    @abstractmethod
    async def insert_leader_trades(self, trades: List[LeaderTrade]) -> None:
        pass

    # --------------------------------------------------------
    # RELATIONSHIPS / USERS / ACCOUNTS
    # --------------------------------------------------------

    @abstractmethod
    async def get_active_relationships(self, leader_id: str) -> List[CopyRelationship]:
        pass

    @abstractmethod
    async def get_follower(self, follower_id: str) -> Optional[Follower]:
        pass

    @abstractmethod
    async def get_active_account(self, user_id: str) -> Optional[BrokerageAccount]:
        """The user's single active brokerage account, if any."""
        pass

    @abstractmethod
    async def get_active_accounts(self, user_id: str) -> List[BrokerageAccount]:
        pass

    @abstractmethod
    async def get_leaders(self) -> List[Follower]:
        """Users with the leader (or both) role and broker credentials."""
        pass

    @abstractmethod
    async def increment_trades_copied(self, relationship_id: str) -> None:
        """Atomically add one to total_trades_copied."""
        pass

    # --------------------------------------------------------
    # EXECUTIONS
    # --------------------------------------------------------

    @abstractmethod
    async def get_successful_executions(
        self,
        relationship_id: str,
        since: Optional[datetime] = None,
    ) -> List[CopyExecution]:
        pass

    @abstractmethod
    async def insert_execution(self, execution: CopyExecution) -> CopyExecution:
        """Insert a finalized execution; returns it with id set."""
        pass

    # --------------------------------------------------------
    # NOTIFICATIONS / SNAPSHOTS
    # --------------------------------------------------------

    @abstractmethod
    async def insert_notification(self, event: NotificationEvent) -> None:
        pass

    @abstractmethod
    async def get_last_snapshot(self, user_id: str, account_id: str) -> Optional[Dict[str, Decimal]]:
        pass

    @abstractmethod
    async def save_snapshot(self, user_id: str, account_id: str, positions: Dict[str, Decimal]) -> None:
        pass

    @abstractmethod
    async def record_detected_trades(
        self,
        user_id: str,
        account_id: str,
        trades: List[LeaderTrade],
        positions: Dict[str, Decimal],
    ) -> None:
        """
        Insert new leader trades and save the positions they were
        detected from as the latest snapshot, all or nothing.
        """
        pass


__all__ = ["RecordStore"]
