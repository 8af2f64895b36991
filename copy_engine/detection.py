"""
Copy Engine - Trade Detection.

============================================================
PURPOSE
============================================================
Produces LeaderTrade rows by diffing a leader's brokerage
positions against the last saved snapshot.

RULES:
- Quantity up   -> BUY of the difference
- Quantity down -> SELL of the difference (exit when it hits 0)
- Unchanged     -> nothing

The first poll of an account has no snapshot, so every
holding is reported as a BUY.

Trades and the snapshot they came from are written together;
a failed write is retried by the next poll, never dropped.

============================================================
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from core.clock import ClockProtocol, SystemClock

from .adapters.base import BrokerGateway
from .store.base import RecordStore
from .types import (
    BrokerageAccount,
    Follower,
    LeaderTrade,
    TradeAction,
    ZERO,
    to_decimal,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectedTrade:
    """A position change between two snapshots."""

    symbol: str
    action: TradeAction
    quantity: Decimal
    is_exit: bool = False


class TradeDetector:
    """Polls leader accounts and records the trades their positions imply."""

    def __init__(
        self,
        gateway: BrokerGateway,
        store: RecordStore,
        clock: Optional[ClockProtocol] = None,
    ):
        self._gateway = gateway
        self._store = store
        self._clock = clock or SystemClock()
        self._lock: Optional[asyncio.Lock] = None

    @property
    def is_running(self) -> bool:
        return self._lock is not None and self._lock.locked()

    # --------------------------------------------------------
    # PURE HELPERS
    # --------------------------------------------------------

    @staticmethod
    def normalize_positions(positions: List[Dict[str, Any]]) -> Dict[str, Decimal]:
        """Map raw broker positions to {symbol: quantity}."""
        normalized: Dict[str, Decimal] = {}
        for position in positions or []:
            symbol = position.get("symbol")
            # Brokerage payloads nest the ticker one or two levels deep
            while isinstance(symbol, dict):
                symbol = symbol.get("symbol")
            if not symbol:
                continue
            quantity = position.get("units") or position.get("quantity") or 0
            normalized[str(symbol)] = to_decimal(quantity)
        return normalized

    @staticmethod
    def detect_trades(
        current: Dict[str, Decimal],
        last: Dict[str, Decimal],
    ) -> List[DetectedTrade]:
        """Diff two snapshots into trades, in symbol order."""
        trades = []
        for symbol in sorted(set(current) | set(last)):
            current_qty = to_decimal(current.get(symbol)) or ZERO
            last_qty = to_decimal(last.get(symbol)) or ZERO

            if current_qty > last_qty:
                trades.append(DetectedTrade(symbol, TradeAction.BUY, current_qty - last_qty))
            elif current_qty < last_qty:
                trades.append(DetectedTrade(
                    symbol,
                    TradeAction.SELL,
                    last_qty - current_qty,
                    is_exit=current_qty == 0,
                ))
        return trades

    # --------------------------------------------------------
    # POLLING
    # --------------------------------------------------------

    async def detect_trades_for_account(
        self,
        leader: Follower,
        account: BrokerageAccount,
    ) -> List[DetectedTrade]:
        """
        Fetch positions, diff against the last snapshot and record the result.

        The new snapshot is only saved together with the trades it
        implies, so a failed write leaves the old snapshot in place
        and the next poll detects the same trades again.

        Returns:
            Detected trades; [] when the broker call fails

        Raises:
            RecordStoreError: If the trades and snapshot cannot be written
        """
        try:
            raw = await self._gateway.get_account_positions(
                leader.broker_user_id,
                leader.broker_user_secret,
                account.account_id,
            )
            current = self.normalize_positions(raw)
            last = await self._store.get_last_snapshot(leader.id, account.account_id) or {}
        except Exception as e:
            logger.error(f"Error detecting trades for account {account.account_id}: {e}")
            return []

        trades = self.detect_trades(current, last)
        await self.create_trade_records(leader.id, account.account_id, trades, positions=current)
        return trades

    def build_trade_records(
        self,
        leader_id: str,
        account_id: str,
        trades: List[DetectedTrade],
    ) -> List[LeaderTrade]:
        detected_at = self._clock.now()
        return [
            LeaderTrade(
                id=str(uuid.uuid4()),
                leader_id=leader_id,
                account_id=account_id,
                symbol=trade.symbol,
                action=trade.action,
                quantity=trade.quantity,
                is_exit=trade.is_exit,
                processed=False,
                detected_at=detected_at,
            )
            for trade in trades
        ]

    async def create_trade_records(
        self,
        leader_id: str,
        account_id: str,
        trades: List[DetectedTrade],
        positions: Optional[Dict[str, Decimal]] = None,
    ) -> List[LeaderTrade]:
        """
        Insert detected trades as unprocessed LeaderTrades.

        With positions, the snapshot is saved in the same write.
        """
        records = self.build_trade_records(leader_id, account_id, trades)

        if positions is not None:
            await self._store.record_detected_trades(leader_id, account_id, records, positions)
        elif records:
            await self._store.insert_leader_trades(records)

        if records:
            logger.info(f"Created {len(records)} trade records for user {leader_id}")
        return records

    async def poll_all_leaders(self) -> Dict[str, int]:
        """
        Poll every leader's active accounts, one poll at a time.

        A leader whose accounts cannot be read or recorded is logged
        and skipped; the rest are still polled.

        Returns:
            {"leaders_polled": n, "trades_detected": m}
        """
        if self._lock is None:
            self._lock = asyncio.Lock()

        async with self._lock:
            leaders = await self._store.get_leaders()
            total = 0

            for leader in leaders:
                try:
                    detected = await self._poll_leader(leader)
                except Exception as e:
                    logger.error(f"Error polling leader {leader.id}: {e}")
                    continue
                total += detected

            return {"leaders_polled": len(leaders), "trades_detected": total}

    async def _poll_leader(self, leader: Follower) -> int:
        detected = 0
        accounts = await self._store.get_active_accounts(leader.id)
        for account in accounts:
            trades = await self.detect_trades_for_account(leader, account)
            if not trades:
                continue
            detected += len(trades)
            logger.info(
                f"Detected {len(trades)} trades for leader {leader.id} "
                f"({leader.full_name or 'Unknown'})"
            )
        return detected


__all__ = ["TradeDetector", "DetectedTrade"]
