"""
Copy Engine - Batch Processor.

============================================================
PURPOSE
============================================================
Drains the queue of unprocessed leader trades.

ORDERING:
- Trades are processed one at a time, oldest detection first
- A trade is marked processed only after every follower
  execution for it has been attempted, whatever the outcome
- Only one pass runs at a time; a second caller waits for the
  running pass and then reads the queue afresh

FAILURE:
- Failing to read the pending queue is a hard stop
- Failing to load a trade's followers defers that trade and the
  leader's later trades to the next pass; other leaders continue
- Follower failures only show up in the stats

============================================================
"""

import asyncio
import logging
from typing import Optional, Set

from core.exceptions import RecordStoreError

from .engine import CopyTradeEngine
from .store.base import RecordStore
from .types import ProcessStats


logger = logging.getLogger(__name__)


class BatchProcessor:
    """Runs the copy engine over every pending leader trade."""

    def __init__(self, engine: CopyTradeEngine, store: RecordStore):
        self._engine = engine
        self._store = store
        self._lock: Optional[asyncio.Lock] = None

    @property
    def is_running(self) -> bool:
        return self._lock is not None and self._lock.locked()

    async def process_all_pending_trades(self) -> ProcessStats:
        """
        Process every unprocessed leader trade.

        Returns:
            Aggregate execution stats for the pass

        Raises:
            RecordStoreError: If the pending trades cannot be read
        """
        # Created lazily so the lock binds to the running loop
        if self._lock is None:
            self._lock = asyncio.Lock()

        if self._lock.locked():
            logger.info("Batch already running, waiting for it to finish")

        async with self._lock:
            return await self._run_pass()

    async def _run_pass(self) -> ProcessStats:
        try:
            pending = await self._store.get_pending_trades()
        except RecordStoreError:
            logger.error("Error fetching pending trades, aborting batch")
            raise

        stats = ProcessStats(total_trades=len(pending))
        logger.info(f"Processing {len(pending)} pending trades")

        deferred_leaders: Set[str] = set()
        for trade in pending:
            if trade.leader_id in deferred_leaders:
                logger.info(f"Deferring trade {trade.id}: earlier trade of leader {trade.leader_id} is pending")
                continue

            try:
                results = await self._engine.process_trade(trade)
            except RecordStoreError as e:
                logger.error(f"Error loading followers for trade {trade.id}, deferring to next run: {e}")
                deferred_leaders.add(trade.leader_id)
                continue

            stats.record(results)
            await self._mark_processed(trade.id)

        if deferred_leaders:
            logger.warning(f"Deferred trades of {len(deferred_leaders)} leaders to the next run")
        logger.info(f"Processing complete: {stats.to_dict()}")
        return stats

    async def _mark_processed(self, trade_id: str) -> bool:
        try:
            await self._store.mark_trade_processed(trade_id)
            return True
        except RecordStoreError as e:
            logger.error(f"Error marking trade {trade_id} processed: {e}")
            return False


__all__ = ["BatchProcessor"]
