"""
Copy Engine - Notifications.

============================================================
PURPOSE
============================================================
Output port for follower notifications.

The engine calls NotificationSink.emit() on the success and
failure paths and never awaits or retries the delivery.

SINKS:
- NullNotificationSink: drops everything
- RecordingNotificationSink: keeps events in memory (tests)
- RecordStoreNotificationSink: writes to the notifications table
  in a background task

============================================================
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import TYPE_CHECKING, List, Set

from .types import (
    CopyExecution,
    LeaderTrade,
    NotificationEvent,
    NotificationType,
)

if TYPE_CHECKING:
    from .store.base import RecordStore


logger = logging.getLogger(__name__)


# ============================================================
# SINK INTERFACE
# ============================================================

class NotificationSink(ABC):
    """Fire-and-forget notification output."""

    @abstractmethod
    def emit(self, event: NotificationEvent) -> None:
        """Hand off an event. Must not raise."""
        pass

    async def aclose(self) -> None:
        """Flush pending deliveries."""
        return None


class NullNotificationSink(NotificationSink):
    """Discards all events."""

    def emit(self, event: NotificationEvent) -> None:
        logger.debug(f"Dropping notification '{event.title}' for {event.user_id}")


class RecordingNotificationSink(NotificationSink):
    """Keeps emitted events in memory."""

    def __init__(self):
        self.events: List[NotificationEvent] = []

    def emit(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def of_type(self, notification_type: NotificationType) -> List[NotificationEvent]:
        return [e for e in self.events if e.notification_type == notification_type]


class RecordStoreNotificationSink(NotificationSink):
    """
    Persists notifications through the record store.

    Each emit schedules a background insert on the running loop.
    Failures are logged and dropped.
    """

    def __init__(self, store: "RecordStore"):
        self._store = store
        self._pending: Set[asyncio.Task] = set()

    def emit(self, event: NotificationEvent) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running loop, notification '{event.title}' dropped")
            return

        task = loop.create_task(self._deliver(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: NotificationEvent) -> None:
        try:
            await self._store.insert_notification(event)
        except Exception as e:
            logger.error(f"Failed to store notification for {event.user_id}: {e}")

    async def aclose(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


# ============================================================
# EVENT HELPERS
# ============================================================

def create_trade_executed_event(
    trade: LeaderTrade,
    execution: CopyExecution,
) -> NotificationEvent:
    """Create a trade executed notification."""
    price = execution.executed_price or Decimal("0")
    return NotificationEvent(
        user_id=execution.follower_id,
        notification_type=NotificationType.TRADE_EXECUTED,
        title="Trade Executed",
        message=(
            f"Copied {trade.action.value} {execution.quantity} {trade.symbol} "
            f"at ${price:.2f}"
        ),
        metadata={
            "trade_id": trade.id,
            "symbol": trade.symbol,
            "action": trade.action.value,
            "quantity": execution.quantity,
            "price": str(price),
        },
    )


def create_trade_failed_event(
    trade: LeaderTrade,
    execution: CopyExecution,
) -> NotificationEvent:
    """Create a trade failed notification."""
    return NotificationEvent(
        user_id=execution.follower_id,
        notification_type=NotificationType.TRADE_FAILED,
        title="Trade Failed",
        message=f"Failed to copy {trade.action.value} {trade.symbol}: {execution.error_message}",
        metadata={
            "trade_id": trade.id,
            "symbol": trade.symbol,
            "error": execution.error_message,
        },
    )


__all__ = [
    "NotificationSink",
    "NullNotificationSink",
    "RecordingNotificationSink",
    "RecordStoreNotificationSink",
    "create_trade_executed_event",
    "create_trade_failed_event",
]
