"""
Copy Engine - Types.

============================================================
PURPOSE
============================================================
All type definitions for the copy-trade execution pipeline.

RECORDS:
- LeaderTrade: a trade a leader made (immutable fact)
- CopyRelationship: one follower following one leader
- CopyExecution: one attempt to replicate one trade for one follower

TRANSIENT RESULTS:
- PositionSizeResult, FilterResult, ExecutionResult, ProcessStats

============================================================
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from enum import Enum
from decimal import Decimal


ZERO = Decimal("0")


def to_decimal(value: Any) -> Optional[Decimal]:
    """Convert a number (or numeric string) to Decimal, keeping None."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def parse_sector_list(value: Any) -> List[str]:
    """Parse a comma-separated sector list (or a list) into trimmed names."""
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [s.strip() for s in value if s and s.strip()]


# ============================================================
# ENUMS
# ============================================================

class TradeAction(Enum):
    """Trade direction."""

    BUY = "buy"
    SELL = "sell"

    @classmethod
    def parse(cls, value: str) -> "TradeAction":
        return cls(value.lower())


class AssetType(Enum):
    """Asset class of a traded instrument."""

    STOCK = "stock"
    OPTION = "option"
    ETF = "etf"
    CRYPTO = "crypto"

    @classmethod
    def parse(cls, value: Optional[str]) -> "AssetType":
        if not value:
            return cls.STOCK
        return cls(value.lower())


class SizingMethod(Enum):
    """Position sizing methods."""

    PROPORTIONAL = "proportional"
    """Use X% of the follower's balance per trade."""

    FIXED_DOLLAR = "fixed_dollar"
    """Always invest exactly $X per trade."""

    FIXED_SHARES = "fixed_shares"
    """Always buy exactly X shares."""

    RISK_BASED = "risk_based"
    """Size so that a stop-loss hit loses X% of the account."""

    MULTIPLIER = "multiplier"
    """Copy the leader at X times their size."""


class RelationshipStatus(Enum):
    """Copy relationship status."""

    ACTIVE = "active"
    PAUSED = "paused"
    STOPPED = "stopped"


class ExecutionStatus(Enum):
    """
    Copy execution status.

    PENDING is only ever held in memory; every persisted
    execution carries one of the terminal states.
    """

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"

    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.PENDING


class NotificationType(Enum):
    """Notification kinds emitted by the engine."""

    TRADE_EXECUTED = "trade_executed"
    TRADE_FAILED = "trade_failed"


# ============================================================
# LEADER TRADE
# ============================================================

@dataclass(frozen=True)
class OptionDetails:
    """Option contract metadata for OPTION trades."""

    option_type: Optional[str] = None
    """CALL or PUT."""

    strike_price: Optional[Decimal] = None
    expiration_date: Optional[str] = None
    """ISO date string as reported by the broker."""

    contracts: Optional[int] = None


@dataclass
class LeaderTrade:
    """
    A trade a leader's brokerage executed or reported.

    Created unprocessed by the ingestion layer; flipped to processed
    once by the batch processor.
    """

    id: str
    leader_id: str
    account_id: str
    symbol: str
    action: TradeAction
    quantity: Decimal
    price: Optional[Decimal] = None
    """Execution price; may be unknown at detection time."""

    order_type: str = "Market"
    asset_type: AssetType = AssetType.STOCK
    option: Optional[OptionDetails] = None
    external_order_id: Optional[str] = None
    is_exit: bool = False
    processed: bool = False
    detected_at: Optional[datetime] = None

    @property
    def expiration_date(self) -> Optional[str]:
        return self.option.expiration_date if self.option else None

    @property
    def estimated_value(self) -> Optional[Decimal]:
        """Dollar value at the reported price, None when price unknown."""
        if not self.price:
            return None
        return self.quantity * self.price


# ============================================================
# COPY RELATIONSHIP
# ============================================================

@dataclass
class SizingSettings:
    """
    Position sizing configuration of a relationship.

    Only the parameters of the selected method are read.
    """

    method: SizingMethod = SizingMethod.PROPORTIONAL
    allocation_percent: Optional[Decimal] = None
    fixed_dollar_amount: Optional[Decimal] = None
    fixed_shares_amount: Optional[Decimal] = None
    risk_percent: Optional[Decimal] = None
    multiplier: Optional[Decimal] = None

    max_position_size: Optional[Decimal] = None
    """Dollar cap applied to every method."""

    auto_stop_loss_enabled: bool = False
    auto_stop_loss_percent: Optional[Decimal] = None
    """Also used as the stop distance for risk-based sizing."""

    auto_take_profit_enabled: bool = False
    auto_take_profit_percent: Optional[Decimal] = None


@dataclass
class TradeFilters:
    """Attribute filters evaluated before exposure limits."""

    skip_penny_stocks: bool = False
    skip_options: bool = False
    skip_0dte_options: bool = False
    skip_crypto: bool = False

    filter_by_market_cap: bool = False
    min_market_cap: Optional[Decimal] = None
    """In billions."""

    max_market_cap: Optional[Decimal] = None
    """In billions."""

    filter_by_price: bool = False
    min_stock_price: Optional[Decimal] = None
    max_stock_price: Optional[Decimal] = None

    filter_by_sector: bool = False
    allowed_sectors: List[str] = field(default_factory=list)
    blocked_sectors: List[str] = field(default_factory=list)


@dataclass
class ExposureLimits:
    """Portfolio exposure limits; only evaluated when enabled."""

    enabled: bool = False
    max_position_concentration: Optional[Decimal] = None
    """Percent of balance in a single symbol."""

    max_sector_concentration: Optional[Decimal] = None
    """Percent of balance in a single sector."""

    max_open_positions: Optional[int] = None
    max_daily_trades: Optional[int] = None
    max_daily_volume: Optional[Decimal] = None
    """Dollar volume per day."""


@dataclass
class CopyRelationship:
    """A standing subscription of one follower to one leader."""

    id: str
    leader_id: str
    follower_id: str
    status: RelationshipStatus = RelationshipStatus.ACTIVE
    sizing: SizingSettings = field(default_factory=SizingSettings)
    filters: TradeFilters = field(default_factory=TradeFilters)
    limits: ExposureLimits = field(default_factory=ExposureLimits)
    total_trades_copied: int = 0

    @property
    def is_active(self) -> bool:
        return self.status == RelationshipStatus.ACTIVE


# ============================================================
# FOLLOWER / ACCOUNT
# ============================================================

@dataclass
class Follower:
    """The user record behind a relationship's follower (or a leader)."""

    id: str
    broker_user_id: Optional[str] = None
    broker_user_secret: Optional[str] = None
    full_name: Optional[str] = None
    role: str = "follower"


@dataclass
class BrokerageAccount:
    """A user's active brokerage connection."""

    user_id: str
    account_id: str
    balance: Decimal = ZERO
    """Cash balance."""

    status: str = "active"
    id: Optional[str] = None


# ============================================================
# COPY EXECUTION
# ============================================================

@dataclass
class CopyExecution:
    """
    Audit record of one replication attempt.

    Finalized in memory and inserted once; never updated afterwards.
    """

    trade_id: str
    relationship_id: str
    follower_id: str
    symbol: str
    action: TradeAction
    account_id: str
    asset_type: AssetType = AssetType.STOCK
    quantity: int = 0
    status: ExecutionStatus = ExecutionStatus.PENDING
    order_id: Optional[str] = None
    executed_price: Optional[Decimal] = None
    stop_loss_price: Optional[Decimal] = None
    take_profit_price: Optional[Decimal] = None
    error_message: Optional[str] = None
    executed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    id: Optional[str] = None

    @classmethod
    def for_trade(
        cls,
        trade: LeaderTrade,
        relationship: CopyRelationship,
        account_id: str,
    ) -> "CopyExecution":
        """Start a pending execution for a trade/relationship pair."""
        return cls(
            trade_id=trade.id,
            relationship_id=relationship.id,
            follower_id=relationship.follower_id,
            symbol=trade.symbol,
            action=trade.action,
            account_id=account_id,
            asset_type=trade.asset_type,
        )

    def mark_skipped(self, reason: str) -> "CopyExecution":
        self.status = ExecutionStatus.SKIPPED
        self.error_message = reason
        return self

    def mark_failed(self, reason: str) -> "CopyExecution":
        self.status = ExecutionStatus.FAILED
        self.error_message = reason
        return self

    @property
    def notional(self) -> Decimal:
        """Executed dollar value (0 when price unknown)."""
        return Decimal(self.quantity) * (self.executed_price or ZERO)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "trade_id": self.trade_id,
            "relationship_id": self.relationship_id,
            "follower_id": self.follower_id,
            "symbol": self.symbol,
            "action": self.action.value,
            "quantity": self.quantity,
            "status": self.status.value,
            "account_id": self.account_id,
            "asset_type": self.asset_type.value,
            "order_id": self.order_id,
            "executed_price": str(self.executed_price) if self.executed_price is not None else None,
            "stop_loss_price": str(self.stop_loss_price) if self.stop_loss_price is not None else None,
            "take_profit_price": str(self.take_profit_price) if self.take_profit_price is not None else None,
            "error_message": self.error_message,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
        }


# ============================================================
# TRANSIENT RESULTS
# ============================================================

@dataclass(frozen=True)
class PositionSizeResult:
    """Outcome of a position size calculation."""

    quantity: int
    estimated_cost: Decimal
    method_used: str
    capped: bool = False

    @classmethod
    def error(cls) -> "PositionSizeResult":
        """Sentinel result for a misconfigured relationship."""
        return cls(quantity=0, estimated_cost=ZERO, method_used="error", capped=False)


@dataclass(frozen=True)
class FilterResult:
    """Accept/reject decision of the trade filter."""

    should_copy: bool
    skip_reason: Optional[str] = None

    @classmethod
    def accept(cls) -> "FilterResult":
        return cls(should_copy=True)

    @classmethod
    def reject(cls, reason: str) -> "FilterResult":
        return cls(should_copy=False, skip_reason=reason)


@dataclass
class PositionData:
    """Reconstructed open position in one symbol."""

    quantity: Decimal = ZERO
    value: Decimal = ZERO


@dataclass(frozen=True)
class DailyStats:
    """Successful executions since the start of the day."""

    count: int = 0
    volume: Decimal = ZERO


@dataclass
class ExecutionResult:
    """Outcome of one per-follower execution attempt."""

    execution: CopyExecution
    success: bool
    error: Optional[str] = None

    @property
    def status(self) -> ExecutionStatus:
        return self.execution.status


@dataclass
class ProcessStats:
    """Aggregate counters for a batch pass."""

    total_trades: int = 0
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    skipped_executions: int = 0

    def record(self, results: List[ExecutionResult]) -> None:
        """Fold one trade's follower results into the totals."""
        self.total_executions += len(results)
        for result in results:
            if result.status == ExecutionStatus.SUCCESS:
                self.successful_executions += 1
            elif result.status == ExecutionStatus.FAILED:
                self.failed_executions += 1
            elif result.status == ExecutionStatus.SKIPPED:
                self.skipped_executions += 1

    def to_dict(self) -> Dict[str, int]:
        return {
            "total_trades": self.total_trades,
            "total_executions": self.total_executions,
            "successful_executions": self.successful_executions,
            "failed_executions": self.failed_executions,
            "skipped_executions": self.skipped_executions,
        }


@dataclass
class NotificationEvent:
    """An in-app notification for a follower."""

    user_id: str
    notification_type: NotificationType
    title: str
    message: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "ZERO",
    "to_decimal",
    "parse_sector_list",
    "TradeAction",
    "AssetType",
    "SizingMethod",
    "RelationshipStatus",
    "ExecutionStatus",
    "NotificationType",
    "OptionDetails",
    "LeaderTrade",
    "SizingSettings",
    "TradeFilters",
    "ExposureLimits",
    "CopyRelationship",
    "Follower",
    "BrokerageAccount",
    "CopyExecution",
    "PositionSizeResult",
    "FilterResult",
    "PositionData",
    "DailyStats",
    "ExecutionResult",
    "ProcessStats",
    "NotificationEvent",
]
