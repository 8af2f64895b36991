"""
Database Models - Copy Trading Tables.

============================================================
SQLAlchemy ORM models for the copy-trading record store.
============================================================

Tables:
1. users                  - Leaders and followers (broker credentials)
2. brokerage_connections  - Linked brokerage accounts
3. copy_relationships     - Follower subscriptions with sizing/filters/limits
4. leader_trades          - Detected leader trades (queue)
5. copy_executions        - Append-only execution ledger
6. notifications          - In-app notifications
7. position_snapshots     - Leader position snapshots for detection

All timestamps are UTC.

============================================================
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from .engine import Base


# =============================================================
# HELPER FUNCTIONS
# =============================================================

def generate_uuid() -> str:
    """Generate a new UUID."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


# =============================================================
# 1. USERS
# =============================================================

class UserModel(Base):
    """
    Platform users.

    role is one of follower, leader, both.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=generate_uuid)
    email: Mapped[Optional[str]] = mapped_column(String(255))
    full_name: Mapped[Optional[str]] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="follower", index=True)

    snaptrade_user_id: Mapped[Optional[str]] = mapped_column(String(128))
    snaptrade_user_secret: Mapped[Optional[str]] = mapped_column(String(255))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


# =============================================================
# 2. BROKERAGE CONNECTIONS
# =============================================================

class BrokerageConnectionModel(Base):
    """A user's linked brokerage account."""
    __tablename__ = "brokerage_connections"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    account_id: Mapped[str] = mapped_column(String(128), nullable=False)
    brokerage_name: Mapped[Optional[str]] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    balance: Mapped[Decimal] = mapped_column(Numeric(20, 4), default=Decimal("0"))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        Index("idx_connection_user_status", "user_id", "status"),
    )


# =============================================================
# 3. COPY RELATIONSHIPS
# =============================================================

class CopyRelationshipModel(Base):
    """
    Follower subscriptions.

    Only the engine writes total_trades_copied; every other
    column belongs to the settings UI.
    """
    __tablename__ = "copy_relationships"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=generate_uuid)
    leader_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    follower_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")

    # Sizing
    position_sizing_method: Mapped[str] = mapped_column(String(32), nullable=False, default="proportional")
    allocation_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 4))
    fixed_dollar_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 4))
    fixed_shares_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 4))
    risk_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 4))
    multiplier: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 4))
    max_position_size: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 4))

    auto_stop_loss_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_stop_loss_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 4))
    auto_take_profit_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_take_profit_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 4))

    # Filters
    skip_penny_stocks: Mapped[bool] = mapped_column(Boolean, default=False)
    skip_options: Mapped[bool] = mapped_column(Boolean, default=False)
    skip_0dte_options: Mapped[bool] = mapped_column(Boolean, default=False)
    skip_crypto: Mapped[bool] = mapped_column(Boolean, default=False)
    filter_by_market_cap: Mapped[bool] = mapped_column(Boolean, default=False)
    min_market_cap: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 4))
    max_market_cap: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 4))
    filter_by_price: Mapped[bool] = mapped_column(Boolean, default=False)
    min_stock_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 4))
    max_stock_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 4))
    filter_by_sector: Mapped[bool] = mapped_column(Boolean, default=False)
    allowed_sectors: Mapped[Optional[str]] = mapped_column(Text)  # comma-separated
    blocked_sectors: Mapped[Optional[str]] = mapped_column(Text)  # comma-separated

    # Exposure limits
    enable_exposure_limits: Mapped[bool] = mapped_column(Boolean, default=False)
    max_position_concentration: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 4))
    max_sector_concentration: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 4))
    max_open_positions: Mapped[Optional[int]] = mapped_column(Integer)
    max_daily_trades: Mapped[Optional[int]] = mapped_column(Integer)
    max_daily_volume: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 4))

    total_trades_copied: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index("idx_relationship_leader_status", "leader_id", "status"),
    )


# =============================================================
# 4. LEADER TRADES
# =============================================================

class LeaderTradeModel(Base):
    """
    Detected leader trades.

    Inserted with processed=false; flipped once by the batch processor.
    """
    __tablename__ = "leader_trades"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=generate_uuid)
    leader_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    account_id: Mapped[str] = mapped_column(String(128), nullable=False)

    symbol: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(8), nullable=False)  # buy, sell
    quantity: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 6))
    order_type: Mapped[str] = mapped_column(String(16), default="Market")
    asset_type: Mapped[str] = mapped_column(String(16), default="stock")

    # Option metadata
    option_type: Mapped[Optional[str]] = mapped_column(String(8))
    strike_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 6))
    expiration_date: Mapped[Optional[str]] = mapped_column(String(32))
    contracts: Mapped[Optional[int]] = mapped_column(Integer)

    external_order_id: Mapped[Optional[str]] = mapped_column(String(128))
    is_exit: Mapped[bool] = mapped_column(Boolean, default=False)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        Index("idx_leader_trades_pending", "processed", "detected_at"),
    )


# =============================================================
# 5. COPY EXECUTIONS
# =============================================================

class CopyExecutionModel(Base):
    """
    Execution ledger.

    Append-only: one row per (trade, relationship) per pass.
    """
    __tablename__ = "copy_executions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=generate_uuid)
    trade_id: Mapped[str] = mapped_column(String(64), ForeignKey("leader_trades.id"), nullable=False, index=True)
    relationship_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("copy_relationships.id"), nullable=False, index=True
    )
    follower_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    action: Mapped[str] = mapped_column(String(8), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # success, failed, skipped
    account_id: Mapped[str] = mapped_column(String(128), nullable=False)
    asset_type: Mapped[str] = mapped_column(String(16), default="stock")

    order_id: Mapped[Optional[str]] = mapped_column(String(128))
    executed_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 6))
    stop_loss_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 6))
    take_profit_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 6))
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    executed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)

    __table_args__ = (
        Index("idx_execution_relationship_status", "relationship_id", "status", "created_at"),
    )


# =============================================================
# 6. NOTIFICATIONS
# =============================================================

class NotificationModel(Base):
    """In-app notifications."""
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSON)
    read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


# =============================================================
# 7. POSITION SNAPSHOTS
# =============================================================

class PositionSnapshotModel(Base):
    """Leader positions as {symbol: quantity} at poll time."""
    __tablename__ = "position_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    account_id: Mapped[str] = mapped_column(String(128), nullable=False)
    positions: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        Index("idx_snapshot_account_time", "user_id", "account_id", "created_at"),
    )


__all__ = [
    "generate_uuid",
    "utc_now",
    "UserModel",
    "BrokerageConnectionModel",
    "CopyRelationshipModel",
    "LeaderTradeModel",
    "CopyExecutionModel",
    "NotificationModel",
    "PositionSnapshotModel",
]
