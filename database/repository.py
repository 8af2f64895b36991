"""
Database - Copy Trading Repository.

============================================================
PURPOSE
============================================================
SQLAlchemy implementation of the copy engine's RecordStore.

RESPONSIBILITIES:
- Load pending trades, relationships, followers, accounts
- Append executions to the ledger
- Atomic counter increments
- Notifications and position snapshots

CRITICAL REQUIREMENTS:
- One session per operation (safe under concurrent followers)
- All writes transactional
- Database errors surface as RecordStoreError

============================================================
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.clock import ClockProtocol, SystemClock, ensure_utc
from core.exceptions import RecordNotFoundError, RecordStoreError
from copy_engine.store.base import RecordStore
from copy_engine.types import (
    AssetType,
    BrokerageAccount,
    CopyExecution,
    CopyRelationship,
    ExecutionStatus,
    ExposureLimits,
    Follower,
    LeaderTrade,
    NotificationEvent,
    OptionDetails,
    RelationshipStatus,
    SizingMethod,
    SizingSettings,
    TradeAction,
    TradeFilters,
    ZERO,
    parse_sector_list,
    to_decimal,
)

from .engine import transaction_scope
from .models import (
    BrokerageConnectionModel,
    CopyExecutionModel,
    CopyRelationshipModel,
    LeaderTradeModel,
    NotificationModel,
    PositionSnapshotModel,
    UserModel,
    generate_uuid,
)


logger = logging.getLogger(__name__)


# ============================================================
# ROW MAPPING
# ============================================================

def trade_from_model(model: LeaderTradeModel) -> LeaderTrade:
    option = None
    if model.option_type or model.expiration_date or model.strike_price is not None:
        option = OptionDetails(
            option_type=model.option_type,
            strike_price=model.strike_price,
            expiration_date=model.expiration_date,
            contracts=model.contracts,
        )
    return LeaderTrade(
        id=model.id,
        leader_id=model.leader_id,
        account_id=model.account_id,
        symbol=model.symbol,
        action=TradeAction.parse(model.action),
        quantity=to_decimal(model.quantity),
        price=to_decimal(model.price),
        order_type=model.order_type or "Market",
        asset_type=AssetType.parse(model.asset_type),
        option=option,
        external_order_id=model.external_order_id,
        is_exit=bool(model.is_exit),
        processed=bool(model.processed),
        detected_at=ensure_utc(model.detected_at),
    )


def trade_to_model(trade: LeaderTrade) -> LeaderTradeModel:
    option = trade.option or OptionDetails()
    return LeaderTradeModel(
        id=trade.id or generate_uuid(),
        leader_id=trade.leader_id,
        account_id=trade.account_id,
        symbol=trade.symbol,
        action=trade.action.value,
        quantity=trade.quantity,
        price=trade.price,
        order_type=trade.order_type,
        asset_type=trade.asset_type.value,
        option_type=option.option_type,
        strike_price=option.strike_price,
        expiration_date=option.expiration_date,
        contracts=option.contracts,
        external_order_id=trade.external_order_id,
        is_exit=trade.is_exit,
        processed=trade.processed,
        detected_at=trade.detected_at,
    )


def relationship_from_model(model: CopyRelationshipModel) -> CopyRelationship:
    sizing = SizingSettings(
        method=SizingMethod(model.position_sizing_method),
        allocation_percent=to_decimal(model.allocation_percent),
        fixed_dollar_amount=to_decimal(model.fixed_dollar_amount),
        fixed_shares_amount=to_decimal(model.fixed_shares_amount),
        risk_percent=to_decimal(model.risk_percent),
        multiplier=to_decimal(model.multiplier),
        max_position_size=to_decimal(model.max_position_size),
        auto_stop_loss_enabled=bool(model.auto_stop_loss_enabled),
        auto_stop_loss_percent=to_decimal(model.auto_stop_loss_percent),
        auto_take_profit_enabled=bool(model.auto_take_profit_enabled),
        auto_take_profit_percent=to_decimal(model.auto_take_profit_percent),
    )
    filters = TradeFilters(
        skip_penny_stocks=bool(model.skip_penny_stocks),
        skip_options=bool(model.skip_options),
        skip_0dte_options=bool(model.skip_0dte_options),
        skip_crypto=bool(model.skip_crypto),
        filter_by_market_cap=bool(model.filter_by_market_cap),
        min_market_cap=to_decimal(model.min_market_cap),
        max_market_cap=to_decimal(model.max_market_cap),
        filter_by_price=bool(model.filter_by_price),
        min_stock_price=to_decimal(model.min_stock_price),
        max_stock_price=to_decimal(model.max_stock_price),
        filter_by_sector=bool(model.filter_by_sector),
        allowed_sectors=parse_sector_list(model.allowed_sectors),
        blocked_sectors=parse_sector_list(model.blocked_sectors),
    )
    limits = ExposureLimits(
        enabled=bool(model.enable_exposure_limits),
        max_position_concentration=to_decimal(model.max_position_concentration),
        max_sector_concentration=to_decimal(model.max_sector_concentration),
        max_open_positions=model.max_open_positions,
        max_daily_trades=model.max_daily_trades,
        max_daily_volume=to_decimal(model.max_daily_volume),
    )
    return CopyRelationship(
        id=model.id,
        leader_id=model.leader_id,
        follower_id=model.follower_id,
        status=RelationshipStatus(model.status),
        sizing=sizing,
        filters=filters,
        limits=limits,
        total_trades_copied=model.total_trades_copied or 0,
    )


def user_from_model(model: UserModel) -> Follower:
    return Follower(
        id=model.id,
        broker_user_id=model.snaptrade_user_id,
        broker_user_secret=model.snaptrade_user_secret,
        full_name=model.full_name,
        role=model.role,
    )


def account_from_model(model: BrokerageConnectionModel) -> BrokerageAccount:
    return BrokerageAccount(
        id=model.id,
        user_id=model.user_id,
        account_id=model.account_id,
        balance=to_decimal(model.balance) or ZERO,
        status=model.status,
    )


def execution_from_model(model: CopyExecutionModel) -> CopyExecution:
    return CopyExecution(
        id=model.id,
        trade_id=model.trade_id,
        relationship_id=model.relationship_id,
        follower_id=model.follower_id,
        symbol=model.symbol,
        action=TradeAction.parse(model.action),
        account_id=model.account_id,
        asset_type=AssetType.parse(model.asset_type),
        quantity=model.quantity,
        status=ExecutionStatus(model.status),
        order_id=model.order_id,
        executed_price=to_decimal(model.executed_price),
        stop_loss_price=to_decimal(model.stop_loss_price),
        take_profit_price=to_decimal(model.take_profit_price),
        error_message=model.error_message,
        executed_at=ensure_utc(model.executed_at),
        created_at=ensure_utc(model.created_at),
    )


# ============================================================
# SQL RECORD STORE
# ============================================================

class SqlRecordStore(RecordStore):
    """
    Record store over SQLAlchemy async sessions.

    Opens a short-lived session per operation.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Optional[ClockProtocol] = None,
    ):
        """
        Initialize repository.

        Args:
            session_factory: SQLAlchemy async session factory
            clock: Time source for created_at stamps
        """
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    async def _read(self, operation: str, statement):
        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                return result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Database read failed ({operation}): {e}")
            raise RecordStoreError(f"Read failed: {e}", operation=operation, cause=e) from e

    # --------------------------------------------------------
    # LEADER TRADES
    # --------------------------------------------------------

    async def get_pending_trades(self) -> List[LeaderTrade]:
        rows = await self._read(
            "get_pending_trades",
            select(LeaderTradeModel)
            .where(LeaderTradeModel.processed.is_(False))
            .order_by(LeaderTradeModel.detected_at.asc(), LeaderTradeModel.id.asc()),
        )
        return [trade_from_model(row) for row in rows]

    async def mark_trade_processed(self, trade_id: str) -> None:
        async with transaction_scope(self._session_factory, "mark_trade_processed") as session:
            result = await session.execute(
                update(LeaderTradeModel)
                .where(LeaderTradeModel.id == trade_id)
                .values(processed=True)
            )
            if result.rowcount == 0:
                raise RecordNotFoundError(
                    f"Trade {trade_id} not found",
                    operation="mark_trade_processed",
                    table="leader_trades",
                )

    async def insert_leader_trades(self, trades: List[LeaderTrade]) -> None:
        if not trades:
            return
        async with transaction_scope(self._session_factory, "insert_leader_trades") as session:
            self._add_trades(session, trades)
        logger.info(f"Inserted {len(trades)} leader trades")

    # --------------------------------------------------------
    # RELATIONSHIPS / USERS / ACCOUNTS
    # --------------------------------------------------------

    async def get_active_relationships(self, leader_id: str) -> List[CopyRelationship]:
        rows = await self._read(
            "get_active_relationships",
            select(CopyRelationshipModel)
            .where(
                CopyRelationshipModel.leader_id == leader_id,
                CopyRelationshipModel.status == RelationshipStatus.ACTIVE.value,
            )
            .order_by(CopyRelationshipModel.created_at.asc()),
        )
        return [relationship_from_model(row) for row in rows]

    async def get_follower(self, follower_id: str) -> Optional[Follower]:
        rows = await self._read(
            "get_follower",
            select(UserModel).where(UserModel.id == follower_id),
        )
        return user_from_model(rows[0]) if rows else None

    async def get_active_account(self, user_id: str) -> Optional[BrokerageAccount]:
        accounts = await self.get_active_accounts(user_id)
        return accounts[0] if accounts else None

    async def get_active_accounts(self, user_id: str) -> List[BrokerageAccount]:
        rows = await self._read(
            "get_active_accounts",
            select(BrokerageConnectionModel)
            .where(
                BrokerageConnectionModel.user_id == user_id,
                BrokerageConnectionModel.status == "active",
            )
            .order_by(BrokerageConnectionModel.created_at.asc()),
        )
        return [account_from_model(row) for row in rows]

    async def get_leaders(self) -> List[Follower]:
        rows = await self._read(
            "get_leaders",
            select(UserModel).where(
                UserModel.role.in_(["leader", "both"]),
                UserModel.snaptrade_user_id.is_not(None),
            ),
        )
        return [user_from_model(row) for row in rows]

    async def increment_trades_copied(self, relationship_id: str) -> None:
        async with transaction_scope(self._session_factory, "increment_trades_copied") as session:
            # Single UPDATE so concurrent followers cannot lose increments
            result = await session.execute(
                update(CopyRelationshipModel)
                .where(CopyRelationshipModel.id == relationship_id)
                .values(total_trades_copied=CopyRelationshipModel.total_trades_copied + 1)
            )
            if result.rowcount == 0:
                raise RecordNotFoundError(
                    f"Relationship {relationship_id} not found",
                    operation="increment_trades_copied",
                    table="copy_relationships",
                )

    # --------------------------------------------------------
    # EXECUTIONS
    # --------------------------------------------------------

    async def get_successful_executions(
        self,
        relationship_id: str,
        since: Optional[datetime] = None,
    ) -> List[CopyExecution]:
        statement = select(CopyExecutionModel).where(
            CopyExecutionModel.relationship_id == relationship_id,
            CopyExecutionModel.status == ExecutionStatus.SUCCESS.value,
        )
        if since is not None:
            statement = statement.where(CopyExecutionModel.created_at >= since)
        rows = await self._read(
            "get_successful_executions",
            statement.order_by(CopyExecutionModel.created_at.asc()),
        )
        return [execution_from_model(row) for row in rows]

    async def insert_execution(self, execution: CopyExecution) -> CopyExecution:
        execution.id = execution.id or generate_uuid()
        execution.created_at = execution.created_at or self._clock.now()

        async with transaction_scope(self._session_factory, "insert_execution") as session:
            session.add(CopyExecutionModel(
                id=execution.id,
                trade_id=execution.trade_id,
                relationship_id=execution.relationship_id,
                follower_id=execution.follower_id,
                symbol=execution.symbol,
                action=execution.action.value,
                quantity=execution.quantity,
                status=execution.status.value,
                account_id=execution.account_id,
                asset_type=execution.asset_type.value,
                order_id=execution.order_id,
                executed_price=execution.executed_price,
                stop_loss_price=execution.stop_loss_price,
                take_profit_price=execution.take_profit_price,
                error_message=execution.error_message,
                executed_at=execution.executed_at,
                created_at=execution.created_at,
            ))

        logger.debug(f"Inserted {execution.status.value} execution {execution.id}")
        return execution

    # --------------------------------------------------------
    # NOTIFICATIONS / SNAPSHOTS
    # --------------------------------------------------------

    async def insert_notification(self, event: NotificationEvent) -> None:
        event.created_at = event.created_at or self._clock.now()
        async with transaction_scope(self._session_factory, "insert_notification") as session:
            session.add(NotificationModel(
                user_id=event.user_id,
                type=event.notification_type.value,
                title=event.title,
                message=event.message,
                payload=event.metadata,
                created_at=event.created_at,
            ))

    async def get_last_snapshot(self, user_id: str, account_id: str) -> Optional[Dict[str, Decimal]]:
        rows = await self._read(
            "get_last_snapshot",
            select(PositionSnapshotModel)
            .where(
                PositionSnapshotModel.user_id == user_id,
                PositionSnapshotModel.account_id == account_id,
            )
            .order_by(PositionSnapshotModel.created_at.desc(), PositionSnapshotModel.id.desc())
            .limit(1),
        )
        if not rows:
            return None
        return {symbol: to_decimal(qty) for symbol, qty in (rows[0].positions or {}).items()}

    async def save_snapshot(self, user_id: str, account_id: str, positions: Dict[str, Decimal]) -> None:
        async with transaction_scope(self._session_factory, "save_snapshot") as session:
            self._add_snapshot(session, user_id, account_id, positions)

    async def record_detected_trades(
        self,
        user_id: str,
        account_id: str,
        trades: List[LeaderTrade],
        positions: Dict[str, Decimal],
    ) -> None:
        async with transaction_scope(self._session_factory, "record_detected_trades") as session:
            self._add_trades(session, trades)
            self._add_snapshot(session, user_id, account_id, positions)
        if trades:
            logger.info(f"Inserted {len(trades)} leader trades for user {user_id}")

    def _add_trades(self, session, trades: List[LeaderTrade]) -> None:
        for trade in trades:
            if trade.detected_at is None:
                trade.detected_at = self._clock.now()
            session.add(trade_to_model(trade))

    def _add_snapshot(self, session, user_id: str, account_id: str, positions: Dict[str, Decimal]) -> None:
        session.add(PositionSnapshotModel(
            user_id=user_id,
            account_id=account_id,
            # JSON columns cannot hold Decimal
            positions={symbol: str(qty) for symbol, qty in positions.items()},
            created_at=self._clock.now(),
        ))


__all__ = [
    "SqlRecordStore",
    "trade_from_model",
    "trade_to_model",
    "relationship_from_model",
    "execution_from_model",
]
