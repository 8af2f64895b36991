"""
Database Package Initialization.

============================================================
COPY TRADING PERSISTENCE LAYER
============================================================

SQLAlchemy async persistence for the copy engine's
record store. All writes are transactional and every
failure surfaces as RecordStoreError.

============================================================
"""

# Core engine and session management
from .engine import (
    Base,
    get_database_url,
    create_database_engine,
    get_engine,
    create_session_factory,
    get_session_factory,
    transaction_scope,
    create_all_tables,
    dispose_engine,
)

# ORM Models
from .models import (
    UserModel,
    BrokerageConnectionModel,
    CopyRelationshipModel,
    LeaderTradeModel,
    CopyExecutionModel,
    NotificationModel,
    PositionSnapshotModel,
)

# Record store
from .repository import SqlRecordStore


__all__ = [
    # Engine
    "Base",
    "get_database_url",
    "create_database_engine",
    "get_engine",
    "create_session_factory",
    "get_session_factory",
    "transaction_scope",
    "create_all_tables",
    "dispose_engine",

    # Models
    "UserModel",
    "BrokerageConnectionModel",
    "CopyRelationshipModel",
    "LeaderTradeModel",
    "CopyExecutionModel",
    "NotificationModel",
    "PositionSnapshotModel",

    # Repository
    "SqlRecordStore",
]
