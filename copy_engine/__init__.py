"""
Copy Engine Package.

============================================================
PURPOSE
============================================================
Replicates leader trades into follower brokerage accounts.

CRITICAL PRINCIPLE:
    "One follower's failure never touches another follower."
    "Every attempt leaves exactly one ledger row."

PIPELINE (per trade, per follower):
    filter -> size -> resolve symbol -> impact check
    -> place order (with retry) -> persist -> notify

============================================================
MODULES
============================================================
- types: Records, enums and transient results
- config: Engine configuration
- sizing: Position sizing calculator
- filters: Trade filters and exposure limits
- reference_data: Sector and market cap lookups
- retry: Bounded retry with exponential backoff
- notifications: Notification sinks and event helpers
- adapters: Broker gateways (SnapTrade, Mock)
- store: Record store port and in-memory store
- engine: Copy trade engine
- processor: Batch processor
- detection: Leader trade detection
- factory: Runtime wiring
- api: Scheduler HTTP endpoints
- cli: Command-line entry point

============================================================
"""

# ============================================================
# TYPES
# ============================================================
from .types import (
    TradeAction,
    AssetType,
    SizingMethod,
    RelationshipStatus,
    ExecutionStatus,
    NotificationType,
    OptionDetails,
    LeaderTrade,
    SizingSettings,
    TradeFilters,
    ExposureLimits,
    CopyRelationship,
    Follower,
    BrokerageAccount,
    CopyExecution,
    PositionSizeResult,
    FilterResult,
    PositionData,
    DailyStats,
    ExecutionResult,
    ProcessStats,
    NotificationEvent,
)

# ============================================================
# CONFIGURATION
# ============================================================
from .config import (
    RetryConfig,
    SizingConfig,
    ExposureConfig,
    BrokerConfig,
    EngineConfig,
    CopyEngineConfig,
)

# ============================================================
# COMPONENTS
# ============================================================
from .sizing import PositionSizingCalculator
from .filters import TradeFilterService
from .reference_data import ReferenceDataProvider, StaticReferenceData
from .retry import RetryPolicy
from .notifications import (
    NotificationSink,
    NullNotificationSink,
    RecordingNotificationSink,
    RecordStoreNotificationSink,
)
from .adapters import BrokerGateway, MockBrokerGateway, SnapTradeGateway
from .store import RecordStore, InMemoryRecordStore

# ============================================================
# ORCHESTRATION
# ============================================================
from .engine import CopyTradeEngine
from .processor import BatchProcessor
from .detection import TradeDetector, DetectedTrade
from .factory import CopyEngineRuntime, create_runtime


__all__ = [
    # Types
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
    # Config
    "RetryConfig",
    "SizingConfig",
    "ExposureConfig",
    "BrokerConfig",
    "EngineConfig",
    "CopyEngineConfig",
    # Components
    "PositionSizingCalculator",
    "TradeFilterService",
    "ReferenceDataProvider",
    "StaticReferenceData",
    "RetryPolicy",
    "NotificationSink",
    "NullNotificationSink",
    "RecordingNotificationSink",
    "RecordStoreNotificationSink",
    "BrokerGateway",
    "MockBrokerGateway",
    "SnapTradeGateway",
    "RecordStore",
    "InMemoryRecordStore",
    # Orchestration
    "CopyTradeEngine",
    "BatchProcessor",
    "TradeDetector",
    "DetectedTrade",
    "CopyEngineRuntime",
    "create_runtime",
]
