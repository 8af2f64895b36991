"""
Copy Engine - Runtime Factory.

============================================================
PURPOSE
============================================================
Wires the copy engine's collaborators from configuration.

SELECTION:
- Gateway: MockBrokerGateway in dry-run, SnapTradeGateway otherwise
- Store:   SqlRecordStore when a database URL is set,
           InMemoryRecordStore otherwise

============================================================
USAGE
============================================================
```python
runtime = await create_runtime(CopyEngineConfig.from_env())
try:
    stats = await runtime.processor.process_all_pending_trades()
finally:
    await runtime.close()
```

============================================================
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from core.clock import ClockProtocol, SystemClock

from .adapters.base import BrokerGateway
from .adapters.mock import MockBrokerGateway
from .adapters.snaptrade import SnapTradeGateway
from .config import CopyEngineConfig
from .detection import TradeDetector
from .engine import CopyTradeEngine
from .filters import TradeFilterService
from .notifications import NotificationSink, RecordStoreNotificationSink
from .processor import BatchProcessor
from .retry import RetryPolicy
from .sizing import PositionSizingCalculator
from .store.base import RecordStore
from .store.memory import InMemoryRecordStore


logger = logging.getLogger(__name__)


# ============================================================
# RUNTIME
# ============================================================

@dataclass
class CopyEngineRuntime:
    """Everything a batch run or the API needs, plus teardown."""

    config: CopyEngineConfig
    gateway: BrokerGateway
    store: RecordStore
    notifications: NotificationSink
    engine: CopyTradeEngine
    processor: BatchProcessor
    detector: TradeDetector
    clock: ClockProtocol = field(default_factory=SystemClock)
    db_engine: Optional[Any] = None
    """AsyncEngine owned by this runtime, when the store is SQL."""

    async def close(self) -> None:
        """Flush notifications, close the gateway and the database."""
        await self.notifications.aclose()
        await self.gateway.disconnect()
        if self.db_engine is not None:
            await self.db_engine.dispose()
        logger.info("Copy engine runtime closed")


# ============================================================
# BUILDERS
# ============================================================

def create_gateway(config: CopyEngineConfig) -> BrokerGateway:
    """Broker gateway for the configured mode."""
    if config.dry_run:
        logger.warning("Dry run: orders go to the mock broker gateway")
        return MockBrokerGateway()
    return SnapTradeGateway(config.broker)


async def create_store(
    config: CopyEngineConfig,
    clock: ClockProtocol,
    create_tables: bool = False,
):
    """
    Record store for the configured database.

    Returns:
        (store, db_engine) where db_engine is None for the in-memory store
    """
    if not config.database_url:
        logger.warning("DATABASE_URL not set, using in-memory record store")
        return InMemoryRecordStore(clock=clock), None

    from database.engine import create_all_tables, create_database_engine, create_session_factory
    from database.repository import SqlRecordStore

    db_engine = create_database_engine(config.database_url)
    if create_tables:
        await create_all_tables(db_engine)
    store = SqlRecordStore(create_session_factory(db_engine), clock=clock)
    return store, db_engine


async def create_runtime(
    config: Optional[CopyEngineConfig] = None,
    clock: Optional[ClockProtocol] = None,
    gateway: Optional[BrokerGateway] = None,
    store: Optional[RecordStore] = None,
    create_tables: bool = False,
) -> CopyEngineRuntime:
    """
    Build and connect a runtime.

    Args:
        config: Engine configuration (defaults to environment)
        clock: Time source
        gateway: Pre-built gateway, overrides config selection
        store: Pre-built store, overrides config selection
        create_tables: Create missing tables on a SQL store
    """
    config = config or CopyEngineConfig.from_env()
    clock = clock or SystemClock()

    db_engine = None
    if store is None:
        store, db_engine = await create_store(config, clock, create_tables=create_tables)
    gateway = gateway or create_gateway(config)

    await gateway.connect()

    notifications = RecordStoreNotificationSink(store)
    engine = CopyTradeEngine(
        gateway=gateway,
        store=store,
        sizing=PositionSizingCalculator(config.sizing),
        filters=TradeFilterService(clock=clock, config=config.exposure),
        retry=RetryPolicy(config.retry),
        notifications=notifications,
        clock=clock,
        config=config.engine,
    )

    logger.info(
        f"Copy engine runtime ready (gateway={gateway.gateway_id}, "
        f"store={type(store).__name__})"
    )

    return CopyEngineRuntime(
        config=config,
        gateway=gateway,
        store=store,
        notifications=notifications,
        engine=engine,
        processor=BatchProcessor(engine, store),
        detector=TradeDetector(gateway, store, clock=clock),
        clock=clock,
        db_engine=db_engine,
    )


__all__ = [
    "CopyEngineRuntime",
    "create_gateway",
    "create_store",
    "create_runtime",
]
