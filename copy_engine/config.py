"""
Copy Engine - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the copy-trade execution pipeline.

CRITICAL CONSTRAINTS:
- Bounded retries (order placement only)
- Deterministic sizing and filtering defaults
- Credentials loaded from environment, never hardcoded

============================================================
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from dotenv import load_dotenv


# ============================================================
# RETRY CONFIGURATION
# ============================================================

@dataclass
class RetryConfig:
    """
    Retry configuration for order placement.

    Waits base * multiplier^attempt between attempts: 1s, 2s.
    """

    max_attempts: int = 3
    """Total attempts including the first."""

    base_delay_seconds: float = 1.0
    """Delay before the second attempt."""

    backoff_multiplier: float = 2.0
    """Exponential backoff multiplier."""

    def delay_for(self, attempt: int) -> float:
        """Delay after the given zero-based failed attempt."""
        return self.base_delay_seconds * (self.backoff_multiplier ** attempt)


# ============================================================
# SIZING CONFIGURATION
# ============================================================

@dataclass
class SizingConfig:
    """Defaults applied when a relationship leaves a parameter unset."""

    default_allocation_percent: Decimal = Decimal("10")
    """Proportional sizing allocation when unset or invalid."""

    default_stop_loss_percent: Decimal = Decimal("5")
    """Risk-based sizing stop distance when unset."""


# ============================================================
# EXPOSURE CONFIGURATION
# ============================================================

@dataclass
class ExposureConfig:
    """Constants used by the trade filter and exposure checks."""

    penny_stock_threshold: Decimal = Decimal("5.00")
    """Prices below this are penny stocks."""

    fallback_price: Decimal = Decimal("100.0")
    """Price assumed for value estimates when a trade price is unknown."""

    fallback_balance: Decimal = Decimal("10000.0")
    """Balance assumed when the follower's balance is not positive."""


# ============================================================
# BROKER CONFIGURATION
# ============================================================

@dataclass
class BrokerConfig:
    """
    Brokerage gateway configuration.
    """

    base_url: str = "https://api.snaptrade.com/api/v1"
    """REST API base URL."""

    client_id_env: str = "SNAPTRADE_CLIENT_ID"
    """Environment variable for the partner client id."""

    consumer_key_env: str = "SNAPTRADE_CONSUMER_KEY"
    """Environment variable for the request-signing key."""

    connection_timeout_seconds: float = 5.0
    read_timeout_seconds: float = 30.0

    @property
    def client_id(self) -> Optional[str]:
        return os.getenv(self.client_id_env)

    @property
    def consumer_key(self) -> Optional[str]:
        return os.getenv(self.consumer_key_env)


# ============================================================
# ENGINE CONFIGURATION
# ============================================================

@dataclass
class EngineConfig:
    """Per-follower execution settings."""

    order_type: str = "Market"
    """Order type sent to the trade-impact check."""

    wait_to_confirm: bool = True
    """Ask the broker to confirm the fill before returning."""

    fallback_quote_price: Decimal = Decimal("100")
    """Price used for sizing when the live quote cannot be fetched."""

    follower_concurrency: int = 1
    """Followers of one trade processed at once (1 = sequential)."""


# ============================================================
# MASTER CONFIGURATION
# ============================================================

@dataclass
class CopyEngineConfig:
    """
    Master configuration for the copy engine.
    """

    retry: RetryConfig = field(default_factory=RetryConfig)
    sizing: SizingConfig = field(default_factory=SizingConfig)
    exposure: ExposureConfig = field(default_factory=ExposureConfig)
    broker: BrokerConfig = field(default_factory=BrokerConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)

    database_url: Optional[str] = None
    """Record store URL (SQLAlchemy async URL)."""

    cron_secret: Optional[str] = None
    """Bearer secret required by the scheduler endpoints."""

    dry_run: bool = False
    """Use the mock broker gateway instead of the live API."""

    @classmethod
    def from_env(cls) -> "CopyEngineConfig":
        """Build configuration from environment (and a .env file if present)."""
        load_dotenv()

        broker = BrokerConfig(
            base_url=os.getenv("SNAPTRADE_BASE_URL", BrokerConfig.base_url),
        )
        engine = EngineConfig(
            follower_concurrency=int(os.getenv("COPY_ENGINE_FOLLOWER_CONCURRENCY", "1")),
        )
        return cls(
            broker=broker,
            engine=engine,
            database_url=os.getenv("DATABASE_URL"),
            cron_secret=os.getenv("CRON_SECRET"),
            dry_run=os.getenv("COPY_ENGINE_DRY_RUN", "false").lower() in ("1", "true", "yes"),
        )

    @classmethod
    def for_testing(cls) -> "CopyEngineConfig":
        """Get configuration for testing."""
        return cls(
            database_url="sqlite+aiosqlite:///:memory:",
            dry_run=True,
        )
