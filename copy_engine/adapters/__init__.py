"""
Copy Engine - Adapters Package.

============================================================
PURPOSE
============================================================
Broker gateway implementations.

AVAILABLE GATEWAYS:
- SnapTradeGateway: SnapTrade REST API
- MockBrokerGateway: dry runs and tests

============================================================
"""

from .base import (
    BrokerGateway,
    ImpactTrade,
    OrderResult,
    Quote,
    SymbolMatch,
    TradeImpact,
)
from .mock import MockBrokerGateway, MockGatewayConfig
from .snaptrade import SnapTradeGateway, sign_request


__all__ = [
    "BrokerGateway",
    "ImpactTrade",
    "OrderResult",
    "Quote",
    "SymbolMatch",
    "TradeImpact",
    "MockBrokerGateway",
    "MockGatewayConfig",
    "SnapTradeGateway",
    "sign_request",
]
