"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Exception hierarchy for the copy-trading system.

- Broker errors say whether a retry could help
- Record store errors name the failing operation
- Every error carries a context dict for log lines

============================================================
EXCEPTION HIERARCHY
============================================================
CopyTradingException (base)
├── ConfigurationError
│   └── MissingConfigError
├── BrokerError
│   ├── BrokerConnectionError
│   ├── BrokerRequestError
│   └── SymbolResolutionError
└── RecordStoreError
    └── RecordNotFoundError

============================================================
"""

from typing import Any, Dict, Optional


class CopyTradingException(Exception):
    """
    Base exception for all copy-trading errors.

    str(error) is the plain message; details live in context.
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})
        self.cause = cause

        if cause is not None:
            self.context["cause"] = f"{type(cause).__name__}: {cause}"


# ============================================================
# CONFIGURATION
# ============================================================

class ConfigurationError(CopyTradingException):
    """Invalid or incomplete configuration."""


class MissingConfigError(ConfigurationError):
    """A required setting (usually an environment variable) is unset."""

    def __init__(self, key: str):
        super().__init__(f"Missing required configuration: {key}", context={"config_key": key})
        self.key = key


# ============================================================
# BROKER
# ============================================================

class BrokerError(CopyTradingException):
    """A brokerage gateway call failed."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        is_retryable: bool = False,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.operation = operation
        self.is_retryable = is_retryable
        if operation:
            self.context["operation"] = operation


class BrokerConnectionError(BrokerError):
    """Network failure or timeout talking to the broker."""

    def __init__(self, message: str, operation: Optional[str] = None, **kwargs):
        super().__init__(message, operation=operation, is_retryable=True, **kwargs)


class BrokerRequestError(BrokerError):
    """
    The broker answered with an error status.

    429 and 5xx are retryable; other 4xx are not.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        operation: Optional[str] = None,
        **kwargs,
    ):
        retryable = status_code is not None and (status_code == 429 or status_code >= 500)
        super().__init__(message, operation=operation, is_retryable=retryable, **kwargs)
        self.status_code = status_code
        if status_code is not None:
            self.context["status_code"] = status_code


class SymbolResolutionError(BrokerError):
    """Ticker has no broker symbol id."""

    def __init__(self, symbol: str):
        super().__init__(
            f"Symbol not found: {symbol}",
            operation="search_symbols",
            context={"symbol": symbol},
        )
        self.symbol = symbol


# ============================================================
# RECORD STORE
# ============================================================

class RecordStoreError(CopyTradingException):
    """A record store read or write failed."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.operation = operation
        if operation:
            self.context["operation"] = operation
        if table:
            self.context["table"] = table


class RecordNotFoundError(RecordStoreError):
    """An update targeted a row that does not exist."""


__all__ = [
    "CopyTradingException",
    "ConfigurationError",
    "MissingConfigError",
    "BrokerError",
    "BrokerConnectionError",
    "BrokerRequestError",
    "SymbolResolutionError",
    "RecordStoreError",
    "RecordNotFoundError",
]
