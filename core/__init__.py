"""
Core Module Package.

This package contains the core infrastructure components
that all other modules depend on.

Components:
- clock: Unified time abstraction
- exceptions: Custom exception hierarchy
"""

from .clock import ClockProtocol, SystemClock, MockClock
from .exceptions import CopyTradingException
