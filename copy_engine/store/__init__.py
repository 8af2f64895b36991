"""
Copy Engine - Record Store Package.

AVAILABLE STORES:
- InMemoryRecordStore: dry runs and tests
- database.repository.SqlRecordStore: SQLAlchemy-backed production store
"""

from .base import RecordStore
from .memory import InMemoryRecordStore


__all__ = ["RecordStore", "InMemoryRecordStore"]
