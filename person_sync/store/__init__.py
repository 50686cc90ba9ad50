"""
Record store abstraction layer.

The orchestrator depends on RecordStore only; SQLiteRecordStore is the
durable implementation used by the client.
"""

from .base import FailedAttempt, Page, RecordStore
from .sqlite import SQLiteRecordStore, SQLiteStoreConfig

__all__ = [
    "RecordStore",
    "Page",
    "FailedAttempt",
    "SQLiteRecordStore",
    "SQLiteStoreConfig",
]
