"""
Record Store Package.

The persistence contract used by rotation and migration, with in-memory and
SQLAlchemy implementations.
"""

from vaultcore.store.base import (
    RecordStore,
    SampleCheck,
    SampleFailure,
    StoredCiphertext,
    StoredPlaintext,
)
from vaultcore.store.memory import InMemoryRecordStore
from vaultcore.store.sql import SqlRecordStore

__all__ = [
    "InMemoryRecordStore",
    "RecordStore",
    "SampleCheck",
    "SampleFailure",
    "SqlRecordStore",
    "StoredCiphertext",
    "StoredPlaintext",
]
