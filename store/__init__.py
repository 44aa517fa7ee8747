# store/__init__.py
"""
Document store contract, field-update sentinels and backends.
"""

from .document import (
    DocumentRef, DocumentSnapshot, DocumentChange,
    ArrayUnion, ArrayRemove, SERVER_TIMESTAMP
)
from .base import DocumentStore, Transaction
from .memory import InMemoryDocumentStore
from .storage import SnapshotStorage

__all__ = [
    'DocumentRef',
    'DocumentSnapshot',
    'DocumentChange',
    'ArrayUnion',
    'ArrayRemove',
    'SERVER_TIMESTAMP',
    'DocumentStore',
    'Transaction',
    'InMemoryDocumentStore',
    'SnapshotStorage'
]
