"""
In-memory document store with optimistic transactions.

Every committed write stamps the document with a new version taken from a
store-wide sequence. A transaction remembers the version of each document it
read and commits only if none of them changed in the meantime; otherwise the
whole transaction function is run again.
"""

import copy
import random
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from common.constants import (
    CHANGE_ADDED, CHANGE_MODIFIED, CHANGE_REMOVED,
    DEFAULT_MAX_ATTEMPTS, DEFAULT_RETRY_BACKOFF_MS, DEFAULT_RETRY_BACKOFF_MAX_MS
)
from common.exceptions import DocumentNotFound, TransactionConflict, TransactionFailure
from common.logger import get_logger
from common.utils import generate_id, utc_now

from .base import DocumentStore, Transaction
from .document import (
    DocumentRef, DocumentSnapshot, DocumentChange,
    apply_field_updates, resolve_sentinels
)
from .storage import SnapshotStorage

logger = get_logger(__name__)

T = TypeVar('T')


@dataclass
class _StoredDocument:
    data: Dict[str, Any]
    version: int


class InMemoryTransaction(Transaction):
    """Transaction against an InMemoryDocumentStore"""

    def __init__(self, store: 'InMemoryDocumentStore'):
        self._store = store
        self.read_versions: Dict[DocumentRef, int] = {}
        self.writes: List[Tuple[DocumentRef, Dict[str, Any]]] = []

    def get(self, ref: DocumentRef) -> DocumentSnapshot:
        if self.writes:
            raise RuntimeError("Transaction reads must be executed before all writes")

        snapshot, version = self._store._read(ref)
        # Keep the first observed version; a later read cannot hide a conflict
        self.read_versions.setdefault(ref, version)
        return snapshot

    def update(self, ref: DocumentRef, fields: Dict[str, Any]):
        self.writes.append((ref, dict(fields)))


class InMemoryDocumentStore(DocumentStore):
    """
    Thread-safe document store used by tests and local runs.

    Args:
        max_attempts: Attempts per transaction before TransactionFailure
        retry_backoff_ms: Base of the jittered exponential backoff between attempts
        retry_backoff_max_ms: Backoff ceiling
        clock: Source of server timestamps
        storage: Optional snapshot storage, loaded on start and saved after each write
    """

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 retry_backoff_ms: float = DEFAULT_RETRY_BACKOFF_MS,
                 retry_backoff_max_ms: float = DEFAULT_RETRY_BACKOFF_MAX_MS,
                 clock: Callable[[], datetime] = utc_now,
                 storage: Optional[SnapshotStorage] = None):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.max_attempts = max_attempts
        self.retry_backoff_ms = retry_backoff_ms
        self.retry_backoff_max_ms = retry_backoff_max_ms
        self.clock = clock
        self.storage = storage
        self.lock = threading.RLock()

        self._collections: Dict[str, Dict[str, _StoredDocument]] = {}
        self._sequence = 0
        self._watchers: Dict[str, List[Callable[[DocumentChange], None]]] = {}

        self.stats = {
            'commits': 0,
            'conflicts': 0,
            'failures': 0
        }

        if storage is not None:
            self._load()

    @classmethod
    def from_config(cls, config: Dict) -> 'InMemoryDocumentStore':
        store_config = config['store']
        data_file = store_config.get('data_file')
        return cls(
            max_attempts=store_config['max_attempts'],
            retry_backoff_ms=store_config['retry_backoff_ms'],
            retry_backoff_max_ms=store_config['retry_backoff_max_ms'],
            storage=SnapshotStorage(data_file) if data_file else None
        )

    # ------------------------------------------------------------------
    # Plain reads and writes
    # ------------------------------------------------------------------

    def get(self, ref: DocumentRef) -> DocumentSnapshot:
        snapshot, _ = self._read(ref)
        return snapshot

    def set(self, ref: DocumentRef, data: Dict[str, Any]):
        with self.lock:
            change = self._write(ref, data)
        self._notify([change])

    def add(self, collection: str, data: Dict[str, Any]) -> DocumentRef:
        with self.lock:
            ref = DocumentRef(collection, generate_id())
            while ref.id in self._collections.get(collection, {}):
                ref = DocumentRef(collection, generate_id())
            change = self._write(ref, data)
        self._notify([change])
        return ref

    def delete(self, ref: DocumentRef):
        with self.lock:
            stored = self._collections.get(ref.collection, {}).pop(ref.id, None)
            if stored is None:
                return
            self._sequence += 1
            self._persist()
            change = DocumentChange(CHANGE_REMOVED, self._snapshot(ref, stored))

        self._notify([change])

    def where(self, collection: str, field_name: str, value: Any) -> List[DocumentSnapshot]:
        with self.lock:
            documents = self._collections.get(collection, {})
            return [
                self._snapshot(DocumentRef(collection, doc_id), stored)
                for doc_id, stored in sorted(documents.items())
                if field_name in stored.data and stored.data[field_name] == value
            ]

    def list_documents(self, collection: str) -> List[DocumentSnapshot]:
        with self.lock:
            documents = self._collections.get(collection, {})
            return [
                self._snapshot(DocumentRef(collection, doc_id), stored)
                for doc_id, stored in sorted(documents.items())
            ]

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        last_conflict = None

        for attempt in range(1, self.max_attempts + 1):
            transaction = InMemoryTransaction(self)
            result = fn(transaction)

            try:
                self._commit(transaction)
                return result
            except TransactionConflict as e:
                last_conflict = e
                with self.lock:
                    self.stats['conflicts'] += 1
                logger.debug(f"Transaction attempt {attempt}/{self.max_attempts} conflicted: {e}")

                if attempt < self.max_attempts:
                    self._backoff(attempt)

        with self.lock:
            self.stats['failures'] += 1
        raise TransactionFailure(
            f"Transaction failed after {self.max_attempts} attempts: {last_conflict}",
            attempts=self.max_attempts
        ) from last_conflict

    def _commit(self, transaction: InMemoryTransaction):
        """
        Validate read versions and apply staged writes atomically.

        Raises:
            TransactionConflict: a document read by the transaction changed
            DocumentNotFound: an update targets a missing document
        """
        with self.lock:
            for ref, version in transaction.read_versions.items():
                current = self._version(ref)
                if current != version:
                    raise TransactionConflict(ref.path, version, current)

            now = self.clock()
            staged: Dict[DocumentRef, Dict[str, Any]] = {}
            for ref, fields in transaction.writes:
                if ref in staged:
                    base = staged[ref]
                else:
                    stored = self._collections.get(ref.collection, {}).get(ref.id)
                    if stored is None:
                        raise DocumentNotFound(ref.path)
                    base = stored.data
                staged[ref] = apply_field_updates(base, fields, now)

            changes = []
            for ref, data in staged.items():
                stored = _StoredDocument(data, self._next_version())
                self._collections[ref.collection][ref.id] = stored
                changes.append(DocumentChange(CHANGE_MODIFIED, self._snapshot(ref, stored)))

            self.stats['commits'] += 1
            if changes:
                self._persist()

        self._notify(changes)

    def _backoff(self, attempt: int):
        if self.retry_backoff_ms <= 0:
            return
        delay_ms = min(self.retry_backoff_ms * (2 ** (attempt - 1)), self.retry_backoff_max_ms)
        time.sleep(random.uniform(0, delay_ms) / 1000.0)

    # ------------------------------------------------------------------
    # Watches
    # ------------------------------------------------------------------

    def watch(self, collection: str,
              callback: Callable[[DocumentChange], None]) -> Callable[[], None]:
        with self.lock:
            self._watchers.setdefault(collection, []).append(callback)

        def unsubscribe():
            with self.lock:
                watchers = self._watchers.get(collection, [])
                if callback in watchers:
                    watchers.remove(callback)

        return unsubscribe

    def _notify(self, changes: List[DocumentChange]):
        for change in changes:
            with self.lock:
                callbacks = list(self._watchers.get(change.document.ref.collection, []))
            for callback in callbacks:
                try:
                    callback(change)
                except Exception as e:
                    logger.error(f"Watch callback failed for {change.type} "
                                 f"{change.document.ref.path}: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _read(self, ref: DocumentRef) -> Tuple[DocumentSnapshot, int]:
        with self.lock:
            stored = self._collections.get(ref.collection, {}).get(ref.id)
            if stored is None:
                return DocumentSnapshot(ref, False), 0
            return self._snapshot(ref, stored), stored.version

    def _write(self, ref: DocumentRef, data: Dict[str, Any]) -> DocumentChange:
        documents = self._collections.setdefault(ref.collection, {})
        existed = ref.id in documents
        stored = _StoredDocument(resolve_sentinels(data, self.clock()), self._next_version())
        documents[ref.id] = stored
        self._persist()
        return DocumentChange(
            CHANGE_MODIFIED if existed else CHANGE_ADDED,
            self._snapshot(ref, stored)
        )

    def _version(self, ref: DocumentRef) -> int:
        stored = self._collections.get(ref.collection, {}).get(ref.id)
        return stored.version if stored is not None else 0

    def _next_version(self) -> int:
        self._sequence += 1
        return self._sequence

    @staticmethod
    def _snapshot(ref: DocumentRef, stored: _StoredDocument) -> DocumentSnapshot:
        return DocumentSnapshot(ref, True, copy.deepcopy(stored.data))

    def export(self) -> Dict[str, Dict[str, Dict]]:
        """All documents as {collection: {doc_id: {'version', 'data'}}}"""
        with self.lock:
            return {
                collection: {
                    doc_id: {'version': stored.version, 'data': copy.deepcopy(stored.data)}
                    for doc_id, stored in documents.items()
                }
                for collection, documents in self._collections.items()
            }

    def _persist(self):
        if self.storage is not None:
            self.storage.save(self.export(), self._sequence)

    def _load(self):
        snapshot = self.storage.load()
        with self.lock:
            self._sequence = snapshot['sequence']
            self._collections = {
                collection: {
                    doc_id: _StoredDocument(entry['data'], entry['version'])
                    for doc_id, entry in documents.items()
                }
                for collection, documents in snapshot['collections'].items()
            }
