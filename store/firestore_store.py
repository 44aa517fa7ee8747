"""
Firestore backend for the document store contract.
Translates the store-neutral sentinels into Firestore field transforms and
runs transactions through firestore.transactional.
"""

from typing import Any, Callable, Dict, List, Optional, TypeVar

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter

from common.constants import CHANGE_ADDED, CHANGE_MODIFIED, CHANGE_REMOVED, DEFAULT_MAX_ATTEMPTS
from common.exceptions import DocumentNotFound, TransactionFailure
from common.logger import get_logger

from .base import DocumentStore, Transaction
from .document import (
    DocumentRef, DocumentSnapshot, DocumentChange,
    ArrayUnion, ArrayRemove, SERVER_TIMESTAMP
)

logger = get_logger(__name__)

T = TypeVar('T')

_CHANGE_TYPES = {
    'ADDED': CHANGE_ADDED,
    'MODIFIED': CHANGE_MODIFIED,
    'REMOVED': CHANGE_REMOVED
}


def init_firestore_client(project_id: Optional[str] = None,
                          credentials_file: Optional[str] = None):
    """
    Initialize the default Firebase app once and return a Firestore client.
    Falls back to application default credentials when no file is given.
    """
    if not firebase_admin._apps:
        cred = (credentials.Certificate(credentials_file) if credentials_file
                else credentials.ApplicationDefault())
        options = {'projectId': project_id} if project_id else None
        firebase_admin.initialize_app(cred, options)
        logger.info(f"Initialized Firebase app (project={project_id or 'default'})")
    return firestore.client()


def encode_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Replace store-neutral sentinels with their Firestore equivalents"""
    encoded = {}
    for name, value in fields.items():
        if isinstance(value, ArrayUnion):
            encoded[name] = firestore.ArrayUnion(list(value.values))
        elif isinstance(value, ArrayRemove):
            encoded[name] = firestore.ArrayRemove(list(value.values))
        elif value is SERVER_TIMESTAMP:
            encoded[name] = firestore.SERVER_TIMESTAMP
        else:
            encoded[name] = value
    return encoded


def _to_snapshot(ref: DocumentRef, doc) -> DocumentSnapshot:
    if not doc.exists:
        return DocumentSnapshot(ref, False)
    return DocumentSnapshot(ref, True, doc.to_dict() or {})


class FirestoreTransaction(Transaction):
    """Wraps a google.cloud.firestore Transaction"""

    def __init__(self, store: 'FirestoreDocumentStore', transaction):
        self._store = store
        self._transaction = transaction

    def get(self, ref: DocumentRef) -> DocumentSnapshot:
        doc = self._store._doc(ref).get(transaction=self._transaction)
        return _to_snapshot(ref, doc)

    def update(self, ref: DocumentRef, fields: Dict[str, Any]):
        self._transaction.update(self._store._doc(ref), encode_fields(fields))


class FirestoreDocumentStore(DocumentStore):
    """
    Document store backed by Cloud Firestore.

    Args:
        client: A google.cloud.firestore Client (e.g. from init_firestore_client)
        max_attempts: Attempts per transaction before TransactionFailure
    """

    def __init__(self, client, max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        self.client = client
        self.max_attempts = max_attempts

    @classmethod
    def from_config(cls, config: Dict) -> 'FirestoreDocumentStore':
        firestore_config = config.get('firestore', {})
        client = init_firestore_client(
            project_id=firestore_config.get('project_id'),
            credentials_file=firestore_config.get('credentials_file')
        )
        return cls(client, max_attempts=config['store']['max_attempts'])

    def _doc(self, ref: DocumentRef):
        return self.client.collection(ref.collection).document(ref.id)

    def get(self, ref: DocumentRef) -> DocumentSnapshot:
        return _to_snapshot(ref, self._doc(ref).get())

    def set(self, ref: DocumentRef, data: Dict[str, Any]):
        self._doc(ref).set(encode_fields(data))

    def add(self, collection: str, data: Dict[str, Any]) -> DocumentRef:
        _, doc_ref = self.client.collection(collection).add(encode_fields(data))
        return DocumentRef(collection, doc_ref.id)

    def delete(self, ref: DocumentRef):
        self._doc(ref).delete()

    def where(self, collection: str, field_name: str, value: Any) -> List[DocumentSnapshot]:
        query = self.client.collection(collection).where(filter=FieldFilter(field_name, '==', value))
        return [_to_snapshot(DocumentRef(collection, doc.id), doc) for doc in query.stream()]

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        transaction = self.client.transaction(max_attempts=self.max_attempts)
        raised_by_fn = []

        @firestore.transactional
        def _run(txn):
            try:
                return fn(FirestoreTransaction(self, txn))
            except ValueError as e:
                raised_by_fn.append(e)
                raise

        try:
            return _run(transaction)
        except google_exceptions.NotFound as e:
            raise DocumentNotFound(str(e)) from e
        except google_exceptions.GoogleAPICallError as e:
            raise TransactionFailure(f"Firestore transaction failed: {e}",
                                     attempts=self.max_attempts) from e
        except ValueError as e:
            if any(e is error for error in raised_by_fn):
                raise
            # Any other ValueError comes from the commit loop giving up after max_attempts
            raise TransactionFailure(f"Firestore transaction failed: {e}",
                                     attempts=self.max_attempts) from e

    def watch(self, collection: str,
              callback: Callable[[DocumentChange], None]) -> Callable[[], None]:
        """
        Listen to a collection. The first listener invocation carries the
        documents already present and is skipped, so only changes made after
        subscribing are delivered.
        """
        state = {'initial': True}

        def on_snapshot(col_snapshot, changes, read_time):
            if state['initial']:
                state['initial'] = False
                logger.info(f"Watching {collection}: skipped {len(changes)} existing documents")
                return
            for change in changes:
                doc = change.document
                change_type = _CHANGE_TYPES.get(change.type.name)
                if change_type is None:
                    continue
                ref = DocumentRef(collection, doc.id)
                callback(DocumentChange(change_type, DocumentSnapshot(ref, True, doc.to_dict() or {})))

        watch = self.client.collection(collection).on_snapshot(on_snapshot)
        return watch.unsubscribe
