"""
Abstract document store contract consumed by the triggers and the
enrollment workflow.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, TypeVar

from .document import DocumentRef, DocumentSnapshot, DocumentChange

T = TypeVar('T')


class Transaction(ABC):
    """
    Read-then-write unit of work.
    Reads must precede writes; writes become visible atomically on commit.
    """
    
    @abstractmethod
    def get(self, ref: DocumentRef) -> DocumentSnapshot:
        """Read a document inside the transaction"""
        pass
    
    @abstractmethod
    def update(self, ref: DocumentRef, fields: Dict[str, Any]):
        """Stage a field update of an existing document"""
        pass


class DocumentStore(ABC):
    """
    Document database with serializable single-document transactions.
    """
    
    def document(self, collection: str, doc_id: str) -> DocumentRef:
        return DocumentRef(collection, doc_id)
    
    @abstractmethod
    def get(self, ref: DocumentRef) -> DocumentSnapshot:
        pass
    
    @abstractmethod
    def set(self, ref: DocumentRef, data: Dict[str, Any]):
        """Create or overwrite a document"""
        pass
    
    @abstractmethod
    def add(self, collection: str, data: Dict[str, Any]) -> DocumentRef:
        """Create a document with a store-assigned id"""
        pass
    
    @abstractmethod
    def delete(self, ref: DocumentRef):
        """Delete a document; deleting a missing document is a no-op"""
        pass
    
    @abstractmethod
    def where(self, collection: str, field_name: str, value: Any) -> List[DocumentSnapshot]:
        """Documents of a collection whose field equals value"""
        pass
    
    @abstractmethod
    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        """
        Run fn inside a transaction, re-running it from scratch when a
        conflicting concurrent commit is detected.
        
        Raises:
            TransactionFailure: retries exhausted or store unavailable
        """
        pass
    
    @abstractmethod
    def watch(self, collection: str,
              callback: Callable[[DocumentChange], None]) -> Callable[[], None]:
        """
        Subscribe to changes made to a collection from now on.
        
        Returns:
            Callable that cancels the subscription
        """
        pass
