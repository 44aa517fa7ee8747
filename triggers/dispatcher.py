"""
Event-delivery adapter between a document store's change feed and the
enrollment handlers.

The dispatcher plays the role of the managed trigger platform: it watches
collections, runs every matching handler as an isolated invocation on a
worker pool and owns the redelivery policy for failed invocations.
"""

import threading
from concurrent import futures
from typing import Callable, Dict, List, Optional, Tuple

from common.constants import (
    ENROLLMENTS_COLLECTION, CHANGE_ADDED, CHANGE_REMOVED,
    DEFAULT_TRIGGER_WORKERS, DEFAULT_REDELIVERY_ATTEMPTS
)
from common.exceptions import InvalidEnrollmentEvent, TransactionFailure
from common.logger import get_logger, InvocationLogger
from common.utils import generate_id
from store.base import DocumentStore
from store.document import DocumentChange, DocumentSnapshot

from .course_sync import CourseUpdate
from .events import EnrollmentEvent
from .handlers import on_enrollment_created, on_enrollment_deleted

logger = get_logger(__name__)

EventFactory = Callable[[DocumentSnapshot], object]


class _Registration:
    def __init__(self, handler: Callable, event_factory: EventFactory):
        self.handler = handler
        self.event_factory = event_factory

    @property
    def name(self) -> str:
        return getattr(self.handler, '__name__', repr(self.handler))


class TriggerDispatcher:
    """
    Routes document changes to registered handlers.
    """

    def __init__(self, store: DocumentStore, config: Optional[Dict] = None):
        """
        Initialize dispatcher.

        Args:
            store: Store whose change feed is watched and which is passed to handlers
            config: Configuration dictionary; reads the 'triggers' section
        """
        triggers_config = (config or {}).get('triggers', {})

        self.store = store
        self.workers = triggers_config.get('workers', DEFAULT_TRIGGER_WORKERS)
        self.redelivery_attempts = triggers_config.get('redelivery_attempts', DEFAULT_REDELIVERY_ATTEMPTS)

        self.registrations: Dict[Tuple[str, str], List[_Registration]] = {}
        self.executor = futures.ThreadPoolExecutor(
            max_workers=self.workers,
            thread_name_prefix='trigger'
        )
        self.lock = threading.RLock()
        self._pending = set()
        self._unsubscribers: List[Callable[[], None]] = []

        self.stats = {
            'delivered': 0,
            'applied': 0,
            'skipped': 0,
            'redelivered': 0,
            'failed': 0,
            'dropped': 0
        }

    def register(self, collection: str, change_type: str, handler: Callable,
                 event_factory: EventFactory = EnrollmentEvent.from_snapshot):
        """Register handler(event, store) for a change type on a collection"""
        with self.lock:
            self.registrations.setdefault((collection, change_type), []).append(
                _Registration(handler, event_factory)
            )
        logger.info(f"Registered {getattr(handler, '__name__', handler)} for {change_type} on {collection}")

    def register_enrollment_triggers(self):
        """Wire the enrollment created/deleted handlers"""
        self.register(ENROLLMENTS_COLLECTION, CHANGE_ADDED, on_enrollment_created)
        self.register(ENROLLMENTS_COLLECTION, CHANGE_REMOVED, on_enrollment_deleted)

    def attach(self):
        """Subscribe to every collection that has a registration"""
        with self.lock:
            collections = sorted({collection for collection, _ in self.registrations})
            for collection in collections:
                self._unsubscribers.append(self.store.watch(collection, self.dispatch))
                logger.info(f"Attached to {collection} change feed")

    def dispatch(self, change: DocumentChange):
        """Submit one invocation per handler registered for the change"""
        key = (change.document.ref.collection, change.type)
        with self.lock:
            registrations = list(self.registrations.get(key, []))

        for registration in registrations:
            self._submit(registration, change.document, delivery=1)

    def _submit(self, registration: _Registration, snapshot: DocumentSnapshot, delivery: int):
        try:
            future = self.executor.submit(self._invoke, registration, snapshot, delivery)
        except RuntimeError as e:
            # Pool already shut down
            logger.error(f"Could not deliver {snapshot.ref.path} to {registration.name}: {e}")
            self._count('failed')
            return

        with self.lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)

    def _discard(self, future):
        with self.lock:
            self._pending.discard(future)

    def _invoke(self, registration: _Registration, snapshot: DocumentSnapshot,
                delivery: int) -> Optional[CourseUpdate]:
        log = InvocationLogger(generate_id()[:8], __name__)
        self._count('delivered')

        try:
            event = registration.event_factory(snapshot)
        except InvalidEnrollmentEvent as e:
            log.warning(f"Dropping {snapshot.ref.path}: {e}")
            self._count('dropped')
            return None

        try:
            result = registration.handler(event, self.store)
        except TransactionFailure as e:
            if delivery <= self.redelivery_attempts:
                log.warning(f"{registration.name} failed on {snapshot.ref.path} "
                            f"(delivery {delivery}), redelivering: {e}")
                self._count('redelivered')
                self._submit(registration, snapshot, delivery + 1)
            else:
                log.error(f"{registration.name} failed on {snapshot.ref.path} "
                          f"after {delivery} deliveries: {e}")
                self._count('failed')
            return None
        except Exception as e:
            log.error(f"{registration.name} raised on {snapshot.ref.path}: {e}", exc_info=True)
            self._count('failed')
            return None

        if result is CourseUpdate.SKIPPED:
            self._count('skipped')
        else:
            self._count('applied')
        return result

    def _count(self, key: str):
        with self.lock:
            self.stats[key] += 1

    def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until no invocation (including redeliveries) is in flight.

        Returns:
            True if drained, False on timeout
        """
        while True:
            with self.lock:
                pending = set(self._pending)
            if not pending:
                return True
            _, not_done = futures.wait(pending, timeout=timeout)
            if not_done:
                return False

    def get_stats(self) -> Dict[str, int]:
        with self.lock:
            return dict(self.stats)

    def stop(self, wait: bool = True):
        """Detach from the change feeds and shut the worker pool down"""
        with self.lock:
            unsubscribers = self._unsubscribers
            self._unsubscribers = []

        for unsubscribe in unsubscribers:
            unsubscribe()

        self.executor.shutdown(wait=wait)
        logger.info(f"Dispatcher stopped: {self.get_stats()}")
