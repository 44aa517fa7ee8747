"""
Main entry point for running the enrollment triggers.
Watches the enrollments collection and keeps course counters and rosters
in sync, or audits courses for drift.
"""

import argparse
import json
import signal
import sys
import threading
from typing import Dict, List, Optional

from common.config import load_config
from common.constants import BACKEND_FIRESTORE
from common.exceptions import ConfigurationError, CourseNotFound
from common.logger import setup_logging, get_logger
from lms.enrollments import EnrollmentService
from store.base import DocumentStore
from store.memory import InMemoryDocumentStore
from triggers.dispatcher import TriggerDispatcher


def build_store(config: Dict) -> DocumentStore:
    """Create the store selected by store.backend"""
    if config['store']['backend'] == BACKEND_FIRESTORE:
        # Imported lazily so the memory backend runs without Firebase credentials
        from store.firestore_store import FirestoreDocumentStore
        return FirestoreDocumentStore.from_config(config)
    return InMemoryDocumentStore.from_config(config)


class TriggerNode:
    """Store, dispatcher and process lifecycle"""

    def __init__(self, config: Dict, store: Optional[DocumentStore] = None):
        """
        Initialize trigger node.

        Args:
            config: Configuration dictionary
            store: Pre-built store; built from config when omitted
        """
        self.config = config
        self.logger = get_logger(__name__)
        self.store = store or build_store(config)
        self.dispatcher = None
        self._shutdown_requested = threading.Event()
        self._stopped = False
        self._stop_lock = threading.Lock()

    def start(self):
        """Wire the handlers and start consuming changes"""
        self.logger.info(f"Starting enrollment triggers (backend={self.config['store']['backend']})")

        self.dispatcher = TriggerDispatcher(self.store, self.config)
        self.dispatcher.register_enrollment_triggers()
        self.dispatcher.attach()

        self.logger.info("Enrollment triggers running. Press Ctrl+C to stop.")

    def wait(self):
        """Block until a shutdown is requested"""
        while not self._shutdown_requested.wait(1.0):
            pass

    def stop(self):
        """Detach and let in-flight invocations finish"""
        with self._stop_lock:
            if self._stopped:
                return
            self._stopped = True

        self._shutdown_requested.set()
        if self.dispatcher:
            self.dispatcher.stop(wait=True)
        self.logger.info("Enrollment triggers stopped")

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals; serve() performs the actual stop"""
        self.logger.info(f"Received signal {signum}")
        self._shutdown_requested.set()


def serve(config: Dict):
    node = TriggerNode(config)
    signal.signal(signal.SIGINT, node._signal_handler)
    signal.signal(signal.SIGTERM, node._signal_handler)

    try:
        node.start()
        node.wait()
    finally:
        node.stop()


def audit(config: Dict, course_ids: List[str]) -> int:
    """Print a drift report per course; returns the number of inconsistent courses"""
    service = EnrollmentService(build_store(config))
    inconsistent = 0

    for course_id in course_ids:
        try:
            report = service.audit_course(course_id)
        except CourseNotFound as e:
            print(f"{course_id}: {e}")
            inconsistent += 1
            continue

        print(json.dumps(report.to_dict(), indent=2, default=str))
        if not report.consistent:
            inconsistent += 1

    return inconsistent


def main(argv: Optional[List[str]] = None):
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description='Keep course student counts and rosters in sync with enrollments'
    )

    parser.add_argument(
        '--config',
        default=None,
        help='Path to configuration file (default: built-in defaults)'
    )

    parser.add_argument(
        '--backend',
        choices=['memory', 'firestore'],
        help='Override store.backend from the configuration'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)
    subparsers.add_parser('serve', help='Watch enrollments and update courses')

    audit_parser = subparsers.add_parser('audit', help='Report counter/roster drift')
    audit_parser.add_argument('course_ids', nargs='+', help='Course ids to audit')

    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"Invalid configuration: {e}")
        sys.exit(2)

    if args.backend:
        config['store']['backend'] = args.backend

    setup_logging(config['logging'])

    if args.command == 'serve':
        serve(config)
    else:
        sys.exit(1 if audit(config, args.course_ids) else 0)


if __name__ == "__main__":
    main()
