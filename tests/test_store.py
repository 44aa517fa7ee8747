"""
Tests for the in-memory document store.
Tests field-update sentinels, change feed, optimistic transactions and
snapshot persistence.
"""

import threading
from datetime import datetime, timezone

import pytest

from common.constants import CHANGE_ADDED, CHANGE_MODIFIED, CHANGE_REMOVED
from common.exceptions import DocumentNotFound, TransactionFailure
from store.document import (
    ArrayUnion, ArrayRemove, SERVER_TIMESTAMP, apply_field_updates
)
from store.memory import InMemoryDocumentStore
from store.storage import SnapshotStorage


FIXED_TIME = datetime(2024, 9, 1, 12, 0, tzinfo=timezone.utc)


class TestFieldUpdates:
    """Test cases for sentinel resolution"""

    def test_array_union_adds_missing_values_only(self):
        """Union keeps order and skips values already present"""
        result = apply_field_updates({'tags': ['a', 'b']}, {'tags': ArrayUnion(['b', 'c'])}, FIXED_TIME)
        assert result['tags'] == ['a', 'b', 'c']

    def test_array_union_on_absent_field(self):
        """Union on a missing field creates the array"""
        result = apply_field_updates({}, {'tags': ArrayUnion(['a'])}, FIXED_TIME)
        assert result['tags'] == ['a']

    def test_array_remove_removes_every_instance(self):
        """Remove drops all occurrences; removing a non-member is a no-op"""
        result = apply_field_updates({'tags': ['a', 'b', 'a']}, {'tags': ArrayRemove(['a', 'z'])}, FIXED_TIME)
        assert result['tags'] == ['b']

    def test_array_remove_on_absent_field(self):
        result = apply_field_updates({}, {'tags': ArrayRemove(['a'])}, FIXED_TIME)
        assert result['tags'] == []

    def test_server_timestamp_resolves_to_commit_time(self):
        result = apply_field_updates({'x': 1}, {'updatedAt': SERVER_TIMESTAMP}, FIXED_TIME)
        assert result == {'x': 1, 'updatedAt': FIXED_TIME}

    def test_input_not_mutated(self):
        current = {'tags': ['a']}
        apply_field_updates(current, {'tags': ArrayUnion(['b'])}, FIXED_TIME)
        assert current == {'tags': ['a']}


class TestInMemoryDocumentStore:
    """Test cases for plain reads, writes and watches"""

    @pytest.fixture
    def store(self):
        return InMemoryDocumentStore(retry_backoff_ms=0, clock=lambda: FIXED_TIME)

    def test_get_missing_document(self, store):
        snapshot = store.get(store.document('courses', 'nope'))
        assert not snapshot.exists
        assert snapshot.to_dict() is None

    def test_set_and_get(self, store):
        ref = store.document('courses', 'C1')
        store.set(ref, {'students': 1, 'createdAt': SERVER_TIMESTAMP})

        snapshot = store.get(ref)
        assert snapshot.exists
        assert snapshot.id == 'C1'
        assert snapshot.to_dict() == {'students': 1, 'createdAt': FIXED_TIME}

    def test_snapshots_are_copies(self, store):
        """Mutating a snapshot does not change the stored document"""
        ref = store.document('courses', 'C1')
        store.set(ref, {'enrolledStudents': ['s1']})

        store.get(ref).data['enrolledStudents'].append('s2')

        assert store.get(ref).get('enrolledStudents') == ['s1']

    def test_add_assigns_unique_ids(self, store):
        first = store.add('enrollments', {'studentId': 's1'})
        second = store.add('enrollments', {'studentId': 's1'})
        assert first.id != second.id
        assert len(store.list_documents('enrollments')) == 2

    def test_where_filters_on_equality(self, store):
        store.add('enrollments', {'studentId': 's1', 'courseId': 'C1'})
        store.add('enrollments', {'studentId': 's2', 'courseId': 'C1'})
        store.add('enrollments', {'studentId': 's1', 'courseId': 'C2'})

        results = store.where('enrollments', 'studentId', 's1')
        assert sorted(s.get('courseId') for s in results) == ['C1', 'C2']

    def test_delete_missing_is_noop(self, store):
        store.delete(store.document('courses', 'nope'))

    def test_watch_reports_added_modified_removed(self, store):
        changes = []
        store.watch('enrollments', changes.append)

        ref = store.document('enrollments', 'e1')
        store.set(ref, {'studentId': 's1'})
        store.set(ref, {'studentId': 's2'})
        store.delete(ref)

        assert [c.type for c in changes] == [CHANGE_ADDED, CHANGE_MODIFIED, CHANGE_REMOVED]
        # Removal carries the data of the deleted document
        assert changes[-1].document.get('studentId') == 's2'

    def test_watch_is_scoped_to_collection(self, store):
        changes = []
        store.watch('enrollments', changes.append)
        store.set(store.document('courses', 'C1'), {})
        assert changes == []

    def test_unsubscribe_stops_delivery(self, store):
        changes = []
        unsubscribe = store.watch('enrollments', changes.append)
        unsubscribe()
        store.add('enrollments', {'studentId': 's1'})
        assert changes == []

    def test_failing_watcher_does_not_break_write(self, store):
        def broken(change):
            raise RuntimeError("boom")

        store.watch('enrollments', broken)
        ref = store.add('enrollments', {'studentId': 's1'})
        assert store.get(ref).exists


class TestTransactions:
    """Test cases for optimistic transactions"""

    @pytest.fixture
    def store(self):
        store = InMemoryDocumentStore(max_attempts=3, retry_backoff_ms=0, clock=lambda: FIXED_TIME)
        store.set(store.document('courses', 'C1'), {'students': 0})
        return store

    def test_commit_applies_update(self, store):
        ref = store.document('courses', 'C1')

        def increment(transaction):
            snapshot = transaction.get(ref)
            transaction.update(ref, {'students': snapshot.get('students') + 1})
            return 'done'

        assert store.run_transaction(increment) == 'done'
        assert store.get(ref).get('students') == 1

    def test_conflict_retries_from_scratch(self, store):
        """A concurrent commit between read and commit forces a retry"""
        ref = store.document('courses', 'C1')
        attempts = []

        def increment(transaction):
            snapshot = transaction.get(ref)
            attempts.append(snapshot.get('students'))
            if len(attempts) == 1:
                store.set(ref, {'students': 10})
            transaction.update(ref, {'students': snapshot.get('students') + 1})

        store.run_transaction(increment)

        assert attempts == [0, 10]
        assert store.get(ref).get('students') == 11
        assert store.stats['conflicts'] == 1

    def test_exhausted_retries_raise_failure(self, store):
        ref = store.document('courses', 'C1')
        calls = []

        def always_conflicts(transaction):
            snapshot = transaction.get(ref)
            calls.append(1)
            store.set(ref, {'students': snapshot.get('students') + 100})
            transaction.update(ref, {'students': 0})

        with pytest.raises(TransactionFailure) as exc_info:
            store.run_transaction(always_conflicts)

        assert exc_info.value.attempts == 3
        assert len(calls) == 3
        assert store.stats['failures'] == 1

    def test_read_of_missing_document_conflicts_with_creation(self, store):
        """Creating a document a transaction saw as missing is a conflict"""
        ref = store.document('courses', 'C2')
        seen = []

        def check(transaction):
            snapshot = transaction.get(ref)
            seen.append(snapshot.exists)
            if len(seen) == 1:
                store.set(ref, {'students': 0})

        store.run_transaction(check)
        assert seen == [False, True]

    def test_update_of_missing_document_raises(self, store):
        ref = store.document('courses', 'ghost')

        def blind_update(transaction):
            transaction.update(ref, {'students': 1})

        with pytest.raises(DocumentNotFound):
            store.run_transaction(blind_update)
        assert not store.get(ref).exists

    def test_read_after_write_rejected(self, store):
        ref = store.document('courses', 'C1')

        def bad_order(transaction):
            transaction.update(ref, {'students': 1})
            transaction.get(ref)

        with pytest.raises(RuntimeError):
            store.run_transaction(bad_order)
        assert store.get(ref).get('students') == 0

    def test_exception_in_function_discards_writes(self, store):
        ref = store.document('courses', 'C1')

        def fails(transaction):
            transaction.get(ref)
            transaction.update(ref, {'students': 99})
            raise KeyError('students')

        with pytest.raises(KeyError):
            store.run_transaction(fails)
        assert store.get(ref).get('students') == 0

    def test_different_documents_do_not_conflict(self, store):
        store.set(store.document('courses', 'C2'), {'students': 0})
        barrier = threading.Barrier(2, timeout=5)

        def increment(course_id):
            ref = store.document('courses', course_id)

            def fn(transaction):
                snapshot = transaction.get(ref)
                if not getattr(local, 'waited', False):
                    local.waited = True
                    barrier.wait()
                transaction.update(ref, {'students': snapshot.get('students') + 1})

            store.run_transaction(fn)

        local = threading.local()
        threads = [threading.Thread(target=increment, args=(c,)) for c in ('C1', 'C2')]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.stats['conflicts'] == 0
        assert store.get(store.document('courses', 'C1')).get('students') == 1
        assert store.get(store.document('courses', 'C2')).get('students') == 1


class TestSnapshotStorage:
    """Test cases for persistence"""

    def test_store_reloads_from_snapshot(self, tmp_path):
        path = str(tmp_path / 'data' / 'store.json')
        store = InMemoryDocumentStore(retry_backoff_ms=0, clock=lambda: FIXED_TIME,
                                      storage=SnapshotStorage(path))
        ref = store.document('courses', 'C1')
        store.set(ref, {'students': 2, 'enrolledStudents': ['s1', 's2'], 'updatedAt': SERVER_TIMESTAMP})
        store.add('enrollments', {'studentId': 's1'})

        reloaded = InMemoryDocumentStore(retry_backoff_ms=0, storage=SnapshotStorage(path))

        assert reloaded.export() == store.export()
        assert reloaded.get(ref).get('updatedAt') == FIXED_TIME

    def test_deletes_are_persisted(self, tmp_path):
        path = str(tmp_path / 'store.json')
        store = InMemoryDocumentStore(storage=SnapshotStorage(path))
        ref = store.add('enrollments', {'studentId': 's1'})
        store.delete(ref)

        reloaded = InMemoryDocumentStore(storage=SnapshotStorage(path))
        assert not reloaded.get(ref).exists

    def test_load_without_file(self, tmp_path):
        storage = SnapshotStorage(str(tmp_path / 'missing.json'))
        assert storage.load() == {'sequence': 0, 'collections': {}}

    def test_clear_removes_file(self, tmp_path):
        path = tmp_path / 'store.json'
        storage = SnapshotStorage(str(path))
        storage.save({}, 0)
        assert path.exists()
        storage.clear()
        assert not path.exists()
