"""
Transactional update of a course's student counter and roster.

The counter and the roster are written together in one transaction so that
readers never see one without the other, and so that the zero floor is
applied to the counter value actually being replaced.
"""

from enum import Enum
from typing import Any

from common.constants import (
    COURSES_COLLECTION, FIELD_STUDENTS, FIELD_ENROLLED_STUDENTS, FIELD_UPDATED_AT
)
from store.base import DocumentStore, Transaction
from store.document import ArrayUnion, ArrayRemove, SERVER_TIMESTAMP


class CourseUpdate(Enum):
    """Outcome of one enrollment change"""
    APPLIED = "APPLIED"
    SKIPPED = "SKIPPED"  # course record missing


def current_student_count(value: Any) -> int:
    """Counter as stored, with absent, non-numeric and negative values read as 0"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return max(0, int(value))


def apply_enrollment_change(store: DocumentStore, course_id: str, student_id: str,
                            delta: int) -> CourseUpdate:
    """
    Add (delta=+1) or remove (delta=-1) a student on a course record.
    
    Args:
        store: Transaction-capable document store
        course_id: Course document id
        student_id: Student to add to or remove from the roster
        delta: +1 for an enrollment, -1 for an unenrollment
    
    Returns:
        CourseUpdate.APPLIED, or CourseUpdate.SKIPPED when the course does not exist
    
    Raises:
        TransactionFailure: propagated from the store when retries are exhausted
    """
    if delta not in (1, -1):
        raise ValueError(f"delta must be +1 or -1, got {delta}")
    
    course_ref = store.document(COURSES_COLLECTION, course_id)
    roster_change = ArrayUnion([student_id]) if delta > 0 else ArrayRemove([student_id])
    
    def update_course(transaction: Transaction) -> CourseUpdate:
        snapshot = transaction.get(course_ref)
        if not snapshot.exists:
            return CourseUpdate.SKIPPED
        
        # Counter and roster are maintained independently: a duplicate
        # delivery still moves the counter.
        new_count = max(0, current_student_count(snapshot.get(FIELD_STUDENTS)) + delta)
        
        transaction.update(course_ref, {
            FIELD_STUDENTS: new_count,
            FIELD_ENROLLED_STUDENTS: roster_change,
            FIELD_UPDATED_AT: SERVER_TIMESTAMP
        })
        return CourseUpdate.APPLIED
    
    return store.run_transaction(update_course)
