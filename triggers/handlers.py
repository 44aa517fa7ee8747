"""
Handlers for enrollment record creation and deletion.
Each call is a single-shot reaction to one event; the store is injected.
"""

from common.logger import get_logger
from store.base import DocumentStore

from .course_sync import CourseUpdate, apply_enrollment_change
from .events import EnrollmentEvent

logger = get_logger(__name__)


def on_enrollment_created(event: EnrollmentEvent, store: DocumentStore) -> CourseUpdate:
    """Increment the course counter and add the student to the roster"""
    result = apply_enrollment_change(store, event.course_id, event.student_id, +1)
    _log_result("created", event, result)
    return result


def on_enrollment_deleted(event: EnrollmentEvent, store: DocumentStore) -> CourseUpdate:
    """Decrement the course counter (floored at zero) and remove the student from the roster"""
    result = apply_enrollment_change(store, event.course_id, event.student_id, -1)
    _log_result("deleted", event, result)
    return result


def _log_result(action: str, event: EnrollmentEvent, result: CourseUpdate):
    if result is CourseUpdate.SKIPPED:
        logger.info(f"Enrollment {action} for missing course {event.course_id}; nothing to update")
    else:
        logger.info(f"Enrollment {action}: student {event.student_id} course {event.course_id}")
