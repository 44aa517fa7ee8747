# triggers/__init__.py
"""
Enrollment triggers keeping course counters and rosters in sync.
"""

from .events import EnrollmentEvent
from .course_sync import CourseUpdate, apply_enrollment_change
from .handlers import on_enrollment_created, on_enrollment_deleted
from .dispatcher import TriggerDispatcher

__all__ = [
    'EnrollmentEvent',
    'CourseUpdate',
    'apply_enrollment_change',
    'on_enrollment_created',
    'on_enrollment_deleted',
    'TriggerDispatcher'
]
