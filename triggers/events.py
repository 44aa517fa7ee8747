"""
Typed payload delivered to the enrollment handlers.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from common.constants import FIELD_STUDENT_ID, FIELD_COURSE_ID
from common.exceptions import InvalidEnrollmentEvent
from store.document import DocumentSnapshot


@dataclass(frozen=True)
class EnrollmentEvent:
    """One student's enrollment in one course"""
    student_id: str
    course_id: str
    enrollment_id: Optional[str] = None

    def __post_init__(self):
        for name in ('student_id', 'course_id'):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise InvalidEnrollmentEvent(
                    f"Enrollment {self.enrollment_id or '<unknown>'} has no usable {name}: {value!r}"
                )

    @classmethod
    def from_dict(cls, data: Dict[str, Any], enrollment_id: Optional[str] = None) -> 'EnrollmentEvent':
        return cls(
            student_id=data.get(FIELD_STUDENT_ID),
            course_id=data.get(FIELD_COURSE_ID),
            enrollment_id=enrollment_id
        )

    @classmethod
    def from_snapshot(cls, snapshot: DocumentSnapshot) -> 'EnrollmentEvent':
        return cls.from_dict(snapshot.data, enrollment_id=snapshot.id)
