"""
Enrollment workflow.
Creates and deletes the enrollment records the triggers react to, and reads
back course rosters.
"""

from dataclasses import dataclass, asdict, field
from typing import Dict, List, Optional, Any

from common.constants import (
    COURSES_COLLECTION, ENROLLMENTS_COLLECTION,
    FIELD_STUDENT_ID, FIELD_COURSE_ID, FIELD_STATUS, FIELD_CREATED_AT,
    FIELD_STUDENTS, FIELD_ENROLLED_STUDENTS, FIELD_FACULTY_ID,
    ENROLLMENT_STATUS_ENROLLED, COURSE_STATUS_ACTIVE
)
from common.exceptions import CourseNotFound
from common.logger import get_logger
from store.base import DocumentStore
from store.document import DocumentSnapshot, SERVER_TIMESTAMP
from triggers.course_sync import current_student_count

logger = get_logger(__name__)


@dataclass
class Enrollment:
    """Enrollment record"""
    enrollment_id: str
    student_id: str
    course_id: str
    status: str = ENROLLMENT_STATUS_ENROLLED
    created_at: Optional[Any] = None

    @classmethod
    def from_snapshot(cls, snapshot: DocumentSnapshot) -> 'Enrollment':
        return cls(
            enrollment_id=snapshot.id,
            student_id=snapshot.get(FIELD_STUDENT_ID),
            course_id=snapshot.get(FIELD_COURSE_ID),
            status=snapshot.get(FIELD_STATUS, ENROLLMENT_STATUS_ENROLLED),
            created_at=snapshot.get(FIELD_CREATED_AT)
        )

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class RosterAudit:
    """Comparison of a course's counter with its roster"""
    course_id: str
    students: int
    roster_size: int
    enrollment_records: int
    roster: List[str] = field(default_factory=list)

    @property
    def drift(self) -> int:
        """Counter minus roster size; positive after duplicate deliveries"""
        return self.students - self.roster_size

    @property
    def consistent(self) -> bool:
        return self.students == self.roster_size == self.enrollment_records

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['drift'] = self.drift
        data['consistent'] = self.consistent
        return data


class EnrollmentService:
    """
    Producer side of the enrollment triggers.
    Only enrollment records are written here; course counters and rosters
    are left to the triggers.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def create_course(self, faculty_id: str, course_data: Dict[str, Any],
                      course_id: Optional[str] = None) -> str:
        """
        Create a course with an empty roster.

        Returns:
            The course id
        """
        data = {
            FIELD_FACULTY_ID: faculty_id,
            FIELD_ENROLLED_STUDENTS: [],
            FIELD_STUDENTS: 0,
            FIELD_CREATED_AT: SERVER_TIMESTAMP,
            FIELD_STATUS: COURSE_STATUS_ACTIVE,
            **course_data
        }

        if course_id:
            self.store.set(self.store.document(COURSES_COLLECTION, course_id), data)
        else:
            course_id = self.store.add(COURSES_COLLECTION, data).id

        logger.info(f"Created course {course_id} for faculty {faculty_id}")
        return course_id

    def create_enrollment(self, student_id: str, course_id: str,
                          require_course: bool = False) -> str:
        """
        Add an enrollment record.

        Args:
            student_id: Enrolling student
            course_id: Target course
            require_course: Refuse to enroll into a course that does not exist

        Returns:
            The enrollment id

        Raises:
            CourseNotFound: require_course is set and the course is missing
        """
        if require_course and not self.store.get(self.store.document(COURSES_COLLECTION, course_id)).exists:
            raise CourseNotFound(course_id)

        ref = self.store.add(ENROLLMENTS_COLLECTION, {
            FIELD_STUDENT_ID: student_id,
            FIELD_COURSE_ID: course_id,
            FIELD_STATUS: ENROLLMENT_STATUS_ENROLLED,
            FIELD_CREATED_AT: SERVER_TIMESTAMP
        })

        logger.info(f"Created enrollment {ref.id}: student {student_id} course {course_id}")
        return ref.id

    def find_enrollments(self, student_id: str, course_id: str) -> List[Enrollment]:
        """Enrollment records for a student and course"""
        snapshots = self.store.where(ENROLLMENTS_COLLECTION, FIELD_STUDENT_ID, student_id)
        return [
            Enrollment.from_snapshot(snapshot)
            for snapshot in snapshots
            if snapshot.get(FIELD_COURSE_ID) == course_id
        ]

    def delete_enrollment(self, enrollment_id: str):
        """Delete an enrollment record by id"""
        self.store.delete(self.store.document(ENROLLMENTS_COLLECTION, enrollment_id))
        logger.info(f"Deleted enrollment {enrollment_id}")

    def unenroll(self, student_id: str, course_id: str) -> int:
        """
        Delete every enrollment record linking the student to the course.

        Returns:
            Number of records deleted
        """
        enrollments = self.find_enrollments(student_id, course_id)
        for enrollment in enrollments:
            self.delete_enrollment(enrollment.enrollment_id)

        if not enrollments:
            logger.info(f"Student {student_id} has no enrollment in course {course_id}")
        return len(enrollments)

    def get_course_roster(self, course_id: str) -> List[str]:
        """
        Sorted roster of a course.

        Raises:
            CourseNotFound: course does not exist
        """
        snapshot = self.store.get(self.store.document(COURSES_COLLECTION, course_id))
        if not snapshot.exists:
            raise CourseNotFound(course_id)
        return sorted(snapshot.get(FIELD_ENROLLED_STUDENTS) or [])

    def audit_course(self, course_id: str) -> RosterAudit:
        """
        Compare the maintained counter with the roster and with the
        enrollment records. Reports drift only; nothing is corrected.

        Raises:
            CourseNotFound: course does not exist
        """
        snapshot = self.store.get(self.store.document(COURSES_COLLECTION, course_id))
        if not snapshot.exists:
            raise CourseNotFound(course_id)

        roster = sorted(snapshot.get(FIELD_ENROLLED_STUDENTS) or [])
        records = self.store.where(ENROLLMENTS_COLLECTION, FIELD_COURSE_ID, course_id)

        audit = RosterAudit(
            course_id=course_id,
            students=current_student_count(snapshot.get(FIELD_STUDENTS)),
            roster_size=len(roster),
            enrollment_records=len(records),
            roster=roster
        )

        if not audit.consistent:
            logger.warning(f"Course {course_id} out of sync: students={audit.students} "
                           f"roster={audit.roster_size} records={audit.enrollment_records}")
        return audit
