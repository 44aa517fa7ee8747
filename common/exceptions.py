"""
Error taxonomy for the enrollment triggers and the enrollment workflow.
"""


class EnrollmentSyncError(Exception):
    """Base class for all errors raised by this package"""


class ConfigurationError(EnrollmentSyncError):
    """Configuration file is missing or malformed"""


class CourseNotFound(EnrollmentSyncError):
    """Referenced course record does not exist"""

    def __init__(self, course_id: str):
        super().__init__(f"Course not found: {course_id}")
        self.course_id = course_id


class DocumentNotFound(EnrollmentSyncError):
    """Update targeted a document that does not exist"""

    def __init__(self, path: str):
        super().__init__(f"Document not found: {path}")
        self.path = path


class TransactionConflict(EnrollmentSyncError):
    """
    A document read by a transaction was modified by another transaction
    before commit. Recovered by retrying the transaction.
    """

    def __init__(self, path: str, expected_version: int, actual_version: int):
        super().__init__(
            f"Conflicting write on {path}: read version {expected_version}, "
            f"found version {actual_version}"
        )
        self.path = path
        self.expected_version = expected_version
        self.actual_version = actual_version


class TransactionFailure(EnrollmentSyncError):
    """Transaction retries exhausted or the store is unavailable"""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class InvalidEnrollmentEvent(EnrollmentSyncError, ValueError):
    """Enrollment payload lacks a usable studentId or courseId"""
