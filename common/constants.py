"""
Collection names, field names and defaults shared across the service.
"""

# Collections
ENROLLMENTS_COLLECTION = "enrollments"
COURSES_COLLECTION = "courses"

# Enrollment fields
FIELD_STUDENT_ID = "studentId"
FIELD_COURSE_ID = "courseId"
FIELD_STATUS = "status"
FIELD_CREATED_AT = "createdAt"

# Course fields maintained by the triggers
FIELD_STUDENTS = "students"
FIELD_ENROLLED_STUDENTS = "enrolledStudents"
FIELD_UPDATED_AT = "updatedAt"

# Course fields written by the enrollment workflow
FIELD_FACULTY_ID = "facultyId"

ENROLLMENT_STATUS_ENROLLED = "enrolled"
COURSE_STATUS_ACTIVE = "active"

# Document change types delivered by a store watch
CHANGE_ADDED = "ADDED"
CHANGE_MODIFIED = "MODIFIED"
CHANGE_REMOVED = "REMOVED"

# Store backends
BACKEND_MEMORY = "memory"
BACKEND_FIRESTORE = "firestore"

# Transactions
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_RETRY_BACKOFF_MS = 10
DEFAULT_RETRY_BACKOFF_MAX_MS = 1000

# Dispatcher
DEFAULT_TRIGGER_WORKERS = 4
DEFAULT_REDELIVERY_ATTEMPTS = 2

DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

DEFAULT_CONFIG = {
    'logging': {
        'level': 'INFO',
        'format': DEFAULT_LOG_FORMAT,
        'file': 'logs/enrollment_triggers.log'
    },
    'store': {
        'backend': BACKEND_MEMORY,
        'max_attempts': DEFAULT_MAX_ATTEMPTS,
        'retry_backoff_ms': DEFAULT_RETRY_BACKOFF_MS,
        'retry_backoff_max_ms': DEFAULT_RETRY_BACKOFF_MAX_MS,
        'data_file': None
    },
    'firestore': {
        'project_id': None,
        'credentials_file': None
    },
    'triggers': {
        'workers': DEFAULT_TRIGGER_WORKERS,
        'redelivery_attempts': DEFAULT_REDELIVERY_ATTEMPTS
    }
}
