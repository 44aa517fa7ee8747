# lms/__init__.py

"""
Enrollment workflow producing the records the triggers react to.
"""

from .enrollments import EnrollmentService, Enrollment, RosterAudit

__all__ = [
    'EnrollmentService',
    'Enrollment',
    'RosterAudit'
]
