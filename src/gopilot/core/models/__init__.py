"""
GoPilot SQLAlchemy Models
"""

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from .dismissal import (
    CHECK_IN_METHODS,
    QUEUE_STATUSES,
    SESSION_STATUSES,
    ActivityLog,
    DismissalSession,
    FamilyGroup,
    FamilyGroupStudent,
    PickupZone,
    QueueEntry,
)
from .schools import Homeroom, School
from .students import ParentStudent, Student

__all__ = [
    # Base
    "Base",
    "UUIDPrimaryKeyMixin",
    "TimestampMixin",
    # Schools
    "School",
    "Homeroom",
    # Students
    "Student",
    "ParentStudent",
    # Dismissal
    "DismissalSession",
    "QueueEntry",
    "FamilyGroup",
    "FamilyGroupStudent",
    "PickupZone",
    "ActivityLog",
    "SESSION_STATUSES",
    "QUEUE_STATUSES",
    "CHECK_IN_METHODS",
]
