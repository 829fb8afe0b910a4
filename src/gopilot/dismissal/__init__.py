"""
Dismissal Module

Session lifecycle, check-in resolvers and the queue state machine.
"""

from .exceptions import (
    DismissalError,
    InvalidRequestError,
    InvalidTransitionError,
    NoEligibleStudentsError,
    NotFoundError,
    PermissionDeniedError,
    SessionPausedError,
)
from .states import QueueStatus, Transition

__all__ = [
    "DismissalError",
    "InvalidRequestError",
    "InvalidTransitionError",
    "NoEligibleStudentsError",
    "NotFoundError",
    "PermissionDeniedError",
    "SessionPausedError",
    "QueueStatus",
    "Transition",
]
