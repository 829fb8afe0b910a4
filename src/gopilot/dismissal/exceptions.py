"""
Dismissal domain errors.

"Already submitted" check-ins and partially applied batches are reported as
results, not raised.
"""

from __future__ import annotations

from uuid import UUID


class DismissalError(Exception):
    """Base class for dismissal errors surfaced to callers."""

    pass


class NotFoundError(DismissalError):
    """Session, queue entry, car number or zone does not exist."""

    pass


class InvalidTransitionError(DismissalError):
    """Transition is not valid from the entry's current status."""

    def __init__(self, entry_id: UUID, current: str, transition: str):
        self.entry_id = entry_id
        self.current = current
        self.transition = transition
        super().__init__(f"Cannot {transition} queue entry {entry_id} with status '{current}'")


class SessionPausedError(DismissalError):
    """Check-ins and calls are blocked while the session is paused."""

    pass


class NoEligibleStudentsError(DismissalError):
    """A car or bus number resolved to no eligible students."""

    pass


class PermissionDeniedError(DismissalError):
    """Actor's role or scope does not allow the operation."""

    pass


class InvalidRequestError(DismissalError):
    """Input passes schema validation but breaks a business rule."""

    pass
