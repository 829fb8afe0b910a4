"""
Queue change events.

Published after a mutation has committed, one event per affected student.
Receivers treat events as a cue to re-fetch; the payload is never the
authoritative state.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gopilot.core.models import ParentStudent, QueueEntry, Student
from gopilot.realtime.broadcast import (
    Broadcaster,
    office_room,
    parent_room,
    teacher_room,
)

from .states import STATUS_EVENTS, QueueStatus

logger = logging.getLogger(__name__)

QUEUE_UPDATED = "queue:updated"
STUDENT_CHECKED_IN = "student:checked-in"
STUDENT_CALLED = "student:called"
STUDENT_RELEASED = "student:released"
STUDENT_DISMISSED = "student:dismissed"

EVENT_NAMES = (
    QUEUE_UPDATED,
    STUDENT_CHECKED_IN,
    STUDENT_CALLED,
    STUDENT_RELEASED,
    STUDENT_DISMISSED,
)


def event_for_status(status: str) -> str:
    """Specific event name for an entry's new status (generic for held)."""
    return STATUS_EVENTS.get(QueueStatus(status), QUEUE_UPDATED)


def build_payload(event: str, school_id: UUID, entry: QueueEntry) -> dict[str, Any]:
    return {
        "event": event,
        "school_id": str(school_id),
        "session_id": str(entry.session_id),
        "entry_id": str(entry.id),
        "student_id": str(entry.student_id),
        "status": entry.status,
    }


async def publish_queue_events(
    db: AsyncSession,
    broadcaster: Broadcaster,
    school_id: UUID,
    entries: Iterable[QueueEntry],
    *,
    event: str | None = None,
    office_only: bool = False,
) -> int:
    """Fan out events for committed entry changes.

    Office gets the specific event plus ``queue:updated``; the student's
    homeroom teacher and approved linked parents get the specific event.
    With ``office_only`` nothing leaves the office room.

    Args:
        db: Database session, used to look up homerooms and parent links
        broadcaster: Hub to publish on
        school_id: School the entries belong to
        entries: Entries whose state changed
        event: Override the event name (defaults to one derived from status)
        office_only: Skip the teacher and parent rooms (custody holds)

    Returns:
        Total number of messages handed to subscribers
    """
    entries = list(entries)
    if not entries:
        return 0

    student_ids = list({e.student_id for e in entries})
    homerooms = dict(
        (
            await db.execute(
                select(Student.id, Student.homeroom_id).where(Student.id.in_(student_ids))
            )
        ).all()
    )
    parents: dict[UUID, set[UUID]] = defaultdict(set)
    links = await db.execute(
        select(ParentStudent.student_id, ParentStudent.parent_id).where(
            ParentStudent.student_id.in_(student_ids), ParentStudent.status == "approved"
        )
    )
    for student_id, parent_id in links.all():
        parents[student_id].add(parent_id)

    delivered = 0
    for entry in entries:
        name = event or event_for_status(entry.status)
        payload = build_payload(name, school_id, entry)

        if name != QUEUE_UPDATED:
            delivered += await broadcaster.publish(office_room(school_id), payload)
        delivered += await broadcaster.publish(
            office_room(school_id), {**payload, "event": QUEUE_UPDATED}
        )

        if office_only:
            continue

        homeroom_id = homerooms.get(entry.student_id)
        if homeroom_id:
            delivered += await broadcaster.publish(teacher_room(school_id, homeroom_id), payload)

        for parent_id in parents.get(entry.student_id, ()):
            delivered += await broadcaster.publish(parent_room(school_id, parent_id), payload)

    logger.debug(f"Published {len(entries)} queue event(s) for school {school_id}")
    return delivered
