"""
Queue state machine application.

Single authority for status changes on queue entries. Every transition is a
guarded UPDATE (`WHERE id = :id AND status IN (:sources)`) so two actors
acting on the same entry converge: one update wins, the other re-reads the
entry and finds either a no-op (already released) or an invalid transition
(already dismissed). Nothing is written when validation fails.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from gopilot.config import settings
from gopilot.core.auth import Actor
from gopilot.core.models import (
    DismissalSession,
    ParentStudent,
    PickupZone,
    QueueEntry,
    Student,
)
from gopilot.core.models.base import utcnow

from .activity import record_activity
from .exceptions import (
    InvalidRequestError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
)
from .sessions import ensure_accepting, get_session
from .states import PAUSE_BLOCKED, TRANSITIONS, QueueStatus, Transition, Verdict, evaluate

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    entry: QueueEntry
    changed: bool


@dataclass
class BatchResult:
    """Per-id outcome of a batch transition.

    Ineligible or unknown ids are skipped, not errors.
    """

    transition: Transition
    requested: list[UUID]
    changed: list[QueueEntry] = field(default_factory=list)
    skipped: list[UUID] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return len(self.changed)


# ============================================================================
# Lookups
# ============================================================================


async def linked_student_ids(db: AsyncSession, parent_id: UUID) -> set[UUID]:
    """Students an approved parent link exists for."""
    result = await db.execute(
        select(ParentStudent.student_id).where(
            ParentStudent.parent_id == parent_id, ParentStudent.status == "approved"
        )
    )
    return set(result.scalars().all())


async def get_entry(db: AsyncSession, actor: Actor, entry_id: UUID) -> QueueEntry:
    """Load an entry of the actor's school with its student and session."""
    result = await db.execute(
        select(QueueEntry)
        .where(QueueEntry.id == entry_id)
        .options(selectinload(QueueEntry.student), selectinload(QueueEntry.session))
    )
    entry = result.scalar_one_or_none()
    if not entry or entry.session.school_id != actor.school_id:
        raise NotFoundError(f"Queue entry not found with ID: {entry_id}")
    return entry


async def _validate_zone(db: AsyncSession, school_id: UUID, zone: str | None) -> str | None:
    if zone is None:
        return None
    name = zone.strip()
    if not name:
        return None
    result = await db.execute(
        select(PickupZone).where(
            PickupZone.school_id == school_id,
            PickupZone.name == name,
            PickupZone.is_active.is_(True),
        )
    )
    if result.scalar_one_or_none() is None:
        raise NotFoundError(f"Pickup zone not found: {name}")
    return name


# ============================================================================
# Authorization
# ============================================================================


async def _authorize(
    db: AsyncSession, actor: Actor, transition: Transition, entry: QueueEntry
) -> None:
    if actor.is_office:
        return

    if transition == Transition.RELEASE and actor.is_teacher:
        if actor.homeroom_id is None or entry.student.homeroom_id != actor.homeroom_id:
            raise PermissionDeniedError("Teachers can only release students in their homeroom")
        return

    if transition == Transition.DISMISS and actor.is_parent:
        if actor.user_id and entry.student_id in await linked_student_ids(db, actor.user_id):
            return
        raise PermissionDeniedError("Parents can only confirm pickup for their own children")

    raise PermissionDeniedError(f"Role '{actor.role}' cannot {transition.value} queue entries")


# ============================================================================
# Transitions
# ============================================================================


def _update_values(
    transition: Transition, *, zone: str | None, reason: str | None
) -> dict[str, Any]:
    rule = TRANSITIONS[transition]
    now = utcnow()
    values: dict[str, Any] = {"status": rule.target.value, "updated_at": now}
    if rule.timestamp_field:
        values[rule.timestamp_field] = now
    if transition == Transition.CALL:
        values["zone"] = zone
    elif transition == Transition.HOLD:
        values["hold_reason"] = reason
    elif transition == Transition.CLEAR_HOLD:
        values["hold_reason"] = None
    return values


async def _guarded_update(
    db: AsyncSession, entry_id: UUID, transition: Transition, values: dict[str, Any]
) -> bool:
    sources = [s.value for s in TRANSITIONS[transition].sources]
    result = await db.execute(
        update(QueueEntry)
        .where(QueueEntry.id == entry_id, QueueEntry.status.in_(sources))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def transition_entry(
    db: AsyncSession,
    actor: Actor,
    entry_id: UUID,
    transition: Transition,
    *,
    zone: str | None = None,
    reason: str | None = None,
    session_id: UUID | None = None,
) -> TransitionResult:
    """Apply one transition to one entry.

    Returns:
        The entry and whether its status changed (False for idempotent repeats)

    Raises:
        NotFoundError: Entry, or zone, does not exist
        InvalidTransitionError: Entry is not in a valid source state
        InvalidRequestError: Hold without a reason
        PermissionDeniedError: Actor may not perform this transition
        SessionPausedError: Calls while the session is paused
    """
    if transition == Transition.HOLD and not (reason and reason.strip()):
        raise InvalidRequestError("A hold reason is required")

    entry = await get_entry(db, actor, entry_id)
    if session_id is not None and entry.session_id != session_id:
        raise NotFoundError(f"Queue entry {entry_id} is not in session {session_id}")
    await _authorize(db, actor, transition, entry)
    if transition in PAUSE_BLOCKED:
        ensure_accepting(entry.session)
    zone = await _validate_zone(db, actor.school_id, zone)

    verdict = evaluate(entry.status, transition)
    if verdict == Verdict.NOOP:
        return TransitionResult(entry=entry, changed=False)
    if verdict == Verdict.REJECT:
        logger.warning(f"Rejected {transition.value} on entry {entry.id} (status {entry.status})")
        raise InvalidTransitionError(entry.id, entry.status, transition.value)

    values = _update_values(transition, zone=zone, reason=reason and reason.strip())
    if not await _guarded_update(db, entry.id, transition, values):
        # Someone else moved the entry between our read and our update
        await db.rollback()
        entry = await get_entry(db, actor, entry_id)
        await db.refresh(entry)
        if evaluate(entry.status, transition) == Verdict.NOOP:
            return TransitionResult(entry=entry, changed=False)
        logger.warning(f"Lost race on {transition.value} for entry {entry.id} ({entry.status})")
        raise InvalidTransitionError(entry.id, entry.status, transition.value)

    record_activity(
        db,
        actor,
        transition.value,
        session_id=entry.session_id,
        entity_type="queue",
        entity_id=entry.id,
        details={"student_id": str(entry.student_id), "zone": zone, "reason": reason},
    )
    await db.commit()
    await db.refresh(entry)
    return TransitionResult(entry=entry, changed=True)


async def call_entry(
    db: AsyncSession,
    actor: Actor,
    entry_id: UUID,
    zone: str | None = None,
    *,
    session_id: UUID | None = None,
) -> TransitionResult:
    return await transition_entry(
        db, actor, entry_id, Transition.CALL, zone=zone, session_id=session_id
    )


async def release_entry(db: AsyncSession, actor: Actor, entry_id: UUID) -> TransitionResult:
    return await transition_entry(db, actor, entry_id, Transition.RELEASE)


async def dismiss_entry(db: AsyncSession, actor: Actor, entry_id: UUID) -> TransitionResult:
    return await transition_entry(db, actor, entry_id, Transition.DISMISS)


async def hold_entry(
    db: AsyncSession, actor: Actor, entry_id: UUID, reason: str
) -> TransitionResult:
    return await transition_entry(db, actor, entry_id, Transition.HOLD, reason=reason)


async def clear_hold(db: AsyncSession, actor: Actor, entry_id: UUID) -> TransitionResult:
    return await transition_entry(db, actor, entry_id, Transition.CLEAR_HOLD)


# ============================================================================
# Batches
# ============================================================================


async def _apply_batch(
    db: AsyncSession,
    actor: Actor,
    entries: Iterable[QueueEntry],
    requested: Sequence[UUID],
    transition: Transition,
    *,
    zone: str | None = None,
    session_id: UUID | None = None,
) -> BatchResult:
    batch = BatchResult(transition=transition, requested=list(requested))
    by_id = {e.id: e for e in entries}

    for entry_id in batch.requested:
        entry = by_id.get(entry_id)
        if entry is None or evaluate(entry.status, transition) != Verdict.APPLY:
            batch.skipped.append(entry_id)
            continue
        values = _update_values(transition, zone=zone, reason=None)
        if await _guarded_update(db, entry.id, transition, values):
            batch.changed.append(entry)
        else:
            batch.skipped.append(entry_id)

    if batch.changed:
        record_activity(
            db,
            actor,
            f"batch_{transition.value}",
            session_id=session_id or batch.changed[0].session_id,
            entity_type="queue",
            details={
                "entry_ids": [str(e.id) for e in batch.changed],
                "skipped": [str(i) for i in batch.skipped],
                "zone": zone,
            },
        )
        await db.commit()
        for entry in batch.changed:
            await db.refresh(entry)

    if batch.skipped:
        logger.info(
            f"Batch {transition.value}: {batch.succeeded} of {len(batch.requested)} changed, "
            f"{len(batch.skipped)} skipped"
        )
    return batch


async def batch_transition(
    db: AsyncSession, actor: Actor, entry_ids: Sequence[UUID], transition: Transition
) -> BatchResult:
    """Apply a release or dismiss to each id independently (office only)."""
    if not actor.is_office:
        raise PermissionDeniedError("Only office staff can run batch transitions")
    if transition not in (Transition.RELEASE, Transition.DISMISS):
        raise InvalidRequestError(f"Batch {transition.value} is not supported")

    # Preserve request order, drop duplicates
    requested = list(dict.fromkeys(entry_ids))
    result = await db.execute(
        select(QueueEntry)
        .join(DismissalSession, QueueEntry.session_id == DismissalSession.id)
        .where(QueueEntry.id.in_(requested), DismissalSession.school_id == actor.school_id)
        .options(selectinload(QueueEntry.student))
    )
    return await _apply_batch(db, actor, result.scalars().all(), requested, transition)


async def call_next_batch(
    db: AsyncSession,
    actor: Actor,
    session_id: UUID,
    count: int | None = None,
    zone: str | None = None,
) -> BatchResult:
    """Call the next N waiting entries in check-in order."""
    if not actor.is_office:
        raise PermissionDeniedError("Only office staff can call students")

    session = await get_session(db, session_id, actor.school_id)
    ensure_accepting(session)
    zone = await _validate_zone(db, actor.school_id, zone)

    limit = count or settings.CALL_BATCH_DEFAULT_SIZE
    result = await db.execute(
        select(QueueEntry)
        .where(QueueEntry.session_id == session.id, QueueEntry.status == QueueStatus.WAITING)
        .order_by(QueueEntry.position, QueueEntry.check_in_at)
        .limit(limit)
        .options(selectinload(QueueEntry.student))
    )
    entries = list(result.scalars().all())
    return await _apply_batch(
        db,
        actor,
        entries,
        [e.id for e in entries],
        Transition.CALL,
        zone=zone,
        session_id=session.id,
    )


async def dismiss_filtered(
    db: AsyncSession,
    actor: Actor,
    session_id: UUID,
    *,
    homeroom_id: UUID | None = None,
    statuses: Sequence[str] | None = None,
) -> BatchResult:
    """Dismiss every entry of the session matching the filter (office only)."""
    if not actor.is_office:
        raise PermissionDeniedError("Only office staff can run batch transitions")

    session = await get_session(db, session_id, actor.school_id)
    stmt = (
        select(QueueEntry)
        .join(Student, QueueEntry.student_id == Student.id)
        .where(QueueEntry.session_id == session.id)
        .options(selectinload(QueueEntry.student))
        .order_by(QueueEntry.position)
    )
    if homeroom_id is not None:
        stmt = stmt.where(Student.homeroom_id == homeroom_id)
    if statuses:
        stmt = stmt.where(QueueEntry.status.in_(list(statuses)))

    result = await db.execute(stmt)
    entries = [
        e
        for e in result.scalars().all()
        if evaluate(e.status, Transition.DISMISS) == Verdict.APPLY
    ]
    return await _apply_batch(
        db, actor, entries, [e.id for e in entries], Transition.DISMISS, session_id=session.id
    )


# ============================================================================
# Reads
# ============================================================================


async def list_queue(
    db: AsyncSession,
    actor: Actor,
    session_id: UUID,
    *,
    status: str | None = None,
    homeroom_id: UUID | None = None,
) -> list[QueueEntry]:
    """Canonical queue snapshot for the actor's scope.

    Parents only ever see their linked children. Teachers only see their own
    homeroom.
    """
    session = await get_session(db, session_id, actor.school_id)

    stmt = (
        select(QueueEntry)
        .join(Student, QueueEntry.student_id == Student.id)
        .where(QueueEntry.session_id == session.id)
        .options(selectinload(QueueEntry.student).selectinload(Student.homeroom))
        .order_by(QueueEntry.position, QueueEntry.check_in_at)
    )
    if status:
        stmt = stmt.where(QueueEntry.status == status)

    if actor.is_parent:
        children = await linked_student_ids(db, actor.user_id) if actor.user_id else set()
        stmt = stmt.where(QueueEntry.student_id.in_(children))
    elif actor.is_teacher:
        if actor.homeroom_id is None:
            raise PermissionDeniedError("Teachers must send their homeroom to view the queue")
        if homeroom_id not in (None, actor.homeroom_id):
            raise PermissionDeniedError("Teachers can only view their own homeroom")
        homeroom_id = actor.homeroom_id

    if homeroom_id is not None:
        stmt = stmt.where(Student.homeroom_id == homeroom_id)

    result = await db.execute(stmt)
    return list(result.scalars().all())


async def session_stats(db: AsyncSession, actor: Actor, session_id: UUID) -> dict[str, Any]:
    """Counts per status, total and average check-in-to-dismissal wait."""
    session = await get_session(db, session_id, actor.school_id)

    counts: dict[str, int] = {s.value: 0 for s in QueueStatus}
    result = await db.execute(
        select(QueueEntry.status, func.count())
        .where(QueueEntry.session_id == session.id)
        .group_by(QueueEntry.status)
    )
    for status, count in result.all():
        counts[status] = int(count)

    waits = await db.execute(
        select(QueueEntry.check_in_at, QueueEntry.dismissed_at).where(
            QueueEntry.session_id == session.id, QueueEntry.dismissed_at.is_not(None)
        )
    )
    durations = [(dismissed - checked_in).total_seconds() for checked_in, dismissed in waits.all()]

    return {
        **counts,
        "total": sum(counts.values()),
        "avg_wait_seconds": round(sum(durations) / len(durations), 1) if durations else None,
    }
