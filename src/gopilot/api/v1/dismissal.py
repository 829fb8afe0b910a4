"""
Dismissal API Endpoints

Session lifecycle, check-ins, queue transitions and read snapshots.
Every mutation commits before its events are published.
"""
# ruff: noqa: B008 - FastAPI Depends in function defaults is standard pattern

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from gopilot.core.auth import Actor, get_actor
from gopilot.core.database import get_db
from gopilot.core.models import DismissalSession, QueueEntry
from gopilot.core.schemas import (
    ActivitySchema,
    BatchRequest,
    BatchResponse,
    BusCheckIn,
    CallBatchRequest,
    CallRequest,
    CarCheckIn,
    CheckInResponse,
    DismissFilterRequest,
    HoldRequest,
    ParentCheckIn,
    QueueEntrySchema,
    QueueStatsSchema,
    SessionSchema,
    SessionStatusUpdate,
    TransitionResponse,
    WalkerFilterRelease,
    WalkerRelease,
)
from gopilot.dismissal import queue, resolvers, sessions
from gopilot.dismissal.activity import list_activity
from gopilot.dismissal.events import QUEUE_UPDATED, publish_queue_events
from gopilot.dismissal.exceptions import PermissionDeniedError
from gopilot.dismissal.queue import BatchResult, TransitionResult
from gopilot.dismissal.resolvers import CheckInResult
from gopilot.dismissal.states import Transition
from gopilot.realtime.broadcast import broadcaster

router = APIRouter()


async def _publish(
    db: AsyncSession,
    actor: Actor,
    entries: Iterable[QueueEntry],
    event: str | None = None,
    *,
    office_only: bool = False,
) -> None:
    await publish_queue_events(
        db, broadcaster, actor.school_id, entries, event=event, office_only=office_only
    )


def _check_in_response(result: CheckInResult) -> CheckInResponse:
    students = {s.id: s for s in result.students}

    def view(entry: QueueEntry) -> QueueEntrySchema:
        return QueueEntrySchema.from_entry(entry, students.get(entry.student_id))

    return CheckInResponse(
        outcome=result.outcome,
        already_submitted=result.already_submitted,
        key=result.key,
        student_names=result.student_names,
        created_count=len(result.created),
        entries=[view(e) for e in result.created],
        existing=[view(e) for e in result.existing],
    )


def _batch_response(result: BatchResult) -> BatchResponse:
    return BatchResponse(
        transition=result.transition.value,
        requested=len(result.requested),
        succeeded=result.succeeded,
        changed_ids=[e.id for e in result.changed],
        skipped_ids=result.skipped,
        entries=[QueueEntrySchema.from_entry(e) for e in result.changed],
    )


async def _transition_response(
    db: AsyncSession,
    actor: Actor,
    result: TransitionResult,
    event: str | None = None,
    *,
    office_only: bool = False,
) -> TransitionResponse:
    if result.changed:
        await _publish(db, actor, [result.entry], event, office_only=office_only)
    return TransitionResponse(
        changed=result.changed, entry=QueueEntrySchema.from_entry(result.entry)
    )


# ============================================================================
# Session Management
# ============================================================================


@router.post("/sessions", response_model=SessionSchema)
async def get_or_create_session(
    actor: Actor = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> DismissalSession:
    """Get today's dismissal session, creating it on first request."""
    return await sessions.get_or_create_session(db, actor.school_id)


@router.get("/sessions/{session_id}", response_model=SessionSchema)
async def get_session(
    session_id: UUID, actor: Actor = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> DismissalSession:
    """Get a dismissal session by ID."""
    return await sessions.get_session(db, session_id, actor.school_id)


@router.put("/sessions/{session_id}", response_model=SessionSchema)
async def update_session_status(
    session_id: UUID,
    update: SessionStatusUpdate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> DismissalSession:
    """Pause or resume dismissal (office only)."""
    return await sessions.set_session_status(db, actor, session_id, update.status)


# ============================================================================
# Queue Snapshot
# ============================================================================


@router.get("/sessions/{session_id}/queue", response_model=list[QueueEntrySchema])
async def get_queue(
    session_id: UUID,
    status: str | None = Query(None, pattern="^(waiting|called|released|dismissed|held)$"),
    homeroom_id: UUID | None = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> list[QueueEntrySchema]:
    """Canonical queue for the caller's scope, in check-in order."""
    entries = await queue.list_queue(
        db, actor, session_id, status=status, homeroom_id=homeroom_id
    )
    return [QueueEntrySchema.from_entry(e) for e in entries]


@router.get("/sessions/{session_id}/stats", response_model=QueueStatsSchema)
async def get_stats(
    session_id: UUID, actor: Actor = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> QueueStatsSchema:
    """Counts per status and average wait."""
    return QueueStatsSchema(**await queue.session_stats(db, actor, session_id))


@router.get("/sessions/{session_id}/activity", response_model=list[ActivitySchema])
async def get_activity(
    session_id: UUID,
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> list[ActivitySchema]:
    """Audit trail for the session, newest first (office only)."""
    if not actor.is_office:
        raise PermissionDeniedError("Only office staff can view the activity log")
    session = await sessions.get_session(db, session_id, actor.school_id)
    return [ActivitySchema.from_row(row) for row in await list_activity(db, session.id, limit)]


# ============================================================================
# Check-In
# ============================================================================


@router.post("/sessions/{session_id}/check-in", response_model=CheckInResponse)
async def check_in_from_parent_app(
    session_id: UUID,
    body: ParentCheckIn | None = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> CheckInResponse:
    """Parent app check-in for the caller's own car-rider children."""
    body = body or ParentCheckIn()
    result = await resolvers.check_in_for_parent(
        db, actor, session_id, guardian_name=body.guardian_name
    )
    await _publish(db, actor, result.created)
    return _check_in_response(result)


@router.post("/sessions/{session_id}/check-in-by-number", response_model=CheckInResponse)
async def check_in_by_car_number(
    session_id: UUID,
    body: CarCheckIn,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> CheckInResponse:
    """Check in every student sharing a car number."""
    result = await resolvers.check_in_by_car_number(
        db, actor, session_id, body.car_number, method=body.method
    )
    await _publish(db, actor, result.created)
    return _check_in_response(result)


@router.post("/sessions/{session_id}/check-in-by-bus", response_model=CheckInResponse)
async def check_in_by_bus_number(
    session_id: UUID,
    body: BusCheckIn,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> CheckInResponse:
    """Check in every rider of a bus route."""
    result = await resolvers.check_in_by_bus_number(db, actor, session_id, body.bus_number)
    await _publish(db, actor, result.created)
    return _check_in_response(result)


@router.post("/sessions/{session_id}/release-walkers", response_model=CheckInResponse)
async def release_walkers(
    session_id: UUID,
    body: WalkerRelease | None = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> CheckInResponse:
    """Release all walkers, or those matching an optional filter."""
    body = body or WalkerRelease()
    result = await resolvers.release_walkers(
        db, actor, session_id, filter_type=body.filter_type, filter_values=body.filter_values
    )
    await _publish(db, actor, result.created)
    return _check_in_response(result)


@router.post("/sessions/{session_id}/release-walkers-by-filter", response_model=CheckInResponse)
async def release_walkers_by_filter(
    session_id: UUID,
    body: WalkerFilterRelease,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> CheckInResponse:
    """Release walkers in the selected grades or homerooms."""
    result = await resolvers.release_walkers(
        db, actor, session_id, filter_type=body.filter_type, filter_values=body.filter_values
    )
    await _publish(db, actor, result.created)
    return _check_in_response(result)


# ============================================================================
# Calls
# ============================================================================


@router.post("/sessions/{session_id}/call", response_model=TransitionResponse)
async def call_student(
    session_id: UUID,
    body: CallRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> TransitionResponse:
    """Call one entry to a pickup zone."""
    result = await queue.call_entry(db, actor, body.queue_id, body.zone, session_id=session_id)
    return await _transition_response(db, actor, result)


@router.post("/sessions/{session_id}/call-batch", response_model=BatchResponse)
async def call_next_batch(
    session_id: UUID,
    body: CallBatchRequest | None = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> BatchResponse:
    """Call the next N waiting entries."""
    body = body or CallBatchRequest()
    result = await queue.call_next_batch(db, actor, session_id, body.count, body.zone)
    await _publish(db, actor, result.changed)
    return _batch_response(result)


@router.post("/sessions/{session_id}/dismiss-filtered", response_model=BatchResponse)
async def dismiss_filtered(
    session_id: UUID,
    body: DismissFilterRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> BatchResponse:
    """Dismiss every open entry matching a homeroom and/or status filter."""
    result = await queue.dismiss_filtered(
        db, actor, session_id, homeroom_id=body.homeroom_id, statuses=body.statuses
    )
    await _publish(db, actor, result.changed)
    return _batch_response(result)


# ============================================================================
# Entry Transitions
# ============================================================================


@router.post("/queue/release-batch", response_model=BatchResponse)
async def release_batch(
    body: BatchRequest, actor: Actor = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> BatchResponse:
    """Release several entries; ineligible ones are skipped."""
    result = await queue.batch_transition(db, actor, body.queue_ids, Transition.RELEASE)
    await _publish(db, actor, result.changed)
    return _batch_response(result)


@router.post("/queue/dismiss-batch", response_model=BatchResponse)
async def dismiss_batch(
    body: BatchRequest, actor: Actor = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> BatchResponse:
    """Dismiss several entries; ineligible ones are skipped."""
    result = await queue.batch_transition(db, actor, body.queue_ids, Transition.DISMISS)
    await _publish(db, actor, result.changed)
    return _batch_response(result)


@router.post("/queue/{entry_id}/release", response_model=TransitionResponse)
async def release_student(
    entry_id: UUID, actor: Actor = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> TransitionResponse:
    """Mark a student released (office hand-off or teacher release from class)."""
    result = await queue.release_entry(db, actor, entry_id)
    return await _transition_response(db, actor, result)


@router.post("/queue/{entry_id}/dismiss", response_model=TransitionResponse)
async def dismiss_student(
    entry_id: UUID, actor: Actor = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> TransitionResponse:
    """Confirm pickup is complete (office, or the child's parent)."""
    result = await queue.dismiss_entry(db, actor, entry_id)
    return await _transition_response(db, actor, result)


@router.post("/queue/{entry_id}/hold", response_model=TransitionResponse)
async def hold_student(
    entry_id: UUID,
    body: HoldRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> TransitionResponse:
    """Place a custody hold on an entry (office only)."""
    result = await queue.hold_entry(db, actor, entry_id, body.reason)
    return await _transition_response(db, actor, result, QUEUE_UPDATED, office_only=True)


@router.post("/queue/{entry_id}/clear-hold", response_model=TransitionResponse)
async def clear_hold(
    entry_id: UUID, actor: Actor = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> TransitionResponse:
    """Return a held entry to waiting (office only)."""
    result = await queue.clear_hold(db, actor, entry_id)
    return await _transition_response(db, actor, result, QUEUE_UPDATED, office_only=True)
