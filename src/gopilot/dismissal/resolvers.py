"""
Check-in resolvers.

Each resolver maps an input signal (parent app, car number, bus number,
walker batch) to the eligible students and opens one queue entry per student
in a single transaction. A student that already has an entry in today's session is never
queued twice: the existence check runs before the insert, and the partial
unique index on open entries catches the window between check and insert when
two check-ins race (for example a QR auto-submit and a manual entry).
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from gopilot.core.auth import Actor
from gopilot.core.models import (
    DismissalSession,
    FamilyGroup,
    FamilyGroupStudent,
    Homeroom,
    ParentStudent,
    QueueEntry,
    Student,
)
from gopilot.core.models.base import utcnow

from .activity import record_activity
from .exceptions import (
    InvalidRequestError,
    NoEligibleStudentsError,
    NotFoundError,
    PermissionDeniedError,
)
from .queue import linked_student_ids
from .sessions import ensure_accepting, get_session
from .states import QueueStatus

logger = logging.getLogger(__name__)

CarCheckInMethod = Literal["car_number", "qr", "sms"]
WalkerFilterType = Literal["grade", "homeroom"]


@dataclass
class CheckInResult:
    """Outcome of one check-in request.

    `already_submitted` means every resolved student already had an entry in
    this session, so nothing was created. It is informational, not an error.
    """

    outcome: Literal["created", "already_submitted"]
    session: DismissalSession
    students: list[Student] = field(default_factory=list)
    created: list[QueueEntry] = field(default_factory=list)
    existing: list[QueueEntry] = field(default_factory=list)
    key: str | None = None

    @property
    def already_submitted(self) -> bool:
        return self.outcome == "already_submitted"

    @property
    def student_names(self) -> list[str]:
        return [s.display_name for s in self.students]


def _active(stmt, dismissal_type: str):  # type: ignore[no-untyped-def]
    return stmt.where(Student.status == "active", Student.dismissal_type == dismissal_type)


def _homeroom_ids(values: Sequence[str]) -> list[UUID]:
    try:
        return [UUID(str(v)) for v in values]
    except ValueError as e:
        raise InvalidRequestError(f"Invalid homeroom id in filter: {list(values)}") from e


async def _existing_entries(
    db: AsyncSession, session_id: UUID, student_ids: Sequence[UUID]
) -> dict[UUID, QueueEntry]:
    if not student_ids:
        return {}
    result = await db.execute(
        select(QueueEntry)
        .where(QueueEntry.session_id == session_id, QueueEntry.student_id.in_(student_ids))
        .order_by(QueueEntry.position)
    )
    existing: dict[UUID, QueueEntry] = {}
    for entry in result.scalars().all():
        # Prefer the open entry when a student also has dismissed history
        if entry.student_id not in existing or entry.is_open:
            existing[entry.student_id] = entry
    return existing


async def _next_position(db: AsyncSession, session_id: UUID) -> int:
    result = await db.execute(
        select(func.coalesce(func.max(QueueEntry.position), 0)).where(
            QueueEntry.session_id == session_id
        )
    )
    return int(result.scalar_one())


async def _check_in(
    db: AsyncSession,
    actor: Actor,
    session: DismissalSession,
    students: Sequence[Student],
    *,
    method: str,
    guardian_name: str,
    guardian_id: UUID | None = None,
    initial_status: QueueStatus = QueueStatus.WAITING,
    key: str | None = None,
    report_duplicates: bool = True,
) -> CheckInResult:
    """Open entries for every student that has none yet in this session."""
    students = list(students)
    existing = await _existing_entries(db, session.id, [s.id for s in students])
    pending = [s for s in students if s.id not in existing]

    created: list[QueueEntry] = []
    if pending:
        position = await _next_position(db, session.id)
        now = utcnow()
        for student in pending:
            position += 1
            entry = QueueEntry(
                session_id=session.id,
                student_id=student.id,
                guardian_id=guardian_id,
                guardian_name=guardian_name,
                check_in_method=method,
                position=position,
                status=initial_status.value,
                check_in_at=now,
                released_at=now if initial_status == QueueStatus.RELEASED else None,
            )
            try:
                async with db.begin_nested():
                    db.add(entry)
                    await db.flush()
            except IntegrityError:
                logger.info(
                    f"Student {student.id} was checked in concurrently in session {session.id}"
                )
                continue
            created.append(entry)

    if created:
        record_activity(
            db,
            actor,
            "check_in",
            session_id=session.id,
            entity_type="queue",
            details={
                "method": method,
                "key": key,
                "student_ids": [str(e.student_id) for e in created],
            },
        )
        await db.commit()

    skipped_ids = [s.id for s in students if s.id not in {e.student_id for e in created}]
    if skipped_ids and len(skipped_ids) != len(existing):
        # Lost a race: load the entries the other request created
        existing = await _existing_entries(db, session.id, skipped_ids)

    outcome: Literal["created", "already_submitted"] = "created"
    if not created and students and report_duplicates:
        outcome = "already_submitted"

    logger.info(
        f"Check-in {method} key={key!r} session={session.id}: {outcome}, "
        f"{len(created)} created, {len(skipped_ids)} already queued"
    )
    return CheckInResult(
        outcome=outcome,
        session=session,
        students=students,
        created=created,
        existing=[existing[sid] for sid in skipped_ids if sid in existing],
        key=key,
    )


async def check_in_by_car_number(
    db: AsyncSession,
    actor: Actor,
    session_id: UUID,
    car_number: str,
    *,
    method: CarCheckInMethod = "car_number",
) -> CheckInResult:
    """Queue every car rider that shares the car number.

    Looks up the family group first; without one, falls back to students whose
    stored car number matches. A parent only resolves their own approved
    linked children.

    Raises:
        NotFoundError: Unknown session or car number
        NoEligibleStudentsError: The family group has no active car riders
        PermissionDeniedError: A parent resolved none of their own children
        SessionPausedError: Session is paused
    """
    session = await get_session(db, session_id, actor.school_id)
    ensure_accepting(session)

    number = car_number.strip()
    result = await db.execute(
        select(FamilyGroup)
        .where(FamilyGroup.school_id == actor.school_id, FamilyGroup.car_number == number)
        .options(selectinload(FamilyGroup.members).selectinload(FamilyGroupStudent.student))
    )
    group = result.scalar_one_or_none()

    if group:
        students = [
            m.student
            for m in group.members
            if m.student.status == "active" and m.student.dismissal_type == "car"
        ]
        if not students:
            raise NoEligibleStudentsError(f"No car-rider students for car number {number}")
        guardian_name = group.family_name or f"Car #{number}"
    else:
        rows = await db.execute(
            _active(select(Student), "car").where(
                Student.school_id == actor.school_id, Student.car_number == number
            )
        )
        students = list(rows.scalars().all())
        if not students:
            raise NotFoundError(f"Car number not found: {number}")
        guardian_name = f"Car #{number}"

    if actor.is_parent:
        # A parent only ever checks in their own children
        linked = await linked_student_ids(db, actor.user_id) if actor.user_id else set()
        students = [s for s in students if s.id in linked]
        if not students:
            raise PermissionDeniedError(f"No children of this parent ride car {number}")

    return await _check_in(
        db,
        actor,
        session,
        sorted(students, key=lambda s: (s.last_name, s.first_name)),
        method=method,
        guardian_name=guardian_name,
        guardian_id=actor.user_id if actor.is_parent else None,
        key=number,
    )


async def check_in_for_parent(
    db: AsyncSession, actor: Actor, session_id: UUID, *, guardian_name: str | None = None
) -> CheckInResult:
    """Parent app check-in: queue the caller's own car-rider children.

    Raises:
        PermissionDeniedError: Caller is not an identified parent
        NotFoundError: Unknown session
        NoEligibleStudentsError: The parent has no approved active car riders
        SessionPausedError: Session is paused
    """
    if not actor.is_parent or actor.user_id is None:
        raise PermissionDeniedError("Only parents can check in from the parent app")

    session = await get_session(db, session_id, actor.school_id)
    ensure_accepting(session)

    rows = await db.execute(
        _active(select(Student), "car")
        .join(ParentStudent, ParentStudent.student_id == Student.id)
        .where(
            Student.school_id == actor.school_id,
            ParentStudent.parent_id == actor.user_id,
            ParentStudent.status == "approved",
        )
        .order_by(Student.last_name, Student.first_name)
    )
    students = list(rows.scalars().all())
    if not students:
        raise NoEligibleStudentsError("No car-rider children found")

    if not guardian_name:
        family = await db.execute(
            select(FamilyGroup.family_name)
            .join(FamilyGroupStudent, FamilyGroupStudent.family_group_id == FamilyGroup.id)
            .where(FamilyGroupStudent.student_id.in_([s.id for s in students]))
            .limit(1)
        )
        guardian_name = family.scalar_one_or_none() or "Parent app"

    return await _check_in(
        db,
        actor,
        session,
        students,
        method="app",
        guardian_name=guardian_name,
        guardian_id=actor.user_id,
    )


async def check_in_by_bus_number(
    db: AsyncSession, actor: Actor, session_id: UUID, bus_number: str
) -> CheckInResult:
    """Queue every active bus rider on the route.

    Raises:
        NotFoundError: Unknown session
        NoEligibleStudentsError: Nobody rides this route
        SessionPausedError: Session is paused
    """
    session = await get_session(db, session_id, actor.school_id)
    ensure_accepting(session)

    number = bus_number.strip()
    rows = await db.execute(
        _active(select(Student), "bus")
        .where(Student.school_id == actor.school_id, Student.bus_route == number)
        .order_by(Student.last_name, Student.first_name)
    )
    students = list(rows.scalars().all())
    if not students:
        raise NoEligibleStudentsError(f"No students on bus route {number}")

    return await _check_in(
        db,
        actor,
        session,
        students,
        method="bus_number",
        guardian_name=f"Bus #{number}",
        key=number,
    )


async def release_walkers(
    db: AsyncSession,
    actor: Actor,
    session_id: UUID,
    *,
    filter_type: WalkerFilterType | None = None,
    filter_values: Sequence[str] = (),
) -> CheckInResult:
    """Release walkers straight out of class.

    Without a filter every active walker is released. With `grade` the values
    are homeroom grades; with `homeroom` they are homeroom ids. Walkers that
    already have an entry this session are skipped. An empty eligible set is
    a successful release of zero students.
    """
    if not actor.is_office:
        raise PermissionDeniedError("Only office staff can release walkers")

    session = await get_session(db, session_id, actor.school_id)
    ensure_accepting(session)

    stmt = _active(select(Student), "walker").where(Student.school_id == actor.school_id)
    if filter_type == "grade":
        stmt = stmt.join(Homeroom, Student.homeroom_id == Homeroom.id).where(
            Homeroom.grade.in_(list(filter_values))
        )
    elif filter_type == "homeroom":
        stmt = stmt.where(Student.homeroom_id.in_(_homeroom_ids(filter_values)))
    elif filter_type is not None:
        raise InvalidRequestError(f"Unknown walker filter type: {filter_type}")

    if filter_type is not None and not filter_values:
        students: list[Student] = []
    else:
        rows = await db.execute(stmt.order_by(Student.last_name, Student.first_name))
        students = list(rows.scalars().all())

    return await _check_in(
        db,
        actor,
        session,
        students,
        method="walker",
        guardian_name="Walkers",
        initial_status=QueueStatus.RELEASED,
        key=filter_type,
        report_duplicates=False,
    )
