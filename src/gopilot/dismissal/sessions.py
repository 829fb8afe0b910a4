"""
Dismissal session lifecycle.

One session per school per school-local calendar day. Creation is
get-or-create against the (school_id, session_date) unique constraint: when
two requests race, the loser's insert fails and it reads the winner's row.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gopilot.config import settings
from gopilot.core.auth import Actor
from gopilot.core.models import DismissalSession, School
from gopilot.core.models.base import utcnow

from .activity import record_activity
from .exceptions import (
    InvalidRequestError,
    NotFoundError,
    PermissionDeniedError,
    SessionPausedError,
)

logger = logging.getLogger(__name__)


def school_today(school: School, now: datetime | None = None) -> date:
    """Calendar day at the school right now."""
    zone_name = school.timezone or settings.DEFAULT_SCHOOL_TIMEZONE
    try:
        tz = ZoneInfo(zone_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"School {school.id} has unknown timezone {zone_name!r}, using default")
        tz = ZoneInfo(settings.DEFAULT_SCHOOL_TIMEZONE)
    return (now or utcnow()).astimezone(tz).date()


async def _find_session(db: AsyncSession, school_id: UUID, day: date) -> DismissalSession | None:
    result = await db.execute(
        select(DismissalSession).where(
            DismissalSession.school_id == school_id, DismissalSession.session_date == day
        )
    )
    return result.scalar_one_or_none()


async def get_or_create_session(
    db: AsyncSession, school_id: UUID, *, now: datetime | None = None
) -> DismissalSession:
    """Return today's session for the school, creating it if needed.

    Args:
        db: Database session
        school_id: School to fetch the session for
        now: Override for the current time (tests)

    Returns:
        The single session row for (school, today)

    Raises:
        NotFoundError: If the school does not exist
    """
    school = await db.get(School, school_id)
    if not school:
        raise NotFoundError(f"School not found with ID: {school_id}")

    day = school_today(school, now)
    existing = await _find_session(db, school_id, day)
    if existing:
        return existing

    session = DismissalSession(school_id=school_id, session_date=day, status="active")
    try:
        async with db.begin_nested():
            db.add(session)
            await db.flush()
    except IntegrityError:
        # Another request created today's session first
        logger.info(f"Session create raced for school {school_id} on {day}; reading winner")
        raced = await _find_session(db, school_id, day)
        if raced is None:
            raise
        return raced

    await db.commit()
    logger.info(f"Created dismissal session {session.id} for school {school_id} on {day}")
    return session


async def get_session(db: AsyncSession, session_id: UUID, school_id: UUID) -> DismissalSession:
    """Fetch a session that belongs to the given school."""
    session = await db.get(DismissalSession, session_id)
    if not session or session.school_id != school_id:
        raise NotFoundError(f"Session not found with ID: {session_id}")
    return session


async def set_session_status(
    db: AsyncSession, actor: Actor, session_id: UUID, status: str
) -> DismissalSession:
    """Toggle a session between active and paused (office only).

    Queued entries are untouched; pausing only blocks new check-ins and calls.
    """
    if not actor.is_office:
        raise PermissionDeniedError("Only office staff can change the session status")
    if status not in ("active", "paused"):
        raise InvalidRequestError(f"Invalid session status: {status}")

    session = await get_session(db, session_id, actor.school_id)
    if session.status == status:
        return session

    previous = session.status
    session.status = status
    session.paused_at = utcnow() if status == "paused" else None

    record_activity(
        db,
        actor,
        f"session_{status}",
        session_id=session.id,
        entity_type="session",
        entity_id=session.id,
        details={"from": previous, "to": status},
    )
    await db.commit()
    await db.refresh(session)

    logger.info(f"Session {session.id} status {previous} -> {status}")
    return session


def ensure_accepting(session: DismissalSession) -> None:
    """Raise if the session is paused."""
    if session.is_paused:
        raise SessionPausedError(f"Dismissal session {session.id} is paused")
