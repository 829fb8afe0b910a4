"""Activity log helpers for dismissal actions."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from gopilot.core.auth import Actor
from gopilot.core.models import ActivityLog


def record_activity(
    db: AsyncSession,
    actor: Actor,
    action: str,
    *,
    session_id: UUID | None = None,
    entity_type: str | None = None,
    entity_id: UUID | None = None,
    details: dict[str, Any] | None = None,
) -> ActivityLog:
    """Add an activity row to the current transaction (caller commits)."""
    row = ActivityLog(
        school_id=actor.school_id,
        session_id=session_id,
        actor_id=actor.user_id,
        actor_role=actor.role,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
    )
    db.add(row)
    return row


async def list_activity(db: AsyncSession, session_id: UUID, limit: int = 100) -> list[ActivityLog]:
    result = await db.execute(
        select(ActivityLog)
        .where(ActivityLog.session_id == session_id)
        .order_by(desc(ActivityLog.created_at))
        .limit(limit)
    )
    return list(result.scalars().all())
