"""
Dismissal Models

Sessions, queue entries, family groups, pickup zones and the activity log.
Queue entries are never deleted; they are kept for reporting.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

if TYPE_CHECKING:
    from .students import Student

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin, utcnow

SESSION_STATUSES = ("active", "paused")
QUEUE_STATUSES = ("waiting", "called", "released", "dismissed", "held")
CHECK_IN_METHODS = ("car_number", "bus_number", "walker", "qr", "sms")

# Only one non-dismissed entry per student per session
OPEN_ENTRY_PREDICATE = text("status <> 'dismissed'")


class DismissalSession(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """The single dismissal run for a school on one calendar day."""

    __tablename__ = "dismissal_sessions"
    __table_args__ = (
        UniqueConstraint("school_id", "session_date", name="uq_dismissal_sessions_school_date"),
        CheckConstraint("status IN ('active', 'paused')", name="check_dismissal_session_status"),
    )

    school_id: Mapped[UUID] = mapped_column(ForeignKey("schools.id"), nullable=False)
    session_date: Mapped[date] = mapped_column(
        Date, nullable=False, comment="School-local calendar day"
    )
    status: Mapped[str] = mapped_column(String(10), default="active")
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    paused_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    entries: Mapped[list[QueueEntry]] = relationship(back_populates="session")

    @property
    def is_paused(self) -> bool:
        return self.status == "paused"


class QueueEntry(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """One student's journey through dismissal for a session."""

    __tablename__ = "dismissal_queue"
    __table_args__ = (
        CheckConstraint(
            "status IN ('waiting', 'called', 'released', 'dismissed', 'held')",
            name="check_queue_status",
        ),
        CheckConstraint(
            "check_in_method IN ('app', 'car_number', 'bus_number', 'walker', 'qr', 'sms')",
            name="check_queue_check_in_method",
        ),
        Index("idx_queue_session_status", "session_id", "status"),
        Index("idx_queue_student", "student_id"),
        Index(
            "uq_queue_open_student",
            "session_id",
            "student_id",
            unique=True,
            postgresql_where=OPEN_ENTRY_PREDICATE,
            sqlite_where=OPEN_ENTRY_PREDICATE,
        ),
    )

    session_id: Mapped[UUID] = mapped_column(
        ForeignKey("dismissal_sessions.id"), nullable=False
    )
    student_id: Mapped[UUID] = mapped_column(ForeignKey("students.id"), nullable=False)

    # Who/how
    guardian_id: Mapped[UUID | None] = mapped_column(
        nullable=True, comment="Parent user that checked in, if any"
    )
    guardian_name: Mapped[str | None] = mapped_column(
        String(200), nullable=True, comment="Guardian or route display name"
    )
    check_in_method: Mapped[str] = mapped_column(String(20), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, comment="Check-in order")

    # State
    status: Mapped[str] = mapped_column(String(10), default="waiting")
    zone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    hold_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    check_in_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    called_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    dismissed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    session: Mapped[DismissalSession] = relationship(back_populates="entries")
    student: Mapped[Student] = relationship()

    @property
    def is_open(self) -> bool:
        return self.status != "dismissed"


class FamilyGroup(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Students sharing one car number at a school."""

    __tablename__ = "family_groups"
    __table_args__ = (
        UniqueConstraint("school_id", "car_number", name="uq_family_groups_school_car"),
    )

    school_id: Mapped[UUID] = mapped_column(ForeignKey("schools.id"), nullable=False)
    car_number: Mapped[str] = mapped_column(String(20), nullable=False)
    family_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    members: Mapped[list[FamilyGroupStudent]] = relationship(
        back_populates="family_group", cascade="all, delete-orphan"
    )


class FamilyGroupStudent(Base, UUIDPrimaryKeyMixin):
    """Membership of a student in a family group."""

    __tablename__ = "family_group_students"
    __table_args__ = (
        # A student belongs to at most one family group per school
        UniqueConstraint("school_id", "student_id", name="uq_family_group_students_school_student"),
    )

    family_group_id: Mapped[UUID] = mapped_column(
        ForeignKey("family_groups.id", ondelete="CASCADE"), nullable=False
    )
    school_id: Mapped[UUID] = mapped_column(ForeignKey("schools.id"), nullable=False)
    student_id: Mapped[UUID] = mapped_column(
        ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )

    family_group: Mapped[FamilyGroup] = relationship(back_populates="members")
    student: Mapped[Student] = relationship()


class PickupZone(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A named physical pickup location assigned when an entry is called."""

    __tablename__ = "pickup_zones"
    __table_args__ = (UniqueConstraint("school_id", "name", name="uq_pickup_zones_school_name"),)

    school_id: Mapped[UUID] = mapped_column(ForeignKey("schools.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True)


class ActivityLog(Base, UUIDPrimaryKeyMixin):
    """Audit trail of committed dismissal actions."""

    __tablename__ = "activity_log"
    __table_args__ = (
        Index("idx_activity_log_session", "session_id"),
        Index("idx_activity_log_school_created", "school_id", "created_at"),
    )

    school_id: Mapped[UUID] = mapped_column(nullable=False)
    session_id: Mapped[UUID | None] = mapped_column(nullable=True)
    actor_id: Mapped[UUID | None] = mapped_column(nullable=True)
    actor_role: Mapped[str | None] = mapped_column(String(20), nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    entity_id: Mapped[UUID | None] = mapped_column(nullable=True)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
