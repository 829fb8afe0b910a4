"""
School Models

Schools and homerooms. Maintained by the roster screens; the dismissal
engine only reads them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from .students import Student

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class School(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A school subscribed to the dismissal product."""

    __tablename__ = "schools"

    name: Mapped[str] = mapped_column(String(300), nullable=False)
    timezone: Mapped[str | None] = mapped_column(
        String(64), nullable=True, comment="IANA timezone; the session day is the local date"
    )
    is_active: Mapped[bool] = mapped_column(default=True)

    # Relationships
    homerooms: Mapped[list[Homeroom]] = relationship(
        back_populates="school", cascade="all, delete-orphan"
    )
    students: Mapped[list[Student]] = relationship(
        back_populates="school", cascade="all, delete-orphan"
    )


class Homeroom(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A homeroom class; teachers watch dismissal per homeroom."""

    __tablename__ = "homerooms"
    __table_args__ = (Index("idx_homerooms_school", "school_id"),)

    school_id: Mapped[UUID] = mapped_column(ForeignKey("schools.id"), nullable=False)
    teacher_id: Mapped[UUID | None] = mapped_column(
        nullable=True, comment="User id of the homeroom teacher"
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    grade: Mapped[str] = mapped_column(String(10), nullable=False, comment="K, 1, 2, ... 12")
    room: Mapped[str | None] = mapped_column(String(30), nullable=True)

    # Relationships
    school: Mapped[School] = relationship(back_populates="homerooms")
    students: Mapped[list[Student]] = relationship(back_populates="homeroom")
