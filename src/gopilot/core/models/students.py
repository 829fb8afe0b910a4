"""
Student Models

Students and their links to parent accounts.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from .schools import Homeroom, School

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Student(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A student and how they leave school at the end of the day."""

    __tablename__ = "students"
    __table_args__ = (
        CheckConstraint("dismissal_type IN ('car', 'bus', 'walker')", name="check_dismissal_type"),
        CheckConstraint("status IN ('active', 'inactive')", name="check_student_status"),
        Index("idx_students_school", "school_id"),
        Index("idx_students_homeroom", "homeroom_id"),
        Index("idx_students_school_dismissal", "school_id", "dismissal_type"),
    )

    school_id: Mapped[UUID] = mapped_column(ForeignKey("schools.id"), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    grade_level: Mapped[str | None] = mapped_column(String(10), nullable=True)
    homeroom_id: Mapped[UUID | None] = mapped_column(ForeignKey("homerooms.id"), nullable=True)

    # Dismissal
    dismissal_type: Mapped[str] = mapped_column(
        String(10), default="car", comment="car, bus, walker"
    )
    bus_route: Mapped[str | None] = mapped_column(String(20), nullable=True)
    car_number: Mapped[str | None] = mapped_column(
        String(20), nullable=True, comment="Stored car number when no family group exists"
    )

    status: Mapped[str] = mapped_column(String(10), default="active")

    # Relationships
    school: Mapped[School] = relationship(back_populates="students")
    homeroom: Mapped[Homeroom | None] = relationship(back_populates="students")

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class ParentStudent(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Link between a parent user and a student."""

    __tablename__ = "parent_students"
    __table_args__ = (
        UniqueConstraint("parent_id", "student_id", name="uq_parent_student"),
        CheckConstraint("status IN ('pending', 'approved')", name="check_parent_link_status"),
        Index("idx_parent_students_student", "student_id"),
    )

    parent_id: Mapped[UUID] = mapped_column(nullable=False, comment="User id of the parent")
    student_id: Mapped[UUID] = mapped_column(
        ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    relationship_label: Mapped[str] = mapped_column(String(30), default="parent")
    status: Mapped[str] = mapped_column(String(10), default="approved")

    student: Mapped[Student] = relationship()
