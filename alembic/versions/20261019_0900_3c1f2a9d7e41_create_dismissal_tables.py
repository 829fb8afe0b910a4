"""Create roster and dismissal tables

Revision ID: 3c1f2a9d7e41
Revises:
Create Date: 2026-10-19 09:00:00.000000+00:00

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3c1f2a9d7e41"  # pragma: allowlist secret
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
            comment="Creation timestamp (UTC)",
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
            comment="Last update timestamp (UTC)",
        ),
    ]


def upgrade() -> None:
    # Roster
    op.create_table(
        "schools",
        sa.Column("id", sa.UUID(), primary_key=True, comment="UUID primary key"),
        sa.Column("name", sa.String(length=300), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "homerooms",
        sa.Column("id", sa.UUID(), primary_key=True, comment="UUID primary key"),
        sa.Column("school_id", sa.UUID(), sa.ForeignKey("schools.id"), nullable=False),
        sa.Column("teacher_id", sa.UUID(), nullable=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("grade", sa.String(length=10), nullable=False),
        sa.Column("room", sa.String(length=30), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_homerooms_school", "homerooms", ["school_id"])

    op.create_table(
        "students",
        sa.Column("id", sa.UUID(), primary_key=True, comment="UUID primary key"),
        sa.Column("school_id", sa.UUID(), sa.ForeignKey("schools.id"), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("grade_level", sa.String(length=10), nullable=True),
        sa.Column("homeroom_id", sa.UUID(), sa.ForeignKey("homerooms.id"), nullable=True),
        sa.Column("dismissal_type", sa.String(length=10), nullable=False, server_default="car"),
        sa.Column("bus_route", sa.String(length=20), nullable=True),
        sa.Column("car_number", sa.String(length=20), nullable=True),
        sa.Column("status", sa.String(length=10), nullable=False, server_default="active"),
        *_timestamps(),
        sa.CheckConstraint(
            "dismissal_type IN ('car', 'bus', 'walker')", name="check_dismissal_type"
        ),
        sa.CheckConstraint("status IN ('active', 'inactive')", name="check_student_status"),
    )
    op.create_index("idx_students_school", "students", ["school_id"])
    op.create_index("idx_students_homeroom", "students", ["homeroom_id"])
    op.create_index(
        "idx_students_school_dismissal", "students", ["school_id", "dismissal_type"]
    )

    op.create_table(
        "parent_students",
        sa.Column("id", sa.UUID(), primary_key=True, comment="UUID primary key"),
        sa.Column("parent_id", sa.UUID(), nullable=False),
        sa.Column(
            "student_id",
            sa.UUID(),
            sa.ForeignKey("students.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("relationship_label", sa.String(length=30), nullable=False),
        sa.Column("status", sa.String(length=10), nullable=False, server_default="approved"),
        *_timestamps(),
        sa.UniqueConstraint("parent_id", "student_id", name="uq_parent_student"),
        sa.CheckConstraint("status IN ('pending', 'approved')", name="check_parent_link_status"),
    )
    op.create_index("idx_parent_students_student", "parent_students", ["student_id"])

    # Dismissal
    op.create_table(
        "dismissal_sessions",
        sa.Column("id", sa.UUID(), primary_key=True, comment="UUID primary key"),
        sa.Column("school_id", sa.UUID(), sa.ForeignKey("schools.id"), nullable=False),
        sa.Column("session_date", sa.Date(), nullable=False, comment="School-local calendar day"),
        sa.Column("status", sa.String(length=10), nullable=False, server_default="active"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("paused_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "school_id", "session_date", name="uq_dismissal_sessions_school_date"
        ),
        sa.CheckConstraint("status IN ('active', 'paused')", name="check_dismissal_session_status"),
    )

    op.create_table(
        "dismissal_queue",
        sa.Column("id", sa.UUID(), primary_key=True, comment="UUID primary key"),
        sa.Column(
            "session_id", sa.UUID(), sa.ForeignKey("dismissal_sessions.id"), nullable=False
        ),
        sa.Column("student_id", sa.UUID(), sa.ForeignKey("students.id"), nullable=False),
        sa.Column("guardian_id", sa.UUID(), nullable=True),
        sa.Column("guardian_name", sa.String(length=200), nullable=True),
        sa.Column("check_in_method", sa.String(length=20), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=10), nullable=False, server_default="waiting"),
        sa.Column("zone", sa.String(length=50), nullable=True),
        sa.Column("hold_reason", sa.Text(), nullable=True),
        sa.Column("check_in_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("called_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dismissed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('waiting', 'called', 'released', 'dismissed', 'held')",
            name="check_queue_status",
        ),
        sa.CheckConstraint(
            "check_in_method IN ('app', 'car_number', 'bus_number', 'walker', 'qr', 'sms')",
            name="check_queue_check_in_method",
        ),
    )
    op.create_index("idx_queue_session_status", "dismissal_queue", ["session_id", "status"])
    op.create_index("idx_queue_student", "dismissal_queue", ["student_id"])
    # At most one open entry per student per session
    op.create_index(
        "uq_queue_open_student",
        "dismissal_queue",
        ["session_id", "student_id"],
        unique=True,
        postgresql_where=sa.text("status <> 'dismissed'"),
    )

    op.create_table(
        "family_groups",
        sa.Column("id", sa.UUID(), primary_key=True, comment="UUID primary key"),
        sa.Column("school_id", sa.UUID(), sa.ForeignKey("schools.id"), nullable=False),
        sa.Column("car_number", sa.String(length=20), nullable=False),
        sa.Column("family_name", sa.String(length=200), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("school_id", "car_number", name="uq_family_groups_school_car"),
    )

    op.create_table(
        "family_group_students",
        sa.Column("id", sa.UUID(), primary_key=True, comment="UUID primary key"),
        sa.Column(
            "family_group_id",
            sa.UUID(),
            sa.ForeignKey("family_groups.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("school_id", sa.UUID(), sa.ForeignKey("schools.id"), nullable=False),
        sa.Column(
            "student_id",
            sa.UUID(),
            sa.ForeignKey("students.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.UniqueConstraint(
            "school_id", "student_id", name="uq_family_group_students_school_student"
        ),
    )

    op.create_table(
        "pickup_zones",
        sa.Column("id", sa.UUID(), primary_key=True, comment="UUID primary key"),
        sa.Column("school_id", sa.UUID(), sa.ForeignKey("schools.id"), nullable=False),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("school_id", "name", name="uq_pickup_zones_school_name"),
    )

    op.create_table(
        "activity_log",
        sa.Column("id", sa.UUID(), primary_key=True, comment="UUID primary key"),
        sa.Column("school_id", sa.UUID(), nullable=False),
        sa.Column("session_id", sa.UUID(), nullable=True),
        sa.Column("actor_id", sa.UUID(), nullable=True),
        sa.Column("actor_role", sa.String(length=20), nullable=True),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("entity_type", sa.String(length=30), nullable=True),
        sa.Column("entity_id", sa.UUID(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_activity_log_session", "activity_log", ["session_id"])
    op.create_index(
        "idx_activity_log_school_created", "activity_log", ["school_id", "created_at"]
    )


def downgrade() -> None:
    op.drop_table("activity_log")
    op.drop_table("pickup_zones")
    op.drop_table("family_group_students")
    op.drop_table("family_groups")
    op.drop_index("uq_queue_open_student", table_name="dismissal_queue")
    op.drop_table("dismissal_queue")
    op.drop_table("dismissal_sessions")
    op.drop_table("parent_students")
    op.drop_table("students")
    op.drop_table("homerooms")
    op.drop_table("schools")
