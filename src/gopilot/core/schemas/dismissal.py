"""
Dismissal Schemas

Pydantic models for API request/response validation. `QueueEntrySchema` is
the one canonical wire shape of a queue entry.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from gopilot.core.models import ActivityLog, QueueEntry

QueueStatusLiteral = Literal["waiting", "called", "released", "dismissed", "held"]


# Session Schemas
class SessionSchema(BaseModel):
    """Dismissal session for one school day."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    school_id: UUID
    session_date: date
    status: Literal["active", "paused"]
    started_at: datetime
    paused_at: datetime | None


class SessionStatusUpdate(BaseModel):
    status: Literal["active", "paused"]


# Queue Schemas
class QueueEntrySchema(BaseModel):
    """Queue entry enriched with the student's display fields."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    session_id: UUID
    student_id: UUID
    guardian_id: UUID | None = None
    guardian_name: str | None = None
    check_in_method: str
    position: int
    status: QueueStatusLiteral
    zone: str | None = None
    hold_reason: str | None = None
    check_in_at: datetime
    called_at: datetime | None = None
    released_at: datetime | None = None
    dismissed_at: datetime | None = None

    # Student display fields
    first_name: str | None = None
    last_name: str | None = None
    grade_level: str | None = None
    homeroom_id: UUID | None = None
    homeroom_name: str | None = None
    dismissal_type: str | None = None
    bus_route: str | None = None

    @classmethod
    def from_entry(cls, entry: QueueEntry, student: Any = None) -> QueueEntrySchema:
        """Build from an entry; student fields are read only if already loaded."""
        data = {name: getattr(entry, name) for name in _ENTRY_COLUMNS}
        student = student if student is not None else entry.__dict__.get("student")
        if student is not None:
            homeroom = student.__dict__.get("homeroom")
            data.update(
                first_name=student.first_name,
                last_name=student.last_name,
                grade_level=student.grade_level,
                homeroom_id=student.homeroom_id,
                homeroom_name=homeroom.name if homeroom is not None else None,
                dismissal_type=student.dismissal_type,
                bus_route=student.bus_route,
            )
        return cls(**data)


_ENTRY_COLUMNS = (
    "id",
    "session_id",
    "student_id",
    "guardian_id",
    "guardian_name",
    "check_in_method",
    "position",
    "status",
    "zone",
    "hold_reason",
    "check_in_at",
    "called_at",
    "released_at",
    "dismissed_at",
)


class QueueStatsSchema(BaseModel):
    waiting: int = 0
    called: int = 0
    released: int = 0
    dismissed: int = 0
    held: int = 0
    total: int = 0
    avg_wait_seconds: float | None = None


class ActivitySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    session_id: UUID | None
    actor_id: UUID | None
    actor_role: str | None
    action: str
    entity_type: str | None
    entity_id: UUID | None
    details: dict[str, Any] | None
    created_at: datetime

    @classmethod
    def from_row(cls, row: ActivityLog) -> ActivitySchema:
        return cls.model_validate(row)


# Check-in Schemas
class CarCheckIn(BaseModel):
    """Car-number check-in (typed, scanned from a QR tag, or texted in)."""

    car_number: str = Field(..., min_length=1, max_length=20)
    method: Literal["car_number", "qr", "sms"] = "car_number"

    @field_validator("car_number")
    @classmethod
    def strip_number(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("car_number cannot be blank")
        return v


class ParentCheckIn(BaseModel):
    """Parent app check-in; the name shown to staff defaults to the family name."""

    guardian_name: str | None = Field(None, max_length=100)


class BusCheckIn(BaseModel):
    bus_number: str = Field(..., min_length=1, max_length=20)

    @field_validator("bus_number")
    @classmethod
    def strip_number(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("bus_number cannot be blank")
        return v


class WalkerRelease(BaseModel):
    """Walker release; without a filter every walker is released."""

    filter_type: Literal["grade", "homeroom"] | None = None
    filter_values: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_homeroom_ids(self) -> WalkerRelease:
        if self.filter_type == "homeroom":
            for value in self.filter_values:
                UUID(value)
        return self


class WalkerFilterRelease(WalkerRelease):
    filter_type: Literal["grade", "homeroom"]


class CheckInResponse(BaseModel):
    outcome: Literal["created", "already_submitted"]
    already_submitted: bool
    key: str | None = None
    student_names: list[str]
    created_count: int
    entries: list[QueueEntrySchema]
    existing: list[QueueEntrySchema]


# Transition Schemas
class CallRequest(BaseModel):
    queue_id: UUID
    zone: str | None = Field(None, max_length=50)


class CallBatchRequest(BaseModel):
    count: int | None = Field(None, ge=1, le=50)
    zone: str | None = Field(None, max_length=50)


class HoldRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("reason cannot be blank")
        return v


class BatchRequest(BaseModel):
    queue_ids: list[UUID] = Field(..., min_length=1)


class DismissFilterRequest(BaseModel):
    homeroom_id: UUID | None = None
    statuses: list[Literal["waiting", "called", "released"]] | None = None


class TransitionResponse(BaseModel):
    changed: bool
    entry: QueueEntrySchema


class BatchResponse(BaseModel):
    transition: str
    requested: int
    succeeded: int
    changed_ids: list[UUID]
    skipped_ids: list[UUID]
    entries: list[QueueEntrySchema]


# Pickup Zone Schemas
class PickupZoneCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name cannot be blank")
        return v


class PickupZoneUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=50)
    is_active: bool | None = None


class PickupZoneSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    school_id: UUID
    name: str
    is_active: bool
