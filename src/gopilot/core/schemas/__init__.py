"""Pydantic schemas for API validation."""

from .dismissal import (
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
    PickupZoneCreate,
    PickupZoneSchema,
    PickupZoneUpdate,
    QueueEntrySchema,
    QueueStatsSchema,
    SessionSchema,
    SessionStatusUpdate,
    TransitionResponse,
    WalkerFilterRelease,
    WalkerRelease,
)

__all__ = [
    # Sessions
    "SessionSchema",
    "SessionStatusUpdate",
    # Queue
    "QueueEntrySchema",
    "QueueStatsSchema",
    "ActivitySchema",
    # Check-in
    "CarCheckIn",
    "BusCheckIn",
    "ParentCheckIn",
    "WalkerRelease",
    "WalkerFilterRelease",
    "CheckInResponse",
    # Transitions
    "CallRequest",
    "CallBatchRequest",
    "HoldRequest",
    "BatchRequest",
    "DismissFilterRequest",
    "TransitionResponse",
    "BatchResponse",
    # Zones
    "PickupZoneCreate",
    "PickupZoneUpdate",
    "PickupZoneSchema",
]
