"""
Pickup Zone API

Office-managed list of curbside zones students are called to.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gopilot.core.auth import Actor, get_actor
from gopilot.core.database import get_db
from gopilot.core.models import PickupZone
from gopilot.core.schemas import PickupZoneCreate, PickupZoneSchema, PickupZoneUpdate
from gopilot.dismissal.activity import record_activity
from gopilot.dismissal.exceptions import NotFoundError, PermissionDeniedError

router = APIRouter()


def _require_office(actor: Actor) -> None:
    if not actor.is_office:
        raise PermissionDeniedError("Only office staff can manage pickup zones")


@router.get("", response_model=list[PickupZoneSchema])
async def list_zones(
    include_inactive: bool = False,
    actor: Actor = Depends(get_actor),  # noqa: B008
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> list[PickupZone]:
    """List the school's pickup zones, active ones only by default."""
    stmt = select(PickupZone).where(PickupZone.school_id == actor.school_id)
    if not include_inactive:
        stmt = stmt.where(PickupZone.is_active.is_(True))
    result = await db.execute(stmt.order_by(PickupZone.name))
    return list(result.scalars().all())


@router.post("", response_model=PickupZoneSchema, status_code=201)
async def create_zone(
    body: PickupZoneCreate,
    actor: Actor = Depends(get_actor),  # noqa: B008
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> PickupZone:
    """Create a pickup zone (office only)."""
    _require_office(actor)

    zone = PickupZone(school_id=actor.school_id, name=body.name, is_active=True)
    try:
        async with db.begin_nested():
            db.add(zone)
            await db.flush()
    except IntegrityError as e:
        raise HTTPException(
            status_code=409, detail=f"Pickup zone already exists: {body.name}"
        ) from e

    record_activity(
        db,
        actor,
        "zone_created",
        entity_type="zone",
        entity_id=zone.id,
        details={"name": zone.name},
    )
    await db.commit()
    await db.refresh(zone)
    return zone


@router.put("/{zone_id}", response_model=PickupZoneSchema)
async def update_zone(
    zone_id: UUID,
    body: PickupZoneUpdate,
    actor: Actor = Depends(get_actor),  # noqa: B008
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> PickupZone:
    """Rename or deactivate a pickup zone (office only)."""
    _require_office(actor)

    zone = await db.get(PickupZone, zone_id)
    if not zone or zone.school_id != actor.school_id:
        raise NotFoundError(f"Pickup zone not found with ID: {zone_id}")

    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if "name" in changes:
        changes["name"] = changes["name"].strip()
        if not changes["name"]:
            raise HTTPException(status_code=422, detail="name cannot be blank")

    try:
        async with db.begin_nested():
            for key, value in changes.items():
                setattr(zone, key, value)
            await db.flush()
    except IntegrityError as e:
        raise HTTPException(
            status_code=409, detail=f"Pickup zone already exists: {changes.get('name')}"
        ) from e

    record_activity(
        db, actor, "zone_updated", entity_type="zone", entity_id=zone.id, details=changes
    )
    await db.commit()
    await db.refresh(zone)
    return zone
